from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .archive import require_token
from .errors import ApiError, NetworkError, raise_for_status
from .models import Token
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

_URL_KEYS = ("redirectUrl", "redirect_url", "url", "location")


def extract_redirect_url(resp: httpx.Response) -> Optional[str]:
    """Resolve the gateway's redirect payload to a URL string."""
    try:
        body: Any = resp.json()
    except ValueError:
        body = resp.text.strip()
    if isinstance(body, dict):
        body = next((body[k] for k in _URL_KEYS if body.get(k)), None)
    if isinstance(body, str) and body.strip():
        return body.strip()
    return resp.headers.get("location")


class GatewayClient:
    """Exchanges an archived document id for a one-time signing redirect URL.

    Server-side only: it takes a ``Token`` minted by ``TokenProvider`` and never
    a raw credential, so nothing a browser could hold is enough to call it.
    """

    def __init__(
        self,
        http: httpx.Client,
        base_uri: str,
        retry_policy: Optional[RetryPolicy] = None,
        id_param: str = "id",
    ):
        self._http = http
        self._base = str(base_uri).rstrip("/")
        self._retry = retry_policy or RetryPolicy()
        self._id_param = id_param

    def create_redirect(self, document_id: str, token: Optional[Token]) -> str:
        token = require_token(token)
        return self._retry.call(self._create_redirect_once, document_id, token)

    def _create_redirect_once(self, document_id: str, token: Token) -> str:
        url = f"{self._base}/api/auth/session/redirecturl"
        try:
            resp = self._http.post(
                url,
                params={self._id_param: document_id},
                json={},
                headers={"Authorization": token.authorization(), "Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Redirect request for {document_id} failed: {exc.__class__.__name__}") from exc
        raise_for_status(resp)
        redirect_url = extract_redirect_url(resp)
        if not redirect_url:
            raise ApiError(f"Gateway returned no redirect URL for {document_id}", status_code=resp.status_code)
        logger.info("Issued signing redirect for document %s", document_id)
        return redirect_url
