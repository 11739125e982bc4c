from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx

from .errors import AuthError, AuthFailure
from .models import Credentials, OAuthToken, Token
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

_OIDC_ERRORS = {
    "invalid_client": AuthFailure.INVALID_CLIENT,
    "invalid_grant": AuthFailure.INVALID_GRANT,
    "unauthorized_client": AuthFailure.UNAUTHORIZED,
}


def classify_token_response(resp: httpx.Response) -> AuthError:
    """Turn a failed token endpoint response into an ``AuthError``."""
    code: Optional[str] = None
    description = ""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("error")
        description = str(body.get("error_description") or "")

    status = resp.status_code
    if status >= 500:
        reason = AuthFailure.SERVER_ERROR
    elif code in _OIDC_ERRORS:
        reason = _OIDC_ERRORS[code]
    elif status == 401:
        reason = AuthFailure.INVALID_CLIENT
    else:
        reason = AuthFailure.UNAUTHORIZED
    detail = f"{code}: {description}" if code else resp.text[:200]
    return AuthError(f"Token request failed ({status}): {detail}", reason=reason, status_code=status, code=code)


def discover_token_endpoint(issuer: str, client: httpx.Client) -> str:
    """Read ``token_endpoint`` from the issuer's OIDC discovery document."""
    url = f"{str(issuer).rstrip('/')}/.well-known/openid-configuration"
    try:
        resp = client.get(url)
    except httpx.TransportError as exc:
        raise AuthError(f"Discovery request failed: {exc}", reason=AuthFailure.NETWORK) from exc
    if resp.status_code >= 400:
        raise AuthError(
            f"Discovery request failed ({resp.status_code})",
            reason=AuthFailure.SERVER_ERROR if resp.status_code >= 500 else AuthFailure.UNAUTHORIZED,
            status_code=resp.status_code,
        )
    try:
        body = resp.json()
    except ValueError as exc:
        raise AuthError(
            "Discovery document is not JSON", reason=AuthFailure.SERVER_ERROR, status_code=resp.status_code
        ) from exc
    endpoint = body.get("token_endpoint") if isinstance(body, dict) else None
    if not endpoint:
        raise AuthError("Discovery document has no token_endpoint", reason=AuthFailure.SERVER_ERROR)
    return str(endpoint)


class TokenProvider:
    """Owns the bearer token cache for one set of credentials.

    ``get_token`` is safe to call from many threads: callers that find the cache
    stale queue on a lock, and only the first one performs the token request.
    """

    def __init__(
        self,
        credentials: Credentials,
        http: httpx.Client,
        grant_type: str = "client_credentials",
        skew_s: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._credentials = credentials
        self._http = http
        self._grant_type = grant_type
        self._skew_s = skew_s
        self._retry = retry_policy or RetryPolicy()
        self._lock = threading.Lock()
        self._token: Optional[Token] = None

    def _grant_fields(self) -> dict[str, str]:
        creds = self._credentials
        fields: dict[str, str] = {}
        if self._grant_type == "password":
            fields["username"] = creds.username or ""
            fields["password"] = creds.password.get_secret_value() if creds.password else ""
        if creds.scope:
            fields["scope"] = creds.scope
        return fields

    def _is_fresh(self, token: Optional[Token]) -> bool:
        return token is not None and not token.is_expired(self._skew_s)

    def get_token(self) -> Token:
        token = self._token
        if self._is_fresh(token):
            return token  # type: ignore[return-value]
        with self._lock:
            token = self._token
            if self._is_fresh(token):
                return token  # type: ignore[return-value]
            self._token = self._retry.call(self.request, self._grant_type, self._grant_fields())
            return self._token

    def invalidate(self, stale: Optional[Token] = None) -> None:
        """Drop the cached token; with ``stale`` only if it is still the cached one."""
        with self._lock:
            if stale is None or self._token is stale:
                self._token = None

    def refresh(self, stale: Optional[Token] = None) -> Token:
        """Force a new token after a protected API rejected ``stale``."""
        self.invalidate(stale)
        return self.get_token()

    def request(self, grant_type: str, fields: dict[str, str]) -> Token:
        creds = self._credentials
        data = {
            "grant_type": grant_type,
            "client_id": creds.client_id,
            "client_secret": creds.client_secret.get_secret_value(),
            **fields,
        }
        try:
            resp = self._http.post(str(creds.token_endpoint), data=data, headers={"Accept": "application/json"})
        except httpx.TransportError as exc:
            raise AuthError(f"Token request failed: {exc.__class__.__name__}", reason=AuthFailure.NETWORK) from exc
        if resp.status_code >= 400:
            raise classify_token_response(resp)
        try:
            raw = OAuthToken.model_validate(resp.json())
        except ValueError as exc:
            raise AuthError(
                f"Token endpoint returned an unreadable body ({resp.status_code})",
                reason=AuthFailure.SERVER_ERROR,
                status_code=resp.status_code,
            ) from exc
        logger.debug("Obtained %s token for client %s (expires in %ss)", grant_type, creds.client_id, raw.expires_in)
        return Token.from_response(raw)
