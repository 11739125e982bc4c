from __future__ import annotations

import json
import logging
from typing import Callable, Iterator, Optional

import httpx

from .errors import AmbiguousOutcomeError, ApiError, AuthError, AuthFailure, NetworkError, raise_for_status
from .models import ArchivedDocument, DocumentMetadata, Token
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

# Raised before any request byte left the process.
_NOT_SENT = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout, httpx.UnsupportedProtocol, httpx.ProxyError)


def require_token(token: Optional[Token], skew_s: float = 0.0) -> Token:
    if token is None or not token.access_token:
        raise AuthError("A bearer token is required", reason=AuthFailure.UNAUTHORIZED)
    if token.is_expired(skew_s):
        raise AuthError("Bearer token has expired", reason=AuthFailure.UNAUTHORIZED)
    return token


class DocumentStream:
    """Single-pass byte stream over a live download response.

    Drain it with ``iter_bytes``/``read`` or ``close`` it; use as a context manager.
    ``on_complete`` fires only once the body was read to the end, ``on_error``
    when the transfer broke partway.
    """

    def __init__(self, response: httpx.Response):
        self._response = response
        self._consumed = False
        self.on_complete: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[ApiError], None]] = None

    @property
    def content_type(self) -> Optional[str]:
        return self._response.headers.get("content-type")

    @property
    def filename(self) -> Optional[str]:
        disposition = self._response.headers.get("content-disposition") or ""
        for part in disposition.split(";"):
            key, _, value = part.strip().partition("=")
            if key.lower() == "filename" and value:
                return value.strip('"')
        return None

    def iter_bytes(self, chunk_size: Optional[int] = None) -> Iterator[bytes]:
        if self._consumed:
            raise httpx.StreamConsumed()
        self._consumed = True
        try:
            yield from self._response.iter_bytes(chunk_size)
        except httpx.TransportError as exc:
            error = NetworkError(f"Download interrupted: {exc.__class__.__name__}")
            if self.on_error is not None:
                self.on_error(error)
            raise error from exc
        finally:
            self._response.close()
        if self.on_complete is not None:
            self.on_complete()

    def __iter__(self) -> Iterator[bytes]:
        return self.iter_bytes()

    def read(self) -> bytes:
        return b"".join(self.iter_bytes())

    def close(self) -> None:
        self._response.close()

    def __enter__(self) -> "DocumentStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ArchiveClient:
    """Moves document bytes and metadata to and from the archive service."""

    def __init__(
        self,
        http: httpx.Client,
        base_uri: str,
        retry_policy: Optional[RetryPolicy] = None,
        nested_document_data: bool = False,
    ):
        self._http = http
        self._base = str(base_uri).rstrip("/")
        self._retry = retry_policy or RetryPolicy()
        self._nested = nested_document_data

    def _headers(self, token: Token) -> dict[str, str]:
        return {"Authorization": token.authorization(), "Accept": "application/json"}

    def _document_data(self, metadata: DocumentMetadata) -> str:
        data = metadata.to_document_data()
        if self._nested:
            data = {"documentData": data}
        return json.dumps(data, separators=(",", ":"))

    def upload(self, file_bytes: bytes, metadata: DocumentMetadata, token: Token) -> ArchivedDocument:
        """Create an archive entry. Not idempotent, so only clean failures are retried."""
        token = require_token(token)
        return self._retry.call(self._upload_once, file_bytes, metadata, token)

    def _upload_once(self, file_bytes: bytes, metadata: DocumentMetadata, token: Token) -> ArchivedDocument:
        url = f"{self._base}/api/document/create"
        content_type = metadata.content_type or "application/octet-stream"
        try:
            resp = self._http.post(
                url,
                params={"documentData": self._document_data(metadata)},
                files={"file": (metadata.filename, file_bytes, content_type)},
                headers=self._headers(token),
            )
        except _NOT_SENT as exc:
            raise NetworkError(f"Upload of {metadata.filename} not sent: {exc.__class__.__name__}") from exc
        except httpx.TransportError as exc:
            raise AmbiguousOutcomeError(
                f"Upload of {metadata.filename} may have been stored: {exc.__class__.__name__}"
            ) from exc
        except KeyboardInterrupt as exc:
            raise AmbiguousOutcomeError(f"Upload of {metadata.filename} interrupted") from exc
        raise_for_status(resp)
        try:
            doc = ArchivedDocument.model_validate(resp.json())
        except ValueError as exc:
            raise AmbiguousOutcomeError(f"Upload of {metadata.filename} returned an unreadable body") from exc
        logger.info("Uploaded %s as document %s", metadata.filename, doc.id)
        return doc

    def download(self, document_id: str, token: Token, version: Optional[str] = None) -> DocumentStream:
        token = require_token(token)
        return self._retry.call(self._download_once, document_id, token, version)

    def _download_once(self, document_id: str, token: Token, version: Optional[str]) -> DocumentStream:
        url = f"{self._base}/api/document/{document_id}/download"
        params = {"version": version} if version else None
        request = self._http.build_request("GET", url, params=params, headers=self._headers(token))
        try:
            resp = self._http.send(request, stream=True, follow_redirects=True)
        except httpx.TransportError as exc:
            raise NetworkError(f"Download of {document_id} failed: {exc.__class__.__name__}") from exc
        if resp.status_code >= 400:
            try:
                resp.read()
            except httpx.TransportError as exc:
                raise NetworkError(f"Download of {document_id} failed ({resp.status_code})") from exc
            finally:
                resp.close()
            raise_for_status(resp)
        logger.info("Streaming document %s (version=%s)", document_id, version or "latest")
        return DocumentStream(resp)
