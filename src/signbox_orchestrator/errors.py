from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import httpx

if TYPE_CHECKING:
    from .models import SigningSession


class AuthFailure(str, Enum):
    INVALID_CLIENT = "InvalidClient"
    INVALID_GRANT = "InvalidGrant"
    UNAUTHORIZED = "Unauthorized"
    NETWORK = "Network"
    SERVER_ERROR = "ServerError"


class ApiError(RuntimeError):
    retryable = False
    kind = "api_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        # set by the orchestrator when a session failed on this error
        self.session: Optional[SigningSession] = None

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.kind, "status_code": self.status_code, "code": self.code, "message": str(self)}


class AuthError(ApiError):
    kind = "auth_error"

    def __init__(self, message: str, *, reason: AuthFailure, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message, status_code=status_code, code=code)
        self.reason = reason

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.reason in (AuthFailure.NETWORK, AuthFailure.SERVER_ERROR)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["reason"] = self.reason.value
        return payload


class ValidationError(ApiError):
    kind = "validation_error"


class NotFoundError(ApiError):
    kind = "not_found"


class ConflictError(ApiError):
    kind = "conflict"


class ServerError(ApiError):
    kind = "server_error"
    retryable = True


class NetworkError(ApiError):
    kind = "network_error"
    retryable = True


class AmbiguousOutcomeError(ApiError):
    """The request may have taken effect; callers must reconcile before retrying."""

    kind = "ambiguous_outcome"


class InvalidTransitionError(ApiError):
    kind = "invalid_transition"


def is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


def _error_code(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        code = body.get("error") or body.get("code")
        return str(code) if code else None
    return None


def raise_for_status(resp: httpx.Response) -> None:
    """Map a protected-API response onto the taxonomy; no-op below 400."""
    if resp.status_code < 400:
        return
    code = _error_code(resp)
    url = str(resp.request.url).split("?", 1)[0]
    msg = f"{resp.request.method} {url} -> {resp.status_code}: {resp.text[:200]}"
    status = resp.status_code
    if status in (401, 403):
        raise AuthError(msg, reason=AuthFailure.UNAUTHORIZED, status_code=status, code=code)
    if status == 400:
        raise ValidationError(msg, status_code=status, code=code)
    if status == 404:
        raise NotFoundError(msg, status_code=status, code=code)
    if status == 409:
        raise ConflictError(msg, status_code=status, code=code)
    if status >= 500 or status in (408, 425, 429):
        raise ServerError(msg, status_code=status, code=code)
    raise ApiError(msg, status_code=status, code=code)
