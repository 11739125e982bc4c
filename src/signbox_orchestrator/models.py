from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import jwt
from pydantic import AliasChoices, AnyHttpUrl, BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel

from .errors import InvalidTransitionError


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


_FALLBACK_LIFETIME_S = 60


def _jwt_expiry(access_token: str) -> Optional[datetime]:
    """Read the `exp` claim without verifying; only used to schedule a refresh."""
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


class Credentials(BaseModel):
    """Client credentials for the token endpoint. Secrets never render in repr/logs."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr
    token_endpoint: AnyHttpUrl
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    scope: Optional[str] = None


class OAuthToken(BaseModel):
    """Raw token endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = Field(None, ge=1)
    scope: Optional[str] = None


class Token(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., repr=False)
    expires_at: datetime
    token_type: str = "Bearer"
    scope: Optional[str] = None
    issued_at: Optional[datetime] = None

    @classmethod
    def from_response(cls, raw: OAuthToken, received_at: Optional[datetime] = None) -> "Token":
        received_at = received_at or _utcnow()
        if raw.expires_in is not None:
            expires_at = received_at + timedelta(seconds=raw.expires_in)
        else:
            expires_at = _jwt_expiry(raw.access_token) or received_at + timedelta(seconds=_FALLBACK_LIFETIME_S)
        return cls(
            access_token=raw.access_token,
            expires_at=expires_at,
            token_type=raw.token_type or "Bearer",
            scope=raw.scope,
            issued_at=received_at,
        )

    def is_expired(self, skew_s: float = 30.0, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        if self.issued_at is not None:
            # a short-lived token keeps at least half its lifetime
            skew_s = min(skew_s, (self.expires_at - self.issued_at).total_seconds() / 2)
        return now >= self.expires_at - timedelta(seconds=skew_s)

    def authorization(self) -> str:
        # Keycloak answers token_type "bearer"; the header scheme is always Bearer
        return f"Bearer {self.access_token}"


class DocumentMetadata(BaseModel):
    """Archive metadata for one upload, serialized as camelCase JSON."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    filename: str
    object_name: Optional[str] = None
    document_type: Optional[str] = None
    content_type: Optional[str] = None
    custom_fields: dict[str, str] = Field(default_factory=dict)

    def to_document_data(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ArchivedDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(..., min_length=1)
    external_id: Optional[str] = Field(None, validation_alias=AliasChoices("externalid", "externalId", "external_id"))
    archive_name: Optional[str] = Field(None, validation_alias=AliasChoices("archiveName", "archive_name"))


class SessionStatus(str, Enum):
    CREATED = "Created"
    REDIRECT_ISSUED = "RedirectIssued"
    USER_RETURNED = "UserReturned"
    DOWNLOADED = "Downloaded"
    FAILED = "Failed"


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.CREATED: frozenset({SessionStatus.REDIRECT_ISSUED, SessionStatus.FAILED}),
    SessionStatus.REDIRECT_ISSUED: frozenset({SessionStatus.USER_RETURNED, SessionStatus.FAILED}),
    SessionStatus.USER_RETURNED: frozenset({SessionStatus.DOWNLOADED, SessionStatus.FAILED}),
    SessionStatus.DOWNLOADED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}


class SigningSession(BaseModel):
    """One signing round-trip. The caller persists it across the browser redirect."""

    document_id: Optional[str] = None
    redirect_url: Optional[str] = None
    filename: Optional[str] = None
    status: SessionStatus = SessionStatus.CREATED
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    error: Optional[dict[str, Any]] = None

    def can_transition(self, target: SessionStatus) -> bool:
        return target in _TRANSITIONS[self.status]

    def transition(self, target: SessionStatus) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(f"Cannot move session from {self.status.value} to {target.value}")
        self.status = target
        self.updated_at = _utcnow()
