from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

import httpx

from .archive import ArchiveClient, DocumentStream
from .auth import TokenProvider, discover_token_endpoint
from .config import Settings
from .errors import ApiError, AuthError, InvalidTransitionError
from .gateway import GatewayClient
from .models import DocumentMetadata, SessionStatus, SigningSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SigningSessionOrchestrator:
    """High-level flow: token -> upload -> redirect URL, later -> download.

    Holds no per-session state; the caller persists the returned
    ``SigningSession`` across the user's browser round-trip.
    """

    def __init__(self, tokens: TokenProvider, archive: ArchiveClient, gateway: GatewayClient):
        self.tokens = tokens
        self.archive = archive
        self.gateway = gateway

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.Client) -> "SigningSessionOrchestrator":
        endpoint = None
        if settings.token_endpoint is None and settings.issuer is not None:
            endpoint = discover_token_endpoint(str(settings.issuer), http)
        policy = settings.retry_policy()
        tokens = TokenProvider(
            settings.credentials(endpoint),
            http,
            grant_type=settings.grant_type,
            skew_s=settings.token_skew_s,
            retry_policy=policy,
        )
        archive = ArchiveClient(
            http, str(settings.archive_base), retry_policy=policy, nested_document_data=settings.nested_document_data
        )
        gateway = GatewayClient(http, str(settings.gateway_base), retry_policy=policy, id_param=settings.redirect_id_param)
        return cls(tokens, archive, gateway)

    def _authorized(self, call: Callable[..., T], *args, **kwargs) -> T:
        token = self.tokens.get_token()
        try:
            return call(*args, token=token, **kwargs)
        except AuthError as e:
            # only a server-side rejection of the token earns one refresh
            if e.status_code not in (401, 403):
                raise
            logger.info("Token rejected (%s); refreshing once", e.status_code)
            token = self.tokens.refresh(token)
            return call(*args, token=token, **kwargs)

    def _fail(self, session: SigningSession, error: ApiError, resumable: bool = False) -> None:
        session.error = error.to_payload()
        error.session = session
        if resumable and error.retryable:
            logger.warning(
                "Download of document %s failed (%s); session can be completed again", session.document_id, error.kind
            )
            return
        if session.can_transition(SessionStatus.FAILED):
            session.transition(SessionStatus.FAILED)
        logger.warning("Session for document %s failed: %s", session.document_id or "-", error.kind)

    def _downloaded(self, session: SigningSession) -> None:
        session.transition(SessionStatus.DOWNLOADED)
        session.error = None
        logger.info("Document %s downloaded", session.document_id)

    def start_session(self, file: bytes, metadata: DocumentMetadata) -> SigningSession:
        session = SigningSession(filename=metadata.filename)
        try:
            archived = self._authorized(self.archive.upload, file, metadata)
            session.document_id = archived.id
            session.redirect_url = self._authorized(self.gateway.create_redirect, archived.id)
            session.transition(SessionStatus.REDIRECT_ISSUED)
        except ApiError as e:
            self._fail(session, e)
            raise
        return session

    def mark_user_returned(self, session: SigningSession) -> SigningSession:
        session.transition(SessionStatus.USER_RETURNED)
        return session

    def complete_session(self, session: SigningSession, version: Optional[str] = None) -> DocumentStream:
        """Download the signed artifact for a session whose user came back.

        The session becomes ``Downloaded`` once the returned stream is drained.
        Transient failures leave it at ``UserReturned`` so it can be completed again.
        """
        if not session.document_id:
            raise InvalidTransitionError("Session has no archived document")
        if session.status == SessionStatus.REDIRECT_ISSUED:
            self.mark_user_returned(session)
        if session.status != SessionStatus.USER_RETURNED:
            raise InvalidTransitionError(f"Cannot download for a session in state {session.status.value}")
        try:
            stream = self._authorized(self.archive.download, session.document_id, version=version)
        except ApiError as e:
            self._fail(session, e, resumable=True)
            raise
        stream.on_complete = lambda: self._downloaded(session)
        stream.on_error = lambda error: self._fail(session, error, resumable=True)
        return stream
