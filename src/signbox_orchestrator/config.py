from __future__ import annotations

from typing import Literal, Optional

from pydantic import AnyHttpUrl, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Credentials
from .retry import RetryPolicy


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables.

    Credentials are required (no defaults) to avoid unsafe assumptions. Either
    ``token_endpoint`` or ``issuer`` must be set; with only ``issuer`` the token
    endpoint is read from OIDC discovery.
    """

    model_config = SettingsConfigDict(env_prefix="SIGNBOX_", case_sensitive=False)

    token_endpoint: Optional[AnyHttpUrl] = Field(
        None,
        description="OIDC token endpoint, e.g. https://sso.example.com/realms/signbox/protocol/openid-connect/token",
    )
    issuer: Optional[AnyHttpUrl] = Field(None, description="OIDC issuer URL used for discovery")
    client_id: str = Field(..., min_length=1, description="OIDC client id")
    client_secret: SecretStr = Field(..., description="OIDC client secret")
    grant_type: Literal["client_credentials", "password"] = Field("client_credentials")
    username: Optional[str] = Field(None, description="Resource owner for the password grant")
    password: Optional[SecretStr] = Field(None, description="Resource owner password for the password grant")
    scope: Optional[str] = Field(None, description="OAuth scopes (space-separated)")

    archive_base: AnyHttpUrl = Field(..., description="Archive service base URL")
    gateway_base: AnyHttpUrl = Field(..., description="Gateway service base URL")

    http_timeout_s: float = Field(20.0, ge=1.0, le=300.0, description="HTTP timeout (seconds)")
    token_skew_s: float = Field(30.0, ge=0.0, le=600.0, description="Treat tokens as expired this early")
    retry_max_attempts: int = Field(3, ge=1, le=10, description="Attempts per call, first one included")
    retry_base_delay_s: float = Field(0.5, ge=0.0, le=30.0, description="First backoff delay (seconds)")

    redirect_id_param: Literal["id", "documentId"] = Field("id", description="Gateway query parameter name")
    nested_document_data: bool = Field(False, description="Wrap upload metadata as {'documentData': {...}}")

    @model_validator(mode="after")
    def _check_grant(self) -> "Settings":
        if self.token_endpoint is None and self.issuer is None:
            raise ValueError("either token_endpoint or issuer must be configured")
        if self.grant_type == "password" and (not self.username or self.password is None):
            raise ValueError("password grant requires username and password")
        return self

    def credentials(self, token_endpoint: Optional[str] = None) -> Credentials:
        endpoint = token_endpoint or self.token_endpoint
        if endpoint is None:
            raise ValueError("token endpoint not resolved; run discovery first")
        return Credentials(
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_endpoint=str(endpoint),
            username=self.username,
            password=self.password,
            scope=self.scope,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.retry_max_attempts, base_delay_s=self.retry_base_delay_s)
