"""Pydantic models for SMART discovery documents and token endpoint responses."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SmartConfiguration(BaseModel):
    """The server's ``.well-known/smart-configuration`` document.

    Unknown members are kept (``extra="allow"``) so callers can read
    vendor-specific fields.
    """

    model_config = ConfigDict(extra="allow")

    token_endpoint: str = Field(..., description="OAuth2 token endpoint URL")
    authorization_endpoint: str | None = Field(default=None)
    issuer: str | None = Field(default=None)
    jwks_uri: str | None = Field(default=None)
    scopes_supported: list[str] = Field(default_factory=list)
    response_types_supported: list[str] = Field(default_factory=list)
    grant_types_supported: list[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: list[str] | None = Field(default=None)
    token_endpoint_auth_signing_alg_values_supported: list[str] | None = Field(default=None)
    code_challenge_methods_supported: list[str] = Field(default_factory=list)
    capabilities: list[str] = Field(default_factory=list)


class TokenResponse(BaseModel):
    """Access token response from the token endpoint (RFC 6749 §5.1)."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    expires_in: int
    token_type: str = Field(default="Bearer")
    scope: str = Field(default="")
    refresh_token: str | None = Field(default=None)
    id_token: str | None = Field(default=None)


class AuthorizationRequest(BaseModel):
    """Output of the authorization step.

    The caller must persist ``code_verifier`` and ``state`` against the
    pending session until the callback arrives.
    """

    authorize_url: str
    code_verifier: str
    state: str
