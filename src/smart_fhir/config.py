"""Client configuration for the SMART backend-services and authorization-code flows."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InitializationError

DEFAULT_SIGNING_ALGORITHM = "RS384"
DEFAULT_JWT_LIFETIME = 300
DEFAULT_TIMEOUT = 30.0
DEFAULT_TOKEN_EXPIRY_MARGIN = 60

KeyFormat = Literal["pem", "jwk"]


def sniff_key_format(private_key: str) -> KeyFormat:
    """Return "jwk" when the key material is a JSON object, "pem" otherwise."""
    try:
        parsed = json.loads(private_key)
    except (TypeError, ValueError):
        return "pem"
    return "jwk" if isinstance(parsed, dict) else "pem"


class ClientConfig(BaseModel):
    """Immutable SMART client configuration.

    ``issuer`` is the ``iss`` of the client. For the asymmetric backend flow
    (``private_key`` set) it must be identical to ``client_id``. For the
    interactive flow it is the FHIR server URL and is sent as ``aud``.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(..., description="OAuth2 client_id issued at registration")
    issuer: str = Field(..., description="iss claim / launch issuer")
    scope: str = Field(..., description="Space-separated scopes to request")
    redirect_uri: str | None = Field(default=None, description="Callback URL for the interactive flow")
    fhir_base_url: str | None = Field(default=None, description="Base URL of the FHIR server")
    private_key: str | None = Field(default=None, repr=False, description="PEM text or JWK JSON")
    key_format: KeyFormat | None = Field(default=None, description="Declared format of private_key")
    signing_algorithm: str = Field(default=DEFAULT_SIGNING_ALGORITHM)
    jwt_lifetime: int = Field(default=DEFAULT_JWT_LIFETIME, description="Assertion lifetime in seconds")
    kid: str | None = Field(default=None, description="Key id placed in the JWT header")
    jwks_url: str | None = Field(default=None, description="JWKS URL placed in the JWT header as jku")
    timeout: float = Field(default=DEFAULT_TIMEOUT, description="Per-request HTTP timeout in seconds")
    token_expiry_margin: int = Field(
        default=DEFAULT_TOKEN_EXPIRY_MARGIN,
        description="Seconds before expires_in at which a cached token is treated as expired",
    )

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise InitializationError(f"Invalid ClientConfig: {exc}", cause=exc) from exc

    @model_validator(mode="before")
    @classmethod
    def _resolve_key_format(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("private_key") and not data.get("key_format"):
            data = {**data, "key_format": sniff_key_format(data["private_key"])}
        return data

    @model_validator(mode="after")
    def _check_invariants(self) -> "ClientConfig":
        if not (self.client_id and self.issuer and self.scope):
            raise InitializationError("Invalid ClientConfig: client_id, issuer, and scope are required.")
        if self.private_key and self.issuer != self.client_id:
            raise InitializationError(
                "Invalid ClientConfig: issuer and client_id must be identical for this authentication flow."
            )
        if self.jwt_lifetime <= 0:
            raise InitializationError("Invalid ClientConfig: jwt_lifetime must be positive.")
        if self.fhir_base_url and not self.fhir_base_url.startswith(("http://", "https://")):
            raise InitializationError('Invalid ClientConfig: fhir_base_url must begin with "http(s)".')
        return self

    @property
    def is_backend(self) -> bool:
        return bool(self.private_key)

    @classmethod
    def from_env(cls, prefix: str = "SMART_", environ: dict[str, str] | None = None) -> "ClientConfig":
        """Build a config from ``SMART_*`` environment variables.

        ``SMART_PRIVATE_KEY`` takes precedence over ``SMART_PRIVATE_KEY_PATH``.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            return env.get(f"{prefix}{name}") or None

        private_key = get("PRIVATE_KEY")
        key_path = get("PRIVATE_KEY_PATH")
        if private_key is None and key_path is not None:
            private_key = Path(key_path).read_text()

        data: dict[str, Any] = {
            "client_id": get("CLIENT_ID") or "",
            "issuer": get("ISS") or get("CLIENT_ID") or "",
            "scope": get("SCOPE") or "",
            "redirect_uri": get("REDIRECT_URI"),
            "fhir_base_url": get("FHIR_BASE_URL"),
            "private_key": private_key,
            "key_format": get("KEY_FORMAT"),
            "kid": get("KID"),
            "jwks_url": get("JWKS_URL"),
        }
        if get("SIGNING_ALGORITHM"):
            data["signing_algorithm"] = get("SIGNING_ALGORITHM")
        if get("JWT_LIFETIME"):
            data["jwt_lifetime"] = get("JWT_LIFETIME")
        if get("TIMEOUT"):
            data["timeout"] = get("TIMEOUT")
        return cls(**data)
