"""PKCE (RFC 7636) verifier/challenge generation and CSRF state tokens."""

from __future__ import annotations

import base64
import hashlib
import secrets

from pydantic import BaseModel, Field

DEFAULT_VERIFIER_BYTES = 32
DEFAULT_STATE_BYTES = 16


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_verifier(length: int = DEFAULT_VERIFIER_BYTES) -> str:
    """Return ``length`` random bytes encoded as unpadded base64url."""
    return _b64url(secrets.token_bytes(length))


def derive_challenge(verifier: str) -> str:
    """S256 challenge: unpadded base64url of SHA-256 over the UTF-8 verifier."""
    return _b64url(hashlib.sha256(verifier.encode("utf-8")).digest())


def generate_state(length: int = DEFAULT_STATE_BYTES) -> str:
    """Opaque random value for the OAuth2 ``state`` parameter."""
    return _b64url(secrets.token_bytes(length))


class PkceChallenge(BaseModel):
    """A verifier and the challenge derived from it."""

    code_verifier: str = Field(..., description="Single-use secret kept by the caller until exchange")
    code_challenge: str = Field(..., description="Sent on the authorization request")
    code_challenge_method: str = Field(default="S256")


def create_pkce_challenge(length: int = DEFAULT_VERIFIER_BYTES) -> PkceChallenge:
    verifier = generate_verifier(length)
    return PkceChallenge(code_verifier=verifier, code_challenge=derive_challenge(verifier))
