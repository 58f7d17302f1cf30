"""Signed client assertions for the SMART backend-services flow (private_key_jwt).

The assertion is a short-lived JWT:
  header  {alg, typ: "JWT", kid?, jku?}
  claims  {iss, sub: client_id, aud: token endpoint, jti, iat, exp}
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable
from typing import Any

import jwt

from ..config import ClientConfig
from ..errors import AuthenticationError

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


class AssertionSigner:
    """Builds and signs client-assertion JWTs from a :class:`ClientConfig`."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        jti_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._clock = clock
        self._jti_factory = jti_factory

    def sign(self, config: ClientConfig, audience: str) -> str:
        """Return the compact serialization of a fresh assertion for ``audience``.

        Raises:
            AuthenticationError: the key could not be loaded or signing failed.
        """
        if not config.private_key:
            raise AuthenticationError("Cannot sign client assertion: no private key configured.")

        now = int(self._clock())
        claims = {
            "iss": config.client_id,
            "sub": config.client_id,
            "aud": audience,
            "jti": self._jti_factory(),
            "iat": now,
            "exp": now + config.jwt_lifetime,
        }
        headers: dict[str, Any] = {"typ": "JWT"}
        if config.kid:
            headers["kid"] = config.kid
        if config.jwks_url:
            headers["jku"] = config.jwks_url

        try:
            key = _load_key(config)
            return jwt.encode(claims, key, algorithm=config.signing_algorithm, headers=headers)
        except (jwt.PyJWTError, NotImplementedError, ValueError, TypeError) as exc:
            raise AuthenticationError(f"Failed to sign client assertion: {exc}", cause=exc) from exc


def _load_key(config: ClientConfig) -> Any:
    if config.key_format == "jwk":
        jwk = json.loads(config.private_key or "")
        return jwt.PyJWK(jwk, algorithm=config.signing_algorithm).key
    # PyJWT loads PEM / PKCS8 text itself.
    return config.private_key


def sign_client_assertion(config: ClientConfig, audience: str) -> str:
    return AssertionSigner().sign(config, audience)
