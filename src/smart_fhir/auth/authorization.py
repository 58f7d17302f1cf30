"""Interactive SMART authorization-code flow with PKCE.

  1. ``authorize()`` builds the authorization URL and hands back the PKCE
     verifier and state. The caller persists both (e.g. signed cookies).
  2. The user agent returns to ``redirect_uri`` with ``code`` and ``state``.
  3. ``exchange()`` checks ``state``, trades the code for a token and
     returns an :class:`AuthenticatedSession`.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import parse_qs, urlencode, urlsplit

import jwt
import requests

from ..config import ClientConfig
from ..errors import AuthenticationError, DiscoveryError, InitializationError
from ..fhir.fhir_client import FHIRClient
from .discovery import DiscoveryClient
from .models import AuthorizationRequest, SmartConfiguration, TokenResponse
from .pkce import create_pkce_challenge, generate_state
from .tokens import TokenManager

logger = logging.getLogger(__name__)


class AuthenticatedSession:
    """Result of a completed authorization-code exchange.

    Every request made through :meth:`fhir_client` carries the session's
    access token as a bearer header.
    """

    def __init__(
        self,
        server_url: str,
        token_response: TokenResponse,
        token_manager: TokenManager | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
        issued_at: float | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.token_response = token_response
        self._token_manager = token_manager
        self._session = session
        self._timeout = timeout
        self.issued_at = time.time() if issued_at is None else issued_at

    @property
    def access_token(self) -> str:
        return self.token_response.access_token

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.token_response.expires_in

    @property
    def claims(self) -> dict[str, Any]:
        """Best-effort decode of ``id_token``.

        The signature is NOT verified. Treat the claims as hints about the
        principal, never as proof of identity.
        """
        id_token = self.token_response.id_token
        if not id_token:
            return {}
        try:
            return jwt.decode(id_token, options={"verify_signature": False})
        except jwt.PyJWTError as exc:
            logger.warning("Could not decode id_token: %s", exc)
            return {}

    def get_access_token(self, force_refresh: bool = False) -> str:
        """Token provider for :class:`FHIRClient`.

        A forced refresh uses the refresh token when the server issued one.
        """
        if not force_refresh:
            return self.access_token
        refresh_token = self.token_response.refresh_token
        if not refresh_token or self._token_manager is None:
            raise AuthenticationError("Access token rejected and no refresh token is available.")
        self.token_response = self._token_manager.refresh(refresh_token)
        self.issued_at = time.time()
        return self.access_token

    def fhir_client(self) -> FHIRClient:
        kwargs: dict[str, Any] = {}
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        return FHIRClient(self.server_url, token_provider=self.get_access_token, session=self._session, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for an external session store."""
        return {
            "serverUrl": self.server_url,
            "tokenResponse": self.token_response.model_dump(exclude_none=True),
            "issuedAt": self.issued_at,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        token_manager: TokenManager | None = None,
        session: requests.Session | None = None,
    ) -> "AuthenticatedSession":
        try:
            token_response = TokenResponse.model_validate(data["tokenResponse"])
            server_url = data["serverUrl"]
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthenticationError(f"Invalid stored session: {exc}", cause=exc) from exc
        return cls(
            server_url,
            token_response,
            token_manager=token_manager,
            session=session,
            issued_at=data.get("issuedAt"),
        )


class AuthorizationCodeFlow:
    """Initiates and finalizes the SMART authorization-code + PKCE flow."""

    def __init__(
        self,
        config: ClientConfig,
        discovery: DiscoveryClient | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not config.redirect_uri:
            raise InitializationError("redirect_uri is required for the authorization-code flow.")
        self._config = config
        self._session = session or requests.Session()
        self._discovery = discovery or DiscoveryClient(session=self._session, timeout=config.timeout)

    def smart_configuration(self) -> SmartConfiguration:
        return self._discovery.discover(self._config.issuer)

    def authorize(
        self,
        scope: str | None = None,
        launch: str | None = None,
        aud: str | None = None,
    ) -> AuthorizationRequest:
        """Build the authorization URL plus the verifier/state the caller must persist.

        Raises:
            DiscoveryError: discovery failed or the server has no
                authorization_endpoint.
        """
        configuration = self.smart_configuration()
        if not configuration.authorization_endpoint:
            raise DiscoveryError("Invalid SMART configuration: authorization_endpoint is missing.")

        pkce = create_pkce_challenge()
        state = generate_state()
        params = {
            "response_type": "code",
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "scope": scope or self._config.scope,
            "state": state,
            "aud": aud or self._config.issuer,
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": pkce.code_challenge_method,
        }
        if launch:
            params["launch"] = launch

        separator = "&" if "?" in configuration.authorization_endpoint else "?"
        authorize_url = f"{configuration.authorization_endpoint}{separator}{urlencode(params)}"
        return AuthorizationRequest(authorize_url=authorize_url, code_verifier=pkce.code_verifier, state=state)

    def exchange(self, request: Any, expected_state: str, code_verifier: str) -> AuthenticatedSession:
        """Finalize the flow from the callback request.

        ``request`` is the callback URL, or any object with a ``url``
        attribute. The state check happens before any network call.
        """
        url = request if isinstance(request, str) else getattr(request, "url", "")
        query = parse_qs(urlsplit(str(url)).query)
        code = (query.get("code") or [None])[0]
        state = (query.get("state") or [None])[0]

        if not expected_state or state != expected_state:
            raise AuthenticationError("Invalid state")
        if not code:
            raise AuthenticationError("Missing code")

        token_manager = TokenManager(self._config, self.smart_configuration(), session=self._session)
        token_response = token_manager.exchange_authorization_code(
            code=code,
            code_verifier=code_verifier,
            redirect_uri=self._config.redirect_uri or "",
        )
        logger.info("Authorization code exchanged for access token (scope=%s)", token_response.scope)
        return AuthenticatedSession(
            self._config.fhir_base_url or self._config.issuer,
            token_response,
            token_manager=token_manager,
            session=self._session,
            timeout=self._config.timeout,
        )
