"""Token lifecycle: token endpoint exchanges and the cached access token.

One :class:`TokenManager` owns at most one cached token. Forced refreshes
issued concurrently are not serialized; the response that lands last
overwrites the cache. Any unexpired token is acceptable to the server, so
the race only costs an extra round trip.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import requests
from pydantic import BaseModel, ValidationError

from ..config import ClientConfig
from ..errors import AuthenticationError
from .assertion import CLIENT_ASSERTION_TYPE, AssertionSigner
from .models import SmartConfiguration, TokenResponse

logger = logging.getLogger(__name__)

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}
# Used when an authorization_code / refresh_token response omits expires_in.
DEFAULT_INTERACTIVE_EXPIRES_IN = 3600


class CachedToken(BaseModel):
    access_token: str
    expires_at: float
    response: TokenResponse

    def is_valid(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


class TokenManager:
    """Drives token endpoint exchanges and caches the resulting access token."""

    def __init__(
        self,
        config: ClientConfig,
        smart_configuration: SmartConfiguration | None,
        session: requests.Session | None = None,
        signer: AssertionSigner | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._smart_configuration = smart_configuration
        self._session = session or requests.Session()
        self._signer = signer or AssertionSigner(clock=clock)
        self._clock = clock
        self._token: CachedToken | None = None

    @property
    def token_endpoint(self) -> str:
        if self._smart_configuration is None or not self._smart_configuration.token_endpoint:
            raise AuthenticationError("SmartClient not properly initialized or token_endpoint is missing.")
        return self._smart_configuration.token_endpoint

    @property
    def current_token_response(self) -> TokenResponse | None:
        return self._token.response if self._token else None

    def invalidate(self) -> None:
        self._token = None

    def get_access_token(self, force_refresh: bool = False) -> str:
        """Return a bearer token for the backend-services flow.

        A cached, unexpired token is returned without a network call unless
        ``force_refresh`` is set. Otherwise a new client assertion is signed
        and exchanged at the token endpoint.
        """
        cached = self._token
        if (
            not force_refresh
            and cached is not None
            and cached.is_valid(self._clock(), self._margin(cached.response.expires_in))
        ):
            logger.debug("Reusing cached access token")
            return cached.access_token

        token_endpoint = self.token_endpoint
        assertion = self._signer.sign(self._config, token_endpoint)
        response = self._post(
            {
                "grant_type": "client_credentials",
                "client_assertion_type": CLIENT_ASSERTION_TYPE,
                "client_assertion": assertion,
                "scope": self._config.scope,
            },
            failure="Failed to obtain access token",
            require_expiry=True,
        )
        logger.info("Obtained access token via client_credentials (expires_in=%s)", response.expires_in)
        return response.access_token

    def exchange_authorization_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenResponse:
        return self._post(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self._config.client_id,
                "code_verifier": code_verifier,
            },
            failure="Failed to exchange authorization code",
            require_expiry=False,
        )

    def refresh(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token (interactive sessions only)."""
        return self._post(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._config.client_id,
            },
            failure="Failed to refresh access token",
            require_expiry=False,
        )

    def _margin(self, expires_in: int) -> float:
        # Short-lived tokens would otherwise never be served from cache.
        return min(self._config.token_expiry_margin, expires_in / 2)

    def _post(self, data: dict[str, str], failure: str, require_expiry: bool) -> TokenResponse:
        token_endpoint = self.token_endpoint
        try:
            response = self._session.post(
                token_endpoint,
                data=data,
                headers=dict(_FORM_HEADERS),
                timeout=self._config.timeout,
            )
        except requests.RequestException as exc:
            raise AuthenticationError(f"{failure}: {exc}", cause=exc) from exc

        if not 200 <= response.status_code < 300:
            raise AuthenticationError(f"{failure}: {_describe_token_error(response)}", details=response.text)

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthenticationError(f"{failure}: token endpoint returned a non-JSON body", cause=exc) from exc

        token = _parse_token_response(payload, require_expiry)
        now = self._clock()
        self._token = CachedToken(access_token=token.access_token, expires_at=now + token.expires_in, response=token)
        return token


def _parse_token_response(payload: object, require_expiry: bool) -> TokenResponse:
    invalid = AuthenticationError(
        "Received invalid token response from server: access_token or expires_in missing/invalid.",
        details=payload,
    )
    if not isinstance(payload, dict):
        raise invalid
    access_token = payload.get("access_token")
    expires_in = payload.get("expires_in")
    if not isinstance(access_token, str) or not access_token:
        raise invalid
    if expires_in is None and not require_expiry:
        expires_in = DEFAULT_INTERACTIVE_EXPIRES_IN
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in <= 0:
        raise invalid
    try:
        return TokenResponse.model_validate({**payload, "expires_in": int(expires_in)})
    except ValidationError as exc:
        raise AuthenticationError(f"Received invalid token response from server: {exc}", cause=exc) from exc


def _describe_token_error(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        description = body.get("error_description") or body["error"]
        return f"{description} (Code: {body['error']})"
    return f"HTTP {response.status_code}: {response.text}"
