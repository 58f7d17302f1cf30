"""SMART discovery: fetch and validate ``.well-known/smart-configuration``."""

from __future__ import annotations

import logging
import threading
from urllib.parse import urlsplit

import requests
from pydantic import ValidationError

from ..config import DEFAULT_TIMEOUT
from ..errors import DiscoveryError
from .models import SmartConfiguration

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/smart-configuration"
PRIVATE_KEY_JWT = "private_key_jwt"


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` of ``url``, dropping any path."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise DiscoveryError(f"Cannot derive an origin from {url!r}")
    return f"{parts.scheme}://{parts.netloc}"


def well_known_url(issuer_or_base_url: str) -> str:
    return origin_of(issuer_or_base_url) + WELL_KNOWN_PATH


class DiscoveryClient:
    """Fetches SMART configuration documents and caches them per origin."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout
        self._cache: dict[str, SmartConfiguration] = {}
        self._lock = threading.Lock()

    def discover(self, issuer_or_base_url: str) -> SmartConfiguration:
        """Return the SMART configuration for the server at ``issuer_or_base_url``.

        Raises:
            DiscoveryError: transport failure, non-2xx status, a body that is
                not a JSON object, or a missing ``token_endpoint``.
        """
        url = well_known_url(issuer_or_base_url)
        with self._lock:
            cached = self._cache.get(url)
        if cached is not None:
            logger.debug("Using cached SMART configuration for %s", url)
            return cached

        try:
            response = self._session.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise DiscoveryError(f"Failed to fetch SMART configuration from {url}: {exc}", cause=exc) from exc

        if not 200 <= response.status_code < 300:
            raise DiscoveryError(
                f"Failed to fetch SMART configuration from {url}: HTTP {response.status_code}",
                details=response.text,
            )

        try:
            document = response.json()
        except ValueError as exc:
            raise DiscoveryError(f"SMART configuration at {url} is not valid JSON", cause=exc) from exc
        if not isinstance(document, dict):
            raise DiscoveryError(f"SMART configuration at {url} is not a JSON object")
        if not document.get("token_endpoint"):
            raise DiscoveryError("Invalid SMART configuration: token_endpoint is missing.")

        try:
            configuration = SmartConfiguration.model_validate(document)
        except ValidationError as exc:
            raise DiscoveryError(f"Invalid SMART configuration at {url}: {exc}", cause=exc) from exc

        logger.info("Discovered SMART configuration at %s", url)
        with self._lock:
            self._cache[url] = configuration
        return configuration

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()


def check_compatibility(configuration: SmartConfiguration, signing_algorithm: str) -> list[str]:
    """Log (and return) warnings about backend-flow support advertised by the server.

    Nothing here is enforced: servers frequently omit these members.
    """
    warnings: list[str] = []
    methods = configuration.token_endpoint_auth_methods_supported
    if methods is not None and PRIVATE_KEY_JWT not in methods:
        warnings.append(
            "Server does not explicitly list 'private_key_jwt' in "
            "token_endpoint_auth_methods_supported; asymmetric client authentication may fail."
        )
    algorithms = configuration.token_endpoint_auth_signing_alg_values_supported
    if algorithms is not None and signing_algorithm not in algorithms:
        warnings.append(
            f"The configured signing algorithm '{signing_algorithm}' is not listed in server's "
            f"token_endpoint_auth_signing_alg_values_supported ({', '.join(algorithms)})."
        )
    for message in warnings:
        logger.warning(message)
    return warnings
