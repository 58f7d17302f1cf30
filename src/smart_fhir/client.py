"""SMART backend-services client: discovery, token lifecycle and FHIR calls in one object.

Typical use::

    config = ClientConfig.from_env()
    client = SmartClient.init(config)
    patient = client.get("Patient/123")
    for page in client.pages("Observation?patient=123"):
        ...
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from typing import Any, Literal

import requests

from .auth.discovery import DiscoveryClient, check_compatibility
from .auth.models import SmartConfiguration, TokenResponse
from .auth.tokens import TokenManager
from .config import ClientConfig
from .errors import InitializationError, RequestError
from .fhir.fhir_client import FHIRClient
from .fhir.pagination import BundlePaginator
from .fhir.references import ReferenceCache


class SmartClient:
    """Backend-services (client_credentials + private_key_jwt) FHIR client.

    Build it with :meth:`init`, which runs discovery. A client constructed
    directly without a SMART configuration refuses to request tokens.
    """

    def __init__(
        self,
        config: ClientConfig,
        smart_configuration: SmartConfiguration | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not config.private_key:
            raise InitializationError("Invalid ClientConfig: private_key is required for the backend-services flow.")
        self.config = config
        self.smart_configuration = smart_configuration
        self._session = session or requests.Session()
        self._tokens = TokenManager(config, smart_configuration, session=self._session, clock=clock)
        self._fhir: FHIRClient | None = None
        if config.fhir_base_url:
            self._fhir = FHIRClient(
                config.fhir_base_url,
                token_provider=self.get_access_token,
                session=self._session,
                timeout=config.timeout,
            )

    @classmethod
    def init(
        cls,
        config: ClientConfig,
        iss_url: str | None = None,
        session: requests.Session | None = None,
        discovery: DiscoveryClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> "SmartClient":
        """Discover the server's SMART configuration and return a ready client.

        Raises:
            InitializationError: neither ``iss_url`` nor ``config.fhir_base_url``
                is available for discovery.
            DiscoveryError: the well-known document could not be used.
        """
        url = iss_url or config.fhir_base_url
        if not url:
            raise InitializationError(
                "Cannot determine .well-known/smart-configuration URL: "
                "iss_url or fhir_base_url must be provided for discovery."
            )
        session = session or requests.Session()
        discovery = discovery or DiscoveryClient(session=session, timeout=config.timeout)
        smart_configuration = discovery.discover(url)
        check_compatibility(smart_configuration, config.signing_algorithm)
        return cls(config, smart_configuration, session=session, clock=clock)

    @property
    def current_token_response(self) -> TokenResponse | None:
        return self._tokens.current_token_response

    def get_access_token(self, force_refresh: bool = False) -> str:
        return self._tokens.get_access_token(force_refresh=force_refresh)

    @property
    def fhir(self) -> FHIRClient:
        if self.smart_configuration is None:
            raise RequestError("Client not initialized. Call SmartClient.init() first.")
        if self._fhir is None:
            raise RequestError("fhir_base_url is not configured.")
        return self._fhir

    def request(self, method: str, path: str, body: Any = None, **kwargs: Any) -> Any:
        return self.fhir.request(method, path, body=body, **kwargs)

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, body: Any, **kwargs: Any) -> Any:
        return self.request("POST", path, body=body, **kwargs)

    def put(self, path: str, body: Any, **kwargs: Any) -> Any:
        return self.request("PUT", path, body=body, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)

    def patch(self, path: str, operations: list[dict]) -> Any:
        return self.fhir.patch(path, operations)

    def fetch_references(
        self,
        resource: dict,
        paths: list[str],
        mode: Literal["graph", "flat"] = "graph",
    ) -> ReferenceCache:
        return self.fhir.fetch_references(resource, paths, mode=mode)

    def resolve_references(self, resource: dict, paths: list[str]) -> dict:
        return self.fhir.resolve_references(resource, paths)

    def get_references(self, resource: dict, paths: list[str]) -> dict[str, Any]:
        return self.fhir.get_references(resource, paths)

    def pages(
        self,
        bundle_or_url: dict | str,
        limit: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BundlePaginator:
        return self.fhir.pages(bundle_or_url, limit=limit, cancel_event=cancel_event)

    def resources(
        self,
        bundle_or_url: dict | str,
        limit: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[dict]:
        return self.fhir.resources(bundle_or_url, limit=limit, cancel_event=cancel_event)
