"""FHIR R4 REST client with bearer-token injection and a single retry on 401."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import Any, Literal, Protocol

import requests

from ..config import DEFAULT_TIMEOUT
from ..errors import AuthenticationError, InitializationError, RequestError
from .pagination import BundlePaginator, iter_resources
from .references import ReferenceCache, ReferenceResolver

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"
JSON_PATCH = "application/json-patch+json; charset=UTF-8"
JSON_PATCH_OPS = {"add", "remove", "replace", "move", "copy", "test"}

# CapabilityStatement.fhirVersion -> release number
FHIR_RELEASES = {
    "0.4.0": 2,
    "0.5.0": 2,
    "1.0.0": 2,
    "1.0.1": 2,
    "1.0.2": 2,
    "1.1.0": 3,
    "1.4.0": 3,
    "1.6.0": 3,
    "1.8.0": 3,
    "3.0.0": 3,
    "3.0.1": 3,
    "3.0.2": 3,
    "3.3.0": 4,
    "3.5.0": 4,
    "4.0.0": 4,
    "4.0.1": 4,
    "4.3.0": 4,
    "5.0.0": 5,
}


class TokenProvider(Protocol):
    def __call__(self, force_refresh: bool = False) -> str: ...


class FHIRClient:
    """FHIR R4 REST client.

    When a ``token_provider`` is given, every call carries
    ``Authorization: Bearer <token>``. A 401 triggers exactly one forced
    token refresh and retry.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider | None = None,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = 8,
    ) -> None:
        if not base_url or not base_url.startswith(("http://", "https://")):
            raise InitializationError('A "base_url" is required and must begin with "http(s)".')
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._session = session or requests.Session()
        self._timeout = timeout
        self._resolver = ReferenceResolver(self.read, max_workers=max_workers)

    def absolute_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Execute a FHIR call and return the parsed JSON body (None if empty).

        Raises:
            AuthenticationError: the token could not be obtained, or the
                server still answered 401 after one forced refresh.
            RequestError: any other non-2xx status or a transport failure.
        """
        url = self.absolute_url(path)
        force_refresh = False
        while True:
            token = self._get_token(force_refresh)
            response = self._send(method, url, path, body, headers, params, token)
            if response.status_code != 401 or self._token_provider is None:
                return _handle_response(response, path)
            if force_refresh:
                raise AuthenticationError(
                    f"Authentication failed during retry: '{path}' still returned 401 after token refresh.",
                    details=response.text,
                )
            logger.info("Received 401 for %s %s; refreshing access token and retrying once", method, path)
            force_refresh = True

    def _get_token(self, force_refresh: bool) -> str | None:
        if self._token_provider is None:
            return None
        if not force_refresh:
            return self._token_provider()
        try:
            return self._token_provider(force_refresh=True)
        except AuthenticationError as exc:
            raise AuthenticationError(f"Authentication failed during retry: {exc.message}", cause=exc) from exc

    def _send(
        self,
        method: str,
        url: str,
        path: str,
        body: Any,
        headers: dict[str, str] | None,
        params: dict[str, Any] | None,
        token: str | None,
    ) -> requests.Response:
        request_headers = {"Accept": FHIR_JSON}
        if body is not None:
            request_headers["Content-Type"] = FHIR_JSON
        if headers:
            request_headers.update(headers)
        if token:
            request_headers["Authorization"] = f"Bearer {token}"
        try:
            return self._session.request(
                method.upper(),
                url,
                json=body,
                headers=request_headers,
                params=params,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise RequestError(f"FHIR API request to '{path}' failed: {exc}", cause=exc) from exc

    def read(self, path: str) -> Any:
        return self.request("GET", path)

    def search(self, resource_type: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", resource_type, params=params)

    def create(self, resource: dict, headers: dict[str, str] | None = None) -> Any:
        return self.request("POST", resource["resourceType"], body=resource, headers=headers)

    def update(self, resource: dict, headers: dict[str, str] | None = None) -> Any:
        return self.request("PUT", f"{resource['resourceType']}/{resource['id']}", body=resource, headers=headers)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def patch(self, path: str, operations: list[dict]) -> Any:
        """Apply a JSON Patch (RFC 6902) to the resource at ``path``."""
        validate_json_patch(operations)
        return self.request(
            "PATCH",
            path,
            body=operations,
            headers={"Content-Type": JSON_PATCH, "Prefer": "return=presentation"},
        )

    def get_fhir_version(self) -> str | None:
        metadata = self.read("metadata")
        return (metadata or {}).get("fhirVersion")

    def get_fhir_release(self) -> int:
        """2 for DSTU2, 3 for STU3, 4 for R4, 5 for R5, 0 if unknown."""
        return FHIR_RELEASES.get(self.get_fhir_version() or "", 0)

    # -- references ----------------------------------------------------------

    def fetch_references(
        self,
        resource: dict,
        paths: list[str],
        mode: Literal["graph", "flat"] = "graph",
    ) -> ReferenceCache:
        return self._resolver.fetch_references(resource, paths, mode=mode)

    def resolve_references(self, resource: dict, paths: list[str]) -> dict:
        """Mount the referenced resources in place of their Reference nodes."""
        return self._resolver.resolve_references(resource, paths)

    def get_references(self, resource: dict, paths: list[str]) -> dict[str, Any]:
        """Return ``{reference: resource}`` without modifying ``resource``."""
        return self._resolver.get_references(resource, paths)

    # -- paging --------------------------------------------------------------

    def pages(
        self,
        bundle_or_url: dict | str,
        limit: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BundlePaginator:
        return BundlePaginator(self.read, bundle_or_url, limit=limit, cancel_event=cancel_event)

    def resources(
        self,
        bundle_or_url: dict | str,
        limit: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[dict]:
        return iter_resources(self.read, bundle_or_url, limit=limit, cancel_event=cancel_event)


def validate_json_patch(operations: Any) -> None:
    if not isinstance(operations, list) or not operations:
        raise ValueError("The JSON patch must be a non-empty list of operations")
    for operation in operations:
        if not isinstance(operation, dict):
            raise ValueError("Each JSON patch operation must be an object")
        op = operation.get("op")
        if op not in JSON_PATCH_OPS:
            raise ValueError(f"Invalid JSON patch operation {op!r}")
        if not isinstance(operation.get("path"), str):
            raise ValueError(f"Invalid JSON patch path in {operation!r}")
        if op in {"add", "replace", "test"} and "value" not in operation:
            raise ValueError(f"Missing value in JSON patch {op!r} operation")
        if op in {"move", "copy"} and not isinstance(operation.get("from"), str):
            raise ValueError(f"Missing from in JSON patch {op!r} operation")


def _handle_response(response: requests.Response, path: str) -> Any:
    status = response.status_code
    if 200 <= status < 300:
        if status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RequestError(
                f"FHIR API response for '{path}' is not valid JSON", status=status, cause=exc
            ) from exc

    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("resourceType") == "OperationOutcome":
        issues = payload.get("issue")
        issue = issues[0] if isinstance(issues, list) and issues and isinstance(issues[0], dict) else {}
        raise RequestError(
            f"FHIR API error for '{path}' (Status {status}): "
            f"[{issue.get('severity')}/{issue.get('code')}] {issue.get('diagnostics')}",
            status=status,
            outcome=payload,
        )
    raise RequestError(
        f"FHIR API request to '{path}' failed with status {status}: {response.text}",
        status=status,
        details=response.text,
    )
