"""SMART on FHIR client: backend-services and authorization-code flows, FHIR REST helpers."""

from .client import SmartClient
from .config import ClientConfig
from .errors import (
    AuthenticationError,
    DiscoveryError,
    InitializationError,
    RequestError,
    SmartClientError,
)

__all__ = [
    "SmartClient",
    "ClientConfig",
    "SmartClientError",
    "InitializationError",
    "DiscoveryError",
    "AuthenticationError",
    "RequestError",
]

__version__ = "0.1.0"
