"""Error taxonomy for SMART client operations."""

from __future__ import annotations

from typing import Any


class SmartClientError(Exception):
    """Base class for every error raised by this package."""

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.details = details
        if cause is not None:
            self.__cause__ = cause


class InitializationError(SmartClientError):
    """Invalid configuration detected at construction time."""


class DiscoveryError(SmartClientError):
    """The .well-known/smart-configuration document could not be used."""


class AuthenticationError(SmartClientError):
    """State/code mismatch, signing failure, token endpoint rejection or a 401 after retry."""


class RequestError(SmartClientError):
    """A FHIR API call returned a non-2xx status or failed in transport.

    ``status`` is None for transport failures. ``outcome`` holds the parsed
    OperationOutcome when the server returned one.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        outcome: dict | None = None,
        cause: BaseException | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, cause=cause, details=details)
        self.status = status
        self.outcome = outcome
