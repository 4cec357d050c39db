"""
Custom exceptions for the TeleRelay service.

Provides structured error handling with appropriate HTTP status codes
and error details for API responses.
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .transport import RelayResponse


class RelayException(Exception):
    """Base exception for TeleRelay service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ConfigurationError(RelayException):
    """Raised at construction time when relay or sink configuration is invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )


class RequestValidationError(RelayException):
    """Raised when an inbound telemetry request is malformed."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "validation_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )


class InvalidArgumentError(RequestValidationError):
    """Raised when the request body or headers are absent."""

    def __init__(self, argument: str) -> None:
        super().__init__(
            message=f"{argument} is required",
            error_code="invalid_argument",
            details={"argument": argument},
        )


class ContentLengthError(RequestValidationError):
    """Raised when Content-Length is missing, unparsable, non-positive or too large."""

    def __init__(
        self,
        message: str = "headers must have Content-Length with positive integer value",
        status_code: int = 400,
        value: Optional[str] = None,
    ) -> None:
        details = {}
        if value is not None:
            details["content_length"] = value

        super().__init__(
            message=message,
            status_code=status_code,
            error_code="content_length_error",
            details=details,
        )


class EmptyBodyError(RequestValidationError):
    """Raised when the request body is empty after a valid Content-Length."""

    def __init__(self, message: str = "HTTP body must be at least 1 byte") -> None:
        super().__init__(
            message=message,
            error_code="empty_body",
        )


class DecodeError(RelayException):
    """Raised when a telemetry payload cannot be decompressed or parsed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="decode_error",
            details=details,
        )


class TransportError(RelayException):
    """Raised when an outbound HTTP call fails at the network level."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="transport_error",
            details=details,
        )


class DestinationError(RelayException):
    """
    Raised when forwarding to the canonical destination fails.

    When the destination answered with a non-2xx status the response is
    attached so the HTTP layer can relay it to the caller unchanged.
    """

    def __init__(
        self,
        message: str,
        response: Optional["RelayResponse"] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=response.status if response is not None else 502,
            error_code="destination_error",
            details=details,
        )
        self.response = response


class SinkError(RelayException):
    """Raised by a sink when its own replication fails."""

    def __init__(self, message: str, sink: str, details: Optional[Dict[str, Any]] = None) -> None:
        details = dict(details or {})
        details["sink"] = sink
        super().__init__(
            message=message,
            status_code=500,
            error_code="sink_error",
            details=details,
        )
        self.sink = sink
