"""Courier exception hierarchy.

Provides structured exceptions for error handling throughout the engine.
All exceptions inherit from CourierError for easy catching.

Delivery failures (ConfigurationError, TransportError, ApplicationError) are
raised inside the executor and converted to outcomes at its boundary.
ExhaustedRetries and CircuitOpen describe terminal or skipped work and are
logged, never propagated out of the dispatch and retry loops.
"""

from __future__ import annotations


class CourierError(Exception):
    """Base exception for all Courier errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "courier_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(CourierError):
    """Invalid input provided.

    Attributes:
        field: The field that failed validation.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(CourierError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscriber", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(CourierError):
    """Storage operation failed.

    Attributes:
        transient: True for connection drops and lock contention, which
            are safe to retry for idempotent operations.
    """

    code: str = "storage_error"

    def __init__(self, message: str, transient: bool = False) -> None:
        self.transient = transient
        super().__init__(message)


class AuthenticationError(CourierError):
    """Authentication credentials are invalid or missing."""

    code: str = "authentication_error"


class DeliveryError(CourierError):
    """Base class for failures of a single delivery attempt.

    Attributes:
        kind: Classification stored on the delivery record.
        status_code: HTTP status, when a response was received.
        response_body: Response text, when a response was received.
    """

    code: str = "delivery_error"
    kind: str = "transport"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class ConfigurationError(DeliveryError):
    """Subscriber target is malformed (e.g. invalid URL).

    Fails only the affected subscriber's attempt.
    """

    code: str = "configuration_error"
    kind: str = "configuration"


class TransportError(DeliveryError):
    """Network failure or timeout. Retryable."""

    code: str = "transport_error"
    kind: str = "transport"


class ApplicationError(DeliveryError):
    """Subscriber answered with a non-2xx status. Retryable."""

    code: str = "application_error"
    kind: str = "application"


class ExhaustedRetries(CourierError):
    """Delivery reached its retry limit and will not be retried again."""

    code: str = "exhausted_retries"

    def __init__(self, delivery_id: str, retry_count: int) -> None:
        self.delivery_id = delivery_id
        self.retry_count = retry_count
        super().__init__(f"Delivery {delivery_id} exhausted after {retry_count} retries")


class CircuitOpen(CourierError):
    """Subscriber is paused after consecutive failures."""

    code: str = "circuit_open"

    def __init__(self, subscriber_id: str, failure_count: int) -> None:
        self.subscriber_id = subscriber_id
        self.failure_count = failure_count
        super().__init__(
            f"Subscriber {subscriber_id} paused after {failure_count} consecutive failures"
        )


__all__ = [
    "ApplicationError",
    "AuthenticationError",
    "CircuitOpen",
    "ConfigurationError",
    "CourierError",
    "DeliveryError",
    "ExhaustedRetries",
    "NotFoundError",
    "StorageError",
    "TransportError",
    "ValidationError",
]
