from fastapi import HTTPException, status


class ForbiddenError(HTTPException):
    """Raised when a caller lacks permission to access a resource."""

    def __init__(self, message: str = "Not authorized to access this resource"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=message,
        )


class ValidationError(HTTPException):
    """Raised when request validation fails."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
        )


class BillingError(Exception):
    """Base class for billing reconciliation failures."""


class ProviderError(BillingError):
    """A Stripe call failed.

    `retryable` is True for network errors, rate limits, 5xx responses and
    timeouts; False for request errors that will fail the same way again.
    """

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ProviderTimeoutError(ProviderError):
    """A Stripe call exceeded the configured timeout."""

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class StoreError(BillingError):
    """A store query or mutation failed."""


class WebhookProcessingError(BillingError):
    """A webhook handler failed; the event was recorded as `error`.

    Surfaced to the endpoint so Stripe receives a non-2xx status and redelivers.
    """

    def __init__(self, event_id: str, event_type: str, message: str):
        super().__init__(f"Failed to process {event_type} ({event_id}): {message}")
        self.event_id = event_id
        self.event_type = event_type
