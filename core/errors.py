"""Typed exceptions for the invoice engine.

Validation errors subclass ValueError and are raised before any state
changes. Remote errors are only ever seen by the sync worker; the store never
waits on the network.
"""


class InvoiceError(Exception):
    """Base class for invoice engine errors."""


class ItemValidationError(InvoiceError, ValueError):
    """An item input failed a field check. Carries the offending field."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class IncompatibleModeError(InvoiceError, ValueError):
    """
    Regular and buyback items cannot live on the same invoice.

    Raised for adding an item of the other mode, switching the invoice mode
    while it holds items, or setting fields of the other mode on an item.
    """

    def __init__(self, existing_mode: str, requested_mode: str):
        self.existing_mode = existing_mode
        self.requested_mode = requested_mode
        super().__init__(
            f"Cannot mix {requested_mode} items into a {existing_mode} invoice. "
            "Clear the items first."
        )


class NoDraftError(InvoiceError):
    """Operation needs a current draft and there is none."""


class PreviewBlockedError(InvoiceError):
    """Draft is not ready for preview. Maps field name to message."""

    def __init__(self, field_errors: dict[str, str]):
        self.field_errors = dict(field_errors)
        summary = "; ".join(f"{k}: {v}" for k, v in self.field_errors.items())
        super().__init__(f"Invoice is not ready for preview ({summary})")


class QueueStorageError(InvoiceError):
    """The outbox could not durably record an operation."""


# =============================================================================
# REMOTE SERVICE ERRORS
# =============================================================================


class RemoteServiceError(InvoiceError):
    """Base class for failures reported by the remote invoice service."""

    retryable = False


class RemoteUnavailableError(RemoteServiceError):
    """Network failure or 5xx. Safe to retry later."""

    retryable = True


class LimitReachedError(RemoteServiceError):
    """
    Periodic invoice quota is exhausted.

    Retrying cannot succeed until the tier changes or the cycle resets.
    """


class RemoteRejectedError(RemoteServiceError):
    """Request was permanently rejected (4xx other than quota)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
