"""Structured results for store operations that touch the outbox."""

from enum import Enum

from pydantic import BaseModel


class ErrorKind(str, Enum):
    """Machine-readable reason an operation failed."""

    NO_DRAFT = "no_draft"
    NOT_FOUND = "not_found"
    LIMIT_REACHED = "limit_reached"
    ENQUEUE_FAILED = "enqueue_failed"


class OperationResult(BaseModel):
    """
    Outcome of save_completed / delete_completed.

    success reflects whether the operation was recorded locally and queued,
    not whether the remote service has it yet.
    """

    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls) -> "OperationResult":
        return cls(success=True)

    @classmethod
    def failed(cls, kind: ErrorKind, message: str) -> "OperationResult":
        return cls(success=False, error=message, error_kind=kind)
