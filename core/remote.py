"""Collaborator interfaces the engine consumes but does not implement."""

from typing import Any, Protocol


class RemoteInvoiceService(Protocol):
    """
    Backend that durably stores invoices.

    Must be idempotent on id: a repeated upsert or delete of the same id is
    harmless, which is what makes at-least-once outbox delivery safe.

    Raises (all methods):
        RemoteUnavailableError: Transient, retry later
        LimitReachedError: Periodic quota exhausted
        RemoteRejectedError: Permanent rejection
    """

    def upsert(self, invoice: dict[str, Any], items: list[dict[str, Any]]) -> None: ...

    def delete(self, invoice_id: str) -> None: ...

    def get_next_sequence(self, owner_id: str, date_key: str) -> int: ...

    def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]: ...


class QuotaCheck(Protocol):
    """Subscription signal: may this user finalize another invoice?"""

    def is_limit_reached(self) -> bool: ...
