"""
Domain events for the invoice engine.

Immutable event objects that represent things that already happened. The
store publishes what it changed locally; the sync worker publishes what the
remote service did with it. Listeners (the view controller, the store
itself) react without the publisher knowing who is listening.

Event Categories:
- InvoiceEvent: Local invoice lifecycle (completed, deleted)
- SyncEvent: Remote delivery outcome (synced, rejected, quota reached)
- ConnectivityRestored: The app went back online
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Base class for all invoice engine events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(DomainEvent):
    """Events related to the local invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceCompleted(InvoiceEvent):
    """A draft was saved into the completed collection and queued."""
    invoice: Any = None  # Invoice; Any avoids a circular import

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCompleted":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceDeleted(InvoiceEvent):
    """A completed invoice was removed locally and its delete queued."""
    invoice_id: UUID | None = None

    @classmethod
    def create(cls, invoice_id: UUID) -> "InvoiceDeleted":
        return cls(invoice_id=invoice_id)


# =============================================================================
# SYNC EVENTS
# =============================================================================


@dataclass(frozen=True)
class SyncEvent(DomainEvent):
    """Events related to remote delivery of outbox entries."""
    entry: Any = None  # SyncEntry

    @classmethod
    def create(cls, entry: Any, **kwargs) -> "SyncEvent":
        return cls(entry=entry, **kwargs)


@dataclass(frozen=True)
class InvoiceSynced(SyncEvent):
    """The remote service acknowledged an upsert or delete."""
    pass


@dataclass(frozen=True)
class SyncRetryScheduled(SyncEvent):
    """Delivery failed transiently; the entry stays queued for retry."""
    error: str = ""


@dataclass(frozen=True)
class SyncLimitReached(SyncEvent):
    """The remote quota is exhausted. Not retried."""
    error: str = ""


@dataclass(frozen=True)
class SyncRejected(SyncEvent):
    """The remote service permanently rejected the entry. Not retried."""
    error: str = ""


# =============================================================================
# CONNECTIVITY
# =============================================================================


@dataclass(frozen=True)
class ConnectivityRestored(DomainEvent):
    """The store was switched from offline back to online."""
    pass
