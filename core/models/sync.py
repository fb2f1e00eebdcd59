"""Outbox entry models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from utils.timezone import now_utc


class SyncAction(str, Enum):
    """What the remote service should do with the entity."""

    UPSERT = "upsert"
    DELETE = "delete"


class EntityType(str, Enum):
    """Kinds of entity the outbox carries."""

    INVOICE = "invoice"


class SyncEntry(BaseModel):
    """
    One pending remote operation.

    The outbox keeps at most one entry per (entity_type, entity_id). A newer
    operation for the same entity replaces the entry with a fresh id, which
    is how a worker holding the old one knows not to remove it.
    """

    id: UUID = Field(default_factory=uuid4)
    action: SyncAction
    entity_type: EntityType
    entity_id: UUID
    data: dict[str, Any] | None = None
    enqueued_at: datetime = Field(default_factory=now_utc)
    retry_count: int = Field(0, ge=0)
    next_attempt_at: datetime | None = None
    last_error: str | None = None

    @property
    def entity_key(self) -> str:
        return f"{self.entity_type.value}:{self.entity_id}"

    def is_due(self, now: datetime) -> bool:
        return self.next_attempt_at is None or self.next_attempt_at <= now


class DrainStats(BaseModel):
    """Result of one pass over the outbox."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
