"""
Durable storage for the invoice store's state.

The store never touches storage directly: it is handed a StatePersistence
and calls load() once at startup and save() after each mutation. The
backend is any KeyValueStore (JsonFileStore, ValkeyStore).
"""

import logging
from typing import Any, Protocol

from pydantic import BaseModel, Field

from core.models import Invoice

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """JSON document store shared by state persistence and the outbox."""

    def get_json(self, key: str) -> Any: ...

    def set_json(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...


class StoreSnapshot(BaseModel):
    """Everything the invoice store keeps across restarts."""

    current_invoice: Invoice | None = None
    completed_invoices: list[Invoice] = Field(default_factory=list)
    user_id: str | None = None
    is_offline: bool = False
    buyback_rate: int = Field(0, ge=0)
    limit_reached: bool = False


class StatePersistence:
    """Load/save the store snapshot under one key."""

    def __init__(self, backend: KeyValueStore, key: str = "invoice-store"):
        self.backend = backend
        self.key = key

    def load(self) -> StoreSnapshot:
        """
        Read the last saved snapshot.

        Returns:
            Saved snapshot, or an empty one on first run

        Raises:
            ValueError / pydantic.ValidationError: If stored data is corrupt
        """
        data = self.backend.get_json(self.key)
        if data is None:
            logger.info("No saved invoice state, starting empty")
            return StoreSnapshot()
        return StoreSnapshot.model_validate(data)

    def save(self, snapshot: StoreSnapshot) -> None:
        """
        Replace the saved snapshot.

        Raises:
            Whatever the backend raises on write failure
        """
        self.backend.set_json(self.key, snapshot.model_dump(mode="json"))

    def clear(self) -> None:
        self.backend.delete(self.key)
