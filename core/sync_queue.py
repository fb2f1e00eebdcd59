"""
Durable outbox of pending remote operations.

Holds at most one entry per entity: enqueueing for an entity that already
has a waiting entry replaces it in place (last write wins), so the remote
service only ever receives the final intended state. Because there is never
more than one entry per entity, operations on the same entity cannot
overtake each other. Entries for different entities may be delivered in any
order.

The queue is stored through a KeyValueStore on every change, so it
survives restarts and offline periods.
"""

import logging
import threading
from datetime import datetime
from typing import Any
from uuid import UUID

from core.errors import QueueStorageError
from core.models import EntityType, SyncAction, SyncEntry
from core.persistence import KeyValueStore

logger = logging.getLogger(__name__)


class SyncQueue:
    """
    Ordered, coalescing outbox.

    Safe to use from the UI thread and the sync worker thread at once.

    Usage:
        queue = SyncQueue(JsonFileStore(data_dir))
        queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice.id, payload)
        for entry in queue.due_entries(now_utc()):
            ...
            queue.remove(entry.id)
    """

    def __init__(self, backend: KeyValueStore, key: str = "outbox"):
        self.backend = backend
        self.key = key
        self.dead_letter_key = f"{key}-dead"
        self._lock = threading.RLock()

    def _read(self, key: str) -> list[SyncEntry]:
        data = self.backend.get_json(key) or []
        return [SyncEntry.model_validate(item) for item in data]

    def _write(self, key: str, entries: list[SyncEntry]) -> None:
        self.backend.set_json(key, [e.model_dump(mode="json") for e in entries])

    def enqueue(
        self,
        action: SyncAction,
        entity_type: EntityType,
        entity_id: UUID,
        data: dict[str, Any] | None = None,
    ) -> SyncEntry:
        """
        Record an operation for delivery.

        Replaces any entry still waiting for the same entity and drops any
        parked entry for it, so an older operation is never sent after this one.

        Returns:
            The stored entry

        Raises:
            QueueStorageError: If the queue could not be read or written
        """
        entry = SyncEntry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            data=data,
        )

        with self._lock:
            try:
                entries = self._read(self.key)
                for i, existing in enumerate(entries):
                    if existing.entity_key == entry.entity_key:
                        logger.debug(
                            "Superseding %s %s with %s",
                            existing.action.value, entry.entity_key, action.value,
                        )
                        entries[i] = entry
                        break
                else:
                    entries.append(entry)
                self._write(self.key, entries)

                dead = self._read(self.dead_letter_key)
                kept = [e for e in dead if e.entity_key != entry.entity_key]
                if len(kept) != len(dead):
                    logger.debug("Dropping parked entry for %s, superseded by %s", entry.entity_key, action.value)
                    self._write(self.dead_letter_key, kept)
            except Exception as e:
                logger.error(f"Failed to enqueue {action.value} for {entry.entity_key}: {e}")
                raise QueueStorageError(f"Could not queue {action.value} for sync: {e}") from e

        logger.debug("Queued %s %s", action.value, entry.entity_key)
        return entry

    def entries(self) -> list[SyncEntry]:
        """All waiting entries in queue order."""
        with self._lock:
            return self._read(self.key)

    def count(self) -> int:
        return len(self.entries())

    def due_entries(self, now: datetime) -> list[SyncEntry]:
        """Entries whose retry delay has elapsed, in queue order."""
        return [e for e in self.entries() if e.is_due(now)]

    def has_pending(self, entity_type: EntityType, entity_id: UUID) -> bool:
        return any(
            e.entity_type == entity_type and e.entity_id == entity_id
            for e in self.entries()
        )

    def remove(self, entry_id: UUID) -> bool:
        """
        Remove a delivered entry.

        Only removes the exact entry. If it was superseded while in flight,
        the newer entry stays queued.

        Returns:
            True if removed, False if no entry with that id remains
        """
        with self._lock:
            entries = self._read(self.key)
            remaining = [e for e in entries if e.id != entry_id]
            if len(remaining) == len(entries):
                return False
            self._write(self.key, remaining)
            return True

    def record_failure(self, entry_id: UUID, error: str, next_attempt_at: datetime) -> SyncEntry | None:
        """
        Note a failed attempt and when to try again.

        Returns:
            Updated entry, or None if it was superseded or removed meanwhile
        """
        with self._lock:
            entries = self._read(self.key)
            for i, entry in enumerate(entries):
                if entry.id == entry_id:
                    updated = entry.model_copy(update={
                        "retry_count": entry.retry_count + 1,
                        "last_error": error,
                        "next_attempt_at": next_attempt_at,
                    })
                    entries[i] = updated
                    self._write(self.key, entries)
                    return updated
            return None

    def move_to_dead_letter(self, entry_id: UUID, error: str) -> SyncEntry | None:
        """
        Park an entry that must not be retried.

        Kept (not dropped) so the operation can be inspected or re-queued
        after the user upgrades.

        Returns:
            The parked entry, or None if it was superseded or removed meanwhile
        """
        with self._lock:
            entries = self._read(self.key)
            for entry in entries:
                if entry.id == entry_id:
                    parked = entry.model_copy(update={"last_error": error})
                    dead = self._read(self.dead_letter_key)
                    dead.append(parked)
                    self._write(self.dead_letter_key, dead)
                    self._write(self.key, [e for e in entries if e.id != entry_id])
                    logger.warning(f"Parked {entry.action.value} {entry.entity_key}: {error}")
                    return parked
            return None

    def dead_letters(self) -> list[SyncEntry]:
        with self._lock:
            return self._read(self.dead_letter_key)

    def requeue_dead_letters(self) -> int:
        """
        Move parked entries back into the queue, e.g. after an upgrade.

        A parked entry is skipped if a newer operation for the same entity is
        already waiting.

        Returns:
            Number of entries re-queued
        """
        with self._lock:
            dead = self._read(self.dead_letter_key)
            entries = self._read(self.key)
            waiting = {e.entity_key for e in entries}
            requeued = 0
            for entry in dead:
                if entry.entity_key in waiting:
                    continue
                entries.append(entry.model_copy(update={"retry_count": 0, "next_attempt_at": None}))
                waiting.add(entry.entity_key)
                requeued += 1
            self._write(self.key, entries)
            self._write(self.dead_letter_key, [])
            return requeued

    def clear(self) -> None:
        """Drop everything, including parked entries."""
        with self._lock:
            self.backend.delete(self.key)
            self.backend.delete(self.dead_letter_key)
