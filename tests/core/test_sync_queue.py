"""Tests for the coalescing outbox."""

from datetime import timedelta
from uuid import uuid4

import pytest

from core.errors import QueueStorageError
from core.models import EntityType, SyncAction
from core.sync_queue import SyncQueue
from utils.timezone import now_utc


class _BrokenBackend:
    """Backend whose writes always fail."""

    def get_json(self, key):
        return None

    def set_json(self, key, value):
        raise OSError("No space left on device")

    def delete(self, key):
        return False


class TestEnqueue:

    def test_entry_is_stored(self, sync_queue):
        invoice_id = uuid4()

        entry = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"invoice": {}})

        assert sync_queue.count() == 1
        assert sync_queue.entries()[0].id == entry.id
        assert sync_queue.entries()[0].entity_id == invoice_id

    def test_later_operation_replaces_earlier_for_same_entity(self, sync_queue):
        invoice_id = uuid4()
        first = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": 1})
        second = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": 2})

        entries = sync_queue.entries()
        assert len(entries) == 1
        assert entries[0].id == second.id != first.id
        assert entries[0].data == {"v": 2}

    def test_delete_supersedes_pending_upsert(self, sync_queue):
        invoice_id = uuid4()
        sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": 1})
        sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, invoice_id)

        assert [e.action for e in sync_queue.entries()] == [SyncAction.DELETE]

    def test_replacement_keeps_queue_position(self, sync_queue):
        a, b = uuid4(), uuid4()
        sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, a)
        sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, b)
        sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, a)

        assert [e.entity_id for e in sync_queue.entries()] == [a, b]

    def test_storage_failure_raises_queue_storage_error(self):
        queue = SyncQueue(_BrokenBackend())

        with pytest.raises(QueueStorageError):
            queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, uuid4())


class TestRemove:

    def test_remove_delivered_entry(self, sync_queue):
        entry = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, uuid4())

        assert sync_queue.remove(entry.id) is True
        assert sync_queue.count() == 0

    def test_superseded_entry_removal_keeps_newer(self, sync_queue):
        invoice_id = uuid4()
        in_flight = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": 1})
        newer = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": 2})

        assert sync_queue.remove(in_flight.id) is False
        assert [e.id for e in sync_queue.entries()] == [newer.id]

    def test_has_pending(self, sync_queue):
        invoice_id = uuid4()
        sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id)

        assert sync_queue.has_pending(EntityType.INVOICE, invoice_id) is True
        assert sync_queue.has_pending(EntityType.INVOICE, uuid4()) is False


class TestRetryBookkeeping:

    def test_record_failure_delays_entry(self, sync_queue):
        entry = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, uuid4())
        now = now_utc()

        updated = sync_queue.record_failure(entry.id, "timeout", now + timedelta(seconds=30))

        assert updated.retry_count == 1
        assert updated.last_error == "timeout"
        assert sync_queue.due_entries(now) == []
        assert len(sync_queue.due_entries(now + timedelta(seconds=31))) == 1

    def test_record_failure_on_superseded_entry_returns_none(self, sync_queue):
        invoice_id = uuid4()
        old = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id)
        sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id)

        assert sync_queue.record_failure(old.id, "timeout", now_utc()) is None


class TestDeadLetter:

    def test_parked_entry_leaves_queue(self, sync_queue):
        entry = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, uuid4())

        sync_queue.move_to_dead_letter(entry.id, "limit reached")

        assert sync_queue.count() == 0
        dead = sync_queue.dead_letters()
        assert [e.id for e in dead] == [entry.id]
        assert dead[0].last_error == "limit reached"

    def test_requeue_moves_entries_back(self, sync_queue):
        entry = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, uuid4())
        sync_queue.record_failure(entry.id, "timeout", now_utc() + timedelta(hours=1))
        sync_queue.move_to_dead_letter(entry.id, "limit reached")

        assert sync_queue.requeue_dead_letters() == 1
        assert sync_queue.dead_letters() == []
        requeued = sync_queue.entries()[0]
        assert requeued.retry_count == 0
        assert requeued.is_due(now_utc())

    def test_requeue_skips_entity_with_newer_entry(self, sync_queue):
        invoice_id = uuid4()
        parked = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": 1})
        sync_queue.move_to_dead_letter(parked.id, "limit reached")
        newer = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": 2})

        assert sync_queue.requeue_dead_letters() == 0
        assert [e.id for e in sync_queue.entries()] == [newer.id]

    def test_newer_operation_drops_parked_entry(self, sync_queue):
        invoice_id = uuid4()
        parked = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": "old"})
        sync_queue.move_to_dead_letter(parked.id, "limit reached")

        delete = sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, invoice_id)

        assert sync_queue.dead_letters() == []
        assert [e.id for e in sync_queue.entries()] == [delete.id]

    def test_delivered_delete_is_not_followed_by_parked_upsert(self, sync_queue):
        invoice_id = uuid4()
        parked = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"v": "old"})
        sync_queue.move_to_dead_letter(parked.id, "limit reached")
        delete = sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, invoice_id)
        sync_queue.remove(delete.id)

        assert sync_queue.requeue_dead_letters() == 0
        assert sync_queue.entries() == []

    def test_parked_entry_for_other_entity_is_kept(self, sync_queue):
        parked = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, uuid4())
        sync_queue.move_to_dead_letter(parked.id, "limit reached")

        sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, uuid4())

        assert [e.id for e in sync_queue.dead_letters()] == [parked.id]


class TestDurability:

    def test_entries_survive_new_queue_instance(self, backend):
        invoice_id = uuid4()
        SyncQueue(backend).enqueue(SyncAction.UPSERT, EntityType.INVOICE, invoice_id, {"invoice": {"id": "x"}})

        reopened = SyncQueue(backend)

        assert reopened.count() == 1
        assert reopened.entries()[0].entity_id == invoice_id

    def test_clear_drops_everything(self, sync_queue):
        entry = sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, uuid4())
        sync_queue.move_to_dead_letter(entry.id, "rejected")
        sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, uuid4())

        sync_queue.clear()

        assert sync_queue.count() == 0
        assert sync_queue.dead_letters() == []
