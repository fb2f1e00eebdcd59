"""Tests for SyncWorker draining the outbox."""

from datetime import timedelta
from uuid import uuid4

import pytest

from core.errors import LimitReachedError, RemoteRejectedError, RemoteUnavailableError
from core.models import EntityType, SyncAction
from core.sync_worker import SyncWorker
from utils.timezone import now_utc


@pytest.fixture
def worker(sync_queue, remote, event_bus, config):
    return SyncWorker(sync_queue, remote, event_bus, config)


@pytest.fixture
def events(event_bus):
    """Collects every sync outcome event."""
    received = []
    for name in ("InvoiceSynced", "SyncRetryScheduled", "SyncLimitReached", "SyncRejected"):
        event_bus.subscribe(name, received.append)
    return received


def _queue_upsert(sync_queue, invoice_id=None):
    invoice_id = invoice_id or uuid4()
    return sync_queue.enqueue(
        SyncAction.UPSERT, EntityType.INVOICE, invoice_id,
        {"invoice": {"id": str(invoice_id)}, "items": []},
    )


class TestDrainSuccess:

    def test_upsert_delivered_and_removed(self, worker, sync_queue, remote, events):
        entry = _queue_upsert(sync_queue)

        stats = worker.drain()

        assert stats.processed == 1
        assert stats.succeeded == 1
        assert sync_queue.count() == 0
        assert str(entry.entity_id) in remote.invoices
        assert type(events[0]).__name__ == "InvoiceSynced"
        assert events[0].entry.id == entry.id

    def test_delete_delivered(self, worker, sync_queue, remote):
        invoice_id = uuid4()
        remote.invoices[str(invoice_id)] = {"invoice": {"id": str(invoice_id)}, "items": []}
        sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, invoice_id)

        worker.drain()

        assert str(invoice_id) not in remote.invoices
        assert ("delete", str(invoice_id)) in remote.calls

    def test_empty_queue_does_nothing(self, worker, remote):
        stats = worker.drain()
        assert stats.processed == 0
        assert remote.calls == []

    def test_coalesced_entity_delivered_once_with_final_state(self, worker, sync_queue, remote):
        invoice_id = uuid4()
        _queue_upsert(sync_queue, invoice_id)
        sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, invoice_id)

        worker.drain()

        assert remote.calls == [("delete", str(invoice_id))]


class TestDrainFailures:

    def test_transient_failure_keeps_entry_with_backoff(self, worker, sync_queue, remote, events):
        entry = _queue_upsert(sync_queue)
        remote.fail_with = RemoteUnavailableError("timed out")

        stats = worker.drain()

        assert stats.failed == 1
        kept = sync_queue.entries()
        assert [e.id for e in kept] == [entry.id]
        assert kept[0].retry_count == 1
        assert kept[0].next_attempt_at > now_utc()
        assert type(events[0]).__name__ == "SyncRetryScheduled"

    def test_entry_not_retried_before_delay(self, worker, sync_queue, remote):
        _queue_upsert(sync_queue)
        remote.fail_with = RemoteUnavailableError("timed out")
        worker.drain()
        remote.fail_with = None

        stats = worker.drain()

        assert stats.processed == 0
        assert sync_queue.count() == 1

    def test_quota_failure_parks_entry(self, worker, sync_queue, remote, events):
        entry = _queue_upsert(sync_queue)
        remote.fail_with = LimitReachedError("Invoice limit reached")

        worker.drain()

        assert sync_queue.count() == 0
        assert [e.id for e in sync_queue.dead_letters()] == [entry.id]
        assert type(events[0]).__name__ == "SyncLimitReached"

    def test_rejection_parks_entry(self, worker, sync_queue, remote, events):
        _queue_upsert(sync_queue)
        remote.fail_with = RemoteRejectedError("invalid invoice", status_code=422)

        worker.drain()

        assert sync_queue.count() == 0
        assert len(sync_queue.dead_letters()) == 1
        assert events[0].error == "invalid invoice"

    def test_one_failure_does_not_block_other_entries(self, worker, sync_queue, remote):
        bad = uuid4()
        good = uuid4()
        sync_queue.enqueue(SyncAction.UPSERT, EntityType.INVOICE, bad, {"items": []})
        _queue_upsert(sync_queue, good)

        stats = worker.drain()

        assert stats.succeeded == 1
        assert stats.failed == 1
        assert str(good) in remote.invoices

    def test_parked_upsert_not_resent_after_later_delete(self, worker, sync_queue, remote):
        invoice_id = uuid4()
        _queue_upsert(sync_queue, invoice_id)
        remote.fail_with = LimitReachedError("Invoice limit reached")
        worker.drain()

        remote.fail_with = None
        sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, invoice_id)
        worker.drain()
        sync_queue.requeue_dead_letters()
        worker.drain()

        assert remote.calls == [("upsert", str(invoice_id)), ("delete", str(invoice_id))]
        assert str(invoice_id) not in remote.invoices


class TestBackoff:

    def test_delay_doubles_per_retry(self, worker):
        assert worker.retry_delay(0) == timedelta(seconds=1)
        assert worker.retry_delay(1) == timedelta(seconds=2)
        assert worker.retry_delay(3) == timedelta(seconds=8)

    def test_delay_is_capped(self, worker):
        assert worker.retry_delay(20) == timedelta(seconds=60)


class TestDrainGuards:

    def test_offline_skips_drain(self, sync_queue, remote, event_bus, config):
        worker = SyncWorker(sync_queue, remote, event_bus, config, is_offline=lambda: True)
        _queue_upsert(sync_queue)

        stats = worker.drain()

        assert stats.processed == 0
        assert remote.calls == []

    def test_concurrent_drain_is_skipped(self, worker, sync_queue, remote):
        _queue_upsert(sync_queue)
        worker._drain_lock.acquire()
        try:
            stats = worker.drain()
        finally:
            worker._drain_lock.release()

        assert stats.processed == 0
        assert sync_queue.count() == 1


class TestBackgroundLoop:

    def test_start_drains_and_stop_joins(self, worker, sync_queue, remote):
        _queue_upsert(sync_queue)

        worker.start(interval_seconds=0.05)
        try:
            for _ in range(100):
                if sync_queue.count() == 0:
                    break
                worker._stop_event.wait(0.02)
        finally:
            worker.stop()

        assert sync_queue.count() == 0
        assert worker.is_running is False


class TestQuotaRefresh:

    @pytest.fixture
    def quota_worker(self, sync_queue, remote, event_bus, config):
        return SyncWorker(sync_queue, remote, event_bus, config, quota_check=remote)

    def test_caches_limit_on_store(self, quota_worker, store, remote):
        remote.limit_reached = True

        assert quota_worker.refresh_quota(store) is True
        assert store.limit_reached is True

    def test_clears_limit_after_upgrade(self, quota_worker, store, remote):
        store.set_limit_reached(True)

        assert quota_worker.refresh_quota(store) is False
        assert store.limit_reached is False

    def test_unreachable_keeps_cached_flag(self, quota_worker, store, remote):
        store.set_limit_reached(True)
        remote.fail_with = RemoteUnavailableError("timeout")

        assert quota_worker.refresh_quota(store) is None
        assert store.limit_reached is True

    def test_offline_skips_check(self, sync_queue, remote, event_bus, config, store):
        worker = SyncWorker(sync_queue, remote, event_bus, config, is_offline=lambda: True, quota_check=remote)
        remote.calls.clear()

        assert worker.refresh_quota(store) is None
        assert remote.calls == []

    def test_without_quota_check_does_nothing(self, worker, store, remote):
        remote.calls.clear()

        assert worker.refresh_quota(store) is None
        assert remote.calls == []
