"""
Background delivery of outbox entries to the remote invoice service.

A drain pass takes every due entry and tries it once:
- success removes the entry (only that exact entry, so a superseding one stays)
- a transient failure keeps it and pushes next_attempt_at out exponentially
- a quota or permanent rejection parks it in the dead-letter list

Nothing here touches the UI thread's state directly; outcomes are published
as events and the handlers decide what to do with them.
"""

import logging
import threading
from datetime import timedelta
from typing import Callable

from core.config import InvoiceConfig
from core.errors import (
    LimitReachedError, RemoteRejectedError, RemoteServiceError, RemoteUnavailableError,
)
from core.event_bus import EventBus
from core.events import InvoiceSynced, SyncLimitReached, SyncRejected, SyncRetryScheduled
from core.models import DrainStats, SyncAction, SyncEntry
from core.remote import QuotaCheck, RemoteInvoiceService
from core.sync_queue import SyncQueue
from core.wire import row_to_invoice
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SyncWorker:
    """
    Drains the outbox against the remote service.

    Usage:
        worker = SyncWorker(queue, api_client, event_bus, config, lambda: store.is_offline)
        worker.start()          # periodic drain on a daemon thread
        worker.drain()          # or drain right now
        worker.stop()
    """

    def __init__(
        self,
        sync_queue: SyncQueue,
        remote: RemoteInvoiceService,
        event_bus: EventBus,
        config: InvoiceConfig | None = None,
        is_offline: Callable[[], bool] | None = None,
        quota_check: QuotaCheck | None = None,
    ):
        self.sync_queue = sync_queue
        self.remote = remote
        self.quota_check = quota_check
        self.event_bus = event_bus
        self.config = config or InvoiceConfig()
        self._is_offline = is_offline or (lambda: False)

        self._drain_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def retry_delay(self, retry_count: int) -> timedelta:
        """Delay before the next attempt after retry_count earlier failures."""
        seconds = self.config.retry_base_delay_seconds * (2 ** retry_count)
        return timedelta(seconds=min(seconds, self.config.retry_max_delay_seconds))

    def drain(self) -> DrainStats:
        """
        Attempt every due entry once.

        Skipped (empty stats) while offline or while another drain is running.
        """
        stats = DrainStats()

        if self._is_offline():
            logger.debug("Offline, skipping drain")
            return stats

        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already in progress")
            return stats

        try:
            due = self.sync_queue.due_entries(now_utc())
            if due:
                logger.info(f"Draining {len(due)} outbox entries")

            for entry in due:
                stats.processed += 1
                if self._deliver(entry):
                    stats.succeeded += 1
                else:
                    stats.failed += 1
                    stats.errors.append(f"{entry.entity_key}: {entry.last_error or 'failed'}")
        finally:
            self._drain_lock.release()

        if stats.processed:
            logger.info(
                f"Drain complete: {stats.succeeded} delivered, {stats.failed} failed"
            )
        return stats

    def _deliver(self, entry: SyncEntry) -> bool:
        try:
            if entry.action == SyncAction.UPSERT:
                data = entry.data or {}
                self.remote.upsert(data["invoice"], data.get("items", []))
            else:
                self.remote.delete(str(entry.entity_id))

        except RemoteUnavailableError as e:
            next_attempt = now_utc() + self.retry_delay(entry.retry_count)
            updated = self.sync_queue.record_failure(entry.id, str(e), next_attempt)
            logger.warning(f"Delivery of {entry.entity_key} failed, retrying at {next_attempt.isoformat()}: {e}")
            self.event_bus.publish(SyncRetryScheduled.create(updated or entry, error=str(e)))
            entry.last_error = str(e)
            return False

        except LimitReachedError as e:
            self.sync_queue.move_to_dead_letter(entry.id, str(e))
            self.event_bus.publish(SyncLimitReached.create(entry, error=str(e)))
            entry.last_error = str(e)
            return False

        except (RemoteRejectedError, KeyError) as e:
            # KeyError: upsert entry without an invoice payload can never succeed
            self.sync_queue.move_to_dead_letter(entry.id, str(e))
            self.event_bus.publish(SyncRejected.create(entry, error=str(e)))
            entry.last_error = str(e)
            return False

        self.sync_queue.remove(entry.id)
        logger.debug(f"Delivered {entry.action.value} {entry.entity_key}")
        self.event_bus.publish(InvoiceSynced.create(entry))
        return True

    def refresh_completed(self, store, filters: dict | None = None) -> int:
        """
        Pull the remote invoice list into the store.

        Entities with a waiting outbox entry keep their local version.

        Returns:
            Number of invoices merged, 0 when offline or unreachable
        """
        if self._is_offline():
            return 0
        try:
            rows = self.remote.list(filters)
        except RemoteServiceError as e:
            logger.warning(f"Could not refresh invoices, showing local data: {e}")
            return 0

        invoices = []
        for row in rows:
            try:
                invoices.append(row_to_invoice(row["invoice"], row.get("items", [])))
            except (KeyError, ValueError) as e:
                logger.error(f"Skipping malformed remote invoice: {e}")
        return store.merge_remote(invoices)

    def refresh_quota(self, store) -> bool | None:
        """
        Ask the subscription service whether the invoice limit is reached
        and cache the answer on the store.

        Returns:
            The fresh flag, or None when offline, unconfigured or unreachable
            (the cached flag is left as it was)
        """
        if self.quota_check is None or self._is_offline():
            return None
        try:
            flag = self.quota_check.is_limit_reached()
        except RemoteServiceError as e:
            logger.warning(f"Could not refresh invoice quota, keeping cached flag: {e}")
            return None
        store.set_limit_reached(flag)
        return flag

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    def start(self, interval_seconds: float | None = None) -> None:
        """Run drain() periodically on a daemon thread. No-op if already running."""
        if self._thread is not None and self._thread.is_alive():
            return

        interval = interval_seconds or self.config.auto_sync_interval_minutes * 60
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, args=(interval,), name="invoice-sync", daemon=True,
        )
        self._thread.start()
        logger.info(f"Sync worker started (every {interval:.0f}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sync worker stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.drain()
            except Exception:
                logger.exception("Background drain failed")
            self._stop_event.wait(interval)
