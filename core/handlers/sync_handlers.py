"""
Handlers for sync outcome and connectivity events.

InvoiceSynced stamps synced_at on the acknowledged invoice.
SyncLimitReached sets the store's cached quota flag.
ConnectivityRestored triggers an immediate drain instead of waiting for the
next periodic pass.
"""

import logging
from typing import Callable

from core.events import ConnectivityRestored, InvoiceSynced, SyncLimitReached
from core.models import EntityType, SyncAction

logger = logging.getLogger(__name__)


def handle_invoice_synced(store) -> Callable:
    """
    Factory that returns an InvoiceSynced handler.

    Args:
        store: InvoiceStore instance

    Returns:
        Handler callable that marks the invoice as synced
    """

    def handler(event: InvoiceSynced):
        entry = event.entry
        if entry.entity_type != EntityType.INVOICE or entry.action != SyncAction.UPSERT:
            return
        store.mark_synced(entry.entity_id, event.occurred_at)

    return handler


def handle_connectivity_restored(worker, store=None) -> Callable:
    """
    Factory that returns a ConnectivityRestored handler.

    Args:
        worker: SyncWorker instance
        store: InvoiceStore whose quota flag is refreshed after the drain (optional)

    Returns:
        Handler callable that drains the outbox
    """

    def handler(event: ConnectivityRestored):
        stats = worker.drain()
        logger.info(f"Reconnected, delivered {stats.succeeded} of {stats.processed} pending operations")
        if store is not None:
            worker.refresh_quota(store)

    return handler


def handle_limit_reached(store) -> Callable:
    """
    Factory that returns a SyncLimitReached handler.

    Args:
        store: InvoiceStore instance

    Returns:
        Handler callable that caches the quota flag so later saves are refused
    """

    def handler(event: SyncLimitReached):
        store.set_limit_reached(True)

    return handler
