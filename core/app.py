"""
Wiring for one user session.

Builds the storage backend, store, outbox, worker and view controller, and
subscribes the event handlers. Everything is constructed once here and
passed explicitly; nothing in the engine is a module-level singleton.
"""

import logging
from dataclasses import dataclass

from clients.file_store import JsonFileStore
from clients.invoice_api_client import InvoiceApiClient
from clients.valkey_store import ValkeyStore
from core.config import InvoiceConfig, load_config
from core.event_bus import EventBus
from core.handlers.sync_handlers import (
    handle_connectivity_restored, handle_invoice_synced, handle_limit_reached,
)
from core.persistence import KeyValueStore, StatePersistence
from core.remote import QuotaCheck, RemoteInvoiceService
from core.services.invoice_store import InvoiceStore
from core.sync_queue import SyncQueue
from core.sync_worker import SyncWorker
from core.view_state import ViewStateController

logger = logging.getLogger(__name__)


@dataclass
class InvoiceEngine:
    """The assembled components of one session."""

    config: InvoiceConfig
    event_bus: EventBus
    store: InvoiceStore
    sync_queue: SyncQueue
    worker: SyncWorker
    view: ViewStateController


def build_backend(config: InvoiceConfig, namespace: str = "invoices") -> KeyValueStore:
    """Valkey when configured, otherwise JSON files under data_dir."""
    if config.valkey_url:
        return ValkeyStore(config.valkey_url, namespace=namespace)
    return JsonFileStore(config.data_dir)


def build_engine(
    config: InvoiceConfig | None = None,
    api_token: str | None = None,
    remote: RemoteInvoiceService | None = None,
    quota_check: QuotaCheck | None = None,
    backend: KeyValueStore | None = None,
    user_id: str | None = None,
) -> InvoiceEngine:
    """
    Assemble and wire the engine.

    Args:
        config: Defaults to load_config()
        api_token: Session token; builds an InvoiceApiClient when no remote is given
        remote: Remote service (overrides api_token)
        quota_check: Subscription gate polled by the worker; defaults to the remote when it has one
        backend: Key-value store for state and outbox; defaults to build_backend()
        user_id: Owning identity; a placeholder invoice number is fixed if set

    Raises:
        ValueError: If neither remote nor api_token is given
    """
    config = config or load_config()

    if remote is None:
        if not api_token:
            raise ValueError("Either remote or api_token is required")
        remote = InvoiceApiClient(config.api_base_url, api_token, timeout=config.api_timeout_seconds)

    if quota_check is None and hasattr(remote, "is_limit_reached"):
        quota_check = remote

    backend = backend or build_backend(config)
    event_bus = EventBus()
    sync_queue = SyncQueue(backend)

    store = InvoiceStore(
        StatePersistence(backend),
        sync_queue,
        event_bus,
        remote=remote,
        config=config,
    )
    worker = SyncWorker(
        sync_queue, remote, event_bus, config,
        is_offline=lambda: store.is_offline,
        quota_check=quota_check,
    )
    view = ViewStateController(store, event_bus, config)

    event_bus.subscribe("InvoiceSynced", handle_invoice_synced(store))
    event_bus.subscribe("SyncLimitReached", handle_limit_reached(store))
    event_bus.subscribe("ConnectivityRestored", handle_connectivity_restored(worker, store))

    if user_id is not None:
        store.set_user_id(user_id)
        store.fix_invoice_number()

    logger.info(f"Invoice engine ready ({sync_queue.count()} pending operations)")
    return InvoiceEngine(
        config=config,
        event_bus=event_bus,
        store=store,
        sync_queue=sync_queue,
        worker=worker,
        view=view,
    )
