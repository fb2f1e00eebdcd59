"""Shared test fixtures for the invoice engine test suite."""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from clients.file_store import JsonFileStore
from core.config import InvoiceConfig
from core.event_bus import EventBus
from core.persistence import StatePersistence
from core.services.invoice_store import InvoiceStore
from core.sync_queue import SyncQueue


# =============================================================================
# TEST CONSTANTS
# =============================================================================

TEST_OWNER_ID = "88a60ee2-4f1b-4c55-9a8e-2d3c1f0b7e61"


# =============================================================================
# FAKE REMOTE SERVICE: in-memory, no network
# =============================================================================


class FakeRemote:
    """
    In-memory remote invoice service.

    Set `fail_with` to an exception instance to make every call raise it.
    """

    def __init__(self):
        self.invoices: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.sequence = 1
        self.limit_reached = False
        self.fail_with: Exception | None = None

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def upsert(self, invoice, items):
        self.calls.append(("upsert", invoice["id"]))
        self._check()
        self.invoices[invoice["id"]] = {"invoice": invoice, "items": items}

    def delete(self, invoice_id):
        self.calls.append(("delete", invoice_id))
        self._check()
        self.invoices.pop(invoice_id, None)

    def get_next_sequence(self, owner_id, date_key):
        self.calls.append(("get_next_sequence", owner_id, date_key))
        self._check()
        return self.sequence

    def list(self, filters=None):
        self.calls.append(("list", filters))
        self._check()
        return list(self.invoices.values())

    def is_limit_reached(self):
        self.calls.append(("is_limit_reached",))
        self._check()
        return self.limit_reached


# =============================================================================
# ENGINE FIXTURES
# =============================================================================


@pytest.fixture
def owner_id() -> str:
    return TEST_OWNER_ID


@pytest.fixture
def config() -> InvoiceConfig:
    """Config with fast retries and tax off."""
    return InvoiceConfig(
        timezone="Asia/Jakarta",
        retry_base_delay_seconds=1,
        retry_max_delay_seconds=60,
        default_buyback_rate=0,
    )


@pytest.fixture
def backend(tmp_path) -> JsonFileStore:
    """File-backed key-value store in a per-test directory."""
    return JsonFileStore(tmp_path / "data")


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def sync_queue(backend) -> SyncQueue:
    return SyncQueue(backend)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def store(backend, sync_queue, event_bus, remote, config) -> InvoiceStore:
    """InvoiceStore with a known owner and a reachable fake remote."""
    s = InvoiceStore(
        StatePersistence(backend),
        sync_queue,
        event_bus,
        remote=remote,
        config=config,
    )
    s.set_user_id(TEST_OWNER_ID)
    return s


@pytest.fixture
def draft(store):
    """A freshly initialized draft."""
    return store.initialize_new_invoice()


# =============================================================================
# VALKEY FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def valkey():
    """Session-scoped ValkeyStore. Skips when no Valkey is reachable."""
    import redis
    from clients.valkey_store import ValkeyStore

    url = os.getenv("INVOICE_VALKEY_URL", "redis://localhost:6379/15")
    try:
        client = ValkeyStore(url, namespace="invoice-tests")
    except redis.ConnectionError:
        pytest.skip(f"Valkey not reachable at {url}")
    yield client
    client.close()
