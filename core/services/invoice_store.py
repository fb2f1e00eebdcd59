"""
Invoice store: the in-progress draft, the completed invoices, and the path
from one to the other.

Every mutation is applied locally and synchronously, totals are recomputed
on the spot, and the new state is persisted before the call returns.
Completed invoices reach the remote service only through the outbox;
nothing here waits on delivery.

One store is built per user session and handed to whoever needs it.
"""

import logging
import threading
from typing import Any
from uuid import UUID

from core.config import InvoiceConfig
from core.errors import (
    IncompatibleModeError, NoDraftError, QueueStorageError, RemoteServiceError,
)
from core.event_bus import EventBus
from core.events import ConnectivityRestored, InvoiceCompleted, InvoiceDeleted
from core.invoice_number import date_key, generate, needs_owner_fix
from core.models import (
    CustomerSnapshot, EntityType, ErrorKind, Invoice, InvoiceFieldsUpdate,
    InvoiceStatus, ItemInput, ItemMode, ItemUpdate, OperationResult,
    SyncAction, item_mode,
)
from core.persistence import StatePersistence, StoreSnapshot
from core.remote import RemoteInvoiceService
from core.sync_queue import SyncQueue
from core.totals import Totals, compute_totals
from core.wire import invoice_to_row, items_to_rows
from utils.timezone import now_utc, today_in

logger = logging.getLogger(__name__)


def _with_totals(invoice: Invoice) -> Invoice:
    """Copy of invoice with subtotal, tax_amount and total recomputed."""
    totals = compute_totals(
        invoice.items,
        invoice.shipping_cost,
        invoice.tax_enabled,
        invoice.tax_percentage,
    )
    return invoice.model_copy(update={
        "subtotal": totals.subtotal,
        "shipping_cost": totals.shipping_cost,
        "tax_amount": totals.tax_amount,
        "total": totals.total,
    })


def _check_single_mode(items: list) -> ItemMode | None:
    """Mode shared by all items. Raises IncompatibleModeError on a mix."""
    if not items:
        return None
    first = item_mode(items[0])
    for item in items[1:]:
        mode = item_mode(item)
        if mode != first:
            raise IncompatibleModeError(first.value, mode.value)
    return first


class InvoiceStore:
    """
    State container for invoice editing.

    Holds at most one draft (current_invoice) and the collection of
    completed invoices. Readers get copies; all changes go through the
    methods below so totals can never be left stale.
    """

    def __init__(
        self,
        persistence: StatePersistence,
        sync_queue: SyncQueue,
        event_bus: EventBus,
        remote: RemoteInvoiceService | None = None,
        config: InvoiceConfig | None = None,
    ):
        """
        Args:
            persistence: Where state is loaded from and saved to
            sync_queue: Outbox for remote upserts and deletes
            event_bus: Receives InvoiceCompleted / InvoiceDeleted / ConnectivityRestored
            remote: Source of authoritative invoice sequences (optional)
            config: Engine configuration, defaults if omitted
        """
        self.persistence = persistence
        self.sync_queue = sync_queue
        self.event_bus = event_bus
        self.remote = remote
        self.config = config or InvoiceConfig()
        self._lock = threading.RLock()

        snapshot = persistence.load()
        self._current: Invoice | None = snapshot.current_invoice
        self._completed: list[Invoice] = list(snapshot.completed_invoices)
        self._user_id: str | None = snapshot.user_id
        self._is_offline: bool = snapshot.is_offline
        self._buyback_rate: int = snapshot.buyback_rate or self.config.default_buyback_rate
        self._limit_reached: bool = snapshot.limit_reached

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    @property
    def current_invoice(self) -> Invoice | None:
        with self._lock:
            return self._current.model_copy(deep=True) if self._current else None

    @property
    def completed_invoices(self) -> list[Invoice]:
        with self._lock:
            return [inv.model_copy(deep=True) for inv in self._completed]

    def get_completed(self, invoice_id: UUID) -> Invoice | None:
        with self._lock:
            found = self._find_completed(invoice_id)
            return found.model_copy(deep=True) if found else None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def buyback_rate(self) -> int:
        return self._buyback_rate

    @property
    def is_offline(self) -> bool:
        return self._is_offline

    @property
    def limit_reached(self) -> bool:
        return self._limit_reached

    @property
    def pending_operations(self) -> int:
        """Outbox entries still waiting for delivery. Informational only."""
        return self.sync_queue.count()

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def set_user_id(self, user_id: str | None) -> None:
        """
        Set the owning identity used for invoice numbers.

        Does not touch an existing draft number; call fix_invoice_number().
        """
        with self._lock:
            self._user_id = user_id
            self._persist()

    def set_buyback_rate(self, rate: int) -> None:
        """Price per gram applied to buyback items entered without a rate."""
        if rate < 0:
            raise ValueError("Buyback rate must not be negative")
        with self._lock:
            self._buyback_rate = rate
            self._persist()

    def set_limit_reached(self, flag: bool) -> None:
        """
        Cache the subscription quota signal.

        Set from SyncLimitReached or a quota refresh by the sync worker;
        save_completed reads only this flag.
        """
        with self._lock:
            if self._limit_reached == flag:
                return
            self._limit_reached = flag
            self._persist()
        logger.info(f"Invoice limit {'reached' if flag else 'cleared'}")

    def set_offline(self, is_offline: bool) -> None:
        """
        Record connectivity. Does not gate mutations.

        Going from offline to online publishes ConnectivityRestored.
        """
        with self._lock:
            was_offline = self._is_offline
            self._is_offline = is_offline
            self._persist()

        if was_offline and not is_offline:
            logger.info("Back online")
            self.event_bus.publish(ConnectivityRestored())

    # =========================================================================
    # DRAFT LIFECYCLE
    # =========================================================================

    def initialize_new_invoice(self) -> Invoice:
        """
        Start a fresh draft, replacing any current one.

        Callers must confirm with the user before discarding an unsaved
        draft; this method does not ask.

        Returns:
            Copy of the new draft
        """
        invoice_date = today_in(self.config.timezone)
        invoice_number = self._next_invoice_number(invoice_date)

        with self._lock:
            if self._current is not None and self._current.status == InvoiceStatus.DRAFT:
                logger.info(f"Discarding draft {self._current.invoice_number}")

            now = now_utc()
            self._current = _with_totals(Invoice(
                invoice_number=invoice_number,
                invoice_date=invoice_date,
                customer=CustomerSnapshot(),
                items=[],
                pricing_mode=ItemMode.REGULAR,
                tax_enabled=self.config.default_tax_enabled,
                tax_percentage=self.config.default_tax_percentage,
                status=InvoiceStatus.DRAFT,
                created_at=now,
                updated_at=now,
            ))
            self._persist()
            logger.info(f"New draft {invoice_number}")
            return self._current.model_copy(deep=True)

    def update_invoice_fields(self, updates: InvoiceFieldsUpdate | dict[str, Any]) -> Invoice:
        """
        Merge top-level field updates into the draft.

        Totals are recomputed after every update. A changed invoice_date
        regenerates the invoice number unless the invoice was already
        completed.

        Returns:
            Copy of the updated draft

        Raises:
            NoDraftError: If there is no draft
            pydantic.ValidationError: If a field is out of bounds
            IncompatibleModeError: If replacement items mix modes
        """
        if not isinstance(updates, InvoiceFieldsUpdate):
            updates = InvoiceFieldsUpdate.model_validate(updates)

        changes = updates.model_dump(exclude_unset=True)
        # keep typed objects rather than their dict dumps
        for field in ("customer", "items"):
            if field in changes:
                changes[field] = getattr(updates, field)
        changes = {k: v for k, v in changes.items() if v is not None or k == "note"}

        new_number = None
        with self._lock:
            current = self._require_draft()
            date_changed = (
                "invoice_date" in changes
                and changes["invoice_date"] != current.invoice_date
                and not current.is_completed
            )

        # sequence lookup may hit the network; keep it outside the lock
        if date_changed:
            new_number = self._next_invoice_number(changes["invoice_date"])

        with self._lock:
            current = self._require_draft()

            if "items" in changes:
                mode = _check_single_mode(changes["items"])
                if mode is not None:
                    changes["pricing_mode"] = mode

            if new_number is not None:
                changes["invoice_number"] = new_number
                logger.info(f"Invoice date changed, number is now {new_number}")

            changes["updated_at"] = now_utc()
            self._current = _with_totals(current.model_copy(update=changes))
            self._persist()
            return self._current.model_copy(deep=True)

    def select_customer(self, customer: CustomerSnapshot) -> Invoice:
        """Snapshot a customer onto the draft."""
        return self.update_invoice_fields(InvoiceFieldsUpdate(customer=customer))

    def switch_pricing_mode(self, mode: ItemMode) -> Invoice:
        """
        Select regular or buyback pricing for the draft.

        Raises:
            NoDraftError: If there is no draft
            IncompatibleModeError: If the draft holds items of the other mode
        """
        mode = ItemMode(mode)
        with self._lock:
            current = self._require_draft()
            existing = current.item_mode
            if existing is not None and existing != mode:
                raise IncompatibleModeError(existing.value, mode.value)
            self._current = current.model_copy(update={"pricing_mode": mode, "updated_at": now_utc()})
            self._persist()
            return self._current.model_copy(deep=True)

    def fix_invoice_number(self) -> bool:
        """
        Replace a placeholder invoice number once the owner is known.

        Returns:
            True if the number was regenerated
        """
        with self._lock:
            current = self._current
            if current is None or not self._user_id or not needs_owner_fix(current.invoice_number):
                return False
            invoice_date = current.invoice_date

        new_number = self._next_invoice_number(invoice_date)

        with self._lock:
            if self._current is None or self._current.id != current.id:
                return False
            self._current = self._current.model_copy(update={
                "invoice_number": new_number,
                "updated_at": now_utc(),
            })
            self._persist()
            logger.info(f"Placeholder invoice number fixed: {new_number}")
            return True

    # =========================================================================
    # ITEMS
    # =========================================================================

    def add_item(self, item_input: ItemInput | dict[str, Any]):
        """
        Validate and append an item to the draft.

        Returns:
            The new item (RegularItem or BuybackItem)

        Raises:
            NoDraftError: If there is no draft
            ItemValidationError: Naming the failing field
            IncompatibleModeError: If the draft holds items of the other mode
        """
        if not isinstance(item_input, ItemInput):
            item_input = ItemInput.model_validate(item_input)

        with self._lock:
            current = self._require_draft()

            existing = current.item_mode
            if existing is not None and existing != item_input.mode:
                raise IncompatibleModeError(existing.value, item_input.mode.value)

            item = item_input.to_item(default_buyback_rate=self._buyback_rate)

            self._current = _with_totals(current.model_copy(update={
                "items": [*current.items, item],
                "pricing_mode": item_input.mode,
                "updated_at": now_utc(),
            }))
            self._persist()
            return item.model_copy()

    def update_item(self, item_id: UUID, updates: ItemUpdate | dict[str, Any]):
        """
        Merge updates into one item and recompute totals.

        Returns:
            The updated item, or None if the item (or the draft) is gone

        Raises:
            ItemValidationError: If a merged field fails its check
            IncompatibleModeError: If a field of the other mode is set
        """
        if not isinstance(updates, ItemUpdate):
            updates = ItemUpdate.model_validate(updates)

        with self._lock:
            current = self._current
            if current is None:
                return None

            for index, item in enumerate(current.items):
                if item.id == item_id:
                    break
            else:
                logger.debug(f"update_item: {item_id} not on draft, ignoring")
                return None

            updated = updates.apply_to(item)
            items = list(current.items)
            items[index] = updated

            self._current = _with_totals(current.model_copy(update={
                "items": items,
                "updated_at": now_utc(),
            }))
            self._persist()
            return updated.model_copy()

    def remove_item(self, item_id: UUID) -> bool:
        """
        Remove an item and recompute totals.

        Returns:
            True if removed, False if it was not on the draft
        """
        with self._lock:
            current = self._current
            if current is None:
                return False

            items = [item for item in current.items if item.id != item_id]
            if len(items) == len(current.items):
                return False

            self._current = _with_totals(current.model_copy(update={
                "items": items,
                "updated_at": now_utc(),
            }))
            self._persist()
            return True

    def recalculate_totals(self) -> Totals | None:
        """
        Recompute the draft's totals from its items.

        Returns:
            The totals now on the draft, or None without a draft
        """
        with self._lock:
            if self._current is None:
                return None
            self._current = _with_totals(self._current)
            self._persist()
            return Totals(
                subtotal=self._current.subtotal,
                shipping_cost=self._current.shipping_cost,
                tax_amount=self._current.tax_amount,
                total=self._current.total,
            )

    # =========================================================================
    # COMPLETED INVOICES
    # =========================================================================

    def save_completed(self) -> OperationResult:
        """
        Finalize the draft and queue it for the remote service.

        The completed invoice replaces any earlier one with the same id and
        the draft slot is cleared. Success means the upsert was queued, not
        that the remote service has it.

        Refused while the cached quota flag is set (see set_limit_reached);
        no remote call is made here.

        Returns:
            OperationResult; on ENQUEUE_FAILED the local save has still happened
        """
        if self._limit_reached:
            return OperationResult.failed(
                ErrorKind.LIMIT_REACHED,
                "Invoice limit reached for this billing cycle. Upgrade to continue.",
            )

        with self._lock:
            if self._current is None:
                return OperationResult.failed(ErrorKind.NO_DRAFT, "No invoice to save")

            draft = _with_totals(self._current)
            customer = draft.customer.model_copy(update={
                "name": draft.customer.name.strip(),
                "email": draft.customer.email.strip(),
            })
            completed = draft.model_copy(update={
                "customer": customer,
                "status": InvoiceStatus.COMPLETED,
                "updated_at": now_utc(),
            }, deep=True)

            self._replace_completed(completed)
            self._current = None
            self._persist()

        try:
            self.sync_queue.enqueue(
                SyncAction.UPSERT,
                EntityType.INVOICE,
                completed.id,
                {"invoice": invoice_to_row(completed), "items": items_to_rows(completed)},
            )
        except QueueStorageError as e:
            return OperationResult.failed(
                ErrorKind.ENQUEUE_FAILED,
                f"Invoice {completed.invoice_number} saved locally but could not be queued for sync: {e}",
            )

        logger.info(f"Invoice {completed.invoice_number} completed")
        self.event_bus.publish(InvoiceCompleted.create(invoice=completed.model_copy(deep=True)))
        return OperationResult.ok()

    def load_completed(self, invoice_id: UUID) -> Invoice | None:
        """
        Copy a completed invoice into the draft slot for editing.

        Returns:
            Copy of the new draft, or None if no such completed invoice
        """
        with self._lock:
            found = self._find_completed(invoice_id)
            if found is None:
                return None
            self._current = found.model_copy(deep=True)
            self._persist()
            logger.info(f"Editing completed invoice {found.invoice_number}")
            return self._current.model_copy(deep=True)

    def delete_completed(self, invoice_id: UUID) -> OperationResult:
        """
        Remove a completed invoice locally and queue the remote delete.

        The local removal is not rolled back if queueing fails.

        Returns:
            OperationResult; on ENQUEUE_FAILED the invoice is still gone locally
        """
        with self._lock:
            before = len(self._completed)
            self._completed = [inv for inv in self._completed if inv.id != invoice_id]
            if len(self._completed) == before:
                logger.debug(f"delete_completed: {invoice_id} not held locally")
            if self._current is not None and self._current.id == invoice_id:
                self._current = None
            self._persist()

        try:
            self.sync_queue.enqueue(SyncAction.DELETE, EntityType.INVOICE, invoice_id)
        except QueueStorageError as e:
            return OperationResult.failed(
                ErrorKind.ENQUEUE_FAILED,
                f"Invoice deleted locally but the delete could not be queued for sync: {e}",
            )

        self.event_bus.publish(InvoiceDeleted.create(invoice_id=invoice_id))
        return OperationResult.ok()

    def mark_synced(self, invoice_id: UUID, synced_at=None) -> bool:
        """Stamp synced_at on a completed invoice the remote service acknowledged."""
        with self._lock:
            found = self._find_completed(invoice_id)
            if found is None:
                return False
            self._replace_completed(found.model_copy(update={"synced_at": synced_at or now_utc()}))
            self._persist()
            return True

    def merge_remote(self, invoices: list[Invoice]) -> int:
        """
        Refresh the completed collection from the remote list.

        Invoices with an outbox entry still waiting or parked keep their local
        version, since the local one is newer. A parked delete keeps the
        invoice deleted.

        Returns:
            Number of invoices added or replaced
        """
        pending = {e.entity_id for e in self.sync_queue.entries()}
        pending |= {e.entity_id for e in self.sync_queue.dead_letters()}
        merged = 0
        with self._lock:
            for invoice in invoices:
                if invoice.id in pending:
                    continue
                synced = invoice.model_copy(update={
                    "status": InvoiceStatus.COMPLETED,
                    "synced_at": invoice.synced_at or invoice.updated_at,
                })
                self._replace_completed(synced)
                merged += 1
            if merged:
                self._persist()
        return merged

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _require_draft(self) -> Invoice:
        if self._current is None:
            raise NoDraftError("No invoice is being edited. Start a new invoice first.")
        return self._current

    def _find_completed(self, invoice_id: UUID) -> Invoice | None:
        for invoice in self._completed:
            if invoice.id == invoice_id:
                return invoice
        return None

    def _replace_completed(self, invoice: Invoice) -> None:
        for i, existing in enumerate(self._completed):
            if existing.id == invoice.id:
                self._completed[i] = invoice
                return
        self._completed.append(invoice)

    def _next_invoice_number(self, invoice_date) -> str:
        """
        Invoice number for a date, using the remote sequence when reachable.

        Falls back to sequence 1 when there is no owner, no remote, the store
        is offline, or the sequence call fails.
        """
        sequence = 1
        owner_id = self._user_id
        if owner_id and self.remote is not None and not self._is_offline:
            try:
                sequence = self.remote.get_next_sequence(owner_id, date_key(invoice_date))
            except RemoteServiceError as e:
                logger.warning(f"Could not fetch invoice sequence, using 1: {e}")
                sequence = 1
        return generate(invoice_date, owner_id, max(sequence, 1))

    def _snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            current_invoice=self._current,
            completed_invoices=self._completed,
            user_id=self._user_id,
            is_offline=self._is_offline,
            buyback_rate=self._buyback_rate,
            limit_reached=self._limit_reached,
        )

    def _persist(self) -> None:
        try:
            self.persistence.save(self._snapshot())
        except Exception:
            logger.exception("Failed to persist invoice state")
