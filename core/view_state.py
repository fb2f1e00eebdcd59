"""
Screen flow for invoice editing: HOME -> FORM -> PREVIEW -> HOME.

The controller holds no invoice data of its own. It reads the store on each
transition, so returning to HOME after a save shows the completed invoice
immediately without a reload.
"""

import logging
import threading
from enum import Enum

from core.config import InvoiceConfig
from core.errors import PreviewBlockedError
from core.event_bus import EventBus
from core.events import SyncLimitReached, SyncRejected, SyncRetryScheduled
from core.models import Invoice, OperationResult
from core.services.invoice_store import InvoiceStore

logger = logging.getLogger(__name__)

RETRY_NOTICE = "Showing local data, will retry"
LIMIT_NOTICE = "Invoice limit reached. Upgrade to continue syncing."
REJECTED_NOTICE = "An invoice could not be synced"


class ViewState(str, Enum):
    HOME = "home"
    FORM = "form"
    PREVIEW = "preview"


class ViewStateController:
    """
    Navigation between the dashboard, the edit form and the preview.

    Sync problems never interrupt navigation; they are collected in
    notifications for the UI to show as non-blocking banners.
    """

    def __init__(
        self,
        store: InvoiceStore,
        event_bus: EventBus | None = None,
        config: InvoiceConfig | None = None,
    ):
        self.store = store
        self.config = config or store.config
        self.state = ViewState.HOME
        self.notifications: list[str] = []
        self._notify_lock = threading.Lock()

        if event_bus is not None:
            event_bus.subscribe("SyncRetryScheduled", self._on_retry)
            event_bus.subscribe("SyncLimitReached", self._on_limit)
            event_bus.subscribe("SyncRejected", self._on_rejected)

    def open_form(self) -> Invoice:
        """Go to the form, starting a draft if there is none."""
        draft = self.store.current_invoice
        if draft is None:
            draft = self.store.initialize_new_invoice()
        self.state = ViewState.FORM
        return draft

    def new_invoice(self) -> Invoice:
        """Discard the current draft and start over. Caller confirms first."""
        draft = self.store.initialize_new_invoice()
        self.state = ViewState.FORM
        return draft

    def preview_errors(self) -> dict[str, str]:
        """What stops the draft from being previewed. Empty when ready."""
        draft = self.store.current_invoice
        if draft is None:
            return {"invoice": "No invoice in progress"}

        errors = {}
        if not draft.items:
            errors["items"] = "Add at least one item"
        errors.update(draft.customer.field_errors(self.config.customer_name_min_length))
        if not draft.invoice_number:
            errors["invoice_number"] = "Invoice number is missing"
        return errors

    def open_preview(self) -> Invoice:
        """
        Go to the preview.

        Raises:
            PreviewBlockedError: With the failing fields; state is unchanged
        """
        errors = self.preview_errors()
        if errors:
            raise PreviewBlockedError(errors)
        self.state = ViewState.PREVIEW
        return self.store.current_invoice

    def back(self) -> ViewState:
        """Step back one screen. The draft is kept."""
        if self.state == ViewState.PREVIEW:
            self.state = ViewState.FORM
        elif self.state == ViewState.FORM:
            self.state = ViewState.HOME
        return self.state

    def complete(self) -> OperationResult:
        """Save the draft and return HOME on success; stay on preview otherwise."""
        result = self.store.save_completed()
        if result.success:
            self.state = ViewState.HOME
        else:
            logger.info(f"Save failed ({result.error_kind}): {result.error}")
        return result

    def edit_completed(self, invoice_id) -> Invoice | None:
        """Open a completed invoice in the form."""
        draft = self.store.load_completed(invoice_id)
        if draft is not None:
            self.state = ViewState.FORM
        return draft

    def history(self) -> list[Invoice]:
        """Completed invoices, newest business date first."""
        return sorted(
            self.store.completed_invoices,
            key=lambda inv: (inv.invoice_date, inv.created_at),
            reverse=True,
        )

    def take_notifications(self) -> list[str]:
        """Return and clear pending notifications."""
        with self._notify_lock:
            pending, self.notifications = self.notifications, []
        return pending

    def _notify(self, message: str) -> None:
        with self._notify_lock:
            if message not in self.notifications:
                self.notifications.append(message)

    def _on_retry(self, event: SyncRetryScheduled):
        self._notify(RETRY_NOTICE)

    def _on_limit(self, event: SyncLimitReached):
        self._notify(LIMIT_NOTICE)

    def _on_rejected(self, event: SyncRejected):
        self._notify(f"{REJECTED_NOTICE}: {event.error}")
