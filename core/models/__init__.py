"""Core domain models."""

from core.models.customer import CustomerSnapshot, CustomerStatus
from core.models.item import (
    Item, ItemMode, RegularItem, BuybackItem, ItemInput, ItemUpdate, item_mode,
)
from core.models.invoice import Invoice, InvoiceFieldsUpdate, InvoiceStatus
from core.models.sync import SyncAction, EntityType, SyncEntry, DrainStats
from core.models.result import OperationResult, ErrorKind

__all__ = [
    # Customer
    "CustomerSnapshot", "CustomerStatus",
    # Item
    "Item", "ItemMode", "RegularItem", "BuybackItem", "ItemInput", "ItemUpdate", "item_mode",
    # Invoice
    "Invoice", "InvoiceFieldsUpdate", "InvoiceStatus",
    # Sync
    "SyncAction", "EntityType", "SyncEntry", "DrainStats",
    # Result
    "OperationResult", "ErrorKind",
]
