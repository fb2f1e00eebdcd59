"""Invoice domain models.

All amounts are whole currency units (int). subtotal, tax_amount and total
are written only by the totals calculator; nothing else assigns them.
tax_percentage is a Decimal percentage (10 = 10%).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from core.models.customer import CustomerSnapshot
from core.models.item import Item, ItemMode, item_mode
from utils.timezone import now_utc


class InvoiceStatus(str, Enum):
    """Local invoice lifecycle status."""

    DRAFT = "draft"
    PENDING = "pending"
    COMPLETED = "completed"

    @classmethod
    def from_wire(cls, value: str) -> "InvoiceStatus":
        """Map the remote status to the local one. 'synced' is shown as completed."""
        if value == "synced":
            return cls.COMPLETED
        return cls(value)


class Invoice(BaseModel):
    """Invoice as held by the store, either the draft or a completed one."""

    id: UUID = Field(default_factory=uuid4)
    invoice_number: str
    invoice_date: date
    store_id: str | None = None
    customer: CustomerSnapshot = Field(default_factory=CustomerSnapshot)
    items: list[Item] = Field(default_factory=list)
    pricing_mode: ItemMode = ItemMode.REGULAR
    subtotal: int = Field(0, ge=0)
    shipping_cost: int = Field(0, ge=0)
    tax_enabled: bool = False
    tax_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    tax_amount: int = Field(0, ge=0)
    total: int = Field(0, ge=0)
    note: str | None = Field(None, max_length=2000)
    status: InvoiceStatus = InvoiceStatus.DRAFT
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
    synced_at: datetime | None = None

    @property
    def item_mode(self) -> ItemMode | None:
        """Mode of the items on the invoice, None while it has none."""
        if not self.items:
            return None
        return item_mode(self.items[0])

    @property
    def is_completed(self) -> bool:
        return self.status == InvoiceStatus.COMPLETED


class InvoiceFieldsUpdate(BaseModel):
    """Top-level draft fields that can be updated. All optional."""

    customer: CustomerSnapshot | None = None
    items: list[Item] | None = None
    shipping_cost: int | None = Field(None, ge=0)
    tax_enabled: bool | None = None
    tax_percentage: Decimal | None = Field(None, ge=0, le=100)
    note: str | None = Field(None, max_length=2000)
    invoice_date: date | None = None
    store_id: str | None = None
