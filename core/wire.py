"""
Conversion between Invoice and the remote service's row format.

The remote service stores the invoice as a flat row (customer fields
prefixed with customer_) plus one row per item carrying its position.
Persisted invoices use the wire status 'synced', read back as completed.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from core.models import (
    BuybackItem, CustomerSnapshot, CustomerStatus, Invoice, InvoiceStatus,
    ItemMode, RegularItem,
)
from utils.timezone import parse_iso, parse_local_date

WIRE_STATUS_SYNCED = "synced"


def invoice_to_row(invoice: Invoice) -> dict[str, Any]:
    """Flatten an invoice for upsert. Totals are sent as stored, never recomputed."""
    return {
        "id": str(invoice.id),
        "store_id": invoice.store_id,
        "invoice_number": invoice.invoice_number,
        "invoice_date": invoice.invoice_date.isoformat(),
        "customer_name": invoice.customer.name,
        "customer_phone": invoice.customer.phone,
        "customer_email": invoice.customer.email,
        "customer_address": invoice.customer.address,
        "customer_status": invoice.customer.status.value,
        "subtotal": invoice.subtotal,
        "shipping_cost": invoice.shipping_cost,
        "tax_enabled": invoice.tax_enabled,
        "tax_percentage": str(invoice.tax_percentage),
        "tax_amount": invoice.tax_amount,
        "total": invoice.total,
        "note": invoice.note or "",
        "status": WIRE_STATUS_SYNCED,
        "created_at": invoice.created_at.isoformat(),
        "updated_at": invoice.updated_at.isoformat(),
    }


def items_to_rows(invoice: Invoice) -> list[dict[str, Any]]:
    """Item rows in display order. Only the fields of each item's mode are sent."""
    rows = []
    for position, item in enumerate(invoice.items):
        row: dict[str, Any] = {
            "id": str(item.id),
            "description": item.description,
            "position": position,
        }
        if isinstance(item, BuybackItem):
            row.update({
                "is_buyback": True,
                "gram": str(item.gram),
                "buyback_rate": item.buyback_rate,
                "total": item.total,
            })
        else:
            row.update({
                "is_buyback": False,
                "quantity": item.quantity,
                "price": item.price,
                "subtotal": item.subtotal,
            })
        rows.append(row)
    return rows


def _row_to_item(row: dict[str, Any]) -> RegularItem | BuybackItem:
    if row.get("is_buyback"):
        return BuybackItem(
            id=row["id"],
            description=row["description"],
            gram=Decimal(str(row["gram"])),
            buyback_rate=int(row["buyback_rate"]),
        )
    return RegularItem(
        id=row["id"],
        description=row["description"],
        quantity=int(row["quantity"]),
        price=int(row["price"]),
    )


def row_to_invoice(row: dict[str, Any], item_rows: list[dict[str, Any]]) -> Invoice:
    """
    Rebuild an Invoice from the remote format.

    Raises:
        KeyError / pydantic.ValidationError: If the row is malformed
    """
    items = [_row_to_item(r) for r in sorted(item_rows, key=lambda r: r.get("position", 0))]
    pricing_mode = ItemMode.BUYBACK if items and isinstance(items[0], BuybackItem) else ItemMode.REGULAR
    invoice_date: date = parse_local_date(row["invoice_date"])

    values: dict[str, Any] = {
        "id": row["id"],
        "invoice_number": row["invoice_number"],
        "invoice_date": invoice_date,
        "store_id": row.get("store_id"),
        "customer": CustomerSnapshot(
            name=row.get("customer_name") or "",
            phone=row.get("customer_phone") or "",
            email=row.get("customer_email") or "",
            address=row.get("customer_address") or "",
            status=CustomerStatus(row.get("customer_status") or CustomerStatus.CUSTOMER.value),
        ),
        "items": items,
        "pricing_mode": pricing_mode,
        "subtotal": int(row["subtotal"]),
        "shipping_cost": int(row.get("shipping_cost") or 0),
        "tax_enabled": bool(row.get("tax_enabled", False)),
        "tax_percentage": Decimal(str(row.get("tax_percentage") or "0")),
        "tax_amount": int(row.get("tax_amount") or 0),
        "total": int(row["total"]),
        "note": row.get("note") or None,
        "status": InvoiceStatus.from_wire(row.get("status") or WIRE_STATUS_SYNCED),
    }
    for field in ("created_at", "updated_at", "synced_at"):
        if row.get(field):
            values[field] = parse_iso(row[field])

    return Invoice.model_validate(values)
