"""
Render hand-off for completed invoices.

Renderers receive amounts exactly as stored on the invoice. Nothing here
recomputes totals, so the exported document always matches what was saved
and synced.
"""

import re
from typing import Any, Protocol

from core.models import BuybackItem, Invoice
from core.money import format_currency

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


class InvoiceRenderer(Protocol):
    """Turns a render payload into a document (image or PDF bytes)."""

    def render(self, payload: dict[str, Any]) -> bytes: ...


def _item_line(item, symbol: str) -> dict[str, Any]:
    if isinstance(item, BuybackItem):
        return {
            "description": item.description,
            "gram": str(item.gram),
            "rate": format_currency(item.buyback_rate, symbol),
            "amount": format_currency(item.total, symbol),
        }
    return {
        "description": item.description,
        "quantity": item.quantity,
        "price": format_currency(item.price, symbol),
        "amount": format_currency(item.subtotal, symbol),
    }


def build_render_payload(invoice: Invoice, currency_symbol: str = "Rp") -> dict[str, Any]:
    """
    Everything a template needs to draw the invoice.

    Totals are taken from the invoice as stored.
    """
    customer = invoice.customer
    payload = {
        "invoice_number": invoice.invoice_number,
        "invoice_date": invoice.invoice_date.strftime("%d/%m/%Y"),
        "pricing_mode": invoice.pricing_mode.value,
        "customer": {
            "name": customer.name,
            "phone": customer.phone,
            "email": customer.email,
            "address": customer.address,
            "status": customer.status.value,
        },
        "items": [_item_line(item, currency_symbol) for item in invoice.items],
        "subtotal": format_currency(invoice.subtotal, currency_symbol),
        "shipping_cost": format_currency(invoice.shipping_cost, currency_symbol),
        "total": format_currency(invoice.total, currency_symbol),
        "note": invoice.note or "",
    }
    if invoice.tax_enabled:
        payload["tax_percentage"] = f"{invoice.tax_percentage.normalize():f}"
        payload["tax_amount"] = format_currency(invoice.tax_amount, currency_symbol)
    return payload


def export_filename(invoice: Invoice, extension: str = "jpg") -> str:
    """
    File name for a downloaded invoice: Invoice_{Customer_Name}_{DDMMYY}.jpg

    Punctuation is stripped from the name and spaces become underscores.
    """
    name = _NON_ALNUM.sub("", invoice.customer.name.strip())
    name = _WHITESPACE.sub("_", name).strip("_") or "Customer"
    return f"Invoice_{name}_{invoice.invoice_date.strftime('%d%m%y')}.{extension}"


def export(invoice: Invoice, renderer: InvoiceRenderer, currency_symbol: str = "Rp") -> tuple[str, bytes]:
    """Render an invoice. Returns (filename, document bytes)."""
    payload = build_render_payload(invoice, currency_symbol)
    return export_filename(invoice), renderer.render(payload)
