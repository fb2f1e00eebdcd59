"""
Invoice number generation.

Format: INV-DDMMYY-OWNERCOD-SSS

    INV-011125-88A60EE2-001

OWNERCOD is the first 8 characters of the owner id, uppercased, so every
invoice of one account shares it. SSS is the per-owner, per-day sequence
handed out by the remote service. Same inputs always give the same number,
so regenerating after a date change is safe.
"""

from datetime import date

PLACEHOLDER_OWNER = "XXXXXXXX"
MAX_SEQUENCE = 999

_OWNER_CODE_LENGTH = 8


def owner_code(owner_id: str | None) -> str:
    """8-character uppercase owner code, or the placeholder when unknown."""
    if not owner_id:
        return PLACEHOLDER_OWNER
    return str(owner_id)[:_OWNER_CODE_LENGTH].upper().ljust(_OWNER_CODE_LENGTH, "X")


def date_key(invoice_date: date) -> str:
    """Key used to ask the remote service for the next sequence (YYYY-MM-DD)."""
    return invoice_date.isoformat()


def generate(invoice_date: date, owner_id: str | None, sequence: int) -> str:
    """
    Build an invoice number.

    Args:
        invoice_date: Business date of the invoice
        owner_id: Owner identifier; None gives the XXXXXXXX placeholder
        sequence: 1-based daily sequence, capped at 999

    Raises:
        ValueError: If sequence is below 1
    """
    if sequence < 1:
        raise ValueError(f"Invoice sequence must be at least 1, got {sequence}")

    sequence = min(sequence, MAX_SEQUENCE)
    return (
        f"INV-{invoice_date:%d%m%y}-{owner_code(owner_id)}-{sequence:03d}"
    )


def needs_owner_fix(invoice_number: str | None) -> bool:
    """True if the number was generated before the owner was known."""
    return bool(invoice_number) and f"-{PLACEHOLDER_OWNER}-" in invoice_number
