"""Customer snapshot embedded in an invoice.

The invoice keeps its own copy of the customer. Editing the customer record
later never changes an invoice that was already written.
"""

import re
from enum import Enum

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from pydantic import EmailStr

# 8-15 digits with an optional + prefix: +628123456789, 08123456789
_PHONE_PATTERN = re.compile(r"^\+?[0-9]{8,15}$")

_email_adapter = TypeAdapter(EmailStr)


class CustomerStatus(str, Enum):
    """Customer category printed on the invoice."""

    CUSTOMER = "Customer"
    RESELLER = "Reseller"
    DISTRIBUTOR = "Distributor"


class CustomerSnapshot(BaseModel):
    """Denormalized customer details as of invoice writing time."""

    name: str = Field("", max_length=200)
    phone: str = Field("", max_length=20)
    email: str = Field("", max_length=320)
    address: str = Field("", max_length=500)
    status: CustomerStatus = CustomerStatus.CUSTOMER

    def field_errors(self, name_min_length: int = 3) -> dict[str, str]:
        """
        Check the fields a finished invoice needs.

        Name is required; phone and email are only checked when given.

        Returns:
            Dict of {field: message}. Empty dict if valid.
        """
        errors = {}

        if len(self.name.strip()) < name_min_length:
            errors["customer.name"] = (
                f"Customer name must be at least {name_min_length} characters"
            )

        if self.phone and not _PHONE_PATTERN.match(self.phone.strip()):
            errors["customer.phone"] = (
                "Invalid phone number format. Use 8-15 digits, optional + prefix"
            )

        if self.email:
            try:
                _email_adapter.validate_python(self.email.strip())
            except ValidationError:
                errors["customer.email"] = "Invalid email format"

        return errors
