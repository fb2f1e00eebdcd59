"""Invoice engine configuration."""

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class InvoiceConfig(BaseSettings):
    """
    Invoice engine configuration.

    Every field can be set from an INVOICE_<FIELD> environment variable (or
    a .env file); keyword arguments take precedence. Durations are in their
    natural units (seconds for retry delays, minutes for the background sync
    interval).
    """

    model_config = SettingsConfigDict(
        env_prefix="INVOICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Locale
    timezone: str = Field(
        default="Asia/Jakarta",
        description="IANA timezone used to resolve the invoice business date",
    )
    currency_symbol: str = Field(
        default="Rp",
        description="Prefix for formatted amounts",
    )

    # Invoice defaults
    default_tax_enabled: bool = Field(
        default=False,
        description="Whether new drafts start with tax applied",
    )
    default_tax_percentage: Decimal = Field(
        default=Decimal("0"),
        description="Tax percentage seeded into new drafts",
        ge=0,
        le=100,
    )
    default_buyback_rate: int = Field(
        default=0,
        description="Price per gram used when a buyback item has no own rate",
        ge=0,
    )
    customer_name_min_length: int = Field(
        default=3,
        description="Minimum customer name length before preview is allowed",
        ge=1,
        le=50,
    )

    # Sync
    retry_base_delay_seconds: float = Field(
        default=1.0,
        description="First retry delay for a failed outbox entry",
        gt=0,
        le=60,
    )
    retry_max_delay_seconds: float = Field(
        default=300.0,
        description="Upper bound for the exponential retry delay",
        gt=0,
        le=3600,
    )
    auto_sync_interval_minutes: int = Field(
        default=5,
        description="Background drain interval",
        ge=1,
        le=60,
    )

    # Remote service
    api_base_url: str = Field(
        default="http://localhost:8000/api",
        description="Base URL of the remote invoice service",
    )
    api_timeout_seconds: int = Field(
        default=10,
        description="HTTP timeout for remote invoice calls",
        ge=1,
        le=120,
    )

    # Storage
    data_dir: str = Field(
        default=".invoice-data",
        description="Directory for the file-backed state and outbox",
    )
    valkey_url: str | None = Field(
        default=None,
        description="Use Valkey for state and outbox instead of files when set",
    )


def load_config() -> InvoiceConfig:
    """
    Build config from INVOICE_* environment variables.

    Unset or empty variables keep their defaults. Raises
    pydantic.ValidationError on out-of-bounds values.
    """
    return InvoiceConfig()
