"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, today_in, parse_iso, parse_local_date
