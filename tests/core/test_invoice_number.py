"""Tests for invoice number generation."""

from datetime import date

import pytest

from core.invoice_number import (
    MAX_SEQUENCE, PLACEHOLDER_OWNER, date_key, generate, needs_owner_fix, owner_code,
)


class TestGenerate:

    def test_known_number(self):
        assert generate(date(2025, 11, 1), "88a60ee2-4f1b-4c55-9a8e-2d3c1f0b7e61", 1) == "INV-011125-88A60EE2-001"

    def test_same_inputs_same_number(self):
        d = date(2026, 2, 14)
        assert generate(d, "abcdef1234", 7) == generate(d, "abcdef1234", 7)

    def test_next_sequence_changes_only_last_segment(self):
        d = date(2026, 2, 14)
        first = generate(d, "abcdef1234", 41)
        second = generate(d, "abcdef1234", 42)

        assert first.rsplit("-", 1)[0] == second.rsplit("-", 1)[0]
        assert first.endswith("-041")
        assert second.endswith("-042")

    def test_sequence_capped_at_999(self):
        number = generate(date(2025, 1, 1), "owner123", 1500)
        assert number.endswith(f"-{MAX_SEQUENCE}")

    @pytest.mark.parametrize("sequence", [0, -1])
    def test_sequence_below_one_rejected(self, sequence):
        with pytest.raises(ValueError, match="at least 1"):
            generate(date(2025, 1, 1), "owner123", sequence)

    def test_unknown_owner_uses_placeholder(self):
        assert generate(date(2025, 11, 1), None, 3) == f"INV-011125-{PLACEHOLDER_OWNER}-003"


class TestOwnerCode:

    def test_uppercases_first_eight(self):
        assert owner_code("88a60ee2-rest") == "88A60EE2"

    def test_short_owner_padded(self):
        assert owner_code("ab12") == "AB12XXXX"

    def test_empty_owner_is_placeholder(self):
        assert owner_code("") == PLACEHOLDER_OWNER


class TestHelpers:

    def test_date_key_is_iso(self):
        assert date_key(date(2025, 11, 1)) == "2025-11-01"

    def test_placeholder_number_needs_fix(self):
        assert needs_owner_fix(generate(date(2025, 11, 1), None, 1)) is True

    def test_real_number_needs_no_fix(self):
        assert needs_owner_fix("INV-011125-88A60EE2-001") is False

    def test_missing_number_needs_no_fix(self):
        assert needs_owner_fix(None) is False
