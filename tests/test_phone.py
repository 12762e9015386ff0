"""
Tests for phone number normalization (functions/shared/phone.py).
"""

import pytest

from shared.phone import normalize_phone


class TestNormalizePhone:
    """Tests for normalize_phone."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("0171 2345678", "+491712345678"),
            ("0171-234-5678", "+491712345678"),
            ("(0171) 2345678", "+491712345678"),
            ("49 171 2345678", "+491712345678"),
            ("+49 171 2345678", "+491712345678"),
            ("171 2345678", "+491712345678"),
            ("+43 660 1234567", "+436601234567"),
        ],
    )
    def test_normalizes_to_e164(self, raw, expected):
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "0171", "+49 12", "0171 23A5678", "++491712345678"])
    def test_rejects_invalid_numbers(self, raw):
        assert normalize_phone(raw) is None
