"""
Amount Codec Tests.

============================================================
PURPOSE
============================================================
Conversion between raw native units and decimal strings, the
amount nonce, and fiat conversion.

============================================================
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from intent_engine.amount import (
    amounts_match,
    effective_nonce_width,
    embed_nonce,
    extract_nonce,
    fiat_to_native,
    format_amount,
    from_native,
    native_to_fiat,
    parse_decimal,
    to_native,
    with_nonce,
)
from intent_engine.exceptions import MalformedAmountError


# ============================================================
# CODEC TESTS
# ============================================================

class TestToNative:
    """Tests for decimal -> raw conversion."""

    def test_ether_fraction(self):
        assert to_native("0.05", 18) == 50_000_000_000_000_000

    def test_whole_amount(self):
        assert to_native("2", 8) == 200_000_000

    def test_pads_short_fraction(self):
        assert to_native("1.5", 6) == 1_500_000

    def test_truncates_excess_precision(self):
        """Digits beyond the asset precision are dropped, never rounded."""
        assert to_native("0.123456789", 6) == 123_456

    def test_leading_dot(self):
        assert to_native(".5", 2) == 50

    def test_decimal_input(self):
        assert to_native(Decimal("0.00000001"), 8) == 1

    def test_zero_decimals(self):
        assert to_native("42", 0) == 42

    @pytest.mark.parametrize("bad", ["", ".", "abc", "-1", "1.2.3", "1e5", " "])
    def test_malformed_rejected(self, bad):
        with pytest.raises(MalformedAmountError):
            to_native(bad, 18)

    def test_negative_decimals_rejected(self):
        with pytest.raises(MalformedAmountError):
            to_native("1", -1)

    def test_non_finite_decimal_rejected(self):
        with pytest.raises(MalformedAmountError):
            to_native(Decimal("NaN"), 8)


class TestFromNative:
    """Tests for raw -> decimal conversion."""

    def test_trims_trailing_zeros(self):
        assert from_native(50_000_000_000_000_000, 18) == "0.05"

    def test_whole_amount_has_no_dot(self):
        assert from_native(300_000_000, 8) == "3"

    def test_small_amount(self):
        assert from_native(1, 8) == "0.00000001"

    def test_zero(self):
        assert from_native(0, 18) == "0"

    def test_zero_decimals(self):
        assert from_native(7, 0) == "7"

    def test_negative_rejected(self):
        with pytest.raises(MalformedAmountError):
            from_native(-1, 8)

    @settings(max_examples=200)
    @given(raw=st.integers(min_value=0), decimals=st.integers(min_value=0, max_value=18))
    def test_round_trip(self, raw, decimals):
        assert to_native(from_native(raw, decimals), decimals) == raw

    def test_format_amount_with_symbol(self):
        assert format_amount(150_000_000, 8, "BTC") == "1.5 BTC"


# ============================================================
# NONCE TESTS
# ============================================================

class TestNonce:
    """Tests for the per-intent amount nonce."""

    def test_with_nonce_replaces_low_digits(self):
        assert with_nonce(50_000_000_000_000_000, 6, nonce=123_456) == 50_000_000_000_123_456

    def test_with_nonce_overwrites_existing_low_digits(self):
        assert with_nonce(1_999_999, 3, nonce=7) == 1_999_007

    def test_random_nonce_stays_in_range(self):
        for _ in range(50):
            raw, nonce = embed_nonce(100_000_000, 6)
            assert 1 <= nonce < 10 ** 6
            assert raw - 100_000_000 == nonce
            assert extract_nonce(raw, 6) == nonce

    def test_zero_width_is_identity(self):
        assert embed_nonce(12345, 0) == (12345, 0)

    def test_nonce_too_wide_rejected(self):
        with pytest.raises(MalformedAmountError):
            with_nonce(1_000_000, 2, nonce=100)

    def test_effective_width_clamped_to_decimals(self):
        assert effective_nonce_width(6, 18) == 6
        assert effective_nonce_width(6, 2) == 2
        assert effective_nonce_width(6, 0) == 0

    def test_effective_width_clamped_to_base_amount(self):
        assert effective_nonce_width(6, 8, base_raw=100_000) == 2
        assert effective_nonce_width(6, 6, base_raw=5_000_000) == 3
        assert effective_nonce_width(6, 18, base_raw=50_000_000_000_000_000) == 6
        assert effective_nonce_width(6, 8, base_raw=999) == 0

    @settings(max_examples=200)
    @given(
        base=st.integers(min_value=0, max_value=10 ** 30),
        width=st.integers(min_value=1, max_value=12),
    )
    def test_nonce_is_recoverable(self, base, width):
        raw, nonce = embed_nonce(base, width)

        assert extract_nonce(raw, width) == nonce
        assert raw // 10 ** width == base // 10 ** width

    @settings(max_examples=200)
    @given(
        base=st.integers(min_value=0, max_value=10 ** 30),
        width=st.integers(min_value=1, max_value=12),
    )
    def test_independent_nonces_disambiguate(self, base, width):
        first, first_nonce = embed_nonce(base, width)
        second, second_nonce = embed_nonce(base, width)

        assert (first == second) == (first_nonce == second_nonce)
        assert amounts_match(first, second) == (first_nonce == second_nonce)

    def test_collisions_are_rare_at_default_width(self):
        drawn = {embed_nonce(50_000_000_000_000_000, 6)[0] for _ in range(200)}

        # about 0.02 repeats expected across 200 draws of 999999 values
        assert len(drawn) >= 198

    def test_match_is_exact(self):
        assert amounts_match(50_000_000_000_123_456, 50_000_000_000_123_456)
        assert not amounts_match(50_000_000_000_123_457, 50_000_000_000_123_456)
        assert not amounts_match(50_000_000_000_000_000, 50_000_000_000_123_456)


# ============================================================
# FIAT TESTS
# ============================================================

class TestFiat:
    """Tests for fiat conversion."""

    def test_fiat_to_native_rounds_down(self):
        # 10 USD at 3 USD/unit = 3.333... units
        assert fiat_to_native(Decimal("10"), Decimal("3"), 2) == 333

    def test_fiat_to_native_ether(self):
        assert fiat_to_native(Decimal("100"), Decimal("2000"), 18) == 50_000_000_000_000_000

    def test_native_to_fiat_cents(self):
        assert native_to_fiat(50_000_000_000_000_000, 18, Decimal("2000")) == Decimal("100.00")

    def test_parse_decimal_rejects_non_positive(self):
        with pytest.raises(MalformedAmountError):
            parse_decimal("0")
        with pytest.raises(MalformedAmountError):
            parse_decimal("-5")

    def test_parse_decimal_rejects_garbage(self):
        with pytest.raises(MalformedAmountError):
            parse_decimal("ten dollars")

    def test_zero_rate_rejected(self):
        with pytest.raises(MalformedAmountError):
            fiat_to_native(Decimal("10"), Decimal("0"), 8)
