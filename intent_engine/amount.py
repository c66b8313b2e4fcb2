"""
Intent Engine - Amount Codec.

============================================================
PURPOSE
============================================================
Conversion between native integer units (wei, satoshi, lamports) and
decimal display strings, plus the per-intent amount nonce.

INVARIANTS:
- to_native(from_native(n, d), d) == n for every n >= 0, d >= 0
- Matching is exact equality on the full raw integer

============================================================
"""

import re
import secrets
from decimal import Decimal, ROUND_DOWN, InvalidOperation
from typing import Optional, Tuple, Union

from .exceptions import MalformedAmountError


_DECIMAL_PATTERN = re.compile(r"^(\d*)(?:\.(\d*))?$")

# Leading digits of a base amount the nonce never replaces.
NONCE_KEPT_DIGITS = 4


# ============================================================
# CODEC
# ============================================================

def to_native(amount: Union[str, Decimal, int], decimals: int) -> int:
    """
    Convert a decimal amount to raw native units.

    The fractional part is right-padded with zeros or truncated to
    `decimals` digits.

    Args:
        amount: Decimal string such as "0.05"
        decimals: Asset precision

    Returns:
        Raw integer amount

    Raises:
        MalformedAmountError: On anything but a non-negative decimal
    """
    if decimals < 0:
        raise MalformedAmountError(f"Negative decimals: {decimals}")
    if isinstance(amount, bool):
        raise MalformedAmountError(f"Not an amount: {amount!r}")
    if isinstance(amount, int):
        if amount < 0:
            raise MalformedAmountError(f"Negative amount: {amount}")
        return amount * 10 ** decimals
    if isinstance(amount, Decimal):
        if not amount.is_finite():
            raise MalformedAmountError(f"Not a finite amount: {amount}")
        amount = format(amount, "f")
    if not isinstance(amount, str):
        raise MalformedAmountError(f"Not an amount: {amount!r}")

    text = amount.strip()
    match = _DECIMAL_PATTERN.match(text)
    if not text or match is None or text == ".":
        raise MalformedAmountError(f"Malformed amount: {amount!r}")

    whole, fraction = match.group(1) or "0", match.group(2) or ""
    fraction = fraction[:decimals].ljust(decimals, "0")
    return int(whole) * 10 ** decimals + (int(fraction) if fraction else 0)


def from_native(raw: int, decimals: int) -> str:
    """
    Convert raw native units to a decimal string.

    Trailing zeros of the fraction are trimmed; whole amounts have no dot.
    """
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise MalformedAmountError(f"Raw amount must be a non-negative integer: {raw!r}")
    if decimals < 0:
        raise MalformedAmountError(f"Negative decimals: {decimals}")
    if decimals == 0:
        return str(raw)

    digits = str(raw).rjust(decimals + 1, "0")
    whole, fraction = digits[:-decimals], digits[-decimals:].rstrip("0")
    return f"{whole}.{fraction}" if fraction else whole


def parse_decimal(amount: Union[str, Decimal, int, float]) -> Decimal:
    """Parse a positive fiat amount."""
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise MalformedAmountError(f"Malformed amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise MalformedAmountError(f"Amount must be positive: {amount!r}")
    return value


def fiat_to_native(amount_fiat: Decimal, rate: Decimal, decimals: int) -> int:
    """
    Convert a fiat amount to raw units at `rate` fiat per whole unit.

    Rounds down so the donor never owes more than requested.
    """
    if rate <= 0:
        raise MalformedAmountError(f"Rate must be positive: {rate}")
    units = (amount_fiat / rate).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)
    return to_native(units, decimals)


def native_to_fiat(raw: int, decimals: int, rate: Decimal) -> Decimal:
    """Fiat value of a raw amount, to cents."""
    units = Decimal(raw).scaleb(-decimals)
    return (units * rate).quantize(Decimal("0.01"))


# ============================================================
# AMOUNT NONCE
# ============================================================

def draw_nonce(nonce_width: int) -> int:
    """Random nonce in [1, 10**nonce_width)."""
    if nonce_width <= 0:
        return 0
    return secrets.randbelow(10 ** nonce_width - 1) + 1


def with_nonce(
    expected: int,
    nonce_width: int,
    nonce: Optional[int] = None,
) -> int:
    """
    Replace the lowest `nonce_width` digits of `expected` with a nonce.

    Args:
        expected: Raw expected amount
        nonce_width: Number of low-order digits to replace
        nonce: Nonce to embed (drawn at random when omitted)

    Returns:
        Nonced raw amount
    """
    return embed_nonce(expected, nonce_width, nonce)[0]


def embed_nonce(
    expected: int,
    nonce_width: int,
    nonce: Optional[int] = None,
) -> Tuple[int, int]:
    """Like with_nonce, also returning the embedded nonce."""
    if expected < 0:
        raise MalformedAmountError(f"Negative amount: {expected}")
    if nonce_width <= 0:
        return expected, 0
    modulus = 10 ** nonce_width
    if nonce is None:
        nonce = draw_nonce(nonce_width)
    if not 0 <= nonce < modulus:
        raise MalformedAmountError(f"Nonce {nonce} does not fit in {nonce_width} digits")
    return expected - expected % modulus + nonce, nonce


def extract_nonce(raw: int, nonce_width: int) -> int:
    """Nonce carried by a raw amount."""
    if nonce_width <= 0:
        return 0
    return raw % 10 ** nonce_width


def effective_nonce_width(nonce_width: int, decimals: int, base_raw: Optional[int] = None) -> int:
    """
    Width actually used for an asset and base amount.

    The nonce stays within the fraction, and below the fourth significant
    digit of the base amount so the donor-visible change is under 0.1%.
    """
    width = min(nonce_width, decimals)
    if base_raw is not None:
        width = min(width, len(str(base_raw)) - NONCE_KEPT_DIGITS)
    return max(0, width)


def amounts_match(detected: int, expected: int) -> bool:
    """Exact match on the full raw integer."""
    return detected == expected


# ============================================================
# DISPLAY
# ============================================================

def format_amount(raw: int, decimals: int, symbol: str = "") -> str:
    """Human display such as "0.050123 ETH"."""
    text = from_native(raw, decimals)
    return f"{text} {symbol}" if symbol else text
