"""
Intent Engine - Transaction hash normalization.

One normalizer per network family, applied to user-supplied hashes of
arbitrary casing/prefix before any chain call.

- EVM: lowercase, `0x` inserted when missing, hex only, at most 64 hex
  digits, left-padded to 64
- UTXO: `0x` stripped, lowercase, exactly 64 hex digits
- Solana: Base58 signature, at least 32 characters
"""

import re

import base58

from .exceptions import InvalidHashFormatError
from .types import NetworkFamily


_HEX = re.compile(r"^[0-9a-f]+$")
_HEX_64 = re.compile(r"^[0-9a-f]{64}$")


def normalize_evm_tx_hash(raw: str) -> str:
    text = (raw or "").strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if not text or not _HEX.match(text) or len(text) > 64:
        raise InvalidHashFormatError(f"Invalid EVM transaction hash: {raw!r}")
    return "0x" + text.rjust(64, "0")


def normalize_utxo_tx_hash(raw: str) -> str:
    text = (raw or "").strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if not _HEX_64.match(text):
        raise InvalidHashFormatError(f"Invalid UTXO transaction hash: {raw!r}")
    return text


def normalize_solana_signature(raw: str) -> str:
    text = (raw or "").strip()
    if len(text) < 32:
        raise InvalidHashFormatError(f"Solana signature too short: {raw!r}")
    try:
        base58.b58decode(text)
    except ValueError as e:
        raise InvalidHashFormatError(f"Invalid Solana signature: {raw!r}", original_error=e)
    return text


_NORMALIZERS = {
    NetworkFamily.EVM: normalize_evm_tx_hash,
    NetworkFamily.UTXO: normalize_utxo_tx_hash,
    NetworkFamily.SOL: normalize_solana_signature,
}


def normalize_tx_hash(family: NetworkFamily, raw: str) -> str:
    """
    Normalize a hash for a network family.

    Raises:
        InvalidHashFormatError: If the hash cannot belong to the family
    """
    return _NORMALIZERS[family](raw)


def mask_tx_hash(tx_hash: str, visible: int = 6) -> str:
    """Shorten a hash for logs: 0x1234...abcd."""
    if not tx_hash or len(tx_hash) <= visible * 2 + 3:
        return tx_hash
    return f"{tx_hash[:visible]}...{tx_hash[-visible:]}"
