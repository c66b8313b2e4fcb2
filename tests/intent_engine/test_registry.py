"""
Registry, Hash Normalization and Payment URI Tests.

============================================================
PURPOSE
============================================================
Static catalog lookups, per-network address formats, transaction
hash normalization and QR payload construction.

============================================================
"""

import pytest

from intent_engine.exceptions import (
    InvalidAddressError,
    InvalidHashFormatError,
    UnknownAssetError,
    UnknownNetworkError,
)
from intent_engine.payment_uri import build_payment_uri, explorer_address_url, explorer_tx_url
from intent_engine.tx_hash import mask_tx_hash, normalize_tx_hash
from intent_engine.types import AssetKind, NetworkFamily

from factories import (
    BTC,
    BTC_DEPOSIT,
    ETH,
    ETH_DEPOSIT,
    LTC,
    LTC_DEPOSIT,
    SOL,
    SOL_DEPOSIT,
    USDC_SOL,
)


# ============================================================
# LOOKUP TESTS
# ============================================================

class TestRegistryLookups:
    """Tests for network and asset lookups."""

    def test_ethereum_network(self, registry):
        network = registry.network(ETH)

        assert network.family == NetworkFamily.EVM
        assert network.native_symbol == "ETH"
        assert network.confirmations_required == 12
        assert network.chain_id == 1

    def test_bitcoin_asset(self, registry):
        asset = registry.asset("btc_bitcoin_mainnet")

        assert asset.decimals == 8
        assert asset.kind == AssetKind.UTXO
        assert asset.contract_ref is None

    def test_usdc_is_token(self, registry):
        asset = registry.asset("usdc_ethereum_mainnet")

        assert asset.decimals == 6
        assert asset.is_token
        assert asset.price_id == "usd-coin"

    def test_unknown_network_raises(self, registry):
        with pytest.raises(UnknownNetworkError):
            registry.network("dogecoin_mainnet")

    def test_unknown_asset_raises(self, registry):
        with pytest.raises(UnknownAssetError):
            registry.asset("shib_ethereum_mainnet")

    def test_asset_on_wrong_network_raises(self, registry):
        with pytest.raises(UnknownAssetError):
            registry.asset_on_network("usdc_ethereum_mainnet", "polygon_mainnet")

    def test_native_asset(self, registry):
        assert registry.native_asset(SOL).asset_id == "sol_solana_mainnet"

    def test_find_token_case_insensitive_on_evm(self, registry):
        token = registry.find_token(ETH, "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48")

        assert token is not None
        assert token.asset_id == "usdc_ethereum_mainnet"

    def test_find_spl_token_by_mint(self, registry):
        assert registry.find_token(SOL, USDC_SOL).asset_id == "usdc_solana_mainnet"

    def test_networks_of_family(self, registry):
        evm_ids = {n.network_id for n in registry.networks_of_family(NetworkFamily.EVM)}

        assert ETH in evm_ids
        assert BTC not in evm_ids


# ============================================================
# ADDRESS FORMAT TESTS
# ============================================================

class TestAddressFormats:
    """Tests for per-network address validation."""

    @pytest.mark.parametrize("network_id,address", [
        (ETH, ETH_DEPOSIT),
        (BTC, BTC_DEPOSIT),
        (BTC, "1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2"),
        (LTC, LTC_DEPOSIT),
        (LTC, "LVg2kJoFNg45Nbpy53h7Fe1wKyeXVRhMH9"),
        (SOL, SOL_DEPOSIT),
    ])
    def test_valid_addresses(self, registry, network_id, address):
        assert registry.is_valid_address(network_id, address)

    @pytest.mark.parametrize("network_id,address", [
        (ETH, "0x1234"),
        (ETH, BTC_DEPOSIT),
        (LTC, BTC_DEPOSIT),
        (BTC, LTC_DEPOSIT),
        (SOL, ETH_DEPOSIT),
        (SOL, "abc"),
        (BTC, ""),
    ])
    def test_invalid_addresses(self, registry, network_id, address):
        assert not registry.is_valid_address(network_id, address)

    def test_validate_address_raises(self, registry):
        with pytest.raises(InvalidAddressError):
            registry.validate_address(LTC, BTC_DEPOSIT)

    def test_evm_compare_ignores_case(self, registry):
        assert registry.addresses_equal(ETH, ETH_DEPOSIT.upper().replace("0X", "0x"), ETH_DEPOSIT)

    def test_solana_compare_is_exact(self, registry):
        assert not registry.addresses_equal(SOL, SOL_DEPOSIT.lower(), SOL_DEPOSIT)

    def test_compare_with_missing_address(self, registry):
        assert not registry.addresses_equal(ETH, None, ETH_DEPOSIT)


# ============================================================
# HASH NORMALIZATION TESTS
# ============================================================

class TestTxHashNormalization:
    """Tests for per-family hash normalization."""

    def test_evm_lowercased(self):
        raw = "0x" + "AB" * 32
        assert normalize_tx_hash(NetworkFamily.EVM, raw) == "0x" + "ab" * 32

    def test_evm_prefix_inserted(self):
        assert normalize_tx_hash(NetworkFamily.EVM, "ab" * 32) == "0x" + "ab" * 32

    def test_evm_left_padded(self):
        assert normalize_tx_hash(NetworkFamily.EVM, "0x1") == "0x" + "0" * 63 + "1"

    @pytest.mark.parametrize("raw", ["", "0x", "0xzz", "0x" + "a" * 65])
    def test_evm_invalid(self, raw):
        with pytest.raises(InvalidHashFormatError):
            normalize_tx_hash(NetworkFamily.EVM, raw)

    def test_utxo_prefix_stripped(self):
        assert normalize_tx_hash(NetworkFamily.UTXO, "0x" + "CD" * 32) == "cd" * 32

    def test_utxo_requires_64_digits(self):
        with pytest.raises(InvalidHashFormatError):
            normalize_tx_hash(NetworkFamily.UTXO, "cd" * 31)

    def test_solana_kept_verbatim(self):
        signature = "5" + "K" * 60 + "1"
        assert normalize_tx_hash(NetworkFamily.SOL, f"  {signature} ") == signature

    @pytest.mark.parametrize("raw", ["short", "0" * 64, "I" * 64])
    def test_solana_invalid(self, raw):
        with pytest.raises(InvalidHashFormatError):
            normalize_tx_hash(NetworkFamily.SOL, raw)

    def test_mask(self):
        assert mask_tx_hash("0x" + "ab" * 32) == "0xabab...ababab"


# ============================================================
# PAYMENT URI TESTS
# ============================================================

class TestPaymentUri:
    """Tests for QR payloads and explorer links."""

    def test_evm_is_plain_address(self, registry):
        network = registry.network(ETH)
        asset = registry.asset("eth_ethereum_mainnet")

        assert build_payment_uri(network, asset, ETH_DEPOSIT, "0.05") == ETH_DEPOSIT

    def test_bitcoin_scheme(self, registry):
        network = registry.network(BTC)
        asset = registry.asset("btc_bitcoin_mainnet")

        uri = build_payment_uri(network, asset, BTC_DEPOSIT, "0.0015")

        assert uri == f"bitcoin:{BTC_DEPOSIT}?amount=0.0015"

    def test_litecoin_scheme(self, registry):
        """Litecoin payloads use litecoin: and an ltc1 address, never bitcoin:."""
        network = registry.network(LTC)
        asset = registry.asset("ltc_litecoin_mainnet")

        uri = build_payment_uri(network, asset, LTC_DEPOSIT, "1.25")

        assert uri.startswith("litecoin:ltc1")
        assert "bitcoin:" not in uri
        assert uri.endswith("?amount=1.25")

    def test_litecoin_refuses_bitcoin_address(self, registry):
        network = registry.network(LTC)
        asset = registry.asset("ltc_litecoin_mainnet")

        with pytest.raises(InvalidAddressError):
            build_payment_uri(network, asset, BTC_DEPOSIT, "1.25")

    def test_solana_pay_spl(self, registry):
        network = registry.network(SOL)
        asset = registry.asset("usdc_solana_mainnet")

        uri = build_payment_uri(network, asset, SOL_DEPOSIT, "25")

        assert uri.startswith(f"solana:{SOL_DEPOSIT}?")
        assert "amount=25" in uri
        assert f"spl-token={USDC_SOL}" in uri

    def test_explorer_links(self, registry):
        network = registry.network(SOL)

        assert explorer_address_url(network, SOL_DEPOSIT) == f"https://solscan.io/account/{SOL_DEPOSIT}"
        assert explorer_tx_url(registry.network(ETH), "0xabc") == "https://etherscan.io/tx/0xabc"
