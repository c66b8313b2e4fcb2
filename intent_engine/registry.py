"""
Intent Engine - Asset/Network Registry.

============================================================
PURPOSE
============================================================
Static catalog of supported networks and assets.

- network(network_id) -> family, confirmation threshold, address format,
  explorer base
- asset(asset_id) -> network, decimals, contract/mint

Pure lookup over static configuration. Unknown identifiers raise
UnknownNetworkError / UnknownAssetError.

============================================================
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import base58

from .exceptions import InvalidAddressError, UnknownAssetError, UnknownNetworkError
from .types import AssetKind, NetworkFamily


# ============================================================
# CATALOG TYPES
# ============================================================

@dataclass(frozen=True)
class NetworkInfo:
    """Static description of one network."""

    network_id: str
    name: str
    family: NetworkFamily
    native_symbol: str
    explorer_base_url: str
    confirmations_required: int
    """Policy input: confirmations needed before commit."""

    address_format: str
    """evm_hex | bech32:<hrp> | base58"""

    chain_id: Optional[int] = None
    """EVM chain ID."""

    uri_scheme: Optional[str] = None
    """Payment URI scheme; None means plain address."""

    legacy_address_prefixes: Tuple[str, ...] = ()
    """Accepted leading characters of Base58Check UTXO addresses."""

    explorer_address_path: str = "address"
    coin_type: Optional[int] = None
    """SLIP-44 coin type."""

    enabled: bool = True

    @property
    def bech32_hrp(self) -> Optional[str]:
        if self.address_format.startswith("bech32:"):
            return self.address_format.split(":", 1)[1]
        return None


@dataclass(frozen=True)
class AssetInfo:
    """Static description of one asset on one network."""

    asset_id: str
    symbol: str
    name: str
    network_id: str
    decimals: int
    kind: AssetKind
    contract_ref: Optional[str] = None
    """Token contract (EVM) or mint (Solana)."""

    price_id: Optional[str] = None
    """CoinGecko identifier."""

    enabled: bool = True

    @property
    def is_token(self) -> bool:
        return self.kind.is_token()


# ============================================================
# STATIC CATALOG
# ============================================================

def _evm(network_id: str, name: str, symbol: str, chain_id: int,
         explorer: str, confirmations: int) -> NetworkInfo:
    return NetworkInfo(
        network_id=network_id,
        name=name,
        family=NetworkFamily.EVM,
        native_symbol=symbol,
        chain_id=chain_id,
        explorer_base_url=explorer,
        confirmations_required=confirmations,
        address_format="evm_hex",
        coin_type=60,
    )


NETWORKS: Dict[str, NetworkInfo] = {n.network_id: n for n in [
    _evm("ethereum_mainnet", "Ethereum", "ETH", 1, "https://etherscan.io", 12),
    _evm("bsc_mainnet", "BNB Smart Chain", "BNB", 56, "https://bscscan.com", 3),
    _evm("polygon_mainnet", "Polygon", "MATIC", 137, "https://polygonscan.com", 128),
    _evm("arbitrum_mainnet", "Arbitrum One", "ETH", 42161, "https://arbiscan.io", 1),
    _evm("optimism_mainnet", "Optimism", "ETH", 10, "https://optimistic.etherscan.io", 1),
    _evm("avalanche_mainnet", "Avalanche C-Chain", "AVAX", 43114, "https://snowtrace.io", 1),
    _evm("base_mainnet", "Base", "ETH", 8453, "https://basescan.org", 1),
    _evm("fantom_mainnet", "Fantom", "FTM", 250, "https://ftmscan.com", 1),
    NetworkInfo(
        network_id="bitcoin_mainnet",
        name="Bitcoin",
        family=NetworkFamily.UTXO,
        native_symbol="BTC",
        explorer_base_url="https://blockstream.info",
        confirmations_required=1,
        address_format="bech32:bc",
        uri_scheme="bitcoin",
        legacy_address_prefixes=("1", "3"),
        coin_type=0,
    ),
    NetworkInfo(
        network_id="litecoin_mainnet",
        name="Litecoin",
        family=NetworkFamily.UTXO,
        native_symbol="LTC",
        explorer_base_url="https://blockchair.com/litecoin",
        confirmations_required=1,
        address_format="bech32:ltc",
        uri_scheme="litecoin",
        legacy_address_prefixes=("L", "M"),
        coin_type=2,
    ),
    NetworkInfo(
        network_id="solana_mainnet",
        name="Solana",
        family=NetworkFamily.SOL,
        native_symbol="SOL",
        explorer_base_url="https://solscan.io",
        confirmations_required=32,
        address_format="base58",
        uri_scheme="solana",
        explorer_address_path="account",
        coin_type=501,
    ),
]}


def _native(asset_id: str, symbol: str, name: str, network_id: str,
            decimals: int, price_id: str, kind: AssetKind = AssetKind.NATIVE) -> AssetInfo:
    return AssetInfo(asset_id, symbol, name, network_id, decimals, kind, None, price_id)


def _token(asset_id: str, symbol: str, name: str, network_id: str,
           decimals: int, contract: str, price_id: str) -> AssetInfo:
    kind = AssetKind.SPL if network_id == "solana_mainnet" else AssetKind.ERC20
    return AssetInfo(asset_id, symbol, name, network_id, decimals, kind, contract, price_id)


ASSETS: Dict[str, AssetInfo] = {a.asset_id: a for a in [
    # Native coins
    _native("eth_ethereum_mainnet", "ETH", "Ethereum", "ethereum_mainnet", 18, "ethereum"),
    _native("bnb_bsc_mainnet", "BNB", "BNB", "bsc_mainnet", 18, "binancecoin"),
    _native("matic_polygon_mainnet", "MATIC", "Polygon", "polygon_mainnet", 18, "matic-network"),
    _native("eth_arbitrum_mainnet", "ETH", "Ethereum", "arbitrum_mainnet", 18, "ethereum"),
    _native("eth_optimism_mainnet", "ETH", "Ethereum", "optimism_mainnet", 18, "ethereum"),
    _native("avax_avalanche_mainnet", "AVAX", "Avalanche", "avalanche_mainnet", 18, "avalanche-2"),
    _native("eth_base_mainnet", "ETH", "Ethereum", "base_mainnet", 18, "ethereum"),
    _native("ftm_fantom_mainnet", "FTM", "Fantom", "fantom_mainnet", 18, "fantom"),
    _native("btc_bitcoin_mainnet", "BTC", "Bitcoin", "bitcoin_mainnet", 8, "bitcoin", AssetKind.UTXO),
    _native("ltc_litecoin_mainnet", "LTC", "Litecoin", "litecoin_mainnet", 8, "litecoin", AssetKind.UTXO),
    _native("sol_solana_mainnet", "SOL", "Solana", "solana_mainnet", 9, "solana", AssetKind.SOL),
    # USDC
    _token("usdc_ethereum_mainnet", "USDC", "USD Coin", "ethereum_mainnet", 6,
           "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "usd-coin"),
    _token("usdc_polygon_mainnet", "USDC", "USD Coin", "polygon_mainnet", 6,
           "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", "usd-coin"),
    _token("usdc_bsc_mainnet", "USDC", "USD Coin", "bsc_mainnet", 18,
           "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", "usd-coin"),
    _token("usdc_arbitrum_mainnet", "USDC", "USD Coin", "arbitrum_mainnet", 6,
           "0xaf88d065e77c8cC2239327C5EDb3A432268e5831", "usd-coin"),
    _token("usdc_optimism_mainnet", "USDC", "USD Coin", "optimism_mainnet", 6,
           "0x7F5c764cBc14f9669B88837ca1490cCa17c31607", "usd-coin"),
    _token("usdc_avalanche_mainnet", "USDC", "USD Coin", "avalanche_mainnet", 6,
           "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", "usd-coin"),
    _token("usdc_base_mainnet", "USDC", "USD Coin", "base_mainnet", 6,
           "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "usd-coin"),
    _token("usdc_solana_mainnet", "USDC", "USD Coin", "solana_mainnet", 6,
           "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "usd-coin"),
    # USDT
    _token("usdt_ethereum_mainnet", "USDT", "Tether", "ethereum_mainnet", 6,
           "0xdAC17F958D2ee523a2206206994597C13D831ec7", "tether"),
    _token("usdt_bsc_mainnet", "USDT", "Tether", "bsc_mainnet", 18,
           "0x55d398326f99059fF775485246999027B3197955", "tether"),
    _token("usdt_polygon_mainnet", "USDT", "Tether", "polygon_mainnet", 6,
           "0xc2132D05D31c914a87C6611C10748AEb04B58e8F", "tether"),
    _token("usdt_arbitrum_mainnet", "USDT", "Tether", "arbitrum_mainnet", 6,
           "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", "tether"),
    _token("usdt_avalanche_mainnet", "USDT", "Tether", "avalanche_mainnet", 6,
           "0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7", "tether"),
    # Others
    _token("dai_ethereum_mainnet", "DAI", "Dai", "ethereum_mainnet", 18,
           "0x6B175474E89094C44Da98b954EedeAC495271d0F", "dai"),
    _token("dai_polygon_mainnet", "DAI", "Dai", "polygon_mainnet", 18,
           "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063", "dai"),
    _token("wbtc_ethereum_mainnet", "WBTC", "Wrapped Bitcoin", "ethereum_mainnet", 8,
           "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", "wrapped-bitcoin"),
    _token("link_ethereum_mainnet", "LINK", "Chainlink", "ethereum_mainnet", 18,
           "0x514910771AF9Ca656af840dff83E8264EcF986CA", "chainlink"),
    _token("uni_ethereum_mainnet", "UNI", "Uniswap", "ethereum_mainnet", 18,
           "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984", "uniswap"),
]}


# ============================================================
# ADDRESS FORMATS
# ============================================================

_EVM_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BASE58_CHARS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


def _is_bech32(address: str, hrp: str) -> bool:
    lowered = address.lower()
    if address != lowered and address != address.upper():
        return False
    if not lowered.startswith(hrp + "1"):
        return False
    data = lowered[len(hrp) + 1:]
    return 6 < len(data) and len(lowered) <= 90 and all(c in _BECH32_CHARSET for c in data)


def _is_base58_of_length(address: str, size: int) -> bool:
    if not _BASE58_CHARS.match(address):
        return False
    try:
        return len(base58.b58decode(address)) == size
    except ValueError:
        return False


# ============================================================
# REGISTRY
# ============================================================

class AssetRegistry:
    """
    Lookup over the network/asset catalog.

    Pure: no I/O, no mutation after construction.
    """

    def __init__(
        self,
        networks: Optional[Dict[str, NetworkInfo]] = None,
        assets: Optional[Dict[str, AssetInfo]] = None,
    ):
        self._networks = dict(networks if networks is not None else NETWORKS)
        self._assets = dict(assets if assets is not None else ASSETS)

    # --------------------------------------------------------
    # LOOKUPS
    # --------------------------------------------------------

    def network(self, network_id: str) -> NetworkInfo:
        """
        Get a network.

        Raises:
            UnknownNetworkError: If not registered
        """
        info = self._networks.get(network_id)
        if info is None:
            raise UnknownNetworkError(f"Unknown network: {network_id}", network_id=network_id)
        return info

    def asset(self, asset_id: str) -> AssetInfo:
        """
        Get an asset.

        Raises:
            UnknownAssetError: If not registered
        """
        info = self._assets.get(asset_id)
        if info is None:
            raise UnknownAssetError(f"Unknown asset: {asset_id}", context={"asset_id": asset_id})
        return info

    def asset_on_network(self, asset_id: str, network_id: str) -> Tuple[AssetInfo, NetworkInfo]:
        """Resolve an asset and check it lives on the given network."""
        network = self.network(network_id)
        asset = self.asset(asset_id)
        if asset.network_id != network_id:
            raise UnknownAssetError(
                f"Asset {asset_id} is not on {network_id}",
                network_id=network_id,
                context={"asset_id": asset_id, "asset_network": asset.network_id},
            )
        return asset, network

    def networks(self, enabled_only: bool = True) -> List[NetworkInfo]:
        return [n for n in self._networks.values() if n.enabled or not enabled_only]

    def networks_of_family(self, family: NetworkFamily) -> List[NetworkInfo]:
        return [n for n in self.networks() if n.family == family]

    def assets_for_network(self, network_id: str) -> List[AssetInfo]:
        self.network(network_id)
        return [a for a in self._assets.values() if a.network_id == network_id and a.enabled]

    def assets_by_symbol(self, symbol: str) -> List[AssetInfo]:
        symbol = symbol.upper()
        return [a for a in self._assets.values() if a.symbol == symbol and a.enabled]

    def native_asset(self, network_id: str) -> AssetInfo:
        for asset in self.assets_for_network(network_id):
            if asset.contract_ref is None:
                return asset
        raise UnknownAssetError(f"No native asset for {network_id}", network_id=network_id)

    def find_token(self, network_id: str, contract_ref: str) -> Optional[AssetInfo]:
        """Find a token by contract/mint on a network (EVM match is case-insensitive)."""
        network = self.network(network_id)
        for asset in self.assets_for_network(network_id):
            if asset.contract_ref is None:
                continue
            if network.family == NetworkFamily.EVM:
                if asset.contract_ref.lower() == contract_ref.lower():
                    return asset
            elif asset.contract_ref == contract_ref:
                return asset
        return None

    # --------------------------------------------------------
    # ADDRESS FORMAT
    # --------------------------------------------------------

    def is_valid_address(self, network_id: str, address: str) -> bool:
        """Check an address against the network's address format."""
        network = self.network(network_id)
        if not address:
            return False
        if network.address_format == "evm_hex":
            return bool(_EVM_ADDRESS.match(address))
        if network.address_format == "base58":
            return _is_base58_of_length(address, 32)
        hrp = network.bech32_hrp
        if hrp is not None:
            if _is_bech32(address, hrp):
                return True
            return (
                address[:1] in network.legacy_address_prefixes
                and bool(_BASE58_CHARS.match(address))
                and 26 <= len(address) <= 35
            )
        return False

    def validate_address(self, network_id: str, address: str) -> str:
        """
        Return the address if it belongs to the network.

        Raises:
            InvalidAddressError: If the format does not match
        """
        if not self.is_valid_address(network_id, address):
            raise InvalidAddressError(
                f"Address {address!r} is not a valid {network_id} address",
                network_id=network_id,
            )
        return address

    def addresses_equal(self, network_id: str, a: Optional[str], b: Optional[str]) -> bool:
        """Compare addresses with the network's case rules."""
        if a is None or b is None:
            return False
        family = self.network(network_id).family
        if family == NetworkFamily.EVM:
            return a.lower() == b.lower()
        if family == NetworkFamily.UTXO and self.network(network_id).bech32_hrp:
            hrp = self.network(network_id).bech32_hrp
            if a.lower().startswith(hrp + "1") and b.lower().startswith(hrp + "1"):
                return a.lower() == b.lower()
        return a == b


# Global registry instance
_registry: Optional[AssetRegistry] = None


def get_registry() -> AssetRegistry:
    """Get the default registry over the static catalog."""
    global _registry
    if _registry is None:
        _registry = AssetRegistry()
    return _registry
