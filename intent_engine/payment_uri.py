"""
Intent Engine - Payment URI and explorer links.

QR payload rules per family:
- UTXO: `<scheme>:<address>?amount=<amount>` where the scheme comes from
  the network (`bitcoin:` / `litecoin:`), never a default
- EVM: the plain deposit address
- Solana: `solana:<address>?amount=<amount>` (Solana Pay, with
  `spl-token=<mint>` for SPL assets)
"""

from typing import Optional
from urllib.parse import urlencode

from .registry import AssetInfo, AssetRegistry, NetworkInfo, get_registry
from .types import AssetKind, NetworkFamily


def build_payment_uri(
    network: NetworkInfo,
    asset: AssetInfo,
    address: str,
    amount: Optional[str] = None,
    registry: Optional[AssetRegistry] = None,
) -> str:
    """
    Build the QR payload for a deposit.

    The address is checked against the network's format first, so a
    Litecoin payload can never carry a Bitcoin address.
    """
    registry = registry or get_registry()
    registry.validate_address(network.network_id, address)

    if network.family == NetworkFamily.EVM:
        return address

    if not network.uri_scheme:
        raise ValueError(f"Network {network.network_id} has no payment URI scheme")

    params = {}
    if amount is not None:
        params["amount"] = amount
    if asset.kind == AssetKind.SPL and asset.contract_ref:
        params["spl-token"] = asset.contract_ref
    query = f"?{urlencode(params)}" if params else ""
    return f"{network.uri_scheme}:{address}{query}"


def explorer_tx_url(network: NetworkInfo, tx_hash: str) -> str:
    return f"{network.explorer_base_url.rstrip('/')}/tx/{tx_hash}"


def explorer_address_url(network: NetworkInfo, address: str) -> str:
    return f"{network.explorer_base_url.rstrip('/')}/{network.explorer_address_path}/{address}"
