"""
Chain client factory.

Builds one client per configured network from RpcConfig:
EVM networks -> EvmRpcClient, Bitcoin -> EsploraClient (Blockstream),
Litecoin -> BlockchairClient, Solana -> SolanaRpcClient.
"""

import logging
from typing import Dict, Optional

from ..config import RpcConfig
from ..registry import AssetRegistry, get_registry
from ..types import NetworkFamily
from .base import ChainClient
from .evm import EvmRpcClient
from .http import HttpTransport
from .solana import SolanaRpcClient
from .utxo import BlockchairClient, EsploraClient


logger = logging.getLogger(__name__)


def create_chain_client(
    network_id: str,
    url: str,
    config: RpcConfig,
    registry: Optional[AssetRegistry] = None,
) -> ChainClient:
    """Create the client matching a network's family and endpoint."""
    registry = registry or get_registry()
    network = registry.network(network_id)
    transport = HttpTransport(url, network_id, timeout=config.request_timeout_seconds)

    if network.family == NetworkFamily.EVM:
        return EvmRpcClient(network_id, transport)
    if network.family == NetworkFamily.SOL:
        return SolanaRpcClient(network_id, transport)
    if "blockchair.com" in url:
        return BlockchairClient(network_id, transport, api_key=config.blockchair_api_key)
    return EsploraClient(network_id, transport)


def create_chain_clients(
    config: RpcConfig,
    registry: Optional[AssetRegistry] = None,
) -> Dict[str, ChainClient]:
    """Create clients for every enabled network with a configured endpoint."""
    registry = registry or get_registry()
    clients: Dict[str, ChainClient] = {}
    for network in registry.networks():
        url = config.urls.get(network.network_id)
        if not url:
            logger.warning(f"No endpoint configured for {network.network_id}; skipping")
            continue
        clients[network.network_id] = create_chain_client(network.network_id, url, config, registry)
        logger.info(f"Chain client ready: {clients[network.network_id].name}")
    return clients
