"""
Chain Clients Package.

Raw chain facts per network family, and the normalization boundary that
turns them into ChainTransactionRecord.
"""

from .base import ChainClient
from .http import HttpTransport
from .evm import EvmRpcClient, parse_evm_transaction
from .utxo import EsploraClient, BlockchairClient, parse_esplora_transaction, parse_blockchair_transaction
from .solana import SolanaRpcClient, parse_solana_transaction
from .mock import MockChainClient, MockChainConfig
from .normalize import normalize_facts, confirmation_count
from .factory import create_chain_client, create_chain_clients


__all__ = [
    "ChainClient",
    "HttpTransport",
    "EvmRpcClient",
    "EsploraClient",
    "BlockchairClient",
    "SolanaRpcClient",
    "MockChainClient",
    "MockChainConfig",
    "parse_evm_transaction",
    "parse_esplora_transaction",
    "parse_blockchair_transaction",
    "parse_solana_transaction",
    "normalize_facts",
    "confirmation_count",
    "create_chain_client",
    "create_chain_clients",
]
