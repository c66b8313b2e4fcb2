"""
Payment Intent Engine Package.

============================================================
PURPOSE
============================================================
Tracks donor pledges ("payment intents") across EVM, UTXO and Solana
networks and reconciles them against chain truth.

CRITICAL PRINCIPLE:
    "A donation is recorded once per (network, txHash), and only after
     the chain itself confirms recipient, asset, amount and liveness."

AUTHORITY BOUNDARIES:
    CAN:
        - Create intents with deposit address, nonce and replay guard
        - Read chain facts through per-network clients
        - Transition intents and append ledger entries
        - Expire stale, unmatched intents

    MUST NOT:
        - Hold or move funds
        - Trust caller-supplied amounts or recipients
        - Credit one transaction to two intents

============================================================
MODULES
============================================================
- types: Enums, intents, chain records, ledger, results
- config: Engine configuration
- errors: Error taxonomy and codes
- exceptions: Exception hierarchy
- clock: Injectable clock
- registry: Asset/network registry
- amount: Amount codec and nonce
- tx_hash: Hash normalization
- payment_uri: QR payloads and explorer links
- state_machine: Intent lifecycle
- store: IntentStore contract and in-memory store
- chain: Chain clients and normalization
- backoff: Bounded retry for chain calls
- pricing: Fiat valuation
- deposits: Deposit addresses and campaign directory
- verifier: Chain-truth verification
- reconciliation: Ledger committer and CONFIRMING re-poll
- sweeper: Expiry sweeper
- watcher: Passive watcher feed consumer
- scheduler: Background loops
- service: Service facade
- models / database / repository: SQL persistence
- schemas / api: HTTP surface

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    # Enums
    NetworkFamily,
    AssetKind,
    IntentStatus,
    ChainTxStatus,
    VerificationOutcome,
    RejectionReason,
    # Dataclasses
    PaymentIntent,
    ChainTransactionRecord,
    DonationLedgerEntry,
    FiatValuation,
    CampaignTotals,
    CommitResult,
    VerificationResult,
    CreateIntentRequest,
    IntentCreated,
    WatcherObservation,
)

# ============================================================
# CONFIG AND ERRORS
# ============================================================
from .config import EngineConfig
from .errors import ERROR_CODES, ErrorCategory, get_error_info, is_retryable
from .exceptions import (
    IntentEngineError,
    UnknownNetworkError,
    UnknownAssetError,
    MalformedAmountError,
    InvalidHashFormatError,
    InvalidAddressError,
    IntentNotFoundError,
    AlreadyTerminalError,
    InvalidTransitionError,
    CampaignClosedError,
    ChainClientError,
    TransactionNotFoundError,
    RpcUnavailableError,
    PersistenceError,
    StaleIntentError,
    ClaimConflictError,
    PriceUnavailableError,
)

# ============================================================
# CORE
# ============================================================
from .registry import AssetRegistry, NetworkInfo, AssetInfo, get_registry
from .amount import to_native, from_native, with_nonce, amounts_match
from .tx_hash import normalize_tx_hash
from .payment_uri import build_payment_uri
from .state_machine import IntentStateMachine, TransitionGuard, VALID_TRANSITIONS
from .store import IntentStore, InMemoryIntentStore
from .verifier import ChainTruthVerifier
from .reconciliation import ReconciliationCommitter, ConfirmingRepoller
from .sweeper import ExpirySweeper
from .watcher import WatcherFeedConsumer
from .service import PaymentIntentService, build_service


__all__ = [
    # Types
    "NetworkFamily",
    "AssetKind",
    "IntentStatus",
    "ChainTxStatus",
    "VerificationOutcome",
    "RejectionReason",
    "PaymentIntent",
    "ChainTransactionRecord",
    "DonationLedgerEntry",
    "FiatValuation",
    "CampaignTotals",
    "CommitResult",
    "VerificationResult",
    "CreateIntentRequest",
    "IntentCreated",
    "WatcherObservation",
    # Config and errors
    "EngineConfig",
    "ERROR_CODES",
    "ErrorCategory",
    "get_error_info",
    "is_retryable",
    "IntentEngineError",
    "UnknownNetworkError",
    "UnknownAssetError",
    "MalformedAmountError",
    "InvalidHashFormatError",
    "InvalidAddressError",
    "IntentNotFoundError",
    "AlreadyTerminalError",
    "InvalidTransitionError",
    "CampaignClosedError",
    "ChainClientError",
    "TransactionNotFoundError",
    "RpcUnavailableError",
    "PersistenceError",
    "StaleIntentError",
    "ClaimConflictError",
    "PriceUnavailableError",
    # Core
    "AssetRegistry",
    "NetworkInfo",
    "AssetInfo",
    "get_registry",
    "to_native",
    "from_native",
    "with_nonce",
    "amounts_match",
    "normalize_tx_hash",
    "build_payment_uri",
    "IntentStateMachine",
    "TransitionGuard",
    "VALID_TRANSITIONS",
    "IntentStore",
    "InMemoryIntentStore",
    "ChainTruthVerifier",
    "ReconciliationCommitter",
    "ConfirmingRepoller",
    "ExpirySweeper",
    "WatcherFeedConsumer",
    "PaymentIntentService",
    "build_service",
]
