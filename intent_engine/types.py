"""
Intent Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Payment Intent Engine.

CRITICAL PRINCIPLE:
    "Chain truth is the only basis for confirming a pledge."
    "One (network, txHash) produces at most one ledger entry."

Chain payloads are modelled per family (EvmTxFacts, UtxoTxFacts,
SolanaTxFacts) and normalized into a single ChainTransactionRecord
before any business rule runs.

============================================================
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Union
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


def utc_now() -> datetime:
    """Current timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# ============================================================
# NETWORK / ASSET CLASSIFICATION
# ============================================================

class NetworkFamily(Enum):
    """Chain family; decides hash format, client and normalizer."""

    EVM = "EVM"
    UTXO = "UTXO"
    SOL = "SOL"


class AssetKind(Enum):
    """How an asset moves on its network."""

    NATIVE = "NATIVE"
    """EVM native coin (ETH, BNB, MATIC...)."""

    ERC20 = "ERC20"
    """EVM token identified by contract address."""

    UTXO = "UTXO"
    """Native coin of a UTXO chain (BTC, LTC)."""

    SOL = "SOL"
    """Native lamports on Solana."""

    SPL = "SPL"
    """Solana token identified by mint."""

    def is_token(self) -> bool:
        """Check if the asset is identified by a contract or mint."""
        return self in {AssetKind.ERC20, AssetKind.SPL}


# ============================================================
# INTENT LIFECYCLE STATES
# ============================================================

class IntentStatus(Enum):
    """
    Payment intent lifecycle state.

    State Machine:

    CREATED ──► DETECTING ──► CONFIRMING ──► CONFIRMED
       │            │   │          │
       │            │   └──────────┼──────► CONFIRMED (at threshold)
       ▼            ▼              ▼
    EXPIRED      MISMATCH        FAILED
                 FAILED
                 EXPIRED
    """

    CREATED = "CREATED"
    """Persisted with deposit address and replay guard; no candidate yet."""

    DETECTING = "DETECTING"
    """A candidate transaction was named and fetched."""

    CONFIRMING = "CONFIRMING"
    """Matched transaction below the confirmation threshold."""

    CONFIRMED = "CONFIRMED"
    """Ledger entry written."""

    EXPIRED = "EXPIRED"
    """Swept after expiresAt with no claimed transaction."""

    FAILED = "FAILED"
    """Matched transaction reverted on-chain."""

    MISMATCH = "MISMATCH"
    """Correct address and asset, wrong amount; needs human review."""

    def is_terminal(self) -> bool:
        """Check if state is terminal."""
        return self in {
            IntentStatus.CONFIRMED,
            IntentStatus.EXPIRED,
            IntentStatus.FAILED,
            IntentStatus.MISMATCH,
        }

    def is_open(self) -> bool:
        """Check if the intent still accepts new candidate hashes."""
        return self in {IntentStatus.CREATED, IntentStatus.DETECTING}

    def is_flagged(self) -> bool:
        """Check if the state requires human review."""
        return self in {IntentStatus.FAILED, IntentStatus.MISMATCH}


class ChainTxStatus(Enum):
    """Observation status of a chain transaction record."""

    SEEN = "seen"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"


# ============================================================
# VERIFICATION OUTCOMES
# ============================================================

class VerificationOutcome(Enum):
    """Discriminator of a verification result."""

    CONFIRMED = "confirmed"
    PENDING = "pending"
    ALREADY_RECORDED = "alreadyRecorded"
    REJECTED = "rejected"


class RejectionReason(Enum):
    """Named failure modes of the chain-truth checks."""

    # Input
    INVALID_HASH_FORMAT = "InvalidHashFormat"
    # Transient
    TRANSACTION_NOT_FOUND = "TransactionNotFound"
    RPC_UNAVAILABLE = "RpcUnavailable"
    NOT_YET_MINED = "NotYetMined"
    # Structural
    WRONG_RECIPIENT = "WrongRecipient"
    REPLAY_REJECTED = "ReplayRejected"
    ASSET_MISMATCH = "AssetMismatch"
    # Financial integrity
    AMOUNT_MISMATCH = "AmountMismatch"
    ON_CHAIN_FAILURE = "OnChainFailure"
    # Idempotency boundary
    TX_ALREADY_CLAIMED = "TxAlreadyClaimed"
    CANDIDATE_CONFLICT = "CandidateConflict"


# ============================================================
# RAW CHAIN FACTS (TAGGED PER FAMILY)
# ============================================================

@dataclass
class Erc20Transfer:
    """Decoded ERC-20 Transfer event or transfer() call."""

    contract: str
    """Token contract address (lowercase)."""

    from_address: str
    """Sender (lowercase)."""

    to_address: str
    """Recipient (lowercase)."""

    value: int
    """Raw token units."""


@dataclass
class EvmTxFacts:
    """Transaction facts returned by an EVM node."""

    tx_hash: str
    from_address: Optional[str]
    to_address: Optional[str]
    value: int = 0
    """Native value in wei."""

    block_number: Optional[int] = None
    """None while the transaction is in the mempool."""

    succeeded: Optional[bool] = None
    """Receipt status; None when no receipt exists yet."""

    transfer_logs: List[Erc20Transfer] = field(default_factory=list)
    """Transfer events emitted by the receipt."""

    call_transfer: Optional[Erc20Transfer] = None
    """Decoded transfer(to, value) call data, used when a receipt has no logs."""

    family: NetworkFamily = NetworkFamily.EVM


@dataclass
class UtxoOutput:
    """One transaction output."""

    address: Optional[str]
    value: int
    """Satoshis (or litoshis)."""


@dataclass
class UtxoTxFacts:
    """Transaction facts returned by a UTXO explorer."""

    tx_hash: str
    outputs: List[UtxoOutput] = field(default_factory=list)
    input_addresses: List[str] = field(default_factory=list)
    block_height: Optional[int] = None
    """None while unconfirmed."""

    family: NetworkFamily = NetworkFamily.UTXO


@dataclass
class SolanaTransfer:
    """Transfer declared by a parsed Solana instruction."""

    source: str
    destination: str
    """Destination wallet (owner for SPL transfers)."""

    amount: int
    mint: Optional[str] = None
    """None for lamport transfers."""


@dataclass
class SplBalanceChange:
    """Token balance movement of one owner/mint pair."""

    owner: str
    mint: str
    pre_amount: int
    post_amount: int

    @property
    def delta(self) -> int:
        return self.post_amount - self.pre_amount


@dataclass
class SolanaTxFacts:
    """Transaction facts returned by a Solana RPC node."""

    signature: str
    slot: Optional[int] = None
    error: Optional[str] = None
    """Serialized `meta.err`; None on success."""

    account_keys: List[str] = field(default_factory=list)
    pre_balances: List[int] = field(default_factory=list)
    post_balances: List[int] = field(default_factory=list)
    token_balances: List[SplBalanceChange] = field(default_factory=list)
    instruction_transfers: List[SolanaTransfer] = field(default_factory=list)
    family: NetworkFamily = NetworkFamily.SOL

    @property
    def tx_hash(self) -> str:
        return self.signature

    def lamport_delta(self, account: str) -> int:
        """Balance change of an account, 0 when absent."""
        try:
            index = self.account_keys.index(account)
        except ValueError:
            return 0
        if index >= len(self.pre_balances) or index >= len(self.post_balances):
            return 0
        return self.post_balances[index] - self.pre_balances[index]


ChainFacts = Union[EvmTxFacts, UtxoTxFacts, SolanaTxFacts]


# ============================================================
# NORMALIZED CHAIN RECORD
# ============================================================

@dataclass
class ChainTransactionRecord:
    """
    Normalized facts about one transaction on one network.

    Keyed by (network_id, tx_hash). Once `intent_id` is set it never
    points at another intent.
    """

    network_id: str
    tx_hash: str
    recipient: Optional[str]
    """Deposit address when any transfer reached it, else the first recipient."""

    asset_ref: Optional[str]
    """Contract/mint of the transfer; None for native transfers."""

    raw_amount: int
    """Sum of raw units moved to the recipient."""

    decimals: int
    block_height: Optional[int]
    succeeded: bool = True
    """False when the transaction was mined but reverted/failed."""

    sender: Optional[str] = None
    native_symbol: Optional[str] = None
    """Native symbol of the network when asset_ref is None."""

    confirmations: int = 0
    status: ChainTxStatus = ChainTxStatus.SEEN
    intent_id: Optional[str] = None
    donation_id: Optional[str] = None
    first_seen_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> tuple:
        return (self.network_id, self.tx_hash)

    @property
    def is_native(self) -> bool:
        return self.asset_ref is None

    def observe_confirmations(self, confirmations: int) -> None:
        """Confirmation count only moves forward."""
        if confirmations > self.confirmations:
            self.confirmations = confirmations
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "tx_hash": self.tx_hash,
            "sender": self.sender,
            "recipient": self.recipient,
            "asset_ref": self.asset_ref,
            "raw_amount": str(self.raw_amount),
            "decimals": self.decimals,
            "block_height": self.block_height,
            "confirmations": self.confirmations,
            "succeeded": self.succeeded,
            "status": self.status.value,
            "intent_id": self.intent_id,
            "donation_id": self.donation_id,
        }


# ============================================================
# PAYMENT INTENT
# ============================================================

@dataclass
class PaymentIntent:
    """
    One pledge to pay a specific asset amount on a specific network.

    Expectation fields are fixed at creation; only status, detection
    facts, the scanning cursor and audit timestamps change afterwards.
    """

    intent_id: str
    """Opaque identifier."""

    campaign_id: str
    """Campaign reference."""

    network_id: str
    """Expected network."""

    asset_id: str
    """Expected asset."""

    expected_amount_raw: int
    """Expected raw amount including the nonce."""

    expected_amount: str
    """Display form of expected_amount_raw."""

    decimals: int
    """Asset decimals."""

    deposit_address: str
    """Reserved deposit address."""

    expires_at: datetime
    """Nominal expiry; enforced by the sweeper."""

    start_block_by_network: Dict[str, int] = field(default_factory=dict)
    """Replay guard: chain head per network at creation."""

    nonce: int = 0
    """Value embedded in the lowest digits of expected_amount_raw."""

    nonce_width: int = 0
    """Number of digits carrying the nonce."""

    amount_usd: Optional[Decimal] = None
    """Requested fiat amount, when the pledge was made in fiat."""

    donor_ref: Optional[str] = None
    """Donor reference; None for anonymous pledges."""

    status: IntentStatus = IntentStatus.CREATED
    """Current lifecycle state."""

    status_reason: str = ""
    """Reason recorded with the last transition."""

    candidate_tx_hash: Optional[str] = None
    """Normalized hash of the tracked candidate."""

    confirmations: int = 0
    """Last observed confirmation count of the candidate."""

    detected_amount_raw: Optional[int] = None
    """Amount observed on-chain for the candidate."""

    last_scanned_block_by_network: Dict[str, int] = field(default_factory=dict)
    """Passive watcher cursor."""

    donation_id: Optional[str] = None
    """Ledger entry, once confirmed."""

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    expired_at: Optional[datetime] = None
    """When the sweeper expired the intent."""

    confirmed_at: Optional[datetime] = None

    version: int = 0
    """Incremented on every write; used for compare-and-set."""

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    @property
    def start_block(self) -> Optional[int]:
        """Replay guard for the expected network."""
        return self.start_block_by_network.get(self.network_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "campaign_id": self.campaign_id,
            "network_id": self.network_id,
            "asset_id": self.asset_id,
            "expected_amount": self.expected_amount,
            "expected_amount_raw": str(self.expected_amount_raw),
            "deposit_address": self.deposit_address,
            "start_block_by_network": dict(self.start_block_by_network),
            "expires_at": self.expires_at.isoformat(),
            "status": self.status.value,
            "status_reason": self.status_reason,
            "candidate_tx_hash": self.candidate_tx_hash,
            "confirmations": self.confirmations,
            "donation_id": self.donation_id,
            "created_at": self.created_at.isoformat(),
        }


# ============================================================
# LEDGER
# ============================================================

@dataclass(frozen=True)
class FiatValuation:
    """Fiat value of an amount at a point in time; never recomputed."""

    currency: str
    rate: Decimal
    """Fiat per whole unit of the asset."""

    value: Decimal
    source: str
    taken_at: datetime


@dataclass(frozen=True)
class DonationLedgerEntry:
    """The committed financial fact; append-only."""

    donation_id: str
    intent_id: str
    campaign_id: str
    asset_id: str
    network_id: str
    amount_raw: int
    amount: str
    """Display form of amount_raw."""

    valuation: Optional[FiatValuation]
    """None when no price was available at commit time."""

    tx_hash: str
    donor_ref: Optional[str]
    explorer_url: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def claim_key(self) -> tuple:
        return (self.network_id, self.tx_hash)


@dataclass
class CampaignTotals:
    """Running totals of a campaign; sums ledger snapshots."""

    campaign_id: str
    raw_by_asset: Dict[str, int] = field(default_factory=dict)
    fiat_total: Decimal = Decimal("0")
    currency: str = "USD"
    donation_count: int = 0
    updated_at: datetime = field(default_factory=utc_now)

    def apply(self, entry: DonationLedgerEntry) -> None:
        self.raw_by_asset[entry.asset_id] = (
            self.raw_by_asset.get(entry.asset_id, 0) + entry.amount_raw
        )
        if entry.valuation is not None:
            self.fiat_total += entry.valuation.value
        self.donation_count += 1
        self.updated_at = entry.created_at


# ============================================================
# RESULTS
# ============================================================

@dataclass
class CommitResult:
    """Outcome of a reconciliation commit."""

    donation_id: str
    already_recorded: bool
    entry: Optional[DonationLedgerEntry] = None


@dataclass
class VerificationResult:
    """Discriminated outcome of verifying one candidate against one intent."""

    outcome: VerificationOutcome
    intent_id: str
    network_id: str
    tx_hash: Optional[str] = None
    reason: Optional[RejectionReason] = None
    status: Optional[IntentStatus] = None
    """Intent status after the call."""

    confirmations: int = 0
    confirmations_required: int = 0
    donation_id: Optional[str] = None
    detail: str = ""

    @property
    def is_success(self) -> bool:
        return self.outcome != VerificationOutcome.REJECTED

    @property
    def retryable(self) -> bool:
        from .errors import is_retryable
        return self.reason is not None and is_retryable(self.reason)

    @classmethod
    def rejected(
        cls,
        intent: PaymentIntent,
        reason: RejectionReason,
        detail: str = "",
        tx_hash: Optional[str] = None,
        status: Optional[IntentStatus] = None,
    ) -> "VerificationResult":
        return cls(
            outcome=VerificationOutcome.REJECTED,
            intent_id=intent.intent_id,
            network_id=intent.network_id,
            tx_hash=tx_hash,
            reason=reason,
            status=status or intent.status,
            detail=detail,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "intent_id": self.intent_id,
            "network_id": self.network_id,
            "tx_hash": self.tx_hash,
            "reason": self.reason.value if self.reason else None,
            "status": self.status.value if self.status else None,
            "confirmations": self.confirmations,
            "confirmations_required": self.confirmations_required,
            "donation_id": self.donation_id,
            "retryable": self.retryable,
            "detail": self.detail,
        }


# ============================================================
# INTENT CREATION
# ============================================================

@dataclass
class CreateIntentRequest:
    """Donor-facing pledge request."""

    campaign_id: str
    network_id: str
    asset_id: str
    amount_usd: Optional[Decimal] = None
    amount_native: Optional[str] = None
    """Exactly one of amount_usd / amount_native must be given."""

    donor_ref: Optional[str] = None
    anonymous: bool = False


@dataclass
class IntentCreated:
    """Everything the donor needs to pay."""

    intent: PaymentIntent
    payment_uri: str
    """QR payload."""

    explorer_address_url: Optional[str] = None
    rate: Optional[Decimal] = None
    """Fiat rate used for a fiat-denominated pledge."""


@dataclass(frozen=True)
class WatcherObservation:
    """One item of the passive watcher feed."""

    network_id: str
    address: str
    tx_hash: str
    block_height: Optional[int] = None
