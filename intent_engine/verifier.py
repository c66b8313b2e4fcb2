"""
Intent Engine - Chain-Truth Verifier.

============================================================
PURPOSE
============================================================
Decides whether one candidate transaction satisfies one intent.

CHECK ORDER (each a named failure mode):
1. Normalize hash            -> InvalidHashFormat
   Idempotency key lookup    -> alreadyRecorded / TxAlreadyClaimed
2. Fetch chain facts         -> TransactionNotFound / RpcUnavailable
3. Recipient                 -> WrongRecipient     (intent stays open)
4. Replay guard              -> ReplayRejected     (intent stays open)
5. Asset                     -> AssetMismatch      (intent stays open)
6. Amount (exact, nonced)    -> AmountMismatch     -> MISMATCH
7. Liveness                  -> OnChainFailure     -> FAILED
8. Confirmations             -> CONFIRMING, or commit -> CONFIRMED

Replay runs before asset/amount so an old transaction is rejected
regardless of what else it matches.

Passive (watcher) verification associates the candidate only after the
amount matches; a different amount is "not this intent", never MISMATCH.

CONCURRENCY:
- Nothing is written before the fetch succeeds; a timed-out call leaves
  the intent exactly as it was
- Every checkpoint returns a VerificationResult; exceptions are only
  raised for unknown intents and terminal intents at entry

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from .amount import amounts_match
from .backoff import BackoffPolicy
from .chain.base import ChainClient
from .chain.normalize import normalize_facts
from .clock import ClockProtocol, get_clock
from .config import VerificationConfig
from .exceptions import (
    AlreadyTerminalError,
    ChainClientError,
    ClaimConflictError,
    InvalidHashFormatError,
    InvalidTransitionError,
    StaleIntentError,
    TransactionNotFoundError,
)
from .reconciliation import ReconciliationCommitter
from .registry import AssetInfo, AssetRegistry, NetworkInfo, get_registry
from .store import IntentStore
from .tx_hash import mask_tx_hash, normalize_tx_hash
from .types import (
    ChainFacts,
    ChainTransactionRecord,
    IntentStatus,
    NetworkFamily,
    PaymentIntent,
    RejectionReason,
    VerificationOutcome,
    VerificationResult,
)


logger = logging.getLogger(__name__)

# (network_id, tx_hash) -> (facts, head height)
FetchCache = Dict[Tuple[str, str], Tuple[ChainFacts, int]]


class ChainTruthVerifier:
    """
    Verifies candidate transactions against intents.

    Safe to call concurrently and repeatedly for the same intent and
    hash; the committer's claim is the only serialization point.
    """

    def __init__(
        self,
        store: IntentStore,
        clients: Dict[str, ChainClient],
        committer: ReconciliationCommitter,
        registry: Optional[AssetRegistry] = None,
        backoff: Optional[BackoffPolicy] = None,
        config: Optional[VerificationConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._store = store
        self._clients = clients
        self._committer = committer
        self._registry = registry or get_registry()
        self._backoff = backoff or BackoffPolicy()
        self._config = config or VerificationConfig()
        self._clock = clock or get_clock()
        self._stats: Dict[str, int] = {
            "verifications": 0,
            "confirmed": 0,
            "pending": 0,
            "already_recorded": 0,
            "rejected": 0,
        }

    # --------------------------------------------------------
    # ENTRY POINT
    # --------------------------------------------------------

    async def verify(
        self,
        intent_id: str,
        raw_tx_hash: str,
        source: str = "manual",
        passive: bool = False,
        fetch_cache: Optional[FetchCache] = None,
    ) -> VerificationResult:
        """
        Verify a candidate transaction for an intent.

        Args:
            intent_id: Intent to satisfy
            raw_tx_hash: User/watcher supplied hash (any casing/prefix)
            source: Caller label for logs (manual, watcher, repoll)
            passive: Observation not submitted for this intent; the
                candidate is only associated once the amount matches,
                and a different amount is reported without flagging
            fetch_cache: Chain reads shared by calls for the same
                observation, keyed by (network, hash)

        Returns:
            VerificationResult

        Raises:
            IntentNotFoundError: Unknown intent
            AlreadyTerminalError: Intent is EXPIRED, FAILED or MISMATCH
        """
        started_at = self._clock.now()
        self._stats["verifications"] += 1

        intent = await self._store.get(intent_id)
        result = await self._verify(intent, raw_tx_hash, started_at, passive, fetch_cache)

        key = {
            VerificationOutcome.CONFIRMED: "confirmed",
            VerificationOutcome.PENDING: "pending",
            VerificationOutcome.ALREADY_RECORDED: "already_recorded",
            VerificationOutcome.REJECTED: "rejected",
        }[result.outcome]
        self._stats[key] += 1

        if result.outcome == VerificationOutcome.REJECTED:
            log = logger.debug if passive else logger.warning
            log(
                f"Verify [{source}] intent {intent_id} "
                f"{mask_tx_hash(result.tx_hash or raw_tx_hash)}: "
                f"rejected {result.reason.value} {result.detail}".rstrip()
            )
        else:
            logger.info(
                f"Verify [{source}] intent {intent_id} "
                f"{mask_tx_hash(result.tx_hash or '')}: {result.outcome.value} "
                f"({result.confirmations}/{result.confirmations_required})"
            )
        return result

    # --------------------------------------------------------
    # CHECKS
    # --------------------------------------------------------

    async def _verify(
        self,
        intent: PaymentIntent,
        raw_tx_hash: str,
        started_at: datetime,
        passive: bool = False,
        fetch_cache: Optional[FetchCache] = None,
    ) -> VerificationResult:
        network = self._registry.network(intent.network_id)
        asset = self._registry.asset(intent.asset_id)

        if intent.status == IntentStatus.CONFIRMED:
            return self._already_recorded(intent, intent.candidate_tx_hash, intent.donation_id)
        if intent.status.is_terminal():
            raise AlreadyTerminalError(
                f"Intent {intent.intent_id} is {intent.status.value}",
                status=intent.status.value,
                intent_id=intent.intent_id,
            )

        # 1. Normalize
        try:
            tx_hash = normalize_tx_hash(network.family, raw_tx_hash)
        except InvalidHashFormatError as e:
            return VerificationResult.rejected(
                intent, RejectionReason.INVALID_HASH_FORMAT, detail=e.message,
            )

        if intent.status == IntentStatus.CONFIRMING and intent.candidate_tx_hash != tx_hash:
            return VerificationResult.rejected(
                intent, RejectionReason.CANDIDATE_CONFLICT, tx_hash=tx_hash,
                detail=f"tracking {mask_tx_hash(intent.candidate_tx_hash or '')}",
            )

        # Idempotency key
        existing = await self._store.get_chain_tx(network.network_id, tx_hash)
        if existing is not None and existing.intent_id not in (None, intent.intent_id):
            return VerificationResult.rejected(
                intent, RejectionReason.TX_ALREADY_CLAIMED, tx_hash=tx_hash,
            )
        if existing is not None and existing.donation_id is not None:
            return self._already_recorded(intent, tx_hash, existing.donation_id)

        # 2. Fetch
        fetched = await self._fetch(intent, network, tx_hash, fetch_cache)
        if isinstance(fetched, VerificationResult):
            return fetched
        facts, head = fetched

        record = normalize_facts(
            facts, network, asset, intent.deposit_address, head, self._registry,
        )
        if record.block_height is None:
            return VerificationResult.rejected(
                intent, RejectionReason.NOT_YET_MINED, tx_hash=tx_hash,
            )

        if not passive:
            intent = await self._mark_detecting(intent, tx_hash)
            if intent.status == IntentStatus.CONFIRMED:
                return self._confirmed_outcome(intent, tx_hash)

        # 3. Recipient
        if not self._registry.addresses_equal(network.network_id, record.recipient, intent.deposit_address):
            return VerificationResult.rejected(
                intent, RejectionReason.WRONG_RECIPIENT, tx_hash=tx_hash,
                detail=f"recipient {record.recipient}",
            )

        # 4. Replay guard
        start_block = intent.start_block_by_network.get(network.network_id)
        if start_block is None or record.block_height < start_block:
            return VerificationResult.rejected(
                intent, RejectionReason.REPLAY_REJECTED, tx_hash=tx_hash,
                detail=f"block {record.block_height} < start {start_block}",
            )

        # 5. Asset
        if not self._asset_matches(record, asset, network):
            return VerificationResult.rejected(
                intent, RejectionReason.ASSET_MISMATCH, tx_hash=tx_hash,
                detail=f"asset {record.asset_ref or record.native_symbol}",
            )

        # 6. Amount
        if not amounts_match(record.raw_amount, intent.expected_amount_raw):
            if passive:
                return VerificationResult.rejected(
                    intent, RejectionReason.AMOUNT_MISMATCH, tx_hash=tx_hash,
                    detail=f"detected {record.raw_amount}, not this intent",
                )
            return await self._flag(
                intent, record, IntentStatus.MISMATCH, RejectionReason.AMOUNT_MISMATCH,
                f"detected {record.raw_amount} expected {intent.expected_amount_raw}",
                started_at,
            )

        if passive:
            intent = await self._mark_detecting(intent, tx_hash)
            if intent.status == IntentStatus.CONFIRMED:
                return self._confirmed_outcome(intent, tx_hash)

        # 7. Liveness
        if not record.succeeded:
            return await self._flag(
                intent, record, IntentStatus.FAILED, RejectionReason.ON_CHAIN_FAILURE,
                "transaction reverted", started_at,
            )

        # 8. Confirmations
        return await self._settle(intent, network, record, started_at)

    async def _fetch(
        self,
        intent: PaymentIntent,
        network: NetworkInfo,
        tx_hash: str,
        fetch_cache: Optional[FetchCache] = None,
    ) -> "Tuple[ChainFacts, int] | VerificationResult":
        key = (network.network_id, tx_hash)
        if fetch_cache is not None and key in fetch_cache:
            return fetch_cache[key]

        client = self._clients.get(network.network_id)
        if client is None:
            return VerificationResult.rejected(
                intent, RejectionReason.RPC_UNAVAILABLE, tx_hash=tx_hash,
                detail=f"no client for {network.network_id}",
            )

        async def fetch_both() -> Tuple[ChainFacts, int]:
            facts = await self._call(client.get_transaction, tx_hash, "get_transaction")
            head = await self._call(client.get_head_height, None, "get_head_height")
            return facts, head

        try:
            fetched = await asyncio.wait_for(fetch_both(), timeout=self._config.call_timeout_seconds)
        except asyncio.TimeoutError:
            return VerificationResult.rejected(
                intent, RejectionReason.RPC_UNAVAILABLE, tx_hash=tx_hash,
                detail="verification timed out",
            )
        except TransactionNotFoundError as e:
            return VerificationResult.rejected(
                intent, RejectionReason.TRANSACTION_NOT_FOUND, tx_hash=tx_hash, detail=e.message,
            )
        except ChainClientError as e:
            return VerificationResult.rejected(
                intent, RejectionReason.RPC_UNAVAILABLE, tx_hash=tx_hash, detail=e.message,
            )

        if fetch_cache is not None:
            fetch_cache[key] = fetched
        return fetched

    async def _call(self, method, argument, description: str):
        async def operation():
            return await (method(argument) if argument is not None else method())
        if not self._config.retry_transient:
            return await operation()
        return await self._backoff.run(operation, description=description)

    def _asset_matches(
        self,
        record: ChainTransactionRecord,
        asset: AssetInfo,
        network: NetworkInfo,
    ) -> bool:
        if asset.contract_ref is None:
            return (
                record.asset_ref is None
                and record.native_symbol == network.native_symbol
                and asset.symbol == network.native_symbol
            )
        if record.asset_ref is None:
            return False
        if network.family == NetworkFamily.EVM:
            return record.asset_ref.lower() == asset.contract_ref.lower()
        return record.asset_ref == asset.contract_ref

    # --------------------------------------------------------
    # STATE CHANGES
    # --------------------------------------------------------

    async def _mark_detecting(self, intent: PaymentIntent, tx_hash: str) -> PaymentIntent:
        """Associate the candidate; a concurrent change is re-read, not fought."""
        try:
            if intent.status == IntentStatus.CREATED:
                return await self._store.transition(
                    intent.intent_id,
                    IntentStatus.DETECTING,
                    reason=f"Candidate {mask_tx_hash(tx_hash)} fetched",
                    expected_from=[IntentStatus.CREATED],
                    updates={"candidate_tx_hash": tx_hash},
                )
            if intent.status == IntentStatus.DETECTING and intent.candidate_tx_hash != tx_hash:
                return await self._store.update_tracking(
                    intent.intent_id, {"candidate_tx_hash": tx_hash},
                    expected_from=[IntentStatus.DETECTING],
                )
        except (StaleIntentError, InvalidTransitionError):
            pass
        return await self._store.get(intent.intent_id)

    async def _claim(
        self,
        intent: PaymentIntent,
        record: ChainTransactionRecord,
    ) -> Optional[VerificationResult]:
        try:
            await self._store.record_observation(record, claim_for=intent.intent_id)
        except ClaimConflictError as e:
            return VerificationResult.rejected(
                intent, RejectionReason.TX_ALREADY_CLAIMED, tx_hash=record.tx_hash,
                detail=f"claimed by {e.claimed_by}",
            )
        return None

    async def _flag(
        self,
        intent: PaymentIntent,
        record: ChainTransactionRecord,
        target: IntentStatus,
        reason: RejectionReason,
        detail: str,
        started_at: datetime,
    ) -> VerificationResult:
        """Move to MISMATCH/FAILED; the transaction stays claimed as evidence."""
        conflict = await self._claim(intent, record)
        if conflict is not None:
            return conflict
        try:
            intent = await self._store.transition(
                intent.intent_id,
                target,
                reason=f"{reason.value}: {detail}",
                expected_from=[IntentStatus.DETECTING, IntentStatus.CONFIRMING],
                started_at=started_at,
                updates={
                    "candidate_tx_hash": record.tx_hash,
                    "detected_amount_raw": record.raw_amount,
                    "confirmations": record.confirmations,
                },
            )
        except (StaleIntentError, InvalidTransitionError):
            intent = await self._store.get(intent.intent_id)
            if intent.status == IntentStatus.CONFIRMED:
                return self._confirmed_outcome(intent, record.tx_hash)
        logger.warning(
            f"Intent {intent.intent_id} flagged {intent.status.value} for review: {detail}"
        )
        return VerificationResult.rejected(
            intent, reason, tx_hash=record.tx_hash, detail=detail, status=intent.status,
        )

    async def _settle(
        self,
        intent: PaymentIntent,
        network: NetworkInfo,
        record: ChainTransactionRecord,
        started_at: datetime,
    ) -> VerificationResult:
        conflict = await self._claim(intent, record)
        if conflict is not None:
            return conflict

        required = network.confirmations_required

        if record.confirmations >= required:
            try:
                commit = await self._committer.commit(
                    intent.intent_id, network.network_id, record.tx_hash, record, started_at,
                )
            except ClaimConflictError as e:
                return VerificationResult.rejected(
                    intent, RejectionReason.TX_ALREADY_CLAIMED, tx_hash=record.tx_hash,
                    detail=f"claimed by {e.claimed_by}",
                )
            except (StaleIntentError, InvalidTransitionError) as e:
                return await self._after_lost_transition(intent, record, required, e)
            return VerificationResult(
                outcome=(
                    VerificationOutcome.ALREADY_RECORDED
                    if commit.already_recorded else VerificationOutcome.CONFIRMED
                ),
                intent_id=intent.intent_id,
                network_id=network.network_id,
                tx_hash=record.tx_hash,
                status=IntentStatus.CONFIRMED,
                confirmations=record.confirmations,
                confirmations_required=required,
                donation_id=commit.donation_id,
            )

        updates = {"candidate_tx_hash": record.tx_hash, "confirmations": record.confirmations}
        try:
            if intent.status == IntentStatus.CONFIRMING:
                intent = await self._store.update_tracking(
                    intent.intent_id, updates, expected_from=[IntentStatus.CONFIRMING],
                )
            else:
                intent = await self._store.transition(
                    intent.intent_id,
                    IntentStatus.CONFIRMING,
                    reason=f"{record.confirmations}/{required} confirmations",
                    expected_from=[IntentStatus.DETECTING, IntentStatus.EXPIRED],
                    started_at=started_at,
                    updates=updates,
                )
        except (StaleIntentError, InvalidTransitionError) as e:
            return await self._after_lost_transition(intent, record, required, e)

        return VerificationResult(
            outcome=VerificationOutcome.PENDING,
            intent_id=intent.intent_id,
            network_id=network.network_id,
            tx_hash=record.tx_hash,
            status=intent.status,
            confirmations=max(intent.confirmations, record.confirmations),
            confirmations_required=required,
        )

    async def _after_lost_transition(
        self,
        intent: PaymentIntent,
        record: ChainTransactionRecord,
        required: int,
        error: Exception,
    ) -> VerificationResult:
        """Resolve against whatever a concurrent writer left behind."""
        current = await self._store.get(intent.intent_id)
        if current.status == IntentStatus.CONFIRMED:
            return self._confirmed_outcome(current, record.tx_hash)
        if current.status == IntentStatus.CONFIRMING and current.candidate_tx_hash == record.tx_hash:
            return VerificationResult(
                outcome=VerificationOutcome.PENDING,
                intent_id=current.intent_id,
                network_id=current.network_id,
                tx_hash=record.tx_hash,
                status=current.status,
                confirmations=current.confirmations,
                confirmations_required=required,
            )
        raise AlreadyTerminalError(
            f"Intent {current.intent_id} is {current.status.value}: {error}",
            status=current.status.value,
            intent_id=current.intent_id,
        )

    def _confirmed_outcome(self, intent: PaymentIntent, tx_hash: str) -> VerificationResult:
        """A CONFIRMED intent only acknowledges the transaction it was settled by."""
        if intent.candidate_tx_hash == tx_hash:
            return self._already_recorded(intent, tx_hash, intent.donation_id)
        return VerificationResult.rejected(
            intent, RejectionReason.CANDIDATE_CONFLICT, tx_hash=tx_hash,
            detail=f"settled by {mask_tx_hash(intent.candidate_tx_hash or '')}",
        )

    @staticmethod
    def _already_recorded(
        intent: PaymentIntent,
        tx_hash: Optional[str],
        donation_id: Optional[str],
    ) -> VerificationResult:
        return VerificationResult(
            outcome=VerificationOutcome.ALREADY_RECORDED,
            intent_id=intent.intent_id,
            network_id=intent.network_id,
            tx_hash=tx_hash,
            status=IntentStatus.CONFIRMED,
            confirmations=intent.confirmations,
            donation_id=donation_id,
        )

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
