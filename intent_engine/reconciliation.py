"""
Intent Engine - Reconciliation.

============================================================
PURPOSE
============================================================
Commits chain truth into the donation ledger, and keeps CONFIRMING
intents moving toward their confirmation threshold.

RESPONSIBILITIES:
- ReconciliationCommitter: the only writer of ledger entries and the
  only path to CONFIRMED; exactly one write per (network, txHash)
- ConfirmingRepoller: periodic pass re-verifying CONFIRMING intents

CRITICAL INVARIANT:
    "A second commit of the same (network, txHash) writes nothing
     and reports alreadyRecorded."

============================================================
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Awaitable, Dict, List, Optional

from .amount import from_native
from .clock import ClockProtocol, get_clock
from .config import IntentPolicyConfig, RepollConfig
from .exceptions import PriceUnavailableError
from .payment_uri import explorer_tx_url
from .pricing import PriceOracle
from .registry import AssetRegistry, get_registry
from .store import IntentStore
from .tx_hash import mask_tx_hash
from .types import (
    ChainTransactionRecord,
    CommitResult,
    DonationLedgerEntry,
    IntentStatus,
    VerificationOutcome,
    VerificationResult,
)

if TYPE_CHECKING:
    from .verifier import ChainTruthVerifier


logger = logging.getLogger(__name__)


def new_donation_id() -> str:
    return f"don_{uuid.uuid4().hex}"


# ============================================================
# RECONCILIATION COMMITTER
# ============================================================

class ReconciliationCommitter:
    """
    Writes confirmed chain truth to the ledger exactly once.

    SAFETY:
    - Idempotency read before any pricing or write
    - Claim, ledger entry, CONFIRMED transition and campaign totals are
      one atomic store operation
    - A failed commit is safe to retry
    """

    def __init__(
        self,
        store: IntentStore,
        price_oracle: Optional[PriceOracle] = None,
        registry: Optional[AssetRegistry] = None,
        policy: Optional[IntentPolicyConfig] = None,
        clock: Optional[ClockProtocol] = None,
        on_commit: Optional[Callable[[DonationLedgerEntry], Awaitable[None]]] = None,
    ):
        self._store = store
        self._price_oracle = price_oracle
        self._registry = registry or get_registry()
        self._policy = policy or IntentPolicyConfig()
        self._clock = clock or get_clock()
        self._on_commit = on_commit
        self._stats = {
            "commits": 0,
            "already_recorded": 0,
            "valuation_missing": 0,
        }

    async def commit(
        self,
        intent_id: str,
        network_id: str,
        tx_hash: str,
        record: ChainTransactionRecord,
        started_at: Optional[datetime] = None,
    ) -> CommitResult:
        """
        Commit a verified transaction for an intent.

        Args:
            intent_id: Intent being confirmed
            network_id: Network of the transaction
            tx_hash: Normalized transaction hash
            record: Normalized chain facts that passed every check
            started_at: Start of the verification driving the commit

        Returns:
            CommitResult with the donation ID and already_recorded flag

        Raises:
            ClaimConflictError: Transaction credited to another intent
        """
        if record.key != (network_id, tx_hash):
            raise ValueError(
                f"Record {record.key} does not match ({network_id}, {tx_hash})"
            )

        existing = await self._store.get_chain_tx(network_id, tx_hash)
        if existing is not None and existing.donation_id is not None:
            self._stats["already_recorded"] += 1
            logger.info(
                f"Commit {network_id}/{mask_tx_hash(tx_hash)}: already recorded "
                f"as {existing.donation_id}"
            )
            return CommitResult(donation_id=existing.donation_id, already_recorded=True)

        intent = await self._store.get(intent_id)
        if intent.status == IntentStatus.CONFIRMED and intent.donation_id:
            self._stats["already_recorded"] += 1
            return CommitResult(donation_id=intent.donation_id, already_recorded=True)

        network = self._registry.network(network_id)
        asset = self._registry.asset(intent.asset_id)

        valuation = None
        if self._price_oracle is not None:
            try:
                valuation = await self._price_oracle.snapshot(
                    asset, record.raw_amount, self._policy.fiat_currency,
                )
            except PriceUnavailableError as e:
                self._stats["valuation_missing"] += 1
                logger.warning(f"No valuation for {intent_id}: {e}")

        entry = DonationLedgerEntry(
            donation_id=new_donation_id(),
            intent_id=intent_id,
            campaign_id=intent.campaign_id,
            asset_id=intent.asset_id,
            network_id=network_id,
            amount_raw=record.raw_amount,
            amount=from_native(record.raw_amount, asset.decimals),
            valuation=valuation,
            tx_hash=tx_hash,
            donor_ref=intent.donor_ref,
            explorer_url=explorer_tx_url(network, tx_hash),
            created_at=self._clock.now(),
        )

        result = await self._store.commit_confirmation(intent_id, record, entry, started_at)

        if result.already_recorded:
            self._stats["already_recorded"] += 1
            logger.info(
                f"Commit {network_id}/{mask_tx_hash(tx_hash)}: lost race, "
                f"already recorded as {result.donation_id}"
            )
            return result

        self._stats["commits"] += 1
        logger.info(
            f"Donation {entry.donation_id} recorded: intent {intent_id}, "
            f"{entry.amount} {asset.symbol} on {network_id} "
            f"({mask_tx_hash(tx_hash)})"
        )
        if self._on_commit:
            try:
                await self._on_commit(entry)
            except Exception as e:
                logger.error(f"Commit listener error: {e}")
        return result

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)


# ============================================================
# CONFIRMING RE-POLL
# ============================================================

@dataclass
class RepollResult:
    """Result of one re-poll pass."""

    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    intents_checked: int = 0
    confirmed: int = 0
    still_pending: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class ConfirmingRepoller:
    """
    Re-verifies every CONFIRMING intent against its tracked hash.

    Confirmation counts only move forward; reaching the threshold
    commits through the verifier and committer.
    """

    def __init__(
        self,
        verifier: "ChainTruthVerifier",
        store: IntentStore,
        config: Optional[RepollConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._verifier = verifier
        self._store = store
        self._config = config or RepollConfig()
        self._clock = clock or get_clock()
        self._history: List[RepollResult] = []
        self._max_history = 100
        self._run_counter = 0
        self._lock = asyncio.Lock()

    async def run_once(self) -> RepollResult:
        """Run one re-poll pass."""
        async with self._lock:
            self._run_counter += 1
            result = RepollResult(
                run_id=f"RPL_{self._run_counter:06d}",
                started_at=self._clock.now(),
            )

            intents = await self._store.list_by_status(
                [IntentStatus.CONFIRMING], limit=self._config.batch_size,
            )
            result.intents_checked = len(intents)

            for intent in intents:
                if not intent.candidate_tx_hash:
                    continue
                try:
                    outcome = await self._verifier.verify(
                        intent.intent_id, intent.candidate_tx_hash, source="repoll",
                    )
                except Exception as e:
                    result.errors.append(f"Error re-polling {intent.intent_id}: {e}")
                    logger.error(f"Re-poll error for {intent.intent_id}: {e}")
                    continue
                self._tally(result, outcome)

            result.completed_at = self._clock.now()
            self._history.append(result)
            if len(self._history) > self._max_history:
                self._history.pop(0)

            if result.intents_checked:
                logger.info(
                    f"Re-poll {result.run_id} complete: "
                    f"{result.intents_checked} checked, "
                    f"{result.confirmed} confirmed, "
                    f"{result.still_pending} pending"
                )
            return result

    @staticmethod
    def _tally(result: RepollResult, outcome: VerificationResult) -> None:
        if outcome.outcome in (VerificationOutcome.CONFIRMED, VerificationOutcome.ALREADY_RECORDED):
            result.confirmed += 1
        elif outcome.outcome == VerificationOutcome.PENDING:
            result.still_pending += 1
        elif outcome.status == IntentStatus.FAILED:
            result.failed += 1
        else:
            result.still_pending += 1

    def get_last_result(self) -> Optional[RepollResult]:
        return self._history[-1] if self._history else None
