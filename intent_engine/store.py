"""
Intent Engine - Intent Store.

============================================================
PURPOSE
============================================================
Keyed persistence of intents, chain transaction claims, ledger entries
and campaign totals, with optimistic state transitions.

CONTRACT:
- transition() is a compare-and-set: it re-validates against the
  current stored state and applies nothing when the guard refuses
- record_observation() claims (network, txHash) for at most one intent
- commit_confirmation() is the single atomic unit that writes the
  claim, the ledger entry, the CONFIRMED intent and campaign totals

InMemoryIntentStore keeps everything in dictionaries guarded by an
asyncio lock that is never held across I/O. SqlIntentStore (see
repository.py) provides the same contract on SQLAlchemy.

============================================================
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .exceptions import (
    ClaimConflictError,
    IntentNotFoundError,
    PersistenceError,
    StaleIntentError,
)
from .state_machine import EXPIRABLE_STATES, IntentStateMachine
from .types import (
    CampaignTotals,
    ChainTransactionRecord,
    ChainTxStatus,
    CommitResult,
    DonationLedgerEntry,
    IntentStatus,
    PaymentIntent,
    utc_now,
)


logger = logging.getLogger(__name__)


# Fields a transition may update; expectation fields are immutable.
MUTABLE_INTENT_FIELDS: Set[str] = {
    "candidate_tx_hash",
    "confirmations",
    "detected_amount_raw",
    "donation_id",
    "last_scanned_block_by_network",
}

_CHAIN_STATUS_ORDER = {
    ChainTxStatus.SEEN: 0,
    ChainTxStatus.CONFIRMING: 1,
    ChainTxStatus.CONFIRMED: 2,
}


def apply_intent_updates(intent: PaymentIntent, updates: Optional[Dict[str, Any]]) -> None:
    """Apply mutable-field updates, refusing expectation fields."""
    for name, value in (updates or {}).items():
        if name not in MUTABLE_INTENT_FIELDS:
            raise PersistenceError(
                f"Field {name} is immutable after creation",
                intent_id=intent.intent_id,
            )
        if name == "confirmations" and value < intent.confirmations:
            continue
        setattr(intent, name, value)


def check_tracking_status(
    intent: PaymentIntent,
    expected_from: Optional[Iterable[IntentStatus]] = None,
) -> None:
    """Tracking writes never touch terminal intents or an unexpected state."""
    expected = set(expected_from) if expected_from is not None else None
    if intent.status.is_terminal() or (expected is not None and intent.status not in expected):
        raise StaleIntentError(
            f"Intent {intent.intent_id} is {intent.status.value}, tracking update refused",
            intent_id=intent.intent_id,
        )


def merge_observation(stored: ChainTransactionRecord, observed: ChainTransactionRecord) -> None:
    """Fold a new observation into a stored record; counts only move forward."""
    stored.observe_confirmations(observed.confirmations)
    if stored.block_height is None and observed.block_height is not None:
        stored.block_height = observed.block_height
    if _CHAIN_STATUS_ORDER[observed.status] > _CHAIN_STATUS_ORDER[stored.status]:
        stored.status = observed.status
    if stored.sender is None:
        stored.sender = observed.sender


# ============================================================
# STORE CONTRACT
# ============================================================

class IntentStore(ABC):
    """Abstract persistence for the intent engine."""

    # ---------- intents ----------

    @abstractmethod
    async def create(self, intent: PaymentIntent) -> PaymentIntent:
        """Persist a new intent."""
        pass

    @abstractmethod
    async def get(self, intent_id: str) -> PaymentIntent:
        """
        Load an intent.

        Raises:
            IntentNotFoundError: If absent
        """
        pass

    @abstractmethod
    async def transition(
        self,
        intent_id: str,
        target: IntentStatus,
        reason: str = "",
        expected_from: Optional[Iterable[IntentStatus]] = None,
        started_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        updates: Optional[Dict[str, Any]] = None,
    ) -> PaymentIntent:
        """
        Conditionally move an intent to `target`.

        Raises:
            StaleIntentError: Current status not in expected_from
            InvalidTransitionError: Guard refused the transition
        """
        pass

    @abstractmethod
    async def update_tracking(
        self,
        intent_id: str,
        updates: Dict[str, Any],
        expected_from: Optional[Iterable[IntentStatus]] = None,
    ) -> PaymentIntent:
        """
        Update mutable tracking fields without a state change.

        Raises:
            StaleIntentError: Intent is terminal or not in expected_from
        """
        pass

    @abstractmethod
    async def list_by_status(
        self,
        statuses: Iterable[IntentStatus],
        limit: Optional[int] = None,
    ) -> List[PaymentIntent]:
        pass

    @abstractmethod
    async def list_expirable(self, now: datetime, limit: Optional[int] = None) -> List[PaymentIntent]:
        """CREATED/DETECTING intents whose expires_at has passed."""
        pass

    @abstractmethod
    async def find_open_by_address(self, network_id: str, address: str) -> List[PaymentIntent]:
        """CREATED/DETECTING intents on a network paying into an address."""
        pass

    @abstractmethod
    async def advance_cursor(self, intent_id: str, network_id: str, block_height: int) -> int:
        """Move the scanning cursor forward; returns the stored value."""
        pass

    # ---------- chain transactions ----------

    @abstractmethod
    async def get_chain_tx(self, network_id: str, tx_hash: str) -> Optional[ChainTransactionRecord]:
        pass

    @abstractmethod
    async def record_observation(
        self,
        record: ChainTransactionRecord,
        claim_for: Optional[str] = None,
    ) -> ChainTransactionRecord:
        """
        Create or update the record for (network, txHash).

        With `claim_for`, atomically associates the record with that
        intent when unclaimed.

        Raises:
            ClaimConflictError: Already claimed by another intent
        """
        pass

    # ---------- ledger ----------

    @abstractmethod
    async def commit_confirmation(
        self,
        intent_id: str,
        record: ChainTransactionRecord,
        entry: DonationLedgerEntry,
        started_at: Optional[datetime] = None,
    ) -> CommitResult:
        """
        Atomic claim + ledger write + CONFIRMED transition + totals update.

        Returns already_recorded=True with no writes when the key was
        already committed.
        """
        pass

    @abstractmethod
    async def get_donation(self, donation_id: str) -> Optional[DonationLedgerEntry]:
        pass

    @abstractmethod
    async def list_donations(self, campaign_id: Optional[str] = None) -> List[DonationLedgerEntry]:
        pass

    @abstractmethod
    async def get_totals(self, campaign_id: str) -> CampaignTotals:
        pass

    async def close(self) -> None:
        """Release resources."""
        pass


# ============================================================
# IN-MEMORY STORE
# ============================================================

class InMemoryIntentStore(IntentStore):
    """
    Dictionary-backed store.

    Every public method copies in and out so callers never hold
    references to stored objects.
    """

    def __init__(self):
        self._intents: Dict[str, PaymentIntent] = {}
        self._chain_txs: Dict[Tuple[str, str], ChainTransactionRecord] = {}
        self._donations: Dict[str, DonationLedgerEntry] = {}
        self._donations_by_tx: Dict[Tuple[str, str], str] = {}
        self._totals: Dict[str, CampaignTotals] = {}
        self._lock = asyncio.Lock()

    # --------------------------------------------------------
    # INTENTS
    # --------------------------------------------------------

    async def create(self, intent: PaymentIntent) -> PaymentIntent:
        async with self._lock:
            if intent.intent_id in self._intents:
                raise PersistenceError(
                    f"Intent {intent.intent_id} already exists",
                    intent_id=intent.intent_id,
                )
            self._intents[intent.intent_id] = copy.deepcopy(intent)
        logger.info(
            f"Intent {intent.intent_id} created: {intent.expected_amount} "
            f"{intent.asset_id} on {intent.network_id}"
        )
        return copy.deepcopy(intent)

    async def get(self, intent_id: str) -> PaymentIntent:
        async with self._lock:
            return copy.deepcopy(self._require(intent_id))

    async def transition(
        self,
        intent_id: str,
        target: IntentStatus,
        reason: str = "",
        expected_from: Optional[Iterable[IntentStatus]] = None,
        started_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        updates: Optional[Dict[str, Any]] = None,
    ) -> PaymentIntent:
        async with self._lock:
            current = self._require(intent_id)
            expected = set(expected_from) if expected_from is not None else None
            if expected is not None and current.status not in expected:
                raise StaleIntentError(
                    f"Intent {intent_id} is {current.status.value}, "
                    f"expected one of {sorted(s.value for s in expected)}",
                    intent_id=intent_id,
                )
            working = copy.deepcopy(current)
            apply_intent_updates(working, updates)
            IntentStateMachine(working).transition_to(
                target, reason, started_at=started_at, now=now,
            )
            self._intents[intent_id] = working
            return copy.deepcopy(working)

    async def update_tracking(
        self,
        intent_id: str,
        updates: Dict[str, Any],
        expected_from: Optional[Iterable[IntentStatus]] = None,
    ) -> PaymentIntent:
        async with self._lock:
            current = self._require(intent_id)
            check_tracking_status(current, expected_from)
            working = copy.deepcopy(current)
            apply_intent_updates(working, updates)
            working.updated_at = utc_now()
            working.version += 1
            self._intents[intent_id] = working
            return copy.deepcopy(working)

    async def list_by_status(
        self,
        statuses: Iterable[IntentStatus],
        limit: Optional[int] = None,
    ) -> List[PaymentIntent]:
        wanted = set(statuses)
        async with self._lock:
            found = sorted(
                (i for i in self._intents.values() if i.status in wanted),
                key=lambda i: i.created_at,
            )
            return [copy.deepcopy(i) for i in found[:limit]]

    async def list_expirable(self, now: datetime, limit: Optional[int] = None) -> List[PaymentIntent]:
        async with self._lock:
            found = sorted(
                (
                    i for i in self._intents.values()
                    if i.status in EXPIRABLE_STATES and i.expires_at <= now
                ),
                key=lambda i: i.expires_at,
            )
            return [copy.deepcopy(i) for i in found[:limit]]

    async def find_open_by_address(self, network_id: str, address: str) -> List[PaymentIntent]:
        async with self._lock:
            return [
                copy.deepcopy(i) for i in self._intents.values()
                if i.network_id == network_id
                and i.deposit_address.lower() == address.lower()
                and i.status.is_open()
            ]

    async def advance_cursor(self, intent_id: str, network_id: str, block_height: int) -> int:
        async with self._lock:
            intent = self._require(intent_id)
            current = intent.last_scanned_block_by_network.get(network_id, -1)
            if block_height > current:
                intent.last_scanned_block_by_network[network_id] = block_height
                intent.updated_at = utc_now()
                return block_height
            return current

    # --------------------------------------------------------
    # CHAIN TRANSACTIONS
    # --------------------------------------------------------

    async def get_chain_tx(self, network_id: str, tx_hash: str) -> Optional[ChainTransactionRecord]:
        async with self._lock:
            record = self._chain_txs.get((network_id, tx_hash))
            return copy.deepcopy(record) if record else None

    async def record_observation(
        self,
        record: ChainTransactionRecord,
        claim_for: Optional[str] = None,
    ) -> ChainTransactionRecord:
        async with self._lock:
            stored = self._chain_txs.get(record.key)
            if stored is None:
                stored = copy.deepcopy(record)
                stored.intent_id = None
                stored.donation_id = None
                self._chain_txs[record.key] = stored
            else:
                merge_observation(stored, record)

            if claim_for is not None:
                if stored.intent_id is None:
                    stored.intent_id = claim_for
                elif stored.intent_id != claim_for:
                    raise ClaimConflictError(
                        f"Transaction already claimed by intent {stored.intent_id}",
                        claimed_by=stored.intent_id,
                        intent_id=claim_for,
                        network_id=record.network_id,
                    )
            return copy.deepcopy(stored)

    # --------------------------------------------------------
    # LEDGER
    # --------------------------------------------------------

    async def commit_confirmation(
        self,
        intent_id: str,
        record: ChainTransactionRecord,
        entry: DonationLedgerEntry,
        started_at: Optional[datetime] = None,
    ) -> CommitResult:
        async with self._lock:
            key = record.key
            existing = self._chain_txs.get(key)

            # Idempotency boundary: already committed -> no writes
            if existing is not None and existing.donation_id is not None:
                return CommitResult(donation_id=existing.donation_id, already_recorded=True)
            if existing is not None and existing.intent_id not in (None, intent_id):
                raise ClaimConflictError(
                    f"Transaction already claimed by intent {existing.intent_id}",
                    claimed_by=existing.intent_id,
                    intent_id=intent_id,
                    network_id=record.network_id,
                )

            current = self._require(intent_id)
            if current.status == IntentStatus.CONFIRMED and current.donation_id:
                return CommitResult(donation_id=current.donation_id, already_recorded=True)

            # Validate everything before the first write
            working = copy.deepcopy(current)
            apply_intent_updates(working, {
                "candidate_tx_hash": record.tx_hash,
                "confirmations": record.confirmations,
                "detected_amount_raw": record.raw_amount,
                "donation_id": entry.donation_id,
            })
            IntentStateMachine(working).transition_to(
                IntentStatus.CONFIRMED,
                "Committed to ledger",
                started_at=started_at,
                now=entry.created_at,
            )

            claimed = copy.deepcopy(existing) if existing is not None else copy.deepcopy(record)
            if existing is not None:
                merge_observation(claimed, record)
            claimed.intent_id = intent_id
            claimed.donation_id = entry.donation_id
            claimed.status = ChainTxStatus.CONFIRMED
            claimed.updated_at = entry.created_at

            totals = copy.deepcopy(
                self._totals.get(entry.campaign_id) or CampaignTotals(campaign_id=entry.campaign_id)
            )
            if entry.valuation is not None:
                totals.currency = entry.valuation.currency
            totals.apply(entry)

            self._chain_txs[key] = claimed
            self._donations[entry.donation_id] = entry
            self._donations_by_tx[key] = entry.donation_id
            self._intents[intent_id] = working
            self._totals[entry.campaign_id] = totals

        return CommitResult(donation_id=entry.donation_id, already_recorded=False, entry=entry)

    async def get_donation(self, donation_id: str) -> Optional[DonationLedgerEntry]:
        async with self._lock:
            return self._donations.get(donation_id)

    async def list_donations(self, campaign_id: Optional[str] = None) -> List[DonationLedgerEntry]:
        async with self._lock:
            entries = [
                e for e in self._donations.values()
                if campaign_id is None or e.campaign_id == campaign_id
            ]
        return sorted(entries, key=lambda e: e.created_at)

    async def get_totals(self, campaign_id: str) -> CampaignTotals:
        async with self._lock:
            totals = self._totals.get(campaign_id)
            return copy.deepcopy(totals) if totals else CampaignTotals(campaign_id=campaign_id)

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _require(self, intent_id: str) -> PaymentIntent:
        intent = self._intents.get(intent_id)
        if intent is None:
            raise IntentNotFoundError(f"Intent not found: {intent_id}", intent_id=intent_id)
        return intent
