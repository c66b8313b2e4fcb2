"""
In-Memory Intent Store Tests.

============================================================
PURPOSE
============================================================
Compare-and-set transitions, immutable expectation fields, claims on
(network, txHash), and the atomic ledger commit.

============================================================
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from intent_engine.exceptions import (
    ClaimConflictError,
    IntentNotFoundError,
    InvalidTransitionError,
    PersistenceError,
    StaleIntentError,
)
from intent_engine.types import (
    ChainTransactionRecord,
    ChainTxStatus,
    DonationLedgerEntry,
    FiatValuation,
    IntentStatus,
)

from factories import ETH, ETH_DEPOSIT, ETH_BLOCK, FIFTY_MILLI_ETH, T0, evm_hash, make_intent


def chain_record(tx_hash: str, confirmations: int = 12) -> ChainTransactionRecord:
    return ChainTransactionRecord(
        network_id=ETH,
        tx_hash=tx_hash,
        recipient=ETH_DEPOSIT,
        asset_ref=None,
        raw_amount=FIFTY_MILLI_ETH,
        decimals=18,
        block_height=ETH_BLOCK,
        confirmations=confirmations,
        native_symbol="ETH",
        status=ChainTxStatus.CONFIRMED,
    )


def ledger_entry(intent_id: str, tx_hash: str, donation_id: str = "don_1") -> DonationLedgerEntry:
    return DonationLedgerEntry(
        donation_id=donation_id,
        intent_id=intent_id,
        campaign_id="campaign-1",
        asset_id="eth_ethereum_mainnet",
        network_id=ETH,
        amount_raw=FIFTY_MILLI_ETH,
        amount="0.05",
        valuation=FiatValuation(
            currency="USD",
            rate=Decimal("2000"),
            value=Decimal("100.00"),
            source="static",
            taken_at=T0,
        ),
        tx_hash=tx_hash,
        donor_ref=None,
        created_at=T0,
    )


# ============================================================
# INTENT TESTS
# ============================================================

class TestIntents:
    """Tests for intent persistence and transitions."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        await store.create(make_intent())

        loaded = await store.get("intent-a")

        assert loaded.status == IntentStatus.CREATED
        assert loaded.deposit_address == ETH_DEPOSIT

    @pytest.mark.asyncio
    async def test_duplicate_create_rejected(self, store):
        await store.create(make_intent())

        with pytest.raises(PersistenceError):
            await store.create(make_intent())

    @pytest.mark.asyncio
    async def test_get_unknown_raises(self, store):
        with pytest.raises(IntentNotFoundError):
            await store.get("missing")

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self, store):
        await store.create(make_intent())

        loaded = await store.get("intent-a")
        loaded.status = IntentStatus.CONFIRMED

        assert (await store.get("intent-a")).status == IntentStatus.CREATED

    @pytest.mark.asyncio
    async def test_transition_applies_updates(self, store):
        await store.create(make_intent())

        updated = await store.transition(
            "intent-a", IntentStatus.DETECTING,
            expected_from=[IntentStatus.CREATED],
            updates={"candidate_tx_hash": evm_hash(1)},
        )

        assert updated.status == IntentStatus.DETECTING
        assert updated.candidate_tx_hash == evm_hash(1)
        assert updated.version == 1

    @pytest.mark.asyncio
    async def test_transition_compare_and_set(self, store):
        await store.create(make_intent())

        with pytest.raises(StaleIntentError):
            await store.transition(
                "intent-a", IntentStatus.CONFIRMING,
                expected_from=[IntentStatus.DETECTING],
                updates={"candidate_tx_hash": evm_hash(1)},
            )
        assert (await store.get("intent-a")).status == IntentStatus.CREATED

    @pytest.mark.asyncio
    async def test_refused_transition_writes_nothing(self, store):
        await store.create(make_intent())

        with pytest.raises(InvalidTransitionError):
            await store.transition(
                "intent-a", IntentStatus.CONFIRMED,
                updates={"candidate_tx_hash": evm_hash(1), "donation_id": "don_x"},
            )

        loaded = await store.get("intent-a")
        assert loaded.candidate_tx_hash is None
        assert loaded.donation_id is None

    @pytest.mark.asyncio
    async def test_expectation_fields_immutable(self, store):
        await store.create(make_intent())

        with pytest.raises(PersistenceError, match="immutable"):
            await store.update_tracking("intent-a", {"expected_amount_raw": 1})

    @pytest.mark.asyncio
    async def test_tracking_refused_on_terminal_intent(self, store):
        await store.create(make_intent(status=IntentStatus.CONFIRMED))

        with pytest.raises(StaleIntentError):
            await store.update_tracking("intent-a", {"candidate_tx_hash": evm_hash(2)})

        assert (await store.get("intent-a")).candidate_tx_hash is None

    @pytest.mark.asyncio
    async def test_tracking_checks_expected_state(self, store):
        await store.create(make_intent())

        with pytest.raises(StaleIntentError):
            await store.update_tracking(
                "intent-a", {"confirmations": 2}, expected_from=[IntentStatus.CONFIRMING],
            )

        assert (await store.get("intent-a")).confirmations == 0

    @pytest.mark.asyncio
    async def test_confirmations_only_move_forward(self, store):
        await store.create(make_intent())
        await store.update_tracking("intent-a", {"confirmations": 5})

        loaded = await store.update_tracking("intent-a", {"confirmations": 3})

        assert loaded.confirmations == 5

    @pytest.mark.asyncio
    async def test_list_expirable(self, store):
        await store.create(make_intent("old", expires_at=T0 - timedelta(minutes=1)))
        await store.create(make_intent("fresh", expires_at=T0 + timedelta(minutes=1)))
        confirming = make_intent("confirming", expires_at=T0 - timedelta(hours=1),
                                 status=IntentStatus.CONFIRMING)
        confirming.candidate_tx_hash = evm_hash(9)
        await store.create(confirming)

        expirable = await store.list_expirable(T0)

        assert [i.intent_id for i in expirable] == ["old"]

    @pytest.mark.asyncio
    async def test_find_open_by_address_ignores_case(self, store):
        await store.create(make_intent("a"))
        closed = make_intent("b", status=IntentStatus.EXPIRED)
        await store.create(closed)

        found = await store.find_open_by_address(ETH, ETH_DEPOSIT.upper().replace("0X", "0x"))

        assert [i.intent_id for i in found] == ["a"]

    @pytest.mark.asyncio
    async def test_cursor_only_advances(self, store):
        await store.create(make_intent())

        assert await store.advance_cursor("intent-a", ETH, 100) == 100
        assert await store.advance_cursor("intent-a", ETH, 90) == 100
        assert (await store.get("intent-a")).last_scanned_block_by_network == {ETH: 100}


# ============================================================
# CLAIM TESTS
# ============================================================

class TestClaims:
    """Tests for (network, txHash) claims."""

    @pytest.mark.asyncio
    async def test_claim_once(self, store):
        record = await store.record_observation(chain_record(evm_hash(1)), claim_for="a")

        assert record.intent_id == "a"

    @pytest.mark.asyncio
    async def test_reclaim_by_same_intent(self, store):
        await store.record_observation(chain_record(evm_hash(1)), claim_for="a")

        record = await store.record_observation(chain_record(evm_hash(1), 20), claim_for="a")

        assert record.intent_id == "a"
        assert record.confirmations == 20

    @pytest.mark.asyncio
    async def test_claim_by_other_intent_raises(self, store):
        await store.record_observation(chain_record(evm_hash(1)), claim_for="a")

        with pytest.raises(ClaimConflictError) as exc_info:
            await store.record_observation(chain_record(evm_hash(1)), claim_for="b")

        assert exc_info.value.claimed_by == "a"

    @pytest.mark.asyncio
    async def test_observation_without_claim(self, store):
        await store.record_observation(chain_record(evm_hash(1)))

        record = await store.get_chain_tx(ETH, evm_hash(1))

        assert record is not None
        assert record.intent_id is None


# ============================================================
# COMMIT TESTS
# ============================================================

class TestCommitConfirmation:
    """Tests for the atomic ledger commit."""

    async def _detecting(self, store, intent_id="intent-a", tx_hash=None):
        intent = make_intent(intent_id)
        await store.create(intent)
        await store.transition(
            intent_id, IntentStatus.DETECTING,
            updates={"candidate_tx_hash": tx_hash or evm_hash(1)},
        )

    @pytest.mark.asyncio
    async def test_commit_writes_everything(self, store):
        await self._detecting(store)

        result = await store.commit_confirmation(
            "intent-a", chain_record(evm_hash(1)), ledger_entry("intent-a", evm_hash(1)),
        )

        assert not result.already_recorded
        intent = await store.get("intent-a")
        assert intent.status == IntentStatus.CONFIRMED
        assert intent.donation_id == "don_1"
        record = await store.get_chain_tx(ETH, evm_hash(1))
        assert record.donation_id == "don_1"
        assert record.status == ChainTxStatus.CONFIRMED
        totals = await store.get_totals("campaign-1")
        assert totals.donation_count == 1
        assert totals.raw_by_asset == {"eth_ethereum_mainnet": FIFTY_MILLI_ETH}
        assert totals.fiat_total == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_second_commit_writes_nothing(self, store):
        await self._detecting(store)
        await store.commit_confirmation(
            "intent-a", chain_record(evm_hash(1)), ledger_entry("intent-a", evm_hash(1)),
        )

        result = await store.commit_confirmation(
            "intent-a", chain_record(evm_hash(1)),
            ledger_entry("intent-a", evm_hash(1), donation_id="don_2"),
        )

        assert result.already_recorded
        assert result.donation_id == "don_1"
        assert len(await store.list_donations()) == 1
        assert (await store.get_totals("campaign-1")).donation_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_commits_one_entry(self, store):
        await self._detecting(store)

        results = await asyncio.gather(*[
            store.commit_confirmation(
                "intent-a", chain_record(evm_hash(1)),
                ledger_entry("intent-a", evm_hash(1), donation_id=f"don_{n}"),
            )
            for n in range(5)
        ])

        assert sum(not r.already_recorded for r in results) == 1
        assert len({r.donation_id for r in results}) == 1
        assert len(await store.list_donations()) == 1

    @pytest.mark.asyncio
    async def test_commit_for_claimed_tx_raises(self, store):
        await self._detecting(store, "intent-a")
        await self._detecting(store, "intent-b")
        await store.record_observation(chain_record(evm_hash(1)), claim_for="intent-a")

        with pytest.raises(ClaimConflictError):
            await store.commit_confirmation(
                "intent-b", chain_record(evm_hash(1)), ledger_entry("intent-b", evm_hash(1)),
            )
        assert await store.list_donations() == []

    @pytest.mark.asyncio
    async def test_commit_refused_for_mismatch(self, store):
        await self._detecting(store)
        await store.transition("intent-a", IntentStatus.MISMATCH)

        with pytest.raises(InvalidTransitionError):
            await store.commit_confirmation(
                "intent-a", chain_record(evm_hash(1)), ledger_entry("intent-a", evm_hash(1)),
            )
        assert await store.list_donations() == []
        assert (await store.get_chain_tx(ETH, evm_hash(1))) is None
