"""
Reconciliation Tests.

============================================================
PURPOSE
============================================================
Ledger committer idempotency and valuation, and the CONFIRMING
re-poll pass.

============================================================
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from intent_engine.backoff import BackoffPolicy
from intent_engine.exceptions import ClaimConflictError
from intent_engine.pricing import StaticPriceOracle
from intent_engine.reconciliation import ConfirmingRepoller, ReconciliationCommitter
from intent_engine.types import (
    ChainTransactionRecord,
    ChainTxStatus,
    IntentStatus,
)
from intent_engine.verifier import ChainTruthVerifier

from factories import (
    ETH,
    ETH_BLOCK,
    ETH_DEPOSIT,
    ETH_HEAD,
    FIFTY_MILLI_ETH,
    T0,
    eth_transfer,
    evm_hash,
    make_intent,
)


def confirmed_record(tx_hash: str) -> ChainTransactionRecord:
    return ChainTransactionRecord(
        network_id=ETH,
        tx_hash=tx_hash,
        recipient=ETH_DEPOSIT,
        asset_ref=None,
        raw_amount=FIFTY_MILLI_ETH,
        decimals=18,
        block_height=ETH_BLOCK,
        confirmations=12,
        native_symbol="ETH",
        status=ChainTxStatus.CONFIRMED,
    )


async def detecting_intent(store, intent_id="intent-a", tx_hash=None, **kwargs):
    await store.create(make_intent(intent_id, **kwargs))
    await store.transition(
        intent_id, IntentStatus.DETECTING,
        updates={"candidate_tx_hash": tx_hash or evm_hash(1)},
    )


# ============================================================
# COMMITTER TESTS
# ============================================================

class TestReconciliationCommitter:
    """Tests for ReconciliationCommitter."""

    @pytest.mark.asyncio
    async def test_commit_records_entry(self, committer, store):
        await detecting_intent(store, campaign_id="relief-fund")

        result = await committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

        assert not result.already_recorded
        entry = result.entry
        assert entry.intent_id == "intent-a"
        assert entry.campaign_id == "relief-fund"
        assert entry.amount == "0.05"
        assert entry.explorer_url == f"https://etherscan.io/tx/{evm_hash(1)}"
        assert entry.valuation.rate == Decimal("2000")
        assert entry.valuation.value == Decimal("100.00")
        assert entry.valuation.source == "static"
        assert entry.created_at == T0

    @pytest.mark.asyncio
    async def test_second_commit_already_recorded(self, committer, store):
        await detecting_intent(store)
        first = await committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

        second = await committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

        assert second.already_recorded
        assert second.donation_id == first.donation_id
        assert len(await store.list_donations()) == 1
        assert committer.get_stats() == {"commits": 1, "already_recorded": 1, "valuation_missing": 0}

    @pytest.mark.asyncio
    async def test_concurrent_commits_single_entry(self, committer, store):
        await detecting_intent(store)

        results = await asyncio.gather(*[
            committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))
            for _ in range(10)
        ])

        assert sum(not r.already_recorded for r in results) == 1
        assert len({r.donation_id for r in results}) == 1
        assert len(await store.list_donations()) == 1
        totals = await store.get_totals("campaign-1")
        assert totals.donation_count == 1

    @pytest.mark.asyncio
    async def test_same_tx_for_second_intent_refused(self, committer, store):
        await detecting_intent(store, "intent-a")
        await detecting_intent(store, "intent-b")
        await committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

        result = await committer.commit("intent-b", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

        assert result.already_recorded
        assert (await store.get("intent-b")).status == IntentStatus.DETECTING
        assert len(await store.list_donations()) == 1

    @pytest.mark.asyncio
    async def test_claimed_elsewhere_raises(self, committer, store):
        await detecting_intent(store, "intent-a")
        await detecting_intent(store, "intent-b")
        await store.record_observation(confirmed_record(evm_hash(1)), claim_for="intent-a")

        with pytest.raises(ClaimConflictError):
            await committer.commit("intent-b", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

    @pytest.mark.asyncio
    async def test_missing_price_still_commits(self, store, registry, clock):
        committer = ReconciliationCommitter(
            store, price_oracle=StaticPriceOracle({}, clock=clock), registry=registry, clock=clock,
        )
        await detecting_intent(store)

        result = await committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

        assert not result.already_recorded
        assert result.entry.valuation is None
        assert committer.get_stats()["valuation_missing"] == 1

    @pytest.mark.asyncio
    async def test_record_key_must_match(self, committer, store):
        await detecting_intent(store)

        with pytest.raises(ValueError):
            await committer.commit("intent-a", ETH, evm_hash(2), confirmed_record(evm_hash(1)))

    @pytest.mark.asyncio
    async def test_commit_listener_called_once(self, store, registry, clock):
        listener = AsyncMock()
        committer = ReconciliationCommitter(store, registry=registry, clock=clock, on_commit=listener)
        await detecting_intent(store)

        await committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))
        await committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

        listener.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_undo_commit(self, store, registry, clock):
        listener = AsyncMock(side_effect=RuntimeError("webhook down"))
        committer = ReconciliationCommitter(store, registry=registry, clock=clock, on_commit=listener)
        await detecting_intent(store)

        result = await committer.commit("intent-a", ETH, evm_hash(1), confirmed_record(evm_hash(1)))

        assert not result.already_recorded
        assert (await store.get("intent-a")).status == IntentStatus.CONFIRMED


# ============================================================
# RE-POLL TESTS
# ============================================================

class TestConfirmingRepoller:
    """Tests for ConfirmingRepoller."""

    @pytest.fixture
    def repoller(self, store, clients, committer, registry, config, clock):
        verifier = ChainTruthVerifier(
            store, clients, committer,
            registry=registry,
            backoff=BackoffPolicy(config.backoff),
            config=config.verification,
            clock=clock,
        )
        return ConfirmingRepoller(verifier, store, config.repoll, clock)

    @pytest.mark.asyncio
    async def test_repoll_confirms_when_threshold_reached(self, repoller, store, eth_client):
        await detecting_intent(store)
        await store.record_observation(confirmed_record(evm_hash(1)), claim_for="intent-a")
        await store.transition(
            "intent-a", IntentStatus.CONFIRMING, updates={"confirmations": 4},
        )
        eth_client.add_transaction(eth_transfer(evm_hash(1)))

        result = await repoller.run_once()

        assert result.run_id == "RPL_000001"
        assert result.intents_checked == 1
        assert result.confirmed == 1
        assert (await store.get("intent-a")).status == IntentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_repoll_keeps_pending(self, repoller, store, eth_client):
        await detecting_intent(store)
        await store.transition("intent-a", IntentStatus.CONFIRMING, updates={"confirmations": 2})
        eth_client.add_transaction(eth_transfer(evm_hash(1)))
        eth_client.set_head(ETH_BLOCK + 6)

        result = await repoller.run_once()

        assert result.still_pending == 1
        intent = await store.get("intent-a")
        assert intent.status == IntentStatus.CONFIRMING
        assert intent.confirmations == 6

    @pytest.mark.asyncio
    async def test_repoll_detects_revert(self, repoller, store, eth_client):
        await detecting_intent(store)
        await store.transition("intent-a", IntentStatus.CONFIRMING)
        eth_client.add_transaction(eth_transfer(evm_hash(1), succeeded=False))

        result = await repoller.run_once()

        assert result.failed == 1
        assert (await store.get("intent-a")).status == IntentStatus.FAILED

    @pytest.mark.asyncio
    async def test_repoll_ignores_other_states(self, repoller, store, eth_client):
        await store.create(make_intent())
        eth_client.set_head(ETH_HEAD)

        result = await repoller.run_once()

        assert result.intents_checked == 0
        assert eth_client.transaction_calls == []
        assert repoller.get_last_result() is result
