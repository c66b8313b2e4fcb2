"""
Watcher Feed Consumer Tests.

============================================================
PURPOSE
============================================================
Passive observations only associate a transaction with an intent on an
exact nonced amount; everything else is ignored without flagging the
intent.

============================================================
"""

import asyncio

import pytest

from intent_engine.exceptions import UnknownNetworkError
from intent_engine.types import (
    IntentStatus,
    VerificationOutcome,
    WatcherObservation,
)

from factories import (
    ETH,
    ETH_BLOCK,
    ETH_DEPOSIT,
    FIFTY_MILLI_ETH,
    eth_transfer,
    evm_hash,
    make_intent,
)


def observation(tx_hash, block=ETH_BLOCK, address=ETH_DEPOSIT) -> WatcherObservation:
    return WatcherObservation(network_id=ETH, address=address, tx_hash=tx_hash, block_height=block)


@pytest.fixture
def watcher(service):
    return service.watcher


# ============================================================
# PROCESSING TESTS
# ============================================================

class TestProcess:
    """Tests for WatcherFeedConsumer.process."""

    @pytest.mark.asyncio
    async def test_exact_amount_confirms(self, watcher, store, eth_client):
        await store.create(make_intent())
        eth_client.add_transaction(eth_transfer(evm_hash(1)))

        results = await watcher.process(observation(evm_hash(1)))

        assert [r.outcome for r in results] == [VerificationOutcome.CONFIRMED]
        assert (await store.get("intent-a")).status == IntentStatus.CONFIRMED
        assert watcher.get_stats()["verified"] == 1

    @pytest.mark.asyncio
    async def test_other_amount_ignored(self, watcher, store, eth_client):
        await store.create(make_intent())
        eth_client.add_transaction(eth_transfer(evm_hash(1), value=FIFTY_MILLI_ETH + 7))

        results = await watcher.process(observation(evm_hash(1)))

        assert results[0].outcome == VerificationOutcome.REJECTED
        intent = await store.get("intent-a")
        assert intent.status == IntentStatus.CREATED
        assert intent.candidate_tx_hash is None
        assert watcher.get_stats()["ignored"] == 1

    @pytest.mark.asyncio
    async def test_shared_address_matches_right_intent(self, watcher, store, eth_client):
        await store.create(make_intent("intent-a", expected_raw=FIFTY_MILLI_ETH + 11))
        await store.create(make_intent("intent-b", expected_raw=FIFTY_MILLI_ETH + 22))
        eth_client.add_transaction(eth_transfer(evm_hash(1), value=FIFTY_MILLI_ETH + 22))

        results = await watcher.process(observation(evm_hash(1)))

        assert len(results) == 2
        assert (await store.get("intent-a")).status == IntentStatus.CREATED
        assert (await store.get("intent-b")).status == IntentStatus.CONFIRMED
        donations = await store.list_donations()
        assert [d.intent_id for d in donations] == ["intent-b"]

    @pytest.mark.asyncio
    async def test_shared_address_fetches_once(self, watcher, store, eth_client):
        await store.create(make_intent("intent-a", expected_raw=FIFTY_MILLI_ETH + 11))
        await store.create(make_intent("intent-b", expected_raw=FIFTY_MILLI_ETH + 22))
        await store.create(make_intent("intent-c", expected_raw=FIFTY_MILLI_ETH + 33))
        eth_client.add_transaction(eth_transfer(evm_hash(1), value=FIFTY_MILLI_ETH + 33))

        await watcher.process(observation(evm_hash(1)))

        assert eth_client.transaction_calls == [evm_hash(1)]
        assert eth_client.head_calls == 1
        assert (await store.get("intent-c")).status == IntentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_duplicate_observation_harmless(self, watcher, store, eth_client):
        await store.create(make_intent())
        eth_client.add_transaction(eth_transfer(evm_hash(1)))

        await watcher.process(observation(evm_hash(1)))
        await watcher.process(observation(evm_hash(1)))

        assert len(await store.list_donations()) == 1

    @pytest.mark.asyncio
    async def test_cursor_advances(self, watcher, store, eth_client):
        await store.create(make_intent())
        eth_client.add_transaction(eth_transfer(evm_hash(1), value=1))
        eth_client.add_transaction(eth_transfer(evm_hash(2), value=2, block=ETH_BLOCK - 10))

        await watcher.process(observation(evm_hash(1), block=ETH_BLOCK))
        await watcher.process(observation(evm_hash(2), block=ETH_BLOCK - 10))

        intent = await store.get("intent-a")
        assert intent.last_scanned_block_by_network == {ETH: ETH_BLOCK}

    @pytest.mark.asyncio
    async def test_no_open_intents(self, watcher, eth_client):
        results = await watcher.process(observation(evm_hash(1)))

        assert results == []
        assert eth_client.transaction_calls == []


# ============================================================
# QUEUE TESTS
# ============================================================

class TestQueue:
    """Tests for submit/drain with the worker pool."""

    @pytest.mark.asyncio
    async def test_submit_and_drain(self, watcher, store, eth_client):
        await store.create(make_intent())
        eth_client.add_transaction(eth_transfer(evm_hash(1)))
        await watcher.start()

        try:
            await watcher.submit(observation(evm_hash(1)))
            await asyncio.wait_for(watcher.drain(), timeout=2)
        finally:
            await watcher.stop()

        assert (await store.get("intent-a")).status == IntentStatus.CONFIRMED
        stats = watcher.get_stats()
        assert stats["observations"] == 1
        assert stats["queued"] == 0

    @pytest.mark.asyncio
    async def test_service_handle_observation(self, service, store, eth_client):
        await store.create(make_intent())
        eth_client.add_transaction(eth_transfer(evm_hash(1)))
        await service.start()

        try:
            for _ in range(3):
                await service.handle_observation(observation(evm_hash(1)))
            await asyncio.wait_for(service.watcher.drain(), timeout=2)
        finally:
            await service.stop()

        assert len(await store.list_donations()) == 1

    @pytest.mark.asyncio
    async def test_unknown_network_refused(self, watcher):
        with pytest.raises(UnknownNetworkError):
            await watcher.submit(
                WatcherObservation(network_id="dogecoin_mainnet", address="D123", tx_hash="ab"),
            )
