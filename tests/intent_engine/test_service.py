"""
Payment Intent Service Tests.

============================================================
PURPOSE
============================================================
Intent creation (fiat and native pledges, nonce, replay guard, payment
URI), campaign gating, and the create -> verify flow end to end.

============================================================
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from intent_engine.deposits import GoalLockCampaignDirectory, StaticDepositAddressProvider
from intent_engine.exceptions import (
    CampaignClosedError,
    InvalidAddressError,
    MalformedAmountError,
    RpcUnavailableError,
    UnknownAssetError,
)
from intent_engine.service import PaymentIntentService
from intent_engine.types import (
    CreateIntentRequest,
    IntentStatus,
    VerificationOutcome,
)

from factories import (
    BTC,
    ETH,
    ETH_DEPOSIT,
    ETH_HEAD,
    FIFTY_MILLI_ETH,
    LTC,
    LTC_DEPOSIT,
    SOL,
    T0,
    eth_transfer,
    evm_hash,
)


def eth_request(**kwargs) -> CreateIntentRequest:
    fields = {
        "campaign_id": "campaign-1",
        "network_id": ETH,
        "asset_id": "eth_ethereum_mainnet",
        "amount_usd": Decimal("100"),
    }
    fields.update(kwargs)
    return CreateIntentRequest(**fields)


# ============================================================
# CREATION TESTS
# ============================================================

class TestCreateIntent:
    """Tests for PaymentIntentService.create_intent."""

    @pytest.mark.asyncio
    async def test_fiat_pledge(self, service):
        created = await service.create_intent(eth_request())
        intent = created.intent

        assert created.rate == Decimal("2000")
        assert intent.status == IntentStatus.CREATED
        assert intent.amount_usd == Decimal("100")
        assert intent.expected_amount_raw - intent.nonce == FIFTY_MILLI_ETH
        assert intent.deposit_address == ETH_DEPOSIT
        assert created.payment_uri == ETH_DEPOSIT
        assert created.explorer_address_url == f"https://etherscan.io/address/{ETH_DEPOSIT}"

    @pytest.mark.asyncio
    async def test_native_pledge(self, service):
        created = await service.create_intent(
            eth_request(amount_usd=None, amount_native="0.1"),
        )
        intent = created.intent

        assert created.rate is None
        assert intent.amount_usd is None
        assert intent.expected_amount_raw // 10 ** 6 == 10 ** 17 // 10 ** 6

    @pytest.mark.asyncio
    async def test_nonce_within_width(self, service):
        created = await service.create_intent(eth_request())
        intent = created.intent

        assert intent.nonce_width == 6
        assert 1 <= intent.nonce < 10 ** 6
        assert intent.expected_amount_raw % 10 ** 6 == intent.nonce

    @pytest.mark.asyncio
    async def test_small_bitcoin_pledge_keeps_its_value(self, service):
        for _ in range(20):
            created = await service.create_intent(
                eth_request(network_id=BTC, asset_id="btc_bitcoin_mainnet",
                            amount_usd=None, amount_native="0.001"),
            )
            intent = created.intent

            assert intent.nonce_width == 2
            assert abs(intent.expected_amount_raw - 100_000) < 100

    @pytest.mark.asyncio
    async def test_stablecoin_pledge_keeps_its_value(self, service):
        for _ in range(20):
            created = await service.create_intent(
                eth_request(asset_id="usdc_ethereum_mainnet", amount_usd=Decimal("5")),
            )
            intent = created.intent

            assert intent.nonce_width == 3
            assert abs(intent.expected_amount_raw - 5_000_000) < 1_000
            assert intent.expected_amount.startswith("5.000")

    @pytest.mark.asyncio
    async def test_expiry_and_ids(self, service):
        first = await service.create_intent(eth_request())
        second = await service.create_intent(eth_request())

        assert first.intent.expires_at == T0 + timedelta(hours=24)
        assert first.intent.intent_id != second.intent.intent_id

    @pytest.mark.asyncio
    async def test_replay_guard_captured(self, service):
        created = await service.create_intent(eth_request())

        assert created.intent.start_block_by_network == {ETH: ETH_HEAD}

    @pytest.mark.asyncio
    async def test_both_amounts_rejected(self, service):
        with pytest.raises(MalformedAmountError):
            await service.create_intent(eth_request(amount_native="0.05"))

    @pytest.mark.asyncio
    async def test_no_amount_rejected(self, service):
        with pytest.raises(MalformedAmountError):
            await service.create_intent(eth_request(amount_usd=None))

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, service):
        with pytest.raises(MalformedAmountError):
            await service.create_intent(eth_request(amount_usd=None, amount_native="0"))

    @pytest.mark.asyncio
    async def test_asset_on_wrong_network(self, service):
        with pytest.raises(UnknownAssetError):
            await service.create_intent(eth_request(network_id=BTC))

    @pytest.mark.asyncio
    async def test_head_unavailable(self, service, eth_client, store):
        eth_client.fail_head(5)

        with pytest.raises(RpcUnavailableError):
            await service.create_intent(eth_request())

        assert await store.list_by_status(list(IntentStatus)) == []

    @pytest.mark.asyncio
    async def test_anonymous_drops_donor(self, service):
        created = await service.create_intent(eth_request(donor_ref="donor-7", anonymous=True))

        assert created.intent.donor_ref is None

    @pytest.mark.asyncio
    async def test_donor_ref_kept(self, service):
        created = await service.create_intent(eth_request(donor_ref="donor-7"))

        assert created.intent.donor_ref == "donor-7"

    @pytest.mark.asyncio
    async def test_litecoin_uri(self, service):
        created = await service.create_intent(
            eth_request(network_id=LTC, asset_id="ltc_litecoin_mainnet",
                        amount_usd=None, amount_native="1.5"),
        )

        assert created.payment_uri.startswith(f"litecoin:{LTC_DEPOSIT}?amount=1.50")
        assert created.intent.start_block_by_network == {LTC: 2_500_000}

    @pytest.mark.asyncio
    async def test_solana_uri(self, service):
        created = await service.create_intent(
            eth_request(network_id=SOL, asset_id="sol_solana_mainnet", amount_usd=Decimal("10")),
        )

        assert created.payment_uri.startswith("solana:")
        assert created.intent.expected_amount_raw // 10 ** 6 == 10 ** 8 // 10 ** 6


# ============================================================
# CAMPAIGN TESTS
# ============================================================

class TestCampaignGate:
    """Tests for campaign acceptance."""

    def _service(self, config, store, clients, deposits, price_oracle, registry, clock, campaigns):
        return PaymentIntentService(
            config=config,
            store=store,
            clients=clients,
            deposits=deposits,
            price_oracle=price_oracle,
            campaigns=campaigns,
            registry=registry,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_closed_campaign(self, config, store, clients, deposits, price_oracle, registry, clock):
        campaigns = GoalLockCampaignDirectory(store, closed=["campaign-1"])
        service = self._service(config, store, clients, deposits, price_oracle, registry, clock, campaigns)

        with pytest.raises(CampaignClosedError):
            await service.create_intent(eth_request())

    @pytest.mark.asyncio
    async def test_goal_reached_closes_campaign(
        self, config, store, clients, deposits, price_oracle, registry, clock, eth_client,
    ):
        campaigns = GoalLockCampaignDirectory(store, goals={"campaign-1": Decimal("100")})
        service = self._service(config, store, clients, deposits, price_oracle, registry, clock, campaigns)
        created = await service.create_intent(eth_request())
        intent = created.intent
        eth_client.add_transaction(
            eth_transfer(evm_hash(1), value=intent.expected_amount_raw, block=ETH_HEAD + 1),
        )
        eth_client.set_head(ETH_HEAD + 13)
        await service.verify(intent.intent_id, evm_hash(1))

        with pytest.raises(CampaignClosedError):
            await service.create_intent(eth_request())


class TestDepositAddresses:
    """Tests for StaticDepositAddressProvider."""

    @pytest.mark.asyncio
    async def test_campaign_specific_address_wins(self, registry):
        provider = StaticDepositAddressProvider()
        provider.set_address(ETH, ETH_DEPOSIT)
        provider.set_address(ETH, "0x" + "12" * 20, campaign_id="special")
        asset, network = registry.asset_on_network("eth_ethereum_mainnet", ETH)

        assert await provider.deposit_address("special", asset, network) == "0x" + "12" * 20
        assert await provider.deposit_address("other", asset, network) == ETH_DEPOSIT

    @pytest.mark.asyncio
    async def test_missing_address(self, registry):
        asset, network = registry.asset_on_network("btc_bitcoin_mainnet", BTC)

        with pytest.raises(InvalidAddressError):
            await StaticDepositAddressProvider().deposit_address("c", asset, network)

    @pytest.mark.asyncio
    async def test_from_env(self, registry, monkeypatch):
        monkeypatch.setenv("DEPOSIT_ADDRESS_LITECOIN_MAINNET", f" {LTC_DEPOSIT} ")
        provider = StaticDepositAddressProvider.from_env([LTC, BTC])
        asset, network = registry.asset_on_network("ltc_litecoin_mainnet", LTC)

        assert await provider.deposit_address("c", asset, network) == LTC_DEPOSIT

    @pytest.mark.asyncio
    async def test_wrong_format_address_refused(
        self, config, store, clients, price_oracle, registry, clock,
    ):
        provider = StaticDepositAddressProvider()
        provider.set_address(LTC, "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
        service = PaymentIntentService(
            config=config, store=store, clients=clients, deposits=provider,
            price_oracle=price_oracle, registry=registry, clock=clock,
        )

        with pytest.raises(InvalidAddressError):
            await service.create_intent(
                eth_request(network_id=LTC, asset_id="ltc_litecoin_mainnet"),
            )


# ============================================================
# END TO END
# ============================================================

class TestCreateAndVerify:
    """Tests for the full pledge flow."""

    @pytest.mark.asyncio
    async def test_pledge_confirmed(self, service, eth_client):
        created = await service.create_intent(eth_request(donor_ref="donor-1"))
        intent = created.intent
        eth_client.add_transaction(
            eth_transfer(evm_hash(1), value=intent.expected_amount_raw, block=ETH_HEAD + 1),
        )
        eth_client.set_head(ETH_HEAD + 13)

        result = await service.verify(intent.intent_id, evm_hash(1))

        assert result.outcome == VerificationOutcome.CONFIRMED
        status = await service.get_status(intent.intent_id)
        assert status.status == IntentStatus.CONFIRMED
        donations = await service.list_donations("campaign-1")
        assert len(donations) == 1
        assert donations[0].donor_ref == "donor-1"
        totals = await service.get_totals("campaign-1")
        assert totals.raw_by_asset == {"eth_ethereum_mainnet": intent.expected_amount_raw}

    @pytest.mark.asyncio
    async def test_pledge_pending_then_repolled(self, service, eth_client):
        created = await service.create_intent(eth_request())
        intent = created.intent
        eth_client.add_transaction(
            eth_transfer(evm_hash(1), value=intent.expected_amount_raw, block=ETH_HEAD + 1),
        )
        eth_client.set_head(ETH_HEAD + 4)

        result = await service.verify(intent.intent_id, evm_hash(1))
        assert result.outcome == VerificationOutcome.PENDING

        eth_client.set_head(ETH_HEAD + 20)
        repoll = await service.repoller.run_once()

        assert repoll.confirmed == 1
        assert (await service.get_status(intent.intent_id)).status == IntentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_old_transaction_rejected(self, service, eth_client):
        created = await service.create_intent(eth_request())
        intent = created.intent
        eth_client.add_transaction(
            eth_transfer(evm_hash(1), value=intent.expected_amount_raw, block=ETH_HEAD - 5),
        )

        result = await service.verify(intent.intent_id, evm_hash(1))

        assert result.outcome == VerificationOutcome.REJECTED
        assert await service.list_donations() == []

    @pytest.mark.asyncio
    async def test_stats_shape(self, service):
        stats = service.get_stats()

        assert set(stats) == {"verifier", "committer", "watcher", "clients"}
        assert ETH in stats["clients"]


# ============================================================
# LIFECYCLE TESTS
# ============================================================

class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_start_stop(self, service, clients):
        await service.start()
        assert service.scheduler.is_running

        await service.stop()

        assert not service.scheduler.is_running
        assert all(client.closed for client in clients.values())

    @pytest.mark.asyncio
    async def test_stop_twice(self, service):
        await service.start()
        await service.stop()
        await service.stop()

        assert not service.scheduler.is_running
