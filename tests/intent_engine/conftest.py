"""
Shared fixtures for intent engine tests.
"""

from decimal import Decimal

import pytest

from intent_engine.chain.mock import MockChainClient, MockChainConfig
from intent_engine.clock import MockClock
from intent_engine.config import EngineConfig
from intent_engine.deposits import StaticDepositAddressProvider
from intent_engine.pricing import StaticPriceOracle
from intent_engine.reconciliation import ReconciliationCommitter
from intent_engine.registry import get_registry
from intent_engine.service import PaymentIntentService
from intent_engine.store import InMemoryIntentStore
from intent_engine.types import NetworkFamily

from factories import (
    BTC,
    BTC_DEPOSIT,
    ETH,
    ETH_DEPOSIT,
    ETH_HEAD,
    LTC,
    LTC_DEPOSIT,
    SOL,
    SOL_DEPOSIT,
    T0,
)


@pytest.fixture
def clock():
    """Mock clock pinned at T0."""
    return MockClock(T0)


@pytest.fixture
def registry():
    return get_registry()


@pytest.fixture
def store():
    return InMemoryIntentStore()


@pytest.fixture
def config():
    return EngineConfig.for_testing()


@pytest.fixture
def eth_client():
    """Ethereum mock client, head 12 blocks past ETH_BLOCK."""
    return MockChainClient(ETH, NetworkFamily.EVM, MockChainConfig(head_height=ETH_HEAD))


@pytest.fixture
def btc_client():
    return MockChainClient(BTC, NetworkFamily.UTXO, MockChainConfig(head_height=800_000))


@pytest.fixture
def ltc_client():
    return MockChainClient(LTC, NetworkFamily.UTXO, MockChainConfig(head_height=2_500_000))


@pytest.fixture
def sol_client():
    return MockChainClient(SOL, NetworkFamily.SOL, MockChainConfig(head_height=250_000_000))


@pytest.fixture
def clients(eth_client, btc_client, ltc_client, sol_client):
    return {
        ETH: eth_client,
        BTC: btc_client,
        LTC: ltc_client,
        SOL: sol_client,
    }


@pytest.fixture
def price_oracle(clock):
    return StaticPriceOracle(
        {
            "ethereum": Decimal("2000"),
            "bitcoin": Decimal("50000"),
            "litecoin": Decimal("80"),
            "solana": Decimal("100"),
            "usd-coin": Decimal("1"),
        },
        clock=clock,
    )


@pytest.fixture
def deposits():
    provider = StaticDepositAddressProvider()
    provider.set_address(ETH, ETH_DEPOSIT)
    provider.set_address(BTC, BTC_DEPOSIT)
    provider.set_address(LTC, LTC_DEPOSIT)
    provider.set_address(SOL, SOL_DEPOSIT)
    return provider


@pytest.fixture
def committer(store, price_oracle, registry, clock):
    return ReconciliationCommitter(store, price_oracle=price_oracle, registry=registry, clock=clock)


@pytest.fixture
def service(config, store, clients, deposits, price_oracle, registry, clock):
    """Fully wired service over mocks."""
    return PaymentIntentService(
        config=config,
        store=store,
        clients=clients,
        deposits=deposits,
        price_oracle=price_oracle,
        registry=registry,
        clock=clock,
    )
