"""
Builders and constants shared by the intent engine tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from intent_engine.registry import get_registry
from intent_engine.types import (
    Erc20Transfer,
    EvmTxFacts,
    IntentStatus,
    PaymentIntent,
    SolanaTxFacts,
    UtxoOutput,
    UtxoTxFacts,
)


# ============================================================
# CONSTANTS
# ============================================================

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

ETH = "ethereum_mainnet"
BTC = "bitcoin_mainnet"
LTC = "litecoin_mainnet"
SOL = "solana_mainnet"

ETH_DEPOSIT = "0x" + "ab" * 20
ETH_DONOR = "0x" + "cd" * 20
ETH_OTHER = "0x" + "ef" * 20
USDC_ETH = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
USDT_ETH = "0xdAC17F958D2ee523a2206206994597C13D831ec7"

BTC_DEPOSIT = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
LTC_DEPOSIT = "ltc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
SOL_DEPOSIT = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
SOL_DONOR = "So11111111111111111111111111111111111111112"
USDC_SOL = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

# Ethereum head used by the default client: 12 blocks past ETH_BLOCK
START_BLOCK = 1_000_000
ETH_BLOCK = START_BLOCK + 50
ETH_HEAD = ETH_BLOCK + 12

FIFTY_MILLI_ETH = 50_000_000_000_000_000


def evm_hash(n: int) -> str:
    """Normalized EVM hash for a small integer."""
    return "0x" + format(n, "064x")


def utxo_hash(n: int) -> str:
    return format(n, "064x")


def sol_signature(n: int) -> str:
    """Base58 string long enough to pass as a signature."""
    return "5" + "K" * 60 + "123456789"[n % 9]


# ============================================================
# CHAIN FACTS
# ============================================================

def eth_transfer(
    tx_hash: str,
    value: int = FIFTY_MILLI_ETH,
    block: int = ETH_BLOCK,
    to: str = ETH_DEPOSIT,
    succeeded: bool = True,
) -> EvmTxFacts:
    return EvmTxFacts(
        tx_hash=tx_hash,
        from_address=ETH_DONOR,
        to_address=to,
        value=value,
        block_number=block,
        succeeded=succeeded,
    )


def token_transfer(
    tx_hash: str,
    value: int,
    contract: str = USDC_ETH,
    block: int = ETH_BLOCK,
    to: str = ETH_DEPOSIT,
) -> EvmTxFacts:
    """ERC-20 transfer() call with its Transfer event."""
    return EvmTxFacts(
        tx_hash=tx_hash,
        from_address=ETH_DONOR,
        to_address=contract.lower(),
        value=0,
        block_number=block,
        succeeded=True,
        transfer_logs=[Erc20Transfer(
            contract=contract.lower(),
            from_address=ETH_DONOR,
            to_address=to,
            value=value,
        )],
    )


def btc_payment(tx_hash: str, value: int, block, address: str = BTC_DEPOSIT) -> UtxoTxFacts:
    return UtxoTxFacts(
        tx_hash=tx_hash,
        outputs=[
            UtxoOutput(address=address, value=value),
            UtxoOutput(address="bc1qchangeaddr0", value=1234),
        ],
        input_addresses=["bc1qdonoraddr0"],
        block_height=block,
    )


def sol_payment(signature: str, lamports: int, slot, error=None) -> SolanaTxFacts:
    return SolanaTxFacts(
        signature=signature,
        slot=slot,
        error=error,
        account_keys=[SOL_DONOR, SOL_DEPOSIT],
        pre_balances=[10_000_000_000, 0],
        post_balances=[10_000_000_000 - lamports - 5000, lamports],
    )


# ============================================================
# INTENTS
# ============================================================

def make_intent(
    intent_id: str = "intent-a",
    network_id: str = ETH,
    asset_id: str = "eth_ethereum_mainnet",
    expected_raw: int = FIFTY_MILLI_ETH,
    deposit: str = ETH_DEPOSIT,
    start_block: int = START_BLOCK,
    expires_at: datetime = T0 + timedelta(minutes=30),
    campaign_id: str = "campaign-1",
    status: IntentStatus = IntentStatus.CREATED,
) -> PaymentIntent:
    asset = get_registry().asset(asset_id)
    return PaymentIntent(
        intent_id=intent_id,
        campaign_id=campaign_id,
        network_id=network_id,
        asset_id=asset_id,
        expected_amount_raw=expected_raw,
        expected_amount=str(Decimal(expected_raw).scaleb(-asset.decimals).normalize()),
        decimals=asset.decimals,
        deposit_address=deposit,
        expires_at=expires_at,
        start_block_by_network={network_id: start_block},
        status=status,
        created_at=T0,
        updated_at=T0,
    )
