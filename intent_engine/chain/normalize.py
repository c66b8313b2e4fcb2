"""
Chain fact normalization.

One normalizer per family turns tagged chain facts into a single
ChainTransactionRecord, relative to the intent's deposit address and
expected asset. Every business check downstream reads only the record.

Each normalizer produces a list of movements (recipient, asset_ref,
amount); selection is shared:
- movements into the deposit address of the expected asset are summed
- otherwise movements into the deposit of another asset are reported
  under that asset (AssetMismatch downstream)
- otherwise the first movement's recipient is reported (WrongRecipient)
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from ..registry import AssetInfo, AssetRegistry, NetworkInfo
from ..types import (
    ChainFacts,
    ChainTransactionRecord,
    ChainTxStatus,
    EvmTxFacts,
    NetworkFamily,
    SolanaTxFacts,
    UtxoTxFacts,
)


@dataclass
class Movement:
    """Value moved to one recipient."""

    recipient: Optional[str]
    asset_ref: Optional[str]
    amount: int


# ============================================================
# CONFIRMATIONS
# ============================================================

def confirmation_count(family: NetworkFamily, head: int, height: Optional[int]) -> int:
    """
    Confirmations of a transaction at `height` given the chain head.

    UTXO explorers count the including block (head - height + 1); EVM
    and Solana count blocks/slots on top of it (head - height).
    """
    if height is None:
        return 0
    if family == NetworkFamily.UTXO:
        return max(0, head - height + 1)
    return max(0, head - height)


# ============================================================
# PER-FAMILY MOVEMENTS
# ============================================================

def evm_movements(facts: EvmTxFacts) -> List[Movement]:
    transfers = list(facts.transfer_logs)
    if not transfers and facts.call_transfer is not None:
        transfers = [facts.call_transfer]

    movements = []
    if facts.value > 0 or not transfers:
        movements.append(Movement(facts.to_address, None, facts.value))
    movements.extend(Movement(t.to_address, t.contract, t.value) for t in transfers)
    return movements


def utxo_movements(facts: UtxoTxFacts) -> List[Movement]:
    return [Movement(out.address, None, out.value) for out in facts.outputs]


def solana_movements(facts: SolanaTxFacts) -> List[Movement]:
    if facts.error is not None:
        return [
            Movement(t.destination, t.mint, t.amount)
            for t in facts.instruction_transfers
        ]

    movements = []
    for account in facts.account_keys:
        delta = facts.lamport_delta(account)
        if delta > 0:
            movements.append(Movement(account, None, delta))
    for change in facts.token_balances:
        if change.delta > 0:
            movements.append(Movement(change.owner, change.mint, change.delta))
    if not movements:
        movements = [
            Movement(t.destination, t.mint, t.amount)
            for t in facts.instruction_transfers
        ]
    return movements


# ============================================================
# NORMALIZATION
# ============================================================

def _sender(facts: ChainFacts) -> Optional[str]:
    if isinstance(facts, EvmTxFacts):
        return facts.from_address
    if isinstance(facts, UtxoTxFacts):
        return facts.input_addresses[0] if facts.input_addresses else None
    return facts.account_keys[0] if facts.account_keys else None


def _block_height(facts: ChainFacts) -> Optional[int]:
    if isinstance(facts, EvmTxFacts):
        return facts.block_number
    if isinstance(facts, UtxoTxFacts):
        return facts.block_height
    return facts.slot


def _succeeded(facts: ChainFacts) -> bool:
    if isinstance(facts, EvmTxFacts):
        return facts.succeeded is not False
    if isinstance(facts, SolanaTxFacts):
        return facts.error is None
    return True


_MOVEMENTS: dict = {
    NetworkFamily.EVM: evm_movements,
    NetworkFamily.UTXO: utxo_movements,
    NetworkFamily.SOL: solana_movements,
}


def normalize_facts(
    facts: ChainFacts,
    network: NetworkInfo,
    asset: AssetInfo,
    deposit_address: str,
    head_height: int,
    registry: AssetRegistry,
) -> ChainTransactionRecord:
    """
    Normalize tagged facts into a ChainTransactionRecord.

    Args:
        facts: Family-tagged facts from the chain client
        network: Intent's network
        asset: Intent's expected asset
        deposit_address: Intent's deposit address
        head_height: Current chain head
        registry: Registry for address comparison and token lookup
    """
    if facts.family != network.family:
        raise ValueError(
            f"{facts.family.value} facts cannot be normalized for {network.network_id}"
        )

    def same_address(a: Optional[str]) -> bool:
        return registry.addresses_equal(network.network_id, a, deposit_address)

    ref_equal: Callable[[Optional[str], Optional[str]], bool]
    if network.family == NetworkFamily.EVM:
        ref_equal = lambda a, b: (a or "").lower() == (b or "").lower()
    else:
        ref_equal = lambda a, b: a == b

    movements = _MOVEMENTS[network.family](facts)
    to_deposit = [m for m in movements if same_address(m.recipient)]
    expected_ref = asset.contract_ref

    if to_deposit:
        recipient = deposit_address
        same_asset = [m for m in to_deposit if ref_equal(m.asset_ref, expected_ref)]
        if same_asset:
            asset_ref = expected_ref
            amount = sum(m.amount for m in same_asset)
        else:
            asset_ref = to_deposit[0].asset_ref
            amount = sum(m.amount for m in to_deposit if ref_equal(m.asset_ref, asset_ref))
    else:
        first = movements[0] if movements else Movement(None, None, 0)
        recipient, asset_ref, amount = first.recipient, first.asset_ref, 0

    if asset_ref is None:
        decimals = registry.native_asset(network.network_id).decimals
    elif ref_equal(asset_ref, expected_ref):
        decimals = asset.decimals
    else:
        other = registry.find_token(network.network_id, asset_ref)
        decimals = other.decimals if other else 0

    if network.family == NetworkFamily.EVM and asset_ref is not None:
        asset_ref = asset_ref.lower()

    height = _block_height(facts)
    confirmations = confirmation_count(network.family, head_height, height)
    status = ChainTxStatus.SEEN
    if height is not None:
        status = (
            ChainTxStatus.CONFIRMED
            if confirmations >= network.confirmations_required
            else ChainTxStatus.CONFIRMING
        )

    return ChainTransactionRecord(
        network_id=network.network_id,
        tx_hash=facts.tx_hash,
        sender=_sender(facts),
        recipient=recipient,
        asset_ref=asset_ref,
        native_symbol=network.native_symbol if asset_ref is None else None,
        raw_amount=amount,
        decimals=decimals,
        block_height=height,
        confirmations=confirmations,
        succeeded=_succeeded(facts),
        status=status,
    )
