"""
EVM JSON-RPC chain client.

Uses eth_getTransactionByHash, eth_getTransactionReceipt and
eth_blockNumber. ERC-20 movements are read from Transfer events in the
receipt; the transfer(to, value) call data is decoded as well so that a
reverted token transfer (which emits no events) can still be attributed.
"""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import MalformedChainResponseError, TransactionNotFoundError
from ..types import Erc20Transfer, EvmTxFacts, NetworkFamily
from .base import ChainClient
from .http import HttpTransport


logger = logging.getLogger(__name__)


# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# transfer(address,uint256)
TRANSFER_SELECTOR = "0xa9059cbb"


# ============================================================
# PARSING
# ============================================================

def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16) if value not in ("0x", "") else 0


def _topic_to_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def parse_transfer_logs(logs: List[Dict[str, Any]]) -> List[Erc20Transfer]:
    """Decode ERC-20 Transfer events from receipt logs."""
    transfers = []
    for log in logs or []:
        topics = log.get("topics") or []
        if len(topics) != 3 or topics[0].lower() != TRANSFER_TOPIC:
            continue
        transfers.append(Erc20Transfer(
            contract=log["address"].lower(),
            from_address=_topic_to_address(topics[1]),
            to_address=_topic_to_address(topics[2]),
            value=_hex_to_int(log.get("data")) or 0,
        ))
    return transfers


def parse_transfer_call(tx: Dict[str, Any]) -> Optional[Erc20Transfer]:
    """Decode transfer(to, value) call data, if that is what the tx calls."""
    data = (tx.get("input") or "").lower()
    if not data.startswith(TRANSFER_SELECTOR) or len(data) < 10 + 128 or not tx.get("to"):
        return None
    args = data[10:]
    return Erc20Transfer(
        contract=tx["to"].lower(),
        from_address=(tx.get("from") or "").lower(),
        to_address="0x" + args[24:64],
        value=int(args[64:128], 16),
    )


def parse_evm_transaction(
    tx: Dict[str, Any],
    receipt: Optional[Dict[str, Any]],
) -> EvmTxFacts:
    """Build EvmTxFacts from raw RPC objects."""
    try:
        block_number = None
        succeeded = None
        logs: List[Erc20Transfer] = []
        if receipt:
            block_number = _hex_to_int(receipt.get("blockNumber"))
            succeeded = _hex_to_int(receipt.get("status")) == 1
            logs = parse_transfer_logs(receipt.get("logs") or [])
        if block_number is None:
            block_number = _hex_to_int(tx.get("blockNumber"))
        return EvmTxFacts(
            tx_hash=tx["hash"].lower(),
            from_address=(tx.get("from") or "").lower() or None,
            to_address=(tx.get("to") or "").lower() or None,
            value=_hex_to_int(tx.get("value")) or 0,
            block_number=block_number,
            succeeded=succeeded,
            transfer_logs=logs,
            call_transfer=parse_transfer_call(tx),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedChainResponseError(f"Unparseable EVM transaction: {e}", original_error=e)


# ============================================================
# CLIENT
# ============================================================

class EvmRpcClient(ChainClient):
    """JSON-RPC client for one EVM network."""

    def __init__(self, network_id: str, transport: HttpTransport):
        super().__init__(network_id)
        self._transport = transport

    @property
    def family(self) -> NetworkFamily:
        return NetworkFamily.EVM

    async def get_transaction(self, tx_hash: str) -> EvmTxFacts:
        try:
            tx = await self._transport.json_rpc("eth_getTransactionByHash", [tx_hash])
            if not tx:
                self._record_not_found()
                raise TransactionNotFoundError(
                    f"Transaction {tx_hash} not found",
                    network_id=self.network_id,
                )
            receipt = await self._transport.json_rpc("eth_getTransactionReceipt", [tx_hash])
        except TransactionNotFoundError:
            raise
        except Exception:
            self._record_error()
            raise
        facts = parse_evm_transaction(tx, receipt)
        self._record_success()
        return facts

    async def get_head_height(self) -> int:
        result = await self._transport.json_rpc("eth_blockNumber", [])
        height = _hex_to_int(result)
        if height is None:
            raise MalformedChainResponseError("eth_blockNumber returned null", network_id=self.network_id)
        return height

    async def close(self) -> None:
        await self._transport.close()
