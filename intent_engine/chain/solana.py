"""
Solana JSON-RPC chain client.

Reads `getTransaction` (jsonParsed) and `getSlot`. Lamport and token
movements come from pre/post balances; parsed system/spl-token
instructions are kept as well so failed transactions can be attributed.
"""

import json
import logging
from typing import Any, Dict, List, Tuple

from ..exceptions import MalformedChainResponseError, TransactionNotFoundError
from ..types import NetworkFamily, SolanaTransfer, SolanaTxFacts, SplBalanceChange
from .base import ChainClient
from .http import HttpTransport


logger = logging.getLogger(__name__)


# ============================================================
# PARSING
# ============================================================

def _account_keys(message: Dict[str, Any]) -> List[str]:
    keys = []
    for key in message.get("accountKeys") or []:
        keys.append(key["pubkey"] if isinstance(key, dict) else key)
    return keys


def _token_balances(
    meta: Dict[str, Any],
    account_keys: List[str],
) -> Tuple[List[SplBalanceChange], Dict[str, str]]:
    """Token balance changes per (owner, mint) and token-account -> owner map."""
    amounts: Dict[Tuple[str, str], List[int]] = {}
    owners: Dict[str, str] = {}
    for position, field_name in enumerate(("preTokenBalances", "postTokenBalances")):
        for balance in meta.get(field_name) or []:
            owner = balance.get("owner")
            mint = balance.get("mint")
            if not owner or not mint:
                continue
            index = balance.get("accountIndex")
            if index is not None and index < len(account_keys):
                owners[account_keys[index]] = owner
            amount = int((balance.get("uiTokenAmount") or {}).get("amount") or 0)
            amounts.setdefault((owner, mint), [0, 0])[position] += amount
    changes = [
        SplBalanceChange(owner=owner, mint=mint, pre_amount=pre, post_amount=post)
        for (owner, mint), (pre, post) in amounts.items()
    ]
    return changes, owners


def _instruction_transfers(
    message: Dict[str, Any],
    meta: Dict[str, Any],
    token_owners: Dict[str, str],
) -> List[SolanaTransfer]:
    instructions = list(message.get("instructions") or [])
    for inner in meta.get("innerInstructions") or []:
        instructions.extend(inner.get("instructions") or [])

    transfers = []
    for instruction in instructions:
        parsed = instruction.get("parsed")
        if not isinstance(parsed, dict):
            continue
        info = parsed.get("info") or {}
        kind = parsed.get("type")
        program = instruction.get("program")
        if program == "system" and kind == "transfer":
            transfers.append(SolanaTransfer(
                source=info.get("source", ""),
                destination=info.get("destination", ""),
                amount=int(info.get("lamports", 0)),
            ))
        elif program == "spl-token" and kind in ("transfer", "transferChecked"):
            destination = info.get("destination", "")
            amount = info.get("amount")
            if amount is None:
                amount = (info.get("tokenAmount") or {}).get("amount", 0)
            transfers.append(SolanaTransfer(
                source=info.get("authority") or info.get("source", ""),
                destination=token_owners.get(destination, destination),
                amount=int(amount),
                mint=info.get("mint"),
            ))
    return transfers


def parse_solana_transaction(signature: str, result: Dict[str, Any]) -> SolanaTxFacts:
    """Build SolanaTxFacts from a jsonParsed getTransaction result."""
    try:
        meta = result.get("meta") or {}
        message = (result.get("transaction") or {}).get("message") or {}
        keys = _account_keys(message)
        token_balances, owners = _token_balances(meta, keys)
        error = meta.get("err")
        return SolanaTxFacts(
            signature=signature,
            slot=result.get("slot"),
            error=json.dumps(error) if error is not None else None,
            account_keys=keys,
            pre_balances=[int(b) for b in meta.get("preBalances") or []],
            post_balances=[int(b) for b in meta.get("postBalances") or []],
            token_balances=token_balances,
            instruction_transfers=_instruction_transfers(message, meta, owners),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedChainResponseError(f"Unparseable Solana transaction: {e}", original_error=e)


# ============================================================
# CLIENT
# ============================================================

class SolanaRpcClient(ChainClient):
    """JSON-RPC client for Solana."""

    def __init__(self, network_id: str, transport: HttpTransport, commitment: str = "confirmed"):
        super().__init__(network_id)
        self._transport = transport
        self._commitment = commitment

    @property
    def family(self) -> NetworkFamily:
        return NetworkFamily.SOL

    async def get_transaction(self, tx_hash: str) -> SolanaTxFacts:
        try:
            result = await self._transport.json_rpc("getTransaction", [
                tx_hash,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self._commitment,
                },
            ])
        except Exception:
            self._record_error()
            raise
        if not result:
            self._record_not_found()
            raise TransactionNotFoundError(
                f"Signature {tx_hash} not found",
                network_id=self.network_id,
            )
        facts = parse_solana_transaction(tx_hash, result)
        self._record_success()
        return facts

    async def get_head_height(self) -> int:
        result = await self._transport.json_rpc("getSlot", [{"commitment": self._commitment}])
        if result is None:
            raise MalformedChainResponseError("getSlot returned null", network_id=self.network_id)
        return int(result)

    async def close(self) -> None:
        await self._transport.close()
