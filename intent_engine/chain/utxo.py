"""
UTXO chain clients.

- EsploraClient: Blockstream-style REST (`/tx/{txid}`, `/blocks/tip/height`)
- BlockchairClient: Blockchair dashboards
  (`/dashboards/transaction/{hash}`, `/stats`); `block_id == -1` means
  unconfirmed
"""

import logging
from typing import Any, Dict, Optional

from ..exceptions import MalformedChainResponseError, TransactionNotFoundError
from ..types import NetworkFamily, UtxoOutput, UtxoTxFacts
from .base import ChainClient
from .http import HttpTransport


logger = logging.getLogger(__name__)


# ============================================================
# PARSING
# ============================================================

def parse_esplora_transaction(data: Dict[str, Any]) -> UtxoTxFacts:
    """Build UtxoTxFacts from an Esplora /tx payload."""
    try:
        status = data.get("status") or {}
        return UtxoTxFacts(
            tx_hash=data["txid"].lower(),
            outputs=[
                UtxoOutput(address=out.get("scriptpubkey_address"), value=int(out["value"]))
                for out in data.get("vout") or []
            ],
            input_addresses=[
                vin["prevout"]["scriptpubkey_address"]
                for vin in data.get("vin") or []
                if (vin.get("prevout") or {}).get("scriptpubkey_address")
            ],
            block_height=status.get("block_height") if status.get("confirmed") else None,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedChainResponseError(f"Unparseable Esplora transaction: {e}", original_error=e)


def parse_blockchair_transaction(tx_hash: str, payload: Dict[str, Any]) -> Optional[UtxoTxFacts]:
    """Build UtxoTxFacts from a Blockchair dashboard payload; None when absent."""
    data = payload.get("data") or {}
    entry = data.get(tx_hash) if isinstance(data, dict) else None
    if not entry:
        return None
    try:
        transaction = entry["transaction"]
        block_id = transaction.get("block_id")
        return UtxoTxFacts(
            tx_hash=tx_hash,
            outputs=[
                UtxoOutput(address=out.get("recipient"), value=int(out["value"]))
                for out in entry.get("outputs") or []
            ],
            input_addresses=[
                inp["recipient"] for inp in entry.get("inputs") or [] if inp.get("recipient")
            ],
            block_height=block_id if block_id is not None and block_id >= 0 else None,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedChainResponseError(f"Unparseable Blockchair transaction: {e}", original_error=e)


# ============================================================
# CLIENTS
# ============================================================

class EsploraClient(ChainClient):
    """Blockstream Esplora client."""

    def __init__(self, network_id: str, transport: HttpTransport):
        super().__init__(network_id)
        self._transport = transport

    @property
    def family(self) -> NetworkFamily:
        return NetworkFamily.UTXO

    async def get_transaction(self, tx_hash: str) -> UtxoTxFacts:
        try:
            data = await self._transport.request("GET", f"/tx/{tx_hash}")
        except TransactionNotFoundError:
            self._record_not_found()
            raise
        except Exception:
            self._record_error()
            raise
        facts = parse_esplora_transaction(data)
        self._record_success()
        return facts

    async def get_head_height(self) -> int:
        text = await self._transport.request("GET", "/blocks/tip/height", expect_json=False)
        try:
            return int(str(text).strip())
        except ValueError as e:
            raise MalformedChainResponseError(
                f"Unparseable tip height: {text!r}",
                network_id=self.network_id,
                original_error=e,
            )

    async def close(self) -> None:
        await self._transport.close()


class BlockchairClient(ChainClient):
    """Blockchair dashboard client."""

    def __init__(self, network_id: str, transport: HttpTransport, api_key: Optional[str] = None):
        super().__init__(network_id)
        self._transport = transport
        self._api_key = api_key

    @property
    def family(self) -> NetworkFamily:
        return NetworkFamily.UTXO

    def _params(self) -> Optional[Dict[str, str]]:
        return {"key": self._api_key} if self._api_key else None

    async def get_transaction(self, tx_hash: str) -> UtxoTxFacts:
        try:
            payload = await self._transport.request(
                "GET", f"/dashboards/transaction/{tx_hash}", params=self._params(),
            )
        except TransactionNotFoundError:
            self._record_not_found()
            raise
        except Exception:
            self._record_error()
            raise
        facts = parse_blockchair_transaction(tx_hash, payload or {})
        if facts is None:
            self._record_not_found()
            raise TransactionNotFoundError(
                f"Transaction {tx_hash} not found",
                network_id=self.network_id,
            )
        self._record_success()
        return facts

    async def get_head_height(self) -> int:
        payload = await self._transport.request("GET", "/stats", params=self._params())
        try:
            return int(payload["data"]["best_block_height"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedChainResponseError(
                "Unparseable Blockchair stats",
                network_id=self.network_id,
                original_error=e,
            )

    async def close(self) -> None:
        await self._transport.close()
