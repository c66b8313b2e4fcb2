"""
Intent Engine - Mock Chain Client.

============================================================
PURPOSE
============================================================
In-memory chain client for tests and local runs.

FEATURES:
- Injectable transactions and chain head
- Configurable latency (timeout/cancellation tests)
- Error injection for the next N calls
- Call tracking

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..exceptions import ChainClientError, RpcUnavailableError, TransactionNotFoundError
from ..types import ChainFacts, NetworkFamily
from .base import ChainClient


logger = logging.getLogger(__name__)


@dataclass
class MockChainConfig:
    """Configuration for the mock chain client."""

    latency_seconds: float = 0.0
    """Delay applied to every call."""

    head_height: int = 0
    """Initial chain head."""


class MockChainClient(ChainClient):
    """Chain client backed by dictionaries."""

    def __init__(
        self,
        network_id: str,
        family: NetworkFamily,
        config: Optional[MockChainConfig] = None,
    ):
        super().__init__(network_id)
        self._family = family
        self._config = config or MockChainConfig()
        self._transactions: Dict[str, ChainFacts] = {}
        self._head = self._config.head_height
        self._queued_errors: List[ChainClientError] = []
        self._head_errors: List[ChainClientError] = []
        self._tx_latency: Dict[str, float] = {}
        self.transaction_calls: List[str] = []
        self.head_calls = 0
        self.closed = False

    @property
    def family(self) -> NetworkFamily:
        return self._family

    # --------------------------------------------------------
    # SETUP
    # --------------------------------------------------------

    def add_transaction(self, facts: ChainFacts) -> None:
        self._transactions[facts.tx_hash] = facts

    def remove_transaction(self, tx_hash: str) -> None:
        self._transactions.pop(tx_hash, None)

    def set_head(self, height: int) -> None:
        self._head = height

    def advance_head(self, blocks: int = 1) -> int:
        self._head += blocks
        return self._head

    def fail_next(self, count: int = 1, error: Optional[ChainClientError] = None) -> None:
        """Make the next `count` get_transaction calls raise."""
        for _ in range(count):
            self._queued_errors.append(
                error or RpcUnavailableError("Injected RPC failure", network_id=self.network_id)
            )

    def fail_head(self, count: int = 1, error: Optional[ChainClientError] = None) -> None:
        """Make the next `count` get_head_height calls raise."""
        for _ in range(count):
            self._head_errors.append(
                error or RpcUnavailableError("Injected head failure", network_id=self.network_id)
            )

    def set_latency(self, seconds: float, tx_hash: Optional[str] = None) -> None:
        """Delay every call, or only lookups of one transaction."""
        if tx_hash is None:
            self._config.latency_seconds = seconds
        else:
            self._tx_latency[tx_hash] = seconds

    # --------------------------------------------------------
    # CHAIN CLIENT
    # --------------------------------------------------------

    async def get_transaction(self, tx_hash: str) -> ChainFacts:
        self.transaction_calls.append(tx_hash)
        if self._config.latency_seconds:
            await asyncio.sleep(self._config.latency_seconds)
        if tx_hash in self._tx_latency:
            await asyncio.sleep(self._tx_latency[tx_hash])
        if self._queued_errors:
            self._record_error()
            raise self._queued_errors.pop(0)
        facts = self._transactions.get(tx_hash)
        if facts is None:
            self._record_not_found()
            raise TransactionNotFoundError(
                f"Transaction {tx_hash} not found",
                network_id=self.network_id,
            )
        self._record_success()
        return facts

    async def get_head_height(self) -> int:
        self.head_calls += 1
        if self._config.latency_seconds:
            await asyncio.sleep(self._config.latency_seconds)
        if self._head_errors:
            raise self._head_errors.pop(0)
        return self._head

    async def close(self) -> None:
        self.closed = True
