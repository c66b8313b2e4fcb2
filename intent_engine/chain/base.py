"""
Base Chain Client - Abstract interface for all chain data sources.

A chain client answers two questions for one network:
- what are the raw facts of this transaction?
- what is the current chain head?

All clients MUST:
- Return family-tagged facts (EvmTxFacts / UtxoTxFacts / SolanaTxFacts)
- Raise TransactionNotFoundError when the node does not know the hash
- Raise RpcUnavailableError for connectivity, rate limit and server errors
- Never apply business rules (recipient, amount, replay) themselves
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from ..types import ChainFacts, NetworkFamily, utc_now


logger = logging.getLogger(__name__)


class ChainClient(ABC):
    """
    Abstract base class for chain clients.

    Each client must:
    1. Implement get_transaction() - raw facts for a normalized hash
    2. Implement get_head_height() - current block/slot height
    """

    def __init__(self, network_id: str):
        self._network_id = network_id
        self._stats: Dict[str, Any] = {
            "transactions_fetched": 0,
            "not_found": 0,
            "errors": 0,
            "last_success_at": None,
        }

    @property
    def network_id(self) -> str:
        return self._network_id

    @property
    @abstractmethod
    def family(self) -> NetworkFamily:
        """Network family this client serves."""
        pass

    @property
    def name(self) -> str:
        return f"{self.__class__.__name__}[{self._network_id}]"

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> ChainFacts:
        """
        Fetch raw facts for a transaction.

        Args:
            tx_hash: Hash already normalized for this family

        Raises:
            TransactionNotFoundError: Unknown to the node
            RpcUnavailableError: Transient transport failure
        """
        pass

    @abstractmethod
    async def get_head_height(self) -> int:
        """
        Current chain head (block number / slot).

        Raises:
            RpcUnavailableError: Transient transport failure
        """
        pass

    async def close(self) -> None:
        """Close resources."""
        pass

    # --------------------------------------------------------
    # STATS
    # --------------------------------------------------------

    def _record_success(self) -> None:
        self._stats["transactions_fetched"] += 1
        self._stats["last_success_at"] = utc_now()

    def _record_not_found(self) -> None:
        self._stats["not_found"] += 1

    def _record_error(self) -> None:
        self._stats["errors"] += 1

    @property
    def last_success_at(self) -> Optional[datetime]:
        return self._stats["last_success_at"]

    def get_stats(self) -> Dict[str, Any]:
        return {"client": self.name, **self._stats}
