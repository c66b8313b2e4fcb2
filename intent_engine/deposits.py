"""
Intent Engine - Deposit addresses and campaign directory.

Custody is external: the engine only asks "given a campaign, asset and
network, which address receives the deposit?" and "does this campaign
still accept pledges?".
"""

import logging
import os
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from .exceptions import InvalidAddressError
from .registry import AssetInfo, NetworkInfo
from .store import IntentStore


logger = logging.getLogger(__name__)

DEFAULT_CAMPAIGN = "*"


# ============================================================
# DEPOSIT ADDRESSES
# ============================================================

class DepositAddressProvider(ABC):
    """Produces the deposit address for a pledge."""

    @abstractmethod
    async def deposit_address(
        self,
        campaign_id: str,
        asset: AssetInfo,
        network: NetworkInfo,
    ) -> str:
        """
        Raises:
            InvalidAddressError: When no address is configured
        """
        pass


class StaticDepositAddressProvider(DepositAddressProvider):
    """
    Fixed addresses per (campaign, network).

    A "*" campaign entry serves every campaign on that network.
    """

    def __init__(self, addresses: Optional[Dict[Tuple[str, str], str]] = None):
        self._addresses: Dict[Tuple[str, str], str] = dict(addresses or {})

    @classmethod
    def from_env(cls, network_ids: Iterable[str]) -> "StaticDepositAddressProvider":
        """Read DEPOSIT_ADDRESS_<NETWORK_ID> for each network."""
        provider = cls()
        for network_id in network_ids:
            address = os.getenv(f"DEPOSIT_ADDRESS_{network_id.upper()}")
            if address:
                provider.set_address(network_id, address.strip())
        logger.info(f"Deposit addresses configured for {len(provider._addresses)} networks")
        return provider

    def set_address(self, network_id: str, address: str, campaign_id: str = DEFAULT_CAMPAIGN) -> None:
        self._addresses[(campaign_id, network_id)] = address

    async def deposit_address(
        self,
        campaign_id: str,
        asset: AssetInfo,
        network: NetworkInfo,
    ) -> str:
        address = (
            self._addresses.get((campaign_id, network.network_id))
            or self._addresses.get((DEFAULT_CAMPAIGN, network.network_id))
        )
        if not address:
            raise InvalidAddressError(
                f"No deposit address for campaign {campaign_id} on {network.network_id}",
                network_id=network.network_id,
            )
        return address


# ============================================================
# CAMPAIGN DIRECTORY
# ============================================================

class CampaignDirectory(ABC):
    """Answers whether a campaign accepts new pledges."""

    @abstractmethod
    async def is_accepting(self, campaign_id: str) -> bool:
        pass


class GoalLockCampaignDirectory(CampaignDirectory):
    """
    Closes a campaign once its fiat total reaches its goal.

    Totals come from the ledger snapshots in the store.
    """

    def __init__(
        self,
        store: IntentStore,
        goals: Optional[Dict[str, Decimal]] = None,
        closed: Optional[Iterable[str]] = None,
    ):
        self._store = store
        self._goals = {k: Decimal(str(v)) for k, v in (goals or {}).items()}
        self._closed = set(closed or [])

    def close_campaign(self, campaign_id: str) -> None:
        self._closed.add(campaign_id)

    def set_goal(self, campaign_id: str, goal: Decimal) -> None:
        self._goals[campaign_id] = Decimal(str(goal))

    async def is_accepting(self, campaign_id: str) -> bool:
        if campaign_id in self._closed:
            return False
        goal = self._goals.get(campaign_id)
        if goal is None:
            return True
        totals = await self._store.get_totals(campaign_id)
        if totals.fiat_total >= goal:
            logger.info(f"Campaign {campaign_id} goal met ({totals.fiat_total} >= {goal})")
            return False
        return True
