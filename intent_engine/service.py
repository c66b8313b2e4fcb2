"""
Intent Engine - Payment Intent Service.

============================================================
PURPOSE
============================================================
Facade wiring the engine together:

    CreateIntentRequest
        -> registry / campaign / amount validation
        -> fiat rate (fiat pledges) + amount nonce
        -> deposit address + replay guard (chain heads)
        -> IntentStore.create
    verify(intent_id, tx_hash)
        -> ChainTruthVerifier -> ReconciliationCommitter
    background
        -> ExpirySweeper, ConfirmingRepoller, WatcherFeedConsumer

============================================================
"""

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Dict, List, Optional

from .amount import (
    effective_nonce_width,
    embed_nonce,
    fiat_to_native,
    from_native,
    parse_decimal,
    to_native,
)
from .backoff import BackoffPolicy
from .chain.base import ChainClient
from .chain.factory import create_chain_clients
from .clock import ClockProtocol, get_clock
from .config import EngineConfig
from .deposits import CampaignDirectory, DepositAddressProvider, StaticDepositAddressProvider
from .exceptions import (
    CampaignClosedError,
    ChainClientError,
    MalformedAmountError,
    RpcUnavailableError,
)
from .payment_uri import build_payment_uri, explorer_address_url
from .pricing import CoinGeckoPriceOracle, PriceOracle
from .reconciliation import ConfirmingRepoller, ReconciliationCommitter
from .registry import AssetInfo, AssetRegistry, NetworkInfo, get_registry
from .scheduler import BackgroundScheduler
from .store import InMemoryIntentStore, IntentStore
from .sweeper import ExpirySweeper
from .types import (
    CampaignTotals,
    CreateIntentRequest,
    DonationLedgerEntry,
    IntentCreated,
    NetworkFamily,
    PaymentIntent,
    VerificationResult,
    WatcherObservation,
)
from .verifier import ChainTruthVerifier
from .watcher import WatcherFeedConsumer


logger = logging.getLogger(__name__)


def new_intent_id(clock: ClockProtocol) -> str:
    seed = f"{clock.now().isoformat()}:{secrets.token_hex(16)}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


class PaymentIntentService:
    """
    Donor-facing entry points plus the background lifecycle.

    Usage:
        service = build_service(EngineConfig.from_env(), deposits=provider)
        await service.start()
        created = await service.create_intent(request)
        result = await service.verify(created.intent.intent_id, tx_hash)
        await service.stop()
    """

    def __init__(
        self,
        config: EngineConfig,
        store: IntentStore,
        clients: Dict[str, ChainClient],
        deposits: DepositAddressProvider,
        price_oracle: Optional[PriceOracle] = None,
        campaigns: Optional[CampaignDirectory] = None,
        registry: Optional[AssetRegistry] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config
        self._store = store
        self._clients = clients
        self._deposits = deposits
        self._price_oracle = price_oracle
        self._campaigns = campaigns
        self._registry = registry or get_registry()
        self._clock = clock or get_clock()
        self._backoff = BackoffPolicy(config.backoff)

        self.committer = ReconciliationCommitter(
            store,
            price_oracle=price_oracle,
            registry=self._registry,
            policy=config.intent,
            clock=self._clock,
        )
        self.verifier = ChainTruthVerifier(
            store,
            clients,
            self.committer,
            registry=self._registry,
            backoff=self._backoff,
            config=config.verification,
            clock=self._clock,
        )
        self.sweeper = ExpirySweeper(store, config.sweeper, self._clock)
        self.repoller = ConfirmingRepoller(self.verifier, store, config.repoll, self._clock)
        self.watcher = WatcherFeedConsumer(self.verifier, store, self._registry, config.watcher)
        self.scheduler = BackgroundScheduler(config, self.sweeper, self.repoller)
        self._running = False

    @property
    def store(self) -> IntentStore:
        return self._store

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        logger.info("Starting Payment Intent Service...")
        await self.scheduler.start()
        if self._config.watcher.enabled:
            await self.watcher.start()
        self._running = True
        logger.info("Payment Intent Service started")

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping Payment Intent Service...")
        self._running = False
        await self.watcher.stop()
        await self.scheduler.stop()
        for client in self._clients.values():
            await client.close()
        if self._price_oracle is not None:
            await self._price_oracle.close()
        await self._store.close()
        logger.info("Payment Intent Service stopped")

    # --------------------------------------------------------
    # INTENT CREATION
    # --------------------------------------------------------

    async def create_intent(self, request: CreateIntentRequest) -> IntentCreated:
        """
        Create a pledge.

        Raises:
            UnknownNetworkError / UnknownAssetError: Registry lookup failed
            MalformedAmountError: Zero or two amounts, or an unparseable one
            CampaignClosedError: Campaign no longer accepts pledges
            PriceUnavailableError: Fiat pledge without a rate
            InvalidAddressError: No valid deposit address
            RpcUnavailableError: Replay guard could not be captured
        """
        asset, network = self._registry.asset_on_network(request.asset_id, request.network_id)

        if (request.amount_usd is None) == (request.amount_native is None):
            raise MalformedAmountError(
                "Exactly one of amount_usd and amount_native is required",
                network_id=network.network_id,
            )

        if (
            self._config.intent.require_open_campaign
            and self._campaigns is not None
            and not await self._campaigns.is_accepting(request.campaign_id)
        ):
            raise CampaignClosedError(
                f"Campaign {request.campaign_id} is not accepting pledges",
                context={"campaign_id": request.campaign_id},
            )

        base_raw, amount_usd, rate = await self._base_amount(request, asset)

        width = effective_nonce_width(self._config.intent.nonce_width, asset.decimals, base_raw)
        expected_raw, nonce = embed_nonce(base_raw, width)

        address = await self._deposits.deposit_address(request.campaign_id, asset, network)
        address = self._registry.validate_address(network.network_id, address)

        start_blocks = await self._capture_start_blocks(network)

        now = self._clock.now()
        intent = PaymentIntent(
            intent_id=new_intent_id(self._clock),
            campaign_id=request.campaign_id,
            network_id=network.network_id,
            asset_id=asset.asset_id,
            expected_amount_raw=expected_raw,
            expected_amount=from_native(expected_raw, asset.decimals),
            decimals=asset.decimals,
            deposit_address=address,
            expires_at=now + timedelta(seconds=self._config.intent.ttl_seconds),
            start_block_by_network=start_blocks,
            nonce=nonce,
            nonce_width=width,
            amount_usd=amount_usd,
            donor_ref=None if request.anonymous else request.donor_ref,
            created_at=now,
            updated_at=now,
        )
        intent = await self._store.create(intent)

        return IntentCreated(
            intent=intent,
            payment_uri=build_payment_uri(
                network, asset, address, intent.expected_amount, self._registry,
            ),
            explorer_address_url=explorer_address_url(network, address),
            rate=rate,
        )

    async def _base_amount(self, request: CreateIntentRequest, asset: AssetInfo):
        if request.amount_native is not None:
            raw = to_native(request.amount_native, asset.decimals)
            amount_usd, rate = None, None
        else:
            amount_usd = parse_decimal(request.amount_usd)
            if self._price_oracle is None:
                raise MalformedAmountError("Fiat pledges need a price source")
            rate = await self._price_oracle.get_rate(asset, self._config.intent.fiat_currency)
            raw = fiat_to_native(amount_usd, rate, asset.decimals)

        if raw <= 0:
            raise MalformedAmountError(
                f"Amount must be positive, got {raw} raw units of {asset.asset_id}",
            )
        return raw, amount_usd, rate

    async def _capture_start_blocks(self, network: NetworkInfo) -> Dict[str, int]:
        """Chain heads for the expected network (required) and other EVM networks."""
        blocks = {network.network_id: await self._head_height(network.network_id)}

        if network.family == NetworkFamily.EVM and self._config.intent.guard_all_evm_networks:
            for other in self._registry.networks_of_family(NetworkFamily.EVM):
                if other.network_id in blocks or other.network_id not in self._clients:
                    continue
                try:
                    blocks[other.network_id] = await self._head_height(other.network_id)
                except RpcUnavailableError as e:
                    logger.warning(f"Replay guard for {other.network_id} skipped: {e}")
        return blocks

    async def _head_height(self, network_id: str) -> int:
        client = self._clients.get(network_id)
        if client is None:
            raise RpcUnavailableError(f"No chain client for {network_id}", network_id=network_id)
        try:
            return await self._backoff.run(client.get_head_height, description="get_head_height")
        except ChainClientError as e:
            raise RpcUnavailableError(
                f"Chain head unavailable for {network_id}",
                network_id=network_id,
                original_error=e,
            )

    # --------------------------------------------------------
    # VERIFICATION AND QUERIES
    # --------------------------------------------------------

    async def verify(self, intent_id: str, tx_hash: str) -> VerificationResult:
        return await self.verifier.verify(intent_id, tx_hash, source="manual")

    async def handle_observation(self, observation: WatcherObservation) -> None:
        await self.watcher.submit(observation)

    async def get_status(self, intent_id: str) -> PaymentIntent:
        return await self._store.get(intent_id)

    async def list_donations(self, campaign_id: Optional[str] = None) -> List[DonationLedgerEntry]:
        return await self._store.list_donations(campaign_id)

    async def get_totals(self, campaign_id: str) -> CampaignTotals:
        return await self._store.get_totals(campaign_id)

    def get_stats(self) -> dict:
        return {
            "verifier": self.verifier.get_stats(),
            "committer": self.committer.get_stats(),
            "watcher": self.watcher.get_stats(),
            "clients": {k: c.get_stats() for k, c in self._clients.items()},
        }


def build_service(
    config: Optional[EngineConfig] = None,
    store: Optional[IntentStore] = None,
    clients: Optional[Dict[str, ChainClient]] = None,
    deposits: Optional[DepositAddressProvider] = None,
    price_oracle: Optional[PriceOracle] = None,
    campaigns: Optional[CampaignDirectory] = None,
    registry: Optional[AssetRegistry] = None,
    clock: Optional[ClockProtocol] = None,
) -> PaymentIntentService:
    """Assemble a service, defaulting every collaborator from config."""
    config = config or EngineConfig.from_env()
    registry = registry or get_registry()
    clock = clock or get_clock()
    return PaymentIntentService(
        config=config,
        store=store or InMemoryIntentStore(),
        clients=clients if clients is not None else create_chain_clients(config.rpc, registry),
        deposits=deposits or StaticDepositAddressProvider(),
        price_oracle=price_oracle or CoinGeckoPriceOracle(config.pricing, clock),
        campaigns=campaigns,
        registry=registry,
        clock=clock,
    )
