"""
Intent Engine - Passive watcher feed consumer.

============================================================
PURPOSE
============================================================
Consumes (network, address, txHash, blockHeight) observations from
external chain watchers and verifies each one as an independent
candidate against every open intent paying into that address.

- Observations are queued and drained by a small worker pool
- Duplicate notifications are harmless; the verifier is idempotent
- Observations are verified passively: only an exact nonced amount
  associates the transaction with an intent
- Structural rejections are expected noise (another donor's payment to
  a shared address) and logged at debug level only
- Each intent's per-network scanning cursor advances to the highest
  block height observed for it

============================================================
"""

import asyncio
import logging
from typing import List, Optional

from .config import WatcherConfig
from .exceptions import AlreadyTerminalError, IntentEngineError, IntentNotFoundError
from .registry import AssetRegistry, get_registry
from .store import IntentStore
from .types import RejectionReason, VerificationOutcome, VerificationResult, WatcherObservation
from .verifier import ChainTruthVerifier, FetchCache


logger = logging.getLogger(__name__)

# Rejections that only mean "this transaction is not for this intent".
QUIET_REJECTIONS = {
    RejectionReason.WRONG_RECIPIENT,
    RejectionReason.REPLAY_REJECTED,
    RejectionReason.ASSET_MISMATCH,
    RejectionReason.AMOUNT_MISMATCH,
    RejectionReason.TX_ALREADY_CLAIMED,
    RejectionReason.CANDIDATE_CONFLICT,
}


class WatcherFeedConsumer:
    """Queue plus worker pool feeding observations to the verifier."""

    def __init__(
        self,
        verifier: ChainTruthVerifier,
        store: IntentStore,
        registry: Optional[AssetRegistry] = None,
        config: Optional[WatcherConfig] = None,
    ):
        self._verifier = verifier
        self._store = store
        self._registry = registry or get_registry()
        self._config = config or WatcherConfig()
        self._queue: "asyncio.Queue[WatcherObservation]" = asyncio.Queue(
            maxsize=self._config.queue_size,
        )
        self._workers: List[asyncio.Task] = []
        self._running = False
        self._stats = {
            "observations": 0,
            "verified": 0,
            "ignored": 0,
            "errors": 0,
        }

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(n))
            for n in range(self._config.worker_count)
        ]
        logger.info(f"Watcher consumer started with {len(self._workers)} workers")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        logger.info("Watcher consumer stopped")

    async def submit(self, observation: WatcherObservation) -> None:
        """Queue an observation; waits when the queue is full."""
        self._registry.network(observation.network_id)
        await self._queue.put(observation)

    async def drain(self) -> None:
        """Wait until every queued observation has been handled."""
        await self._queue.join()

    # --------------------------------------------------------
    # PROCESSING
    # --------------------------------------------------------

    async def _worker(self, number: int) -> None:
        while self._running:
            try:
                observation = await self._queue.get()
            except asyncio.CancelledError:
                break
            try:
                await self.process(observation)
            except asyncio.CancelledError:
                self._queue.task_done()
                break
            except Exception as e:
                self._stats["errors"] += 1
                logger.error(f"Watcher worker {number} error: {e}")
            self._queue.task_done()

    async def process(self, observation: WatcherObservation) -> List[VerificationResult]:
        """Verify one observation against every open intent at its address."""
        self._stats["observations"] += 1
        intents = await self._store.find_open_by_address(
            observation.network_id, observation.address,
        )
        results: List[VerificationResult] = []
        fetched: FetchCache = {}

        for intent in intents:
            try:
                result = await self._verifier.verify(
                    intent.intent_id, observation.tx_hash, source="watcher", passive=True,
                    fetch_cache=fetched,
                )
            except (AlreadyTerminalError, IntentNotFoundError) as e:
                logger.debug(f"Watcher skipped {intent.intent_id}: {e}")
                continue
            except IntentEngineError as e:
                self._stats["errors"] += 1
                logger.error(f"Watcher verification failed for {intent.intent_id}: {e}")
                continue

            results.append(result)
            if result.outcome == VerificationOutcome.REJECTED and result.reason in QUIET_REJECTIONS:
                self._stats["ignored"] += 1
            else:
                self._stats["verified"] += 1

            if observation.block_height is not None:
                await self._store.advance_cursor(
                    intent.intent_id, observation.network_id, observation.block_height,
                )
        return results

    def get_stats(self) -> dict:
        return {**self._stats, "queued": self._queue.qsize()}
