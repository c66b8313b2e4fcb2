"""
Intent Engine - Expiry Sweeper.

Marks stale, unmatched intents EXPIRED.

RULES:
- Only CREATED and DETECTING intents are ever expired
- Only after expires_at has passed
- A CONFIRMING intent is never expired, however old
- Each expiry is a compare-and-set; losing the race to a verifier is
  not an error
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .clock import ClockProtocol, get_clock
from .config import SweeperConfig
from .exceptions import InvalidTransitionError, StaleIntentError
from .state_machine import EXPIRABLE_STATES
from .store import IntentStore
from .types import IntentStatus


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Result of one sweep."""

    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    candidates: int = 0
    expired: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    """Intents that moved on before the sweeper reached them."""

    @property
    def expired_count(self) -> int:
        return len(self.expired)


class ExpirySweeper:
    """Periodic expiry pass over open intents."""

    def __init__(
        self,
        store: IntentStore,
        config: Optional[SweeperConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._store = store
        self._config = config or SweeperConfig()
        self._clock = clock or get_clock()
        self._history: List[SweepResult] = []
        self._max_history = 100
        self._run_counter = 0
        self._lock = asyncio.Lock()

    async def run_once(self) -> SweepResult:
        """Expire every open intent past its deadline."""
        async with self._lock:
            self._run_counter += 1
            now = self._clock.now()
            result = SweepResult(
                run_id=f"SWP_{self._run_counter:06d}",
                started_at=now,
            )

            intents = await self._store.list_expirable(now, limit=self._config.batch_size)
            result.candidates = len(intents)

            for intent in intents:
                try:
                    await self._store.transition(
                        intent.intent_id,
                        IntentStatus.EXPIRED,
                        reason="Expired without a matching transaction",
                        expected_from=EXPIRABLE_STATES,
                        now=now,
                    )
                except (StaleIntentError, InvalidTransitionError) as e:
                    logger.debug(f"Sweep skipped {intent.intent_id}: {e}")
                    result.skipped.append(intent.intent_id)
                    continue
                result.expired.append(intent.intent_id)

            result.completed_at = self._clock.now()
            self._history.append(result)
            if len(self._history) > self._max_history:
                self._history.pop(0)

            if result.candidates:
                logger.info(
                    f"Sweep {result.run_id}: {result.expired_count} expired, "
                    f"{len(result.skipped)} skipped"
                )
            return result

    def get_last_result(self) -> Optional[SweepResult]:
        return self._history[-1] if self._history else None

    def get_history(self, limit: int = 10) -> List[SweepResult]:
        return self._history[-limit:]
