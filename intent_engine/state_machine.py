"""
Intent Engine - Intent State Machine.

============================================================
PURPOSE
============================================================
Manages payment intent lifecycle with strict state transitions.

STATE MACHINE:

    CREATED ───────────────► EXPIRED (sweeper)
       │
       ▼
    DETECTING ─────────────► EXPIRED (sweeper)
       │   │   │
       │   │   ├──────────► MISMATCH (amount differs)
       │   │   └──────────► FAILED   (reverted on-chain)
       │   ▼
       │  CONFIRMING ──────► FAILED
       │   │
       ▼   ▼
      CONFIRMED

LATE CONFIRMATION:
    EXPIRED -> CONFIRMING / CONFIRMED is accepted only for a
    verification that started before the intent was expired.

INVARIANTS:
- Terminal states are final (except the late-confirmation rule)
- Expectation fields never change after creation
- All transitions are logged

============================================================
"""

import logging
from datetime import datetime
from typing import Optional, Set, Dict
from dataclasses import dataclass, field

from .exceptions import InvalidTransitionError
from .types import IntentStatus, PaymentIntent, utc_now


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[IntentStatus, Set[IntentStatus]] = {
    IntentStatus.CREATED: {
        IntentStatus.DETECTING,
        IntentStatus.EXPIRED,
    },
    IntentStatus.DETECTING: {
        IntentStatus.CONFIRMING,
        IntentStatus.CONFIRMED,
        IntentStatus.MISMATCH,
        IntentStatus.FAILED,
        IntentStatus.EXPIRED,
    },
    IntentStatus.CONFIRMING: {
        IntentStatus.CONFIRMED,
        IntentStatus.FAILED,
    },
    # Terminal states - no transitions out
    IntentStatus.CONFIRMED: set(),
    IntentStatus.EXPIRED: set(),
    IntentStatus.FAILED: set(),
    IntentStatus.MISMATCH: set(),
}

# Allowed only for verifications that started before expiry
LATE_CONFIRMATION_TRANSITIONS: Dict[IntentStatus, Set[IntentStatus]] = {
    IntentStatus.EXPIRED: {
        IntentStatus.CONFIRMING,
        IntentStatus.CONFIRMED,
    },
}

# Only the sweeper may expire, and only from these states
EXPIRABLE_STATES: Set[IntentStatus] = {IntentStatus.CREATED, IntentStatus.DETECTING}


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class StateTransitionEvent:
    """Event representing a state transition."""

    intent_id: str
    """Intent ID."""

    from_state: IntentStatus
    """Previous state."""

    to_state: IntentStatus
    """New state."""

    timestamp: datetime = field(default_factory=utc_now)
    """When transition occurred."""

    reason: str = ""
    """Reason for transition."""

    tx_hash: Optional[str] = None
    """Candidate transaction involved, if any."""


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for state transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(
        from_state: IntentStatus,
        to_state: IntentStatus,
        started_at: Optional[datetime] = None,
        expired_at: Optional[datetime] = None,
    ) -> tuple[bool, str]:
        """
        Check if transition is allowed.

        Args:
            from_state: Current state
            to_state: Target state
            started_at: Start of the verification requesting the change
            expired_at: When the intent was expired, if it was

        Returns:
            Tuple of (allowed, reason)
        """
        # Same state is always valid (idempotent)
        if from_state == to_state:
            return True, "Same state"

        if to_state in VALID_TRANSITIONS.get(from_state, set()):
            return True, "Valid transition"

        if to_state in LATE_CONFIRMATION_TRANSITIONS.get(from_state, set()):
            if started_at is not None and expired_at is not None and started_at < expired_at:
                return True, "Late confirmation of in-flight verification"
            return False, "Verification started after expiry"

        if from_state.is_terminal():
            return False, f"Cannot transition from terminal state {from_state.value}"

        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"

    @staticmethod
    def validate_intent_for_state(
        intent: PaymentIntent,
        target_state: IntentStatus,
        now: Optional[datetime] = None,
    ) -> tuple[bool, str]:
        """
        Validate intent data for target state.

        Returns:
            Tuple of (valid, reason)
        """
        if target_state in {IntentStatus.DETECTING, IntentStatus.CONFIRMING,
                            IntentStatus.MISMATCH, IntentStatus.FAILED}:
            if not intent.candidate_tx_hash:
                return False, f"Missing candidate_tx_hash for {target_state.value}"

        if target_state == IntentStatus.CONFIRMED:
            if not intent.candidate_tx_hash:
                return False, "Missing candidate_tx_hash for CONFIRMED"
            if not intent.donation_id:
                return False, "Missing donation_id for CONFIRMED"

        if target_state == IntentStatus.EXPIRED:
            if intent.status not in EXPIRABLE_STATES:
                return False, f"{intent.status.value} intents are never expired"
            if now is not None and intent.expires_at > now:
                return False, "expires_at has not passed"

        return True, "Intent valid for state"


# ============================================================
# INTENT STATE MACHINE
# ============================================================

class IntentStateMachine:
    """
    State machine for one intent.

    Applies guarded transitions to the intent in place. Stores build one
    per write against their freshly read copy.
    """

    def __init__(self, intent: PaymentIntent):
        self._intent = intent

    @property
    def current_state(self) -> IntentStatus:
        return self._intent.status

    @property
    def intent(self) -> PaymentIntent:
        return self._intent

    def can_transition_to(
        self,
        target_state: IntentStatus,
        started_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> tuple[bool, str]:
        allowed, reason = TransitionGuard.can_transition(
            self.current_state,
            target_state,
            started_at=started_at,
            expired_at=self._intent.expired_at,
        )
        if not allowed:
            return False, reason
        if self.current_state == target_state:
            return True, reason
        return TransitionGuard.validate_intent_for_state(self._intent, target_state, now)

    def transition_to(
        self,
        target_state: IntentStatus,
        reason: str = "",
        started_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> StateTransitionEvent:
        """
        Transition to a new state.

        Args:
            target_state: Target state
            reason: Reason for transition
            started_at: Start time of the verification driving the change
            now: Current time (expiry checks)

        Returns:
            StateTransitionEvent

        Raises:
            InvalidTransitionError: If transition is not allowed
        """
        allowed, validation_reason = self.can_transition_to(target_state, started_at, now)
        if not allowed:
            raise InvalidTransitionError(
                f"Cannot transition {self._intent.intent_id} from "
                f"{self.current_state.value} to {target_state.value}: "
                f"{validation_reason}",
                intent_id=self._intent.intent_id,
            )

        if self.current_state == target_state:
            return StateTransitionEvent(
                intent_id=self._intent.intent_id,
                from_state=self.current_state,
                to_state=target_state,
                reason="No change",
            )

        event = StateTransitionEvent(
            intent_id=self._intent.intent_id,
            from_state=self.current_state,
            to_state=target_state,
            timestamp=now or utc_now(),
            reason=reason,
            tx_hash=self._intent.candidate_tx_hash,
        )

        self._intent.status = target_state
        self._intent.status_reason = reason
        self._intent.updated_at = event.timestamp
        self._intent.version += 1

        if target_state == IntentStatus.EXPIRED:
            self._intent.expired_at = event.timestamp
        elif target_state == IntentStatus.CONFIRMED:
            self._intent.confirmed_at = event.timestamp

        logger.info(
            f"Intent {self._intent.intent_id}: "
            f"{event.from_state.value} -> {event.to_state.value} "
            f"({reason})"
        )

        return event
