"""
Intent Engine Exceptions - Custom exception hierarchy.

Exceptions are raised at input boundaries (registry lookups, amount codec,
intent creation) and inside chain clients for transport failures. The
verifier converts every failure into a discriminated result instead.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class IntentEngineError(Exception):
    """Base exception for all intent engine errors."""

    code: str = "INT_UNEXPECTED_ERROR"

    def __init__(
        self,
        message: str,
        intent_id: Optional[str] = None,
        network_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.intent_id = intent_id
        self.network_id = network_id
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "intent_id": self.intent_id,
            "network_id": self.network_id,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.intent_id:
            parts.append(f"[intent={self.intent_id}]")
        if self.network_id:
            parts.append(f"[network={self.network_id}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


# ============================================================
# INPUT ERRORS
# ============================================================

class UnknownNetworkError(IntentEngineError):
    """Network identifier is not registered."""

    code = "INP_UNKNOWN_NETWORK"


class UnknownAssetError(IntentEngineError):
    """Asset identifier is not registered."""

    code = "INP_UNKNOWN_ASSET"


class MalformedAmountError(IntentEngineError):
    """Amount string is not a valid non-negative decimal."""

    code = "INP_MALFORMED_AMOUNT"


class InvalidHashFormatError(IntentEngineError):
    """Transaction hash does not fit the network family format."""

    code = "INP_INVALID_HASH_FORMAT"


class InvalidAddressError(IntentEngineError):
    """Deposit address does not fit the network address format."""

    code = "INP_INVALID_ADDRESS"


class IntentNotFoundError(IntentEngineError):
    """No intent stored under this ID."""

    code = "INP_INTENT_NOT_FOUND"


# ============================================================
# LIFECYCLE ERRORS
# ============================================================

class AlreadyTerminalError(IntentEngineError):
    """Intent is EXPIRED, FAILED or MISMATCH and accepts no new detection."""

    code = "LIF_ALREADY_TERMINAL"

    def __init__(self, message: str, status: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["status"] = self.status
        return data


class InvalidTransitionError(IntentEngineError):
    """State machine refused a transition."""

    code = "LIF_INVALID_TRANSITION"


class CampaignClosedError(IntentEngineError):
    """Campaign no longer accepts new pledges."""

    code = "LIF_CAMPAIGN_CLOSED"


# ============================================================
# CHAIN CLIENT ERRORS
# ============================================================

class ChainClientError(IntentEngineError):
    """Base error raised by chain clients."""

    code = "CHN_CLIENT_ERROR"
    retryable: bool = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        request_url: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.request_url = request_url

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "request_url": self.request_url,
            "retryable": self.retryable,
        })
        return data


class TransactionNotFoundError(ChainClientError):
    """Node does not (yet) know the transaction."""

    code = "CHN_TX_NOT_FOUND"


class RpcUnavailableError(ChainClientError):
    """Node unreachable, rate limited, timed out or returned a server error."""

    code = "CHN_RPC_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        retry_after_seconds: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after_seconds = retry_after_seconds


class MalformedChainResponseError(ChainClientError):
    """Node answered with a payload that cannot be parsed."""

    code = "CHN_MALFORMED_RESPONSE"
    retryable = False


# ============================================================
# PERSISTENCE ERRORS
# ============================================================

class PersistenceError(IntentEngineError):
    """Store operation failed."""

    code = "PER_STORE_FAILURE"


class StaleIntentError(PersistenceError):
    """Conditional write lost against a concurrent writer."""

    code = "PER_STALE_INTENT"


# ============================================================
# IDEMPOTENCY ERRORS
# ============================================================

class ClaimConflictError(IntentEngineError):
    """(network, txHash) is already claimed by another intent."""

    code = "IDM_TX_ALREADY_CLAIMED"

    def __init__(self, message: str, claimed_by: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.claimed_by = claimed_by


# ============================================================
# PRICING ERRORS
# ============================================================

class PriceUnavailableError(IntentEngineError):
    """No fiat rate could be obtained for an asset."""

    code = "PRC_PRICE_UNAVAILABLE"
