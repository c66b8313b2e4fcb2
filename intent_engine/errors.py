"""
Intent Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Classification of every verification rejection and engine error.

ERROR CATEGORIES:
1. Input Errors - rejected immediately, no state change
2. Transient Errors - retry with backoff, no state change
3. Structural Errors - non-retryable for this hash, intent stays open
4. Financial Integrity Errors - intent moves to a flagged terminal state
5. Idempotency - claim boundary conflicts
6. Lifecycle - intent state forbids the operation

============================================================
"""

from enum import Enum
from typing import Dict, Set, Union
from dataclasses import dataclass

from .types import RejectionReason, IntentStatus


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    INPUT = "INPUT"
    """Caller supplied something unusable."""

    TRANSIENT = "TRANSIENT"
    """Chain data not available right now."""

    STRUCTURAL = "STRUCTURAL"
    """Transaction does not belong to this intent."""

    FINANCIAL_INTEGRITY = "FINANCIAL_INTEGRITY"
    """Transaction belongs to the intent but cannot be credited."""

    IDEMPOTENCY = "IDEMPOTENCY"
    """Claim boundary conflict."""

    LIFECYCLE = "LIFECYCLE"
    """Intent state forbids the operation."""

    INTERNAL = "INTERNAL"
    """Internal system error."""


class ErrorSeverity(Enum):
    """Error severity levels."""

    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    """Error code."""

    category: ErrorCategory
    """Error category."""

    severity: ErrorSeverity
    """Error severity."""

    is_retryable: bool
    """Whether retrying the same call may succeed."""

    description: str
    """Human-readable description."""

    recommended_action: str
    """Recommended action to take."""

    resulting_status: Union[IntentStatus, None] = None
    """Terminal status the intent moves to, if any."""

    requires_review: bool = False
    """Whether a human must look at the intent."""


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    # ========== INPUT ERRORS ==========
    "INP_INVALID_HASH_FORMAT": ErrorCodeInfo(
        code="INP_INVALID_HASH_FORMAT",
        category=ErrorCategory.INPUT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Transaction hash does not match the network format",
        recommended_action="Correct the hash and resubmit",
    ),
    "INP_MALFORMED_AMOUNT": ErrorCodeInfo(
        code="INP_MALFORMED_AMOUNT",
        category=ErrorCategory.INPUT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Amount is not a non-negative decimal",
        recommended_action="Correct the amount",
    ),
    "INP_UNKNOWN_NETWORK": ErrorCodeInfo(
        code="INP_UNKNOWN_NETWORK",
        category=ErrorCategory.INPUT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Network is not registered",
        recommended_action="Use a registered network",
    ),
    "INP_UNKNOWN_ASSET": ErrorCodeInfo(
        code="INP_UNKNOWN_ASSET",
        category=ErrorCategory.INPUT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Asset is not registered or not on this network",
        recommended_action="Use a registered asset",
    ),
    "INP_INVALID_ADDRESS": ErrorCodeInfo(
        code="INP_INVALID_ADDRESS",
        category=ErrorCategory.INPUT,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Deposit address format does not belong to the network",
        recommended_action="Fix the deposit address configuration",
    ),
    "INP_INTENT_NOT_FOUND": ErrorCodeInfo(
        code="INP_INTENT_NOT_FOUND",
        category=ErrorCategory.INPUT,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Intent does not exist",
        recommended_action="Check the intent ID",
    ),

    # ========== TRANSIENT ERRORS ==========
    "CHN_TX_NOT_FOUND": ErrorCodeInfo(
        code="CHN_TX_NOT_FOUND",
        category=ErrorCategory.TRANSIENT,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Transaction not (yet) known to the node",
        recommended_action="Retry later with backoff",
    ),
    "CHN_RPC_UNAVAILABLE": ErrorCodeInfo(
        code="CHN_RPC_UNAVAILABLE",
        category=ErrorCategory.TRANSIENT,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Chain node unreachable, rate limited or timed out",
        recommended_action="Retry later with backoff",
    ),
    "CHN_NOT_YET_MINED": ErrorCodeInfo(
        code="CHN_NOT_YET_MINED",
        category=ErrorCategory.TRANSIENT,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Transaction is known but not included in a block",
        recommended_action="Retry after the next block",
    ),
    "CHN_MALFORMED_RESPONSE": ErrorCodeInfo(
        code="CHN_MALFORMED_RESPONSE",
        category=ErrorCategory.TRANSIENT,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Chain node returned an unparseable payload",
        recommended_action="Check node/provider health",
    ),

    # ========== STRUCTURAL ERRORS ==========
    "STR_WRONG_RECIPIENT": ErrorCodeInfo(
        code="STR_WRONG_RECIPIENT",
        category=ErrorCategory.STRUCTURAL,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Transaction does not pay the deposit address",
        recommended_action="Submit a different transaction hash",
    ),
    "STR_REPLAY_REJECTED": ErrorCodeInfo(
        code="STR_REPLAY_REJECTED",
        category=ErrorCategory.STRUCTURAL,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Transaction was mined before the intent existed",
        recommended_action="Submit a transaction made after the pledge",
    ),
    "STR_ASSET_MISMATCH": ErrorCodeInfo(
        code="STR_ASSET_MISMATCH",
        category=ErrorCategory.STRUCTURAL,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Transaction moves a different asset",
        recommended_action="Submit a transaction of the pledged asset",
    ),

    # ========== FINANCIAL INTEGRITY ERRORS ==========
    "FIN_AMOUNT_MISMATCH": ErrorCodeInfo(
        code="FIN_AMOUNT_MISMATCH",
        category=ErrorCategory.FINANCIAL_INTEGRITY,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="Correct address and asset but the amount differs",
        recommended_action="Manual review of the donor payment",
        resulting_status=IntentStatus.MISMATCH,
        requires_review=True,
    ),
    "FIN_ON_CHAIN_FAILURE": ErrorCodeInfo(
        code="FIN_ON_CHAIN_FAILURE",
        category=ErrorCategory.FINANCIAL_INTEGRITY,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="Matched transaction reverted on-chain",
        recommended_action="Manual review; donor may need to resend",
        resulting_status=IntentStatus.FAILED,
        requires_review=True,
    ),

    # ========== IDEMPOTENCY ==========
    "IDM_TX_ALREADY_CLAIMED": ErrorCodeInfo(
        code="IDM_TX_ALREADY_CLAIMED",
        category=ErrorCategory.IDEMPOTENCY,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Transaction already credited to another intent",
        recommended_action="Submit a different transaction hash",
    ),
    "IDM_CANDIDATE_CONFLICT": ErrorCodeInfo(
        code="IDM_CANDIDATE_CONFLICT",
        category=ErrorCategory.IDEMPOTENCY,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Intent is already tracking another transaction",
        recommended_action="Wait for the tracked transaction to confirm",
    ),

    # ========== LIFECYCLE ==========
    "LIF_ALREADY_TERMINAL": ErrorCodeInfo(
        code="LIF_ALREADY_TERMINAL",
        category=ErrorCategory.LIFECYCLE,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Intent is expired, failed or mismatched",
        recommended_action="Create a new intent",
    ),
    "LIF_CAMPAIGN_CLOSED": ErrorCodeInfo(
        code="LIF_CAMPAIGN_CLOSED",
        category=ErrorCategory.LIFECYCLE,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Campaign goal reached or campaign closed",
        recommended_action="Donate to another campaign",
    ),
    "LIF_INVALID_TRANSITION": ErrorCodeInfo(
        code="LIF_INVALID_TRANSITION",
        category=ErrorCategory.LIFECYCLE,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="State machine refused the transition",
        recommended_action="Investigate concurrent writers",
    ),

    # ========== PRICING ==========
    "PRC_PRICE_UNAVAILABLE": ErrorCodeInfo(
        code="PRC_PRICE_UNAVAILABLE",
        category=ErrorCategory.TRANSIENT,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Fiat rate unavailable for the asset",
        recommended_action="Retry later or pledge in native units",
    ),

    # ========== INTERNAL ==========
    "PER_STORE_FAILURE": ErrorCodeInfo(
        code="PER_STORE_FAILURE",
        category=ErrorCategory.INTERNAL,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=True,
        description="Store operation failed",
        recommended_action="Retry; commit is idempotent",
    ),
    "PER_STALE_INTENT": ErrorCodeInfo(
        code="PER_STALE_INTENT",
        category=ErrorCategory.INTERNAL,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Intent changed concurrently",
        recommended_action="Re-read the intent and retry",
    ),
    "INT_UNEXPECTED_ERROR": ErrorCodeInfo(
        code="INT_UNEXPECTED_ERROR",
        category=ErrorCategory.INTERNAL,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Unexpected internal error",
        recommended_action="Investigate error logs",
    ),
}


# ============================================================
# REJECTION MAPPING
# ============================================================

REJECTION_CODES: Dict[RejectionReason, str] = {
    RejectionReason.INVALID_HASH_FORMAT: "INP_INVALID_HASH_FORMAT",
    RejectionReason.TRANSACTION_NOT_FOUND: "CHN_TX_NOT_FOUND",
    RejectionReason.RPC_UNAVAILABLE: "CHN_RPC_UNAVAILABLE",
    RejectionReason.NOT_YET_MINED: "CHN_NOT_YET_MINED",
    RejectionReason.WRONG_RECIPIENT: "STR_WRONG_RECIPIENT",
    RejectionReason.REPLAY_REJECTED: "STR_REPLAY_REJECTED",
    RejectionReason.ASSET_MISMATCH: "STR_ASSET_MISMATCH",
    RejectionReason.AMOUNT_MISMATCH: "FIN_AMOUNT_MISMATCH",
    RejectionReason.ON_CHAIN_FAILURE: "FIN_ON_CHAIN_FAILURE",
    RejectionReason.TX_ALREADY_CLAIMED: "IDM_TX_ALREADY_CLAIMED",
    RejectionReason.CANDIDATE_CONFLICT: "IDM_CANDIDATE_CONFLICT",
}


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def _code_for(key: Union[str, RejectionReason]) -> str:
    if isinstance(key, RejectionReason):
        return REJECTION_CODES[key]
    return key


def get_error_info(key: Union[str, RejectionReason]) -> ErrorCodeInfo:
    """
    Get error info for a code or rejection reason.

    Args:
        key: Error code or RejectionReason

    Returns:
        ErrorCodeInfo or default unknown error
    """
    code = _code_for(key)
    return ERROR_CODES.get(code, ErrorCodeInfo(
        code=code,
        category=ErrorCategory.INTERNAL,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description=f"Unknown error: {code}",
        recommended_action="Investigate error",
    ))


def is_retryable(key: Union[str, RejectionReason]) -> bool:
    """Check if an error code or rejection is retryable."""
    return get_error_info(key).is_retryable


def requires_review(key: Union[str, RejectionReason]) -> bool:
    """Check if an error leaves the intent flagged for human review."""
    return get_error_info(key).requires_review


def terminal_status_for(reason: RejectionReason) -> Union[IntentStatus, None]:
    """Terminal status a rejection moves the intent to, if any."""
    return get_error_info(reason).resulting_status


# ============================================================
# ERROR SETS
# ============================================================

RETRYABLE_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.is_retryable
}

REVIEW_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.requires_review
}

TRANSIENT_REJECTIONS: Set[RejectionReason] = {
    reason for reason, code in REJECTION_CODES.items()
    if ERROR_CODES[code].category == ErrorCategory.TRANSIENT
}
