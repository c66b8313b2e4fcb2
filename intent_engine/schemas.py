"""
Pydantic Schemas for the Payment Intent API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .types import IntentCreated, PaymentIntent, VerificationResult


# =============================================================
# REQUESTS
# =============================================================

class CreateIntentBody(BaseModel):
    """Pledge request; exactly one of amount_usd / amount_native."""
    campaign_id: str = Field(..., min_length=1, max_length=64)
    network_id: str
    asset_id: str
    amount_usd: Optional[Decimal] = Field(None, gt=0)
    amount_native: Optional[str] = None
    donor_ref: Optional[str] = Field(None, max_length=128)
    anonymous: bool = False


class VerifyBody(BaseModel):
    """Candidate transaction for an intent."""
    tx_hash: str = Field(..., min_length=1, max_length=256)


# =============================================================
# RESPONSES
# =============================================================

class PaymentIntentResponse(BaseModel):
    intent_id: str
    campaign_id: str
    network_id: str
    asset_id: str
    status: str
    status_reason: str = ""
    expected_amount: str
    expected_amount_raw: str
    decimals: int
    deposit_address: str
    expires_at: datetime
    start_block_by_network: Dict[str, int]
    candidate_tx_hash: Optional[str] = None
    confirmations: int = 0
    detected_amount_raw: Optional[str] = None
    donation_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_intent(cls, intent: PaymentIntent) -> "PaymentIntentResponse":
        return cls(
            intent_id=intent.intent_id,
            campaign_id=intent.campaign_id,
            network_id=intent.network_id,
            asset_id=intent.asset_id,
            status=intent.status.value,
            status_reason=intent.status_reason,
            expected_amount=intent.expected_amount,
            expected_amount_raw=str(intent.expected_amount_raw),
            decimals=intent.decimals,
            deposit_address=intent.deposit_address,
            expires_at=intent.expires_at,
            start_block_by_network=intent.start_block_by_network,
            candidate_tx_hash=intent.candidate_tx_hash,
            confirmations=intent.confirmations,
            detected_amount_raw=(
                str(intent.detected_amount_raw) if intent.detected_amount_raw is not None else None
            ),
            donation_id=intent.donation_id,
            created_at=intent.created_at,
            updated_at=intent.updated_at,
        )


class IntentCreatedResponse(BaseModel):
    intent: PaymentIntentResponse
    payment_uri: str
    explorer_address_url: Optional[str] = None
    rate: Optional[Decimal] = None

    @classmethod
    def from_created(cls, created: IntentCreated) -> "IntentCreatedResponse":
        return cls(
            intent=PaymentIntentResponse.from_intent(created.intent),
            payment_uri=created.payment_uri,
            explorer_address_url=created.explorer_address_url,
            rate=created.rate,
        )


class VerificationResponse(BaseModel):
    outcome: str
    intent_id: str
    network_id: str
    tx_hash: Optional[str] = None
    reason: Optional[str] = None
    status: Optional[str] = None
    confirmations: int = 0
    confirmations_required: int = 0
    donation_id: Optional[str] = None
    retryable: bool = False
    detail: str = ""

    @classmethod
    def from_result(cls, result: VerificationResult) -> "VerificationResponse":
        return cls(**result.to_dict())


class ErrorResponse(BaseModel):
    code: str
    message: str
    retryable: bool = False
