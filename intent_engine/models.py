"""
Intent Engine - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for intent persistence.

TABLES:
- payment_intents: Intent records (never deleted)
- chain_transactions: Normalized chain facts, unique per (network, tx_hash)
- donations: Append-only ledger, unique per (network, tx_hash)
- campaign_totals: Running campaign totals

Raw amounts are stored as decimal strings: token amounts routinely
exceed 64-bit integers.

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .types import utc_now


# ============================================================
# BASE
# ============================================================

class Base(DeclarativeBase):
    """Base class for intent engine models."""
    pass


# ============================================================
# PAYMENT INTENT MODEL
# ============================================================

class PaymentIntentModel(Base):
    """
    Persisted intent.

    `version` backs the conditional UPDATE used for every transition.
    """

    __tablename__ = "payment_intents"

    intent_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    network_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    asset_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Expectation (immutable)
    expected_amount_raw: Mapped[str] = mapped_column(String(80), nullable=False)
    expected_amount: Mapped[str] = mapped_column(String(96), nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False)
    deposit_address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    start_block_by_network: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict)
    nonce: Mapped[int] = mapped_column(Integer, default=0)
    nonce_width: Mapped[int] = mapped_column(Integer, default=0)
    amount_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 8))
    donor_ref: Mapped[Optional[str]] = mapped_column(String(128))

    # State
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    status_reason: Mapped[str] = mapped_column(Text, default="")
    candidate_tx_hash: Mapped[Optional[str]] = mapped_column(String(128))
    confirmations: Mapped[int] = mapped_column(Integer, default=0)
    detected_amount_raw: Mapped[Optional[str]] = mapped_column(String(80))
    last_scanned_block_by_network: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict)
    donation_id: Mapped[Optional[str]] = mapped_column(String(64))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<PaymentIntent {self.intent_id} {self.status}>"


# ============================================================
# CHAIN TRANSACTION MODEL
# ============================================================

class ChainTransactionModel(Base):
    """Normalized chain facts; the (network_id, tx_hash) claim lives here."""

    __tablename__ = "chain_transactions"
    __table_args__ = (
        UniqueConstraint("network_id", "tx_hash", name="uq_chain_tx_network_hash"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    network_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    recipient: Mapped[Optional[str]] = mapped_column(String(128))
    sender: Mapped[Optional[str]] = mapped_column(String(128))
    asset_ref: Mapped[Optional[str]] = mapped_column(String(128))
    native_symbol: Mapped[Optional[str]] = mapped_column(String(16))
    raw_amount: Mapped[str] = mapped_column(String(80), nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False)
    block_height: Mapped[Optional[int]] = mapped_column(Integer)
    succeeded: Mapped[bool] = mapped_column(Boolean, default=True)
    confirmations: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    intent_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    donation_id: Mapped[Optional[str]] = mapped_column(String(64))

    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# ============================================================
# DONATION LEDGER MODEL
# ============================================================

class DonationModel(Base):
    """Append-only ledger entry."""

    __tablename__ = "donations"
    __table_args__ = (
        UniqueConstraint("network_id", "tx_hash", name="uq_donation_network_hash"),
    )

    donation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    intent_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    campaign_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    asset_id: Mapped[str] = mapped_column(String(64), nullable=False)
    network_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    amount_raw: Mapped[str] = mapped_column(String(80), nullable=False)
    amount: Mapped[str] = mapped_column(String(96), nullable=False)

    # Valuation snapshot
    fiat_currency: Mapped[Optional[str]] = mapped_column(String(8))
    fiat_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(30, 12))
    fiat_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 2))
    valuation_source: Mapped[Optional[str]] = mapped_column(String(32))
    valuation_taken_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    donor_ref: Mapped[Optional[str]] = mapped_column(String(128))
    explorer_url: Mapped[Optional[str]] = mapped_column(String(256))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)


# ============================================================
# CAMPAIGN TOTALS MODEL
# ============================================================

class CampaignTotalsModel(Base):
    """Running totals per campaign; raw sums keyed by asset as strings."""

    __tablename__ = "campaign_totals"

    campaign_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    raw_by_asset: Mapped[Dict[str, str]] = mapped_column(JSON, default=dict)
    fiat_total: Mapped[Decimal] = mapped_column(Numeric(24, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(8), default="USD")
    donation_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
