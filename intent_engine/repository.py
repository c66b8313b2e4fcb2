"""
Intent Engine - SQL Repository.

============================================================
PURPOSE
============================================================
IntentStore on SQLAlchemy async sessions.

CONCURRENCY:
- Every intent write is a conditional UPDATE ... WHERE version = :seen;
  zero rows updated means another writer got there first
- The (network, tx_hash) claim is a conditional UPDATE ... WHERE
  intent_id IS NULL, backed by a unique constraint
- commit_confirmation writes claim, ledger entry, intent and totals in
  one transaction; unique violations mean a concurrent commit won

============================================================
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .database import Database
from .exceptions import (
    ClaimConflictError,
    IntentNotFoundError,
    PersistenceError,
    StaleIntentError,
)
from .models import (
    CampaignTotalsModel,
    ChainTransactionModel,
    DonationModel,
    PaymentIntentModel,
)
from .state_machine import EXPIRABLE_STATES, IntentStateMachine
from .store import (
    IntentStore,
    apply_intent_updates,
    check_tracking_status,
    merge_observation,
)
from .types import (
    CampaignTotals,
    ChainTransactionRecord,
    ChainTxStatus,
    CommitResult,
    DonationLedgerEntry,
    FiatValuation,
    IntentStatus,
    PaymentIntent,
    utc_now,
)


logger = logging.getLogger(__name__)

OPEN_STATES = [IntentStatus.CREATED.value, IntentStatus.DETECTING.value]
MAX_WRITE_ATTEMPTS = 3


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _int_or_none(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None


# ============================================================
# CONVERSION
# ============================================================

def intent_from_model(model: PaymentIntentModel) -> PaymentIntent:
    return PaymentIntent(
        intent_id=model.intent_id,
        campaign_id=model.campaign_id,
        network_id=model.network_id,
        asset_id=model.asset_id,
        expected_amount_raw=int(model.expected_amount_raw),
        expected_amount=model.expected_amount,
        decimals=model.decimals,
        deposit_address=model.deposit_address,
        expires_at=_aware(model.expires_at),
        start_block_by_network=dict(model.start_block_by_network or {}),
        nonce=model.nonce,
        nonce_width=model.nonce_width,
        amount_usd=model.amount_usd,
        donor_ref=model.donor_ref,
        status=IntentStatus(model.status),
        status_reason=model.status_reason or "",
        candidate_tx_hash=model.candidate_tx_hash,
        confirmations=model.confirmations,
        detected_amount_raw=_int_or_none(model.detected_amount_raw),
        last_scanned_block_by_network=dict(model.last_scanned_block_by_network or {}),
        donation_id=model.donation_id,
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at),
        expired_at=_aware(model.expired_at),
        confirmed_at=_aware(model.confirmed_at),
        version=model.version,
    )


def intent_state_values(intent: PaymentIntent) -> Dict[str, Any]:
    """Columns a write may change."""
    return {
        "status": intent.status.value,
        "status_reason": intent.status_reason,
        "candidate_tx_hash": intent.candidate_tx_hash,
        "confirmations": intent.confirmations,
        "detected_amount_raw": (
            str(intent.detected_amount_raw) if intent.detected_amount_raw is not None else None
        ),
        "last_scanned_block_by_network": dict(intent.last_scanned_block_by_network),
        "donation_id": intent.donation_id,
        "updated_at": intent.updated_at,
        "expired_at": intent.expired_at,
        "confirmed_at": intent.confirmed_at,
        "version": intent.version,
    }


def intent_to_model(intent: PaymentIntent) -> PaymentIntentModel:
    return PaymentIntentModel(
        intent_id=intent.intent_id,
        campaign_id=intent.campaign_id,
        network_id=intent.network_id,
        asset_id=intent.asset_id,
        expected_amount_raw=str(intent.expected_amount_raw),
        expected_amount=intent.expected_amount,
        decimals=intent.decimals,
        deposit_address=intent.deposit_address,
        expires_at=intent.expires_at,
        start_block_by_network=dict(intent.start_block_by_network),
        nonce=intent.nonce,
        nonce_width=intent.nonce_width,
        amount_usd=intent.amount_usd,
        donor_ref=intent.donor_ref,
        created_at=intent.created_at,
        **intent_state_values(intent),
    )


def chain_tx_from_model(model: ChainTransactionModel) -> ChainTransactionRecord:
    return ChainTransactionRecord(
        network_id=model.network_id,
        tx_hash=model.tx_hash,
        recipient=model.recipient,
        asset_ref=model.asset_ref,
        raw_amount=int(model.raw_amount),
        decimals=model.decimals,
        block_height=model.block_height,
        succeeded=model.succeeded,
        sender=model.sender,
        native_symbol=model.native_symbol,
        confirmations=model.confirmations,
        status=ChainTxStatus(model.status),
        intent_id=model.intent_id,
        donation_id=model.donation_id,
        first_seen_at=_aware(model.first_seen_at),
        updated_at=_aware(model.updated_at),
    )


def copy_chain_tx_to_model(record: ChainTransactionRecord, model: ChainTransactionModel) -> None:
    model.recipient = record.recipient
    model.sender = record.sender
    model.asset_ref = record.asset_ref
    model.native_symbol = record.native_symbol
    model.raw_amount = str(record.raw_amount)
    model.decimals = record.decimals
    model.block_height = record.block_height
    model.succeeded = record.succeeded
    model.confirmations = record.confirmations
    model.status = record.status.value
    model.updated_at = record.updated_at


def new_chain_tx_model(record: ChainTransactionRecord) -> ChainTransactionModel:
    model = ChainTransactionModel(
        network_id=record.network_id,
        tx_hash=record.tx_hash,
        first_seen_at=record.first_seen_at,
    )
    copy_chain_tx_to_model(record, model)
    return model


def donation_from_model(model: DonationModel) -> DonationLedgerEntry:
    valuation = None
    if model.fiat_currency is not None and model.fiat_value is not None:
        valuation = FiatValuation(
            currency=model.fiat_currency,
            rate=Decimal(model.fiat_rate),
            value=Decimal(model.fiat_value),
            source=model.valuation_source or "unknown",
            taken_at=_aware(model.valuation_taken_at),
        )
    return DonationLedgerEntry(
        donation_id=model.donation_id,
        intent_id=model.intent_id,
        campaign_id=model.campaign_id,
        asset_id=model.asset_id,
        network_id=model.network_id,
        amount_raw=int(model.amount_raw),
        amount=model.amount,
        valuation=valuation,
        tx_hash=model.tx_hash,
        donor_ref=model.donor_ref,
        explorer_url=model.explorer_url,
        created_at=_aware(model.created_at),
    )


def donation_to_model(entry: DonationLedgerEntry) -> DonationModel:
    valuation = entry.valuation
    return DonationModel(
        donation_id=entry.donation_id,
        intent_id=entry.intent_id,
        campaign_id=entry.campaign_id,
        asset_id=entry.asset_id,
        network_id=entry.network_id,
        tx_hash=entry.tx_hash,
        amount_raw=str(entry.amount_raw),
        amount=entry.amount,
        fiat_currency=valuation.currency if valuation else None,
        fiat_rate=valuation.rate if valuation else None,
        fiat_value=valuation.value if valuation else None,
        valuation_source=valuation.source if valuation else None,
        valuation_taken_at=valuation.taken_at if valuation else None,
        donor_ref=entry.donor_ref,
        explorer_url=entry.explorer_url,
        created_at=entry.created_at,
    )


def totals_from_model(model: CampaignTotalsModel) -> CampaignTotals:
    return CampaignTotals(
        campaign_id=model.campaign_id,
        raw_by_asset={k: int(v) for k, v in (model.raw_by_asset or {}).items()},
        fiat_total=Decimal(model.fiat_total or 0),
        currency=model.currency,
        donation_count=model.donation_count,
        updated_at=_aware(model.updated_at),
    )


# ============================================================
# SQL INTENT STORE
# ============================================================

class SqlIntentStore(IntentStore):
    """
    IntentStore backed by SQLAlchemy.

    Usage:
        db = Database(config.database)
        await db.create_all()
        store = SqlIntentStore(db)
    """

    def __init__(self, database: Database):
        self._db = database

    # --------------------------------------------------------
    # INTENTS
    # --------------------------------------------------------

    async def create(self, intent: PaymentIntent) -> PaymentIntent:
        async with self._db.session() as session:
            try:
                async with session.begin():
                    session.add(intent_to_model(intent))
            except IntegrityError as e:
                raise PersistenceError(
                    f"Intent {intent.intent_id} already exists",
                    intent_id=intent.intent_id,
                    original_error=e,
                )
        logger.info(
            f"Intent {intent.intent_id} created: {intent.expected_amount} "
            f"{intent.asset_id} on {intent.network_id}"
        )
        return intent

    async def get(self, intent_id: str) -> PaymentIntent:
        async with self._db.session() as session:
            return intent_from_model(await self._require(session, intent_id))

    async def transition(
        self,
        intent_id: str,
        target: IntentStatus,
        reason: str = "",
        expected_from: Optional[Iterable[IntentStatus]] = None,
        started_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        updates: Optional[Dict[str, Any]] = None,
    ) -> PaymentIntent:
        expected = set(expected_from) if expected_from is not None else None
        async with self._db.session() as session:
            async with session.begin():
                current = intent_from_model(await self._require(session, intent_id))
                if expected is not None and current.status not in expected:
                    raise StaleIntentError(
                        f"Intent {intent_id} is {current.status.value}, "
                        f"expected one of {sorted(s.value for s in expected)}",
                        intent_id=intent_id,
                    )
                seen_version = current.version
                apply_intent_updates(current, updates)
                IntentStateMachine(current).transition_to(
                    target, reason, started_at=started_at, now=now,
                )
                await self._write_intent(session, current, seen_version)
        return current

    async def update_tracking(
        self,
        intent_id: str,
        updates: Dict[str, Any],
        expected_from: Optional[Iterable[IntentStatus]] = None,
    ) -> PaymentIntent:
        for attempt in range(MAX_WRITE_ATTEMPTS):
            async with self._db.session() as session:
                try:
                    async with session.begin():
                        current = intent_from_model(await self._require(session, intent_id))
                        check_tracking_status(current, expected_from)
                        seen_version = current.version
                        apply_intent_updates(current, updates)
                        current.updated_at = utc_now()
                        current.version += 1
                        await self._write_intent(session, current, seen_version)
                    return current
                except StaleIntentError:
                    if attempt == MAX_WRITE_ATTEMPTS - 1:
                        raise
        raise PersistenceError(f"Could not update intent {intent_id}", intent_id=intent_id)

    async def list_by_status(
        self,
        statuses: Iterable[IntentStatus],
        limit: Optional[int] = None,
    ) -> List[PaymentIntent]:
        stmt = (
            select(PaymentIntentModel)
            .where(PaymentIntentModel.status.in_([s.value for s in statuses]))
            .order_by(PaymentIntentModel.updated_at)
        )
        if limit:
            stmt = stmt.limit(limit)
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [intent_from_model(m) for m in result.scalars().all()]

    async def list_expirable(self, now: datetime, limit: Optional[int] = None) -> List[PaymentIntent]:
        stmt = (
            select(PaymentIntentModel)
            .where(
                PaymentIntentModel.status.in_([s.value for s in EXPIRABLE_STATES]),
                PaymentIntentModel.expires_at <= now,
            )
            .order_by(PaymentIntentModel.expires_at)
        )
        if limit:
            stmt = stmt.limit(limit)
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [intent_from_model(m) for m in result.scalars().all()]

    async def find_open_by_address(self, network_id: str, address: str) -> List[PaymentIntent]:
        stmt = select(PaymentIntentModel).where(
            PaymentIntentModel.network_id == network_id,
            func.lower(PaymentIntentModel.deposit_address) == address.lower(),
            PaymentIntentModel.status.in_(OPEN_STATES),
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [intent_from_model(m) for m in result.scalars().all()]

    async def advance_cursor(self, intent_id: str, network_id: str, block_height: int) -> int:
        for _ in range(MAX_WRITE_ATTEMPTS):
            async with self._db.session() as session:
                try:
                    async with session.begin():
                        current = intent_from_model(await self._require(session, intent_id))
                        stored = current.last_scanned_block_by_network.get(network_id, -1)
                        if block_height <= stored:
                            return stored
                        seen_version = current.version
                        current.last_scanned_block_by_network[network_id] = block_height
                        current.updated_at = utc_now()
                        current.version += 1
                        await self._write_intent(session, current, seen_version)
                    return block_height
                except StaleIntentError:
                    continue
        raise StaleIntentError(f"Cursor update lost for {intent_id}", intent_id=intent_id)

    # --------------------------------------------------------
    # CHAIN TRANSACTIONS
    # --------------------------------------------------------

    async def get_chain_tx(self, network_id: str, tx_hash: str) -> Optional[ChainTransactionRecord]:
        async with self._db.session() as session:
            model = await self._chain_model(session, network_id, tx_hash)
            return chain_tx_from_model(model) if model else None

    async def record_observation(
        self,
        record: ChainTransactionRecord,
        claim_for: Optional[str] = None,
    ) -> ChainTransactionRecord:
        for attempt in range(MAX_WRITE_ATTEMPTS):
            async with self._db.session() as session:
                try:
                    async with session.begin():
                        model = await self._upsert_chain_tx(session, record)
                        if claim_for is not None:
                            await self._claim(session, model, claim_for)
                        return chain_tx_from_model(model)
                except IntegrityError:
                    # Concurrent first insert; the row exists now
                    if attempt == MAX_WRITE_ATTEMPTS - 1:
                        raise PersistenceError(
                            f"Could not record {record.network_id}/{record.tx_hash}",
                            network_id=record.network_id,
                        )
        raise PersistenceError(f"Could not record {record.network_id}/{record.tx_hash}")

    # --------------------------------------------------------
    # LEDGER
    # --------------------------------------------------------

    async def commit_confirmation(
        self,
        intent_id: str,
        record: ChainTransactionRecord,
        entry: DonationLedgerEntry,
        started_at: Optional[datetime] = None,
    ) -> CommitResult:
        try:
            async with self._db.session() as session:
                async with session.begin():
                    existing = await self._chain_model(
                        session, record.network_id, record.tx_hash, for_update=True,
                    )
                    if existing is not None and existing.donation_id is not None:
                        return CommitResult(donation_id=existing.donation_id, already_recorded=True)
                    if existing is not None and existing.intent_id not in (None, intent_id):
                        raise ClaimConflictError(
                            f"Transaction already claimed by intent {existing.intent_id}",
                            claimed_by=existing.intent_id,
                            intent_id=intent_id,
                            network_id=record.network_id,
                        )

                    current = intent_from_model(await self._require(session, intent_id))
                    if current.status == IntentStatus.CONFIRMED and current.donation_id:
                        return CommitResult(donation_id=current.donation_id, already_recorded=True)

                    seen_version = current.version
                    apply_intent_updates(current, {
                        "candidate_tx_hash": record.tx_hash,
                        "confirmations": record.confirmations,
                        "detected_amount_raw": record.raw_amount,
                        "donation_id": entry.donation_id,
                    })
                    IntentStateMachine(current).transition_to(
                        IntentStatus.CONFIRMED,
                        "Committed to ledger",
                        started_at=started_at,
                        now=entry.created_at,
                    )

                    model = existing or new_chain_tx_model(record)
                    if existing is not None:
                        stored = chain_tx_from_model(existing)
                        merge_observation(stored, record)
                        copy_chain_tx_to_model(stored, existing)
                    else:
                        session.add(model)
                    model.intent_id = intent_id
                    model.donation_id = entry.donation_id
                    model.status = ChainTxStatus.CONFIRMED.value
                    model.updated_at = entry.created_at

                    session.add(donation_to_model(entry))
                    await self._apply_totals(session, entry)
                    await self._write_intent(session, current, seen_version)
                    await session.flush()
        except (IntegrityError, StaleIntentError) as e:
            winner = await self.get_chain_tx(record.network_id, record.tx_hash)
            if winner is not None and winner.donation_id is not None:
                return CommitResult(donation_id=winner.donation_id, already_recorded=True)
            if isinstance(e, StaleIntentError):
                raise
            raise PersistenceError(
                f"Ledger commit failed for {record.network_id}/{record.tx_hash}",
                intent_id=intent_id,
                original_error=e,
            )

        return CommitResult(donation_id=entry.donation_id, already_recorded=False, entry=entry)

    async def get_donation(self, donation_id: str) -> Optional[DonationLedgerEntry]:
        async with self._db.session() as session:
            model = await session.get(DonationModel, donation_id)
            return donation_from_model(model) if model else None

    async def list_donations(self, campaign_id: Optional[str] = None) -> List[DonationLedgerEntry]:
        stmt = select(DonationModel).order_by(DonationModel.created_at)
        if campaign_id is not None:
            stmt = stmt.where(DonationModel.campaign_id == campaign_id)
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [donation_from_model(m) for m in result.scalars().all()]

    async def get_totals(self, campaign_id: str) -> CampaignTotals:
        async with self._db.session() as session:
            model = await session.get(CampaignTotalsModel, campaign_id)
            return totals_from_model(model) if model else CampaignTotals(campaign_id=campaign_id)

    async def close(self) -> None:
        await self._db.dispose()

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    async def _require(self, session: AsyncSession, intent_id: str) -> PaymentIntentModel:
        try:
            model = await session.get(PaymentIntentModel, intent_id, populate_existing=True)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load intent {intent_id}", original_error=e)
        if model is None:
            raise IntentNotFoundError(f"Intent not found: {intent_id}", intent_id=intent_id)
        return model

    async def _write_intent(
        self,
        session: AsyncSession,
        intent: PaymentIntent,
        seen_version: int,
    ) -> None:
        result = await session.execute(
            update(PaymentIntentModel)
            .where(
                PaymentIntentModel.intent_id == intent.intent_id,
                PaymentIntentModel.version == seen_version,
            )
            .values(**intent_state_values(intent))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleIntentError(
                f"Intent {intent.intent_id} changed concurrently (version {seen_version})",
                intent_id=intent.intent_id,
            )

    async def _chain_model(
        self,
        session: AsyncSession,
        network_id: str,
        tx_hash: str,
        for_update: bool = False,
    ) -> Optional[ChainTransactionModel]:
        stmt = select(ChainTransactionModel).where(
            ChainTransactionModel.network_id == network_id,
            ChainTransactionModel.tx_hash == tx_hash,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _upsert_chain_tx(
        self,
        session: AsyncSession,
        record: ChainTransactionRecord,
    ) -> ChainTransactionModel:
        model = await self._chain_model(session, record.network_id, record.tx_hash, for_update=True)
        if model is None:
            model = new_chain_tx_model(record)
            session.add(model)
            await session.flush()
            return model
        stored = chain_tx_from_model(model)
        merge_observation(stored, record)
        copy_chain_tx_to_model(stored, model)
        return model

    async def _claim(
        self,
        session: AsyncSession,
        model: ChainTransactionModel,
        intent_id: str,
    ) -> None:
        await session.flush()
        await session.execute(
            update(ChainTransactionModel)
            .where(
                ChainTransactionModel.id == model.id,
                ChainTransactionModel.intent_id.is_(None),
            )
            .values(intent_id=intent_id)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(model)
        if model.intent_id != intent_id:
            raise ClaimConflictError(
                f"Transaction already claimed by intent {model.intent_id}",
                claimed_by=model.intent_id,
                intent_id=intent_id,
                network_id=model.network_id,
            )

    async def _apply_totals(self, session: AsyncSession, entry: DonationLedgerEntry) -> None:
        model = await session.get(CampaignTotalsModel, entry.campaign_id, with_for_update=True)
        if model is None:
            model = CampaignTotalsModel(
                campaign_id=entry.campaign_id,
                raw_by_asset={},
                fiat_total=Decimal("0"),
                currency=entry.valuation.currency if entry.valuation else "USD",
                donation_count=0,
            )
            session.add(model)
        totals = totals_from_model(model)
        totals.apply(entry)
        model.raw_by_asset = {k: str(v) for k, v in totals.raw_by_asset.items()}
        model.fiat_total = totals.fiat_total
        model.donation_count = totals.donation_count
        model.updated_at = totals.updated_at
        if entry.valuation is not None:
            model.currency = entry.valuation.currency
