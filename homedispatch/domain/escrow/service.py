import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from homedispatch.domain.bookings.db_models import Booking
from homedispatch.domain.errors import EscrowAlreadySettled, InvariantViolation
from homedispatch.domain.escrow.db_models import (
    ESCROW_HELD,
    ESCROW_REFUNDED,
    ESCROW_RELEASED,
    EscrowRecord,
    generate_invoice_number,
)
from homedispatch.domain.pricing.service import round_cents
from homedispatch.infra.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscrowPolicy:
    commission_rate: float = 0.15
    sla_tolerance_minutes: int = 15
    sla_penalty_rate: float = 0.5
    sla_penalty_cap: float = 0.25


@dataclass(frozen=True)
class EscrowSplit:
    amount_cents: int
    commission_cents: int
    net_payout_cents: int


@dataclass(frozen=True)
class SlaAssessment:
    breached: bool
    overrun_minutes: int
    penalty_cents: int


@dataclass(frozen=True)
class WalletSummary:
    total_held_cents: int
    total_released_cents: int
    total_refunded_cents: int
    total_commission_cents: int
    total_penalty_cents: int
    record_count: int


def compute_split(amount_cents: int, commission_rate: float) -> EscrowSplit:
    commission = round_cents(Decimal(amount_cents) * Decimal(str(commission_rate)))
    return EscrowSplit(
        amount_cents=amount_cents,
        commission_cents=commission,
        net_payout_cents=amount_cents - commission,
    )


def actual_duration_minutes(started_at: datetime, completed_at: datetime) -> int:
    elapsed = (completed_at - started_at).total_seconds()
    return max(0, math.ceil(elapsed / 60))


def assess_sla(
    net_payout_cents: int,
    estimated_minutes: int,
    actual_minutes: int,
    policy: EscrowPolicy,
) -> SlaAssessment:
    overrun = actual_minutes - estimated_minutes
    if estimated_minutes <= 0 or overrun <= policy.sla_tolerance_minutes:
        return SlaAssessment(breached=False, overrun_minutes=max(0, overrun), penalty_cents=0)
    fraction = min(
        Decimal(str(policy.sla_penalty_cap)),
        Decimal(str(policy.sla_penalty_rate)) * Decimal(overrun) / Decimal(estimated_minutes),
    )
    penalty = max(1, round_cents(Decimal(net_payout_cents) * fraction))
    return SlaAssessment(
        breached=True,
        overrun_minutes=overrun,
        penalty_cents=min(penalty, net_payout_cents),
    )


async def get_escrow_for_booking(session: AsyncSession, booking_id: str) -> EscrowRecord | None:
    result = await session.execute(select(EscrowRecord).where(EscrowRecord.booking_id == booking_id))
    return result.scalar_one_or_none()


def open_escrow(
    session: AsyncSession,
    booking_id: str,
    charge_cents: int,
    tip_cents: int,
    transaction_id: str,
    policy: EscrowPolicy,
    currency: str,
    now: datetime | None = None,
) -> EscrowRecord:
    split = compute_split(charge_cents + tip_cents, policy.commission_rate)
    opened_at = now or datetime.now(tz=timezone.utc)
    record = EscrowRecord(
        booking_id=booking_id,
        amount_cents=split.amount_cents,
        tip_cents=tip_cents,
        commission_rate=policy.commission_rate,
        commission_cents=split.commission_cents,
        net_payout_cents=split.net_payout_cents,
        penalty_cents=0,
        status=ESCROW_HELD,
        transaction_id=transaction_id,
        currency=currency,
        invoice_number=generate_invoice_number(opened_at),
        created_at=opened_at,
    )
    session.add(record)
    logger.info(
        "escrow_opened",
        extra={
            "extra": {
                "booking_id": booking_id,
                "amount_cents": split.amount_cents,
                "commission_cents": split.commission_cents,
            }
        },
    )
    return record


async def _held_record(session: AsyncSession, booking_id: str) -> EscrowRecord:
    record = await get_escrow_for_booking(session, booking_id)
    if record is None:
        raise InvariantViolation(f"Booking {booking_id} is marked paid but has no escrow record")
    if record.status != ESCROW_HELD:
        raise EscrowAlreadySettled(f"Escrow for booking {booking_id} is already {record.status}")
    return record


async def release_escrow(
    session: AsyncSession,
    booking_id: str,
    penalty_cents: int = 0,
    now: datetime | None = None,
) -> EscrowRecord:
    record = await _held_record(session, booking_id)
    penalty = min(max(0, penalty_cents), record.net_payout_cents)
    record.penalty_cents = penalty
    record.payout_cents = record.net_payout_cents - penalty
    record.status = ESCROW_RELEASED
    record.released_at = now or datetime.now(tz=timezone.utc)
    metrics.record_settlement("released")
    logger.info(
        "escrow_released",
        extra={"extra": {"booking_id": booking_id, "payout_cents": record.payout_cents, "penalty_cents": penalty}},
    )
    return record


async def refund_escrow(
    session: AsyncSession,
    booking_id: str,
    now: datetime | None = None,
) -> EscrowRecord:
    record = await _held_record(session, booking_id)
    record.status = ESCROW_REFUNDED
    record.refunded_at = now or datetime.now(tz=timezone.utc)
    metrics.record_settlement("refunded")
    logger.info("escrow_refunded", extra={"extra": {"booking_id": booking_id, "amount_cents": record.amount_cents}})
    return record


async def wallet_summary(session: AsyncSession) -> WalletSummary:
    stmt = select(
        EscrowRecord.status,
        func.coalesce(func.sum(EscrowRecord.amount_cents), 0),
        func.coalesce(func.sum(EscrowRecord.commission_cents), 0),
        func.coalesce(func.sum(EscrowRecord.penalty_cents), 0),
        func.count(EscrowRecord.escrow_id),
    ).group_by(EscrowRecord.status)
    totals = {ESCROW_HELD: 0, ESCROW_RELEASED: 0, ESCROW_REFUNDED: 0}
    commission = 0
    penalties = 0
    count = 0
    for status, amount, commission_sum, penalty_sum, rows in (await session.execute(stmt)).all():
        totals[status] = int(amount)
        count += int(rows)
        penalties += int(penalty_sum)
        # Refunded money never earned commission.
        if status != ESCROW_REFUNDED:
            commission += int(commission_sum)
    return WalletSummary(
        total_held_cents=totals[ESCROW_HELD],
        total_released_cents=totals[ESCROW_RELEASED],
        total_refunded_cents=totals[ESCROW_REFUNDED],
        total_commission_cents=commission,
        total_penalty_cents=penalties,
        record_count=count,
    )


async def list_transactions(
    session: AsyncSession,
    *,
    status: str | None = None,
    customer_id: str | None = None,
    provider_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[EscrowRecord]:
    stmt = select(EscrowRecord).order_by(EscrowRecord.created_at.desc(), EscrowRecord.escrow_id)
    if status:
        stmt = stmt.where(EscrowRecord.status == status)
    if customer_id is not None or provider_id is not None:
        stmt = stmt.join(Booking, Booking.booking_id == EscrowRecord.booking_id)
        if customer_id is not None:
            stmt = stmt.where(Booking.customer_id == customer_id)
        if provider_id is not None:
            stmt = stmt.where(Booking.provider_id == provider_id)
    result = await session.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())
