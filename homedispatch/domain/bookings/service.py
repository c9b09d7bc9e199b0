import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, TypeVar

import anyio
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from homedispatch.domain.actors import Actor
from homedispatch.domain.bookings import state_machine
from homedispatch.domain.bookings.db_models import Booking, BookingEvent
from homedispatch.domain.bookings.effects import (
    Effect,
    Notify,
    RefundEscrow,
    ReleaseEscrow,
    TransitionResult,
)
from homedispatch.domain.bookings.schemas import BookingCreateRequest
from homedispatch.domain.bookings.statuses import BookingStatus, PaymentStatus, phases_with_status
from homedispatch.domain.catalog.db_models import ServiceOffering
from homedispatch.domain.customers.db_models import Customer
from homedispatch.domain.errors import (
    BookingBusy,
    DomainError,
    Forbidden,
    InvariantViolation,
    NotFound,
    PaymentCaptureFailed,
    ValidationFailed,
)
from homedispatch.domain.escrow import service as escrow_service
from homedispatch.domain.escrow.db_models import EscrowRecord
from homedispatch.domain.escrow.service import EscrowPolicy
from homedispatch.domain.geo.service import Coordinates
from homedispatch.domain.matching.service import (
    MatchPolicy,
    ProviderMatch,
    find_available_providers as _find_available_providers,
)
from homedispatch.domain.pricing.config_loader import PricingConfig
from homedispatch.domain.pricing.service import quote
from homedispatch.domain.providers.db_models import Provider
from homedispatch.domain.proximity.service import ProximityOutcome, ProximityPolicy, apply_ping
from homedispatch.infra import locks
from homedispatch.infra.locks import BookingLocker
from homedispatch.infra.metrics import metrics
from homedispatch.infra.payment_gateway import PaymentGateway, PaymentGatewayError, capture_idempotency_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class WriteResult(Generic[T]):
    """Outcome of a committed write plus the effects to run after commit."""

    value: T
    booking: Booking
    changed: bool
    effects: list[Effect] = field(default_factory=list)
    duplicate: bool = False

    @property
    def notifications(self) -> list[Notify]:
        return [effect for effect in self.effects if isinstance(effect, Notify)]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _locker(locker: BookingLocker | None) -> BookingLocker:
    return locker or locks.booking_locker


async def _lock_booking(session: AsyncSession, booking_id: str) -> Booking:
    stmt = (
        select(Booking)
        .where(Booking.booking_id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def _record_event(
    session: AsyncSession,
    booking: Booking,
    action: str,
    from_phase: str | None,
    actor: Actor,
    now: datetime,
    details: dict[str, Any] | None = None,
) -> None:
    session.add(
        BookingEvent(
            booking_id=booking.booking_id,
            action=action,
            from_phase=from_phase,
            to_phase=booking.phase,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            details=details or {},
            created_at=now,
        )
    )


async def _apply_escrow_effects(session: AsyncSession, result: TransitionResult, now: datetime) -> None:
    for effect in result.escrow_effects():
        if isinstance(effect, ReleaseEscrow):
            await escrow_service.release_escrow(session, effect.booking_id, effect.penalty_cents, now=now)
        elif isinstance(effect, RefundEscrow):
            await escrow_service.refund_escrow(session, effect.booking_id, now=now)


async def _commit(session: AsyncSession, booking_id: str) -> None:
    try:
        await session.commit()
    except StaleDataError as exc:
        await session.rollback()
        logger.warning("booking_version_conflict", extra={"extra": {"booking_id": booking_id}})
        raise BookingBusy() from exc


async def _run_transition(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    action: str,
    apply: Callable[[Booking, datetime], TransitionResult | Awaitable[TransitionResult]],
    *,
    locker: BookingLocker | None,
    now: datetime | None,
    details: Callable[[Booking], dict[str, Any]] | None = None,
) -> WriteResult[Booking]:
    async with _locker(locker).hold(booking_id):
        moment = now or _utcnow()
        try:
            booking = await _lock_booking(session, booking_id)
            from_phase = booking.phase
            result = apply(booking, moment)
            if inspect.isawaitable(result):
                result = await result
            if result.changed:
                await _apply_escrow_effects(session, result, moment)
                booking.updated_at = moment
                extra = details(booking) if details else None
                _record_event(session, booking, action, from_phase, actor, moment, extra)
            await _commit(session, booking_id)
        except DomainError:
            await session.rollback()
            metrics.record_transition(action, "rejected")
            raise
        except InvariantViolation:
            await session.rollback()
            metrics.record_transition(action, "invariant_violation")
            raise

    outcome = "applied" if result.changed else "noop"
    metrics.record_transition(action, outcome)
    logger.info(
        f"booking_{action}" if result.changed else f"booking_{action}_noop",
        extra={
            "extra": {
                "booking_id": booking_id,
                "from_phase": from_phase,
                "to_phase": booking.phase,
                "actor_role": actor.role,
            }
        },
    )
    return WriteResult(value=booking, booking=booking, changed=result.changed, effects=result.post_commit_effects())


async def create_booking(
    session: AsyncSession,
    actor: Actor,
    request: BookingCreateRequest,
    *,
    pricing_config: PricingConfig,
    now: datetime | None = None,
) -> WriteResult[Booking]:
    if actor.role != "customer":
        raise Forbidden("Only customers can request bookings")
    moment = now or _utcnow()
    customer = await session.get(Customer, actor.actor_id)
    if customer is None:
        raise NotFound("Customer not found")
    service = await session.get(ServiceOffering, request.service_id)
    if service is None:
        raise NotFound("Service not found")

    price = quote(service.base_price_cents, request.job_size, request.location.address, pricing_config)
    booking, result = state_machine.open_booking(
        customer,
        service,
        scheduled_for=request.normalized_schedule(),
        location=request.location.to_coordinates(),
        address=request.location.address,
        notes=request.notes,
        quote=price,
        now=moment,
    )
    session.add(booking)
    _record_event(
        session,
        booking,
        "create",
        None,
        actor,
        moment,
        {"calculated_price_cents": price.calculated_price_cents, "job_size": price.job_size},
    )
    await session.commit()
    metrics.record_transition("create")
    logger.info(
        "booking_created",
        extra={
            "extra": {
                "booking_id": booking.booking_id,
                "service_id": service.service_id,
                "calculated_price_cents": price.calculated_price_cents,
                "location_multiplier": price.location_multiplier,
            }
        },
    )
    effects = result.post_commit_effects() + [state_machine.requested_notification(booking)]
    return WriteResult(value=booking, booking=booking, changed=True, effects=effects)


async def accept_booking(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    *,
    locker: BookingLocker | None = None,
    now: datetime | None = None,
) -> WriteResult[Booking]:
    return await _run_transition(
        session,
        booking_id,
        actor,
        "accept",
        lambda booking, moment: state_machine.accept(booking, actor, moment),
        locker=locker,
        now=now,
    )


async def decline_booking(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    reason: str | None,
    *,
    locker: BookingLocker | None = None,
    now: datetime | None = None,
) -> WriteResult[Booking]:
    return await _run_transition(
        session,
        booking_id,
        actor,
        "decline",
        lambda booking, moment: state_machine.decline(booking, actor, reason, moment),
        locker=locker,
        now=now,
        details=lambda booking: {"reason": reason} if reason else {},
    )


async def _capture_with_gateway(
    gateway: PaymentGateway,
    booking: Booking,
    amount_cents: int,
    tip_cents: int,
    currency: str,
    timeout_seconds: float,
) -> str:
    try:
        with anyio.fail_after(timeout_seconds):
            return await gateway.capture(
                amount_cents=amount_cents,
                currency=currency,
                metadata={
                    "booking_id": booking.booking_id,
                    "reference": booking.reference,
                    "customer_id": booking.customer_id,
                    "tip_cents": str(tip_cents),
                },
                idempotency_key=capture_idempotency_key(booking.booking_id),
            )
    except TimeoutError as exc:
        metrics.record_payment_capture("timeout")
        logger.warning("payment_capture_timeout", extra={"extra": {"booking_id": booking.booking_id}})
        raise PaymentCaptureFailed("Payment gateway did not respond in time; please retry") from exc
    except PaymentGatewayError as exc:
        metrics.record_payment_capture("failed")
        logger.warning(
            "payment_capture_failed",
            extra={"extra": {"booking_id": booking.booking_id, "reason": type(exc).__name__}},
        )
        raise PaymentCaptureFailed("Payment could not be captured; please retry") from exc


async def capture_payment(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    amount_cents: int | None,
    tip_cents: int | None,
    gateway: PaymentGateway | None,
    *,
    policy: EscrowPolicy,
    currency: str = "zar",
    timeout_seconds: float = 10.0,
    locker: BookingLocker | None = None,
    now: datetime | None = None,
    settled_transaction_id: str | None = None,
) -> WriteResult[EscrowRecord]:
    """Capture a payment and hold it in escrow.

    Gateway captures carry a booking-scoped idempotency key, so a retry after a
    lost commit or a timeout replays the first charge. ``settled_transaction_id``
    records a charge the gateway already confirmed and skips the gateway call.
    Anything paid above the booking price is kept as tip.
    """
    tip = tip_cents or 0
    if tip < 0:
        raise ValidationFailed("Tip cannot be negative")

    async with _locker(locker).hold(booking_id):
        moment = now or _utcnow()
        try:
            booking = await _lock_booking(session, booking_id)
            already_paid = state_machine.authorize_payment(booking, actor)
            if already_paid:
                escrow = await escrow_service.get_escrow_for_booking(session, booking_id)
                if escrow is None:
                    raise InvariantViolation(f"Booking {booking_id} is marked paid but has no escrow record")
                await session.commit()
                metrics.record_transition("pay", "noop")
                logger.info("payment_duplicate", extra={"extra": {"booking_id": booking_id}})
                return WriteResult(value=escrow, booking=booking, changed=False, duplicate=True)

            price = booking.calculated_price_cents
            charge = price if amount_cents is None else amount_cents
            if charge < price:
                raise ValidationFailed(f"Payment amount must cover the booking price of {price} cents")

            total = charge + tip
            if settled_transaction_id is not None:
                transaction_id = settled_transaction_id
            elif gateway is None:
                raise PaymentCaptureFailed("No payment gateway is configured")
            else:
                transaction_id = await _capture_with_gateway(
                    gateway, booking, total, tip, currency, timeout_seconds
                )
            metrics.record_payment_capture("succeeded")

            from_phase = booking.phase
            escrow = escrow_service.open_escrow(
                session,
                booking_id,
                price,
                total - price,
                transaction_id,
                policy,
                currency,
                now=moment,
            )
            result = state_machine.mark_paid(booking, escrow.amount_cents, escrow.invoice_number)
            booking.updated_at = moment
            _record_event(
                session,
                booking,
                "pay",
                from_phase,
                actor,
                moment,
                {"amount_cents": escrow.amount_cents, "transaction_id": transaction_id},
            )
            try:
                await _commit(session, booking_id)
            except (BookingBusy, SQLAlchemyError):
                logger.error(
                    "payment_commit_failed",
                    extra={
                        "extra": {
                            "booking_id": booking_id,
                            "transaction_id": transaction_id,
                            "amount_cents": total,
                        }
                    },
                )
                raise
        except DomainError:
            await session.rollback()
            metrics.record_transition("pay", "rejected")
            raise
        except InvariantViolation:
            await session.rollback()
            metrics.record_transition("pay", "invariant_violation")
            raise

    metrics.record_transition("pay")
    logger.info(
        "payment_captured",
        extra={"extra": {"booking_id": booking_id, "amount_cents": escrow.amount_cents}},
    )
    return WriteResult(value=escrow, booking=booking, changed=True, effects=result.post_commit_effects())


async def update_live_location(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    coordinates: Coordinates,
    recorded_at: datetime | None = None,
    *,
    policy: ProximityPolicy,
    locker: BookingLocker | None = None,
    now: datetime | None = None,
) -> WriteResult[ProximityOutcome]:
    async with _locker(locker).hold(booking_id):
        moment = now or _utcnow()
        try:
            booking = await _lock_booking(session, booking_id)
            role = state_machine.authorize_location_update(booking, actor)
            gate_was_open = bool(booking.can_start_job)
            outcome = apply_ping(booking, role, coordinates, policy, moment, recorded_at)
            booking.updated_at = moment
            if outcome.can_start_job and not gate_was_open:
                _record_event(
                    session,
                    booking,
                    "start_gate_open",
                    booking.phase,
                    actor,
                    moment,
                    {"distance_meters": outcome.distance_meters},
                )
            await _commit(session, booking_id)
        except DomainError:
            await session.rollback()
            raise

    if outcome.stale:
        metrics.record_proximity("stale")
    elif outcome.distance_meters is None:
        metrics.record_proximity("waiting_for_party")
    else:
        metrics.record_proximity("within" if outcome.proximity_detected else "outside")

    effects: list[Effect] = []
    if outcome.newly_detected:
        effects.append(
            Notify(
                recipient_role="customer",
                recipient_id=booking.customer_id,
                template="provider_nearby",
                booking_id=booking.booking_id,
                context={"reference": booking.reference},
            )
        )
    return WriteResult(value=outcome, booking=booking, changed=True, effects=effects)


async def start_job(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    *,
    locker: BookingLocker | None = None,
    now: datetime | None = None,
) -> WriteResult[Booking]:
    return await _run_transition(
        session,
        booking_id,
        actor,
        "start",
        lambda booking, moment: state_machine.start(booking, actor, moment),
        locker=locker,
        now=now,
    )


async def complete_job(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    *,
    policy: EscrowPolicy,
    locker: BookingLocker | None = None,
    now: datetime | None = None,
) -> WriteResult[Booking]:
    async def _complete(booking: Booking, moment: datetime) -> TransitionResult:
        net_payout = None
        if booking.payment_status == PaymentStatus.PAID_TO_ESCROW.value:
            escrow = await escrow_service.get_escrow_for_booking(session, booking_id)
            net_payout = escrow.net_payout_cents if escrow is not None else None
        return state_machine.complete(booking, actor, moment, policy, net_payout)

    return await _run_transition(
        session,
        booking_id,
        actor,
        "complete",
        _complete,
        locker=locker,
        now=now,
        details=lambda booking: {
            "actual_duration_minutes": booking.actual_duration_minutes,
            "sla_breached": booking.sla_breached,
            "sla_penalty_cents": booking.sla_penalty_cents,
        },
    )


async def cancel_booking(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    reason: str | None = None,
    *,
    locker: BookingLocker | None = None,
    now: datetime | None = None,
) -> WriteResult[Booking]:
    return await _run_transition(
        session,
        booking_id,
        actor,
        "cancel",
        lambda booking, moment: state_machine.cancel(booking, actor, reason, moment),
        locker=locker,
        now=now,
        details=lambda booking: {"reason": reason} if reason else {},
    )


async def _refresh_provider_rating(session: AsyncSession, provider_id: str, now: datetime) -> None:
    stmt = select(
        func.avg(Booking.customer_rating_of_provider),
        func.count(Booking.customer_rating_of_provider),
    ).where(Booking.provider_id == provider_id, Booking.customer_rating_of_provider.is_not(None))
    average, count = (await session.execute(stmt)).one()
    provider = await session.get(Provider, provider_id)
    if provider is None:
        return
    provider.rating = round(float(average or 0.0), 2)
    provider.rating_count = int(count)
    provider.updated_at = now


async def _refresh_customer_rating(session: AsyncSession, customer_id: str) -> None:
    stmt = select(
        func.avg(Booking.provider_rating_of_customer),
        func.count(Booking.provider_rating_of_customer),
    ).where(Booking.customer_id == customer_id, Booking.provider_rating_of_customer.is_not(None))
    average, count = (await session.execute(stmt)).one()
    customer = await session.get(Customer, customer_id)
    if customer is None:
        return
    customer.rating = round(float(average or 0.0), 2)
    customer.rating_count = int(count)


async def rate_booking(
    session: AsyncSession,
    booking_id: str,
    actor: Actor,
    rating: int,
    review: str | None = None,
    *,
    locker: BookingLocker | None = None,
    now: datetime | None = None,
) -> WriteResult[Booking]:
    result = await _run_transition(
        session,
        booking_id,
        actor,
        "rate",
        lambda booking, moment: state_machine.rate(booking, actor, rating, review),
        locker=locker,
        now=now,
        details=lambda booking: {"rating": rating},
    )
    if result.changed:
        if actor.role == "customer":
            await _refresh_provider_rating(session, result.booking.provider_id, now or _utcnow())
        else:
            await _refresh_customer_rating(session, result.booking.customer_id)
        await session.commit()
    return result


async def find_available_providers(
    session: AsyncSession,
    skills: list[str],
    location: Coordinates,
    base_price_cents: int,
    max_distance_km: float | None,
    *,
    policy: MatchPolicy,
    pricing_config: PricingConfig,
    address: str | None = None,
) -> list[ProviderMatch]:
    return await _find_available_providers(
        session,
        skills,
        location,
        base_price_cents,
        max_distance_km,
        policy=policy,
        pricing_config=pricing_config,
        address=address,
    )


def _ensure_visible(booking: Booking, actor: Actor) -> None:
    if actor.is_admin:
        return
    state_machine.party_role(booking, actor)


async def get_booking(session: AsyncSession, booking_id: str, actor: Actor) -> Booking:
    booking = await session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    _ensure_visible(booking, actor)
    return booking


async def list_bookings_for_actor(
    session: AsyncSession,
    actor: Actor,
    *,
    status: BookingStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Booking]:
    stmt = select(Booking)
    if actor.role == "customer":
        stmt = stmt.where(Booking.customer_id == actor.actor_id)
    elif actor.role == "provider":
        stmt = stmt.where(Booking.provider_id == actor.actor_id)
    if status is not None:
        stmt = stmt.where(Booking.phase.in_([phase.value for phase in phases_with_status(status)]))
    stmt = stmt.order_by(Booking.scheduled_for.desc(), Booking.booking_id).limit(limit).offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_booking_events(session: AsyncSession, booking_id: str, actor: Actor) -> list[BookingEvent]:
    await get_booking(session, booking_id, actor)
    stmt = select(BookingEvent).where(BookingEvent.booking_id == booking_id).order_by(BookingEvent.event_id)
    result = await session.execute(stmt)
    return list(result.scalars().all())
