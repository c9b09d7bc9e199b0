"""Booking lifecycle transitions.

Every function here mutates only the booking it is handed and reports what it
did as a ``TransitionResult``. Persistence, locking and escrow bookkeeping live
in ``homedispatch.domain.bookings.service``.
"""

import logging
import uuid
from datetime import datetime

from homedispatch.domain.actors import Actor
from homedispatch.domain.bookings.db_models import Booking, generate_booking_reference
from homedispatch.domain.bookings.effects import (
    CustomerLocationDefault,
    Notify,
    RefundEscrow,
    ReleaseEscrow,
    TransitionResult,
    unchanged,
)
from homedispatch.domain.bookings.statuses import (
    PAID_PHASES,
    BookingPhase,
    BookingStatus,
    PaymentStatus,
    RequestStatus,
)
from homedispatch.domain.catalog.db_models import ServiceOffering
from homedispatch.domain.customers.db_models import Customer
from homedispatch.domain.errors import (
    Forbidden,
    InvariantViolation,
    PreconditionNotMet,
    TransitionNotAllowed,
    ValidationFailed,
)
from homedispatch.domain.escrow.service import EscrowPolicy, actual_duration_minutes, assess_sla
from homedispatch.domain.geo.service import Coordinates
from homedispatch.domain.pricing.service import PriceQuote
from homedispatch.domain.proximity.service import ensure_utc

logger = logging.getLogger(__name__)

RATING_MIN = 1
RATING_MAX = 5

_START_PHASES = {
    BookingPhase.CONFIRMED: BookingPhase.IN_PROGRESS,
    BookingPhase.CONFIRMED_PAID: BookingPhase.IN_PROGRESS_PAID,
}
_PAY_PHASES = {
    BookingPhase.CONFIRMED: BookingPhase.CONFIRMED_PAID,
    BookingPhase.IN_PROGRESS: BookingPhase.IN_PROGRESS_PAID,
}
_CANCEL_PHASES = {
    BookingPhase.REQUESTED: BookingPhase.WITHDRAWN,
    BookingPhase.CONFIRMED: BookingPhase.CANCELLED,
    BookingPhase.CONFIRMED_PAID: BookingPhase.CANCELLED_REFUNDED,
    BookingPhase.IN_PROGRESS: BookingPhase.CANCELLED,
    BookingPhase.IN_PROGRESS_PAID: BookingPhase.CANCELLED_REFUNDED,
}


def _require_customer(booking: Booking, actor: Actor) -> None:
    if actor.role != "customer" or actor.actor_id != booking.customer_id:
        raise Forbidden("Only the customer who made this booking can do that")


def _require_provider(booking: Booking, actor: Actor) -> None:
    if actor.role != "provider" or actor.actor_id != booking.provider_id:
        raise Forbidden("Only the provider assigned to this booking can do that")


def party_role(booking: Booking, actor: Actor) -> str:
    if actor.role == "customer" and actor.actor_id == booking.customer_id:
        return "customer"
    if actor.role == "provider" and actor.actor_id == booking.provider_id:
        return "provider"
    raise Forbidden("You are not a party to this booking")


def _notify(booking: Booking, recipient_role: str, template: str, **context) -> Notify:
    recipient_id = booking.customer_id if recipient_role == "customer" else booking.provider_id
    return Notify(
        recipient_role=recipient_role,
        recipient_id=recipient_id,
        template=template,
        booking_id=booking.booking_id,
        context={"reference": booking.reference, **context},
    )


def _set_phase(booking: Booking, phase: BookingPhase) -> None:
    booking.phase = phase.value


def open_booking(
    customer: Customer,
    service: ServiceOffering,
    *,
    scheduled_for: datetime,
    location: Coordinates,
    address: str | None,
    notes: str | None,
    quote: PriceQuote,
    now: datetime,
) -> tuple[Booking, TransitionResult]:
    if not service.is_bookable:
        raise ValidationFailed("Service is not available for booking")
    booking = Booking(
        booking_id=str(uuid.uuid4()),
        reference=generate_booking_reference(now),
        customer_id=customer.customer_id,
        service_id=service.service_id,
        provider_id=service.provider_id,
        phase=BookingPhase.REQUESTED.value,
        scheduled_for=scheduled_for,
        estimated_duration_minutes=service.base_duration_minutes,
        job_size=quote.job_size,
        notes=notes,
        base_price_cents=quote.base_price_cents,
        job_size_multiplier=quote.job_size_multiplier,
        location_multiplier=quote.location_multiplier,
        calculated_price_cents=quote.calculated_price_cents,
        job_site_lng=location.lng,
        job_site_lat=location.lat,
        job_site_address=address,
        can_start_job=False,
        sla_breached=False,
        sla_penalty_cents=0,
        created_at=now,
        updated_at=now,
    )
    effects = []
    if not customer.has_location:
        effects.append(
            CustomerLocationDefault(
                customer_id=customer.customer_id,
                lng=location.lng,
                lat=location.lat,
                address=address,
            )
        )
    return booking, TransitionResult(changed=True, effects=effects)


def requested_notification(booking: Booking) -> Notify:
    return _notify(
        booking,
        "provider",
        "booking_requested",
        scheduled_for=booking.scheduled_for.isoformat(),
        price_cents=booking.calculated_price_cents,
    )


def accept(booking: Booking, actor: Actor, now: datetime) -> TransitionResult:
    _require_provider(booking, actor)
    if booking.request_status == RequestStatus.ACCEPTED.value:
        return unchanged()
    if booking.current_phase != BookingPhase.REQUESTED:
        raise TransitionNotAllowed(f"Booking request is already {booking.request_status}; cannot accept")
    _set_phase(booking, BookingPhase.CONFIRMED)
    booking.provider_accepted_at = now
    return TransitionResult(changed=True, effects=[_notify(booking, "customer", "booking_accepted")])


def decline(booking: Booking, actor: Actor, reason: str | None, now: datetime) -> TransitionResult:
    _require_provider(booking, actor)
    if booking.request_status == RequestStatus.DECLINED.value:
        return unchanged()
    if booking.current_phase != BookingPhase.REQUESTED:
        raise TransitionNotAllowed(f"Booking request is already {booking.request_status}; cannot decline")
    _set_phase(booking, BookingPhase.DECLINED)
    booking.decline_reason = reason
    booking.provider_declined_at = now
    return TransitionResult(
        changed=True,
        effects=[_notify(booking, "customer", "booking_declined", reason=reason)],
    )


def authorize_payment(booking: Booking, actor: Actor) -> bool:
    """Check a capture may proceed. Returns True when escrow is already funded."""
    _require_customer(booking, actor)
    if booking.request_status != RequestStatus.ACCEPTED.value:
        raise TransitionNotAllowed("Booking must be accepted by the provider before payment")
    if booking.payment_status == PaymentStatus.PAID_TO_ESCROW.value:
        return True
    if booking.payment_status != PaymentStatus.UNPAID.value:
        raise TransitionNotAllowed(f"Booking payment is already {booking.payment_status}")
    if booking.current_phase not in _PAY_PHASES:
        raise TransitionNotAllowed(f"Cannot pay for a booking that is {booking.status}")
    return False


def mark_paid(booking: Booking, amount_cents: int, invoice_number: str) -> TransitionResult:
    target = _PAY_PHASES.get(booking.current_phase)
    if target is None:
        raise InvariantViolation(f"Payment recorded for booking {booking.booking_id} in phase {booking.phase}")
    _set_phase(booking, target)
    return TransitionResult(
        changed=True,
        effects=[
            _notify(booking, "provider", "payment_received", amount_cents=amount_cents),
            _notify(
                booking,
                "customer",
                "payment_receipt",
                amount_cents=amount_cents,
                invoice_number=invoice_number,
            ),
        ],
    )


def authorize_location_update(booking: Booking, actor: Actor) -> str:
    role = party_role(booking, actor)
    if booking.status not in (BookingStatus.CONFIRMED.value, BookingStatus.IN_PROGRESS.value):
        raise TransitionNotAllowed(f"Location sharing is closed for a booking that is {booking.status}")
    return role


def start(booking: Booking, actor: Actor, now: datetime) -> TransitionResult:
    _require_provider(booking, actor)
    if booking.status == BookingStatus.IN_PROGRESS.value:
        return unchanged()
    target = _START_PHASES.get(booking.current_phase)
    if target is None:
        raise TransitionNotAllowed(f"Cannot start a booking that is {booking.status}")
    if not booking.can_start_job:
        raise PreconditionNotMet(
            "Both parties must stay within range of each other for the required time before the job can start"
        )
    _set_phase(booking, target)
    booking.started_at = now
    return TransitionResult(changed=True, effects=[_notify(booking, "customer", "job_started")])


def complete(
    booking: Booking,
    actor: Actor,
    now: datetime,
    policy: EscrowPolicy,
    net_payout_cents: int | None,
) -> TransitionResult:
    _require_provider(booking, actor)
    if booking.status == BookingStatus.COMPLETED.value:
        return unchanged()
    if booking.status != BookingStatus.IN_PROGRESS.value:
        raise TransitionNotAllowed(f"Cannot complete a booking that is {booking.status}")
    started_at = ensure_utc(booking.started_at)
    if started_at is None:
        raise InvariantViolation(f"Booking {booking.booking_id} is in progress without a start time")

    completed_at = max(now, started_at)
    duration = actual_duration_minutes(started_at, completed_at)
    paid = booking.current_phase in PAID_PHASES
    if paid and net_payout_cents is None:
        raise InvariantViolation(f"Booking {booking.booking_id} is paid but no escrow payout was supplied")
    assessment = assess_sla(net_payout_cents or 0, booking.estimated_duration_minutes, duration, policy)

    booking.completed_at = completed_at
    booking.actual_duration_minutes = duration
    booking.sla_breached = assessment.breached
    booking.sla_penalty_cents = assessment.penalty_cents
    effects = []
    if paid:
        _set_phase(booking, BookingPhase.COMPLETED_RELEASED)
        booking.provider_payout_cents = net_payout_cents - assessment.penalty_cents
        effects.append(ReleaseEscrow(booking_id=booking.booking_id, penalty_cents=assessment.penalty_cents))
    else:
        _set_phase(booking, BookingPhase.COMPLETED)
    if assessment.breached:
        logger.info(
            "sla_breached",
            extra={
                "extra": {
                    "booking_id": booking.booking_id,
                    "overrun_minutes": assessment.overrun_minutes,
                    "penalty_cents": assessment.penalty_cents,
                }
            },
        )
    effects.append(_notify(booking, "customer", "job_completed", duration_minutes=duration))
    return TransitionResult(changed=True, effects=effects)


def cancel(booking: Booking, actor: Actor, reason: str | None, now: datetime) -> TransitionResult:
    if actor.is_admin:
        cancelled_by = "admin"
    else:
        cancelled_by = party_role(booking, actor)
    if booking.status == BookingStatus.CANCELLED.value:
        return unchanged()
    if booking.status == BookingStatus.IN_PROGRESS.value and not actor.is_admin:
        raise TransitionNotAllowed("A job in progress can only be cancelled by an administrator")
    target = _CANCEL_PHASES.get(booking.current_phase)
    if target is None:
        raise TransitionNotAllowed(f"Cannot cancel a booking that is {booking.status}")

    refund = booking.current_phase in PAID_PHASES
    _set_phase(booking, target)
    booking.cancelled_at = now
    booking.cancelled_by = cancelled_by
    booking.cancellation_reason = reason
    effects = []
    if refund:
        effects.append(RefundEscrow(booking_id=booking.booking_id))
    for recipient in ("customer", "provider"):
        if recipient != cancelled_by:
            effects.append(
                _notify(booking, recipient, "booking_cancelled", cancelled_by=cancelled_by, reason=reason)
            )
    return TransitionResult(changed=True, effects=effects)


def rate(booking: Booking, actor: Actor, rating: int, review: str | None) -> TransitionResult:
    role = party_role(booking, actor)
    if isinstance(rating, bool) or not isinstance(rating, int) or not RATING_MIN <= rating <= RATING_MAX:
        raise ValidationFailed(f"Rating must be a whole number between {RATING_MIN} and {RATING_MAX}")
    if booking.status != BookingStatus.COMPLETED.value:
        raise TransitionNotAllowed("Only completed bookings can be rated")

    if role == "customer":
        current, current_review = booking.customer_rating_of_provider, booking.customer_review
    else:
        current, current_review = booking.provider_rating_of_customer, booking.provider_review
    if current is not None:
        if current == rating and current_review == review:
            return unchanged()
        raise TransitionNotAllowed("This booking has already been rated")

    if role == "customer":
        booking.customer_rating_of_provider = rating
        booking.customer_review = review
        recipient = "provider"
    else:
        booking.provider_rating_of_customer = rating
        booking.provider_review = review
        recipient = "customer"
    return TransitionResult(changed=True, effects=[_notify(booking, recipient, "rating_received", rating=rating)])
