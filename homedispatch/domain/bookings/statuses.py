from enum import Enum
from typing import NamedTuple


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID_TO_ESCROW = "paid_to_escrow"
    RELEASED_TO_PROVIDER = "released_to_provider"
    REFUNDED = "refunded"


class BookingPhase(str, Enum):
    """Every legal combination of status, request status and payment status."""

    REQUESTED = "requested"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"
    CONFIRMED = "confirmed"
    CONFIRMED_PAID = "confirmed_paid"
    IN_PROGRESS = "in_progress"
    IN_PROGRESS_PAID = "in_progress_paid"
    COMPLETED = "completed"
    COMPLETED_RELEASED = "completed_released"
    CANCELLED = "cancelled"
    CANCELLED_REFUNDED = "cancelled_refunded"


class StatusTriad(NamedTuple):
    status: BookingStatus
    request_status: RequestStatus
    payment_status: PaymentStatus


PHASE_TRIAD: dict[BookingPhase, StatusTriad] = {
    BookingPhase.REQUESTED: StatusTriad(BookingStatus.PENDING, RequestStatus.PENDING, PaymentStatus.UNPAID),
    BookingPhase.DECLINED: StatusTriad(BookingStatus.CANCELLED, RequestStatus.DECLINED, PaymentStatus.UNPAID),
    BookingPhase.WITHDRAWN: StatusTriad(BookingStatus.CANCELLED, RequestStatus.PENDING, PaymentStatus.UNPAID),
    BookingPhase.CONFIRMED: StatusTriad(BookingStatus.CONFIRMED, RequestStatus.ACCEPTED, PaymentStatus.UNPAID),
    BookingPhase.CONFIRMED_PAID: StatusTriad(
        BookingStatus.CONFIRMED, RequestStatus.ACCEPTED, PaymentStatus.PAID_TO_ESCROW
    ),
    BookingPhase.IN_PROGRESS: StatusTriad(BookingStatus.IN_PROGRESS, RequestStatus.ACCEPTED, PaymentStatus.UNPAID),
    BookingPhase.IN_PROGRESS_PAID: StatusTriad(
        BookingStatus.IN_PROGRESS, RequestStatus.ACCEPTED, PaymentStatus.PAID_TO_ESCROW
    ),
    BookingPhase.COMPLETED: StatusTriad(BookingStatus.COMPLETED, RequestStatus.ACCEPTED, PaymentStatus.UNPAID),
    BookingPhase.COMPLETED_RELEASED: StatusTriad(
        BookingStatus.COMPLETED, RequestStatus.ACCEPTED, PaymentStatus.RELEASED_TO_PROVIDER
    ),
    BookingPhase.CANCELLED: StatusTriad(BookingStatus.CANCELLED, RequestStatus.ACCEPTED, PaymentStatus.UNPAID),
    BookingPhase.CANCELLED_REFUNDED: StatusTriad(
        BookingStatus.CANCELLED, RequestStatus.ACCEPTED, PaymentStatus.REFUNDED
    ),
}

PAID_PHASES = {BookingPhase.CONFIRMED_PAID, BookingPhase.IN_PROGRESS_PAID}
TERMINAL_PHASES = {
    BookingPhase.DECLINED,
    BookingPhase.WITHDRAWN,
    BookingPhase.COMPLETED,
    BookingPhase.COMPLETED_RELEASED,
    BookingPhase.CANCELLED,
    BookingPhase.CANCELLED_REFUNDED,
}
# Statuses that make a provider unavailable for new matches.
BUSY_STATUSES = {BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}


def triad_for(phase: BookingPhase | str) -> StatusTriad:
    return PHASE_TRIAD[BookingPhase(phase)]


def phases_with_status(status: BookingStatus) -> set[BookingPhase]:
    return {phase for phase, triad in PHASE_TRIAD.items() if triad.status == status}
