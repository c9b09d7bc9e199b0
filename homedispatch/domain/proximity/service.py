import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from homedispatch.domain.geo.service import Coordinates, haversine_meters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProximityPolicy:
    threshold_meters: float = 2.0
    dwell_seconds: int = 300


@dataclass(frozen=True)
class ProximityOutcome:
    proximity_detected: bool
    can_start_job: bool
    distance_meters: float | None
    newly_detected: bool = False
    stale: bool = False


def ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def record_position(booking, role: str, coordinates: Coordinates, recorded_at: datetime) -> bool:
    """Store the party's position unless a newer one is already on file."""
    if role == "customer":
        previous = ensure_utc(booking.customer_location_at)
        if previous is not None and recorded_at < previous:
            return False
        booking.customer_lng = coordinates.lng
        booking.customer_lat = coordinates.lat
        booking.customer_location_at = recorded_at
        return True
    if role == "provider":
        previous = ensure_utc(booking.provider_location_at)
        if previous is not None and recorded_at < previous:
            return False
        booking.provider_lng = coordinates.lng
        booking.provider_lat = coordinates.lat
        booking.provider_location_at = recorded_at
        return True
    raise ValueError(f"Unknown party role: {role}")


def party_distance_meters(booking) -> float | None:
    if None in (booking.customer_lng, booking.customer_lat, booking.provider_lng, booking.provider_lat):
        return None
    return haversine_meters(
        Coordinates(lng=booking.customer_lng, lat=booking.customer_lat),
        Coordinates(lng=booking.provider_lng, lat=booking.provider_lat),
    )


def evaluate_proximity(booking, policy: ProximityPolicy, now: datetime) -> ProximityOutcome:
    distance = party_distance_meters(booking)
    if distance is None:
        return ProximityOutcome(
            proximity_detected=False,
            can_start_job=bool(booking.can_start_job),
            distance_meters=None,
        )

    if distance > policy.threshold_meters:
        # The dwell window restarts on the next approach; the start gate stays latched.
        booking.proximity_started_at = None
        return ProximityOutcome(
            proximity_detected=False,
            can_start_job=bool(booking.can_start_job),
            distance_meters=distance,
        )

    started_at = ensure_utc(booking.proximity_started_at)
    newly_detected = False
    if started_at is None:
        booking.proximity_started_at = now
        newly_detected = True
    elif now - started_at >= timedelta(seconds=policy.dwell_seconds):
        if not booking.can_start_job:
            logger.info(
                "proximity_dwell_satisfied",
                extra={"extra": {"booking_id": booking.booking_id, "distance_meters": round(distance, 2)}},
            )
        booking.can_start_job = True
    return ProximityOutcome(
        proximity_detected=True,
        can_start_job=bool(booking.can_start_job),
        distance_meters=distance,
        newly_detected=newly_detected,
    )


def apply_ping(
    booking,
    role: str,
    coordinates: Coordinates,
    policy: ProximityPolicy,
    now: datetime,
    recorded_at: datetime | None = None,
) -> ProximityOutcome:
    recorded = ensure_utc(recorded_at) or now
    accepted = record_position(booking, role, coordinates, recorded)
    if not accepted:
        logger.info(
            "location_ping_stale",
            extra={"extra": {"booking_id": booking.booking_id, "role": role}},
        )
    outcome = evaluate_proximity(booking, policy, now)
    if not accepted:
        return ProximityOutcome(
            proximity_detected=outcome.proximity_detected,
            can_start_job=outcome.can_start_job,
            distance_meters=outcome.distance_meters,
            newly_detected=outcome.newly_detected,
            stale=True,
        )
    return outcome
