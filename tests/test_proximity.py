from datetime import datetime, timedelta, timezone

import pytest

from homedispatch.domain.bookings.db_models import Booking
from homedispatch.domain.geo.service import Coordinates
from homedispatch.domain.proximity.service import ProximityPolicy, apply_ping, evaluate_proximity

POLICY = ProximityPolicy(threshold_meters=2.0, dwell_seconds=300)
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
CUSTOMER_SPOT = Coordinates(lng=28.0567, lat=-26.1076)
NEXT_TO_CUSTOMER = Coordinates(lng=28.05671, lat=-26.1076)
DOWN_THE_ROAD = Coordinates(lng=28.0577, lat=-26.1076)


def _booking() -> Booking:
    return Booking(booking_id="b-1", can_start_job=False)


def _both_within_range(booking: Booking, at: datetime) -> None:
    apply_ping(booking, "customer", CUSTOMER_SPOT, POLICY, at)
    apply_ping(booking, "provider", NEXT_TO_CUSTOMER, POLICY, at)


def test_single_party_cannot_be_in_proximity():
    booking = _booking()
    outcome = apply_ping(booking, "provider", NEXT_TO_CUSTOMER, POLICY, T0)
    assert outcome.distance_meters is None
    assert outcome.proximity_detected is False
    assert outcome.can_start_job is False


def test_first_detection_starts_the_dwell_window():
    booking = _booking()
    apply_ping(booking, "customer", CUSTOMER_SPOT, POLICY, T0)
    outcome = apply_ping(booking, "provider", NEXT_TO_CUSTOMER, POLICY, T0)
    assert outcome.proximity_detected is True
    assert outcome.newly_detected is True
    assert outcome.can_start_job is False
    assert booking.proximity_started_at == T0


def test_gate_opens_after_six_minutes_together():
    booking = _booking()
    _both_within_range(booking, T0)
    outcome = apply_ping(booking, "provider", NEXT_TO_CUSTOMER, POLICY, T0 + timedelta(minutes=6))
    assert outcome.proximity_detected is True
    assert outcome.newly_detected is False
    assert outcome.can_start_job is True
    assert booking.can_start_job is True


def test_gate_stays_closed_after_two_minutes():
    booking = _booking()
    _both_within_range(booking, T0)
    outcome = apply_ping(booking, "provider", NEXT_TO_CUSTOMER, POLICY, T0 + timedelta(minutes=2))
    assert outcome.proximity_detected is True
    assert outcome.can_start_job is False


def test_gate_opens_exactly_at_dwell_boundary():
    booking = _booking()
    _both_within_range(booking, T0)
    outcome = apply_ping(booking, "customer", CUSTOMER_SPOT, POLICY, T0 + timedelta(seconds=300))
    assert outcome.can_start_job is True


def test_leaving_range_resets_the_dwell_window():
    booking = _booking()
    _both_within_range(booking, T0)
    away = apply_ping(booking, "provider", DOWN_THE_ROAD, POLICY, T0 + timedelta(minutes=4))
    assert away.proximity_detected is False
    assert booking.proximity_started_at is None

    back = apply_ping(booking, "provider", NEXT_TO_CUSTOMER, POLICY, T0 + timedelta(minutes=5))
    assert back.newly_detected is True
    later = apply_ping(booking, "provider", NEXT_TO_CUSTOMER, POLICY, T0 + timedelta(minutes=8))
    assert later.can_start_job is False


def test_open_gate_stays_latched_after_parties_separate():
    booking = _booking()
    _both_within_range(booking, T0)
    apply_ping(booking, "provider", NEXT_TO_CUSTOMER, POLICY, T0 + timedelta(minutes=6))
    outcome = apply_ping(booking, "provider", DOWN_THE_ROAD, POLICY, T0 + timedelta(minutes=7))
    assert outcome.proximity_detected is False
    assert outcome.can_start_job is True


def test_out_of_order_ping_is_ignored():
    booking = _booking()
    apply_ping(booking, "customer", CUSTOMER_SPOT, POLICY, T0, recorded_at=T0)
    stale = apply_ping(
        booking,
        "customer",
        DOWN_THE_ROAD,
        POLICY,
        T0 + timedelta(seconds=30),
        recorded_at=T0 - timedelta(seconds=10),
    )
    assert stale.stale is True
    assert booking.customer_lng == CUSTOMER_SPOT.lng
    assert booking.customer_location_at == T0


def test_naive_stored_timestamps_are_treated_as_utc():
    booking = _booking()
    _both_within_range(booking, T0)
    booking.proximity_started_at = T0.replace(tzinfo=None)
    outcome = evaluate_proximity(booking, POLICY, T0 + timedelta(minutes=5))
    assert outcome.can_start_job is True


def test_unknown_role_rejected():
    with pytest.raises(ValueError):
        apply_ping(_booking(), "admin", CUSTOMER_SPOT, POLICY, T0)
