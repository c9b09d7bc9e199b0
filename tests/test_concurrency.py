import asyncio

import anyio
import pytest
from sqlalchemy import select

from homedispatch.domain.actors import Actor
from homedispatch.domain.bookings import service as booking_service
from homedispatch.domain.bookings.db_models import Booking, BookingEvent
from homedispatch.domain.bookings.statuses import BookingPhase
from homedispatch.domain.errors import BookingBusy, TransitionNotAllowed
from homedispatch.domain.escrow.db_models import EscrowRecord
from homedispatch.domain.escrow.service import EscrowPolicy
from homedispatch.infra.locks import InMemoryBookingLocker
from tests.conftest import seed_booking, seed_parties


@pytest.mark.anyio
async def test_accept_and_decline_race_has_one_winner(async_session_maker, locker):
    ids = await seed_parties(async_session_maker)
    booking_id = await seed_booking(async_session_maker, ids)
    provider = Actor(actor_id=ids["provider_id"], role="provider")

    async def attempt(action):
        async with async_session_maker() as session:
            try:
                if action == "accept":
                    await booking_service.accept_booking(session, booking_id, provider, locker=locker)
                else:
                    await booking_service.decline_booking(session, booking_id, provider, None, locker=locker)
            except TransitionNotAllowed:
                return "rejected"
            return action

    outcomes = await asyncio.gather(attempt("accept"), attempt("decline"))
    assert outcomes.count("rejected") == 1

    async with async_session_maker() as session:
        booking = await session.get(Booking, booking_id)
        events = (
            await session.execute(select(BookingEvent).where(BookingEvent.booking_id == booking_id))
        ).scalars().all()
    assert booking.request_status in {"accepted", "declined"}
    assert len(events) == 1


@pytest.mark.anyio
async def test_concurrent_payments_capture_once(async_session_maker, locker, gateway):
    ids = await seed_parties(async_session_maker)
    booking_id = await seed_booking(async_session_maker, ids, phase=BookingPhase.CONFIRMED)
    customer = Actor(actor_id=ids["customer_id"], role="customer")

    async def pay():
        async with async_session_maker() as session:
            result = await booking_service.capture_payment(
                session, booking_id, customer, None, 0, gateway, policy=EscrowPolicy(), locker=locker
            )
            return result.duplicate

    duplicates = await asyncio.gather(*(pay() for _ in range(3)))
    assert sorted(duplicates) == [False, True, True]
    assert len(gateway.captures) == 1

    async with async_session_maker() as session:
        records = (await session.execute(select(EscrowRecord))).scalars().all()
    assert len(records) == 1


@pytest.mark.anyio
async def test_lock_wait_times_out_as_busy():
    locker = InMemoryBookingLocker(timeout_seconds=0.05)
    async with locker.hold("b-1"):
        with pytest.raises(BookingBusy):
            async with locker.hold("b-1"):
                pass
    assert locker.active_count() == 0


@pytest.mark.anyio
async def test_locks_are_per_booking():
    locker = InMemoryBookingLocker(timeout_seconds=0.05)
    async with locker.hold("b-1"):
        async with locker.hold("b-2"):
            assert locker.active_count() == 2
    assert locker.active_count() == 0


@pytest.mark.anyio
async def test_waiters_are_served_in_turn():
    locker = InMemoryBookingLocker(timeout_seconds=1)
    order = []

    async def worker(name):
        async with locker.hold("b-1"):
            order.append(f"{name}:in")
            await anyio.sleep(0.01)
            order.append(f"{name}:out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (["a:in", "a:out", "b:in", "b:out"], ["b:in", "b:out", "a:in", "a:out"])
