import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from homedispatch.api.effects import apply_post_commit_effects, booking_locker
from homedispatch.api.identity import get_actor
from homedispatch.dependencies import get_escrow_policy, get_pricing_config, get_proximity_policy
from homedispatch.domain.actors import Actor
from homedispatch.domain.bookings import schemas as booking_schemas
from homedispatch.domain.bookings import service as booking_service
from homedispatch.domain.bookings.statuses import BookingStatus
from homedispatch.infra.db import get_db_session

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/v1/bookings", response_model=booking_schemas.BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: Request,
    payload: booking_schemas.BookingCreateRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingResponse:
    result = await booking_service.create_booking(
        session,
        actor,
        payload,
        pricing_config=get_pricing_config(),
    )
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.BookingResponse.from_booking(result.booking)


@router.get("/v1/bookings", response_model=booking_schemas.BookingListResponse)
async def list_bookings(
    status_filter: BookingStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingListResponse:
    bookings = await booking_service.list_bookings_for_actor(
        session, actor, status=status_filter, limit=limit, offset=offset
    )
    return booking_schemas.BookingListResponse(
        bookings=[booking_schemas.BookingResponse.from_booking(booking) for booking in bookings]
    )


@router.get("/v1/bookings/{booking_id}", response_model=booking_schemas.BookingResponse)
async def get_booking(
    booking_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingResponse:
    booking = await booking_service.get_booking(session, booking_id, actor)
    return booking_schemas.BookingResponse.from_booking(booking)


@router.get("/v1/bookings/{booking_id}/events", response_model=list[booking_schemas.BookingEventResponse])
async def list_booking_events(
    booking_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> list[booking_schemas.BookingEventResponse]:
    events = await booking_service.list_booking_events(session, booking_id, actor)
    return [
        booking_schemas.BookingEventResponse(
            event_id=event.event_id,
            action=event.action,
            from_phase=event.from_phase,
            to_phase=event.to_phase,
            actor_id=event.actor_id,
            actor_role=event.actor_role,
            details=event.details or {},
            created_at=event.created_at,
        )
        for event in events
    ]


@router.post("/v1/bookings/{booking_id}/accept", response_model=booking_schemas.BookingResponse)
async def accept_booking(
    booking_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingResponse:
    result = await booking_service.accept_booking(session, booking_id, actor, locker=booking_locker(request))
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.BookingResponse.from_booking(result.booking)


@router.post("/v1/bookings/{booking_id}/decline", response_model=booking_schemas.BookingResponse)
async def decline_booking(
    booking_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: booking_schemas.DeclineRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingResponse:
    reason = payload.reason if payload else None
    result = await booking_service.decline_booking(
        session, booking_id, actor, reason, locker=booking_locker(request)
    )
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.BookingResponse.from_booking(result.booking)


@router.post("/v1/bookings/{booking_id}/location", response_model=booking_schemas.ProximityResponse)
async def update_location(
    booking_id: str,
    request: Request,
    payload: booking_schemas.LocationUpdateRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.ProximityResponse:
    result = await booking_service.update_live_location(
        session,
        booking_id,
        actor,
        payload.to_coordinates(),
        payload.recorded_at,
        policy=get_proximity_policy(),
        locker=booking_locker(request),
    )
    await apply_post_commit_effects(request, session, background_tasks, result)
    outcome = result.value
    return booking_schemas.ProximityResponse(
        proximity_detected=outcome.proximity_detected,
        can_start_job=outcome.can_start_job,
        distance_meters=round(outcome.distance_meters, 2) if outcome.distance_meters is not None else None,
        stale=outcome.stale,
    )


@router.post("/v1/bookings/{booking_id}/start", response_model=booking_schemas.BookingResponse)
async def start_job(
    booking_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingResponse:
    result = await booking_service.start_job(session, booking_id, actor, locker=booking_locker(request))
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.BookingResponse.from_booking(result.booking)


@router.post("/v1/bookings/{booking_id}/complete", response_model=booking_schemas.BookingResponse)
async def complete_job(
    booking_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingResponse:
    result = await booking_service.complete_job(
        session,
        booking_id,
        actor,
        policy=get_escrow_policy(),
        locker=booking_locker(request),
    )
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.BookingResponse.from_booking(result.booking)


@router.post("/v1/bookings/{booking_id}/cancel", response_model=booking_schemas.BookingResponse)
async def cancel_booking(
    booking_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: booking_schemas.CancelRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingResponse:
    reason = payload.reason if payload else None
    result = await booking_service.cancel_booking(
        session, booking_id, actor, reason, locker=booking_locker(request)
    )
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.BookingResponse.from_booking(result.booking)


@router.post("/v1/bookings/{booking_id}/rate", response_model=booking_schemas.BookingResponse)
async def rate_booking(
    booking_id: str,
    request: Request,
    payload: booking_schemas.RateRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.BookingResponse:
    result = await booking_service.rate_booking(
        session,
        booking_id,
        actor,
        payload.rating,
        payload.review,
        locker=booking_locker(request),
    )
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.BookingResponse.from_booking(result.booking)
