import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from homedispatch.api.admin_auth import AdminIdentity, require_admin
from homedispatch.api.effects import apply_post_commit_effects, booking_locker
from homedispatch.domain.bookings import schemas as booking_schemas
from homedispatch.domain.bookings import service as booking_service
from homedispatch.domain.bookings.statuses import BookingStatus
from homedispatch.domain.escrow import service as escrow_service
from homedispatch.infra.db import get_db_session

router = APIRouter()
logger = logging.getLogger(__name__)


class WalletSummaryResponse(BaseModel):
    total_held_cents: int
    total_released_cents: int
    total_refunded_cents: int
    total_commission_cents: int
    total_penalty_cents: int
    record_count: int


class WalletTransactionsResponse(BaseModel):
    transactions: list[booking_schemas.EscrowResponse]


@router.get("/v1/admin/bookings", response_model=booking_schemas.BookingListResponse)
async def admin_list_bookings(
    status_filter: BookingStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> booking_schemas.BookingListResponse:
    bookings = await booking_service.list_bookings_for_actor(
        session, identity.as_actor(), status=status_filter, limit=limit, offset=offset
    )
    return booking_schemas.BookingListResponse(
        bookings=[booking_schemas.BookingResponse.from_booking(booking) for booking in bookings]
    )


@router.post("/v1/admin/bookings/{booking_id}/cancel", response_model=booking_schemas.BookingResponse)
async def admin_cancel_booking(
    booking_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: booking_schemas.CancelRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> booking_schemas.BookingResponse:
    reason = payload.reason if payload else None
    result = await booking_service.cancel_booking(
        session, booking_id, identity.as_actor(), reason, locker=booking_locker(request)
    )
    logger.info(
        "admin_booking_cancelled",
        extra={"extra": {"booking_id": booking_id, "admin": identity.username, "changed": result.changed}},
    )
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.BookingResponse.from_booking(result.booking)


@router.get("/v1/admin/wallet/summary", response_model=WalletSummaryResponse)
async def wallet_summary(
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> WalletSummaryResponse:
    del identity
    summary = await escrow_service.wallet_summary(session)
    return WalletSummaryResponse(
        total_held_cents=summary.total_held_cents,
        total_released_cents=summary.total_released_cents,
        total_refunded_cents=summary.total_refunded_cents,
        total_commission_cents=summary.total_commission_cents,
        total_penalty_cents=summary.total_penalty_cents,
        record_count=summary.record_count,
    )


@router.get("/v1/admin/wallet/transactions", response_model=WalletTransactionsResponse)
async def wallet_transactions(
    status_filter: str | None = Query(None, alias="status", pattern="^(held|released|refunded)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db_session),
    identity: AdminIdentity = Depends(require_admin),
) -> WalletTransactionsResponse:
    del identity
    records = await escrow_service.list_transactions(session, status=status_filter, limit=limit, offset=offset)
    return WalletTransactionsResponse(
        transactions=[booking_schemas.EscrowResponse.from_record(record) for record in records]
    )
