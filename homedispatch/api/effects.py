import logging

from fastapi import BackgroundTasks, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from homedispatch.domain.bookings.effects import CustomerLocationDefault
from homedispatch.domain.bookings.service import WriteResult
from homedispatch.domain.customers import service as customer_service
from homedispatch.domain.notifications.service import dispatch_in_background
from homedispatch.infra.db import get_session_factory
from homedispatch.infra.locks import BookingLocker

logger = logging.getLogger(__name__)


def booking_locker(request: Request) -> BookingLocker | None:
    return getattr(request.app.state, "booking_locker", None)


async def apply_post_commit_effects(
    request: Request,
    session: AsyncSession,
    background_tasks: BackgroundTasks,
    result: WriteResult,
) -> None:
    for effect in result.effects:
        if not isinstance(effect, CustomerLocationDefault):
            continue
        try:
            await customer_service.apply_location_default(session, effect)
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning(
                "customer_location_default_failed",
                extra={"extra": {"customer_id": effect.customer_id, "reason": type(exc).__name__}},
            )

    notices = result.notifications
    if not notices:
        return
    session_factory = getattr(request.app.state, "db_session_factory", None) or get_session_factory()
    adapter = getattr(request.app.state, "email_adapter", None)
    background_tasks.add_task(dispatch_in_background, session_factory, adapter, notices)
