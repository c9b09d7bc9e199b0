import logging
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from homedispatch.domain.bookings.effects import Notify
from homedispatch.domain.customers.db_models import Customer
from homedispatch.domain.providers.db_models import Provider
from homedispatch.infra.email import EmailAdapter

logger = logging.getLogger(__name__)

SUBJECTS = {
    "booking_requested": "New booking request",
    "booking_accepted": "Your booking was accepted",
    "booking_declined": "Your booking was declined",
    "payment_received": "Payment secured in escrow",
    "payment_receipt": "Payment receipt",
    "provider_nearby": "Your provider has arrived",
    "job_started": "Your job has started",
    "job_completed": "Your job is complete",
    "booking_cancelled": "Booking cancelled",
    "rating_received": "You received a new rating",
}


def render_notification(notice: Notify, name: str | None) -> tuple[str, str]:
    headline = SUBJECTS.get(notice.template, "Booking update")
    reference = notice.context.get("reference")
    subject = f"{headline} ({reference})" if reference else headline
    lines = [f"Hi {name or 'there'},", "", f"{headline}."]
    details = _details(notice.context)
    if details:
        lines.extend(["", "Details:"])
        lines.extend(f"- {key}: {value}" for key, value in details.items())
    return subject, "\n".join(lines)


def _details(context: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in context.items() if key != "reference" and value is not None}


async def _recipient(session: AsyncSession, notice: Notify) -> Customer | Provider | None:
    model = Customer if notice.recipient_role == "customer" else Provider
    return await session.get(model, notice.recipient_id)


async def dispatch_notifications(
    session: AsyncSession,
    adapter: EmailAdapter | None,
    notices: Iterable[Notify],
) -> int:
    """Send booking notices. Failures are logged and never raised."""
    sent = 0
    for notice in notices:
        if adapter is None:
            logger.info(
                "notification_skipped",
                extra={"extra": {"booking_id": notice.booking_id, "template": notice.template}},
            )
            continue
        try:
            recipient = await _recipient(session, notice)
            email = getattr(recipient, "email", None)
            if not email:
                continue
            subject, body = render_notification(notice, getattr(recipient, "name", None))
            if await adapter.send_email(to_email=email, subject=subject, body=body):
                sent += 1
                logger.info(
                    "notification_sent",
                    extra={"extra": {"booking_id": notice.booking_id, "template": notice.template}},
                )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "notification_failed",
                extra={
                    "extra": {
                        "booking_id": notice.booking_id,
                        "template": notice.template,
                        "reason": type(exc).__name__,
                    }
                },
            )
    return sent


async def dispatch_in_background(
    session_factory: async_sessionmaker[AsyncSession],
    adapter: EmailAdapter | None,
    notices: list[Notify],
) -> None:
    if not notices:
        return
    async with session_factory() as session:
        await dispatch_notifications(session, adapter, notices)
