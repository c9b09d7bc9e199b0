import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from homedispatch.api.effects import apply_post_commit_effects, booking_locker
from homedispatch.api.identity import get_actor
from homedispatch.dependencies import get_escrow_policy
from homedispatch.domain.actors import Actor
from homedispatch.domain.bookings import schemas as booking_schemas
from homedispatch.domain.bookings import service as booking_service
from homedispatch.domain.errors import DomainError
from homedispatch.domain.escrow import service as escrow_service
from homedispatch.infra.db import get_db_session
from homedispatch.infra.payment_gateway import resolve_gateway, resolve_webhook_verifier
from homedispatch.settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)


def _safe_get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


@router.post("/v1/bookings/{booking_id}/payments", response_model=booking_schemas.PaymentResponse)
async def capture_payment(
    booking_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: booking_schemas.PaymentRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.PaymentResponse:
    payload = payload or booking_schemas.PaymentRequest()
    result = await booking_service.capture_payment(
        session,
        booking_id,
        actor,
        payload.amount_cents,
        payload.tip_cents,
        resolve_gateway(request.app.state),
        policy=get_escrow_policy(),
        currency=settings.payment_currency,
        timeout_seconds=settings.payment_capture_timeout_seconds,
        locker=booking_locker(request),
    )
    await apply_post_commit_effects(request, session, background_tasks, result)
    return booking_schemas.PaymentResponse(
        payment_status=result.booking.payment_status,
        duplicate=result.duplicate,
        escrow=booking_schemas.EscrowResponse.from_record(result.value),
    )


@router.get("/v1/payments/history", response_model=booking_schemas.PaymentHistoryResponse)
async def payment_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.PaymentHistoryResponse:
    if actor.role == "customer":
        records = await escrow_service.list_transactions(
            session, customer_id=actor.actor_id, limit=limit, offset=offset
        )
    else:
        records = await escrow_service.list_transactions(
            session, provider_id=actor.actor_id, limit=limit, offset=offset
        )
    return booking_schemas.PaymentHistoryResponse(
        transactions=[booking_schemas.EscrowResponse.from_record(record) for record in records]
    )


@router.post("/v1/payments/webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, bool]:
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe webhook disabled")

    payload = await request.body()
    verifier = resolve_webhook_verifier(request.app.state)
    try:
        event = verifier.verify_webhook(payload=payload, signature=request.headers.get("Stripe-Signature"))
    except Exception as exc:  # noqa: BLE001
        logger.warning("stripe_webhook_invalid", extra={"extra": {"reason": type(exc).__name__}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe webhook") from exc

    event_type = _safe_get(event, "type")
    intent = _safe_get(_safe_get(event, "data", {}) or {}, "object", {}) or {}
    metadata = _safe_get(intent, "metadata", {}) or {}
    booking_id = _safe_get(metadata, "booking_id")
    customer_id = _safe_get(metadata, "customer_id")
    amount = _safe_get(intent, "amount")
    if event_type != "payment_intent.succeeded" or not booking_id or not customer_id or amount is None:
        logger.info("stripe_webhook_ignored", extra={"extra": {"event_type": event_type}})
        return {"received": True, "processed": False}

    tip = int(_safe_get(metadata, "tip_cents") or 0)
    transaction_id = str(_safe_get(intent, "id"))
    try:
        result = await booking_service.capture_payment(
            session,
            booking_id,
            Actor(actor_id=customer_id, role="customer"),
            int(amount) - tip,
            tip,
            None,
            policy=get_escrow_policy(),
            currency=_safe_get(intent, "currency") or settings.payment_currency,
            locker=booking_locker(request),
            settled_transaction_id=transaction_id,
        )
    except DomainError as exc:
        if exc.retryable:
            raise
        logger.error(
            "stripe_webhook_rejected",
            extra={
                "extra": {
                    "booking_id": booking_id,
                    "transaction_id": transaction_id,
                    "reason": type(exc).__name__,
                }
            },
        )
        return {"received": True, "processed": False}

    await apply_post_commit_effects(request, session, background_tasks, result)
    logger.info(
        "stripe_webhook_processed",
        extra={"extra": {"booking_id": booking_id, "duplicate": result.duplicate}},
    )
    return {"received": True, "processed": result.changed}
