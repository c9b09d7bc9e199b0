from __future__ import annotations

import logging
import secrets
from typing import Any, Protocol

import anyio

from homedispatch.settings import settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    pass


class PaymentGateway(Protocol):
    async def capture(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> str: ...


def capture_idempotency_key(booking_id: str) -> str:
    return f"booking-capture-{booking_id}"


class StripePaymentGateway:
    def __init__(
        self,
        *,
        secret_key: str | None,
        webhook_secret: str | None = None,
        stripe_sdk: Any | None = None,
    ) -> None:
        if stripe_sdk is None:
            import stripe as stripe_sdk  # type: ignore

        self.stripe = stripe_sdk
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def _create_and_confirm(
        self, amount_cents: int, currency: str, metadata: dict[str, str], idempotency_key: str
    ) -> Any:
        self.stripe.api_key = self.secret_key
        payload: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "confirm": True,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        }
        if settings.app_env == "dev":
            payload["payment_method"] = "pm_card_visa"
        return self.stripe.PaymentIntent.create(**payload)

    async def capture(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> str:
        if not self.secret_key:
            raise PaymentGatewayError("Stripe secret key not configured")
        try:
            intent = await anyio.to_thread.run_sync(
                self._create_and_confirm, amount_cents, currency, metadata, idempotency_key
            )
        except self.stripe.error.StripeError as exc:
            raise PaymentGatewayError(str(exc)) from exc
        status = getattr(intent, "status", None)
        # requires_capture is authorised but not captured.
        if status != "succeeded":
            raise PaymentGatewayError(f"Payment intent ended in status {status}")
        return intent.id

    def verify_webhook(self, payload: bytes, signature: str | None) -> Any:
        if not self.webhook_secret:
            raise ValueError("Stripe webhook secret not configured")
        if not signature:
            raise ValueError("Missing Stripe signature header")
        return self.stripe.Webhook.construct_event(
            payload=payload, sig_header=signature, secret=self.webhook_secret
        )


class SimulatedPaymentGateway:
    """Approves every capture; for local development and tests.

    A repeated idempotency key replays the first capture instead of charging again.
    """

    def __init__(self) -> None:
        self.captures: list[dict[str, Any]] = []
        self._by_key: dict[str, dict[str, Any]] = {}

    async def capture(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> str:
        previous = self._by_key.get(idempotency_key)
        if previous is not None:
            if previous["amount_cents"] != amount_cents:
                raise PaymentGatewayError("Idempotency key reused with a different amount")
            return previous["transaction_id"]
        capture = {
            "transaction_id": f"sim_{secrets.token_hex(8)}",
            "amount_cents": amount_cents,
            "currency": currency,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        }
        self.captures.append(capture)
        self._by_key[idempotency_key] = capture
        return capture["transaction_id"]


def build_gateway(app_settings) -> PaymentGateway:
    if app_settings.payment_gateway_mode == "stripe":
        return StripePaymentGateway(
            secret_key=app_settings.stripe_secret_key,
            webhook_secret=getattr(app_settings, "stripe_webhook_secret", None),
        )
    return SimulatedPaymentGateway()


def resolve_gateway(app_state: Any) -> PaymentGateway:
    gateway = getattr(app_state, "payment_gateway", None)
    if gateway is None:
        gateway = build_gateway(settings)
        app_state.payment_gateway = gateway
    return gateway


def resolve_webhook_verifier(app_state: Any) -> StripePaymentGateway:
    verifier = getattr(app_state, "stripe_webhook_verifier", None)
    if verifier is None:
        verifier = StripePaymentGateway(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
        app_state.stripe_webhook_verifier = verifier
    return verifier
