import asyncio

import pytest
from sqlalchemy import select

from homedispatch.domain.bookings.statuses import BookingPhase
from homedispatch.domain.escrow.db_models import EscrowRecord
from homedispatch.settings import settings
from tests.conftest import bearer_headers, seed_booking, seed_parties


class StaticVerifier:
    def __init__(self, event=None, error: Exception | None = None) -> None:
        self.event = event
        self.error = error

    def verify_webhook(self, payload: bytes, signature: str | None):
        if self.error is not None:
            raise self.error
        return self.event


def _confirmed(async_session_maker) -> tuple[dict, str]:
    ids = asyncio.run(seed_parties(async_session_maker))
    booking_id = asyncio.run(seed_booking(async_session_maker, ids, phase=BookingPhase.CONFIRMED))
    return ids, booking_id


def _succeeded_event(booking_id: str, customer_id: str, amount: int = 65000, tip: int = 0) -> dict:
    return {
        "id": "evt_1",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": "pi_webhook",
                "amount": amount,
                "currency": "zar",
                "metadata": {"booking_id": booking_id, "customer_id": customer_id, "tip_cents": str(tip)},
            }
        },
    }


def _escrow_rows(async_session_maker) -> list[EscrowRecord]:
    async def load():
        async with async_session_maker() as session:
            return (await session.execute(select(EscrowRecord))).scalars().all()

    return asyncio.run(load())


@pytest.fixture()
def webhook_secret():
    settings.stripe_webhook_secret = "whsec_test"


def test_payment_history_is_scoped_to_caller(client, async_session_maker):
    mine_ids, mine = _confirmed(async_session_maker)
    other_ids, other = _confirmed(async_session_maker)
    me = bearer_headers(mine_ids["customer_id"], "customer")
    someone_else = bearer_headers(other_ids["customer_id"], "customer")

    assert client.post(f"/v1/bookings/{mine}/payments", headers=me, json={}).status_code == 200
    assert client.post(f"/v1/bookings/{other}/payments", headers=someone_else, json={}).status_code == 200

    history = client.get("/v1/payments/history", headers=me)
    assert history.status_code == 200
    transactions = history.json()["transactions"]
    assert [item["booking_id"] for item in transactions] == [mine]
    assert transactions[0]["invoice_number"].startswith("INV-")

    provider_history = client.get(
        "/v1/payments/history", headers=bearer_headers(other_ids["provider_id"], "provider")
    )
    assert [item["booking_id"] for item in provider_history.json()["transactions"]] == [other]


def test_payment_history_requires_token(client):
    assert client.get("/v1/payments/history").status_code == 401


def test_webhook_disabled_without_secret(client):
    settings.stripe_webhook_secret = None
    response = client.post("/v1/payments/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
    assert response.status_code == 503


def test_webhook_rejects_bad_signature(client, webhook_secret):
    client.app.state.stripe_webhook_verifier = StaticVerifier(error=ValueError("bad signature"))
    response = client.post("/v1/payments/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
    assert response.status_code == 400


def test_webhook_records_charge_the_api_never_committed(client, async_session_maker, gateway, webhook_secret):
    ids, booking_id = _confirmed(async_session_maker)
    client.app.state.stripe_webhook_verifier = StaticVerifier(
        _succeeded_event(booking_id, ids["customer_id"], amount=66000, tip=1000)
    )

    response = client.post("/v1/payments/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": True}

    rows = _escrow_rows(async_session_maker)
    assert len(rows) == 1
    assert rows[0].transaction_id == "pi_webhook"
    assert rows[0].amount_cents == 66000
    assert rows[0].tip_cents == 1000

    retry = client.post(
        f"/v1/bookings/{booking_id}/payments",
        headers=bearer_headers(ids["customer_id"], "customer"),
        json={"tip_cents": 1000},
    )
    assert retry.status_code == 200
    assert retry.json()["duplicate"] is True
    assert gateway.captures == []


def test_webhook_after_api_capture_is_a_duplicate(client, async_session_maker, gateway, webhook_secret):
    ids, booking_id = _confirmed(async_session_maker)
    paid = client.post(
        f"/v1/bookings/{booking_id}/payments",
        headers=bearer_headers(ids["customer_id"], "customer"),
        json={},
    )
    assert paid.status_code == 200

    client.app.state.stripe_webhook_verifier = StaticVerifier(_succeeded_event(booking_id, ids["customer_id"]))
    response = client.post("/v1/payments/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})

    assert response.json() == {"received": True, "processed": False}
    assert len(_escrow_rows(async_session_maker)) == 1
    assert len(gateway.captures) == 1


def test_webhook_ignores_other_events(client, webhook_secret):
    client.app.state.stripe_webhook_verifier = StaticVerifier({"id": "evt_2", "type": "charge.refunded", "data": {}})
    response = client.post("/v1/payments/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
    assert response.json() == {"received": True, "processed": False}


def test_webhook_for_closed_booking_is_acknowledged(client, async_session_maker, webhook_secret, caplog):
    ids = asyncio.run(seed_parties(async_session_maker))
    booking_id = asyncio.run(seed_booking(async_session_maker, ids, phase=BookingPhase.CANCELLED))
    client.app.state.stripe_webhook_verifier = StaticVerifier(_succeeded_event(booking_id, ids["customer_id"]))

    with caplog.at_level("ERROR"):
        response = client.post("/v1/payments/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})

    assert response.json() == {"received": True, "processed": False}
    assert any(record.getMessage() == "stripe_webhook_rejected" for record in caplog.records)
    assert _escrow_rows(async_session_maker) == []
