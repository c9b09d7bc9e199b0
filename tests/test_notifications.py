import pytest

from homedispatch.domain.bookings.effects import Notify
from homedispatch.domain.notifications.service import dispatch_notifications, render_notification
from tests.conftest import seed_parties


class RecordingAdapter:
    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.fail = fail

    async def send_email(self, to_email: str, subject: str, body: str) -> bool:
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((to_email, subject, body))
        return True


def _notice(recipient_role: str, recipient_id: str, template: str = "booking_accepted", **context) -> Notify:
    return Notify(
        recipient_role=recipient_role,
        recipient_id=recipient_id,
        template=template,
        booking_id="b-1",
        context={"reference": "BK-20260302-ABC123", **context},
    )


def test_render_notification_includes_reference_and_details():
    subject, body = render_notification(_notice("customer", "c-1", "booking_declined", reason="Away"), "Thandi")
    assert subject == "Your booking was declined (BK-20260302-ABC123)"
    assert body.startswith("Hi Thandi,")
    assert "- reason: Away" in body


def test_render_unknown_template_uses_generic_subject():
    subject, _ = render_notification(_notice("customer", "c-1", "something_new"), None)
    assert subject.startswith("Booking update")


@pytest.mark.anyio
async def test_dispatch_sends_to_each_recipient(async_session_maker):
    ids = await seed_parties(async_session_maker)
    adapter = RecordingAdapter()
    notices = [
        _notice("customer", ids["customer_id"]),
        _notice("provider", ids["provider_id"], "payment_received", amount_cents=65000),
    ]

    async with async_session_maker() as session:
        sent = await dispatch_notifications(session, adapter, notices)

    assert sent == 2
    assert adapter.sent[0][0].startswith("customer-")
    assert adapter.sent[1][0].startswith("provider-")


@pytest.mark.anyio
async def test_dispatch_failures_do_not_raise(async_session_maker, caplog):
    ids = await seed_parties(async_session_maker)

    async with async_session_maker() as session:
        with caplog.at_level("WARNING"):
            sent = await dispatch_notifications(
                session, RecordingAdapter(fail=True), [_notice("customer", ids["customer_id"])]
            )

    assert sent == 0
    assert any(record.getMessage() == "notification_failed" for record in caplog.records)


@pytest.mark.anyio
async def test_dispatch_without_adapter_skips(async_session_maker):
    async with async_session_maker() as session:
        assert await dispatch_notifications(session, None, [_notice("customer", "missing")]) == 0


@pytest.mark.anyio
async def test_unknown_recipient_is_skipped(async_session_maker):
    adapter = RecordingAdapter()
    async with async_session_maker() as session:
        assert await dispatch_notifications(session, adapter, [_notice("customer", "missing")]) == 0
    assert adapter.sent == []
