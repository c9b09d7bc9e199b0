import json
import logging

from homedispatch.infra.logging import RedactingJsonFormatter, redact_pii


def _format(message: str, **extra) -> dict:
    record = logging.LogRecord("homedispatch.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(RedactingJsonFormatter().format(record))


def test_redact_pii_masks_contact_details():
    text = "Call 082 555 1234 or +27 11 555 1234, mail thandi@example.com, at 12 Rivonia Road"
    redacted = redact_pii(text)
    assert "082" not in redacted
    assert "thandi@example.com" not in redacted
    assert "Rivonia Road" not in redacted
    assert "[REDACTED_PHONE]" in redacted
    assert "[REDACTED_EMAIL]" in redacted


def test_formatter_redacts_structured_fields():
    payload = _format(
        "booking_created",
        extra={"email": "a@b.co", "job_site_address": "1 Main Street", "booking_id": "b-1"},
    )
    assert payload["message"] == "booking_created"
    assert payload["email"] == "[REDACTED]"
    assert payload["job_site_address"] == "[REDACTED]"
    assert payload["booking_id"] == "b-1"


def test_formatter_coarsens_coordinates():
    payload = _format("location_ping", extra={"lat": -26.107612, "lng": 28.056734})
    assert payload["lat"] == -26.11
    assert payload["lng"] == 28.06


def test_formatter_includes_request_fields():
    payload = _format("request", request_id="req-1", method="POST", path="/v1/bookings", status_code=201)
    assert payload["request_id"] == "req-1"
    assert payload["status_code"] == 201
