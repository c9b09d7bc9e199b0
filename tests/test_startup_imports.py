import importlib
import os


def test_main_importable(monkeypatch):
    """Ensure the application can be imported without circular import errors."""
    monkeypatch.setenv("APP_ENV", os.getenv("APP_ENV", "dev"))

    module = importlib.import_module("homedispatch.main")
    assert getattr(module, "app", None) is not None


def test_routes_registered():
    from homedispatch.main import app

    paths = {route.path for route in app.routes}
    assert {
        "/healthz",
        "/readyz",
        "/metrics",
        "/v1/bookings",
        "/v1/bookings/{booking_id}/payments",
        "/v1/payments/history",
        "/v1/payments/webhook",
        "/v1/bookings/{booking_id}/location",
        "/v1/providers/search",
        "/v1/admin/wallet/summary",
    } <= paths
