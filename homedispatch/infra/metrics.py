import logging

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.booking_transitions = None
            self.payment_captures = None
            self.escrow_settlements = None
            self.proximity_checks = None
            self.http_5xx = None
            return

        self.booking_transitions = Counter(
            "booking_transitions_total",
            "Booking lifecycle transitions by action and outcome.",
            ["action", "outcome"],
            registry=self.registry,
        )
        self.payment_captures = Counter(
            "payment_captures_total",
            "Payment gateway capture attempts by result.",
            ["result"],
            registry=self.registry,
        )
        self.escrow_settlements = Counter(
            "escrow_settlements_total",
            "Escrow settlements by kind.",
            ["kind"],
            registry=self.registry,
        )
        self.proximity_checks = Counter(
            "proximity_checks_total",
            "Live location pings evaluated by the proximity gate.",
            ["result"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "path"],
            registry=self.registry,
        )

    def record_transition(self, action: str, outcome: str = "applied") -> None:
        if not self.enabled or self.booking_transitions is None:
            return
        self.booking_transitions.labels(action=action, outcome=outcome).inc()

    def record_payment_capture(self, result: str) -> None:
        if not self.enabled or self.payment_captures is None:
            return
        self.payment_captures.labels(result=result).inc()

    def record_settlement(self, kind: str) -> None:
        if not self.enabled or self.escrow_settlements is None:
            return
        self.escrow_settlements.labels(kind=kind).inc()

    def record_proximity(self, result: str) -> None:
        if not self.enabled or self.proximity_checks is None:
            return
        self.proximity_checks.labels(result=result).inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
