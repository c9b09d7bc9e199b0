from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class CustomerLocationDefault:
    """Store the booking location on a customer profile that has none."""

    customer_id: str
    lng: float
    lat: float
    address: str | None


@dataclass(frozen=True)
class Notify:
    recipient_role: str
    recipient_id: str
    template: str
    booking_id: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundEscrow:
    booking_id: str


@dataclass(frozen=True)
class ReleaseEscrow:
    booking_id: str
    penalty_cents: int


Effect = Union[CustomerLocationDefault, Notify, RefundEscrow, ReleaseEscrow]

# Applied by the API layer once the transaction has committed.
POST_COMMIT_EFFECTS = (CustomerLocationDefault, Notify)


@dataclass
class TransitionResult:
    changed: bool
    effects: list[Effect] = field(default_factory=list)

    def escrow_effects(self) -> list[Effect]:
        return [effect for effect in self.effects if isinstance(effect, (RefundEscrow, ReleaseEscrow))]

    def post_commit_effects(self) -> list[Effect]:
        return [effect for effect in self.effects if isinstance(effect, POST_COMMIT_EFFECTS)]


def unchanged() -> TransitionResult:
    return TransitionResult(changed=False)
