from dataclasses import dataclass
from typing import Literal

ActorRole = Literal["customer", "provider", "admin"]


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
