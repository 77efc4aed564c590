"""Actor identity passed into lifecycle and assignment operations."""

from dataclasses import dataclass

from helpdesk_engine.config import ActorRole


@dataclass(frozen=True)
class Actor:
    """Who is acting, as vouched for by the external identity boundary."""
    user_id: int
    role: ActorRole

    @property
    def is_staff(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.AGENT)
