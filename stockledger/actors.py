"""Actor identities passed into every scoped ledger operation."""

from dataclasses import dataclass
from enum import Enum as PyEnum


class ActorRole(str, PyEnum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"


@dataclass(frozen=True)
class AdminActor:
    id: str

    @property
    def role(self) -> ActorRole:
        return ActorRole.ADMIN


@dataclass(frozen=True)
class StaffActor:
    id: str
    admin_id: str

    @property
    def role(self) -> ActorRole:
        return ActorRole.STAFF


Actor = AdminActor | StaffActor


def actor_for_user(user) -> Actor | None:
    """Build the actor for a ``User`` row, or None for roles without ledger access."""
    if not user.active:
        return None
    if user.role == ActorRole.ADMIN:
        return AdminActor(id=user.id)
    if user.role == ActorRole.STAFF and user.admin_id:
        return StaffActor(id=user.id, admin_id=user.admin_id)
    return None
