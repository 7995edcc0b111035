"""
Role checks for engine operations.

Privileged roles may approve, reject and quick-enter bookings. Only the
override-capable roles may bypass the slot policy or the conflict detector,
edit the payment ledger, or delete user accounts.
"""

from database.models import User, UserRole
from engine.exceptions import AuthorizationError

PRIVILEGED_ROLES = frozenset({UserRole.CONCIERGE, UserRole.COUNCIL, UserRole.PROPERTY_MANAGER})
OVERRIDE_ROLES = frozenset({UserRole.COUNCIL, UserRole.PROPERTY_MANAGER})


def can_override(actor: User) -> bool:
    return actor.role in OVERRIDE_ROLES


def require_role(actor: User, roles: frozenset[UserRole], action: str) -> None:
    """Raise AuthorizationError unless the actor holds one of `roles`."""
    if actor.role not in roles:
        raise AuthorizationError(
            f"Role {actor.role.value} may not {action}",
            details={"actor_id": str(actor.id), "required": sorted(r.value for r in roles)},
        )
