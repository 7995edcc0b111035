"""
System actor resolution.

Unattended work (public submissions, auto-approval, payment-driven approval,
reminders) is attributed to one configured CONCIERGE account. It is resolved
once at startup and passed to every component that needs it.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import User, UserRole
from shared.startup_validator import StartupValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemActor:
    id: UUID
    email: str


async def resolve_system_actor(
    session_factory: async_sessionmaker[AsyncSession],
    email: str,
) -> SystemActor:
    """
    Look up the configured system actor.

    Raises:
        StartupValidationError: No such user, or the user is not a CONCIERGE
    """
    async with session_factory() as session:
        user = await session.scalar(select(User).where(User.email == email))

    if user is None:
        raise StartupValidationError(f"System actor {email} not found")
    if user.role != UserRole.CONCIERGE:
        raise StartupValidationError(
            f"System actor {email} must be a CONCIERGE, found {user.role.value}"
        )

    logger.info(f"Resolved system actor {email}", extra={"actor_id": user.id})
    return SystemActor(id=user.id, email=user.email)
