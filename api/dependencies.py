"""
Request dependencies: the wired engine and the acting user.

Authentication happens upstream; the gateway forwards the authenticated
user id in the X-Actor-Id header.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from database.models import User
from engine.container import BookingEngine

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> BookingEngine:
    """Engine built at startup and stored on app.state."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Engine not ready")
    return engine


async def get_current_actor(
    engine: Annotated[BookingEngine, Depends(get_engine)],
    x_actor_id: Annotated[str | None, Header()] = None,
) -> User:
    """Resolve X-Actor-Id to a users row; 401 when missing or unknown."""
    if not x_actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        actor_id = UUID(x_actor_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    async with engine.session_factory() as session:
        actor = await session.get(User, actor_id)

    if actor is None:
        logger.warning(f"Unknown actor id in X-Actor-Id: {x_actor_id}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return actor


EngineDep = Annotated[BookingEngine, Depends(get_engine)]
ActorDep = Annotated[User, Depends(get_current_actor)]
