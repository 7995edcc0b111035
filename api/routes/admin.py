"""
Admin API Endpoints

Provides REST endpoints for:
- GET /api/admin/me - The acting user
- GET/POST /api/admin/users - List or create staff accounts (council / PM)
- PATCH/DELETE /api/admin/users/{id} - Update or delete a staff account (council / PM)
- GET/POST /api/admin/recipients - Notification recipients (council / PM)
- PATCH/DELETE /api/admin/recipients/{id} - Edit or remove a recipient (council / PM)
- GET /api/admin/system/breakers - Circuit breaker status for outbound services
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, status

from api.dependencies import ActorDep, EngineDep
from api.models.admin_models import (
    RecipientCreate,
    RecipientResponse,
    RecipientUpdate,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from engine.permissions import PRIVILEGED_ROLES, require_role
from shared.circuit_breaker import get_breaker_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/me")
async def get_me(actor: ActorDep) -> dict[str, str]:
    return {
        "id": str(actor.id),
        "name": actor.name,
        "email": actor.email,
        "role": actor.role.value,
    }


# =========================================================================
# USERS
# =========================================================================
@router.get("/users", response_model=list[UserResponse])
async def list_users(engine: EngineDep, actor: ActorDep) -> list[UserResponse]:
    users = await engine.admin.list_users(actor)
    return [UserResponse.model_validate(user) for user in users]


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, engine: EngineDep, actor: ActorDep) -> UserResponse:
    user = await engine.admin.create_user(actor, name=body.name, email=body.email, role=body.role)
    return UserResponse.model_validate(user)


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(user_id: UUID, body: UserUpdate, engine: EngineDep, actor: ActorDep) -> UserResponse:
    """Staff cannot edit their own account here; the system concierge keeps its role."""
    user = await engine.admin.update_user(user_id, actor, name=body.name, email=body.email, role=body.role)
    return UserResponse.model_validate(user)


@router.delete("/users/{user_id}")
async def delete_user(user_id: UUID, engine: EngineDep, actor: ActorDep) -> dict[str, Any]:
    """
    Delete a user account.

    Bookings created by the user and audit entries written by them are
    re-homed to the system concierge; approvals they made lose their
    approver reference.
    """
    await engine.admin.delete_user(user_id, actor)
    return {"ok": True, "message": "User deleted successfully"}


# =========================================================================
# NOTIFICATION RECIPIENTS
# =========================================================================
@router.get("/recipients", response_model=list[RecipientResponse])
async def list_recipients(engine: EngineDep, actor: ActorDep) -> list[RecipientResponse]:
    recipients = await engine.admin.list_recipients(actor)
    return [RecipientResponse.model_validate(r) for r in recipients]


@router.post("/recipients", response_model=RecipientResponse, status_code=status.HTTP_201_CREATED)
async def create_recipient(body: RecipientCreate, engine: EngineDep, actor: ActorDep) -> RecipientResponse:
    recipient = await engine.admin.create_recipient(
        actor,
        email=body.email,
        notify_on=body.notify_on,
        name=body.name,
        enabled=body.enabled,
    )
    return RecipientResponse.model_validate(recipient)


@router.patch("/recipients/{recipient_id}", response_model=RecipientResponse)
async def update_recipient(
    recipient_id: UUID,
    body: RecipientUpdate,
    engine: EngineDep,
    actor: ActorDep,
) -> RecipientResponse:
    recipient = await engine.admin.update_recipient(recipient_id, actor, body.model_dump(exclude_unset=True))
    return RecipientResponse.model_validate(recipient)


@router.delete("/recipients/{recipient_id}")
async def delete_recipient(recipient_id: UUID, engine: EngineDep, actor: ActorDep) -> dict[str, bool]:
    await engine.admin.delete_recipient(recipient_id, actor)
    return {"ok": True}


@router.get("/system/breakers")
async def get_breakers(actor: ActorDep) -> dict[str, dict[str, Any]]:
    require_role(actor, PRIVILEGED_ROLES, "view system status")
    return get_breaker_status()
