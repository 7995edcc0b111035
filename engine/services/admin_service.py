"""
Administration of staff accounts, notification recipients and bookings.

Deletion never orphans or cascades away the audit trail:
- deleting a booking nulls audit_log.booking_id and approval_links.booking_id,
  then records a BOOKING_DELETED entry holding a snapshot of the booking
- deleting a user re-homes bookings.created_by and audit_log.actor_id to the
  system actor and nulls bookings.approved_by

The system actor and the last CONCIERGE account can never be deleted or
demoted, since unattended bookings and approvals are attributed to them.
Staff cannot modify or delete their own account from here.
"""

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import ApprovalLink, AuditLog, Booking, NotificationRecipient, NotifyEvent, User, UserRole
from engine.exceptions import AuthorizationError, BookingValidationError, NotFoundError
from engine.permissions import OVERRIDE_ROLES, PRIVILEGED_ROLES, require_role
from engine.services.audit_service import AuditAction, log_audit
from engine.system_actor import SystemActor

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AdminService:
    """
    Account, recipient and deletion operations for privileged staff.

    Usage:
        admin = AdminService(session_factory, system_actor)
        await admin.delete_booking(booking_id, actor)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        system_actor: SystemActor,
    ):
        self.session_factory = session_factory
        self.system_actor = system_actor

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    async def delete_booking(self, booking_id: UUID, actor: User) -> None:
        """
        Delete a booking, keeping its audit history.

        Raises:
            AuthorizationError: Actor is not privileged
            NotFoundError: No such booking
        """
        require_role(actor, PRIVILEGED_ROLES, "delete bookings")

        async with self.session_factory() as session:
            try:
                booking = await session.get(Booking, booking_id)
                if booking is None:
                    raise NotFoundError(f"Booking {booking_id} not found")
                snapshot = booking.snapshot()

                await session.execute(
                    update(AuditLog).where(AuditLog.booking_id == booking_id).values(booking_id=None)
                )
                await session.execute(
                    update(ApprovalLink).where(ApprovalLink.booking_id == booking_id).values(booking_id=None)
                )
                await session.delete(booking)
                await session.flush()

                await log_audit(
                    session,
                    actor.id,
                    AuditAction.BOOKING_DELETED,
                    None,
                    {"booking_id": str(booking_id), "snapshot": snapshot},
                )
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error deleting booking: {e}", exc_info=True, extra={"booking_id": booking_id})
                await session.rollback()
                raise

        logger.info("Booking deleted", extra={"booking_id": booking_id, "actor_id": actor.id})

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def list_users(self, actor: User) -> list[User]:
        """All staff accounts, newest first."""
        require_role(actor, OVERRIDE_ROLES, "list users")

        async with self.session_factory() as session:
            result = await session.execute(select(User).order_by(User.created_at.desc()))
            return list(result.scalars().all())

    async def create_user(self, actor: User, name: str, email: str, role: UserRole) -> User:
        """
        Create a staff account.

        Raises:
            AuthorizationError: Actor is not COUNCIL / PROPERTY_MANAGER
            BookingValidationError: Email already in use
        """
        require_role(actor, OVERRIDE_ROLES, "create users")
        email = normalize_email(email)

        async with self.session_factory() as session:
            try:
                await self._ensure_email_free(session, User, email)

                user = User(name=name, email=email, role=role)
                session.add(user)
                await session.flush()

                await log_audit(
                    session,
                    actor.id,
                    AuditAction.USER_CREATED,
                    None,
                    {"user_id": str(user.id), "email": email, "role": role.value},
                )
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error creating user {email}: {e}", exc_info=True)
                await session.rollback()
                raise

        logger.info(f"User {email} created with role {role.value}", extra={"actor_id": actor.id})
        return user

    async def update_user(
        self,
        user_id: UUID,
        actor: User,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> User:
        """
        Change another account's name, email or role.

        Raises:
            AuthorizationError: Actor is not COUNCIL / PROPERTY_MANAGER, edits
                their own account, or demotes the system actor
            BookingValidationError: Email in use, or demoting the last concierge
            NotFoundError: No such user
        """
        require_role(actor, OVERRIDE_ROLES, "update users")
        if user_id == actor.id:
            raise AuthorizationError("Cannot modify your own account", error_code="SELF_MODIFY")

        async with self.session_factory() as session:
            try:
                user = await session.get(User, user_id)
                if user is None:
                    raise NotFoundError(f"User {user_id} not found")

                changes: list[str] = []
                if name is not None and name != user.name:
                    user.name = name
                    changes.append("name")

                if email is not None and normalize_email(email) != user.email:
                    email = normalize_email(email)
                    await self._ensure_email_free(session, User, email)
                    user.email = email
                    changes.append("email")

                if role is not None and role != user.role:
                    if user.role == UserRole.CONCIERGE:
                        if user_id == self.system_actor.id:
                            raise AuthorizationError(
                                "The system concierge account must keep the CONCIERGE role",
                                error_code="SYSTEM_ACTOR",
                            )
                        await self._ensure_not_last_concierge(session)
                    user.role = role
                    changes.append("role")

                if changes:
                    await log_audit(
                        session,
                        actor.id,
                        AuditAction.USER_UPDATED,
                        None,
                        {"user_id": str(user_id), "changes": changes},
                    )
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error updating user {user_id}: {e}", exc_info=True)
                await session.rollback()
                raise

        logger.info(f"User {user.email} updated: {changes or 'no changes'}", extra={"actor_id": actor.id})
        return user

    async def delete_user(self, user_id: UUID, actor: User) -> None:
        """
        Delete a user account and re-home everything it owned.

        Raises:
            AuthorizationError: Actor is not COUNCIL / PROPERTY_MANAGER,
                self-deletion, or the system actor
            BookingValidationError: Last remaining concierge
            NotFoundError: No such user
        """
        require_role(actor, OVERRIDE_ROLES, "delete users")

        if user_id == actor.id:
            raise AuthorizationError("Cannot delete your own account", error_code="SELF_DELETE")
        if user_id == self.system_actor.id:
            raise AuthorizationError(
                "Cannot delete the system concierge account",
                error_code="SYSTEM_ACTOR",
            )

        async with self.session_factory() as session:
            try:
                user = await session.get(User, user_id)
                if user is None:
                    raise NotFoundError(f"User {user_id} not found")

                if user.role == UserRole.CONCIERGE:
                    await self._ensure_not_last_concierge(session)

                email, role = user.email, user.role

                await session.execute(
                    update(Booking)
                    .where(Booking.created_by_id == user_id)
                    .values(created_by_id=self.system_actor.id)
                )
                await session.execute(
                    update(Booking).where(Booking.approved_by_id == user_id).values(approved_by_id=None)
                )
                await session.execute(
                    update(AuditLog).where(AuditLog.actor_id == user_id).values(actor_id=self.system_actor.id)
                )
                await session.delete(user)
                await session.flush()

                await log_audit(
                    session,
                    actor.id,
                    AuditAction.USER_DELETED,
                    None,
                    {"user_id": str(user_id), "email": email, "role": role.value},
                )
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error deleting user {user_id}: {e}", exc_info=True)
                await session.rollback()
                raise

        logger.info(f"User {email} deleted", extra={"actor_id": actor.id})

    # ------------------------------------------------------------------
    # Notification recipients
    # ------------------------------------------------------------------

    async def list_recipients(self, actor: User) -> list[NotificationRecipient]:
        require_role(actor, OVERRIDE_ROLES, "list notification recipients")

        async with self.session_factory() as session:
            result = await session.execute(select(NotificationRecipient).order_by(NotificationRecipient.email))
            return list(result.scalars().all())

    async def create_recipient(
        self,
        actor: User,
        email: str,
        notify_on: list[NotifyEvent],
        name: Optional[str] = None,
        enabled: bool = True,
    ) -> NotificationRecipient:
        """
        Subscribe an address to booking events.

        Raises:
            AuthorizationError: Actor is not COUNCIL / PROPERTY_MANAGER
            BookingValidationError: Address already subscribed
        """
        require_role(actor, OVERRIDE_ROLES, "manage notification recipients")
        email = normalize_email(email)

        async with self.session_factory() as session:
            try:
                await self._ensure_email_free(session, NotificationRecipient, email)

                recipient = NotificationRecipient(
                    name=name,
                    email=email,
                    enabled=enabled,
                    notify_on=[event.value for event in dict.fromkeys(notify_on)],
                )
                session.add(recipient)
                await session.flush()

                await log_audit(
                    session, actor.id, AuditAction.RECIPIENT_CREATED, None, {"recipient_id": str(recipient.id)}
                )
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error creating recipient {email}: {e}", exc_info=True)
                await session.rollback()
                raise

        logger.info(f"Notification recipient {email} added: {recipient.notify_on}", extra={"actor_id": actor.id})
        return recipient

    async def update_recipient(
        self,
        recipient_id: UUID,
        actor: User,
        changes: dict[str, Any],
    ) -> NotificationRecipient:
        """
        Apply a partial update (name, email, enabled, notify_on).

        Raises:
            AuthorizationError: Actor is not COUNCIL / PROPERTY_MANAGER
            BookingValidationError: New address already subscribed
            NotFoundError: No such recipient
        """
        require_role(actor, OVERRIDE_ROLES, "manage notification recipients")

        async with self.session_factory() as session:
            try:
                recipient = await session.get(NotificationRecipient, recipient_id)
                if recipient is None:
                    raise NotFoundError(f"Notification recipient {recipient_id} not found")

                if "name" in changes:
                    recipient.name = changes["name"]
                if changes.get("email") is not None:
                    email = normalize_email(changes["email"])
                    if email != recipient.email:
                        await self._ensure_email_free(session, NotificationRecipient, email)
                        recipient.email = email
                if changes.get("enabled") is not None:
                    recipient.enabled = changes["enabled"]
                if changes.get("notify_on") is not None:
                    recipient.notify_on = [NotifyEvent(e).value for e in dict.fromkeys(changes["notify_on"])]

                await log_audit(
                    session,
                    actor.id,
                    AuditAction.RECIPIENT_UPDATED,
                    None,
                    {"recipient_id": str(recipient_id), "changes": sorted(changes)},
                )
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error updating recipient {recipient_id}: {e}", exc_info=True)
                await session.rollback()
                raise

        return recipient

    async def delete_recipient(self, recipient_id: UUID, actor: User) -> None:
        require_role(actor, OVERRIDE_ROLES, "manage notification recipients")

        async with self.session_factory() as session:
            try:
                recipient = await session.get(NotificationRecipient, recipient_id)
                if recipient is None:
                    raise NotFoundError(f"Notification recipient {recipient_id} not found")

                await session.delete(recipient)
                await log_audit(
                    session, actor.id, AuditAction.RECIPIENT_DELETED, None, {"recipient_id": str(recipient_id)}
                )
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error deleting recipient {recipient_id}: {e}", exc_info=True)
                await session.rollback()
                raise

        logger.info(f"Notification recipient {recipient_id} removed", extra={"actor_id": actor.id})

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    async def _ensure_email_free(
        session: AsyncSession,
        model: type[User] | type[NotificationRecipient],
        email: str,
    ) -> None:
        existing = await session.scalar(select(model.id).where(model.email == email))
        if existing is not None:
            raise BookingValidationError(
                "Email already in use",
                error_code="EMAIL_IN_USE",
                details={"email": email},
            )

    @staticmethod
    async def _ensure_not_last_concierge(session: AsyncSession) -> None:
        concierge_count = await session.scalar(
            select(func.count()).select_from(User).where(User.role == UserRole.CONCIERGE)
        )
        if concierge_count <= 1:
            raise BookingValidationError(
                "At least one concierge account must remain",
                error_code="LAST_CONCIERGE",
            )
