"""
Notification dispatch for booking lifecycle events.

Every send happens after the state change has committed. Failures are logged
and swallowed: a dead SMTP server must never undo an approval. The payment
reminder is the exception, because the reminder worker only stamps
last_payment_reminder_at once the email actually went out.
"""

import logging
from datetime import datetime
from typing import Optional, Protocol
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Booking, NotificationRecipient, NotifyEvent
from engine.validators.slot_policy import TYPE_LABELS, format_clock, to_building_time

logger = logging.getLogger(__name__)


class MailSender(Protocol):
    async def send(self, recipients: list[str], subject: str, body: str) -> None: ...


class BookingSummary(BaseModel):
    """Structured booking summary included in every notification."""

    booking_id: UUID
    booking_type: str
    unit: str
    status: str
    date_label: str
    time_label: str
    elevator_required: bool
    loading_bay_required: bool
    company_name: Optional[str] = None
    notes: Optional[str] = None
    resident_name: Optional[str] = None
    resident_email: Optional[str] = None
    resident_phone: Optional[str] = None

    @classmethod
    def from_booking(cls, booking: Booking, include_contact: bool = False) -> "BookingSummary":
        start = to_building_time(booking.start_at)
        end = to_building_time(booking.end_at)
        summary = cls(
            booking_id=booking.id,
            booking_type=TYPE_LABELS[booking.booking_type],
            unit=booking.unit,
            status=booking.status.value,
            date_label=start.strftime("%A, %B %d, %Y"),
            time_label=f"{format_clock(start.time())} – {format_clock(end.time())}",
            elevator_required=booking.elevator_required,
            loading_bay_required=booking.loading_bay_required,
            company_name=booking.company_name,
            notes=booking.notes,
        )
        if include_contact:
            summary.resident_name = booking.resident_name
            summary.resident_email = booking.resident_email
            summary.resident_phone = booking.resident_phone
        return summary

    def render(self) -> str:
        resources = [
            name
            for name, needed in (("Elevator", self.elevator_required), ("Loading bay", self.loading_bay_required))
            if needed
        ]
        lines = [
            f"Type: {self.booking_type}",
            f"Unit: {self.unit}",
            f"Date: {self.date_label}",
            f"Time: {self.time_label}",
            f"Resources: {', '.join(resources) or 'None'}",
            f"Status: {self.status}",
        ]
        if self.company_name:
            lines.append(f"Company: {self.company_name}")
        if self.notes:
            lines.append(f"Notes: {self.notes}")
        if self.resident_email:
            lines.append("")
            lines.append(f"Resident: {self.resident_name}")
            lines.append(f"Email: {self.resident_email}")
            if self.resident_phone:
                lines.append(f"Phone: {self.resident_phone}")
        lines.append(f"Reference: {self.booking_id}")
        return "\n".join(lines)


class NotificationService:
    """
    Sends booking notifications to the requester and subscribed recipients.

    Usage:
        notifications = NotificationService(session_factory, mailer)
        await notifications.booking_approved(booking)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mailer: MailSender,
        include_contact_in_approvals: bool = False,
        building_name: str = "the building",
    ):
        self.session_factory = session_factory
        self.mailer = mailer
        self.include_contact_in_approvals = include_contact_in_approvals
        self.building_name = building_name

    async def _recipients_for(self, event: NotifyEvent) -> list[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationRecipient).where(NotificationRecipient.enabled.is_(True))
            )
            recipients = result.scalars().all()
        return [r.email for r in recipients if r.subscribed_to(event)]

    async def _safe_send(self, booking: Booking, recipients: list[str], subject: str, body: str) -> bool:
        if not recipients:
            return False
        try:
            await self.mailer.send(recipients, subject, body)
            return True
        except Exception as e:
            logger.error(
                f"Notification '{subject}' failed: {type(e).__name__}: {e}",
                extra={"booking_id": booking.id},
                exc_info=True,
            )
            return False

    async def booking_submitted(self, booking: Booking) -> None:
        """Tell staff a request is waiting and acknowledge it to the requester."""
        summary = BookingSummary.from_booking(booking, include_contact=True)
        subject = f"New booking request: {summary.booking_type} for unit {booking.unit}"
        try:
            staff = await self._recipients_for(NotifyEvent.SUBMITTED)
        except Exception as e:
            logger.error(f"Could not load recipients: {e}", extra={"booking_id": booking.id}, exc_info=True)
            staff = []
        await self._safe_send(booking, staff, subject, summary.render())

        resident_body = (
            f"Hello {booking.resident_name},\n\n"
            f"We received your booking request at {self.building_name}. "
            "You will receive another email once it has been reviewed.\n\n"
            f"{BookingSummary.from_booking(booking).render()}"
        )
        await self._safe_send(
            booking, [booking.resident_email], "Booking request received", resident_body
        )

    async def booking_approved(self, booking: Booking, reason: str | None = None) -> None:
        """Send approval to the requester and APPROVED subscribers."""
        summary = BookingSummary.from_booking(
            booking, include_contact=self.include_contact_in_approvals
        )
        subject = f"Booking approved: {summary.booking_type} for unit {booking.unit}"
        body = summary.render()
        if reason:
            body = f"{body}\nApproved: {reason}"

        try:
            staff = await self._recipients_for(NotifyEvent.APPROVED)
        except Exception as e:
            logger.error(f"Could not load recipients: {e}", extra={"booking_id": booking.id}, exc_info=True)
            staff = []

        recipients = list(dict.fromkeys([booking.resident_email, *staff]))
        await self._safe_send(booking, recipients, subject, body)

    async def booking_rejected(self, booking: Booking) -> None:
        """Send rejection to the requester and REJECTED subscribers."""
        summary = BookingSummary.from_booking(booking)
        subject = f"Booking not approved: {summary.booking_type} for unit {booking.unit}"
        body = (
            f"Your booking request could not be approved. "
            f"Please contact the concierge to arrange another time.\n\n{summary.render()}"
        )

        try:
            staff = await self._recipients_for(NotifyEvent.REJECTED)
        except Exception as e:
            logger.error(f"Could not load recipients: {e}", extra={"booking_id": booking.id}, exc_info=True)
            staff = []

        recipients = list(dict.fromkeys([booking.resident_email, *staff]))
        await self._safe_send(booking, recipients, subject, body)

    async def send_payment_reminder(self, booking: Booking, now: datetime) -> None:
        """
        Remind the requester that the move fee is still unpaid.

        Raises:
            Exception: Propagates mailer errors so the caller does not record
                a reminder that was never delivered
        """
        summary = BookingSummary.from_booking(booking)
        days_left = (booking.move_date - to_building_time(now).date()).days
        body = (
            f"Hello {booking.resident_name},\n\n"
            f"Your {summary.booking_type.lower()} on {summary.date_label} is still awaiting payment "
            f"of the move fee ({days_left} day(s) away). The booking is approved automatically "
            "once payment is received.\n\n"
            f"{summary.render()}"
        )
        await self.mailer.send(
            [booking.resident_email],
            f"Payment reminder: {summary.booking_type} for unit {booking.unit}",
            body,
        )
