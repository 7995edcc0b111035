"""Seed script for notification_recipients table."""

from typing import Any

from sqlalchemy import select

from database.connection import AsyncSessionLocal
from database.models import NotificationRecipient, NotifyEvent

RECIPIENTS_DATA: list[dict[str, Any]] = [
    {
        "name": "Front Desk",
        "email": "frontdesk@movecal.local",
        "notify_on": [NotifyEvent.SUBMITTED.value, NotifyEvent.APPROVED.value],
    },
    {
        "name": "Strata Council",
        "email": "council@movecal.local",
        "notify_on": [NotifyEvent.SUBMITTED.value, NotifyEvent.APPROVED.value, NotifyEvent.REJECTED.value],
    },
]


async def seed_recipients() -> None:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            for recipient_data in RECIPIENTS_DATA:
                result = await session.execute(
                    select(NotificationRecipient).where(NotificationRecipient.email == recipient_data["email"])
                )
                if result.scalar_one_or_none() is None:
                    session.add(NotificationRecipient(**recipient_data))
                    print(f"  + recipient {recipient_data['email']}")
