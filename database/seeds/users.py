"""
Seed script for users table.

Creates the system concierge (owner of unattended bookings, taken from
SYSTEM_ACTOR_EMAIL) and a property manager account.
"""

from typing import Any

from sqlalchemy import select

from database.connection import AsyncSessionLocal
from database.models import User, UserRole
from shared.config import get_settings


def users_data() -> list[dict[str, Any]]:
    return [
        {
            "name": "Concierge",
            "email": get_settings().SYSTEM_ACTOR_EMAIL,
            "role": UserRole.CONCIERGE,
        },
        {
            "name": "Property Manager",
            "email": "manager@movecal.local",
            "role": UserRole.PROPERTY_MANAGER,
        },
    ]


async def seed_users() -> None:
    """
    Seed the users table.

    Checks if each user already exists by email before inserting.
    """
    async with AsyncSessionLocal() as session:
        async with session.begin():
            for user_data in users_data():
                result = await session.execute(select(User).where(User.email == user_data["email"]))
                if result.scalar_one_or_none() is None:
                    session.add(User(**user_data))
                    print(f"  + user {user_data['email']} ({user_data['role'].value})")
                else:
                    print(f"  = user {user_data['email']} already exists")
