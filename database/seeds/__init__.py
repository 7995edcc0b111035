"""
Seed data orchestration module.

Provides seed_all() function to execute all seed scripts in dependency order.
Can be run standalone: python -m database.seeds
"""

import asyncio

from database.seeds.recipients import seed_recipients
from database.seeds.users import seed_users


async def seed_all() -> None:
    """
    Execute all seed scripts in dependency order.

    Order:
    1. users - the system concierge must exist before the API starts
    2. recipients - independent
    """
    print("Starting database seeding...")
    print("-" * 50)

    await seed_users()
    await seed_recipients()

    print("-" * 50)
    print(" Database seeding complete!")


if __name__ == "__main__":
    asyncio.run(seed_all())
