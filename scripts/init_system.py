"""
System initialization check for the booking engine.

Verifies that a deployment is ready to serve:
- Database reachable
- Schema migrated (Alembic)
- Seed data present (users, notification recipients)
- System actor resolvable
- Holiday calendar covers the current and next year

Can be run from within Docker containers or standalone.
Safe to run multiple times.
"""

import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import text

from database.connection import AsyncSessionLocal, get_async_session
from engine.system_actor import resolve_system_actor
from engine.validators.holidays import BC_STATUTORY_HOLIDAYS
from shared.config import get_settings
from shared.startup_validator import StartupValidationError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CRITICAL_TABLES = [
    "users",
    "bookings",
    "audit_log",
    "notification_recipients",
    "payment_records",
    "approval_links",
    "alembic_version",
]

SEED_TABLES = ["users", "notification_recipients"]


async def check_database_connection() -> bool:
    try:
        logger.info("Checking database connection...")
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
        logger.info("✓ Database connection successful")
        return True
    except Exception as e:
        logger.error(f"✗ Database connection failed: {e}")
        return False


async def check_tables_exist() -> dict[str, bool]:
    """
    Check which critical tables exist in the database.

    Returns:
        dict: Mapping of table names to existence status
    """
    table_status = {}

    try:
        logger.info("Checking table existence...")
        async with get_async_session() as session:
            for table in CRITICAL_TABLES:
                query = text("""
                    SELECT EXISTS (
                        SELECT FROM information_schema.tables
                        WHERE table_schema = 'public'
                        AND table_name = :table_name
                    )
                """)
                result = await session.execute(query, {"table_name": table})
                exists = result.scalar()
                table_status[table] = exists

                status_icon = "✓" if exists else "✗"
                logger.info(f"  {status_icon} Table '{table}': {'exists' if exists else 'missing'}")

    except Exception as e:
        logger.error(f"Error checking tables: {e}")

    return table_status


async def check_seed_data() -> dict[str, int]:
    row_counts = {}

    try:
        logger.info("Checking seed data...")
        async with get_async_session() as session:
            for table in SEED_TABLES:
                result = await session.execute(text(f"SELECT COUNT(*) FROM {table}"))
                count = result.scalar()
                row_counts[table] = count

                status_icon = "✓" if count > 0 else "⚠"
                logger.info(f"  {status_icon} Table '{table}': {count} rows")

    except Exception as e:
        logger.error(f"Error checking seed data: {e}")

    return row_counts


async def check_system_actor() -> bool:
    email = get_settings().SYSTEM_ACTOR_EMAIL
    try:
        await resolve_system_actor(AsyncSessionLocal, email)
        logger.info(f"✓ System actor {email} is a CONCIERGE")
        return True
    except StartupValidationError as e:
        logger.error(f"✗ {e}")
        return False


def check_holiday_calendar(today: date | None = None) -> bool:
    """Warn when the built-in statutory calendar is about to run out."""
    today = today or date.today()
    covered_years = {holiday["date"].year for holiday in BC_STATUTORY_HOLIDAYS}
    missing = [year for year in (today.year, today.year + 1) if year not in covered_years]
    if missing:
        logger.warning(f"⚠ No statutory holidays defined for {missing} - extend engine/validators/holidays.py")
        return False
    logger.info(f"✓ Holiday calendar covers {today.year}-{today.year + 1}")
    return True


async def run_system_verification() -> bool:
    """
    Run complete system verification.

    Returns:
        bool: True if system is properly initialized, False otherwise
    """
    logger.info("=" * 60)
    logger.info("MOVECAL - SYSTEM VERIFICATION")
    logger.info("=" * 60)

    all_checks_passed = True

    if not await check_database_connection():
        logger.error("Database connection check failed")
        return False

    table_status = await check_tables_exist()
    if not table_status or not all(table_status.values()):
        all_checks_passed = False
        missing_tables = [t for t, exists in table_status.items() if not exists]
        logger.error(f"Missing tables: {', '.join(missing_tables) or 'unknown'} - run alembic upgrade head")

    row_counts = await check_seed_data()
    if any(count == 0 for count in row_counts.values()):
        empty_tables = [t for t, count in row_counts.items() if count == 0]
        logger.warning(f"Empty seed tables: {', '.join(empty_tables)} - run python -m database.seeds")

    if not await check_system_actor():
        all_checks_passed = False

    check_holiday_calendar()

    logger.info("=" * 60)
    if all_checks_passed:
        logger.info("✓ SYSTEM VERIFICATION PASSED")
    else:
        logger.error("✗ SYSTEM VERIFICATION FAILED")
    logger.info("=" * 60)

    return all_checks_passed


async def main():
    """Main entry point for system initialization verification."""
    try:
        success = await run_system_verification()
        sys.exit(0 if success else 1)
    except Exception as e:
        logger.exception(f"Fatal error during system verification: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
