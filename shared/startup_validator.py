"""
Startup configuration validation module.

This module provides startup-time validation for critical configuration
to catch misconfigurations early (fail-fast) rather than the first time a
worker tries to approve a booking on behalf of nobody.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def main():
        try:
            await validate_startup_config()
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            sys.exit(1)
"""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.config import get_settings

logger = logging.getLogger(__name__)


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


async def validate_startup_config(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Performs tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail
    - TIER 2 (IMPORTANT): Warn but allow startup

    Args:
        session_factory: Session factory to check (defaults to the shared one)

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    from database.models import User, UserRole

    if session_factory is None:
        from database.connection import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    settings = get_settings()
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Building timezone resolves
    try:
        ZoneInfo(settings.BUILDING_TIMEZONE)
        results["building_timezone"] = True
        logger.info(f"  [OK] Building timezone: {settings.BUILDING_TIMEZONE}")
    except (ZoneInfoNotFoundError, ValueError):
        critical_failures.append(f"BUILDING_TIMEZONE is not a valid zone: {settings.BUILDING_TIMEZONE}")
        results["building_timezone"] = False

    # 2. Extra holiday dates parse
    try:
        extra = settings.extra_holidays()
        results["holiday_calendar"] = True
        if extra:
            logger.info(f"  [OK] {len(extra)} extra closure date(s) configured")
    except ValueError as e:
        critical_failures.append(f"EXTRA_HOLIDAY_DATES is malformed: {e}")
        results["holiday_calendar"] = False

    # 3. Database reachable and system actor present
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            results["database_connection"] = True
            logger.info("  [OK] Database connection successful")

            actor = await session.scalar(
                select(User).where(User.email == settings.SYSTEM_ACTOR_EMAIL)
            )
            if actor is None:
                critical_failures.append(
                    f"SYSTEM_ACTOR_EMAIL {settings.SYSTEM_ACTOR_EMAIL} does not match any user - "
                    "seed a CONCIERGE account first"
                )
                results["system_actor"] = False
            elif actor.role != UserRole.CONCIERGE:
                critical_failures.append(
                    f"System actor {settings.SYSTEM_ACTOR_EMAIL} must have role CONCIERGE, "
                    f"has {actor.role.value}"
                )
                results["system_actor"] = False
            else:
                results["system_actor"] = True
                logger.info(f"  [OK] System actor: {actor.email}")
    except Exception as e:
        critical_failures.append(f"Database connection failed: {e}")
        results["database_connection"] = False
        results["system_actor"] = False

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 4. Reconciliation polling needs Invoice Ninja credentials
    if settings.RECONCILIATION_ENABLED and not settings.invoice_ninja_configured:
        logger.warning(
            "RECONCILIATION_ENABLED but INVOICE_NINJA_URL/INVOICE_NINJA_API_TOKEN missing - "
            "polling will be skipped"
        )
        results["invoice_ninja_configured"] = False
    else:
        results["invoice_ninja_configured"] = settings.invoice_ninja_configured

    # 5. Webhook signature verification
    if not settings.INVOICE_NINJA_WEBHOOK_SECRET:
        logger.warning(
            "INVOICE_NINJA_WEBHOOK_SECRET not set - payment webhooks are accepted unsigned"
        )
        results["webhook_secret"] = False
    else:
        results["webhook_secret"] = True

    # 6. SMTP
    if not settings.mail_configured:
        logger.info("  [INFO] MAIL_SERVER not configured - notifications will be logged and dropped")
        results["mail_configured"] = False
    else:
        results["mail_configured"] = True
        logger.info(f"  [OK] SMTP configured: {settings.MAIL_SERVER}:{settings.MAIL_PORT}")

    # 7. Fee classifier fallback
    if settings.FEE_CLASSIFIER_ENABLED and settings.OPENROUTER_API_KEY == "sk-or-placeholder":
        logger.warning(
            "FEE_CLASSIFIER_ENABLED but OPENROUTER_API_KEY is placeholder - "
            "keyword classification only"
        )
        results["fee_classifier"] = False
    else:
        results["fee_classifier"] = settings.FEE_CLASSIFIER_ENABLED

    # 8. Database URL format validation
    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        logger.warning(
            "DATABASE_URL should use asyncpg driver: postgresql+asyncpg://... "
            "(serializable admission is only enforced on PostgreSQL)"
        )
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True

    # =========================================================================
    # Summary and result
    # =========================================================================

    passed = sum(1 for v in results.values() if v)
    total = len(results)
    logger.info(f"Startup validation: {passed}/{total} checks passed")

    if critical_failures:
        logger.critical("=" * 60)
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        logger.critical("=" * 60)
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results
