"""
Booking validators.

Pure and transactional checks run before a booking is written:
- slot_policy: permitted windows per booking type and day type
- conflict_validator: buffered elevator overlap and the 08:00-17:00 guard
- holidays: statutory holiday calendar
"""

from engine.validators.conflict_validator import (
    ConflictCandidate,
    assert_no_conflict,
    find_conflicts,
    has_conflict,
    validate_outer_hours,
)
from engine.validators.holidays import get_holiday_calendar, is_holiday
from engine.validators.slot_policy import (
    PermittedWindow,
    ValidationResult,
    WindowKind,
    permitted_window,
    to_building_time,
    validate_booking_time,
    validate_interval,
)

__all__ = [
    "ConflictCandidate",
    "PermittedWindow",
    "ValidationResult",
    "WindowKind",
    "assert_no_conflict",
    "find_conflicts",
    "get_holiday_calendar",
    "has_conflict",
    "is_holiday",
    "permitted_window",
    "to_building_time",
    "validate_booking_time",
    "validate_interval",
    "validate_outer_hours",
]
