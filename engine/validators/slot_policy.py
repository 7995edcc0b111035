"""
Slot Policy - Permitted booking windows by day type and booking type.

This module is the single source of truth for when the elevator may be
booked. It is pure: no database access, no clock reads. All rules are
evaluated on building-local wall-clock time.

Rules:
1. Statutory holidays: nothing may be booked
2. MOVE_IN / MOVE_OUT: one fixed 3-hour slot
   - Weekday: 10:00-13:00, 13:00-16:00
   - Weekend: 08:00-11:00, 11:00-14:00, 14:00-17:00
3. DELIVERY: exactly 30 minutes inside the day's range
4. RENO: exactly 60 minutes inside the day's range
   - Weekday range: 10:00-16:00
   - Weekend range: 08:00-17:00
"""

import logging
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

from database.models import BookingType
from engine.validators.holidays import is_holiday
from shared.config import get_settings

logger = logging.getLogger(__name__)

BUILDING_TZ = ZoneInfo(get_settings().BUILDING_TIMEZONE)

WEEKDAY_MOVE_SLOTS: tuple[tuple[time, time], ...] = (
    (time(10, 0), time(13, 0)),
    (time(13, 0), time(16, 0)),
)
WEEKEND_MOVE_SLOTS: tuple[tuple[time, time], ...] = (
    (time(8, 0), time(11, 0)),
    (time(11, 0), time(14, 0)),
    (time(14, 0), time(17, 0)),
)
WEEKDAY_RANGE = (time(10, 0), time(16, 0))
WEEKEND_RANGE = (time(8, 0), time(17, 0))

BLOCK_MINUTES: dict[BookingType, int] = {
    BookingType.DELIVERY: 30,
    BookingType.RENO: 60,
}

TYPE_LABELS: dict[BookingType, str] = {
    BookingType.MOVE_IN: "Move-in",
    BookingType.MOVE_OUT: "Move-out",
    BookingType.DELIVERY: "Delivery",
    BookingType.RENO: "Renovation",
}

# Error codes
INVALID_RANGE = "INVALID_RANGE"
CROSS_DAY = "CROSS_DAY"
HOLIDAY = "HOLIDAY"
WRONG_DURATION = "WRONG_DURATION"
OUTSIDE_HOURS = "OUTSIDE_HOURS"


class ValidationResult(BaseModel):
    """Result of a slot validation operation."""
    valid: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class WindowKind(str, Enum):
    NONE = "none"
    FIXED_SLOTS = "fixed_slots"
    RANGE_BLOCKS = "range_blocks"


class PermittedWindow(BaseModel):
    """What may be booked on a given day for a given booking type."""

    model_config = ConfigDict(frozen=True)

    kind: WindowKind
    slots: tuple[tuple[time, time], ...] = ()
    range_start: Optional[time] = None
    range_end: Optional[time] = None
    block_minutes: Optional[int] = None

    def describe(self) -> str:
        if self.kind == WindowKind.NONE:
            return "No bookings permitted"
        if self.kind == WindowKind.FIXED_SLOTS:
            return " or ".join(
                f"{format_clock(start)} – {format_clock(end)}" for start, end in self.slots
            )
        return (
            f"{self.block_minutes}-minute booking between "
            f"{format_clock(self.range_start)} – {format_clock(self.range_end)}"
        )


def format_clock(value: time) -> str:
    """10:00 -> '10:00 AM', 13:30 -> '1:30 PM'."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def _short_clock(value: time) -> str:
    hour = value.hour % 12 or 12
    suffix = "am" if value.hour < 12 else "pm"
    if value.minute:
        return f"{hour}:{value.minute:02d}{suffix}"
    return f"{hour}{suffix}"


def to_building_time(value: datetime) -> datetime:
    """Convert to building-local time. Naive datetimes are taken as local already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=BUILDING_TZ)
    return value.astimezone(BUILDING_TZ)


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def permitted_window(
    day: date,
    booking_type: BookingType,
    holidays: frozenset[date] | None = None,
) -> PermittedWindow:
    """
    Return the permitted window for a booking type on a calendar day.

    Args:
        day: Building-local calendar date
        booking_type: MOVE_IN, MOVE_OUT, DELIVERY or RENO
        holidays: Holiday calendar override (defaults to configured calendar)

    Returns:
        PermittedWindow of kind none, fixed_slots or range_blocks
    """
    if is_holiday(day, holidays):
        return PermittedWindow(kind=WindowKind.NONE)

    weekend = is_weekend(day)

    if booking_type in (BookingType.MOVE_IN, BookingType.MOVE_OUT):
        return PermittedWindow(
            kind=WindowKind.FIXED_SLOTS,
            slots=WEEKEND_MOVE_SLOTS if weekend else WEEKDAY_MOVE_SLOTS,
        )

    range_start, range_end = WEEKEND_RANGE if weekend else WEEKDAY_RANGE
    return PermittedWindow(
        kind=WindowKind.RANGE_BLOCKS,
        range_start=range_start,
        range_end=range_end,
        block_minutes=BLOCK_MINUTES[booking_type],
    )


def _failure(error_code: str, message: str, **details: Any) -> ValidationResult:
    return ValidationResult(
        valid=False,
        error_code=error_code,
        error_message=message,
        details=details,
    )


def validate_interval(start: datetime, end: datetime) -> ValidationResult:
    """
    Structural checks every booking must pass, even under override.

    1. end must be after start
    2. start and end must fall on the same building-local day
    """
    local_start = to_building_time(start)
    local_end = to_building_time(end)

    if local_start >= local_end:
        return _failure(INVALID_RANGE, "Start time must be before end time")

    if local_start.date() != local_end.date():
        return _failure(
            CROSS_DAY,
            "Booking must start and end on the same day",
            start_date=local_start.date().isoformat(),
            end_date=local_end.date().isoformat(),
        )

    return ValidationResult(valid=True)


def validate_booking_time(
    start: datetime,
    end: datetime,
    booking_type: BookingType,
    holidays: frozenset[date] | None = None,
) -> ValidationResult:
    """
    Validate a candidate interval against the slot policy.

    Check order: range, same day, holiday, type-specific window. Usable both
    for rejecting a new submission and for re-validating an edited booking.

    Args:
        start: Candidate start (aware, or naive building-local)
        end: Candidate end
        booking_type: Type of booking being validated
        holidays: Holiday calendar override

    Returns:
        ValidationResult; error_code is one of INVALID_RANGE, CROSS_DAY,
        HOLIDAY, WRONG_DURATION, OUTSIDE_HOURS
    """
    structural = validate_interval(start, end)
    if not structural.valid:
        return structural

    local_start = to_building_time(start)
    local_end = to_building_time(end)
    day = local_start.date()

    window = permitted_window(day, booking_type, holidays)

    if window.kind == WindowKind.NONE:
        return _failure(
            HOLIDAY,
            "Bookings are not permitted on statutory holidays",
            date=day.isoformat(),
        )

    start_clock = local_start.time()
    end_clock = local_end.time()
    label = TYPE_LABELS[booking_type]

    if window.kind == WindowKind.FIXED_SLOTS:
        for slot_start, slot_end in window.slots:
            if slot_start <= start_clock and end_clock <= slot_end:
                return ValidationResult(
                    valid=True,
                    details={"slot": [slot_start.isoformat(), slot_end.isoformat()]},
                )
        slot_labels = [f"{_short_clock(a)}–{_short_clock(b)}" for a, b in window.slots]
        if len(slot_labels) > 2:
            readable = ", ".join(slot_labels[:-1]) + f", or {slot_labels[-1]}"
        else:
            readable = " or ".join(slot_labels)
        day_type = "Weekend" if is_weekend(day) else "Weekday"
        return _failure(
            OUTSIDE_HOURS,
            f"{day_type} moves must fit within one permitted slot: {readable}",
            permitted=window.describe(),
        )

    duration = local_end - local_start
    if duration != timedelta(minutes=window.block_minutes):
        if window.block_minutes == 60:
            expected = "exactly 1 hour"
        else:
            expected = f"exactly {window.block_minutes} minutes"
        return _failure(
            WRONG_DURATION,
            f"{label} bookings must be {expected}",
            duration_minutes=int(duration.total_seconds() // 60),
        )

    if start_clock < window.range_start or end_clock > window.range_end:
        day_type = "weekend" if is_weekend(day) else "weekday"
        return _failure(
            OUTSIDE_HOURS,
            f"{label} bookings must be within {day_type} hours: "
            f"{format_clock(window.range_start)} – {format_clock(window.range_end)}",
            permitted=window.describe(),
        )

    return ValidationResult(valid=True)
