"""
Statutory holiday calendar.

British Columbia statutory holidays for 2025-2030. No booking of any type
may be scheduled on these dates. Additional closures (building maintenance,
strata events) are configured through EXTRA_HOLIDAY_DATES.
"""

from datetime import date
from functools import lru_cache
from typing import Any

from shared.config import get_settings

# Fixed: New Year's Day, Canada Day, Remembrance Day, Christmas Day, Boxing Day
# Calculated: Family Day (3rd Mon Feb), Good Friday, Victoria Day (Mon before May 25),
#   BC Day (1st Mon Aug), Labour Day (1st Mon Sep), Thanksgiving (2nd Mon Oct)
BC_STATUTORY_HOLIDAYS: list[dict[str, Any]] = [
    # 2025
    {"date": date(2025, 1, 1), "name": "New Year's Day"},
    {"date": date(2025, 2, 17), "name": "Family Day (BC)"},
    {"date": date(2025, 4, 18), "name": "Good Friday"},
    {"date": date(2025, 5, 19), "name": "Victoria Day"},
    {"date": date(2025, 7, 1), "name": "Canada Day"},
    {"date": date(2025, 8, 4), "name": "BC Day"},
    {"date": date(2025, 9, 1), "name": "Labour Day"},
    {"date": date(2025, 10, 13), "name": "Thanksgiving"},
    {"date": date(2025, 11, 11), "name": "Remembrance Day"},
    {"date": date(2025, 12, 25), "name": "Christmas Day"},
    {"date": date(2025, 12, 26), "name": "Boxing Day"},

    # 2026
    {"date": date(2026, 1, 1), "name": "New Year's Day"},
    {"date": date(2026, 2, 16), "name": "Family Day (BC)"},
    {"date": date(2026, 4, 3), "name": "Good Friday"},
    {"date": date(2026, 5, 18), "name": "Victoria Day"},
    {"date": date(2026, 7, 1), "name": "Canada Day"},
    {"date": date(2026, 8, 3), "name": "BC Day"},
    {"date": date(2026, 9, 7), "name": "Labour Day"},
    {"date": date(2026, 10, 12), "name": "Thanksgiving"},
    {"date": date(2026, 11, 11), "name": "Remembrance Day"},
    {"date": date(2026, 12, 25), "name": "Christmas Day"},
    {"date": date(2026, 12, 26), "name": "Boxing Day"},

    # 2027
    {"date": date(2027, 1, 1), "name": "New Year's Day"},
    {"date": date(2027, 2, 15), "name": "Family Day (BC)"},
    {"date": date(2027, 3, 26), "name": "Good Friday"},
    {"date": date(2027, 5, 24), "name": "Victoria Day"},
    {"date": date(2027, 7, 1), "name": "Canada Day"},
    {"date": date(2027, 8, 2), "name": "BC Day"},
    {"date": date(2027, 9, 6), "name": "Labour Day"},
    {"date": date(2027, 10, 11), "name": "Thanksgiving"},
    {"date": date(2027, 11, 11), "name": "Remembrance Day"},
    {"date": date(2027, 12, 25), "name": "Christmas Day"},
    {"date": date(2027, 12, 26), "name": "Boxing Day"},

    # 2028
    {"date": date(2028, 1, 1), "name": "New Year's Day"},
    {"date": date(2028, 2, 21), "name": "Family Day (BC)"},
    {"date": date(2028, 4, 14), "name": "Good Friday"},
    {"date": date(2028, 5, 22), "name": "Victoria Day"},
    {"date": date(2028, 7, 1), "name": "Canada Day"},
    {"date": date(2028, 8, 7), "name": "BC Day"},
    {"date": date(2028, 9, 4), "name": "Labour Day"},
    {"date": date(2028, 10, 9), "name": "Thanksgiving"},
    {"date": date(2028, 11, 11), "name": "Remembrance Day"},
    {"date": date(2028, 12, 25), "name": "Christmas Day"},
    {"date": date(2028, 12, 26), "name": "Boxing Day"},

    # 2029
    {"date": date(2029, 1, 1), "name": "New Year's Day"},
    {"date": date(2029, 2, 19), "name": "Family Day (BC)"},
    {"date": date(2029, 3, 30), "name": "Good Friday"},
    {"date": date(2029, 5, 21), "name": "Victoria Day"},
    {"date": date(2029, 7, 1), "name": "Canada Day"},
    {"date": date(2029, 8, 6), "name": "BC Day"},
    {"date": date(2029, 9, 3), "name": "Labour Day"},
    {"date": date(2029, 10, 8), "name": "Thanksgiving"},
    {"date": date(2029, 11, 11), "name": "Remembrance Day"},
    {"date": date(2029, 12, 25), "name": "Christmas Day"},
    {"date": date(2029, 12, 26), "name": "Boxing Day"},

    # 2030
    {"date": date(2030, 1, 1), "name": "New Year's Day"},
    {"date": date(2030, 2, 18), "name": "Family Day (BC)"},
    {"date": date(2030, 4, 19), "name": "Good Friday"},
    {"date": date(2030, 5, 20), "name": "Victoria Day"},
    {"date": date(2030, 7, 1), "name": "Canada Day"},
    {"date": date(2030, 8, 5), "name": "BC Day"},
    {"date": date(2030, 9, 2), "name": "Labour Day"},
    {"date": date(2030, 10, 14), "name": "Thanksgiving"},
    {"date": date(2030, 11, 11), "name": "Remembrance Day"},
    {"date": date(2030, 12, 25), "name": "Christmas Day"},
    {"date": date(2030, 12, 26), "name": "Boxing Day"},
]


@lru_cache
def get_holiday_calendar() -> frozenset[date]:
    """Statutory holidays plus configured extra closures."""
    statutory = frozenset(holiday["date"] for holiday in BC_STATUTORY_HOLIDAYS)
    return statutory | get_settings().extra_holidays()


def is_holiday(day: date, holidays: frozenset[date] | None = None) -> bool:
    calendar = get_holiday_calendar() if holidays is None else holidays
    return day in calendar


def holiday_name(day: date) -> str | None:
    for holiday in BC_STATUTORY_HOLIDAYS:
        if holiday["date"] == day:
            return holiday["name"]
    if day in get_settings().extra_holidays():
        return "Building closure"
    return None
