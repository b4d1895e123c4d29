"""
daycount.py - Day Count Conventions

Pure date arithmetic for interest accrual:

    ACT/365:      actual calendar days, fraction = days / 365
    30/360 NASD:  D1=31 -> 30; D2=31 and D1>=30 -> 30
                  days = (Y2-Y1)*360 + (M2-M1)*30 + (D2-D1)
                  fraction = days / 360

Accrual segments count days inclusively (both endpoints accrue), so a
segment [2024-01-15, 2024-02-15] is 31 days under 30/360.

PRECONDITION: end >= start. Callers guarantee ordering; nothing here checks it.
"""
from __future__ import annotations
from datetime import date
from decimal import Decimal

from .core import DAY_COUNT_30_360, DAY_COUNT_ACT_365


DAYS_IN_YEAR_365 = Decimal("365")
DAYS_IN_YEAR_360 = Decimal("360")


def act_days(start: date, end: date) -> int:
    """Raw calendar day difference."""
    return (end - start).days


def days_30360(start: date, end: date, inclusive: bool = True) -> int:
    """
    US NASD 30/360 day count.

    >>> days_30360(date(2024, 1, 31), date(2024, 2, 28))
    29
    >>> days_30360(date(2024, 1, 15), date(2024, 2, 15))
    31
    """
    y1, m1, d1 = start.year, start.month, start.day
    y2, m2, d2 = end.year, end.month, end.day

    if d1 == 31:
        d1 = 30
    if d2 == 31 and d1 >= 30:
        d2 = 30

    days = (y2 - y1) * 360 + (m2 - m1) * 30 + (d2 - d1)
    return days + 1 if inclusive else days


def fraction_365(days: int) -> Decimal:
    return Decimal(days) / DAYS_IN_YEAR_365


def fraction_360(days: int) -> Decimal:
    return Decimal(days) / DAYS_IN_YEAR_360


def day_count(start: date, end: date, convention: str, inclusive: bool = True) -> int:
    """Day count under a named convention. Supports: "30/360", "ACT/365"."""
    if convention == DAY_COUNT_30_360:
        return days_30360(start, end, inclusive)
    elif convention == DAY_COUNT_ACT_365:
        days = act_days(start, end)
        return days + 1 if inclusive else days
    else:
        raise ValueError(f"Unknown day count convention: {convention}")


def day_fraction(days: int, convention: str) -> Decimal:
    """Year fraction for a day count under a named convention."""
    if convention == DAY_COUNT_30_360:
        return fraction_360(days)
    elif convention == DAY_COUNT_ACT_365:
        return fraction_365(days)
    else:
        raise ValueError(f"Unknown day count convention: {convention}")


def year_fraction(start: date, end: date, convention: str) -> Decimal:
    """
    Exclusive year fraction between two dates.

    year_fraction(2024-01-15, 2025-01-15, "30/360") == 1
    """
    return day_fraction(day_count(start, end, convention, inclusive=False), convention)
