# gst_engine/domain/services/gst_calendar.py
"""
Indian financial-year and GST return-period date helpers.

The Indian FY runs April to March, labelled "2024-25".
"""

from __future__ import annotations

import re
from datetime import date

_FY_LONG = re.compile(r"^(?:FY)?\s*(\d{4})-(\d{2})$", re.IGNORECASE)
_FY_SHORT = re.compile(r"^(?:FY)?\s*(\d{2})-(\d{2})$", re.IGNORECASE)

# Monthly RCM / GSTR-3B payment falls due on this day of the next month
RETURN_DUE_DAY = 20


def financial_year_start(d: date) -> int:
    """Calendar year in which the FY containing *d* begins."""
    return d.year if d.month >= 4 else d.year - 1


def financial_year_label(d: date) -> str:
    start = financial_year_start(d)
    return f"{start}-{str(start + 1)[2:]}"


def parse_financial_year(label: str) -> int:
    """Return the start year for "2024-25", "FY2024-25" or "FY24-25"."""
    text = (label or "").strip()
    m = _FY_LONG.match(text)
    if m:
        return int(m.group(1))
    m = _FY_SHORT.match(text)
    if m:
        return 2000 + int(m.group(1))
    raise ValueError(f"Unrecognised financial year: {label!r}")


def next_month_day(d: date, day: int = RETURN_DUE_DAY) -> date:
    if d.month == 12:
        return date(d.year + 1, 1, day)
    return date(d.year, d.month + 1, day)


def return_period(d: date) -> str:
    """GSTN return period format, MMYYYY."""
    return f"{d.month:02d}{d.year}"


def months_between(start: date, end: date) -> int:
    """Whole months from *start* to *end*, counting a part month as one."""
    if end <= start:
        return 0
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day > start.day:
        months += 1
    return max(months, 1)
