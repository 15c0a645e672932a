# /backend/wardround/services/date_normalizer.py

"""
Normalization utilities applied to extracted records BEFORE they are handed
to the reconciliation engine.

Dates come off Thai lab sheets and EMR screens in whatever shape the model
copied: Buddhist Era years, two-digit years, day-first or year-first, with or
without a time. Everything is brought to "YYYY-MM-DD HH:mm".

These are pure functions: no side effects, no I/O.
"""

import re
import logging
from datetime import date, datetime
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "%Y-%m-%d %H:%M"

BUDDHIST_ERA_OFFSET = 543
BUDDHIST_ERA_THRESHOLD = 2400

# 2026-01-26, 2567/06/14
_YEAR_FIRST = re.compile(r"(?<!\d)(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})(?!\d)")

# 26/01/2026, 14-6-2567, 05.05.24
_DAY_FIRST = re.compile(r"(?<!\d)(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{1,4})(?!\d)")

# 14/6 (year taken from the reference year)
_NO_YEAR = re.compile(r"(?<![\d/\-.])(\d{1,2})[/\-](\d{1,2})(?![\d/\-.])")

# 26 Jan 2026, 26 January 67
_MONTH_NAME = re.compile(r"(?<!\d)(\d{1,2})\s+([A-Za-z]{3,9})\.?,?\s+(\d{2,4})(?!\d)")

# 08:30, T08:30:15, 8.30
_TIME = re.compile(r"^\s*,?\s*T?\s*(\d{1,2})[:.](\d{2})(?:[:.](\d{2})(?:\.\d+)?)?")

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_NUMERIC = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


def to_gregorian_year(year: int) -> int:
    """
    Buddhist Era years (> 2400) lose 543; 0-99 are 20xx; anything else is
    taken literally.
    """
    if year > BUDDHIST_ERA_THRESHOLD:
        return year - BUDDHIST_ERA_OFFSET
    if 0 <= year <= 99:
        return 2000 + year
    return year


def _parse_time(rest: str):
    match = _TIME.match(rest)
    if not match:
        return 0, 0
    return int(match.group(1)), int(match.group(2))


def _build(year: int, month: int, day: int, hour: int, minute: int) -> Optional[str]:
    try:
        return datetime(year, month, day, hour, minute).strftime(OUTPUT_FORMAT)
    except ValueError:
        logger.debug(f"Invalid calendar date {year}-{month}-{day} {hour}:{minute}")
        return None


def normalize(raw: Any, reference_year: Optional[int] = None) -> Optional[str]:
    """
    Convert a date/time string to "YYYY-MM-DD HH:mm".

    Day-first is the default reading. A four-digit leading component makes
    it year-first; a middle component above 12 makes it month-first. A
    day/month pair without a year takes ``reference_year`` (default: this
    year). Missing time is "00:00".

    Returns None when no date is found or the date does not exist.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.strftime(OUTPUT_FORMAT)
    if isinstance(raw, date):
        return raw.strftime("%Y-%m-%d 00:00")

    value = str(raw).strip()
    if not value:
        return None

    match = _YEAR_FIRST.search(value)
    if match:
        year = to_gregorian_year(int(match.group(1)))
        month, day = int(match.group(2)), int(match.group(3))
        hour, minute = _parse_time(value[match.end():])
        return _build(year, month, day, hour, minute)

    match = _DAY_FIRST.search(value)
    if match:
        first, second = int(match.group(1)), int(match.group(2))
        year = to_gregorian_year(int(match.group(3)))
        day, month = first, second
        if second > 12 and first <= 12:
            day, month = second, first
        hour, minute = _parse_time(value[match.end():])
        return _build(year, month, day, hour, minute)

    match = _MONTH_NAME.search(value)
    if match:
        month = _MONTHS.get(match.group(2)[:3].lower())
        if month is None:
            return None
        year = to_gregorian_year(int(match.group(3)))
        hour, minute = _parse_time(value[match.end():])
        return _build(year, month, int(match.group(1)), hour, minute)

    match = _NO_YEAR.search(value)
    if match:
        first, second = int(match.group(1)), int(match.group(2))
        day, month = first, second
        if second > 12 and first <= 12:
            day, month = second, first
        year = reference_year if reference_year is not None else datetime.now().year
        hour, minute = _parse_time(value[match.end():])
        return _build(to_gregorian_year(year), month, day, hour, minute)

    logger.debug(f"No date pattern in '{value}'")
    return None


def normalize_or(raw: Any, fallback: str, reference_year: Optional[int] = None) -> str:
    """normalize(), substituting ``fallback`` when nothing usable is found."""
    return normalize(raw, reference_year) or fallback


def now_stamp() -> str:
    return datetime.now().strftime(OUTPUT_FORMAT)


def normalize_string(value: Any) -> Optional[str]:
    """Strip a plain string field; empty becomes None."""
    if value is None:
        return None

    normalized = str(value).strip()
    return normalized if normalized else None


def normalize_lab_value(value: Any) -> Optional[Union[float, str]]:
    """
    Numeric-looking results become floats ("1,200" -> 1200.0); qualitative
    results such as "<0.5", "Positive" or "1+" stay strings.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        return None

    candidate = text.replace(",", "")
    if _NUMERIC.match(candidate):
        try:
            return float(candidate)
        except ValueError:
            logger.warning(f"Could not normalize lab value: '{value}'")
    return text
