"""
Date and shipping-mode normalization for imported rows.

Spreadsheets arrive with dates in many shapes. Everything is reduced to
a timezone-aware UTC midnight so equality checks and ETA arithmetic work
on calendar dates only.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

import pandas as pd
import structlog

from config.shipping import ETA_OFFSET_DAYS, SHIPPING_MODE_ALIASES

logger = structlog.get_logger(__name__)


# Dash-separated month-first with a day-first fallback: 03-25-2024, 25-03-2024
_DASH_MDY = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
# 2024/3/25
_SLASH_YMD = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")
# 3/25/24
_SLASH_MDYY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$")
# 3/25/2024
_SLASH_MDYYYY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
# 2024-3-25
_DASH_YMD = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
# 2024-03-25T10:15:00Z, 2024-03-25 10:15
_ISO_DATETIME = re.compile(r"^(\d{4})-(\d{2})-(\d{2})[T ]")

# Excel serial day numbers (1954 .. 2118)
_EXCEL_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)
_EXCEL_SERIAL_RANGE = (20000, 80000)


def utc_midnight(year: int, month: int, day: int) -> Optional[datetime]:
    """Build a UTC-midnight datetime, None if the date is out of range."""
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def _from_datetime(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def _is_missing(raw: Any) -> bool:
    if raw is None:
        return True
    try:
        return bool(pd.isna(raw))
    except (TypeError, ValueError):
        return False


def parse_date(raw: Any) -> Optional[datetime]:
    """
    Parse a date in any supported format to UTC midnight.

    Tried in order: date/datetime passthrough, MM-DD-YYYY (day-first when
    the first part exceeds 12), YYYY/MM/DD, MM/DD/YY (20xx), MM/DD/YYYY,
    YYYY-MM-DD, ISO datetime (date part), Excel serial number, then a
    generic pandas parse.

    Args:
        raw: Value from a spreadsheet cell or a stored record

    Returns:
        Timezone-aware UTC midnight, or None if unparseable/out of range
    """
    if _is_missing(raw):
        return None

    if isinstance(raw, datetime):
        return _from_datetime(raw)
    if isinstance(raw, date):
        return utc_midnight(raw.year, raw.month, raw.day)

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        low, high = _EXCEL_SERIAL_RANGE
        if low <= raw <= high:
            return _from_datetime(_EXCEL_EPOCH + timedelta(days=int(raw)))
        return None

    text = str(raw).strip()
    if not text:
        return None

    match = _DASH_MDY.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        if first > 12:
            return utc_midnight(year, second, first)
        return utc_midnight(year, first, second)

    match = _SLASH_YMD.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return utc_midnight(year, month, day)

    match = _SLASH_MDYY.match(text)
    if match:
        month, day, year = (int(part) for part in match.groups())
        return utc_midnight(2000 + year, month, day)

    match = _SLASH_MDYYYY.match(text)
    if match:
        month, day, year = (int(part) for part in match.groups())
        return utc_midnight(year, month, day)

    match = _DASH_YMD.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return utc_midnight(year, month, day)

    match = _ISO_DATETIME.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return utc_midnight(year, month, day)

    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        parsed = None
    if parsed is None or pd.isna(parsed):
        logger.debug("date_parse_failed", raw=text)
        return None
    return _from_datetime(parsed.to_pydatetime())


def format_shipping_mode(raw: Any) -> Optional[Any]:
    """
    Normalize a free-text shipping mode.

    AIR -> "Air", SEA/BOAT -> "Sea", GROUND -> "Ground" (case-insensitive).
    Unrecognized values pass through unchanged; empty values become None.
    """
    if _is_missing(raw):
        return None
    text = str(raw).strip()
    if not text:
        return None
    return SHIPPING_MODE_ALIASES.get(text.upper(), raw)


def compute_eta(ship_date: Any, mode: Optional[str]) -> Optional[datetime]:
    """
    Estimated arrival from ship date and mode.

    Air +14 days, Sea/Boat +35, Ground +3. None when either input is
    missing or the mode is not recognized.
    """
    start = parse_date(ship_date)
    if start is None or not mode:
        return None
    offset = ETA_OFFSET_DAYS.get(str(mode).strip().upper())
    if offset is None:
        return None
    return start + timedelta(days=offset)


def today_utc() -> datetime:
    """Today at UTC midnight."""
    return _from_datetime(datetime.now(timezone.utc))
