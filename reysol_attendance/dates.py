#!/usr/bin/env python3
"""
Date helpers for match dates and league windows.

Match dates arrive in several shapes: plain ``YYYY-MM-DD`` from the admin
form, ``YYYY-MM`` for league bounds, and full ISO timestamps once the
spreadsheet has touched them. Everything is normalized to naive local
datetimes.
"""
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple
import calendar
import logging
import re


logger = logging.getLogger(__name__)

WEEKDAYS_JA = ['月', '火', '水', '木', '金', '土', '日']

_FULL_DATE = re.compile(r'^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$')
_YEAR_MONTH = re.compile(r'^(\d{4})[-/](\d{1,2})$')
_FALLBACK_FORMATS = ('%Y/%m/%d %H:%M', '%Y/%m/%d %H:%M:%S', '%Y/%m/%dT%H:%M')

Window = Tuple[datetime, datetime]


def parse_date(value: Any, now: Optional[datetime] = None) -> datetime:
    """
    Parse a stored date into a naive local datetime.

    Unparsable input is logged and falls back to ``now`` so a single bad
    row never breaks sorting or filtering.

    Parameters
    ----------
    value : Any
        datetime, millisecond timestamp, or date string
    now : Optional[datetime]
        Fallback value (default: current time)

    Returns
    -------
    datetime
        Parsed datetime
    """
    fallback = now or datetime.now()
    if not value and value != 0:
        return fallback
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000)

    text = str(value).strip()

    # Full ISO timestamps are UTC-aware; convert to local time
    if 'T' in text or 'Z' in text:
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone().replace(tzinfo=None)
            return parsed
        except ValueError:
            pass

    full = _FULL_DATE.match(text)
    if full:
        try:
            return datetime(int(full.group(1)), int(full.group(2)), int(full.group(3)))
        except ValueError:
            pass
    else:
        month = _YEAR_MONTH.match(text)
        if month:
            try:
                return datetime(int(month.group(1)), int(month.group(2)), 1)
            except ValueError:
                pass
        else:
            slashed = text.replace('-', '/')
            for fmt in _FALLBACK_FORMATS:
                try:
                    return datetime.strptime(slashed, fmt)
                except ValueError:
                    continue

    logger.warning("parse_date failed for: %r", value)
    return fallback


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


def league_window(start: str, end: str) -> Window:
    """
    Compute the inclusive datetime range covered by a league.

    A ``YYYY-MM`` end bound covers the whole month.

    Parameters
    ----------
    start : str
        League start (YYYY-MM or a full date)
    end : str
        League end (YYYY-MM or a full date)

    Returns
    -------
    Tuple[datetime, datetime]
        (first instant, last instant)
    """
    window_start = start_of_day(parse_date(start))
    end_text = str(end or '').strip()
    month = _YEAR_MONTH.match(end_text)
    if month:
        year, mon = int(month.group(1)), int(month.group(2))
        last_day = calendar.monthrange(year, mon)[1]
        window_end = end_of_day(datetime(year, mon, last_day))
    else:
        window_end = end_of_day(parse_date(end))
    return window_start, window_end


def in_window(value: datetime, window: Window) -> bool:
    return window[0] <= value <= window[1]


def format_slash_date(value: Any) -> str:
    """2025/03/01"""
    d = parse_date(value)
    return f"{d.year}/{d.month:02d}/{d.day:02d}"


def format_short_date(value: Any) -> str:
    """3/1 (土)"""
    d = parse_date(value)
    return f"{d.month}/{d.day} ({WEEKDAYS_JA[d.weekday()]})"


def format_date_with_day_and_time(value: Any) -> str:
    """2025/03/01 (土) 15:00; empty input stays empty."""
    if not value:
        return ''
    d = parse_date(value)
    return f"{d.year}/{d.month:02d}/{d.day:02d} ({WEEKDAYS_JA[d.weekday()]}) {d.hour:02d}:{d.minute:02d}"


def days_before(value: Any, days: int) -> str:
    """Month/day and weekday of a date ``days`` before the given one, e.g. 2/28(金)."""
    d = parse_date(value) - timedelta(days=days)
    return f"{d.month}/{d.day}({WEEKDAYS_JA[d.weekday()]})"
