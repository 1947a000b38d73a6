#!/usr/bin/env python3
"""
Publication date normalization.

Feeds publish dates in every dialect imaginable: RFC 822 with or without a
weekday, ISO 8601, W3C-DTF, and RFC 822 with zone names that generic parsers
reject (CET, MESZ, ...). Everything is turned into a single canonical form,
an ISO-8601 UTC string with millisecond precision, so stored dates sort
lexically and compare across feeds.

An unreadable date never drops an article; it is stamped with the current time.
"""

from calendar import timegm
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional
import re

import feedparser

from config import get_logger

logger = get_logger("dates")

# Zone names seen in the wild that the RFC 822 parser does not know
ZONE_ABBREVIATIONS = {
    "UTC": "+0000",
    "UT": "+0000",
    "GMT": "+0000",
    "Z": "+0000",
    "CET": "+0100",
    "MEZ": "+0100",
    "CEST": "+0200",
    "MESZ": "+0200",
}

_TRAILING_TOKEN = re.compile(r"([A-Za-z]+)\s*$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Render an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a canonical timestamp produced by ``normalize_date``."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_rfc822(value: str) -> Optional[datetime]:
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        # email.utils silently drops zone names it does not know; the instant is unknown
        if _TRAILING_TOKEN.search(value):
            return None
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_with_feedparser(value: str) -> Optional[datetime]:
    try:
        time_struct = feedparser._parse_date(value)
    except (ValueError, TypeError, AttributeError, OverflowError):
        return None
    if not time_struct:
        return None
    try:
        # feedparser returns UTC struct_time values
        return datetime.fromtimestamp(timegm(time_struct), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def _parse_direct(value: str) -> Optional[datetime]:
    for parser in (_parse_iso, _parse_rfc822):
        dt = parser(value)
        if dt is not None:
            return dt
    return None


def coerce_zone_abbreviation(value: str) -> Optional[str]:
    """Replace a trailing known zone name with its numeric offset.

    Returns None when the string does not end in a known abbreviation.
    """
    match = _TRAILING_TOKEN.search(value)
    if not match:
        return None
    offset = ZONE_ABBREVIATIONS.get(match.group(1).upper())
    if offset is None:
        return None
    return value[:match.start(1)] + offset


def try_normalize_date(raw: Optional[str]) -> Optional[str]:
    """Like ``normalize_date`` but returns None when the value cannot be read."""
    value = raw.strip() if isinstance(raw, str) else ""
    if not value:
        return None

    parsed = _parse_direct(value)
    if parsed is None:
        coerced = coerce_zone_abbreviation(value)
        if coerced is not None:
            parsed = _parse_direct(coerced)
    if parsed is None:
        parsed = _parse_with_feedparser(value)
    if parsed is None:
        logger.debug(f"Unparseable date '{value}'")
        return None
    try:
        return format_timestamp(parsed)
    except (ValueError, OverflowError):
        logger.debug(f"Date '{value}' out of range")
        return None


def normalize_date(raw: Optional[str]) -> str:
    """Convert an origin-supplied date string into a canonical UTC timestamp.

    Args:
        raw: Date string in any supported dialect, or None.

    Returns:
        ISO-8601 UTC timestamp. Missing or unparseable input yields the current time.
    """
    return try_normalize_date(raw) or format_timestamp(utc_now())
