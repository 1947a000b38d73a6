#!/usr/bin/env python3
"""
Field extraction for feed entries.

feedparser (and raw RSS/Atom records built by hand or by other parsers) hand
back fields as plain strings, lists of strings, or wrapper mappings with a
text or URL sub-key, depending on the dialect. ``unwrap_text`` is the single
place that flattens those shapes; everything below it works on ``str | None``.
"""

from calendar import timegm
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from time import struct_time
from typing import Any, Iterable, Optional
import re

from config import get_logger
from dates import format_timestamp, normalize_date, try_normalize_date
from utils import html_to_text

logger = get_logger("entries")

UNTITLED = "Untitled"

# Keys that carry the payload of a wrapper mapping, in preference order
_WRAPPER_KEYS = ("value", "_", "#text", "href", "url")

PUBLISHED_FIELDS = ("isoDate", "published", "pubDate", "pubdate", "dc:date", "date", "issued", "created")
UPDATED_FIELDS = ("updated", "atom:updated", "modified", "lastBuildDate")

_IMG_SRC = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)


@dataclass
class EntryFields:
    """Normalized view of one feed entry."""

    guid: str
    title: Optional[str]
    link: Optional[str]
    description: str
    image_url: Optional[str]
    pub_date: str
    date_is_fallback: bool = False

    @property
    def display_title(self) -> str:
        return self.title or UNTITLED


def unwrap_text(value: Any) -> Optional[str]:
    """Flatten a loosely-typed feed field into a stripped string or None.

    Lists yield their first non-empty element; mappings yield the first
    non-empty value under ``value``, ``_``, ``#text``, ``href`` or ``url``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping):
        for key in _WRAPPER_KEYS:
            if key in value:
                text = unwrap_text(value[key])
                if text:
                    return text
        return None
    if isinstance(value, (list, tuple)):
        for item in value:
            text = unwrap_text(item)
            if text:
                return text
    return None


def _get(entry: Any, field: str) -> Any:
    """Safely fetch a field with dict or attribute access."""
    if entry is None:
        return None
    getter = getattr(entry, "get", None)
    if callable(getter):
        try:
            value = getter(field)
        except (KeyError, AttributeError):
            value = None
        if value is not None:
            return value
    return getattr(entry, field, None)


def _first_text(entry: Any, fields: Iterable[str]) -> Optional[str]:
    for field in fields:
        text = unwrap_text(_get(entry, field))
        if text:
            return text
    return None


def _as_records(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    return [value]


def _record_attr(record: Any, key: str) -> Optional[str]:
    """Read an attribute from a media/enclosure record.

    Handles feedparser dicts (``{'url': ...}``) and xml2js-style records that
    keep attributes under ``$`` (``{'$': {'url': ...}}``).
    """
    if not isinstance(record, Mapping):
        return None
    text = unwrap_text(record.get(key))
    if text:
        return text
    attrs = record.get("$")
    if isinstance(attrs, Mapping):
        return unwrap_text(attrs.get(key))
    return None


def _enclosure_image(entry: Any) -> Optional[str]:
    candidates = []
    candidates.extend(_as_records(_get(entry, "enclosures")))
    candidates.extend(
        link for link in _as_records(_get(entry, "links"))
        if isinstance(link, Mapping) and link.get("rel") == "enclosure"
    )
    candidates.extend(_as_records(_get(entry, "enclosure")))
    for record in candidates:
        mime = (_record_attr(record, "type") or "").lower()
        if not mime.startswith("image/"):
            continue
        url = _record_attr(record, "url") or _record_attr(record, "href")
        if url:
            return url
    return None


def _media_url(entry: Any, fields: Iterable[str]) -> Optional[str]:
    for field in fields:
        for record in _as_records(_get(entry, field)):
            url = _record_attr(record, "url")
            if url:
                return url
    return None


def _html_bodies(entry: Any) -> Iterable[str]:
    for field in ("content", "content:encoded", "summary", "description"):
        for record in _as_records(_get(entry, field)):
            text = unwrap_text(record)
            if text:
                yield text


def extract_image_url(entry: Any) -> Optional[str]:
    """Pick a display image: image enclosure, media:content, media:thumbnail, then inline <img>."""
    url = _enclosure_image(entry)
    if url:
        return url
    url = _media_url(entry, ("media_content", "media:content"))
    if url:
        return url
    url = _media_url(entry, ("media_thumbnail", "media:thumbnail"))
    if url:
        return url
    for body in _html_bodies(entry):
        match = _IMG_SRC.search(body)
        if match:
            return match.group(1)
    return None


def _struct_to_timestamp(value: Any) -> Optional[str]:
    if not isinstance(value, struct_time):
        return None
    try:
        return format_timestamp(datetime.fromtimestamp(timegm(value), tz=timezone.utc))
    except (ValueError, OverflowError, OSError):
        return None


def _resolve_pub_date(entry: Any) -> Optional[str]:
    for fields in (PUBLISHED_FIELDS, UPDATED_FIELDS):
        for field in fields:
            normalized = try_normalize_date(unwrap_text(_get(entry, field)))
            if normalized:
                return normalized
        # feedparser already parsed some dialects it could read
        for field in fields:
            normalized = _struct_to_timestamp(_get(entry, f"{field}_parsed"))
            if normalized:
                return normalized
    return None


def extract_pub_date(entry: Any) -> str:
    """Resolve the publication date: published spellings, then updated spellings, then now."""
    return _resolve_pub_date(entry) or normalize_date(None)


def extract_description(entry: Any) -> str:
    text = _first_text(entry, ("contentSnippet", "summary", "description"))
    return html_to_text(text)


def extract_fields(entry: Any) -> EntryFields:
    """Derive the normalized fields of one feed entry.

    Raises:
        ValueError: When the entry has no guid, link or title to key it by.
    """
    title = unwrap_text(_get(entry, "title"))
    link = unwrap_text(_get(entry, "link"))
    guid = _first_text(entry, ("guid", "id")) or link or title
    if not guid:
        raise ValueError("entry has no guid, link or title")

    pub_date = _resolve_pub_date(entry)
    if pub_date is None:
        logger.debug(f"No usable date for entry {guid}; stamping with current time")
    return EntryFields(
        guid=guid,
        title=title,
        link=link,
        description=extract_description(entry),
        image_url=extract_image_url(entry),
        pub_date=pub_date or normalize_date(None),
        date_is_fallback=pub_date is None,
    )
