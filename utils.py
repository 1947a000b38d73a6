#!/usr/bin/env python3
"""
Utility classes and functions for the feed reader.

This module contains shared utilities used by the fetcher, the content
extractor and the CLI: retry backoff, URL validation, HTML sanitizing and
reading-time estimation.
"""

from asyncio import sleep
from math import ceil
from typing import Optional
import re
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from config import get_logger

# Module-specific logger
logger = get_logger("utils")

WORDS_PER_MINUTE = 300


def validate_url(url: str) -> bool:
    """Validate if a string is a properly formatted http(s) URL.

    Args:
        url: The URL string to validate

    Returns:
        True if the URL appears to be valid, False otherwise
    """
    if not url or not isinstance(url, str):
        return False

    url = url.strip()
    if not url:
        return False

    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def favicon_url(feed_url: str) -> Optional[str]:
    """Return the conventional /favicon.ico location for a feed's host."""
    if not validate_url(feed_url):
        return None
    parsed = urlparse(feed_url.strip())
    return f"{parsed.scheme}://{parsed.netloc}/favicon.ico"


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate a string to a maximum length, adding a suffix if truncated.

    Args:
        text: The text to potentially truncate
        max_length: Maximum allowed length (including suffix)
        suffix: Suffix to add when truncating

    Returns:
        The original text or truncated version with suffix
    """
    if not text or len(text) <= max_length:
        return text

    if len(suffix) >= max_length:
        return text[:max_length]

    return text[:max_length - len(suffix)] + suffix


def html_to_text(html_content: Optional[str]) -> str:
    """Strip tags from an HTML fragment and collapse whitespace."""
    if not html_content:
        return ""
    if '<' not in html_content:
        return re.sub(r'\s+', ' ', html_content).strip()
    text = BeautifulSoup(html_content, 'html.parser').get_text(separator=' ')
    return re.sub(r'\s+', ' ', text).strip()


def estimate_reading_time(html_content: Optional[str]) -> Optional[int]:
    """Estimate reading time in seconds for an HTML fragment.

    Returns None when there is no readable text, so callers can omit the value.
    """
    words = len(html_to_text(html_content).split())
    if words == 0:
        return None
    return ceil(words / WORDS_PER_MINUTE * 60)


def sanitize_html(html_content: str, base_url: Optional[str] = None) -> str:
    """Sanitize extracted article HTML for storage and display.

    Args:
        html_content: Raw HTML to sanitize
        base_url: Optional base URL used to resolve relative href/src values

    Behavior:
    - Removes dangerous elements (script/style/iframe/etc.)
    - Strips inline event handlers and javascript: URLs
    - Removes common tracking pixels
    - Resolves relative href/src to absolute URLs when ``base_url`` is provided; otherwise
      non-absolute references are neutralized (links -> ``#``, images removed)
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, 'html.parser')

    for tag in soup([
        "script", "style", "iframe", "form", "object", "embed", "noscript",
        "frame", "frameset", "applet", "meta", "base", "link"
    ]):
        tag.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith('on'):
                del tag[attr]
            elif attr.lower() in ('href', 'src') and str(tag[attr]).strip().lower().startswith('javascript:'):
                del tag[attr]

    for img in soup.find_all('img'):
        src = img.get('src', '')
        if re.search(r'(pixel|tracker|counter|spacer|blank)', src, re.I) or \
           (re.search(r'\.(gif|png)$', src, re.I) and img.get('height') in ('0', '1')):
            img.decompose()

    def _rewrite_url(value: str, attr: str) -> Optional[str]:
        if attr == 'href' and value.startswith('mailto:'):
            return value
        if value.startswith(('http://', 'https://')):
            return value
        if base_url:
            resolved = urljoin(base_url, value)
            if resolved.startswith(('http://', 'https://')):
                return resolved
        return None

    for tag in soup.find_all(['a', 'img']):
        for attr in ('href', 'src'):
            if not tag.has_attr(attr) or not str(tag[attr]):
                continue
            rewritten = _rewrite_url(str(tag[attr]), attr)
            if rewritten:
                tag[attr] = rewritten
            elif attr == 'href':
                tag[attr] = '#'
            else:
                del tag[attr]

    return str(soup).strip()


class RetryHelper:
    """Helper class for implementing retry logic with exponential backoff."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
        """Initialize the retry helper.

        Args:
            max_retries: Maximum number of retry attempts
            base_delay: Base delay in seconds for exponential backoff
            max_delay: Maximum delay in seconds between retries
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt (0-based)."""
        delay = self.base_delay * (2 ** attempt)
        return min(delay, self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        """Sleep for the calculated delay for the given attempt."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)
