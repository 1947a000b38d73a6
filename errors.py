#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Optional


class FeedReaderError(Exception):
    """Base class for feed reader errors."""


class ValidationError(FeedReaderError):
    """Raised when user or configuration input is rejected.

    This is the only error class meant to reach an end user directly, so the
    message should describe what to fix.
    """


class FeedFetchError(FeedReaderError):
    """Raised when a feed document cannot be fetched or parsed.

    Attributes:
        url: The feed URL that failed.
        status: HTTP status, when the failure came from a response.
    """

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class RefreshInProgressError(FeedReaderError):
    """Raised when a refresh batch is requested while another one is running."""

    def __init__(self, message: str = "A feed refresh is already in progress"):
        super().__init__(message)


__all__ = ["FeedReaderError", "ValidationError", "FeedFetchError", "RefreshInProgressError"]
