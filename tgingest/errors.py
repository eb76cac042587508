"""
Exception hierarchy for tgingest.

Configuration problems abort startup, authorization problems are fatal
for the session that raised them, and everything network-shaped is
retried by the backend before it reaches the caller.
"""

from typing import Optional


class TGIngestError(Exception):
    """Base class for all tgingest errors."""


class ConfigurationError(TGIngestError):
    """Missing or invalid startup configuration."""


class NoSessionsError(ConfigurationError):
    """No usable session file is available."""


class AuthorizationError(TGIngestError):
    """Connected, but the session is not authorized.

    Never retried. The session has to be re-authorized with the
    external authorization tool.
    """

    def __init__(self, session_name: str):
        super().__init__(
            f"Session {session_name} is not authorized. "
            "Re-run the authorization tool to create a fresh session."
        )
        self.session_name = session_name


class ChannelNotFoundError(TGIngestError):
    """The channel handle does not resolve to anything."""

    def __init__(self, channel: str):
        super().__init__(f"Channel not found: {channel}")
        self.channel = channel


class WebScrapingError(TGIngestError):
    """Base class for errors raised by the web scraping backend."""


class InvalidUrlError(WebScrapingError):
    """The channel handle or link has an unrecognized shape."""


class StatusCodeError(WebScrapingError):
    """Non-2xx HTTP response."""

    def __init__(self, status: int, url: Optional[str] = None):
        message = f"HTTP status code error: {status}"
        if url:
            message += f" ({url})"
        super().__init__(message)
        self.status = status
        self.url = url


class ParseError(WebScrapingError):
    """Unexpected HTML/JSON shape in a scraped page."""


class ScrapeTimeoutError(WebScrapingError):
    """The whole scrape exceeded its time budget."""


class RequestTimeoutError(WebScrapingError):
    """A single page request kept timing out until retries ran out."""
