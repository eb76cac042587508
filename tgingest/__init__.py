"""
tgingest - Telegram Channel Message Ingestion

Fetches recent text messages from public Telegram channels for downstream
analysis, through two backends:
- Public preview page scraping (t.me/s/), cheap and account-free
- The authenticated MTProto API via Telethon, backed by a session pool

Features:
- Per-backend cooldowns with automatic selection by preference
- Channel resolution throttling for the API backend
- Retry with linear (scraping) or exponential (API) backoff
- SQLite message cache and content-addressed result cache
- Export to JSON/CSV/Parquet/Markdown
"""

__version__ = "1.0.0"
__author__ = "tgingest"

from .models import BackendType, Message
from .errors import (
    TGIngestError,
    ConfigurationError,
    NoSessionsError,
    AuthorizationError,
    ChannelNotFoundError,
    WebScrapingError,
    InvalidUrlError,
    StatusCodeError,
    ParseError,
    ScrapeTimeoutError,
    RequestTimeoutError,
)
from .config import Config
from .retry import RetryPolicy
from .rate_limiter import BackendRateLimiter, ProtocolRateLimiter
from .sessions import SessionPool, SessionFile, SessionValidationResult
from .cache import CacheManager, result_cache_key
from .backends import MessageBackend, TelethonBackend, WebHTMLBackend
from .ingest import ChannelIngestor

__all__ = [
    "BackendType",
    "Message",
    "TGIngestError",
    "ConfigurationError",
    "NoSessionsError",
    "AuthorizationError",
    "ChannelNotFoundError",
    "WebScrapingError",
    "InvalidUrlError",
    "StatusCodeError",
    "ParseError",
    "ScrapeTimeoutError",
    "RequestTimeoutError",
    "Config",
    "RetryPolicy",
    "BackendRateLimiter",
    "ProtocolRateLimiter",
    "SessionPool",
    "SessionFile",
    "SessionValidationResult",
    "CacheManager",
    "result_cache_key",
    "MessageBackend",
    "TelethonBackend",
    "WebHTMLBackend",
    "ChannelIngestor",
]
