"""
Ingestion Orchestrator

Composes the cache, the backend rate limiter and both backends into one
operation: give it a channel handle, get back a batch of recent messages.

Per request:
1. Message cache lookup (a hit makes zero network calls)
2. Backend selection by preference and cooldown
3. For the API backend, channel validation (no fallback to scraping)
4. Fetch, then record the backend call and write the cache

Backends are only switched at selection time; once a backend is chosen
its failure is the request's failure.
"""

import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .backends.base import MessageBackend
from .backends.telethon_backend import TelethonBackend
from .backends.web_backend import WebHTMLBackend
from .cache import CacheManager
from .config import Config
from .errors import ChannelNotFoundError
from .models import BackendType, Message
from .rate_limiter import BackendRateLimiter, ProtocolRateLimiter
from .sessions import SessionPool

logger = logging.getLogger(__name__)


DEFAULT_PREFERENCE = (BackendType.WEB, BackendType.API)

Producer = Callable[[List[Message]], Awaitable[Any]]


class ChannelIngestor:
    """
    Fetch-with-failover-and-cache for channel messages.

    Rate limiter and cache are injected so several ingestors (or tests)
    can share or isolate them as needed.

    Usage:
        async with ChannelIngestor.from_config(config) as ingestor:
            messages, hit_both = await ingestor.get_messages("@channel")
    """

    def __init__(
        self,
        cache: CacheManager,
        rate_limiter: BackendRateLimiter,
        backends: Dict[BackendType, MessageBackend],
        preference: Sequence[BackendType] = DEFAULT_PREFERENCE
    ):
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.backends = dict(backends)
        self.preference = tuple(b for b in preference if b in self.backends)

        if not self.preference:
            raise ValueError("No configured backend matches the preference order")

    @classmethod
    def from_config(
        cls,
        config: Config,
        rate_limiter: Optional[BackendRateLimiter] = None,
        protocol_limiter: Optional[ProtocolRateLimiter] = None,
        cache: Optional[CacheManager] = None
    ) -> "ChannelIngestor":
        """
        Wire up a process-level ingestor from configuration.

        Raises:
            ConfigurationError: invalid config, or no session files while
                the API backend is enabled
        """
        config.require_valid()

        cache = cache or CacheManager(Path(config.data_dir), config.cache_db)
        rate_limiter = rate_limiter or BackendRateLimiter({
            BackendType.WEB: config.web_cooldown,
            BackendType.API: config.api_cooldown,
        })

        backends: Dict[BackendType, MessageBackend] = {}
        for backend_type in config.backends:
            if backend_type is BackendType.WEB:
                backends[backend_type] = WebHTMLBackend(
                    max_pages=config.max_pages,
                    min_length=config.min_message_length,
                    timeout=config.scrape_timeout,
                    page_delay=config.page_delay
                )
            else:
                pool = SessionPool(
                    Path(config.sessions_dir),
                    api_id=config.api_id,
                    api_hash=config.api_hash,
                    suffix=config.session_suffix
                )
                pool.discover()
                backends[backend_type] = TelethonBackend(
                    api_id=config.api_id,
                    api_hash=config.api_hash,
                    session_pool=pool,
                    protocol_limiter=protocol_limiter or ProtocolRateLimiter(config.resolve_interval),
                    message_limit=config.message_limit,
                    min_length=config.min_message_length
                )

        return cls(cache, rate_limiter, backends, preference=config.backends)

    def select_backend(self) -> Tuple[BackendType, bool]:
        """
        Pick the backend for the next fetch.

        Returns:
            (backend, hit_both_rate_limits). The first available backend in
            preference order wins. When all are cooling, the one that frees
            up sooner is chosen (ties go to the earlier preference) and the
            second value is True.
        """
        selected = self.rate_limiter.select_available(self.preference)
        if self.rate_limiter.is_available(selected):
            return selected, False

        waits = [
            (self.rate_limiter.time_until_available(backend) or 0.0, index, backend)
            for index, backend in enumerate(self.preference)
        ]
        wait_time, _, soonest = min(waits)
        logger.info(
            f"All backends rate limited, using {soonest.label} "
            f"(available in {wait_time:.1f}s)"
        )
        return soonest, True

    def check_rate_limits(self) -> bool:
        """True if every backend is cooling, i.e. the next fresh fetch will wait."""
        return not any(self.rate_limiter.is_available(b) for b in self.preference)

    async def get_messages(self, channel: str) -> Tuple[List[Message], bool]:
        """
        Recent messages for a channel, newest first.

        Returns:
            (messages, hit_both_rate_limits)

        Raises:
            ChannelNotFoundError: the API backend was chosen and the channel
                does not exist
            Backend-specific errors once that backend's retries are exhausted
        """
        cached = self.cache.load_channel_messages(channel)
        if cached is not None:
            return cached, False

        backend_type, hit_both = self.select_backend()
        backend = self.backends[backend_type]
        logger.info(f"Fetching fresh messages from {channel} via {backend_type.label}")

        await self.rate_limiter.wait(backend_type)

        if backend_type is BackendType.API and not await backend.validate_channel(channel):
            raise ChannelNotFoundError(channel)

        messages = await backend.fetch_messages(channel)
        self.rate_limiter.record_call(backend_type)

        if messages:
            self.cache.save_channel_messages(channel, messages)
        else:
            logger.warning(f"No messages retrieved from {channel}, not caching")

        return messages, hit_both

    async def get_or_compute(
        self,
        messages: List[Message],
        purpose: str,
        producer: Producer
    ) -> Any:
        """
        Downstream result for a batch, through the result cache.

        ``producer`` (typically an LLM query) only runs on a miss; its
        JSON-serializable result is stored under the content hash.
        """
        key = self.cache.result_cache_key(messages, purpose)
        cached = self.cache.load_result(key)
        if cached is not None:
            return cached

        result = await producer(messages)
        self.cache.save_result(key, result)
        return result

    async def close(self) -> None:
        """Disconnect every backend."""
        for backend in self.backends.values():
            await backend.disconnect()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
