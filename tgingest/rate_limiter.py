"""
Rate limiting for tgingest.

Two layers:
- BackendRateLimiter: one cooldown window per backend (web scraping is
  tolerated roughly once per 20 seconds, the authenticated API once per
  10 minutes to stay clear of anti-abuse flags)
- ProtocolRateLimiter: finer cooldowns for individual MTProto operations
  (username resolution, history iteration)

Both are plain objects meant to be constructed once and shared by every
request in the process.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional

from .models import BackendType

logger = logging.getLogger(__name__)


DEFAULT_BACKEND_WINDOWS: Dict[BackendType, float] = {
    BackendType.WEB: 20.0,
    BackendType.API: 600.0,
}


class BackendRateLimiter:
    """
    Tracks the last successful call per backend and computes cooldowns.

    A backend is available once ``window`` seconds have passed since its
    last recorded call. Calls are recorded by the caller only after the
    network operation succeeded, so failed attempts never burn cooldown.

    Waiting never holds a lock: a request sleeping out a cooldown does
    not stop other requests from checking availability.
    """

    def __init__(
        self,
        windows: Optional[Dict[BackendType, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        self.windows = dict(DEFAULT_BACKEND_WINDOWS)
        if windows:
            self.windows.update(windows)
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._last_call: Dict[BackendType, Optional[float]] = {b: None for b in BackendType}

    def time_until_available(self, backend: BackendType) -> Optional[float]:
        """Seconds until ``backend`` leaves its cooldown, or None if available now."""
        last_call = self._last_call.get(backend)
        if last_call is None:
            return None

        elapsed = self._clock() - last_call
        window = self.windows[backend]
        if elapsed < window:
            return window - elapsed
        return None

    def is_available(self, backend: BackendType) -> bool:
        return self.time_until_available(backend) is None

    def select_available(self, preference: Iterable[BackendType]) -> BackendType:
        """
        First available backend in preference order.

        If none is available the first preferred backend is returned anyway
        and the caller is expected to wait for it.
        """
        order = list(preference)
        if not order:
            raise ValueError("At least one backend must be given")

        for backend in order:
            if self.is_available(backend):
                return backend
        return order[0]

    async def wait(self, backend: BackendType) -> float:
        """
        Sleep out the remaining cooldown plus up to 10% jitter.

        Returns the number of seconds slept (0 if the backend was available).
        """
        remaining = self.time_until_available(backend)
        if remaining is None:
            return 0.0

        jitter = self._rng.uniform(0, remaining / 10)
        total = remaining + jitter
        logger.info(
            f"Rate limiting {backend.label}: waiting {total * 1000:.0f}ms "
            f"(with {jitter * 1000:.0f}ms jitter)"
        )
        await self._sleep(total)
        return total

    def record_call(self, backend: BackendType) -> None:
        """Stamp now as the last successful call for ``backend``."""
        self._last_call[backend] = self._clock()
        logger.debug(f"Recorded {backend.label} call")

    def get_stats(self) -> Dict[str, Optional[float]]:
        """Seconds until available, per backend name."""
        return {b.value: self.time_until_available(b) for b in BackendType}


class ProtocolRateLimiter:
    """
    Operation-level cooldowns for the authenticated backend.

    - Username resolution: at most one per ``resolution_interval`` seconds.
      Hard-blocking without jitter; concurrent resolutions queue on a lock.
    - History iteration: tracked only, never throttled.

    Called before every attempt, retries included, so a retry can never
    skip a cooldown.
    """

    def __init__(
        self,
        resolution_interval: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.resolution_interval = resolution_interval
        self._clock = clock
        self._sleep = sleep
        self._resolution_lock = asyncio.Lock()
        self._last_resolution: Optional[float] = None
        self._last_iteration: Optional[float] = None

    async def wait_for_resolution(self) -> None:
        """Block until a username resolution is allowed, then claim the slot."""
        async with self._resolution_lock:
            if self._last_resolution is not None:
                elapsed = self._clock() - self._last_resolution
                if elapsed < self.resolution_interval:
                    wait_time = self.resolution_interval - elapsed
                    logger.info(
                        f"Rate limiting username resolution: waiting {wait_time * 1000:.0f}ms"
                    )
                    await self._sleep(wait_time)

            self._last_resolution = self._clock()

    async def wait_for_iteration(self) -> None:
        """Record a history iteration. No artificial limit."""
        self._last_iteration = self._clock()

    @property
    def last_resolution(self) -> Optional[float]:
        return self._last_resolution

    @property
    def last_iteration(self) -> Optional[float]:
        return self._last_iteration
