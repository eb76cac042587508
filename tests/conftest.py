"""Shared fixtures for the tgingest test suite.

Network and Telegram are never touched: aiohttp sessions and Telethon
clients are replaced by small fakes, and every sleep and clock is
injected so tests run instantly.
"""

from __future__ import annotations

from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from tgingest.cache import CacheManager
from tgingest.models import Message


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced by hand, or by FakeClock.sleep."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


# ---------------------------------------------------------------------------
# aiohttp
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body


class _RequestContext:
    def __init__(self, outcome: Any) -> None:
        self._outcome = outcome

    async def __aenter__(self) -> FakeResponse:
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        status, body = self._outcome
        return FakeResponse(status, body)

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


class FakeSession:
    """Stand-in for aiohttp.ClientSession.

    Responses are queued per (method, url). A queued item is either a
    ``(status, body)`` tuple or an exception instance to raise. The last
    item for a route is repeated once the queue is drained.
    """

    def __init__(self) -> None:
        self._routes: Dict[tuple, deque] = defaultdict(deque)
        self._last: Dict[tuple, Any] = {}
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def add(self, method: str, url: str, *outcomes: Any) -> None:
        self._routes[(method, url)].extend(outcomes)

    def request(self, method: str, url: str, headers=None, data=None) -> _RequestContext:
        self.calls.append({"method": method, "url": url, "headers": headers, "data": data})
        key = (method, url)
        queue = self._routes.get(key)
        if queue:
            outcome = queue.popleft()
            self._last[key] = outcome
        elif key in self._last:
            outcome = self._last[key]
        else:
            outcome = (404, "")
        return _RequestContext(outcome)

    async def close(self) -> None:
        self.closed = True

    def urls(self, method: Optional[str] = None) -> List[str]:
        return [c["url"] for c in self.calls if method is None or c["method"] == method]


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


# ---------------------------------------------------------------------------
# t.me/s/ page markup
# ---------------------------------------------------------------------------


LONG_TEXT = "This is a sufficiently long channel post body for tests"


def post_html(
    message_id: int,
    text: str = LONG_TEXT,
    channel: str = "testchannel",
    forwarded: bool = False,
    date: Optional[str] = "2024-05-01T12:00:00+00:00",
    photo: Optional[str] = None,
) -> str:
    """One message container as it appears on a preview page."""
    parts = [
        '<div class="tgme_widget_message_wrap js-widget_message_wrap">',
        f'<div class="tgme_widget_message text_not_supported_wrap js-widget_message" '
        f'data-post="{channel}/{message_id}" data-view="abc">',
    ]
    if forwarded:
        parts.append(
            '<div class="tgme_widget_message_forwarded_from accent_color">'
            'Forwarded from <a class="tgme_widget_message_forwarded_from_name" '
            'href="https://t.me/other">Other</a></div>'
        )
    if photo:
        parts.append(
            f'<a class="tgme_widget_message_photo_wrap 123" href="https://t.me/{channel}/{message_id}" '
            f"style=\"width:800px;background-image:url('{photo}')\"></a>"
        )
    parts.append(f'<div class="tgme_widget_message_text js-message_text" dir="auto">{text}</div>')
    if date:
        parts.append(
            '<div class="tgme_widget_message_footer">'
            f'<a class="tgme_widget_message_date" href="https://t.me/{channel}/{message_id}">'
            f'<time datetime="{date}" class="time">12:00</time></a></div>'
        )
    parts.append("</div></div>")
    return "".join(parts)


def page_html(*posts: str) -> str:
    return (
        '<html><body><section class="tgme_channel_history js-message_history">'
        + "".join(posts)
        + "</section></body></html>"
    )


@pytest.fixture
def make_post():
    return post_html


@pytest.fixture
def make_page():
    return page_html


# ---------------------------------------------------------------------------
# Telethon
# ---------------------------------------------------------------------------


def telethon_message(
    text: str = LONG_TEXT,
    forwarded: bool = False,
    date: Optional[datetime] = None,
) -> SimpleNamespace:
    return SimpleNamespace(
        message=text,
        fwd_from=object() if forwarded else None,
        date=date or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


class FakeTelegramClient:
    """Stand-in for telethon.TelegramClient.

    ``history`` is iterated newest first; ``consumed`` counts how many
    messages were actually pulled from it.
    """

    def __init__(
        self,
        session: str,
        api_id: int,
        api_hash: str,
        authorized: bool = True,
        history: Optional[List[SimpleNamespace]] = None,
        entity_error: Optional[BaseException] = None,
    ) -> None:
        self.session = session
        self.api_id = api_id
        self.api_hash = api_hash
        self.authorized = authorized
        self.history = history or []
        self.entity_error = entity_error
        self.connect = AsyncMock()
        self.disconnect = AsyncMock()
        self.get_entity_calls: List[str] = []
        self.iter_errors: List[BaseException] = []
        self.consumed = 0

    async def is_user_authorized(self) -> bool:
        return self.authorized

    async def get_entity(self, username: str) -> Any:
        self.get_entity_calls.append(username)
        if self.entity_error is not None:
            raise self.entity_error
        return SimpleNamespace(username=username)

    async def iter_messages(self, entity: Any):
        if self.iter_errors:
            raise self.iter_errors.pop(0)
        for message in self.history:
            self.consumed += 1
            yield message


@pytest.fixture
def make_telethon_message():
    return telethon_message


@pytest.fixture
def client_factory():
    """Factory recording every client it builds; configure via ``.kwargs``."""

    class Factory:
        def __init__(self) -> None:
            self.clients: List[FakeTelegramClient] = []
            self.kwargs: Dict[str, Any] = {}

        def __call__(self, session: str, api_id: int, api_hash: str) -> FakeTelegramClient:
            client = FakeTelegramClient(session, api_id, api_hash, **self.kwargs)
            self.clients.append(client)
            return client

    return Factory()


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


def make_batch(count: int, prefix: str = "Message") -> List[Message]:
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return [
        Message(
            text=f"{prefix} number {i} with enough text to pass the length filter",
            date=base - timedelta(minutes=i),
        )
        for i in range(count)
    ]


@pytest.fixture
def batch():
    return make_batch


@pytest.fixture
def cache(tmp_path) -> CacheManager:
    return CacheManager(tmp_path / "data")
