"""
Web HTML Backend - No API Required

Scrapes public Telegram channels via t.me/s/channelname
without using the official API.

Flow:
- Normalize the handle or link to the canonical preview URL
- Bootstrap cookies once per backend lifetime
- Fetch the first page, then page backwards with ?before=<id>
- Keep non-forwarded messages with a body of at least 32 characters

Limitations (important):
- Public channels only
- Message IDs inferred from markup (used only as a pagination cursor)
- Rate limited by Cloudflare
"""

import asyncio
import html
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from ..errors import (
    InvalidUrlError,
    ParseError,
    RequestTimeoutError,
    ScrapeTimeoutError,
    StatusCodeError,
)
from ..models import BackendType, Message
from ..retry import RetryPolicy, scraping_policy
from .base import MIN_MESSAGE_LENGTH, MessageBackend, is_substantive

logger = logging.getLogger(__name__)


DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/137.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

PREVIEW_PREFIX = "https://t.me/s/"
LINK_PREFIX = "https://t.me/"

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{5,32}$")

# Markup patterns for the t.me/s/ page structure. May break if Telegram
# changes their HTML format.
WRAP_PATTERN = re.compile(r'<div class="tgme_widget_message_wrap[^"]*"')
DATA_POST_PATTERN = re.compile(r'data-post="([^"]+)"')
FORWARDED_PATTERN = re.compile(r'class="[^"]*\btgme_widget_message_forwarded_from\b')
TEXT_PATTERN = re.compile(
    r'<div class="[^"]*\btgme_widget_message_text\b[^"]*"[^>]*>(.*?)</div>',
    re.DOTALL
)
TIME_PATTERN = re.compile(r'<time[^>]*datetime="([^"]+)"')
PHOTO_PATTERN = re.compile(
    r'class="[^"]*\btgme_widget_message_photo_wrap\b[^"]*"[^>]*'
    r"background-image:url\('([^']+)'\)"
)
BR_PATTERN = re.compile(r"<br\s*/?>", re.IGNORECASE)
TAG_PATTERN = re.compile(r"<[^>]+>")


@dataclass
class ParsedPost:
    """One kept post from a page, with its cursor id."""
    message_id: int
    message: Message


def normalize_channel_url(channel: str) -> str:
    """
    Turn a handle or link into the canonical preview URL.

    Accepted shapes:
        @name                    -> https://t.me/s/name/
        name                     -> https://t.me/s/name/
        https://t.me/name        -> https://t.me/s/name/
        https://t.me/s/name[/]   -> https://t.me/s/name/

    Raises:
        InvalidUrlError: anything else
    """
    channel = channel.strip()

    if channel.startswith("@"):
        name = channel[1:]
    elif channel.startswith(PREVIEW_PREFIX):
        return channel if channel.endswith("/") else channel + "/"
    elif channel.startswith(LINK_PREFIX):
        name = channel[len(LINK_PREFIX):].strip("/")
    elif USERNAME_PATTERN.match(channel):
        name = channel
    else:
        raise InvalidUrlError(f"Invalid channel URL: {channel}")

    if not name or "/" in name:
        raise InvalidUrlError(f"Invalid channel URL: {channel}")
    return f"{PREVIEW_PREFIX}{name}/"


def decode_page_body(body: str) -> str:
    """
    Decode a pagination response into HTML.

    Three shapes are seen in the wild, told apart by the leading character:
    - a JSON-encoded string ("...") holding the HTML
    - a JSON object ({...}) with the HTML under "html"
    - raw HTML

    Raises:
        ParseError: malformed JSON, or JSON without usable HTML
    """
    stripped = body.lstrip()

    if stripped.startswith('"'):
        try:
            decoded = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ParseError(f"Malformed JSON-encoded HTML: {e}") from e
        if not isinstance(decoded, str):
            raise ParseError("JSON-encoded page is not a string")
        logger.debug(f"Decoded JSON-encoded HTML, length: {len(decoded)}")
        return decoded

    if stripped.startswith("{") or stripped.startswith("["):
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ParseError(f"Malformed JSON page: {e}") from e
        page_html = payload.get("html") if isinstance(payload, dict) else None
        if not isinstance(page_html, str):
            raise ParseError("JSON page has no 'html' field")
        return page_html

    return body


def _collapse_text(fragment: str) -> str:
    """Flatten the inner markup of a text block to plain text."""
    text = BR_PATTERN.sub("\n", fragment)
    text = TAG_PATTERN.sub("", text)
    return html.unescape(text).strip()


def _post_id(data_post: str) -> Optional[int]:
    """
    Numeric id from a data-post value like "channel/123" or "channel/123g".

    Returns None when nothing numeric is left.
    """
    digits = "".join(c for c in data_post.split("/")[-1] if c.isdigit())
    return int(digits) if digits else None


def _parse_timestamp(block: str) -> Optional[datetime]:
    time_match = TIME_PATTERN.search(block)
    if time_match:
        try:
            return datetime.fromisoformat(time_match.group(1).replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable timestamp: {time_match.group(1)}")
    return None


def parse_page(
    page_html: str,
    min_length: int = MIN_MESSAGE_LENGTH
) -> Tuple[List[ParsedPost], Optional[int]]:
    """
    Extract kept posts and the pagination cursor from one page.

    The cursor is the smallest message id on the page, forwarded and
    short posts included, since the feed is newest-first.
    """
    starts = [m.start() for m in WRAP_PATTERN.finditer(page_html)]
    logger.debug(f"Found {len(starts)} message wraps")

    posts: List[ParsedPost] = []
    all_ids: List[int] = []

    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(page_html)
        block = page_html[start:end]

        message_id = None
        post_match = DATA_POST_PATTERN.search(block)
        if post_match:
            message_id = _post_id(post_match.group(1))
            if message_id is not None:
                all_ids.append(message_id)

        if FORWARDED_PATTERN.search(block):
            continue

        text_match = TEXT_PATTERN.search(block)
        if not text_match or message_id is None:
            continue

        text = _collapse_text(text_match.group(1))
        if not is_substantive(text, min_length):
            continue

        posts.append(ParsedPost(
            message_id=message_id,
            message=Message(
                text=text,
                date=_parse_timestamp(block),
                images=tuple(PHOTO_PATTERN.findall(block))
            )
        ))

    cursor = min(all_ids) if all_ids else None
    return posts, cursor


def extract_messages(
    page_html: str,
    min_length: int = MIN_MESSAGE_LENGTH
) -> Tuple[List[Message], Optional[int]]:
    """Messages kept from one page plus the cursor for the next one."""
    posts, cursor = parse_page(page_html, min_length)
    return [p.message for p in posts], cursor


class WebHTMLBackend(MessageBackend):
    """
    HTML scraping backend for public Telegram channels.

    Scrapes https://t.me/s/channelname which provides
    a public web view of channel messages.

    Usage:
        async with WebHTMLBackend(max_pages=5) as backend:
            messages = await backend.fetch_messages("@channelname")
    """

    COOKIE_URL = LINK_PREFIX

    def __init__(
        self,
        max_pages: int = 5,
        min_length: int = MIN_MESSAGE_LENGTH,
        timeout: float = 30.0,
        page_delay: float = 0.5,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self.max_pages = max_pages
        self.min_length = min_length
        self.timeout = timeout
        self.page_delay = page_delay
        self.retry_policy = retry_policy or scraping_policy(
            (aiohttp.ClientError, asyncio.TimeoutError, StatusCodeError),
            sleep=sleep
        )
        self._sleep = sleep
        self._session = session
        self._owns_session = session is None
        self._cookies_initialized = False
        self.requests_made = 0

    @property
    def backend_type(self) -> BackendType:
        return BackendType.WEB

    async def connect(self) -> None:
        """Initialize HTTP session with a cookie jar."""
        if self._session is not None:
            return
        self._session = ClientSession(
            timeout=ClientTimeout(total=self.timeout),
            headers=DEFAULT_HEADERS,
            cookie_jar=aiohttp.CookieJar()
        )
        self._owns_session = True
        logger.info("WebHTMLBackend connected")

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
        self._cookies_initialized = False
        logger.info("WebHTMLBackend disconnected")

    async def fetch_messages(
        self,
        channel: str,
        max_pages: Optional[int] = None
    ) -> List[Message]:
        """
        Scrape up to ``max_pages`` pages of a channel.

        Fails wholesale after ``timeout`` seconds; no partial results.

        Raises:
            InvalidUrlError: unrecognized handle shape
            ScrapeTimeoutError: the whole operation took too long
            RequestTimeoutError: one request timed out on every attempt
            StatusCodeError / aiohttp.ClientError: retries exhausted
            ParseError: unexpected page shape
        """
        url = normalize_channel_url(channel)
        pages = max_pages or self.max_pages

        try:
            return await asyncio.wait_for(self._scrape(url, pages), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Web scraping operation timed out after {self.timeout:.0f} seconds")
            raise ScrapeTimeoutError(
                f"Scraping {url} timed out after {self.timeout:.0f} seconds"
            ) from None

    async def _scrape(self, url: str, max_pages: int) -> List[Message]:
        logger.info(f"Starting web scraping for channel: {url}")
        await self.connect()
        await self._initialize_cookies()

        logger.info(f"Fetching initial page: {url}")
        page_html = await self._fetch_text("GET", url)
        posts, cursor = parse_page(page_html, self.min_length)

        seen_ids: Set[int] = set()
        messages = self._collect(posts, seen_ids)
        logger.info(f"Initial page: {len(messages)} messages, last ID: {cursor}")

        for page in range(1, max_pages):
            if cursor is None:
                break

            await self._sleep(self.page_delay)

            logger.info(f"Fetching page {page} with before_id: {cursor}")
            body = await self._fetch_text(
                "POST",
                f"{url}?before={cursor}",
                headers=self._pagination_headers(url)
            )
            posts, next_cursor = parse_page(decode_page_body(body), self.min_length)

            if not posts:
                logger.info(f"No more messages found at page {page}")
                break

            page_messages = self._collect(posts, seen_ids)
            messages.extend(page_messages)
            logger.info(f"Page {page}: {len(page_messages)} messages, last ID: {next_cursor}")

            if next_cursor is not None and next_cursor >= cursor:
                logger.warning(f"Cursor did not advance past {cursor}, stopping pagination")
                break
            cursor = next_cursor

        logger.info(f"Total extracted: {len(messages)} non-forwarded messages")
        return messages

    @staticmethod
    def _collect(posts: List[ParsedPost], seen_ids: Set[int]) -> List[Message]:
        """Drop posts already returned by an earlier page."""
        kept = []
        for post in posts:
            if post.message_id in seen_ids:
                continue
            seen_ids.add(post.message_id)
            kept.append(post.message)
        return kept

    async def _initialize_cookies(self) -> None:
        """Visit t.me once so later requests carry its cookies."""
        if self._cookies_initialized:
            return

        logger.info(f"Initializing cookies from: {self.COOKIE_URL}")
        await self._fetch_text("GET", self.COOKIE_URL)
        self._cookies_initialized = True
        logger.debug("Cookie initialization completed")

    @staticmethod
    def _pagination_headers(referer: str) -> Dict[str, str]:
        return {
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "X-Requested-With": "XMLHttpRequest",
            "Referer": referer,
            "Origin": "https://t.me",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-origin",
        }

    async def _fetch_text(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Fetch a URL under the retry policy and return its body.

        Raises:
            RequestTimeoutError: the request timed out on every attempt
        """
        try:
            return await self.retry_policy.call(
                self._request_once, method, url, headers,
                description=f"{method} {url}"
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"{method} {url} timed out on all "
                f"{self.retry_policy.max_attempts} attempts"
            ) from e

    async def _request_once(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]]
    ) -> str:
        self.requests_made += 1
        data = b"" if method == "POST" else None
        async with self._session.request(method, url, headers=headers, data=data) as response:
            if not 200 <= response.status < 300:
                raise StatusCodeError(response.status, url)
            text = await response.text()
            logger.debug(f"{method} {url}: {len(text)} bytes")
            return text
