"""
Telethon Backend - Authenticated API Access

Fetches channel history through the official Telegram MTProto API via
Telethon, using a session picked from the session pool.

Behaviour:
- One lazily created client per backend, reused across requests
- Client access serialized with a lock (the transport is not safe to share)
- Resolved channel entities cached per username, evicted on error
- Every step retried with exponential backoff, except authorization
  failures and unknown channels which are fatal immediately
- Connecting is one step of the surrounding operation, so a failing
  connect is retried by that operation and its session is evicted only
  once the operation gives up
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from telethon import TelegramClient
from telethon.errors import UsernameInvalidError, UsernameNotOccupiedError

from ..errors import AuthorizationError, ChannelNotFoundError, NoSessionsError
from ..models import BackendType, Message, clean_username
from ..rate_limiter import ProtocolRateLimiter
from ..retry import RetryPolicy, protocol_policy
from ..sessions import SessionFile, SessionPool
from .base import MIN_MESSAGE_LENGTH, MessageBackend, is_substantive

logger = logging.getLogger(__name__)


# Maximum qualifying messages pulled per channel
MESSAGE_LIMIT = 200

# Errors that no amount of retrying will fix
FATAL_ERRORS = (AuthorizationError, ChannelNotFoundError, NoSessionsError)


class TelethonBackend(MessageBackend):
    """
    Channel history via the Telegram MTProto API.

    Usage:
        pool = SessionPool("./sessions", api_id=ID, api_hash=HASH)
        pool.discover()
        async with TelethonBackend(ID, HASH, pool) as backend:
            if await backend.validate_channel("@channel"):
                messages = await backend.fetch_messages("@channel")
    """

    def __init__(
        self,
        api_id: int,
        api_hash: str,
        session_pool: SessionPool,
        protocol_limiter: Optional[ProtocolRateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        message_limit: int = MESSAGE_LIMIT,
        min_length: int = MIN_MESSAGE_LENGTH,
        client_factory: Callable[..., Any] = TelegramClient
    ):
        self.api_id = api_id
        self.api_hash = api_hash
        self.session_pool = session_pool
        self.protocol_limiter = protocol_limiter or ProtocolRateLimiter()
        self.retry_policy = retry_policy or protocol_policy(FATAL_ERRORS)
        self.message_limit = message_limit
        self.min_length = min_length
        self._client_factory = client_factory

        self._client: Optional[Any] = None
        self._session: Optional[SessionFile] = None
        self._failed_session: Optional[SessionFile] = None
        self._connect_lock = asyncio.Lock()
        self._client_lock = asyncio.Lock()
        self._references: Dict[str, Any] = {}

    @property
    def backend_type(self) -> BackendType:
        return BackendType.API

    @property
    def session(self) -> Optional[SessionFile]:
        """Session backing the live client, if connected."""
        return self._session

    async def connect(self) -> None:
        await self._call(self._ensure_client, description="connect")

    async def disconnect(self) -> None:
        """Disconnect the client cleanly."""
        async with self._connect_lock:
            if self._client is not None:
                await self._client.disconnect()
                logger.info("Disconnected from Telegram")
            self._client = None
            self._session = None

    async def _call(self, operation: Callable[..., Any], *args, description: str) -> Any:
        """
        Run ``operation`` under the retry policy.

        A session whose connect still fails once the policy gives up is
        evicted from the pool.
        """
        try:
            return await self.retry_policy.call(operation, *args, description=description)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            failed, self._failed_session = self._failed_session, None
            if failed is not None:
                self.session_pool.evict(failed, f"connection failed: {e}")
            raise

    async def _ensure_client(self) -> Any:
        """
        Connect once, lazily, with a session picked from the pool.

        A single attempt. After a failed connect the same session is
        reused by the next attempt.
        """
        async with self._connect_lock:
            if self._client is not None:
                return self._client

            session = self._failed_session
            if session is None or session not in self.session_pool.available:
                session = self.session_pool.pick()
            logger.info(f"Initializing Telegram client with session {session.name}")
            client = self._client_factory(str(session.path), self.api_id, self.api_hash)

            try:
                await self._connect_and_authorize(client, session)
            except AuthorizationError:
                self._failed_session = None
                await client.disconnect()
                raise
            except Exception:
                self._failed_session = session
                await client.disconnect()
                raise

            self._failed_session = None
            self._client = client
            self._session = session
            return client

    async def _connect_and_authorize(self, client: Any, session: SessionFile) -> None:
        await client.connect()
        if not await client.is_user_authorized():
            self.session_pool.evict(session, "not authorized")
            raise AuthorizationError(session.name)

    async def resolve(self, channel: str) -> Any:
        """
        Resolve a handle to its channel entity, using the per-process cache.

        A single attempt; callers wrap it in the retry policy.

        Raises:
            ChannelNotFoundError: the username does not exist
        """
        username = clean_username(channel)
        cached = self._references.get(username)
        if cached is not None:
            return cached

        client = await self._ensure_client()
        await self.protocol_limiter.wait_for_resolution()

        logger.info(f"Resolving channel: {username}")
        try:
            async with self._client_lock:
                entity = await client.get_entity(username)
        except (UsernameNotOccupiedError, UsernameInvalidError, ValueError) as e:
            self.evict_reference(username)
            raise ChannelNotFoundError(username) from e
        except Exception:
            self.evict_reference(username)
            raise

        self._references[username] = entity
        return entity

    def evict_reference(self, channel: str) -> None:
        """Forget the cached entity for one handle."""
        if self._references.pop(clean_username(channel), None) is not None:
            logger.debug(f"Evicted cached reference for {clean_username(channel)}")

    def cached_reference(self, channel: str) -> Optional[Any]:
        return self._references.get(clean_username(channel))

    async def validate_channel(self, channel: str) -> bool:
        """True if the channel resolves; False if it does not exist."""
        try:
            await self._call(
                self.resolve, channel,
                description=f"resolve {clean_username(channel)}"
            )
        except ChannelNotFoundError:
            logger.info(f"Channel {clean_username(channel)} not found")
            return False

        logger.info(f"Channel {clean_username(channel)} is valid and accessible")
        return True

    async def fetch_messages(
        self,
        channel: str,
        limit: Optional[int] = None
    ) -> List[Message]:
        """
        Fetch up to ``limit`` qualifying messages, newest first.

        Each retry restarts the iteration from the newest message.
        """
        limit = limit or self.message_limit
        logger.info(f"Getting messages from {channel}")
        return await self._call(
            self._fetch_once, channel, limit,
            description=f"fetch {clean_username(channel)}"
        )

    async def _fetch_once(self, channel: str, limit: int) -> List[Message]:
        client = await self._ensure_client()
        entity = await self.resolve(channel)
        await self.protocol_limiter.wait_for_iteration()

        messages: List[Message] = []
        skipped = 0

        try:
            async with self._client_lock:
                async for message in client.iter_messages(entity):
                    if message.fwd_from is not None:
                        skipped += 1
                        continue

                    text = message.message or ""
                    if not is_substantive(text, self.min_length):
                        skipped += 1
                        continue

                    messages.append(Message(text=text, date=message.date))
                    if len(messages) >= limit:
                        break
        except Exception:
            self.evict_reference(channel)
            raise

        logger.info(f"Retrieved {len(messages)} messages, skipped {skipped}")
        return messages
