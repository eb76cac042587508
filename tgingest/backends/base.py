"""
Base Backend Abstract Class

Defines the interface that both retrieval backends implement.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from ..models import BackendType, Message

logger = logging.getLogger(__name__)


# Shortest body either backend keeps
MIN_MESSAGE_LENGTH = 32


def is_substantive(text: str, min_length: int = MIN_MESSAGE_LENGTH) -> bool:
    """True if ``text`` is long enough to keep."""
    return len(text) >= min_length


class MessageBackend(ABC):
    """
    Abstract base class for message retrieval backends.

    Implementations:
    - WebHTMLBackend: public t.me/s/ preview pages (no account needed)
    - TelethonBackend: authenticated MTProto client

    Both return newest-first batches with forwarded and short messages
    already removed.
    """

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Return the backend type."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the backend connection/session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Clean up the backend connection/session."""
        pass

    @abstractmethod
    async def fetch_messages(self, channel: str) -> List[Message]:
        """
        Fetch a batch of recent messages from a channel.

        Args:
            channel: Channel handle (@name) or t.me link

        Returns:
            Messages, newest first
        """
        pass

    async def validate_channel(self, channel: str) -> bool:
        """
        Check that the channel exists before fetching.

        Default implementation accepts everything; backends that can
        check cheaply override this.
        """
        return True

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
