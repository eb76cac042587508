"""
Data models for tgingest.

Using dataclasses for clean, typed data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Dict, Any, List


class BackendType(Enum):
    """Available retrieval backends."""
    WEB = "web"    # t.me/s/ preview page scraping
    API = "api"    # Authenticated MTProto client

    @property
    def label(self) -> str:
        return "WebScraping" if self is BackendType.WEB else "API"

    @classmethod
    def parse(cls, value: str) -> "BackendType":
        """Parse a backend name as written in config files and on the CLI."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown backend {value!r} (expected one of: "
                f"{', '.join(b.value for b in cls)})"
            ) from None


@dataclass(frozen=True)
class Message:
    """
    One text message from a channel.

    Immutable and hashable so batches can be compared and used to derive
    cache keys.
    """

    text: str
    date: Optional[datetime] = None
    images: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "date": self.date.isoformat() if self.date else None,
            "text": self.text,
            "images": list(self.images),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Build a message from its dictionary form."""
        date = data.get("date")
        return cls(
            text=data["text"],
            date=datetime.fromisoformat(date) if date else None,
            images=tuple(data.get("images") or ()),
        )


def batch_to_dicts(messages: List[Message]) -> List[Dict[str, Any]]:
    """Serialize an ordered batch, preserving order."""
    return [m.to_dict() for m in messages]


def batch_from_dicts(records: List[Dict[str, Any]]) -> List[Message]:
    """Deserialize an ordered batch, preserving order."""
    return [Message.from_dict(r) for r in records]


LINK_PREFIXES = (
    "https://t.me/s/", "http://t.me/s/", "t.me/s/",
    "https://t.me/", "http://t.me/", "t.me/",
)


def clean_username(channel: str) -> str:
    """Bare username from "@name", "name" or a t.me link."""
    name = channel.strip()
    for prefix in LINK_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix):]
            break
    return name.lstrip("@").strip("/")
