"""
tgingest Backend System

Two independent retrieval backends:
- WebHTMLBackend: HTML scraping via t.me/s/ (no account, cheap)
- TelethonBackend: authenticated MTProto API (session pool, strict limits)
"""

from .base import MessageBackend, MIN_MESSAGE_LENGTH, is_substantive
from .telethon_backend import TelethonBackend, clean_username
from .web_backend import (
    WebHTMLBackend,
    decode_page_body,
    extract_messages,
    normalize_channel_url,
)

__all__ = [
    "MessageBackend",
    "MIN_MESSAGE_LENGTH",
    "is_substantive",
    "TelethonBackend",
    "clean_username",
    "WebHTMLBackend",
    "decode_page_body",
    "extract_messages",
    "normalize_channel_url",
]
