"""
Cache Manager for tgingest.

Two independent content-addressed stores in one SQLite file:
- Message cache: one row per sanitized channel name holding the ordered batch
- Result cache: one row per content hash of (batch, purpose) holding the
  serialized downstream result (e.g. an LLM analysis)

Caching is best-effort: every I/O or decoding problem is logged and turned
into a miss (on read) or a False return (on write). Nothing here raises
into the ingestion path.
"""

import hashlib
import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Message, batch_from_dicts, batch_to_dicts, clean_username

logger = logging.getLogger(__name__)


UNSAFE_CHARS = re.compile(r"[^a-z0-9_-]")


def sanitize_channel_name(channel: str) -> str:
    """
    Cache key for a channel: the bare username, lowercased, unsafe chars as _.

    "@name", "name" and t.me links to the same channel share one key.
    """
    name = clean_username(channel).lower()
    return UNSAFE_CHARS.sub("_", name)


def result_cache_key(messages: List[Message], purpose: str) -> str:
    """
    Deterministic key over an ordered batch and a purpose tag.

    Same inputs always give the same key; reordering the batch or changing
    any message or the tag gives a different one.
    """
    payload = json.dumps(
        {"messages": batch_to_dicts(messages), "purpose": purpose},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":")
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class CacheManager:
    """
    SQLite-backed message and result caches.

    Usage:
        cache = CacheManager(Path("./data"))
        cache.save_channel_messages("@channel", messages)
        messages = cache.load_channel_messages("@channel")
    """

    def __init__(self, data_dir: Path, db_name: str = "tgingest_cache.db"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self.db_path = self.data_dir / db_name
        self._init_database()

    def _init_database(self) -> None:
        """Initialize SQLite tables for both caches."""
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS channel_messages (
                    channel_name TEXT PRIMARY KEY,
                    messages_data TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS llm_results (
                    cache_key TEXT PRIMARY KEY,
                    analysis_result TEXT NOT NULL,
                    created_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_channel_messages_updated
                    ON channel_messages(updated_at);
                CREATE INDEX IF NOT EXISTS idx_llm_results_created
                    ON llm_results(created_at);
            """)

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # ========== Message Cache ==========

    def load_channel_messages(self, channel: str) -> Optional[List[Message]]:
        """Cached batch for a channel, or None on miss or error."""
        key = sanitize_channel_name(channel)
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT messages_data FROM channel_messages WHERE channel_name = ?",
                    (key,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Database query failed for channel {key}: {e}")
            return None

        if row is None:
            logger.info(f"No cache found for channel {key}")
            return None

        try:
            messages = batch_from_dicts(json.loads(row["messages_data"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to parse cached messages for {key}: {e}")
            return None

        logger.info(f"Loaded {len(messages)} messages from cache for channel {key}")
        return messages

    def save_channel_messages(self, channel: str, messages: List[Message]) -> bool:
        """Upsert the batch for a channel. Returns False if the write failed."""
        key = sanitize_channel_name(channel)
        now = datetime.now(timezone.utc).isoformat()
        try:
            data = json.dumps(batch_to_dicts(messages), ensure_ascii=False)
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO channel_messages (channel_name, messages_data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(channel_name) DO UPDATE SET
                        messages_data = excluded.messages_data,
                        updated_at = excluded.updated_at
                """, (key, data, now, now))
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to cache messages for {key}: {e}")
            return False

        logger.info(f"Cached {len(messages)} messages for channel {key}")
        return True

    def delete_channel_messages(self, channel: str) -> bool:
        """Drop the cached batch for a channel."""
        key = sanitize_channel_name(channel)
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM channel_messages WHERE channel_name = ?", (key,)
                )
        except sqlite3.Error as e:
            logger.warning(f"Failed to delete cache for {key}: {e}")
            return False
        return cursor.rowcount > 0

    # ========== Result Cache ==========

    @staticmethod
    def result_cache_key(messages: List[Message], purpose: str) -> str:
        return result_cache_key(messages, purpose)

    def load_result(self, cache_key: str) -> Optional[Any]:
        """Cached result for a key, or None on miss or error."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT analysis_result FROM llm_results WHERE cache_key = ?",
                    (cache_key,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Database query failed for result cache key {cache_key}: {e}")
            return None

        if row is None:
            logger.info(f"No result cache found for key {cache_key}")
            return None

        try:
            result = json.loads(row["analysis_result"])
        except ValueError as e:
            logger.warning(f"Failed to parse cached result for key {cache_key}: {e}")
            return None

        logger.info(f"Loaded result from cache (key: {cache_key})")
        return result

    def save_result(self, cache_key: str, result: Any) -> bool:
        """Store a result; an existing entry for the key is left alone."""
        try:
            data = json.dumps(result, ensure_ascii=False)
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT INTO llm_results (cache_key, analysis_result, created_at) "
                    "VALUES (?, ?, ?) ON CONFLICT(cache_key) DO NOTHING",
                    (cache_key, data, datetime.now(timezone.utc).isoformat())
                )
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to cache result (key: {cache_key}): {e}")
            return False

        logger.info(f"Cached result (key: {cache_key})")
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Row counts for both caches."""
        with self._get_connection() as conn:
            channels = conn.execute("SELECT COUNT(*) FROM channel_messages").fetchone()[0]
            results = conn.execute("SELECT COUNT(*) FROM llm_results").fetchone()[0]
        return {"channels": channels, "results": results, "db_path": str(self.db_path)}
