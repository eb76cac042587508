"""Tests for the SQLite message and result caches."""

from __future__ import annotations

import sqlite3
from dataclasses import replace

import pytest

from tgingest.cache import CacheManager, result_cache_key, sanitize_channel_name
from tgingest.models import Message


class TestSanitizeChannelName:
    @pytest.mark.parametrize(
        "channel,expected",
        [
            ("@Durov", "durov"),
            ("durov", "durov"),
            ("some.channel", "some_channel"),
            ("we/ird name", "we_ird_name"),
            ("keep-dash_and_underscore", "keep-dash_and_underscore"),
            ("https://t.me/Durov", "durov"),
            ("https://t.me/s/durov/", "durov"),
            ("t.me/s/durov", "durov"),
        ],
    )
    def test_sanitize(self, channel, expected) -> None:
        assert sanitize_channel_name(channel) == expected


# ---------------------------------------------------------------------------
# Message cache
# ---------------------------------------------------------------------------


class TestMessageCache:
    def test_round_trip_preserves_order(self, cache, batch) -> None:
        messages = batch(50)
        assert cache.save_channel_messages("@durov", messages) is True
        assert cache.load_channel_messages("@durov") == messages

    def test_round_trip_with_images_and_missing_dates(self, cache) -> None:
        messages = [
            Message(text="no date on this one but long enough to keep"),
            Message(text="has two images attached to the post body", images=("a.jpg", "b.jpg")),
        ]
        cache.save_channel_messages("chan", messages)
        assert cache.load_channel_messages("chan") == messages

    def test_miss_returns_none(self, cache) -> None:
        assert cache.load_channel_messages("@nothing") is None

    def test_key_is_case_insensitive(self, cache, batch) -> None:
        cache.save_channel_messages("@Durov", batch(2))
        assert cache.load_channel_messages("durov") == batch(2)

    @pytest.mark.parametrize(
        "shape",
        ["durov", "https://t.me/durov", "https://t.me/s/durov", "https://t.me/s/durov/"],
    )
    def test_every_handle_shape_hits_the_same_entry(self, cache, batch, shape) -> None:
        cache.save_channel_messages("@durov", batch(3))
        assert cache.load_channel_messages(shape) == batch(3)

    def test_upsert_replaces_batch(self, cache, batch) -> None:
        cache.save_channel_messages("@durov", batch(3, prefix="old"))
        cache.save_channel_messages("@durov", batch(2, prefix="new"))
        assert cache.load_channel_messages("@durov") == batch(2, prefix="new")
        assert cache.get_stats()["channels"] == 1

    def test_corrupt_row_is_a_miss(self, cache) -> None:
        with sqlite3.connect(cache.db_path) as conn:
            conn.execute(
                "INSERT INTO channel_messages (channel_name, messages_data) VALUES (?, ?)",
                ("broken", "{not json"),
            )
        assert cache.load_channel_messages("broken") is None

    def test_delete(self, cache, batch) -> None:
        cache.save_channel_messages("@durov", batch(1))
        assert cache.delete_channel_messages("@durov") is True
        assert cache.load_channel_messages("@durov") is None
        assert cache.delete_channel_messages("@durov") is False

    def test_persists_across_instances(self, tmp_path, batch) -> None:
        CacheManager(tmp_path).save_channel_messages("@durov", batch(4))
        assert CacheManager(tmp_path).load_channel_messages("@durov") == batch(4)

    def test_unreadable_database_is_a_miss(self, cache, batch) -> None:
        cache.save_channel_messages("@durov", batch(1))
        cache.db_path.write_bytes(b"this is not a sqlite database at all" * 100)
        assert cache.load_channel_messages("@durov") is None
        assert cache.save_channel_messages("@durov", batch(1)) is False


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------


class TestResultCacheKey:
    def test_deterministic(self, batch) -> None:
        assert result_cache_key(batch(5), "summary") == result_cache_key(batch(5), "summary")
        assert len(result_cache_key(batch(5), "summary")) == 64

    def test_purpose_changes_key(self, batch) -> None:
        assert result_cache_key(batch(5), "summary") != result_cache_key(batch(5), "sentiment")

    def test_message_text_changes_key(self, batch) -> None:
        messages = batch(5)
        changed = list(messages)
        changed[2] = replace(changed[2], text=changed[2].text + "!")
        assert result_cache_key(messages, "x") != result_cache_key(changed, "x")

    def test_message_date_changes_key(self, batch) -> None:
        messages = batch(3)
        changed = [replace(messages[0], date=None)] + messages[1:]
        assert result_cache_key(messages, "x") != result_cache_key(changed, "x")

    def test_order_changes_key(self, batch) -> None:
        messages = batch(5)
        assert result_cache_key(messages, "x") != result_cache_key(list(reversed(messages)), "x")

    def test_static_method_matches_function(self, cache, batch) -> None:
        assert cache.result_cache_key(batch(2), "p") == result_cache_key(batch(2), "p")


class TestResultCache:
    def test_round_trip(self, cache) -> None:
        result = {"summary": "Всё хорошо", "score": 0.5, "tags": ["a", "b"]}
        assert cache.save_result("k1", result) is True
        assert cache.load_result("k1") == result

    def test_miss(self, cache) -> None:
        assert cache.load_result("missing") is None

    def test_existing_entry_is_kept(self, cache) -> None:
        cache.save_result("k1", "first")
        cache.save_result("k1", "second")
        assert cache.load_result("k1") == "first"

    def test_unserializable_result_is_not_stored(self, cache) -> None:
        assert cache.save_result("k1", object()) is False
        assert cache.load_result("k1") is None

    def test_stats(self, cache, batch) -> None:
        cache.save_channel_messages("a", batch(1))
        cache.save_result("k", 1)
        stats = cache.get_stats()
        assert stats["channels"] == 1
        assert stats["results"] == 1
        assert stats["db_path"].endswith("tgingest_cache.db")
