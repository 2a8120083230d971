from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from timeline.feed.domain.sources import FeedScope
from timeline.feed.infra.postgres_source import ORIGINALS_SQL, REPOSTS_SQL, PostgresFeedSource
from timeline.feed.services.cursor import SourcePosition
from timeline.reputation.domain.exceptions import UnknownUser
from timeline.reputation.infra.postgres_counters import COUNTERS_SQL, PostgresCounterSource, PostgresScoreStore


class _FakeConnection:
    def __init__(self, rows=None, value=None) -> None:
        self.rows = list(rows or [])
        self.value = value
        self.calls: list[tuple[str, tuple]] = []
        self.transactions = 0

    async def fetch(self, sql, *params):
        self.calls.append((sql, params))
        return self.rows

    async def fetchval(self, sql, *params):
        self.calls.append((sql, params))
        return self.value

    async def execute(self, sql, *params):
        self.calls.append((sql, params))
        return "OK"

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield


class _FakePool:
    def __init__(self, conn: _FakeConnection) -> None:
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def _post_record(post_id: str, created_at: datetime, **overrides) -> dict:
    record = {
        "post_id": post_id,
        "content": "hello",
        "images": ["a.png"],
        "parent_id": None,
        "created_at": created_at,
        "favorites": 4,
        "reposts": 1,
        "replies": 2,
        "user_id": "alice",
        "username": "Alice",
        "icon": None,
        "is_favorited": True,
        "is_reposted": False,
    }
    record.update(overrides)
    return record


@pytest.mark.asyncio
async def test_original_items_maps_rows_and_binds_cursor():
    naive = datetime(2024, 3, 1, 9, 30)
    conn = _FakeConnection(rows=[_post_record("p1", naive)])
    source = PostgresFeedSource(_FakePool(conn))
    cursor = SourcePosition(datetime(2024, 3, 2, 11, 0, tzinfo=timezone(timedelta(hours=2))), "p0")

    rows = await source.original_items(FeedScope(viewer_id="v1", author_id="alice"), cursor=cursor, limit=6)

    sql, params = conn.calls[0]
    assert sql == ORIGINALS_SQL
    assert params == ("v1", "alice", None, datetime(2024, 3, 2, 9, 0), "p0", 6)
    post = rows[0]
    assert post.id == "p1"
    assert post.created_at == naive.replace(tzinfo=timezone.utc)
    assert (post.favorites, post.reposts, post.replies) == (4, 1, 2)
    assert post.is_favorited is True
    assert post.user.username == "Alice"


@pytest.mark.asyncio
async def test_repost_events_without_original_have_no_post():
    reposted_at = datetime(2024, 3, 1, 10, 0)
    record = _post_record(None, None, user_id=None, username=None)
    record.update(
        {
            "repost_id": "rp1",
            "repost_post_id": "gone",
            "reposted_at": reposted_at,
            "actor_id": "bob",
            "actor_username": "Bob",
            "actor_icon": "bob.png",
        }
    )
    conn = _FakeConnection(rows=[record])
    source = PostgresFeedSource(_FakePool(conn))

    rows = await source.repost_events(FeedScope(), cursor=None, limit=3, since=datetime(2024, 1, 1, tzinfo=timezone.utc))

    sql, params = conn.calls[0]
    assert sql == REPOSTS_SQL
    assert params == (None, None, datetime(2024, 1, 1), None, None, None, 3)
    repost = rows[0]
    assert repost.post is None
    assert repost.post_id == "gone"
    assert repost.actor.icon == "bob.png"
    assert repost.reposted_at.tzinfo is timezone.utc


def test_keyset_queries_order_text_bytewise():
    assert 'p.id COLLATE "C" ASC' in ORIGINALS_SQL
    assert 'rp."postId" COLLATE "C" ASC' in REPOSTS_SQL
    assert 'p."parentId" IS NULL' in ORIGINALS_SQL


@pytest.mark.asyncio
async def test_counter_batch_uses_one_statement():
    now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    conn = _FakeConnection(
        rows=[
            {"user_id": "u1", "recent_posts": 5, "total_posts": 100, "followers": None, "account_age_days": 30},
            {"user_id": "u2", "recent_posts": 0, "total_posts": 1, "followers": 9, "account_age_days": 2},
        ]
    )
    source = PostgresCounterSource(_FakePool(conn), recent_window_days=30, now=lambda: now)

    result = await source.batch(["u1", "u2", "ghost"])

    assert len(conn.calls) == 1
    sql, params = conn.calls[0]
    assert sql == COUNTERS_SQL
    assert params == (["u1", "u2", "ghost"], datetime(2024, 5, 2, 12, 0), datetime(2024, 6, 1, 12, 0))
    assert set(result) == {"u1", "u2"}
    assert result["u1"].total_posts == 100
    assert result["u1"].followers == 0
    assert result["u2"].followers == 9


@pytest.mark.asyncio
async def test_counter_batch_with_no_ids_skips_query():
    conn = _FakeConnection()
    source = PostgresCounterSource(_FakePool(conn))
    assert await source.batch([]) == {}
    assert conn.calls == []


@pytest.mark.asyncio
async def test_counter_single_unknown_user():
    source = PostgresCounterSource(_FakePool(_FakeConnection(rows=[])))
    with pytest.raises(UnknownUser):
        await source.single("ghost")


@pytest.mark.asyncio
async def test_score_store_reads_and_records():
    conn = _FakeConnection(value=120)
    store = PostgresScoreStore(_FakePool(conn))

    assert await store.get_stored_score("u1") == 120
    await store.record_score("u1", 200, delta=80, reason="recompute")

    assert conn.transactions == 1
    update, insert = conn.calls[1], conn.calls[2]
    assert update[1] == ("u1", 200)
    assert "rating_history" in insert[0]
    assert insert[1] == ("u1", 80, 200, "recompute")


@pytest.mark.asyncio
async def test_score_store_missing_rate():
    store = PostgresScoreStore(_FakePool(_FakeConnection(value=None)))
    assert await store.get_stored_score("u1") is None
