from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from timeline.feed.domain.exceptions import FeedUnavailable, InvalidCursor
from timeline.feed.domain.models import ActorRef, PostRow, RepostRow
from timeline.feed.domain.sources import FeedScope, InMemoryFeedSource
from timeline.feed.services.cursor import decode_cursor
from timeline.feed.services.merger import FeedMerger, source_budget

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _at(seconds: int) -> datetime:
    return BASE + timedelta(seconds=seconds)


def _post(post_id: str, t: int, *, author: str = "alice", parent_id: str | None = None) -> PostRow:
    return PostRow(
        id=post_id,
        user=ActorRef(id=author, username=author.title()),
        content=f"body {post_id}",
        parent_id=parent_id,
        created_at=_at(t),
    )


def _repost(post_id: str, actor: str, t: int) -> RepostRow:
    return RepostRow(
        id=f"rp-{post_id}-{actor}",
        post_id=post_id,
        actor=ActorRef(id=actor, username=actor.title()),
        reposted_at=_at(t),
    )


class _CountingSource(InMemoryFeedSource):
    def __init__(self, *args, fail_originals: bool = False, fail_reposts: bool = False, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fail_originals = fail_originals
        self.fail_reposts = fail_reposts
        self.original_limits: list[int] = []
        self.repost_limits: list[int] = []

    async def original_items(self, scope, *, cursor, limit, since=None):
        self.original_limits.append(limit)
        if self.fail_originals:
            raise ConnectionError("originals down")
        return await super().original_items(scope, cursor=cursor, limit=limit, since=since)

    async def repost_events(self, scope, *, cursor, limit, since=None):
        self.repost_limits.append(limit)
        if self.fail_reposts:
            raise ConnectionError("reposts down")
        return await super().repost_events(scope, cursor=cursor, limit=limit, since=since)


class _SlowRepostSource(InMemoryFeedSource):
    async def repost_events(self, scope, *, cursor, limit, since=None):
        await asyncio.sleep(1)
        return []


def _keys(page) -> list[str]:
    return [item.dedupe_key for item in page.items]


def _assert_page_invariants(page) -> None:
    keys = _keys(page)
    assert len(keys) == len(set(keys))
    stamps = [item.effective_timestamp for item in page.items]
    assert stamps == sorted(stamps, reverse=True)
    reposted = {item.id for item in page.items if item.is_repost}
    assert not [item for item in page.items if not item.is_repost and item.id in reposted]


@pytest.mark.asyncio
async def test_repost_replaces_plain_occurrence():
    source = InMemoryFeedSource(
        posts=[_post("item1", 100), _post("item2", 90)],
        reposts=[_repost("item1", "bob", 95)],
    )
    page = await FeedMerger(source).get_page(page_size=3)

    assert _keys(page) == ["item1:bob", "item2"]
    first, second = page.items
    assert first.is_repost and first.repost_actor.id == "bob"
    assert first.effective_timestamp == _at(95)
    assert first.primary_timestamp == _at(100)
    assert second.effective_timestamp == _at(90)
    assert page.has_more is False
    assert page.next_cursor is None
    assert page.degraded is False


@pytest.mark.asyncio
async def test_two_actors_reposting_same_item_both_appear():
    source = InMemoryFeedSource(
        posts=[_post("item1", 100)],
        reposts=[_repost("item1", "bob", 95), _repost("item1", "carol", 95)],
    )
    page = await FeedMerger(source).get_page(page_size=5)

    assert _keys(page) == ["item1:bob", "item1:carol"]
    _assert_page_invariants(page)


@pytest.mark.asyncio
async def test_equal_timestamps_break_ties_by_id():
    source = InMemoryFeedSource(posts=[_post("b", 50), _post("a", 50), _post("c", 60)])
    page = await FeedMerger(source).get_page(page_size=5)
    assert _keys(page) == ["c", "a", "b"]


@pytest.mark.asyncio
async def test_pagination_walks_both_streams_without_gaps():
    source = InMemoryFeedSource(
        posts=[_post(f"p{i}", 110 - i * 10) for i in range(1, 6)],
        reposts=[_repost("p2", "bob", 85), _repost("p5", "carol", 95)],
    )
    merger = FeedMerger(source)

    seen: list[str] = []
    cursor = None
    for _ in range(10):
        page = await merger.get_page(cursor, page_size=2)
        _assert_page_invariants(page)
        assert len(page.items) <= 2
        seen.extend(_keys(page))
        if not page.has_more:
            assert page.next_cursor is None
            break
        assert page.next_cursor is not None
        cursor = page.next_cursor
    else:
        pytest.fail("pagination did not terminate")

    assert seen == ["p1", "p5:carol", "p2:bob", "p3", "p4", "p5"]
    assert "p2" not in seen


@pytest.mark.asyncio
async def test_cursor_records_one_position_per_stream():
    source = InMemoryFeedSource(
        posts=[_post(f"p{i}", 110 - i * 10) for i in range(1, 6)],
        reposts=[_repost("p2", "bob", 85), _repost("p5", "carol", 95)],
    )
    page = await FeedMerger(source).get_page(page_size=2)

    state = decode_cursor(page.next_cursor)
    assert state.original is not None and state.original.id == "p2"
    assert state.repost is not None
    assert (state.repost.id, state.repost.actor_id) == ("p5", "carol")


@pytest.mark.asyncio
async def test_page_never_exceeds_page_size():
    source = InMemoryFeedSource(
        posts=[_post(f"p{i:02d}", 1000 - i) for i in range(30)],
        reposts=[_repost(f"p{i:02d}", "bob", 2000 - i) for i in range(0, 30, 3)],
    )
    merger = FeedMerger(source)
    cursor = None
    total = 0
    while True:
        page = await merger.get_page(cursor, page_size=7)
        assert len(page.items) <= 7
        _assert_page_invariants(page)
        total += len(page.items)
        if not page.has_more:
            break
        cursor = page.next_cursor
    # reposts all sort ahead of the originals, so each plain occurrence is served on a later page
    assert total == 40


@pytest.mark.asyncio
async def test_budget_is_split_between_sources():
    source = _CountingSource(posts=[_post("a", 10)])
    await FeedMerger(source).get_page(page_size=20)
    assert source.original_limits == [source_budget(20, True)] == [11]
    assert source.repost_limits == [11]


@pytest.mark.asyncio
async def test_excluding_reposts_queries_only_originals():
    source = _CountingSource(
        posts=[_post("item1", 100), _post("item2", 90)],
        reposts=[_repost("item1", "bob", 95)],
    )
    page = await FeedMerger(source).get_page(page_size=3, include_reposts=False)

    assert _keys(page) == ["item1", "item2"]
    assert source.repost_limits == []
    assert source.original_limits == [4]


@pytest.mark.asyncio
async def test_replies_are_not_top_level_items():
    source = InMemoryFeedSource(posts=[_post("root", 100), _post("reply", 110, parent_id="root")])
    page = await FeedMerger(source).get_page(page_size=5)
    assert _keys(page) == ["root"]


@pytest.mark.asyncio
async def test_repost_of_deleted_original_is_skipped():
    source = InMemoryFeedSource(
        posts=[_post("gone", 100), _post("kept", 90)],
        reposts=[_repost("gone", "bob", 120)],
    )
    source.delete_post("gone")
    page = await FeedMerger(source).get_page(page_size=5)
    assert _keys(page) == ["kept"]


@pytest.mark.asyncio
async def test_one_failing_source_degrades_page():
    source = _CountingSource(
        posts=[_post("item1", 100), _post("item2", 90)],
        reposts=[_repost("item1", "bob", 95)],
        fail_reposts=True,
    )
    page = await FeedMerger(source).get_page(page_size=5)

    assert page.degraded is True
    assert page.has_more is True
    assert _keys(page) == ["item1", "item2"]
    state = decode_cursor(page.next_cursor)
    assert state.repost is None
    assert state.original.id == "item2"


@pytest.mark.asyncio
async def test_source_timeout_degrades_page():
    source = _SlowRepostSource(posts=[_post("item1", 100)])
    page = await FeedMerger(source, source_timeout=0.05).get_page(page_size=5)
    assert page.degraded is True
    assert _keys(page) == ["item1"]


@pytest.mark.asyncio
async def test_all_sources_failing_raises():
    source = _CountingSource(posts=[_post("a", 1)], fail_originals=True, fail_reposts=True)
    with pytest.raises(FeedUnavailable):
        await FeedMerger(source).get_page(page_size=5)


@pytest.mark.asyncio
async def test_only_source_failing_raises_when_reposts_excluded():
    source = _CountingSource(posts=[_post("a", 1)], fail_originals=True)
    with pytest.raises(FeedUnavailable):
        await FeedMerger(source).get_page(page_size=5, include_reposts=False)


@pytest.mark.asyncio
async def test_invalid_cursor_is_rejected():
    merger = FeedMerger(InMemoryFeedSource())
    with pytest.raises(InvalidCursor):
        await merger.get_page("not-a-cursor", page_size=5)


@pytest.mark.asyncio
async def test_empty_feed():
    page = await FeedMerger(InMemoryFeedSource()).get_page(page_size=5)
    assert page.items == []
    assert page.has_more is False
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_profile_scope_reads_one_author():
    source = InMemoryFeedSource(
        posts=[_post("a1", 100, author="alice"), _post("b1", 95, author="bob"), _post("a2", 80, author="alice")],
        reposts=[_repost("b1", "alice", 90), _repost("a2", "bob", 99)],
    )
    page = await FeedMerger(source).get_page(page_size=10, scope=FeedScope(author_id="alice"))
    assert _keys(page) == ["a1", "b1:alice", "a2"]


@pytest.mark.asyncio
async def test_viewer_flags_are_carried():
    source = InMemoryFeedSource(
        posts=[_post("item1", 100), _post("item2", 90)],
        reposts=[_repost("item2", "viewer", 50)],
        favorites=[("viewer", "item1")],
    )
    page = await FeedMerger(source).get_page(page_size=5, include_reposts=False, scope=FeedScope(viewer_id="viewer"))
    flags = {item.id: (item.is_favorited, item.is_reposted) for item in page.items}
    assert flags == {"item1": (True, False), "item2": (False, True)}


@pytest.mark.asyncio
async def test_since_returns_newer_items_and_skips_rendered():
    source = InMemoryFeedSource(
        posts=[_post("p1", 100), _post("p2", 90), _post("p3", 80)],
        reposts=[_repost("p3", "bob", 95)],
    )
    page = await FeedMerger(source).get_since(_at(85), page_size=10, rendered=["p1"])

    assert _keys(page) == ["p3:bob", "p2"]
    assert page.watermark == _at(95)


@pytest.mark.asyncio
async def test_since_skips_item_rendered_under_other_key():
    source = InMemoryFeedSource(
        posts=[_post("p1", 100)],
        reposts=[_repost("p1", "bob", 110)],
    )
    page = await FeedMerger(source).get_since(_at(50), page_size=10, rendered=["p1:carol"])
    assert page.items == []


@pytest.mark.asyncio
async def test_since_with_nothing_new_keeps_watermark():
    source = InMemoryFeedSource(posts=[_post("p1", 100)])
    page = await FeedMerger(source).get_since(_at(200), page_size=10)
    assert page.items == []
    assert page.has_more is False
    assert page.watermark == _at(200)


@pytest.mark.asyncio
async def test_page_size_must_be_positive():
    with pytest.raises(ValueError):
        await FeedMerger(InMemoryFeedSource()).get_page(page_size=0)


@pytest.mark.asyncio
async def test_since_refresh_delivers_every_new_item_before_moving_watermark():
    source = InMemoryFeedSource(posts=[_post(f"p{t}", t) for t in (100, 110, 120, 130, 140)])
    merger = FeedMerger(source)

    delivered: list[str] = []
    page = await merger.get_since(BASE, page_size=2, include_reposts=False)
    while True:
        delivered.extend(_keys(page))
        if not page.has_more:
            break
        assert page.watermark == BASE
        page = await merger.get_since(BASE, page_size=2, include_reposts=False, after_cursor=page.next_cursor)

    assert sorted(delivered) == ["p100", "p110", "p120", "p130", "p140"]
    assert page.watermark == _at(140)

    follow_up = await merger.get_since(page.watermark, page_size=2, include_reposts=False)
    assert follow_up.items == []
    assert follow_up.watermark == _at(140)


@pytest.mark.asyncio
async def test_since_refresh_with_reposts_across_pages():
    source = InMemoryFeedSource(
        posts=[_post("old", 10), _post("p1", 100), _post("p2", 90), _post("p3", 80)],
        reposts=[_repost("old", "bob", 95), _repost("p3", "carol", 105)],
    )
    merger = FeedMerger(source)

    delivered: list[str] = []
    cursor = None
    while True:
        page = await merger.get_since(_at(50), page_size=1, after_cursor=cursor)
        delivered.extend(_keys(page))
        if not page.has_more:
            break
        cursor = page.next_cursor

    assert set(delivered) >= {"p3:carol", "p1", "old:bob", "p2"}
    assert page.watermark == _at(105)
