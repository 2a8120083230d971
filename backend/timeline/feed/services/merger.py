"""Merges original posts and repost events into one cursor-paginated feed."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Union

from timeline.feed.domain.exceptions import FeedUnavailable, SourceUnavailable
from timeline.feed.domain.models import FeedItem, FeedPage, PostRow, RepostRow, as_utc, item_id_from_dedupe_key
from timeline.feed.domain.sources import FeedScope, FeedSource
from timeline.feed.services.cursor import MergedCursor, SourcePosition, decode_cursor, encode_cursor
from timeline.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

ORIGINAL = "original"
REPOST = "repost"

Row = Union[PostRow, RepostRow]
OrderKey = tuple[int, str, str]


@dataclass(slots=True)
class _SourceResult:
    source: str
    limit: int
    rows: Sequence[Row] = field(default_factory=list)
    error: Optional[SourceUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exhausted(self) -> bool:
        return len(self.rows) < self.limit


@dataclass(slots=True)
class _Candidate:
    source: str
    key: OrderKey
    position: SourcePosition
    # None when a repost points at an original that no longer exists
    item: Optional[FeedItem]


def _candidate_from(source: str, row: Row) -> _Candidate:
    if isinstance(row, RepostRow):
        position = SourcePosition(timestamp=row.reposted_at, id=row.post_id, actor_id=row.actor.id)
        return _Candidate(source, row.position(), position, FeedItem.from_repost(row))
    position = SourcePosition(timestamp=row.created_at, id=row.id)
    return _Candidate(source, row.position(), position, FeedItem.from_post(row))


def source_budget(page_size: int, include_reposts: bool) -> int:
    """Rows requested from each source for one page."""

    if not include_reposts:
        return page_size + 1
    return math.ceil(page_size / 2) + 1


class FeedMerger:
    """Builds deduplicated, time-ordered pages from a :class:`FeedSource`.

    Each page request fetches both streams concurrently with their own
    cursors, drops plain occurrences of posts that are reposted within the
    same candidate set, orders by effective timestamp and truncates to the page
    size. The returned cursor encodes one resume position per stream.
    """

    def __init__(self, source: FeedSource, *, source_timeout: Optional[float] = None) -> None:
        self.source = source
        self.source_timeout = source_timeout

    async def get_page(
        self,
        after_cursor: Optional[str] = None,
        page_size: int = 20,
        include_reposts: bool = True,
        *,
        scope: FeedScope = FeedScope(),
    ) -> FeedPage:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        cursor = decode_cursor(after_cursor) if after_cursor else MergedCursor()
        return await self._merge(
            cursor,
            page_size,
            include_reposts,
            scope=scope,
            mode="page",
        )

    async def get_since(
        self,
        watermark: datetime,
        page_size: int = 20,
        include_reposts: bool = True,
        *,
        after_cursor: Optional[str] = None,
        rendered: Iterable[str] = (),
        scope: FeedScope = FeedScope(),
    ) -> FeedPage:
        """Return items newer than ``watermark`` for an incremental refresh.

        ``rendered`` holds the dedupe keys already on the caller's screen; any
        candidate whose post id is among them is left out, even when it shows
        up under a different dedupe key.

        While ``has_more`` is set the returned watermark stays at the one passed
        in; the caller follows ``next_cursor`` with the same watermark until the
        refresh is complete, and only the final page carries the advanced
        watermark.
        """

        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        cursor = decode_cursor(after_cursor) if after_cursor else MergedCursor()
        return await self._merge(
            cursor,
            page_size,
            include_reposts,
            scope=scope,
            mode="since",
            since=as_utc(watermark),
            rendered=rendered,
        )

    async def _merge(
        self,
        cursor: MergedCursor,
        page_size: int,
        include_reposts: bool,
        *,
        scope: FeedScope,
        mode: str,
        since: Optional[datetime] = None,
        rendered: Iterable[str] = (),
    ) -> FeedPage:
        start = time.perf_counter()
        limit = source_budget(page_size, include_reposts)

        fetches = [
            self._fetch(
                ORIGINAL,
                limit,
                lambda: self.source.original_items(scope, cursor=cursor.original, limit=limit, since=since),
            )
        ]
        if include_reposts:
            fetches.append(
                self._fetch(
                    REPOST,
                    limit,
                    lambda: self.source.repost_events(scope, cursor=cursor.repost, limit=limit, since=since),
                )
            )
        results: list[_SourceResult] = list(await asyncio.gather(*fetches))

        failures = [result for result in results if not result.ok]
        if len(failures) == len(results):
            raise FeedUnavailable() from failures[0].error
        degraded = bool(failures)

        candidates = [
            _candidate_from(result.source, row)
            for result in results
            for row in result.rows
        ]
        candidates.sort(key=lambda candidate: candidate.key)
        visible = self._dedupe(candidates, rendered)

        # Rows past the last row of a stream that may hold more cannot be
        # ordered against that stream's unseen rows yet.
        open_ends = [result.rows[-1].position() for result in results if result.ok and not result.exhausted]
        horizon: Optional[OrderKey] = min(open_ends) if open_ends else None
        eligible = [item for key, item in visible if horizon is None or key <= horizon]

        truncated = len(eligible) > page_size
        items = eligible[:page_size]
        cut: Optional[OrderKey] = items[-1].position() if truncated else horizon

        has_more = truncated or horizon is not None or degraded
        watermark: Optional[datetime] = None
        high_water: Optional[datetime] = None
        if since is not None:
            high_water = max(
                [as_utc(item.effective_timestamp) for item in items]
                + [as_utc(cursor.high_water) if cursor.high_water else since],
            )
            watermark = since if has_more else high_water
        next_state = MergedCursor(
            original=self._advance(cursor.original, ORIGINAL, candidates, cut, results),
            repost=self._advance(cursor.repost, REPOST, candidates, cut, results),
            high_water=high_water,
        )
        page = FeedPage(
            items=items,
            has_more=has_more,
            next_cursor=encode_cursor(next_state) if has_more else None,
            degraded=degraded,
            watermark=watermark,
        )

        obs_metrics.FEED_MERGE_DURATION.observe(time.perf_counter() - start)
        obs_metrics.feed_page_served(mode, degraded=degraded)
        _LOG.debug(
            "feed.merge",
            extra={
                "mode": mode,
                "candidates": len(candidates),
                "returned": len(items),
                "has_more": has_more,
                "degraded": degraded,
            },
        )
        return page

    @staticmethod
    def _dedupe(candidates: Sequence[_Candidate], rendered: Iterable[str]) -> list[tuple[OrderKey, FeedItem]]:
        rendered_ids = {item_id_from_dedupe_key(key) for key in rendered}
        reposted_ids = {
            candidate.item.id
            for candidate in candidates
            if candidate.item is not None and candidate.item.is_repost
        }
        seen: set[str] = set()
        visible: list[tuple[OrderKey, FeedItem]] = []
        for candidate in candidates:
            item = candidate.item
            if item is None:
                _LOG.debug("feed.repost_orphaned", extra={"post_id": candidate.position.id})
                continue
            if not item.is_repost and item.id in reposted_ids:
                continue
            if item.dedupe_key in seen or item.id in rendered_ids:
                continue
            seen.add(item.dedupe_key)
            visible.append((candidate.key, item))
        return visible

    @staticmethod
    def _advance(
        previous: Optional[SourcePosition],
        source: str,
        candidates: Sequence[_Candidate],
        cut: Optional[OrderKey],
        results: Sequence[_SourceResult],
    ) -> Optional[SourcePosition]:
        if not any(result.source == source and result.ok for result in results):
            return previous
        consumed = [
            candidate
            for candidate in candidates
            if candidate.source == source and (cut is None or candidate.key <= cut)
        ]
        if not consumed:
            return previous
        return consumed[-1].position

    async def _fetch(
        self,
        source: str,
        limit: int,
        fetch: Callable[[], Awaitable[Sequence[Row]]],
    ) -> _SourceResult:
        try:
            if self.source_timeout:
                rows = await asyncio.wait_for(fetch(), timeout=self.source_timeout)
            else:
                rows = await fetch()
        except Exception as exc:
            obs_metrics.feed_source_failed(source)
            _LOG.warning("feed.source_failed", extra={"source": source, "error": repr(exc)})
            error = SourceUnavailable(source)
            error.__cause__ = exc
            return _SourceResult(source, limit, error=error)
        return _SourceResult(source, limit, rows=list(rows))


__all__ = ["FeedMerger", "source_budget", "ORIGINAL", "REPOST"]
