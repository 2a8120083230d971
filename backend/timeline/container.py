"""Lightweight service container shared by the feed and reputation routers."""

from __future__ import annotations

from typing import Optional

import asyncpg

from timeline.feed.domain.sources import FeedSource, InMemoryFeedSource
from timeline.feed.infra.postgres_source import PostgresFeedSource
from timeline.feed.services.merger import FeedMerger
from timeline.reputation.domain.counters import (
    CounterSource,
    InMemoryCounterSource,
    InMemoryScoreStore,
    ScoreStore,
)
from timeline.reputation.infra.postgres_counters import PostgresCounterSource, PostgresScoreStore
from timeline.reputation.services.coalescer import BatchCoalescer
from timeline.reputation.services.persistence import ScorePersistenceAdvisor
from timeline.settings import settings


def _build_merger(source: FeedSource) -> FeedMerger:
    return FeedMerger(source, source_timeout=settings.feed_source_timeout_seconds or None)


def _build_coalescer(source: CounterSource, store: ScoreStore) -> BatchCoalescer:
    advisor = ScorePersistenceAdvisor(store, drift_threshold=settings.reputation_drift_threshold)
    return BatchCoalescer(
        source,
        batch_size=settings.reputation_batch_size,
        debounce_seconds=settings.reputation_debounce_seconds,
        cache_ttl_seconds=settings.reputation_cache_ttl_seconds or None,
        advisor=advisor,
    )


_feed_source: FeedSource = InMemoryFeedSource()
_counter_source: CounterSource = InMemoryCounterSource()
_score_store: ScoreStore = InMemoryScoreStore()
_feed_merger = _build_merger(_feed_source)
_coalescer = _build_coalescer(_counter_source, _score_store)


def configure(
    *,
    feed_source: Optional[FeedSource] = None,
    counter_source: Optional[CounterSource] = None,
    score_store: Optional[ScoreStore] = None,
) -> None:
    """Swap collaborators and rebuild the engine components around them.

    Anything not passed keeps its current implementation. The previous
    coalescer is replaced without being closed; call :func:`shutdown` first
    when it may still hold waiters.
    """

    global _feed_source, _counter_source, _score_store, _feed_merger, _coalescer
    if feed_source is not None:
        _feed_source = feed_source
    if counter_source is not None:
        _counter_source = counter_source
    if score_store is not None:
        _score_store = score_store
    _feed_merger = _build_merger(_feed_source)
    _coalescer = _build_coalescer(_counter_source, _score_store)


def configure_postgres(pool: asyncpg.Pool) -> None:
    configure(
        feed_source=PostgresFeedSource(pool),
        counter_source=PostgresCounterSource(
            pool, recent_window_days=settings.reputation_recent_window_days
        ),
        score_store=PostgresScoreStore(pool),
    )


def get_feed_merger() -> FeedMerger:
    return _feed_merger


def get_coalescer() -> BatchCoalescer:
    return _coalescer


async def shutdown() -> None:
    await _coalescer.close()


__all__ = [
    "configure",
    "configure_postgres",
    "get_feed_merger",
    "get_coalescer",
    "shutdown",
]
