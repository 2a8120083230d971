"""Request-coalescing score cache.

Concurrent ``get_score`` calls are collected into bounded batches so that one
counter round trip serves every waiting caller. Each user id moves through
Uncached -> Queued -> InFlight -> Cached, or to Fallback when the batch call
fails and ids are retried one at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from timeline.obs import metrics as obs_metrics
from timeline.reputation.domain import score_model
from timeline.reputation.domain.counters import CounterSource
from timeline.reputation.domain.exceptions import CounterUnavailable, ScoreUnavailable, UnknownUser
from timeline.reputation.domain.models import ScoreInput, ScoreResult
from timeline.reputation.services.persistence import ScorePersistenceAdvisor

_LOG = logging.getLogger(__name__)


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


@dataclass(slots=True)
class _CacheEntry:
    result: ScoreResult
    expires_at: Optional[float]


class BatchCoalescer:
    """Serves reputation scores from a process-local cache backed by batched lookups.

    All queue and waiter bookkeeping happens on the event loop between awaits,
    so a single flusher task owns dispatch while callers only enqueue and wait.
    Callers await a shielded view of the shared waiter: cancelling one caller
    never cancels the batch or the other callers waiting on the same id.
    """

    def __init__(
        self,
        source: CounterSource,
        *,
        batch_size: int = 10,
        debounce_seconds: float = 0.1,
        cache_ttl_seconds: Optional[float] = None,
        advisor: Optional[ScorePersistenceAdvisor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.source = source
        self.batch_size = batch_size
        self.debounce_seconds = debounce_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self.advisor = advisor
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._waiters: dict[str, asyncio.Future[ScoreResult]] = {}
        self._pending: list[str] = []
        self._batch_ready: Optional[asyncio.Event] = None
        self._flusher: Optional[asyncio.Task[None]] = None
        self._closed = False

    # -- public API -----------------------------------------------------

    async def get_score(self, user_id: str) -> ScoreResult:
        cached = self.cached(user_id)
        if cached is not None:
            obs_metrics.reputation_cache(hit=True)
            return cached
        obs_metrics.reputation_cache(hit=False)
        waiter = self._waiters.get(user_id)
        if waiter is None:
            waiter = self._enqueue(user_id)
        return await asyncio.shield(waiter)

    async def get_scores(self, user_ids: Iterable[str]) -> dict[str, ScoreResult]:
        """Resolve many ids at once, leaving out ids whose score is unavailable."""

        unique = list(dict.fromkeys(user_ids))
        outcomes = await asyncio.gather(*(self.get_score(uid) for uid in unique), return_exceptions=True)
        results: dict[str, ScoreResult] = {}
        for user_id, outcome in zip(unique, outcomes):
            if isinstance(outcome, ScoreUnavailable):
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            results[user_id] = outcome
        return results

    def cached(self, user_id: str) -> Optional[ScoreResult]:
        entry = self._cache.get(user_id)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._cache[user_id]
            return None
        return entry.result

    def invalidate(self, user_id: str) -> None:
        self._cache.pop(user_id, None)

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    async def close(self) -> None:
        """Stop the flusher, fail anything still waiting and drain write-backs."""

        self._closed = True
        flusher = self._flusher
        if flusher is not None:
            flusher.cancel()
            try:
                await flusher
            except asyncio.CancelledError:
                pass
        for user_id, waiter in list(self._waiters.items()):
            if not waiter.done():
                waiter.set_exception(ScoreUnavailable(user_id))
        self._waiters.clear()
        self._pending.clear()
        if self.advisor is not None:
            await self.advisor.drain()

    # -- queue ownership ------------------------------------------------

    def _enqueue(self, user_id: str) -> asyncio.Future[ScoreResult]:
        if self._closed:
            raise RuntimeError("coalescer is closed")
        waiter: asyncio.Future[ScoreResult] = asyncio.get_running_loop().create_future()
        # Every caller may have been cancelled by the time the waiter fails
        waiter.add_done_callback(_consume_exception)
        self._waiters[user_id] = waiter
        self._pending.append(user_id)
        if self._flusher is None:
            self._batch_ready = asyncio.Event()
            self._flusher = asyncio.create_task(self._drain())
        if len(self._pending) >= self.batch_size and self._batch_ready is not None:
            self._batch_ready.set()
        return waiter

    async def _drain(self) -> None:
        try:
            await self._debounce()
            # Anything queued while a batch was in flight goes out right after it
            while self._pending:
                batch = self._pending[: self.batch_size]
                del self._pending[: self.batch_size]
                await self._dispatch(batch)
        finally:
            self._flusher = None
            self._batch_ready = None

    async def _debounce(self) -> None:
        if len(self._pending) >= self.batch_size or self._batch_ready is None:
            return
        try:
            await asyncio.wait_for(self._batch_ready.wait(), timeout=self.debounce_seconds)
        except asyncio.TimeoutError:
            pass

    # -- resolution -----------------------------------------------------

    async def _dispatch(self, batch: Sequence[str]) -> None:
        try:
            snapshots = await self.source.batch(list(batch))
        except Exception as exc:
            obs_metrics.reputation_batch("fallback", len(batch))
            _LOG.warning(
                "reputation.batch_failed",
                extra={"size": len(batch), "error": repr(exc)},
            )
            await asyncio.gather(*(self._fetch_single(user_id) for user_id in batch))
            return
        obs_metrics.reputation_batch("ok", len(batch))
        for user_id in batch:
            snapshot = snapshots.get(user_id)
            if snapshot is None:
                self._reject(user_id, UnknownUser(user_id))
                continue
            self._resolve(user_id, snapshot)

    async def _fetch_single(self, user_id: str) -> None:
        try:
            snapshot = await self.source.single(user_id)
        except Exception as exc:
            obs_metrics.REPUTATION_SINGLE_FAILURES.inc()
            _LOG.warning(
                "reputation.single_failed",
                extra={"target_user": user_id, "error": repr(exc)},
            )
            cause: Exception = exc
            if not isinstance(exc, UnknownUser):
                cause = CounterUnavailable()
                cause.__cause__ = exc
            self._reject(user_id, cause)
            return
        self._resolve(user_id, snapshot)

    def _resolve(self, user_id: str, snapshot: ScoreInput) -> None:
        result = score_model.compute(snapshot)
        expires_at = self._clock() + self.cache_ttl_seconds if self.cache_ttl_seconds else None
        self._cache[user_id] = _CacheEntry(result=result, expires_at=expires_at)
        waiter = self._waiters.pop(user_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(result)
        if self.advisor is not None:
            self.advisor.advise(user_id, result)

    def _reject(self, user_id: str, cause: BaseException) -> None:
        waiter = self._waiters.pop(user_id, None)
        if waiter is None or waiter.done():
            return
        error = ScoreUnavailable(user_id)
        error.__cause__ = cause
        waiter.set_exception(error)


__all__ = ["BatchCoalescer"]
