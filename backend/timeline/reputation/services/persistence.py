"""Fire-and-forget write-back of computed scores."""

from __future__ import annotations

import asyncio
import logging

from timeline.obs import metrics as obs_metrics
from timeline.reputation.domain.counters import REASON_RECOMPUTE, ScoreStore
from timeline.reputation.domain.models import ScoreResult
from timeline.reputation.domain.score_model import DEFAULT_DRIFT_THRESHOLD, exceeds_drift

_LOG = logging.getLogger(__name__)


class ScorePersistenceAdvisor:
    """Persists a fresh score only when it drifted past the threshold.

    Writes run as background tasks; their failures are logged and never reach
    the caller that triggered them.
    """

    def __init__(self, store: ScoreStore, *, drift_threshold: int = DEFAULT_DRIFT_THRESHOLD) -> None:
        self.store = store
        self.drift_threshold = drift_threshold
        self._tasks: set[asyncio.Task[bool]] = set()

    def advise(self, user_id: str, result: ScoreResult) -> asyncio.Task[bool]:
        task = asyncio.create_task(self.persist_if_drifted(user_id, result))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def persist_if_drifted(self, user_id: str, result: ScoreResult) -> bool:
        try:
            stored = await self.store.get_stored_score(user_id)
            if not exceeds_drift(result.score, stored, self.drift_threshold):
                obs_metrics.reputation_persist("skipped")
                return False
            delta = result.score - (stored or 0)
            await self.store.record_score(user_id, result.score, delta=delta, reason=REASON_RECOMPUTE)
        except Exception:
            obs_metrics.reputation_persist("failed")
            _LOG.exception("reputation.persist_failed", extra={"target_user": user_id})
            return False
        obs_metrics.reputation_persist("written")
        _LOG.info(
            "reputation.persisted",
            extra={"target_user": user_id, "score": result.score, "delta": delta},
        )
        return True

    async def drain(self) -> None:
        """Wait for in-flight writes, e.g. on shutdown."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["ScorePersistenceAdvisor"]
