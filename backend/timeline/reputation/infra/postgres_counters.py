"""Postgres implementations of the reputation storage contracts."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Sequence

from timeline.infra.postgres import get_pool
from timeline.reputation.domain.counters import CounterSource, ScoreStore
from timeline.reputation.domain.exceptions import UnknownUser
from timeline.reputation.domain.models import ScoreInput

COUNTERS_SQL = """
	SELECT
		u.id AS user_id,
		(SELECT COUNT(*) FROM "Post" p WHERE p."userId" = u.id AND p."createdAt" >= $2) AS recent_posts,
		(SELECT COUNT(*) FROM "Post" p WHERE p."userId" = u.id) AS total_posts,
		(SELECT COUNT(*) FROM "Repost" r WHERE r."userId" = u.id AND r."createdAt" >= $2) AS recent_reposts_given,
		(SELECT COUNT(*) FROM "Repost" r WHERE r."userId" = u.id) AS total_reposts_given,
		(
		  SELECT COUNT(*) FROM "Repost" r JOIN "Post" p ON p.id = r."postId"
		  WHERE p."userId" = u.id AND r."createdAt" >= $2
		) AS recent_reposts_received,
		(
		  SELECT COUNT(*) FROM "Repost" r JOIN "Post" p ON p.id = r."postId"
		  WHERE p."userId" = u.id
		) AS total_reposts_received,
		(SELECT COUNT(*) FROM "Favorite" f WHERE f."userId" = u.id AND f."createdAt" >= $2) AS recent_favorites_given,
		(SELECT COUNT(*) FROM "Favorite" f WHERE f."userId" = u.id) AS total_favorites_given,
		(
		  SELECT COUNT(*) FROM "Favorite" f JOIN "Post" p ON p.id = f."postId"
		  WHERE p."userId" = u.id AND f."createdAt" >= $2
		) AS recent_favorites_received,
		(
		  SELECT COUNT(*) FROM "Favorite" f JOIN "Post" p ON p.id = f."postId"
		  WHERE p."userId" = u.id
		) AS total_favorites_received,
		(SELECT COUNT(*) FROM "Follow" fo WHERE fo."followedId" = u.id) AS followers,
		GREATEST(EXTRACT(DAY FROM ($3::timestamp - u."createdAt")), 0)::int AS account_age_days
	FROM "User" u
	WHERE u.id = ANY($1::text[])
"""

STORED_SCORE_SQL = 'SELECT rate FROM "User" WHERE id = $1'

UPDATE_SCORE_SQL = 'UPDATE "User" SET rate = $2 WHERE id = $1'

INSERT_HISTORY_SQL = """
	INSERT INTO rating_history (id, user_id, delta, rating, created_at, reason)
	VALUES (gen_random_uuid(), $1, $2, $3, NOW(), $4)
"""


def _utc_now() -> datetime:
	return datetime.now(timezone.utc)


class _PoolMixin:
	_pool: Any

	async def _acquire_pool(self) -> Any:
		if self._pool is not None:
			return self._pool
		return await get_pool()


class PostgresCounterSource(_PoolMixin, CounterSource):
	"""Aggregates every counter for a set of users in one statement."""

	def __init__(
		self,
		pool: Any | None = None,
		*,
		recent_window_days: int = 30,
		now: Callable[[], datetime] = _utc_now,
	) -> None:
		self._pool = pool
		self.recent_window = timedelta(days=recent_window_days)
		self._now = now

	async def batch(self, user_ids: Sequence[str]) -> Mapping[str, ScoreInput]:
		if not user_ids:
			return {}
		now = self._now().astimezone(timezone.utc).replace(tzinfo=None)
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			records = await conn.fetch(COUNTERS_SQL, list(user_ids), now - self.recent_window, now)
		result: Dict[str, ScoreInput] = {}
		for record in records:
			data = dict(record)
			result[str(data.pop("user_id"))] = ScoreInput.from_mapping(data)
		return result

	async def single(self, user_id: str) -> ScoreInput:
		result = await self.batch([user_id])
		try:
			return result[user_id]
		except KeyError:
			raise UnknownUser(user_id) from None


class PostgresScoreStore(_PoolMixin, ScoreStore):
	"""Keeps the persisted rate on the user row and appends rating history."""

	def __init__(self, pool: Any | None = None) -> None:
		self._pool = pool

	async def get_stored_score(self, user_id: str) -> int | None:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			value = await conn.fetchval(STORED_SCORE_SQL, user_id)
		return int(value) if value is not None else None

	async def record_score(self, user_id: str, score: int, *, delta: int, reason: str) -> None:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await conn.execute(UPDATE_SCORE_SQL, user_id, score)
				await conn.execute(INSERT_HISTORY_SQL, user_id, delta, score, reason)


__all__ = ["PostgresCounterSource", "PostgresScoreStore", "COUNTERS_SQL"]
