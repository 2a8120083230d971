"""Postgres-backed feed source over the social schema."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence

from timeline.feed.domain.models import ActorRef, PostRow, RepostRow, as_utc
from timeline.feed.domain.sources import FeedScope, FeedSource
from timeline.feed.services.cursor import SourcePosition
from timeline.infra.postgres import get_pool

_POST_COLUMNS = """
		p.id AS post_id,
		p.content,
		p.images,
		p."parentId" AS parent_id,
		p."createdAt" AS created_at,
		p.favorites,
		p.reposts,
		(SELECT COUNT(*) FROM "Post" r WHERE r."parentId" = p.id) AS replies,
		u.id AS user_id,
		u.username,
		u.icon,
		EXISTS (
		  SELECT 1 FROM "Favorite" f WHERE f."postId" = p.id AND f."userId" = $1::text
		) AS is_favorited,
		EXISTS (
		  SELECT 1 FROM "Repost" v WHERE v."postId" = p.id AND v."userId" = $1::text
		) AS is_reposted
"""

ORIGINALS_SQL = f"""
	SELECT {_POST_COLUMNS}
	FROM "Post" p
	JOIN "User" u ON u.id = p."userId"
	WHERE p."parentId" IS NULL
	  AND ($2::text IS NULL OR p."userId" = $2::text)
	  AND ($3::timestamp IS NULL OR p."createdAt" > $3::timestamp)
	  AND (
	    $4::timestamp IS NULL
	    OR p."createdAt" < $4::timestamp
	    OR (p."createdAt" = $4::timestamp AND p.id COLLATE "C" > $5::text)
	  )
	ORDER BY p."createdAt" DESC, p.id COLLATE "C" ASC
	LIMIT $6
"""

REPOSTS_SQL = f"""
	SELECT
		rp.id AS repost_id,
		rp."postId" AS repost_post_id,
		rp."createdAt" AS reposted_at,
		a.id AS actor_id,
		a.username AS actor_username,
		a.icon AS actor_icon,
		{_POST_COLUMNS}
	FROM "Repost" rp
	JOIN "User" a ON a.id = rp."userId"
	LEFT JOIN "Post" p ON p.id = rp."postId"
	LEFT JOIN "User" u ON u.id = p."userId"
	WHERE ($2::text IS NULL OR rp."userId" = $2::text)
	  AND ($3::timestamp IS NULL OR rp."createdAt" > $3::timestamp)
	  AND (
	    $4::timestamp IS NULL
	    OR rp."createdAt" < $4::timestamp
	    OR (
	      rp."createdAt" = $4::timestamp
	      AND (rp."postId" COLLATE "C", rp."userId" COLLATE "C") > ($5::text, $6::text)
	    )
	  )
	ORDER BY rp."createdAt" DESC, rp."postId" COLLATE "C" ASC, rp."userId" COLLATE "C" ASC
	LIMIT $7
"""


def _to_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
	# Columns are "timestamp without time zone" holding UTC
	if value is None:
		return None
	return as_utc(value).astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_timestamp(value: datetime) -> datetime:
	return as_utc(value)


def _post_from(record: Mapping[str, Any]) -> Optional[PostRow]:
	if record["post_id"] is None or record["user_id"] is None:
		return None
	return PostRow(
		id=str(record["post_id"]),
		user=ActorRef(id=str(record["user_id"]), username=record["username"] or "", icon=record["icon"]),
		content=record["content"] or "",
		images=list(record["images"] or []),
		parent_id=record["parent_id"],
		created_at=_from_db_timestamp(record["created_at"]),
		favorites=int(record["favorites"] or 0),
		reposts=int(record["reposts"] or 0),
		replies=int(record["replies"] or 0),
		is_favorited=bool(record["is_favorited"]),
		is_reposted=bool(record["is_reposted"]),
	)


class PostgresFeedSource(FeedSource):
	"""Reads top-level posts and repost events with keyset pagination."""

	def __init__(self, pool: Any | None = None) -> None:
		self._pool = pool

	async def _acquire_pool(self) -> Any:
		if self._pool is not None:
			return self._pool
		return await get_pool()

	async def original_items(
		self,
		scope: FeedScope,
		*,
		cursor: Optional[SourcePosition],
		limit: int,
		since: Optional[datetime] = None,
	) -> Sequence[PostRow]:
		params: List[object] = [
			scope.viewer_id,
			scope.author_id,
			_to_db_timestamp(since),
			_to_db_timestamp(cursor.timestamp) if cursor else None,
			cursor.id if cursor else None,
			limit,
		]
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			records = await conn.fetch(ORIGINALS_SQL, *params)
		rows: List[PostRow] = []
		for record in records:
			post = _post_from(record)
			if post is not None:
				rows.append(post)
		return rows

	async def repost_events(
		self,
		scope: FeedScope,
		*,
		cursor: Optional[SourcePosition],
		limit: int,
		since: Optional[datetime] = None,
	) -> Sequence[RepostRow]:
		params: List[object] = [
			scope.viewer_id,
			scope.author_id,
			_to_db_timestamp(since),
			_to_db_timestamp(cursor.timestamp) if cursor else None,
			cursor.id if cursor else None,
			cursor.actor_id if cursor else None,
			limit,
		]
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			records = await conn.fetch(REPOSTS_SQL, *params)
		return [
			RepostRow(
				id=str(record["repost_id"]),
				post_id=str(record["repost_post_id"]),
				actor=ActorRef(
					id=str(record["actor_id"]),
					username=record["actor_username"] or "",
					icon=record["actor_icon"],
				),
				reposted_at=_from_db_timestamp(record["reposted_at"]),
				post=_post_from(record),
			)
			for record in records
		]


__all__ = ["PostgresFeedSource", "ORIGINALS_SQL", "REPOSTS_SQL"]
