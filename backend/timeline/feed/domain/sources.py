"""Feed source contract and an in-memory reference implementation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from timeline.feed.domain.models import PostRow, RepostRow, as_utc
from timeline.feed.services.cursor import SourcePosition


@dataclass(frozen=True, slots=True)
class FeedScope:
	"""Who is asking and whose timeline is being read.

	``author_id`` narrows both streams to a single profile (that user's posts
	and that user's reposts); ``None`` reads the global timeline.
	"""

	viewer_id: Optional[str] = None
	author_id: Optional[str] = None


class FeedSource(Protocol):
	"""Two independently paginated streams consumed by the merger.

	Both streams return rows strictly after ``cursor`` in feed order
	(newest first, ties by id ascending) and, when ``since`` is given, only rows
	whose own timestamp is later than ``since``.
	"""

	async def original_items(
		self,
		scope: FeedScope,
		*,
		cursor: Optional[SourcePosition],
		limit: int,
		since: Optional[datetime] = None,
	) -> Sequence[PostRow]:
		...

	async def repost_events(
		self,
		scope: FeedScope,
		*,
		cursor: Optional[SourcePosition],
		limit: int,
		since: Optional[datetime] = None,
	) -> Sequence[RepostRow]:
		...


class InMemoryFeedSource(FeedSource):
	"""Reference source used in tests and developer environments."""

	def __init__(
		self,
		posts: Iterable[PostRow] = (),
		reposts: Iterable[RepostRow] = (),
		*,
		favorites: Iterable[tuple[str, str]] = (),
	) -> None:
		self.posts: dict[str, PostRow] = {post.id: post for post in posts}
		self.reposts: list[RepostRow] = list(reposts)
		self.favorites: set[tuple[str, str]] = set(favorites)

	def delete_post(self, post_id: str) -> None:
		self.posts.pop(post_id, None)

	def _with_viewer(self, post: PostRow, viewer_id: Optional[str]) -> PostRow:
		if viewer_id is None:
			return post
		reposted = any(r.post_id == post.id and r.actor.id == viewer_id for r in self.reposts)
		return post.model_copy(
			update={
				"is_favorited": (viewer_id, post.id) in self.favorites,
				"is_reposted": reposted,
			}
		)

	async def original_items(
		self,
		scope: FeedScope,
		*,
		cursor: Optional[SourcePosition],
		limit: int,
		since: Optional[datetime] = None,
	) -> Sequence[PostRow]:
		rows = [post for post in self.posts.values() if post.parent_id is None]
		if scope.author_id is not None:
			rows = [post for post in rows if post.user.id == scope.author_id]
		if since is not None:
			rows = [post for post in rows if as_utc(post.created_at) > as_utc(since)]
		if cursor is not None:
			rows = [post for post in rows if post.position() > cursor.key()]
		rows.sort(key=lambda post: post.position())
		return [self._with_viewer(post, scope.viewer_id) for post in rows[:limit]]

	async def repost_events(
		self,
		scope: FeedScope,
		*,
		cursor: Optional[SourcePosition],
		limit: int,
		since: Optional[datetime] = None,
	) -> Sequence[RepostRow]:
		rows = list(self.reposts)
		if scope.author_id is not None:
			rows = [row for row in rows if row.actor.id == scope.author_id]
		if since is not None:
			rows = [row for row in rows if as_utc(row.reposted_at) > as_utc(since)]
		if cursor is not None:
			rows = [row for row in rows if row.position() > cursor.key()]
		rows.sort(key=lambda row: row.position())
		hydrated: list[RepostRow] = []
		for row in rows[:limit]:
			post = self.posts.get(row.post_id)
			hydrated.append(
				row.model_copy(update={"post": self._with_viewer(post, scope.viewer_id) if post else None})
			)
		return hydrated
