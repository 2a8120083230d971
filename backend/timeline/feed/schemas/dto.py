"""Pydantic schemas for the feed API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from timeline.feed.domain.models import FeedItem, FeedPage


class ActorOut(BaseModel):
	id: str
	username: str = ""
	icon: Optional[str] = None


class FeedItemOut(BaseModel):
	id: str
	dedupe_key: str
	owner_id: str
	owner_display: str = ""
	owner_icon: Optional[str] = None
	content: str = ""
	images: List[str] = Field(default_factory=list)
	parent_id: Optional[str] = None
	primary_timestamp: datetime
	effective_timestamp: datetime
	is_repost: bool = False
	repost_actor: Optional[ActorOut] = None
	repost_timestamp: Optional[datetime] = None
	favorites: int = 0
	reposts: int = 0
	replies: int = 0
	is_favorited: bool = False
	is_reposted: bool = False

	@classmethod
	def from_item(cls, item: FeedItem) -> "FeedItemOut":
		actor = item.repost_actor
		return cls(
			id=item.id,
			dedupe_key=item.dedupe_key,
			owner_id=item.owner_id,
			owner_display=item.owner_display,
			owner_icon=item.owner_icon,
			content=item.content,
			images=list(item.images),
			parent_id=item.parent_id,
			primary_timestamp=item.primary_timestamp,
			effective_timestamp=item.effective_timestamp,
			is_repost=item.is_repost,
			repost_actor=ActorOut(id=actor.id, username=actor.username, icon=actor.icon) if actor else None,
			repost_timestamp=item.repost_timestamp,
			favorites=item.favorites,
			reposts=item.reposts,
			replies=item.replies,
			is_favorited=item.is_favorited,
			is_reposted=item.is_reposted,
		)


class FeedPageOut(BaseModel):
	items: List[FeedItemOut]
	has_more: bool
	next_cursor: Optional[str] = None
	degraded: bool = False
	watermark: Optional[datetime] = None

	@classmethod
	def from_page(cls, page: FeedPage) -> "FeedPageOut":
		return cls(
			items=[FeedItemOut.from_item(item) for item in page.items],
			has_more=page.has_more,
			next_cursor=page.next_cursor,
			degraded=page.degraded,
			watermark=page.watermark,
		)
