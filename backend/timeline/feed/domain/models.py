"""Domain models for merged feed pages."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def as_utc(value: datetime) -> datetime:
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value


def order_key(timestamp: datetime, item_id: str, actor_id: str = "") -> tuple[int, str, str]:
	"""Total feed order: newest first, then id ascending, then resharer ascending.

	Timestamps are reduced to integer microseconds so that the key sorts
	ascending without float rounding.
	"""

	micros = (as_utc(timestamp) - _EPOCH) // _MICROSECOND
	return (-micros, item_id, actor_id)


class ActorRef(BaseModel):
	"""A user as shown next to a feed row."""

	id: str
	username: str = ""
	icon: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


class PostRow(BaseModel):
	"""An original post as delivered by the persistence collaborator."""

	id: str
	user: ActorRef
	content: str = ""
	images: list[str] = Field(default_factory=list)
	parent_id: Optional[str] = None
	created_at: datetime
	favorites: int = 0
	reposts: int = 0
	replies: int = 0
	is_favorited: bool = False
	is_reposted: bool = False

	model_config = ConfigDict(from_attributes=True)

	def position(self) -> tuple[int, str, str]:
		return order_key(self.created_at, self.id)


class RepostRow(BaseModel):
	"""A repost event; ``post`` is ``None`` once the original has been deleted."""

	id: str
	post_id: str
	actor: ActorRef
	reposted_at: datetime
	post: Optional[PostRow] = None

	model_config = ConfigDict(from_attributes=True)

	def position(self) -> tuple[int, str, str]:
		return order_key(self.reposted_at, self.post_id, self.actor.id)


class FeedItem(BaseModel):
	"""One renderable row of a merged feed page."""

	id: str
	owner_id: str
	owner_display: str = ""
	owner_icon: Optional[str] = None
	content: str = ""
	images: list[str] = Field(default_factory=list)
	parent_id: Optional[str] = None
	primary_timestamp: datetime
	repost_actor: Optional[ActorRef] = None
	repost_timestamp: Optional[datetime] = None
	favorites: int = 0
	reposts: int = 0
	replies: int = 0
	is_favorited: bool = False
	is_reposted: bool = False

	@model_validator(mode="after")
	def _repost_fields_together(self) -> "FeedItem":
		if (self.repost_actor is None) != (self.repost_timestamp is None):
			raise ValueError("repost_actor and repost_timestamp must be set together")
		return self

	@classmethod
	def from_post(cls, post: PostRow) -> "FeedItem":
		return cls(
			id=post.id,
			owner_id=post.user.id,
			owner_display=post.user.username,
			owner_icon=post.user.icon,
			content=post.content,
			images=list(post.images),
			parent_id=post.parent_id,
			primary_timestamp=post.created_at,
			favorites=post.favorites,
			reposts=post.reposts,
			replies=post.replies,
			is_favorited=post.is_favorited,
			is_reposted=post.is_reposted,
		)

	@classmethod
	def from_repost(cls, repost: RepostRow) -> Optional["FeedItem"]:
		if repost.post is None:
			return None
		return cls.from_post(repost.post).model_copy(
			update={"repost_actor": repost.actor, "repost_timestamp": repost.reposted_at}
		)

	@property
	def is_repost(self) -> bool:
		return self.repost_actor is not None

	@property
	def effective_timestamp(self) -> datetime:
		return self.repost_timestamp or self.primary_timestamp

	@property
	def dedupe_key(self) -> str:
		if self.repost_actor is None:
			return self.id
		return f"{self.id}:{self.repost_actor.id}"

	def position(self) -> tuple[int, str, str]:
		actor_id = self.repost_actor.id if self.repost_actor else ""
		return order_key(self.effective_timestamp, self.id, actor_id)


class FeedPage(BaseModel):
	"""A page of merged feed items plus its continuation state."""

	items: list[FeedItem] = Field(default_factory=list)
	has_more: bool = False
	next_cursor: Optional[str] = None
	degraded: bool = False
	watermark: Optional[datetime] = None


def item_id_from_dedupe_key(key: str) -> str:
	return key.split(":", 1)[0]
