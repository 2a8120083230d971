"""Reputation value objects."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class RatingColor(str, Enum):
	"""Display tiers, lowest first."""

	WHITE = "white"
	GRAY = "gray"
	BROWN = "brown"
	LIME = "lime"
	GREEN = "green"
	CYAN = "cyan"
	BLUE = "blue"
	PURPLE = "purple"
	YELLOW = "yellow"
	ORANGE = "orange"
	RED = "red"


@dataclass(frozen=True, slots=True)
class ScoreInput:
	"""Counter bundle for one user. "recent" means within the trailing window."""

	recent_posts: int = 0
	total_posts: int = 0
	recent_reposts_given: int = 0
	total_reposts_given: int = 0
	recent_reposts_received: int = 0
	total_reposts_received: int = 0
	recent_favorites_given: int = 0
	total_favorites_given: int = 0
	recent_favorites_received: int = 0
	total_favorites_received: int = 0
	followers: int = 0
	account_age_days: int = 0

	def as_dict(self) -> Dict[str, int]:
		return asdict(self)

	@classmethod
	def from_mapping(cls, data: Dict[str, Any]) -> "ScoreInput":
		return cls(**{name: int(data.get(name) or 0) for name in cls.__dataclass_fields__})


@dataclass(frozen=True, slots=True)
class ScoreResult:
	"""Computed score and its tier; ``stats`` is the snapshot it came from."""

	score: int
	bucket: RatingColor
	stats: Optional[ScoreInput] = None
