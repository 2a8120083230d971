"""Opaque cursor encoding for merged feed pagination.

A merged cursor carries one keyset position per underlying source so that the
original and repost queries can resume independently.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from timeline.feed.domain.exceptions import InvalidCursor
from timeline.feed.domain.models import order_key


@dataclass(frozen=True, slots=True)
class SourcePosition:
	"""Keyset position of the last row consumed from one source."""

	timestamp: datetime
	id: str
	actor_id: str = ""

	def key(self) -> tuple[int, str, str]:
		return order_key(self.timestamp, self.id, self.actor_id)


@dataclass(frozen=True, slots=True)
class MergedCursor:
	original: Optional[SourcePosition] = None
	repost: Optional[SourcePosition] = None
	# Newest effective timestamp already served by an unfinished refresh
	high_water: Optional[datetime] = None

	@property
	def last_id(self) -> Optional[str]:
		candidates = [pos for pos in (self.original, self.repost) if pos is not None]
		if not candidates:
			return None
		return max(candidates, key=lambda pos: pos.key()).id


def _position_payload(position: SourcePosition) -> Dict[str, Any]:
	payload: Dict[str, Any] = {"t": position.timestamp.isoformat(), "id": position.id}
	if position.actor_id:
		payload["a"] = position.actor_id
	return payload


def _position_from(data: Any) -> Optional[SourcePosition]:
	if data is None:
		return None
	return SourcePosition(
		timestamp=datetime.fromisoformat(data["t"]),
		id=str(data["id"]),
		actor_id=str(data.get("a", "")),
	)


def encode_cursor(cursor: MergedCursor) -> str:
	payload: Dict[str, Any] = {}
	if cursor.original is not None:
		payload["o"] = _position_payload(cursor.original)
	if cursor.repost is not None:
		payload["r"] = _position_payload(cursor.repost)
	if cursor.last_id is not None:
		payload["last"] = cursor.last_id
	if cursor.high_water is not None:
		payload["w"] = cursor.high_water.isoformat()
	blob = json.dumps(payload, separators=(",", ":"))
	return base64.urlsafe_b64encode(blob.encode("utf-8")).decode("ascii")


def decode_cursor(value: str) -> MergedCursor:
	try:
		decoded = base64.urlsafe_b64decode(value.encode("ascii")).decode("utf-8")
		data: Dict[str, Any] = json.loads(decoded)
		if not isinstance(data, dict):
			raise TypeError("cursor payload must be an object")
		high_water = datetime.fromisoformat(data["w"]) if data.get("w") is not None else None
		return MergedCursor(
			original=_position_from(data.get("o")),
			repost=_position_from(data.get("r")),
			high_water=high_water,
		)
	except (KeyError, ValueError, TypeError, AttributeError, binascii.Error, UnicodeError) as exc:
		raise InvalidCursor() from exc


__all__ = ["SourcePosition", "MergedCursor", "encode_cursor", "decode_cursor"]
