"""Feed endpoints: global timeline, profile timeline and incremental refresh."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Header, Query

from timeline.api.errors import to_http_error
from timeline.container import get_feed_merger
from timeline.feed.domain.exceptions import FeedError
from timeline.feed.domain.sources import FeedScope
from timeline.feed.schemas import dto
from timeline.settings import settings

router = APIRouter(tags=["feed"])

_MAX = settings.feed_max_page_size
_DEFAULT = min(settings.feed_default_page_size, _MAX)


@router.get("/feed", response_model=dto.FeedPageOut)
async def get_feed_endpoint(
    cursor: Optional[str] = Query(default=None),
    limit: int = Query(default=_DEFAULT, ge=1, le=_MAX),
    include_reposts: bool = Query(default=True),
    x_user_id: Optional[str] = Header(default=None),
) -> dto.FeedPageOut:
    try:
        page = await get_feed_merger().get_page(
            cursor, limit, include_reposts, scope=FeedScope(viewer_id=x_user_id)
        )
    except FeedError as exc:
        raise to_http_error(exc) from exc
    return dto.FeedPageOut.from_page(page)


@router.get("/feed/since", response_model=dto.FeedPageOut)
async def get_feed_since_endpoint(
    watermark: datetime = Query(...),
    cursor: Optional[str] = Query(default=None),
    limit: int = Query(default=_DEFAULT, ge=1, le=_MAX),
    include_reposts: bool = Query(default=True),
    rendered: List[str] = Query(default=[]),
    x_user_id: Optional[str] = Header(default=None),
) -> dto.FeedPageOut:
    try:
        page = await get_feed_merger().get_since(
            watermark,
            limit,
            include_reposts,
            after_cursor=cursor,
            rendered=rendered,
            scope=FeedScope(viewer_id=x_user_id),
        )
    except FeedError as exc:
        raise to_http_error(exc) from exc
    return dto.FeedPageOut.from_page(page)


@router.get("/users/{user_id}/feed", response_model=dto.FeedPageOut)
async def get_profile_feed_endpoint(
    user_id: str,
    cursor: Optional[str] = Query(default=None),
    limit: int = Query(default=_DEFAULT, ge=1, le=_MAX),
    include_reposts: bool = Query(default=True),
    x_user_id: Optional[str] = Header(default=None),
) -> dto.FeedPageOut:
    try:
        page = await get_feed_merger().get_page(
            cursor, limit, include_reposts, scope=FeedScope(viewer_id=x_user_id, author_id=user_id)
        )
    except FeedError as exc:
        raise to_http_error(exc) from exc
    return dto.FeedPageOut.from_page(page)
