"""Domain error translation and global handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from timeline.feed.domain.exceptions import FeedError
from timeline.obs import logging as obs_logging
from timeline.reputation.domain.exceptions import ReputationError, ScoreUnavailable, UnknownUser


def to_http_error(exc: Exception) -> HTTPException:
	"""Translate domain exceptions to FastAPI HTTP errors."""
	if isinstance(exc, ScoreUnavailable) and isinstance(exc.__cause__, UnknownUser):
		exc = exc.__cause__
	if isinstance(exc, (FeedError, ReputationError)):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def get_request_id(default: str = "unknown") -> str:
	return obs_logging.current_request_id() or default


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		payload = {"detail": exc.detail, "request_id": get_request_id()}
		return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		payload = {
			"detail": "validation_error",
			"errors": jsonable_errors(exc),
			"request_id": get_request_id(),
		}
		return JSONResponse(status_code=422, content=payload)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
	errors = []
	for error in exc.errors():
		item = {key: value for key, value in error.items() if key in ("loc", "msg", "type")}
		item["loc"] = [str(part) for part in item.get("loc", ())]
		errors.append(item)
	return errors


__all__ = ["install_error_handlers", "to_http_error", "get_request_id"]
