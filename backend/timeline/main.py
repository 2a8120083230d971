"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from timeline import container
from timeline.api.errors import install_error_handlers
from timeline.feed.api import feeds
from timeline.infra import postgres
from timeline.obs import init as obs_init
from timeline.obs import logging as obs_logging
from timeline.reputation.api import ratings
from timeline.settings import settings

_LOG = obs_logging.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	if pool is not None:
		container.configure_postgres(pool)
	_LOG.info("timeline.started", extra={"environment": settings.environment})
	try:
		yield
	finally:
		await container.shutdown()
		await postgres.close_pool()


app = FastAPI(title="Timeline Engine", lifespan=lifespan)
install_error_handlers(app)
obs_init(app)

app.include_router(feeds.router)
app.include_router(ratings.router)


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
async def health() -> dict[str, str]:
	return {"status": "ok", "service": settings.service_name}
