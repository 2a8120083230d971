import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from timeline import container
from timeline.feed.domain.sources import InMemoryFeedSource
from timeline.infra import postgres
from timeline.main import app
from timeline.reputation.domain.counters import InMemoryCounterSource, InMemoryScoreStore
from timeline.settings import settings


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Keep every info line and make coalescer timing deterministic."""
	original = (
		settings.obs_log_sampling_rate_info,
		settings.reputation_debounce_seconds,
		settings.reputation_cache_ttl_seconds,
	)
	settings.obs_log_sampling_rate_info = 1.0
	settings.reputation_debounce_seconds = 0.01
	settings.reputation_cache_ttl_seconds = 0.0
	try:
		yield
	finally:
		(
			settings.obs_log_sampling_rate_info,
			settings.reputation_debounce_seconds,
			settings.reputation_cache_ttl_seconds,
		) = original


@pytest.fixture
def feed_source() -> InMemoryFeedSource:
	return InMemoryFeedSource()


@pytest.fixture
def counter_source() -> InMemoryCounterSource:
	return InMemoryCounterSource()


@pytest.fixture
def score_store() -> InMemoryScoreStore:
	return InMemoryScoreStore()


@pytest_asyncio.fixture
async def api_client(feed_source, counter_source, score_store):
	container.configure(feed_source=feed_source, counter_source=counter_source, score_store=score_store)
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
	await container.shutdown()
