"""Central registry for Prometheus metrics used across the engine."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"timeline_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"timeline_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

FEED_PAGES = Counter(
	"timeline_feed_pages_total",
	"Merged feed pages served",
	["mode", "outcome"],
)

FEED_SOURCE_FAILURES = Counter(
	"timeline_feed_source_failures_total",
	"Feed source fetches that failed or timed out",
	["source"],
)

FEED_MERGE_DURATION = Histogram(
	"timeline_feed_merge_duration_seconds",
	"Time spent fetching and merging one feed page",
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

REPUTATION_CACHE = Counter(
	"timeline_reputation_cache_total",
	"Reputation score lookups by cache result",
	["result"],
)

REPUTATION_BATCHES = Counter(
	"timeline_reputation_batches_total",
	"Counter batches dispatched by the coalescer",
	["outcome"],
)

REPUTATION_BATCH_SIZE = Histogram(
	"timeline_reputation_batch_size",
	"Distinct user ids per counter batch",
	buckets=(1, 2, 5, 10, 20, 50),
)

REPUTATION_SINGLE_FAILURES = Counter(
	"timeline_reputation_single_failures_total",
	"Single-item counter fallbacks that failed",
)

REPUTATION_PERSIST = Counter(
	"timeline_reputation_persist_total",
	"Advisory score persistence decisions",
	["outcome"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def feed_page_served(mode: str, *, degraded: bool) -> None:
	FEED_PAGES.labels(mode=mode, outcome="degraded" if degraded else "full").inc()


def feed_source_failed(source: str) -> None:
	FEED_SOURCE_FAILURES.labels(source=source).inc()


def reputation_cache(hit: bool) -> None:
	REPUTATION_CACHE.labels(result="hit" if hit else "miss").inc()


def reputation_batch(outcome: str, size: int) -> None:
	REPUTATION_BATCHES.labels(outcome=outcome).inc()
	REPUTATION_BATCH_SIZE.observe(size)


def reputation_persist(outcome: str) -> None:
	REPUTATION_PERSIST.labels(outcome=outcome).inc()
