"""Prometheus metrics for HTTP traffic and messaging activity."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"carechat_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"carechat_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

AUTH_FAILURES = Counter(
	"carechat_auth_failures_total",
	"Requests rejected for missing or invalid caller identity",
	["reason"],
)

THREADS_CREATED = Counter(
	"carechat_threads_created_total",
	"Threads created",
	["kind"],
)

MESSAGES_SENT = Counter(
	"carechat_messages_sent_total",
	"Messages persisted",
	["kind"],
)

MESSAGE_MUTATIONS = Counter(
	"carechat_message_mutations_total",
	"Message edits, soft deletes and per-user hides",
	["action"],
)

UPLOADS = Counter(
	"carechat_attachment_uploads_total",
	"Attachment upload reservations and confirmations",
	["stage"],
)

MODERATION_TOGGLES = Counter(
	"carechat_moderation_toggles_total",
	"Block, mute and pin toggles",
	["action", "state"],
)

SEARCH_QUERIES = Counter(
	"carechat_search_queries_total",
	"Thread search queries by strategy",
	["strategy"],
)

SEARCH_FALLBACKS = Counter(
	"carechat_search_fallbacks_total",
	"Full-text search failures answered by substring search",
)

DEPENDENCY_FAILURES = Counter(
	"carechat_dependency_failures_total",
	"Store or object-storage failures surfaced as dependency_failure",
	["dependency"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_thread_created(kind: str) -> None:
	THREADS_CREATED.labels(kind=kind).inc()


def inc_message_sent(kind: str) -> None:
	MESSAGES_SENT.labels(kind=kind).inc()


def inc_message_mutation(action: str) -> None:
	MESSAGE_MUTATIONS.labels(action=action).inc()


def inc_upload(stage: str, count: int = 1) -> None:
	if count > 0:
		UPLOADS.labels(stage=stage).inc(count)


def inc_toggle(action: str, state: bool) -> None:
	MODERATION_TOGGLES.labels(action=action, state="on" if state else "off").inc()


def inc_search(strategy: str) -> None:
	SEARCH_QUERIES.labels(strategy=strategy).inc()


def inc_search_fallback() -> None:
	SEARCH_FALLBACKS.inc()


def inc_dependency_failure(dependency: str) -> None:
	DEPENDENCY_FAILURES.labels(dependency=dependency).inc()
