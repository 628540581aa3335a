"""Central registry for Prometheus metrics used by the chat client."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


API_REQUESTS = Counter(
	"storefront_chat_api_requests_total",
	"REST calls issued to the chat backend",
	["operation", "status"],
)

API_LATENCY = Histogram(
	"storefront_chat_api_request_duration_seconds",
	"REST call latency in seconds",
	["operation"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

OPTIMISTIC_APPLIED = Counter(
	"storefront_chat_optimistic_applied_total",
	"Speculative local mutations applied before network confirmation",
	["operation"],
)

OPTIMISTIC_CONFIRMED = Counter(
	"storefront_chat_optimistic_confirmed_total",
	"Speculative mutations reconciled with the server response",
	["operation"],
)

OPTIMISTIC_ROLLBACKS = Counter(
	"storefront_chat_optimistic_rollbacks_total",
	"Speculative mutations rolled back after a failed call",
	["operation"],
)

DUPLICATE_SUBMISSIONS = Counter(
	"storefront_chat_duplicate_submissions_total",
	"User mutations dropped because an identical one was in flight",
	["operation"],
)

PUSH_EVENTS = Counter(
	"storefront_chat_push_events_total",
	"Push channel events received",
	["table", "operation", "outcome"],
)

DUPLICATES_ABSORBED = Counter(
	"storefront_chat_duplicates_absorbed_total",
	"Entities already known by id and merged as a no-op",
	["kind"],
)

STALE_REFERENCES = Counter(
	"storefront_chat_stale_references_total",
	"Mutations or events targeting a conversation no longer held locally",
)

PENDING_DELETES = Counter(
	"storefront_chat_pending_deletes_total",
	"Pending permanent-delete transitions",
	["outcome"],
)

LISTENER_STATE = Gauge(
	"storefront_chat_listener_subscribed",
	"Live update listeners currently subscribed per actor role",
	["role"],
)

LISTENER_ERRORS = Counter(
	"storefront_chat_listener_errors_total",
	"Push subscription errors",
	["role"],
)

BACKGROUND_FAILURES = Counter(
	"storefront_chat_background_failures_total",
	"Fire-and-forget tasks that raised",
	["task"],
)


def observe_api(operation: str, status: str, seconds: float) -> None:
	API_REQUESTS.labels(operation=operation, status=status).inc()
	API_LATENCY.labels(operation=operation).observe(seconds)


def inc_optimistic_applied(operation: str) -> None:
	OPTIMISTIC_APPLIED.labels(operation=operation).inc()


def inc_optimistic_confirmed(operation: str) -> None:
	OPTIMISTIC_CONFIRMED.labels(operation=operation).inc()


def inc_rollback(operation: str) -> None:
	OPTIMISTIC_ROLLBACKS.labels(operation=operation).inc()


def inc_duplicate_submission(operation: str) -> None:
	DUPLICATE_SUBMISSIONS.labels(operation=operation).inc()


def push_event(table: str, operation: str, outcome: str) -> None:
	PUSH_EVENTS.labels(table=table, operation=operation, outcome=outcome).inc()


def inc_duplicate_absorbed(kind: str) -> None:
	DUPLICATES_ABSORBED.labels(kind=kind).inc()


def inc_stale_reference() -> None:
	STALE_REFERENCES.inc()


def pending_delete(outcome: str) -> None:
	PENDING_DELETES.labels(outcome=outcome).inc()


def listener_subscribed(role: str) -> None:
	LISTENER_STATE.labels(role=role).inc()


def listener_unsubscribed(role: str) -> None:
	LISTENER_STATE.labels(role=role).dec()


def inc_listener_error(role: str) -> None:
	LISTENER_ERRORS.labels(role=role).inc()


def inc_background_failure(task: str) -> None:
	BACKGROUND_FAILURES.labels(task=task).inc()
