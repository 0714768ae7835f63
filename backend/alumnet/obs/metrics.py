"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"alumnet_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"alumnet_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

NET_MEMBERSHIP_CHANGES = Counter(
	"alumnet_membership_changes_total",
	"Group membership ledger transitions",
	["action"],
)

NET_SUBSCRIPTION_CHANGES = Counter(
	"alumnet_subscription_changes_total",
	"Topic subscription ledger transitions",
	["action"],
)

NET_INVITATIONS = Counter(
	"alumnet_event_invitations_total",
	"Event invitation ledger transitions",
	["action", "invitee_kind"],
)

NET_POSTS_CREATED = Counter(
	"alumnet_posts_created_total",
	"Posts created",
	["target_kind", "reply"],
)

NET_EVENTS_CREATED = Counter(
	"alumnet_events_created_total",
	"Events created",
	["private"],
)

NET_RSVPS = Counter(
	"alumnet_rsvps_total",
	"RSVP submissions",
	["status"],
)

NET_RSVP_CAPACITY_REJECTS = Counter(
	"alumnet_rsvp_capacity_rejects_total",
	"RSVP going requests rejected because the event is full",
)

NET_ACCESS_DENIED = Counter(
	"alumnet_access_denied_total",
	"Visibility or write checks that denied access",
	["operation"],
)

IDEMPOTENCY_RESULTS = Counter(
	"alumnet_idempotency_results_total",
	"Idempotency key outcomes",
	["result"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_membership(action: str) -> None:
	NET_MEMBERSHIP_CHANGES.labels(action=action).inc()


def inc_subscription(action: str) -> None:
	NET_SUBSCRIPTION_CHANGES.labels(action=action).inc()


def inc_invitation(action: str, invitee_kind: str) -> None:
	NET_INVITATIONS.labels(action=action, invitee_kind=invitee_kind).inc()


def inc_post_created(target_kind: str, *, reply: bool) -> None:
	NET_POSTS_CREATED.labels(target_kind=target_kind, reply="true" if reply else "false").inc()


def inc_event_created(*, private: bool) -> None:
	NET_EVENTS_CREATED.labels(private="true" if private else "false").inc()


def inc_rsvp(status: str) -> None:
	NET_RSVPS.labels(status=status).inc()


def inc_rsvp_capacity_reject() -> None:
	NET_RSVP_CAPACITY_REJECTS.inc()


def inc_access_denied(operation: str) -> None:
	NET_ACCESS_DENIED.labels(operation=operation).inc()


def inc_idempotency(result: str) -> None:
	IDEMPOTENCY_RESULTS.labels(result=result).inc()
