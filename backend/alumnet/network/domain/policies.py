"""Authorization policies for network operations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional
from uuid import UUID

from alumnet.network.domain import models
from alumnet.network.domain.exceptions import (
	CapacityExceededError,
	ConflictError,
	ForbiddenError,
	InvalidTargetError,
	LastAdminError,
	PreconditionError,
	ValidationError,
)
from alumnet.settings import resolve_page_size

ROLE_HIERARCHY = {"admin": 3, "moderator": 2, "member": 1}
IMMUTABLE_POST_FIELDS = frozenset({"target", "target_kind", "target_id"})
NULLABLE_EVENT_FIELDS = frozenset({"ends_at", "max_attendees", "registration_deadline"})


def ensure_target_kind(kind: str) -> models.TargetKind:
	if kind not in models.TARGET_KINDS:
		raise InvalidTargetError(f"invalid_target_kind:{kind}")
	return kind  # type: ignore[return-value]


def ensure_role_valid(role: str) -> None:
	if role not in ROLE_HIERARCHY:
		raise ValidationError("invalid_role")


def ensure_rsvp_status(status: str) -> None:
	if status not in models.RSVP_STATUSES:
		raise ValidationError("invalid_rsvp_status")


def ensure_category(category: str, allowed: Iterable[str]) -> None:
	if category not in allowed:
		raise ValidationError("invalid_category")


def assert_can_moderate(role: str | None) -> None:
	if role is None or ROLE_HIERARCHY.get(role, 0) < ROLE_HIERARCHY["moderator"]:
		raise ForbiddenError("moderator_role_required")


def assert_can_admin(role: str | None) -> None:
	if role is None or ROLE_HIERARCHY.get(role, 0) < ROLE_HIERARCHY["admin"]:
		raise ForbiddenError("admin_role_required")


def require_group_visible(group: models.Group, membership: models.GroupMembership | None) -> models.Group:
	"""Private groups are only visible to active members."""
	if group.is_private and (membership is None or not membership.active):
		raise ForbiddenError("membership_required")
	return group


def ensure_not_last_admin(membership: models.GroupMembership, active_admins: int) -> None:
	"""Reject a change that removes the only remaining active admin."""
	if membership.active and membership.role == "admin" and active_admins <= 1:
		raise LastAdminError("last_admin_must_promote_successor")


def require_post_author(post: models.Post, actor_id: UUID) -> None:
	if post.author_id != actor_id:
		raise ForbiddenError("not_author")


def ensure_audience_unchanged(fields_set: Iterable[str]) -> None:
	if IMMUTABLE_POST_FIELDS.intersection(fields_set):
		raise ForbiddenError("cannot change post audience after creation")


def require_event_creator(event: models.Event, actor_id: UUID) -> None:
	if event.creator_id != actor_id:
		raise ForbiddenError("event_creator_required")


def ensure_event_fields_present(changes: Mapping[str, object]) -> None:
	"""Only open-ended event fields may be cleared with an explicit null."""
	for field, value in sorted(changes.items()):
		if value is None and field not in NULLABLE_EVENT_FIELDS:
			raise ValidationError(f"{field}_required")


def ensure_event_open(event: models.Event, *, now: Optional[datetime] = None) -> None:
	if event.status != "active":
		raise PreconditionError(f"event_{event.status}")
	if event.registration_deadline is not None:
		current = now or datetime.now(timezone.utc)
		if current > event.registration_deadline:
			raise PreconditionError("registration_closed")


def ensure_capacity(event: models.Event, *, going_others: int) -> None:
	"""``going_others`` counts going rows held by actors other than the caller."""
	if event.max_attendees is not None and going_others >= event.max_attendees:
		raise CapacityExceededError()


def ensure_capacity_not_below(max_attendees: Optional[int], attendee_count: int) -> None:
	if max_attendees is not None and max_attendees < attendee_count:
		raise ConflictError("capacity_below_attendees")


def resolve_page(page: int | None, limit: int | None) -> tuple[int, int, int]:
	"""Return (page, limit, offset) with page >= 1 and limit clamped to settings."""
	resolved_page = max(1, int(page or 1))
	resolved_limit = resolve_page_size(limit)
	return resolved_page, resolved_limit, (resolved_page - 1) * resolved_limit
