"""Event lifecycle and audience-filtered event reads."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from alumnet.infra.auth import AuthenticatedUser
from alumnet.infra.postgres import get_pool
from alumnet.network.domain import models, policies, repo as repo_module
from alumnet.network.domain.audience import AudienceResolver
from alumnet.network.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from alumnet.network.domain.invitations_service import InvitationsService
from alumnet.network.infra import idempotency
from alumnet.network.schemas import dto
from alumnet.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


def _event_response(
	event: models.Event,
	*,
	viewer_id: UUID,
	stats: dict[str, int] | None = None,
) -> dto.EventResponse:
	return dto.EventResponse(
		id=event.id,
		title=event.title,
		description=event.description,
		creator_id=event.creator_id,
		creator_name=event.creator_name,
		starts_at=event.starts_at,
		ends_at=event.ends_at,
		location=event.location,
		is_virtual=event.is_virtual,
		category=event.category,
		max_attendees=event.max_attendees,
		is_private=event.is_private,
		attendee_count=event.attendee_count,
		status=event.status,
		registration_deadline=event.registration_deadline,
		created_at=event.created_at,
		updated_at=event.updated_at,
		user_rsvp=event.user_rsvp,
		is_creator=event.creator_id == viewer_id,
		rsvp_stats=dto.RSVPStats(**stats) if stats is not None else None,
	)


class EventsService:
	"""Create, read and edit events.

	Private events are readable by their creator and by actors reached through an
	active invitation (directly, through a group membership or through a topic
	subscription). Public events are readable by everyone.
	"""

	def __init__(
		self,
		repository: repo_module.NetworkRepository | None = None,
		resolver: AudienceResolver | None = None,
		invitations: InvitationsService | None = None,
	) -> None:
		self.repo = repository or repo_module.NetworkRepository()
		self.resolver = resolver or AudienceResolver(self.repo)
		self.invitations = invitations or InvitationsService(self.repo)

	async def _readable_event(self, user: AuthenticatedUser, event_id: UUID) -> models.Event:
		event = await self.repo.get_event_for_viewer(event_id, user.uuid)
		if event is None:
			raise NotFoundError("event_not_found")
		if not await self.resolver.can_read_event(user.uuid, event):
			obs_metrics.inc_access_denied("read_event")
			raise ForbiddenError("event_not_visible")
		return event

	async def create_event(
		self,
		user: AuthenticatedUser,
		payload: dto.EventCreateRequest,
		*,
		idempotency_key: str | None = None,
	) -> dto.EventResponse:
		key = idempotency.ensure_key(idempotency_key)
		body_hash = idempotency.compute_hash(body=payload.model_dump(mode="json"))
		invitees = (
			[models.Target(kind="user", id=item) for item in payload.invited_users]
			+ [models.Target(kind="group", id=item) for item in payload.invited_groups]
			+ [models.Target(kind="topic", id=item) for item in payload.invited_topics]
		)

		async def _producer() -> dto.EventResponse:
			pool = await get_pool()
			async with pool.acquire() as conn:
				async with conn.transaction():
					event = await self.repo.create_event(
						conn=conn,
						creator_id=user.uuid,
						title=payload.title.strip(),
						description=payload.description,
						starts_at=payload.starts_at,
						ends_at=payload.ends_at,
						location=payload.location,
						is_virtual=payload.is_virtual,
						category=payload.category,
						max_attendees=payload.max_attendees,
						is_private=payload.is_private,
						registration_deadline=payload.registration_deadline,
					)
					invited = await self.invitations.invite_many(
						conn,
						event_id=event.id,
						invitees=invitees,
						invited_by=user.uuid,
					)
			obs_metrics.inc_event_created(private=event.is_private)
			_LOG.info(
				"event.created",
				extra={"event_id": str(event.id), "private": event.is_private, "invitations": len(invited)},
			)
			return _event_response(
				event.model_copy(update={"creator_name": user.display_name}),
				viewer_id=user.uuid,
				stats={status: 0 for status in models.RSVP_STATUSES},
			)

		return await idempotency.resolve(
			key=key,
			scope=f"{user.id}:event",
			body_hash=body_hash,
			producer=_producer,
			serializer=lambda response: response.model_dump(mode="json"),
			deserializer=lambda raw: dto.EventResponse.model_validate(raw),
		)

	async def get_event(self, user: AuthenticatedUser, event_id: UUID) -> dto.EventResponse:
		event = await self._readable_event(user, event_id)
		stats = await self.repo.rsvp_stats(event_id)
		return _event_response(event, viewer_id=user.uuid, stats=stats)

	async def list_visible_events(
		self,
		user: AuthenticatedUser,
		*,
		search: str | None = None,
		category: str | None = None,
		starts_after: datetime | None = None,
		starts_before: datetime | None = None,
		status: str | None = None,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.EventListResponse:
		if status is not None and status not in ("active", "cancelled", "completed"):
			raise ValidationError("invalid_event_status")
		page, limit, offset = policies.resolve_page(page, limit)
		events, has_more = await self.repo.list_visible_events(
			viewer_id=user.uuid,
			search=search or None,
			category=category,
			starts_after=starts_after,
			starts_before=starts_before,
			status=status,
			limit=limit,
			offset=offset,
		)
		return dto.EventListResponse(
			items=[_event_response(event, viewer_id=user.uuid) for event in events],
			page=page,
			limit=limit,
			has_more=has_more,
		)

	async def update_event(
		self,
		user: AuthenticatedUser,
		event_id: UUID,
		payload: dto.EventUpdateRequest,
	) -> dto.EventResponse:
		changes = payload.model_dump(exclude_unset=True)
		policies.ensure_event_fields_present(changes)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				event = await self.repo.get_event(event_id, conn=conn, for_update=True)
				if event is None:
					raise NotFoundError("event_not_found")
				policies.require_event_creator(event, user.uuid)
				if "max_attendees" in changes:
					policies.ensure_capacity_not_below(changes["max_attendees"], event.attendee_count)
				starts_at = changes.get("starts_at", event.starts_at)
				ends_at = changes.get("ends_at", event.ends_at)
				if ends_at is not None and ends_at <= starts_at:
					raise ValidationError("ends_at_before_starts_at")
				updated = await self.repo.update_event(event_id, conn=conn, changes=changes)
		_LOG.info("event.updated", extra={"event_id": str(event_id), "fields": sorted(changes)})
		return _event_response(
			updated.model_copy(update={"creator_name": user.display_name}),
			viewer_id=user.uuid,
		)

	async def list_attendees(
		self,
		user: AuthenticatedUser,
		event_id: UUID,
		*,
		status: str | None = None,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.AttendeeListResponse:
		if status is not None:
			policies.ensure_rsvp_status(status)
		await self._readable_event(user, event_id)
		page, limit, offset = policies.resolve_page(page, limit)
		rsvps, has_more = await self.repo.list_attendees(event_id, status=status, limit=limit, offset=offset)
		return dto.AttendeeListResponse(
			items=[
				dto.AttendeeResponse(
					user_id=item.user_id,
					display_name=item.display_name,
					status=item.status,
					note=item.note,
					updated_at=item.updated_at,
				)
				for item in rsvps
			],
			page=page,
			limit=limit,
			has_more=has_more,
		)
