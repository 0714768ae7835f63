"""RSVP handling with capacity enforcement."""

from __future__ import annotations

import logging
from uuid import UUID

from alumnet.infra.auth import AuthenticatedUser
from alumnet.infra.postgres import get_pool
from alumnet.network.domain import policies, repo as repo_module
from alumnet.network.domain.audience import AudienceResolver
from alumnet.network.domain.exceptions import CapacityExceededError, ForbiddenError, NotFoundError
from alumnet.network.schemas import dto
from alumnet.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class RSVPService:
	def __init__(
		self,
		repository: repo_module.NetworkRepository | None = None,
		resolver: AudienceResolver | None = None,
	) -> None:
		self.repo = repository or repo_module.NetworkRepository()
		self.resolver = resolver or AudienceResolver(self.repo)

	async def rsvp(self, user: AuthenticatedUser, event_id: UUID, payload: dto.RSVPRequest) -> dto.RSVPResponse:
		"""Record the caller's response.

		The event row stays locked from the capacity check until the attendee count
		is persisted, so concurrent ``going`` requests are admitted one at a time.
		"""
		policies.ensure_rsvp_status(payload.status)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				event = await self.repo.get_event(event_id, conn=conn, for_update=True)
				if event is None:
					raise NotFoundError("event_not_found")
				if event.is_private and not await self.resolver.can_read_event(user.uuid, event, conn=conn):
					obs_metrics.inc_access_denied("rsvp")
					raise ForbiddenError("event_not_visible")
				policies.ensure_event_open(event)
				if payload.status == "going" and event.max_attendees is not None:
					going_others = await self.repo.count_going(event_id, conn=conn, exclude_user_id=user.uuid)
					try:
						policies.ensure_capacity(event, going_others=going_others)
					except CapacityExceededError:
						obs_metrics.inc_rsvp_capacity_reject()
						_LOG.info(
							"rsvp.rejected_capacity",
							extra={"event_id": str(event_id), "max_attendees": event.max_attendees},
						)
						raise
				rsvp = await self.repo.upsert_rsvp(
					conn=conn,
					event_id=event_id,
					user_id=user.uuid,
					status=payload.status,
					note=payload.note,
				)
				attendee_count = await self.repo.recount_attendees(event_id, conn=conn)
		obs_metrics.inc_rsvp(payload.status)
		_LOG.info(
			"rsvp.recorded",
			extra={"event_id": str(event_id), "status": payload.status, "attendee_count": attendee_count},
		)
		return dto.RSVPResponse(
			event_id=rsvp.event_id,
			user_id=rsvp.user_id,
			status=rsvp.status,
			note=rsvp.note,
			updated_at=rsvp.updated_at,
			attendee_count=attendee_count,
		)
