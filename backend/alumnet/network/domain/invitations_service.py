"""Event invitation ledger."""

from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

import asyncpg

from alumnet.infra.auth import AuthenticatedUser
from alumnet.infra.postgres import get_pool
from alumnet.network.domain import models, policies, repo as repo_module
from alumnet.network.domain.exceptions import AlreadyInvitedError, NotFoundError
from alumnet.network.schemas import dto
from alumnet.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class InvitationsService:
	"""Invite and revoke users, groups and topics on an event.

	Only the event creator may change the ledger. Revocation deactivates the row so
	that a later invite reactivates it.
	"""

	def __init__(self, repository: repo_module.NetworkRepository | None = None) -> None:
		self.repo = repository or repo_module.NetworkRepository()

	@staticmethod
	def _response(invitation: models.EventInvitation) -> dto.InvitationResponse:
		return dto.InvitationResponse(
			event_id=invitation.event_id,
			invitee_kind=invitation.invitee_kind,
			invitee_id=invitation.invitee_id,
			invited_by=invitation.invited_by,
			invited_at=invitation.invited_at,
			active=invitation.active,
		)

	async def _creator_event(self, conn: asyncpg.Connection, event_id: UUID, actor_id: UUID) -> models.Event:
		event = await self.repo.get_event(event_id, conn=conn)
		if event is None:
			raise NotFoundError("event_not_found")
		policies.require_event_creator(event, actor_id)
		return event

	async def invite_many(
		self,
		conn: asyncpg.Connection,
		*,
		event_id: UUID,
		invitees: Iterable[models.Target],
		invited_by: UUID,
	) -> list[models.EventInvitation]:
		"""Initial invitations for a new event; duplicates in the input are ignored."""
		created: list[models.EventInvitation] = []
		for invitee in dict.fromkeys(invitees):
			if not await self.repo.target_exists(invitee, conn=conn):
				raise NotFoundError(f"{invitee.kind}_not_found")
			invitation = await self.repo.activate_invitation(
				conn=conn,
				event_id=event_id,
				invitee=invitee,
				invited_by=invited_by,
			)
			if invitation is not None:
				created.append(invitation)
				obs_metrics.inc_invitation("invited", invitee.kind)
		return created

	async def invite(
		self,
		user: AuthenticatedUser,
		event_id: UUID,
		kind: str,
		invitee_id: UUID,
	) -> dto.InvitationResponse:
		invitee = models.Target(kind=policies.ensure_target_kind(kind), id=invitee_id)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._creator_event(conn, event_id, user.uuid)
				if not await self.repo.target_exists(invitee, conn=conn):
					raise NotFoundError(f"{invitee.kind}_not_found")
				invitation = await self.repo.activate_invitation(
					conn=conn,
					event_id=event_id,
					invitee=invitee,
					invited_by=user.uuid,
				)
				if invitation is None:
					raise AlreadyInvitedError()
		obs_metrics.inc_invitation("invited", invitee.kind)
		_LOG.info(
			"invitation.created",
			extra={"event_id": str(event_id), "invitee_kind": invitee.kind, "invitee_id": str(invitee_id)},
		)
		return self._response(invitation)

	async def revoke(
		self,
		user: AuthenticatedUser,
		event_id: UUID,
		kind: str,
		invitee_id: UUID,
	) -> dto.InvitationResponse:
		invitee = models.Target(kind=policies.ensure_target_kind(kind), id=invitee_id)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._creator_event(conn, event_id, user.uuid)
				invitation = await self.repo.deactivate_invitation(conn=conn, event_id=event_id, invitee=invitee)
				if invitation is None:
					raise NotFoundError("invitation_not_found")
		obs_metrics.inc_invitation("revoked", invitee.kind)
		_LOG.info(
			"invitation.revoked",
			extra={"event_id": str(event_id), "invitee_kind": invitee.kind, "invitee_id": str(invitee_id)},
		)
		return self._response(invitation)

	async def list_invitations(self, user: AuthenticatedUser, event_id: UUID) -> dto.InvitationListResponse:
		event = await self.repo.get_event(event_id)
		if event is None:
			raise NotFoundError("event_not_found")
		policies.require_event_creator(event, user.uuid)
		invitations = await self.repo.list_invitations(event_id)
		return dto.InvitationListResponse(items=[self._response(item) for item in invitations])
