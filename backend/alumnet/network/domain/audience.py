"""Audience resolution: what an actor may read and where it may write.

Every decision is computed from the live membership, subscription and
invitation ledgers on each call. Nothing here is cached across requests.
"""

from __future__ import annotations

import logging
from uuid import UUID

import asyncpg

from alumnet.infra.auth import AuthenticatedUser
from alumnet.network.domain import models, policies, repo as repo_module
from alumnet.network.schemas import dto
from alumnet.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class AudienceResolver:
	"""Read/write eligibility for targets, posts and events."""

	def __init__(self, repository: repo_module.NetworkRepository | None = None) -> None:
		self.repo = repository or repo_module.NetworkRepository()

	async def reachable_audience(
		self,
		actor_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.Audience:
		group_ids = await self.repo.list_active_group_ids(actor_id, conn=conn)
		topic_ids = await self.repo.list_active_topic_ids(actor_id, conn=conn)
		return models.Audience(
			actor_id=actor_id,
			group_ids=frozenset(group_ids),
			topic_ids=frozenset(topic_ids),
		)

	async def _in_ledger(
		self,
		actor_id: UUID,
		target: models.Target,
		conn: asyncpg.Connection | None,
	) -> bool:
		if target.kind == "group":
			return await self.repo.is_active_member(target.id, actor_id, conn=conn)
		if target.kind == "topic":
			return await self.repo.is_active_subscriber(target.id, actor_id, conn=conn)
		return False

	async def can_write(
		self,
		actor_id: UUID,
		kind: str,
		target_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> bool:
		"""Users are always addressable; groups need membership, topics a subscription."""
		target = models.Target(kind=policies.ensure_target_kind(kind), id=target_id)
		if target.kind == "user":
			return True
		return await self._in_ledger(actor_id, target, conn)

	async def can_read_post(
		self,
		actor_id: UUID,
		post: models.Post,
		*,
		conn: asyncpg.Connection | None = None,
	) -> bool:
		"""Replies are readable by whoever can read their thread root."""
		if post.author_id == actor_id:
			return True
		if post.thread_root_id is not None:
			root = await self.repo.get_post(post.thread_root_id, conn=conn)
			if root is not None:
				post = root
				if post.author_id == actor_id:
					return True
		target = post.target
		if target.kind == "user":
			return target.id == actor_id
		return await self._in_ledger(actor_id, target, conn)

	async def can_read_event(
		self,
		actor_id: UUID,
		event: models.Event,
		*,
		conn: asyncpg.Connection | None = None,
	) -> bool:
		if event.creator_id == actor_id or not event.is_private:
			return True
		return await self.repo.has_invitation_access(event.id, actor_id, conn=conn)


class AudienceService:
	"""Exposes the resolver to the HTTP surface."""

	def __init__(self, resolver: AudienceResolver | None = None) -> None:
		self.resolver = resolver or AudienceResolver()

	async def get_audience(self, user: AuthenticatedUser) -> dto.AudienceResponse:
		audience = await self.resolver.reachable_audience(user.uuid)
		return dto.AudienceResponse(
			user_id=audience.actor_id,
			group_ids=sorted(audience.group_ids, key=str),
			topic_ids=sorted(audience.topic_ids, key=str),
		)

	async def check_can_write(self, user: AuthenticatedUser, kind: str, target_id: UUID) -> dto.CanWriteResponse:
		allowed = await self.resolver.can_write(user.uuid, kind, target_id)
		if not allowed:
			obs_metrics.inc_access_denied("can_write")
			_LOG.info("audience.write_denied", extra={"target_kind": kind, "target_id": str(target_id)})
		return dto.CanWriteResponse(target_kind=kind, target_id=target_id, allowed=allowed)
