"""Groups and the membership ledger."""

from __future__ import annotations

import logging
from uuid import UUID

from alumnet.infra.auth import AuthenticatedUser
from alumnet.infra.postgres import get_pool
from alumnet.network.domain import models, policies, repo as repo_module
from alumnet.network.domain.exceptions import AlreadyMemberError, NotFoundError, PreconditionError
from alumnet.network.infra import idempotency
from alumnet.network.schemas import dto
from alumnet.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class MembershipService:
	"""Group lifecycle plus join/leave/role transitions.

	Every ledger mutation locks the group row first, so member_count recounts and
	last-admin checks always see a consistent snapshot of the group's members.
	"""

	def __init__(self, repository: repo_module.NetworkRepository | None = None) -> None:
		self.repo = repository or repo_module.NetworkRepository()

	# ------------------------------------------------------------------
	# Helpers

	@staticmethod
	def _group_response(group: models.Group, *, role: str | None) -> dto.GroupResponse:
		return dto.GroupResponse(
			id=group.id,
			name=group.name,
			description=group.description,
			is_private=group.is_private,
			category=group.category,
			tags=group.tags,
			rules=group.rules,
			creator_id=group.creator_id,
			member_count=group.member_count,
			created_at=group.created_at,
			updated_at=group.updated_at,
			is_member=role is not None,
			role=role,
		)

	@staticmethod
	def _membership_response(
		membership: models.GroupMembership,
		*,
		member_count: int | None = None,
	) -> dto.MembershipResponse:
		return dto.MembershipResponse(
			group_id=membership.group_id,
			user_id=membership.user_id,
			role=membership.role,
			active=membership.active,
			joined_at=membership.joined_at,
			display_name=membership.display_name,
			member_count=member_count,
		)

	async def _lock_group(self, conn, group_id: UUID) -> models.Group:
		group = await self.repo.get_group(group_id, conn=conn, for_update=True)
		if group is None:
			raise NotFoundError("group_not_found")
		return group

	# ------------------------------------------------------------------
	# Groups

	async def create_group(
		self,
		user: AuthenticatedUser,
		payload: dto.GroupCreateRequest,
		*,
		idempotency_key: str | None = None,
	) -> dto.GroupResponse:
		policies.ensure_category(payload.category, models.GROUP_CATEGORIES)
		key = idempotency.ensure_key(idempotency_key)
		body_hash = idempotency.compute_hash(body=payload.model_dump(mode="json"))

		async def _producer() -> dto.GroupResponse:
			pool = await get_pool()
			async with pool.acquire() as conn:
				async with conn.transaction():
					group = await self.repo.create_group(
						conn=conn,
						name=payload.name.strip(),
						description=payload.description,
						is_private=payload.is_private,
						category=payload.category,
						tags=payload.tags,
						rules=payload.rules,
						creator_id=user.uuid,
					)
					await self.repo.activate_membership(conn=conn, group_id=group.id, user_id=user.uuid, role="admin")
					member_count = await self.repo.recount_members(group.id, conn=conn)
			obs_metrics.inc_membership("created")
			_LOG.info("group.created", extra={"group_id": str(group.id), "private": group.is_private})
			return self._group_response(group.model_copy(update={"member_count": member_count}), role="admin")

		return await idempotency.resolve(
			key=key,
			scope=f"{user.id}:group",
			body_hash=body_hash,
			producer=_producer,
			serializer=lambda response: response.model_dump(mode="json"),
			deserializer=lambda raw: dto.GroupResponse.model_validate(raw),
		)

	async def get_group(self, user: AuthenticatedUser, group_id: UUID) -> dto.GroupResponse:
		group = await self.repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		membership = await self.repo.get_membership(group_id, user.uuid)
		policies.require_group_visible(group, membership)
		role = membership.role if membership and membership.active else None
		return self._group_response(group, role=role)

	async def list_groups(
		self,
		user: AuthenticatedUser,
		*,
		search: str | None = None,
		category: str | None = None,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.GroupListResponse:
		if category:
			policies.ensure_category(category, models.GROUP_CATEGORIES)
		page, limit, offset = policies.resolve_page(page, limit)
		rows, has_more = await self.repo.list_groups(
			viewer_id=user.uuid,
			search=search,
			category=category,
			limit=limit,
			offset=offset,
		)
		return dto.GroupListResponse(
			items=[self._group_response(group, role=role) for group, role in rows],
			page=page,
			limit=limit,
			has_more=has_more,
		)

	async def list_members(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		*,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.MemberListResponse:
		group = await self.repo.get_group(group_id)
		if group is None:
			raise NotFoundError("group_not_found")
		policies.require_group_visible(group, await self.repo.get_membership(group_id, user.uuid))
		page, limit, offset = policies.resolve_page(page, limit)
		members, has_more = await self.repo.list_members(group_id, limit=limit, offset=offset)
		return dto.MemberListResponse(
			items=[self._membership_response(member) for member in members],
			page=page,
			limit=limit,
			has_more=has_more,
		)

	# ------------------------------------------------------------------
	# Ledger transitions

	async def join(self, user: AuthenticatedUser, group_id: UUID) -> dto.MembershipResponse:
		"""Idempotent: an active membership is returned unchanged."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				group = await self._lock_group(conn, group_id)
				existing = await self.repo.get_membership(group_id, user.uuid, conn=conn)
				if existing is not None and existing.active:
					return self._membership_response(existing, member_count=group.member_count)
				membership = await self.repo.activate_membership(
					conn=conn,
					group_id=group_id,
					user_id=user.uuid,
					role="member",
				)
				member_count = await self.repo.recount_members(group_id, conn=conn)
		action = "reactivated" if existing is not None else "joined"
		obs_metrics.inc_membership(action)
		_LOG.info("membership.join", extra={"group_id": str(group_id), "action": action, "member_count": member_count})
		return self._membership_response(membership, member_count=member_count)

	async def add_member(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		payload: dto.MemberAddRequest,
	) -> dto.MembershipResponse:
		if payload.user_id == user.uuid:
			return await self.join(user, group_id)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._lock_group(conn, group_id)
				actor = await self.repo.get_membership(group_id, user.uuid, conn=conn)
				policies.assert_can_moderate(actor.role if actor and actor.active else None)
				if await self.repo.get_actor(payload.user_id, conn=conn) is None:
					raise NotFoundError("user_not_found")
				existing = await self.repo.get_membership(group_id, payload.user_id, conn=conn)
				if existing is not None and existing.active:
					raise AlreadyMemberError()
				membership = await self.repo.activate_membership(
					conn=conn,
					group_id=group_id,
					user_id=payload.user_id,
					role="member",
				)
				member_count = await self.repo.recount_members(group_id, conn=conn)
		obs_metrics.inc_membership("added")
		_LOG.info("membership.added", extra={"group_id": str(group_id), "member_id": str(payload.user_id)})
		return self._membership_response(membership, member_count=member_count)

	async def leave(self, user: AuthenticatedUser, group_id: UUID) -> dto.MembershipResponse:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._lock_group(conn, group_id)
				membership = await self.repo.get_membership(group_id, user.uuid, conn=conn)
				if membership is None or not membership.active:
					raise PreconditionError("not_a_member")
				if membership.role == "admin":
					admins = await self.repo.count_active_admins(group_id, conn=conn)
					policies.ensure_not_last_admin(membership, admins)
				left = await self.repo.deactivate_membership(conn=conn, group_id=group_id, user_id=user.uuid)
				if left is None:
					raise PreconditionError("not_a_member")
				member_count = await self.repo.recount_members(group_id, conn=conn)
		obs_metrics.inc_membership("left")
		_LOG.info("membership.leave", extra={"group_id": str(group_id), "member_count": member_count})
		return self._membership_response(left, member_count=member_count)

	async def update_role(
		self,
		user: AuthenticatedUser,
		group_id: UUID,
		member_id: UUID,
		payload: dto.MemberRoleRequest,
	) -> dto.MembershipResponse:
		policies.ensure_role_valid(payload.role)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				group = await self._lock_group(conn, group_id)
				actor = await self.repo.get_membership(group_id, user.uuid, conn=conn)
				policies.assert_can_admin(actor.role if actor and actor.active else None)
				target = await self.repo.get_membership(group_id, member_id, conn=conn)
				if target is None or not target.active:
					raise NotFoundError("member_not_found")
				if target.role == "admin" and payload.role != "admin":
					admins = await self.repo.count_active_admins(group_id, conn=conn)
					policies.ensure_not_last_admin(target, admins)
				updated = await self.repo.update_membership_role(
					conn=conn,
					group_id=group_id,
					user_id=member_id,
					role=payload.role,
				)
				if updated is None:
					raise NotFoundError("member_not_found")
		obs_metrics.inc_membership(f"role_{payload.role}")
		_LOG.info(
			"membership.role_changed",
			extra={"group_id": str(group_id), "member_id": str(member_id), "role": payload.role},
		)
		return self._membership_response(updated, member_count=group.member_count)
