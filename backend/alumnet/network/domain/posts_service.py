"""Post distribution: targeted writes, audience-filtered reads, replies and likes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from alumnet.infra.auth import AuthenticatedUser
from alumnet.infra.postgres import get_pool
from alumnet.network.domain import models, policies, repo as repo_module
from alumnet.network.domain.audience import AudienceResolver
from alumnet.network.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from alumnet.network.domain.threads import ThreadEngine
from alumnet.network.infra import idempotency
from alumnet.network.schemas import dto
from alumnet.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class PostsService:
	"""Posts addressed to a user, group or topic.

	A post's target is fixed at creation; reads are filtered through the actor's
	reachable audience and direct fetches of unreachable posts are forbidden.
	"""

	def __init__(
		self,
		repository: repo_module.NetworkRepository | None = None,
		resolver: AudienceResolver | None = None,
		threads: ThreadEngine | None = None,
	) -> None:
		self.repo = repository or repo_module.NetworkRepository()
		self.resolver = resolver or AudienceResolver(self.repo)
		self.threads = threads or ThreadEngine(self.repo, self.resolver)

	# ------------------------------------------------------------------
	# Helpers

	@staticmethod
	def _post_to_response(post: models.Post) -> dto.PostResponse:
		return dto.PostResponse(
			id=post.id,
			author_id=post.author_id,
			author_name=post.author_name,
			target_kind=post.target_kind,
			target_id=post.target_id,
			target_name=post.target_name,
			title=post.title,
			body=post.body,
			tags=post.tags,
			parent_post_id=post.parent_post_id,
			thread_root_id=post.thread_root_id,
			is_reply=post.is_reply,
			reply_count=post.reply_count,
			like_count=post.like_count,
			liked_by_me=post.liked_by_me,
			is_edited=post.is_edited,
			edit_history=[dto.EditHistoryEntry.model_validate(entry) for entry in post.edit_history],
			created_at=post.created_at,
			last_updated=post.last_updated,
		)

	def _page(self, posts: list[models.Post], *, page: int, limit: int, has_more: bool) -> dto.PostListResponse:
		return dto.PostListResponse(
			items=[self._post_to_response(post) for post in posts],
			page=page,
			limit=limit,
			has_more=has_more,
		)

	async def _readable_post(self, user: AuthenticatedUser, post_id: UUID, *, conn=None, for_update: bool = False) -> models.Post:
		post = await self.repo.get_post(post_id, conn=conn, viewer_id=user.uuid, for_update=for_update)
		if post is None:
			raise NotFoundError("post_not_found")
		if not await self.resolver.can_read_post(user.uuid, post, conn=conn):
			obs_metrics.inc_access_denied("read_post")
			raise ForbiddenError("post_not_visible")
		return post

	# ------------------------------------------------------------------
	# Writes

	async def create_post(
		self,
		user: AuthenticatedUser,
		payload: dto.PostCreateRequest,
		*,
		idempotency_key: str | None = None,
	) -> dto.PostResponse:
		if payload.target_kind is not None:
			policies.ensure_target_kind(payload.target_kind)
		key = idempotency.ensure_key(idempotency_key)
		body_hash = idempotency.compute_hash(body=payload.model_dump(mode="json"))

		async def _producer() -> dto.PostResponse:
			pool = await get_pool()
			async with pool.acquire() as conn:
				async with conn.transaction():
					reply = None
					if payload.parent_post_id is not None:
						reply = await self.threads.reply_context(payload.parent_post_id, conn=conn)
						target = reply.target
						requested = (payload.target_kind, payload.target_id)
						if payload.target_kind is not None and requested != (target.kind, target.id):
							raise ValidationError("reply_target_mismatch")
						if not await self.resolver.can_read_post(user.uuid, reply.root, conn=conn):
							obs_metrics.inc_access_denied("reply")
							raise ForbiddenError("thread_not_visible")
					else:
						target = models.Target(kind=payload.target_kind, id=payload.target_id)
					if not await self.resolver.can_write(user.uuid, target.kind, target.id, conn=conn):
						obs_metrics.inc_access_denied("write_post")
						raise ForbiddenError("cannot_write_to_target")
					if target.kind == "user" and not await self.repo.target_exists(target, conn=conn):
						raise NotFoundError("user_not_found")
					post = await self.repo.create_post(
						conn=conn,
						author_id=user.uuid,
						target=target,
						title=payload.title,
						body=payload.body,
						tags=payload.tags,
						parent_post_id=reply.parent.id if reply else None,
						thread_root_id=reply.thread_root_id if reply else None,
					)
					if reply is not None:
						await self.threads.attach_reply(reply, conn=conn)
			obs_metrics.inc_post_created(target.kind, reply=reply is not None)
			_LOG.info(
				"post.created",
				extra={
					"post_id": str(post.id),
					"target_kind": target.kind,
					"target_id": str(target.id),
					"reply": reply is not None,
				},
			)
			return self._post_to_response(post)

		return await idempotency.resolve(
			key=key,
			scope=f"{user.id}:post",
			body_hash=body_hash,
			producer=_producer,
			serializer=lambda response: response.model_dump(mode="json"),
			deserializer=lambda raw: dto.PostResponse.model_validate(raw),
		)

	async def update_post(
		self,
		user: AuthenticatedUser,
		post_id: UUID,
		payload: dto.PostUpdateRequest,
	) -> dto.PostResponse:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				post = await self.repo.get_post(post_id, conn=conn, for_update=True)
				if post is None:
					raise NotFoundError("post_not_found")
				policies.require_post_author(post, user.uuid)
				policies.ensure_audience_unchanged(
					name for name in payload.model_fields_set if getattr(payload, name) is not None
				)
				edit_entry = None
				if payload.body is not None and payload.body != post.body:
					edit_entry = {
						"edited_at": datetime.now(timezone.utc).isoformat(),
						"original_body": post.body,
					}
				updated = await self.repo.update_post_content(
					post_id,
					conn=conn,
					title=payload.title,
					body=payload.body,
					tags=payload.tags,
					edit_entry=edit_entry,
				)
		_LOG.info("post.updated", extra={"post_id": str(post_id), "edited": edit_entry is not None})
		return self._post_to_response(updated)

	async def toggle_like(self, user: AuthenticatedUser, post_id: UUID) -> dto.LikeResponse:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._readable_post(user, post_id, conn=conn, for_update=True)
				removed = await self.repo.remove_like(post_id, user.uuid, conn=conn)
				if not removed:
					await self.repo.add_like(post_id, user.uuid, conn=conn)
				like_count = await self.repo.recount_likes(post_id, conn=conn)
		return dto.LikeResponse(post_id=post_id, liked=not removed, like_count=like_count)

	# ------------------------------------------------------------------
	# Reads

	async def get_post(self, user: AuthenticatedUser, post_id: UUID) -> dto.PostResponse:
		return self._post_to_response(await self._readable_post(user, post_id))

	async def list_visible_posts(
		self,
		user: AuthenticatedUser,
		*,
		search: str | None = None,
		top_level_only: bool = True,
		target_kind: str | None = None,
		target_id: UUID | None = None,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.PostListResponse:
		target = None
		if target_kind is not None or target_id is not None:
			if target_kind is None or target_id is None:
				raise ValidationError("target_kind_and_target_id_required")
			target = models.Target(kind=policies.ensure_target_kind(target_kind), id=target_id)
		page, limit, offset = policies.resolve_page(page, limit)
		audience = await self.resolver.reachable_audience(user.uuid)
		posts, has_more = await self.repo.list_visible_posts(
			audience=audience,
			search=search or None,
			top_level_only=top_level_only,
			target=target,
			limit=limit,
			offset=offset,
		)
		return self._page(posts, page=page, limit=limit, has_more=has_more)

	async def list_target_posts(
		self,
		user: AuthenticatedUser,
		kind: str,
		target_id: UUID,
		*,
		search: str | None = None,
		top_level_only: bool = True,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.PostListResponse:
		"""Feed of one target. Groups need membership, topics a subscription, inboxes ownership."""
		target = models.Target(kind=policies.ensure_target_kind(kind), id=target_id)
		if target.kind == "user":
			if target.id != user.uuid:
				raise ForbiddenError("inbox_not_visible")
		else:
			if not await self.repo.target_exists(target):
				raise NotFoundError(f"{target.kind}_not_found")
			if not await self.resolver.can_write(user.uuid, target.kind, target.id):
				obs_metrics.inc_access_denied("target_feed")
				raise ForbiddenError("membership_required" if target.kind == "group" else "subscription_required")
		return await self.list_visible_posts(
			user,
			search=search,
			top_level_only=top_level_only,
			target_kind=target.kind,
			target_id=target.id,
			page=page,
			limit=limit,
		)

	async def list_inbox(
		self,
		user: AuthenticatedUser,
		*,
		search: str | None = None,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.PostListResponse:
		return await self.list_target_posts(user, "user", user.uuid, search=search, page=page, limit=limit)

	async def list_conversation(
		self,
		user: AuthenticatedUser,
		other_user_id: UUID,
		*,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.PostListResponse:
		if await self.repo.get_actor(other_user_id) is None:
			raise NotFoundError("user_not_found")
		page, limit, offset = policies.resolve_page(page, limit)
		posts, has_more = await self.repo.list_conversation(
			user_id=user.uuid,
			other_id=other_user_id,
			limit=limit,
			offset=offset,
		)
		return self._page(posts, page=page, limit=limit, has_more=has_more)

	async def get_thread(self, user: AuthenticatedUser, post_id: UUID) -> dto.ThreadResponse:
		thread = await self.threads.get_thread(user.uuid, post_id)
		return dto.ThreadResponse(
			root=self._post_to_response(thread.root),
			replies=[self._post_to_response(item) for item in thread.replies],
		)
