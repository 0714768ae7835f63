"""Reply threading for posts.

A post is either a root (no parent) or a reply carrying its direct parent and the
thread root. Chains are flattened: every reply points at the top-level ancestor,
however deep it is nested, and inherits that root's target.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import asyncpg

from alumnet.network.domain import models, repo as repo_module
from alumnet.network.domain.audience import AudienceResolver
from alumnet.network.domain.exceptions import ForbiddenError, NotFoundError


def thread_root_for(parent: models.Post) -> UUID:
	"""Root reference for a new reply to ``parent``."""
	return parent.thread_root_id or parent.id


@dataclass(slots=True)
class ReplyContext:
	parent: models.Post
	root: models.Post

	@property
	def thread_root_id(self) -> UUID:
		return thread_root_for(self.parent)

	@property
	def target(self) -> models.Target:
		return self.root.target


@dataclass(slots=True)
class Thread:
	root: models.Post
	replies: list[models.Post]


class ThreadEngine:
	def __init__(
		self,
		repository: repo_module.NetworkRepository | None = None,
		resolver: AudienceResolver | None = None,
	) -> None:
		self.repo = repository or repo_module.NetworkRepository()
		self.resolver = resolver or AudienceResolver(self.repo)

	async def reply_context(self, parent_post_id: UUID, *, conn: asyncpg.Connection) -> ReplyContext:
		parent = await self.repo.get_post(parent_post_id, conn=conn)
		if parent is None:
			raise NotFoundError("parent_post_not_found")
		root_id = thread_root_for(parent)
		root = parent if root_id == parent.id else await self.repo.get_post(root_id, conn=conn)
		if root is None:
			raise NotFoundError("thread_root_not_found")
		return ReplyContext(parent=parent, root=root)

	async def attach_reply(self, context: ReplyContext, *, conn: asyncpg.Connection) -> int:
		"""Count the new reply on its direct parent only."""
		return await self.repo.increment_reply_count(context.parent.id, conn=conn)

	async def get_thread(self, actor_id: UUID, post_id: UUID) -> Thread:
		post = await self.repo.get_post(post_id, viewer_id=actor_id)
		if post is None:
			raise NotFoundError("post_not_found")
		root = post
		if post.thread_root_id is not None:
			root = await self.repo.get_post(post.thread_root_id, viewer_id=actor_id)
			if root is None:
				raise NotFoundError("thread_root_not_found")
		if not await self.resolver.can_read_post(actor_id, root):
			raise ForbiddenError("thread_not_visible")
		posts = await self.repo.list_thread(root.id, viewer_id=actor_id)
		replies = [item for item in posts if item.id != root.id]
		return Thread(root=root, replies=replies)
