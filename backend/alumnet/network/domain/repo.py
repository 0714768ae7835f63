"""Async repository helpers for the network domain."""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar
from uuid import UUID

import asyncpg

from alumnet.infra.postgres import get_pool
from alumnet.network.domain import models
from alumnet.network.domain.exceptions import ConflictError

T = TypeVar("T")

_POST_COLUMNS = """
	p.*,
	au.display_name AS author_name,
	COALESCE(tu.display_name, tg.name, tt.name) AS target_name
"""

# The concrete target entity is resolved by a join keyed on target_kind.
_POST_FROM = """
	FROM post p
	JOIN app_user au ON au.id = p.author_id
	LEFT JOIN app_user tu ON p.target_kind = 'user' AND tu.id = p.target_id
	LEFT JOIN group_entity tg ON p.target_kind = 'group' AND tg.id = p.target_id
	LEFT JOIN topic tt ON p.target_kind = 'topic' AND tt.id = p.target_id
"""

_POST_SEARCH_VECTOR = "to_tsvector('english', coalesce(p.title, '') || ' ' || p.body)"
_EVENT_SEARCH_VECTOR = "to_tsvector('english', e.title || ' ' || e.description || ' ' || e.location)"

# Invitation visibility for the actor bound to $1. Group and topic invitations are
# resolved against the live ledgers inside the same statement.
_INVITED_EXISTS = """
	EXISTS (
		SELECT 1 FROM event_invitation i
		WHERE i.event_id = {event_ref}
			AND i.active
			AND (
				(i.invitee_kind = 'user' AND i.invitee_id = $1)
				OR (i.invitee_kind = 'group' AND i.invitee_id IN (
					SELECT gm.group_id FROM group_membership gm WHERE gm.user_id = $1 AND gm.active
				))
				OR (i.invitee_kind = 'topic' AND i.invitee_id IN (
					SELECT ts.topic_id FROM topic_subscription ts WHERE ts.user_id = $1 AND ts.active
				))
			)
	)
"""

_EVENT_UPDATABLE = frozenset(
	{
		"title",
		"description",
		"starts_at",
		"ends_at",
		"location",
		"is_virtual",
		"category",
		"max_attendees",
		"status",
		"registration_deadline",
	}
)


def post_access_clause(params: list[object], audience: models.Audience) -> str:
	"""Append audience params and return the post access predicate.

	(user AND target = actor) OR (group AND target in groups) OR (topic AND target in topics)
	"""
	params.append(str(audience.actor_id))
	actor_idx = len(params)
	params.append([str(group_id) for group_id in audience.group_ids])
	groups_idx = len(params)
	params.append([str(topic_id) for topic_id in audience.topic_ids])
	topics_idx = len(params)
	return (
		"((p.target_kind = 'user' AND p.target_id = $%d)"
		" OR (p.target_kind = 'group' AND p.target_id = ANY($%d::uuid[]))"
		" OR (p.target_kind = 'topic' AND p.target_id = ANY($%d::uuid[])))"
	) % (actor_idx, groups_idx, topics_idx)


def _post(record: Mapping[str, Any]) -> models.Post:
	data = dict(record)
	history = data.get("edit_history")
	if isinstance(history, str):
		data["edit_history"] = json.loads(history)
	return models.Post.model_validate(data)


def _page(rows: Sequence[T], limit: int) -> tuple[list[T], bool]:
	return list(rows[:limit]), len(rows) > limit


class NetworkRepository:
	"""Thin data-access layer around asyncpg."""

	async def _with_conn(
		self,
		conn: asyncpg.Connection | None,
		func: Callable[[asyncpg.Connection], Awaitable[T]],
	) -> T:
		if conn is not None:
			return await func(conn)
		pool = await get_pool()
		async with pool.acquire() as pooled_conn:
			return await func(pooled_conn)

	# --- Actors -----------------------------------------------------------

	async def get_actor(self, user_id: UUID, *, conn: asyncpg.Connection | None = None) -> models.Actor | None:
		async def _fetch(connection: asyncpg.Connection) -> models.Actor | None:
			record = await connection.fetchrow(
				"SELECT id, display_name, avatar_url FROM app_user WHERE id=$1",
				str(user_id),
			)
			return models.Actor.model_validate(dict(record)) if record else None

		return await self._with_conn(conn, _fetch)

	async def target_exists(self, target: models.Target, *, conn: asyncpg.Connection | None = None) -> bool:
		table = {"user": "app_user", "group": "group_entity", "topic": "topic"}[target.kind]

		async def _fetch(connection: asyncpg.Connection) -> bool:
			return bool(
				await connection.fetchval(
					f"SELECT EXISTS (SELECT 1 FROM {table} WHERE id=$1)",
					str(target.id),
				)
			)

		return await self._with_conn(conn, _fetch)

	# --- Groups -----------------------------------------------------------

	async def create_group(
		self,
		*,
		conn: asyncpg.Connection,
		name: str,
		description: str,
		is_private: bool,
		category: str,
		tags: Sequence[str],
		rules: str,
		creator_id: UUID,
	) -> models.Group:
		try:
			record = await conn.fetchrow(
				"""
				INSERT INTO group_entity (name, description, is_private, category, tags, rules, creator_id)
				VALUES ($1, $2, $3, $4, $5, $6, $7)
				RETURNING *
				""",
				name,
				description,
				is_private,
				category,
				list(tags),
				rules,
				str(creator_id),
			)
		except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
			raise ConflictError("group_name_exists") from exc
		return models.Group.model_validate(dict(record))

	async def get_group(
		self,
		group_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
		for_update: bool = False,
	) -> models.Group | None:
		query = "SELECT * FROM group_entity WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"

		async def _fetch(connection: asyncpg.Connection) -> models.Group | None:
			record = await connection.fetchrow(query, str(group_id))
			return models.Group.model_validate(dict(record)) if record else None

		return await self._with_conn(conn, _fetch)

	async def list_groups(
		self,
		*,
		viewer_id: UUID,
		search: str | None,
		category: str | None,
		limit: int,
		offset: int = 0,
	) -> tuple[list[tuple[models.Group, str | None]], bool]:
		"""Groups the viewer may discover with the viewer's active role, if any."""
		params: list[object] = [str(viewer_id)]
		where = ["(g.is_private = FALSE OR gm.user_id IS NOT NULL)"]
		if category:
			params.append(category)
			where.append("g.category = $%d" % len(params))
		if search:
			params.append(f"%{search}%")
			where.append("(g.name ILIKE $%d OR g.description ILIKE $%d)" % (len(params), len(params)))
		params.extend([limit + 1, offset])
		query = """
			SELECT g.*, gm.role AS viewer_role
			FROM group_entity g
			LEFT JOIN group_membership gm ON gm.group_id = g.id AND gm.user_id = $1 AND gm.active
			WHERE {where}
			ORDER BY g.member_count DESC, g.created_at DESC
			LIMIT $%d OFFSET $%d
		""".format(where=" AND ".join(where)) % (len(params) - 1, len(params))
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		items, has_more = _page(rows, limit)
		return [(models.Group.model_validate(dict(row)), row["viewer_role"]) for row in items], has_more

	async def recount_members(self, group_id: UUID, *, conn: asyncpg.Connection) -> int:
		"""Persist member_count from the live ledger."""
		return await conn.fetchval(
			"""
			UPDATE group_entity
			SET member_count = (
				SELECT COUNT(*) FROM group_membership WHERE group_id=$1 AND active
			), updated_at = NOW()
			WHERE id=$1
			RETURNING member_count
			""",
			str(group_id),
		)

	# --- Membership ledger ------------------------------------------------

	async def get_membership(
		self,
		group_id: UUID,
		user_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.GroupMembership | None:
		async def _fetch(connection: asyncpg.Connection) -> models.GroupMembership | None:
			record = await connection.fetchrow(
				"SELECT * FROM group_membership WHERE group_id=$1 AND user_id=$2",
				str(group_id),
				str(user_id),
			)
			return models.GroupMembership.model_validate(dict(record)) if record else None

		return await self._with_conn(conn, _fetch)

	async def activate_membership(
		self,
		*,
		conn: asyncpg.Connection,
		group_id: UUID,
		user_id: UUID,
		role: str,
	) -> models.GroupMembership:
		"""Insert a membership row or reactivate the existing one."""
		record = await conn.fetchrow(
			"""
			INSERT INTO group_membership (group_id, user_id, role, active, joined_at)
			VALUES ($1, $2, $3, TRUE, NOW())
			ON CONFLICT (group_id, user_id)
			DO UPDATE SET active = TRUE, role = EXCLUDED.role, joined_at = NOW()
			RETURNING *
			""",
			str(group_id),
			str(user_id),
			role,
		)
		return models.GroupMembership.model_validate(dict(record))

	async def deactivate_membership(
		self,
		*,
		conn: asyncpg.Connection,
		group_id: UUID,
		user_id: UUID,
	) -> models.GroupMembership | None:
		record = await conn.fetchrow(
			"""
			UPDATE group_membership SET active = FALSE
			WHERE group_id=$1 AND user_id=$2 AND active
			RETURNING *
			""",
			str(group_id),
			str(user_id),
		)
		return models.GroupMembership.model_validate(dict(record)) if record else None

	async def update_membership_role(
		self,
		*,
		conn: asyncpg.Connection,
		group_id: UUID,
		user_id: UUID,
		role: str,
	) -> models.GroupMembership | None:
		record = await conn.fetchrow(
			"""
			UPDATE group_membership SET role = $3
			WHERE group_id=$1 AND user_id=$2 AND active
			RETURNING *
			""",
			str(group_id),
			str(user_id),
			role,
		)
		return models.GroupMembership.model_validate(dict(record)) if record else None

	async def count_active_admins(self, group_id: UUID, *, conn: asyncpg.Connection) -> int:
		return await conn.fetchval(
			"SELECT COUNT(*) FROM group_membership WHERE group_id=$1 AND role='admin' AND active",
			str(group_id),
		)

	async def list_members(
		self,
		group_id: UUID,
		*,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.GroupMembership], bool]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT gm.*, u.display_name
				FROM group_membership gm
				JOIN app_user u ON u.id = gm.user_id
				WHERE gm.group_id=$1 AND gm.active
				ORDER BY CASE gm.role WHEN 'admin' THEN 0 WHEN 'moderator' THEN 1 ELSE 2 END, gm.joined_at ASC
				LIMIT $2 OFFSET $3
				""",
				str(group_id),
				limit + 1,
				offset,
			)
		items, has_more = _page(rows, limit)
		return [models.GroupMembership.model_validate(dict(row)) for row in items], has_more

	# --- Topics -----------------------------------------------------------

	async def create_topic(
		self,
		*,
		conn: asyncpg.Connection,
		name: str,
		description: str,
		category: str,
		tags: Sequence[str],
		color: str,
		creator_id: UUID,
	) -> models.Topic:
		try:
			record = await conn.fetchrow(
				"""
				INSERT INTO topic (name, description, category, tags, color, creator_id)
				VALUES ($1, $2, $3, $4, $5, $6)
				RETURNING *
				""",
				name,
				description,
				category,
				list(tags),
				color,
				str(creator_id),
			)
		except asyncpg.UniqueViolationError as exc:  # type: ignore[attr-defined]
			raise ConflictError("topic_name_exists") from exc
		return models.Topic.model_validate(dict(record))

	async def get_topic(
		self,
		topic_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
		for_update: bool = False,
	) -> models.Topic | None:
		query = "SELECT * FROM topic WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"

		async def _fetch(connection: asyncpg.Connection) -> models.Topic | None:
			record = await connection.fetchrow(query, str(topic_id))
			return models.Topic.model_validate(dict(record)) if record else None

		return await self._with_conn(conn, _fetch)

	async def list_topics(
		self,
		*,
		viewer_id: UUID,
		search: str | None,
		category: str | None,
		limit: int,
		offset: int = 0,
	) -> tuple[list[tuple[models.Topic, bool]], bool]:
		params: list[object] = [str(viewer_id)]
		where = ["TRUE"]
		if category:
			params.append(category)
			where.append("t.category = $%d" % len(params))
		if search:
			params.append(f"%{search}%")
			where.append("(t.name ILIKE $%d OR t.description ILIKE $%d)" % (len(params), len(params)))
		params.extend([limit + 1, offset])
		query = """
			SELECT t.*, (ts.user_id IS NOT NULL) AS viewer_subscribed
			FROM topic t
			LEFT JOIN topic_subscription ts ON ts.topic_id = t.id AND ts.user_id = $1 AND ts.active
			WHERE {where}
			ORDER BY t.subscriber_count DESC, t.created_at DESC
			LIMIT $%d OFFSET $%d
		""".format(where=" AND ".join(where)) % (len(params) - 1, len(params))
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		items, has_more = _page(rows, limit)
		return [(models.Topic.model_validate(dict(row)), bool(row["viewer_subscribed"])) for row in items], has_more

	async def recount_subscribers(self, topic_id: UUID, *, conn: asyncpg.Connection) -> int:
		"""Persist subscriber_count from the live ledger."""
		return await conn.fetchval(
			"""
			UPDATE topic
			SET subscriber_count = (
				SELECT COUNT(*) FROM topic_subscription WHERE topic_id=$1 AND active
			), updated_at = NOW()
			WHERE id=$1
			RETURNING subscriber_count
			""",
			str(topic_id),
		)

	# --- Subscription ledger ----------------------------------------------

	async def get_subscription(
		self,
		topic_id: UUID,
		user_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> models.TopicSubscription | None:
		async def _fetch(connection: asyncpg.Connection) -> models.TopicSubscription | None:
			record = await connection.fetchrow(
				"SELECT * FROM topic_subscription WHERE topic_id=$1 AND user_id=$2",
				str(topic_id),
				str(user_id),
			)
			return models.TopicSubscription.model_validate(dict(record)) if record else None

		return await self._with_conn(conn, _fetch)

	async def activate_subscription(
		self,
		*,
		conn: asyncpg.Connection,
		topic_id: UUID,
		user_id: UUID,
	) -> models.TopicSubscription:
		record = await conn.fetchrow(
			"""
			INSERT INTO topic_subscription (topic_id, user_id, active, subscribed_at)
			VALUES ($1, $2, TRUE, NOW())
			ON CONFLICT (topic_id, user_id)
			DO UPDATE SET active = TRUE, subscribed_at = NOW()
			RETURNING *
			""",
			str(topic_id),
			str(user_id),
		)
		return models.TopicSubscription.model_validate(dict(record))

	async def deactivate_subscription(
		self,
		*,
		conn: asyncpg.Connection,
		topic_id: UUID,
		user_id: UUID,
	) -> models.TopicSubscription | None:
		record = await conn.fetchrow(
			"""
			UPDATE topic_subscription SET active = FALSE
			WHERE topic_id=$1 AND user_id=$2 AND active
			RETURNING *
			""",
			str(topic_id),
			str(user_id),
		)
		return models.TopicSubscription.model_validate(dict(record)) if record else None

	async def set_subscription_notifications(
		self,
		*,
		topic_id: UUID,
		user_id: UUID,
		enabled: bool,
	) -> models.TopicSubscription | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"""
				UPDATE topic_subscription SET notifications_enabled = $3
				WHERE topic_id=$1 AND user_id=$2 AND active
				RETURNING *
				""",
				str(topic_id),
				str(user_id),
				enabled,
			)
		return models.TopicSubscription.model_validate(dict(record)) if record else None

	async def list_subscribers(
		self,
		topic_id: UUID,
		*,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.TopicSubscription], bool]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT ts.*, u.display_name
				FROM topic_subscription ts
				JOIN app_user u ON u.id = ts.user_id
				WHERE ts.topic_id=$1 AND ts.active
				ORDER BY ts.subscribed_at DESC
				LIMIT $2 OFFSET $3
				""",
				str(topic_id),
				limit + 1,
				offset,
			)
		items, has_more = _page(rows, limit)
		return [models.TopicSubscription.model_validate(dict(row)) for row in items], has_more

	# --- Audience ---------------------------------------------------------

	async def list_active_group_ids(self, user_id: UUID, *, conn: asyncpg.Connection | None = None) -> list[UUID]:
		async def _fetch(connection: asyncpg.Connection) -> list[UUID]:
			rows = await connection.fetch(
				"SELECT group_id FROM group_membership WHERE user_id=$1 AND active",
				str(user_id),
			)
			return [row["group_id"] for row in rows]

		return await self._with_conn(conn, _fetch)

	async def list_active_topic_ids(self, user_id: UUID, *, conn: asyncpg.Connection | None = None) -> list[UUID]:
		async def _fetch(connection: asyncpg.Connection) -> list[UUID]:
			rows = await connection.fetch(
				"SELECT topic_id FROM topic_subscription WHERE user_id=$1 AND active",
				str(user_id),
			)
			return [row["topic_id"] for row in rows]

		return await self._with_conn(conn, _fetch)

	async def is_active_member(
		self,
		group_id: UUID,
		user_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> bool:
		async def _fetch(connection: asyncpg.Connection) -> bool:
			return bool(
				await connection.fetchval(
					"SELECT EXISTS (SELECT 1 FROM group_membership WHERE group_id=$1 AND user_id=$2 AND active)",
					str(group_id),
					str(user_id),
				)
			)

		return await self._with_conn(conn, _fetch)

	async def is_active_subscriber(
		self,
		topic_id: UUID,
		user_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> bool:
		async def _fetch(connection: asyncpg.Connection) -> bool:
			return bool(
				await connection.fetchval(
					"SELECT EXISTS (SELECT 1 FROM topic_subscription WHERE topic_id=$1 AND user_id=$2 AND active)",
					str(topic_id),
					str(user_id),
				)
			)

		return await self._with_conn(conn, _fetch)

	async def has_invitation_access(
		self,
		event_id: UUID,
		user_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
	) -> bool:
		"""Direct, group or topic invitation in a single statement."""
		query = "SELECT " + _INVITED_EXISTS.format(event_ref="$2")

		async def _fetch(connection: asyncpg.Connection) -> bool:
			return bool(await connection.fetchval(query, str(user_id), str(event_id)))

		return await self._with_conn(conn, _fetch)

	# --- Posts ------------------------------------------------------------

	async def create_post(
		self,
		*,
		conn: asyncpg.Connection,
		author_id: UUID,
		target: models.Target,
		title: str | None,
		body: str,
		tags: Sequence[str],
		parent_post_id: UUID | None,
		thread_root_id: UUID | None,
	) -> models.Post:
		post_id = await conn.fetchval(
			"""
			INSERT INTO post (author_id, target_kind, target_id, title, body, tags,
				parent_post_id, thread_root_id, is_reply)
			VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
			RETURNING id
			""",
			str(author_id),
			target.kind,
			str(target.id),
			title,
			body,
			list(tags),
			str(parent_post_id) if parent_post_id else None,
			str(thread_root_id) if thread_root_id else None,
			parent_post_id is not None,
		)
		post = await self.get_post(post_id, conn=conn)
		assert post is not None
		return post

	async def get_post(
		self,
		post_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
		viewer_id: UUID | None = None,
		for_update: bool = False,
	) -> models.Post | None:
		params: list[object] = [str(post_id)]
		liked = "NULL::boolean"
		if viewer_id is not None:
			params.append(str(viewer_id))
			liked = "EXISTS (SELECT 1 FROM post_like pl WHERE pl.post_id = p.id AND pl.user_id = $2)"
		query = f"SELECT {_POST_COLUMNS}, {liked} AS liked_by_me {_POST_FROM} WHERE p.id = $1"
		if for_update:
			query += " FOR UPDATE OF p"

		async def _fetch(connection: asyncpg.Connection) -> models.Post | None:
			record = await connection.fetchrow(query, *params)
			return _post(record) if record else None

		return await self._with_conn(conn, _fetch)

	async def increment_reply_count(self, post_id: UUID, *, conn: asyncpg.Connection) -> int:
		"""Single-statement increment so concurrent replies never lose an update."""
		return await conn.fetchval(
			"UPDATE post SET reply_count = reply_count + 1 WHERE id=$1 RETURNING reply_count",
			str(post_id),
		)

	async def update_post_content(
		self,
		post_id: UUID,
		*,
		conn: asyncpg.Connection,
		title: Optional[str] = None,
		body: Optional[str] = None,
		tags: Optional[Sequence[str]] = None,
		edit_entry: Optional[dict[str, Any]] = None,
	) -> models.Post:
		"""Update title/body/tags. Target columns are never written here."""
		fields: list[str] = ["last_updated = NOW()"]
		values: list[object] = [str(post_id)]
		if title is not None:
			values.append(title)
			fields.append("title=$%d" % len(values))
		if body is not None:
			values.append(body)
			fields.append("body=$%d" % len(values))
		if tags is not None:
			values.append(list(tags))
			fields.append("tags=$%d" % len(values))
		if edit_entry is not None:
			values.append(json.dumps([edit_entry]))
			fields.append("edit_history = edit_history || $%d::jsonb" % len(values))
			fields.append("is_edited = TRUE")
		await conn.execute("UPDATE post SET %s WHERE id=$1" % ", ".join(fields), *values)
		post = await self.get_post(post_id, conn=conn)
		assert post is not None
		return post

	async def _query_posts(
		self,
		*,
		viewer_id: UUID,
		where: list[str],
		params: list[object],
		search: str | None,
		order_by: str,
		limit: int | None,
		offset: int = 0,
	) -> list[models.Post]:
		params = list(params)
		params.append(str(viewer_id))
		liked = "EXISTS (SELECT 1 FROM post_like pl WHERE pl.post_id = p.id AND pl.user_id = $%d)" % len(params)
		rank = "NULL::real"
		if search:
			params.append(search)
			query_idx = len(params)
			where = where + [f"{_POST_SEARCH_VECTOR} @@ plainto_tsquery('english', ${query_idx})"]
			rank = f"ts_rank({_POST_SEARCH_VECTOR}, plainto_tsquery('english', ${query_idx}))"
			order_by = "rank DESC, p.last_updated DESC"
		query = f"SELECT {_POST_COLUMNS}, {liked} AS liked_by_me, {rank} AS rank {_POST_FROM}"
		if where:
			query += " WHERE " + " AND ".join(where)
		query += f" ORDER BY {order_by}"
		if limit is not None:
			params.extend([limit, offset])
			query += " LIMIT $%d OFFSET $%d" % (len(params) - 1, len(params))
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		return [_post(row) for row in rows]

	async def list_visible_posts(
		self,
		*,
		audience: models.Audience,
		search: str | None = None,
		top_level_only: bool = True,
		target: models.Target | None = None,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.Post], bool]:
		params: list[object] = []
		access = post_access_clause(params, audience)
		if top_level_only:
			where = [access, "p.is_reply = FALSE"]
		else:
			# replies also follow the author of their thread root
			where = [
				"(%s OR (p.is_reply AND EXISTS ("
				"SELECT 1 FROM post r WHERE r.id = p.thread_root_id AND r.author_id = $1)))" % access
			]
		if target is not None:
			params.extend([target.kind, str(target.id)])
			where.append("p.target_kind = $%d AND p.target_id = $%d" % (len(params) - 1, len(params)))
		rows = await self._query_posts(
			viewer_id=audience.actor_id,
			where=where,
			params=params,
			search=search,
			order_by="p.last_updated DESC, p.id DESC",
			limit=limit + 1,
			offset=offset,
		)
		return _page(rows, limit)

	async def list_conversation(
		self,
		*,
		user_id: UUID,
		other_id: UUID,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.Post], bool]:
		params: list[object] = [str(user_id), str(other_id)]
		where = [
			"p.target_kind = 'user'",
			"p.is_reply = FALSE",
			"((p.target_id = $1 AND p.author_id = $2) OR (p.target_id = $2 AND p.author_id = $1))",
		]
		rows = await self._query_posts(
			viewer_id=user_id,
			where=where,
			params=params,
			search=None,
			order_by="p.created_at DESC, p.id DESC",
			limit=limit + 1,
			offset=offset,
		)
		return _page(rows, limit)

	async def list_thread(self, root_id: UUID, *, viewer_id: UUID) -> list[models.Post]:
		"""Root plus every post anchored on it, oldest first."""
		return await self._query_posts(
			viewer_id=viewer_id,
			where=["(p.id = $1 OR p.thread_root_id = $1)"],
			params=[str(root_id)],
			search=None,
			order_by="p.created_at ASC, p.id ASC",
			limit=None,
		)

	async def remove_like(self, post_id: UUID, user_id: UUID, *, conn: asyncpg.Connection) -> bool:
		removed = await conn.fetchval(
			"DELETE FROM post_like WHERE post_id=$1 AND user_id=$2 RETURNING TRUE",
			str(post_id),
			str(user_id),
		)
		return bool(removed)

	async def add_like(self, post_id: UUID, user_id: UUID, *, conn: asyncpg.Connection) -> None:
		await conn.execute(
			"""
			INSERT INTO post_like (post_id, user_id) VALUES ($1, $2)
			ON CONFLICT (post_id, user_id) DO NOTHING
			""",
			str(post_id),
			str(user_id),
		)

	async def recount_likes(self, post_id: UUID, *, conn: asyncpg.Connection) -> int:
		return await conn.fetchval(
			"""
			UPDATE post SET like_count = (SELECT COUNT(*) FROM post_like WHERE post_id=$1)
			WHERE id=$1
			RETURNING like_count
			""",
			str(post_id),
		)

	# --- Events -----------------------------------------------------------

	async def create_event(
		self,
		*,
		conn: asyncpg.Connection,
		creator_id: UUID,
		title: str,
		description: str,
		starts_at,
		ends_at,
		location: str,
		is_virtual: bool,
		category: str,
		max_attendees: int | None,
		is_private: bool,
		registration_deadline,
	) -> models.Event:
		record = await conn.fetchrow(
			"""
			INSERT INTO event (creator_id, title, description, starts_at, ends_at, location, is_virtual,
				category, max_attendees, is_private, registration_deadline)
			VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
			RETURNING *
			""",
			str(creator_id),
			title,
			description,
			starts_at,
			ends_at,
			location,
			is_virtual,
			category,
			max_attendees,
			is_private,
			registration_deadline,
		)
		return models.Event.model_validate(dict(record))

	async def get_event(
		self,
		event_id: UUID,
		*,
		conn: asyncpg.Connection | None = None,
		for_update: bool = False,
	) -> models.Event | None:
		query = "SELECT * FROM event WHERE id=$1"
		if for_update:
			query += " FOR UPDATE"

		async def _fetch(connection: asyncpg.Connection) -> models.Event | None:
			record = await connection.fetchrow(query, str(event_id))
			return models.Event.model_validate(dict(record)) if record else None

		return await self._with_conn(conn, _fetch)

	async def get_event_for_viewer(self, event_id: UUID, viewer_id: UUID) -> models.Event | None:
		"""Event with creator name and the viewer's own RSVP status."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"""
				SELECT e.*, cu.display_name AS creator_name, r.status AS user_rsvp
				FROM event e
				JOIN app_user cu ON cu.id = e.creator_id
				LEFT JOIN event_rsvp r ON r.event_id = e.id AND r.user_id = $1
				WHERE e.id = $2
				""",
				str(viewer_id),
				str(event_id),
			)
		return models.Event.model_validate(dict(record)) if record else None

	async def update_event(
		self,
		event_id: UUID,
		*,
		conn: asyncpg.Connection,
		changes: Mapping[str, Any],
	) -> models.Event:
		fields: list[str] = ["updated_at = NOW()"]
		values: list[object] = [str(event_id)]
		for column, value in changes.items():
			if column not in _EVENT_UPDATABLE:
				continue
			values.append(value)
			fields.append("%s=$%d" % (column, len(values)))
		record = await conn.fetchrow(
			"UPDATE event SET %s WHERE id=$1 RETURNING *" % ", ".join(fields),
			*values,
		)
		return models.Event.model_validate(dict(record))

	async def list_visible_events(
		self,
		*,
		viewer_id: UUID,
		search: str | None = None,
		category: str | None = None,
		starts_after=None,
		starts_before=None,
		status: str | None = None,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.Event], bool]:
		"""Created by the viewer, public, or reachable through an active invitation."""
		params: list[object] = [str(viewer_id)]
		where = [
			"(e.creator_id = $1 OR e.is_private = FALSE OR %s)" % _INVITED_EXISTS.format(event_ref="e.id"),
		]
		if category:
			params.append(category)
			where.append("e.category = $%d" % len(params))
		if status:
			params.append(status)
			where.append("e.status = $%d" % len(params))
		if starts_after is not None:
			params.append(starts_after)
			where.append("e.starts_at >= $%d" % len(params))
		if starts_before is not None:
			params.append(starts_before)
			where.append("e.starts_at <= $%d" % len(params))
		rank = "NULL::real"
		order_by = "e.starts_at ASC, e.id ASC"
		if search:
			params.append(search)
			query_idx = len(params)
			where.append(f"{_EVENT_SEARCH_VECTOR} @@ plainto_tsquery('english', ${query_idx})")
			rank = f"ts_rank({_EVENT_SEARCH_VECTOR}, plainto_tsquery('english', ${query_idx}))"
			order_by = "rank DESC, e.starts_at ASC"
		params.extend([limit + 1, offset])
		query = """
			SELECT e.*, cu.display_name AS creator_name, r.status AS user_rsvp, {rank} AS rank
			FROM event e
			JOIN app_user cu ON cu.id = e.creator_id
			LEFT JOIN event_rsvp r ON r.event_id = e.id AND r.user_id = $1
			WHERE {where}
			ORDER BY {order_by}
			LIMIT ${limit_idx} OFFSET ${offset_idx}
		""".format(
			rank=rank,
			where=" AND ".join(where),
			order_by=order_by,
			limit_idx=len(params) - 1,
			offset_idx=len(params),
		)
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		items, has_more = _page(rows, limit)
		return [models.Event.model_validate(dict(row)) for row in items], has_more

	# --- Invitation ledger ------------------------------------------------

	async def activate_invitation(
		self,
		*,
		conn: asyncpg.Connection,
		event_id: UUID,
		invitee: models.Target,
		invited_by: UUID,
	) -> models.EventInvitation | None:
		"""Insert or reactivate; returns None when an active row already exists."""
		record = await conn.fetchrow(
			"""
			INSERT INTO event_invitation (event_id, invitee_kind, invitee_id, invited_by, active)
			VALUES ($1, $2, $3, $4, TRUE)
			ON CONFLICT (event_id, invitee_kind, invitee_id)
			DO UPDATE SET active = TRUE, invited_by = EXCLUDED.invited_by, invited_at = NOW()
				WHERE event_invitation.active = FALSE
			RETURNING *
			""",
			str(event_id),
			invitee.kind,
			str(invitee.id),
			str(invited_by),
		)
		return models.EventInvitation.model_validate(dict(record)) if record else None

	async def deactivate_invitation(
		self,
		*,
		conn: asyncpg.Connection,
		event_id: UUID,
		invitee: models.Target,
	) -> models.EventInvitation | None:
		record = await conn.fetchrow(
			"""
			UPDATE event_invitation SET active = FALSE
			WHERE event_id=$1 AND invitee_kind=$2 AND invitee_id=$3 AND active
			RETURNING *
			""",
			str(event_id),
			invitee.kind,
			str(invitee.id),
		)
		return models.EventInvitation.model_validate(dict(record)) if record else None

	async def list_invitations(self, event_id: UUID) -> list[models.EventInvitation]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM event_invitation
				WHERE event_id=$1 AND active
				ORDER BY invited_at ASC
				""",
				str(event_id),
			)
		return [models.EventInvitation.model_validate(dict(row)) for row in rows]

	# --- RSVP -------------------------------------------------------------

	async def count_going(
		self,
		event_id: UUID,
		*,
		conn: asyncpg.Connection,
		exclude_user_id: UUID | None = None,
	) -> int:
		if exclude_user_id is None:
			return await conn.fetchval(
				"SELECT COUNT(*) FROM event_rsvp WHERE event_id=$1 AND status='going'",
				str(event_id),
			)
		return await conn.fetchval(
			"SELECT COUNT(*) FROM event_rsvp WHERE event_id=$1 AND status='going' AND user_id <> $2",
			str(event_id),
			str(exclude_user_id),
		)

	async def upsert_rsvp(
		self,
		*,
		conn: asyncpg.Connection,
		event_id: UUID,
		user_id: UUID,
		status: str,
		note: str,
	) -> models.EventRSVP:
		record = await conn.fetchrow(
			"""
			INSERT INTO event_rsvp (event_id, user_id, status, note)
			VALUES ($1, $2, $3, $4)
			ON CONFLICT (event_id, user_id)
			DO UPDATE SET status = EXCLUDED.status,
				note = EXCLUDED.note,
				updated_at = NOW()
			RETURNING *
			""",
			str(event_id),
			str(user_id),
			status,
			note,
		)
		return models.EventRSVP.model_validate(dict(record))

	async def recount_attendees(self, event_id: UUID, *, conn: asyncpg.Connection) -> int:
		"""Persist attendee_count from a fresh count of going rows."""
		return await conn.fetchval(
			"""
			UPDATE event
			SET attendee_count = (
				SELECT COUNT(*) FROM event_rsvp WHERE event_id=$1 AND status='going'
			), updated_at = NOW()
			WHERE id=$1
			RETURNING attendee_count
			""",
			str(event_id),
		)

	async def rsvp_stats(self, event_id: UUID) -> dict[str, int]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT status, COUNT(*) AS total FROM event_rsvp WHERE event_id=$1 GROUP BY status",
				str(event_id),
			)
		stats = {status: 0 for status in models.RSVP_STATUSES}
		for row in rows:
			stats[row["status"]] = row["total"]
		return stats

	async def list_attendees(
		self,
		event_id: UUID,
		*,
		status: str | None,
		limit: int,
		offset: int = 0,
	) -> tuple[list[models.EventRSVP], bool]:
		params: list[object] = [str(event_id)]
		where = ["r.event_id = $1"]
		if status:
			params.append(status)
			where.append("r.status = $%d" % len(params))
		params.extend([limit + 1, offset])
		query = """
			SELECT r.*, u.display_name
			FROM event_rsvp r
			JOIN app_user u ON u.id = r.user_id
			WHERE {where}
			ORDER BY r.updated_at DESC
			LIMIT $%d OFFSET $%d
		""".format(where=" AND ".join(where)) % (len(params) - 1, len(params))
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		items, has_more = _page(rows, limit)
		return [models.EventRSVP.model_validate(dict(row)) for row in items], has_more
