"""In-memory stand-ins for the network repository and asyncpg pool.

Row locks taken with ``for_update=True`` are real ``asyncio.Lock`` objects held
until the owning fake transaction exits, so concurrent service calls serialize
the same way they do against PostgreSQL.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from itertools import count
from uuid import UUID, uuid4

from alumnet.network.domain import models
from alumnet.network.domain.exceptions import ConflictError

_TICK = count()


def _now() -> datetime:
	# Strictly increasing timestamps keep ordering deterministic within a test.
	return datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(microseconds=next(_TICK))


class FakeTransaction:
	def __init__(self, conn: "FakeConnection") -> None:
		self._conn = conn

	async def __aenter__(self):
		return None

	async def __aexit__(self, exc_type, exc, tb):
		self._conn.release_locks()
		return False


class FakeConnection:
	def __init__(self) -> None:
		self.held: list[asyncio.Lock] = []

	def transaction(self):
		return FakeTransaction(self)

	def release_locks(self) -> None:
		while self.held:
			self.held.pop().release()


class _FakeAcquire:
	def __init__(self, conn: FakeConnection) -> None:
		self._conn = conn

	async def __aenter__(self):
		return self._conn

	async def __aexit__(self, exc_type, exc, tb):
		return False


class FakePool:
	"""Hands out a fresh connection per acquire, like a real pool under load."""

	def __init__(self) -> None:
		self.connections: list[FakeConnection] = []

	def acquire(self):
		conn = FakeConnection()
		self.connections.append(conn)
		return _FakeAcquire(conn)


class InMemoryNetworkRepository:
	def __init__(self) -> None:
		self.actors: dict[UUID, models.Actor] = {}
		self.groups: dict[UUID, models.Group] = {}
		self.memberships: dict[tuple[UUID, UUID], models.GroupMembership] = {}
		self.topics: dict[UUID, models.Topic] = {}
		self.subscriptions: dict[tuple[UUID, UUID], models.TopicSubscription] = {}
		self.posts: dict[UUID, models.Post] = {}
		self.likes: set[tuple[UUID, UUID]] = set()
		self.events: dict[UUID, models.Event] = {}
		self.invitations: dict[tuple[UUID, str, UUID], models.EventInvitation] = {}
		self.rsvps: dict[tuple[UUID, UUID], models.EventRSVP] = {}
		self._locks: dict[tuple[str, UUID], asyncio.Lock] = {}

	# --- seeding helpers ---------------------------------------------------

	def add_actor(self, name: str = "Alum") -> UUID:
		actor_id = uuid4()
		self.actors[actor_id] = models.Actor(id=actor_id, display_name=name)
		return actor_id

	async def _lock(self, conn, key: tuple[str, UUID]) -> None:
		if conn is None:
			return
		lock = self._locks.setdefault(key, asyncio.Lock())
		if lock in conn.held:
			return
		await lock.acquire()
		conn.held.append(lock)

	# --- actors and targets ------------------------------------------------

	async def get_actor(self, user_id: UUID, *, conn=None):
		return self.actors.get(user_id)

	async def target_exists(self, target: models.Target, *, conn=None) -> bool:
		table = {"user": self.actors, "group": self.groups, "topic": self.topics}[target.kind]
		return target.id in table

	# --- groups --------------------------------------------------------------

	async def create_group(self, *, conn, name, description, is_private, category, tags, rules, creator_id):
		if any(group.name.lower() == name.lower() for group in self.groups.values()):
			raise ConflictError("group_name_taken")
		now = _now()
		group = models.Group(
			id=uuid4(),
			name=name,
			description=description,
			is_private=is_private,
			category=category,
			tags=list(tags),
			rules=rules,
			creator_id=creator_id,
			member_count=0,
			created_at=now,
			updated_at=now,
		)
		self.groups[group.id] = group
		return group

	async def get_group(self, group_id: UUID, *, conn=None, for_update: bool = False):
		if group_id not in self.groups:
			return None
		if for_update:
			await self._lock(conn, ("group", group_id))
		return self.groups.get(group_id)

	async def list_groups(self, *, viewer_id, search, category, limit, offset=0):
		rows = []
		for group in sorted(self.groups.values(), key=lambda item: item.name.lower()):
			membership = self.memberships.get((group.id, viewer_id))
			role = membership.role if membership and membership.active else None
			if group.is_private and role is None:
				continue
			if category and group.category != category:
				continue
			if search and search.lower() not in group.name.lower():
				continue
			rows.append((group, role))
		page = rows[offset : offset + limit + 1]
		return page[:limit], len(page) > limit

	async def recount_members(self, group_id: UUID, *, conn) -> int:
		total = sum(1 for (gid, _), row in self.memberships.items() if gid == group_id and row.active)
		self.groups[group_id] = self.groups[group_id].model_copy(update={"member_count": total})
		return total

	async def get_membership(self, group_id: UUID, user_id: UUID, *, conn=None):
		return self.memberships.get((group_id, user_id))

	async def activate_membership(self, *, conn, group_id, user_id, role):
		row = models.GroupMembership(
			group_id=group_id,
			user_id=user_id,
			role=role,
			active=True,
			joined_at=_now(),
			display_name=self.actors[user_id].display_name if user_id in self.actors else None,
		)
		self.memberships[(group_id, user_id)] = row
		return row

	async def deactivate_membership(self, *, conn, group_id, user_id):
		row = self.memberships.get((group_id, user_id))
		if row is None or not row.active:
			return None
		row = row.model_copy(update={"active": False})
		self.memberships[(group_id, user_id)] = row
		return row

	async def update_membership_role(self, *, conn, group_id, user_id, role):
		row = self.memberships.get((group_id, user_id))
		if row is None or not row.active:
			return None
		row = row.model_copy(update={"role": role})
		self.memberships[(group_id, user_id)] = row
		return row

	async def count_active_admins(self, group_id: UUID, *, conn) -> int:
		return sum(
			1
			for (gid, _), row in self.memberships.items()
			if gid == group_id and row.active and row.role == "admin"
		)

	async def list_members(self, group_id: UUID, *, limit, offset=0):
		rows = [row for (gid, _), row in self.memberships.items() if gid == group_id and row.active]
		page = rows[offset : offset + limit + 1]
		return page[:limit], len(page) > limit

	# --- topics --------------------------------------------------------------

	async def create_topic(self, *, conn, name, description, category, tags, color, creator_id):
		if any(topic.name.lower() == name.lower() for topic in self.topics.values()):
			raise ConflictError("topic_name_taken")
		now = _now()
		topic = models.Topic(
			id=uuid4(),
			name=name,
			description=description,
			category=category,
			tags=list(tags),
			color=color,
			creator_id=creator_id,
			subscriber_count=0,
			created_at=now,
			updated_at=now,
		)
		self.topics[topic.id] = topic
		return topic

	async def get_topic(self, topic_id: UUID, *, conn=None, for_update: bool = False):
		if topic_id not in self.topics:
			return None
		if for_update:
			await self._lock(conn, ("topic", topic_id))
		return self.topics.get(topic_id)

	async def list_topics(self, *, viewer_id, search, category, limit, offset=0):
		rows = []
		for topic in sorted(self.topics.values(), key=lambda item: item.name.lower()):
			if category and topic.category != category:
				continue
			if search and search.lower() not in topic.name.lower():
				continue
			subscription = self.subscriptions.get((topic.id, viewer_id))
			rows.append((topic, bool(subscription and subscription.active)))
		page = rows[offset : offset + limit + 1]
		return page[:limit], len(page) > limit

	async def list_subscribers(self, topic_id: UUID, *, limit, offset=0):
		rows = [row for (tid, _), row in self.subscriptions.items() if tid == topic_id and row.active]
		page = rows[offset : offset + limit + 1]
		return page[:limit], len(page) > limit

	async def recount_subscribers(self, topic_id: UUID, *, conn) -> int:
		total = sum(1 for (tid, _), row in self.subscriptions.items() if tid == topic_id and row.active)
		self.topics[topic_id] = self.topics[topic_id].model_copy(update={"subscriber_count": total})
		return total

	async def get_subscription(self, topic_id: UUID, user_id: UUID, *, conn=None):
		return self.subscriptions.get((topic_id, user_id))

	async def activate_subscription(self, *, conn, topic_id, user_id):
		previous = self.subscriptions.get((topic_id, user_id))
		row = models.TopicSubscription(
			topic_id=topic_id,
			user_id=user_id,
			active=True,
			notifications_enabled=previous.notifications_enabled if previous else True,
			subscribed_at=_now(),
		)
		self.subscriptions[(topic_id, user_id)] = row
		return row

	async def deactivate_subscription(self, *, conn, topic_id, user_id):
		row = self.subscriptions.get((topic_id, user_id))
		if row is None or not row.active:
			return None
		row = row.model_copy(update={"active": False})
		self.subscriptions[(topic_id, user_id)] = row
		return row

	async def set_subscription_notifications(self, *, topic_id, user_id, enabled):
		row = self.subscriptions.get((topic_id, user_id))
		if row is None or not row.active:
			return None
		row = row.model_copy(update={"notifications_enabled": enabled})
		self.subscriptions[(topic_id, user_id)] = row
		return row

	# --- audience --------------------------------------------------------------

	async def list_active_group_ids(self, user_id: UUID, *, conn=None):
		return [gid for (gid, uid), row in self.memberships.items() if uid == user_id and row.active]

	async def list_active_topic_ids(self, user_id: UUID, *, conn=None):
		return [tid for (tid, uid), row in self.subscriptions.items() if uid == user_id and row.active]

	async def is_active_member(self, group_id: UUID, user_id: UUID, *, conn=None) -> bool:
		row = self.memberships.get((group_id, user_id))
		return bool(row and row.active)

	async def is_active_subscriber(self, topic_id: UUID, user_id: UUID, *, conn=None) -> bool:
		row = self.subscriptions.get((topic_id, user_id))
		return bool(row and row.active)

	async def has_invitation_access(self, event_id: UUID, user_id: UUID, *, conn=None) -> bool:
		for (eid, kind, invitee_id), row in self.invitations.items():
			if eid != event_id or not row.active:
				continue
			if kind == "user" and invitee_id == user_id:
				return True
			if kind == "group" and await self.is_active_member(invitee_id, user_id):
				return True
			if kind == "topic" and await self.is_active_subscriber(invitee_id, user_id):
				return True
		return False

	# --- posts -----------------------------------------------------------------

	def _decorate(self, post: models.Post, viewer_id: UUID | None) -> models.Post:
		author = self.actors.get(post.author_id)
		return post.model_copy(
			update={
				"author_name": author.display_name if author else None,
				"liked_by_me": (post.id, viewer_id) in self.likes if viewer_id else None,
			}
		)

	async def create_post(self, *, conn, author_id, target, title, body, tags, parent_post_id, thread_root_id):
		now = _now()
		post = models.Post(
			id=uuid4(),
			author_id=author_id,
			target_kind=target.kind,
			target_id=target.id,
			title=title,
			body=body,
			tags=list(tags),
			parent_post_id=parent_post_id,
			thread_root_id=thread_root_id,
			is_reply=parent_post_id is not None,
			reply_count=0,
			like_count=0,
			is_edited=False,
			created_at=now,
			last_updated=now,
		)
		self.posts[post.id] = post
		return self._decorate(post, author_id)

	async def get_post(self, post_id: UUID, *, conn=None, viewer_id=None, for_update: bool = False):
		if post_id not in self.posts:
			return None
		if for_update:
			await self._lock(conn, ("post", post_id))
		return self._decorate(self.posts[post_id], viewer_id)

	async def increment_reply_count(self, post_id: UUID, *, conn) -> int:
		post = self.posts[post_id]
		self.posts[post_id] = post.model_copy(update={"reply_count": post.reply_count + 1})
		return post.reply_count + 1

	async def update_post_content(self, post_id: UUID, *, conn, title=None, body=None, tags=None, edit_entry=None):
		post = self.posts[post_id]
		changes: dict[str, object] = {"last_updated": _now()}
		if title is not None:
			changes["title"] = title
		if body is not None:
			changes["body"] = body
		if tags is not None:
			changes["tags"] = list(tags)
		if edit_entry is not None:
			changes["edit_history"] = [*post.edit_history, edit_entry]
			changes["is_edited"] = True
		updated = post.model_copy(update=changes)
		self.posts[post_id] = updated
		return self._decorate(updated, post.author_id)

	async def list_visible_posts(self, *, audience, search=None, top_level_only=True, target=None, limit, offset=0):
		rows = [
			post
			for post in self.posts.values()
			if (
				audience.covers(post.target)
				or (
					not top_level_only
					and post.is_reply
					and self.posts[post.thread_root_id].author_id == audience.actor_id
				)
			)
			and (not top_level_only or not post.is_reply)
			and (target is None or post.target == target)
			and (not search or search.lower() in post.body.lower())
		]
		rows.sort(key=lambda post: post.last_updated, reverse=True)
		page = rows[offset : offset + limit + 1]
		return [self._decorate(post, audience.actor_id) for post in page[:limit]], len(page) > limit

	async def list_conversation(self, *, user_id, other_id, limit, offset=0):
		pair = {(user_id, other_id), (other_id, user_id)}
		rows = [
			post
			for post in self.posts.values()
			if post.target_kind == "user" and not post.is_reply and (post.author_id, post.target_id) in pair
		]
		rows.sort(key=lambda post: post.created_at, reverse=True)
		page = rows[offset : offset + limit + 1]
		return [self._decorate(post, user_id) for post in page[:limit]], len(page) > limit

	async def list_thread(self, root_id: UUID, *, viewer_id: UUID):
		rows = [post for post in self.posts.values() if post.id == root_id or post.thread_root_id == root_id]
		rows.sort(key=lambda post: post.created_at)
		return [self._decorate(post, viewer_id) for post in rows]

	async def remove_like(self, post_id: UUID, user_id: UUID, *, conn) -> bool:
		if (post_id, user_id) in self.likes:
			self.likes.discard((post_id, user_id))
			return True
		return False

	async def add_like(self, post_id: UUID, user_id: UUID, *, conn) -> None:
		self.likes.add((post_id, user_id))

	async def recount_likes(self, post_id: UUID, *, conn) -> int:
		total = sum(1 for pid, _ in self.likes if pid == post_id)
		self.posts[post_id] = self.posts[post_id].model_copy(update={"like_count": total})
		return total

	# --- events ----------------------------------------------------------------

	async def create_event(self, *, conn, creator_id, **fields):
		now = _now()
		event = models.Event(
			id=uuid4(),
			creator_id=creator_id,
			attendee_count=0,
			status="active",
			created_at=now,
			updated_at=now,
			**fields,
		)
		self.events[event.id] = event
		return event

	async def get_event(self, event_id: UUID, *, conn=None, for_update: bool = False):
		if event_id not in self.events:
			return None
		if for_update:
			await self._lock(conn, ("event", event_id))
		return self.events.get(event_id)

	async def get_event_for_viewer(self, event_id: UUID, viewer_id: UUID):
		event = self.events.get(event_id)
		if event is None:
			return None
		rsvp = self.rsvps.get((event_id, viewer_id))
		creator = self.actors.get(event.creator_id)
		return event.model_copy(
			update={
				"creator_name": creator.display_name if creator else None,
				"user_rsvp": rsvp.status if rsvp else None,
			}
		)

	async def update_event(self, event_id: UUID, *, conn, changes):
		updated = self.events[event_id].model_copy(update={**changes, "updated_at": _now()})
		self.events[event_id] = updated
		return updated

	async def list_visible_events(self, *, viewer_id, search=None, category=None, starts_after=None, starts_before=None, status=None, limit, offset=0):
		rows = []
		for event in self.events.values():
			visible = (
				event.creator_id == viewer_id
				or not event.is_private
				or await self.has_invitation_access(event.id, viewer_id)
			)
			if not visible:
				continue
			if category and event.category != category:
				continue
			if status and event.status != status:
				continue
			if starts_after and event.starts_at < starts_after:
				continue
			if starts_before and event.starts_at > starts_before:
				continue
			if search:
				haystack = " ".join((event.title, event.description, event.location)).lower()
				if search.lower() not in haystack:
					continue
			rows.append(event)
		rows.sort(key=lambda event: event.starts_at)
		page = rows[offset : offset + limit + 1]
		return page[:limit], len(page) > limit

	async def activate_invitation(self, *, conn, event_id, invitee, invited_by):
		key = (event_id, invitee.kind, invitee.id)
		existing = self.invitations.get(key)
		if existing is not None and existing.active:
			return None
		row = models.EventInvitation(
			event_id=event_id,
			invitee_kind=invitee.kind,
			invitee_id=invitee.id,
			invited_by=invited_by,
			invited_at=_now(),
			active=True,
		)
		self.invitations[key] = row
		return row

	async def deactivate_invitation(self, *, conn, event_id, invitee):
		key = (event_id, invitee.kind, invitee.id)
		existing = self.invitations.get(key)
		if existing is None or not existing.active:
			return None
		row = existing.model_copy(update={"active": False})
		self.invitations[key] = row
		return row

	async def list_invitations(self, event_id: UUID):
		return [row for (eid, _, _), row in self.invitations.items() if eid == event_id and row.active]

	async def count_going(self, event_id: UUID, *, conn, exclude_user_id=None) -> int:
		# Yield so that unserialized callers would interleave here.
		await asyncio.sleep(0)
		return sum(
			1
			for (eid, uid), row in self.rsvps.items()
			if eid == event_id and row.status == "going" and uid != exclude_user_id
		)

	async def upsert_rsvp(self, *, conn, event_id, user_id, status, note):
		await asyncio.sleep(0)
		now = _now()
		previous = self.rsvps.get((event_id, user_id))
		row = models.EventRSVP(
			event_id=event_id,
			user_id=user_id,
			status=status,
			note=note,
			created_at=previous.created_at if previous else now,
			updated_at=now,
		)
		self.rsvps[(event_id, user_id)] = row
		return row

	async def recount_attendees(self, event_id: UUID, *, conn) -> int:
		total = sum(1 for (eid, _), row in self.rsvps.items() if eid == event_id and row.status == "going")
		self.events[event_id] = self.events[event_id].model_copy(update={"attendee_count": total})
		return total

	async def rsvp_stats(self, event_id: UUID):
		stats = {status: 0 for status in models.RSVP_STATUSES}
		for (eid, _), row in self.rsvps.items():
			if eid == event_id:
				stats[row.status] += 1
		return stats

	async def list_attendees(self, event_id: UUID, *, status, limit, offset=0):
		rows = [
			row
			for (eid, _), row in self.rsvps.items()
			if eid == event_id and (status is None or row.status == status)
		]
		page = rows[offset : offset + limit + 1]
		return page[:limit], len(page) > limit


_SERVICE_MODULES = (
	"membership_service",
	"subscription_service",
	"invitations_service",
	"posts_service",
	"events_service",
	"rsvp_service",
)


def install_pool(monkeypatch, pool: FakePool) -> None:
	"""Point every network service at ``pool`` instead of the asyncpg pool."""

	async def _get_pool():
		return pool

	for module in _SERVICE_MODULES:
		monkeypatch.setattr(f"alumnet.network.domain.{module}.get_pool", _get_pool)
