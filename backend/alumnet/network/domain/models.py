"""Domain models for alumni network entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

TargetKind = Literal["user", "group", "topic"]
TARGET_KINDS: tuple[str, ...] = ("user", "group", "topic")

GroupRole = Literal["member", "moderator", "admin"]
RSVPStatus = Literal["going", "maybe", "not_going"]
RSVP_STATUSES: tuple[str, ...] = ("going", "maybe", "not_going")
EventStatus = Literal["active", "cancelled", "completed"]

GROUP_CATEGORIES: tuple[str, ...] = ("academic", "professional", "social", "sports", "hobbies", "other")
TOPIC_CATEGORIES: tuple[str, ...] = (
	"technology",
	"business",
	"career",
	"education",
	"lifestyle",
	"entertainment",
	"other",
)


class Target(BaseModel):
	"""Audience a post is addressed to: a user inbox, a group or a topic."""

	kind: TargetKind
	id: UUID

	model_config = ConfigDict(frozen=True)


@dataclass(frozen=True, slots=True)
class Audience:
	"""Groups and topics an actor currently belongs to or follows."""

	actor_id: UUID
	group_ids: frozenset[UUID] = field(default_factory=frozenset)
	topic_ids: frozenset[UUID] = field(default_factory=frozenset)

	def covers(self, target: Target) -> bool:
		if target.kind == "user":
			return target.id == self.actor_id
		if target.kind == "group":
			return target.id in self.group_ids
		if target.kind == "topic":
			return target.id in self.topic_ids
		return False


class Actor(BaseModel):
	"""Registered user, read-only here."""

	id: UUID
	display_name: str
	avatar_url: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


class Group(BaseModel):
	id: UUID
	name: str
	description: str
	is_private: bool
	category: str
	tags: list[str]
	rules: str
	creator_id: UUID
	member_count: int
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class GroupMembership(BaseModel):
	"""Represents a membership ledger row."""

	group_id: UUID
	user_id: UUID
	role: GroupRole
	active: bool
	joined_at: datetime
	display_name: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


class Topic(BaseModel):
	id: UUID
	name: str
	description: str
	category: str
	tags: list[str]
	color: str
	creator_id: UUID
	subscriber_count: int
	created_at: datetime
	updated_at: datetime

	model_config = ConfigDict(from_attributes=True)


class TopicSubscription(BaseModel):
	"""Represents a subscription ledger row."""

	topic_id: UUID
	user_id: UUID
	active: bool
	notifications_enabled: bool
	subscribed_at: datetime
	display_name: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


class Post(BaseModel):
	"""Represents a post; ``target_kind``/``target_id`` never change after insert."""

	id: UUID
	author_id: UUID
	target_kind: TargetKind
	target_id: UUID
	title: Optional[str] = None
	body: str
	tags: list[str]
	parent_post_id: Optional[UUID] = None
	thread_root_id: Optional[UUID] = None
	is_reply: bool
	reply_count: int
	like_count: int
	is_edited: bool
	edit_history: list[dict[str, Any]] = Field(default_factory=list)
	created_at: datetime
	last_updated: datetime
	author_name: Optional[str] = None
	target_name: Optional[str] = None
	liked_by_me: Optional[bool] = None
	rank: Optional[float] = None

	model_config = ConfigDict(from_attributes=True)

	@property
	def target(self) -> Target:
		return Target(kind=self.target_kind, id=self.target_id)

	@property
	def root_id(self) -> UUID:
		return self.thread_root_id or self.id


class Event(BaseModel):
	id: UUID
	title: str
	description: str
	creator_id: UUID
	starts_at: datetime
	ends_at: Optional[datetime] = None
	location: str
	is_virtual: bool
	category: str
	max_attendees: Optional[int] = None
	is_private: bool
	attendee_count: int
	status: EventStatus
	registration_deadline: Optional[datetime] = None
	created_at: datetime
	updated_at: datetime
	creator_name: Optional[str] = None
	user_rsvp: Optional[RSVPStatus] = None

	model_config = ConfigDict(from_attributes=True)


class EventInvitation(BaseModel):
	"""Grant of event visibility to a user, group or topic."""

	event_id: UUID
	invitee_kind: TargetKind
	invitee_id: UUID
	invited_by: UUID
	invited_at: datetime
	active: bool

	model_config = ConfigDict(from_attributes=True)


class EventRSVP(BaseModel):
	event_id: UUID
	user_id: UUID
	status: RSVPStatus
	note: str
	created_at: datetime
	updated_at: datetime
	display_name: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)
