"""Pydantic schemas for network API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

_GROUP_CATEGORY = "^(academic|professional|social|sports|hobbies|other)$"
_TOPIC_CATEGORY = "^(technology|business|career|education|lifestyle|entertainment|other)$"
_RSVP_STATUS = "^(going|maybe|not_going)$"


class PageMeta(BaseModel):
	page: int
	limit: int
	has_more: bool


# --- Groups -----------------------------------------------------------------


class GroupCreateRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=100)
	description: str = Field(..., min_length=1, max_length=500)
	is_private: bool = False
	category: str = Field(default="other", pattern=_GROUP_CATEGORY)
	tags: List[str] = Field(default_factory=list, max_length=20)
	rules: str = Field(default="", max_length=1000)


class GroupResponse(BaseModel):
	id: UUID
	name: str
	description: str
	is_private: bool
	category: str
	tags: List[str]
	rules: str
	creator_id: UUID
	member_count: int
	created_at: datetime
	updated_at: datetime
	is_member: bool = False
	role: Optional[str] = None


class GroupListResponse(PageMeta):
	items: List[GroupResponse]


class MemberAddRequest(BaseModel):
	user_id: UUID


class MemberRoleRequest(BaseModel):
	role: str = Field(..., pattern="^(admin|moderator|member)$")


class MembershipResponse(BaseModel):
	group_id: UUID
	user_id: UUID
	role: str
	active: bool
	joined_at: datetime
	display_name: Optional[str] = None
	member_count: Optional[int] = None


class MemberListResponse(PageMeta):
	items: List[MembershipResponse]


# --- Topics -----------------------------------------------------------------


class TopicCreateRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=100)
	description: str = Field(..., min_length=1, max_length=500)
	category: str = Field(default="other", pattern=_TOPIC_CATEGORY)
	tags: List[str] = Field(default_factory=list, max_length=20)
	color: str = Field(default="#1976d2", pattern="^#[0-9a-fA-F]{6}$")


class TopicResponse(BaseModel):
	id: UUID
	name: str
	description: str
	category: str
	tags: List[str]
	color: str
	creator_id: UUID
	subscriber_count: int
	created_at: datetime
	updated_at: datetime
	is_subscribed: bool = False


class TopicListResponse(PageMeta):
	items: List[TopicResponse]


class SubscriptionResponse(BaseModel):
	topic_id: UUID
	user_id: UUID
	active: bool
	notifications_enabled: bool
	subscribed_at: datetime
	display_name: Optional[str] = None
	subscriber_count: Optional[int] = None


class SubscriberListResponse(PageMeta):
	items: List[SubscriptionResponse]


class NotificationPreferenceRequest(BaseModel):
	notifications_enabled: bool


# --- Audience ---------------------------------------------------------------


class AudienceResponse(BaseModel):
	user_id: UUID
	group_ids: List[UUID]
	topic_ids: List[UUID]


class CanWriteResponse(BaseModel):
	target_kind: str
	target_id: UUID
	allowed: bool


# --- Posts ------------------------------------------------------------------


class PostCreateRequest(BaseModel):
	target_kind: Optional[str] = None
	target_id: Optional[UUID] = None
	title: Optional[str] = Field(default=None, max_length=200)
	body: str = Field(..., min_length=1, max_length=10000)
	tags: List[str] = Field(default_factory=list, max_length=20)
	parent_post_id: Optional[UUID] = None

	@model_validator(mode="after")
	def _target_complete(self) -> "PostCreateRequest":
		if (self.target_kind is None) != (self.target_id is None):
			raise ValueError("target_kind and target_id must be given together")
		if self.target_kind is None and self.parent_post_id is None:
			raise ValueError("target is required for top-level posts")
		return self


class PostUpdateRequest(BaseModel):
	title: Optional[str] = Field(default=None, max_length=200)
	body: Optional[str] = Field(default=None, min_length=1, max_length=10000)
	tags: Optional[List[str]] = Field(default=None, max_length=20)
	# Accepted only so that audience changes are rejected explicitly.
	target_kind: Optional[str] = None
	target_id: Optional[UUID] = None


class EditHistoryEntry(BaseModel):
	edited_at: datetime
	original_body: str


class PostResponse(BaseModel):
	id: UUID
	author_id: UUID
	author_name: Optional[str] = None
	target_kind: str
	target_id: UUID
	target_name: Optional[str] = None
	title: Optional[str] = None
	body: str
	tags: List[str]
	parent_post_id: Optional[UUID] = None
	thread_root_id: Optional[UUID] = None
	is_reply: bool
	reply_count: int
	like_count: int
	liked_by_me: Optional[bool] = None
	is_edited: bool
	edit_history: List[EditHistoryEntry] = Field(default_factory=list)
	created_at: datetime
	last_updated: datetime


class PostListResponse(PageMeta):
	items: List[PostResponse]


class ThreadResponse(BaseModel):
	root: PostResponse
	replies: List[PostResponse]


class LikeResponse(BaseModel):
	post_id: UUID
	liked: bool
	like_count: int


# --- Events -----------------------------------------------------------------


class EventCreateRequest(BaseModel):
	title: str = Field(..., min_length=1, max_length=200)
	description: str = Field(..., min_length=1, max_length=2000)
	starts_at: datetime
	ends_at: Optional[datetime] = None
	location: str = Field(..., min_length=1, max_length=300)
	is_virtual: bool = False
	category: str = Field(default="other", min_length=1, max_length=50)
	max_attendees: Optional[int] = Field(default=None, ge=1)
	is_private: bool = False
	registration_deadline: Optional[datetime] = None
	invited_users: List[UUID] = Field(default_factory=list)
	invited_groups: List[UUID] = Field(default_factory=list)
	invited_topics: List[UUID] = Field(default_factory=list)

	@model_validator(mode="after")
	def _check_window(self) -> "EventCreateRequest":
		if self.ends_at is not None and self.ends_at <= self.starts_at:
			raise ValueError("ends_at must be after starts_at")
		return self


class EventUpdateRequest(BaseModel):
	title: Optional[str] = Field(default=None, min_length=1, max_length=200)
	description: Optional[str] = Field(default=None, min_length=1, max_length=2000)
	starts_at: Optional[datetime] = None
	ends_at: Optional[datetime] = None
	location: Optional[str] = Field(default=None, min_length=1, max_length=300)
	is_virtual: Optional[bool] = None
	category: Optional[str] = Field(default=None, min_length=1, max_length=50)
	max_attendees: Optional[int] = Field(default=None, ge=1)
	status: Optional[str] = Field(default=None, pattern="^(active|cancelled|completed)$")
	registration_deadline: Optional[datetime] = None


class RSVPStats(BaseModel):
	going: int = 0
	maybe: int = 0
	not_going: int = 0


class EventResponse(BaseModel):
	id: UUID
	title: str
	description: str
	creator_id: UUID
	creator_name: Optional[str] = None
	starts_at: datetime
	ends_at: Optional[datetime] = None
	location: str
	is_virtual: bool
	category: str
	max_attendees: Optional[int] = None
	is_private: bool
	attendee_count: int
	status: str
	registration_deadline: Optional[datetime] = None
	created_at: datetime
	updated_at: datetime
	user_rsvp: Optional[str] = None
	is_creator: bool = False
	rsvp_stats: Optional[RSVPStats] = None


class EventListResponse(PageMeta):
	items: List[EventResponse]


class RSVPRequest(BaseModel):
	status: str = Field(..., pattern=_RSVP_STATUS)
	note: str = Field(default="", max_length=500)


class RSVPResponse(BaseModel):
	event_id: UUID
	user_id: UUID
	status: str
	note: str
	updated_at: datetime
	attendee_count: int


class AttendeeResponse(BaseModel):
	user_id: UUID
	display_name: Optional[str] = None
	status: str
	note: str
	updated_at: datetime


class AttendeeListResponse(PageMeta):
	items: List[AttendeeResponse]


class InvitationResponse(BaseModel):
	event_id: UUID
	invitee_kind: str
	invitee_id: UUID
	invited_by: UUID
	invited_at: datetime
	active: bool


class InvitationListResponse(BaseModel):
	items: List[InvitationResponse]
