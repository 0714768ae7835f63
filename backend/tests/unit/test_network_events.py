from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
import pytest_asyncio

from network_fakes import FakePool, InMemoryNetworkRepository, install_pool

from alumnet.infra.auth import AuthenticatedUser
from alumnet.network.domain.events_service import EventsService
from alumnet.network.domain.exceptions import (
	AlreadyInvitedError,
	CapacityExceededError,
	ConflictError,
	ForbiddenError,
	NotFoundError,
	PreconditionError,
	ValidationError,
)
from alumnet.network.domain.invitations_service import InvitationsService
from alumnet.network.domain.membership_service import MembershipService
from alumnet.network.domain.rsvp_service import RSVPService
from alumnet.network.domain.subscription_service import SubscriptionService
from alumnet.network.schemas import dto


class _World:
	def __init__(self, repo: InMemoryNetworkRepository) -> None:
		self.repo = repo
		self.events = EventsService(repository=repo)
		self.rsvps = RSVPService(repository=repo)
		self.invitations = InvitationsService(repository=repo)
		self.groups = MembershipService(repository=repo)
		self.topics = SubscriptionService(repository=repo)

	def user(self, name: str) -> AuthenticatedUser:
		return AuthenticatedUser(id=str(self.repo.add_actor(name)), display_name=name)

	async def event(self, creator: AuthenticatedUser, **overrides):
		data = dict(
			title="Homecoming",
			description="Annual homecoming dinner",
			starts_at=datetime.now(timezone.utc) + timedelta(days=7),
			location="Alumni House",
			category="social",
		)
		data.update(overrides)
		return await self.events.create_event(creator, dto.EventCreateRequest(**data))


@pytest_asyncio.fixture
async def world(monkeypatch):
	install_pool(monkeypatch, FakePool())
	return _World(InMemoryNetworkRepository())


@pytest.mark.asyncio
async def test_concurrent_going_rsvps_respect_capacity(world):
	creator = world.user("Creator")
	event = await world.event(creator, max_attendees=3)
	attendees = [world.user(f"Guest {idx}") for idx in range(8)]

	results = await asyncio.gather(
		*(world.rsvps.rsvp(user, event.id, dto.RSVPRequest(status="going")) for user in attendees),
		return_exceptions=True,
	)

	accepted = [item for item in results if isinstance(item, dto.RSVPResponse)]
	rejected = [item for item in results if isinstance(item, CapacityExceededError)]
	assert len(accepted) == 3
	assert len(rejected) == 5
	assert world.repo.events[event.id].attendee_count == 3


@pytest.mark.asyncio
async def test_rsvp_update_keeps_own_seat(world):
	creator = world.user("Creator")
	guest = world.user("Guest")
	event = await world.event(creator, max_attendees=1)

	first = await world.rsvps.rsvp(guest, event.id, dto.RSVPRequest(status="going"))
	again = await world.rsvps.rsvp(guest, event.id, dto.RSVPRequest(status="going", note="bringing slides"))
	assert first.attendee_count == 1
	assert again.attendee_count == 1
	assert again.note == "bringing slides"

	changed = await world.rsvps.rsvp(guest, event.id, dto.RSVPRequest(status="maybe"))
	assert changed.attendee_count == 0


@pytest.mark.asyncio
async def test_private_event_visible_through_topic_invitation(world):
	creator = world.user("Creator")
	follower = world.user("Follower")
	topic = await world.topics.create_topic(
		creator,
		dto.TopicCreateRequest(name="Robotics", description="Robotics alumni", category="technology"),
	)
	await world.topics.subscribe(follower, topic.id)
	event = await world.event(creator, is_private=True, invited_topics=[topic.id])

	fetched = await world.events.get_event(follower, event.id)
	assert fetched.id == event.id
	assert fetched.is_creator is False
	listing = await world.events.list_visible_events(follower)
	assert [item.id for item in listing.items] == [event.id]

	await world.topics.unsubscribe(follower, topic.id)
	with pytest.raises(ForbiddenError):
		await world.events.get_event(follower, event.id)
	assert (await world.events.list_visible_events(follower)).items == []
	with pytest.raises(ForbiddenError):
		await world.rsvps.rsvp(follower, event.id, dto.RSVPRequest(status="going"))


@pytest.mark.asyncio
async def test_private_event_group_and_direct_invitations(world):
	creator = world.user("Creator")
	member = world.user("Member")
	guest = world.user("Guest")
	outsider = world.user("Outsider")
	group = await world.groups.create_group(
		creator,
		dto.GroupCreateRequest(name="Rowing Club", description="Alumni rowers", category="sports"),
	)
	await world.groups.join(member, group.id)
	event = await world.event(creator, is_private=True, invited_groups=[group.id], invited_users=[guest.uuid])

	assert (await world.events.get_event(member, event.id)).id == event.id
	assert (await world.events.get_event(guest, event.id)).id == event.id
	with pytest.raises(ForbiddenError):
		await world.events.get_event(outsider, event.id)

	await world.invitations.revoke(creator, event.id, "user", guest.uuid)
	with pytest.raises(ForbiddenError):
		await world.events.get_event(guest, event.id)


@pytest.mark.asyncio
async def test_invitation_ledger_rules(world):
	creator = world.user("Creator")
	guest = world.user("Guest")
	stranger = world.user("Stranger")
	event = await world.event(creator, is_private=True)

	invitation = await world.invitations.invite(creator, event.id, "user", guest.uuid)
	assert invitation.active is True
	with pytest.raises(AlreadyInvitedError):
		await world.invitations.invite(creator, event.id, "user", guest.uuid)
	with pytest.raises(ForbiddenError):
		await world.invitations.invite(stranger, event.id, "user", stranger.uuid)
	with pytest.raises(NotFoundError):
		await world.invitations.invite(creator, event.id, "group", uuid4())

	revoked = await world.invitations.revoke(creator, event.id, "user", guest.uuid)
	assert revoked.active is False
	assert (event.id, "user", guest.uuid) in world.repo.invitations
	with pytest.raises(NotFoundError):
		await world.invitations.revoke(creator, event.id, "user", guest.uuid)

	reinvited = await world.invitations.invite(creator, event.id, "user", guest.uuid)
	assert reinvited.active is True
	listing = await world.invitations.list_invitations(creator, event.id)
	assert [item.invitee_id for item in listing.items] == [guest.uuid]


@pytest.mark.asyncio
async def test_closed_events_reject_rsvps(world):
	creator = world.user("Creator")
	guest = world.user("Guest")
	event = await world.event(creator)
	await world.events.update_event(creator, event.id, dto.EventUpdateRequest(status="cancelled"))

	with pytest.raises(PreconditionError) as excinfo:
		await world.rsvps.rsvp(guest, event.id, dto.RSVPRequest(status="going"))
	assert excinfo.value.detail == "event_cancelled"


@pytest.mark.asyncio
async def test_update_event_is_creator_only_and_keeps_capacity(world):
	creator = world.user("Creator")
	guests = [world.user(f"Guest {idx}") for idx in range(2)]
	event = await world.event(creator, max_attendees=5)
	for guest in guests:
		await world.rsvps.rsvp(guest, event.id, dto.RSVPRequest(status="going"))

	with pytest.raises(ForbiddenError):
		await world.events.update_event(guests[0], event.id, dto.EventUpdateRequest(title="Mine now"))
	with pytest.raises(ConflictError):
		await world.events.update_event(creator, event.id, dto.EventUpdateRequest(max_attendees=1))

	updated = await world.events.update_event(creator, event.id, dto.EventUpdateRequest(max_attendees=2))
	assert updated.max_attendees == 2


@pytest.mark.asyncio
async def test_event_detail_reports_rsvp_stats(world):
	creator = world.user("Creator")
	going = world.user("Going")
	maybe = world.user("Maybe")
	event = await world.event(creator)
	await world.rsvps.rsvp(going, event.id, dto.RSVPRequest(status="going"))
	await world.rsvps.rsvp(maybe, event.id, dto.RSVPRequest(status="maybe"))

	detail = await world.events.get_event(going, event.id)
	assert detail.user_rsvp == "going"
	assert detail.rsvp_stats == dto.RSVPStats(going=1, maybe=1, not_going=0)
	assert detail.attendee_count == 1

	attendees = await world.events.list_attendees(creator, event.id, status="going")
	assert [item.user_id for item in attendees.items] == [going.uuid]


@pytest.mark.asyncio
async def test_private_event_opens_after_subscribing_to_invited_topic(world):
	creator = world.user("Creator")
	newcomer = world.user("Newcomer")
	topic = await world.topics.create_topic(
		creator,
		dto.TopicCreateRequest(name="Biotech", description="Life sciences alumni", category="technology"),
	)
	event = await world.event(creator, is_private=True, invited_topics=[topic.id])

	with pytest.raises(ForbiddenError):
		await world.events.get_event(newcomer, event.id)
	with pytest.raises(ForbiddenError):
		await world.rsvps.rsvp(newcomer, event.id, dto.RSVPRequest(status="going"))

	await world.topics.subscribe(newcomer, topic.id)
	assert (await world.events.get_event(newcomer, event.id)).id == event.id
	rsvp = await world.rsvps.rsvp(newcomer, event.id, dto.RSVPRequest(status="going"))
	assert rsvp.status == "going"


@pytest.mark.asyncio
async def test_update_event_rejects_null_for_required_fields(world):
	creator = world.user("Creator")
	event = await world.event(creator, ends_at=datetime.now(timezone.utc) + timedelta(days=8), max_attendees=10)

	for field in ("title", "description", "starts_at", "location", "is_virtual", "category", "status"):
		with pytest.raises(ValidationError) as excinfo:
			await world.events.update_event(creator, event.id, dto.EventUpdateRequest(**{field: None}))
		assert excinfo.value.detail == f"{field}_required"
	assert world.repo.events[event.id].title == "Homecoming"

	cleared = await world.events.update_event(
		creator,
		event.id,
		dto.EventUpdateRequest(ends_at=None, max_attendees=None, registration_deadline=None),
	)
	assert cleared.ends_at is None
	assert cleared.max_attendees is None


@pytest.mark.asyncio
async def test_event_filters_apply_on_top_of_visibility(world):
	creator = world.user("Creator")
	viewer = world.user("Viewer")
	now = datetime.now(timezone.utc)
	gala = await world.event(creator, title="Spring Gala", category="social", starts_at=now + timedelta(days=10))
	talk = await world.event(creator, title="Career Talk", category="career", starts_at=now + timedelta(days=20))
	await world.event(creator, title="Board Gala", category="social", is_private=True, starts_at=now + timedelta(days=12))
	cancelled = await world.event(creator, title="Winter Gala", category="social", starts_at=now + timedelta(days=30))
	await world.events.update_event(creator, cancelled.id, dto.EventUpdateRequest(status="cancelled"))

	by_search = await world.events.list_visible_events(viewer, search="gala")
	assert [item.id for item in by_search.items] == [gala.id, cancelled.id]

	by_category = await world.events.list_visible_events(viewer, category="career")
	assert [item.id for item in by_category.items] == [talk.id]

	window = await world.events.list_visible_events(
		viewer,
		starts_after=now + timedelta(days=5),
		starts_before=now + timedelta(days=25),
	)
	assert [item.id for item in window.items] == [gala.id, talk.id]

	active_galas = await world.events.list_visible_events(viewer, search="gala", status="active")
	assert [item.id for item in active_galas.items] == [gala.id]

	with pytest.raises(ValidationError):
		await world.events.list_visible_events(viewer, status="postponed")
