"""Events, RSVP, attendee and invitation API routes."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query

from alumnet.infra.auth import AuthenticatedUser, get_current_user
from alumnet.network.api._errors import to_http_error
from alumnet.network.domain.events_service import EventsService
from alumnet.network.domain.exceptions import NetworkError
from alumnet.network.domain.invitations_service import InvitationsService
from alumnet.network.domain.rsvp_service import RSVPService
from alumnet.network.schemas import dto

router = APIRouter(tags=["network:events"])
_service = EventsService()
_rsvps = RSVPService()
_invitations = InvitationsService()


@router.post("/events", response_model=dto.EventResponse, status_code=201)
async def create_event_endpoint(
	payload: dto.EventCreateRequest,
	idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.EventResponse:
	try:
		return await _service.create_event(auth_user, payload, idempotency_key=idempotency_key)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/events", response_model=dto.EventListResponse)
async def list_events_endpoint(
	search: str | None = Query(default=None, max_length=200),
	category: str | None = None,
	starts_after: datetime | None = None,
	starts_before: datetime | None = None,
	status: str | None = None,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.EventListResponse:
	try:
		return await _service.list_visible_events(
			auth_user,
			search=search,
			category=category,
			starts_after=starts_after,
			starts_before=starts_before,
			status=status,
			page=page,
			limit=limit,
		)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/events/{event_id}", response_model=dto.EventResponse)
async def get_event_endpoint(
	event_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.EventResponse:
	try:
		return await _service.get_event(auth_user, event_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.patch("/events/{event_id}", response_model=dto.EventResponse)
async def update_event_endpoint(
	event_id: UUID,
	payload: dto.EventUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.EventResponse:
	try:
		return await _service.update_event(auth_user, event_id, payload)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/events/{event_id}/attendees", response_model=dto.AttendeeListResponse)
async def list_attendees_endpoint(
	event_id: UUID,
	status: str | None = None,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.AttendeeListResponse:
	try:
		return await _service.list_attendees(auth_user, event_id, status=status, page=page, limit=limit)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.post("/events/{event_id}/rsvp", response_model=dto.RSVPResponse)
async def rsvp_endpoint(
	event_id: UUID,
	payload: dto.RSVPRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.RSVPResponse:
	try:
		return await _rsvps.rsvp(auth_user, event_id, payload)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/events/{event_id}/invitations", response_model=dto.InvitationListResponse)
async def list_invitations_endpoint(
	event_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.InvitationListResponse:
	try:
		return await _invitations.list_invitations(auth_user, event_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.post(
	"/events/{event_id}/invitations/{kind}/{invitee_id}",
	response_model=dto.InvitationResponse,
	status_code=201,
)
async def invite_endpoint(
	event_id: UUID,
	kind: str,
	invitee_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.InvitationResponse:
	try:
		return await _invitations.invite(auth_user, event_id, kind, invitee_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.delete("/events/{event_id}/invitations/{kind}/{invitee_id}", response_model=dto.InvitationResponse)
async def revoke_invitation_endpoint(
	event_id: UUID,
	kind: str,
	invitee_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.InvitationResponse:
	try:
		return await _invitations.revoke(auth_user, event_id, kind, invitee_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc
