"""Groups and membership API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query

from alumnet.infra.auth import AuthenticatedUser, get_current_user
from alumnet.network.api._errors import to_http_error
from alumnet.network.domain.exceptions import NetworkError
from alumnet.network.domain.membership_service import MembershipService
from alumnet.network.schemas import dto

router = APIRouter(tags=["network:groups"])
_service = MembershipService()


@router.post("/groups", response_model=dto.GroupResponse, status_code=201)
async def create_group_endpoint(
	payload: dto.GroupCreateRequest,
	idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.GroupResponse:
	try:
		return await _service.create_group(auth_user, payload, idempotency_key=idempotency_key)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups", response_model=dto.GroupListResponse)
async def list_groups_endpoint(
	search: str | None = Query(default=None, max_length=200),
	category: str | None = None,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.GroupListResponse:
	try:
		return await _service.list_groups(auth_user, search=search, category=category, page=page, limit=limit)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}", response_model=dto.GroupResponse)
async def get_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.GroupResponse:
	try:
		return await _service.get_group(auth_user, group_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/join", response_model=dto.MembershipResponse)
async def join_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MembershipResponse:
	try:
		return await _service.join(auth_user, group_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/leave", response_model=dto.MembershipResponse)
async def leave_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MembershipResponse:
	try:
		return await _service.leave(auth_user, group_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}/members", response_model=dto.MemberListResponse)
async def list_members_endpoint(
	group_id: UUID,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MemberListResponse:
	try:
		return await _service.list_members(auth_user, group_id, page=page, limit=limit)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/members", response_model=dto.MembershipResponse, status_code=201)
async def add_member_endpoint(
	group_id: UUID,
	payload: dto.MemberAddRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MembershipResponse:
	try:
		return await _service.add_member(auth_user, group_id, payload)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.patch("/groups/{group_id}/members/{user_id}", response_model=dto.MembershipResponse)
async def update_member_role_endpoint(
	group_id: UUID,
	user_id: UUID,
	payload: dto.MemberRoleRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.MembershipResponse:
	try:
		return await _service.update_role(auth_user, group_id, user_id, payload)
	except NetworkError as exc:
		raise to_http_error(exc) from exc
