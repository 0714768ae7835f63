"""Posts, feeds, threads and likes API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query

from alumnet.infra.auth import AuthenticatedUser, get_current_user
from alumnet.network.api._errors import to_http_error
from alumnet.network.domain.exceptions import NetworkError
from alumnet.network.domain.posts_service import PostsService
from alumnet.network.schemas import dto

router = APIRouter(tags=["network:posts"])
_service = PostsService()


@router.post("/posts", response_model=dto.PostResponse, status_code=201)
async def create_post_endpoint(
	payload: dto.PostCreateRequest,
	idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostResponse:
	try:
		return await _service.create_post(auth_user, payload, idempotency_key=idempotency_key)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/posts", response_model=dto.PostListResponse)
async def list_posts_endpoint(
	search: str | None = Query(default=None, max_length=200),
	top_level_only: bool = True,
	target_kind: str | None = None,
	target_id: UUID | None = None,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostListResponse:
	try:
		return await _service.list_visible_posts(
			auth_user,
			search=search,
			top_level_only=top_level_only,
			target_kind=target_kind,
			target_id=target_id,
			page=page,
			limit=limit,
		)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/posts/inbox", response_model=dto.PostListResponse)
async def inbox_endpoint(
	search: str | None = Query(default=None, max_length=200),
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostListResponse:
	try:
		return await _service.list_inbox(auth_user, search=search, page=page, limit=limit)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/posts/conversations/{user_id}", response_model=dto.PostListResponse)
async def conversation_endpoint(
	user_id: UUID,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostListResponse:
	try:
		return await _service.list_conversation(auth_user, user_id, page=page, limit=limit)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/posts/{kind}/{target_id}/feed", response_model=dto.PostListResponse)
async def target_feed_endpoint(
	kind: str,
	target_id: UUID,
	search: str | None = Query(default=None, max_length=200),
	top_level_only: bool = True,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostListResponse:
	try:
		return await _service.list_target_posts(
			auth_user,
			kind,
			target_id,
			search=search,
			top_level_only=top_level_only,
			page=page,
			limit=limit,
		)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/posts/{post_id}", response_model=dto.PostResponse)
async def get_post_endpoint(
	post_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostResponse:
	try:
		return await _service.get_post(auth_user, post_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.patch("/posts/{post_id}", response_model=dto.PostResponse)
async def update_post_endpoint(
	post_id: UUID,
	payload: dto.PostUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.PostResponse:
	try:
		return await _service.update_post(auth_user, post_id, payload)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/posts/{post_id}/thread", response_model=dto.ThreadResponse)
async def thread_endpoint(
	post_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.ThreadResponse:
	try:
		return await _service.get_thread(auth_user, post_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.post("/posts/{post_id}/like", response_model=dto.LikeResponse)
async def toggle_like_endpoint(
	post_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.LikeResponse:
	try:
		return await _service.toggle_like(auth_user, post_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc
