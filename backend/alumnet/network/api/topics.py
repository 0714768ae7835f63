"""Topics and subscription API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query

from alumnet.infra.auth import AuthenticatedUser, get_current_user
from alumnet.network.api._errors import to_http_error
from alumnet.network.domain.exceptions import NetworkError
from alumnet.network.domain.subscription_service import SubscriptionService
from alumnet.network.schemas import dto

router = APIRouter(tags=["network:topics"])
_service = SubscriptionService()


@router.post("/topics", response_model=dto.TopicResponse, status_code=201)
async def create_topic_endpoint(
	payload: dto.TopicCreateRequest,
	idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TopicResponse:
	try:
		return await _service.create_topic(auth_user, payload, idempotency_key=idempotency_key)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/topics", response_model=dto.TopicListResponse)
async def list_topics_endpoint(
	search: str | None = Query(default=None, max_length=200),
	category: str | None = None,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TopicListResponse:
	try:
		return await _service.list_topics(auth_user, search=search, category=category, page=page, limit=limit)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/topics/{topic_id}", response_model=dto.TopicResponse)
async def get_topic_endpoint(
	topic_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.TopicResponse:
	try:
		return await _service.get_topic(auth_user, topic_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.post("/topics/{topic_id}/subscribe", response_model=dto.SubscriptionResponse)
async def subscribe_endpoint(
	topic_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.SubscriptionResponse:
	try:
		return await _service.subscribe(auth_user, topic_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.delete("/topics/{topic_id}/subscribe", response_model=dto.SubscriptionResponse)
async def unsubscribe_endpoint(
	topic_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.SubscriptionResponse:
	try:
		return await _service.unsubscribe(auth_user, topic_id)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.get("/topics/{topic_id}/subscribers", response_model=dto.SubscriberListResponse)
async def list_subscribers_endpoint(
	topic_id: UUID,
	page: int = Query(default=1, ge=1),
	limit: int | None = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.SubscriberListResponse:
	try:
		return await _service.list_subscribers(auth_user, topic_id, page=page, limit=limit)
	except NetworkError as exc:
		raise to_http_error(exc) from exc


@router.patch("/topics/{topic_id}/subscription", response_model=dto.SubscriptionResponse)
async def update_subscription_endpoint(
	topic_id: UUID,
	payload: dto.NotificationPreferenceRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.SubscriptionResponse:
	try:
		return await _service.set_notifications(auth_user, topic_id, payload)
	except NetworkError as exc:
		raise to_http_error(exc) from exc
