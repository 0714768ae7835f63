"""Topics and the subscription ledger."""

from __future__ import annotations

import logging
from uuid import UUID

from alumnet.infra.auth import AuthenticatedUser
from alumnet.infra.postgres import get_pool
from alumnet.network.domain import models, policies, repo as repo_module
from alumnet.network.domain.exceptions import NotFoundError, PreconditionError
from alumnet.network.infra import idempotency
from alumnet.network.schemas import dto
from alumnet.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class SubscriptionService:
	"""Topic lifecycle plus subscribe/unsubscribe, mirroring the membership ledger without roles."""

	def __init__(self, repository: repo_module.NetworkRepository | None = None) -> None:
		self.repo = repository or repo_module.NetworkRepository()

	@staticmethod
	def _topic_response(topic: models.Topic, *, subscribed: bool) -> dto.TopicResponse:
		return dto.TopicResponse(
			id=topic.id,
			name=topic.name,
			description=topic.description,
			category=topic.category,
			tags=topic.tags,
			color=topic.color,
			creator_id=topic.creator_id,
			subscriber_count=topic.subscriber_count,
			created_at=topic.created_at,
			updated_at=topic.updated_at,
			is_subscribed=subscribed,
		)

	@staticmethod
	def _subscription_response(
		subscription: models.TopicSubscription,
		*,
		subscriber_count: int | None = None,
	) -> dto.SubscriptionResponse:
		return dto.SubscriptionResponse(
			topic_id=subscription.topic_id,
			user_id=subscription.user_id,
			active=subscription.active,
			notifications_enabled=subscription.notifications_enabled,
			subscribed_at=subscription.subscribed_at,
			display_name=subscription.display_name,
			subscriber_count=subscriber_count,
		)

	async def _lock_topic(self, conn, topic_id: UUID) -> models.Topic:
		topic = await self.repo.get_topic(topic_id, conn=conn, for_update=True)
		if topic is None:
			raise NotFoundError("topic_not_found")
		return topic

	async def create_topic(
		self,
		user: AuthenticatedUser,
		payload: dto.TopicCreateRequest,
		*,
		idempotency_key: str | None = None,
	) -> dto.TopicResponse:
		policies.ensure_category(payload.category, models.TOPIC_CATEGORIES)
		key = idempotency.ensure_key(idempotency_key)
		body_hash = idempotency.compute_hash(body=payload.model_dump(mode="json"))

		async def _producer() -> dto.TopicResponse:
			pool = await get_pool()
			async with pool.acquire() as conn:
				async with conn.transaction():
					topic = await self.repo.create_topic(
						conn=conn,
						name=payload.name.strip(),
						description=payload.description,
						category=payload.category,
						tags=payload.tags,
						color=payload.color,
						creator_id=user.uuid,
					)
					await self.repo.activate_subscription(conn=conn, topic_id=topic.id, user_id=user.uuid)
					subscriber_count = await self.repo.recount_subscribers(topic.id, conn=conn)
			obs_metrics.inc_subscription("created")
			_LOG.info("topic.created", extra={"topic_id": str(topic.id)})
			return self._topic_response(
				topic.model_copy(update={"subscriber_count": subscriber_count}),
				subscribed=True,
			)

		return await idempotency.resolve(
			key=key,
			scope=f"{user.id}:topic",
			body_hash=body_hash,
			producer=_producer,
			serializer=lambda response: response.model_dump(mode="json"),
			deserializer=lambda raw: dto.TopicResponse.model_validate(raw),
		)

	async def get_topic(self, user: AuthenticatedUser, topic_id: UUID) -> dto.TopicResponse:
		topic = await self.repo.get_topic(topic_id)
		if topic is None:
			raise NotFoundError("topic_not_found")
		subscribed = await self.repo.is_active_subscriber(topic_id, user.uuid)
		return self._topic_response(topic, subscribed=subscribed)

	async def list_topics(
		self,
		user: AuthenticatedUser,
		*,
		search: str | None = None,
		category: str | None = None,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.TopicListResponse:
		if category:
			policies.ensure_category(category, models.TOPIC_CATEGORIES)
		page, limit, offset = policies.resolve_page(page, limit)
		rows, has_more = await self.repo.list_topics(
			viewer_id=user.uuid,
			search=search,
			category=category,
			limit=limit,
			offset=offset,
		)
		return dto.TopicListResponse(
			items=[self._topic_response(topic, subscribed=subscribed) for topic, subscribed in rows],
			page=page,
			limit=limit,
			has_more=has_more,
		)

	async def list_subscribers(
		self,
		user: AuthenticatedUser,
		topic_id: UUID,
		*,
		page: int | None = None,
		limit: int | None = None,
	) -> dto.SubscriberListResponse:
		if await self.repo.get_topic(topic_id) is None:
			raise NotFoundError("topic_not_found")
		page, limit, offset = policies.resolve_page(page, limit)
		subscribers, has_more = await self.repo.list_subscribers(topic_id, limit=limit, offset=offset)
		return dto.SubscriberListResponse(
			items=[self._subscription_response(item) for item in subscribers],
			page=page,
			limit=limit,
			has_more=has_more,
		)

	async def subscribe(self, user: AuthenticatedUser, topic_id: UUID) -> dto.SubscriptionResponse:
		"""Idempotent: an active subscription is returned unchanged."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				topic = await self._lock_topic(conn, topic_id)
				existing = await self.repo.get_subscription(topic_id, user.uuid, conn=conn)
				if existing is not None and existing.active:
					return self._subscription_response(existing, subscriber_count=topic.subscriber_count)
				subscription = await self.repo.activate_subscription(conn=conn, topic_id=topic_id, user_id=user.uuid)
				subscriber_count = await self.repo.recount_subscribers(topic_id, conn=conn)
		action = "reactivated" if existing is not None else "subscribed"
		obs_metrics.inc_subscription(action)
		_LOG.info("subscription.subscribe", extra={"topic_id": str(topic_id), "action": action})
		return self._subscription_response(subscription, subscriber_count=subscriber_count)

	async def unsubscribe(self, user: AuthenticatedUser, topic_id: UUID) -> dto.SubscriptionResponse:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._lock_topic(conn, topic_id)
				subscription = await self.repo.deactivate_subscription(conn=conn, topic_id=topic_id, user_id=user.uuid)
				if subscription is None:
					raise PreconditionError("not_subscribed")
				subscriber_count = await self.repo.recount_subscribers(topic_id, conn=conn)
		obs_metrics.inc_subscription("unsubscribed")
		_LOG.info("subscription.unsubscribe", extra={"topic_id": str(topic_id)})
		return self._subscription_response(subscription, subscriber_count=subscriber_count)

	async def set_notifications(
		self,
		user: AuthenticatedUser,
		topic_id: UUID,
		payload: dto.NotificationPreferenceRequest,
	) -> dto.SubscriptionResponse:
		subscription = await self.repo.set_subscription_notifications(
			topic_id=topic_id,
			user_id=user.uuid,
			enabled=payload.notifications_enabled,
		)
		if subscription is None:
			raise PreconditionError("not_subscribed")
		return self._subscription_response(subscription)
