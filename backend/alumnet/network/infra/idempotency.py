"""Idempotency helpers backed by Redis."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from hashlib import sha256
from typing import Any, Awaitable, Callable, TypeVar

from alumnet.infra.redis import redis_client
from alumnet.network.domain.exceptions import IdempotencyConflict, ValidationError
from alumnet.obs import metrics as obs_metrics
from alumnet.settings import settings

_LOG = logging.getLogger(__name__)

T = TypeVar("T")
_MAX_KEY_LENGTH = 200


@dataclass(slots=True)
class IdempotencyRecord:
	"""Serialized value stored in Redis."""

	hash: str
	payload: Any

	def to_json(self) -> str:
		return json.dumps({"hash": self.hash, "payload": self.payload})

	@staticmethod
	def from_json(raw: str) -> "IdempotencyRecord":
		data = json.loads(raw)
		return IdempotencyRecord(hash=data.get("hash", ""), payload=data.get("payload"))


def compute_hash(*, body: Any | None) -> str:
	"""Return a stable hash of the request body used for conflict detection."""
	if body is None:
		return ""
	materialised = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
	return sha256(materialised.encode()).hexdigest()


def ensure_key(key: str | None) -> str | None:
	if key is not None and len(key) > _MAX_KEY_LENGTH:
		raise ValidationError("idempotency_key_too_long")
	return key or None


async def resolve(
	*,
	key: str | None,
	scope: str,
	body_hash: str,
	producer: Callable[[], Awaitable[T]],
	serializer: Callable[[T], Any],
	deserializer: Callable[[Any], T] | None = None,
) -> T:
	"""Resolve an idempotent operation with the provided producer.

	``scope`` namespaces the key per actor and operation. A cached payload with a
	matching hash is replayed; a mismatched hash raises :class:`IdempotencyConflict`.
	"""
	if not key:
		return await producer()

	redis_key = f"network:idemp:{scope}:{key}"
	cached = await redis_client.get(redis_key)
	if cached:
		record = IdempotencyRecord.from_json(cached)
		if record.hash != body_hash:
			obs_metrics.inc_idempotency("conflict")
			raise IdempotencyConflict()
		obs_metrics.inc_idempotency("hit")
		if deserializer:
			return deserializer(record.payload)
		return record.payload  # type: ignore[return-value]

	obs_metrics.inc_idempotency("miss")
	result = await producer()
	payload = serializer(result)
	record = IdempotencyRecord(hash=body_hash, payload=payload)
	stored = await redis_client.set(redis_key, record.to_json(), ex=settings.idempotency_ttl_seconds, nx=True)
	if not stored:
		cached_after = await redis_client.get(redis_key)
		if cached_after:
			record_after = IdempotencyRecord.from_json(cached_after)
			if record_after.hash != body_hash:
				raise IdempotencyConflict()
			if deserializer:
				return deserializer(record_after.payload)
			return record_after.payload  # type: ignore[return-value]
		_LOG.warning("Idempotency key %s stored concurrently without payload", key)
	return result
