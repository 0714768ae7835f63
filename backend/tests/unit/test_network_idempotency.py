from __future__ import annotations

import pytest
import pytest_asyncio

from network_fakes import FakePool, InMemoryNetworkRepository, install_pool

from alumnet.infra.auth import AuthenticatedUser
from alumnet.network.domain.exceptions import IdempotencyConflict, ValidationError
from alumnet.network.domain.posts_service import PostsService
from alumnet.network.infra import idempotency
from alumnet.network.schemas import dto


@pytest_asyncio.fixture
async def repo(monkeypatch):
	install_pool(monkeypatch, FakePool())
	return InMemoryNetworkRepository()


@pytest.mark.asyncio
async def test_replayed_key_returns_cached_post(repo, fake_redis):
	service = PostsService(repository=repo)
	author = AuthenticatedUser(id=str(repo.add_actor("Author")))
	recipient = repo.add_actor("Recipient")
	payload = dto.PostCreateRequest(target_kind="user", target_id=recipient, body="congrats on the new job")

	first = await service.create_post(author, payload, idempotency_key="post-1")
	second = await service.create_post(author, payload, idempotency_key="post-1")

	assert second.id == first.id
	assert len(repo.posts) == 1
	assert await fake_redis.exists(f"network:idemp:{author.id}:post:post-1") == 1


@pytest.mark.asyncio
async def test_reused_key_with_different_body_conflicts(repo):
	service = PostsService(repository=repo)
	author = AuthenticatedUser(id=str(repo.add_actor("Author")))
	recipient = repo.add_actor("Recipient")

	await service.create_post(
		author,
		dto.PostCreateRequest(target_kind="user", target_id=recipient, body="first"),
		idempotency_key="post-2",
	)
	with pytest.raises(IdempotencyConflict):
		await service.create_post(
			author,
			dto.PostCreateRequest(target_kind="user", target_id=recipient, body="second"),
			idempotency_key="post-2",
		)
	assert len(repo.posts) == 1


def test_key_length_is_bounded():
	assert idempotency.ensure_key(None) is None
	assert idempotency.ensure_key("") is None
	with pytest.raises(ValidationError):
		idempotency.ensure_key("k" * 201)


def test_hash_ignores_key_order():
	assert idempotency.compute_hash(body={"a": 1, "b": 2}) == idempotency.compute_hash(body={"b": 2, "a": 1})
	assert idempotency.compute_hash(body=None) == ""
