import json
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from fakeredis import FakeAsyncRedis
from fastapi import Request
from fastapi.responses import JSONResponse
from redis.exceptions import ConnectionError as RedisConnectionError

from recipebook.errors import Conflict
from recipebook.infra.idempotency import (
    idempotency_clear_key,
    idempotency_precheck,
    idempotency_store_result,
)
from recipebook.models import Recipe
from conftest import login_headers, recipe_payload, register


# --- Mocking Redis ---

@pytest.fixture
def fake_redis():
    return FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def patch_redis_client(fake_redis):
    with patch("recipebook.infra.idempotency.get_redis", return_value=fake_redis):
        yield


def _request(idem_key, body=b'{"name": "Soup"}'):
    req = AsyncMock(spec=Request)
    req.headers = {"Idempotency-Key": idem_key} if idem_key else {}
    req.method = "POST"
    req.url.path = "/api/recipes"
    req.body = AsyncMock(return_value=body)
    return req


# --- Unit Tests for Logic ---

@pytest.mark.asyncio
async def test_precheck_without_header_skips_redis(fake_redis):
    get_redis = AsyncMock(return_value=fake_redis)
    with patch("recipebook.infra.idempotency.get_redis", get_redis):
        res = await idempotency_precheck(_request(None), subject=1, route_key="test")
    assert res is None
    get_redis.assert_not_called()


@pytest.mark.asyncio
async def test_idempotency_flow(fake_redis, patch_redis_client):
    idem_key = str(uuid.uuid4())
    req = _request(idem_key)

    # 1. First call -> returns key to proceed
    res = await idempotency_precheck(req, subject=7, route_key="recipe_create")
    assert isinstance(res, tuple)
    rkey, rhash = res
    assert rkey == f"recipebook:idemp:7:recipe_create:{idem_key}"

    data = json.loads(await fake_redis.get(rkey))
    assert data["state"] == "processing"

    # 2. Second concurrent call -> 409
    with pytest.raises(Conflict):
        await idempotency_precheck(req, subject=7, route_key="recipe_create")

    # 3. Store result
    await idempotency_store_result(rkey, rhash, status=201, body={"id": 3})
    data = json.loads(await fake_redis.get(rkey))
    assert data["state"] == "done"
    assert data["status"] == 201

    # 4. Third call -> returns cached response
    res2 = await idempotency_precheck(req, subject=7, route_key="recipe_create")
    assert isinstance(res2, JSONResponse)
    assert json.loads(res2.body) == {"id": 3}
    assert res2.status_code == 201


@pytest.mark.asyncio
async def test_key_reused_with_different_payload(patch_redis_client):
    idem_key = str(uuid.uuid4())
    rkey, rhash = await idempotency_precheck(_request(idem_key), subject=1, route_key="r")
    await idempotency_store_result(rkey, rhash, status=201, body={})

    with pytest.raises(Conflict) as exc:
        await idempotency_precheck(_request(idem_key, body=b'{"name": "Stew"}'), subject=1, route_key="r")
    assert "different request payload" in exc.value.message


@pytest.mark.asyncio
async def test_keys_are_scoped_per_subject(patch_redis_client):
    idem_key = str(uuid.uuid4())
    first = await idempotency_precheck(_request(idem_key), subject=1, route_key="r")
    second = await idempotency_precheck(_request(idem_key), subject=2, route_key="r")
    assert isinstance(first, tuple) and isinstance(second, tuple)
    assert first[0] != second[0]


@pytest.mark.asyncio
async def test_clear_key_allows_retry(fake_redis, patch_redis_client):
    idem_key = str(uuid.uuid4())
    rkey, _ = await idempotency_precheck(_request(idem_key), subject=1, route_key="r")
    await idempotency_clear_key(rkey)
    assert await fake_redis.get(rkey) is None
    assert isinstance(await idempotency_precheck(_request(idem_key), subject=1, route_key="r"), tuple)


# --- Integration Test through the API ---

def test_recipe_create_idempotency(client, db_session):
    """Calling create twice with one key stores one recipe."""
    register(client, "alice")
    headers = login_headers(client, "alice")
    headers["Idempotency-Key"] = str(uuid.uuid4())
    payload = recipe_payload()

    resp1 = client.post("/api/recipes", json=payload, headers=headers)
    assert resp1.status_code == 201, resp1.text

    resp2 = client.post("/api/recipes", json=payload, headers=headers)
    assert resp2.status_code == 201, resp2.text
    assert resp1.json()["id"] == resp2.json()["id"]

    assert db_session.query(Recipe).count() == 1


def test_recipe_create_without_key_is_not_deduplicated(client, db_session):
    register(client, "alice")
    headers = login_headers(client, "alice")

    assert client.post("/api/recipes", json=recipe_payload(), headers=headers).status_code == 201
    assert client.post("/api/recipes", json=recipe_payload(), headers=headers).status_code == 201
    assert db_session.query(Recipe).count() == 2


@pytest.mark.asyncio
async def test_clear_key_swallows_redis_errors():
    broken = AsyncMock()
    broken.delete.side_effect = RedisConnectionError("redis down")
    with patch("recipebook.infra.idempotency.get_redis", return_value=broken):
        await idempotency_clear_key("recipebook:idemp:1:r:k")
    broken.delete.assert_awaited_once()


def test_lost_result_record_keeps_created_response(client, db_session):
    """The recipe is committed even if Redis fails afterwards; a retry does not duplicate it."""
    register(client, "alice")
    headers = login_headers(client, "alice")
    headers["Idempotency-Key"] = str(uuid.uuid4())

    with patch(
        "recipebook.routers.recipes.idempotency_store_result",
        AsyncMock(side_effect=ConnectionError("redis down")),
    ):
        resp1 = client.post("/api/recipes", json=recipe_payload(), headers=headers)
    assert resp1.status_code == 201, resp1.text

    # The processing marker still holds the key
    resp2 = client.post("/api/recipes", json=recipe_payload(), headers=headers)
    assert resp2.status_code == 409
    assert db_session.query(Recipe).count() == 1


def test_failed_create_reports_its_own_error_when_redis_fails(client, mock_redis):
    register(client, "alice")
    headers = login_headers(client, "alice")
    assert client.delete("/api/users/me", headers=headers).status_code == 204
    headers["Idempotency-Key"] = str(uuid.uuid4())

    with patch.object(mock_redis, "delete", AsyncMock(side_effect=RedisConnectionError("redis down"))):
        resp = client.post("/api/recipes", json=recipe_payload(), headers=headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "no_such_user"
