from fakeredis import FakeServer, aioredis as fake_aioredis
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from conftest import bearer, make_user
from redis_rate_limiter import RedisRateLimiter


def limited_app(**limits):
    app = FastAPI()
    app.add_middleware(
        RedisRateLimiter,
        redis_client=fake_aioredis.FakeRedis(server=FakeServer(), decode_responses=True),
        **limits
    )

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    @app.get("/missing")
    async def missing():
        raise HTTPException(status_code=404)

    return app


def test_ip_limit():
    with TestClient(limited_app(requests_per_minute_ip=3)) as client:
        statuses = [client.get("/ping").status_code for _ in range(4)]

    assert statuses == [200, 200, 200, 429]


def test_user_limit_applies_to_token_holder(db):
    headers = bearer(make_user(db))
    with TestClient(limited_app(requests_per_minute_ip=100, requests_per_minute_user=2)) as client:
        signed_in = [client.get("/ping", headers=headers).status_code for _ in range(3)]
        anonymous = client.get("/ping").status_code

    assert signed_in == [200, 200, 429]
    assert anonymous == 200


def test_limited_response_has_retry_after():
    with TestClient(limited_app(requests_per_minute_ip=1)) as client:
        client.get("/ping")
        response = client.get("/ping")

    assert response.status_code == 429
    assert response.headers["retry-after"] == "60"


def test_error_responses_pass_through():
    with TestClient(limited_app()) as client:
        statuses = {client.get("/missing").status_code for _ in range(12)}

    assert statuses == {404}
