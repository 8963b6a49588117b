"""End-to-end API tests: management endpoints, inbound receiver and replay."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from fanout.config import settings
from fanout.main import app
from fanout.middleware import RateLimitMiddleware
from fanout.db import Base, get_db

from downstream import Downstream


TEST_DB_URL = "sqlite+aiosqlite:///test_e2e.db"

A = "http://a.test/hook"
B = "http://b.test/hook"


@pytest.fixture
async def test_db():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
    app.dependency_overrides.clear()


@pytest.fixture
def downstream(monkeypatch):
    d = Downstream()
    monkeypatch.setattr("fanout.services.fanout.build_client", d.client)
    monkeypatch.setattr("fanout.services.replay.build_client", d.client)
    return d


@pytest.fixture
async def client(test_db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_health(self, client):
        r = await client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        r = await client.get("/metrics")
        assert r.status_code == 200
        assert "fanout_http_requests_total" in r.text


class TestEndpointConfig:
    @pytest.mark.asyncio
    async def test_create_and_list(self, client):
        r = await client.post("/config/endpoints", json={"url": A})
        assert r.status_code == 201
        first = r.json()["endpoint"]
        assert first["is_primary"] is False
        assert first["is_active"] is True

        r = await client.post("/config/endpoints", json={
            "url": B, "isPrimary": True, "headers": {"X-Token": "t"},
        })
        assert r.status_code == 201
        second = r.json()["endpoint"]
        assert second["headers"] == {"X-Token": "t"}

        r = await client.get("/config/endpoints")
        assert r.status_code == 200
        listed = r.json()["endpoints"]
        assert [e["id"] for e in listed] == [second["id"], first["id"]]

    @pytest.mark.asyncio
    async def test_create_missing_url(self, client):
        r = await client.post("/config/endpoints", json={"isPrimary": True})
        assert r.status_code == 400
        assert "URL is required" in r.json()["detail"]

    @pytest.mark.asyncio
    async def test_patch_primary_swaps(self, client):
        a = (await client.post("/config/endpoints", json={"url": A, "is_primary": True})).json()["endpoint"]
        b = (await client.post("/config/endpoints", json={"url": B})).json()["endpoint"]

        r = await client.patch(f"/config/endpoints/{b['id']}", json={"isPrimary": True})
        assert r.status_code == 200
        assert r.json()["endpoint"]["is_primary"] is True
        assert r.json()["endpoint"]["url"] == B

        listed = (await client.get("/config/endpoints")).json()["endpoints"]
        flags = {e["id"]: e["is_primary"] for e in listed}
        assert flags == {a["id"]: False, b["id"]: True}

    @pytest.mark.asyncio
    async def test_patch_and_delete_unknown(self, client):
        r = await client.patch("/config/endpoints/999", json={"isActive": False})
        assert r.status_code == 404
        r = await client.delete("/config/endpoints/999")
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, client):
        ep = (await client.post("/config/endpoints", json={"url": A})).json()["endpoint"]
        r = await client.delete(f"/config/endpoints/{ep['id']}")
        assert r.status_code == 200
        assert (await client.get("/config/endpoints")).json()["endpoints"] == []


class TestInboundWebhook:
    @pytest.mark.asyncio
    async def test_primary_and_secondary_scenario(self, client, downstream):
        downstream.respond(A, 200, '{"from":"a"}', {"content-type": "application/json"})
        downstream.respond(B, 200, "b")
        await client.post("/config/endpoints", json={"url": A, "isPrimary": True})
        await client.post("/config/endpoints", json={"url": B})

        r = await client.post(settings.webhook_path, content=b'{"x":1}', headers={
            "content-type": "application/json",
        })
        assert r.status_code == 200
        assert r.content == b'{"from":"a"}'

        webhooks = (await client.get("/webhooks")).json()["webhooks"]
        assert len(webhooks) == 1
        assert webhooks[0]["processing_status"] == "completed"
        webhook_id = webhooks[0]["id"]

        logs = (await client.get("/logs", params={"webhookId": webhook_id, "direction": "outgoing"})).json()["logs"]
        assert sorted(entry["endpoint_url"] for entry in logs) == [A, B]

        for request in downstream.requests:
            assert request.content == b'{"x":1}'

    @pytest.mark.asyncio
    async def test_no_endpoints(self, client, downstream):
        r = await client.post(settings.webhook_path, json={"x": 1})
        assert r.status_code == 500

        [webhook] = (await client.get("/webhooks")).json()["webhooks"]
        assert webhook["processing_status"] == "failed"
        logs = (await client.get("/logs", params={"direction": "outgoing"})).json()["logs"]
        assert logs == []

    @pytest.mark.asyncio
    async def test_any_method_accepted(self, client, downstream):
        downstream.respond(A, 200, "pong")
        await client.post("/config/endpoints", json={"url": A, "isPrimary": True})

        r = await client.get(settings.webhook_path)
        assert r.status_code == 200
        assert r.text == "pong"
        assert downstream.requests[0].method == "GET"

    @pytest.mark.asyncio
    async def test_webhook_detail_includes_logs(self, client, downstream):
        downstream.respond(A, 200)
        await client.post("/config/endpoints", json={"url": A})
        await client.post(settings.webhook_path, content=b"hello")

        [webhook] = (await client.get("/webhooks")).json()["webhooks"]
        r = await client.get(f"/webhooks/{webhook['id']}")
        assert r.status_code == 200
        assert sorted(entry["direction"] for entry in r.json()["logs"]) == ["incoming", "outgoing"]

        r = await client.get("/webhooks/missing")
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_primary_set_cookie_headers_not_merged(self, client, downstream):
        downstream.respond(A, 200, "ok", [("set-cookie", "a=1"), ("set-cookie", "b=2")])
        await client.post("/config/endpoints", json={"url": A, "isPrimary": True})

        r = await client.post(settings.webhook_path, content=b"x")
        assert r.headers.get_list("set-cookie") == ["a=1", "b=2"]

    @pytest.mark.asyncio
    async def test_list_total_counts_all_records(self, client, downstream):
        downstream.respond(A, 200)
        await client.post("/config/endpoints", json={"url": A})
        for i in range(3):
            await client.post(settings.webhook_path, content=str(i).encode())

        page = (await client.get("/webhooks", params={"limit": 2})).json()
        assert len(page["webhooks"]) == 2
        assert page["total"] == 3

        page = (await client.get("/webhooks", params={"status": "failed"})).json()
        assert page["total"] == 0


def _rate_limiter() -> RateLimitMiddleware:
    layer = app.middleware_stack
    while not isinstance(layer, RateLimitMiddleware):
        layer = layer.app
    return layer


class TestInboundRateLimit:
    @pytest.mark.asyncio
    async def test_inbound_calls_over_limit_all_stored(self, client, downstream, monkeypatch):
        downstream.respond(A, 200)
        await client.post("/config/endpoints", json={"url": A})

        limiter = _rate_limiter()
        monkeypatch.setattr(limiter, "rpm", 2)
        monkeypatch.setattr(limiter, "hits", {})

        statuses = [
            (await client.post(settings.webhook_path, content=str(i).encode())).status_code
            for i in range(5)
        ]
        assert statuses == [200] * 5

        page = (await client.get("/webhooks")).json()
        assert page["total"] == 5

        # Management routes still draw on the same budget
        await client.get("/webhooks")
        r = await client.get("/webhooks")
        assert r.status_code == 429


class TestLogsAndClear:
    @pytest.mark.asyncio
    async def test_filter_by_endpoint_and_clear(self, client, downstream):
        downstream.respond(A, 200)
        downstream.respond(B, 200)
        a = (await client.post("/config/endpoints", json={"url": A})).json()["endpoint"]
        await client.post("/config/endpoints", json={"url": B})
        await client.post(settings.webhook_path, content=b"1")
        await client.post(settings.webhook_path, content=b"2")

        by_id = (await client.get("/logs", params={"endpointId": a["id"]})).json()["logs"]
        assert len(by_id) == 2
        assert {entry["endpoint_url"] for entry in by_id} == {A}

        by_url = (await client.get("/logs", params={"endpoint": B})).json()["logs"]
        assert len(by_url) == 2

        page = (await client.get("/logs", params={"limit": 2, "skip": 1})).json()
        assert len(page["logs"]) == 2
        assert page["skip"] == 1

        r = await client.delete("/logs")
        assert r.status_code == 200
        assert r.json()["deleted"] == 6
        assert (await client.get("/logs")).json()["logs"] == []

        r = await client.delete("/webhooks")
        assert r.json()["deleted"] == 2
        assert (await client.get("/webhooks")).json()["webhooks"] == []


class TestReplayApi:
    @pytest.mark.asyncio
    async def test_replay_by_id(self, client, downstream):
        downstream.respond(A, 200)
        await client.post("/config/endpoints", json={"url": A})
        await client.post(settings.webhook_path, content=b"payload")
        [original] = (await client.get("/webhooks")).json()["webhooks"]

        r = await client.post(f"/replay/{original['id']}")
        assert r.status_code == 200
        result = r.json()["result"]
        assert result["original_webhook_id"] == original["id"]
        assert result["new_webhook_id"] != original["id"]
        assert result["status"] == "completed"

        webhooks = (await client.get("/webhooks")).json()["webhooks"]
        assert len(webhooks) == 2
        assert [r.content for r in downstream.requests] == [b"payload", b"payload"]

    @pytest.mark.asyncio
    async def test_replay_unknown_webhook_or_endpoint(self, client, downstream):
        downstream.respond(A, 200)
        await client.post("/config/endpoints", json={"url": A})
        r = await client.post("/replay/nope")
        assert r.status_code == 404

        await client.post(settings.webhook_path, content=b"x")
        [original] = (await client.get("/webhooks")).json()["webhooks"]
        r = await client.post(f"/replay/{original['id']}", json={"endpointId": 999})
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_replay_range(self, client, downstream):
        downstream.respond(A, 200)
        await client.post("/config/endpoints", json={"url": A})
        await client.post(settings.webhook_path, content=b"one")
        await client.post(settings.webhook_path, content=b"two")

        now = datetime.now(timezone.utc)
        r = await client.post("/replay", json={
            "startDate": (now - timedelta(minutes=5)).isoformat(),
            "endDate": (now + timedelta(minutes=5)).isoformat(),
        })
        assert r.status_code == 200
        data = r.json()
        assert data["replayed"] == 2
        assert data["completed"] == 2
        assert [item["status"] for item in data["results"]] == ["completed", "completed"]

    @pytest.mark.asyncio
    async def test_replay_range_missing_dates(self, client):
        r = await client.post("/replay", json={"startDate": "2026-01-01T00:00:00Z"})
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_replay_range_empty(self, client):
        r = await client.post("/replay", json={
            "startDate": "2020-01-01T00:00:00Z", "endDate": "2020-01-02T00:00:00Z",
        })
        assert r.status_code == 200
        assert r.json()["replayed"] == 0


class TestManagementAuth:
    @pytest.fixture
    def token(self, monkeypatch):
        monkeypatch.setattr(settings, "management_api_tokens", "secret-token,other-token")
        return "secret-token"

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, client, token):
        r = await client.get("/config/endpoints")
        assert r.status_code == 401
        r = await client.get("/logs")
        assert r.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, client, token):
        r = await client.get("/webhooks", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401
        r = await client.get("/webhooks", headers={"Authorization": f"Basic {token}"})
        assert r.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_token_accepted(self, client, token):
        r = await client.get("/config/endpoints", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 200
        r = await client.get("/logs", headers={"Authorization": "Bearer other-token"})
        assert r.status_code == 200

    @pytest.mark.asyncio
    async def test_inbound_path_not_gated(self, client, token, downstream):
        downstream.respond(A, 200)
        await client.post(
            "/config/endpoints", json={"url": A},
            headers={"Authorization": f"Bearer {token}"},
        )
        r = await client.post(settings.webhook_path, content=b"x")
        assert r.status_code == 200
