"""
HTTP API tests, driven in-process through httpx.ASGITransport.
"""

import httpx
import pytest
import pytest_asyncio

LINE_WEBHOOK = "https://hooks.example.com/api/webhook/line/user-123"


@pytest_asyncio.fixture
async def api(services):
    from channelkit.api.deps import set_channel_services
    from channelkit.main import app

    set_channel_services(services)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
        yield c
    set_channel_services(None)


class TestMeta:
    @pytest.mark.asyncio
    async def test_root(self, api):
        response = await api.get("/")
        assert response.status_code == 200
        assert response.json()["platforms"] == ["LINE", "WhatsApp", "Instagram", "Facebook"]

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, api):
        response = await api.get("/", headers={"X-Request-ID": "req-1"})
        assert response.headers["X-Request-ID"] == "req-1"

    @pytest.mark.asyncio
    async def test_services_not_installed(self):
        from channelkit.api.deps import set_channel_services
        from channelkit.main import app
        set_channel_services(None)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            response = await c.get("/api/channels")
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_health_reports_credential_store(self, api):
        await api.post("/api/webhooks/line/issue")
        body = (await api.get("/health")).json()
        assert body["registry"] == "ready"
        assert body["credentials"]["schema_version"] == 2
        assert body["credentials"]["user_id_source"] == "remote"


class TestSetupApi:
    @pytest.mark.asyncio
    async def test_credentials_are_masked(self, api, line_credentials):
        response = await api.put("/api/setup/line/credentials", json={"values": line_credentials})
        assert response.status_code == 200
        fields = response.json()["fields"]
        assert fields["channelSecret"] != "line-secret-value"
        assert response.json()["present"]["channelSecret"]

        revealed = await api.get("/api/setup/LINE/credentials", params={"reveal": "true"})
        assert revealed.json()["fields"]["channelAccessToken"] == "line-access-token-value"

    @pytest.mark.asyncio
    async def test_unknown_platform(self, api):
        response = await api.get("/api/setup/telegram/wizard")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_wizard_flow(self, api, whatsapp_credentials):
        state = (await api.get("/api/setup/whatsapp/wizard")).json()
        assert state["current_step"] == 0
        assert state["step_count"] == 3

        blocked = (await api.post("/api/setup/whatsapp/wizard/advance", json={})).json()
        assert not blocked["result"]["ok"]
        assert blocked["result"]["missing_fields"] == ["businessAccountId", "phoneNumberId"]

        await api.put("/api/setup/whatsapp/credentials", json={"values": whatsapp_credentials})
        advanced = (await api.post("/api/setup/whatsapp/wizard/advance", json={"step_index": 1})).json()
        assert advanced["result"]["ok"]
        assert advanced["result"]["webhook"]["url"].endswith("/webhook/whatsapp/user-123")
        assert advanced["wizard"]["current_step"] == 2

    @pytest.mark.asyncio
    async def test_complete_setup(self, api, fake_backend, line_credentials):
        await api.put("/api/setup/line/credentials", json={"values": line_credentials})
        response = await api.post("/api/setup/line/complete", json={"name": "Main LINE"})
        assert response.status_code == 200
        body = response.json()
        assert body["created"]
        assert body["channel"]["name"] == "Main LINE"
        assert body["channel"]["webhook_url"] == LINE_WEBHOOK
        assert body["line_settings"]["ok"]
        assert body["remote"]["ok"]

        state = (await api.get("/api/setup/line/wizard")).json()
        assert state["is_complete"]
        assert state["setup_completed"]

    @pytest.mark.asyncio
    async def test_complete_setup_incomplete(self, api):
        response = await api.post("/api/setup/instagram/complete", json={})
        assert response.status_code == 422
        assert response.json()["missing_fields"] == ["businessAccountId", "pageId"]

    @pytest.mark.asyncio
    async def test_reset(self, api, line_credentials):
        await api.put("/api/setup/line/credentials", json={"values": line_credentials})
        await api.delete("/api/setup/line/credentials")
        state = (await api.get("/api/setup/line/wizard")).json()
        assert state["completed_steps"] == []

    @pytest.mark.asyncio
    async def test_complete_setup_superseded_is_conflict(self, api, services, line_credentials, monkeypatch):
        from channelkit.errors import ProbeSuperseded
        await api.put("/api/setup/line/credentials", json={"values": line_credentials})
        assert (await api.post("/api/setup/line/complete", json={})).status_code == 200

        async def superseded(channel_id, **kwargs):
            raise ProbeSuperseded(f"line:{channel_id}")

        monkeypatch.setattr(services.registry, "test_connection", superseded)
        response = await api.post("/api/setup/line/complete", json={})
        assert response.status_code == 409
        assert "superseded" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_credential_writes_leave_the_event_loop(self, api, services, line_credentials, monkeypatch):
        import threading
        loop_thread = threading.get_ident()
        seen = []
        update, reset = services.store.update, services.store.reset

        def recording_update(platform, values):
            seen.append(threading.get_ident())
            update(platform, values)

        def recording_reset(platform):
            seen.append(threading.get_ident())
            reset(platform)

        monkeypatch.setattr(services.store, "update", recording_update)
        monkeypatch.setattr(services.store, "reset", recording_reset)
        await api.put("/api/setup/line/credentials", json={"values": line_credentials})
        await api.delete("/api/setup/line/credentials")
        assert len(seen) == 2
        assert loop_thread not in seen


class TestChannelsApi:
    @pytest.mark.asyncio
    async def test_create_and_get(self, api, line_credentials):
        response = await api.post("/api/channels", json={"platform": "line", "credentials": line_credentials})
        assert response.status_code == 201
        channel = response.json()["channel"]
        assert channel["api_status"] == "已連接"
        assert channel["api_key"] != "line-access-token-value"

        fetched = await api.get(f"/api/channels/{channel['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["name"] == "LINE Channel"

    @pytest.mark.asyncio
    async def test_create_validation_error(self, api, fake_backend):
        response = await api.post("/api/channels", json={"platform": "facebook", "credentials": {"pageId": "p"}})
        assert response.status_code == 422
        assert "appId" in response.json()["missing_fields"]
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_list_filters_and_stats(self, api, fake_backend, line_credentials, whatsapp_credentials):
        await api.post("/api/channels", json={"platform": "LINE", "credentials": line_credentials})
        fake_backend.connected = False
        await api.post("/api/channels", json={"platform": "WhatsApp", "credentials": whatsapp_credentials})

        assert len((await api.get("/api/channels")).json()) == 2
        active = (await api.get("/api/channels", params={"is_active": "true"})).json()
        assert [c["platform"] for c in active] == ["LINE"]
        wa = (await api.get("/api/channels", params={"platform": "whatsapp"})).json()
        assert wa[0]["api_status"] == "連接失敗"

        stats = (await api.get("/api/channels/stats")).json()
        assert stats["total_channels"] == 2
        assert stats["active_channels"] == 1

    @pytest.mark.asyncio
    async def test_update_and_delete(self, api, line_credentials):
        created = (await api.post("/api/channels", json={"platform": "LINE", "credentials": line_credentials})).json()
        channel_id = created["channel"]["id"]

        patched = await api.patch(f"/api/channels/{channel_id}", json={"name": "Renamed"})
        assert patched.json()["channel"]["name"] == "Renamed"

        deleted = await api.delete(f"/api/channels/{channel_id}")
        assert deleted.json() == {"status": "deleted", "id": channel_id}
        assert (await api.get(f"/api/channels/{channel_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_channel(self, api):
        assert (await api.get("/api/channels/missing")).status_code == 404
        assert (await api.post("/api/channels/missing/test")).status_code == 404

    @pytest.mark.asyncio
    async def test_connection_test(self, api, fake_backend, line_credentials):
        created = (await api.post("/api/channels", json={"platform": "LINE", "credentials": line_credentials})).json()
        channel_id = created["channel"]["id"]
        fake_backend.connected = False

        response = await api.post(f"/api/channels/{channel_id}/test", json={"request_token": "t-1"})
        assert response.status_code == 200
        body = response.json()
        assert body["result"]["verified_by"] == "remote"
        assert body["channel"]["api_status"] == "連接失敗"

        cancelled = await api.post(f"/api/channels/{channel_id}/test/cancel")
        assert cancelled.json() == {"cancelled": False}

    @pytest.mark.asyncio
    async def test_sync(self, api, fake_backend):
        fake_backend.channels = [
            {"id": "r-9", "name": "Remote page", "platform": "facebook", "apiKey": "k", "isActive": True},
            {"id": "r-10", "platform": "LINE"},
        ]
        report = (await api.post("/api/channels/sync")).json()
        assert report["ok"]
        assert report["fetched"] == 2
        assert report["malformed"] == 1
        names = [c["name"] for c in (await api.get("/api/channels")).json()]
        assert names == ["Remote page"]


class TestWebhooksApi:
    @pytest.mark.asyncio
    async def test_issue(self, api):
        body = (await api.post("/api/webhooks/line/issue")).json()
        assert body["url"] == LINE_WEBHOOK
        assert body["synced"]
        assert body["reachable"] is None

    @pytest.mark.asyncio
    async def test_get_with_reachability(self, api, fake_backend):
        fake_backend.webhook_url = LINE_WEBHOOK
        body = (await api.get("/api/webhooks/line", params={"check": "true"})).json()
        assert body["url"] == LINE_WEBHOOK
        # the fake answers 404 for unknown paths, which still proves reachability
        assert body["reachable"] is True

    @pytest.mark.asyncio
    async def test_adopt_rejects_foreign_url(self, api):
        body = (await api.post(
            "/api/webhooks/instagram/adopt", json={"url": "https://elsewhere.example.org/hook"},
        )).json()
        assert body["url"] == "https://hooks.example.com/api/webhook/instagram/user-123"
