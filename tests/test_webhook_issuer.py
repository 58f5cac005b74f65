"""
Webhook URL issuance and user identity resolution tests.
"""

import asyncio

import pytest

from channelkit.channels.platforms import Platform

BASE = "https://hooks.example.com/api"
LINE_URL = "https://hooks.example.com/api/webhook/line/user-123"


def _issuer(store, client=None, base=BASE):
    from channelkit.channels.identity import UserIdentityResolver
    from channelkit.channels.webhook_issuer import WebhookURLIssuer
    identity = UserIdentityResolver(store, client)
    return WebhookURLIssuer(store, identity, base_url=base, client=client)


# ── URL shape ───────────────────────────────────────────

class TestBuildUrl:
    def test_exact_shape(self, store):
        issuer = _issuer(store)
        assert issuer.build_url(Platform.LINE, "user-123") == LINE_URL
        assert issuer.build_url("facebook", "abc") == "https://hooks.example.com/api/webhook/facebook/abc"

    def test_deterministic(self, store):
        issuer = _issuer(store)
        urls = {issuer.build_url(Platform.WHATSAPP, "u1") for _ in range(5)}
        assert len(urls) == 1

    def test_base_normalisation(self, store):
        for base in ("https://hooks.example.com", "https://hooks.example.com/",
                     "https://hooks.example.com/api", "https://hooks.example.com/api/"):
            assert _issuer(store, base=base).build_url(Platform.LINE, "user-123") == LINE_URL

    def test_base_with_path_prefix(self, store):
        issuer = _issuer(store, base="https://edge.example.com/echochat/api")
        url = issuer.build_url(Platform.INSTAGRAM, "u1")
        assert url == "https://edge.example.com/echochat/api/webhook/instagram/u1"
        assert issuer.is_well_formed(url, Platform.INSTAGRAM, "u1")


class TestWellFormed:
    @pytest.mark.parametrize("url", [
        "https://evil.example.com/api/webhook/line/user-123",
        "http://hooks.example.com/api/webhook/line/user-123",
        "https://hooks.example.com/api/webhook/line/user-123?token=x",
        "https://hooks.example.com/api/webhook/line/user-123#frag",
        "https://hooks.example.com/api/webhook/telegram/user-123",
        "https://hooks.example.com/api/webhook/line/user 123",
        "https://hooks.example.com/api/webhook/line/user-123/extra",
        "https://hooks.example.com/webhook/line/user-123",
        "https://hooks.example.com/api/webhook/LINE/user-123",
        "",
        None,
    ])
    def test_rejects(self, store, url):
        assert not _issuer(store).is_well_formed(url)

    def test_accepts_own_url(self, store):
        assert _issuer(store).is_well_formed(LINE_URL)
        assert _issuer(store).is_well_formed(LINE_URL, Platform.LINE, "user-123")

    def test_platform_and_user_must_match(self, store):
        issuer = _issuer(store)
        assert not issuer.is_well_formed(LINE_URL, Platform.WHATSAPP)
        assert not issuer.is_well_formed(LINE_URL, Platform.LINE, "someone-else")


# ── Issuance ────────────────────────────────────────────

class TestIssue:
    @pytest.mark.asyncio
    async def test_issue_is_idempotent(self, store, fake_backend, client):
        issuer = _issuer(store, client)
        first = await issuer.issue(Platform.LINE)
        second = await issuer.issue(Platform.LINE)
        assert first.url == second.url == LINE_URL
        assert first.issued_at == second.issued_at
        assert second.synced
        assert fake_backend.count("POST", "/api/user/webhook-url") == 1
        assert fake_backend.webhook_url == LINE_URL

    @pytest.mark.asyncio
    async def test_issue_fills_webhook_field(self, store, client):
        issuer = _issuer(store, client)
        await issuer.issue(Platform.LINE)
        assert store.get(Platform.LINE, "webhookUrl") == LINE_URL
        assert store.backend.get("userWebhookURL") == LINE_URL

    @pytest.mark.asyncio
    async def test_issue_replaces_malformed_field(self, store, client):
        store.set(Platform.LINE, "webhookUrl", "https://evil.example.com/hook")
        await _issuer(store, client).issue(Platform.LINE)
        assert store.get(Platform.LINE, "webhookUrl") == LINE_URL

    @pytest.mark.asyncio
    async def test_sync_failure_is_not_fatal(self, store, fake_backend, client):
        fake_backend.failures["POST /api/user/webhook-url"] = 500
        issuer = _issuer(store, client)
        record = await issuer.issue(Platform.WHATSAPP)
        assert record.url == "https://hooks.example.com/api/webhook/whatsapp/user-123"
        assert not record.synced
        # attempted once per issued record
        await issuer.issue(Platform.WHATSAPP)
        assert fake_backend.count("POST", "/api/user/webhook-url") == 1

    @pytest.mark.asyncio
    async def test_issue_with_explicit_user(self, store, fake_backend, client):
        record = await _issuer(store, client).issue(Platform.FACEBOOK, user_id="u-7")
        assert record.url.endswith("/webhook/facebook/u-7")
        assert fake_backend.count("GET", "/api/user/profile") == 0


class TestAdoptRemote:
    @pytest.mark.asyncio
    async def test_well_formed_remote_url_is_adopted(self, store, fake_backend, client):
        record = await _issuer(store, client).adopt_remote(Platform.LINE, LINE_URL)
        assert record.url == LINE_URL
        assert record.synced
        assert fake_backend.count("POST", "/api/user/webhook-url") == 0

    @pytest.mark.asyncio
    async def test_malformed_remote_url_is_replaced(self, store, client):
        record = await _issuer(store, client).adopt_remote(
            Platform.LINE, "https://attacker.example.net/api/webhook/line/user-123",
        )
        assert record.url == LINE_URL
        assert store.get(Platform.LINE, "webhookUrl") == LINE_URL

    @pytest.mark.asyncio
    async def test_other_users_url_is_replaced(self, store, client):
        record = await _issuer(store, client).adopt_remote(
            Platform.LINE, "https://hooks.example.com/api/webhook/line/other-user",
        )
        assert record.url == LINE_URL

    @pytest.mark.asyncio
    async def test_fetch_remote(self, store, fake_backend, client):
        fake_backend.webhook_url = "https://hooks.example.com/api/webhook/line/user-123?x=1"
        record = await _issuer(store, client).fetch_remote(Platform.LINE)
        assert record.url == LINE_URL

    @pytest.mark.asyncio
    async def test_fetch_remote_backend_down(self, store, fake_backend, client):
        store.set_global("currentUserId", "user-123")
        fake_backend.down = True
        record = await _issuer(store, client).fetch_remote(Platform.LINE)
        assert record.url == LINE_URL
        assert not record.synced


class TestReachability:
    @pytest.mark.asyncio
    async def test_404_counts_as_reachable(self, store, client):
        assert await _issuer(store, client).check_reachable(LINE_URL)

    @pytest.mark.asyncio
    async def test_unreachable(self, store, fake_backend, client):
        fake_backend.down = True
        assert not await _issuer(store, client).check_reachable(LINE_URL)

    @pytest.mark.asyncio
    async def test_server_error_is_unreachable(self, store, fake_backend, client):
        fake_backend.failures["GET /api/webhook/line/user-123"] = 500
        assert not await _issuer(store, client).check_reachable(LINE_URL)


# ── Identity ────────────────────────────────────────────

class TestIdentity:
    @pytest.mark.asyncio
    async def test_profile_lookup_is_cached(self, store, fake_backend, client):
        from channelkit.channels.identity import UserIdentityResolver
        resolver = UserIdentityResolver(store, client)
        assert await resolver.resolve_user_id() == "user-123"
        assert await resolver.resolve_user_id() == "user-123"
        assert fake_backend.count("GET", "/api/user/profile") == 1
        assert store.get_global("currentUserId") == "user-123"
        assert resolver.source == "remote"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_lookup(self, store, fake_backend, client):
        from channelkit.channels.identity import UserIdentityResolver
        fake_backend.delay = 0.02
        resolver = UserIdentityResolver(store, client)
        ids = await asyncio.gather(*(resolver.resolve_user_id() for _ in range(5)))
        assert set(ids) == {"user-123"}
        assert fake_backend.count("GET", "/api/user/profile") == 1

    @pytest.mark.asyncio
    async def test_synthesized_when_backend_down(self, store, fake_backend, client):
        import uuid
        from channelkit.channels.identity import UserIdentityResolver
        fake_backend.down = True
        resolver = UserIdentityResolver(store, client)
        user_id = await resolver.resolve_user_id()
        uuid.UUID(user_id)
        assert resolver.source == "synthesized"
        # durable: a new resolver reuses it without asking the backend again
        fake_backend.down = False
        assert await UserIdentityResolver(store, client).resolve_user_id() == user_id

    @pytest.mark.asyncio
    async def test_synthesized_when_profile_has_no_id(self, store, fake_backend, client):
        from channelkit.channels.identity import UserIdentityResolver
        fake_backend.user_id = None
        resolver = UserIdentityResolver(store, client)
        await resolver.resolve_user_id()
        assert resolver.source == "synthesized"
