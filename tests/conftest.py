"""
Shared fixtures: an in-process fake of the channel backend served through
httpx.MockTransport, and fully wired onboarding services on top of it.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from channelkit.services.backend_client import BackendClient

BACKEND_URL = "http://backend.test"
WEBHOOK_BASE = "https://hooks.example.com/api"
USER_ID = "user-123"


class FakeBackend:
    """Programmable stand-in for the remote channel backend."""

    def __init__(self):
        self.user_id: Optional[str] = USER_ID
        self.channels: List[Any] = []
        self.connected = True
        self.test_body: Optional[Dict[str, Any]] = None
        self.webhook_url: Optional[str] = None
        self.down = False
        self.delay = 0.0
        self.failures: Dict[str, Any] = {}  # "METHOD /path" -> status code or exception
        self.requests: List[Tuple[str, str, Any]] = []
        self.line_settings: Dict[str, Any] = {}
        self._next_id = 1

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.requests if m == method and p == path)

    def client(self, timeout: float = 2.0) -> BackendClient:
        return BackendClient(
            BACKEND_URL,
            auth_token="test-token",
            timeout=timeout,
            transport=httpx.MockTransport(self.handler),
        )

    async def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, path, body))

        if self.delay:
            await asyncio.sleep(self.delay)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        failure = self.failures.get(f"{method} {path}")
        if isinstance(failure, int):
            return httpx.Response(failure, json={"success": False})
        if failure is not None:
            raise failure

        if path == "/api/user/profile" and method == "GET":
            return httpx.Response(200, json={"success": True, "data": {"userId": self.user_id}})
        if path == "/api/user/webhook-url":
            if method == "GET":
                return httpx.Response(200, json={"success": True, "data": {"webhookUrl": self.webhook_url}})
            self.webhook_url = body.get("webhookUrl")
            return httpx.Response(200, json={"success": True})
        if path == "/api/channels/test" and method == "POST":
            payload = self.test_body or {"success": True, "data": {"connected": self.connected}}
            return httpx.Response(200, json=payload)
        if path == "/api/channels":
            if method == "GET":
                return httpx.Response(200, json={"success": True, "channels": self.channels})
            remote_id = f"remote-{self._next_id}"
            self._next_id += 1
            self.channels.append(dict(body, id=remote_id))
            return httpx.Response(201, json={"success": True, "channel": {"id": remote_id}})
        if path.startswith("/api/channels/") and method in ("PUT", "DELETE"):
            return httpx.Response(200, json={"success": True})
        if path == "/api/line-api/settings":
            if method == "POST":
                self.line_settings = body
            return httpx.Response(200, json={"success": True, "data": self.line_settings})
        return httpx.Response(404, json={"success": False, "message": "not found"})


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def client(fake_backend):
    c = fake_backend.client()
    yield c
    await c.aclose()


@pytest_asyncio.fixture
async def services(fake_backend):
    from channelkit.api.deps import build_channel_services
    from channelkit.channels.credential_store import InMemoryBackend

    svc = build_channel_services(
        backend=InMemoryBackend(),
        client=fake_backend.client(),
        webhook_base_url=WEBHOOK_BASE,
        debounce_ms=0,
    )
    yield svc
    await svc.aclose()


@pytest.fixture
def line_credentials():
    return {"channelSecret": "line-secret-value", "channelAccessToken": "line-access-token-value"}


@pytest.fixture
def whatsapp_credentials():
    return {
        "businessAccountId": "waba-1",
        "phoneNumberId": "pn-1",
        "accessToken": "EAAG-whatsapp-token",
        "phoneNumber": "+15550100",
    }


@pytest.fixture
def store():
    from channelkit.channels.credential_store import CredentialStore, InMemoryBackend
    return CredentialStore(InMemoryBackend())
