"""
Backend API client — every remote call the onboarding flow makes.

The backend is the source of truth for channels, the user profile and the
user's registered webhook URL. All calls go through one httpx.AsyncClient,
are bounded by ``remote_timeout_seconds`` and map failures onto the error
taxonomy:

- timeout / connection error / non-2xx  → TransportError
- body is not a JSON object             → MalformedRemoteData
- ``{"success": false}`` envelope       → RemoteRejection (unless allowed)

Usage:
    from channelkit.services.backend_client import BackendClient

    client = BackendClient("https://api.example.com", auth_token="...")
    profile = await client.get_user_profile()
    await client.aclose()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from channelkit.config import settings
from channelkit.errors import MalformedRemoteData, RemoteRejection, TransportError

logger = logging.getLogger(__name__)


class Endpoints:
    USER_PROFILE = "/api/user/profile"
    USER_WEBHOOK_URL = "/api/user/webhook-url"
    CHANNELS = "/api/channels"
    CHANNEL = "/api/channels/{channel_id}"
    CHANNEL_TEST = "/api/channels/test"
    LINE_SETTINGS = "/api/line-api/settings"


class BackendClient:
    """Async JSON client for the channel backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.backend_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.remote_timeout_seconds
        token = auth_token if auth_token is not None else settings.backend_auth_token
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        allow_failure: bool = False,
    ) -> Dict[str, Any]:
        endpoint = f"{method} {path}"
        try:
            response = await asyncio.wait_for(
                self._client.request(method, path, json=json),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("[BACKEND] %s timed out after %.1fs", endpoint, self.timeout)
            raise TransportError(endpoint, f"timed out after {self.timeout:.1f}s")
        except httpx.HTTPError as e:
            logger.warning("[BACKEND] %s failed: %s", endpoint, e.__class__.__name__)
            raise TransportError(endpoint, str(e) or e.__class__.__name__)

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning("[BACKEND] %s returned HTTP %d", endpoint, response.status_code)
            raise TransportError(endpoint, status_code=response.status_code)

        if not response.content:
            body: Dict[str, Any] = {}
        else:
            try:
                body = response.json()
            except ValueError:
                raise MalformedRemoteData(endpoint, "response body is not JSON")
        if not isinstance(body, dict):
            raise MalformedRemoteData(endpoint, "response body is not a JSON object")

        if body.get("success") is False and not allow_failure:
            detail = str(body.get("message") or body.get("error") or "")
            logger.info("[BACKEND] %s rejected: %s", endpoint, detail or "no detail")
            raise RemoteRejection(endpoint, detail)
        return body

    @staticmethod
    def _data(body: Dict[str, Any]) -> Dict[str, Any]:
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    # ── User ──

    async def get_user_profile(self) -> Dict[str, Any]:
        body = await self._request("GET", Endpoints.USER_PROFILE)
        return self._data(body) or body.get("user") or {}

    async def get_user_webhook_url(self) -> Optional[str]:
        body = await self._request("GET", Endpoints.USER_WEBHOOK_URL)
        data = self._data(body)
        url = data.get("webhookUrl") or body.get("webhookUrl")
        return str(url) if url else None

    async def sync_user_webhook_url(self, platform_slug: str, webhook_url: str) -> None:
        await self._request(
            "POST",
            Endpoints.USER_WEBHOOK_URL,
            json={"platform": platform_slug, "webhookUrl": webhook_url},
        )

    # ── Channels ──

    async def get_user_channels(self) -> List[Any]:
        body = await self._request("GET", Endpoints.CHANNELS)
        channels = body.get("channels")
        if channels is None:
            channels = self._data(body).get("channels")
        if channels is None and isinstance(body.get("data"), list):
            channels = body["data"]
        if not isinstance(channels, list):
            raise MalformedRemoteData(Endpoints.CHANNELS, "missing channels array")
        return channels

    async def create_channel(self, payload: Dict[str, Any]) -> str:
        body = await self._request("POST", Endpoints.CHANNELS, json=payload)
        channel = body.get("channel") if isinstance(body.get("channel"), dict) else self._data(body)
        remote_id = channel.get("id") or channel.get("_id")
        if not remote_id:
            raise MalformedRemoteData(Endpoints.CHANNELS, "created channel has no id")
        return str(remote_id)

    async def update_channel(self, remote_id: str, payload: Dict[str, Any]) -> None:
        await self._request("PUT", Endpoints.CHANNEL.format(channel_id=remote_id), json=payload)

    async def delete_channel(self, remote_id: str) -> None:
        await self._request("DELETE", Endpoints.CHANNEL.format(channel_id=remote_id))

    async def test_channel_connection(
        self, platform: str, api_key: str, channel_secret: str
    ) -> Dict[str, Any]:
        """Returns the raw envelope; a ``success: false`` answer is data, not an error."""
        return await self._request(
            "POST",
            Endpoints.CHANNEL_TEST,
            json={"platform": platform, "apiKey": api_key, "channelSecret": channel_secret},
            allow_failure=True,
        )

    # ── LINE settings ──

    async def get_line_settings(self) -> Dict[str, Any]:
        body = await self._request("GET", Endpoints.LINE_SETTINGS)
        return self._data(body)

    async def save_line_settings(
        self, channel_secret: str, channel_access_token: str, webhook_url: str = ""
    ) -> None:
        await self._request(
            "POST",
            Endpoints.LINE_SETTINGS,
            json={
                "channelSecret": channel_secret,
                "channelAccessToken": channel_access_token,
                "webhookUrl": webhook_url,
            },
        )

    # ── Reachability ──

    async def check_url(self, url: str) -> int:
        """GET an absolute URL with the same timeout; returns the status code."""
        try:
            response = await asyncio.wait_for(self._client.get(url), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise TransportError(f"GET {url}", f"timed out after {self.timeout:.1f}s")
        except httpx.HTTPError as e:
            raise TransportError(f"GET {url}", str(e) or e.__class__.__name__)
        return response.status_code
