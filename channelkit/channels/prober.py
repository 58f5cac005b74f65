"""
Connection Prober — verify that a platform's API credentials work.

The backend's connection-test endpoint is the primary check. When it cannot
be reached (network, timeout, non-2xx) or answers with something unreadable,
the prober falls back to a local check that only looks at whether the key
secret is present. The result always says which path decided it.

``probe()`` adds single-flight + debounce per key: a newer probe for the same
key cancels the older one (whose caller gets ProbeSuperseded), and a probe
superseded inside the debounce window never reaches the network.

Usage:
    prober = ConnectionProber(client)
    result = await prober.test(Platform.LINE, api_key, channel_secret)
    result.connected, result.verified_by
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Dict, Optional, Set, Tuple

from channelkit.channels.models import ProbeResult, VerificationSource
from channelkit.channels.platforms import Platform
from channelkit.config import settings
from channelkit.errors import MalformedRemoteData, ProbeSuperseded, TransportError
from channelkit.services.backend_client import BackendClient

logger = logging.getLogger(__name__)


class ConnectionProber:
    def __init__(self, client: Optional[BackendClient] = None, debounce_ms: Optional[int] = None):
        self._client = client
        self.debounce_seconds = (
            debounce_ms if debounce_ms is not None else settings.probe_debounce_ms
        ) / 1000.0
        self._inflight: Dict[str, Tuple[int, asyncio.Task]] = {}
        self._cancelled_tokens: Set[int] = set()
        self._tokens = itertools.count(1)

    # ── Single check ──

    async def test(self, platform, api_key: str, channel_secret: str) -> ProbeResult:
        platform = Platform.parse(platform)
        if self._client is None:
            return self.local_test(platform, api_key, fallback_reason="no backend configured")
        try:
            body = await self._client.test_channel_connection(platform.value, api_key, channel_secret)
            connected = self._read_connected(body)
        except (TransportError, MalformedRemoteData) as e:
            logger.warning("[PROBE] %s remote test unavailable, using local check: %s", platform.slug, e)
            return self.local_test(platform, api_key, fallback_reason=str(e))

        logger.info("[PROBE] %s remote test: connected=%s", platform.slug, connected)
        return ProbeResult(
            connected=connected,
            verified_by=VerificationSource.REMOTE,
            message=str(body.get("message") or ""),
        )

    @staticmethod
    def _read_connected(body) -> bool:
        data = body.get("data")
        if isinstance(data, dict) and "connected" in data:
            connected = data["connected"]
        else:
            connected = body.get("success")
        if not isinstance(connected, bool):
            raise MalformedRemoteData("connected", f"expected boolean, got {type(connected).__name__}")
        return connected

    def local_test(self, platform, api_key: str, fallback_reason: Optional[str] = None) -> ProbeResult:
        """Presence of the key secret, nothing more."""
        platform = Platform.parse(platform)
        connected = bool(api_key and api_key.strip())
        return ProbeResult(
            connected=connected,
            verified_by=VerificationSource.LOCAL,
            fallback_reason=fallback_reason,
            message="key secret present" if connected else "key secret missing",
        )

    # ── Single-flight probes ──

    async def probe(self, key: str, platform, api_key: str, channel_secret: str) -> ProbeResult:
        self._cancel_inflight(key)

        token = next(self._tokens)
        task = asyncio.create_task(self._debounced_test(platform, api_key, channel_secret))
        self._inflight[key] = (token, task)
        try:
            return await task
        except asyncio.CancelledError:
            if token in self._cancelled_tokens:
                self._cancelled_tokens.discard(token)
                raise ProbeSuperseded(key)
            raise
        finally:
            current = self._inflight.get(key)
            if current is not None and current[0] == token:
                del self._inflight[key]

    async def _debounced_test(self, platform, api_key: str, channel_secret: str) -> ProbeResult:
        if self.debounce_seconds > 0:
            await asyncio.sleep(self.debounce_seconds)
        return await self.test(platform, api_key, channel_secret)

    def _cancel_inflight(self, key: str) -> bool:
        current = self._inflight.pop(key, None)
        if current is None:
            return False
        token, task = current
        if task.done():
            return False
        self._cancelled_tokens.add(token)
        task.cancel()
        logger.info("[PROBE] Cancelled in-flight probe for %s", key)
        return True

    def cancel(self, key: str) -> bool:
        return self._cancel_inflight(key)

    def in_flight(self, key: str) -> bool:
        current = self._inflight.get(key)
        return current is not None and not current[1].done()
