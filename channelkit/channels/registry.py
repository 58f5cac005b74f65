"""
Channel Registry — the owner of every locally known Channel.

Creation runs the whole onboarding pipeline: validate the credential set,
probe the credentials, issue the webhook URL, persist, and mirror the
channel to the backend. Only validation, or a newer create for the same
platform superseding it, can fail a create; every later step degrades
(inactive channel, unsynced webhook, no remote link) instead of raising.

All mutations go through one asyncio lock. The reconciler takes the same
lock for its apply pass through ``write_lock`` / ``find_by_key`` /
``insert_locked``.

Usage:
    registry = ChannelRegistry(store, prober, issuer, client=client, repository=repo)
    await registry.load()
    channel = await registry.create(Platform.LINE, {"channelSecret": "...", "channelAccessToken": "..."})
    result = await registry.test_connection(channel.id)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from channelkit.channels.credential_store import SETUP_COMPLETED_FLAG, CredentialStore
from channelkit.channels.models import (
    BestEffortResult,
    Channel,
    ChannelFilter,
    ProbeResult,
    RemoteLink,
)
from channelkit.channels.platforms import WEBHOOK_URL_FIELD, Platform, get_platform_profile
from channelkit.channels.prober import ConnectionProber
from channelkit.channels.repository import ChannelRepository
from channelkit.channels.setup_wizard import SetupWizard
from channelkit.channels.webhook_issuer import WebhookURLIssuer
from channelkit.errors import ChannelKitError, ChannelNotFound, ValidationError
from channelkit.services.backend_client import BackendClient
from channelkit.structured_logging import registry_log

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "api_key", "channel_secret", "is_active")


@dataclass
class SetupCompletion:
    channel: Channel
    created: bool
    line_settings: Optional[BestEffortResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.to_dict(),
            "created": self.created,
            "line_settings": self.line_settings.to_dict() if self.line_settings else None,
        }


class ChannelRegistry:
    def __init__(
        self,
        store: CredentialStore,
        prober: ConnectionProber,
        issuer: WebhookURLIssuer,
        client: Optional[BackendClient] = None,
        repository: Optional[ChannelRepository] = None,
    ):
        self._store = store
        self._prober = prober
        self._issuer = issuer
        self._client = client
        self._repository = repository
        self._channels: Dict[str, Channel] = {}
        self._links: Dict[Platform, RemoteLink] = {}
        self._request_tokens: Dict[str, str] = {}
        self._remote_results: Dict[str, BestEffortResult] = {}
        self._background: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    # ── Loading / shutdown ──

    async def load(self) -> int:
        if self._repository is None:
            return 0
        channels = await self._repository.load_channels()
        links = await self._repository.load_links()
        async with self._lock:
            self._channels = {c.id: c for c in channels}
            self._links = links
        logger.info("[REGISTRY] Loaded %d channel(s), %d remote link(s)", len(channels), len(links))
        return len(channels)

    async def aclose(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Reads ──

    def get(self, channel_id: str) -> Channel:
        channel = self._channels.get(channel_id)
        if channel is None:
            raise ChannelNotFound(channel_id)
        return channel

    def list(self, filter: Optional[ChannelFilter] = None) -> List[Channel]:
        channels = list(self._channels.values())
        if filter is not None:
            channels = [c for c in channels if filter.matches(c)]
        return channels

    def link_for(self, platform) -> Optional[RemoteLink]:
        return self._links.get(Platform.parse(platform))

    def remote_result(self, channel_id: str) -> Optional[BestEffortResult]:
        """Outcome of the last best-effort backend write for a channel."""
        return self._remote_results.get(channel_id)

    def stats(self) -> Dict[str, Any]:
        channels = list(self._channels.values())
        by_platform: Dict[str, int] = {p.value: 0 for p in Platform}
        for c in channels:
            by_platform[c.platform.value] += 1
        return {
            "total_channels": len(channels),
            "active_channels": sum(1 for c in channels if c.is_active),
            "total_messages": sum(c.total_messages for c in channels),
            "today_messages": sum(c.today_messages for c in channels),
            "by_platform": by_platform,
        }

    # ── Reconciler hooks ──

    @property
    def write_lock(self) -> asyncio.Lock:
        return self._lock

    def find_by_key(self, name: str, platform) -> Optional[Channel]:
        platform = Platform.parse(platform)
        for channel in self._channels.values():
            if channel.name == name and channel.platform == platform:
                return channel
        return None

    async def insert_locked(self, channel: Channel, link: Optional[RemoteLink] = None) -> None:
        """Insert while the caller holds ``write_lock``."""
        self._channels[channel.id] = channel
        await self._persist(channel)
        if link is not None:
            await self._record_link(link)

    # ── Create ──

    async def create(
        self,
        platform,
        credentials: Optional[Dict[str, str]] = None,
        *,
        name: Optional[str] = None,
    ) -> Channel:
        """
        Onboard a channel, or refresh the one that already holds its key.

        The (name, platform) key is checked again under the write lock, so a
        channel the reconciler inserted while this create was probing is
        updated in place rather than duplicated. A newer create for the same
        platform supersedes this one while its credentials are being checked.
        """
        platform = Platform.parse(platform)
        profile = get_platform_profile(platform)

        if credentials:
            await asyncio.to_thread(self._store.update, platform, credentials)
        missing = self._store.missing_fields(platform, profile.required_fields)
        if missing:
            raise ValidationError(platform.value, missing)

        creds = self._store.credential_set(platform)
        api_key = creds[profile.api_key_field].strip()
        channel_secret = creds[profile.channel_secret_field].strip()
        channel_name = (name or "").strip() or profile.default_name

        probe = await self._prober.probe(
            self._check_key(platform), platform, api_key, channel_secret,
        )
        webhook = await self._issuer.issue(platform)

        async with self._lock:
            channel = self.find_by_key(channel_name, platform)
            created = channel is None
            if created:
                channel = Channel(
                    platform=platform,
                    name=channel_name,
                    api_key=api_key,
                    channel_secret=channel_secret,
                    webhook_url=webhook.url,
                    is_active=probe.connected,
                    api_status=probe.api_status,
                    user_id=webhook.user_id,
                )
                self._channels[channel.id] = channel
            else:
                channel.api_key = api_key
                channel.channel_secret = channel_secret
                channel.webhook_url = webhook.url
                channel.user_id = webhook.user_id
                channel.apply_probe(probe)
            await self._persist(channel)
            link = self._links.get(platform)

        logger.info(
            "[REGISTRY] %s %s channel %s (%s, verified by %s)",
            "Created" if created else "Refreshed",
            platform.slug, channel.id, channel.api_status.value, probe.verified_by.value,
        )
        registry_log.info(
            "Channel onboarded",
            {"platform": platform.value, "channel_id": channel.id, "created": created,
             "api_status": channel.api_status.value, "verified_by": probe.verified_by.value},
        )

        if not created and link is not None and link.local_channel_id == channel.id:
            result = await self._remote_update(channel, link)
        else:
            result = await self._remote_create(channel)
        if result is not None:
            self._remote_results[channel.id] = result
        return channel

    async def _remote_create(self, channel: Channel) -> BestEffortResult:
        if self._client is None:
            return BestEffortResult(ok=False, error="no backend configured")
        try:
            remote_id = await self._client.create_channel(self._remote_payload(channel))
        except ChannelKitError as e:
            logger.warning("[REGISTRY] Remote create of %s failed: %s", channel.id, e)
            return BestEffortResult.failure(e)
        async with self._lock:
            await self._record_link(RemoteLink(
                platform=channel.platform, remote_id=remote_id, local_channel_id=channel.id,
            ))
        return BestEffortResult.success()

    async def _remote_update(self, channel: Channel, link: RemoteLink) -> Optional[BestEffortResult]:
        if self._client is None:
            return None
        try:
            await self._client.update_channel(link.remote_id, self._remote_payload(channel))
        except ChannelKitError as e:
            logger.warning("[REGISTRY] Remote update of %s failed: %s", channel.id, e)
            return BestEffortResult.failure(e)
        return BestEffortResult.success()

    @staticmethod
    def _remote_payload(channel: Channel) -> Dict[str, Any]:
        return {
            "name": channel.name,
            "platform": channel.platform.value,
            "apiKey": channel.api_key,
            "channelSecret": channel.channel_secret,
            "webhookUrl": channel.webhook_url,
            "isActive": channel.is_active,
            "description": channel.description,
        }

    # ── Update / delete ──

    async def update(self, channel_id: str, **changes) -> Channel:
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        async with self._lock:
            channel = self.get(channel_id)
            for field_name, value in changes.items():
                if value is None:
                    continue
                if field_name == "name" and not str(value).strip():
                    continue
                setattr(channel, field_name, value)
            channel.touch()
            await self._persist(channel)
            link = self._links.get(channel.platform)

        if link is not None and link.local_channel_id == channel_id:
            result = await self._remote_update(channel, link)
            if result is not None:
                self._remote_results[channel_id] = result
        return channel

    async def delete(self, channel_id: str) -> Channel:
        async with self._lock:
            channel = self._channels.pop(channel_id, None)
            if channel is None:
                raise ChannelNotFound(channel_id)
            self._request_tokens.pop(channel_id, None)
            self._remote_results.pop(channel_id, None)
            self._prober.cancel(self._check_key(channel.platform, channel_id))
            if self._repository is not None:
                await self._repository.delete_channel(channel_id)
            link = self._links.get(channel.platform)
            if link is not None and link.local_channel_id == channel_id:
                del self._links[channel.platform]
                if self._repository is not None:
                    await self._repository.delete_link(channel.platform)
            else:
                link = None

        logger.info("[REGISTRY] Deleted %s channel %s", channel.platform.slug, channel_id)
        if link is not None and self._client is not None:
            self._spawn(self._remote_delete(link))
        return channel

    async def _remote_delete(self, link: RemoteLink) -> None:
        try:
            await self._client.delete_channel(link.remote_id)
            logger.info("[REGISTRY] Remote channel %s deleted", link.remote_id)
        except ChannelKitError as e:
            logger.warning("[REGISTRY] Remote delete of %s failed: %s", link.remote_id, e)

    # ── Connection tests ──

    async def test_connection(self, channel_id: str, *, request_token: Optional[str] = None) -> ProbeResult:
        """
        Re-probe a channel and record the outcome.

        The result is only applied if the channel still exists and no newer
        test for it has started since; otherwise it is returned untouched.
        ProbeSuperseded propagates to the caller of a replaced probe.
        """
        channel = self.get(channel_id)
        token = request_token or uuid.uuid4().hex
        self._request_tokens[channel_id] = token

        result = await self._prober.probe(
            self._check_key(channel.platform, channel_id),
            channel.platform, channel.api_key, channel.channel_secret,
        )

        async with self._lock:
            current = self._channels.get(channel_id)
            if current is None or self._request_tokens.get(channel_id) != token:
                logger.info("[REGISTRY] Discarding stale probe result for %s", channel_id)
                return result
            current.apply_probe(result)
            await self._persist(current)
            self._request_tokens.pop(channel_id, None)
        return result

    def cancel_probe(self, channel_id: str) -> bool:
        self._request_tokens.pop(channel_id, None)
        channel = self._channels.get(channel_id)
        if channel is None:
            return False
        return self._prober.cancel(self._check_key(channel.platform, channel_id))

    @staticmethod
    def _check_key(platform: Platform, channel_id: Optional[str] = None) -> str:
        """Creates share one slot per platform; re-tests get one per channel."""
        return f"{platform.slug}:{channel_id or 'create'}"

    # ── Setup completion ──

    async def complete_setup(self, platform, *, name: Optional[str] = None) -> SetupCompletion:
        platform = Platform.parse(platform)
        profile = get_platform_profile(platform)
        wizard = SetupWizard(platform, self._store, self._issuer)
        if not wizard.is_complete():
            step = wizard.current_step
            if step == profile.webhook_step.index:
                # Webhook slot is issued, never typed
                await self._issuer.issue(platform)
            if not wizard.is_complete():
                raise ValidationError(platform.value, wizard.missing_fields(wizard.current_step))

        channel_name = (name or "").strip() or profile.default_name
        existing = self.find_by_key(channel_name, platform)
        if existing is None:
            channel = await self.create(platform, name=channel_name)
            created = True
        else:
            creds = self._store.credential_set(platform)
            channel = await self.update(
                existing.id,
                api_key=creds[profile.api_key_field].strip(),
                channel_secret=creds[profile.channel_secret_field].strip(),
            )
            await self.test_connection(existing.id)
            created = False

        await asyncio.to_thread(self._store.set_flag, platform, SETUP_COMPLETED_FLAG, True)
        line_settings = None
        if platform == Platform.LINE:
            line_settings = await self._save_line_settings()
        logger.info("[REGISTRY] %s setup completed", platform.slug)
        return SetupCompletion(channel=channel, created=created, line_settings=line_settings)

    async def _save_line_settings(self) -> BestEffortResult:
        if self._client is None:
            return BestEffortResult(ok=False, error="no backend configured")
        try:
            await self._client.save_line_settings(
                self._store.get(Platform.LINE, "channelSecret"),
                self._store.get(Platform.LINE, "channelAccessToken"),
                self._store.get(Platform.LINE, WEBHOOK_URL_FIELD),
            )
        except ChannelKitError as e:
            logger.warning("[REGISTRY] Saving LINE settings failed: %s", e)
            return BestEffortResult.failure(e)
        return BestEffortResult.success()

    # ── Internals ──

    async def _persist(self, channel: Channel) -> None:
        if self._repository is not None:
            await self._repository.save_channel(channel)

    async def _record_link(self, link: RemoteLink) -> None:
        self._links[link.platform] = link
        if self._repository is not None:
            await self._repository.save_link(link)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
