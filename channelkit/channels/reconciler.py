"""
Channel Sync Reconciler — fold the backend's channel list into the registry.

Remote channels are matched to local ones by (name, platform). A remote
channel with no local match is inserted; a match is left alone (local
wins). Nothing is ever deleted, so running the same remote list twice
changes nothing the second time.

A remote webhook URL is only adopted when it passes the issuer's
well-formedness check; anything else is replaced by the locally issued URL.

The remote fetch happens outside the registry lock; only the apply pass
holds it.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from channelkit.channels.models import Channel, ReconcileReport, RemoteChannel, RemoteLink
from channelkit.channels.platforms import ApiStatus
from channelkit.channels.registry import ChannelRegistry
from channelkit.channels.webhook_issuer import WebhookURLIssuer
from channelkit.errors import ChannelKitError, MalformedRemoteData
from channelkit.services.backend_client import BackendClient
from channelkit.structured_logging import sync_log

logger = logging.getLogger(__name__)


class ChannelSyncReconciler:
    def __init__(
        self,
        registry: ChannelRegistry,
        client: Optional[BackendClient] = None,
        issuer: Optional[WebhookURLIssuer] = None,
    ):
        self._registry = registry
        self._client = client
        self._issuer = issuer

    async def reconcile(self, remote_channels: Iterable[Any]) -> ReconcileReport:
        report = ReconcileReport()
        parsed = []
        for payload in remote_channels:
            report.fetched += 1
            if not isinstance(payload, RemoteChannel):
                payload = RemoteChannel.from_payload(payload)
                if payload is None:
                    report.malformed += 1
                    continue
            await self._vet_webhook_url(payload)
            parsed.append(payload)

        async with self._registry.write_lock:
            for remote in parsed:
                if self._registry.find_by_key(remote.name, remote.platform) is not None:
                    report.skipped += 1
                    continue
                channel = Channel(
                    platform=remote.platform,
                    name=remote.name,
                    api_key=remote.api_key,
                    channel_secret=remote.channel_secret,
                    webhook_url=remote.webhook_url,
                    is_active=remote.is_active,
                    api_status=ApiStatus.CONNECTED if remote.is_active else ApiStatus.DISCONNECTED,
                    user_id=remote.user_id,
                )
                link = None
                if remote.remote_id:
                    link = RemoteLink(
                        platform=remote.platform,
                        remote_id=remote.remote_id,
                        local_channel_id=channel.id,
                    )
                await self._registry.insert_locked(channel, link)
                report.inserted.append(channel.id)
                logger.info("[SYNC] Inserted remote %s channel %r", remote.platform.slug, remote.name)

        sync_log.info(
            "Reconciled remote channels",
            {"fetched": report.fetched, "inserted": len(report.inserted),
             "skipped": report.skipped, "malformed": report.malformed},
        )
        return report

    async def _vet_webhook_url(self, remote: RemoteChannel) -> None:
        url = remote.webhook_url
        if not url:
            return
        if self._issuer is not None and self._issuer.is_well_formed(url, remote.platform):
            return

        error = MalformedRemoteData("webhookUrl", f"{remote.platform.slug} channel {remote.name!r}")
        logger.warning("[SYNC] Discarding remote webhook URL: %s", error)
        remote.webhook_url = None
        if self._issuer is None:
            return
        try:
            remote.webhook_url = (await self._issuer.issue(remote.platform)).url
        except ChannelKitError as e:
            logger.warning("[SYNC] Could not issue %s webhook URL: %s", remote.platform.slug, e)

    async def sync(self) -> ReconcileReport:
        """Fetch the backend channel list, then reconcile it."""
        if self._client is None:
            return ReconcileReport(error="no backend configured")
        try:
            remote_channels = await self._client.get_user_channels()
        except ChannelKitError as e:
            logger.warning("[SYNC] Fetching remote channels failed: %s", e)
            return ReconcileReport(error=str(e))
        return await self.reconcile(remote_channels)
