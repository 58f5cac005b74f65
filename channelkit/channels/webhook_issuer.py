"""
Webhook URL Issuer — stable per-user inbound endpoints.

For each (platform, user) there is exactly one URL:

    {base}/api/webhook/{slug}/{user_id}

where ``base`` is the configured public service URL with any trailing ``/``
and trailing ``/api`` segment removed. Issuance is idempotent and cached in
the credential store; a best-effort backend sync is attempted once per
issued record. URLs coming back from the backend are only adopted when they
are well-formed for this base.

Usage:
    issuer = WebhookURLIssuer(store, identity, base_url="https://svc.example.com/api")
    record = await issuer.issue(Platform.LINE)
    record.url  # "https://svc.example.com/api/webhook/line/<user id>"
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import urlsplit

from channelkit.channels.credential_store import CredentialStore
from channelkit.channels.identity import UserIdentityResolver
from channelkit.channels.models import BestEffortResult, IssuedWebhook
from channelkit.channels.platforms import WEBHOOK_URL_FIELD, Platform
from channelkit.errors import ChannelKitError, MalformedRemoteData, TransportError
from channelkit.services.backend_client import BackendClient

logger = logging.getLogger(__name__)

USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
REACHABLE_STATUS_CODES = (200, 404)


def normalize_base_url(base_url: str) -> str:
    base = (base_url or "").strip().rstrip("/")
    if base.endswith("/api"):
        base = base[: -len("/api")]
    return base.rstrip("/")


class WebhookURLIssuer:
    def __init__(
        self,
        store: CredentialStore,
        identity: UserIdentityResolver,
        base_url: str,
        client: Optional[BackendClient] = None,
    ):
        self._store = store
        self._identity = identity
        self._client = client
        self.base_url = normalize_base_url(base_url)
        parts = urlsplit(self.base_url)
        self._scheme = parts.scheme.lower()
        self._host = parts.netloc.lower()
        self._base_path = parts.path.rstrip("/")
        self._sync_attempted: set = set()

    def build_url(self, platform, user_id: str) -> str:
        platform = Platform.parse(platform)
        return f"{self.base_url}/api/webhook/{platform.slug}/{user_id}"

    def is_well_formed(self, url: Optional[str], platform=None, user_id: Optional[str] = None) -> bool:
        if not url:
            return False
        try:
            parts = urlsplit(url.strip())
        except ValueError:
            return False
        if parts.scheme.lower() != self._scheme or parts.netloc.lower() != self._host:
            return False
        if parts.query or parts.fragment:
            return False

        prefix = f"{self._base_path}/api/webhook/"
        if not parts.path.startswith(prefix):
            return False
        segments = parts.path[len(prefix):].split("/")
        if len(segments) != 2:
            return False
        slug, found_user = segments
        try:
            found_platform = Platform.parse(slug)
        except ValueError:
            return False
        if slug != found_platform.slug:
            return False
        if not USER_ID_PATTERN.match(found_user):
            return False
        if platform is not None and found_platform != Platform.parse(platform):
            return False
        if user_id is not None and found_user != user_id:
            return False
        return True

    async def issue(self, platform, user_id: Optional[str] = None) -> IssuedWebhook:
        platform = Platform.parse(platform)
        if user_id is None:
            user_id = await self._identity.resolve_user_id()

        record = self._store.cached_webhook(platform, user_id)
        if record is None or record.url != self.build_url(platform, user_id):
            record = IssuedWebhook(user_id=user_id, platform=platform, url=self.build_url(platform, user_id))
            self._store.cache_webhook(record)
            logger.info("[WEBHOOK] Issued %s webhook for user %s", platform.slug, user_id)

        self._fill_field(record)

        attempt_key = (record.platform, record.user_id, record.url)
        if not record.synced and attempt_key not in self._sync_attempted:
            self._sync_attempted.add(attempt_key)
            result = await self._sync(record)
            if result.ok:
                record.synced = True
                self._store.cache_webhook(record)
        return record

    def _fill_field(self, record: IssuedWebhook) -> None:
        current = self._store.get(record.platform, WEBHOOK_URL_FIELD)
        if not current or not self.is_well_formed(current, record.platform, record.user_id):
            self._store.set(record.platform, WEBHOOK_URL_FIELD, record.url)

    async def _sync(self, record: IssuedWebhook) -> BestEffortResult:
        if self._client is None:
            return BestEffortResult(ok=False, error="no backend configured")
        try:
            await self._client.sync_user_webhook_url(record.platform.slug, record.url)
        except ChannelKitError as e:
            logger.warning("[WEBHOOK] Sync of %s webhook failed: %s", record.platform.slug, e)
            return BestEffortResult.failure(e)
        logger.info("[WEBHOOK] Synced %s webhook to backend", record.platform.slug)
        return BestEffortResult.success()

    async def adopt_remote(self, platform, remote_url: Optional[str]) -> IssuedWebhook:
        """Adopt a backend-reported URL if it is ours; otherwise issue locally."""
        platform = Platform.parse(platform)
        user_id = await self._identity.resolve_user_id()
        if remote_url and self.is_well_formed(remote_url, platform, user_id):
            record = IssuedWebhook(user_id=user_id, platform=platform, url=remote_url.strip(), synced=True)
            self._store.cache_webhook(record)
            self._store.set(platform, WEBHOOK_URL_FIELD, record.url)
            logger.info("[WEBHOOK] Adopted remote %s webhook", platform.slug)
            return record

        if remote_url:
            error = MalformedRemoteData("webhookUrl", f"not a webhook URL of {self.base_url}")
            logger.warning("[WEBHOOK] Discarding remote %s webhook: %s", platform.slug, error)
        return await self.issue(platform, user_id)

    async def fetch_remote(self, platform) -> IssuedWebhook:
        platform = Platform.parse(platform)
        remote_url = None
        if self._client is not None:
            try:
                remote_url = await self._client.get_user_webhook_url()
            except ChannelKitError as e:
                logger.warning("[WEBHOOK] Remote webhook lookup failed: %s", e)
        return await self.adopt_remote(platform, remote_url)

    async def check_reachable(self, url: str) -> bool:
        """GET the URL; 200 and 404 both count as reachable."""
        if self._client is None:
            return False
        try:
            status = await self._client.check_url(url)
        except TransportError as e:
            logger.info("[WEBHOOK] %s unreachable: %s", url, e)
            return False
        return status in REACHABLE_STATUS_CODES
