"""
Service wiring for the HTTP API.

main.py builds one ChannelServices at startup and installs it with
``set_channel_services``; routers receive it through ``get_channel_services``.
Tests install their own instance the same way.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import HTTPException

from channelkit.channels.credential_store import CredentialStore, KeyValueBackend
from channelkit.channels.identity import UserIdentityResolver
from channelkit.channels.platforms import Platform
from channelkit.channels.prober import ConnectionProber
from channelkit.channels.reconciler import ChannelSyncReconciler
from channelkit.channels.registry import ChannelRegistry
from channelkit.channels.repository import ChannelRepository
from channelkit.channels.setup_wizard import SetupWizard
from channelkit.channels.webhook_issuer import WebhookURLIssuer
from channelkit.config import settings
from channelkit.services.backend_client import BackendClient

logger = logging.getLogger(__name__)


@dataclass
class ChannelServices:
    store: CredentialStore
    client: Optional[BackendClient]
    identity: UserIdentityResolver
    issuer: WebhookURLIssuer
    prober: ConnectionProber
    registry: ChannelRegistry
    reconciler: ChannelSyncReconciler

    def wizard(self, platform: Platform) -> SetupWizard:
        return self._wizards.setdefault(platform, SetupWizard(platform, self.store, self.issuer))

    def __post_init__(self):
        self._wizards: Dict[Platform, SetupWizard] = {}

    async def aclose(self) -> None:
        await self.registry.aclose()
        if self.client is not None:
            await self.client.aclose()


def build_channel_services(
    backend: Optional[KeyValueBackend] = None,
    client: Optional[BackendClient] = None,
    repository: Optional[ChannelRepository] = None,
    webhook_base_url: Optional[str] = None,
    debounce_ms: Optional[int] = None,
) -> ChannelServices:
    store = CredentialStore(backend)
    identity = UserIdentityResolver(store, client)
    issuer = WebhookURLIssuer(
        store, identity,
        base_url=webhook_base_url or settings.effective_webhook_base_url,
        client=client,
    )
    prober = ConnectionProber(client, debounce_ms=debounce_ms)
    registry = ChannelRegistry(store, prober, issuer, client=client, repository=repository)
    reconciler = ChannelSyncReconciler(registry, client, issuer=issuer)
    return ChannelServices(
        store=store,
        client=client,
        identity=identity,
        issuer=issuer,
        prober=prober,
        registry=registry,
        reconciler=reconciler,
    )


# ── Singleton ──────────────────────────────────────────────

_services: Optional[ChannelServices] = None


def set_channel_services(services: Optional[ChannelServices]) -> None:
    """Called from main.py lifespan (and tests) to install the services."""
    global _services
    _services = services


def get_channel_services() -> ChannelServices:
    if _services is None:
        raise HTTPException(status_code=503, detail="Channel services not available")
    return _services


def resolve_platform(platform: str) -> Platform:
    try:
        return Platform.parse(platform)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown platform: {platform}")
