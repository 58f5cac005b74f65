"""
Channel onboarding — platform catalogue, credential store, setup wizard,
webhook issuance, connection probing, sync and the channel registry.
"""

from channelkit.channels.platforms import ApiStatus, Platform, get_platform_profile
from channelkit.channels.models import (
    BestEffortResult,
    Channel,
    ChannelFilter,
    IssuedWebhook,
    ProbeResult,
    ReconcileReport,
    RemoteChannel,
    RemoteLink,
    VerificationSource,
)
from channelkit.channels.credential_store import CredentialStore, InMemoryBackend, SqlKeyValueBackend
from channelkit.channels.identity import UserIdentityResolver
from channelkit.channels.webhook_issuer import WebhookURLIssuer
from channelkit.channels.setup_wizard import SetupWizard, SetupWizardState
from channelkit.channels.prober import ConnectionProber
from channelkit.channels.registry import ChannelRegistry, SetupCompletion
from channelkit.channels.reconciler import ChannelSyncReconciler
from channelkit.channels.repository import ChannelRepository

__all__ = [
    "ApiStatus",
    "Platform",
    "get_platform_profile",
    "BestEffortResult",
    "Channel",
    "ChannelFilter",
    "IssuedWebhook",
    "ProbeResult",
    "ReconcileReport",
    "RemoteChannel",
    "RemoteLink",
    "VerificationSource",
    "CredentialStore",
    "InMemoryBackend",
    "SqlKeyValueBackend",
    "UserIdentityResolver",
    "WebhookURLIssuer",
    "SetupWizard",
    "SetupWizardState",
    "ConnectionProber",
    "ChannelRegistry",
    "SetupCompletion",
    "ChannelSyncReconciler",
    "ChannelRepository",
]
