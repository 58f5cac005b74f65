"""
Platform catalogue — the closed set of messaging platforms and, for each,
the credential fields the setup wizard collects.

Every platform owns an ordered list of steps; every step owns an ordered
tuple of fields. A field has a logical name (``channelSecret``) and the
storage key it is persisted under (``lineChannelSecret``). The last step of
every platform is the webhook step whose first field is the webhook URL slot.

Usage:
    from channelkit.channels.platforms import Platform, get_platform_profile

    profile = get_platform_profile(Platform.parse("whatsapp"))
    profile.storage_key("accessToken")   # "whatsappAccessToken"
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Platform(str, Enum):
    LINE = "LINE"
    WHATSAPP = "WhatsApp"
    INSTAGRAM = "Instagram"
    FACEBOOK = "Facebook"

    @property
    def slug(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, value) -> "Platform":
        """Case-insensitive lookup by value, name or slug."""
        if isinstance(value, Platform):
            return value
        text = str(value or "").strip().lower()
        for platform in cls:
            if text in (platform.slug, platform.name.lower()):
                return platform
        raise ValueError(f"Unknown platform: {value!r}")


class ApiStatus(str, Enum):
    CONNECTED = "已連接"
    DISCONNECTED = "未連接"
    FAILED = "連接失敗"


WEBHOOK_URL_FIELD = "webhookUrl"


@dataclass(frozen=True)
class CredentialField:
    name: str
    storage_key: str
    label: str = ""


@dataclass(frozen=True)
class WizardStep:
    index: int
    key: str
    title: str
    fields: Tuple[CredentialField, ...]

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def is_webhook_step(self) -> bool:
        return WEBHOOK_URL_FIELD in self.field_names


@dataclass(frozen=True)
class PlatformProfile:
    platform: Platform
    default_name: str
    description: str
    steps: Tuple[WizardStep, ...]
    api_key_field: str          # feeds Channel.api_key, also the probe's key secret
    channel_secret_field: str   # feeds Channel.channel_secret

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def fields(self) -> List[CredentialField]:
        return [f for step in self.steps for f in step.fields]

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def required_fields(self) -> List[str]:
        """Fields a Channel cannot be created without (all non-webhook steps)."""
        return [
            f.name
            for step in self.steps
            if not step.is_webhook_step
            for f in step.fields
        ]

    @property
    def webhook_step(self) -> WizardStep:
        return self.steps[-1]

    @property
    def webhook_storage_key(self) -> str:
        return self.storage_key(WEBHOOK_URL_FIELD)

    def get_field(self, name: str) -> Optional[CredentialField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def storage_key(self, name: str) -> str:
        f = self.get_field(name)
        if f:
            return f.storage_key
        return f"{self.platform.slug}{name[:1].upper()}{name[1:]}"


def _field(slug: str, name: str, label: str, storage_key: Optional[str] = None) -> CredentialField:
    return CredentialField(
        name=name,
        storage_key=storage_key or f"{slug}{name[:1].upper()}{name[1:]}",
        label=label,
    )


def _meta_platform(platform: Platform, default_name: str, description: str,
                   identity: Tuple[Tuple[str, str], ...],
                   access: Tuple[Tuple[str, str], ...],
                   api_key_field: str, channel_secret_field: str) -> PlatformProfile:
    """WhatsApp / Instagram / Facebook share the three-step Meta flow."""
    slug = platform.slug
    return PlatformProfile(
        platform=platform,
        default_name=default_name,
        description=description,
        steps=(
            WizardStep(0, "account", "Account identity",
                       tuple(_field(slug, n, lbl) for n, lbl in identity)),
            WizardStep(1, "access", "Access credentials",
                       tuple(_field(slug, n, lbl) for n, lbl in access)),
            WizardStep(2, "webhook", "Webhook", (
                _field(slug, WEBHOOK_URL_FIELD, "Webhook URL"),
                _field(slug, "verifyToken", "Verify token"),
            )),
        ),
        api_key_field=api_key_field,
        channel_secret_field=channel_secret_field,
    )


PLATFORM_PROFILES: Dict[Platform, PlatformProfile] = {
    Platform.LINE: PlatformProfile(
        platform=Platform.LINE,
        default_name="LINE Channel",
        description="LINE Official Account",
        steps=(
            WizardStep(0, "credentials", "Channel credentials", (
                _field("line", "channelSecret", "Channel secret"),
                _field("line", "channelAccessToken", "Channel access token"),
            )),
            WizardStep(1, "webhook", "Webhook", (
                _field("line", WEBHOOK_URL_FIELD, "Webhook URL", storage_key="userWebhookURL"),
            )),
        ),
        api_key_field="channelAccessToken",
        channel_secret_field="channelSecret",
    ),
    Platform.WHATSAPP: _meta_platform(
        Platform.WHATSAPP, "WhatsApp Channel", "WhatsApp Business",
        identity=(("businessAccountId", "Business account ID"), ("phoneNumberId", "Phone number ID")),
        access=(("accessToken", "Access token"), ("phoneNumber", "Phone number")),
        api_key_field="accessToken",
        channel_secret_field="businessAccountId",
    ),
    Platform.INSTAGRAM: _meta_platform(
        Platform.INSTAGRAM, "Instagram Channel", "Instagram Business Account",
        identity=(("businessAccountId", "Business account ID"), ("pageId", "Linked page ID")),
        access=(("accessToken", "Access token"), ("appSecret", "App secret")),
        api_key_field="accessToken",
        channel_secret_field="businessAccountId",
    ),
    Platform.FACEBOOK: _meta_platform(
        Platform.FACEBOOK, "Facebook Channel", "Facebook Page",
        identity=(("pageId", "Page ID"), ("appId", "App ID")),
        access=(("pageAccessToken", "Page access token"), ("appSecret", "App secret")),
        api_key_field="pageAccessToken",
        channel_secret_field="appSecret",
    ),
}


def get_platform_profile(platform) -> PlatformProfile:
    return PLATFORM_PROFILES[Platform.parse(platform)]
