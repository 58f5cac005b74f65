"""
Channel domain records.

Channel is the aggregate root owned by ChannelRegistry. Everything else here
is a value record produced by one component and consumed by another:
RemoteChannel (reconciler input), ProbeResult (prober output), IssuedWebhook
(issuer output), RemoteLink (remote-id side table) and BestEffortResult
(outcome of a remote call whose failure never blocks the local path).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from channelkit.channels.platforms import ApiStatus, Platform, get_platform_profile

logger = logging.getLogger(__name__)

SECRET_MASK = "••••••"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in SQL columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def mask_secret(value: str) -> str:
    if not value:
        return ""
    if len(value) <= 8:
        return SECRET_MASK
    return f"{value[:4]}{SECRET_MASK}{value[-2:]}"


class VerificationSource(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


@dataclass
class Channel:
    platform: Platform
    name: str = ""
    api_key: str = ""
    channel_secret: str = ""
    webhook_url: Optional[str] = None
    is_active: bool = False
    api_status: ApiStatus = ApiStatus.DISCONNECTED
    description: str = ""
    user_id: str = ""
    total_messages: int = 0
    today_messages: int = 0
    avg_response_time: int = 0
    satisfaction_score: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.platform = Platform.parse(self.platform)
        self.api_status = ApiStatus(self.api_status)
        profile = get_platform_profile(self.platform)
        if not self.name:
            self.name = profile.default_name
        if not self.description:
            self.description = profile.description
        now = utcnow()
        if self.created_at is None:
            self.created_at = now
        if self.updated_at is None:
            self.updated_at = self.created_at
        if self.last_activity is None:
            self.last_activity = self.created_at

    @property
    def key(self) -> tuple:
        """Reconciliation identity: (name, platform)."""
        return (self.name, self.platform)

    def touch(self) -> None:
        self.updated_at = utcnow()

    def apply_probe(self, result: "ProbeResult") -> None:
        self.is_active = result.connected
        self.api_status = result.api_status
        self.touch()

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "platform": self.platform.value,
            "description": self.description,
            "user_id": self.user_id,
            "api_key": self.api_key if include_secrets else mask_secret(self.api_key),
            "channel_secret": (
                self.channel_secret if include_secrets else mask_secret(self.channel_secret)
            ),
            "webhook_url": self.webhook_url,
            "is_active": self.is_active,
            "api_status": self.api_status.value,
            "total_messages": self.total_messages,
            "today_messages": self.today_messages,
            "avg_response_time": self.avg_response_time,
            "satisfaction_score": self.satisfaction_score,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off", ""})


def parse_remote_bool(value: Any) -> Optional[bool]:
    """Backend flags arrive as bools, 0/1 or strings; None when unreadable."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return bool(value) if value in (0, 1) else None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return None


@dataclass
class RemoteChannel:
    """Tolerant view of one channel as the backend reports it."""
    remote_id: str
    name: str
    platform: Platform
    api_key: str = ""
    channel_secret: str = ""
    is_active: bool = False
    webhook_url: Optional[str] = None
    user_id: str = ""

    @property
    def key(self) -> tuple:
        return (self.name, self.platform)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["RemoteChannel"]:
        """Parse a backend record; returns None (and logs) when unusable."""
        if not isinstance(payload, dict):
            logger.warning("[SYNC] Skipping non-object remote channel: %r", type(payload).__name__)
            return None
        name = str(payload.get("name") or "").strip()
        if not name:
            logger.warning("[SYNC] Skipping remote channel %s: missing name", payload.get("id"))
            return None
        try:
            platform = Platform.parse(payload.get("platform"))
        except ValueError:
            logger.warning(
                "[SYNC] Skipping remote channel %s: unknown platform %r",
                payload.get("id"), payload.get("platform"),
            )
            return None
        is_active = parse_remote_bool(payload.get("isActive"))
        if is_active is None:
            logger.warning(
                "[SYNC] Skipping remote channel %s: unreadable isActive %r",
                payload.get("id"), payload.get("isActive"),
            )
            return None
        return cls(
            remote_id=str(payload.get("id") or payload.get("_id") or ""),
            name=name,
            platform=platform,
            api_key=str(payload.get("apiKey") or ""),
            channel_secret=str(payload.get("channelSecret") or ""),
            is_active=is_active,
            webhook_url=str(payload.get("webhookUrl") or "") or None,
            user_id=str(payload.get("userId") or ""),
        )


@dataclass
class ProbeResult:
    connected: bool
    verified_by: VerificationSource
    fallback_reason: Optional[str] = None
    message: str = ""

    @property
    def api_status(self) -> ApiStatus:
        if self.connected:
            return ApiStatus.CONNECTED
        if self.verified_by == VerificationSource.REMOTE:
            return ApiStatus.FAILED
        return ApiStatus.DISCONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "verified_by": self.verified_by.value,
            "fallback_reason": self.fallback_reason,
            "message": self.message,
            "api_status": self.api_status.value,
        }


@dataclass
class IssuedWebhook:
    user_id: str
    platform: Platform
    url: str
    issued_at: Optional[datetime] = None
    synced: bool = False

    def __post_init__(self):
        self.platform = Platform.parse(self.platform)
        if self.issued_at is None:
            self.issued_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "platform": self.platform.value,
            "url": self.url,
            "issued_at": self.issued_at.isoformat(),
            "synced": self.synced,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IssuedWebhook":
        issued_at = data.get("issued_at")
        return cls(
            user_id=data["user_id"],
            platform=Platform.parse(data["platform"]),
            url=data["url"],
            issued_at=datetime.fromisoformat(issued_at) if issued_at else None,
            synced=bool(data.get("synced", False)),
        )


@dataclass
class RemoteLink:
    """Backend id of the channel last created remotely for a platform."""
    platform: Platform
    remote_id: str
    local_channel_id: str
    linked_at: Optional[datetime] = None

    def __post_init__(self):
        self.platform = Platform.parse(self.platform)
        if self.linked_at is None:
            self.linked_at = utcnow()


@dataclass
class BestEffortResult:
    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "BestEffortResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, exc: BaseException) -> "BestEffortResult":
        return cls(ok=False, error=str(exc) or exc.__class__.__name__)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "error": self.error}


@dataclass
class ChannelFilter:
    platform: Optional[Platform] = None
    is_active: Optional[bool] = None
    query: Optional[str] = None

    def matches(self, channel: Channel) -> bool:
        if self.platform is not None and channel.platform != Platform.parse(self.platform):
            return False
        if self.is_active is not None and channel.is_active != self.is_active:
            return False
        if self.query:
            needle = self.query.lower()
            if needle not in channel.name.lower() and needle not in channel.description.lower():
                return False
        return True


@dataclass
class ReconcileReport:
    fetched: int = 0
    inserted: List[str] = field(default_factory=list)
    skipped: int = 0
    malformed: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "fetched": self.fetched,
            "inserted": list(self.inserted),
            "skipped": self.skipped,
            "malformed": self.malformed,
            "error": self.error,
        }


@dataclass
class AdvanceResult:
    ok: bool
    step_index: int
    next_step: Optional[int] = None
    missing_fields: List[str] = field(default_factory=list)
    webhook: Optional[IssuedWebhook] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "step_index": self.step_index,
            "next_step": self.next_step,
            "missing_fields": list(self.missing_fields),
            "webhook": self.webhook.to_dict() if self.webhook else None,
        }
