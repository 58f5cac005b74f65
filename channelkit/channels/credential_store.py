"""
Credential Store — durable per-platform credential fields and setup flags.

The single writable home of raw credential input. Every value is a string
under a namespaced storage key (``lineChannelSecret``, ``whatsappAccessToken``,
...). Writes are serialized per platform and bump a change counter that the
setup wizard watches to recompute its state.

Two key/value backends ship with it:
- InMemoryBackend      — dict, for tests and ephemeral runs.
- SqlKeyValueBackend   — SQLAlchemy table ``settings_entries``.

Usage:
    from channelkit.channels.credential_store import CredentialStore, InMemoryBackend

    store = CredentialStore(InMemoryBackend())
    store.set(Platform.LINE, "channelSecret", "s3cret")
    store.all_fields_present(Platform.LINE, ["channelSecret"])   # True
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from channelkit.channels.models import IssuedWebhook
from channelkit.channels.platforms import Platform, get_platform_profile
from channelkit.db.models import SettingEntry

logger = logging.getLogger(__name__)

SCHEMA_VERSION_KEY = "schemaVersion"
CURRENT_SCHEMA_VERSION = 2

CURRENT_USER_ID_KEY = "currentUserId"
CURRENT_USER_ID_SOURCE_KEY = "currentUserIdSource"

SETUP_COMPLETED_FLAG = "setupCompleted"
PROGRESS_FLAGS = (SETUP_COMPLETED_FLAG,)

WEBHOOK_CACHE_PREFIX = "webhookCache."


# ── Backends ─────────────────────────────────────────────────


class KeyValueBackend:
    """Minimal string key/value contract shared by all backends."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class InMemoryBackend(KeyValueBackend):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqlKeyValueBackend(KeyValueBackend):
    """Key/value rows in ``settings_entries`` through a synchronous engine."""

    def __init__(self, url_or_engine):
        if isinstance(url_or_engine, Engine):
            self._engine = url_or_engine
        elif str(url_or_engine).startswith("sqlite"):
            self._engine = create_engine(
                url_or_engine,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self._engine = create_engine(url_or_engine, pool_pre_ping=True)
        SettingEntry.__table__.create(self._engine, checkfirst=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)

    def _session(self) -> Session:
        return self._session_factory()

    def get(self, key: str) -> Optional[str]:
        with self._session() as session:
            row = session.get(SettingEntry, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with self._session() as session, session.begin():
            row = session.get(SettingEntry, key)
            if row is None:
                session.add(SettingEntry(key=key, value=value))
            else:
                row.value = value

    def delete(self, key: str) -> None:
        with self._session() as session, session.begin():
            session.execute(delete(SettingEntry).where(SettingEntry.key == key))

    def keys(self, prefix: str = "") -> List[str]:
        with self._session() as session:
            stmt = select(SettingEntry.key).order_by(SettingEntry.key)
            if prefix:
                stmt = stmt.where(SettingEntry.key.startswith(prefix))
            return list(session.scalars(stmt))

    def dispose(self) -> None:
        self._engine.dispose()


# ── Schema migrations ───────────────────────────────────────


def _migrate_v1_to_v2(backend: KeyValueBackend) -> None:
    """v1 kept the user id under ``userId`` and the LINE webhook under ``lineWebhookUrl``."""
    for legacy, current in (("userId", CURRENT_USER_ID_KEY), ("lineWebhookUrl", "userWebhookURL")):
        value = backend.get(legacy)
        if value and not backend.get(current):
            backend.set(current, value)
        if value is not None:
            backend.delete(legacy)


MIGRATIONS: Dict[int, Callable[[KeyValueBackend], None]] = {
    1: _migrate_v1_to_v2,
}


# ── Store ────────────────────────────────────────────────────


class CredentialStore:
    """
    Per-platform credential fields, global keys, setup flags and the issued
    webhook cache over a KeyValueBackend.

    Never raises for unknown fields: they are logged and stored under the
    platform namespace. Does not validate secret formats.
    """

    def __init__(self, backend: Optional[KeyValueBackend] = None):
        self._backend = backend or InMemoryBackend()
        self._locks: Dict[Platform, threading.Lock] = {p: threading.Lock() for p in Platform}
        self._global_lock = threading.Lock()
        self._change_counter = 0
        self._versions: Dict[Platform, int] = {p: 0 for p in Platform}
        self._ensure_schema()

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def _ensure_schema(self) -> None:
        raw = self._backend.get(SCHEMA_VERSION_KEY)
        if raw is None:
            self._backend.set(SCHEMA_VERSION_KEY, str(CURRENT_SCHEMA_VERSION))
            logger.info("[CREDENTIALS] Stamped store with schema v%d", CURRENT_SCHEMA_VERSION)
            return
        version = int(raw)
        if version > CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Credential store schema v{version} is newer than supported v{CURRENT_SCHEMA_VERSION}"
            )
        while version < CURRENT_SCHEMA_VERSION:
            MIGRATIONS[version](self._backend)
            version += 1
            self._backend.set(SCHEMA_VERSION_KEY, str(version))
            logger.info("[CREDENTIALS] Migrated store to schema v%d", version)

    @property
    def schema_version(self) -> int:
        return int(self._backend.get(SCHEMA_VERSION_KEY) or CURRENT_SCHEMA_VERSION)

    # ── Change tracking ──

    @property
    def change_counter(self) -> int:
        return self._change_counter

    def version(self, platform) -> int:
        return self._versions[Platform.parse(platform)]

    def _bump(self, platform: Platform) -> None:
        with self._global_lock:
            self._change_counter += 1
            self._versions[platform] += 1

    # ── Fields ──

    def _storage_key(self, platform: Platform, field: str) -> str:
        profile = get_platform_profile(platform)
        if profile.get_field(field) is None:
            logger.warning("[CREDENTIALS] Unknown field %s.%s stored under namespace", platform.slug, field)
        return profile.storage_key(field)

    def get(self, platform, field: str) -> str:
        platform = Platform.parse(platform)
        return self._backend.get(self._storage_key(platform, field)) or ""

    def set(self, platform, field: str, value: Optional[str]) -> None:
        platform = Platform.parse(platform)
        key = self._storage_key(platform, field)
        with self._locks[platform]:
            self._backend.set(key, "" if value is None else str(value))
            self._bump(platform)
        logger.debug("[CREDENTIALS] %s.%s updated", platform.slug, field)

    def update(self, platform, values: Dict[str, Optional[str]]) -> None:
        for field_name, value in values.items():
            self.set(platform, field_name, value)

    def all_fields_present(self, platform, field_names: Iterable[str]) -> bool:
        return not self.missing_fields(platform, field_names)

    def missing_fields(self, platform, field_names: Iterable[str]) -> List[str]:
        return [name for name in field_names if not self.get(platform, name).strip()]

    def credential_set(self, platform) -> "OrderedDict[str, str]":
        """All known fields of the platform, in step/field order."""
        platform = Platform.parse(platform)
        profile = get_platform_profile(platform)
        return OrderedDict((name, self.get(platform, name)) for name in profile.field_names)

    def reset(self, platform) -> None:
        """Clear every credential field and progress flag of the platform."""
        platform = Platform.parse(platform)
        profile = get_platform_profile(platform)
        with self._locks[platform]:
            for f in profile.fields:
                self._backend.delete(f.storage_key)
            for flag in PROGRESS_FLAGS:
                self._backend.delete(self._flag_key(platform, flag))
            self._bump(platform)
        logger.info("[CREDENTIALS] Reset %s credentials", platform.slug)

    # ── Global keys ──

    def get_global(self, key: str) -> str:
        return self._backend.get(key) or ""

    def set_global(self, key: str, value: str) -> None:
        with self._global_lock:
            self._backend.set(key, value)

    # ── Setup flags ──

    @staticmethod
    def _flag_key(platform: Platform, name: str) -> str:
        return f"{platform.slug}{name[:1].upper()}{name[1:]}"

    def get_flag(self, platform, name: str = SETUP_COMPLETED_FLAG) -> bool:
        platform = Platform.parse(platform)
        return self._backend.get(self._flag_key(platform, name)) == "true"

    def set_flag(self, platform, name: str = SETUP_COMPLETED_FLAG, value: bool = True) -> None:
        platform = Platform.parse(platform)
        with self._locks[platform]:
            self._backend.set(self._flag_key(platform, name), "true" if value else "false")

    # ── Issued webhook cache ──

    @staticmethod
    def _webhook_key(platform: Platform, user_id: str) -> str:
        return f"{WEBHOOK_CACHE_PREFIX}{platform.slug}.{user_id}"

    def cached_webhook(self, platform, user_id: str) -> Optional[IssuedWebhook]:
        platform = Platform.parse(platform)
        raw = self._backend.get(self._webhook_key(platform, user_id))
        if not raw:
            return None
        try:
            return IssuedWebhook.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("[CREDENTIALS] Dropping unreadable webhook cache for %s", platform.slug)
            self._backend.delete(self._webhook_key(platform, user_id))
            return None

    def cache_webhook(self, record: IssuedWebhook) -> None:
        with self._locks[record.platform]:
            self._backend.set(
                self._webhook_key(record.platform, record.user_id),
                json.dumps(record.to_dict()),
            )
