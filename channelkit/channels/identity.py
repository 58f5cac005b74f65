"""
User identity resolution for webhook issuance.

Order of preference: cached ``currentUserId`` → backend profile → a locally
synthesized uuid4. Never fails; the synthesized id is cached durably and
tagged with ``currentUserIdSource=synthesized``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

from channelkit.channels.credential_store import (
    CURRENT_USER_ID_KEY,
    CURRENT_USER_ID_SOURCE_KEY,
    CredentialStore,
)
from channelkit.errors import ChannelKitError
from channelkit.services.backend_client import BackendClient

logger = logging.getLogger(__name__)


class IdentitySource:
    CACHED = "cached"
    REMOTE = "remote"
    SYNTHESIZED = "synthesized"


class UserIdentityResolver:
    def __init__(self, store: CredentialStore, client: Optional[BackendClient] = None):
        self._store = store
        self._client = client
        self._lock = asyncio.Lock()

    @property
    def source(self) -> str:
        return self._store.get_global(CURRENT_USER_ID_SOURCE_KEY) or IdentitySource.CACHED

    async def resolve_user_id(self) -> str:
        cached = self._store.get_global(CURRENT_USER_ID_KEY)
        if cached:
            return cached

        async with self._lock:
            # Another caller may have resolved while we waited
            cached = self._store.get_global(CURRENT_USER_ID_KEY)
            if cached:
                return cached

            user_id = await self._fetch_remote()
            source = IdentitySource.REMOTE
            if not user_id:
                user_id = str(uuid.uuid4())
                source = IdentitySource.SYNTHESIZED
                logger.warning("[IDENTITY] Using synthesized user id %s", user_id)
            else:
                logger.info("[IDENTITY] Resolved user id from profile")

            self._store.set_global(CURRENT_USER_ID_KEY, user_id)
            self._store.set_global(CURRENT_USER_ID_SOURCE_KEY, source)
            return user_id

    async def _fetch_remote(self) -> Optional[str]:
        if self._client is None:
            return None
        try:
            profile = await self._client.get_user_profile()
        except ChannelKitError as e:
            logger.warning("[IDENTITY] Profile lookup failed: %s", e)
            return None
        user_id = profile.get("userId") or profile.get("id")
        if not user_id or not str(user_id).strip():
            logger.warning("[IDENTITY] Profile response carried no userId")
            return None
        return str(user_id).strip()
