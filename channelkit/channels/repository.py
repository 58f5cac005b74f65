"""
Channel persistence — maps Channel / RemoteLink records onto SQL rows.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from channelkit.channels.models import Channel, RemoteLink
from channelkit.channels.platforms import ApiStatus, Platform
from channelkit.db.models import ChannelRecord, RemoteChannelLink

logger = logging.getLogger(__name__)


def _to_channel(row: ChannelRecord) -> Channel:
    return Channel(
        id=row.id,
        name=row.name,
        platform=Platform.parse(row.platform),
        description=row.description or "",
        user_id=row.user_id or "",
        api_key=row.api_key or "",
        channel_secret=row.channel_secret or "",
        webhook_url=row.webhook_url,
        is_active=bool(row.is_active),
        api_status=ApiStatus(row.api_status or ApiStatus.DISCONNECTED.value),
        total_messages=row.total_messages or 0,
        today_messages=row.today_messages or 0,
        avg_response_time=row.avg_response_time or 0,
        satisfaction_score=row.satisfaction_score or 0,
        last_activity=row.last_activity,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _copy_into(row: ChannelRecord, channel: Channel) -> None:
    row.name = channel.name
    row.platform = channel.platform.value
    row.description = channel.description
    row.user_id = channel.user_id
    row.api_key = channel.api_key
    row.channel_secret = channel.channel_secret
    row.webhook_url = channel.webhook_url
    row.is_active = channel.is_active
    row.api_status = channel.api_status.value
    row.total_messages = channel.total_messages
    row.today_messages = channel.today_messages
    row.avg_response_time = channel.avg_response_time
    row.satisfaction_score = channel.satisfaction_score
    row.last_activity = channel.last_activity
    row.created_at = channel.created_at
    row.updated_at = channel.updated_at


class ChannelRepository:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def load_channels(self) -> List[Channel]:
        async with self._session_factory() as session:
            result = await session.execute(select(ChannelRecord).order_by(ChannelRecord.created_at))
            channels = []
            for row in result.scalars():
                try:
                    channels.append(_to_channel(row))
                except ValueError:
                    logger.warning("[REGISTRY] Skipping stored channel %s with unknown platform %r", row.id, row.platform)
            return channels

    async def save_channel(self, channel: Channel) -> None:
        async with self._session_factory() as session:
            row = await session.get(ChannelRecord, channel.id)
            if row is None:
                row = ChannelRecord(id=channel.id)
                session.add(row)
            _copy_into(row, channel)
            await session.commit()

    async def delete_channel(self, channel_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(ChannelRecord).where(ChannelRecord.id == channel_id))
            await session.commit()

    async def load_links(self) -> Dict[Platform, RemoteLink]:
        async with self._session_factory() as session:
            result = await session.execute(select(RemoteChannelLink))
            links: Dict[Platform, RemoteLink] = {}
            for row in result.scalars():
                try:
                    platform = Platform.parse(row.platform)
                except ValueError:
                    continue
                links[platform] = RemoteLink(
                    platform=platform,
                    remote_id=row.remote_id,
                    local_channel_id=row.local_channel_id,
                    linked_at=row.linked_at,
                )
            return links

    async def save_link(self, link: RemoteLink) -> None:
        async with self._session_factory() as session:
            row = await session.get(RemoteChannelLink, link.platform.value)
            if row is None:
                row = RemoteChannelLink(platform=link.platform.value)
                session.add(row)
            row.remote_id = link.remote_id
            row.local_channel_id = link.local_channel_id
            row.linked_at = link.linked_at
            await session.commit()

    async def delete_link(self, platform: Platform) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(RemoteChannelLink).where(RemoteChannelLink.platform == platform.value)
            )
            await session.commit()
