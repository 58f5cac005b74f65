"""
Database models for channel onboarding

- channels              — locally cached Channel aggregates
- remote_channel_links  — backend id per platform (last remote create)
- settings_entries      — key/value rows behind the credential store
"""

from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import String, Text, DateTime, Integer, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ChannelRecord(Base):
    """
    One onboarded messaging channel.
    Secrets are stored as given; masking happens at serialisation time.
    """
    __tablename__ = "channels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    platform: Mapped[str] = mapped_column(String(20), nullable=False)  # LINE | WhatsApp | Instagram | Facebook
    description: Mapped[str] = mapped_column(String(255), default="")
    user_id: Mapped[str] = mapped_column(String(64), default="")

    api_key: Mapped[str] = mapped_column(Text, default="")
    channel_secret: Mapped[str] = mapped_column(Text, default="")
    webhook_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    api_status: Mapped[str] = mapped_column(String(20), default="未連接")

    # Activity counters (seeded, owned by the messaging side)
    total_messages: Mapped[int] = mapped_column(Integer, default=0)
    today_messages: Mapped[int] = mapped_column(Integer, default=0)
    avg_response_time: Mapped[int] = mapped_column(Integer, default=0)
    satisfaction_score: Mapped[int] = mapped_column(Integer, default=0)

    last_activity: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_channels_platform_name", "platform", "name"),
    )


class RemoteChannelLink(Base):
    """Backend channel id recorded per platform by the last remote create."""
    __tablename__ = "remote_channel_links"

    platform: Mapped[str] = mapped_column(String(20), primary_key=True)
    remote_id: Mapped[str] = mapped_column(String(64), nullable=False)
    local_channel_id: Mapped[str] = mapped_column(String(36), nullable=False)
    linked_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class SettingEntry(Base):
    """String key/value pair (credential fields, flags, webhook cache)."""
    __tablename__ = "settings_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
