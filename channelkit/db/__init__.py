from channelkit.db.models import Base, ChannelRecord, RemoteChannelLink, SettingEntry
from channelkit.db.database import init_db, async_session_maker, engine

__all__ = [
    "Base",
    "ChannelRecord",
    "RemoteChannelLink",
    "SettingEntry",
    # Database
    "init_db",
    "async_session_maker",
    "engine",
]
