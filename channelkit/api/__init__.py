from channelkit.api.setup import router as setup_router
from channelkit.api.channels import router as channels_router
from channelkit.api.webhooks import router as webhooks_router
from channelkit.api.deps import (
    ChannelServices,
    build_channel_services,
    get_channel_services,
    set_channel_services,
)

__all__ = [
    "setup_router",
    "channels_router",
    "webhooks_router",
    "ChannelServices",
    "build_channel_services",
    "get_channel_services",
    "set_channel_services",
]
