"""
Channels API — list, create, edit, delete, test and sync channels.

GET    /api/channels                   — list (platform / is_active / q filters)
POST   /api/channels                   — create from credentials
GET    /api/channels/stats             — counts and message totals
POST   /api/channels/sync              — pull backend channels and reconcile
GET    /api/channels/{id}              — one channel
PATCH  /api/channels/{id}              — edit name / secrets / active flag
DELETE /api/channels/{id}              — delete (remote delete in background)
POST   /api/channels/{id}/test         — re-probe credentials
POST   /api/channels/{id}/test/cancel  — cancel an in-flight probe
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from channelkit.api.deps import ChannelServices, get_channel_services, resolve_platform
from channelkit.channels.models import ChannelFilter
from channelkit.schemas import ChannelCreate, ChannelResponse, ChannelUpdate, TestConnectionRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/channels", tags=["Channels"])


@router.get("", response_model=List[ChannelResponse])
async def list_channels(
    platform: Optional[str] = None,
    is_active: Optional[bool] = None,
    q: Optional[str] = None,
    services: ChannelServices = Depends(get_channel_services),
):
    channel_filter = ChannelFilter(
        platform=resolve_platform(platform) if platform else None,
        is_active=is_active,
        query=q,
    )
    return [c.to_dict() for c in services.registry.list(channel_filter)]


@router.post("", status_code=201)
async def create_channel(
    body: ChannelCreate,
    services: ChannelServices = Depends(get_channel_services),
):
    platform = resolve_platform(body.platform)
    channel = await services.registry.create(platform, body.credentials, name=body.name)
    remote = services.registry.remote_result(channel.id)
    return {
        "channel": channel.to_dict(),
        "remote": remote.to_dict() if remote else None,
    }


@router.get("/stats")
async def channel_stats(services: ChannelServices = Depends(get_channel_services)):
    return services.registry.stats()


@router.post("/sync")
async def sync_channels(services: ChannelServices = Depends(get_channel_services)):
    report = await services.reconciler.sync()
    return report.to_dict()


@router.get("/{channel_id}", response_model=ChannelResponse)
async def get_channel(channel_id: str, services: ChannelServices = Depends(get_channel_services)):
    return services.registry.get(channel_id).to_dict()


@router.patch("/{channel_id}")
async def update_channel(
    channel_id: str,
    body: ChannelUpdate,
    services: ChannelServices = Depends(get_channel_services),
):
    changes = body.model_dump(exclude_none=True)
    channel = await services.registry.update(channel_id, **changes)
    remote = services.registry.remote_result(channel_id)
    return {
        "channel": channel.to_dict(),
        "remote": remote.to_dict() if remote else None,
    }


@router.delete("/{channel_id}")
async def delete_channel(channel_id: str, services: ChannelServices = Depends(get_channel_services)):
    channel = await services.registry.delete(channel_id)
    return {"status": "deleted", "id": channel.id}


@router.post("/{channel_id}/test")
async def test_channel(
    channel_id: str,
    body: Optional[TestConnectionRequest] = None,
    services: ChannelServices = Depends(get_channel_services),
):
    token = body.request_token if body else None
    result = await services.registry.test_connection(channel_id, request_token=token)
    return {
        "result": result.to_dict(),
        "channel": services.registry.get(channel_id).to_dict(),
    }


@router.post("/{channel_id}/test/cancel")
async def cancel_channel_test(channel_id: str, services: ChannelServices = Depends(get_channel_services)):
    services.registry.get(channel_id)
    cancelled = services.registry.cancel_probe(channel_id)
    return {"cancelled": cancelled}
