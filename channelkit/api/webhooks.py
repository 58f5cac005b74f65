"""
Webhook URL endpoints.

POST /api/webhooks/{platform}/issue  — issue (or return) this user's webhook URL
GET  /api/webhooks/{platform}        — backend copy if valid, else local issue
POST /api/webhooks/{platform}/adopt  — adopt a URL reported by the backend
"""

import logging

from fastapi import APIRouter, Depends

from channelkit.api.deps import ChannelServices, get_channel_services, resolve_platform
from channelkit.channels.models import IssuedWebhook
from channelkit.channels.platforms import Platform
from channelkit.schemas import AdoptWebhookRequest, WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _response(record: IssuedWebhook, reachable=None) -> WebhookResponse:
    return WebhookResponse(**record.to_dict(), reachable=reachable)


@router.post("/{platform}/issue", response_model=WebhookResponse)
async def issue_webhook(
    platform: Platform = Depends(resolve_platform),
    services: ChannelServices = Depends(get_channel_services),
):
    return _response(await services.issuer.issue(platform))


@router.get("/{platform}", response_model=WebhookResponse)
async def get_webhook(
    platform: Platform = Depends(resolve_platform),
    check: bool = False,
    services: ChannelServices = Depends(get_channel_services),
):
    record = await services.issuer.fetch_remote(platform)
    reachable = await services.issuer.check_reachable(record.url) if check else None
    return _response(record, reachable)


@router.post("/{platform}/adopt", response_model=WebhookResponse)
async def adopt_webhook(
    body: AdoptWebhookRequest,
    platform: Platform = Depends(resolve_platform),
    services: ChannelServices = Depends(get_channel_services),
):
    return _response(await services.issuer.adopt_remote(platform, body.url))
