"""
Setup API — credential entry and wizard progress per platform.

GET    /api/setup/{platform}/credentials      — credential set (masked unless reveal=true)
PUT    /api/setup/{platform}/credentials      — partial update
DELETE /api/setup/{platform}/credentials      — reset platform
GET    /api/setup/{platform}/wizard           — derived wizard state
POST   /api/setup/{platform}/wizard/advance   — leave a step
POST   /api/setup/{platform}/complete         — create/refresh the channel
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from channelkit.api.deps import ChannelServices, get_channel_services, resolve_platform
from channelkit.channels.credential_store import SETUP_COMPLETED_FLAG
from channelkit.channels.models import mask_secret
from channelkit.channels.platforms import WEBHOOK_URL_FIELD, Platform
from channelkit.schemas import (
    CompleteSetupRequest,
    CredentialsResponse,
    CredentialsUpdate,
    StepInfo,
    WizardAdvanceRequest,
    WizardStateResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/setup", tags=["Setup"])


def _credentials_response(services: ChannelServices, platform: Platform, reveal: bool) -> CredentialsResponse:
    creds = services.store.credential_set(platform)
    fields = {
        name: value if (reveal or name == WEBHOOK_URL_FIELD) else mask_secret(value)
        for name, value in creds.items()
    }
    return CredentialsResponse(
        platform=platform.value,
        fields=fields,
        present={name: bool(value.strip()) for name, value in creds.items()},
    )


def _wizard_response(services: ChannelServices, platform: Platform) -> WizardStateResponse:
    wizard = services.wizard(platform)
    state = wizard.state()
    steps = [
        StepInfo(
            index=step.index,
            key=step.key,
            title=step.title,
            fields=list(step.field_names),
            complete=step.index in state.completed_steps,
            missing_fields=wizard.missing_fields(step.index),
        )
        for step in wizard.profile.steps
    ]
    return WizardStateResponse(
        platform=platform.value,
        step_count=state.step_count,
        current_step=state.current_step_index,
        completed_steps=sorted(state.completed_steps),
        is_complete=state.is_complete,
        setup_completed=services.store.get_flag(platform, SETUP_COMPLETED_FLAG),
        steps=steps,
    )


@router.get("/{platform}/credentials", response_model=CredentialsResponse)
async def get_credentials(
    platform: Platform = Depends(resolve_platform),
    reveal: bool = False,
    services: ChannelServices = Depends(get_channel_services),
):
    return _credentials_response(services, platform, reveal)


@router.put("/{platform}/credentials", response_model=CredentialsResponse)
async def update_credentials(
    body: CredentialsUpdate,
    platform: Platform = Depends(resolve_platform),
    services: ChannelServices = Depends(get_channel_services),
):
    await asyncio.to_thread(services.store.update, platform, body.values)
    logger.info("[CREDENTIALS] %s fields updated: %s", platform.slug, ", ".join(body.values))
    return _credentials_response(services, platform, reveal=False)


@router.delete("/{platform}/credentials")
async def reset_credentials(
    platform: Platform = Depends(resolve_platform),
    services: ChannelServices = Depends(get_channel_services),
):
    await asyncio.to_thread(services.wizard(platform).reset)
    return {"status": "ok", "platform": platform.value}


@router.get("/{platform}/wizard", response_model=WizardStateResponse)
async def get_wizard(
    platform: Platform = Depends(resolve_platform),
    services: ChannelServices = Depends(get_channel_services),
):
    return _wizard_response(services, platform)


@router.post("/{platform}/wizard/advance")
async def advance_wizard(
    body: WizardAdvanceRequest,
    platform: Platform = Depends(resolve_platform),
    services: ChannelServices = Depends(get_channel_services),
):
    result = await services.wizard(platform).advance(body.step_index)
    return {
        "result": result.to_dict(),
        "wizard": _wizard_response(services, platform).model_dump(),
    }


@router.post("/{platform}/complete")
async def complete_setup(
    body: CompleteSetupRequest,
    platform: Platform = Depends(resolve_platform),
    services: ChannelServices = Depends(get_channel_services),
):
    completion = await services.registry.complete_setup(platform, name=body.name)
    remote = services.registry.remote_result(completion.channel.id)
    payload = completion.to_dict()
    payload["remote"] = remote.to_dict() if remote else None
    return payload
