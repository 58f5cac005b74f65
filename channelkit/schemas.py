"""
Pydantic request/response schemas for the onboarding API
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field


# ============ Setup Schemas ============

class CredentialsUpdate(BaseModel):
    """Partial credential update; keys are logical field names."""
    values: Dict[str, Optional[str]] = Field(default_factory=dict)


class CredentialsResponse(BaseModel):
    platform: str
    fields: Dict[str, str]
    present: Dict[str, bool]


class WizardAdvanceRequest(BaseModel):
    step_index: Optional[int] = None  # default: the current step


class StepInfo(BaseModel):
    index: int
    key: str
    title: str
    fields: List[str]
    complete: bool
    missing_fields: List[str]


class WizardStateResponse(BaseModel):
    platform: str
    step_count: int
    current_step: Optional[int] = None
    completed_steps: List[int]
    is_complete: bool
    setup_completed: bool
    steps: List[StepInfo]


class CompleteSetupRequest(BaseModel):
    name: Optional[str] = None


# ============ Channel Schemas ============

class ChannelCreate(BaseModel):
    platform: str
    name: Optional[str] = None
    credentials: Optional[Dict[str, str]] = None


class ChannelUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    api_key: Optional[str] = None
    channel_secret: Optional[str] = None
    is_active: Optional[bool] = None


class ChannelResponse(BaseModel):
    id: str
    name: str
    platform: str
    description: str
    user_id: str
    api_key: str
    channel_secret: str
    webhook_url: Optional[str] = None
    is_active: bool
    api_status: str
    total_messages: int
    today_messages: int
    avg_response_time: int
    satisfaction_score: int
    last_activity: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TestConnectionRequest(BaseModel):
    request_token: Optional[str] = None


# ============ Webhook Schemas ============

class AdoptWebhookRequest(BaseModel):
    url: Optional[str] = None


class WebhookResponse(BaseModel):
    user_id: str
    platform: str
    url: str
    issued_at: str
    synced: bool
    reachable: Optional[bool] = None
