from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscribeIn(BaseModel):
    plan_id: Optional[str] = Field(default=None, max_length=64)
    trial: bool = False


class CreatorSummaryOut(BaseModel):
    id: uuid.UUID
    name: str
    username: str

    model_config = ConfigDict(from_attributes=True)


class SubscriptionOut(BaseModel):
    id: uuid.UUID
    creator: CreatorSummaryOut
    status: str
    amount: Decimal
    expires_at: datetime
    plan_details: Optional[dict] = None
    is_entitled: bool
    created_at: datetime


class FollowOut(BaseModel):
    success: bool
    action: str
    followers_count: Optional[int] = None
    redirect_url: Optional[str] = None
    message: Optional[str] = None


class FollowStatusOut(BaseModel):
    is_following: bool
    followers_count: int
