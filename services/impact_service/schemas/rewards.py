"""Account, reward catalog and voucher schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.impact_service.models.enums import RewardType, VoucherStatus


class BadgeResponse(BaseModel):
    key: str
    title: str
    min_donations: int
    max_donations: Optional[int] = None


class AccountResponse(BaseModel):
    user_auth_id: str
    total_donations: int
    impact_points: int
    total_points: int
    challenges_completed: int
    last_donation_at: Optional[datetime] = None
    badge: BadgeResponse
    next_badge: Optional[BadgeResponse] = None
    badge_progress: int
    donations_to_next_badge: int


class AccountCreate(BaseModel):
    user_auth_id: str


class RewardResponse(BaseModel):
    id: str
    title: str
    description: str
    type: RewardType
    cost: int
    validity_days: Optional[int] = None


class RedeemRequest(BaseModel):
    idempotency_key: Optional[str] = Field(None, max_length=128)


class VoucherResponse(BaseModel):
    id: uuid.UUID
    user_auth_id: str
    reward_id: str
    reward_type: Optional[RewardType] = None
    code: str
    points_spent: int
    status: VoucherStatus
    issued_at: datetime
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    used_for: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class VoucherListResponse(BaseModel):
    vouchers: list[VoucherResponse]
    total: int


class ConsumeRequest(BaseModel):
    purpose: str = Field(..., min_length=1, max_length=200)
