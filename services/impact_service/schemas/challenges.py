"""Challenge, progress and leaderboard schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from services.impact_service.models.enums import ChallengeStatus, ChallengeType


class ChallengeCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: ChallengeType
    target: int = Field(..., gt=0)
    reward_points: int = Field(0, ge=0)
    starts_at: datetime
    ends_at: datetime

    @model_validator(mode="after")
    def _window_is_ordered(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class ChallengeResponse(BaseModel):
    id: uuid.UUID
    title: str
    description: Optional[str] = None
    type: ChallengeType
    target: int
    reward_points: int
    starts_at: datetime
    ends_at: datetime
    status: ChallengeStatus
    total_participants: int
    total_completions: int

    model_config = ConfigDict(from_attributes=True)


class ProgressResponse(BaseModel):
    challenge_id: uuid.UUID
    user_auth_id: str
    current: int
    display_current: int
    started: bool
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    referred_user_ids: list[str] = []


class ChallengeWithProgress(ChallengeResponse):
    current: int = 0
    display_current: int = 0
    started: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_completed: bool = False
    progress_percentage: int = 0


class CompletedChallenge(BaseModel):
    id: uuid.UUID
    title: str
    type: ChallengeType
    target: int
    reward_points: int
    progress: int
    completed_at: Optional[datetime] = None


class ChallengeStats(BaseModel):
    challenge_id: uuid.UUID
    total_participants: int
    total_completions: int
    average_progress: float
    completion_rate: float


class LeaderboardEntry(BaseModel):
    rank: int
    user_auth_id: str
    current: int
    display_current: int
    started_at: Optional[datetime] = None
    completed: bool


class LeaderboardResponse(BaseModel):
    challenge_id: uuid.UUID
    entries: list[LeaderboardEntry]


class ReferralSignup(BaseModel):
    """Sent by the members service when a new user registers with a referrer."""

    referrer_auth_id: str
    referred_auth_id: str
