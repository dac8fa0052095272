"""Donation event request/response schemas."""

import uuid
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from services.impact_service.models.enums import (
    DonationKind,
    DonationStatus,
    EmergencyStatus,
    Urgency,
)


class _EventCreateBase(BaseModel):
    scheduled_at: datetime
    blood_type: Optional[str] = Field(None, max_length=8)
    distance_km: Optional[float] = Field(None, ge=0)
    location_name: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class AppointmentCreate(_EventCreateBase):
    kind: Literal[DonationKind.APPOINTMENT] = DonationKind.APPOINTMENT


class DriveRegistrationCreate(_EventCreateBase):
    kind: Literal[DonationKind.DRIVE_REGISTRATION] = DonationKind.DRIVE_REGISTRATION


class EmergencyResponseCreate(_EventCreateBase):
    """Responses carry the emergency they answer and how fast the donor reacted."""

    kind: Literal[DonationKind.EMERGENCY_RESPONSE] = DonationKind.EMERGENCY_RESPONSE
    related_emergency_id: uuid.UUID
    urgency: Urgency
    response_time_minutes: Optional[int] = Field(None, ge=0)


DonationEventCreate = Annotated[
    Union[AppointmentCreate, DriveRegistrationCreate, EmergencyResponseCreate],
    Field(discriminator="kind"),
]


class DonationEventResponse(BaseModel):
    id: uuid.UUID
    user_auth_id: str
    kind: DonationKind
    status: DonationStatus
    scheduled_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    related_emergency_id: Optional[uuid.UUID] = None
    urgency: Optional[Urgency] = None
    distance_km: Optional[float] = None
    response_time_minutes: Optional[int] = None
    blood_type: Optional[str] = None
    location_name: Optional[str] = None
    points_awarded: Optional[int] = None
    points_breakdown: Optional[dict[str, int]] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CompletionResponse(BaseModel):
    event_id: uuid.UUID
    points_awarded: int
    breakdown: dict[str, int]
    challenges_advanced: list[uuid.UUID] = []
    emergency_fulfilled: bool = False


class HistoryEntry(BaseModel):
    """One row of the merged per-user history feed."""

    id: uuid.UUID
    kind: DonationKind
    status: DonationStatus
    scheduled_at: datetime
    created_at: datetime
    completed_at: Optional[datetime] = None
    points_awarded: Optional[int] = None
    related_emergency_id: Optional[uuid.UUID] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class HistoryResponse(BaseModel):
    entries: list[HistoryEntry]
    max_results: int


class EmergencyCreate(BaseModel):
    blood_type: str = Field(..., max_length=8)
    urgency: Urgency = Urgency.HIGH
    units_needed: int = Field(1, ge=1)
    hospital_name: Optional[str] = None
    requester_auth_id: Optional[str] = None


class EmergencyResponse(BaseModel):
    id: uuid.UUID
    blood_type: str
    urgency: Urgency
    units_needed: int
    responders_count: int
    status: EmergencyStatus
    hospital_name: Optional[str] = None
    fulfilled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
