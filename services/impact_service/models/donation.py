"""Donation event ledger rows and the emergency they may answer."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.impact_service.models.enums import (
    DonationKind,
    DonationStatus,
    FanoutStatus,
    Urgency,
)
from services.impact_service.models.types import JSONDocument, value_enum
from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Index, Integer
from sqlalchemy import String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

ACTIVE_RESPONSE = "related_emergency_id IS NOT NULL AND status != 'cancelled'"


class DonationEvent(Base):
    """A schedulable act owned by one user, with a pending/completed/cancelled lifecycle."""

    __tablename__ = "donation_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_auth_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    kind: Mapped[DonationKind] = mapped_column(
        value_enum(DonationKind, "donation_kind_enum"), nullable=False
    )
    status: Mapped[DonationStatus] = mapped_column(
        value_enum(DonationStatus, "donation_status_enum"),
        default=DonationStatus.PENDING,
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Scoring attributes (shape depends on kind)
    related_emergency_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("emergency_requests.id"), index=True, nullable=True
    )
    urgency: Mapped[Optional[Urgency]] = mapped_column(
        value_enum(Urgency, "urgency_enum"), nullable=True
    )
    distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    response_time_minutes: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    blood_type: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Award (set once per completion)
    points_awarded: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    points_breakdown: Mapped[Optional[dict]] = mapped_column(
        JSONDocument, nullable=True
    )

    # Challenge fan-out tracking
    fanout_status: Mapped[Optional[FanoutStatus]] = mapped_column(
        value_enum(FanoutStatus, "fanout_status_enum"), nullable=True
    )
    fanout_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fanout_next_retry_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fanout_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    challenges_applied_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("distance_km IS NULL OR distance_km >= 0", name="distance_non_negative"),
        CheckConstraint(
            "response_time_minutes IS NULL OR response_time_minutes >= 0",
            name="response_time_non_negative",
        ),
        Index("ix_donation_events_user_kind_created", "user_auth_id", "kind", "created_at"),
        Index(
            "uq_donation_events_active_response",
            "user_auth_id",
            "related_emergency_id",
            unique=True,
            postgresql_where=text(ACTIVE_RESPONSE),
            sqlite_where=text(ACTIVE_RESPONSE),
        ),
    )

    @property
    def is_emergency(self) -> bool:
        return self.kind == DonationKind.EMERGENCY_RESPONSE

    def __repr__(self) -> str:
        return f"<DonationEvent {self.id} {self.kind.value} {self.status.value}>"
