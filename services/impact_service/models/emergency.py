"""Emergency blood requests that donation events can respond to."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.impact_service.models.enums import EmergencyStatus, Urgency
from services.impact_service.models.types import value_enum
from sqlalchemy import CheckConstraint, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class EmergencyRequest(Base):
    __tablename__ = "emergency_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    requester_auth_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    hospital_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    blood_type: Mapped[str] = mapped_column(String(8), nullable=False)
    urgency: Mapped[Urgency] = mapped_column(
        value_enum(Urgency, "urgency_enum"), default=Urgency.HIGH, nullable=False
    )
    units_needed: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    responders_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[EmergencyStatus] = mapped_column(
        value_enum(EmergencyStatus, "emergency_status_enum"),
        default=EmergencyStatus.OPEN,
        nullable=False,
    )
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("units_needed >= 1", name="units_needed_positive"),
        CheckConstraint("responders_count >= 0", name="responders_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<EmergencyRequest {self.id} {self.blood_type} {self.status.value}>"
