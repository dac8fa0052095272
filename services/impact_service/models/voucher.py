"""Reward vouchers: single-use codes bought with redeemable points."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import as_utc, utc_now
from libs.db.base import Base
from services.impact_service.models.enums import RewardType, VoucherStatus
from services.impact_service.models.types import value_enum
from sqlalchemy import CheckConstraint, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class RewardVoucher(Base):
    __tablename__ = "reward_vouchers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_auth_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    reward_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    reward_type: Mapped[Optional[RewardType]] = mapped_column(
        value_enum(RewardType, "reward_type_enum"), nullable=True
    )
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    points_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[VoucherStatus] = mapped_column(
        value_enum(VoucherStatus, "voucher_status_enum"),
        default=VoucherStatus.ACTIVE,
        nullable=False,
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String, unique=True, nullable=True
    )
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    used_for: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint("points_spent >= 0", name="points_spent_non_negative"),
    )

    def is_expired(self, now: datetime) -> bool:
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and now > expires_at

    def effective_status(self, now: datetime) -> VoucherStatus:
        """Status with expiry derived from the clock (``used`` stays terminal)."""
        if self.status == VoucherStatus.ACTIVE and self.is_expired(now):
            return VoucherStatus.EXPIRED
        return self.status

    def __repr__(self) -> str:
        return f"<RewardVoucher {self.code} {self.status.value}>"
