"""Per-user points account, the counters this service keeps for each donor."""

from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column


class UserPointsAccount(Base):
    """One row per user, created at registration.

    ``impact_points`` is the lifetime score from completed donations;
    ``total_points`` is the redeemable balance fed by challenge rewards and
    spent on vouchers. Both are only ever changed with in-SQL increments.
    """

    __tablename__ = "user_points_accounts"

    user_auth_id: Mapped[str] = mapped_column(String, primary_key=True)
    total_donations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    impact_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    challenges_completed: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    last_donation_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("total_donations >= 0", name="total_donations_non_negative"),
        CheckConstraint("impact_points >= 0", name="impact_points_non_negative"),
        CheckConstraint("total_points >= 0", name="total_points_non_negative"),
        CheckConstraint(
            "challenges_completed >= 0", name="challenges_completed_non_negative"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<UserPointsAccount {self.user_auth_id} donations={self.total_donations}"
            f" impact={self.impact_points} points={self.total_points}>"
        )
