"""Challenges, per-user progress and the contributions already applied."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.impact_service.models.enums import ChallengeStatus, ChallengeType
from services.impact_service.models.types import JSONDocument, value_enum
from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer
from sqlalchemy import String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


class Challenge(Base):
    """A challenge with a numeric target. Counters only move via in-SQL increments."""

    __tablename__ = "challenges"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[ChallengeType] = mapped_column(
        value_enum(ChallengeType, "challenge_type_enum"), index=True, nullable=False
    )
    target: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[ChallengeStatus] = mapped_column(
        value_enum(ChallengeStatus, "challenge_status_enum"),
        default=ChallengeStatus.UPCOMING,
        index=True,
        nullable=False,
    )
    total_participants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_completions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    participants: Mapped[list["ChallengeProgress"]] = relationship(
        back_populates="challenge", lazy="noload"
    )

    __table_args__ = (
        CheckConstraint("target > 0", name="target_positive"),
        CheckConstraint("reward_points >= 0", name="reward_non_negative"),
        CheckConstraint("total_participants >= 0", name="participants_non_negative"),
        CheckConstraint(
            "total_completions >= 0 AND total_completions <= total_participants",
            name="completions_bounded",
        ),
        CheckConstraint("ends_at > starts_at", name="window_ordered"),
    )

    def __repr__(self) -> str:
        return f"<Challenge {self.title} {self.type.value} target={self.target}>"


class ChallengeProgress(Base):
    """One user's progress on one challenge.

    ``current`` may run past ``target``; the overshoot is kept for audit and
    clamped only when presented.
    """

    __tablename__ = "challenge_participants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_auth_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    current: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_updated: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Referral challenges only
    referred_user_ids: Mapped[list] = mapped_column(
        JSONDocument, default=list, nullable=False
    )

    challenge: Mapped[Challenge] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint("challenge_id", "user_auth_id", name="uq_challenge_participant"),
        CheckConstraint("current >= 0", name="current_non_negative"),
    )

    def display_current(self, target: int) -> int:
        return min(self.current, target)

    def __repr__(self) -> str:
        return f"<ChallengeProgress {self.challenge_id} {self.user_auth_id} current={self.current}>"


class ChallengeContribution(Base):
    """A delta already applied to a challenge, keyed by its source.

    The unique (challenge, source_key) pair is what makes re-delivered deltas
    (retried fan-outs, repeated referral events) no-ops.
    """

    __tablename__ = "challenge_contributions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_auth_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    source_key: Mapped[str] = mapped_column(String, nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("challenge_id", "source_key", name="uq_challenge_contribution"),
    )
