"""Enums for the Impact Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class DonationKind(str, enum.Enum):
    APPOINTMENT = "appointment"
    DRIVE_REGISTRATION = "drive_registration"
    EMERGENCY_RESPONSE = "emergency_response"


class DonationStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Urgency(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EmergencyStatus(str, enum.Enum):
    OPEN = "open"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class ChallengeType(str, enum.Enum):
    STREAK = "streak"
    COMMUNITY_GOAL = "community_goal"
    REFERRAL = "referral"
    SPEED_BONUS = "speed_bonus"
    DISTANCE_BONUS = "distance_bonus"
    EMERGENCY_HERO = "emergency_hero"


class ChallengeStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class VoucherStatus(str, enum.Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class RewardType(str, enum.Enum):
    COUPON = "coupon"
    ACCESS = "access"
    FEATURE = "feature"
    PHYSICAL = "physical"
    MULTIPLIER = "multiplier"
    BADGE = "badge"
    VOUCHER = "voucher"


class FanoutStatus(str, enum.Enum):
    PENDING = "pending"
    APPLIED = "applied"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTER = "dead_letter"
