"""Impact Service models package.

Re-exports every model and enum so existing imports like
``from services.impact_service.models import DonationEvent`` work unchanged.
"""

from services.impact_service.models.account import UserPointsAccount  # noqa: F401
from services.impact_service.models.challenge import (  # noqa: F401
    Challenge,
    ChallengeContribution,
    ChallengeProgress,
)
from services.impact_service.models.donation import DonationEvent  # noqa: F401
from services.impact_service.models.emergency import EmergencyRequest  # noqa: F401
from services.impact_service.models.enums import (  # noqa: F401
    ChallengeStatus,
    ChallengeType,
    DonationKind,
    DonationStatus,
    EmergencyStatus,
    FanoutStatus,
    RewardType,
    Urgency,
    VoucherStatus,
    enum_values,
)
from services.impact_service.models.voucher import RewardVoucher  # noqa: F401

__all__ = [
    # Enums
    "ChallengeStatus",
    "ChallengeType",
    "DonationKind",
    "DonationStatus",
    "EmergencyStatus",
    "FanoutStatus",
    "RewardType",
    "Urgency",
    "VoucherStatus",
    # Models
    "UserPointsAccount",
    "DonationEvent",
    "EmergencyRequest",
    "Challenge",
    "ChallengeProgress",
    "ChallengeContribution",
    "RewardVoucher",
]
