"""Impact Service schemas package."""

from services.impact_service.schemas.challenges import (  # noqa: F401
    ChallengeCreate,
    ChallengeResponse,
    ChallengeStats,
    ChallengeWithProgress,
    CompletedChallenge,
    LeaderboardEntry,
    LeaderboardResponse,
    ProgressResponse,
    ReferralSignup,
)
from services.impact_service.schemas.events import (  # noqa: F401
    AppointmentCreate,
    CompletionResponse,
    DonationEventCreate,
    DonationEventResponse,
    DriveRegistrationCreate,
    EmergencyCreate,
    EmergencyResponse,
    EmergencyResponseCreate,
    HistoryEntry,
    HistoryResponse,
)
from services.impact_service.schemas.rewards import (  # noqa: F401
    AccountCreate,
    AccountResponse,
    BadgeResponse,
    ConsumeRequest,
    RedeemRequest,
    RewardResponse,
    VoucherListResponse,
    VoucherResponse,
)
