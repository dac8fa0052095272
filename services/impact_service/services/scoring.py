"""Impact scoring: completed-event attributes to points.

Pure functions only: no store access and no clock reads, so the same inputs
always produce the same ``ImpactScore``.
"""

from dataclasses import dataclass, field
from typing import Optional

from services.impact_service.models.enums import Urgency

BASE_POINTS = 50

URGENCY_BONUS = {
    Urgency.CRITICAL: 40,
    Urgency.HIGH: 25,
    Urgency.MEDIUM: 10,
    Urgency.LOW: 0,
}

# "O h" is the Bombay phenotype.
RARE_BLOOD_TYPES = frozenset({"AB-", "A-", "B-", "O-", "O h"})
RARITY_BONUS = 30

DISTANCE_FREE_KM = 10
DISTANCE_BONUS_CAP = 50

SPEED_FAST_MINUTES = 15
SPEED_FAST_BONUS = 30
SPEED_QUICK_MINUTES = 30
SPEED_QUICK_BONUS = 15

FIRST_DONATION_BONUS = 50


@dataclass(frozen=True)
class ScoringInputs:
    urgency: Optional[Urgency] = None
    blood_type: Optional[str] = None
    distance_km: Optional[float] = None
    response_time_minutes: Optional[int] = None
    is_emergency: bool = False
    first_donation: bool = False

    @property
    def rare_blood(self) -> bool:
        return normalize_blood_type(self.blood_type) in RARE_BLOOD_TYPES

    @classmethod
    def from_event(cls, event, *, first_donation: bool) -> "ScoringInputs":
        return cls(
            urgency=event.urgency,
            blood_type=event.blood_type,
            distance_km=event.distance_km,
            response_time_minutes=event.response_time_minutes,
            is_emergency=event.is_emergency,
            first_donation=first_donation,
        )


@dataclass(frozen=True)
class ImpactScore:
    total: int
    breakdown: dict[str, int] = field(default_factory=dict)


def normalize_blood_type(blood_type: Optional[str]) -> Optional[str]:
    if not blood_type:
        return None
    value = blood_type.strip().upper()
    if value in ("OH", "O H", "BOMBAY"):
        return "O h"
    return value


def urgency_bonus(urgency: Optional[Urgency]) -> int:
    if urgency is None:
        return 0
    return URGENCY_BONUS[Urgency(urgency)]


def distance_bonus(distance_km: Optional[float]) -> int:
    if distance_km is None or distance_km <= DISTANCE_FREE_KM:
        return 0
    return min(int(distance_km - DISTANCE_FREE_KM), DISTANCE_BONUS_CAP)


def speed_bonus(response_time_minutes: Optional[int]) -> int:
    if response_time_minutes is None:
        return 0
    if response_time_minutes <= SPEED_FAST_MINUTES:
        return SPEED_FAST_BONUS
    if response_time_minutes <= SPEED_QUICK_MINUTES:
        return SPEED_QUICK_BONUS
    return 0


def score(inputs: ScoringInputs) -> ImpactScore:
    """Score one completed event.

    The breakdown always carries every component (zeros included) so a stored
    award can be audited line by line.
    """
    breakdown = {
        "base": BASE_POINTS,
        "urgency": urgency_bonus(inputs.urgency),
        "rarity": RARITY_BONUS if inputs.rare_blood else 0,
        "distance": distance_bonus(inputs.distance_km),
        "speed": speed_bonus(inputs.response_time_minutes),
        "first_donation": FIRST_DONATION_BONUS if inputs.first_donation else 0,
    }
    return ImpactScore(total=sum(breakdown.values()), breakdown=breakdown)
