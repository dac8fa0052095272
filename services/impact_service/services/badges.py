"""Badge levels by completed donation count."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BadgeLevel:
    key: str
    title: str
    min_donations: int
    max_donations: Optional[int]


BADGE_LEVELS = (
    BadgeLevel("new_hero", "New Hero", 0, 0),
    BadgeLevel("bronze", "Bronze Hero", 1, 4),
    BadgeLevel("silver", "Silver Hero", 5, 9),
    BadgeLevel("gold", "Gold Hero", 10, 19),
    BadgeLevel("platinum", "Platinum Legend", 20, 49),
    BadgeLevel("diamond", "Diamond Savior", 50, None),
)


def badge_for(total_donations: int) -> BadgeLevel:
    for badge in reversed(BADGE_LEVELS):
        if total_donations >= badge.min_donations:
            return badge
    return BADGE_LEVELS[0]


def next_badge(total_donations: int) -> tuple[Optional[BadgeLevel], int, int]:
    """Return ``(next badge, progress percent, donations still needed)``."""
    current = badge_for(total_donations)
    index = BADGE_LEVELS.index(current)
    if index == len(BADGE_LEVELS) - 1:
        return None, 100, 0

    upcoming = BADGE_LEVELS[index + 1]
    span = upcoming.min_donations - current.min_donations
    progress = round((total_donations - current.min_donations) * 100 / span)
    return upcoming, max(0, min(100, progress)), upcoming.min_donations - total_donations
