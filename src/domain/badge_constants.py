"""Badge catalog and the thresholds behind each badge."""

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class BadgeDefinition:
    """Display metadata for a badge."""

    badge_id: str
    name: str
    emoji: str
    description: str
    reset_period: str = "daily"


SPEED_DEMON: Final[str] = "speed_demon"
SNIPER: Final[str] = "sniper"
CLIENT_HERO: Final[str] = "client_hero"
LIGHTNING: Final[str] = "lightning"
TURTLE: Final[str] = "turtle"
PERFECT_DAY: Final[str] = "perfect_day"

BADGE_CATALOG: Final[dict[str, BadgeDefinition]] = {
    SPEED_DEMON: BadgeDefinition(
        SPEED_DEMON,
        "Speed Demon",
        "🏆",
        "Close 6 tickets within 30 min of creation or assignment",
    ),
    SNIPER: BadgeDefinition(
        SNIPER,
        "Sniper",
        "🎯",
        "Take 4+ tickets in a row before any other user",
    ),
    CLIENT_HERO: BadgeDefinition(
        CLIENT_HERO,
        "Client Hero",
        "🌟",
        "Highest points earned in a business day",
    ),
    LIGHTNING: BadgeDefinition(
        LIGHTNING,
        "Lightning",
        "⚡",
        "Outlook tickets: respond <15 min & close <2 hours (3 tickets)",
    ),
    TURTLE: BadgeDefinition(
        TURTLE,
        "Turtle",
        "🐢",
        "Late shift start (>15 min)",
    ),
    PERFECT_DAY: BadgeDefinition(
        PERFECT_DAY,
        "Perfect Day",
        "🌟✨🏆⚡",
        "Client Hero plus Speed Demon, Sniper and Lightning without a Turtle",
    ),
}

SPEED_DEMON_REQUIRED_CLOSURES: Final[int] = 6
SPEED_DEMON_WINDOW_MINUTES: Final[float] = 30.0
"""Closure must happen within this many minutes of creation or assignment."""

SNIPER_REQUIRED_STREAK: Final[int] = 4
"""Consecutive ticket pickups (open or aged self-assign) with no one else in between."""

LIGHTNING_REQUIRED_TICKETS: Final[int] = 3
LIGHTNING_RESPONSE_MINUTES: Final[float] = 15.0
LIGHTNING_CLOSURE_MINUTES: Final[float] = 120.0
LIGHTNING_SOURCE_MARKER: Final[str] = "outlook"
"""Only tickets whose source contains this marker (case-insensitive) qualify."""

PERFECT_DAY_REQUIRED_BADGES: Final[frozenset[str]] = frozenset(
    {SPEED_DEMON, SNIPER, LIGHTNING}
)
"""Badges the Client Hero winner must also hold for the target date."""

PERFECT_DAY_BLOCKING_BADGES: Final[frozenset[str]] = frozenset({TURTLE})
