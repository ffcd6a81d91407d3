"""Data models for trophybase."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

#: How long a HowLongToBeat lookup stays valid before it is re-queried.
ENRICHMENT_MAX_AGE = timedelta(days=7)

#: ``playtime_minutes`` value used by platforms that do not track playtime.
PLAYTIME_UNTRACKED = -1


class Platform(Enum):
    """Achievement platform a game was read from."""

    STEAM = "Steam"
    XBOX = "Xbox"
    PLAYSTATION = "PlayStation"
    RETRO_ACHIEVEMENTS = "RetroAchievements"
    EPIC_GAMES = "EpicGames"
    GOOGLE_PLAY = "GooglePlay"


@dataclass(frozen=True)
class Achievement:
    """A single unlockable goal within a game."""

    id: str
    title: str
    description: str = ""
    icon: str = ""
    is_unlocked: bool = False
    unlocked_on: Optional[datetime] = None
    is_hidden: bool = False
    current_progress: Optional[int] = None
    max_progress: Optional[int] = None
    rarity_percentage: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Achievement id must not be empty")
        if self.unlocked_on is not None and not self.is_unlocked:
            raise ValueError(
                f"Achievement {self.id!r} has an unlock time but is not unlocked"
            )


@dataclass(frozen=True)
class HowLongToBeatData:
    """Time-to-beat estimates (hours) for one game.

    Any estimate may be ``None`` when HowLongToBeat has no figure for it, and
    all of them are ``None`` when the title was not found at all; the
    ``fetched_at`` stamp is still recorded so the lookup is not repeated
    inside :data:`ENRICHMENT_MAX_AGE`.
    """

    main_story: Optional[float] = None
    main_extras: Optional[float] = None
    completionist: Optional[float] = None
    all_styles: Optional[float] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_fresh(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now - self.fetched_at < ENRICHMENT_MAX_AGE


@dataclass(frozen=True)
class Game:
    """One title tracked on one platform.

    ``identifier`` is namespaced by platform (``"steam-440"``) and is the
    merge key of the library store. Records are immutable; an update is a
    new ``Game`` that replaces the old one wholesale.
    """

    identifier: str
    name: str
    platform: Platform
    author: str = ""
    icon: str = ""
    playtime_minutes: int = PLAYTIME_UNTRACKED
    achievements: tuple[Achievement, ...] = ()
    last_updated: Optional[datetime] = None
    hltb: Optional[HowLongToBeatData] = None

    def __post_init__(self) -> None:
        if not self.identifier:
            raise ValueError("Game identifier must not be empty")
        if self.playtime_minutes < PLAYTIME_UNTRACKED:
            raise ValueError(f"Invalid playtime_minutes: {self.playtime_minutes}")
        if not isinstance(self.achievements, tuple):
            object.__setattr__(self, "achievements", tuple(self.achievements))

    @property
    def total_count(self) -> int:
        return len(self.achievements)

    @property
    def unlocked_count(self) -> int:
        return sum(1 for a in self.achievements if a.is_unlocked)

    @property
    def has_achievements(self) -> bool:
        return bool(self.achievements)

    @property
    def is_perfect(self) -> bool:
        """Return ``True`` when the game has achievements and all are unlocked."""
        return self.has_achievements and self.unlocked_count == self.total_count

    @property
    def completion_percent(self) -> int:
        """Return the unlocked share as a truncated percentage (0 when empty)."""
        if not self.achievements:
            return 0
        return self.unlocked_count * 100 // self.total_count

    @property
    def playtime_hours(self) -> Optional[float]:
        """Return playtime in hours, or ``None`` when the platform does not track it."""
        if self.playtime_minutes == PLAYTIME_UNTRACKED:
            return None
        return round(self.playtime_minutes / 60, 2)

    @property
    def status_text(self) -> str:
        if not self.has_achievements:
            return "No Achievements"
        total = self.total_count
        unlocked = self.unlocked_count
        if unlocked == total:
            return f"100% Complete ({total} Achievements)"
        if unlocked > 0:
            return f"{unlocked} / {total} ({self.completion_percent}%)"
        return f"Not Started ({total} Achievements)"

    def needs_enrichment(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` if HowLongToBeat data is missing or stale."""
        return self.hltb is None or not self.hltb.is_fresh(now)
