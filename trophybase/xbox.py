"""OpenXBL (xbl.io) client and the Xbox achievement provider."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from trophybase.config import TITLE_LOOKUP_CONCURRENCY
from trophybase.executor import RateLimitedExecutor
from trophybase.models import PLAYTIME_UNTRACKED, Achievement, Game, Platform
from trophybase.providers import AchievementProvider, ProviderError

_BASE = "https://xbl.io/api/v2"
_TIMEOUT = 15  # seconds
_FRACTION_RE = re.compile(r"\.(\d{6})\d*")


class XboxAPIError(ProviderError):
    """Raised when the OpenXBL API returns an unexpected response."""


class XboxClient:
    """Thin wrapper around the OpenXBL API.

    Parameters
    ----------
    api_key:
        OpenXBL personal API key; it identifies the signed-in Xbox account.
    """

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("api_key must not be empty")
        self._session = requests.Session()
        self._session.headers.update(
            {"X-Authorization": api_key, "Accept": "application/json"}
        )

    def _get(self, path: str) -> Any:
        resp = self._session.get(f"{_BASE}/{path}", timeout=_TIMEOUT)
        resp.raise_for_status()
        return resp.json()

    def get_xuid(self) -> str:
        """Return the XUID of the account that owns the API key."""
        data = self._get("account")
        users = data.get("profileUsers") or []
        if not users or not users[0].get("id"):
            raise XboxAPIError("Unable to retrieve user XUID from profile")
        return str(users[0]["id"])

    def get_achievement_titles(self) -> list[dict[str, Any]]:
        """Return every title with achievement summary data."""
        return self._get("achievements").get("titles") or []

    def get_title_history(self, xuid: str) -> list[dict[str, Any]]:
        """Return titles ordered by most recently played."""
        return self._get(f"player/titleHistory/{xuid}").get("titles") or []

    def get_player_title_achievements(self, xuid: str, title_id: str) -> list[dict[str, Any]]:
        """Return detailed achievements for one title; empty if unavailable."""
        try:
            data = self._get(f"achievements/player/{xuid}/{title_id}")
        except requests.HTTPError:
            return []
        return data.get("achievements") or []

    @staticmethod
    def parse_date(value: Optional[str]) -> Optional[datetime]:
        """Parse an API timestamp such as ``"2021-05-01T10:20:30.1234567Z"``."""
        if not value or value.startswith("0001-"):
            return None
        value = _FRACTION_RE.sub(lambda m: "." + m.group(1), value.replace("Z", "+00:00"))
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


class XboxProvider(AchievementProvider):
    """Achievement provider backed by OpenXBL."""

    platform = Platform.XBOX
    prefix = "xbox-"
    recent_count = 5

    def __init__(
        self,
        client: XboxClient,
        xuid: str,
        store=None,
        concurrency: int = TITLE_LOOKUP_CONCURRENCY,
    ) -> None:
        super().__init__(store)
        self._client = client
        self.xuid = xuid
        self._executor = RateLimitedExecutor(concurrency, "xbox")

    @classmethod
    async def create(cls, api_key: str, store=None) -> "XboxProvider":
        """Build a provider, looking up the account XUID."""
        try:
            client = XboxClient(api_key)
        except ValueError as exc:
            raise XboxAPIError(str(exc)) from exc
        xuid = await cls._call(client.get_xuid)
        return cls(client, xuid, store)

    async def _fetch_library(self) -> list[Game]:
        titles = await self._call(self._client.get_achievement_titles)
        return await self._convert(titles)

    async def _fetch_recent(self) -> list[Game]:
        history = await self._call(self._client.get_title_history, self.xuid)
        skip = self._known_without_achievements()
        recent = [
            t for t in history if self.make_identifier(t.get("titleId")) not in skip
        ][: self.recent_count]
        return await self._convert(recent)

    async def _fetch_title(self, native_id: str) -> Game:
        history = await self._call(self._client.get_title_history, self.xuid)
        for title in history:
            if str(title.get("titleId")) == native_id:
                return await self._build_game(title)
        raise XboxAPIError(f"Title {native_id} not found in the user's library")

    async def _convert(self, titles: list[dict[str, Any]]) -> list[Game]:
        titles = [t for t in titles if t.get("titleId")]
        games = await self._executor.execute_all_nullable(titles, self._build_game)
        return [g for g in games if g is not None]

    async def _build_game(self, title: dict[str, Any]) -> Game:
        title_id = str(title["titleId"])
        detailed = await self._call(
            self._client.get_player_title_achievements, self.xuid, title_id
        )
        if detailed:
            achievements = [self._convert_achievement(a) for a in detailed]
        else:
            achievements = self._placeholders(title_id, title.get("achievement") or {})
        last_played = (title.get("titleHistory") or {}).get("lastTimePlayed")
        return Game(
            identifier=self.make_identifier(title_id),
            name=title.get("name", f"Title {title_id}"),
            platform=Platform.XBOX,
            icon=title.get("displayImage", ""),
            playtime_minutes=PLAYTIME_UNTRACKED,
            achievements=achievements,
            last_updated=self._client.parse_date(last_played) or datetime.now(timezone.utc),
        )

    def _convert_achievement(self, raw: dict[str, Any]) -> Achievement:
        unlocked = raw.get("progressState") == "Achieved"
        progression = raw.get("progression") or {}
        requirements = progression.get("requirements") or []
        current = target = None
        if len(requirements) == 1:
            try:
                current = int(requirements[0].get("current") or 0)
                target = int(requirements[0].get("target") or 0) or None
            except (TypeError, ValueError):
                current = target = None
        icons = [m.get("url", "") for m in raw.get("mediaAssets") or [] if m.get("url")]
        rarity = (raw.get("rarity") or {}).get("currentPercentage")
        return Achievement(
            id=str(raw.get("id")),
            title=raw.get("name", ""),
            description=raw.get("description") or raw.get("lockedDescription") or "",
            icon=icons[0] if icons else "",
            is_unlocked=unlocked,
            unlocked_on=self._client.parse_date(progression.get("timeUnlocked")) if unlocked else None,
            is_hidden=bool(raw.get("isSecret", False)),
            current_progress=current if target else None,
            max_progress=target,
            rarity_percentage=float(rarity) if rarity is not None else None,
        )

    @staticmethod
    def _placeholders(title_id: str, summary: dict[str, Any]) -> list[Achievement]:
        """Synthesise achievements from summary counts when detail is unavailable."""
        total = int(summary.get("totalAchievements") or 0)
        unlocked = int(summary.get("currentAchievements") or 0)
        description = (
            f"Progress: {summary.get('currentGamerscore', 0)}/"
            f"{summary.get('totalGamerscore', 0)} Gamerscore"
        )
        return [
            Achievement(
                id=f"xbox-{title_id}-{i}",
                title=f"Achievement {i + 1}",
                description=description,
                is_unlocked=i < unlocked,
            )
            for i in range(total)
        ]
