"""RetroAchievements web API client and achievement provider."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import requests

from trophybase.config import TITLE_LOOKUP_CONCURRENCY
from trophybase.executor import RateLimitedExecutor
from trophybase.models import PLAYTIME_UNTRACKED, Achievement, Game, Platform
from trophybase.providers import AchievementProvider, ProviderError

_BASE = "https://retroachievements.org/API"
_MEDIA = "https://i.retroachievements.org"
_TIMEOUT = 15  # seconds
_PAGE_SIZE = 500
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class RetroAchievementsAPIError(ProviderError):
    """Raised when the RetroAchievements API returns an unexpected response."""


class RetroAchievementsClient:
    """Thin wrapper around the RetroAchievements web API.

    Parameters
    ----------
    username:
        Account the API key belongs to.
    api_key:
        Web API key from the RetroAchievements control panel.
    """

    def __init__(self, username: str, api_key: str) -> None:
        if not api_key:
            raise ValueError("api_key must not be empty")
        self._session = requests.Session()
        self._session.params = {"z": username, "y": api_key}  # type: ignore[assignment]

    def _get(self, endpoint: str, **params: Any) -> Any:
        resp = self._session.get(f"{_BASE}/{endpoint}.php", params=params, timeout=_TIMEOUT)
        resp.raise_for_status()
        return resp.json()

    def get_user_completion_progress(self, username: str) -> list[dict[str, Any]]:
        """Return every game *username* has progress in, following pagination."""
        results: list[dict[str, Any]] = []
        offset = 0
        while True:
            data = self._get(
                "API_GetUserCompletionProgress", u=username, c=_PAGE_SIZE, o=offset
            )
            page = data.get("Results") or []
            results.extend(page)
            total = data.get("Total", len(results))
            if not page or len(results) >= total:
                return results
            offset += len(page)

    def get_user_recently_played_games(
        self, username: str, count: int = 20
    ) -> list[dict[str, Any]]:
        data = self._get("API_GetUserRecentlyPlayedGames", u=username, c=count, o=0)
        if not isinstance(data, list):
            raise RetroAchievementsAPIError(f"Unexpected recently played payload for {username!r}")
        return data

    def get_game_info_and_user_progress(
        self, username: str, game_id: int
    ) -> dict[str, Any]:
        """Return game metadata plus the user's per-achievement progress."""
        data = self._get("API_GetGameInfoAndUserProgress", u=username, g=game_id, a=1)
        if not isinstance(data, dict) or "Title" not in data:
            raise RetroAchievementsAPIError(f"Game {game_id} not found")
        return data

    @staticmethod
    def parse_date(value: Optional[str]) -> Optional[datetime]:
        """Parse an API date (``"2023-01-31 18:04:05"``, UTC) or return ``None``."""
        if not value:
            return None
        return datetime.strptime(value, _DATE_FORMAT).replace(tzinfo=timezone.utc)

    @staticmethod
    def media_url(path: Optional[str]) -> str:
        if not path:
            return ""
        return f"{_MEDIA}/{path.lstrip('/')}"


class RetroAchievementsProvider(AchievementProvider):
    """Achievement provider backed by RetroAchievements.org."""

    platform = Platform.RETRO_ACHIEVEMENTS
    prefix = "ra-"
    recent_count = 20

    def __init__(
        self,
        client: RetroAchievementsClient,
        username: str,
        store=None,
        concurrency: int = TITLE_LOOKUP_CONCURRENCY,
    ) -> None:
        super().__init__(store)
        self._client = client
        self.username = username
        self._executor = RateLimitedExecutor(concurrency, "retroachievements")

    @classmethod
    async def create(cls, username: str, api_key: str, store=None) -> "RetroAchievementsProvider":
        username = username.strip()
        if not username:
            raise RetroAchievementsAPIError("RetroAchievements username must not be empty")
        try:
            client = RetroAchievementsClient(username, api_key)
        except ValueError as exc:
            raise RetroAchievementsAPIError(str(exc)) from exc
        return cls(client, username, store)

    async def _fetch_library(self) -> list[Game]:
        progress = await self._call(self._client.get_user_completion_progress, self.username)
        return await self._convert([p.get("GameID") for p in progress])

    async def _fetch_recent(self) -> list[Game]:
        recent = await self._call(
            self._client.get_user_recently_played_games, self.username, self.recent_count
        )
        return await self._convert([r.get("GameID") for r in recent])

    async def _fetch_title(self, native_id: str) -> Game:
        return await self._build_game(int(native_id))

    async def _convert(self, game_ids: list[Any]) -> list[Game]:
        ids = [int(i) for i in game_ids if i]
        games = await self._executor.execute_all_nullable(ids, self._build_game)
        return [g for g in games if g is not None]

    async def _build_game(self, game_id: int) -> Game:
        info = await self._call(
            self._client.get_game_info_and_user_progress, self.username, game_id
        )
        players = info.get("NumDistinctPlayers") or 0
        achievements = []
        for key, raw in (info.get("Achievements") or {}).items():
            earned = self._client.parse_date(raw.get("DateEarnedHardcore")) or self._client.parse_date(
                raw.get("DateEarned")
            )
            badge = raw.get("BadgeName")
            if badge:
                suffix = "" if earned else "_lock"
                icon = f"{_MEDIA}/Badge/{badge}{suffix}.png"
            else:
                icon = ""
            awarded = raw.get("NumAwarded")
            achievements.append(
                Achievement(
                    id=str(raw.get("ID", key)),
                    title=raw.get("Title") or "Achievement Name Unavailable",
                    description=raw.get("Description") or "",
                    icon=icon,
                    is_unlocked=earned is not None,
                    unlocked_on=earned,
                    rarity_percentage=(
                        round(awarded * 100 / players, 2)
                        if players and awarded is not None
                        else None
                    ),
                )
            )
        return Game(
            identifier=self.make_identifier(game_id),
            name=info.get("Title") or "Unknown Game",
            platform=Platform.RETRO_ACHIEVEMENTS,
            author=info.get("Developer") or "",
            icon=self._client.media_url(info.get("ImageIcon")),
            playtime_minutes=PLAYTIME_UNTRACKED,
            achievements=achievements,
            last_updated=datetime.now(timezone.utc),
        )
