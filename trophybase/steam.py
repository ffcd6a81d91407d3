"""Steam Web API client and the Steam achievement provider."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from trophybase.config import TITLE_LOOKUP_CONCURRENCY
from trophybase.executor import RateLimitedExecutor
from trophybase.models import Achievement, Game, Platform
from trophybase.providers import AchievementProvider, ProviderError

_BASE = "https://api.steampowered.com"
_MEDIA = "https://media.steampowered.com/steamcommunity/public/images/apps"
_TIMEOUT = 10  # seconds
_STEAM_ID_RE = re.compile(r"^\d{17}$")


class SteamAPIError(ProviderError):
    """Raised when the Steam API returns an unexpected response."""


class SteamClient:
    """Thin wrapper around the Steam Web API.

    Parameters
    ----------
    api_key:
        Your Steam Web API key (https://steamcommunity.com/dev/apikey).
    """

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("api_key must not be empty")
        self._key = api_key
        self._session = requests.Session()
        self._session.params = {"key": self._key, "format": "json"}  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get(self, path: str, **params: Any) -> Any:
        url = f"{_BASE}/{path}"
        resp = self._session.get(url, params=params, timeout=_TIMEOUT)
        resp.raise_for_status()
        return resp.json()

    # ------------------------------------------------------------------
    # Public methods
    # ------------------------------------------------------------------

    def resolve_vanity_url(self, vanity: str) -> str:
        """Return the 64-bit Steam ID for a custom profile name.

        Raises ``SteamAPIError`` if the name cannot be resolved.
        """
        data = self._get("ISteamUser/ResolveVanityURL/v1/", vanityurl=vanity)
        response = data.get("response", {})
        if response.get("success") != 1 or not response.get("steamid"):
            raise SteamAPIError(f"Could not resolve Steam vanity name {vanity!r}")
        return response["steamid"]

    def get_owned_games(
        self,
        steam_id: str,
        include_free_games: bool = True,
        app_ids: Optional[list[int]] = None,
    ) -> list[dict[str, Any]]:
        """Return a list of owned games with playtime information.

        *app_ids* restricts the result to the given apps.
        """
        params: dict[str, Any] = {
            "steamid": steam_id,
            "include_appinfo": 1,
            "include_played_free_games": int(include_free_games),
        }
        for i, app_id in enumerate(app_ids or []):
            params[f"appids_filter[{i}]"] = app_id
        data = self._get("IPlayerService/GetOwnedGames/v1/", **params)
        return data.get("response", {}).get("games", [])

    def get_recently_played_games(
        self, steam_id: str, count: int = 5
    ) -> list[dict[str, Any]]:
        """Return the games *steam_id* played in the last two weeks."""
        data = self._get(
            "IPlayerService/GetRecentlyPlayedGames/v1/", steamid=steam_id, count=count
        )
        return data.get("response", {}).get("games", [])

    def get_achievements(
        self, steam_id: str, app_id: int
    ) -> list[dict[str, Any]]:
        """Return achievement data for *app_id* owned by *steam_id*.

        Returns an empty list when the game has no achievements or the profile
        is private.
        """
        try:
            data = self._get(
                "ISteamUserStats/GetPlayerAchievements/v1/",
                steamid=steam_id,
                appid=app_id,
                l="english",
            )
        except requests.HTTPError:
            return []
        playerstats = data.get("playerstats", {})
        if not playerstats.get("success", False):
            return []
        return playerstats.get("achievements", [])

    def get_schema_for_game(self, app_id: int) -> list[dict[str, Any]]:
        """Return achievement definitions (names, icons, hidden flag) for *app_id*.

        Returns an empty list when unavailable.
        """
        try:
            data = self._get("ISteamUserStats/GetSchemaForGame/v2/", appid=app_id, l="english")
        except requests.HTTPError:
            return []
        stats = data.get("game", {}).get("availableGameStats", {})
        return stats.get("achievements", [])

    def get_global_achievement_percentages(self, app_id: int) -> dict[str, float]:
        """Return the global unlock rate per achievement api name."""
        try:
            data = self._get(
                "ISteamUserStats/GetGlobalAchievementPercentagesForApp/v2/", gameid=app_id
            )
        except requests.HTTPError:
            return {}
        entries = data.get("achievementpercentages", {}).get("achievements", [])
        return {e["name"]: float(e["percent"]) for e in entries if "name" in e}

    # ------------------------------------------------------------------
    # Convenience parsers
    # ------------------------------------------------------------------

    @staticmethod
    def parse_timestamp(unix_ts: Optional[int]) -> Optional[datetime]:
        """Convert a Unix timestamp to a UTC-aware *datetime*, or ``None``."""
        if not unix_ts:
            return None
        return datetime.fromtimestamp(unix_ts, tz=timezone.utc)

    @staticmethod
    def icon_url(app_id: int, icon_hash: str) -> str:
        if not icon_hash:
            return ""
        return f"{_MEDIA}/{app_id}/{icon_hash}.jpg"


class SteamProvider(AchievementProvider):
    """Achievement provider backed by the Steam Web API."""

    platform = Platform.STEAM
    prefix = "steam-"
    recent_count = 5

    def __init__(
        self,
        client: SteamClient,
        steam_id: str,
        store=None,
        concurrency: int = TITLE_LOOKUP_CONCURRENCY,
    ) -> None:
        super().__init__(store)
        self._client = client
        self.steam_id = steam_id
        self._executor = RateLimitedExecutor(concurrency, "steam")

    @classmethod
    async def create(cls, steam_id_or_vanity: str, api_key: str, store=None) -> "SteamProvider":
        """Build a provider, resolving a vanity profile name to a Steam ID if needed."""
        try:
            client = SteamClient(api_key)
        except ValueError as exc:
            raise SteamAPIError(str(exc)) from exc
        raw = steam_id_or_vanity.strip()
        if _STEAM_ID_RE.match(raw):
            steam_id = raw
        else:
            steam_id = await cls._call(client.resolve_vanity_url, raw)
        return cls(client, steam_id, store)

    async def _fetch_library(self) -> list[Game]:
        owned = await self._call(self._client.get_owned_games, self.steam_id)
        return await self._convert(owned)

    async def _fetch_recent(self) -> list[Game]:
        recent = await self._call(
            self._client.get_recently_played_games, self.steam_id, self.recent_count
        )
        skip = self._known_without_achievements()
        recent = [r for r in recent if self.make_identifier(r.get("appid")) not in skip]
        return await self._convert(recent)

    async def _fetch_title(self, native_id: str) -> Game:
        app_id = int(native_id)
        owned = await self._call(
            self._client.get_owned_games, self.steam_id, app_ids=[app_id]
        )
        if not owned:
            raise SteamAPIError(f"App {app_id} is not in the library of {self.steam_id}")
        return await self._build_game(owned[0])

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    async def _convert(self, raw_games: list[dict[str, Any]]) -> list[Game]:
        raw_games = [r for r in raw_games if r.get("appid")]
        games = await self._executor.execute_all_nullable(raw_games, self._build_game)
        return [g for g in games if g is not None]

    async def _build_game(self, raw: dict[str, Any]) -> Game:
        app_id = int(raw["appid"])
        achievements = await self._achievements(app_id)
        return Game(
            identifier=self.make_identifier(app_id),
            name=raw.get("name", f"App {app_id}"),
            platform=Platform.STEAM,
            icon=SteamClient.icon_url(app_id, raw.get("img_icon_url", "")),
            playtime_minutes=raw.get("playtime_forever", 0),
            achievements=achievements,
            last_updated=datetime.now(timezone.utc),
        )

    async def _achievements(self, app_id: int) -> tuple[Achievement, ...]:
        progress = await self._call(self._client.get_achievements, self.steam_id, app_id)
        if not progress:
            return ()
        schema = await self._call(self._client.get_schema_for_game, app_id)
        rarity = await self._call(self._client.get_global_achievement_percentages, app_id)
        defs = {d.get("name"): d for d in schema}

        result = []
        for ach in progress:
            api_name = ach.get("apiname", "")
            if not api_name:
                continue
            unlocked = ach.get("achieved", 0) == 1
            definition = defs.get(api_name)
            if definition is not None:
                title = definition.get("displayName") or ach.get("name", api_name)
                description = definition.get("description", "")
                icon = definition.get("icon" if unlocked else "icongray", "")
                hidden = definition.get("hidden", 0) == 1
            else:
                title = ach.get("name") or api_name
                description = ach.get("description", "")
                icon = f"{_MEDIA}/{app_id}/{api_name}.jpg"
                hidden = False
            result.append(
                Achievement(
                    id=api_name,
                    title=title,
                    description=description,
                    icon=icon,
                    is_unlocked=unlocked,
                    unlocked_on=(
                        SteamClient.parse_timestamp(ach.get("unlocktime")) if unlocked else None
                    ),
                    is_hidden=hidden,
                    rarity_percentage=rarity.get(api_name),
                )
            )
        return tuple(result)
