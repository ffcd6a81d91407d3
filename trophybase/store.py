"""Library store: the persisted, observable collection of all known games."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager, suppress
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Generator, Optional

from trophybase.config import DEFAULT_SETTINGS_PATH
from trophybase.models import Achievement, Game, HowLongToBeatData, Platform

logger = logging.getLogger(__name__)

_DEFAULT_PATH = DEFAULT_SETTINGS_PATH

#: Version written by this release.
SCHEMA_VERSION = 2
#: Documents older than this lose their games on load and are rescanned.
MIN_SUPPORTED_VERSION = 2

DEFAULT_PAGE_SIZE = 100

Listener = Callable[[], None]


class OrderBy(Enum):
    """Sort key for the library view."""

    NAME = "Name"
    COMPLETION_PCT = "CompletionPct"
    TOTAL_COUNT = "TotalCount"
    UNLOCKED_COUNT = "UnlockedCount"
    PLAYTIME = "Playtime"
    LAST_UPDATED = "LastUpdated"
    HLTB_MAIN = "HowLongToBeatMain"
    HLTB_COMPLETIONIST = "HowLongToBeatCompletionist"


@dataclass
class AccountSettings:
    """Per-platform user identifiers and credentials."""

    steam_id: str = ""
    retroachievements_username: str = ""
    xbox_auth: str = ""
    psn_token: str = ""
    initialised: bool = False


@dataclass
class ViewPreferences:
    """Persisted filter and sort state of the library view."""

    hide_complete: bool = False
    hide_no_achievements: bool = False
    hide_unstarted: bool = False
    reverse: bool = False
    order_by: OrderBy = OrderBy.NAME
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")


# ------------------------------------------------------------------
# Serialisation
# ------------------------------------------------------------------


def _fmt_dt(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def achievement_to_dict(ach: Achievement) -> dict[str, Any]:
    return {
        "ID": ach.id,
        "Title": ach.title,
        "Desc": ach.description,
        "Icon": ach.icon,
        "Unlocked": ach.is_unlocked,
        "UnlockTime": _fmt_dt(ach.unlocked_on),
        "Hidden": ach.is_hidden,
        "Progress": ach.current_progress,
        "MaxProgress": ach.max_progress,
        "Rarity": ach.rarity_percentage,
    }


def achievement_from_dict(data: dict[str, Any]) -> Achievement:
    return Achievement(
        id=str(data["ID"]),
        title=data.get("Title", ""),
        description=data.get("Desc", ""),
        icon=data.get("Icon", ""),
        is_unlocked=bool(data.get("Unlocked", False)),
        unlocked_on=_parse_dt(data.get("UnlockTime")),
        is_hidden=bool(data.get("Hidden", False)),
        current_progress=data.get("Progress"),
        max_progress=data.get("MaxProgress"),
        rarity_percentage=data.get("Rarity"),
    )


def _hltb_to_dict(hltb: Optional[HowLongToBeatData]) -> Optional[dict[str, Any]]:
    if hltb is None:
        return None
    return {
        "Main": hltb.main_story,
        "MainExtras": hltb.main_extras,
        "Completionist": hltb.completionist,
        "AllStyles": hltb.all_styles,
        "LastFetched": _fmt_dt(hltb.fetched_at),
    }


def _hltb_from_dict(data: Optional[dict[str, Any]]) -> Optional[HowLongToBeatData]:
    if not data or not data.get("LastFetched"):
        return None
    return HowLongToBeatData(
        main_story=data.get("Main"),
        main_extras=data.get("MainExtras"),
        completionist=data.get("Completionist"),
        all_styles=data.get("AllStyles"),
        fetched_at=_parse_dt(data["LastFetched"]),
    )


def game_to_dict(game: Game) -> dict[str, Any]:
    return {
        "Identifier": game.identifier,
        "GameName": game.name,
        "Developer": game.author,
        "Icon": game.icon,
        "Source": game.platform.value,
        "Playtime": game.playtime_minutes,
        "LastUpdated": _fmt_dt(game.last_updated),
        "Achievements": [achievement_to_dict(a) for a in game.achievements],
        "HowLongToBeat": _hltb_to_dict(game.hltb),
    }


def game_from_dict(data: dict[str, Any]) -> Game:
    return Game(
        identifier=data["Identifier"],
        name=data.get("GameName", ""),
        platform=Platform(data["Source"]),
        author=data.get("Developer", ""),
        icon=data.get("Icon", ""),
        playtime_minutes=data.get("Playtime", -1),
        achievements=tuple(
            achievement_from_dict(a) for a in data.get("Achievements") or []
        ),
        last_updated=_parse_dt(data.get("LastUpdated")),
        hltb=_hltb_from_dict(data.get("HowLongToBeat")),
    )


_ACCOUNT_TAGS = {
    "steam_id": "SteamUsername",
    "retroachievements_username": "RAUsername",
    "xbox_auth": "XboxAuth",
    "psn_token": "PSNToken",
    "initialised": "Init",
}

_PREFERENCE_TAGS = {
    "hide_complete": "HideComplete",
    "hide_no_achievements": "HideNoAchievements",
    "hide_unstarted": "HideUnstarted",
    "reverse": "Reverse",
    "order_by": "OrderBy",
    "page_size": "PageSize",
}


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def _flag(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected true or false, got {type(value).__name__}")
    return value


def _page_size(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer, got {type(value).__name__}")
    if value <= 0:
        raise ValueError("must be positive")
    return value


_SETTING_PARSERS: dict[str, Callable[[Any], Any]] = {
    "initialised": _flag,
    "hide_complete": _flag,
    "hide_no_achievements": _flag,
    "hide_unstarted": _flag,
    "reverse": _flag,
    "order_by": OrderBy,
    "page_size": _page_size,
}


def _read_settings(data: dict[str, Any], tags: dict[str, str]) -> dict[str, Any]:
    """Parse the fields named in *tags*; invalid values are logged and left out."""
    values: dict[str, Any] = {}
    for attr, tag in tags.items():
        if data.get(tag) is None:
            continue
        parse = _SETTING_PARSERS.get(attr, _text)
        try:
            values[attr] = parse(data[tag])
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring invalid %s value %r: %s", tag, data[tag], exc)
    return values


# ------------------------------------------------------------------
# Store
# ------------------------------------------------------------------


class LibraryStore:
    """Keyed, observable collection of games plus the settings persisted with it.

    All mutation of the games mapping happens under one lock. Listeners
    registered with :meth:`subscribe` are called outside the lock after every
    change, or once per outermost :meth:`batch_update` scope.

    Parameters
    ----------
    path:
        Location of the JSON settings document.
    """

    def __init__(
        self,
        path: Path | str = _DEFAULT_PATH,
        accounts: Optional[AccountSettings] = None,
        preferences: Optional[ViewPreferences] = None,
    ) -> None:
        self.path = Path(path)
        self.version = SCHEMA_VERSION
        self.accounts = accounts or AccountSettings()
        self.preferences = preferences or ViewPreferences()
        self._games: dict[str, Game] = {}
        self._lock = threading.Lock()
        self._save_lock = asyncio.Lock()
        self._listeners: list[Listener] = []
        self._batch_depth = 0
        self._pending_notify = False
        self._dirty = False
        self._generation = 0

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._games)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._games

    def get(self, identifier: str) -> Optional[Game]:
        with self._lock:
            return self._games.get(identifier)

    def snapshot(self) -> dict[str, Game]:
        """Return a copy of the games mapping taken at one instant."""
        with self._lock:
            return dict(self._games)

    def games(self) -> list[Game]:
        return list(self.snapshot().values())

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_or_update(self, game: Game) -> None:
        """Insert *game*, replacing any stored record with the same identifier."""
        with self._lock:
            self._games[game.identifier] = game
            self._mark_dirty()
            notify_now = self._batch_depth == 0
            if not notify_now:
                self._pending_notify = True
        if notify_now:
            self._notify()

    def clear_games(self) -> None:
        with self._lock:
            had_games = bool(self._games)
            self._games.clear()
            self._mark_dirty()
            notify_now = had_games and self._batch_depth == 0
            if had_games and not notify_now:
                self._pending_notify = True
        if notify_now:
            self._notify()

    def update_accounts(self, **changes: Any) -> None:
        """Apply *changes* to the account settings and mark the store dirty."""
        with self._lock:
            self.accounts = replace(self.accounts, **changes)
            self._mark_dirty()

    def update_preferences(self, **changes: Any) -> None:
        """Apply *changes* to the view preferences and mark the store dirty."""
        with self._lock:
            self.preferences = replace(self.preferences, **changes)
            self._mark_dirty()

    @contextmanager
    def batch_update(self) -> Generator["LibraryStore", None, None]:
        """Defer change notifications until the outermost scope exits.

        Exactly one notification is sent on exit if any update happened inside
        the scope, none otherwise.
        """
        with self._lock:
            self._batch_depth += 1
        try:
            yield self
        finally:
            with self._lock:
                self._batch_depth -= 1
                flush = self._batch_depth == 0 and self._pending_notify
                if flush:
                    self._pending_notify = False
            if flush:
                self._notify()

    def _mark_dirty(self) -> None:
        self._dirty = True
        self._generation += 1

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for game changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            games = dict(self._games)
            accounts = replace(self.accounts)
            preferences = replace(self.preferences)
        return self._document(games, accounts, preferences)

    async def save(self, force: bool = False) -> bool:
        """Write the store to :attr:`path` if it changed since the last save.

        Returns ``True`` when a write happened. A failed write is logged and
        leaves the store dirty; the in-memory state stays authoritative.

        Saves are serialised. Cancelling the caller does not interrupt a save
        in progress: the write runs to completion before the next one starts.
        """
        return await asyncio.shield(self._save(force))

    async def _save(self, force: bool) -> bool:
        async with self._save_lock:
            return await self._save_locked(force)

    async def _save_locked(self, force: bool) -> bool:
        with self._lock:
            if not self._dirty and not force:
                return False
            games = dict(self._games)
            generation = self._generation
            accounts = replace(self.accounts)
            preferences = replace(self.preferences)

        doc = self._document(games, accounts, preferences)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write, doc)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Could not save settings to %s: %s", self.path, exc, exc_info=True)
            return False

        with self._lock:
            if self._generation == generation:
                self._dirty = False
        logger.info("Saved %d games to %s", len(games), self.path)
        return True

    def _document(
        self,
        games: dict[str, Game],
        accounts: AccountSettings,
        preferences: ViewPreferences,
    ) -> dict[str, Any]:
        doc: dict[str, Any] = {"Version": self.version}
        for attr, tag in _ACCOUNT_TAGS.items():
            doc[tag] = getattr(accounts, attr)
        for attr, tag in _PREFERENCE_TAGS.items():
            value = getattr(preferences, attr)
            doc[tag] = value.value if isinstance(value, Enum) else value
        doc["ScannedGames"] = {
            identifier: game_to_dict(game) for identifier, game in games.items()
        }
        return doc

    def _write(self, doc: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name + ".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            with suppress(OSError):
                os.unlink(tmp)
            raise

    @classmethod
    def load(cls, path: Path | str = _DEFAULT_PATH) -> "LibraryStore":
        """Read a store from *path*.

        A missing, empty or unreadable document yields an empty store. A
        document older than :data:`MIN_SUPPORTED_VERSION` keeps its settings
        but loses its games, forcing a full rescan.
        """
        path = Path(path)
        logger.info("Loading settings from %s", path)
        if not path.exists():
            logger.info("Settings file not found, using defaults")
            return cls(path)
        try:
            content = path.read_text(encoding="utf-8")
            if not content.strip():
                logger.warning("Settings file is empty, using defaults")
                return cls(path)
            return cls.from_dict(json.loads(content), path)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.error("Could not load settings from %s: %s", path, exc, exc_info=True)
            return cls(path)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | str = _DEFAULT_PATH) -> "LibraryStore":
        if not isinstance(data, dict):
            raise TypeError("Settings document must be a JSON object")
        store = cls(
            path,
            accounts=AccountSettings(**_read_settings(data, _ACCOUNT_TAGS)),
            preferences=ViewPreferences(**_read_settings(data, _PREFERENCE_TAGS)),
        )

        version = data.get("Version", 0)
        if isinstance(version, bool) or not isinstance(version, int):
            logger.warning("Ignoring invalid Version value %r", version)
            version = 0
        if version < MIN_SUPPORTED_VERSION:
            logger.warning(
                "Settings version %s is older than %s, discarding games for a full rescan",
                version,
                MIN_SUPPORTED_VERSION,
            )
            store._mark_dirty()
            return store

        scanned = data.get("ScannedGames") or {}
        if not isinstance(scanned, dict):
            logger.warning("Ignoring invalid ScannedGames value of type %s", type(scanned).__name__)
            scanned = {}
        for key, raw in scanned.items():
            try:
                game = game_from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable game %r: %s", key, exc)
                continue
            store._games[game.identifier] = game
        return store
