"""Cached library-wide achievement statistics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from trophybase.store import LibraryStore

#: Names passed to listeners by :meth:`StatisticsCache.refresh`.
PROPERTIES = (
    "total_games",
    "unlocked_count",
    "total_achievements",
    "perfect_games",
    "percent_complete",
)


@dataclass(frozen=True)
class LibraryStatistics:
    """Aggregate counters for an entire library."""

    total_games: int = 0
    unlocked_count: int = 0
    total_achievements: int = 0
    perfect_games: int = 0
    percent_complete: int = 0  # 0..100, truncated


def compute_statistics(games) -> LibraryStatistics:
    """Derive :class:`LibraryStatistics` from an iterable of games in one pass."""
    total_games = unlocked = total = perfect = 0
    for game in games:
        total_games += 1
        game_total = game.total_count
        game_unlocked = game.unlocked_count
        total += game_total
        unlocked += game_unlocked
        if game_total and game_unlocked == game_total:
            perfect += 1
    return LibraryStatistics(
        total_games=total_games,
        unlocked_count=unlocked,
        total_achievements=total,
        perfect_games=perfect,
        percent_complete=unlocked * 100 // total if total else 0,
    )


class StatisticsCache:
    """Lazily recomputed statistics over a :class:`LibraryStore`.

    The cache is invalidated whenever the store reports a change and is
    recomputed on the next read.
    """

    def __init__(self, store: LibraryStore) -> None:
        self._store = store
        self._dirty = True
        self._cached = LibraryStatistics()
        self._listeners: list[Callable[[str], None]] = []
        self._unsubscribe = store.subscribe(self.invalidate)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def invalidate(self) -> None:
        """Force recomputation on the next read."""
        self._dirty = True

    def statistics(self) -> LibraryStatistics:
        if self._dirty:
            self._cached = compute_statistics(self._store.games())
            self._dirty = False
        return self._cached

    @property
    def total_games(self) -> int:
        return self.statistics().total_games

    @property
    def unlocked_count(self) -> int:
        return self.statistics().unlocked_count

    @property
    def total_achievements(self) -> int:
        return self.statistics().total_achievements

    @property
    def perfect_games(self) -> int:
        return self.statistics().perfect_games

    @property
    def percent_complete(self) -> int:
        return self.statistics().percent_complete

    def refresh(self) -> LibraryStatistics:
        """Recompute now and notify listeners once per derived property."""
        self.invalidate()
        stats = self.statistics()
        for name in PROPERTIES:
            for listener in list(self._listeners):
                listener(name)
        return stats

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        """Register *listener*, called with a property name on :meth:`refresh`."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def close(self) -> None:
        """Stop listening to the store."""
        self._unsubscribe()
