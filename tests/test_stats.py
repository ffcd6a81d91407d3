"""Tests for trophybase.stats."""

import pytest

from trophybase.models import Achievement, Game, Platform
from trophybase.stats import PROPERTIES, StatisticsCache, compute_statistics
from trophybase.store import LibraryStore


def _game(identifier, unlocked, total) -> Game:
    return Game(
        identifier=identifier,
        name=identifier,
        platform=Platform.STEAM,
        achievements=[
            Achievement(id=f"A{i}", title="x", is_unlocked=i < unlocked) for i in range(total)
        ],
    )


@pytest.fixture()
def store(tmp_path):
    return LibraryStore(tmp_path / "settings.json")


class TestComputeStatistics:
    def test_empty_library(self):
        stats = compute_statistics([])
        assert stats.total_games == 0
        assert stats.percent_complete == 0

    def test_no_achievements_does_not_divide_by_zero(self):
        stats = compute_statistics([_game("steam-1", 0, 0)])
        assert stats.total_games == 1
        assert stats.total_achievements == 0
        assert stats.percent_complete == 0
        assert stats.perfect_games == 0

    def test_percent_truncates(self):
        assert compute_statistics([_game("steam-1", 3, 4)]).percent_complete == 75
        assert compute_statistics([_game("steam-1", 1, 3)]).percent_complete == 33

    def test_mixed_library(self):
        stats = compute_statistics([_game("steam-1", 5, 5), _game("ra-2", 2, 7)])
        assert stats.total_games == 2
        assert stats.unlocked_count == 7
        assert stats.total_achievements == 12
        assert stats.perfect_games == 1
        assert stats.percent_complete == 58


class TestStatisticsCache:
    def test_recomputes_after_store_change(self, store):
        cache = StatisticsCache(store)
        assert cache.total_games == 0
        store.add_or_update(_game("steam-1", 1, 2))
        assert cache.is_dirty
        assert cache.total_games == 1
        assert cache.percent_complete == 50
        assert not cache.is_dirty

    def test_cached_until_invalidated(self, store, monkeypatch):
        cache = StatisticsCache(store)
        cache.statistics()
        calls = []
        monkeypatch.setattr(store, "games", lambda: calls.append(1) or [])
        cache.statistics()
        cache.total_games
        assert calls == []

    def test_refresh_notifies_every_property(self, store):
        cache = StatisticsCache(store)
        names = []
        cache.subscribe(names.append)
        store.add_or_update(_game("steam-1", 2, 2))
        stats = cache.refresh()
        assert names == list(PROPERTIES)
        assert stats.perfect_games == 1

    def test_close_stops_invalidation(self, store):
        cache = StatisticsCache(store)
        cache.statistics()
        cache.close()
        store.add_or_update(_game("steam-1", 1, 1))
        assert not cache.is_dirty
