"""Tests for trophybase.models."""

from datetime import datetime, timedelta, timezone

import pytest

from trophybase.models import (
    PLAYTIME_UNTRACKED,
    Achievement,
    Game,
    HowLongToBeatData,
    Platform,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _game(unlocked=0, total=0, **kwargs) -> Game:
    achievements = [
        Achievement(id=f"A{i}", title=f"Ach {i}", is_unlocked=i < unlocked)
        for i in range(total)
    ]
    kwargs.setdefault("identifier", "steam-1")
    kwargs.setdefault("name", "Game")
    kwargs.setdefault("platform", Platform.STEAM)
    return Game(achievements=achievements, **kwargs)


class TestAchievement:
    def test_defaults(self):
        ach = Achievement(id="WIN", title="Win the game")
        assert ach.is_unlocked is False
        assert ach.unlocked_on is None
        assert ach.rarity_percentage is None

    def test_empty_id_raises(self):
        with pytest.raises(ValueError):
            Achievement(id="", title="x")

    def test_unlock_time_requires_unlocked(self):
        with pytest.raises(ValueError):
            Achievement(id="A", title="x", unlocked_on=NOW)

    def test_unlocked_with_time(self):
        ach = Achievement(id="A", title="x", is_unlocked=True, unlocked_on=NOW)
        assert ach.unlocked_on == NOW


class TestGame:
    def test_empty_identifier_raises(self):
        with pytest.raises(ValueError):
            Game(identifier="", name="X", platform=Platform.STEAM)

    def test_invalid_playtime_raises(self):
        with pytest.raises(ValueError):
            Game(identifier="steam-1", name="X", platform=Platform.STEAM, playtime_minutes=-2)

    def test_achievements_stored_as_tuple(self):
        game = _game(unlocked=1, total=2)
        assert isinstance(game.achievements, tuple)

    def test_counts(self):
        game = _game(unlocked=3, total=4)
        assert game.total_count == 4
        assert game.unlocked_count == 3
        assert game.has_achievements

    def test_completion_percent_truncates(self):
        assert _game(unlocked=1, total=3).completion_percent == 33
        assert _game(unlocked=2, total=3).completion_percent == 66

    def test_completion_percent_without_achievements(self):
        assert _game().completion_percent == 0

    def test_is_perfect(self):
        assert _game(unlocked=2, total=2).is_perfect
        assert not _game(unlocked=1, total=2).is_perfect
        assert not _game().is_perfect

    def test_playtime_hours(self):
        assert _game(playtime_minutes=90).playtime_hours == 1.5

    def test_untracked_playtime(self):
        game = _game()
        assert game.playtime_minutes == PLAYTIME_UNTRACKED
        assert game.playtime_hours is None

    def test_frozen(self):
        game = _game()
        with pytest.raises(AttributeError):
            game.name = "Other"  # type: ignore[misc]


class TestStatusText:
    def test_no_achievements(self):
        assert _game().status_text == "No Achievements"

    def test_complete(self):
        assert _game(unlocked=5, total=5).status_text == "100% Complete (5 Achievements)"

    def test_in_progress(self):
        assert _game(unlocked=1, total=3).status_text == "1 / 3 (33%)"

    def test_not_started(self):
        assert _game(total=4).status_text == "Not Started (4 Achievements)"


class TestEnrichmentFreshness:
    def test_missing_data_needs_enrichment(self):
        assert _game().needs_enrichment(NOW)

    def test_recent_data_is_fresh(self):
        hltb = HowLongToBeatData(main_story=10.0, fetched_at=NOW - timedelta(days=6))
        assert not _game(hltb=hltb).needs_enrichment(NOW)

    def test_stale_data_needs_enrichment(self):
        hltb = HowLongToBeatData(main_story=10.0, fetched_at=NOW - timedelta(days=8))
        assert _game(hltb=hltb).needs_enrichment(NOW)

    def test_not_found_record_is_fresh(self):
        hltb = HowLongToBeatData(fetched_at=NOW - timedelta(days=1))
        assert hltb.is_fresh(NOW)
