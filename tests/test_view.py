"""Tests for trophybase.view (projection and windowing)."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from trophybase.models import Achievement, Game, HowLongToBeatData, Platform
from trophybase.store import LibraryStore, OrderBy, ViewPreferences
from trophybase.view import LibraryQuery, LibraryView, ObservableList, project

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _game(identifier, name=None, unlocked=0, total=0, **kwargs) -> Game:
    return Game(
        identifier=identifier,
        name=name or identifier,
        platform=Platform.STEAM,
        achievements=[
            Achievement(id=f"A{i}", title="x", is_unlocked=i < unlocked) for i in range(total)
        ],
        **kwargs,
    )


def _names(games):
    return [g.name for g in games]


class TestFilters:
    def setup_method(self):
        self.games = [
            _game("steam-1", "Complete", unlocked=2, total=2),
            _game("steam-2", "Partial", unlocked=1, total=3),
            _game("steam-3", "Unstarted", unlocked=0, total=4),
            _game("steam-4", "Empty"),
        ]

    def test_no_filters_keeps_everything(self):
        assert len(project(self.games, ViewPreferences())) == 4

    def test_hide_complete(self):
        result = project(self.games, ViewPreferences(hide_complete=True))
        assert _names(result) == ["Partial", "Unstarted"]

    def test_hide_no_achievements(self):
        result = project(self.games, ViewPreferences(hide_no_achievements=True))
        assert "Empty" not in _names(result)
        assert len(result) == 3

    def test_hide_unstarted(self):
        result = project(self.games, ViewPreferences(hide_unstarted=True))
        assert _names(result) == ["Complete", "Partial"]

    def test_filters_compose(self):
        prefs = ViewPreferences(hide_complete=True, hide_unstarted=True)
        assert _names(project(self.games, prefs)) == ["Partial"]

    def test_search_is_case_insensitive(self):
        assert _names(project(self.games, ViewPreferences(), "pArT")) == ["Partial"]


class TestSorting:
    def test_name(self):
        games = [_game("steam-1", "beta"), _game("steam-2", "Alpha"), _game("steam-3", "gamma")]
        assert _names(project(games, ViewPreferences())) == ["Alpha", "beta", "gamma"]

    def test_reverse(self):
        games = [_game("steam-1", "B"), _game("steam-2", "A")]
        assert _names(project(games, ViewPreferences(reverse=True))) == ["B", "A"]

    def test_completion_percentage(self):
        games = [
            _game("steam-1", "Half", unlocked=1, total=2),
            _game("steam-2", "Empty"),
            _game("steam-3", "Full", unlocked=1, total=1),
        ]
        prefs = ViewPreferences(order_by=OrderBy.COMPLETION_PCT)
        assert _names(project(games, prefs)) == ["Empty", "Half", "Full"]

    def test_last_updated_is_descending(self):
        games = [
            _game("steam-1", "Old", last_updated=BASE),
            _game("steam-2", "Never"),
            _game("steam-3", "New", last_updated=BASE + timedelta(days=1)),
        ]
        prefs = ViewPreferences(order_by=OrderBy.LAST_UPDATED)
        assert _names(project(games, prefs)) == ["New", "Old", "Never"]

    def test_playtime(self):
        games = [
            _game("steam-1", "Long", playtime_minutes=600),
            _game("steam-2", "Short", playtime_minutes=5),
        ]
        prefs = ViewPreferences(order_by=OrderBy.PLAYTIME)
        assert _names(project(games, prefs)) == ["Short", "Long"]

    def test_hltb_sort_excludes_games_without_estimate(self):
        games = [
            _game("steam-1", "Long", hltb=HowLongToBeatData(main_story=40.0)),
            _game("steam-2", "Unknown"),
            _game("steam-3", "NotFound", hltb=HowLongToBeatData()),
            _game("steam-4", "Short", hltb=HowLongToBeatData(main_story=2.5)),
        ]
        prefs = ViewPreferences(order_by=OrderBy.HLTB_MAIN)
        assert _names(project(games, prefs)) == ["Short", "Long"]

    def test_hltb_completionist_requires_that_field(self):
        games = [
            _game("steam-1", "MainOnly", hltb=HowLongToBeatData(main_story=4.0)),
            _game("steam-2", "Both", hltb=HowLongToBeatData(main_story=4.0, completionist=9.0)),
        ]
        prefs = ViewPreferences(order_by=OrderBy.HLTB_COMPLETIONIST)
        assert _names(project(games, prefs)) == ["Both"]


class TestLibraryQuery:
    def test_recomputed_on_every_iteration(self, tmp_path):
        store = LibraryStore(tmp_path / "settings.json")
        query = LibraryQuery(store)
        assert list(query) == []
        store.add_or_update(_game("steam-1"))
        assert len(list(query)) == 1
        assert len(list(query)) == 1


class TestObservableList:
    def test_events(self):
        items = ObservableList()
        events = []
        items.subscribe(events.append)
        games = [_game(f"steam-{i}") for i in range(4)]

        items.replace_all(games[:2])
        items.extend(games[2:])
        items.remove_front(1)
        items.insert_front(games[:1])
        items.remove_back(2)

        assert [e.action for e in events] == ["reset", "insert", "remove", "insert", "remove"]
        assert events[1].index == 2
        assert events[-1].index == 2
        assert list(items) == games[:2]


# ------------------------------------------------------------------
# Windowing
# ------------------------------------------------------------------

ITEM_HEIGHT = 10.0
VIEWPORT = 50.0


def _view(tmp_path, count, page_size=10) -> LibraryView:
    store = LibraryStore(
        tmp_path / "settings.json", preferences=ViewPreferences(page_size=page_size)
    )
    with store.batch_update():
        for i in range(count):
            store.add_or_update(_game(f"steam-{i:05d}"))
    view = LibraryView(store)
    view.refresh()
    return view


def _scroll_to(view, offset):
    """Emulate a scroll container whose items are all ITEM_HEIGHT tall."""
    scrollable = max(0.0, len(view.items) * ITEM_HEIGHT - VIEWPORT)
    offset = min(max(0.0, offset), scrollable)
    return view.on_scroll(offset, VIEWPORT, scrollable)


def _assert_window(view):
    full = view.full_sequence
    assert 0 <= view.start <= view.end <= len(full)
    assert view.end - view.start <= 3 * view.page_size
    assert list(view.items) == list(full[view.start:view.end])


class TestWindow:
    def test_initial_window_is_one_page(self, tmp_path):
        view = _view(tmp_path, 100, page_size=30)
        assert (view.start, view.end) == (0, 30)
        _assert_window(view)

    def test_small_library_fits_in_first_page(self, tmp_path):
        view = _view(tmp_path, 5, page_size=30)
        assert (view.start, view.end) == (0, 5)

    def test_follows_store_changes(self, tmp_path):
        view = _view(tmp_path, 5, page_size=30)
        view._store.add_or_update(_game("steam-99999"))
        assert view.total == 6
        assert len(view.items) == 6

    def test_search_resets_window(self, tmp_path):
        view = _view(tmp_path, 100, page_size=30)
        view.set_search("steam-0001")
        assert view.total == 10
        assert (view.start, view.end) == (0, 10)

    def test_scroll_near_bottom_extends_by_one_page(self, tmp_path):
        view = _view(tmp_path, 100, page_size=30)
        _scroll_to(view, 250.0)
        assert (view.start, view.end) == (0, 60)
        _assert_window(view)

    def test_scroll_above_threshold_does_nothing(self, tmp_path):
        view = _view(tmp_path, 100, page_size=30)
        _scroll_to(view, 20.0)
        assert (view.start, view.end) == (0, 30)

    def test_forward_trim_keeps_visible_items(self, tmp_path):
        view = _view(tmp_path, 200, page_size=10)
        offset = 0.0
        for _ in range(30):
            offset = _scroll_to(view, offset + 60.0)
            first_visible = view.start + int(offset // ITEM_HEIGHT)
            _assert_window(view)
            assert view.start <= first_visible < view.end
        assert view.start > 0
        assert view.end - view.start == 30

    def test_forward_trim_compensates_offset(self, tmp_path):
        view = _view(tmp_path, 200, page_size=10)
        offset = 0.0
        for _ in range(20):
            scrollable = max(0.0, len(view.items) * ITEM_HEIGHT - VIEWPORT)
            target = min(offset + 60.0, scrollable)
            expected = view.items[int(target // ITEM_HEIGHT)]
            offset = view.on_scroll(target, VIEWPORT, scrollable)
            assert view.items[int(offset // ITEM_HEIGHT)] == expected

    def test_scroll_back_to_top_restores_start(self, tmp_path):
        view = _view(tmp_path, 200, page_size=10)
        offset = 0.0
        for _ in range(40):
            offset = _scroll_to(view, offset + 60.0)
        assert view.start > 0
        for _ in range(200):
            offset = _scroll_to(view, offset - 60.0)
            _assert_window(view)
            if view.start == 0 and offset == 0.0:
                break
        assert view.start == 0

    @pytest.mark.parametrize("seed", range(5))
    def test_random_scrolling_keeps_bounds(self, tmp_path, seed):
        rng = random.Random(seed)
        view = _view(tmp_path, 500, page_size=rng.choice([1, 7, 25, 100]))
        offset = 0.0
        for _ in range(300):
            offset = _scroll_to(view, offset + rng.uniform(-400.0, 400.0))
            _assert_window(view)

    def test_invalid_geometry_is_ignored(self, tmp_path):
        view = _view(tmp_path, 100, page_size=30)
        assert view.on_scroll(50.0, 0.0, 100.0) == 50.0
        assert view.on_scroll(0.0, 200.0, 0.0) == 0.0
        assert (view.start, view.end) == (0, 30)


class TestPaging:
    def test_page(self, tmp_path):
        view = _view(tmp_path, 25, page_size=10)
        assert len(view.page(1)) == 10
        assert len(view.page(3)) == 5
        assert view.page(4) == []

    def test_invalid_page(self, tmp_path):
        view = _view(tmp_path, 5)
        with pytest.raises(ValueError):
            view.page(0)

    def test_apply_preferences_reprojects(self, tmp_path):
        view = _view(tmp_path, 5)
        view.apply_preferences(reverse=True)
        assert view.items[0].identifier == "steam-00004"
