"""Filtered, sorted and windowed projection of the library for display.

The full projection is recomputed from scratch on every change. Only a
bounded window of it, at most three pages, is materialized in
:attr:`LibraryView.items`. The window grows a page at a time as the user
scrolls and drops items that are out of sight. Scroll handling works on
estimated item heights (total content height divided by item count), so the
window maths is a heuristic. The one hard rule is that items inside the
viewport are never trimmed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence

from trophybase.models import Game
from trophybase.store import LibraryStore, OrderBy, ViewPreferences

logger = logging.getLogger(__name__)

#: The window never holds more than this many pages.
MAX_PAGES = 3
#: Items kept above/below the viewport when trimming.
WINDOW_BUFFER = 100
#: Fraction of the scrollable height after which the next page is loaded.
LOAD_AHEAD_THRESHOLD = 0.8
#: Offset, in viewport heights, below which the previous page is loaded.
LOAD_BEHIND_THRESHOLD = 0.2

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ------------------------------------------------------------------
# Projection
# ------------------------------------------------------------------


def _completion_ratio(game: Game) -> float:
    if not game.achievements:
        return 0.0
    return game.unlocked_count / game.total_count


_SORT_KEYS: dict[OrderBy, Callable[[Game], Any]] = {
    OrderBy.NAME: lambda g: g.name.casefold(),
    OrderBy.COMPLETION_PCT: _completion_ratio,
    OrderBy.TOTAL_COUNT: lambda g: g.total_count,
    OrderBy.UNLOCKED_COUNT: lambda g: g.unlocked_count,
    OrderBy.PLAYTIME: lambda g: g.playtime_minutes,
    OrderBy.LAST_UPDATED: lambda g: g.last_updated or _EPOCH,
    OrderBy.HLTB_MAIN: lambda g: g.hltb.main_story,
    OrderBy.HLTB_COMPLETIONIST: lambda g: g.hltb.completionist,
}


def _has_sort_value(game: Game, order_by: OrderBy) -> bool:
    if order_by is OrderBy.HLTB_MAIN:
        return game.hltb is not None and game.hltb.main_story is not None
    if order_by is OrderBy.HLTB_COMPLETIONIST:
        return game.hltb is not None and game.hltb.completionist is not None
    return True


def matches(game: Game, preferences: ViewPreferences, search_text: str = "") -> bool:
    """Return ``True`` if *game* passes every enabled filter."""
    if preferences.hide_complete and not game.unlocked_count < game.total_count:
        return False
    if preferences.hide_no_achievements and not game.has_achievements:
        return False
    if preferences.hide_unstarted and game.unlocked_count == 0:
        return False
    if search_text and search_text.casefold() not in game.name.casefold():
        return False
    return _has_sort_value(game, preferences.order_by)


def project(
    games: Iterable[Game],
    preferences: ViewPreferences,
    search_text: str = "",
) -> list[Game]:
    """Filter and sort *games* according to *preferences*."""
    search_text = search_text.strip()
    selected = (g for g in games if matches(g, preferences, search_text))
    result = sorted(
        selected,
        key=_SORT_KEYS[preferences.order_by],
        reverse=preferences.order_by is OrderBy.LAST_UPDATED,
    )
    if preferences.reverse:
        result.reverse()
    return result


class LibraryQuery:
    """Restartable view of the store's games; every iteration recomputes it."""

    def __init__(
        self,
        store: LibraryStore,
        preferences: Optional[ViewPreferences] = None,
        search_text: str = "",
    ) -> None:
        self._store = store
        self._preferences = preferences
        self.search_text = search_text

    @property
    def preferences(self) -> ViewPreferences:
        return self._preferences or self._store.preferences

    def __iter__(self) -> Iterator[Game]:
        return iter(project(self._store.games(), self.preferences, self.search_text))


# ------------------------------------------------------------------
# Observable window
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ListChange:
    """One change to an :class:`ObservableList`.

    ``action`` is ``"reset"``, ``"insert"`` or ``"remove"``; ``index`` and
    ``items`` describe the affected slice (``items`` is empty for resets).
    """

    action: str
    index: int = 0
    items: tuple[Game, ...] = ()


class ObservableList(Sequence[Game]):
    """Read-only sequence that reports in-place changes to subscribers."""

    def __init__(self) -> None:
        self._items: list[Game] = []
        self._listeners: list[Callable[[ListChange], None]] = []

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index):
        return self._items[index]

    def __iter__(self) -> Iterator[Game]:
        return iter(self._items)

    def subscribe(self, listener: Callable[[ListChange], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, change: ListChange) -> None:
        for listener in list(self._listeners):
            listener(change)

    def replace_all(self, items: Iterable[Game]) -> None:
        """Swap the contents, emitting a single ``reset``."""
        self._items = list(items)
        self._emit(ListChange("reset"))

    def extend(self, items: Sequence[Game]) -> None:
        index = len(self._items)
        self._items.extend(items)
        self._emit(ListChange("insert", index, tuple(items)))

    def insert_front(self, items: Sequence[Game]) -> None:
        self._items[0:0] = items
        self._emit(ListChange("insert", 0, tuple(items)))

    def remove_front(self, count: int) -> None:
        removed = tuple(self._items[:count])
        del self._items[:count]
        self._emit(ListChange("remove", 0, removed))

    def remove_back(self, count: int) -> None:
        index = len(self._items) - count
        removed = tuple(self._items[index:])
        del self._items[index:]
        self._emit(ListChange("remove", index, removed))


# ------------------------------------------------------------------
# Windowed view
# ------------------------------------------------------------------


class LibraryView:
    """Windowed display model over a :class:`LibraryStore`.

    ``items`` always equals ``full[start:end]`` where ``full`` is the current
    projection, and ``end - start`` never exceeds ``MAX_PAGES * page_size``.

    Parameters
    ----------
    store:
        The store to project. Its preferences supply filters, sort and page size.
    follow_store:
        Re-project automatically whenever the store reports a change.
    """

    def __init__(self, store: LibraryStore, follow_store: bool = True) -> None:
        self._store = store
        self.items = ObservableList()
        self.search_text = ""
        self._full: list[Game] = []
        self.start = 0
        self.end = 0
        self._last_offset = 0.0
        self._unsubscribe = store.subscribe(self.refresh) if follow_store else None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def page_size(self) -> int:
        return self._store.preferences.page_size

    @property
    def max_window(self) -> int:
        return MAX_PAGES * self.page_size

    @property
    def total(self) -> int:
        """Length of the full filtered and sorted sequence."""
        return len(self._full)

    @property
    def full_sequence(self) -> Sequence[Game]:
        return tuple(self._full)

    @property
    def follows_store(self) -> bool:
        """Whether store changes refresh the view automatically."""
        return self._unsubscribe is not None

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Recompute the projection and reset the window to the first page."""
        self._full = project(self._store.games(), self._store.preferences, self.search_text)
        self.start = 0
        self.end = min(self.page_size, len(self._full))
        self._last_offset = 0.0
        self.items.replace_all(self._full[self.start:self.end])
        logger.debug("Loaded initial window: 0-%d of %d", self.end, len(self._full))

    def set_search(self, text: str) -> None:
        self.search_text = text
        self.refresh()

    def apply_preferences(self, **changes: Any) -> None:
        """Update the persisted preferences and re-project."""
        self._store.update_preferences(**changes)
        self.refresh()

    def page(self, number: int) -> list[Game]:
        """Return page *number* (1-based) of the full projection."""
        if number < 1:
            raise ValueError("page number must be at least 1")
        begin = (number - 1) * self.page_size
        return self._full[begin:begin + self.page_size]

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Scrolling
    # ------------------------------------------------------------------

    def on_scroll(
        self, offset: float, viewport_height: float, scrollable_height: float
    ) -> float:
        """Move the window in response to a scroll event.

        *scrollable_height* is the content height minus the viewport height,
        as reported by a typical scroll container. Returns the scroll offset
        the caller should apply so visible content stays in place.
        """
        if scrollable_height <= 0 or viewport_height <= 0 or not self.items:
            return offset

        scrolling_down = offset > self._last_offset
        if scrolling_down:
            if offset / scrollable_height >= LOAD_AHEAD_THRESHOLD and self.end < len(self._full):
                offset = self._extend_forward(offset, viewport_height, scrollable_height)
        elif offset / viewport_height <= LOAD_BEHIND_THRESHOLD and self.start > 0:
            offset = self._extend_backward(offset, viewport_height, scrollable_height)

        self._last_offset = offset
        return offset

    def _item_height(self, viewport_height: float, scrollable_height: float) -> float:
        return (scrollable_height + viewport_height) / len(self.items)

    def _buffer(self) -> int:
        return min(WINDOW_BUFFER, self.page_size)

    def _extend_forward(self, offset: float, viewport: float, scrollable: float) -> float:
        item_height = self._item_height(viewport, scrollable)
        above = int(offset // item_height)
        trimmable = max(0, above - self._buffer())
        size = self.end - self.start
        add = min(self.page_size, len(self._full) - self.end, self.max_window - size + trimmable)
        if add <= 0:
            return offset

        self.items.extend(self._full[self.end:self.end + add])
        self.end += add

        overflow = (self.end - self.start) - self.max_window
        if overflow > 0:
            self.items.remove_front(overflow)
            self.start += overflow
            offset = max(0.0, offset - overflow * item_height)

        logger.debug(
            "Extended window forward: %d-%d of %d", self.start, self.end, len(self._full)
        )
        return offset

    def _extend_backward(self, offset: float, viewport: float, scrollable: float) -> float:
        item_height = self._item_height(viewport, scrollable)
        below = int(max(0.0, scrollable - offset) // item_height)
        trimmable = max(0, below - self._buffer())
        size = self.end - self.start
        add = min(self.page_size, self.start, self.max_window - size + trimmable)
        if add <= 0:
            return offset

        self.items.insert_front(self._full[self.start - add:self.start])
        self.start -= add
        offset += add * item_height

        overflow = (self.end - self.start) - self.max_window
        if overflow > 0:
            self.items.remove_back(overflow)
            self.end -= overflow

        logger.debug(
            "Extended window backward: %d-%d of %d", self.start, self.end, len(self._full)
        )
        return offset
