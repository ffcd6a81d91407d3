"""Tests for trophybase.enrichment (HowLongToBeatService)."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from trophybase.enrichment import HowLongToBeatService, best_match


def _entry(name, similarity=0.5, main=10.0, extra=15.0, complete=30.0, all_styles=12.0):
    return SimpleNamespace(
        game_name=name,
        similarity=similarity,
        main_story=main,
        main_extra=extra,
        completionist=complete,
        all_styles=all_styles,
    )


def _service(results):
    client = MagicMock()
    client.async_search = AsyncMock(return_value=results)
    return HowLongToBeatService(client), client


class TestBestMatch:
    def test_no_results(self):
        assert best_match("Portal", []) is None

    def test_exact_match_wins_over_similarity(self):
        exact = _entry("portal", similarity=0.6)
        other = _entry("Portal 2", similarity=0.9)
        assert best_match("Portal", [other, exact]) is exact

    def test_falls_back_to_most_similar(self):
        low = _entry("Portal Stories", similarity=0.4)
        high = _entry("Portal 2", similarity=0.8)
        assert best_match("Portal II", [low, high]) is high


class TestGetGameData:
    @pytest.mark.asyncio
    async def test_maps_estimates(self):
        service, _ = _service([_entry("Hades", main=22.0, extra=48.5, complete=95.0, all_styles=44.0)])
        data = await service.get_game_data("Hades")
        assert data.main_story == 22.0
        assert data.main_extras == 48.5
        assert data.completionist == 95.0
        assert data.all_styles == 44.0
        assert data.fetched_at is not None

    @pytest.mark.asyncio
    async def test_zero_estimate_is_absent(self):
        service, _ = _service([_entry("Tetris", main=0, complete=0)])
        data = await service.get_game_data("Tetris")
        assert data.main_story is None
        assert data.completionist is None

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self):
        service, _ = _service([])
        assert await service.get_game_data("Nonexistent") is None

    @pytest.mark.asyncio
    async def test_none_results_returns_none(self):
        service, _ = _service(None)
        assert await service.get_game_data("Nonexistent") is None

    @pytest.mark.asyncio
    async def test_empty_name_skips_lookup(self):
        service, client = _service([_entry("x")])
        assert await service.get_game_data("  ") is None
        client.async_search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        client = MagicMock()
        client.async_search = AsyncMock(side_effect=ConnectionError("offline"))
        service = HowLongToBeatService(client)
        with pytest.raises(ConnectionError):
            await service.get_game_data("Hades")
