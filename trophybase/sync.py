"""Sync orchestration: provider fan-out, merge, enrichment and persistence.

One :class:`SyncOrchestrator` drives every sync cycle for a store. A cycle is
either a full *scan* (``get_library`` on every provider) or an incremental
*refresh* (``refresh_library``). Starting a cycle cancels the one in flight,
and the new cycle does not touch the store until the old one has wound down.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from trophybase.config import ENRICHMENT_CONCURRENCY, PROVIDER_CONCURRENCY
from trophybase.enrichment import HowLongToBeatService
from trophybase.executor import RateLimitedExecutor
from trophybase.models import Game, HowLongToBeatData
from trophybase.providers import AchievementProvider, ProviderError
from trophybase.stats import StatisticsCache
from trophybase.store import LibraryStore
from trophybase.view import LibraryView

logger = logging.getLogger(__name__)

SCAN = "scan"
REFRESH = "refresh"

PHASE_PROVIDERS = "providers"
PHASE_ENRICHMENT = "enrichment"

#: Called as ``progress(phase, completed, total)``.
SyncProgress = Callable[[str, int, int], None]


@dataclass
class SyncResult:
    """Outcome of one sync cycle."""

    mode: str
    merged: int = 0
    skipped: int = 0
    enriched: int = 0
    failed_providers: list[str] = field(default_factory=list)
    cancelled: bool = False
    saved: bool = False


def _same_content(a: Game, b: Game) -> bool:
    """Compare two records ignoring when they were fetched."""
    return replace(a, last_updated=None) == replace(b, last_updated=None)


class SyncOrchestrator:
    """Runs scans and refreshes against a set of providers.

    Parameters
    ----------
    store:
        The library store results are merged into.
    providers:
        Configured platform providers.
    enrichment:
        HowLongToBeat lookup service. Enrichment is skipped when ``None``.
    stats, view:
        Derived views refreshed once at the end of every cycle.
    progress:
        Optional ``(phase, completed, total)`` callback.
    """

    def __init__(
        self,
        store: LibraryStore,
        providers: Sequence[AchievementProvider],
        enrichment: Optional[HowLongToBeatService] = None,
        stats: Optional[StatisticsCache] = None,
        view: Optional[LibraryView] = None,
        provider_concurrency: int = PROVIDER_CONCURRENCY,
        enrichment_concurrency: int = ENRICHMENT_CONCURRENCY,
        progress: Optional[SyncProgress] = None,
    ) -> None:
        self.store = store
        self.providers = list(providers)
        self.enrichment = enrichment
        self.stats = stats
        self.view = view
        self.provider_concurrency = provider_concurrency
        self.enrichment_concurrency = enrichment_concurrency
        self.progress = progress
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def scan(self) -> SyncResult:
        """Fetch every provider's full library, merge, enrich and save."""
        return await self._start(SCAN)

    async def refresh(self) -> SyncResult:
        """Fetch recently played titles only and merge the ones that changed."""
        return await self._start(REFRESH)

    async def cancel(self) -> None:
        """Cancel the cycle in flight, if any, and wait for it to stop."""
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})

    async def refresh_title(self, identifier: str) -> Game:
        """Re-fetch one title from its provider, store it and save.

        Raises ``ProviderError`` if no provider owns *identifier* or the
        fetch fails.
        """
        provider = next((p for p in self.providers if p.owns(identifier)), None)
        if provider is None:
            raise ProviderError(f"No configured provider for {identifier!r}")

        game = self._carry_enrichment(await provider.refresh_title(identifier))
        self.store.add_or_update(game)
        await self.store.save()
        self._publish()
        return game

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _start(self, mode: str) -> SyncResult:
        previous = self._task
        if previous is not None and not previous.done():
            logger.info("Cancelling sync in progress before starting %s", mode)
            previous.cancel()
        task = asyncio.ensure_future(self._run(mode, previous))
        self._task = task
        try:
            return await task
        finally:
            if self._task is task:
                self._task = None

    async def _run(self, mode: str, previous: Optional[asyncio.Task]) -> SyncResult:
        result = SyncResult(mode)
        try:
            if previous is not None and not previous.done():
                await asyncio.wait({previous})
            touched = await self._fetch_and_merge(mode, result)
            if self.enrichment is not None:
                if mode == SCAN:
                    candidates = self.store.games()
                else:
                    candidates = [g for g in map(self.store.get, touched) if g is not None]
                result.enriched = await self._enrich(candidates)
            # A save interrupted here still finishes in the background.
            result.saved = await self.store.save()
        except asyncio.CancelledError:
            result.cancelled = True
            logger.info("%s cancelled after merging %d games", mode.capitalize(), result.merged)
        else:
            logger.info(
                "%s finished: %d merged, %d unchanged, %d enriched",
                mode.capitalize(),
                result.merged,
                result.skipped,
                result.enriched,
            )
        self._publish()
        return result

    async def _fetch_and_merge(self, mode: str, result: SyncResult) -> list[str]:
        executor = RateLimitedExecutor(self.provider_concurrency, PHASE_PROVIDERS)
        touched: list[str] = []
        total = len(self.providers)
        completed = 0

        async def _fetch(provider: AchievementProvider) -> None:
            nonlocal completed
            fetch = provider.get_library if mode == SCAN else provider.refresh_library
            try:
                games = await executor.execute(fetch)
            except Exception as exc:
                logger.error("%s provider failed: %s", provider.name, exc, exc_info=True)
                result.failed_providers.append(provider.name)
                games = []
            logger.debug("%s returned %d games", provider.name, len(games))
            touched.extend(self._merge(games, mode, result))
            completed += 1
            self._report(PHASE_PROVIDERS, completed, total)

        with self.store.batch_update():
            await asyncio.gather(*(_fetch(p) for p in self.providers))
        return touched

    def _merge(self, games: Iterable[Game], mode: str, result: SyncResult) -> list[str]:
        merged: list[str] = []
        for game in games:
            existing = self.store.get(game.identifier)
            game = self._carry_enrichment(game, existing)
            if mode == REFRESH and existing is not None and _same_content(existing, game):
                result.skipped += 1
                continue
            self.store.add_or_update(game)
            merged.append(game.identifier)
            result.merged += 1
        return merged

    def _carry_enrichment(self, game: Game, existing: Optional[Game] = None) -> Game:
        """Keep stored HowLongToBeat data on an incoming record that has none."""
        if existing is None:
            existing = self.store.get(game.identifier)
        if game.hltb is None and existing is not None and existing.hltb is not None:
            return replace(game, hltb=existing.hltb)
        return game

    async def _enrich(self, games: Iterable[Game]) -> int:
        now = datetime.now(timezone.utc)
        candidates = [g for g in games if g.needs_enrichment(now)]
        if not candidates:
            return 0
        logger.info("Looking up HowLongToBeat data for %d games", len(candidates))
        executor = RateLimitedExecutor(self.enrichment_concurrency, PHASE_ENRICHMENT)

        async def _lookup(game: Game) -> bool:
            data = await self.enrichment.get_game_data(game.name)
            # Not found is recorded too, so it is not looked up again until stale.
            current = self.store.get(game.identifier) or game
            self.store.add_or_update(replace(current, hltb=data or HowLongToBeatData(fetched_at=now)))
            return data is not None

        with self.store.batch_update():
            found = await executor.execute_all_nullable(
                candidates,
                _lookup,
                progress=lambda done, total: self._report(PHASE_ENRICHMENT, done, total),
            )
        return sum(1 for f in found if f)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _report(self, phase: str, completed: int, total: int) -> None:
        if self.progress is not None:
            self.progress(phase, completed, total)

    def _publish(self) -> None:
        if self.stats is not None:
            self.stats.refresh()
        # A view following the store was already refreshed by the batch flush.
        if self.view is not None and not self.view.follows_store:
            self.view.refresh()
