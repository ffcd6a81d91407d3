"""HowLongToBeat lookups used to enrich games with time-to-beat estimates."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from howlongtobeatpy import HowLongToBeat

from trophybase.models import HowLongToBeatData

logger = logging.getLogger(__name__)


def _hours(value: Any) -> Optional[float]:
    """HowLongToBeat reports missing estimates as 0; map those to ``None``."""
    if not value:
        return None
    return float(value)


def best_match(name: str, results: Sequence[Any]) -> Optional[Any]:
    """Pick the entry whose title equals *name* (case-insensitive), else the most similar."""
    if not results:
        return None
    wanted = name.casefold()
    for entry in results:
        if (entry.game_name or "").casefold() == wanted:
            return entry
    return max(results, key=lambda e: getattr(e, "similarity", 0) or 0)


class HowLongToBeatService:
    """Best-match-by-name lookup against howlongtobeat.com.

    Parameters
    ----------
    client:
        A ``howlongtobeatpy.HowLongToBeat`` instance; one is created if omitted.
    """

    def __init__(self, client: Optional[HowLongToBeat] = None) -> None:
        self._client = client or HowLongToBeat()

    async def get_game_data(self, name: str) -> Optional[HowLongToBeatData]:
        """Return estimates for *name*, or ``None`` if the game is not found.

        Network and parsing errors propagate to the caller.
        """
        if not name or not name.strip():
            logger.warning("Skipping HowLongToBeat lookup for an empty game name")
            return None

        logger.debug("Searching HowLongToBeat for %r", name)
        results = await self._client.async_search(name)
        entry = best_match(name, results or [])
        if entry is None:
            logger.info("No HowLongToBeat results for %r", name)
            return None

        logger.debug("Matched %r to HowLongToBeat entry %r", name, entry.game_name)
        return HowLongToBeatData(
            main_story=_hours(entry.main_story),
            main_extras=_hours(entry.main_extra),
            completionist=_hours(entry.completionist),
            all_styles=_hours(entry.all_styles),
        )
