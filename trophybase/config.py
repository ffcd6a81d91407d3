"""Runtime configuration: API keys and default paths."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_SETTINGS_PATH = Path.home() / ".trophybase" / "settings.json"

#: Concurrent provider fetches per sync.
PROVIDER_CONCURRENCY = 4
#: Concurrent HowLongToBeat lookups per sync.
ENRICHMENT_CONCURRENCY = 5
#: Concurrent per-title achievement lookups inside one provider.
TITLE_LOOKUP_CONCURRENCY = 4


@dataclass(frozen=True)
class ApiKeys:
    """Developer keys for the platform web APIs."""

    steam: str = ""
    retroachievements: str = ""
    openxbl: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ApiKeys":
        """Read keys from ``STEAM_API_KEY``, ``RA_API_KEY`` and ``OPENXBL_API_KEY``."""
        env = os.environ if env is None else env
        return cls(
            steam=env.get("STEAM_API_KEY", ""),
            retroachievements=env.get("RA_API_KEY", ""),
            openxbl=env.get("OPENXBL_API_KEY", ""),
        )

    def with_overrides(
        self,
        steam: Optional[str] = None,
        retroachievements: Optional[str] = None,
        openxbl: Optional[str] = None,
    ) -> "ApiKeys":
        return ApiKeys(
            steam=steam or self.steam,
            retroachievements=retroachievements or self.retroachievements,
            openxbl=openxbl or self.openxbl,
        )
