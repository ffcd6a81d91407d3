"""Provider contract shared by every achievement platform integration.

Each platform (Steam, Xbox, RetroAchievements) implements the private
``_fetch_*`` hooks; the public methods add the failure policy every caller
relies on:

- :meth:`AchievementProvider.get_library` and
  :meth:`AchievementProvider.refresh_library` never raise. A failure is logged
  and the provider contributes an empty list for that sync.
- :meth:`AchievementProvider.refresh_title` raises :class:`ProviderError`,
  because the caller asked for that one title and needs to know it failed.

Cancellation is asyncio task cancellation and always propagates.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from trophybase.models import Game, Platform

if TYPE_CHECKING:
    from trophybase.config import ApiKeys
    from trophybase.store import AccountSettings, LibraryStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    """Raised when a provider cannot be created or cannot refresh a title."""


class AchievementProvider(ABC):
    """Base class for platform integrations.

    Parameters
    ----------
    store:
        Library store used to look up what is already known (for example to
        skip titles without achievements on incremental refreshes). Optional.
    """

    platform: Platform
    #: Identifier namespace, e.g. ``"steam-"``.
    prefix: str

    def __init__(self, store: Optional["LibraryStore"] = None) -> None:
        self._store = store

    @property
    def name(self) -> str:
        return self.platform.value

    def owns(self, identifier: str) -> bool:
        """Return ``True`` if *identifier* belongs to this provider's namespace."""
        return identifier.startswith(self.prefix)

    def make_identifier(self, native_id: Any) -> str:
        return f"{self.prefix}{native_id}"

    def native_id(self, identifier: str) -> str:
        """Strip the namespace prefix from *identifier*."""
        if not self.owns(identifier):
            raise ProviderError(
                f"{identifier!r} does not belong to the {self.name} provider"
            )
        return identifier[len(self.prefix):]

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def get_library(self) -> list[Game]:
        """Return the user's whole library, or ``[]`` if the platform failed."""
        try:
            return await self._fetch_library()
        except Exception as exc:
            logger.error("Failed to get %s library: %s", self.name, exc, exc_info=True)
            return []

    async def refresh_library(self) -> list[Game]:
        """Return recently played or updated titles, or ``[]`` on failure."""
        try:
            return await self._fetch_recent()
        except Exception as exc:
            logger.error("Failed to refresh %s library: %s", self.name, exc, exc_info=True)
            return []

    async def refresh_title(self, identifier: str) -> Game:
        """Re-fetch full detail for one title.

        Raises ``ProviderError`` if the title cannot be fetched.
        """
        try:
            return await self._fetch_title(self.native_id(identifier))
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(
                f"Failed to refresh {self.name} title {identifier!r}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Platform hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _fetch_library(self) -> list[Game]:
        ...

    @abstractmethod
    async def _fetch_recent(self) -> list[Game]:
        ...

    @abstractmethod
    async def _fetch_title(self, native_id: str) -> Game:
        ...

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _call(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking client call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _known_without_achievements(self) -> set[str]:
        """Identifiers of this platform's stored titles that have no achievements."""
        if self._store is None:
            return set()
        return {
            g.identifier
            for g in self._store.games()
            if g.platform is self.platform and not g.has_achievements
        }


async def configure_providers(
    accounts: "AccountSettings",
    keys: "ApiKeys",
    store: Optional["LibraryStore"] = None,
) -> list[AchievementProvider]:
    """Create a provider for every platform the user has configured.

    Providers are created concurrently. One that fails to construct is logged
    and left out for this session.
    """
    from trophybase.retroachievements import RetroAchievementsProvider
    from trophybase.steam import SteamProvider
    from trophybase.xbox import XboxProvider

    factories: list[tuple[str, Callable[[], Any]]] = []
    if accounts.steam_id:
        factories.append(
            ("Steam", lambda: SteamProvider.create(accounts.steam_id, keys.steam, store))
        )
    if accounts.retroachievements_username:
        factories.append(
            (
                "RetroAchievements",
                lambda: RetroAchievementsProvider.create(
                    accounts.retroachievements_username, keys.retroachievements, store
                ),
            )
        )
    xbox_key = accounts.xbox_auth or keys.openxbl
    if xbox_key:
        factories.append(("Xbox", lambda: XboxProvider.create(xbox_key, store)))

    results = await asyncio.gather(
        *(factory() for _, factory in factories), return_exceptions=True
    )

    providers: list[AchievementProvider] = []
    for (label, _), result in zip(factories, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.error("Could not set up %s provider: %s", label, result)
            continue
        logger.info("Configured %s provider", label)
        providers.append(result)
    return providers
