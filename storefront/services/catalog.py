"""Loading and filtering the public game catalog."""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable

from pydantic import ValidationError

from ..errors import StorefrontError
from ..models import Game, ViewMode
from ..store import StorefrontStore
from .backend import BackendClient

logger = logging.getLogger(__name__)

CATALOG_ERROR_MESSAGE = "Unable to load the catalog. Check your connection and retry."


def parse_games(rows: Iterable[dict[str, object]]) -> list[Game]:
    """Validate catalog rows, skipping the ones that cannot be displayed."""

    games: list[Game] = []
    for row in rows:
        try:
            games.append(Game.model_validate(row))
        except ValidationError as exc:
            logger.warning("Skipping malformed catalog row %s: %s", row.get("id"), exc)
    return games


def filter_catalog(
    games: Iterable[Game],
    *,
    query: str = "",
    platform: str = "All",
    view_mode: ViewMode = "store",
    library_ids: Collection[str] = (),
) -> list[Game]:
    """Return the games matching the search box, console filter and view."""

    needle = query.strip().lower()
    return [
        game
        for game in games
        if needle in game.title.lower()
        and game.available_on(platform)
        and (view_mode == "store" or game.id in library_ids)
    ]


class CatalogFetcher:
    """Load the full catalog, most downloaded first."""

    def __init__(self, backend: BackendClient, store: StorefrontStore):
        self._backend = backend
        self._store = store

    async def fetch_catalog(self) -> list[Game]:
        """Replace the catalog on success; keep the previous list on failure."""

        self._store.begin_catalog_load()
        try:
            rows = await (
                self._backend.table("games")
                .select("*")
                .order("download_count", descending=True)
                .fetch()
            )
        except StorefrontError as exc:
            logger.warning("Failed to fetch the catalog: %s", exc)
            self._store.fail_catalog_load(CATALOG_ERROR_MESSAGE)
            return self._store.games

        games = parse_games(rows)
        self._store.replace_catalog(games)
        logger.info("Loaded %d catalog entries", len(games))
        return games
