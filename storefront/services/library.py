"""Download, library membership and report actions for a signed-in user."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..errors import StorefrontError
from ..models import Game
from ..store import StorefrontStore
from .backend import BackendClient

logger = logging.getLogger(__name__)

DownloadLauncher = Callable[[str], object]


@dataclass(slots=True)
class DownloadOutcome:
    """What a download click did."""

    game_id: str
    download_url: str | None
    added_to_library: bool = False
    counted: bool = False


class LibraryActions:
    """User-triggered catalog actions that touch the library or moderation queue."""

    def __init__(
        self,
        backend: BackendClient,
        store: StorefrontStore,
        *,
        launcher: DownloadLauncher | None = None,
    ):
        self._backend = backend
        self._store = store
        self._launcher = launcher

    def _require_game(self, game_id: str) -> Game:
        game = self._store.find_game(game_id)
        if game is None:
            raise LookupError(f"Game {game_id} is not in the catalog")
        return game

    async def download(self, game_id: str) -> DownloadOutcome | None:
        """Archive the game for the current user, count the download and launch it.

        Returns ``None`` when nobody is signed in; the only effect then is a
        sign-in prompt.
        """

        user = self._store.user
        if user is None:
            self._store.request_sign_in()
            return None

        game = self._require_game(game_id)
        outcome = DownloadOutcome(game_id=game.id, download_url=game.download_url)

        epoch = self._store.session_epoch
        if not self._store.in_library(game.id):
            try:
                await self._backend.table("user_library").insert(
                    [{"user_id": user.id, "game_id": game.id}]
                )
            except StorefrontError as exc:
                logger.warning("Could not add %s to the library of %s: %s", game.id, user.id, exc)
                self._store.push_notice(
                    "error", "Library", f"Could not add {game.title} to your library."
                )
            else:
                outcome.added_to_library = True
                if self._store.session_epoch == epoch:
                    self._store.add_to_library(game.id)
                else:
                    logger.info("Session ended while archiving %s, not updating library", game.id)

        try:
            await (
                self._backend.table("games")
                .eq("id", game.id)
                .update({"download_count": game.download_count + 1})
            )
        except StorefrontError as exc:
            logger.warning("Could not count download of %s: %s", game.id, exc)
            self._store.push_notice(
                "error", "Download", f"Could not record the download of {game.title}."
            )
        else:
            self._store.increment_download_count(game.id)
            outcome.counted = True

        if game.download_url and self._launcher is not None:
            self._launcher(game.download_url)
        return outcome

    async def report(self, game_id: str) -> bool:
        """File a pending moderation report against a catalog entry."""

        user = self._store.user
        if user is None:
            self._store.request_sign_in()
            return False

        game = self._require_game(game_id)
        epoch = self._store.session_epoch
        try:
            await self._backend.table("reports").insert(
                [{"game_id": game.id, "user_id": user.id, "status": "pending"}]
            )
        except StorefrontError as exc:
            logger.warning("Could not report %s: %s", game.id, exc)
            self._store.push_notice("error", "Report", "Your report could not be sent.")
            return False

        self._store.push_notice(
            "success", "Report", f"Thanks, {game.title} was flagged for review."
        )
        if user.is_admin and self._store.session_epoch == epoch:
            try:
                count = await self._backend.table("reports").eq("status", "pending").count()
            except StorefrontError as exc:
                logger.warning("Could not refresh pending report count: %s", exc)
            else:
                if self._store.session_epoch == epoch:
                    self._store.set_report_count(count)
        return True
