"""In-process view-model store shared by the storefront services.

The store owns the merged view of the session, the user's library and the
public catalog. Services mutate it only through the methods below, and every
mutation notifies subscribers with the names of the fields that changed so the
view layer can re-render. Reads go through properties or :meth:`snapshot`.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterable

from .models import Game, Notice, NoticeLevel, StorefrontSnapshot, UserView, ViewMode

logger = logging.getLogger(__name__)

Listener = Callable[[frozenset[str]], None]

MAX_NOTICES = 20


class StorefrontStore:
    """Single-writer store for the storefront view model."""

    def __init__(self) -> None:
        self._booting = True
        self._session_error: str | None = None
        self._user: UserView | None = None
        self._library_ids: set[str] = set()
        self._reconciled = False
        self._session_epoch = 0
        self._report_count = 0
        self._games: list[Game] = []
        self._catalog_loading = False
        self._catalog_error: str | None = None
        self._auth_prompt = False
        self._pending_verification: str | None = None
        self._view_mode: ViewMode = "store"
        self._notices: list[Notice] = []
        self._notice_ids = itertools.count(1)
        self._listeners: list[Listener] = []

    # Subscriptions -----------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, *fields: str) -> None:
        changed = frozenset(fields)
        for listener in list(self._listeners):
            try:
                listener(changed)
            except Exception:
                logger.exception("Store listener failed for %s", sorted(changed))

    # Read access -------------------------------------------------------

    @property
    def booting(self) -> bool:
        return self._booting

    @property
    def session_error(self) -> str | None:
        return self._session_error

    @property
    def user(self) -> UserView | None:
        return self._user

    @property
    def library_ids(self) -> frozenset[str]:
        return frozenset(self._library_ids)

    @property
    def reconciled(self) -> bool:
        return self._reconciled

    @property
    def session_epoch(self) -> int:
        return self._session_epoch

    @property
    def report_count(self) -> int:
        return self._report_count

    @property
    def games(self) -> list[Game]:
        return list(self._games)

    @property
    def catalog_loading(self) -> bool:
        return self._catalog_loading

    @property
    def catalog_error(self) -> str | None:
        return self._catalog_error

    @property
    def auth_prompt(self) -> bool:
        return self._auth_prompt

    @property
    def pending_verification(self) -> str | None:
        return self._pending_verification

    @property
    def view_mode(self) -> ViewMode:
        return self._view_mode

    @property
    def notices(self) -> list[Notice]:
        return list(self._notices)

    def find_game(self, game_id: str) -> Game | None:
        for game in self._games:
            if game.id == game_id:
                return game
        return None

    def in_library(self, game_id: str) -> bool:
        return game_id in self._library_ids

    def snapshot(self) -> StorefrontSnapshot:
        return StorefrontSnapshot(
            booting=self._booting,
            session_error=self._session_error,
            user=self._user,
            library_ids=sorted(self._library_ids),
            reconciled=self._reconciled,
            report_count=self._report_count,
            games=list(self._games),
            catalog_loading=self._catalog_loading,
            catalog_error=self._catalog_error,
            auth_prompt=self._auth_prompt,
            pending_verification=self._pending_verification,
            view_mode=self._view_mode,
            notices=list(self._notices),
        )

    # Boot ----------------------------------------------------------------

    def finish_booting(self) -> None:
        self._booting = False
        self._notify("booting")

    def set_session_error(self, message: str | None) -> None:
        self._session_error = message
        self._notify("session_error")

    # Identity ------------------------------------------------------------

    def set_user(self, user: UserView) -> None:
        self._user = user
        self._notify("user")

    def replace_library(self, game_ids: Iterable[str]) -> None:
        self._library_ids = set(game_ids)
        self._notify("library_ids")

    def add_to_library(self, game_id: str) -> None:
        self._library_ids.add(game_id)
        self._notify("library_ids")

    def mark_reconciled(self) -> None:
        self._reconciled = True
        self._notify("reconciled")

    def set_report_count(self, count: int) -> None:
        self._report_count = max(0, int(count))
        self._notify("report_count")

    def clear_identity(self) -> None:
        """Forget everything tied to the signed-in identity.

        Bumps the session epoch so that work started for the previous session
        can tell that its results are stale.
        """

        self._user = None
        self._library_ids = set()
        self._reconciled = False
        self._report_count = 0
        self._view_mode = "store"
        self._session_epoch += 1
        self._notify(
            "user", "library_ids", "reconciled", "report_count", "view_mode", "session_epoch"
        )

    # Auth prompts ----------------------------------------------------------

    def request_sign_in(self) -> None:
        self._auth_prompt = True
        self._notify("auth_prompt")

    def dismiss_sign_in(self) -> None:
        self._auth_prompt = False
        self._notify("auth_prompt")

    def set_pending_verification(self, email: str | None) -> None:
        self._pending_verification = email
        self._notify("pending_verification")

    # Catalog -------------------------------------------------------------

    def begin_catalog_load(self) -> None:
        self._catalog_loading = True
        self._notify("catalog_loading")

    def replace_catalog(self, games: Iterable[Game]) -> None:
        self._games = list(games)
        self._catalog_error = None
        self._catalog_loading = False
        self._notify("games", "catalog_error", "catalog_loading")

    def fail_catalog_load(self, message: str) -> None:
        self._catalog_error = message
        self._catalog_loading = False
        self._notify("catalog_error", "catalog_loading")

    def increment_download_count(self, game_id: str) -> None:
        self._games = [
            game.model_copy(update={"download_count": game.download_count + 1})
            if game.id == game_id
            else game
            for game in self._games
        ]
        self._notify("games")

    def set_view_mode(self, mode: ViewMode) -> None:
        self._view_mode = mode
        self._notify("view_mode")

    # Notices ---------------------------------------------------------------

    def push_notice(self, level: NoticeLevel, title: str, message: str) -> Notice:
        notice = Notice(id=next(self._notice_ids), level=level, title=title, message=message)
        self._notices.append(notice)
        if len(self._notices) > MAX_NOTICES:
            self._notices = self._notices[-MAX_NOTICES:]
        self._notify("notices")
        return notice

    def dismiss_notice(self, notice_id: int) -> bool:
        remaining = [notice for notice in self._notices if notice.id != notice_id]
        if len(remaining) == len(self._notices):
            return False
        self._notices = remaining
        self._notify("notices")
        return True
