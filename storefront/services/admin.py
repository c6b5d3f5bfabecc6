"""Administrative catalog editing and moderation queue handling."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from ..errors import AdminRequiredError, StorefrontError
from ..models import DEFAULT_RATING, GameDraft, GameReport, ReportStatus
from ..store import StorefrontStore
from .backend import BackendClient
from .catalog import CatalogFetcher

logger = logging.getLogger(__name__)


class AdminService:
    """Catalog CRUD and report moderation for administrators."""

    def __init__(
        self,
        backend: BackendClient,
        store: StorefrontStore,
        catalog: CatalogFetcher,
    ):
        self._backend = backend
        self._store = store
        self._catalog = catalog

    def _require_admin(self) -> None:
        user = self._store.user
        if user is None or not user.is_admin:
            raise AdminRequiredError("Administrator access is required")

    def _fail(self, title: str, message: str, exc: StorefrontError) -> None:
        logger.warning("%s failed: %s", title, exc)
        self._store.push_notice("error", title, message)

    async def save_game(self, draft: GameDraft) -> None:
        """Update ``draft.id`` when set, otherwise add a new catalog entry."""

        self._require_admin()
        row = draft.to_row()
        try:
            if draft.id:
                await self._backend.table("games").eq("id", draft.id).update(row)
            else:
                await self._backend.table("games").insert(
                    [{**row, "rating": DEFAULT_RATING}]
                )
        except StorefrontError as exc:
            self._fail("Save game", f"Failed to save {draft.title}.", exc)
            raise

        verb = "updated" if draft.id else "added"
        self._store.push_notice("success", "Catalog", f"{draft.title} {verb}.")
        await self._catalog.fetch_catalog()

    async def delete_game(self, game_id: str) -> None:
        self._require_admin()
        try:
            await self._backend.table("games").eq("id", game_id).delete()
        except StorefrontError as exc:
            self._fail("Delete game", "Delete failed.", exc)
            raise
        self._store.push_notice("success", "Catalog", "Game removed.")
        await self._catalog.fetch_catalog()

    async def list_reports(self, status: ReportStatus = "pending") -> list[GameReport]:
        """Return reports with ``status``, newest first, titled from the catalog."""

        self._require_admin()
        rows = await (
            self._backend.table("reports")
            .select("*")
            .eq("status", status)
            .order("created_at", descending=True)
            .fetch()
        )
        reports: list[GameReport] = []
        for row in rows:
            try:
                report = GameReport.model_validate(row)
            except ValidationError as exc:
                logger.warning("Skipping malformed report %s: %s", row.get("id"), exc)
                continue
            game = self._store.find_game(report.game_id)
            if game is not None:
                report = report.model_copy(update={"game_title": game.title})
            reports.append(report)
        return reports

    async def resolve_report(self, report_id: str) -> None:
        self._require_admin()
        try:
            await (
                self._backend.table("reports")
                .eq("id", report_id)
                .update({"status": "resolved"})
            )
        except StorefrontError as exc:
            self._fail("Resolve report", "The report could not be resolved.", exc)
            raise
        await self.refresh_report_count()

    async def refresh_report_count(self) -> int:
        self._require_admin()
        count = await self._backend.table("reports").eq("status", "pending").count()
        self._store.set_report_count(count)
        return count
