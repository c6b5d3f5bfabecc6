"""Merge the auth identity, stored profile and library into the user view."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import RowNotFoundError, StorefrontError
from ..models import AuthUser, ProfileRow, UserView
from ..store import StorefrontStore
from ..utils import derive_display_name, looks_like_admin
from .background import BackgroundTasks
from .backend import BackendClient

logger = logging.getLogger(__name__)


def optimistic_user(identity: AuthUser, *, admin_heuristic: bool = True) -> UserView:
    """Build a user view from session metadata alone, with no network cost."""

    return UserView(
        id=identity.id,
        display_name=derive_display_name(identity.user_metadata, identity.email),
        email=identity.email or "",
        is_admin=admin_heuristic and looks_like_admin(identity.email),
    )


def merge_profile(optimistic: UserView, profile: ProfileRow) -> UserView:
    """Let the stored profile override every field it actually defines."""

    update: dict[str, Any] = {}
    if profile.username and profile.username.strip():
        update["display_name"] = profile.username.strip()
    if profile.is_admin is not None:
        update["is_admin"] = profile.is_admin
    if not update:
        return optimistic
    return optimistic.model_copy(update=update)


class IdentityReconciler:
    """Background reconciliation of the signed-in identity, at most once per session."""

    def __init__(
        self,
        backend: BackendClient,
        store: StorefrontStore,
        tasks: BackgroundTasks,
        *,
        admin_heuristic: bool = True,
    ):
        self._backend = backend
        self._store = store
        self._tasks = tasks
        self._admin_heuristic = admin_heuristic
        self._in_flight_epoch: int | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight_epoch == self._store.session_epoch

    async def reconcile(self, identity: AuthUser) -> None:
        if self._store.reconciled or self.in_flight:
            return

        epoch = self._store.session_epoch
        self._in_flight_epoch = epoch
        try:
            await self._reconcile(identity, epoch)
        finally:
            if self._in_flight_epoch == epoch:
                self._in_flight_epoch = None

    async def _reconcile(self, identity: AuthUser, epoch: int) -> None:
        optimistic = optimistic_user(identity, admin_heuristic=self._admin_heuristic)
        self._store.set_user(optimistic)

        profile_result, library_result = await asyncio.gather(
            self._fetch_profile(identity.id),
            self._fetch_library(identity.id),
            return_exceptions=True,
        )

        if self._store.session_epoch != epoch:
            logger.info("Session for %s ended during reconciliation, discarding", identity.id)
            return

        if isinstance(profile_result, RowNotFoundError):
            logger.warning(
                "Identity %s has no profile row, creating one", identity.id
            )
            user = optimistic
            self._tasks.spawn(
                self._create_profile(optimistic), name=f"create-profile-{identity.id}"
            )
        elif isinstance(profile_result, BaseException):
            logger.warning(
                "Profile lookup for %s failed, keeping provisional user: %s",
                identity.id,
                profile_result,
            )
            return
        else:
            user = merge_profile(optimistic, profile_result)
            self._store.set_user(user)

        if isinstance(library_result, BaseException):
            logger.warning(
                "Library lookup for %s failed: %s", identity.id, library_result
            )
        else:
            self._store.replace_library(library_result)

        if user.is_admin:
            await self._refresh_report_count(epoch)

        if self._store.session_epoch == epoch:
            self._store.mark_reconciled()

    async def _fetch_profile(self, user_id: str) -> ProfileRow:
        row = await (
            self._backend.table("profiles")
            .select("id, username, email, is_admin")
            .eq("id", user_id)
            .fetch_one()
        )
        return ProfileRow.model_validate(row)

    async def _fetch_library(self, user_id: str) -> list[str]:
        rows = await (
            self._backend.table("user_library")
            .select("game_id")
            .eq("user_id", user_id)
            .fetch()
        )
        return [str(row["game_id"]) for row in rows if row.get("game_id") is not None]

    async def _create_profile(self, user: UserView) -> None:
        try:
            await self._backend.table("profiles").insert(
                [
                    {
                        "id": user.id,
                        "username": user.display_name,
                        "email": user.email,
                        "is_admin": user.is_admin,
                    }
                ]
            )
        except StorefrontError as exc:
            logger.warning("Could not create missing profile for %s: %s", user.id, exc)
        else:
            logger.info("Created missing profile for %s", user.id)

    async def _refresh_report_count(self, epoch: int) -> None:
        try:
            count = await (
                self._backend.table("reports").eq("status", "pending").count()
            )
        except StorefrontError as exc:
            logger.warning("Could not count pending reports: %s", exc)
            return
        if self._store.session_epoch == epoch:
            self._store.set_report_count(count)
