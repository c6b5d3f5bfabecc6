"""Application controller: session bootstrap and auth event wiring."""

from __future__ import annotations

import logging
from types import TracebackType

from ..errors import NetworkError
from ..models import AuthUser, Session
from ..store import StorefrontStore
from .accounts import AccountService
from .admin import AdminService
from .auth import AuthClient, AuthEvent, AuthSubscription
from .background import BackgroundTasks
from .backend import BackendClient
from .catalog import CatalogFetcher
from .library import DownloadLauncher, LibraryActions
from .reconciler import IdentityReconciler

logger = logging.getLogger(__name__)

SIGN_IN_EVENTS: frozenset[str] = frozenset({"SIGNED_IN", "USER_UPDATED"})
SESSION_ERROR_MESSAGE = "We could not check your session. Retry when you are back online."


class StorefrontController:
    """Own the store and the services, and run the boot sequence once."""

    def __init__(
        self,
        auth: AuthClient,
        backend: BackendClient,
        *,
        store: StorefrontStore | None = None,
        launcher: DownloadLauncher | None = None,
        admin_heuristic: bool = True,
    ):
        self.auth = auth
        self.backend = backend
        self.store = store or StorefrontStore()
        self.tasks = BackgroundTasks()
        self.reconciler = IdentityReconciler(
            backend, self.store, self.tasks, admin_heuristic=admin_heuristic
        )
        self.catalog = CatalogFetcher(backend, self.store)
        self.library = LibraryActions(backend, self.store, launcher=launcher)
        self.accounts = AccountService(auth, self.store, admin_heuristic=admin_heuristic)
        self.admin = AdminService(backend, self.store, self.catalog)
        self._subscription: AuthSubscription | None = None

    async def __aenter__(self) -> "StorefrontController":
        await self.boot()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.shutdown()

    async def boot(self) -> None:
        """Recover the session, unblock the UI, then load the catalog."""

        if self._subscription is None:
            self._subscription = self.auth.on_auth_state_change(self._on_auth_event)

        await self.refresh_session()
        self.store.finish_booting()
        await self.catalog.fetch_catalog()

    async def refresh_session(self) -> Session | None:
        """Check for a persisted session and start reconciling it in the background."""

        try:
            session = await self.auth.get_session()
        except NetworkError as exc:
            logger.warning("Session check failed: %s", exc)
            self.store.set_session_error(SESSION_ERROR_MESSAGE)
            return None

        if self.store.session_error is not None:
            self.store.set_session_error(None)
        if session is not None:
            self._start_reconcile(session.user)
        return session

    async def shutdown(self) -> None:
        """Release the auth subscription and stop outstanding background work."""

        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        await self.tasks.cancel_all()

    def _start_reconcile(self, identity: AuthUser) -> None:
        if not identity.is_confirmed:
            logger.info("Ignoring session of unverified account %s", identity.id)
            return
        self.tasks.spawn(
            self.reconciler.reconcile(identity), name=f"reconcile-{identity.id}"
        )

    async def _on_auth_event(self, event: AuthEvent, session: Session | None) -> None:
        if event == "SIGNED_OUT":
            logger.info("Signed out, clearing local identity state")
            self.store.clear_identity()
        elif event in SIGN_IN_EVENTS and session is not None:
            self._start_reconcile(session.user)
