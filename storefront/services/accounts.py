"""Sign-in, sign-up and sign-out flows behind the auth dialog."""

from __future__ import annotations

import logging

from ..errors import EmailNotConfirmedError
from ..models import SignUpResult, UserView
from ..store import StorefrontStore
from .auth import AuthClient
from .reconciler import optimistic_user

logger = logging.getLogger(__name__)

VERIFY_FIRST_MESSAGE = "Please verify your email address before signing in."


class AccountService:
    """Drive the auth client and reflect the outcome in the store."""

    def __init__(
        self,
        auth: AuthClient,
        store: StorefrontStore,
        *,
        admin_heuristic: bool = True,
    ):
        self._auth = auth
        self._store = store
        self._admin_heuristic = admin_heuristic

    async def sign_in(self, email: str, password: str) -> UserView:
        """Sign in with a password.

        Raises :class:`~storefront.errors.AuthError` with the backend's message,
        or :class:`~storefront.errors.EmailNotConfirmedError` when the account
        is not verified yet, in which case the session is dropped again.
        """

        try:
            session = await self._auth.sign_in_with_password(email.strip(), password)
        except EmailNotConfirmedError:
            self._store.set_pending_verification(email.strip())
            raise

        if not session.user.is_confirmed:
            logger.info("Rejecting sign-in of unverified account %s", session.user.id)
            await self._auth.sign_out()
            self._store.set_pending_verification(email.strip())
            raise EmailNotConfirmedError(VERIFY_FIRST_MESSAGE)

        self._store.dismiss_sign_in()
        self._store.set_pending_verification(None)
        current = self._store.user
        if current is not None and current.id == session.user.id:
            return current
        return optimistic_user(session.user, admin_heuristic=self._admin_heuristic)

    async def sign_up(self, email: str, password: str, username: str = "") -> SignUpResult:
        """Create an account, routing to the verification notice when required."""

        result = await self._auth.sign_up(
            email.strip(), password, username=username.strip() or None
        )
        if result.verification_required:
            self._store.set_pending_verification(email.strip())
            self._store.push_notice(
                "info",
                "Check your inbox",
                f"We sent a confirmation link to {email.strip()}.",
            )
        else:
            self._store.dismiss_sign_in()
            self._store.set_pending_verification(None)
        return result

    async def sign_out(self) -> None:
        await self._auth.sign_out()
