"""Utilities for communicating with the hosted auth endpoints."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

import httpx
from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import StoredSession
from ..errors import AuthError, EmailNotConfirmedError, NetworkError
from ..models import AuthUser, Session, SignUpResult

logger = logging.getLogger(__name__)

AuthEvent = Literal[
    "INITIAL_SESSION",
    "SIGNED_IN",
    "SIGNED_OUT",
    "TOKEN_REFRESHED",
    "USER_UPDATED",
]
AuthListener = Callable[[AuthEvent, Session | None], Awaitable[None]]

EMAIL_NOT_CONFIRMED_CODES = {"email_not_confirmed"}


class SessionStore:
    """Persist the current auth session between runs."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], storage_key: str
    ):
        self._session_factory = session_factory
        self._storage_key = storage_key

    async def load(self) -> Session | None:
        async with self._session_factory() as db:
            record = await db.get(StoredSession, self._storage_key)
            if record is None:
                return None
            try:
                return Session.model_validate(record.payload)
            except ValidationError:
                logger.warning(
                    "Discarding unreadable stored session under %s", self._storage_key
                )
                await db.delete(record)
                await db.commit()
                return None

    async def save(self, session: Session) -> None:
        payload = session.model_dump(mode="json")
        async with self._session_factory() as db:
            record = await db.get(StoredSession, self._storage_key)
            if record is None:
                db.add(
                    StoredSession(
                        storage_key=self._storage_key,
                        user_id=session.user.id,
                        payload=payload,
                    )
                )
            else:
                record.user_id = session.user.id
                record.payload = payload
            await db.commit()

    async def clear(self) -> None:
        async with self._session_factory() as db:
            await db.execute(
                delete(StoredSession).where(
                    StoredSession.storage_key == self._storage_key
                )
            )
            await db.commit()


class AuthSubscription:
    """Handle returned by :meth:`AuthClient.on_auth_state_change`."""

    def __init__(self, client: "AuthClient", listener: AuthListener):
        self._client = client
        self._listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._client._remove_listener(self._listener)
            self.active = False


class AuthClient:
    """Thin wrapper around the hosted auth API with an event stream."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        session_store: SessionStore,
    ):
        self._settings = settings
        self._client = http_client
        self._store = session_store
        self._session: Session | None = None
        self._loaded = False
        self._listeners: list[AuthListener] = []

    @property
    def current_session(self) -> Session | None:
        return self._session

    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    def on_auth_state_change(self, listener: AuthListener) -> AuthSubscription:
        """Register ``listener`` for auth events until the subscription is released."""

        self._listeners.append(listener)
        return AuthSubscription(self, listener)

    def _remove_listener(self, listener: AuthListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, event: AuthEvent, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except Exception:
                logger.exception("Auth listener failed while handling %s", event)

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        anon_key = self._settings.supabase_anon_key or ""
        return {
            "apikey": anon_key,
            "Authorization": f"Bearer {access_token or anon_key}",
            "User-Agent": f"{self._settings.app_name} (storefront)",
        }

    async def _post(
        self,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.post(
                path,
                params=params,
                json=json,
                headers=self._headers(access_token),
            )
        except httpx.HTTPError as exc:
            logger.info(
                "Transient error talking to auth (%s) on %s",
                exc.__class__.__name__,
                path,
            )
            raise NetworkError(f"Unable to reach the auth service: {exc}") from exc

        if response.status_code >= 500:
            logger.warning(
                "Auth service error on %s: HTTP %s", path, response.status_code
            )
            raise NetworkError(
                f"Auth service unavailable (HTTP {response.status_code})"
            )
        if response.status_code >= 400:
            raise self._error_from(response)
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise AuthError(
                "Unexpected response from the auth service", status=response.status_code
            ) from exc
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _error_from(response: httpx.Response) -> AuthError:
        payload: dict[str, Any] = {}
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            payload = data
        message = (
            payload.get("error_description")
            or payload.get("msg")
            or payload.get("message")
            or payload.get("error")
            or f"Authentication failed (HTTP {response.status_code})"
        )
        error_code = payload.get("error_code")
        if error_code in EMAIL_NOT_CONFIRMED_CODES or message == "Email not confirmed":
            return EmailNotConfirmedError(str(message), status=response.status_code)
        return AuthError(str(message), status=response.status_code)

    async def _adopt(self, session: Session, event: AuthEvent) -> Session:
        self._session = session
        self._loaded = True
        await self._store.save(session)
        await self._emit(event, session)
        return session

    async def _drop(self) -> None:
        self._session = None
        self._loaded = True
        await self._store.clear()
        await self._emit("SIGNED_OUT", None)

    async def get_session(self) -> Session | None:
        """Return the persisted session, refreshing it when close to expiry."""

        if not self._loaded:
            self._session = await self._store.load()
            self._loaded = True

        session = self._session
        if session is None:
            return None
        if not session.expires_within(self._settings.session_refresh_margin_seconds):
            return session

        logger.info("Stored session for %s is expiring, refreshing", session.user.id)
        try:
            data = await self._post(
                "/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
            )
        except AuthError as exc:
            logger.warning("Refresh token rejected (%s), signing out locally", exc.message)
            await self._drop()
            return None
        return await self._adopt(Session.from_token_response(data), "TOKEN_REFRESHED")

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        data = await self._post(
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return await self._adopt(Session.from_token_response(data), "SIGNED_IN")

    async def sign_up(
        self, email: str, password: str, *, username: str | None = None
    ) -> SignUpResult:
        """Create an account; the result has no session while verification is pending."""

        body: dict[str, Any] = {"email": email, "password": password}
        if username:
            body["data"] = {"username": username}
        data = await self._post("/signup", json=body)

        if data.get("access_token"):
            session = await self._adopt(Session.from_token_response(data), "SIGNED_IN")
            return SignUpResult(user=session.user, session=session)

        user_payload = data.get("user") if isinstance(data.get("user"), dict) else data
        user = AuthUser.model_validate(user_payload) if user_payload.get("id") else None
        return SignUpResult(user=user, session=None)

    async def sign_out(self) -> None:
        """End the session remotely when possible and always forget it locally."""

        session = self._session
        if session is not None:
            try:
                await self._post("/logout", access_token=session.access_token)
            except (AuthError, NetworkError) as exc:
                logger.warning("Remote sign-out failed, clearing local session: %s", exc)
        await self._drop()
