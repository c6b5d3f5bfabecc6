"""Entry point for the FastAPI-powered storefront client."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import Settings, settings
from .database import Database
from .errors import (
    AdminRequiredError,
    AuthError,
    BackendError,
    EmailNotConfirmedError,
    NetworkError,
    StorefrontError,
)
from .models import Game, GameDraft, GameReport, PlatformFilter, StorefrontSnapshot, ViewMode
from .services.auth import AuthClient, SessionStore
from .services.backend import BackendClient
from .services.bootstrap import StorefrontController
from .services.catalog import filter_catalog

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


class Credentials(BaseModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)


class SignUpRequest(Credentials):
    username: str = ""


class ViewRequest(BaseModel):
    mode: ViewMode


def _timeout(app_settings: Settings) -> httpx.Timeout:
    if app_settings.request_timeout_seconds is None:
        return httpx.Timeout(None)
    return httpx.Timeout(app_settings.request_timeout_seconds, connect=10.0)


def _http_error(exc: StorefrontError) -> HTTPException:
    if isinstance(exc, EmailNotConfirmedError):
        return HTTPException(
            status_code=403,
            detail={"error": "email_not_confirmed", "description": exc.message},
        )
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=exc.message)
    if isinstance(exc, AdminRequiredError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, NetworkError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, BackendError):
        return HTTPException(status_code=502, detail=exc.message)
    return HTTPException(status_code=500, detail=str(exc))


def create_app(
    app_settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the application; ``transport`` replaces the network in tests."""

    config = app_settings or settings

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        if not config.backend_configured:
            logger.error(
                "Backend credentials missing! Set SUPABASE_URL and SUPABASE_ANON_KEY."
            )
        exit_stack = AsyncExitStack()
        client_kwargs: dict[str, Any] = {"timeout": _timeout(config)}
        if transport is not None:
            client_kwargs["transport"] = transport
        auth_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(base_url=config.auth_url, **client_kwargs)
        )
        rest_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(base_url=config.rest_url, **client_kwargs)
        )
        database = Database(config.database_url)
        await database.create_all()

        auth = AuthClient(
            config,
            auth_http,
            SessionStore(database.session_factory, config.session_storage_key),
        )
        backend = BackendClient(config, rest_http, token_provider=auth.access_token)
        controller = StorefrontController(
            auth, backend, admin_heuristic=config.admin_email_heuristic
        )
        fastapi_app.state.controller = controller
        fastapi_app.state.database = database
        await controller.boot()

        try:
            yield
        finally:  # pragma: no cover - teardown path exercised at runtime
            await controller.shutdown()
            await database.dispose()
            await exit_stack.aclose()

    fastapi_app = FastAPI(
        title=config.app_name,
        description="Storefront client for the PlayFree game archive",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_controller(app: FastAPI) -> StorefrontController:
    controller = getattr(app.state, "controller", None)
    if not isinstance(controller, StorefrontController):
        raise RuntimeError("Storefront controller not initialised")
    return controller


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/state", response_model=StorefrontSnapshot)
    async def state() -> StorefrontSnapshot:
        return get_controller(fastapi_app).store.snapshot()

    @fastapi_app.get("/api/games", response_model=list[Game])
    async def games(
        q: str = "",
        platform: PlatformFilter = "All",
        view: ViewMode | None = None,
    ) -> list[Game]:
        store = get_controller(fastapi_app).store
        return filter_catalog(
            store.games,
            query=q,
            platform=platform,
            view_mode=view or store.view_mode,
            library_ids=store.library_ids,
        )

    @fastapi_app.post("/api/catalog/refresh", response_model=StorefrontSnapshot)
    async def refresh_catalog() -> StorefrontSnapshot:
        controller = get_controller(fastapi_app)
        await controller.catalog.fetch_catalog()
        return controller.store.snapshot()

    @fastapi_app.post("/api/session/refresh", response_model=StorefrontSnapshot)
    async def refresh_session() -> StorefrontSnapshot:
        controller = get_controller(fastapi_app)
        await controller.refresh_session()
        return controller.store.snapshot()

    @fastapi_app.post("/api/view", response_model=StorefrontSnapshot)
    async def set_view(payload: ViewRequest) -> StorefrontSnapshot:
        store = get_controller(fastapi_app).store
        if payload.mode == "library" and store.user is None:
            store.request_sign_in()
        else:
            store.set_view_mode(payload.mode)
        return store.snapshot()

    @fastapi_app.post("/api/auth/login")
    async def login(payload: Credentials) -> dict[str, Any]:
        controller = get_controller(fastapi_app)
        try:
            user = await controller.accounts.sign_in(payload.email, payload.password)
        except StorefrontError as exc:
            raise _http_error(exc) from exc
        return {"user": user.model_dump()}

    @fastapi_app.post("/api/auth/signup")
    async def signup(payload: SignUpRequest) -> dict[str, Any]:
        controller = get_controller(fastapi_app)
        try:
            result = await controller.accounts.sign_up(
                payload.email, payload.password, payload.username
            )
        except StorefrontError as exc:
            raise _http_error(exc) from exc
        return {
            "verification_required": result.verification_required,
            "user_id": result.user.id if result.user else None,
        }

    @fastapi_app.post("/api/auth/logout")
    async def logout() -> dict[str, str]:
        await get_controller(fastapi_app).accounts.sign_out()
        return {"status": "signed_out"}

    @fastapi_app.post("/api/games/{game_id}/download")
    async def download(game_id: str) -> dict[str, Any]:
        controller = get_controller(fastapi_app)
        try:
            outcome = await controller.library.download(game_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        if outcome is None:
            raise HTTPException(status_code=401, detail="Sign in to download games")
        return {
            "game_id": outcome.game_id,
            "download_url": outcome.download_url,
            "added_to_library": outcome.added_to_library,
            "counted": outcome.counted,
        }

    @fastapi_app.post("/api/games/{game_id}/report")
    async def report(game_id: str) -> dict[str, bool]:
        controller = get_controller(fastapi_app)
        if controller.store.user is None:
            controller.store.request_sign_in()
            raise HTTPException(status_code=401, detail="Sign in to report games")
        try:
            filed = await controller.library.report(game_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return {"reported": filed}

    @fastapi_app.delete("/api/notices/{notice_id}")
    async def dismiss_notice(notice_id: int) -> dict[str, bool]:
        store = get_controller(fastapi_app).store
        if not store.dismiss_notice(notice_id):
            raise HTTPException(status_code=404, detail="Notice not found")
        return {"dismissed": True}

    @fastapi_app.post("/api/admin/games", status_code=201)
    async def create_game(draft: GameDraft) -> dict[str, str]:
        controller = get_controller(fastapi_app)
        try:
            await controller.admin.save_game(draft.model_copy(update={"id": None}))
        except StorefrontError as exc:
            raise _http_error(exc) from exc
        return {"status": "created"}

    @fastapi_app.put("/api/admin/games/{game_id}")
    async def update_game(game_id: str, draft: GameDraft) -> dict[str, str]:
        controller = get_controller(fastapi_app)
        try:
            await controller.admin.save_game(draft.model_copy(update={"id": game_id}))
        except StorefrontError as exc:
            raise _http_error(exc) from exc
        return {"status": "updated"}

    @fastapi_app.delete("/api/admin/games/{game_id}")
    async def delete_game(game_id: str) -> dict[str, str]:
        controller = get_controller(fastapi_app)
        try:
            await controller.admin.delete_game(game_id)
        except StorefrontError as exc:
            raise _http_error(exc) from exc
        return {"status": "deleted"}

    @fastapi_app.get("/api/admin/reports", response_model=list[GameReport])
    async def list_reports() -> list[GameReport]:
        controller = get_controller(fastapi_app)
        try:
            return await controller.admin.list_reports()
        except StorefrontError as exc:
            raise _http_error(exc) from exc

    @fastapi_app.post("/api/admin/reports/{report_id}/resolve")
    async def resolve_report(report_id: str) -> dict[str, int]:
        controller = get_controller(fastapi_app)
        try:
            await controller.admin.resolve_report(report_id)
        except StorefrontError as exc:
            raise _http_error(exc) from exc
        return {"pending": controller.store.report_count}


app = create_app()
