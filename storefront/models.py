"""Pydantic models describing backend rows and the storefront view model."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Platform = Literal["PS4", "PS5", "Both"]
PlatformFilter = Literal["All", "PS4", "PS5"]
ReportStatus = Literal["pending", "resolved"]
ViewMode = Literal["store", "library"]
NoticeLevel = Literal["success", "error", "info", "warning"]

DEFAULT_CATEGORY = "Action"
DEFAULT_RATING = 4.5


def _coerce_identifier(value: object) -> object:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class Game(BaseModel):
    """A catalog row from the ``games`` table."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str | None = None
    image_url: str | None = Field(default=None, alias="imageUrl")
    download_url: str | None = Field(default=None, alias="downloadUrl")
    trailer_url: str | None = Field(default=None, alias="trailerUrl")
    platform: Platform = "Both"
    category: str = DEFAULT_CATEGORY
    rating: float | None = None
    download_count: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def _normalise_id(cls, value: object) -> object:
        return _coerce_identifier(value)

    @field_validator("download_count", mode="before")
    @classmethod
    def _null_count_is_zero(cls, value: object) -> object:
        return 0 if value is None else value

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: object) -> object:
        return value or DEFAULT_CATEGORY

    def available_on(self, platform: str) -> bool:
        """Return whether the game should be listed under ``platform``."""

        return platform == "All" or self.platform == platform or self.platform == "Both"


class GameDraft(BaseModel):
    """Editable catalog entry submitted by an administrator."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    title: str = Field(min_length=1)
    description: str | None = None
    image_url: str | None = Field(default=None, alias="imageUrl")
    download_url: str | None = Field(default=None, alias="downloadUrl")
    trailer_url: str | None = Field(default=None, alias="trailerUrl")
    platform: Platform = "Both"
    category: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalise_id(cls, value: object) -> object:
        return _coerce_identifier(value)

    def to_row(self) -> dict[str, object]:
        """Return the column payload written to the ``games`` table."""

        row: dict[str, object] = {
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
            "downloadUrl": self.download_url,
            "platform": self.platform,
            "category": self.category or DEFAULT_CATEGORY,
        }
        if self.trailer_url is not None:
            row["trailerUrl"] = self.trailer_url
        return row


class GameReport(BaseModel):
    """A moderation report raised against a catalog entry."""

    id: str
    game_id: str
    user_id: str
    status: ReportStatus = "pending"
    created_at: datetime | None = None
    game_title: str | None = None

    @field_validator("id", "game_id", "user_id", mode="before")
    @classmethod
    def _normalise_ids(cls, value: object) -> object:
        return _coerce_identifier(value)


class AuthUser(BaseModel):
    """The identity attached to an auth session."""

    id: str
    email: str | None = None
    email_confirmed_at: datetime | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("user_metadata", mode="before")
    @classmethod
    def _null_metadata(cls, value: object) -> object:
        return value or {}

    @property
    def is_confirmed(self) -> bool:
        return self.email_confirmed_at is not None


class Session(BaseModel):
    """An auth session issued by the hosted backend."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: int | None = None
    user: AuthUser

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> "Session":
        """Build a session from a token endpoint payload, filling ``expires_at``."""

        payload = dict(data)
        if payload.get("expires_at") is None and payload.get("expires_in") is not None:
            payload["expires_at"] = int(time.time()) + int(payload["expires_in"])
        return cls.model_validate(payload)

    def expires_within(self, seconds: int, *, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return self.expires_at <= current + seconds


class SignUpResult(BaseModel):
    """Outcome of a sign-up; ``session`` is absent until the email is verified."""

    user: AuthUser | None = None
    session: Session | None = None

    @property
    def verification_required(self) -> bool:
        return self.session is None


class ProfileRow(BaseModel):
    """A row from the ``profiles`` table."""

    id: str
    username: str | None = None
    email: str | None = None
    is_admin: bool | None = None


class UserView(BaseModel):
    """Client-side projection of the signed-in user."""

    id: str
    display_name: str
    email: str = ""
    is_admin: bool = False


class Notice(BaseModel):
    """A user-facing notification (rendered as a toast by the view layer)."""

    id: int
    level: NoticeLevel
    title: str
    message: str


class StorefrontSnapshot(BaseModel):
    """Read-only copy of the store handed to the view layer."""

    booting: bool
    session_error: str | None = None
    user: UserView | None = None
    library_ids: list[str] = Field(default_factory=list)
    reconciled: bool = False
    report_count: int = 0
    games: list[Game] = Field(default_factory=list)
    catalog_loading: bool = False
    catalog_error: str | None = None
    auth_prompt: bool = False
    pending_verification: str | None = None
    view_mode: ViewMode = "store"
    notices: list[Notice] = Field(default_factory=list)
