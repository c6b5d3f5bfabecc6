"""Exception hierarchy shared by the storefront services."""

from __future__ import annotations


NOT_FOUND_CODE = "PGRST116"


class StorefrontError(Exception):
    """Base class for every error raised by the storefront services."""


class NetworkError(StorefrontError):
    """The hosted backend could not be reached."""


class BackendError(StorefrontError):
    """The backend answered with a structured error payload."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"status={self.status!r}, code={self.code!r})"
        )


class RowNotFoundError(BackendError):
    """A single-row lookup matched no rows."""


class AuthError(StorefrontError):
    """Authentication was rejected; ``message`` is safe to show to the user."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class EmailNotConfirmedError(AuthError):
    """The account exists but its email address has not been verified yet."""


class AdminRequiredError(StorefrontError):
    """The current identity is not allowed to administer the catalog."""
