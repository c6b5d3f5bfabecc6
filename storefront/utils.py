"""Utility helpers for the storefront services."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

PLACEHOLDER_DISPLAY_NAME = "Player"
ADMIN_EMAIL_MARKER = "admin"


def email_local_part(email: str | None) -> str:
    """Return the part of ``email`` before the ``@`` (empty when unavailable)."""

    if not email:
        return ""
    return email.split("@", 1)[0].strip()


def derive_display_name(metadata: Mapping[str, Any] | None, email: str | None) -> str:
    """Pick a display name from auth metadata, then the email, then a placeholder."""

    username = (metadata or {}).get("username")
    if isinstance(username, str) and username.strip():
        return username.strip()
    return email_local_part(email) or PLACEHOLDER_DISPLAY_NAME


def looks_like_admin(email: str | None) -> bool:
    """Provisional admin guess from the email address.

    This is only a hint for the first render; the ``profiles`` row is the
    authority and replaces it once loaded.
    """

    return bool(email) and ADMIN_EMAIL_MARKER in email.lower()
