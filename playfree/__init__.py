"""Launcher package exposing the storefront FastAPI app."""

from __future__ import annotations

from storefront.main import app, create_app

__all__ = ["app", "create_app"]
