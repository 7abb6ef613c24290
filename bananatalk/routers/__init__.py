"""API routers."""

from bananatalk.routers import health, limits, media, ops

__all__ = ["health", "limits", "media", "ops"]
