# Router aggregation.
# Created: 2026-10-19
#
# mount_routers(app) registers the OAuth, discovery and health routers.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Imported lazily inside mount_routers() so the app factory stays cheap to import.
_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, prefix)
    ("keyward.api.routes.oauth2", "router", "/api"),
    ("keyward.api.routes.well_known", "router", ""),
    ("keyward.api.routes.health", "router", "/api"),
]


def mount_routers(app: FastAPI) -> None:
    """Mount every router on *app*. An import failure is fatal."""
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, prefix in _ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router, prefix=prefix)
        logger.debug("Mounted router: %s at %r", module_path, prefix or "/")
