# Health router.
# Created: 2026-10-19

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter

from keyward import __version__
from keyward.api.oauth2.server import get_oauth_server
from keyward.api.routes.schemas.health import HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthStatus)
async def get_health_status():
    """Liveness plus a trivial database round-trip."""
    try:
        with get_oauth_server().db.connect() as conn:
            conn.execute("SELECT 1").fetchone()
    except sqlite3.Error as e:
        logger.warning("Health check: database unavailable: %s", e)
        return HealthStatus(status="degraded", version=__version__, database="unavailable")
    return HealthStatus(version=__version__)
