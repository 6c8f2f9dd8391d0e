"""API server for ``keyward serve``.

Mounts the OAuth endpoints under ``/api/oauth``, the discovery documents under
``/.well-known`` and a health check at ``/api/health``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app):
    from keyward.api.oauth2.server import get_oauth_server

    try:
        removed = await asyncio.to_thread(get_oauth_server().sweep_expired)
        if removed:
            logger.info("Swept %d expired grant(s) at startup", removed)
    except Exception:
        logger.warning("Startup sweep failed", exc_info=True)
    yield


def create_api_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from keyward import __version__
    from keyward.api.routes import mount_routers
    from keyward.config import get_settings

    app = FastAPI(
        title="keyward",
        description="OAuth authorization server for an API-key-protected upstream.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=_lifespan,
    )

    # --- CORS -----------------------------------------------------------
    # Token and discovery endpoints are called cross-origin by browser clients.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "x-oauth-registration-secret"],
    )

    mount_routers(app)

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8888,
    dev: bool = False,
) -> None:
    """Start the server with uvicorn."""
    import uvicorn

    from keyward.config import get_settings

    issuer = get_settings().issuer_url
    logger.info("keyward listening on http://%s:%d (issuer %s)", host, port, issuer)
    logger.info("API docs: http://%s:%d/api/docs", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "keyward.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port)
