# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-19

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from keyward.api.oauth2.models import VerifiedAccess
from keyward.api.oauth2.server import get_oauth_server
from keyward.api.routes.well_known import RESOURCE_PATH
from keyward.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _challenge(issuer: str, error: str | None = None) -> str:
    metadata_url = f"{issuer}{RESOURCE_PATH}/.well-known/oauth-protected-resource"
    value = f'Bearer resource_metadata="{metadata_url}"'
    if error:
        value += f', error="{error}"'
    return value


async def require_upstream_credential(request: Request) -> VerifiedAccess:
    """FastAPI dependency that turns a bearer access token into the upstream credential.

    Usage::

        @router.get("/targets")
        async def targets(access: VerifiedAccess = Depends(require_upstream_credential)):
            upstream.get(..., headers={"Authorization": f"Bearer {access.upstream_credential}"})

    The credential is handed to the handler explicitly and is never stored
    anywhere shared between requests.
    """
    server = get_oauth_server()
    issuer = server.settings.issuer_url

    auth = request.headers.get("authorization", "")
    scheme, _, token = auth.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": _challenge(issuer)},
        )

    try:
        access = server.verify_access_token(token)
    except ConfigurationError:
        logger.exception("Access token verification is misconfigured")
        raise HTTPException(status_code=500, detail="Server misconfigured") from None

    if access is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired access token",
            headers={"WWW-Authenticate": _challenge(issuer, "invalid_token")},
        )
    request.state.oauth_client_id = access.client_id
    return access
