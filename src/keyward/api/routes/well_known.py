# Discovery router — RFC 8414 and RFC 9728 metadata documents.
# Created: 2026-10-19
#
# MCP clients look in both the root and the resource-relative locations, so each
# document is served under /.well-known and under /api/mcp/.well-known.

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from keyward.api.oauth2.server import get_oauth_server
from keyward.api.routes.schemas.oauth2 import (
    AuthorizationServerMetadata,
    ProtectedResourceMetadata,
)

router = APIRouter(tags=["Discovery"])

RESOURCE_PATH = "/api/mcp"

_CACHE_HEADERS = {"Cache-Control": "public, max-age=3600"}


def authorization_server_metadata(issuer: str, scope: str) -> AuthorizationServerMetadata:
    return AuthorizationServerMetadata(
        issuer=issuer,
        authorization_endpoint=f"{issuer}/api/oauth/authorize",
        token_endpoint=f"{issuer}/api/oauth/token",
        registration_endpoint=f"{issuer}/api/oauth/register",
        revocation_endpoint=f"{issuer}/api/oauth/revoke",
        scopes_supported=[scope],
    )


def protected_resource_metadata(issuer: str, scope: str) -> ProtectedResourceMetadata:
    return ProtectedResourceMetadata(
        resource=f"{issuer}{RESOURCE_PATH}",
        authorization_servers=[issuer],
        scopes_supported=[scope],
    )


@router.get("/.well-known/oauth-authorization-server", response_model=AuthorizationServerMetadata)
@router.get(
    f"{RESOURCE_PATH}/.well-known/oauth-authorization-server",
    response_model=AuthorizationServerMetadata,
    include_in_schema=False,
)
async def get_authorization_server_metadata():
    settings = get_oauth_server().settings
    doc = authorization_server_metadata(settings.issuer_url, settings.scope)
    return JSONResponse(content=doc.model_dump(), headers=_CACHE_HEADERS)


@router.get("/.well-known/oauth-protected-resource", response_model=ProtectedResourceMetadata)
@router.get(
    f"{RESOURCE_PATH}/.well-known/oauth-protected-resource",
    response_model=ProtectedResourceMetadata,
    include_in_schema=False,
)
async def get_protected_resource_metadata():
    settings = get_oauth_server().settings
    doc = protected_resource_metadata(settings.issuer_url, settings.scope)
    return JSONResponse(content=doc.model_dump(), headers=_CACHE_HEADERS)
