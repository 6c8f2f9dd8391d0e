# OAuth2 router — authorize (consent), token, register, revoke.
# Created: 2026-10-19

from __future__ import annotations

import asyncio
import base64
import binascii
import html
import logging
import sqlite3
from collections.abc import Mapping
from typing import Any
from urllib.parse import unquote_plus

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import ValidationError

from keyward.api.oauth2 import errors
from keyward.api.oauth2.clients import InvalidRedirectUri, UnsupportedGrantType
from keyward.api.oauth2.errors import OAuthError
from keyward.api.oauth2.models import SUPPORTED_AUTH_METHODS, OAuthClient
from keyward.api.oauth2.server import AuthorizationRequest, ConsentResult, get_oauth_server
from keyward.api.routes.schemas.oauth2 import (
    OAuthErrorResponse,
    RegistrationRequest,
    RegistrationResponse,
    TokenResponse,
)
from keyward.errors import ConfigurationError
from keyward.security.crypto import constant_time_equals
from keyward.security.rate_limiter import (
    RateLimiter,
    authorize_limiter,
    register_limiter,
    token_limiter,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

REGISTRATION_SECRET_HEADER = "x-oauth-registration-secret"
CREDENTIAL_FIELD = "api_key"

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_CONSENT_HTML = """<!DOCTYPE html>
<html lang="en"><head><meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Authorize {client_label}</title>
<style>
body {{ font-family: system-ui; max-width: 420px; margin: 40px auto; padding: 20px; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; cursor: pointer; font-size: 16px; }}
.allow {{ background: #2563eb; color: white; }} .allow:hover {{ background: #1d4ed8; }}
.deny {{ background: #e5e7eb; color: #374151; margin-left: 12px; }}
.scope {{ display: inline-block; background: #dbeafe; padding: 4px 8px;
  border-radius: 4px; margin: 2px; font-size: 14px; }}
.error {{ background: #fee2e2; border: 1px solid #ef4444; color: #991b1b;
  padding: 10px 14px; border-radius: 6px; margin: 12px 0; }}
input[type=password] {{ width: 100%; padding: 10px; font-size: 16px; margin: 8px 0 16px; }}
</style></head><body>
<h2>Authorize {client_label}</h2>
<p>This application wants to act on your account. Your API key stays on this server
and is never shared with the application.</p>
<p><strong>Scope:</strong> <span class="scope">{scope}</span></p>
{error_html}
<form method="POST" action="{action}">
{hidden_fields}
<label for="{credential_field}">API key</label>
<input type="password" id="{credential_field}" name="{credential_field}" autocomplete="off" required>
<button type="submit" name="action" value="allow" class="btn allow">Authorize</button>
<button type="submit" name="action" value="deny" class="btn deny" formnovalidate>Deny</button>
</form></body></html>"""


def render_consent(
    req: AuthorizationRequest,
    client: OAuthClient,
    action: str,
    scope: str,
    error: str | None = None,
) -> str:
    """Render the credential form. Every flow parameter rides along as a hidden field."""
    hidden = "\n".join(
        f'<input type="hidden" name="{name}" value="{html.escape(value, quote=True)}">'
        for name, value in req.as_form_fields().items()
        if value
    )
    return _CONSENT_HTML.format(
        client_label=html.escape(client.client_name or "an application"),
        scope=html.escape(req.scope or scope),
        error_html=f'<div class="error">{html.escape(error)}</div>' if error else "",
        action=html.escape(action, quote=True),
        hidden_fields=hidden,
        credential_field=CREDENTIAL_FIELD,
    )


def extract_client_credentials(
    authorization: str | None, body: Mapping[str, Any]
) -> tuple[str, str] | None:
    """Client credentials from ``Authorization: Basic`` (preferred) or the body."""
    if authorization and authorization[:6].lower() == "basic ":
        try:
            decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            decoded = ""
        client_id, sep, client_secret = decoded.partition(":")
        if sep and client_id and client_secret:
            return unquote_plus(client_id), unquote_plus(client_secret)

    client_id = body.get("client_id")
    client_secret = body.get("client_secret")
    if client_id and client_secret:
        return str(client_id), str(client_secret)
    return None


def _error_response(error: OAuthError, no_store: bool = False) -> JSONResponse:
    headers = dict(_NO_STORE) if no_store else {}
    if error.status_code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="oauth"'
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


def _rate_limited(limiter: RateLimiter, request: Request) -> JSONResponse | None:
    if not get_oauth_server().settings.rate_limit_enabled:
        return None
    client_ip = request.client.host if request.client else "unknown"
    info = limiter.check(client_ip)
    if info.allowed:
        return None
    return JSONResponse(
        status_code=429,
        content={"error": "temporarily_unavailable", "error_description": "Too many requests"},
        headers=info.headers(),
    )


async def _read_body(request: Request) -> tuple[dict[str, Any] | None, OAuthError | None]:
    """Parse a form-encoded or JSON body into a flat dict."""
    content_type = request.headers.get("content-type", "").lower()
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}, None
    if "application/json" in content_type:
        try:
            data = await request.json()
        except ValueError:
            return None, errors.invalid_request("Request body is not valid JSON")
        if not isinstance(data, dict):
            return None, errors.invalid_request("Request body must be a JSON object")
        return data, None
    return None, errors.invalid_request(
        "Content-Type must be application/x-www-form-urlencoded or application/json"
    )


# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------


def _consent_response(result: ConsentResult, req: AuthorizationRequest, action: str) -> Response:
    if result.error:
        return _error_response(result.error)
    if result.form_error:
        server = get_oauth_server()
        page = render_consent(req, result.client, action, server.settings.scope, result.form_error)
        return HTMLResponse(page, status_code=400)
    # 302 so the browser follows with a GET (307 would replay the POST)
    return RedirectResponse(result.redirect_url, status_code=302)


@router.get("/oauth/authorize", responses={400: {"model": OAuthErrorResponse}})
async def authorize(request: Request):
    """Validate the request and show the consent / credential form."""
    limited = _rate_limited(authorize_limiter, request)
    if limited:
        return limited

    server = get_oauth_server()
    req = AuthorizationRequest.from_params(request.query_params)
    try:
        client, error = await asyncio.to_thread(server.check_authorization_request, req)
    except sqlite3.Error:
        logger.exception("Client lookup failed")
        return _error_response(errors.SERVER_ERROR)
    if error:
        return _error_response(error)

    return HTMLResponse(render_consent(req, client, request.url.path, server.settings.scope))


@router.post("/oauth/authorize", responses={400: {"model": OAuthErrorResponse}})
async def authorize_consent(request: Request):
    """Process the consent form: deny, or check the API key and issue a code."""
    limited = _rate_limited(authorize_limiter, request)
    if limited:
        return limited

    server = get_oauth_server()
    form = await request.form()
    req = AuthorizationRequest.from_params(form)

    try:
        if form.get("action", "allow") == "deny":
            result = await asyncio.to_thread(server.deny, req)
        else:
            result = await server.complete_consent(req, str(form.get(CREDENTIAL_FIELD) or ""))
    except (ConfigurationError, sqlite3.Error):
        logger.exception("Authorization consent failed")
        return _error_response(errors.SERVER_ERROR)

    return _consent_response(result, req, request.url.path)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@router.post(
    "/oauth/token",
    responses={
        200: {"model": TokenResponse},
        400: {"model": OAuthErrorResponse},
        401: {"model": OAuthErrorResponse},
    },
)
async def token_exchange(request: Request):
    """Exchange an authorization code or refresh token for tokens."""
    limited = _rate_limited(token_limiter, request)
    if limited:
        return limited

    body, error = await _read_body(request)
    if error:
        return _error_response(error, no_store=True)

    server = get_oauth_server()
    credentials = extract_client_credentials(request.headers.get("authorization"), body)
    try:
        result, error = await asyncio.to_thread(server.token_request, body, credentials)
    except (ConfigurationError, sqlite3.Error):
        logger.exception("Token request failed")
        return _error_response(errors.SERVER_ERROR, no_store=True)

    if error:
        return _error_response(error, no_store=True)
    return JSONResponse(content=result, headers=_NO_STORE)


@router.post("/oauth/revoke")
async def revoke_token(request: Request):
    """Revoke a refresh token (RFC 7009). Unknown tokens still get 200."""
    limited = _rate_limited(token_limiter, request)
    if limited:
        return limited

    body, error = await _read_body(request)
    if error:
        return _error_response(error)

    server = get_oauth_server()
    credentials = extract_client_credentials(request.headers.get("authorization"), body)
    try:
        client, error = await asyncio.to_thread(server.authenticate_client, credentials)
        if error:
            return _error_response(error)
        token = body.get("token")
        if not token:
            return _error_response(errors.invalid_request("token is required"))
        await asyncio.to_thread(server.revoke, client, str(token))
    except sqlite3.Error:
        logger.exception("Token revocation failed")
        return _error_response(errors.SERVER_ERROR)

    return JSONResponse(content={})


# ---------------------------------------------------------------------------
# Dynamic client registration
# ---------------------------------------------------------------------------


@router.post(
    "/oauth/register",
    status_code=201,
    responses={
        201: {"model": RegistrationResponse},
        400: {"model": OAuthErrorResponse},
        403: {"model": OAuthErrorResponse},
    },
)
async def register_client(request: Request):
    """Register a new OAuth client. The client secret is returned only once."""
    limited = _rate_limited(register_limiter, request)
    if limited:
        return limited

    server = get_oauth_server()
    required_secret = server.settings.registration_secret
    if required_secret:
        provided = request.headers.get(REGISTRATION_SECRET_HEADER, "")
        if not constant_time_equals(provided, required_secret):
            return _error_response(
                OAuthError("access_denied", "Invalid or missing registration secret", 403)
            )

    try:
        data = await request.json()
        body = RegistrationRequest.model_validate(data)
    except ValueError as e:
        # pydantic's ValidationError is a ValueError; so is a JSON decode error
        detail = (
            "Invalid client metadata" if isinstance(e, ValidationError) else "Body must be JSON"
        )
        return _error_response(OAuthError("invalid_client_metadata", detail))

    if body.response_types is not None and set(body.response_types) != {"code"}:
        return _error_response(
            OAuthError("invalid_client_metadata", "Only response_types=[\"code\"] is supported")
        )

    auth_method = body.token_endpoint_auth_method or SUPPORTED_AUTH_METHODS[0]
    if auth_method not in SUPPORTED_AUTH_METHODS:
        return _error_response(
            OAuthError(
                "invalid_client_metadata",
                f"token_endpoint_auth_method must be one of: {', '.join(SUPPORTED_AUTH_METHODS)}",
            )
        )
    if body.scope is not None and body.scope != server.settings.scope:
        return _error_response(
            OAuthError("invalid_client_metadata", f"scope must be \"{server.settings.scope}\"")
        )

    try:
        client, secret = await asyncio.to_thread(
            server.register_client,
            body.redirect_uris,
            client_name=body.client_name,
            grant_types=body.grant_types,
        )
    except InvalidRedirectUri as e:
        return _error_response(OAuthError("invalid_redirect_uri", str(e)))
    except UnsupportedGrantType as e:
        return _error_response(OAuthError("invalid_client_metadata", str(e)))
    except sqlite3.Error:
        logger.exception("Client registration failed")
        return _error_response(OAuthError("server_error", "Failed to register client", 500))

    response = RegistrationResponse(
        client_id=client.client_id,
        client_secret=secret,
        client_id_issued_at=int(client.created_at.timestamp()),
        client_name=client.client_name,
        redirect_uris=client.redirect_uris,
        grant_types=client.grant_types,
        token_endpoint_auth_method=auth_method,
        scope=server.settings.scope,
    )
    return JSONResponse(
        status_code=201, content=response.model_dump(exclude_none=True), headers=_NO_STORE
    )
