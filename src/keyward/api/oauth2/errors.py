# OAuth2 protocol errors (RFC 6749 §5.2, RFC 7591 §3.2.2).
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class OAuthError:
    """An error the endpoints report as ``{error, error_description}``."""

    error: str
    description: str
    status_code: int = 400

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


def invalid_request(description: str) -> OAuthError:
    return OAuthError("invalid_request", description)


def invalid_client(
    description: str = "Client authentication failed", status_code: int = 401
) -> OAuthError:
    return OAuthError("invalid_client", description, status_code)


# Same description for every sub-check
INVALID_GRANT = OAuthError(
    "invalid_grant", "The provided grant is invalid, expired, or was issued to another client"
)

UNSUPPORTED_GRANT_TYPE = OAuthError(
    "unsupported_grant_type", "Supported grant types: authorization_code, refresh_token"
)
UNSUPPORTED_RESPONSE_TYPE = OAuthError(
    "unsupported_response_type", "Only response_type=code is supported"
)
SERVER_ERROR = OAuthError("server_error", "The server could not complete the request", 500)
