# Upstream credential check — one lightweight authenticated GET.
# Created: 2026-10-19

from __future__ import annotations

import logging
from enum import Enum

import httpx

logger = logging.getLogger(__name__)


class CredentialCheck(str, Enum):
    VALID = "valid"
    INVALID = "invalid"  # Upstream answered with a non-2xx status
    UNREACHABLE = "unreachable"  # Timeout or transport failure


def is_header_safe(credential: str) -> bool:
    """True if *credential* can travel in an HTTP header (printable ASCII)."""
    return credential.isascii() and credential.isprintable()


class UpstreamVerifier:
    """Asks the third-party service whether a credential is accepted.

    Args:
        validation_url: Endpoint that returns 2xx for a valid bearer credential.
        timeout: Seconds before the call is abandoned as UNREACHABLE.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        validation_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.validation_url = validation_url
        self.timeout = timeout
        self._transport = transport

    async def check(self, credential: str) -> CredentialCheck:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(
                    self.validation_url,
                    headers={
                        "Authorization": f"Bearer {credential}",
                        "Content-Type": "application/json",
                    },
                )
        except UnicodeEncodeError:
            return CredentialCheck.INVALID
        except httpx.HTTPError as e:
            logger.warning("Upstream credential check failed: %s", type(e).__name__)
            return CredentialCheck.UNREACHABLE

        if resp.is_success:
            return CredentialCheck.VALID
        logger.info("Upstream rejected credential (HTTP %d)", resp.status_code)
        return CredentialCheck.INVALID
