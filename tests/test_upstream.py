# Tests for the upstream credential check.
# Created: 2026-10-19

import httpx

from keyward.api.oauth2.upstream import CredentialCheck, UpstreamVerifier, is_header_safe

from conftest import UPSTREAM_URL, VALID_API_KEY, upstream_handler


def _verifier(handler):
    return UpstreamVerifier(UPSTREAM_URL, timeout=1.0, transport=httpx.MockTransport(handler))


class TestUpstreamVerifier:
    async def test_valid_credential(self):
        assert await _verifier(upstream_handler).check(VALID_API_KEY) is CredentialCheck.VALID

    async def test_rejected_credential(self):
        assert await _verifier(upstream_handler).check("nope") is CredentialCheck.INVALID

    async def test_server_error_is_invalid(self):
        result = await _verifier(lambda r: httpx.Response(503)).check(VALID_API_KEY)
        assert result is CredentialCheck.INVALID

    async def test_timeout_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        assert await _verifier(handler).check(VALID_API_KEY) is CredentialCheck.UNREACHABLE

    async def test_sends_bearer_to_validation_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        await _verifier(handler).check("wf-abc")
        assert str(seen[0].url) == UPSTREAM_URL
        assert seen[0].method == "GET"
        assert seen[0].headers["authorization"] == "Bearer wf-abc"

    async def test_non_ascii_credential_is_invalid(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        assert await _verifier(handler).check("wf-kéy") is CredentialCheck.INVALID
        assert seen == []


def test_is_header_safe():
    assert is_header_safe(VALID_API_KEY)
    assert not is_header_safe("wf-kéy")
    assert not is_header_safe("wf-key\r\nX-Other: 1")
