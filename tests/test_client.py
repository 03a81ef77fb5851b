"""Tests for the caller-side GatewayClient (wired to the app in-process)."""

import asyncio

import httpx
import pytest

from recanon.client import GatewayClient, error_from_response
from recanon.errors import (
    BadGateway,
    GatewayNotConfigured,
    MalformedPayload,
    ParameterValidationError,
    RateLimitExceeded,
    UpstreamError,
    UpstreamUnreachable,
)
from recanon.kernel.hash_utils import hash_bytes
from recanon.kernel.snapshot import Snapshot, build_snapshot

STATIC = build_snapshot(42)
LOOP = build_snapshot(42, execution={"frames": 60, "loop": True})


def run(coro):
    return asyncio.run(coro)


def test_render(gateway_client, fake_renderer):
    async def scenario():
        async with gateway_client as client:
            return await client.render(STATIC)

    result = run(scenario())
    assert result.mode == "static"
    assert result.image_hash == fake_renderer.expected_hashes(STATIC)[0]


def test_verify_dispatches_on_mode(gateway_client, fake_renderer):
    poster, animation = fake_renderer.expected_hashes(LOOP)

    async def scenario():
        async with gateway_client as client:
            static = await client.verify(STATIC, fake_renderer.expected_hashes(STATIC)[0])
            loop = await client.verify(LOOP, poster, animation)
            partial = await client.verify(LOOP, poster, hash_bytes(b"nope"))
            return static, loop, partial

    static, loop, partial = run(scenario())
    assert static.verified and static.mode == "static"
    assert loop.verified and loop.mode == "loop"
    assert not partial.verified
    assert partial.hash_match_type == "partial"


def test_loop_without_animation_hash_fails_locally(gateway_client, fake_renderer):
    async def scenario():
        async with gateway_client as client:
            await client.verify(LOOP, fake_renderer.expected_hashes(LOOP)[0])

    with pytest.raises(MalformedPayload):
        run(scenario())
    assert fake_renderer.requests == []


def test_health(gateway_client):
    async def scenario():
        async with gateway_client as client:
            return await client.health()

    status = run(scenario())
    assert status.available
    assert status.renderer["status"] == "ok"


def test_health_never_raises(fake_renderer):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    client = GatewayClient("http://gateway.test", transport=httpx.MockTransport(refuse))

    async def scenario():
        async with client:
            return await client.health()

    status = run(scenario())
    assert status.available is False
    assert "Failed to reach gateway" in status.error


def test_gateway_errors_map_to_exceptions(gateway_client, fake_renderer):
    fake_renderer.override = lambda request: httpx.Response(503, text="busy")

    async def scenario():
        async with gateway_client as client:
            await client.render(STATIC)

    with pytest.raises(BadGateway) as excinfo:
        run(scenario())
    assert excinfo.value.status_code == 503
    assert excinfo.value.details == "busy"


def test_parameter_errors_carry_every_rule(gateway_client):
    bad = Snapshot.model_construct(code="c", seed=-1, vars=(500,) * 10, execution=STATIC.execution)

    async def scenario():
        async with gateway_client as client:
            await client.render(bad)

    with pytest.raises(ParameterValidationError) as excinfo:
        run(scenario())
    assert len(excinfo.value.errors) == 11


def _response(status, body=None, headers=None):
    return httpx.Response(status, json=body, headers=headers)


class TestErrorFromResponse:
    def test_rate_limited(self):
        error = error_from_response(_response(429, {"error": "rate_limited", "retryAfter": 12}))
        assert isinstance(error, RateLimitExceeded)
        assert error.retry_after == 12

    def test_retry_after_header_fallback(self):
        error = error_from_response(_response(429, {}, {"retry-after": "7"}))
        assert error.retry_after == 7

    def test_unreachable(self):
        assert isinstance(error_from_response(_response(504, {"error": "upstream_unreachable"})), UpstreamUnreachable)

    def test_not_configured(self):
        assert isinstance(error_from_response(_response(500, {"error": "not_configured"})), GatewayNotConfigured)

    def test_forwarded_client_error(self):
        error = error_from_response(_response(422, {"error": "upstream_error", "upstreamStatus": 422}))
        assert type(error) is UpstreamError
        assert error.status_code == 422

    def test_non_json_body(self):
        error = error_from_response(httpx.Response(502, text="<html>proxy</html>"))
        assert isinstance(error, BadGateway)


def test_health_with_renderer_down(gateway_client, fake_renderer):
    fake_renderer.override = lambda request: httpx.Response(503, text="busy")

    async def scenario():
        async with gateway_client as client:
            return await client.health()

    status = run(scenario())
    assert status.available is False
    assert status.error == "Renderer returned an error"
