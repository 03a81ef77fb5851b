"""Live checks against a running Gateway and renderer.

Run with ``pytest --run-integration`` and RECANON_GATEWAY_URL pointing at a
configured Gateway.
"""

import asyncio
import os

import pytest

from recanon.client import GatewayClient
from recanon.kernel.snapshot import build_snapshot

pytestmark = pytest.mark.integration

GATEWAY_URL = os.environ.get("RECANON_GATEWAY_URL")

requires_gateway = pytest.mark.skipif(not GATEWAY_URL, reason="RECANON_GATEWAY_URL not set")


def _render_pair(first, second):
    async def scenario():
        async with GatewayClient(GATEWAY_URL) as client:
            return await client.render(first), await client.render(second)

    return asyncio.run(scenario())


@requires_gateway
def test_health():
    async def scenario():
        async with GatewayClient(GATEWAY_URL) as client:
            return await client.health()

    assert asyncio.run(scenario()).available


@requires_gateway
def test_same_snapshot_same_hash():
    snapshot = build_snapshot(42)
    a, b = _render_pair(snapshot, snapshot)
    assert a.image_hash == b.image_hash


@requires_gateway
def test_seed_sensitivity():
    a, b = _render_pair(build_snapshot(42), build_snapshot(43))
    assert a.image_hash != b.image_hash


@requires_gateway
def test_render_then_verify():
    snapshot = build_snapshot(7)

    async def scenario():
        async with GatewayClient(GATEWAY_URL) as client:
            rendered = await client.render(snapshot)
            return await client.verify(snapshot, rendered.image_hash)

    assert asyncio.run(scenario()).verified
