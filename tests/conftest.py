"""Pytest configuration for tests.

No sys.path hacks - tests should import from the installed recanon package.

The fake renderer below stands in for the authoritative renderer behind the
Gateway: its output bytes are a pure function of (source, seed, VAR, loop),
so equal snapshots produce equal hashes and any input change produces a
different one.
"""

import base64
import hashlib
import json
from datetime import datetime, timezone

import httpx
import pytest

from recanon.kernel.hash_utils import hash_bytes

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
MP4_MAGIC = b"\x00\x00\x00\x18ftypmp42"

RENDERER_URL = "http://renderer.internal:7777"
RENDERER_KEY = "sk-renderer-test-secret"

FIXED_NOW = datetime(2025, 1, 15, 12, 30, 0, tzinfo=timezone.utc)


def pytest_addoption(parser):
    """Add gated integration test option."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests against a real Gateway (needs RECANON_GATEWAY_URL)."
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration-marked tests unless --run-integration is set."""
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(reason="integration tests gated; pass --run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: needs a live Gateway and renderer")


def _digest(*parts) -> bytes:
    return hashlib.sha256(json.dumps(parts, sort_keys=True).encode("utf-8")).digest()


def poster_bytes(source, seed, var, loop=False) -> bytes:
    return PNG_MAGIC + _digest("poster", source, seed, var, loop)


def animation_bytes(source, seed, var) -> bytes:
    return MP4_MAGIC + _digest("animation", source, seed, var)


def _b64(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


class FakeRenderer:
    """Deterministic renderer served through httpx.MockTransport.

    Attributes tests may set:
        static_as_json: answer static renders with the JSON ``static`` variant
            instead of raw PNG bytes.
        override: callable(request) -> httpx.Response (or raise) that replaces
            normal handling.
        tamper_declared_hash: declare a hash that disagrees with the bytes.
    """

    def __init__(self):
        self.requests = []
        self.static_as_json = False
        self.override = None
        self.tamper_declared_hash = False
        self.metadata = {
            "protocol": "nexart",
            "protocolVersion": "1.2.0",
            "sdkVersion": "1.8.4",
            "rendererVersion": "fake-1",
            "deterministic": True,
        }

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def render_calls(self):
        return [r for r in self.requests if r.url.path == "/render"]

    def expected_hashes(self, snapshot):
        """(poster/image hash, animation hash or None) this renderer produces for a Snapshot."""
        var = list(snapshot.vars)
        poster = hash_bytes(poster_bytes(snapshot.code, snapshot.seed, var, snapshot.is_loop))
        if not snapshot.is_loop:
            return poster, None
        return poster, hash_bytes(animation_bytes(snapshot.code, snapshot.seed, var))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.override is not None:
            return self.override(request)
        if request.url.path == "/health" and request.method == "GET":
            return httpx.Response(200, json={"status": "ok", "rendererVersion": "fake-1"})
        if request.url.path != "/render" or request.method != "POST":
            return httpx.Response(404, text="not found")

        body = json.loads(request.content)
        source, seed, var, loop = body["source"], body["seed"], body["VAR"], body["loop"]
        poster = poster_bytes(source, seed, var, loop)

        if not loop:
            if not self.static_as_json:
                return httpx.Response(200, content=poster, headers={"content-type": "image/png"})
            declared = hash_bytes(b"tampered") if self.tamper_declared_hash else hash_bytes(poster)
            return httpx.Response(200, json={
                "type": "static",
                "mime": "image/png",
                "imageHash": declared,
                "imageBase64": _b64(poster),
                "metadata": self.metadata,
            })

        animation = animation_bytes(source, seed, var)
        declared_animation = (
            hash_bytes(b"tampered") if self.tamper_declared_hash else hash_bytes(animation)
        )
        return httpx.Response(200, json={
            "type": "animation",
            "mime": "video/mp4",
            "posterHash": hash_bytes(poster),
            "posterBase64": _b64(poster),
            "animationHash": declared_animation,
            "animationBase64": _b64(animation),
            "frames": body["frames"],
            "fps": 30,
            "width": 1950,
            "height": 2400,
            "metadata": self.metadata,
        })


class FakeClock:
    """Monotonic seconds source advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fixed_now():
    return lambda: FIXED_NOW


@pytest.fixture
def gateway_config():
    from recanon.gateway.config import GatewayConfig

    return GatewayConfig(
        renderer_url=RENDERER_URL,
        renderer_api_key=RENDERER_KEY,
        rate_limit=30,
        rate_window_seconds=60,
    )


@pytest.fixture
def gateway_app(gateway_config, fake_renderer, fake_clock):
    from recanon.gateway.app import create_app

    return create_app(gateway_config, transport=fake_renderer.transport, clock=fake_clock)


@pytest.fixture
def gateway(gateway_app):
    """FastAPI TestClient bound to the Gateway (lifespan included)."""
    from fastapi.testclient import TestClient

    with TestClient(gateway_app) as client:
        yield client


@pytest.fixture
def gateway_client(gateway_app):
    """Caller-side GatewayClient wired to the app in-process."""
    from recanon.client import GatewayClient

    return GatewayClient("http://gateway.test", transport=httpx.ASGITransport(app=gateway_app))


@pytest.fixture
def certified_result(fake_renderer):
    """A sealed static result as the renderer would have produced it."""
    from recanon.engine import CertifiedResult, sealed_artifact_id
    from recanon.kernel.snapshot import build_snapshot

    snapshot = build_snapshot(42, metadata={"strategyId": "momentum-v2"})
    image_hash, _ = fake_renderer.expected_hashes(snapshot)
    poster = poster_bytes(snapshot.code, snapshot.seed, list(snapshot.vars))
    return CertifiedResult(
        artifact_id=sealed_artifact_id(image_hash, int(FIXED_NOW.timestamp() * 1000)),
        snapshot=snapshot,
        mode="static",
        image_hash=image_hash,
        output_base64=_b64(poster),
        mime_type="image/png",
        payload_fingerprint=snapshot.fingerprint(),
    )


@pytest.fixture
def artifact_bundle(certified_result, fixed_now):
    from recanon.engine import seal_bundle, simulate_backtest

    curve, metrics = simulate_backtest(42, "2023-01-01", "2023-06-30")
    return seal_bundle(
        certified_result,
        strategy_name="Momentum v2",
        strategy_hash=hash_bytes(b"strategy source"),
        dataset_id="spx-daily-2023",
        dataset_hash=hash_bytes(b"dataset rows"),
        dataset_source="synthetic",
        start_date="2023-01-01",
        end_date="2023-06-30",
        equity_curve=curve,
        metrics=metrics,
        parameters={"lookback": 20, "threshold": 0.5},
        clock=fixed_now,
    )


@pytest.fixture
def bundle_file(tmp_path, artifact_bundle):
    from recanon._internal.io.artifact_bundle import encode_bundle

    path = tmp_path / f"{artifact_bundle.artifact_id}-bundle.json"
    path.write_bytes(encode_bundle(artifact_bundle))
    return path
