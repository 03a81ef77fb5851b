"""Client of the authoritative renderer (Gateway side only).

Translates public snapshots into the renderer's native request shape and
parses its responses as a tagged union on ``type``. Hashes returned to
callers are always computed here over the decoded bytes; a renderer-
declared hash that disagrees is a protocol violation.
"""

import base64
import binascii
import logging
import time
from typing import Annotated, Any, Dict, Literal, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from recanon.contracts import RendererMetadata, RenderResult
from recanon.errors import (
    BadGateway,
    GatewayNotConfigured,
    UpstreamError,
    UpstreamUnreachable,
)
from recanon.gateway.config import GatewayConfig
from recanon.kernel.hash_utils import hash_bytes, hashes_equal
from recanon.kernel.snapshot import Snapshot

logger = logging.getLogger(__name__)

RENDER_PATH = "/render"
HEALTH_PATH = "/health"


class _UpstreamModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UpstreamStaticRender(_UpstreamModel):
    type: Literal["static"]
    mime: str = "image/png"
    image_hash: Optional[str] = Field(default=None, alias="imageHash")
    image_base64: str = Field(alias="imageBase64")
    metadata: RendererMetadata = Field(default_factory=RendererMetadata)


class UpstreamAnimationRender(_UpstreamModel):
    type: Literal["animation"]
    mime: str = "video/mp4"
    poster_hash: Optional[str] = Field(default=None, alias="posterHash")
    poster_base64: Optional[str] = Field(default=None, alias="posterBase64")
    # Older renderers send the poster under the image keys only
    image_hash: Optional[str] = Field(default=None, alias="imageHash")
    image_base64: Optional[str] = Field(default=None, alias="imageBase64")
    animation_hash: Optional[str] = Field(default=None, alias="animationHash")
    animation_base64: str = Field(alias="animationBase64")
    frames: Optional[int] = None
    fps: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: RendererMetadata = Field(default_factory=RendererMetadata)


UpstreamRender = Annotated[
    Union[UpstreamStaticRender, UpstreamAnimationRender],
    Field(discriminator="type"),
]
_upstream_render_adapter: TypeAdapter = TypeAdapter(UpstreamRender)


def to_upstream_request(snapshot: Snapshot) -> Dict[str, Any]:
    """Public snapshot -> renderer request body."""
    return {
        "source": snapshot.code,
        "seed": int(snapshot.seed),
        "VAR": list(snapshot.vars),
        "frames": snapshot.execution.frames,
        "loop": snapshot.is_loop,
    }


def truncate(text: str, limit: int) -> str:
    return text[:limit]


def _decode_b64(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BadGateway(f"Renderer sent invalid base64 in {field}: {e}", status_code=502)


def _checked_hash(content: bytes, declared: Optional[str], field: str) -> str:
    computed = hash_bytes(content)
    if declared and not hashes_equal(declared, computed):
        raise BadGateway(
            f"Renderer-declared {field} does not match the received bytes",
            status_code=502,
        )
    return computed


def _b64(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


def parse_render_response(
    content_type: str,
    body: bytes,
    expected_mode: str,
) -> RenderResult:
    """Normalize a successful renderer response.

    Raises:
        BadGateway: Unknown discriminant, malformed body, hash disagreement,
            or a mode other than the one requested.
    """
    if content_type.split(";")[0].strip().lower() == "image/png":
        if expected_mode != "static":
            raise BadGateway("Renderer returned a still image for a loop snapshot", status_code=502)
        return RenderResult(
            mode="static",
            image_hash=hash_bytes(body),
            output_base64=_b64(body),
            mime="image/png",
        )

    try:
        raw = _upstream_render_adapter.validate_json(body)
    except ValidationError as e:
        raise BadGateway(
            "Renderer response does not match the render protocol",
            status_code=502,
            details=str(e),
        )

    if isinstance(raw, UpstreamStaticRender):
        if expected_mode != "static":
            raise BadGateway("Renderer returned a static result for a loop snapshot", status_code=502)
        image = _decode_b64(raw.image_base64, "imageBase64")
        return RenderResult(
            mode="static",
            image_hash=_checked_hash(image, raw.image_hash, "imageHash"),
            output_base64=_b64(image),
            mime="image/png",
            metadata=raw.metadata,
        )

    if expected_mode != "loop":
        raise BadGateway("Renderer returned an animation for a static snapshot", status_code=502)
    poster_b64 = raw.poster_base64 or raw.image_base64
    if not poster_b64:
        raise BadGateway("Renderer animation response has no poster frame", status_code=502)
    poster = _decode_b64(poster_b64, "posterBase64")
    animation = _decode_b64(raw.animation_base64, "animationBase64")
    return RenderResult(
        mode="loop",
        image_hash=_checked_hash(poster, raw.poster_hash or raw.image_hash, "posterHash"),
        output_base64=_b64(poster),
        mime="image/png",
        animation_hash=_checked_hash(animation, raw.animation_hash, "animationHash"),
        animation_base64=_b64(animation),
        frames=raw.frames,
        fps=raw.fps,
        width=raw.width,
        height=raw.height,
        metadata=raw.metadata,
    )


class UpstreamRenderer:
    """Async HTTP client of the renderer. Holds the only copy of its URL and key."""

    def __init__(self, config: GatewayConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._config = config
        self._client: Optional[httpx.AsyncClient] = None
        if config.configured:
            headers = {"Content-Type": "application/json"}
            api_key = config.api_key()
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            self._client = httpx.AsyncClient(
                base_url=config.renderer_url,
                headers=headers,
                timeout=config.upstream_timeout_seconds,
                transport=transport,
            )

    def __repr__(self) -> str:
        return f"UpstreamRenderer(configured={self._config.configured})"

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise GatewayNotConfigured("Gateway is not configured: renderer location missing")
        return self._client

    async def _send(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        client = self._require_client()
        try:
            response = await client.request(method, path, json=json_body)
        except httpx.TimeoutException:
            logger.error("Renderer %s %s timed out", method, path)
            raise UpstreamUnreachable(
                f"Renderer did not respond within {self._config.upstream_timeout_seconds:g}s"
            )
        except httpx.TransportError as e:
            logger.error("Renderer %s %s unreachable: %s", method, path, type(e).__name__)
            raise UpstreamUnreachable("Failed to reach the renderer")

        if response.status_code >= 400:
            details = truncate(response.text, self._config.max_error_detail_chars)
            if response.status_code >= 500:
                logger.error("Renderer %s %s failed with %d", method, path, response.status_code)
                raise BadGateway(
                    "Renderer returned an error",
                    status_code=response.status_code,
                    details=details,
                )
            logger.warning("Renderer %s %s rejected request with %d", method, path, response.status_code)
            raise UpstreamError(
                "Renderer rejected the request",
                status_code=response.status_code,
                details=details,
            )
        return response

    async def render(self, snapshot: Snapshot) -> RenderResult:
        response = await self._send("POST", RENDER_PATH, to_upstream_request(snapshot))
        return parse_render_response(
            response.headers.get("content-type", ""),
            response.content,
            snapshot.mode,
        )

    async def health(self) -> Dict[str, Any]:
        """Return renderer health metadata with measured latency (ms)."""
        started = time.perf_counter()
        response = await self._send("GET", HEALTH_PATH)
        latency = int(round((time.perf_counter() - started) * 1000))
        try:
            data = response.json()
        except ValueError:
            raise BadGateway("Renderer health response is not JSON", status_code=502)
        if not isinstance(data, dict):
            raise BadGateway("Renderer health response is not an object", status_code=502)
        return {"latency": latency, "renderer": data}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
