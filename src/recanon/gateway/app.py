"""Render/verify Gateway (FastAPI).

The only network egress point to the renderer. Exposes three operations
(health, render, verify); every other path is a 404 without upstream
contact. Requests are rate limited per client identity and bounded in
size, and every failure leaves as ``{"success": false, "error", "message"}``
with a status that identifies its class.
"""

import asyncio
import contextlib
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from recanon import __version__
from recanon.codes import ErrorClass
from recanon.contracts import HealthStatus, VerifyResult
from recanon.errors import (
    BadGateway,
    GatewayNotConfigured,
    MalformedPayload,
    ParameterValidationError,
    PayloadTooLarge,
    RateLimitExceeded,
    RecanonError,
    UpstreamError,
)
from recanon.gateway.config import GatewayConfig
from recanon.gateway.ratelimit import (
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitStore,
    client_identity,
    run_sweeper,
)
from recanon.gateway.upstream import UpstreamRenderer, truncate
from recanon.kernel.snapshot import Snapshot, snapshot_from_wire
from recanon.kernel.verification import verify_loop, verify_static

logger = logging.getLogger(__name__)

RATE_LIMIT_HEADER = "X-RateLimit-Remaining"

STATUS_BY_CLASS: Dict[ErrorClass, int] = {
    ErrorClass.PARAMETER_VALIDATION: 400,
    ErrorClass.PREFLIGHT_REJECTED: 400,
    ErrorClass.MALFORMED_PAYLOAD: 400,
    ErrorClass.DRAFT_NOT_SEALABLE: 400,
    ErrorClass.BUNDLE_FORMAT: 400,
    ErrorClass.CLAIM_REJECTED: 400,
    ErrorClass.NOT_FOUND: 404,
    ErrorClass.METHOD_NOT_ALLOWED: 405,
    ErrorClass.PAYLOAD_TOO_LARGE: 413,
    ErrorClass.RATE_LIMITED: 429,
    ErrorClass.NOT_CONFIGURED: 500,
    ErrorClass.BAD_GATEWAY: 502,
    ErrorClass.UPSTREAM_UNREACHABLE: 504,
}


def status_for(exc: RecanonError) -> int:
    if isinstance(exc, UpstreamError) and not isinstance(exc, BadGateway):
        return exc.status_code
    return STATUS_BY_CLASS.get(exc.code, 400)


def error_body(exc: RecanonError, max_detail_chars: int) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": exc.code.value, "message": exc.message}
    if isinstance(exc, ParameterValidationError):
        body["errors"] = exc.errors
    if isinstance(exc, RateLimitExceeded):
        body["retryAfter"] = exc.retry_after
    if isinstance(exc, UpstreamError):
        body["upstreamStatus"] = exc.status_code
        if exc.details:
            body["details"] = truncate(exc.details, max_detail_chars)
    return body


def _parse_snapshot(data: Any) -> Snapshot:
    """Coarse shape check, then full snapshot validation."""
    if not isinstance(data, dict):
        raise MalformedPayload("snapshot must be a JSON object")
    code = data.get("code")
    if not isinstance(code, str) or not code.strip():
        raise MalformedPayload("code must be a non-empty string")
    return snapshot_from_wire(data)


def _expected(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise MalformedPayload(f"{key} must be a string")
    return value


def create_app(
    config: Optional[GatewayConfig] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock=None,
) -> FastAPI:
    """Build a Gateway application.

    Args:
        config: Resolved configuration; defaults to an unconfigured Gateway.
        rate_limit_store: Rate-limit table; defaults to a process-local one.
        transport: httpx transport for the renderer client (tests inject a
            MockTransport).
        clock: Monotonic seconds source for rate limiting.
    """
    config = config or GatewayConfig()
    limiter = RateLimiter(
        rate_limit_store or InMemoryRateLimitStore(),
        limit=config.rate_limit,
        window_seconds=config.rate_window_seconds,
        clock=clock,
    )
    renderer = UpstreamRenderer(config, transport=transport)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(run_sweeper(limiter, config.sweep_interval_seconds))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            await renderer.aclose()

    app = FastAPI(title="recanon gateway", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.limiter = limiter
    app.state.renderer = renderer

    @app.exception_handler(RecanonError)
    async def _recanon_error(request: Request, exc: RecanonError):
        headers: Dict[str, str] = {}
        remaining = getattr(request.state, "rate_limit_remaining", None)
        if remaining is not None:
            headers[RATE_LIMIT_HEADER] = str(remaining)
        if isinstance(exc, RateLimitExceeded):
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(
            error_body(exc, config.max_error_detail_chars),
            status_code=status_for(exc),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            error, message = ErrorClass.NOT_FOUND, f"Unknown endpoint: {request.url.path}"
        elif exc.status_code == 405:
            error, message = ErrorClass.METHOD_NOT_ALLOWED, f"{request.method} not allowed for {request.url.path}"
        else:
            error, message = ErrorClass.MALFORMED_PAYLOAD, str(exc.detail)
        return JSONResponse(
            {"success": False, "error": error.value, "message": message},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    async def guard(request: Request, response: Response) -> str:
        """Configuration check and rate limiting shared by every operation."""
        if not config.configured:
            logger.error("Gateway called but no renderer is configured")
            raise GatewayNotConfigured("Gateway not configured: renderer location missing")
        identity = client_identity(request.headers)
        decision = limiter.check(identity)
        request.state.rate_limit_remaining = decision.remaining
        if not decision.allowed:
            logger.warning("Rate limit exceeded for client %s", identity)
            raise RateLimitExceeded(decision.retry_after)
        response.headers[RATE_LIMIT_HEADER] = str(decision.remaining)
        return identity

    async def read_json_body(request: Request) -> Dict[str, Any]:
        declared = request.headers.get("content-length")
        if declared is not None:
            try:
                declared_size = int(declared)
            except ValueError:
                raise MalformedPayload("Invalid Content-Length header")
            if declared_size > config.max_body_bytes:
                raise PayloadTooLarge(f"Request body exceeds {config.max_body_bytes} bytes")
        # The header can lie or be absent; count what actually arrives.
        chunks = []
        received = 0
        async for chunk in request.stream():
            received += len(chunk)
            if received > config.max_body_bytes:
                raise PayloadTooLarge(f"Request body exceeds {config.max_body_bytes} bytes")
            chunks.append(chunk)
        body = b"".join(chunks)
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise MalformedPayload("Request body is not valid JSON")
        if not isinstance(data, dict):
            raise MalformedPayload("Request body must be a JSON object")
        return data

    @app.get("/health")
    async def health(identity: str = Depends(guard)):
        started = time.perf_counter()
        try:
            info = await renderer.health()
        except RecanonError as e:
            logger.warning("Renderer health check failed: %s", e.message)
            status = HealthStatus(
                available=False,
                latency=int(round((time.perf_counter() - started) * 1000)),
                error=e.message,
            )
            return {"success": True, **status.to_wire()}
        logger.info("health ok for client %s", identity)
        status = HealthStatus(available=True, latency=info["latency"], renderer=info["renderer"])
        return {"success": True, **status.to_wire()}

    @app.post("/render")
    async def render(request: Request, identity: str = Depends(guard)):
        payload = await read_json_body(request)
        snapshot = _parse_snapshot(payload)
        logger.info("render (%s) for client %s", snapshot.mode, identity)
        result = await renderer.render(snapshot)
        return {"success": True, **result.to_wire()}

    @app.post("/verify")
    async def verify(request: Request, identity: str = Depends(guard)):
        payload = await read_json_body(request)
        snapshot = _parse_snapshot(payload.get("snapshot"))

        if snapshot.is_loop:
            expected_poster = _expected(payload, "expectedPosterHash")
            expected_animation = _expected(payload, "expectedAnimationHash")
            if expected_poster is None or expected_animation is None:
                raise MalformedPayload(
                    "Loop mode requires both expectedPosterHash and expectedAnimationHash"
                )
        else:
            expected_hash = _expected(payload, "expectedHash")
            if expected_hash is None:
                raise MalformedPayload("Static mode requires expectedHash")

        logger.info("verify (%s) for client %s", snapshot.mode, identity)
        # The comparison only starts once the fresh render has been hashed.
        rendered = await renderer.render(snapshot)
        if snapshot.is_loop:
            outcome = verify_loop(
                expected_poster,
                expected_animation,
                rendered.image_hash,
                rendered.animation_hash,
            )
        else:
            outcome = verify_static(expected_hash, rendered.image_hash)
        if not outcome.verified:
            logger.info("verify FAIL (%s) for client %s", outcome.hash_match_type, identity)
        result = VerifyResult.from_verification(outcome, rendered.metadata)
        return {"success": True, **result.to_wire()}

    return app
