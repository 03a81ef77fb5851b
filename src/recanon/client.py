"""Caller-side async client of the Gateway.

Every non-success response is raised as the exception class the Gateway
reported, so a ``verified=False`` result always means the check ran.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from recanon.codes import ErrorClass
from recanon.contracts import HealthStatus, RenderResult, VerifyResult
from recanon.errors import (
    BadGateway,
    GatewayNotConfigured,
    MalformedPayload,
    MethodNotAllowed,
    ParameterValidationError,
    PayloadTooLarge,
    RateLimitExceeded,
    RecanonError,
    RouteNotFound,
    UpstreamError,
    UpstreamUnreachable,
)
from recanon.kernel.snapshot import Snapshot

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


def _retry_after(body: Dict[str, Any], response: httpx.Response) -> int:
    value = body.get("retryAfter", response.headers.get("retry-after"))
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1


def error_from_response(response: httpx.Response) -> RecanonError:
    """Rebuild the Gateway's exception from an error response."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    status = response.status_code
    message = body.get("message") or body.get("error") or f"HTTP {status}"
    details = body.get("details")

    try:
        error = ErrorClass(body.get("error"))
    except ValueError:
        error = None

    if error is ErrorClass.PARAMETER_VALIDATION:
        return ParameterValidationError(body.get("errors") or [message])
    if error is ErrorClass.RATE_LIMITED or status == 429:
        return RateLimitExceeded(_retry_after(body, response), message)
    if error is ErrorClass.PAYLOAD_TOO_LARGE or status == 413:
        return PayloadTooLarge(message)
    if error is ErrorClass.MALFORMED_PAYLOAD:
        return MalformedPayload(message)
    if error is ErrorClass.NOT_FOUND or status == 404:
        return RouteNotFound(message)
    if error is ErrorClass.METHOD_NOT_ALLOWED or status == 405:
        return MethodNotAllowed(message)
    if error is ErrorClass.NOT_CONFIGURED:
        return GatewayNotConfigured(message)
    if error is ErrorClass.UPSTREAM_UNREACHABLE or status == 504:
        return UpstreamUnreachable(message)
    if error is ErrorClass.BAD_GATEWAY or status == 502:
        return BadGateway(message, status_code=body.get("upstreamStatus", status), details=details)
    # Upstream 4xx forwarded by the Gateway, or anything unrecognized
    return UpstreamError(message, status_code=body.get("upstreamStatus", status), details=details)


class GatewayClient:
    """Talks to a Gateway at ``base_url``; never to the renderer directly."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=json_body)
        except httpx.TimeoutException:
            raise UpstreamUnreachable(f"Gateway did not respond ({method} {path})")
        except httpx.TransportError as e:
            raise UpstreamUnreachable(f"Failed to reach gateway: {e}")
        if response.status_code >= 400:
            raise error_from_response(response)
        try:
            body = response.json()
        except ValueError:
            raise BadGateway("Gateway response is not JSON", status_code=response.status_code)
        if not isinstance(body, dict):
            raise BadGateway("Gateway response is not an object", status_code=response.status_code)
        return body

    async def health(self) -> HealthStatus:
        """Report availability; failures become ``available=False`` with a reason."""
        started = time.perf_counter()
        try:
            body = await self._request("GET", "/health")
        except RecanonError as e:
            return HealthStatus(available=False, error=e.message)
        status = HealthStatus.model_validate(body)
        if status.latency is None:
            status = status.model_copy(
                update={"latency": int(round((time.perf_counter() - started) * 1000))}
            )
        return status

    async def render(self, snapshot: Snapshot) -> RenderResult:
        body = await self._request("POST", "/render", snapshot.to_wire())
        return RenderResult.model_validate(body)

    async def verify_static(self, snapshot: Snapshot, expected_hash: str) -> VerifyResult:
        payload = {"snapshot": snapshot.to_wire(), "expectedHash": expected_hash}
        return VerifyResult.model_validate(await self._request("POST", "/verify", payload))

    async def verify_loop(
        self,
        snapshot: Snapshot,
        expected_poster_hash: str,
        expected_animation_hash: str,
    ) -> VerifyResult:
        payload = {
            "snapshot": snapshot.to_wire(),
            "expectedPosterHash": expected_poster_hash,
            "expectedAnimationHash": expected_animation_hash,
        }
        return VerifyResult.model_validate(await self._request("POST", "/verify", payload))

    async def verify(
        self,
        snapshot: Snapshot,
        expected_hash: Optional[str],
        expected_animation_hash: Optional[str] = None,
    ) -> VerifyResult:
        """Dispatch on the snapshot's mode. Loop mode needs both hashes.

        Raises:
            MalformedPayload: A required hash is missing (nothing is sent).
        """
        if snapshot.is_loop:
            if not expected_hash or not expected_animation_hash:
                raise MalformedPayload(
                    "Loop mode requires both a poster hash and an animation hash"
                )
            return await self.verify_loop(snapshot, expected_hash, expected_animation_hash)
        if not expected_hash:
            raise MalformedPayload("Static mode requires an expected hash")
        return await self.verify_static(snapshot, expected_hash)
