"""Certified and draft execution.

Certified: validate -> build snapshot -> preflight -> render through the
Gateway. There is no local fallback; if the Gateway or renderer is
unavailable the execution fails.

Draft: a local seeded simulation for previews. Draft results are never
sealable and never verifiable.
"""

import json
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from recanon.client import GatewayClient
from recanon.contracts import RendererMetadata, VerifyResult
from recanon.errors import DraftNotSealable, ParameterValidationError, PreflightRejection
from recanon.kernel.canonical import (
    compute_manifest_hash,
    compute_output_hash,
    compute_parameters_hash,
)
from recanon.kernel.hash_utils import strip_prefix
from recanon.kernel.preflight import validate_code
from recanon.kernel.program import PROTOCOL, PROTOCOL_VERSION
from recanon.kernel.snapshot import ExecutionOptions, Snapshot, SnapshotMetadata, build_snapshot
from recanon._internal.io.artifact_bundle import (
    ARTIFACT_BUNDLE_VERSION,
    ArtifactBundle,
    BundleDataset,
    BundleManifest,
    BundleOutputs,
    BundleParams,
    BundleStrategy,
    BundleVerification,
    SeriesPoint,
)
from recanon._internal.io.claim_bundle import (
    ClaimBaseline,
    ClaimBundle,
    ClaimCanonical,
    ClaimCheck,
    ClaimDescriptor,
    ClaimExecution,
    ClaimSnapshot,
    ClaimSource,
)

Clock = Callable[[], datetime]

SEALED_PREFIX = "SEALED-"
DRAFT_PREFIX = "DRAFT-"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_MASK32 = 0xFFFFFFFF


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 of a negative number")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def sealed_artifact_id(primary_hash: str, now_ms: int) -> str:
    """``SEALED-<first 8 hex of hash>-<base36 ms>``, upper-cased."""
    return f"{SEALED_PREFIX}{strip_prefix(primary_hash)[:8].upper()}-{to_base36(now_ms).upper()}"


def draft_artifact_id(now_ms: int) -> str:
    return f"{DRAFT_PREFIX}{to_base36(now_ms).upper()}"


class CertifiedResult(BaseModel):
    """A render sealed by the authoritative renderer."""
    artifact_id: str
    sealed: Literal[True] = True
    snapshot: Snapshot
    mode: Literal["static", "loop"]
    image_hash: str
    animation_hash: Optional[str] = None
    output_base64: str
    animation_base64: Optional[str] = None
    mime_type: str
    metadata: RendererMetadata = Field(default_factory=RendererMetadata)
    payload_fingerprint: str


class DraftResult(BaseModel):
    """A local preview. Not sealable, not verifiable."""
    artifact_id: str
    sealed: Literal[False] = False
    seed: int
    start_date: str
    end_date: str
    metrics: Dict[str, Union[int, float]]
    equity_curve: List[SeriesPoint]


async def run_certified(
    client: GatewayClient,
    seed: Any,
    vars: Optional[Mapping[str, Any]] = None,
    execution: Optional[Union[ExecutionOptions, Mapping[str, Any]]] = None,
    metadata: Optional[Union[SnapshotMetadata, Mapping[str, Any]]] = None,
    code: Optional[str] = None,
    clock: Clock = _utcnow,
) -> CertifiedResult:
    """Execute through the Gateway and return a sealed result.

    Raises:
        ParameterValidationError: Bad seed or VAR values (no network I/O).
        PreflightRejection: Program source failed preflight (no network I/O).
        RecanonError: Any Gateway/renderer failure, as mapped by the client.
    """
    snapshot = build_snapshot(seed, vars, execution, metadata, code=code)

    preflight = validate_code(snapshot.code)
    if not preflight.valid:
        raise PreflightRejection(preflight)

    rendered = await client.render(snapshot)
    return CertifiedResult(
        artifact_id=sealed_artifact_id(rendered.image_hash, _epoch_ms(clock())),
        snapshot=snapshot,
        mode=rendered.mode,
        image_hash=rendered.image_hash,
        animation_hash=rendered.animation_hash,
        output_base64=rendered.output_base64,
        animation_base64=rendered.animation_base64,
        mime_type="video/mp4" if rendered.mode == "loop" else "image/png",
        metadata=rendered.metadata,
        payload_fingerprint=snapshot.fingerprint(),
    )


def _require_sealed(result: Union[CertifiedResult, DraftResult], action: str) -> CertifiedResult:
    if not isinstance(result, CertifiedResult) or not result.sealed:
        raise DraftNotSealable(f"Draft results cannot be {action}; run a certified execution first")
    return result


async def verify_result(
    client: GatewayClient,
    result: Union[CertifiedResult, DraftResult],
) -> VerifyResult:
    """Ask the Gateway to re-render a sealed result and compare hashes.

    Raises:
        DraftNotSealable: ``result`` is a draft.
    """
    sealed = _require_sealed(result, "verified")
    return await client.verify(sealed.snapshot, sealed.image_hash, sealed.animation_hash)


# Draft simulation

def mulberry32(seed: int) -> Callable[[], float]:
    """Seeded 32-bit PRNG returning floats in [0, 1)."""
    state = seed & _MASK32

    def _imul(a: int, b: int) -> int:
        return (a * b) & _MASK32

    def _next() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & _MASK32
        t = _imul(state ^ (state >> 15), 1 | state)
        t = ((t + _imul(t ^ (t >> 7), 61 | t)) & _MASK32) ^ t
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296

    return _next


def _round2(value: float) -> float:
    # Half-up, not banker's rounding
    return math.floor(value * 100 + 0.5) / 100


def _parse_date(value: Any, name: str, errors: List[str]) -> Optional[date]:
    if not isinstance(value, str):
        errors.append(f"{name} must be an ISO date string")
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        errors.append(f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}")
        return None


def simulate_backtest(
    seed: Any,
    start_date: str,
    end_date: str,
) -> Tuple[List[SeriesPoint], Dict[str, Union[int, float]]]:
    """Weekly mock equity curve and summary metrics, fully determined by seed.

    Raises:
        ParameterValidationError: Bad seed or dates.
    """
    errors: List[str] = []
    if isinstance(seed, bool) or not isinstance(seed, int) or seed < 0:
        errors.append("seed must be a non-negative integer")
    start = _parse_date(start_date, "start_date", errors)
    end = _parse_date(end_date, "end_date", errors)
    if errors:
        raise ParameterValidationError(errors)

    random = mulberry32(seed)
    points: List[SeriesPoint] = []
    equity = 100000.0
    peak = equity
    day = start
    while day <= end:
        change = (random() - 0.45) * 0.03
        equity = equity * (1 + change)
        peak = max(peak, equity)
        drawdown = ((equity - peak) / peak) * 100
        points.append(SeriesPoint(
            date=day.isoformat(),
            equity=_round2(equity),
            drawdown=_round2(drawdown),
        ))
        day = day + timedelta(days=7)

    initial = points[0].equity if points else 100000.0
    final = points[-1].equity if points else 100000.0
    total_return = ((final - initial) / initial) * 100
    years = len(points) / 52
    annualized = (math.pow(final / initial, 1 / years) - 1) * 100 if years > 0 else 0.0
    max_drawdown = min((p.drawdown for p in points), default=0.0)

    random = mulberry32(seed + 1000)
    metrics: Dict[str, Union[int, float]] = {
        "totalReturn": _round2(total_return),
        "annualizedReturn": _round2(annualized),
        "sharpeRatio": _round2(1 + random() * 1.5),
        "maxDrawdown": _round2(max_drawdown),
        "winRate": _round2(50 + random() * 20),
        "profitFactor": _round2(1 + random()),
        "totalTrades": int(math.floor(100 + random() * 200)),
        "averageTradeReturn": _round2(random() * 0.8 - 0.1),
    }
    return points, metrics


def run_draft(seed: Any, start_date: str, end_date: str, clock: Clock = _utcnow) -> DraftResult:
    """Local preview run. The result is labeled unsealed."""
    curve, metrics = simulate_backtest(seed, start_date, end_date)
    return DraftResult(
        artifact_id=draft_artifact_id(_epoch_ms(clock())),
        seed=seed,
        start_date=start_date,
        end_date=end_date,
        metrics=metrics,
        equity_curve=curve,
    )


# Sealing

def seal_bundle(
    result: Union[CertifiedResult, DraftResult],
    *,
    strategy_name: str,
    strategy_hash: str,
    dataset_id: str,
    dataset_hash: str,
    dataset_source: str,
    start_date: str,
    end_date: str,
    equity_curve: Sequence[Union[SeriesPoint, Mapping[str, Any]]],
    metrics: Mapping[str, Union[int, float]],
    parameters: Optional[Mapping[str, Any]] = None,
    strategy_code: Optional[str] = None,
    clock: Clock = _utcnow,
) -> ArtifactBundle:
    """Pack a certified result and its backtest outputs into an ArtifactBundle.

    The renderer's hash of the sealed image becomes the verification hash;
    manifest and output hashes are computed here from the embedded data.

    Raises:
        DraftNotSealable: ``result`` is a draft.
    """
    sealed = _require_sealed(result, "sealed into a bundle")
    parameters = dict(parameters or {})
    timestamp = _iso(clock())
    points = [p if isinstance(p, SeriesPoint) else SeriesPoint.model_validate(p) for p in equity_curve]

    manifest_fields = {
        "seed": sealed.snapshot.seed,
        "datasetHash": dataset_hash,
        "strategyHash": strategy_hash,
        "parametersHash": compute_parameters_hash(parameters),
        "startDate": start_date,
        "endDate": end_date,
        "timestamp": timestamp,
    }
    manifest = BundleManifest.model_validate(
        {**manifest_fields, "manifestHash": compute_manifest_hash(manifest_fields)}
    )

    return ArtifactBundle(
        artifact_version=ARTIFACT_BUNDLE_VERSION,
        artifact_id=sealed.artifact_id,
        created_at=timestamp,
        strategy=BundleStrategy(name=strategy_name, code_hash=strategy_hash, code=strategy_code),
        dataset=BundleDataset(dataset_id=dataset_id, dataset_hash=dataset_hash, source=dataset_source),
        params=BundleParams(
            seed=sealed.snapshot.seed,
            start_date=start_date,
            end_date=end_date,
            parameters=parameters,
        ),
        manifest=manifest,
        outputs=BundleOutputs(equity_curve=points, metrics=dict(metrics)),
        verification=BundleVerification(
            output_hash=compute_output_hash(points, metrics),
            verification_hash=sealed.image_hash,
            animation_hash=sealed.animation_hash,
        ),
        # Metadata is tracking data, not render input
        snapshot=sealed.snapshot.model_copy(update={"metadata": None}),
    )


def seal_claim(
    result: Union[CertifiedResult, DraftResult],
    claim: ClaimDescriptor,
    sources: Sequence[ClaimSource] = (),
    clock: Clock = _utcnow,
) -> ClaimBundle:
    """Build a recanon.event.v1 claim bundle whose baseline is the sealed render.

    Raises:
        DraftNotSealable: ``result`` is a draft.
    """
    sealed = _require_sealed(result, "sealed into a claim")
    snapshot = sealed.snapshot
    return ClaimBundle(
        created_at=_iso(clock()),
        mode=sealed.mode,
        claim=claim,
        sources=list(sources),
        canonical=ClaimCanonical(
            protocol=sealed.metadata.protocol or PROTOCOL,
            protocol_version=sealed.metadata.protocol_version or PROTOCOL_VERSION,
        ),
        snapshot=ClaimSnapshot(
            code=snapshot.code,
            seed=snapshot.seed,
            vars=list(snapshot.vars),
            execution=ClaimExecution(frames=snapshot.execution.frames, loop=snapshot.execution.loop),
        ),
        baseline=ClaimBaseline(poster_hash=sealed.image_hash, animation_hash=sealed.animation_hash),
        check=ClaimCheck(),
    )


# Replay commands

def bundle_replay_command(bundle: ArtifactBundle) -> str:
    """Offline replay of an exported bundle file."""
    return f"recanon replay ./{bundle.artifact_id}-bundle.json"


def claim_verify_command(claim_path: str, gateway_url: str) -> str:
    """Remote re-render check of a claim bundle file."""
    return f"recanon verify-claim {claim_path} --gateway {gateway_url.rstrip('/')}"


def verify_request_command(result: CertifiedResult, gateway_url: str) -> str:
    """curl invocation of the Gateway's verify operation for a sealed result."""
    payload: Dict[str, Any] = {"snapshot": result.snapshot.to_wire()}
    if result.mode == "loop":
        payload["expectedPosterHash"] = result.image_hash
        payload["expectedAnimationHash"] = result.animation_hash
    else:
        payload["expectedHash"] = result.image_hash
    body = json.dumps(payload, separators=(",", ":")).replace("'", "'\\''")
    return (
        f"curl -X POST {gateway_url.rstrip('/')}/verify "
        f"-H \"Content-Type: application/json\" -d '{body}'"
    )
