"""Public API for recanon.

High-level functions that return complete, structured results. Callers
should use these instead of importing from _internal.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from pydantic import BaseModel

from recanon.client import GatewayClient
from recanon.contracts import VerifyResult
from recanon.errors import MalformedPayload
from recanon.kernel.preflight import PreflightResult, validate_code
from recanon.kernel.verification import AuthenticityReport, IntegrityReport, combine
from recanon._internal.io.artifact_bundle import ArtifactBundle, decode_bundle
from recanon._internal.io.claim_bundle import ClaimBundle, ClaimCheck, decode_claim_bundle
from recanon._internal.verify.artifact_bundle import verify_bundle

PathLike = Union[str, os.PathLike, Path]


def _normalize_path(path: PathLike) -> Path:
    """Normalize path input to Path object."""
    return Path(path) if not isinstance(path, Path) else path


class ReplayReport(BaseModel):
    """Offline replay of an artifact bundle file."""
    verified: bool
    artifact_id: str
    artifact_version: str
    created_at: str
    strategy_name: str
    dataset_source: str
    seed: int
    start_date: str
    end_date: str
    mode: str
    verification_hash: str
    animation_hash: Optional[str] = None
    output_hash: str
    metrics: Dict[str, Union[int, float]]
    integrity: IntegrityReport


class ClaimCheckReport(BaseModel):
    """Remote re-render check of a claim bundle."""
    verified: bool
    mode: str
    result: VerifyResult
    bundle: ClaimBundle  # with its check block updated


def load_bundle(path: PathLike) -> ArtifactBundle:
    """Read and decode an artifact bundle file.

    Raises:
        FileNotFoundError: If the file does not exist.
        BundleFormatError: If the file is not a valid bundle.
    """
    return decode_bundle(_normalize_path(path).read_bytes())


def replay_bundle(path: PathLike) -> ReplayReport:
    """Recompute a bundle's manifest and output hashes from its own data."""
    bundle = load_bundle(path)
    integrity = verify_bundle(bundle)
    return ReplayReport(
        verified=integrity.verified,
        artifact_id=bundle.artifact_id,
        artifact_version=bundle.artifact_version,
        created_at=bundle.created_at,
        strategy_name=bundle.strategy.name,
        dataset_source=bundle.dataset.source,
        seed=bundle.params.seed,
        start_date=bundle.params.start_date,
        end_date=bundle.params.end_date,
        mode=bundle.mode,
        verification_hash=bundle.verification.verification_hash,
        animation_hash=bundle.verification.animation_hash,
        output_hash=bundle.verification.output_hash,
        metrics=dict(bundle.outputs.metrics),
        integrity=integrity,
    )


def preflight(code: str) -> PreflightResult:
    return validate_code(code)


def preflight_file(path: PathLike) -> PreflightResult:
    """Run preflight on a program source file (UTF-8)."""
    return validate_code(_normalize_path(path).read_text(encoding="utf-8"))


async def verify_artifact(bundle: ArtifactBundle, client: GatewayClient) -> AuthenticityReport:
    """Full authenticity: local integrity plus re-render of the embedded snapshot.

    A bundle without a snapshot cannot be re-rendered and so is never
    authentic; the report names "render" as the failed check.
    """
    integrity = verify_bundle(bundle)
    render = None
    if bundle.snapshot is not None:
        result = await client.verify(
            bundle.snapshot,
            bundle.verification.verification_hash,
            bundle.verification.animation_hash,
        )
        render = result.to_verification()
    return combine(integrity, render)


def load_claim_bundle(path: PathLike) -> ClaimBundle:
    return decode_claim_bundle(_normalize_path(path).read_bytes())


async def verify_claim(
    bundle: ClaimBundle,
    client: GatewayClient,
    clock: Optional[Callable[[], datetime]] = None,
) -> ClaimCheckReport:
    """Re-render a claim's snapshot through the Gateway and compare baselines.

    Raises:
        ParameterValidationError: The embedded snapshot is malformed.
        MalformedPayload: The declared mode disagrees with the snapshot, or a
            required baseline hash is missing.
        RecanonError: Gateway or renderer failures.
    """
    snapshot = bundle.snapshot.to_snapshot()
    if snapshot.mode != bundle.mode:
        raise MalformedPayload(
            f"Claim declares mode '{bundle.mode}' but its snapshot executes as '{snapshot.mode}'"
        )
    result = await client.verify(
        snapshot,
        bundle.baseline.poster_hash or None,
        bundle.baseline.animation_hash,
    )
    now = (clock or (lambda: datetime.now(timezone.utc)))()
    checked = bundle.model_copy(update={
        "check": ClaimCheck(
            last_checked_at=now.isoformat(),
            result="VERIFIED" if result.verified else "FAILED",
        )
    })
    return ClaimCheckReport(verified=result.verified, mode=result.mode, result=result, bundle=checked)
