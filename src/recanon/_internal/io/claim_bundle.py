"""Claim bundle (recanon.event.v1) models and codec.

A claim bundle pairs a real-world claim (title, statement, sources) with
the snapshot whose sealed render stands as its baseline. Field declaration
order below is the file order; it is part of the format.
"""

import json
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from recanon.errors import BundleFormatError
from recanon.kernel.hash_utils import normalize_hash, try_normalize_hash
from recanon.kernel.program import PROTOCOL, PROTOCOL_VERSION
from recanon.kernel.snapshot import VAR_COUNT, Snapshot, snapshot_from_wire

CLAIM_BUNDLE_VERSION = "recanon.event.v1"
KNOWN_CLAIM_BUNDLE_VERSIONS = (CLAIM_BUNDLE_VERSION,)

ClaimType = Literal["generic", "sports", "pnl"]
Mode = Literal["static", "loop"]


class _ClaimBlock(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ClaimDescriptor(_ClaimBlock):
    type: ClaimType = "generic"
    title: str = ""
    statement: str = ""
    event_date: str = Field(default="", alias="eventDate")
    subject: str = ""
    notes: str = ""
    # Template-specific fields (sports score line, P&L balances, ...)
    details: Dict[str, Any] = Field(default_factory=dict)


class ClaimSource(_ClaimBlock):
    label: str = ""
    url: str = ""
    retrieved_at: str = Field(default="", alias="retrievedAt")
    selector_or_evidence: str = Field(default="", alias="selectorOrEvidence")


class ClaimCanonical(_ClaimBlock):
    via: Literal["proxy"] = "proxy"
    protocol: str = PROTOCOL
    protocol_version: str = Field(default=PROTOCOL_VERSION, alias="protocolVersion")


class ClaimExecution(_ClaimBlock):
    frames: int = 1
    loop: bool = False


class ClaimSnapshot(_ClaimBlock):
    """Snapshot as stored in a claim bundle; validated strictly by to_snapshot()."""
    code: str = ""
    seed: int = 0
    vars: List[Union[int, float]] = Field(default_factory=list)
    execution: ClaimExecution = Field(default_factory=ClaimExecution)

    def to_snapshot(self) -> Snapshot:
        return snapshot_from_wire(self.model_dump())


class ClaimBaseline(_ClaimBlock):
    poster_hash: str = Field(default="", alias="posterHash")
    animation_hash: Optional[str] = Field(default=None, alias="animationHash")


class ClaimCheck(_ClaimBlock):
    last_checked_at: str = Field(default="", alias="lastCheckedAt")
    result: str = ""


class ClaimBundle(_ClaimBlock):
    bundle_version: str = Field(default=CLAIM_BUNDLE_VERSION, alias="bundleVersion")
    created_at: str = Field(default="", alias="createdAt")
    mode: Mode = "static"
    claim: ClaimDescriptor = Field(default_factory=ClaimDescriptor)
    sources: List[ClaimSource] = Field(default_factory=list)
    canonical: ClaimCanonical = Field(default_factory=ClaimCanonical)
    snapshot: ClaimSnapshot = Field(default_factory=ClaimSnapshot)
    baseline: ClaimBaseline = Field(default_factory=ClaimBaseline)
    check: ClaimCheck = Field(default_factory=ClaimCheck)

    def with_normalized_hashes(self) -> "ClaimBundle":
        """Copy with baseline hashes in ``sha256:<lowercase hex>`` form.

        Raises:
            CanonicalizationError: If a present baseline hash is malformed.
        """
        animation = self.baseline.animation_hash
        baseline = ClaimBaseline(
            poster_hash=normalize_hash(self.baseline.poster_hash),
            animation_hash=normalize_hash(animation) if animation else None,
        )
        return self.model_copy(update={"baseline": baseline})


class ClaimBundleValidation(BaseModel):
    """Preflight of a claim bundle document before a verify call."""
    valid: bool
    is_empty: bool = False
    parse_error: Optional[str] = None
    missing_fields: List[str] = Field(default_factory=list)
    mode: Literal["static", "loop", "unknown"] = "unknown"
    warnings: List[str] = Field(default_factory=list)


def encode_claim_bundle(bundle: ClaimBundle) -> bytes:
    data = bundle.model_dump(by_alias=True, mode="json")
    text = json.dumps(data, indent=2, ensure_ascii=False, allow_nan=False)
    return (text + "\n").encode("utf-8")


def decode_claim_bundle(data: Union[bytes, str]) -> ClaimBundle:
    """Parse a claim bundle document.

    Raises:
        BundleFormatError: Invalid JSON, non-object document, unknown
            bundle version, or malformed structure.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    try:
        raw = json.loads(data)
    except json.JSONDecodeError as e:
        raise BundleFormatError(f"Invalid JSON: {e}")
    if not isinstance(raw, dict):
        raise BundleFormatError("Invalid claim bundle: top-level value must be an object")
    version = raw.get("bundleVersion")
    if version not in KNOWN_CLAIM_BUNDLE_VERSIONS:
        raise BundleFormatError(
            f"Unsupported claim bundle version {version!r} "
            f"(supported: {', '.join(KNOWN_CLAIM_BUNDLE_VERSIONS)})"
        )
    try:
        return ClaimBundle.model_validate(raw)
    except ValidationError as e:
        raise BundleFormatError(f"Invalid claim bundle structure: {e}")


def declared_hashes(raw: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Return (poster/image hash, animation hash) declared by a bundle document.

    The baseline block is authoritative; loose verify documents may instead
    carry ``expectedImageHash`` / ``expectedPosterHash`` /
    ``expectedAnimationHash`` at the top level.
    """
    baseline = raw.get("baseline") if isinstance(raw.get("baseline"), dict) else {}
    poster = (
        baseline.get("posterHash")
        or raw.get("expectedPosterHash")
        or raw.get("expectedImageHash")
    )
    animation = baseline.get("animationHash") or raw.get("expectedAnimationHash")
    return poster or None, animation or None


def _is_loop(snapshot: Dict[str, Any]) -> bool:
    execution = snapshot.get("execution")
    if not isinstance(execution, dict):
        return False
    frames = execution.get("frames")
    many_frames = isinstance(frames, (int, float)) and not isinstance(frames, bool) and frames > 1
    return execution.get("loop") is True or many_frames


def validate_claim_bundle(text: str) -> ClaimBundleValidation:
    """Check a bundle document has everything a verify call needs.

    Reports every missing field at once, including the hashes required by
    the declared mode (one for static, poster and animation for loop).
    Never raises.
    """
    if not text.strip():
        return ClaimBundleValidation(valid=False, is_empty=True)
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        return ClaimBundleValidation(valid=False, parse_error=str(e))
    if not isinstance(raw, dict):
        return ClaimBundleValidation(valid=False, parse_error="Top-level value must be an object")

    missing: List[str] = []
    warnings: List[str] = []

    snapshot = raw.get("snapshot")
    if not isinstance(snapshot, dict):
        missing.append("snapshot")
        mode = "unknown"
    else:
        code = snapshot.get("code")
        if not isinstance(code, str) or not code.strip():
            missing.append("snapshot.code")
        if snapshot.get("seed") is None:
            missing.append("snapshot.seed")
        vars_ = snapshot.get("vars")
        if not isinstance(vars_, list) or len(vars_) != VAR_COUNT:
            missing.append(f"snapshot.vars (array of {VAR_COUNT})")
        mode = "loop" if _is_loop(snapshot) else "static"

    poster, animation = declared_hashes(raw)
    if mode == "loop":
        if not poster:
            missing.append("baseline.posterHash (poster hash for loop mode)")
        if not animation:
            missing.append("baseline.animationHash (required for loop mode)")
    elif mode == "static" and not poster:
        missing.append("baseline.posterHash")

    for label, value in (("poster", poster), ("animation", animation)):
        if value and try_normalize_hash(value) is None:
            warnings.append(f"The {label} hash is not a SHA-256 content hash; the check will fail")

    declared_mode = raw.get("mode")
    if declared_mode in ("static", "loop") and mode != "unknown" and declared_mode != mode:
        warnings.append(
            f"Bundle declares mode '{declared_mode}' but its snapshot executes as '{mode}'"
        )

    return ClaimBundleValidation(
        valid=not missing,
        missing_fields=missing,
        mode=mode,
        warnings=warnings,
    )
