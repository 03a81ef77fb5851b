"""Verification engine (pure logic).

Two independent checks decide whether an artifact is authentic:

1. Render verification: hashes recomputed by re-rendering the snapshot are
   compared to the declared hashes. Static mode needs exactly one hash;
   loop mode needs poster and animation and passes only if both match.
2. Bundle integrity: manifest and output hashes recomputed from the data
   embedded in a bundle are compared to the hashes stored in it.

A FAIL here is a normal result with a list of mismatches, never an exception.
"""

from typing import Any, List, Literal, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from recanon.codes import MismatchReason
from recanon.kernel.canonical import compute_manifest_hash, compute_output_hash
from recanon.kernel.hash_utils import (
    CanonicalizationError,
    is_preview_hash,
    normalize_hash,
    try_normalize_hash,
)

HashMatchType = Literal["exact", "partial", "none"]


class Mismatch(BaseModel):
    """A single {field, expected, actual} difference."""
    field: str
    expected: Optional[str] = None
    actual: Optional[str] = None
    reason: str = MismatchReason.HASH_MISMATCH.value


class HashCheck(BaseModel):
    """Comparison of one declared hash against one recomputed hash."""
    name: str  # "image" | "poster" | "animation"
    expected: Optional[str] = None
    computed: Optional[str] = None
    verified: bool
    reason: Optional[str] = None


class RenderVerification(BaseModel):
    """Outcome of comparing recomputed render hashes with declared ones.

    ``hash_match_type`` is diagnostic only; ``verified`` alone decides.
    """
    mode: Literal["static", "loop"]
    verified: bool
    checks: List[HashCheck]
    hash_match_type: HashMatchType
    mismatches: List[Mismatch] = Field(default_factory=list)

    def check(self, name: str) -> Optional[HashCheck]:
        for c in self.checks:
            if c.name == name:
                return c
        return None

    @property
    def message(self) -> str:
        if self.verified:
            return "Check passed. Execution is authentic and reproducible."
        failed = ", ".join(m.field for m in self.mismatches)
        return f"Check failed. Mismatch in: {failed}."


class IntegrityReport(BaseModel):
    """Outcome of recomputing a bundle's manifest and output hashes."""
    verified: bool
    computed_manifest_hash: Optional[str] = None
    computed_output_hash: Optional[str] = None
    mismatches: List[Mismatch] = Field(default_factory=list)


class AuthenticityReport(BaseModel):
    """Both checks combined. Authentic only if both ran and both passed."""
    authentic: bool
    integrity: IntegrityReport
    render: Optional[RenderVerification] = None
    failed_checks: List[str] = Field(default_factory=list)  # "integrity" | "render"


def _normalized_or_raw(value: Optional[str]) -> Optional[str]:
    normalized = try_normalize_hash(value)
    return normalized if normalized is not None else value


def check_hash(name: str, expected: Optional[str], computed: Optional[str]) -> HashCheck:
    """Compare one expected hash against one recomputed hash.

    Preview (non-cryptographic) hashes are never accepted on either side.
    """
    reason: Optional[str] = None
    if not expected:
        reason = MismatchReason.EXPECTED_HASH_MISSING.value
    elif not computed:
        reason = MismatchReason.COMPUTED_HASH_MISSING.value
    elif is_preview_hash(expected) or is_preview_hash(computed):
        reason = MismatchReason.NON_CRYPTOGRAPHIC_HASH.value
    elif try_normalize_hash(expected) is None or try_normalize_hash(computed) is None:
        reason = MismatchReason.MALFORMED_HASH.value
    elif normalize_hash(expected) != normalize_hash(computed):
        reason = MismatchReason.HASH_MISMATCH.value

    return HashCheck(
        name=name,
        expected=_normalized_or_raw(expected),
        computed=_normalized_or_raw(computed),
        verified=reason is None,
        reason=reason,
    )


def _match_type(checks: Sequence[HashCheck]) -> HashMatchType:
    matched = sum(1 for c in checks if c.verified)
    if matched == len(checks):
        return "exact"
    if matched == 0:
        return "none"
    return "partial"


def _to_mismatches(checks: Sequence[HashCheck]) -> List[Mismatch]:
    return [
        Mismatch(
            field=f"{c.name}Hash",
            expected=c.expected,
            actual=c.computed,
            reason=c.reason or MismatchReason.HASH_MISMATCH.value,
        )
        for c in checks
        if not c.verified
    ]


def verify_static(expected_hash: Optional[str], computed_hash: Optional[str]) -> RenderVerification:
    """Static policy: exactly one hash, PASS iff it matches after normalization."""
    checks = [check_hash("image", expected_hash, computed_hash)]
    return RenderVerification(
        mode="static",
        verified=checks[0].verified,
        checks=checks,
        hash_match_type=_match_type(checks),
        mismatches=_to_mismatches(checks),
    )


def verify_loop(
    expected_poster_hash: Optional[str],
    expected_animation_hash: Optional[str],
    computed_poster_hash: Optional[str],
    computed_animation_hash: Optional[str],
) -> RenderVerification:
    """Loop policy: poster and animation must both verify.

    A partial match is FAIL; hash_match_type reports "partial" for
    diagnostics only.
    """
    checks = [
        check_hash("poster", expected_poster_hash, computed_poster_hash),
        check_hash("animation", expected_animation_hash, computed_animation_hash),
    ]
    return RenderVerification(
        mode="loop",
        verified=all(c.verified for c in checks),
        checks=checks,
        hash_match_type=_match_type(checks),
        mismatches=_to_mismatches(checks),
    )


def check_integrity(
    manifest_fields: Mapping[str, Any],
    claimed_manifest_hash: Optional[str],
    series: Sequence[Any],
    metrics: Mapping[str, Any],
    claimed_output_hash: Optional[str],
) -> IntegrityReport:
    """Recompute manifest and output hashes and compare with the claimed ones.

    Each side is reported independently; data that cannot be canonicalized
    counts as a mismatch for that side.
    """
    mismatches: List[Mismatch] = []

    computed_output: Optional[str]
    try:
        computed_output = compute_output_hash(series, metrics)
    except (CanonicalizationError, KeyError, AttributeError, TypeError):
        computed_output = None
    output_check = check_hash("output", claimed_output_hash, computed_output)
    if not output_check.verified:
        mismatches.append(Mismatch(
            field="outputHash",
            expected=output_check.expected,
            actual=output_check.computed,
            reason=output_check.reason or MismatchReason.HASH_MISMATCH.value,
        ))

    computed_manifest: Optional[str]
    try:
        computed_manifest = compute_manifest_hash(manifest_fields)
    except CanonicalizationError:
        computed_manifest = None
    manifest_check = check_hash("manifest", claimed_manifest_hash, computed_manifest)
    if not manifest_check.verified:
        mismatches.append(Mismatch(
            field="manifestHash",
            expected=manifest_check.expected,
            actual=manifest_check.computed,
            reason=manifest_check.reason or MismatchReason.HASH_MISMATCH.value,
        ))

    return IntegrityReport(
        verified=len(mismatches) == 0,
        computed_manifest_hash=computed_manifest,
        computed_output_hash=computed_output,
        mismatches=mismatches,
    )


def combine(integrity: IntegrityReport, render: Optional[RenderVerification]) -> AuthenticityReport:
    """Combine both checks; a missing render verification is a failed check."""
    failed: List[str] = []
    if not integrity.verified:
        failed.append("integrity")
    if render is None or not render.verified:
        failed.append("render")
    return AuthenticityReport(
        authentic=not failed,
        integrity=integrity,
        render=render,
        failed_checks=failed,
    )
