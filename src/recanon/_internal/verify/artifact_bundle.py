"""Artifact bundle integrity verification (offline)."""

from typing import Any, List

from recanon.codes import MismatchReason
from recanon.kernel.canonical import compute_parameters_hash
from recanon.kernel.hash_utils import hashes_equal
from recanon.kernel.verification import IntegrityReport, Mismatch, check_hash, check_integrity
from recanon._internal.io.artifact_bundle import ArtifactBundle


def _same(expected: Any, actual: Any, is_hash: bool) -> bool:
    if expected == actual:
        return True
    return is_hash and hashes_equal(expected, actual)


def binding_mismatches(bundle: ArtifactBundle) -> List[Mismatch]:
    """Check that the blocks outside the manifest agree with it.

    The manifest hash only covers ``manifest.*``; the params, strategy,
    dataset and snapshot blocks are bound to it field by field, and the
    parameter record is bound through a recomputed ``parametersHash``.
    """
    manifest = bundle.manifest
    mismatches: List[Mismatch] = []

    try:
        computed = compute_parameters_hash(bundle.params.parameters)
    except ValueError:
        # NaN or an infinity in the parameter record
        computed = None
    params_check = check_hash("parameters", manifest.parameters_hash, computed)
    if not params_check.verified:
        mismatches.append(Mismatch(
            field="parametersHash",
            expected=params_check.expected,
            actual=params_check.computed,
            reason=params_check.reason or MismatchReason.HASH_MISMATCH.value,
        ))

    pairs = [
        ("params.seed", manifest.seed, bundle.params.seed, False),
        ("params.startDate", manifest.start_date, bundle.params.start_date, False),
        ("params.endDate", manifest.end_date, bundle.params.end_date, False),
        ("strategy.codeHash", manifest.strategy_hash, bundle.strategy.code_hash, True),
        ("dataset.datasetHash", manifest.dataset_hash, bundle.dataset.dataset_hash, True),
    ]
    if bundle.snapshot is not None:
        pairs.append(("snapshot.seed", manifest.seed, bundle.snapshot.seed, False))

    for field, expected, actual, is_hash in pairs:
        if not _same(expected, actual, is_hash):
            mismatches.append(Mismatch(
                field=field,
                expected=str(expected),
                actual=str(actual),
                reason=MismatchReason.FIELD_MISMATCH.value,
            ))
    return mismatches


def verify_bundle(bundle: ArtifactBundle) -> IntegrityReport:
    """Recompute output and manifest hashes from the bundle's embedded data.

    Every other semantic block must agree with the manifest. This is the
    local half of authenticity; the render half needs the renderer and
    lives in the api layer.
    """
    report = check_integrity(
        manifest_fields=bundle.manifest.hashed_fields(),
        claimed_manifest_hash=bundle.manifest.manifest_hash,
        series=bundle.outputs.equity_curve,
        metrics=bundle.outputs.metrics,
        claimed_output_hash=bundle.verification.output_hash,
    )
    bindings = binding_mismatches(bundle)
    if not bindings:
        return report
    return report.model_copy(update={
        "verified": False,
        "mismatches": report.mismatches + bindings,
    })
