"""Tests for the artifact bundle codec and offline integrity check."""

import json

import pytest

from recanon.errors import BundleFormatError
from recanon.kernel.canonical import compute_manifest_hash
from recanon._internal.io.artifact_bundle import (
    ARTIFACT_BUNDLE_VERSION,
    TOP_LEVEL_ORDER,
    bundle_digest,
    decode_bundle,
    encode_bundle,
)
from recanon._internal.verify.artifact_bundle import verify_bundle


def _raw(bundle) -> dict:
    return json.loads(encode_bundle(bundle))


class TestEncode:
    def test_round_trip(self, artifact_bundle):
        assert decode_bundle(encode_bundle(artifact_bundle)) == artifact_bundle

    def test_top_level_key_order(self, artifact_bundle):
        keys = list(_raw(artifact_bundle))
        assert keys == list(TOP_LEVEL_ORDER) + ["snapshot"]

    def test_block_key_order(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        assert list(raw["manifest"]) == [
            "seed", "datasetHash", "strategyHash", "parametersHash",
            "startDate", "endDate", "timestamp", "manifestHash",
        ]
        assert list(raw["outputs"]["equityCurve"][0]) == ["date", "equity", "drawdown"]
        assert list(raw["verification"]) == ["outputHash", "verificationHash"]

    def test_metrics_and_parameters_sorted(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        assert list(raw["outputs"]["metrics"]) == sorted(raw["outputs"]["metrics"])
        assert list(raw["params"]["parameters"]) == ["lookback", "threshold"]

    def test_encoding_is_stable(self, artifact_bundle):
        again = decode_bundle(encode_bundle(artifact_bundle))
        assert encode_bundle(again) == encode_bundle(artifact_bundle)
        assert bundle_digest(again) == bundle_digest(artifact_bundle)

    def test_snapshot_carries_no_metadata(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        assert set(raw["snapshot"]) == {"code", "seed", "vars", "execution"}

    def test_version(self, artifact_bundle):
        assert _raw(artifact_bundle)["artifactVersion"] == ARTIFACT_BUNDLE_VERSION == "1.0.0"


class TestDecode:
    def test_invalid_json(self):
        with pytest.raises(BundleFormatError, match="Invalid JSON"):
            decode_bundle(b"{not json")

    def test_not_utf8(self):
        with pytest.raises(BundleFormatError, match="UTF-8"):
            decode_bundle(b"\xff\xfe{}")

    def test_top_level_array(self):
        with pytest.raises(BundleFormatError, match="object"):
            decode_bundle("[]")

    def test_all_missing_fields_listed(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        del raw["manifest"]
        del raw["outputs"]
        with pytest.raises(BundleFormatError) as excinfo:
            decode_bundle(json.dumps(raw))
        assert "'manifest'" in str(excinfo.value)
        assert "'outputs'" in str(excinfo.value)

    def test_unsupported_major_version(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        raw["artifactVersion"] = "2.0.0"
        with pytest.raises(BundleFormatError, match="Unsupported bundle version"):
            decode_bundle(json.dumps(raw))

    def test_minor_version_accepted(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        raw["artifactVersion"] = "1.3.0"
        raw["futureField"] = {"ignored": True}
        assert decode_bundle(json.dumps(raw)).artifact_version == "1.3.0"

    def test_bad_snapshot(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        raw["snapshot"]["vars"] = [1, 2]
        with pytest.raises(BundleFormatError, match="snapshot"):
            decode_bundle(json.dumps(raw))

    def test_bad_block_type(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        raw["params"]["seed"] = "forty-two"
        with pytest.raises(BundleFormatError, match="structure"):
            decode_bundle(json.dumps(raw))

    def test_snapshot_optional(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        del raw["snapshot"]
        bundle = decode_bundle(json.dumps(raw))
        assert bundle.snapshot is None
        assert bundle.mode == "static"


class TestIntegrity:
    def test_sealed_bundle_verifies(self, artifact_bundle):
        report = verify_bundle(artifact_bundle)
        assert report.verified
        assert report.computed_manifest_hash == artifact_bundle.manifest.manifest_hash
        assert report.computed_output_hash == artifact_bundle.verification.output_hash

    def test_timestamp_change_changes_manifest_hash(self, artifact_bundle):
        original_bytes = encode_bundle(artifact_bundle)
        raw = json.loads(original_bytes)
        fields = {k: v for k, v in raw["manifest"].items() if k != "manifestHash"}
        original_hash = compute_manifest_hash(fields)
        assert original_hash == raw["manifest"]["manifestHash"]

        mutated = dict(fields, timestamp="2025-01-15T12:30:01.000Z")
        assert compute_manifest_hash(mutated) != original_hash

        replayed = verify_bundle(decode_bundle(original_bytes))
        assert replayed.computed_manifest_hash == original_hash

    @pytest.mark.parametrize("path,value", [
        (("manifest", "timestamp"), "2026-01-01T00:00:00.000Z"),
        (("manifest", "seed"), 43),
        (("manifest", "datasetHash"), "sha256:" + "ee" * 32),
        (("outputs", "metrics", "sharpeRatio"), 9.99),
        (("verification", "outputHash"), "sha256:" + "00" * 32),
        (("params", "seed"), 43),
        (("params", "startDate"), "2022-12-31"),
        (("params", "parameters", "lookback"), 21),
        (("strategy", "codeHash"), "sha256:" + "ab" * 32),
        (("dataset", "datasetHash"), "sha256:" + "cd" * 32),
    ])
    def test_semantic_tamper_flips_to_fail(self, artifact_bundle, path, value):
        raw = _raw(artifact_bundle)
        target = raw
        for key in path[:-1]:
            target = target[key]
        target[path[-1]] = value
        report = verify_bundle(decode_bundle(json.dumps(raw)))
        assert not report.verified

    def test_tampered_series_point(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        raw["outputs"]["equityCurve"][3]["equity"] += 0.01
        report = verify_bundle(decode_bundle(json.dumps(raw)))
        assert [m.field for m in report.mismatches] == ["outputHash"]

    @pytest.mark.parametrize("path,value,field", [
        (("params", "parameters", "threshold"), 0.75, "parametersHash"),
        (("params", "endDate"), "2023-07-01", "params.endDate"),
        (("strategy", "codeHash"), "sha256:" + "ab" * 32, "strategy.codeHash"),
        (("dataset", "datasetHash"), "sha256:" + "cd" * 32, "dataset.datasetHash"),
        (("snapshot", "seed"), 7, "snapshot.seed"),
    ])
    def test_blocks_bound_to_manifest(self, artifact_bundle, path, value, field):
        raw = _raw(artifact_bundle)
        target = raw
        for key in path[:-1]:
            target = target[key]
        target[path[-1]] = value
        report = verify_bundle(decode_bundle(json.dumps(raw)))
        assert [m.field for m in report.mismatches] == [field]
        # The manifest itself is untouched
        assert report.computed_manifest_hash == artifact_bundle.manifest.manifest_hash

    def test_manifest_hash_case_is_not_a_binding_mismatch(self, artifact_bundle):
        raw = _raw(artifact_bundle)
        raw["strategy"]["codeHash"] = raw["strategy"]["codeHash"].upper()
        assert verify_bundle(decode_bundle(json.dumps(raw))).verified
