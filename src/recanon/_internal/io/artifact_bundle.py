"""Artifact bundle models and codec.

The bundle is a portable, self-describing JSON record that lets a third
party replay an execution without the original application. Keys are
written in the fixed order below, never in the encoder's iteration order,
because hashes are computed over the encoded bytes.
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from recanon.errors import BundleFormatError, ParameterValidationError
from recanon.kernel.hash_utils import hash_bytes
from recanon.kernel.snapshot import Snapshot, snapshot_from_wire

ARTIFACT_BUNDLE_VERSION = "1.0.0"
SUPPORTED_MAJOR_VERSIONS = {1}

# Top-level keys in format order. ``snapshot`` is optional and always last.
TOP_LEVEL_ORDER = (
    "artifactVersion",
    "artifactId",
    "createdAt",
    "strategy",
    "dataset",
    "params",
    "manifest",
    "outputs",
    "verification",
)
OPTIONAL_TOP_LEVEL = ("snapshot",)

STRATEGY_ORDER = ("name", "codeHash", "code")
DATASET_ORDER = ("datasetId", "datasetHash", "source")
PARAMS_ORDER = ("seed", "startDate", "endDate", "parameters")
MANIFEST_ORDER = (
    "seed",
    "datasetHash",
    "strategyHash",
    "parametersHash",
    "startDate",
    "endDate",
    "timestamp",
    "manifestHash",
)
OUTPUTS_ORDER = ("equityCurve", "metrics")
POINT_ORDER = ("date", "equity", "drawdown")
VERIFICATION_ORDER = ("outputHash", "verificationHash", "animationHash")


class _BundleBlock(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class BundleStrategy(_BundleBlock):
    name: str
    code_hash: str = Field(alias="codeHash")
    code: Optional[str] = None


class BundleDataset(_BundleBlock):
    dataset_id: str = Field(alias="datasetId")
    dataset_hash: str = Field(alias="datasetHash")
    source: str


class BundleParams(_BundleBlock):
    seed: int
    start_date: str = Field(alias="startDate")
    end_date: str = Field(alias="endDate")
    parameters: Dict[str, Any] = Field(default_factory=dict)


class BundleManifest(_BundleBlock):
    seed: int
    dataset_hash: str = Field(alias="datasetHash")
    strategy_hash: str = Field(alias="strategyHash")
    parameters_hash: str = Field(alias="parametersHash")
    start_date: str = Field(alias="startDate")
    end_date: str = Field(alias="endDate")
    timestamp: str
    manifest_hash: str = Field(alias="manifestHash")

    def hashed_fields(self) -> Dict[str, Any]:
        """Provenance fields covered by the manifest hash (camelCase keys)."""
        return {
            "seed": self.seed,
            "datasetHash": self.dataset_hash,
            "strategyHash": self.strategy_hash,
            "parametersHash": self.parameters_hash,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "timestamp": self.timestamp,
        }


class SeriesPoint(_BundleBlock):
    date: str
    equity: float
    drawdown: float


class BundleOutputs(_BundleBlock):
    equity_curve: List[SeriesPoint] = Field(alias="equityCurve")
    metrics: Dict[str, Union[int, float]]


class BundleVerification(_BundleBlock):
    output_hash: str = Field(alias="outputHash")
    verification_hash: str = Field(alias="verificationHash")
    animation_hash: Optional[str] = Field(default=None, alias="animationHash")


class ArtifactBundle(_BundleBlock):
    """Complete artifact bundle. Immutable once built."""
    artifact_version: str = Field(alias="artifactVersion")
    artifact_id: str = Field(alias="artifactId")
    created_at: str = Field(alias="createdAt")
    strategy: BundleStrategy
    dataset: BundleDataset
    params: BundleParams
    manifest: BundleManifest
    outputs: BundleOutputs
    verification: BundleVerification
    snapshot: Optional[Snapshot] = None

    @property
    def mode(self) -> str:
        if self.snapshot is not None:
            return self.snapshot.mode
        return "loop" if self.verification.animation_hash else "static"


def _ordered(data: Dict[str, Any], order: tuple) -> Dict[str, Any]:
    """Project ``data`` onto ``order``, dropping keys whose value is None."""
    return {key: data[key] for key in order if data.get(key) is not None}


def _sorted_mapping(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: data[key] for key in sorted(data)}


def bundle_to_ordered_dict(bundle: ArtifactBundle) -> Dict[str, Any]:
    """Build the fixed-order JSON object for a bundle."""
    strategy = bundle.strategy.model_dump(by_alias=True)
    dataset = bundle.dataset.model_dump(by_alias=True)
    params = bundle.params.model_dump(by_alias=True)
    params["parameters"] = _sorted_mapping(params["parameters"])
    manifest = bundle.manifest.model_dump(by_alias=True)
    verification = bundle.verification.model_dump(by_alias=True)

    out: Dict[str, Any] = {
        "artifactVersion": bundle.artifact_version,
        "artifactId": bundle.artifact_id,
        "createdAt": bundle.created_at,
        "strategy": _ordered(strategy, STRATEGY_ORDER),
        "dataset": _ordered(dataset, DATASET_ORDER),
        "params": _ordered(params, PARAMS_ORDER),
        "manifest": _ordered(manifest, MANIFEST_ORDER),
        "outputs": {
            "equityCurve": [
                _ordered(p.model_dump(), POINT_ORDER) for p in bundle.outputs.equity_curve
            ],
            "metrics": _sorted_mapping(dict(bundle.outputs.metrics)),
        },
        "verification": _ordered(verification, VERIFICATION_ORDER),
    }
    if bundle.snapshot is not None:
        out["snapshot"] = bundle.snapshot.to_wire()
    return out


def encode_bundle(bundle: ArtifactBundle) -> bytes:
    """Serialize a bundle to UTF-8 JSON bytes in the fixed field order."""
    text = json.dumps(
        bundle_to_ordered_dict(bundle),
        indent=2,
        ensure_ascii=False,
        allow_nan=False,
    )
    return (text + "\n").encode("utf-8")


def bundle_digest(bundle: ArtifactBundle) -> str:
    """Content hash of the encoded bundle; stable across repeated encodings."""
    return hash_bytes(encode_bundle(bundle))


def _check_version(version: Any) -> None:
    if not isinstance(version, str) or not version.strip():
        raise BundleFormatError("Invalid bundle: artifactVersion must be a non-empty string")
    major_text = version.split(".", 1)[0]
    try:
        major = int(major_text)
    except ValueError:
        raise BundleFormatError(f"Invalid bundle: unrecognized artifactVersion '{version}'")
    if major not in SUPPORTED_MAJOR_VERSIONS:
        raise BundleFormatError(
            f"Unsupported bundle version '{version}' "
            f"(supported major versions: {sorted(SUPPORTED_MAJOR_VERSIONS)})"
        )


def decode_bundle(data: Union[bytes, str]) -> ArtifactBundle:
    """Parse and validate bundle bytes.

    Raises:
        BundleFormatError: Invalid JSON, a non-object document, missing
            required top-level fields (all reported), an unsupported major
            version, or malformed block contents.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BundleFormatError(f"Invalid bundle: not UTF-8 ({e})")
    try:
        raw = json.loads(data)
    except json.JSONDecodeError as e:
        raise BundleFormatError(f"Invalid JSON: {e}")
    if not isinstance(raw, dict):
        raise BundleFormatError("Invalid bundle: top-level value must be an object")

    missing = [key for key in TOP_LEVEL_ORDER if key not in raw]
    if missing:
        raise BundleFormatError(
            "Invalid bundle: missing required field(s) " + ", ".join(f"'{m}'" for m in missing)
        )

    _check_version(raw["artifactVersion"])

    snapshot = None
    if raw.get("snapshot") is not None:
        try:
            snapshot = snapshot_from_wire(raw["snapshot"])
        except ParameterValidationError as e:
            raise BundleFormatError(f"Invalid bundle snapshot: {'; '.join(e.errors)}")

    try:
        fields = {key: raw[key] for key in TOP_LEVEL_ORDER}
        return ArtifactBundle.model_validate({**fields, "snapshot": snapshot})
    except ValidationError as e:
        raise BundleFormatError(f"Invalid bundle structure: {e}")
