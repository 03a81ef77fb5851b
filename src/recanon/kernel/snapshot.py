"""Snapshot model and builder.

A Snapshot is the complete input of a render: program source, seed,
the ten-slot parameter vector and execution mode. Two snapshots with
identical code, seed and vars must render byte-identical output.

The name <-> position mapping of the vector (VAR_NAMES) is part of the
wire protocol and must be identical on both ends.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from recanon.errors import ParameterValidationError
from recanon.kernel.hash_utils import payload_fingerprint
from recanon.kernel.program import backtest_program

Number = Union[int, float]

VAR_NAMES: Tuple[str, ...] = (
    "horizon",
    "drift",
    "volatility",
    "leverage",
    "feeSlippage",
    "rebalance",
    "shockFreq",
    "shockMag",
    "meanReversion",
    "visualDensity",
)

DEFAULT_VARS: Dict[str, Number] = {
    "horizon": 50,
    "drift": 50,
    "volatility": 30,
    "leverage": 50,
    "feeSlippage": 10,
    "rebalance": 50,
    "shockFreq": 20,
    "shockMag": 40,
    "meanReversion": 30,
    "visualDensity": 70,
}

VAR_COUNT = len(VAR_NAMES)
VAR_MIN = 0
VAR_MAX = 100
LEGACY_DEFAULT_SEED = 0


class ExecutionOptions(BaseModel):
    """Execution mode flags. Loop mode when ``loop`` is set or more than one frame."""
    frames: int = 1
    loop: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_loop(self) -> bool:
        return self.loop or self.frames > 1

    @property
    def mode(self) -> str:
        return "loop" if self.is_loop else "static"


class SnapshotMetadata(BaseModel):
    """Descriptive tracking data. Not part of the render input."""
    strategy_id: Optional[str] = Field(default=None, alias="strategyId")
    strategy_hash: Optional[str] = Field(default=None, alias="strategyHash")
    dataset_id: Optional[str] = Field(default=None, alias="datasetId")
    dataset_hash: Optional[str] = Field(default=None, alias="datasetHash")

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Snapshot(BaseModel):
    """Immutable render input."""
    code: str
    seed: int
    vars: Tuple[Number, ...]
    execution: ExecutionOptions = Field(default_factory=ExecutionOptions)
    metadata: Optional[SnapshotMetadata] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def mode(self) -> str:
        return self.execution.mode

    @property
    def is_loop(self) -> bool:
        return self.execution.is_loop

    def to_wire(self) -> Dict[str, Any]:
        """Public wire shape: {code, seed, vars, execution}."""
        return {
            "code": self.code,
            "seed": self.seed,
            "vars": list(self.vars),
            "execution": {"frames": self.execution.frames, "loop": self.execution.loop},
        }

    def fingerprint(self) -> str:
        return payload_fingerprint(self.code, self.seed, self.vars, self.is_loop)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_seed(seed: Any) -> Optional[int]:
    """Return seed as int if it is a non-negative integer (integral floats allowed)."""
    if isinstance(seed, bool):
        return None
    if isinstance(seed, int):
        return seed if seed >= 0 else None
    if isinstance(seed, float) and seed.is_integer() and seed >= 0:
        return int(seed)
    return None


def _check_vars(values: List[Any], errors: List[str]) -> None:
    if len(values) != VAR_COUNT:
        errors.append(f"vars must have exactly {VAR_COUNT} elements, got {len(values)}")
    for i, value in enumerate(values):
        if not _is_number(value):
            errors.append(f"VAR[{i}] must be a number, got {type(value).__name__}")
        elif value != value or value < VAR_MIN or value > VAR_MAX:
            errors.append(f"VAR[{i}] must be between {VAR_MIN} and {VAR_MAX}, got {value}")


def _check_execution(execution: Any, errors: List[str]) -> Optional[ExecutionOptions]:
    if execution is None:
        return ExecutionOptions()
    if isinstance(execution, ExecutionOptions):
        return execution
    if not isinstance(execution, Mapping):
        errors.append("execution must be an object")
        return None
    frames = execution.get("frames", 1)
    loop = execution.get("loop", False)
    if frames is None:
        frames = 1
    if loop is None:
        loop = False
    if isinstance(frames, bool) or not isinstance(frames, int) or frames < 1:
        errors.append("execution.frames must be a positive integer")
        return None
    if not isinstance(loop, bool):
        errors.append("execution.loop must be a boolean")
        return None
    return ExecutionOptions(frames=frames, loop=loop)


def vars_to_array(values: Mapping[str, Number]) -> List[Number]:
    """Map named VAR slots onto the ordered wire vector."""
    return [values[name] for name in VAR_NAMES]


def array_to_vars(values: List[Number]) -> Dict[str, Number]:
    """Map an ordered vector back to named slots, defaulting short vectors."""
    return {
        name: values[i] if i < len(values) else DEFAULT_VARS[name]
        for i, name in enumerate(VAR_NAMES)
    }


def build_snapshot(
    seed: Any,
    partial_vars: Optional[Mapping[str, Any]] = None,
    execution: Optional[Union[ExecutionOptions, Mapping[str, Any]]] = None,
    metadata: Optional[Union[SnapshotMetadata, Mapping[str, Any]]] = None,
    code: Optional[str] = None,
) -> Snapshot:
    """Build a Snapshot from a partial set of named VAR slots over the defaults.

    Raises:
        ParameterValidationError: Listing every violated rule (seed, unknown
            slot names, non-numeric or out-of-range values, bad execution flags).
    """
    errors: List[str] = []

    coerced_seed = _coerce_seed(seed)
    if coerced_seed is None:
        errors.append("seed must be a non-negative integer")

    merged: Dict[str, Any] = dict(DEFAULT_VARS)
    for name, value in (partial_vars or {}).items():
        if name not in DEFAULT_VARS:
            errors.append(f"unknown VAR name '{name}'")
            continue
        merged[name] = value
    _check_vars(vars_to_array(merged), errors)

    options = _check_execution(execution, errors)

    if errors:
        raise ParameterValidationError(errors)

    if metadata is not None and not isinstance(metadata, SnapshotMetadata):
        metadata = SnapshotMetadata.model_validate(dict(metadata))

    return Snapshot(
        code=code if code is not None else backtest_program(),
        seed=coerced_seed,
        vars=tuple(vars_to_array(merged)),
        execution=options,
        metadata=metadata,
    )


def snapshot_from_wire(data: Any) -> Snapshot:
    """Validate a public wire snapshot ({code, seed, vars, execution?}).

    Raises:
        ParameterValidationError: Listing every violated rule.
    """
    if not isinstance(data, Mapping):
        raise ParameterValidationError(["snapshot must be an object"])

    errors: List[str] = []
    code = data.get("code")
    if not isinstance(code, str) or not code.strip():
        errors.append("code must be a non-empty string")

    coerced_seed = _coerce_seed(data.get("seed"))
    if coerced_seed is None:
        errors.append("seed must be a non-negative integer")

    raw_vars = data.get("vars")
    if not isinstance(raw_vars, list):
        errors.append("vars must be an array")
        raw_vars = []
    else:
        _check_vars(raw_vars, errors)

    options = _check_execution(data.get("execution"), errors)

    metadata = None
    raw_metadata = data.get("metadata")
    if isinstance(raw_metadata, Mapping):
        metadata = SnapshotMetadata.model_validate(dict(raw_metadata))

    if errors:
        raise ParameterValidationError(errors)

    return Snapshot(
        code=code,
        seed=coerced_seed,
        vars=tuple(raw_vars),
        execution=options,
        metadata=metadata,
    )


def legacy_to_snapshot(legacy: Any) -> Snapshot:
    """Adapt the legacy parameter-record shape onto the VAR vector.

    Pure and total: missing fields, non-numeric values and values outside
    [0, 100] fall back to the slot default; a missing or invalid seed falls
    back to LEGACY_DEFAULT_SEED. Never raises.
    """
    record = legacy if isinstance(legacy, Mapping) else {}
    params = record.get("parameters")
    if not isinstance(params, Mapping):
        params = {}

    values: Dict[str, Number] = {}
    for name in VAR_NAMES:
        value = params.get(name)
        if _is_number(value) and value == value and VAR_MIN <= value <= VAR_MAX:
            values[name] = value
        else:
            values[name] = DEFAULT_VARS[name]

    seed = _coerce_seed(record.get("seed"))

    def _text(key: str) -> Optional[str]:
        value = record.get(key)
        return value if isinstance(value, str) else None

    return Snapshot(
        code=backtest_program(),
        seed=seed if seed is not None else LEGACY_DEFAULT_SEED,
        vars=tuple(vars_to_array(values)),
        metadata=SnapshotMetadata(
            strategy_id=_text("strategyId"),
            strategy_hash=_text("strategyHash"),
            dataset_id=_text("datasetId"),
            dataset_hash=_text("datasetHash"),
        ),
    )
