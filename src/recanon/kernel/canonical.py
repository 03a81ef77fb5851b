"""Canonical strings for manifest and output hashing.

Rules:
- Scalar fields are joined with ``|`` in a fixed, enumerated order
- Composite records (metrics) are serialized with their keys sorted
  lexicographically, then joined with series data by ``|``
- Series points are ``date:equity:drawdown``, joined by ``|``
- Numbers use one fixed formatting routine (format_number), never
  locale-sensitive or display formatting
"""

import json
import math
import re
from typing import Any, Iterable, Mapping, Sequence

from recanon.kernel.hash_utils import CanonicalizationError, hash_text
from recanon._internal.canonical_json import canonical_dumps

FIELD_DELIMITER = "|"
POINT_DELIMITER = ":"

# Part of the format contract; reordering changes every manifest hash.
MANIFEST_FIELD_ORDER = (
    "seed",
    "datasetHash",
    "strategyHash",
    "parametersHash",
    "startDate",
    "endDate",
    "timestamp",
)

_EXPONENT_RE = re.compile(r"e([+-])0*(\d+)$")
_INTEGRAL_LIMIT = 1e21


def format_number(value: Any) -> str:
    """Deterministic decimal representation of a number.

    - ints print as plain decimal digits
    - integral floats below 1e21 print without a fractional part (``1.0`` -> ``1``)
    - other floats use the shortest round-trippable form, with the exponent
      written without zero padding (``1e-07`` -> ``1e-7``)
    - NaN, infinities and bools are rejected
    """
    if isinstance(value, bool):
        raise CanonicalizationError("Booleans are not numbers in canonical form")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise CanonicalizationError(f"Non-finite number not allowed: {value!r}")
        if value.is_integer() and abs(value) < _INTEGRAL_LIMIT:
            return str(int(value))
        text = repr(value)
        return _EXPONENT_RE.sub(lambda m: f"e{m.group(1)}{m.group(2)}", text)
    raise CanonicalizationError(f"Not a number: {type(value).__name__}")


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    raise CanonicalizationError(
        f"Unsupported metric value type: {type(value).__name__}"
    )


def canonical_metrics(metrics: Mapping[str, Any]) -> str:
    """Serialize a flat metrics record with lexicographically sorted keys."""
    items = []
    for key in sorted(metrics):
        if not isinstance(key, str):
            raise CanonicalizationError(f"Metric keys must be strings, got {type(key).__name__}")
        items.append(f"{json.dumps(key, ensure_ascii=False)}:{_format_scalar(metrics[key])}")
    return "{" + ",".join(items) + "}"


def _point_field(point: Any, name: str) -> Any:
    if isinstance(point, Mapping):
        return point[name]
    return getattr(point, name)


def canonical_series(points: Iterable[Any]) -> str:
    """Serialize series points as ``date:equity:drawdown`` joined by ``|``."""
    parts = []
    for point in points:
        date = _point_field(point, "date")
        equity = format_number(_point_field(point, "equity"))
        drawdown = format_number(_point_field(point, "drawdown"))
        parts.append(POINT_DELIMITER.join((str(date), equity, drawdown)))
    return FIELD_DELIMITER.join(parts)


def output_canonical_string(series: Sequence[Any], metrics: Mapping[str, Any]) -> str:
    return f"{canonical_metrics(metrics)}{FIELD_DELIMITER}{canonical_series(series)}"


def manifest_canonical_string(fields: Mapping[str, Any]) -> str:
    """Join manifest fields in MANIFEST_FIELD_ORDER.

    Raises:
        CanonicalizationError: If a required field is absent.
    """
    parts = []
    for name in MANIFEST_FIELD_ORDER:
        if name not in fields:
            raise CanonicalizationError(f"Manifest field missing: {name}")
        value = fields[name]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            parts.append(format_number(value))
        elif isinstance(value, str):
            parts.append(value)
        else:
            raise CanonicalizationError(
                f"Manifest field {name} must be a string or number, got {type(value).__name__}"
            )
    return FIELD_DELIMITER.join(parts)


def compute_manifest_hash(fields: Mapping[str, Any]) -> str:
    return hash_text(manifest_canonical_string(fields))


def compute_output_hash(series: Sequence[Any], metrics: Mapping[str, Any]) -> str:
    return hash_text(output_canonical_string(series, metrics))


def compute_parameters_hash(parameters: Mapping[str, Any]) -> str:
    """Hash of the free-form parameter record (canonical JSON, sorted keys)."""
    return hash_text(canonical_dumps(dict(parameters)))
