"""Code constants for recanon results and errors.

These constants prevent stringly-typed codes and ensure client code
matches on the same values the gateway and kernel emit.
"""

from enum import Enum


class PreflightCode(str, Enum):
    """Preflight finding codes."""

    # Errors (blocking)
    CANVAS_OVERRIDE = "CANVAS_OVERRIDE"
    CODE_EMPTY = "CODE_EMPTY"

    # Warnings (non-blocking)
    AMBIENT_SEED = "AMBIENT_SEED"


class ParameterCode(str, Enum):
    """Snapshot parameter validation codes."""

    SEED_INVALID = "SEED_INVALID"
    VAR_OUT_OF_RANGE = "VAR_OUT_OF_RANGE"
    VAR_NOT_NUMERIC = "VAR_NOT_NUMERIC"
    VAR_UNKNOWN = "VAR_UNKNOWN"
    VARS_LENGTH = "VARS_LENGTH"
    FRAMES_INVALID = "FRAMES_INVALID"


class ClaimRowCode(str, Enum):
    """Write-time violations for sealed claim rows."""

    TITLE_TOO_LONG = "TITLE_TOO_LONG"
    STATEMENT_TOO_LONG = "STATEMENT_TOO_LONG"
    SUBJECT_TOO_LONG = "SUBJECT_TOO_LONG"
    KEYWORDS_TOO_LONG = "KEYWORDS_TOO_LONG"
    BUNDLE_VERSION_INVALID = "BUNDLE_VERSION_INVALID"
    MODE_INVALID = "MODE_INVALID"
    POSTER_HASH_FORMAT = "POSTER_HASH_FORMAT"
    ANIMATION_HASH_FORMAT = "ANIMATION_HASH_FORMAT"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    PAYLOAD_NOT_OBJECT = "PAYLOAD_NOT_OBJECT"
    SOURCES_TOO_LARGE = "SOURCES_TOO_LARGE"
    SOURCES_NOT_ARRAY = "SOURCES_NOT_ARRAY"
    SNAPSHOT_MISSING = "SNAPSHOT_MISSING"
    CODE_MISSING = "CODE_MISSING"
    SEED_INVALID = "SEED_INVALID"
    VARS_INVALID = "VARS_INVALID"
    VARS_LENGTH = "VARS_LENGTH"
    LOOP_NO_ANIMATION = "LOOP_NO_ANIMATION"


class ErrorClass(str, Enum):
    """Failure classes surfaced to callers.

    Each class maps to a distinct HTTP status at the gateway and a distinct
    exception type on the client side.
    """

    PARAMETER_VALIDATION = "parameter_validation"
    PREFLIGHT_REJECTED = "preflight_rejected"
    UPSTREAM_UNREACHABLE = "upstream_unreachable"
    UPSTREAM_ERROR = "upstream_error"
    BAD_GATEWAY = "bad_gateway"
    RATE_LIMITED = "rate_limited"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    MALFORMED_PAYLOAD = "malformed_payload"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    NOT_CONFIGURED = "not_configured"
    DRAFT_NOT_SEALABLE = "draft_not_sealable"
    BUNDLE_FORMAT = "bundle_format"
    CLAIM_REJECTED = "claim_rejected"


class MismatchReason(str, Enum):
    """Why a verification returned FAIL."""

    HASH_MISMATCH = "HASH_MISMATCH"
    EXPECTED_HASH_MISSING = "EXPECTED_HASH_MISSING"
    COMPUTED_HASH_MISSING = "COMPUTED_HASH_MISSING"
    NON_CRYPTOGRAPHIC_HASH = "NON_CRYPTOGRAPHIC_HASH"
    MALFORMED_HASH = "MALFORMED_HASH"
    FIELD_MISMATCH = "FIELD_MISMATCH"
