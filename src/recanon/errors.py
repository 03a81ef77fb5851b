"""Exception taxonomy for recanon.

Every failure that stops an operation from running is one of these.
A verification that ran and returned FAIL is a result, not an exception.
"""

from typing import List, Optional

from recanon.codes import ClaimRowCode, ErrorClass


class RecanonError(Exception):
    """Base class for failures that prevent an operation from completing."""

    code: ErrorClass = ErrorClass.MALFORMED_PAYLOAD

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"[{self.code.value}] {message}")


class ParameterValidationError(RecanonError):
    """Snapshot inputs are malformed. Carries every violated rule."""

    code = ErrorClass.PARAMETER_VALIDATION

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Parameter validation failed:\n{lines}")


class PreflightRejection(RecanonError):
    """Program source failed static preflight; never forwarded upstream."""

    code = ErrorClass.PREFLIGHT_REJECTED

    def __init__(self, result):
        self.result = result
        first = result.errors[0] if result.errors else None
        if first is not None and first.line_number is not None:
            detail = f"{first.message}\n\nFound at line {first.line_number}:\n  {first.line_content}"
        elif first is not None:
            detail = first.message
        else:
            detail = "Preflight failed"
        super().__init__(detail)


class UpstreamUnreachable(RecanonError):
    """The authoritative renderer could not be reached (network or timeout)."""

    code = ErrorClass.UPSTREAM_UNREACHABLE


class UpstreamError(RecanonError):
    """The renderer answered with a failure status."""

    code = ErrorClass.UPSTREAM_ERROR

    def __init__(self, message: str, status_code: int, details: Optional[str] = None):
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class BadGateway(UpstreamError):
    """The renderer failed with a server error or broke the wire protocol."""

    code = ErrorClass.BAD_GATEWAY


class RateLimitExceeded(RecanonError):
    """Caller is throttled; back off for ``retry_after`` seconds."""

    code = ErrorClass.RATE_LIMITED

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(
            message
            or f"Too many requests. Please wait {retry_after} seconds before retrying."
        )


class PayloadTooLarge(RecanonError):
    code = ErrorClass.PAYLOAD_TOO_LARGE


class MalformedPayload(RecanonError):
    code = ErrorClass.MALFORMED_PAYLOAD


class RouteNotFound(RecanonError):
    code = ErrorClass.NOT_FOUND


class MethodNotAllowed(RecanonError):
    code = ErrorClass.METHOD_NOT_ALLOWED


class GatewayNotConfigured(RecanonError):
    code = ErrorClass.NOT_CONFIGURED


class DraftNotSealable(RecanonError):
    """Draft results are never eligible for sealing, bundling or verification."""

    code = ErrorClass.DRAFT_NOT_SEALABLE


class BundleFormatError(RecanonError):
    """A bundle could not be decoded (structure or version)."""

    code = ErrorClass.BUNDLE_FORMAT


class ClaimValidationError(RecanonError):
    """A sealed-claim row violates a write-time constraint."""

    code = ErrorClass.CLAIM_REJECTED

    def __init__(self, violation: ClaimRowCode, message: str):
        self.violation = violation
        super().__init__(f"{violation.value}: {message}")
