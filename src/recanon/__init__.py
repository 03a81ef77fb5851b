"""recanon: deterministic render sealing + re-render verification."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("recanon")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
# Note: the Gateway is not imported here; it pulls in FastAPI and imports
# __version__ from this module.
from recanon.api import (
    ClaimCheckReport,
    ReplayReport,
    load_bundle,
    load_claim_bundle,
    preflight,
    preflight_file,
    replay_bundle,
    verify_artifact,
    verify_claim,
)
from recanon.client import GatewayClient
from recanon.codes import ErrorClass, PreflightCode
from recanon.errors import RecanonError
from recanon.kernel.snapshot import Snapshot, build_snapshot

__all__ = [
    "__version__",
    "ClaimCheckReport",
    "ReplayReport",
    "load_bundle",
    "load_claim_bundle",
    "preflight",
    "preflight_file",
    "replay_bundle",
    "verify_artifact",
    "verify_claim",
    "GatewayClient",
    "ErrorClass",
    "PreflightCode",
    "RecanonError",
    "Snapshot",
    "build_snapshot",
]
