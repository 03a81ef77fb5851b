"""Sealed-claim rows: write-time validation and the in-process claim store.

Row constraints mirror the persisted shape: bounded text columns, an
enumerated bundle version and mode, hash columns in ``(sha256:)?hex{64}``
form, a JSON object payload and an optional JSON array of sources, both
size-capped. A structural pass then re-checks the snapshot embedded in the
payload. Every violation kind has its own ClaimRowCode.
"""

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel

from recanon.codes import ClaimRowCode
from recanon.errors import ClaimValidationError
from recanon.kernel.hash_utils import HASH_PATTERN, strip_prefix, try_normalize_hash
from recanon.kernel.snapshot import VAR_COUNT
from recanon._internal.canonical_json import canonical_size
from recanon._internal.io.claim_bundle import KNOWN_CLAIM_BUNDLE_VERSIONS, ClaimBundle

MAX_TITLE_CHARS = 500
MAX_STATEMENT_CHARS = 5000
MAX_SUBJECT_CHARS = 500
MAX_KEYWORDS_CHARS = 2000
MAX_PAYLOAD_BYTES = 200_000
MAX_SOURCES_BYTES = 100_000

DEFAULT_LIST_LIMIT = 50

_SEARCH_COLUMNS = ("title", "statement", "subject", "poster_hash", "keywords")


class SealedClaimRow(BaseModel):
    """One stored sealed claim."""
    id: str
    created_at: datetime
    bundle_version: str
    mode: str
    claim_type: Optional[str] = None
    title: Optional[str] = None
    statement: Optional[str] = None
    subject: Optional[str] = None
    event_date: Optional[str] = None
    poster_hash: str
    animation_hash: Optional[str] = None
    sources: Optional[List[Any]] = None
    bundle_json: Dict[str, Any]
    keywords: Optional[str] = None


def build_keywords(bundle: ClaimBundle) -> str:
    """Lower-cased search text: claim text, source labels and urls, bare poster hash."""
    claim = bundle.claim
    parts = [p for p in (claim.title, claim.statement, claim.subject, claim.notes) if p]
    for source in bundle.sources:
        if source.label:
            parts.append(source.label)
        if source.url:
            parts.append(source.url)
    if bundle.baseline.poster_hash:
        parts.append(strip_prefix(bundle.baseline.poster_hash))
    return " ".join(parts).lower()


def _normalized_or_raw(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return try_normalize_hash(value) or value.strip()


def row_values_from_bundle(bundle: ClaimBundle) -> Dict[str, Any]:
    """Column values for a bundle, hashes normalized where well-formed."""
    poster = _normalized_or_raw(bundle.baseline.poster_hash) or ""
    animation = _normalized_or_raw(bundle.baseline.animation_hash)
    payload = bundle.model_dump(by_alias=True, mode="json")
    payload["baseline"] = {"posterHash": poster, "animationHash": animation}
    return {
        "bundle_version": bundle.bundle_version,
        "mode": bundle.mode,
        "claim_type": bundle.claim.type or None,
        "title": bundle.claim.title or None,
        "statement": bundle.claim.statement or None,
        "subject": bundle.claim.subject or None,
        "event_date": bundle.claim.event_date or None,
        "poster_hash": poster,
        "animation_hash": animation,
        "sources": payload["sources"],
        "bundle_json": payload,
        "keywords": build_keywords(bundle),
    }


def _check_length(values: Mapping[str, Any], column: str, limit: int, code: ClaimRowCode) -> None:
    value = values.get(column)
    if value is not None and len(value) > limit:
        raise ClaimValidationError(code, f"{column} exceeds {limit} characters ({len(value)})")


def validate_claim_row(values: Mapping[str, Any]) -> None:
    """Enforce the write-time row constraints.

    Raises:
        ClaimValidationError: On the first violated constraint, tagged with
            its ClaimRowCode.
    """
    _check_length(values, "title", MAX_TITLE_CHARS, ClaimRowCode.TITLE_TOO_LONG)
    _check_length(values, "statement", MAX_STATEMENT_CHARS, ClaimRowCode.STATEMENT_TOO_LONG)
    _check_length(values, "subject", MAX_SUBJECT_CHARS, ClaimRowCode.SUBJECT_TOO_LONG)
    _check_length(values, "keywords", MAX_KEYWORDS_CHARS, ClaimRowCode.KEYWORDS_TOO_LONG)

    if values.get("bundle_version") not in KNOWN_CLAIM_BUNDLE_VERSIONS:
        raise ClaimValidationError(
            ClaimRowCode.BUNDLE_VERSION_INVALID,
            f"bundle_version must be one of {list(KNOWN_CLAIM_BUNDLE_VERSIONS)}",
        )
    mode = values.get("mode")
    if mode not in ("static", "loop"):
        raise ClaimValidationError(ClaimRowCode.MODE_INVALID, f"mode must be static or loop, got {mode!r}")

    poster = values.get("poster_hash")
    if not isinstance(poster, str) or not HASH_PATTERN.fullmatch(poster):
        raise ClaimValidationError(ClaimRowCode.POSTER_HASH_FORMAT, "poster_hash is not a SHA-256 hash")
    animation = values.get("animation_hash")
    if animation is not None and (not isinstance(animation, str) or not HASH_PATTERN.fullmatch(animation)):
        raise ClaimValidationError(ClaimRowCode.ANIMATION_HASH_FORMAT, "animation_hash is not a SHA-256 hash")

    payload = values.get("bundle_json")
    if not isinstance(payload, dict):
        raise ClaimValidationError(ClaimRowCode.PAYLOAD_NOT_OBJECT, "bundle_json must be a JSON object")
    if canonical_size(payload) > MAX_PAYLOAD_BYTES:
        raise ClaimValidationError(
            ClaimRowCode.PAYLOAD_TOO_LARGE, f"bundle_json exceeds {MAX_PAYLOAD_BYTES} bytes"
        )
    sources = values.get("sources")
    if sources is not None:
        if not isinstance(sources, list):
            raise ClaimValidationError(ClaimRowCode.SOURCES_NOT_ARRAY, "sources must be a JSON array")
        if canonical_size(sources) > MAX_SOURCES_BYTES:
            raise ClaimValidationError(
                ClaimRowCode.SOURCES_TOO_LARGE, f"sources exceeds {MAX_SOURCES_BYTES} bytes"
            )

    _validate_payload_structure(payload, mode, animation)


def _validate_payload_structure(payload: Dict[str, Any], mode: str, animation_hash: Optional[str]) -> None:
    snapshot = payload.get("snapshot")
    if not isinstance(snapshot, dict):
        raise ClaimValidationError(ClaimRowCode.SNAPSHOT_MISSING, "Bundle must contain snapshot object")
    code = snapshot.get("code")
    if not isinstance(code, str) or not code.strip():
        raise ClaimValidationError(ClaimRowCode.CODE_MISSING, "Snapshot must contain non-empty code string")
    seed = snapshot.get("seed")
    if isinstance(seed, bool) or not isinstance(seed, (int, float)):
        raise ClaimValidationError(ClaimRowCode.SEED_INVALID, "Snapshot seed must be a number")
    vars_ = snapshot.get("vars")
    if not isinstance(vars_, list):
        raise ClaimValidationError(ClaimRowCode.VARS_INVALID, "Snapshot vars must be an array")
    if len(vars_) != VAR_COUNT:
        raise ClaimValidationError(
            ClaimRowCode.VARS_LENGTH,
            f"Snapshot vars must have exactly {VAR_COUNT} elements, got {len(vars_)}",
        )
    if mode == "loop" and (not animation_hash or not animation_hash.strip()):
        raise ClaimValidationError(ClaimRowCode.LOOP_NO_ANIMATION, "Loop mode claims require animation_hash")


class ClaimStore:
    """In-process sealed-claim registry with a unique poster hash.

    Thread-safe. ``clock`` and ``id_factory`` are injectable for tests.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._lock = threading.Lock()
        self._rows: List[SealedClaimRow] = []
        self._by_id: Dict[str, SealedClaimRow] = {}
        self._by_hash: Dict[str, SealedClaimRow] = {}

    def insert(self, bundle: ClaimBundle) -> SealedClaimRow:
        """Validate and store a bundle; a duplicate poster hash returns the existing row.

        Raises:
            ClaimValidationError: If the row violates a write-time constraint.
        """
        values = row_values_from_bundle(bundle)
        validate_claim_row(values)
        key = strip_prefix(values["poster_hash"]).lower()
        with self._lock:
            existing = self._by_hash.get(key)
            if existing is not None:
                return existing
            row = SealedClaimRow(id=self._id_factory(), created_at=self._clock(), **values)
            self._rows.append(row)
            self._by_id[row.id] = row
            self._by_hash[key] = row
            return row

    def get(self, claim_id: str) -> Optional[SealedClaimRow]:
        with self._lock:
            return self._by_id.get(claim_id)

    def get_by_hash(self, poster_hash: str) -> Optional[SealedClaimRow]:
        """Look up by poster hash, bare or prefixed, any case."""
        key = strip_prefix(poster_hash).lower()
        with self._lock:
            return self._by_hash.get(key)

    def list(
        self,
        q: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> List[SealedClaimRow]:
        """Newest first, optionally filtered by a case-insensitive substring."""
        with self._lock:
            # Insertion order breaks created_at ties.
            rows = list(reversed(self._rows))
        rows.sort(key=lambda r: r.created_at, reverse=True)
        term = (q or "").strip().lower()
        if term:
            rows = [r for r in rows if _matches(r, term)]
        return rows[offset:offset + limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


def _matches(row: SealedClaimRow, term: str) -> bool:
    for column in _SEARCH_COLUMNS:
        value = getattr(row, column)
        if value and term in value.lower():
            return True
    return False
