"""Code preflight validation.

Static checks on program source before it is dispatched to the renderer.
Comments are stripped first (line and block, including multi-line blocks)
so commented-out code never triggers a finding.

This is text matching on comment-stripped source, not a parser. A
disallowed call inside a string literal is still reported, and a ``//``
inside a string literal ends the line for matching purposes. Both are
accepted limitations of the preflight scope.
"""

import re
from typing import List, Optional

from pydantic import BaseModel

from recanon.codes import PreflightCode

_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_LINE_COMMENT_RE = re.compile(r"//.*$", re.MULTILINE)

# The renderer owns output dimensions; sizing the canvas breaks hash comparability.
_CANVAS_OVERRIDE_RE = re.compile(r"\bcreateCanvas\s*\(")
# Ambient seed global; randomness must come from the seeded random()/noise().
_AMBIENT_SEED_RE = re.compile(r"\bSEED\b")


class PreflightIssue(BaseModel):
    """A single preflight finding."""
    code: str
    message: str
    line_number: Optional[int] = None  # 1-indexed
    line_content: Optional[str] = None  # trimmed original line


class PreflightResult(BaseModel):
    """Result of preflight. Warnings never block."""
    valid: bool
    errors: List[PreflightIssue]
    warnings: List[PreflightIssue]


def _blank_keeping_newlines(match: "re.Match[str]") -> str:
    return "\n" * match.group(0).count("\n")


def strip_comments(code: str) -> str:
    """Remove ``/* ... */`` and ``// ...`` comments.

    Block comments are replaced by their newlines so line numbers in the
    stripped text match the original source.
    """
    sanitized = _BLOCK_COMMENT_RE.sub(_blank_keeping_newlines, code)
    return _LINE_COMMENT_RE.sub("", sanitized)


def validate_code(code: str) -> PreflightResult:
    """Validate program source.

    Errors:
    - CODE_EMPTY: source is empty or whitespace only
    - CANVAS_OVERRIDE: a live ``createCanvas(`` call

    Warnings:
    - AMBIENT_SEED: a live reference to the ``SEED`` global
    """
    errors: List[PreflightIssue] = []
    warnings: List[PreflightIssue] = []

    if not isinstance(code, str) or not code.strip():
        errors.append(PreflightIssue(
            code=PreflightCode.CODE_EMPTY.value,
            message="Program source is empty",
        ))
        return PreflightResult(valid=False, errors=errors, warnings=warnings)

    original_lines = code.split("\n")
    stripped_lines = strip_comments(code).split("\n")

    for index, line in enumerate(stripped_lines):
        original = original_lines[index] if index < len(original_lines) else line
        if _CANVAS_OVERRIDE_RE.search(line):
            errors.append(PreflightIssue(
                code=PreflightCode.CANVAS_OVERRIDE.value,
                message=(
                    "Found disallowed createCanvas(). Canvas is provided by the renderer "
                    "(1950x2400); remove createCanvas() and use width/height."
                ),
                line_number=index + 1,
                line_content=original.strip(),
            ))
        if _AMBIENT_SEED_RE.search(line):
            warnings.append(PreflightIssue(
                code=PreflightCode.AMBIENT_SEED.value,
                message=(
                    "SEED global is not guaranteed by the renderer; use random() and "
                    "noise(), which are seeded from the snapshot."
                ),
                line_number=index + 1,
                line_content=original.strip(),
            ))

    return PreflightResult(valid=len(errors) == 0, errors=errors, warnings=warnings)
