"""Bash error detection — classify command output and extract error features.

Features feed the worker's similar-error search, so the heuristics below are
kept deliberately simple and stable.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("error-learning")

BASH_TOOL_NAME = "Bash"
UNKNOWN_ERROR_TYPE = "unknown"

# Minimum length for an all-caps token to count as a keyword
MIN_KEYWORD_LENGTH = 4

# Exit codes too long to represent are clamped to this value
MAX_EXIT_CODE = sys.maxsize


@dataclass
class ErrorDetectionResult:
    is_error: bool
    error_message: str | None = None  # Full response text, set iff is_error
    exit_code: int | None = None      # Only when the verdict came from an exit code


@dataclass
class ErrorFeatures:
    error_type: str
    keywords: list[str] = field(default_factory=list)
    file_path: str | None = None


# Exit/return code patterns, tried in order
EXIT_CODE_PATTERNS = [
    re.compile(r"exit code[:\s]+(\d+)", re.IGNORECASE | re.ASCII),
    re.compile(r"exited with code (\d+)", re.IGNORECASE | re.ASCII),
    re.compile(r"returned (\d+)", re.IGNORECASE | re.ASCII),
]

# Failure keyword patterns, only consulted without a non-zero exit code
ERROR_KEYWORD_PATTERNS = [
    re.compile(r"error:", re.IGNORECASE | re.ASCII),
    re.compile(r"ERR!", re.IGNORECASE | re.ASCII),
    re.compile(
        r"(?:build|test|command|process|task|job|compilation)\s+failed",
        re.IGNORECASE | re.ASCII,
    ),
    re.compile(r"exception", re.IGNORECASE | re.ASCII),
]

# Error type catalog; earlier entries win
ERROR_TYPE_PATTERNS = [
    (re.compile(r"TypeError", re.IGNORECASE | re.ASCII), "TypeError"),
    (re.compile(r"SyntaxError", re.IGNORECASE | re.ASCII), "SyntaxError"),
    (re.compile(r"ReferenceError", re.IGNORECASE | re.ASCII), "ReferenceError"),
    (re.compile(r"ModuleNotFoundError", re.IGNORECASE | re.ASCII), "ModuleNotFoundError"),
    (re.compile(r"npm ERR!", re.IGNORECASE | re.ASCII), "npm"),
    (re.compile(r"pip.*error", re.IGNORECASE | re.ASCII), "pip"),
    (re.compile(r"cargo.*error", re.IGNORECASE | re.ASCII), "cargo"),
    (re.compile(r"tsc.*error", re.IGNORECASE | re.ASCII), "typescript"),
]

# OS/runtime error codes such as ENOENT or EACCES
KEYWORD_TOKEN_RE = re.compile(r"\b([A-Z][A-Z0-9_]+)\b", re.ASCII)
FILE_PATH_RE = re.compile(r"(?:/[\w.-]+)+(?:\.\w+)?", re.ASCII)


def coerce_tool_response(tool_response: Any) -> str:
    """Normalize a tool response (text, structured value or absent) to text."""
    if isinstance(tool_response, str):
        return tool_response
    if tool_response is None:
        return ""
    return json.dumps(
        tool_response,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def _parse_exit_code(digits: str) -> int:
    significant = digits.lstrip("0")
    if not significant:
        return 0
    if len(significant) > len(str(MAX_EXIT_CODE)):
        return MAX_EXIT_CODE
    return min(int(significant), MAX_EXIT_CODE)


def scan_exit_code(text: str) -> int | None:
    """Return the first exit code found in ``text``, or None."""
    for pattern in EXIT_CODE_PATTERNS:
        m = pattern.search(text)
        if m:
            return _parse_exit_code(m.group(1))
    return None


def scan_error_keywords(text: str) -> re.Pattern | None:
    """Return the first failure keyword pattern matching ``text``, or None."""
    for pattern in ERROR_KEYWORD_PATTERNS:
        if pattern.search(text):
            logger.debug("Error keyword detected: %s", pattern.pattern)
            return pattern
    return None


def detect_bash_error(tool_name: str, tool_response: Any) -> ErrorDetectionResult:
    """Decide whether a tool invocation's output represents a failed command.

    Only Bash output is considered. A non-zero exit code wins outright; an
    exit code of zero does not prove success, so keyword checks still run
    against the same text.

    Args:
        tool_name: Name of the tool that ran.
        tool_response: Raw response, either text or a structured value.

    Returns:
        ErrorDetectionResult with the full response as ``error_message``
        when a failure was detected.
    """
    if tool_name != BASH_TOOL_NAME:
        return ErrorDetectionResult(is_error=False)

    response = coerce_tool_response(tool_response)

    exit_code = scan_exit_code(response)
    if exit_code is not None and exit_code != 0:
        return ErrorDetectionResult(
            is_error=True,
            error_message=response,
            exit_code=exit_code,
        )

    if scan_error_keywords(response) is not None:
        return ErrorDetectionResult(is_error=True, error_message=response)

    return ErrorDetectionResult(is_error=False)


def extract_error_features(error_message: str) -> ErrorFeatures:
    """Derive error type, keyword tokens and file path from error text."""
    error_type = UNKNOWN_ERROR_TYPE
    for pattern, tag in ERROR_TYPE_PATTERNS:
        if pattern.search(error_message):
            error_type = tag
            break

    keywords = [
        token for token in KEYWORD_TOKEN_RE.findall(error_message)
        if len(token) >= MIN_KEYWORD_LENGTH
    ]

    m = FILE_PATH_RE.search(error_message)
    file_path = m.group(0) if m else None

    return ErrorFeatures(error_type=error_type, keywords=keywords, file_path=file_path)
