"""Input checks and sanitization before anything reaches a model.

Rejects empty text and oversized or malformed images *before* a
provider call, and scrubs user text that gets interpolated into prompts.
A rejected input is a caller fault (``invalid_request``), never retried
and never sent to a fallback provider.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PrecheckResult:
    """Outcome of an input check.

    Attributes:
        passed: ``True`` when the input may be sent to a provider.
        reason: Human-readable rejection message (``None`` when passed).
    """

    passed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

MAX_LENGTHS: dict[str, int] = {
    "description": 500,
    "user_goal": 50,
    "goal": 50,
    "metrics": 1000,
    "title": 200,
    "default": 500,
}
MAX_SANITIZE_DEPTH = 5

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_DATA_URL = re.compile(r"^data:image/(png|jpe?g|webp|gif|heic);base64,([A-Za-z0-9+/=\s]+)$", re.IGNORECASE)
_RAW_BASE64 = re.compile(r"^[A-Za-z0-9+/=\s]+$")


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------


def sanitize_input(text: str, field: str = "default") -> str:
    """Truncate, strip control characters and collapse runs of blank lines."""
    max_len = MAX_LENGTHS.get(field, MAX_LENGTHS["default"])
    cleaned = _CONTROL_CHARS.sub("", text[:max_len])
    return _EXCESS_NEWLINES.sub("\n\n", cleaned).strip()


def sanitize_payload(value: Any, field: str = "default", depth: int = 0) -> Any:
    """Recursively sanitize every string inside dicts and lists.

    Dict keys select the length limit for their string values.
    """
    if depth >= MAX_SANITIZE_DEPTH:
        return value
    if isinstance(value, str):
        return sanitize_input(value, field)
    if isinstance(value, dict):
        return {k: sanitize_payload(v, k, depth + 1) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_payload(v, field, depth + 1) for v in value]
    return value


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def check_text(text: str | None, field: str = "description") -> PrecheckResult:
    """Reject empty input or input with no letters or digits at all."""
    if not text or not any(c.isalnum() for c in text):
        return PrecheckResult(passed=False, reason=f"The {field.replace('_', ' ')} must not be empty.")
    return PrecheckResult(passed=True)


def to_image_url(image: str) -> str:
    """Normalise raw base64 to a ``data:`` URL; URLs pass through."""
    stripped = image.strip()
    if stripped.startswith(("data:", "https://")):
        return stripped
    return f"data:image/jpeg;base64,{stripped}"


def check_image(image: str | None, max_bytes: int) -> PrecheckResult:
    """Validate an image given as a ``data:`` URL, raw base64 or https URL.

    Args:
        image: The payload as received from the caller.
        max_bytes: Upper limit on the decoded size.
    """
    if not image or not image.strip():
        return PrecheckResult(passed=False, reason="An image is required.")

    stripped = image.strip()
    if stripped.startswith("https://"):
        return PrecheckResult(passed=True)

    match = _DATA_URL.match(stripped)
    if match:
        payload = match.group(2)
    elif _RAW_BASE64.match(stripped):
        payload = stripped
    else:
        return PrecheckResult(passed=False, reason="Image must be a base64 data URL or an https URL.")

    decoded_size = len(payload) * 3 // 4
    if decoded_size > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        return PrecheckResult(passed=False, reason=f"Image is too large. Maximum size is ~{limit_mb:.0f}MB.")
    return PrecheckResult(passed=True)
