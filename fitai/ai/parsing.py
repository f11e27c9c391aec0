"""Helpers for pulling structured data out of model text.

Models answer in markdown with an embedded ``---MACROS_JSON--- {...}
---END_MACROS---`` block, or in bare JSON (JSON mode).  Parsing never
raises: unusable output yields ``None`` / empty results so the caller can
treat it as a soft failure.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from fitai.ai.types import IdentifiedFood, MacroTotals
from fitai.nutrition.portions import MAX_PORTION_GRAMS
from fitai.nutrition.reconcile import MAX_MACRO_VALUE, round_half_up

_MACROS_BLOCK = re.compile(r"---MACROS_JSON---\s*(\{.*?\})\s*---END_MACROS---", re.DOTALL)
_MACROS_BLOCK_ANY = re.compile(r"---MACROS_JSON---.*?---END_MACROS---", re.DOTALL)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")

ERROR_SENTINEL_PREFIX = "Error:"


def load_json_object(text: str | None) -> dict[str, Any] | None:
    """Parse *text* as a JSON object, tolerating markdown code fences."""
    if not text:
        return None
    cleaned = _CODE_FENCE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_macros_block(text: str) -> dict[str, Any] | None:
    """Return the JSON object inside the MACROS block, if present and valid."""
    match = _MACROS_BLOCK.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def strip_macros_block(text: str) -> str:
    return _MACROS_BLOCK_ANY.sub("", text).strip()


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_macros(block: dict[str, Any] | None) -> MacroTotals | None:
    """Macro totals from a MACROS block; all four fields must be finite numbers."""
    if not block:
        return None
    fields = ("calories", "protein", "carbs", "fats")
    if not all(_is_number(block.get(f)) and block[f] <= MAX_MACRO_VALUE for f in fields):
        return None
    return MacroTotals(**{f: max(0, round_half_up(block[f])) for f in fields})


def parse_identified_foods(block: dict[str, Any] | None) -> list[IdentifiedFood]:
    """Foods from a MACROS block.

    Accepts plain strings (legacy prompt format) or objects with
    ``name``/``portion``/``portion_grams``/``confidence``.
    """
    if not block or not isinstance(block.get("foods"), list):
        return []

    foods: list[IdentifiedFood] = []
    for item in block["foods"]:
        if isinstance(item, str):
            name = item.replace("*", "").strip()
            if name:
                foods.append(IdentifiedFood(name=name))
            continue
        if not isinstance(item, dict) or not isinstance(item.get("name"), str):
            continue

        name = item["name"].replace("*", "").strip()
        if not name:
            continue
        portion = item.get("portion")
        grams = item.get("portion_grams")
        confidence = item.get("confidence")
        foods.append(
            IdentifiedFood(
                name=name,
                portion=portion.strip() if isinstance(portion, str) and portion.strip() else "standard portion",
                portion_grams=float(grams) if _is_number(grams) and 0 < grams <= MAX_PORTION_GRAMS else None,
                confidence=min(1.0, max(0.0, float(confidence))) if _is_number(confidence) else 0.5,
            )
        )
    return foods


def is_error_sentinel(text: str | None) -> bool:
    """True for empty output or legacy ``"Error: ..."`` payloads."""
    return not text or not text.strip() or text.lstrip().startswith(ERROR_SENTINEL_PREFIX)
