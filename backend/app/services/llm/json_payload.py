"""Tolerant JSON recovery for model output."""
from __future__ import annotations

import json
import re
from typing import Any, Dict

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_object(text: str | None) -> Dict[str, Any]:
    """Return the first JSON object found in ``text``, or ``{}``.

    Handles bare JSON, fenced ```json blocks and objects wrapped in prose.
    """
    if not text:
        return {}
    cleaned = _FENCE_RE.sub("", str(text).strip())
    try:
        parsed = json.loads(cleaned)
        return parsed if isinstance(parsed, dict) else {}
    except json.JSONDecodeError:
        pass

    cleaned = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]+", " ", cleaned)
    start_idx = cleaned.find("{")
    end_idx = cleaned.rfind("}") + 1
    if start_idx == -1 or end_idx <= start_idx:
        return {}
    try:
        parsed = json.loads(cleaned[start_idx:end_idx])
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
