"""Helpers for reading structured answers out of model text."""

from __future__ import annotations

import json
import re
from typing import Any

from ..errors import StageOutputError

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def parse_json_response(raw_text: str) -> Any:
    """Parse JSON from a model response, handling markdown code fences.

    Models sometimes wrap JSON in ```json ... ``` fences or surround it with
    prose. Fenced content wins; otherwise the outermost ``{...}`` is used.

    Raises:
        StageOutputError: If no JSON can be parsed.
    """
    content = raw_text.strip()
    fenced = _FENCE_RE.search(content)
    if fenced:
        content = fenced.group(1).strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    match = _OBJECT_RE.search(content)
    if not match:
        raise StageOutputError("No JSON object found in model response")
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise StageOutputError(f"Invalid JSON in model response: {exc}") from exc
