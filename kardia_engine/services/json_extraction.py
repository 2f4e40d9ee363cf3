"""
Helpers for turning raw model text into a JSON document.

The remote model is asked for ``application/json`` but sometimes wraps the
document in a Markdown code fence. Only a fence enclosing the whole body is
removed; the remainder must parse as JSON as-is.
"""

from __future__ import annotations

import json
import re
from typing import Any

from kardia_engine.llm.base import MalformedResponse

# Opening fence with optional language tag, closing fence at the very end
_FENCED_BODY = re.compile(r"\A```[ \t]*[A-Za-z0-9_+-]*[ \t]*\r?\n?(.*?)\r?\n?```\Z", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """
    Trim ``text`` and remove a surrounding code fence, if present.

    ``"```json\\n{...}\\n```"`` and ``"```\\n{...}\\n```"`` both become ``"{...}"``.
    Text that is not fully enclosed by a fence is returned trimmed but otherwise unchanged.
    """
    stripped = text.strip()
    match = _FENCED_BODY.match(stripped)
    if not match:
        return stripped
    return match.group(1).strip()


def parse_json_document(text: str) -> Any:
    """
    Strip transport artifacts and parse.

    Raises:
        MalformedResponse: if the cleaned text is empty or not valid JSON
    """
    cleaned = strip_code_fence(text)
    if not cleaned:
        raise MalformedResponse("Model returned an empty body", preview="")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Model text is not valid JSON: {e}", preview=cleaned[:500]) from e
