"""
Heuristics for pulling JSON out of free-form model output.

These are best-effort: a failed extraction is never an error. Callers of
JSON mode receive the raw text back and must validate it themselves.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from ai_gateway.models import FunctionCall, ToolCall, new_tool_call_id

logger = logging.getLogger(__name__)

_OBJECT_START = re.compile(r"\{")
_decoder = json.JSONDecoder()


def extract_first_json_object(text: str, require_key: str | None = None) -> str | None:
    """
    Return the source slice of the first complete JSON object in `text`.

    Candidate objects start at each `{` in order; nested braces and trailing
    garbage are handled by the JSON decoder. With `require_key`, objects
    lacking that top-level key are skipped (an inner object may still match).
    """
    for match in _OBJECT_START.finditer(text):
        start = match.start()
        try:
            obj, end = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        if require_key is not None and require_key not in obj:
            continue
        return text[start:end]
    return None


def extract_json(text: str) -> str:
    """
    Slice `text` from its first `{`/`[` to the last matching closer.

    Whichever opener appears first decides the closer. If the slice does not
    parse, the original text is returned unchanged. Already-clean JSON comes
    back as-is, so the function is idempotent.
    """
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text

    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end < start:
        return text

    candidate = text[start : end + 1]
    try:
        json.loads(candidate)
    except json.JSONDecodeError:
        logger.debug("JSON extraction failed; returning raw text")
        return text
    return candidate


def parse_tool_call(text: str) -> ToolCall | None:
    """
    Parse an emulated tool call of the form {"tool": name, "arguments": {...}}.

    Returns None when no well-formed call is found.
    """
    raw = extract_first_json_object(text, require_key="tool")
    if raw is None:
        return None

    obj = json.loads(raw)
    name = obj.get("tool")
    arguments = obj.get("arguments", {})
    if not isinstance(name, str) or not name or not isinstance(arguments, dict):
        return None

    return ToolCall(
        id=new_tool_call_id(),
        function=FunctionCall(name=name, arguments=json.dumps(arguments)),
    )


def decode_arguments(arguments: str | None) -> dict[str, Any] | None:
    """
    Decode a client-supplied tool-call `arguments` string.

    The field is free text on the wire; None means it is not a JSON object.
    An empty string decodes to {}.
    """
    if not arguments or not arguments.strip():
        return {}
    try:
        value = json.loads(arguments)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None
