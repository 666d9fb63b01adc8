"""
JSON repair utilities for model output.

Local models do not always produce clean JSON in the places we need it:
tool-call arguments arrive as strings instead of objects, objects are
wrapped in markdown fences, or carry trailing commas, single quotes,
Python literals or comments. Some models skip native tool calling
altogether and write the call as JSON in their message text.

Design Principles:
    - Best effort, bounded number of repair passes
    - Never guess: return None when the text cannot be made valid
    - Only objects are accepted where arguments are expected
"""

import json
import re
from typing import Any

# Maximum number of repair passes over one candidate
MAX_REPAIR_PASSES = 3

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_UNQUOTED_KEY = re.compile(r"([{,])\s*([A-Za-z_][A-Za-z0-9_]*)\s*:")
_LINE_COMMENT = re.compile(r"//[^\n]*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
_PY_LITERALS = {r"\bTrue\b": "true", r"\bFalse\b": "false", r"\bNone\b": "null"}


def find_json_object(text: str) -> str | None:
    """
    Locate the first balanced {...} object in free text.

    Markdown code fences are searched first. String literals are skipped
    while counting braces, so braces inside values do not confuse the scan.
    """
    if not text or not text.strip():
        return None

    for fenced in _FENCE.findall(text):
        if fenced.lstrip().startswith("{"):
            return fenced.strip()

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def _repair_pass(text: str) -> str:
    text = _BLOCK_COMMENT.sub("", text)
    text = _LINE_COMMENT.sub("", text)
    text = _TRAILING_COMMA.sub(r"\1", text)
    if "'" in text and '"' not in text:
        text = text.replace("'", '"')
    text = _UNQUOTED_KEY.sub(r'\1"\2":', text)
    for pattern, replacement in _PY_LITERALS.items():
        text = re.sub(pattern, replacement, text)
    return text


def repair_json(text: str) -> str | None:
    """Return a valid JSON rendition of text, or None if repair fails."""
    for _ in range(MAX_REPAIR_PASSES + 1):
        try:
            json.loads(text)
            return text
        except json.JSONDecodeError:
            repaired = _repair_pass(text)
            if repaired == text:
                return None
            text = repaired
    return None


def loads_lenient(text: str) -> Any | None:
    """
    Parse JSON, extracting and repairing it if necessary.

    Returns the parsed value, or None if nothing usable was found.
    """
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for candidate in (find_json_object(text), text.strip()):
        if candidate:
            repaired = repair_json(candidate)
            if repaired is not None:
                return json.loads(repaired)
    return None


def coerce_arguments(raw: Any) -> dict[str, Any]:
    """
    Normalize tool-call arguments to a dict.

    Dicts pass through, strings are parsed leniently, anything that does
    not yield an object becomes an empty dict.
    """
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        parsed = loads_lenient(raw)
        if isinstance(parsed, dict):
            return parsed
    return {}


def parse_text_tool_call(text: str, known_tools: set[str]) -> tuple[str, dict[str, Any]] | None:
    """
    Recover a tool call a model wrote as JSON text instead of a native call.

    Accepts {"name": ..., "arguments": {...}} and the {"tool": ..., "args": ...}
    variant, but only for names in known_tools.
    """
    parsed = loads_lenient(text)
    if not isinstance(parsed, dict):
        return None
    name = parsed.get("name") or parsed.get("tool")
    if not isinstance(name, str) or name not in known_tools:
        return None
    arguments = parsed.get("arguments", parsed.get("parameters", parsed.get("args", {})))
    return name, coerce_arguments(arguments)
