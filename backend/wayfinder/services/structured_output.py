"""Recover JSON from free-text model output.

Models wrap JSON in prose or markdown fences and routinely emit near-valid
JSON (trailing commas, missing commas, single quotes, unquoted keys,
unterminated strings, unclosed brackets). ``extract_json`` strips, slices,
repairs, parses and validates, and raises MalformedStructuredOutput rather
than returning a partial result.
"""

import json
import re
from typing import Any

from wayfinder.errors import MalformedStructuredOutput

_FENCE_RE = re.compile(r"```[a-zA-Z]*")
_CLOSERS = {"{": "}", "[": "]"}
# Last character of a complete value: string, container, number, true/false/null
_VALUE_END = set('"}]0123456789el')
# Identifier followed by a colon, in key position
_BARE_KEY_RE = re.compile(r"[A-Za-z_$][\w$-]*(?=\s*:)")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def slice_json(text: str, expect: str | None = None) -> str:
    """Return the substring from the first opener to the matching last closer.

    ``expect`` is "array", "object" or None (whichever opener comes first).
    A missing closer (truncated output) slices to the end of the text.
    """
    if expect == "array":
        openers = "["
    elif expect == "object":
        openers = "{"
    else:
        openers = "[{"

    starts = [i for i in (text.find(c) for c in openers) if i != -1]
    if not starts:
        raise ValueError("no JSON opener found")
    start = min(starts)
    end = text.rfind(_CLOSERS[text[start]])
    if end < start:
        return text[start:]
    return text[start:end + 1]


def _last_significant(out: list[str]) -> str:
    for ch in reversed(out):
        if not ch.isspace():
            return ch
    return ""


def _strip_trailing(out: list[str], chars: str):
    while out and (out[-1].isspace() or out[-1] in chars):
        out.pop()


def repair_json(text: str) -> str:
    """Single pass tolerant repair of near-valid JSON.

    Handles missing and trailing commas, single-quoted strings, unquoted
    object keys, raw control characters in strings and unclosed brackets.
    Stops once the first top-level value closes, so trailing prose is dropped.
    """
    out: list[str] = []
    stack: list[str] = []
    quote = ""  # delimiter of the open string
    escaped = False
    i = 0

    while i < len(text):
        ch = text[i]
        i += 1

        if quote:
            if escaped:
                escaped = False
                out.append(ch)
            elif ch == "\\":
                if quote == "'" and text[i:i + 1] == "'":
                    out.append("'")
                    i += 1
                else:
                    escaped = True
                    out.append(ch)
            elif ch == quote:
                quote = ""
                out.append('"')
            elif ch == '"':
                out.append('\\"')
            elif ch == "\n":
                out.append("\\n")
            elif ch in "\r\t":
                out.append("\\r" if ch == "\r" else "\\t")
            else:
                out.append(ch)
            continue

        if ch.isspace():
            out.append(ch)
            continue

        prev = _last_significant(out)
        prev_raw = out[-1] if out else ""

        if ch in "{[":
            if prev in _VALUE_END:
                out.append(",")
            stack.append(ch)
            out.append(ch)
        elif ch in "}]":
            _strip_trailing(out, ",")
            if _last_significant(out) == ":":
                out.extend("null")
            if not stack:
                continue
            # Close anything left open inside this container first
            while stack and _CLOSERS[stack[-1]] != ch:
                out.append(_CLOSERS[stack.pop()])
            if stack:
                stack.pop()
                out.append(ch)
            if not stack:
                break
        elif ch == ",":
            if prev in ("", ",", "[", "{", ":"):
                continue
            out.append(ch)
        elif ch == ":":
            out.append(ch)
        elif ch in "\"'":
            if prev in _VALUE_END:
                out.append(",")
            quote = ch
            out.append('"')
        else:
            # Bare token: number, literal or unquoted key. A new token after a finished value needs a comma.
            if prev in '"}]' or (prev in _VALUE_END and prev_raw.isspace()):
                out.append(",")
                prev = ","
            key = _BARE_KEY_RE.match(text, i - 1) if stack and stack[-1] == "{" and prev in ("{", ",") else None
            if key:
                out.append(f'"{key.group()}"')
                i = key.end()
            else:
                out.append(ch)

    if quote:
        out.append('"')
    _strip_trailing(out, ",")
    if _last_significant(out) == ":":
        out.extend("null")
    while stack:
        out.append(_CLOSERS[stack.pop()])
    return "".join(out)


def _validate(value: Any, expect: str | None, required_keys: tuple[str, ...], min_items: int) -> str | None:
    if expect == "array" and not isinstance(value, list):
        return f"expected a JSON array, got {type(value).__name__}"
    if expect == "object" and not isinstance(value, dict):
        return f"expected a JSON object, got {type(value).__name__}"
    if not value:
        return "empty JSON value"
    if isinstance(value, list):
        if len(value) < min_items:
            return f"expected at least {min_items} items, got {len(value)}"
        if required_keys:
            for i, item in enumerate(value):
                if not isinstance(item, dict):
                    return f"item {i} is not an object"
                missing = [k for k in required_keys if k not in item]
                if missing:
                    return f"item {i} missing keys: {', '.join(missing)}"
    elif isinstance(value, dict) and required_keys:
        missing = [k for k in required_keys if k not in value]
        if missing:
            return f"missing keys: {', '.join(missing)}"
    return None


def extract_json(
    text: str,
    *,
    expect: str | None = None,
    key: str | None = None,
    required_keys: tuple[str, ...] | list[str] = (),
    min_items: int = 1,
) -> Any:
    """Extract and validate a JSON value from model output.

    Args:
        text: Raw model output
        expect: "array", "object" or None for either
        key: When an array is expected and the model wrapped it in an object,
            take the array from this key
        required_keys: Keys every object (or every array item) must carry
        min_items: Minimum array length

    Raises:
        MalformedStructuredOutput when any stage fails.
    """
    if not text or not text.strip():
        raise MalformedStructuredOutput("empty model output", text or "")

    stripped = strip_code_fences(text)
    try:
        candidate = slice_json(stripped, None if key else expect)
    except ValueError as e:
        raise MalformedStructuredOutput(str(e), text) from e

    repaired: str | None = None
    try:
        # First complete value only; anything after it is prose
        value, _ = json.JSONDecoder().raw_decode(candidate)
    except json.JSONDecodeError:
        repaired = repair_json(candidate)
        try:
            value = json.loads(repaired)
        except json.JSONDecodeError as e:
            raise MalformedStructuredOutput(f"unparseable JSON after repair: {e}", text, repaired) from e

    if expect == "array" and isinstance(value, dict):
        if key and isinstance(value.get(key), list):
            value = value[key]
        else:
            lists = [v for v in value.values() if isinstance(v, list)]
            if len(lists) == 1:
                value = lists[0]

    problem = _validate(value, expect, tuple(required_keys), min_items)
    if problem:
        raise MalformedStructuredOutput(problem, text, repaired)
    return value
