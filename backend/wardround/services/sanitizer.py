# /backend/wardround/services/sanitizer.py

"""
Isolate the JSON payload of a raw model response.

Models wrap JSON in markdown fences and prose ("Here is the data: ...").
sanitize() strips the fences, then cuts out the outermost balanced object or
array, whichever opens first. Pure function, never raises.
"""

import re
import logging

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

_CLOSERS = {"{": "}", "[": "]"}


def strip_fences(raw: str) -> str:
    return _FENCE.sub("", raw or "").strip()


def _balanced_end(text: str, start: int) -> int:
    """Index of the closer matching text[start], or -1 if it never closes."""
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
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return index
    return -1


def sanitize(raw: str) -> str:
    text = strip_fences(raw)

    first_brace = text.find("{")
    first_bracket = text.find("[")
    if first_brace == -1 and first_bracket == -1:
        return text

    if first_bracket == -1 or (first_brace != -1 and first_brace <= first_bracket):
        start = first_brace
    else:
        start = first_bracket

    end = _balanced_end(text, start)
    if end == -1:
        # Truncated output: fall back to the last matching closer
        end = text.rfind(_CLOSERS[text[start]])
        if end < start:
            logger.warning("Unclosed JSON container in model response")
            return text[start:]

    return text[start:end + 1]
