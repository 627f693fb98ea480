"""Text-embedded function-call protocol.

Models that do not reliably emit structured tool calls are asked to write
`FUNCTION_CALL: name({...json...})` somewhere in their reply. This module
finds the first such call, parses its JSON argument object and reports the
exact span so the caller can strip it from the displayed narration.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

FUNCTION_CALL_MARKER = "FUNCTION_CALL:"

_HEADER_PATTERN = re.compile(r"FUNCTION_CALL:\s*([A-Za-z_][A-Za-z0-9_]*)\s*\(\s*")
_CLOSING_PAREN_PATTERN = re.compile(r"\s*\)")
_RESIDUE_PATTERN = re.compile(r"FUNCTION_CALL:[\s\S]*", flags=re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class FunctionCallMatch:
    function_name: str
    arguments: dict[str, Any]
    start: int
    end: int
    matched_text: str


def extract_function_call(text: str) -> FunctionCallMatch | None:
    """Return the first well-formed embedded call, or None.

    Malformed JSON is an expected outcome and yields None rather than raising.
    """
    header = _HEADER_PATTERN.search(text)
    if header is None:
        return None

    json_start = text.find("{", header.end())
    if json_start == -1:
        return None

    json_end = _scan_json_object(text, json_start)
    if json_end is None:
        return None

    candidate = text[json_start:json_end]
    try:
        arguments = json.loads(candidate)
    except json.JSONDecodeError:
        logger.debug("Embedded call %s has malformed JSON arguments", header.group(1))
        return None
    if not isinstance(arguments, dict):
        return None

    end = json_end
    paren = _CLOSING_PAREN_PATTERN.match(text, json_end)
    if paren is not None:
        end = paren.end()

    return FunctionCallMatch(
        function_name=header.group(1),
        arguments=arguments,
        start=header.start(),
        end=end,
        matched_text=text[header.start():end],
    )


def _scan_json_object(text: str, start: int) -> int | None:
    """Index just past the brace closing the object opened at `start`.

    Braces inside string literals are ignored, and an escaped character never
    toggles string state or counts as a brace.
    """
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return None


def strip_function_call(text: str, match: FunctionCallMatch) -> str:
    """Remove the matched span, keeping the surrounding narration."""
    before = text[: match.start].rstrip()
    after = text[match.end :].lstrip()
    if before and after:
        return f"{before}\n{after}"
    return before or after


def scrub_function_call_residue(text: str) -> str:
    """Drop any dangling marker tail the parser could not match."""
    if FUNCTION_CALL_MARKER.lower() not in text.lower():
        return text
    return _RESIDUE_PATTERN.sub("", text).strip()


def format_function_call(function_name: str, arguments: dict[str, Any]) -> str:
    return f"{FUNCTION_CALL_MARKER} {function_name}({json.dumps(arguments, ensure_ascii=False)})"
