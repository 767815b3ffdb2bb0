# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Recovery of JSON payloads from unreliable model output.

Models asked for JSON still wrap it in markdown fences, prefix it with
reasoning text, leave trailing commas, use single quotes, or get cut off
at the output limit. ``repair_json_text`` tries a fixed sequence of
strategies and only accepts a candidate that ``json.loads`` parses.
"""

import json
import logging
import re
from typing import Any, Callable, List, Optional, Tuple

from .errors import MalformedStructuredOutput

lib_logger = logging.getLogger("seo_llm_core")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?([\s\S]*?)\n?```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SINGLE_QUOTED_KEY_RE = re.compile(r"([{,]\s*)'([^']+)'\s*:")
_SINGLE_QUOTED_VALUE_RE = re.compile(r":\s*'([^']*)'")
_DANGLING_STRING_RE = re.compile(r',\s*"[^"]*$')
_DANGLING_KEY_RE = re.compile(r',\s*"[^"]*"\s*:\s*$')

_CLOSERS = {"{": "}", "[": "]"}


def _parses(candidate: Optional[str]) -> bool:
    if not candidate:
        return False
    try:
        json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return False
    return True


def _strip_preamble(text: str) -> Optional[str]:
    match = re.search(r"[{\[]", text)
    if not match or match.start() == 0:
        return None
    return text[match.start():]


def _fenced_block(text: str) -> Optional[str]:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else None


def _balanced_span(text: str, opener: str) -> Optional[str]:
    """
    Return the first top-level ``opener`` ... matching closer span.

    Brackets inside string literals are ignored; escapes are honoured.
    """
    start = text.find(opener)
    if start == -1:
        return None
    closer = _CLOSERS[opener]
    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        ch = text[pos]
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:pos + 1]
    return None


def _balanced_object(text: str) -> Optional[str]:
    return _balanced_span(text, "{")


def _balanced_array(text: str) -> Optional[str]:
    return _balanced_span(text, "[")


def _greedy_object(text: str) -> Optional[str]:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return text[first:last + 1]


def _without_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def _double_quoted(text: str) -> str:
    text = _SINGLE_QUOTED_KEY_RE.sub(r'\1"\2":', text)
    return _SINGLE_QUOTED_VALUE_RE.sub(r': "\1"', text)


def _trailing_comma_candidates(text: str) -> List[Optional[str]]:
    cleaned = _without_trailing_commas(text)
    return [_greedy_object(cleaned), _balanced_array(cleaned), cleaned.strip()]


def _single_quote_candidates(text: str) -> List[Optional[str]]:
    converted = _double_quoted(_without_trailing_commas(text))
    return [_greedy_object(converted), _balanced_array(converted), converted.strip()]


def close_truncated_json(text: str) -> Optional[str]:
    """
    Close brackets left open by a truncated response.

    Returns None when the text has no JSON start or nothing is left open.
    Closers are appended in nesting order, counted outside string literals.
    """
    match = re.search(r"[{\[]", text)
    if not match:
        return None
    fragment = text[match.start():].rstrip()
    fragment = _DANGLING_KEY_RE.sub("", fragment)
    fragment = _DANGLING_STRING_RE.sub("", fragment)

    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in fragment:
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]") and stack and stack[-1] == ch:
            stack.pop()

    if not stack:
        return None
    if in_string:
        fragment += '"'
    fragment = fragment.rstrip()
    if fragment.endswith(","):
        fragment = fragment[:-1]
    return fragment + "".join(reversed(stack))


# Ordered strategies; each returns zero or more candidates to validate.
_STRATEGIES: Tuple[Tuple[str, Callable[[str], List[Optional[str]]]], ...] = (
    ("strip_preamble", lambda t: [_strip_preamble(t)]),
    ("direct", lambda t: [t]),
    ("code_fence", lambda t: [_fenced_block(t)]),
    ("balanced", lambda t: [_balanced_object(t), _balanced_array(t)]),
    ("trailing_commas", _trailing_comma_candidates),
    ("single_quotes", _single_quote_candidates),
    ("truncation", lambda t: [close_truncated_json(t)]),
    ("outer_braces", lambda t: [_greedy_object(t)]),
)


def repair_json_text(raw_text: str) -> str:
    """
    Coerce a model response into text that parses as JSON.

    Returns the first candidate that parses, or ``raw_text`` unchanged when
    every strategy fails so that the caller can report the original.
    """
    if not raw_text:
        return raw_text
    for name, strategy in _STRATEGIES:
        for candidate in strategy(raw_text):
            if _parses(candidate):
                if name != "direct":
                    lib_logger.debug(f"Recovered JSON via '{name}' strategy")
                return candidate
    return raw_text


def parse_json_response(raw_text: str) -> Any:
    """
    Repair and parse a model response.

    Raises:
        MalformedStructuredOutput: No strategy produced valid JSON.
    """
    repaired = repair_json_text(raw_text)
    try:
        return json.loads(repaired)
    except (json.JSONDecodeError, ValueError, TypeError) as e:
        raise MalformedStructuredOutput(
            f"Response is not valid JSON: {e}", raw_text=raw_text
        ) from e
