from __future__ import annotations

import json
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any

from .errors import ParseError

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s]")

KEYWORD_FALLBACK_LIMIT = 20
KEYWORD_PRIMARY_COUNT = 8
KEYWORD_MIN_LENGTH = 4


@dataclass(frozen=True)
class Parsed:
    value: dict[str, Any]


@dataclass(frozen=True)
class Raw:
    text: str
    reason: str


ParsedOutput = Parsed | Raw


def extract_json(text: str) -> Any:
    """
    Parse JSON out of completion text.

    Models often wrap JSON in a markdown fence and surround it with prose, so
    the first fenced block wins; otherwise the whole text is tried, then the
    outermost ``{...}`` span.

    Raises:
        ParseError: no candidate decodes as JSON.
    """
    candidates: list[str] = []
    match = _FENCE_RE.search(text)
    if match:
        candidates.append(match.group(1))
    candidates.append(text.strip())
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    raise ParseError("Completion text is not valid JSON.")


def parse_structured(text: str) -> ParsedOutput:
    try:
        value = extract_json(text)
    except ParseError as e:
        return Raw(text=text, reason=str(e))
    if not isinstance(value, dict):
        return Raw(text=text, reason=f"Expected a JSON object, got {type(value).__name__}.")
    return Parsed(value=value)


def fallback_keywords(text: str) -> dict[str, Any]:
    words = _NON_WORD_RE.sub(" ", text.lower()).split()
    # Counter.most_common keeps first-seen order among equal counts
    counts = Counter(w for w in words if len(w) >= KEYWORD_MIN_LENGTH)
    ranked = [word for word, _ in counts.most_common(KEYWORD_FALLBACK_LIMIT)]
    return {
        "primary_keywords": ranked[:KEYWORD_PRIMARY_COUNT],
        "secondary_keywords": ranked[KEYWORD_PRIMARY_COUNT:],
        "technical_terms": [],
        "extraction_method": "fallback_frequency",
    }
