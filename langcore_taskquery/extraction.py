"""Recover the JSON object from a model's free-form answer.

Models wrap the requested object in reasoning tags, markdown headings,
code fences or prose.  :func:`extract_json` peels those layers off in
a fixed order; :func:`parse_json_object` turns the result into a dict
or raises :class:`~langcore_taskquery.errors.ExtractionError` with
enough context to diagnose the response.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from langcore_taskquery.errors import ExtractionError
from langcore_taskquery.schema import EXPECTED_KEYS

logger = logging.getLogger(__name__)

_PREVIEW_LEN = 500

_REASONING_TAGS_RE = re.compile(
    r"<(think|reasoning|thought)>.*?</\1>",
    re.DOTALL | re.IGNORECASE,
)
_HEADING_RE = re.compile(r"^#{1,6}\s", re.MULTILINE)
_FENCED_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)

_EXTRACTION_HINTS = (
    "Use a model that follows JSON-only instructions (e.g. gpt-4o-mini, "
    "claude-sonnet-4, qwen2.5:14b or larger); lower the temperature; "
    "disable reasoning / thinking output if the model supports it."
)


# ------------------------------------------------------------------
# Candidate scanning
# ------------------------------------------------------------------


def _balanced_candidates(text: str) -> list[str]:
    """Return every top-level ``{...}`` span with balanced braces.

    Braces inside JSON string literals (including escaped quotes) do
    not count towards the depth.
    """
    candidates: list[str] = []
    depth = 0
    start = -1
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"' and depth > 0:
            in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                candidates.append(text[start : index + 1])
    return candidates


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def has_schema_keys(obj: dict[str, Any]) -> bool:
    """``True`` when *obj* carries at least one expected top-level key."""
    return any(key in obj for key in EXPECTED_KEYS)


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------


def extract_json(raw_text: str) -> str:
    """Isolate the JSON object inside *raw_text*.

    Steps, first success wins:

    1. drop ``<think>``, ``<reasoning>`` and ``<thought>`` blocks;
    2. warn (only) when markdown headings are present;
    3. a fenced block that parses as an object;
    4. collect balanced-brace candidates;
    5. the first candidate carrying an expected schema key;
    6. the first candidate that parses at all;
    7. the span from the first ``{`` to the last ``}``;
    8. the cleaned text itself.

    Returns:
        The best JSON text found.  It is not guaranteed to parse;
        :func:`parse_json_object` performs the final check.
    """
    cleaned = _REASONING_TAGS_RE.sub("", raw_text).strip()

    if _HEADING_RE.search(cleaned):
        logger.warning(
            "Model response contains markdown headings; the prompt asks for "
            "JSON only, consider a more instruction-following model"
        )

    for match in _FENCED_RE.finditer(cleaned):
        if _loads_object(match.group(1)) is not None:
            return match.group(1)

    parsable: list[tuple[str, dict[str, Any]]] = []
    for candidate in _balanced_candidates(cleaned):
        obj = _loads_object(candidate)
        if obj is not None:
            parsable.append((candidate, obj))
    for candidate, obj in parsable:
        if has_schema_keys(obj):
            return candidate
    if parsable:
        logger.debug("No JSON candidate had schema keys; using first parsable one")
        return parsable[0][0]

    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        return cleaned[first : last + 1]

    return cleaned


def parse_json_object(raw_text: str) -> dict[str, Any]:
    """Extract and parse the JSON object from a model response.

    Raises:
        ExtractionError: If no JSON object can be recovered.  The
            error details carry the response length and a preview.
    """
    obj = _loads_object(extract_json(raw_text))
    if obj is not None:
        return obj

    preview = raw_text[:_PREVIEW_LEN]
    logger.error(
        "Could not extract JSON from model response (length=%d): %r",
        len(raw_text),
        preview,
    )
    raise ExtractionError(
        "Could not extract a JSON object from the model response",
        details=f"Response length: {len(raw_text)} characters. Preview: {preview}",
        solution=_EXTRACTION_HINTS,
    )
