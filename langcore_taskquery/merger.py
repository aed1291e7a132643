"""Combine explicit syntax with the model's parse.

Rules, applied in order by :meth:`ResultMerger.merge`:

1. explicit properties override model properties of the same name;
2. model keywords pass through stop-word filtering;
3. every core keyword is kept in ``keywords``;
4. a model answer with no keywords and no properties falls back to
   whitespace tokenization of the residual query;
5. expansion metadata is computed from the final keyword lists.

:meth:`ResultMerger.degrade` builds the explicit-syntax-only result
used when the model call or its parsing failed.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from langcore_taskquery.models import (
    AIUnderstanding,
    DueDateRange,
    ExpansionMetadata,
    ParsedQuery,
    StandardProperties,
    TokenUsage,
)
from langcore_taskquery.stop_words import filter_stop_words, is_cjk
from langcore_taskquery.syntax import StandardSyntaxExtractor
from langcore_taskquery.vocabulary import property_trigger_words, resolve_status_value

if TYPE_CHECKING:
    from langcore_taskquery.config import ParserSettings
    from langcore_taskquery.errors import QueryParserError

logger = logging.getLogger(__name__)

# Expansion below this share of the configured target is logged.
_COVERAGE_WARNING_RATIO = 0.3

_SWEDISH_RE = re.compile(r"[åäöÅÄÖ]")
_EDGE_PUNCTUATION = ".,;:!?\"'()[]{}<>"

FALLBACK_EXPLICIT_ONLY = "explicit syntax only"


# ------------------------------------------------------------------
# Coercion helpers for loose model output
# ------------------------------------------------------------------


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _dedupe(words: Iterable[str]) -> list[str]:
    """Drop case-insensitive duplicates, keeping first occurrences."""
    seen: set[str] = set()
    out: list[str] = []
    for word in words:
        key = word.lower()
        if key not in seen:
            seen.add(key)
            out.append(word)
    return out


def _coerce_priority(value: Any) -> tuple[int, ...]:
    """Accept ``1``, ``"2"``, ``[1, "2"]``; drop anything outside 1-4."""
    if value is None:
        return ()
    items = value if isinstance(value, (list, tuple)) else [value]
    levels: list[int] = []
    for item in items:
        if isinstance(item, bool):
            continue
        try:
            level = int(item)
        except (TypeError, ValueError):
            continue
        if 1 <= level <= 4 and level not in levels:
            levels.append(level)
    return tuple(levels)


def _coerce_status(value: Any, settings: ParserSettings) -> tuple[str, ...]:
    """Map model status values to category keys; unknown values are dropped."""
    keys: list[str] = []
    for item in _as_str_list(value):
        key = resolve_status_value(item, settings)
        if key is None:
            logger.debug("Ignoring unknown status %r from model", item)
            continue
        if key not in keys:
            keys.append(key)
    return tuple(keys)


def _coerce_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _coerce_range(value: Any) -> DueDateRange | None:
    if not isinstance(value, dict):
        return None
    start = _coerce_str(value.get("start"))
    end = _coerce_str(value.get("end"))
    if start is None and end is None:
        return None
    return DueDateRange(start=start, end=end)


def _coerce_tags(value: Any) -> tuple[str, ...]:
    return tuple(_dedupe(t.lstrip("#") for t in _as_str_list(value) if t.lstrip("#")))


def _coerce_understanding(value: Any) -> AIUnderstanding | None:
    if not isinstance(value, dict):
        return None
    confidence = value.get("confidence")
    try:
        confidence = max(0.0, min(1.0, float(confidence))) if confidence is not None else None
    except (TypeError, ValueError):
        confidence = None
    mappings = value.get("semanticMappings")
    natural = value.get("naturalLanguageUsed")
    return AIUnderstanding(
        detected_language=_coerce_str(value.get("detectedLanguage")),
        corrected_typos=tuple(_as_str_list(value.get("correctedTypos"))),
        semantic_mappings=(
            {str(k): str(v) for k, v in mappings.items() if v is not None}
            if isinstance(mappings, dict)
            else {}
        ),
        confidence=confidence,
        natural_language_used=natural if isinstance(natural, bool) else None,
    )


# ------------------------------------------------------------------
# Diagnostics
# ------------------------------------------------------------------


def language_distribution(keywords: Iterable[str]) -> dict[str, int]:
    """Heuristic script-based guess at how many keywords each language has.

    Only CJK characters and Swedish letters are detected; everything
    else counts as ``"latin/other"``.  Diagnostic output, not a
    language detector.
    """
    counts = {"cjk": 0, "swedish": 0, "latin/other": 0}
    for word in keywords:
        if is_cjk(word):
            counts["cjk"] += 1
        elif _SWEDISH_RE.search(word):
            counts["swedish"] += 1
        else:
            counts["latin/other"] += 1
    return counts


# ------------------------------------------------------------------
# ResultMerger
# ------------------------------------------------------------------


class ResultMerger:
    """Build the final :class:`ParsedQuery` from both parse sources."""

    def __init__(self, extractor: StandardSyntaxExtractor | None = None) -> None:
        self._extractor = extractor or StandardSyntaxExtractor()

    def merge(
        self,
        standard: StandardProperties,
        ai_parsed: dict[str, Any],
        raw_query: str,
        settings: ParserSettings,
        token_usage: TokenUsage | None = None,
    ) -> ParsedQuery:
        """Merge explicit properties with the model's JSON object.

        Parameters:
            standard: Properties extracted from explicit syntax.
            ai_parsed: Decoded JSON object returned by the model.
            raw_query: The query exactly as typed.
            settings: Supplies stop words, vocabularies and targets.
            token_usage: Usage of the model call, attached as-is.

        Returns:
            The merged :class:`ParsedQuery`.
        """
        stop = settings.user_stop_words

        priority = standard.priority or _coerce_priority(ai_parsed.get("priority"))
        status = standard.status or _coerce_status(ai_parsed.get("status"), settings)
        if standard.due_date or standard.due_date_range:
            due_date, due_range = standard.due_date, standard.due_date_range
        else:
            due_date = _coerce_str(ai_parsed.get("dueDate"))
            due_date = due_date.lower() if due_date else None
            due_range = None if due_date else _coerce_range(ai_parsed.get("dueDateRange"))
        folder = standard.folder or _coerce_str(ai_parsed.get("folder"))
        tags = standard.tags or _coerce_tags(ai_parsed.get("tags"))

        core = _dedupe(filter_stop_words(_as_str_list(ai_parsed.get("coreKeywords")), stop))
        expanded = _dedupe(filter_stop_words(_as_str_list(ai_parsed.get("keywords")), stop))

        property_words = property_trigger_words(
            settings,
            priority=bool(priority),
            status=bool(status),
            due=bool(due_date or due_range),
        ) | {s.lower() for s in standard.status}
        if property_words:
            core = [w for w in core if w.lower() not in property_words]
            expanded = [w for w in expanded if w.lower() not in property_words]

        has_properties = bool(priority or status or due_date or due_range or folder or tags)
        if not core and not expanded and not has_properties:
            core = self._fallback_tokens(raw_query, settings)
            logger.warning(
                "Model returned no keywords and no properties; "
                "falling back to %d tokens from the query",
                len(core),
            )

        # Core keywords first, then expansions; nothing original is lost.
        keywords = _dedupe(core + expanded)
        keywords = self._cap(core, keywords, settings)
        self._log_coverage(core, keywords, settings)

        return ParsedQuery(
            core_keywords=tuple(core),
            keywords=tuple(keywords),
            priority=priority,
            status=status,
            due_date=due_date,
            due_date_range=due_range,
            folder=folder,
            tags=tags,
            original_query=raw_query,
            expansion_metadata=ExpansionMetadata(
                enabled=settings.enable_semantic_expansion,
                expansions_per_language_per_keyword=settings.expansions_per_language,
                languages_used=tuple(settings.languages),
                core_keywords_count=len(core),
                total_keywords=len(keywords),
            ),
            ai_understanding=_coerce_understanding(ai_parsed.get("aiUnderstanding")),
            token_usage=token_usage,
        )

    def degrade(
        self,
        standard: StandardProperties,
        error: QueryParserError,
        raw_query: str,
        parser_model: str | None = None,
        token_usage: TokenUsage | None = None,
    ) -> ParsedQuery:
        """Explicit-syntax-only result carrying why the model path failed."""
        details = dataclasses.replace(error.info, fallback_used=FALLBACK_EXPLICIT_ONLY)
        logger.warning(
            "AI parsing failed (%s); using explicit syntax only: %s",
            parser_model or error.model,
            error.info.message,
        )
        return ParsedQuery(
            priority=standard.priority,
            status=standard.status,
            due_date=standard.due_date,
            due_date_range=standard.due_date_range,
            folder=standard.folder,
            tags=standard.tags,
            original_query=raw_query,
            parser_error=error.info.message,
            parser_model=parser_model or error.model,
            parser_error_details=details,
            token_usage=token_usage,
        )

    def explicit_only(self, standard: StandardProperties, raw_query: str) -> ParsedQuery:
        """Result for a query made entirely of explicit syntax."""
        return ParsedQuery(
            priority=standard.priority,
            status=standard.status,
            due_date=standard.due_date,
            due_date_range=standard.due_date_range,
            folder=standard.folder,
            tags=standard.tags,
            original_query=raw_query,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fallback_tokens(self, raw_query: str, settings: ParserSettings) -> list[str]:
        residual = self._extractor.strip(raw_query)
        tokens = (t.strip(_EDGE_PUNCTUATION) for t in residual.split())
        return _dedupe(filter_stop_words(tokens, settings.user_stop_words))

    def _cap(self, core: list[str], keywords: list[str], settings: ParserSettings) -> list[str]:
        if not core:
            return keywords
        limit = len(core) * (1 + settings.max_keywords_per_core)
        if len(keywords) > limit:
            logger.debug("Trimming %d keywords to %d", len(keywords), limit)
            return keywords[:limit]
        return keywords

    def _log_coverage(self, core: list[str], keywords: list[str], settings: ParserSettings) -> None:
        if not core or not settings.enable_semantic_expansion:
            return
        target = len(core) * settings.max_keywords_per_core
        produced = len(keywords) - len(core)
        if produced < target * _COVERAGE_WARNING_RATIO:
            logger.warning(
                "Semantic expansion under target: %d expansions for %d core "
                "keywords (target %d); the model may be ignoring expansion counts",
                produced,
                len(core),
                target,
            )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Keyword language distribution (heuristic, by script): %s",
                language_distribution(keywords),
            )
