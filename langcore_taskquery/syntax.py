"""Regex extraction of explicit property syntax.

Recognizes unambiguous machine syntax anywhere in the query::

    p1  p:1,2  priority:2  no priority
    s:open  status:open,wip  s:x
    d:today  due:+5d  d:2025-01-22  +3d  overdue  next week  no date
    due before: 2025-02-01  due after: next week  due before: Jan 5
    folder:Work  in folder "Work"  #tag  ##project (stripped, not a tag)

Nothing here calls a model.  Status values are validated against the
configured vocabulary but returned exactly as typed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from langcore_taskquery.models import DueDateRange, StandardProperties
from langcore_taskquery.stop_words import is_cjk
from langcore_taskquery.vocabulary import (
    BASE_DUE_DATE_TERMS,
    DUE_ANY,
    DUE_DATE_KEYWORDS,
    DUE_NONE,
    resolve_status_value,
)

if TYPE_CHECKING:
    from langcore_taskquery.config import ParserSettings

logger = logging.getLogger(__name__)

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_RELATIVE_RE = re.compile(r"^[+-]\d+[dwmy]$")
_WS_RE = re.compile(r"\s+")


def _term_pattern(term: str) -> str:
    escaped = re.escape(term).replace(r"\ ", r"\s+")
    if is_cjk(term):
        return escaped
    return rf"\b{escaped}\b"


_DUE_TERM_TO_KEYWORD: dict[str, str] = {
    term.lower(): keyword for keyword, terms in BASE_DUE_DATE_TERMS.items() for term in terms
}

_DUE_TERMS_RE = re.compile(
    "|".join(_term_pattern(t) for t in sorted(_DUE_TERM_TO_KEYWORD, key=len, reverse=True)),
    re.IGNORECASE,
)

# Order matters: longer / prefixed forms are consumed before the
# shorter patterns that would otherwise match inside them.
_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "due_range",
        re.compile(
            r"\b(?:due|date)\s+(before|after):\s*((?:(?!\b(?:due|date)\s+(?:before|after):)[^&|])+)",
            re.IGNORECASE,
        ),
    ),
    ("priority_field", re.compile(r"\b(?:p|priority):([^\s&|]+)", re.IGNORECASE)),
    ("status", re.compile(r"\b(?:s|status):([^\s&|]+)", re.IGNORECASE)),
    ("due_field", re.compile(r"\b(?:d|due):([^\s&|]+)", re.IGNORECASE)),
    ("folder", re.compile(
        r"(?:\b(?:in|from|under)\s+)?\b(?:folder|directory)(?::\s*|\s+)[\"']?([^\"'\s,&|]+)[\"']?",
        re.IGNORECASE,
    )),
    ("priority", re.compile(r"\bp([1-4])\b", re.IGNORECASE)),
    ("no_priority", re.compile(r"\bno\s+priority\b", re.IGNORECASE)),
    ("no_date", re.compile(r"(!?)\bno\s+date\b", re.IGNORECASE)),
    ("relative", re.compile(r"(?<![\w+-])([+-]\d+[dwmy])\b", re.IGNORECASE)),
    ("due_term", _DUE_TERMS_RE),
    ("project", re.compile(r"(?<![#\w])##+[\w-]+")),
    ("tag", re.compile(r"(?<![#\w])#([\w-]+)")),
    ("operator", re.compile(r"[&|!]")),
)


@dataclass(frozen=True, slots=True)
class _Hit:
    kind: str
    groups: tuple[str, ...]
    text: str


def _scan(query: str) -> tuple[list[_Hit], str]:
    """Remove every pattern until a fixpoint; return hits and residue.

    Removing a match can join its neighbours into a new match
    (``"next p1 week"`` -> ``"next week"``), so passes repeat until the
    text stops changing.  This is what makes :meth:`strip` idempotent.
    """
    hits: list[_Hit] = []
    text = query
    while True:
        before = text
        for kind, pattern in _PATTERNS:
            collect = _range_collector(hits) if kind == "due_range" else _collector(kind, hits)
            text = pattern.sub(collect, text)
        text = _WS_RE.sub(" ", text).strip()
        if text == _WS_RE.sub(" ", before).strip():
            return hits, text


def _collector(kind: str, hits: list[_Hit]) -> Callable[[re.Match[str]], str]:
    def _collect(match: re.Match[str]) -> str:
        groups = tuple(g or "" for g in match.groups())
        hits.append(_Hit(kind=kind, groups=groups, text=match.group(0)))
        return " "

    return _collect


def _range_collector(hits: list[_Hit]) -> Callable[[re.Match[str]], str]:
    """Consume the longest leading phrase of a range value that parses.

    Words after that phrase go back into the query; when no prefix
    parses, the match is left in place untouched.
    """

    def _collect(match: re.Match[str]) -> str:
        words = match.group(2).split()
        for size in range(len(words), 0, -1):
            bound = _normalize_range_value(" ".join(words[:size]))
            if bound is None:
                continue
            consumed = match.group(0)[: match.start(2) - match.start(0)] + " ".join(words[:size])
            hits.append(_Hit(kind="due_range", groups=(match.group(1), bound), text=consumed))
            return " " + " ".join(words[size:]) + " "
        logger.debug("Leaving unparseable range %r in the query", match.group(0).strip())
        return match.group(0)

    return _collect


def _normalize_due_value(value: str) -> str | None:
    lowered = value.strip().lower()
    if lowered == "all":
        return DUE_ANY
    if lowered in DUE_DATE_KEYWORDS:
        return lowered
    if _RELATIVE_RE.match(lowered) or _ISO_DATE_RE.match(lowered):
        return lowered
    return None


# Year-less formats are completed with the current year.
_CALENDAR_FORMATS: tuple[tuple[str, bool], ...] = (
    ("%Y/%m/%d", True),
    ("%b %d %Y", True),
    ("%B %d %Y", True),
    ("%b %d, %Y", True),
    ("%B %d, %Y", True),
    ("%d %b %Y", True),
    ("%d %B %Y", True),
    ("%b %d", False),
    ("%B %d", False),
    ("%d %b", False),
    ("%d %B", False),
)


def _parse_calendar_date(value: str, today: date | None = None) -> str | None:
    """Parse ``Jan 5``, ``5 January 2025``, ``2025/01/05`` to ISO form."""
    year = (today or date.today()).year
    for fmt, has_year in _CALENDAR_FORMATS:
        text, pattern = (value, fmt) if has_year else (f"{value} {year}", f"{fmt} %Y")
        try:
            return datetime.strptime(text, pattern).date().isoformat()
        except ValueError:
            continue
    return None


def _normalize_range_value(value: str) -> str | None:
    """Normalize a ``due before:`` / ``due after:`` bound, or ``None``."""
    collapsed = _WS_RE.sub(" ", value.strip().lower())
    if collapsed in (DUE_ANY, DUE_NONE, "all"):
        return None
    return (
        _normalize_due_value(collapsed)
        or _DUE_TERM_TO_KEYWORD.get(collapsed)
        or _parse_calendar_date(collapsed)
    )


def _split_values(raw: str) -> list[str]:
    return [v.strip() for v in raw.split(",") if v.strip()]


class StandardSyntaxExtractor:
    """Pull explicit properties out of a query and strip them.

    The extractor is stateless; settings are passed per call.
    """

    def extract(self, query: str, settings: ParserSettings) -> StandardProperties:
        """Extract priority, status, due date, folder and tags.

        Parameters:
            query: Raw user query.
            settings: Supplies the status vocabulary used to validate
                ``s:`` values.

        Returns:
            A :class:`StandardProperties`; fields stay empty when the
            query has no explicit syntax for them.
        """
        hits, _ = _scan(query)

        priority: list[int] = []
        status: list[str] = []
        due_field: str | None = None
        relative: str | None = None
        due_term: str | None = None
        no_date: str | None = None
        range_start: str | None = None
        range_end: str | None = None
        folder: str | None = None
        tags: list[str] = []

        for hit in hits:
            if hit.kind == "priority":
                _append_unique(priority, int(hit.groups[0]))
            elif hit.kind == "priority_field":
                for value in _split_values(hit.groups[0]):
                    if value in ("1", "2", "3", "4"):
                        _append_unique(priority, int(value))
                    elif value.lower() == "none":
                        _append_unique(priority, 4)
            elif hit.kind == "no_priority":
                _append_unique(priority, 4)
            elif hit.kind == "status":
                for value in _split_values(hit.groups[0]):
                    if resolve_status_value(value, settings) is None:
                        logger.debug("Dropping unrecognized status value %r", value)
                        continue
                    _append_unique(status, value)
            elif hit.kind == "due_field" and due_field is None:
                for value in _split_values(hit.groups[0]):
                    due_field = _normalize_due_value(value)
                    if due_field:
                        break
            elif hit.kind == "relative" and relative is None:
                relative = hit.groups[0].lower()
            elif hit.kind == "due_term" and due_term is None:
                due_term = _DUE_TERM_TO_KEYWORD.get(_WS_RE.sub(" ", hit.text.lower()))
            elif hit.kind == "no_date" and no_date is None:
                no_date = DUE_ANY if hit.groups[0] == "!" else DUE_NONE
            elif hit.kind == "due_range":
                bound = hit.groups[1]
                if hit.groups[0].lower() == "before":
                    range_end = bound
                else:
                    range_start = bound
            elif hit.kind == "folder" and folder is None:
                folder = hit.groups[0]
            elif hit.kind == "tag":
                _append_unique(tags, hit.groups[0])

        due_date = due_field or relative or due_term or no_date
        due_range = None
        if due_date is None and (range_start or range_end):
            due_range = DueDateRange(start=range_start, end=range_end)

        return StandardProperties(
            priority=tuple(priority),
            status=tuple(status),
            due_date=due_date,
            due_date_range=due_range,
            folder=folder,
            tags=tuple(tags),
        )

    def strip(self, query: str) -> str:
        """Remove all explicit syntax anywhere in *query*.

        Whitespace is collapsed; ``strip(strip(q)) == strip(q)``.
        """
        return _scan(query)[1]

    def has_residual(self, query: str) -> bool:
        """``True`` when text remains for semantic processing."""
        return bool(self.strip(query))


def _append_unique(items: list, value: object) -> None:
    if value not in items:
        items.append(value)
