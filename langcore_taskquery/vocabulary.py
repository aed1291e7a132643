"""Property vocabulary shared by the syntax extractor and the prompt.

Both the regex extractor and the prompt builder read their property
terms from here (combined with :class:`ParserSettings`), so what the
model is told and what downstream resolution accepts cannot drift.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from langcore_taskquery.config import ParserSettings

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Due-date keyword tokens
# ------------------------------------------------------------------

DUE_TODAY = "today"
DUE_TOMORROW = "tomorrow"
DUE_YESTERDAY = "yesterday"
DUE_OVERDUE = "overdue"
DUE_FUTURE = "future"
DUE_ANY = "any"
DUE_NONE = "none"
DUE_WEEK = "week"
DUE_NEXT_WEEK = "next-week"
DUE_LAST_WEEK = "last-week"
DUE_MONTH = "month"
DUE_NEXT_MONTH = "next-month"
DUE_LAST_MONTH = "last-month"
DUE_YEAR = "year"
DUE_NEXT_YEAR = "next-year"
DUE_LAST_YEAR = "last-year"

DUE_DATE_KEYWORDS: tuple[str, ...] = (
    DUE_TODAY,
    DUE_TOMORROW,
    DUE_YESTERDAY,
    DUE_OVERDUE,
    DUE_FUTURE,
    DUE_ANY,
    DUE_NONE,
    DUE_WEEK,
    DUE_NEXT_WEEK,
    DUE_LAST_WEEK,
    DUE_MONTH,
    DUE_NEXT_MONTH,
    DUE_LAST_MONTH,
    DUE_YEAR,
    DUE_NEXT_YEAR,
    DUE_LAST_YEAR,
)

DUE_DATE_KEYWORD_DESCRIPTIONS: dict[str, str] = {
    DUE_TODAY: "due today",
    DUE_TOMORROW: "due tomorrow",
    DUE_YESTERDAY: "due yesterday",
    DUE_OVERDUE: "past due",
    DUE_FUTURE: "due after today",
    DUE_ANY: "has any due date",
    DUE_NONE: "has no due date",
    DUE_WEEK: "due this week",
    DUE_NEXT_WEEK: "due next week",
    DUE_LAST_WEEK: "due last week",
    DUE_MONTH: "due this month",
    DUE_NEXT_MONTH: "due next month",
    DUE_LAST_MONTH: "due last month",
    DUE_YEAR: "due this year",
    DUE_NEXT_YEAR: "due next year",
    DUE_LAST_YEAR: "due last year",
}

# ------------------------------------------------------------------
# Base multilingual terms (English, Chinese, Swedish)
# ------------------------------------------------------------------

BASE_PRIORITY_TERMS: dict[str, tuple[str, ...]] = {
    "general": ("priority", "urgent", "优先级", "优先", "紧急", "prioritet", "viktig", "brådskande"),
    "high": ("high", "highest", "top", "高", "最高", "hög", "högst", "kritisk"),
    "medium": ("medium", "normal", "中", "中等", "普通", "medel"),
    "low": ("low", "minor", "低", "次要", "låg", "mindre"),
}

# Phrase -> due-date keyword.  Only these phrases are recognized by
# the regex extractor; everything else is left to the model.
BASE_DUE_DATE_TERMS: dict[str, tuple[str, ...]] = {
    DUE_TODAY: ("today", "今天", "今日", "idag"),
    DUE_TOMORROW: ("tomorrow", "明天", "imorgon"),
    DUE_OVERDUE: ("overdue", "over due", "od", "past due", "过期", "逾期", "försenad"),
    DUE_WEEK: ("this week", "本周", "这周", "denna vecka"),
    DUE_NEXT_WEEK: ("next week", "下周", "nästa vecka"),
    DUE_MONTH: ("this month", "本月", "这月", "denna månad"),
    DUE_NEXT_MONTH: ("next month", "下月", "nästa månad"),
    DUE_FUTURE: ("upcoming", "未来", "kommande"),
}

BASE_DUE_DATE_GENERAL_TERMS: tuple[str, ...] = (
    "due",
    "deadline",
    "截止日期",
    "到期",
    "期限",
    "förfallodatum",
)

BASE_STATUS_TERMS: dict[str, tuple[str, ...]] = {
    "general": ("status", "progress", "状态", "进度", "tillstånd"),
    "open": ("open", "todo", "incomplete", "unstarted", "未完成", "待办", "öppen", "att göra"),
    "inProgress": ("in progress", "working", "ongoing", "doing", "进行中", "正在做", "pågående"),
    "completed": ("done", "completed", "finished", "完成", "已完成", "klar", "färdig"),
    "cancelled": ("cancelled", "canceled", "abandoned", "dropped", "取消", "已取消", "avbruten"),
}


def due_date_terms(settings: ParserSettings) -> dict[str, tuple[str, ...]]:
    """Due-date phrases per keyword; user terms extend ``general``."""
    terms = dict(BASE_DUE_DATE_TERMS)
    terms["general"] = BASE_DUE_DATE_GENERAL_TERMS + tuple(settings.due_date_terms)
    return terms


def priority_terms(settings: ParserSettings) -> dict[int, tuple[str, ...]]:
    """Priority level -> recognized terms (base + user mapping)."""
    base = {
        1: BASE_PRIORITY_TERMS["high"] + ("urgent", "紧急", "brådskande"),
        2: BASE_PRIORITY_TERMS["medium"],
        3: BASE_PRIORITY_TERMS["low"],
        4: (),
    }
    merged: dict[int, tuple[str, ...]] = {}
    for level in (1, 2, 3, 4):
        user = tuple(settings.priority_mapping.get(level, ()))
        merged[level] = _unique(user + base[level])
    return merged


def status_terms(settings: ParserSettings) -> dict[str, tuple[str, ...]]:
    """Category key -> recognized terms (display name, aliases, base)."""
    merged: dict[str, tuple[str, ...]] = {}
    for key, category in settings.status_mapping.items():
        terms = (category.display_name.lower(), *category.aliases, *BASE_STATUS_TERMS.get(key, ()))
        merged[key] = _unique(terms)
    return merged


def property_trigger_words(
    settings: ParserSettings,
    *,
    priority: bool = True,
    status: bool = True,
    due: bool = True,
) -> frozenset[str]:
    """Lower-cased property terms (base + user) for the selected properties."""
    words: set[str] = set()
    if priority:
        for terms in priority_terms(settings).values():
            words.update(t.lower() for t in terms if not t.isdigit())
        words.update(t.lower() for t in BASE_PRIORITY_TERMS["general"])
    if status:
        for terms in status_terms(settings).values():
            words.update(t.lower() for t in terms)
        words.update(t.lower() for t in BASE_STATUS_TERMS["general"])
    if due:
        for terms in due_date_terms(settings).values():
            words.update(t.lower() for t in terms)
    return frozenset(words)


# ------------------------------------------------------------------
# Status value resolution
# ------------------------------------------------------------------


def resolve_status_value(value: str, settings: ParserSettings) -> str | None:
    """Resolve a status value to its category key.

    Matches, in order, against the user's categories (key, alias,
    symbol) and then the built-in defaults.  Symbols are compared
    exactly first so ``"X"`` and ``"x"`` can map differently.

    Returns:
        The category key, or ``None`` if *value* is not recognized.
    """
    if not value:
        return None
    lowered = value.lower()

    for key, category in settings.status_mapping.items():
        if key.lower() == lowered:
            return key
        if lowered in (a.strip().lower() for a in category.aliases):
            return key
        if value in category.symbols or lowered in (s.lower() for s in category.symbols):
            return key

    for key, terms in BASE_STATUS_TERMS.items():
        if key == "general":
            continue
        if key.lower() == lowered or lowered in terms:
            return key

    logger.debug("Status value %r matches no category, alias or symbol", value)
    return None


def _unique(items: tuple[str, ...]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        key = item.lower()
        if key not in seen:
            seen.add(key)
            out.append(item)
    return tuple(out)
