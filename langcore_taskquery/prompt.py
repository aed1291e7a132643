"""Prompt construction for the parsing model.

:class:`PromptBuilder` is a pure function of its inputs: the same
residual text and :class:`ParserSettings` always render byte-identical
messages.  Property sections are generated from the same settings and
vocabulary the syntax extractor resolves against.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from langcore_taskquery.schema import describe_schema
from langcore_taskquery.stop_words import stop_words_list
from langcore_taskquery.vocabulary import (
    DUE_DATE_KEYWORD_DESCRIPTIONS,
    due_date_terms,
    priority_terms,
    status_terms,
)

if TYPE_CHECKING:
    from langcore_taskquery.config import ParserSettings


@dataclass(frozen=True, slots=True)
class PromptMessages:
    """System + user message pair sent to the parsing model."""

    system: str
    user: str

    def to_messages(self) -> list[dict[str, str]]:
        """Return the pair in OpenAI chat format."""
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


# ------------------------------------------------------------------
# Static sections
# ------------------------------------------------------------------

_ROLE = """\
You are a query parser for a task management system. Parse the user's \
natural-language query into structured filters (priority, status, due \
date, folder, tags) and content keywords with semantic expansions."""

_JSON_RULES = """\
### Output rules

Return **only** one JSON object.  No markdown headings, no code \
fences, no explanations before or after it.  Start with { and end \
with }.  Use null for properties the query does not mention."""

_EXCLUSIVITY = """\
### Mutual exclusivity

Every word of the query contributes to exactly ONE of:
- a property (dueDate / dueDateRange, status, priority, folder, tags), or
- a content keyword (coreKeywords / keywords).

A word that sets a property must NOT appear in coreKeywords or \
keywords, and property words must not be expanded."""

_DISAMBIGUATION = """\
### Disambiguation order

When a word could mean more than one thing, decide in this order:
1. due-date cue (deadline, today, next week, overdue, ...) → dueDate
2. status cue (a status key, display name or alias below) → status
3. priority cue (urgent, high, low, ...) → priority
4. otherwise → content keyword

If a term is a status category (see STATUS MAPPING), it is a status, \
not a priority."""


class PromptBuilder:
    """Build the instruction messages for one parse.

    Example::

        messages = PromptBuilder().build("fix login bug", settings)
        messages.to_messages()
    """

    def build(self, residual_text: str, settings: ParserSettings) -> PromptMessages:
        """Assemble the system and user messages.

        Parameters:
            residual_text: Query text left after explicit syntax was
                stripped.
            settings: Languages, expansion counts and vocabularies.

        Returns:
            A :class:`PromptMessages` pair.
        """
        sections = [
            _ROLE,
            _JSON_RULES,
            "### Output schema\n\n" + describe_schema(),
            self._expansion_section(settings),
            _EXCLUSIVITY,
            _DISAMBIGUATION,
            self._priority_section(settings),
            self._status_section(settings),
            self._due_date_section(settings),
            self._stop_words_section(settings),
        ]
        system = "\n\n".join(sections)
        user = (
            f"Parse this query: {json.dumps(residual_text, ensure_ascii=False)}\n\n"
            "Return ONLY valid JSON. Start with { and end with }."
        )
        return PromptMessages(system=system, user=user)

    # ------------------------------------------------------------------
    # Generated sections
    # ------------------------------------------------------------------

    def _expansion_section(self, settings: ParserSettings) -> str:
        languages = settings.languages
        per_language = settings.expansions_per_language
        total = settings.max_keywords_per_core
        if not settings.enable_semantic_expansion:
            return (
                "### Keyword expansion\n\n"
                "Semantic expansion is DISABLED. keywords = coreKeywords plus "
                f"one direct equivalent in each of the {len(languages)} "
                f"languages ({', '.join(languages)}): {total} variations per "
                "core keyword."
            )

        lines = [
            "### Keyword expansion",
            "",
            f"Languages: {len(languages)} ({', '.join(languages)})",
            f"Expansions per language per core keyword: {per_language}",
            f"Total variations per core keyword: {total} ({per_language} × {len(languages)})",
            "",
            "For EACH core keyword, generate EXACTLY these counts of semantic "
            "equivalents (synonyms, related terms, alternative phrasings), "
            "directly in each language, regardless of the keyword's own language:",
        ]
        for language in languages:
            lines.append(f"- {language}: {per_language} equivalents")
        lines.extend(
            [
                "",
                f"Do not stop early: examples elsewhere are illustrative, the "
                f"required count is {per_language} per language. keywords must "
                "also contain every coreKeyword unchanged.",
            ]
        )
        return "\n".join(lines)

    def _priority_section(self, settings: ParserSettings) -> str:
        labels = {1: "highest/high", 2: "medium", 3: "low", 4: "none/no priority"}
        lines = ["### PRIORITY MAPPING", ""]
        for level, terms in priority_terms(settings).items():
            words = ", ".join(t for t in terms if not t.isdigit())
            suffix = f" ({words})" if words else ""
            lines.append(f"- {level} = {labels[level]}{suffix}")
        lines.extend(
            [
                "",
                "Specific level mentioned → priority: 1-4. Several levels → an "
                "array, e.g. [1, 2]. Priority not mentioned → null.",
            ]
        )
        return "\n".join(lines)

    def _status_section(self, settings: ParserSettings) -> str:
        keys = list(settings.status_mapping)
        terms = status_terms(settings)
        lines = [
            f"### STATUS MAPPING ({len(keys)} categories)",
            "",
            "Valid keys: " + ", ".join(f'"{k}"' for k in keys),
        ]
        for key, category in settings.status_mapping.items():
            symbols = ", ".join(f"[{s}]" for s in category.symbols)
            detail = f"- \"{key}\" = {category.display_name}"
            if category.description:
                detail += f": {category.description}"
            detail += f" (terms: {', '.join(terms[key])}"
            if symbols:
                detail += f"; symbols: {symbols}"
            detail += ")"
            lines.append(detail)
        lines.extend(
            [
                "",
                "Return category KEYS, never display names. Several statuses "
                "→ an array of keys.",
            ]
        )
        return "\n".join(lines)

    def _due_date_section(self, settings: ParserSettings) -> str:
        terms = due_date_terms(settings)
        lines = ["### DUE DATE VALUES", ""]
        for keyword, description in DUE_DATE_KEYWORD_DESCRIPTIONS.items():
            examples = terms.get(keyword)
            suffix = f" (e.g. {', '.join(examples)})" if examples else ""
            lines.append(f'- "{keyword}" = {description}{suffix}')
        lines.extend(
            [
                '- "+Nd" / "+Nw" / "+Nm" = relative offset, e.g. "+5d"',
                '- "YYYY-MM-DD" = a specific date',
                "",
                "General due-date words ("
                + ", ".join(terms["general"])
                + ') without a specific time → dueDate: "any".',
            ]
        )
        return "\n".join(lines)

    def _stop_words_section(self, settings: ParserSettings) -> str:
        words = stop_words_list(settings.user_stop_words)
        return (
            "### STOP WORDS\n\n"
            "Never return these as keywords: "
            + ", ".join(f'"{w}"' for w in words)
        )
