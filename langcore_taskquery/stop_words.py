"""Stop-word filtering shared by the prompt builder and the merger."""

from __future__ import annotations

import re
from collections.abc import Iterable

INTERNAL_STOP_WORDS: frozenset[str] = frozenset(
    {
        # English articles, prepositions, auxiliaries
        "the", "a", "an", "and", "or", "but", "for", "of", "to", "in", "on",
        "at", "with", "by", "from", "as", "is", "was", "are", "were", "be",
        "i", "me", "my", "all", "any", "some", "please",
        "how", "what", "when", "where", "why", "which", "who", "whom", "whose",
        "do", "does", "did", "can", "could", "should", "would", "will",
        "have", "has", "had",
        # Generic task-manager nouns and verbs
        "task", "tasks", "todo", "todos", "item", "items",
        "show", "find", "list", "get", "search",
        # Chinese particles and question words
        "我", "的", "了", "吗", "呢", "啊", "如何", "怎么", "怎样", "什么",
        "哪些", "哪个", "哪里", "为什么", "任务",
        # Swedish
        "och", "eller", "att", "det", "en", "ett", "med", "för", "på", "uppgifter",
    }
)

_CJK_RE = re.compile(
    "[\u4e00-\u9fff\u3400-\u4dbf\U00020000-\U0002a6df"
    "\uf900-\ufaff\u3040-\u309f\u30a0-\u30ff]"
)


def is_cjk(text: str) -> bool:
    """Return ``True`` if *text* contains any CJK / kana character."""
    return bool(_CJK_RE.search(text))


def stop_word_set(extra: Iterable[str] = ()) -> frozenset[str]:
    """Internal stop words merged with user-configured ones (lower-cased)."""
    user = {w.strip().lower() for w in extra if w and w.strip()}
    return INTERNAL_STOP_WORDS | user


def filter_stop_words(words: Iterable[str], extra: Iterable[str] = ()) -> list[str]:
    """Drop empties, single non-CJK characters and stop words.

    Order is preserved and matching is case-insensitive.  Single CJK
    characters survive because they usually carry meaning on their own.
    """
    stop = stop_word_set(extra)
    kept: list[str] = []
    for word in words:
        word = word.strip()
        if not word:
            continue
        if len(word) == 1 and not is_cjk(word):
            continue
        if word.lower() in stop:
            continue
        kept.append(word)
    return kept


def stop_words_list(extra: Iterable[str] = ()) -> list[str]:
    """Sorted stop-word list, as rendered into the parser prompt."""
    return sorted(stop_word_set(extra))
