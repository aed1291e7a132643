"""Tests for langcore_taskquery.merger."""

from __future__ import annotations

import logging

import pytest

from langcore_taskquery import ParserSettings, StandardProperties, TransportError
from langcore_taskquery.merger import ResultMerger, language_distribution
from langcore_taskquery.models import DueDateRange, TokenUsage

SETTINGS = ParserSettings()
EMPTY = StandardProperties()


@pytest.fixture()
def merger() -> ResultMerger:
    return ResultMerger()


class TestMergeProperties:
    """Rule 1: explicit properties override the model."""

    def test_explicit_wins(self, merger: ResultMerger) -> None:
        """Explicit priority and status beat the model's."""
        standard = StandardProperties(priority=(1,), status=("wip",))
        result = merger.merge(
            standard,
            {"priority": 3, "status": "completed", "keywords": ["report"]},
            "p1 s:wip report",
            SETTINGS,
        )
        assert result.priority == (1,)
        assert result.status == ("wip",)

    def test_model_fills_gaps(self, merger: ResultMerger) -> None:
        """Model properties are coerced when nothing explicit exists."""
        result = merger.merge(
            EMPTY,
            {
                "priority": [1, "2", 9, True],
                "status": ["in progress", "nonsense"],
                "folder": "Work",
                "tags": ["#backend", "api", "backend"],
                "keywords": ["login"],
            },
            "urgent in progress login stuff",
            SETTINGS,
        )
        assert result.priority == (1, 2)
        assert result.status == ("inProgress",)
        assert result.folder == "Work"
        assert result.tags == ("backend", "api")

    def test_due_date_excludes_range(self, merger: ResultMerger) -> None:
        """A model due date suppresses a model range."""
        result = merger.merge(
            EMPTY,
            {"dueDate": "Today", "dueDateRange": {"start": "week", "end": "next-week"}},
            "today",
            SETTINGS,
        )
        assert result.due_date == "today"
        assert result.due_date_range is None

    def test_model_range(self, merger: ResultMerger) -> None:
        """A model range is kept when no due date is given."""
        result = merger.merge(
            EMPTY, {"dueDateRange": {"start": "week", "end": None}}, "this week-ish", SETTINGS
        )
        assert result.due_date_range == DueDateRange(start="week")

    def test_explicit_range_blocks_model_due_date(self, merger: ResultMerger) -> None:
        """An explicit range is not combined with a model due date."""
        standard = StandardProperties(due_date_range=DueDateRange(end="2025-02-01"))
        result = merger.merge(standard, {"dueDate": "today"}, "q", SETTINGS)
        assert result.due_date is None
        assert result.due_date_range == DueDateRange(end="2025-02-01")


class TestMergeKeywords:
    """Rules 2-5: keyword hygiene and metadata."""

    def test_stop_words_filtered(self, merger: ResultMerger) -> None:
        """Stop words in model output are dropped."""
        result = merger.merge(
            EMPTY,
            {"coreKeywords": ["the", "bug"], "keywords": ["the", "bug", "tasks", "defect"]},
            "the bug",
            SETTINGS,
        )
        assert result.core_keywords == ("bug",)
        assert result.keywords == ("bug", "defect")

    def test_superset(self, merger: ResultMerger) -> None:
        """Core keywords the model forgot are restored, first."""
        result = merger.merge(
            EMPTY,
            {"coreKeywords": ["fix", "bug"], "keywords": ["repair", "Bug", "defect"]},
            "fix bug",
            SETTINGS,
        )
        assert result.keywords[:2] == ("fix", "bug")
        assert set(k.lower() for k in result.core_keywords) <= set(k.lower() for k in result.keywords)
        assert len(result.keywords) == 4

    def test_no_overlap_with_properties(self, merger: ResultMerger) -> None:
        """Words that set a property never stay keywords."""
        result = merger.merge(
            EMPTY,
            {
                "coreKeywords": ["report", "today", "urgent"],
                "keywords": ["report", "today", "urgent", "summary"],
                "dueDate": "today",
                "priority": 1,
            },
            "urgent report today",
            SETTINGS,
        )
        assert result.core_keywords == ("report",)
        assert "today" not in result.keywords
        assert "urgent" not in result.keywords

    def test_property_words_kept_when_property_unset(self, merger: ResultMerger) -> None:
        """Without a status, ``open`` is an ordinary keyword."""
        result = merger.merge(
            EMPTY, {"coreKeywords": ["open", "source"], "keywords": ["open", "source"]}, "open source", SETTINGS
        )
        assert result.core_keywords == ("open", "source")

    def test_fallback_tokenization(self, merger: ResultMerger) -> None:
        """An empty model answer falls back to query tokens."""
        result = merger.merge(EMPTY, {}, "Fix the login bug, please!", SETTINGS)
        assert result.core_keywords == ("Fix", "login", "bug")
        assert result.keywords == ("Fix", "login", "bug")

    def test_fallback_skips_explicit_syntax(self, merger: ResultMerger) -> None:
        """Fallback tokens come from the residual, not from ``p1``."""
        standard = StandardProperties(priority=(1,))
        result = merger.merge(standard, {}, "p1 deploy script", SETTINGS)
        assert result.priority == (1,)
        assert result.keywords == ()

        result = merger.merge(EMPTY, {}, "#ops deploy script", SETTINGS)
        assert result.keywords == ("deploy", "script")

    def test_no_fallback_when_model_set_properties(self, merger: ResultMerger) -> None:
        """Properties alone are a valid answer."""
        result = merger.merge(EMPTY, {"priority": 1}, "urgent", SETTINGS)
        assert result.keywords == ()
        assert result.priority == (1,)

    def test_keywords_capped(self, merger: ResultMerger) -> None:
        """Keywords never exceed core + target expansions per core."""
        expansions = [f"word{i}" for i in range(30)]
        result = merger.merge(
            EMPTY,
            {"coreKeywords": ["fix", "bug"], "keywords": ["fix", "bug", *expansions]},
            "fix bug",
            SETTINGS,
        )
        assert len(result.keywords) == 12
        assert result.keywords[:2] == ("fix", "bug")

    def test_expansion_metadata_from_final_counts(self, merger: ResultMerger) -> None:
        """Metadata reports what happened, not the target."""
        settings = ParserSettings(query_languages=["English", "中文"], expansions_per_language=3)
        result = merger.merge(
            EMPTY,
            {"coreKeywords": ["bug"], "keywords": ["bug", "defect", "错误", "the"]},
            "bug",
            settings,
        )
        meta = result.expansion_metadata
        assert meta is not None
        assert meta.enabled is True
        assert meta.expansions_per_language_per_keyword == 3
        assert meta.languages_used == ("English", "中文")
        assert meta.core_keywords_count == 1
        assert meta.total_keywords == 3

    def test_coverage_warning(self, merger: ResultMerger, caplog: pytest.LogCaptureFixture) -> None:
        """Expansion far below target is logged."""
        with caplog.at_level(logging.WARNING, logger="langcore_taskquery.merger"):
            merger.merge(EMPTY, {"coreKeywords": ["fix", "bug"], "keywords": ["fix", "bug"]}, "fix bug", SETTINGS)
        assert "under target" in caplog.text

    def test_ai_understanding(self, merger: ResultMerger) -> None:
        """Model self-report is coerced and clamped."""
        result = merger.merge(
            EMPTY,
            {
                "keywords": ["x1"],
                "aiUnderstanding": {
                    "detectedLanguage": "English",
                    "correctedTypos": ["urgant→urgent"],
                    "semanticMappings": {"priority": "urgent → 1", "status": None},
                    "confidence": 1.7,
                    "naturalLanguageUsed": True,
                },
            },
            "x1",
            SETTINGS,
        )
        understanding = result.ai_understanding
        assert understanding is not None
        assert understanding.confidence == 1.0
        assert understanding.semantic_mappings == {"priority": "urgent → 1"}
        assert understanding.corrected_typos == ("urgant→urgent",)

    def test_token_usage_attached(self, merger: ResultMerger) -> None:
        """Usage passes through untouched."""
        usage = TokenUsage.from_counts(1, 2, model="m", provider="openai", token_source="actual")
        result = merger.merge(EMPTY, {"keywords": ["a1"]}, "a1", SETTINGS, usage)
        assert result.token_usage is usage


class TestDegrade:
    """Rule 6: explicit-syntax-only results."""

    def test_keeps_standard_properties(self, merger: ResultMerger) -> None:
        """Degraded results keep explicit properties and explain the failure."""
        standard = StandardProperties(priority=(1,), tags=("ops",))
        error = TransportError(
            "API request failed with status 401",
            details="bad key",
            model="OpenAI: gpt-4o-mini",
            status_code=401,
        )
        result = merger.degrade(standard, error, "p1 #ops deploy", "OpenAI: gpt-4o-mini")

        assert result.is_degraded
        assert result.priority == (1,)
        assert result.tags == ("ops",)
        assert result.keywords == ()
        assert result.expansion_metadata is None
        assert result.parser_error == "API request failed with status 401"
        assert result.parser_model == "OpenAI: gpt-4o-mini"

        data = result.to_dict()
        assert data["_parserErrorDetails"]["statusCode"] == 401
        assert data["_parserErrorDetails"]["fallbackUsed"] == "explicit syntax only"
        assert data["originalQuery"] == "p1 #ops deploy"

    def test_model_defaults_to_error_model(self, merger: ResultMerger) -> None:
        """Without an explicit label the error's model is used."""
        error = TransportError("boom", model="Ollama: qwen")
        assert merger.degrade(EMPTY, error, "q").parser_model == "Ollama: qwen"


class TestLanguageDistribution:
    """Tests for the heuristic language distribution."""

    def test_counts_by_script(self) -> None:
        """CJK and Swedish letters are detected, the rest is lumped."""
        counts = language_distribution(["bug", "错误", "fel", "åtgärd"])
        assert counts == {"cjk": 1, "swedish": 1, "latin/other": 2}
