"""Tests for langcore_taskquery.prompt and the response schema."""

from __future__ import annotations

import json

from langcore_taskquery import ParserSettings, StatusCategory
from langcore_taskquery.prompt import PromptBuilder, PromptMessages
from langcore_taskquery.schema import EXPECTED_KEYS, AIQueryResponse, describe_schema


def _build(query: str = "fix login bug", **settings_kwargs) -> PromptMessages:
    return PromptBuilder().build(query, ParserSettings(**settings_kwargs))


class TestDescribeSchema:
    """Tests for describe_schema."""

    def test_lists_top_level_fields(self) -> None:
        """Every AIQueryResponse field is rendered."""
        text = describe_schema()
        for name in AIQueryResponse.model_fields:
            assert f'"{name}"' in text

    def test_nested_model_expanded(self) -> None:
        """Nested models render their own fields."""
        text = describe_schema()
        assert '"detectedLanguage"' in text
        assert '"semanticMappings": {' in text

    def test_braces_balanced(self) -> None:
        """The skeleton opens and closes every object."""
        text = describe_schema()
        assert text.startswith("{")
        assert text.endswith("}")
        assert text.count("{") == text.count("}")

    def test_expected_keys_are_schema_fields(self) -> None:
        """The extractor's schema keys exist on the model."""
        assert set(EXPECTED_KEYS) <= set(AIQueryResponse.model_fields)


class TestPromptBuilder:
    """Tests for PromptBuilder.build."""

    def test_deterministic(self) -> None:
        """Same input renders byte-identical messages."""
        assert _build() == _build()

    def test_to_messages(self) -> None:
        """Messages are in OpenAI chat format."""
        messages = _build().to_messages()
        assert [m["role"] for m in messages] == ["system", "user"]

    def test_user_message_quotes_query(self) -> None:
        """The residual query is JSON-quoted in the user message."""
        prompt = _build('fix "login" bug')
        assert json.dumps('fix "login" bug') in prompt.user
        assert "Return ONLY valid JSON" in prompt.user

    def test_expansion_counts_per_language(self) -> None:
        """One quota line per language plus the per-keyword total."""
        prompt = _build(query_languages=["English", "Svenska"], expansions_per_language=4)
        assert "- English: 4 equivalents" in prompt.system
        assert "- Svenska: 4 equivalents" in prompt.system
        assert "Total variations per core keyword: 8" in prompt.system

    def test_expansion_disabled(self) -> None:
        """Disabled expansion is stated explicitly."""
        prompt = _build(enable_semantic_expansion=False)
        assert "Semantic expansion is DISABLED" in prompt.system

    def test_rules_present(self) -> None:
        """Exclusivity and disambiguation rules are included."""
        system = _build().system
        assert "Mutual exclusivity" in system
        assert "Disambiguation order" in system
        assert system.index("→ dueDate") < system.index("→ status") < system.index("→ priority")

    def test_status_categories_from_settings(self) -> None:
        """Custom status categories appear with their keys and symbols."""
        prompt = _build(
            status_mapping={
                "blocked": StatusCategory(display_name="Blocked", aliases=["stuck"], symbols=["b"]),
            }
        )
        assert '"blocked" = Blocked' in prompt.system
        assert "stuck" in prompt.system
        assert "[b]" in prompt.system
        assert "(1 categories)" in prompt.system

    def test_priority_mapping_from_settings(self) -> None:
        """User priority terms are rendered next to their level."""
        prompt = _build(priority_mapping={1: ["asap"]})
        assert "- 1 = highest/high (asap" in prompt.system

    def test_due_date_values(self) -> None:
        """Due-date keywords and user due terms are listed."""
        prompt = _build(due_date_terms=["frist"])
        assert '"overdue" = past due' in prompt.system
        assert "frist" in prompt.system

    def test_stop_words_listed(self) -> None:
        """Internal and user stop words are rendered."""
        prompt = _build(user_stop_words=["blah"])
        assert '"the"' in prompt.system
        assert '"blah"' in prompt.system
