"""Immutable records produced and exchanged by the parsing pipeline.

:class:`ParsedQuery` is the output contract handed to the task
search / ranking component.  Priority and status are always held as
tuples internally; :meth:`ParsedQuery.to_dict` collapses a single
value back to a scalar at the serialization boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from langcore_taskquery.errors import ErrorDetails

TokenSource = Literal["actual", "estimated"]
CostMethod = Literal["actual", "calculated", "estimated", "unknown"]
PricingSource = Literal["openrouter", "embedded", "litellm", "unknown"]


# ------------------------------------------------------------------
# Usage / cost
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Normalized token and cost accounting for one model call.

    Attributes:
        prompt_tokens: Input tokens.
        completion_tokens: Output tokens.
        total_tokens: ``prompt + completion`` unless the provider
            reported an authoritative total.
        estimated_cost: Cost in USD (actual, calculated or estimated,
            see ``cost_method``).
        model: Model identifier used for the call.
        provider: Provider name (``openai``, ``anthropic``, ...).
        is_estimated: ``True`` when token counts were not confirmed by
            the provider.
        token_source: ``"actual"`` or ``"estimated"``.
        cost_method: How ``estimated_cost`` was obtained.
        pricing_source: Where the per-token rates came from.
    """

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated_cost: float
    model: str
    provider: str
    is_estimated: bool
    token_source: TokenSource
    cost_method: CostMethod
    pricing_source: PricingSource

    @classmethod
    def from_counts(
        cls,
        prompt_tokens: int,
        completion_tokens: int,
        *,
        model: str,
        provider: str,
        token_source: TokenSource,
        estimated_cost: float = 0.0,
        cost_method: CostMethod = "unknown",
        pricing_source: PricingSource = "unknown",
        total_tokens: int | None = None,
    ) -> TokenUsage:
        """Build a usage record, deriving the total when not supplied."""
        if total_tokens is None:
            total_tokens = prompt_tokens + completion_tokens
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            estimated_cost=estimated_cost,
            model=model,
            provider=provider,
            is_estimated=token_source == "estimated",
            token_source=token_source,
            cost_method=cost_method,
            pricing_source=pricing_source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "estimatedCost": self.estimated_cost,
            "model": self.model,
            "provider": self.provider,
            "isEstimated": self.is_estimated,
            "tokenSource": self.token_source,
            "costMethod": self.cost_method,
            "pricingSource": self.pricing_source,
        }


@dataclass(frozen=True, slots=True)
class CompletionResult:
    """Raw model text plus normalized usage, as returned by the gateway."""

    text: str
    usage: TokenUsage
    generation_id: str | None = None


# ------------------------------------------------------------------
# Query pieces
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DueDateRange:
    """Inclusive due-date window; either bound may be open."""

    start: str | None = None
    end: str | None = None

    def to_dict(self) -> dict[str, str]:
        result: dict[str, str] = {}
        if self.start is not None:
            result["start"] = self.start
        if self.end is not None:
            result["end"] = self.end
        return result


@dataclass(frozen=True, slots=True)
class StandardProperties:
    """Properties pulled from explicit query syntax.

    Status values are raw (category, alias or symbol as typed); they
    are validated but never resolved to a category key here.
    """

    priority: tuple[int, ...] = ()
    status: tuple[str, ...] = ()
    due_date: str | None = None
    due_date_range: DueDateRange | None = None
    folder: str | None = None
    tags: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (
            self.priority
            or self.status
            or self.due_date
            or self.due_date_range
            or self.folder
            or self.tags
        )


@dataclass(frozen=True, slots=True)
class ExpansionMetadata:
    """Diagnostics on semantic expansion; never used for matching."""

    enabled: bool
    expansions_per_language_per_keyword: int
    languages_used: tuple[str, ...]
    core_keywords_count: int
    total_keywords: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "expansionsPerLanguagePerKeyword": (
                self.expansions_per_language_per_keyword
            ),
            "languagesUsed": list(self.languages_used),
            "coreKeywordsCount": self.core_keywords_count,
            "totalKeywords": self.total_keywords,
        }


@dataclass(frozen=True, slots=True)
class AIUnderstanding:
    """Advisory metadata reported by the model about its own parse."""

    detected_language: str | None = None
    corrected_typos: tuple[str, ...] = ()
    semantic_mappings: dict[str, str] = field(default_factory=dict)
    confidence: float | None = None
    natural_language_used: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.detected_language is not None:
            result["detectedLanguage"] = self.detected_language
        if self.corrected_typos:
            result["correctedTypos"] = list(self.corrected_typos)
        if self.semantic_mappings:
            result["semanticMappings"] = dict(self.semantic_mappings)
        if self.confidence is not None:
            result["confidence"] = self.confidence
        if self.natural_language_used is not None:
            result["naturalLanguageUsed"] = self.natural_language_used
        return result


# ------------------------------------------------------------------
# ParsedQuery
# ------------------------------------------------------------------


def _scalar_or_list(values: tuple[Any, ...]) -> Any:
    return values[0] if len(values) == 1 else list(values)


@dataclass(frozen=True, slots=True)
class ParsedQuery:
    """Structured form of one natural-language task query.

    Attributes:
        core_keywords: Original content terms, de-duplicated and
            stop-word filtered.
        keywords: ``core_keywords`` followed by semantic expansions.
            Always a superset of ``core_keywords``.
        priority: OR-set of priority levels (1 = highest).
        status: OR-set of status values (category keys from the
            model, raw values from explicit syntax).
        due_date: Due-date keyword token (``"today"``, ``"+5d"``...).
        due_date_range: Date window; exclusive with ``due_date``.
        folder: Folder filter.
        tags: Tags without the leading ``#``.
        original_query: The raw text the user typed.
        expansion_metadata: Diagnostics; ``None`` when the model was
            not consulted or failed.
        ai_understanding: Advisory model metadata.
        parser_error: Why AI parsing failed (degraded result only).
        parser_model: ``"Provider: model"`` that failed.
        parser_error_details: Structured description of the failure.
        token_usage: Usage of the parsing call, if one was made.
    """

    core_keywords: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    priority: tuple[int, ...] = ()
    status: tuple[str, ...] = ()
    due_date: str | None = None
    due_date_range: DueDateRange | None = None
    folder: str | None = None
    tags: tuple[str, ...] = ()
    original_query: str = ""
    expansion_metadata: ExpansionMetadata | None = None
    ai_understanding: AIUnderstanding | None = None
    parser_error: str | None = None
    parser_model: str | None = None
    parser_error_details: ErrorDetails | None = None
    token_usage: TokenUsage | None = None

    @property
    def is_degraded(self) -> bool:
        """``True`` when only explicit syntax could be applied."""
        return self.parser_error is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase shape external callers consume.

        Absent fields are omitted; single-valued priority / status
        collapse to a scalar.
        """
        result: dict[str, Any] = {
            "coreKeywords": list(self.core_keywords),
            "keywords": list(self.keywords),
            "tags": list(self.tags),
            "originalQuery": self.original_query,
        }
        if self.priority:
            result["priority"] = _scalar_or_list(self.priority)
        if self.status:
            result["status"] = _scalar_or_list(self.status)
        if self.due_date is not None:
            result["dueDate"] = self.due_date
        if self.due_date_range is not None:
            result["dueDateRange"] = self.due_date_range.to_dict()
        if self.folder is not None:
            result["folder"] = self.folder
        if self.expansion_metadata is not None:
            result["expansionMetadata"] = self.expansion_metadata.to_dict()
        if self.ai_understanding is not None:
            result["aiUnderstanding"] = self.ai_understanding.to_dict()
        if self.parser_error is not None:
            result["_parserError"] = self.parser_error
            result["_parserModel"] = self.parser_model
        if self.parser_error_details is not None:
            result["_parserErrorDetails"] = self.parser_error_details.to_dict()
        if self.token_usage is not None:
            result["tokenUsage"] = self.token_usage.to_dict()
        return result


@dataclass(frozen=True, slots=True)
class UsageCounts:
    """Provider-reported (or estimated) token counts before pricing."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int | None = None

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return self.prompt_tokens + self.completion_tokens
