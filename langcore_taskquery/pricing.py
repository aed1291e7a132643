"""Per-call cost accounting.

Rates are USD per 1M tokens.  Lookup order for a model:

1. the caller-supplied snapshot table (provider-prefixed id, bare id);
2. the embedded rates below (provider-prefixed id, bare id);
3. LiteLLM's bundled ``model_cost`` map (exact ids);
4. the longest table key the model id extends with a dated or
   variant suffix (``gpt-4o-mini-2024-07-18``, ``claude-sonnet-4-20250514``).

A model found nowhere costs ``0.0`` and is marked ``"unknown"``;
pricing never raises.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass

import litellm

from langcore_taskquery.models import (
    CostMethod,
    PricingSource,
    TokenSource,
    TokenUsage,
    UsageCounts,
)

logger = logging.getLogger(__name__)

_PER_MILLION = 1_000_000

# What a versioned id may add to a known key: a release date or a
# ``:variant`` / ``@revision`` tag.  ``gpt-4.1`` is not ``gpt-4``.
_VERSION_SUFFIX_RE = re.compile(r"^(?:-(?:\d{4}-\d{2}-\d{2}|\d{8}|latest)|[:@][\w.-]+)$")

EMBEDDED_PRICING: dict[str, dict[str, float]] = {
    # OpenAI
    "gpt-4o": {"input": 2.5, "output": 10.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    "gpt-4-turbo": {"input": 10.0, "output": 30.0},
    "gpt-4": {"input": 30.0, "output": 60.0},
    "gpt-3.5-turbo": {"input": 0.5, "output": 1.5},
    "o1": {"input": 15.0, "output": 60.0},
    "o1-mini": {"input": 3.0, "output": 12.0},
    # Anthropic
    "claude-sonnet-4": {"input": 3.0, "output": 15.0},
    # OpenRouter ids
    "openai/gpt-4o": {"input": 2.5, "output": 10.0},
    "openai/gpt-4o-mini": {"input": 0.15, "output": 0.6},
    "openai/gpt-5-mini": {"input": 0.25, "output": 2.0},
    "openai/gpt-4-turbo": {"input": 10.0, "output": 30.0},
    "openai/gpt-4": {"input": 30.0, "output": 60.0},
    "openai/gpt-3.5-turbo": {"input": 0.5, "output": 1.5},
    "openai/o1": {"input": 15.0, "output": 60.0},
    "openai/o1-mini": {"input": 3.0, "output": 12.0},
    "anthropic/claude-sonnet-4": {"input": 3.0, "output": 15.0},
    "meta-llama/llama-3.1-405b-instruct": {"input": 2.7, "output": 2.7},
    "meta-llama/llama-3.1-70b-instruct": {"input": 0.35, "output": 0.4},
    "meta-llama/llama-3.1-8b-instruct": {"input": 0.05, "output": 0.08},
    "meta-llama/llama-3.2-90b-vision-instruct": {"input": 0.9, "output": 0.9},
    "google/gemini-pro-1.5": {"input": 1.25, "output": 5.0},
    "google/gemini-flash-1.5": {"input": 0.075, "output": 0.3},
    "mistralai/mistral-large-2411": {"input": 2.0, "output": 6.0},
    "mistralai/mistral-small": {"input": 0.2, "output": 0.6},
    "qwen/qwen-2.5-72b-instruct": {"input": 0.35, "output": 0.4},
    "deepseek/deepseek-chat": {"input": 0.14, "output": 0.28},
}

# Providers whose bare model ids get a prefix in OpenRouter's catalogue.
_OPENROUTER_PREFIXES = {"openai": "openai", "anthropic": "anthropic"}


@dataclass(frozen=True, slots=True)
class CostBreakdown:
    """Cost of one call and how it was obtained."""

    cost: float
    input_cost: float
    output_cost: float
    cost_method: CostMethod
    pricing_source: PricingSource


@dataclass(frozen=True, slots=True)
class _Rates:
    input: float
    output: float
    source: PricingSource


def openrouter_model_id(provider: str, model: str) -> str:
    """``("openai", "gpt-4o")`` -> ``"openai/gpt-4o"``; prefixed ids pass through."""
    if "/" in model:
        return model
    prefix = _OPENROUTER_PREFIXES.get(provider)
    return f"{prefix}/{model}" if prefix else model


def _partial_match(
    candidates: tuple[str, ...],
    table: Mapping[str, Mapping[str, float]],
) -> str | None:
    """Longest key that a candidate id extends with a version suffix."""
    matches = []
    for key in table:
        lowered_key = key.lower()
        for candidate in candidates:
            lowered = candidate.lower()
            if lowered.startswith(lowered_key) and _VERSION_SUFFIX_RE.match(lowered[len(lowered_key):]):
                matches.append(key)
                break
    return max(matches, key=len) if matches else None


class CostTracker:
    """Turn token counts into a :class:`CostBreakdown`.

    Parameters:
        pricing_table: Optional snapshot of rates, typically refreshed
            from OpenRouter by the host application.  Shape:
            ``{model_id: {"input": usd_per_1m, "output": usd_per_1m}}``.
    """

    def __init__(
        self,
        pricing_table: Mapping[str, Mapping[str, float]] | None = None,
    ) -> None:
        self._table: dict[str, Mapping[str, float]] = dict(pricing_table or {})

    def rates_for(self, model: str, provider: str) -> _Rates | None:
        """Resolve per-1M rates for *model*, or ``None`` if unknown."""
        prefixed = openrouter_model_id(provider, model)
        for table, source in ((self._table, "openrouter"), (EMBEDDED_PRICING, "embedded")):
            for key in (prefixed, model):
                if key in table:
                    return _Rates(table[key]["input"], table[key]["output"], source)

        for key in (model, f"{provider}/{model}"):
            entry = litellm.model_cost.get(key)
            if not entry:
                continue
            input_rate = entry.get("input_cost_per_token")
            output_rate = entry.get("output_cost_per_token")
            if input_rate is None or output_rate is None:
                continue
            return _Rates(
                float(input_rate) * _PER_MILLION,
                float(output_rate) * _PER_MILLION,
                "litellm",
            )

        for table, source in ((self._table, "openrouter"), (EMBEDDED_PRICING, "embedded")):
            key = _partial_match((prefixed, model), table)
            if key is not None:
                logger.debug("Pricing partial match %s for model %s", key, model)
                return _Rates(table[key]["input"], table[key]["output"], source)
        return None

    def price(
        self,
        usage_counts: UsageCounts,
        model: str,
        provider: str,
        token_source: TokenSource,
        actual_cost: float | None = None,
    ) -> CostBreakdown:
        """Price one call.

        Parameters:
            usage_counts: Prompt / completion token counts.
            model: Model id as sent to the provider.
            provider: Provider name.
            token_source: Whether the counts came from the provider.
            actual_cost: Provider-billed cost, when one was reported.

        Returns:
            A :class:`CostBreakdown`.  Local models are free; an actual
            cost always wins over a calculated one.
        """
        if provider == "ollama":
            return CostBreakdown(0.0, 0.0, 0.0, "actual", "embedded")

        if actual_cost is not None:
            logger.debug("Using provider-reported cost $%.6f for %s", actual_cost, model)
            return CostBreakdown(actual_cost, 0.0, 0.0, "actual", "openrouter")

        rates = self.rates_for(model, provider)
        if rates is None:
            logger.warning(
                "No pricing found for model %s (provider %s); cost reported as 0",
                model,
                provider,
            )
            return CostBreakdown(0.0, 0.0, 0.0, "unknown", "unknown")

        input_cost = usage_counts.prompt_tokens / _PER_MILLION * rates.input
        output_cost = usage_counts.completion_tokens / _PER_MILLION * rates.output
        method: CostMethod = "calculated" if token_source == "actual" else "estimated"
        logger.debug(
            "Cost %s: %d x $%s/1M + %d x $%s/1M = $%.6f",
            model,
            usage_counts.prompt_tokens,
            rates.input,
            usage_counts.completion_tokens,
            rates.output,
            input_cost + output_cost,
        )
        return CostBreakdown(
            input_cost + output_cost, input_cost, output_cost, method, rates.source
        )

    def usage(
        self,
        usage_counts: UsageCounts,
        model: str,
        provider: str,
        token_source: TokenSource,
        actual_cost: float | None = None,
    ) -> TokenUsage:
        """Price *usage_counts* and wrap everything in a :class:`TokenUsage`."""
        breakdown = self.price(usage_counts, model, provider, token_source, actual_cost)
        return TokenUsage.from_counts(
            usage_counts.prompt_tokens,
            usage_counts.completion_tokens,
            model=model,
            provider=provider,
            token_source=token_source,
            estimated_cost=breakdown.cost,
            cost_method=breakdown.cost_method,
            pricing_source=breakdown.pricing_source,
            total_tokens=usage_counts.total,
        )


def format_cost(cost: float) -> str:
    """Display string for a USD amount: ``"$0.000123"``, ``"$1.50"``, ``"Free"``."""
    if cost <= 0:
        return "Free"
    if cost < 0.01:
        return f"${cost:.6f}"
    return f"${cost:.2f}"
