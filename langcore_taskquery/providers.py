"""Provider gateway: one async call to a chat-completion endpoint.

Each supported provider is a :class:`ProviderStrategy` that knows its
request shape, auth header, response envelope and usage field names.
:class:`ProviderGateway` runs the call over ``httpx`` and turns every
failure into a :class:`~langcore_taskquery.errors.QueryParserError`
subclass, so nothing provider-specific leaks upward.

Adding a provider means adding a strategy to :data:`STRATEGIES`.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from langcore_taskquery.config import API_KEY_ENV_VARS, provider_label
from langcore_taskquery.errors import (
    CancellationError,
    ConfigurationError,
    MalformedResponseError,
    TransportError,
)
from langcore_taskquery.models import CompletionResult, TokenSource, UsageCounts
from langcore_taskquery.pricing import CostTracker

if TYPE_CHECKING:
    from langcore_taskquery.config import ParserSettings, ProviderConfig, PurposeConfig

logger = logging.getLogger(__name__)

# Rough ratio used wherever a provider reports no token counts.
CHARS_PER_TOKEN = 4

OPENROUTER_GENERATION_URL = "https://openrouter.ai/api/v1/generation"
ANTHROPIC_VERSION = "2023-06-01"

_PREVIEW_LEN = 200


def estimate_tokens(text: str) -> int:
    """Estimate tokens in *text* at :data:`CHARS_PER_TOKEN` chars each."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _estimate_counts(messages: list[dict[str, str]], text: str) -> UsageCounts:
    prompt_text = " ".join(m.get("content", "") for m in messages)
    return UsageCounts(estimate_tokens(prompt_text), estimate_tokens(text))


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


# ------------------------------------------------------------------
# Request / lookup records
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProviderRequest:
    """Everything needed to issue one HTTP POST."""

    url: str
    headers: dict[str, str]
    body: dict[str, Any]


@dataclass(frozen=True, slots=True)
class OpenRouterUsage:
    """Provider-confirmed usage returned by the generation lookup."""

    prompt_tokens: int
    completion_tokens: int
    total_cost: float | None = None


# ------------------------------------------------------------------
# Strategies
# ------------------------------------------------------------------


class ProviderStrategy:
    """Provider-specific request building and response decoding."""

    name: str = ""
    requires_api_key: bool = True

    def build_request(
        self,
        messages: list[dict[str, str]],
        purpose: PurposeConfig,
        config: ProviderConfig,
        endpoint: str,
        api_key: str,
    ) -> ProviderRequest:
        raise NotImplementedError

    def parse_response(self, data: Any, model_label: str) -> str:
        """Return the generated text or raise :class:`MalformedResponseError`."""
        raise NotImplementedError

    def normalize_usage(
        self,
        data: Any,
        messages: list[dict[str, str]],
        text: str,
    ) -> tuple[UsageCounts, TokenSource]:
        raise NotImplementedError

    def solution_for(self, status_code: int, message: str, model: str, endpoint: str) -> str:
        """Remediation hint for a non-2xx response."""
        lowered = message.lower()
        if "context length" in lowered or "maximum context" in lowered:
            return "Shorten the query or lower max tokens; the request exceeds the model's context window."
        if status_code in (401, 403):
            return f"Check the {self.name} API key in settings; it was rejected by the provider."
        if status_code == 404 or ("model" in lowered and "not found" in lowered):
            return f"Check the model name '{model}' (case-sensitive) and that your key can access it."
        if status_code == 429:
            return "Rate limit reached. Wait a moment and retry, or switch to another model."
        if status_code >= 500:
            return "The provider is having server problems. Retry later or switch provider."
        if status_code == 400:
            return "The provider rejected the request. Check the model name and max tokens setting."
        return f"Check the {self.name} endpoint configuration: {endpoint}"


def _missing(model_label: str, expected: str, data: Any) -> MalformedResponseError:
    return MalformedResponseError(
        f"Invalid response structure from {model_label}",
        details=f"Expected {expected}, got: {str(data)[:_PREVIEW_LEN]}",
        model=model_label,
        solution="The provider returned an unexpected envelope; check the endpoint URL.",
    )


def _empty(model_label: str, finish_reason: str | None = None) -> MalformedResponseError:
    details = "The model returned empty content."
    if finish_reason:
        details += f" finish_reason={finish_reason}"
    return MalformedResponseError(
        f"{model_label} returned an empty response",
        details=details,
        model=model_label,
        solution="Increase max tokens or try a different model.",
    )


class OpenAICompatibleStrategy(ProviderStrategy):
    """OpenAI chat completions and the OpenRouter clone of it."""

    def __init__(self, name: str) -> None:
        self.name = name

    def build_request(
        self,
        messages: list[dict[str, str]],
        purpose: PurposeConfig,
        config: ProviderConfig,
        endpoint: str,
        api_key: str,
    ) -> ProviderRequest:
        return ProviderRequest(
            url=endpoint,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            body={
                "model": purpose.model,
                "messages": messages,
                "temperature": purpose.temperature,
                "max_tokens": config.max_tokens,
            },
        )

    def parse_response(self, data: Any, model_label: str) -> str:
        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise _missing(model_label, "{choices: [{message: {content}}]}", data) from None
        if not isinstance(content, str) or not content.strip():
            raise _empty(model_label, choice.get("finish_reason"))
        return content.strip()

    def normalize_usage(
        self,
        data: Any,
        messages: list[dict[str, str]],
        text: str,
    ) -> tuple[UsageCounts, TokenSource]:
        usage = data.get("usage") if isinstance(data, dict) else None
        if not isinstance(usage, dict):
            return _estimate_counts(messages, text), "estimated"
        prompt = _as_int(usage.get("prompt_tokens")) or 0
        completion = _as_int(usage.get("completion_tokens")) or 0
        total = _as_int(usage.get("total_tokens"))
        return UsageCounts(prompt, completion, total), "actual"


class AnthropicStrategy(ProviderStrategy):
    """Anthropic Messages API: system prompt travels outside ``messages``."""

    name = "anthropic"

    def build_request(
        self,
        messages: list[dict[str, str]],
        purpose: PurposeConfig,
        config: ProviderConfig,
        endpoint: str,
        api_key: str,
    ) -> ProviderRequest:
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        body: dict[str, Any] = {
            "model": purpose.model,
            "messages": [m for m in messages if m.get("role") != "system"],
            "temperature": purpose.temperature,
            "max_tokens": config.max_tokens,
        }
        if system:
            body["system"] = system
        return ProviderRequest(
            url=endpoint,
            headers={
                "Content-Type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            body=body,
        )

    def parse_response(self, data: Any, model_label: str) -> str:
        try:
            content = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise _missing(model_label, "{content: [{text}]}", data) from None
        if not isinstance(content, str) or not content.strip():
            raise _empty(model_label, data.get("stop_reason"))
        return content.strip()

    def normalize_usage(
        self,
        data: Any,
        messages: list[dict[str, str]],
        text: str,
    ) -> tuple[UsageCounts, TokenSource]:
        usage = data.get("usage") if isinstance(data, dict) else None
        if not isinstance(usage, dict):
            return _estimate_counts(messages, text), "estimated"
        prompt = _as_int(usage.get("input_tokens")) or 0
        completion = _as_int(usage.get("output_tokens")) or 0
        return UsageCounts(prompt, completion), "actual"


class LocalStrategy(ProviderStrategy):
    """Ollama ``/api/chat``: no key, no usage block, free."""

    name = "ollama"
    requires_api_key = False

    def build_request(
        self,
        messages: list[dict[str, str]],
        purpose: PurposeConfig,
        config: ProviderConfig,
        endpoint: str,
        api_key: str,
    ) -> ProviderRequest:
        return ProviderRequest(
            url=endpoint,
            headers={"Content-Type": "application/json"},
            body={
                "model": purpose.model,
                "messages": messages,
                "stream": False,
                "options": {
                    "temperature": purpose.temperature,
                    "num_predict": config.max_tokens,
                    "num_ctx": config.context_window,
                },
            },
        )

    def parse_response(self, data: Any, model_label: str) -> str:
        try:
            content = data["message"]["content"]
        except (KeyError, TypeError):
            raise _missing(model_label, '{message: {content: "..."}}', data) from None
        if not isinstance(content, str) or not content.strip():
            raise _empty(model_label, data.get("done_reason"))
        return content.strip()

    def normalize_usage(
        self,
        data: Any,
        messages: list[dict[str, str]],
        text: str,
    ) -> tuple[UsageCounts, TokenSource]:
        return _estimate_counts(messages, text), "estimated"

    def solution_for(self, status_code: int, message: str, model: str, endpoint: str) -> str:
        if status_code == 404 or ("model" in message.lower() and "not found" in message.lower()):
            return f"Model '{model}' not found. Pull it first: ollama pull {model}"
        return f"Ensure Ollama is running at {endpoint}"


STRATEGIES: dict[str, ProviderStrategy] = {
    "openai": OpenAICompatibleStrategy("openai"),
    "openrouter": OpenAICompatibleStrategy("openrouter"),
    "anthropic": AnthropicStrategy(),
    "ollama": LocalStrategy(),
}


def _error_message(response: httpx.Response) -> str:
    """Best-effort human message from a provider error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:_PREVIEW_LEN] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return str(body)[:_PREVIEW_LEN]


# ------------------------------------------------------------------
# Gateway
# ------------------------------------------------------------------


class ProviderGateway:
    """Invoke the configured parsing model.

    Parameters:
        settings: Provider configs, keys and the default purpose.
        client: Optional shared ``httpx.AsyncClient``; when omitted the
            gateway creates and owns one (close it with :meth:`close`
            or use the gateway as an async context manager).
        cost_tracker: Prices each call; defaults to one built from
            ``settings.pricing_table``.

    Example::

        async with ProviderGateway(settings) as gateway:
            result = await gateway.invoke(messages)
            print(result.text, result.usage.estimated_cost)
    """

    # OpenRouter needs a moment before generation stats are queryable.
    lookup_retries = 2
    lookup_retry_delay = 1.5

    def __init__(
        self,
        settings: ParserSettings,
        client: httpx.AsyncClient | None = None,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._cost_tracker = cost_tracker or CostTracker(settings.pricing_table)

    async def __aenter__(self) -> ProviderGateway:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._owns_client:
            await self._client.aclose()

    async def invoke(
        self,
        messages: list[dict[str, str]],
        purpose: PurposeConfig | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompletionResult:
        """Send *messages* to the provider selected by *purpose*.

        Parameters:
            messages: Chat messages in OpenAI format.
            purpose: Provider / model / temperature; defaults to
                ``settings.parsing``.
            cancel_event: Cooperative cancellation flag, checked before
                the request is issued and again once it completes.

        Returns:
            A :class:`CompletionResult` with normalized usage.

        Raises:
            ConfigurationError: A cloud provider has no API key.
            CancellationError: *cancel_event* was set.
            TransportError: Non-2xx status, timeout or network failure.
            MalformedResponseError: 2xx with an unexpected envelope.
        """
        purpose = purpose or self._settings.parsing
        strategy = STRATEGIES[purpose.provider]
        label = provider_label(purpose.provider, purpose.model)
        config = self._settings.provider_config_for(purpose)
        endpoint = self._settings.endpoint_for(purpose)

        api_key = ""
        if strategy.requires_api_key:
            api_key = self._settings.api_key_for(purpose.provider)
            if not api_key:
                env_var = API_KEY_ENV_VARS.get(purpose.provider, "")
                raise ConfigurationError(
                    f"API key for {purpose.provider} is not configured",
                    model=label,
                    solution=f"Add the {purpose.provider} API key in settings or set {env_var}.",
                )

        _check_cancelled(cancel_event, label)

        request = strategy.build_request(messages, purpose, config, endpoint, api_key)
        logger.debug("POST %s model=%s", request.url, purpose.model)
        try:
            response = await self._client.post(
                request.url,
                json=request.body,
                headers=request.headers,
                timeout=config.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            message = _error_message(exc.response)
            logger.error("%s returned HTTP %d: %s", label, status, message)
            raise TransportError(
                f"API request failed with status {status}",
                details=message,
                model=label,
                solution=strategy.solution_for(status, message, purpose.model, endpoint),
                status_code=status,
            ) from exc
        except httpx.TimeoutException as exc:
            logger.error("%s timed out after %.1fs", label, config.timeout)
            raise TransportError(
                f"Request to {label} timed out after {config.timeout:g}s",
                details=str(exc),
                model=label,
                solution="Increase the timeout or use a faster model.",
            ) from exc
        except httpx.RequestError as exc:
            logger.error("%s request failed: %s", label, exc)
            raise TransportError(
                f"Could not reach {label}",
                details=str(exc),
                model=label,
                solution=strategy.solution_for(0, str(exc), purpose.model, endpoint),
            ) from exc

        _check_cancelled(cancel_event, label)

        try:
            data = response.json()
        except ValueError as exc:
            raise _missing(label, "a JSON body", response.text) from exc

        text = strategy.parse_response(data, label)
        logger.debug("Received %d chars from %s", len(text), label)
        counts, token_source = strategy.normalize_usage(data, messages, text)

        actual_cost: float | None = None
        generation_id: str | None = None
        if purpose.provider == "openrouter":
            generation_id = (data.get("id") if isinstance(data, dict) else None) or response.headers.get(
                "x-generation-id"
            )
            if generation_id:
                confirmed = await self.fetch_openrouter_usage(generation_id, api_key)
                if confirmed is not None:
                    counts = UsageCounts(confirmed.prompt_tokens, confirmed.completion_tokens)
                    token_source = "actual"
                    actual_cost = confirmed.total_cost

        usage = self._cost_tracker.usage(
            counts, purpose.model, purpose.provider, token_source, actual_cost
        )
        return CompletionResult(text=text, usage=usage, generation_id=generation_id)

    async def fetch_openrouter_usage(
        self,
        generation_id: str,
        api_key: str,
    ) -> OpenRouterUsage | None:
        """Look up confirmed tokens and cost for one OpenRouter generation.

        Returns ``None`` on any failure; a 404 (stats not ready yet) is
        retried :attr:`lookup_retries` times.
        """
        headers = {"Authorization": f"Bearer {api_key}"}
        for attempt in range(self.lookup_retries + 1):
            try:
                response = await self._client.get(
                    OPENROUTER_GENERATION_URL,
                    params={"id": generation_id},
                    headers=headers,
                )
            except httpx.RequestError as exc:
                logger.warning("OpenRouter generation lookup failed: %s", exc)
                return None

            if response.status_code == 404 and attempt < self.lookup_retries:
                logger.debug(
                    "Generation stats not ready (attempt %d/%d), retrying in %.1fs",
                    attempt + 1,
                    self.lookup_retries + 1,
                    self.lookup_retry_delay,
                )
                await asyncio.sleep(self.lookup_retry_delay)
                continue
            if response.status_code != 200:
                logger.warning(
                    "OpenRouter generation lookup returned HTTP %d; keeping estimate",
                    response.status_code,
                )
                return None
            return _parse_generation(response)
        return None


def _parse_generation(response: httpx.Response) -> OpenRouterUsage | None:
    try:
        data = response.json().get("data")
    except (ValueError, AttributeError):
        return None
    if not isinstance(data, dict):
        return None

    prompt = _as_int(data.get("native_tokens_prompt"))
    if prompt is None:
        prompt = _as_int(data.get("tokens_prompt"))
    completion = _as_int(data.get("native_tokens_completion"))
    if completion is None:
        completion = _as_int(data.get("tokens_completion"))
    if prompt is None or completion is None:
        logger.debug("Generation stats carry no token counts: %s", data)
        return None

    cost = data.get("total_cost")
    if cost is None:
        cost = data.get("usage")
    try:
        total_cost = float(cost) if cost is not None else None
    except (TypeError, ValueError):
        total_cost = None
    return OpenRouterUsage(prompt, completion, total_cost)


def _check_cancelled(cancel_event: asyncio.Event | None, label: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info("Query parsing cancelled before completion (%s)", label)
        raise CancellationError("Query parsing cancelled by user", model=label)
