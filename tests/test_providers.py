"""Tests for langcore_taskquery.providers.

All HTTP traffic goes through ``httpx.MockTransport``; no real API
keys or network access are required.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Callable
from unittest.mock import MagicMock, patch

import httpx
import pytest

from langcore_taskquery import (
    CancellationError,
    ConfigurationError,
    MalformedResponseError,
    ParserSettings,
    ProviderConfig,
    PurposeConfig,
    TransportError,
)
from langcore_taskquery.providers import STRATEGIES, ProviderGateway, ProviderStrategy, estimate_tokens

MESSAGES = [
    {"role": "system", "content": "You are a parser."},
    {"role": "user", "content": 'Parse this query: "fix bug"'},
]

KEYS = {
    "openai": ProviderConfig(api_key="sk-openai"),
    "openrouter": ProviderConfig(api_key="sk-or"),
    "anthropic": ProviderConfig(api_key="sk-ant"),
    "ollama": ProviderConfig(),
}

OPENAI_OK = {
    "choices": [{"message": {"content": ' {"keywords": ["bug"]} '}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 10, "completion_tokens": 5},
}
ANTHROPIC_OK = {
    "content": [{"type": "text", "text": '{"keywords": ["bug"]}'}],
    "usage": {"input_tokens": 7, "output_tokens": 3},
}
OLLAMA_OK = {"message": {"role": "assistant", "content": "abcdefgh"}, "done": True}


def _purpose(provider: str, model: str = "gpt-4o-mini") -> PurposeConfig:
    return PurposeConfig(provider=provider, model=model)


def _gateway(
    handler: Callable[[httpx.Request], httpx.Response],
    provider_configs: dict[str, ProviderConfig] | None = None,
) -> ProviderGateway:
    settings = ParserSettings(provider_configs=provider_configs or KEYS)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    gateway = ProviderGateway(settings, client=client)
    gateway.lookup_retry_delay = 0
    return gateway


class _Recorder:
    """Handler that records requests and replays canned responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]

    def body(self, index: int = 0) -> dict:
        return json.loads(self.requests[index].content)


# ------------------------------------------------------------------
# Tests — request shapes and usage normalization
# ------------------------------------------------------------------


@patch("langcore_taskquery.pricing.litellm", MagicMock(model_cost={}))
class TestProviderShapes:
    """Each strategy's request and response envelope."""

    async def test_openai_request(self) -> None:
        """Bearer auth and ``max_tokens`` in the body."""
        recorder = _Recorder(httpx.Response(200, json=OPENAI_OK))
        result = await _gateway(recorder).invoke(MESSAGES, _purpose("openai"))

        request = recorder.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-openai"
        body = recorder.body()
        assert body["model"] == "gpt-4o-mini"
        assert body["max_tokens"] == 2000
        assert body["messages"] == MESSAGES
        assert result.text == '{"keywords": ["bug"]}'

    async def test_openai_usage(self) -> None:
        """Reported counts are actual; total is derived."""
        recorder = _Recorder(httpx.Response(200, json=OPENAI_OK))
        usage = (await _gateway(recorder).invoke(MESSAGES, _purpose("openai"))).usage
        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (10, 5, 15)
        assert usage.token_source == "actual"
        assert usage.is_estimated is False
        assert usage.cost_method == "calculated"
        assert usage.estimated_cost > 0

    async def test_openai_without_usage_is_estimated(self) -> None:
        """A missing usage block falls back to character estimates."""
        data = {"choices": [{"message": {"content": "abcd"}}]}
        recorder = _Recorder(httpx.Response(200, json=data))
        usage = (await _gateway(recorder).invoke(MESSAGES, _purpose("openai"))).usage
        assert usage.token_source == "estimated"
        assert usage.completion_tokens == 1

    async def test_anthropic_request(self) -> None:
        """System prompt moves to ``system``; version header is sent."""
        recorder = _Recorder(httpx.Response(200, json=ANTHROPIC_OK))
        result = await _gateway(recorder).invoke(
            MESSAGES, _purpose("anthropic", "claude-sonnet-4")
        )

        request = recorder.requests[0]
        assert request.headers["x-api-key"] == "sk-ant"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = recorder.body()
        assert body["system"] == "You are a parser."
        assert [m["role"] for m in body["messages"]] == ["user"]
        assert result.usage.prompt_tokens == 7
        assert result.usage.total_tokens == 10

    async def test_local_request(self) -> None:
        """Ollama gets ``options`` and ``stream: false``, no auth."""
        recorder = _Recorder(httpx.Response(200, json=OLLAMA_OK))
        await _gateway(recorder).invoke(MESSAGES, _purpose("ollama", "qwen2.5:14b"))

        request = recorder.requests[0]
        assert str(request.url) == "http://localhost:11434/api/chat"
        assert "Authorization" not in request.headers
        body = recorder.body()
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0.1, "num_predict": 2000, "num_ctx": 8192}

    async def test_local_usage_estimated_and_free(self) -> None:
        """Local usage is estimated at 4 chars/token and costs 0."""
        recorder = _Recorder(httpx.Response(200, json=OLLAMA_OK))
        usage = (
            await _gateway(recorder).invoke(MESSAGES, _purpose("ollama", "qwen2.5:14b"))
        ).usage
        assert usage.token_source == "estimated"
        assert usage.is_estimated is True
        assert usage.estimated_cost == 0
        assert usage.cost_method == "actual"
        assert usage.completion_tokens == 2

    @pytest.mark.parametrize(
        "provider, model, data",
        [
            ("openai", "gpt-4o-mini", OPENAI_OK),
            ("anthropic", "claude-sonnet-4", ANTHROPIC_OK),
            ("ollama", "qwen2.5:14b", OLLAMA_OK),
        ],
    )
    async def test_total_is_sum(self, provider: str, model: str, data: dict) -> None:
        """Normalized totals equal prompt + completion for every shape."""
        recorder = _Recorder(httpx.Response(200, json=data))
        usage = (await _gateway(recorder).invoke(MESSAGES, _purpose(provider, model))).usage
        assert usage.total_tokens == usage.prompt_tokens + usage.completion_tokens

    async def test_custom_endpoint(self) -> None:
        """A configured endpoint replaces the default URL."""
        configs = dict(KEYS, ollama=ProviderConfig(api_endpoint="http://gpu-box:11434/api/chat"))
        recorder = _Recorder(httpx.Response(200, json=OLLAMA_OK))
        await _gateway(recorder, configs).invoke(MESSAGES, _purpose("ollama", "llama3"))
        assert recorder.requests[0].url.host == "gpu-box"


# ------------------------------------------------------------------
# Tests — failures
# ------------------------------------------------------------------


class TestProviderErrors:
    """Failures become structured QueryParserError subclasses."""

    async def test_missing_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """No key means no request and a ConfigurationError."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        recorder = _Recorder(httpx.Response(200, json=OPENAI_OK))
        gateway = _gateway(recorder, {"ollama": ProviderConfig()})
        with pytest.raises(ConfigurationError, match="API key for openai is not configured"):
            await gateway.invoke(MESSAGES, _purpose("openai"))
        assert recorder.requests == []

    async def test_key_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The provider's environment variable is a fallback key."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        recorder = _Recorder(httpx.Response(200, json=OPENAI_OK))
        await _gateway(recorder, {"ollama": ProviderConfig()}).invoke(MESSAGES, _purpose("openai"))
        assert recorder.requests[0].headers["Authorization"] == "Bearer sk-env"

    async def test_cancelled_before_request(self) -> None:
        """A set cancel event fails fast without I/O."""
        recorder = _Recorder(httpx.Response(200, json=OPENAI_OK))
        event = asyncio.Event()
        event.set()
        with pytest.raises(CancellationError, match="cancelled by user"):
            await _gateway(recorder).invoke(MESSAGES, _purpose("openai"), event)
        assert recorder.requests == []

    async def test_401(self) -> None:
        """HTTP 401 carries the status code and a key hint."""
        error = {"error": {"message": "Incorrect API key provided"}}
        recorder = _Recorder(httpx.Response(401, json=error))
        with pytest.raises(TransportError) as exc_info:
            await _gateway(recorder).invoke(MESSAGES, _purpose("openai"))
        exc = exc_info.value
        assert exc.status_code == 401
        assert exc.model == "OpenAI: gpt-4o-mini"
        assert exc.info.details == "Incorrect API key provided"
        assert "API key" in exc.info.solution
        assert exc.to_dict()["statusCode"] == 401

    async def test_ollama_404_hint(self) -> None:
        """A missing local model suggests ``ollama pull``."""
        recorder = _Recorder(httpx.Response(404, json={"error": "model 'qwen' not found"}))
        with pytest.raises(TransportError) as exc_info:
            await _gateway(recorder).invoke(MESSAGES, _purpose("ollama", "qwen"))
        assert exc_info.value.info.solution == "Model 'qwen' not found. Pull it first: ollama pull qwen"

    async def test_ollama_unreachable(self) -> None:
        """Connection failures point at the endpoint."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            await _gateway(handler).invoke(MESSAGES, _purpose("ollama", "qwen"))
        assert exc_info.value.status_code is None
        assert "Ensure Ollama is running" in exc_info.value.info.solution

    async def test_timeout(self) -> None:
        """Timeouts are transport errors without a status code."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(TransportError, match="timed out"):
            await _gateway(handler).invoke(MESSAGES, _purpose("openai"))

    @pytest.mark.parametrize(
        "provider, data",
        [
            ("openai", {"object": "error"}),
            ("openai", {"choices": []}),
            ("openai", {"choices": [{"message": {"content": "   "}, "finish_reason": "length"}]}),
            ("anthropic", {"content": []}),
            ("ollama", {"done": True}),
            ("ollama", {"message": {"content": ""}}),
        ],
    )
    async def test_malformed_envelopes(self, provider: str, data: dict) -> None:
        """Unexpected 2xx envelopes raise MalformedResponseError."""
        recorder = _Recorder(httpx.Response(200, json=data))
        with pytest.raises(MalformedResponseError):
            await _gateway(recorder).invoke(MESSAGES, _purpose(provider))

    async def test_non_json_body(self) -> None:
        """A 2xx body that is not JSON is malformed."""
        recorder = _Recorder(httpx.Response(200, text="<html>proxy</html>"))
        with pytest.raises(MalformedResponseError):
            await _gateway(recorder).invoke(MESSAGES, _purpose("openai"))


# ------------------------------------------------------------------
# Tests — OpenRouter generation lookup
# ------------------------------------------------------------------


def _openrouter_handler(lookup: list[httpx.Response]) -> _Recorder:
    completion = httpx.Response(200, json=dict(OPENAI_OK, id="gen-123"))

    class _Router(_Recorder):
        def __call__(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if request.method == "POST":
                return completion
            return lookup.pop(0) if len(lookup) > 1 else lookup[0]

    return _Router(completion)


@patch("langcore_taskquery.pricing.litellm", MagicMock(model_cost={}))
class TestOpenRouterLookup:
    """Best-effort replacement of estimates with confirmed usage."""

    async def test_confirmed_usage_and_cost(self) -> None:
        """Native token counts and total_cost replace the estimate."""
        stats = {"data": {"native_tokens_prompt": 12, "native_tokens_completion": 6, "total_cost": 0.00042}}
        router = _openrouter_handler([httpx.Response(200, json=stats)])
        result = await _gateway(router).invoke(MESSAGES, _purpose("openrouter", "openai/gpt-4o-mini"))

        lookup = router.requests[1]
        assert lookup.method == "GET"
        assert lookup.url.params["id"] == "gen-123"
        assert result.generation_id == "gen-123"
        assert result.usage.prompt_tokens == 12
        assert result.usage.total_tokens == 18
        assert result.usage.estimated_cost == 0.00042
        assert result.usage.cost_method == "actual"
        assert result.usage.pricing_source == "openrouter"

    async def test_fallback_token_fields(self) -> None:
        """``tokens_prompt`` is used when native counts are absent."""
        stats = {"data": {"tokens_prompt": 20, "tokens_completion": 4}}
        router = _openrouter_handler([httpx.Response(200, json=stats)])
        usage = (
            await _gateway(router).invoke(MESSAGES, _purpose("openrouter", "openai/gpt-4o-mini"))
        ).usage
        assert usage.prompt_tokens == 20
        assert usage.cost_method == "calculated"

    async def test_404_retried_then_kept_estimate(self) -> None:
        """Persistent 404s are retried twice, then the call still succeeds."""
        router = _openrouter_handler([httpx.Response(404)])
        result = await _gateway(router).invoke(MESSAGES, _purpose("openrouter", "openai/gpt-4o-mini"))
        assert [r.method for r in router.requests] == ["POST", "GET", "GET", "GET"]
        assert result.usage.prompt_tokens == 10
        assert result.usage.cost_method == "calculated"

    async def test_404_then_success(self) -> None:
        """Stats that become ready on retry are used."""
        stats = {"data": {"native_tokens_prompt": 11, "native_tokens_completion": 1, "total_cost": 0.001}}
        router = _openrouter_handler([httpx.Response(404), httpx.Response(200, json=stats)])
        usage = (
            await _gateway(router).invoke(MESSAGES, _purpose("openrouter", "openai/gpt-4o-mini"))
        ).usage
        assert usage.prompt_tokens == 11
        assert usage.estimated_cost == 0.001

    async def test_lookup_server_error_is_silent(self) -> None:
        """A failing lookup never fails the call."""
        router = _openrouter_handler([httpx.Response(500)])
        result = await _gateway(router).invoke(MESSAGES, _purpose("openrouter", "openai/gpt-4o-mini"))
        assert result.text == '{"keywords": ["bug"]}'
        assert result.usage.prompt_tokens == 10


class TestEstimateTokens:
    """Tests for estimate_tokens."""

    @pytest.mark.parametrize("text, expected", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2)])
    def test_ceil_quarter(self, text: str, expected: int) -> None:
        """Tokens are ceil(len / 4)."""
        assert estimate_tokens(text) == expected


class TestStrategyContract:
    """Every registered strategy honours the base interface."""

    @pytest.mark.parametrize("name", sorted(STRATEGIES))
    @pytest.mark.parametrize(
        "method", ["build_request", "parse_response", "normalize_usage", "solution_for"]
    )
    def test_override_signatures_match_base(self, name: str, method: str) -> None:
        """Overrides keep the base parameters, annotations and return type."""
        strategy = type(STRATEGIES[name])
        assert inspect.signature(getattr(strategy, method)) == inspect.signature(
            getattr(ProviderStrategy, method)
        )
