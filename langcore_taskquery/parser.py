"""Task query parser that turns a natural-language query into
structured task filters and semantically expanded keywords.

:class:`QueryParser` first pulls unambiguous syntax (``p1``,
``s:open``, ``#tag``, ``overdue`` ...) out of the query with regexes.
Only the remaining text is sent to the configured model, which
returns core keywords, multilingual expansions and any properties
expressed in natural language.  The two parses are merged with
explicit syntax taking precedence.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from langcore_taskquery.config import ParserSettings, provider_label
from langcore_taskquery.errors import QueryParserError, SchemaMismatchError, is_degradable
from langcore_taskquery.extraction import has_schema_keys, parse_json_object
from langcore_taskquery.merger import ResultMerger
from langcore_taskquery.models import ParsedQuery
from langcore_taskquery.pricing import CostTracker
from langcore_taskquery.prompt import PromptBuilder
from langcore_taskquery.providers import ProviderGateway
from langcore_taskquery.schema import EXPECTED_KEYS
from langcore_taskquery.syntax import StandardSyntaxExtractor

if TYPE_CHECKING:
    from langcore_taskquery.models import CompletionResult, TokenUsage

logger = logging.getLogger(__name__)


class QueryParser:
    """Parse task queries with explicit syntax first and a model second.

    Parameters:
        settings: Languages, vocabularies, provider configuration and
            the parsing purpose (provider / model / temperature).
        gateway: Optional :class:`ProviderGateway`; injected in tests
            or shared between parsers.  Created from *settings* when
            omitted.
        cost_tracker: Optional :class:`CostTracker` used when the
            parser creates its own gateway.

    Example::

        from langcore_taskquery import ParserSettings, QueryParser

        parser = QueryParser(ParserSettings(query_languages=["English", "中文"]))
        parsed = parser.parse("urgent login bug due next week #backend")
        print(parsed.priority, parsed.due_date, parsed.keywords)
    """

    def __init__(
        self,
        settings: ParserSettings | None = None,
        gateway: ProviderGateway | None = None,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        self._settings = settings or ParserSettings()
        self._cost_tracker = cost_tracker or CostTracker(self._settings.pricing_table)
        self._gateway = gateway
        self._extractor = StandardSyntaxExtractor()
        self._prompt_builder = PromptBuilder()
        self._merger = ResultMerger(self._extractor)

        logger.info(
            "QueryParser initialised for %s, languages=%s",
            self.model_label,
            self._settings.languages,
        )

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> ParserSettings:
        return self._settings

    @property
    def model_label(self) -> str:
        """``"Provider: model"`` of the parsing purpose."""
        purpose = self._settings.parsing
        return provider_label(purpose.provider, purpose.model)

    # ------------------------------------------------------------------
    # Core parsing
    # ------------------------------------------------------------------

    async def async_parse(
        self,
        query: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ParsedQuery:
        """Parse *query* asynchronously.

        Parameters:
            query: The user's task query.
            cancel_event: Cooperative cancellation flag forwarded to the
                gateway.

        Returns:
            A :class:`ParsedQuery`.  When the model call or its parsing
            fails, the result holds explicit properties only and
            ``parser_error`` explains why.

        Raises:
            ConfigurationError: The parsing provider has no API key.
            CancellationError: *cancel_event* was set.
        """
        query = query or ""
        standard = self._extractor.extract(query, self._settings)
        residual = self._extractor.strip(query)

        if not residual:
            logger.debug("Query %r is explicit syntax only; skipping model call", query)
            return self._merger.explicit_only(standard, query)

        messages = self._prompt_builder.build(residual, self._settings).to_messages()
        usage: TokenUsage | None = None
        try:
            result = await self._invoke(messages, cancel_event)
            usage = result.usage
            logger.debug("Raw model response: %s", result.text)
            ai_parsed = parse_json_object(result.text)
        except QueryParserError as exc:
            if not is_degradable(exc):
                raise
            return self._merger.degrade(standard, exc, query, self.model_label, usage)

        if not has_schema_keys(ai_parsed):
            mismatch = SchemaMismatchError(
                "Model JSON has none of the expected keys",
                details=f"Expected any of {', '.join(EXPECTED_KEYS)}; got {sorted(ai_parsed)}",
                model=self.model_label,
            )
            logger.warning("%s (%s)", mismatch, mismatch.info.details)

        return self._merger.merge(standard, ai_parsed, query, self._settings, usage)

    def parse(self, query: str) -> ParsedQuery:
        """Synchronous wrapper around :meth:`async_parse`.

        Runs its own event loop, so it must not be called from inside
        ``async def`` code; await :meth:`async_parse` there instead.
        """
        return asyncio.run(self.async_parse(query))

    async def _invoke(
        self,
        messages: list[dict[str, str]],
        cancel_event: asyncio.Event | None,
    ) -> CompletionResult:
        if self._gateway is not None:
            return await self._gateway.invoke(messages, self._settings.parsing, cancel_event)
        # A gateway owned by one call cannot outlive the event loop that
        # :meth:`parse` creates, so it is opened and closed per call.
        async with ProviderGateway(self._settings, cost_tracker=self._cost_tracker) as gateway:
            return await gateway.invoke(messages, self._settings.parsing, cancel_event)
