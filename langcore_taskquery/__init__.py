"""langcore-taskquery — task query parsing for LangCore.

Turns natural-language task queries into structured filters
(priority, status, due date, folder, tags) and multilingual,
semantically expanded keywords, using explicit syntax first and an
LLM only for what remains.
"""

from langcore_taskquery.config import ParserSettings, ProviderConfig, PurposeConfig, StatusCategory
from langcore_taskquery.errors import (
    CancellationError,
    ConfigurationError,
    ExtractionError,
    MalformedResponseError,
    QueryParserError,
    SchemaMismatchError,
    TransportError,
)
from langcore_taskquery.models import ParsedQuery, StandardProperties, TokenUsage
from langcore_taskquery.parser import QueryParser
from langcore_taskquery.pricing import CostTracker
from langcore_taskquery.providers import ProviderGateway

__all__ = [
    "CancellationError",
    "ConfigurationError",
    "CostTracker",
    "ExtractionError",
    "MalformedResponseError",
    "ParsedQuery",
    "ParserSettings",
    "ProviderConfig",
    "ProviderGateway",
    "PurposeConfig",
    "QueryParser",
    "QueryParserError",
    "SchemaMismatchError",
    "StandardProperties",
    "StatusCategory",
    "TokenUsage",
    "TransportError",
]
__version__ = "1.0.0"
