"""The JSON shape the parsing model is asked to return.

:class:`AIQueryResponse` is the single description of the target
object: the prompt renders it field by field, and the response
extractor uses :data:`EXPECTED_KEYS` to recognize it among other
JSON fragments.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class DueDateRangeResponse(BaseModel):
    start: str = Field(description="Range start (keyword or YYYY-MM-DD)")
    end: str = Field(description="Range end (keyword or YYYY-MM-DD)")


class SemanticMappingsResponse(BaseModel):
    priority: str | None = Field(default=None, description='How wording mapped to priority, e.g. "urgent → 1"')
    status: str | None = Field(default=None, description='How wording mapped to status, e.g. "working on → inProgress"')
    dueDate: str | None = Field(default=None, description='How wording mapped to due date, e.g. "tomorrow → tomorrow"')


class AIUnderstandingResponse(BaseModel):
    detectedLanguage: str | None = Field(default=None, description='Full name of the query language, e.g. "English"')
    correctedTypos: list[str] = Field(default_factory=list, description='Corrections made, e.g. "urgant→urgent"')
    semanticMappings: SemanticMappingsResponse = Field(default_factory=SemanticMappingsResponse)
    confidence: float | None = Field(default=None, description="Number 0-1, confidence in the parse")
    naturalLanguageUsed: bool | None = Field(default=None, description="true if properties were expressed in natural language")


class AIQueryResponse(BaseModel):
    """Top-level object returned by the parsing model."""

    coreKeywords: list[str] = Field(
        default_factory=list,
        description="ORIGINAL content keywords from the query, before expansion",
    )
    keywords: list[str] = Field(
        default_factory=list,
        description="coreKeywords plus semantic equivalents in every configured language",
    )
    priority: int | list[int] | None = Field(
        default=None,
        description="1-4, an array of levels, or null",
    )
    dueDate: str | None = Field(
        default=None,
        description="Due-date keyword from DUE DATE VALUES, a YYYY-MM-DD date, or null",
    )
    dueDateRange: DueDateRangeResponse | None = Field(
        default=None,
        description="{start, end} window, or null; never together with dueDate",
    )
    status: str | list[str] | None = Field(
        default=None,
        description="Status category key, an array of keys, or null",
    )
    folder: str | None = Field(default=None, description="Folder path, or null")
    tags: list[str] = Field(default_factory=list, description="Hashtags from the query WITHOUT the # symbol")
    aiUnderstanding: AIUnderstandingResponse = Field(default_factory=AIUnderstandingResponse)


# Keys whose presence marks a JSON object as a query-parser answer.
EXPECTED_KEYS: tuple[str, ...] = ("keywords", "priority", "dueDate", "status", "folder", "tags")


def describe_schema(model: type[BaseModel] = AIQueryResponse, indent: str = "  ") -> str:
    """Render *model* as an annotated JSON skeleton for the prompt.

    Nested models are expanded recursively; every other field becomes
    ``"name": <description>``.
    """
    lines = ["{"]
    fields = list(model.model_fields.items())
    for index, (name, info) in enumerate(fields):
        comma = "," if index < len(fields) - 1 else ""
        annotation = info.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            nested = describe_schema(annotation, indent + "  ")
            lines.append(f'{indent}"{name}": {nested}{comma}')
        else:
            lines.append(f'{indent}"{name}": <{info.description or "value"}>{comma}')
    lines.append(indent[:-2] + "}")
    return "\n".join(lines)
