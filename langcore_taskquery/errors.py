"""Error taxonomy for the task query parsing pipeline.

Every failure raised by this package is a :class:`QueryParserError`
carrying an :class:`ErrorDetails` record, so callers never see a
provider-specific error shape.  Transport, malformed-envelope and
JSON-extraction failures are *degradable*: the parser answers them
with an explicit-syntax-only result instead of aborting the query.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ErrorDetails:
    """Structured, UI-friendly description of a failure.

    Attributes:
        message: Short human-readable summary.
        details: Longer diagnostic text (provider body, preview, ...).
        model: Model label in ``"Provider: model"`` form, if known.
        solution: Suggested remediation for the user.
        status_code: HTTP status code when the failure came from one.
        fallback_used: Description of the fallback the caller applied.
    """

    message: str
    details: str = ""
    model: str | None = None
    solution: str | None = None
    status_code: int | None = None
    fallback_used: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase keys UIs expect."""
        result: dict[str, Any] = {
            "message": self.message,
            "details": self.details,
            "model": self.model,
        }
        if self.solution:
            result["solution"] = self.solution
        if self.status_code is not None:
            result["statusCode"] = self.status_code
        if self.fallback_used:
            result["fallbackUsed"] = self.fallback_used
        return result


class QueryParserError(Exception):
    """Base class for all errors raised by the parsing pipeline."""

    def __init__(
        self,
        message: str,
        *,
        details: str = "",
        model: str | None = None,
        solution: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.info = ErrorDetails(
            message=message,
            details=details,
            model=model,
            solution=solution,
            status_code=status_code,
        )

    @property
    def status_code(self) -> int | None:
        return self.info.status_code

    @property
    def model(self) -> str | None:
        return self.info.model

    def to_dict(self) -> dict[str, Any]:
        return self.info.to_dict()


class ConfigurationError(QueryParserError):
    """Selected provider is missing a credential or endpoint."""


class CancellationError(QueryParserError):
    """The caller's cancel event fired before the request was issued."""


class TransportError(QueryParserError):
    """Non-2xx HTTP status, timeout or network failure."""


class MalformedResponseError(QueryParserError):
    """A 2xx response whose envelope does not match the provider shape."""


class ExtractionError(QueryParserError):
    """No JSON object could be recovered from the model's text."""


class SchemaMismatchError(QueryParserError):
    """Parsed JSON lacks every expected top-level key.

    Soft: it is logged and the object is merged anyway.
    """


_DEGRADABLE = (TransportError, MalformedResponseError, ExtractionError)


def is_degradable(exc: BaseException) -> bool:
    """Return ``True`` when *exc* should fall back to explicit syntax only."""
    return isinstance(exc, _DEGRADABLE)
