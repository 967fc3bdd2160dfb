from __future__ import annotations

from typing import Any, Sequence


class PageEngineError(Exception):
    """Base class for every error raised by the page engine."""


class InputValidationError(PageEngineError):
    """A generation request or tracking payload is malformed.

    Raised before any oracle call is made.
    """

    def __init__(self, message: str, *, errors: Sequence[Any] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])

    @classmethod
    def from_pydantic(cls, stage: str, exc: Exception) -> "InputValidationError":
        details = exc.errors() if hasattr(exc, "errors") else []
        return cls(f"Invalid {stage} input: {exc}", errors=details)


class InsufficientContentError(PageEngineError):
    """The layout cannot reach its minimum section count under the given constraints."""


class PipelineInconsistencyError(PageEngineError):
    """Stage outputs disagree on section ids at assembly time."""

    def __init__(self, message: str, *, missing: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.missing = list(missing)


class OracleError(PageEngineError):
    """A ranking or completion call to the generation oracle failed."""


class GenerationDegraded(PageEngineError):
    """Soft failure: generic content was substituted for a section field."""

    def __init__(self, *, section_id: str, reason: str, field: str | None = None) -> None:
        super().__init__(f"{section_id}: {reason}")
        self.section_id = section_id
        self.field = field
        self.reason = reason

    def as_record(self) -> dict[str, str | None]:
        return {"section_id": self.section_id, "field": self.field, "reason": self.reason}


class DetectionError(PageEngineError):
    """Soft failure: persona detection for a session could not complete."""


__all__ = [
    "PageEngineError",
    "InputValidationError",
    "InsufficientContentError",
    "PipelineInconsistencyError",
    "OracleError",
    "GenerationDegraded",
    "DetectionError",
]
