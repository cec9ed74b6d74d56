"""Shared types for content source enumeration."""

from __future__ import annotations

from pydantic import BaseModel, Field

from sitepress.content.models import SourceDocument


class SourceEnumerationError(Exception):
    """The source as a whole could not be listed or read."""


class DocumentParseError(Exception):
    """A single document could not be turned into a SourceDocument."""


class DocumentFailure(BaseModel):
    """A file that was found but could not be parsed."""

    path: str
    message: str
    error_type: str = "parse_error"


class EnumerationResult(BaseModel):
    """Everything one enumeration pass over a source produced.

    ``failures`` lists files that exist but did not parse; ``skipped``
    lists files deliberately left out (e.g. a kind the source does not
    allow).
    """

    source_id: str
    documents: list[SourceDocument] = Field(default_factory=list)
    failures: list[DocumentFailure] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

    @property
    def files_found(self) -> int:
        return len(self.documents) + len(self.failures) + len(self.skipped)
