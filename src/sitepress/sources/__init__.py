"""Content sources: enumerate SourceDocuments for a configured source."""

from __future__ import annotations

from sitepress.config import FileSystemSource, SourceConfig
from sitepress.sources.base import (
    DocumentFailure,
    DocumentParseError,
    EnumerationResult,
    SourceEnumerationError,
)
from sitepress.sources.filesystem import FileSystemReader, parse_document


def enumerate_source(
    source: SourceConfig,
    *,
    extensions: list[str] | None = None,
) -> EnumerationResult:
    """Enumerate every document of ``source``.

    Raises:
        SourceEnumerationError: If the source cannot be enumerated as a whole.
    """
    if isinstance(source, FileSystemSource):
        return FileSystemReader(source, extensions=extensions).enumerate()
    raise SourceEnumerationError(f"Unsupported content source kind: {source.kind!r}")


__all__ = [
    "DocumentFailure",
    "DocumentParseError",
    "EnumerationResult",
    "FileSystemReader",
    "SourceEnumerationError",
    "enumerate_source",
    "parse_document",
]
