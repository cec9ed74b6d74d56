"""Markdown-directory content source.

Each ``*.md`` file under the source root is one document: a YAML front
matter block delimited by ``---`` lines followed by the markdown body.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from sitepress.config import FileSystemSource
from sitepress.content.models import ContentKind, SourceDocument
from sitepress.sources.base import (
    DocumentFailure,
    DocumentParseError,
    EnumerationResult,
    SourceEnumerationError,
)

logger = logging.getLogger(__name__)

_FRONTMATTER_CLOSE = re.compile(r"^---[ \t]*$", re.MULTILINE)

_LIST_FIELDS = (
    "tags",
    "links",
    "after_reading_this",
    "related_playbooks",
    "related_code",
    "related_docs",
)


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a markdown file into (front matter mapping, body).

    Raises:
        DocumentParseError: If the front matter is missing, unclosed, not
            valid YAML, or not a mapping.
    """
    text = text.lstrip("\ufeff")
    if not text.startswith("---"):
        raise DocumentParseError("Missing YAML frontmatter")

    first_newline = text.find("\n")
    if first_newline == -1:
        raise DocumentParseError("Unclosed YAML frontmatter")
    match = _FRONTMATTER_CLOSE.search(text, first_newline + 1)
    if match is None:
        raise DocumentParseError("Unclosed YAML frontmatter")

    raw = text[first_newline + 1 : match.start()]
    body = text[match.end() :].strip()

    try:
        data = yaml.safe_load(raw) if raw.strip() else {}
    except yaml.YAMLError as exc:
        raise DocumentParseError(f"Invalid YAML frontmatter: {exc}") from exc
    if not isinstance(data, dict):
        raise DocumentParseError("YAML frontmatter must be a mapping")
    return data, body


def parse_published_at(value: Any) -> datetime:
    """Accept RFC 3339 timestamps, plain dates, or YAML-native values; return UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            try:
                dt = datetime.strptime(raw, "%Y-%m-%d")
            except ValueError:
                raise DocumentParseError(f"Invalid datetime: {raw}") from None
    else:
        raise DocumentParseError("Missing published_at")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def is_safe_slug(slug: str) -> bool:
    """A slug is a single URL path segment: no separators, not ``.`` or ``..``."""
    return "/" not in slug and "\\" not in slug and slug not in (".", "..")


def _keywords(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def parse_document(
    text: str,
    *,
    file_path: str = "",
    modified_at: datetime | None = None,
) -> SourceDocument:
    """Parse one markdown file into a SourceDocument."""
    meta, body = split_frontmatter(text)

    slug = str(meta.get("slug") or "").strip()
    if not slug:
        raise DocumentParseError("Missing slug")
    if not is_safe_slug(slug):
        raise DocumentParseError(f"Invalid slug: {slug!r}")
    title = str(meta.get("title") or "").strip()
    if not title:
        raise DocumentParseError("Missing title")

    payload: dict[str, Any] = {
        "slug": slug,
        "title": title,
        "body": body,
        "description": str(meta.get("description") or ""),
        "author": str(meta.get("author") or ""),
        "published_at": parse_published_at(meta.get("published_at")),
        "keywords": _keywords(meta.get("keywords")),
        "kind": ContentKind.parse(meta.get("kind")),
        "image": meta.get("image") or None,
        "category": meta.get("category") or None,
        "file_path": file_path,
        "modified_at": modified_at,
    }
    for field in _LIST_FIELDS:
        value = meta.get(field)
        if value is not None:
            payload[field] = value

    try:
        return SourceDocument.model_validate(payload)
    except ValidationError as exc:
        raise DocumentParseError(f"Invalid frontmatter fields: {exc}") from exc


class FileSystemReader:
    """Enumerates markdown documents under a FileSystemSource root."""

    def __init__(self, source: FileSystemSource, *, extensions: list[str] | None = None) -> None:
        self._source = source
        self._extensions = {e.lower() for e in (extensions or [".md"])}

    def _walk(self, root: Path) -> list[Path]:
        def _raise(err: OSError) -> None:
            raise err

        files: list[Path] = []
        try:
            for dirpath, dirnames, filenames in os.walk(root, onerror=_raise, followlinks=True):
                dirnames.sort()
                for name in sorted(filenames):
                    if Path(name).suffix.lower() in self._extensions:
                        files.append(Path(dirpath) / name)
        except OSError as exc:
            raise SourceEnumerationError(
                f"Failed to list content source {self._source.source_id!r} at {root}: {exc}"
            ) from exc
        return files

    def enumerate(self) -> EnumerationResult:
        """Read every document under the source root.

        Raises:
            SourceEnumerationError: If the root is missing, not a
                directory, or cannot be listed.  Individual unreadable or
                malformed files are reported as failures instead.
        """
        root = self._source.root
        if not root.exists():
            raise SourceEnumerationError(
                f"Content source {self._source.source_id!r} path does not exist: {root}"
            )
        if not root.is_dir():
            raise SourceEnumerationError(
                f"Content source {self._source.source_id!r} path is not a directory: {root}"
            )

        result = EnumerationResult(source_id=self._source.source_id)
        allowed = {ContentKind.parse(k) for k in self._source.allowed_kinds}

        for path in self._walk(root):
            rel = path.relative_to(root).as_posix()
            try:
                text = path.read_text(encoding="utf-8")
                modified_at = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
            except (OSError, UnicodeDecodeError) as exc:
                result.failures.append(
                    DocumentFailure(
                        path=rel, message=f"Failed to read: {exc}", error_type="read_error"
                    )
                )
                continue

            try:
                document = parse_document(text, file_path=rel, modified_at=modified_at)
            except DocumentParseError as exc:
                result.failures.append(DocumentFailure(path=rel, message=str(exc)))
                continue

            if allowed and document.kind not in allowed:
                logger.info(
                    "Skipping %s in source %s: kind %s not allowed",
                    rel,
                    self._source.source_id,
                    document.kind,
                )
                result.skipped.append(rel)
                continue

            result.documents.append(document)

        logger.debug(
            "Enumerated source %s: %d documents, %d failures, %d skipped",
            self._source.source_id,
            len(result.documents),
            len(result.failures),
            len(result.skipped),
        )
        return result
