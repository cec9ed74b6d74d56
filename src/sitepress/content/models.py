"""Content domain models: pure Pydantic v2 data types.

A SourceDocument is what a content source yields on every ingestion
pass; it is never persisted directly.  A ContentRecord is the stored
counterpart, keyed by ``(source_id, slug)`` and stamped with the
version hash of the document it was last written from.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class ContentKind(StrEnum):
    """Kind of content, used to pick the page template."""

    BLOG = "blog"
    GUIDE = "guide"
    TUTORIAL = "tutorial"
    REFERENCE = "reference"
    DOCS_INDEX = "docs-index"
    DOCS = "docs"
    DOCS_LIST = "docs-list"
    FEATURE = "feature"
    PLAYBOOK = "playbook"
    LEGAL = "legal"

    @classmethod
    def parse(cls, value: str | None) -> ContentKind:
        """Parse a front-matter kind, case-insensitively.

        ``page`` is an alias for ``legal``; anything unknown is a blog post.
        """
        if not value:
            return cls.BLOG
        normalized = value.strip().lower()
        if normalized == "page":
            return cls.LEGAL
        try:
            return cls(normalized)
        except ValueError:
            return cls.BLOG


class LinkMetadata(BaseModel):
    """A titled link attached to a document (related docs, code, etc.)."""

    title: str
    url: str


class SourceDocument(BaseModel):
    """A document as read from a content source during one ingestion pass."""

    slug: str
    title: str
    body: str
    description: str = ""
    author: str = ""
    published_at: datetime
    keywords: str = ""
    kind: ContentKind = ContentKind.BLOG
    image: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    links: list[LinkMetadata] = Field(default_factory=list)
    after_reading_this: list[str] = Field(default_factory=list)
    related_playbooks: list[LinkMetadata] = Field(default_factory=list)
    related_code: list[LinkMetadata] = Field(default_factory=list)
    related_docs: list[LinkMetadata] = Field(default_factory=list)

    # Ingestion-only: never part of the version hash.
    file_path: str = ""
    modified_at: datetime | None = None


def new_content_id() -> str:
    return f"cnt_{uuid.uuid4().hex}"


class ContentRecord(BaseModel):
    """Persisted content, one per ``(source_id, slug)``."""

    id: str = Field(default_factory=new_content_id)
    source_id: str
    slug: str
    category_id: str | None = None
    version_hash: str
    title: str
    body: str
    description: str = ""
    author: str = ""
    published_at: datetime
    keywords: str = ""
    kind: ContentKind = ContentKind.BLOG
    image: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    links: list[LinkMetadata] = Field(default_factory=list)
    after_reading_this: list[str] = Field(default_factory=list)
    related_playbooks: list[LinkMetadata] = Field(default_factory=list)
    related_code: list[LinkMetadata] = Field(default_factory=list)
    related_docs: list[LinkMetadata] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @classmethod
    def from_document(
        cls,
        document: SourceDocument,
        *,
        source_id: str,
        version_hash: str,
        category_id: str | None = None,
    ) -> ContentRecord:
        """Build a record carrying the full descriptive payload of ``document``."""
        payload = document.model_dump(exclude={"file_path", "modified_at"})
        return cls(
            source_id=source_id,
            category_id=category_id,
            version_hash=version_hash,
            **payload,
        )

    def is_published(self, now: datetime | None = None) -> bool:
        """Published means live now and not soft-deleted."""
        if self.deleted_at is not None:
            return False
        now = now or datetime.now(tz=UTC)
        return self.published_at <= now

    @property
    def last_modified(self) -> datetime:
        return self.updated_at or self.published_at
