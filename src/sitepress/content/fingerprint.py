"""Version hashing for source documents.

The hash is the only signal the reconciliation engine uses to decide
whether a stored record is stale, so every field that can change the
rendered output must be listed in FINGERPRINT_FIELDS.  The owning
source's category id is stamped onto every record, so it is hashed too
(see RECORD_FIELDS).  Ingestion-only data (file path, modification time)
must never be.
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from typing import Any

from sitepress.content.models import SourceDocument

# Bump when FINGERPRINT_FIELDS or the encoding changes; every stored
# record is then rewritten once on the next pass.
FINGERPRINT_VERSION = "2"

FINGERPRINT_FIELDS: tuple[str, ...] = (
    "slug",
    "title",
    "description",
    "body",
    "author",
    "published_at",
    "keywords",
    "kind",
    "image",
    "category",
    "tags",
    "links",
    "after_reading_this",
    "related_playbooks",
    "related_code",
    "related_docs",
)

# Record fields taken from the source configuration rather than the file.
RECORD_FIELDS: tuple[str, ...] = ("category_id",)


def _normalize_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def _canonical_payload(document: SourceDocument, category_id: str | None) -> dict[str, Any]:
    data = document.model_dump(mode="json", include=set(FINGERPRINT_FIELDS))
    data["published_at"] = _normalize_datetime(document.published_at)
    data["category_id"] = category_id
    data["_v"] = FINGERPRINT_VERSION
    return data


def fingerprint(document: SourceDocument, *, category_id: str | None = None) -> str:
    """Return the hex SHA-256 version hash of a document's rendered fields.

    ``category_id`` is the owning source's category, so moving a source
    to another category rewrites its records.
    """
    encoded = json.dumps(
        _canonical_payload(document, category_id),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
