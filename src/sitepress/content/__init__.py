"""Content domain: document/record models, version hashing, and stores."""

from sitepress.content.fingerprint import FINGERPRINT_FIELDS, fingerprint
from sitepress.content.models import (
    ContentKind,
    ContentRecord,
    LinkMetadata,
    SourceDocument,
)
from sitepress.content.store import (
    ContentStore,
    JsonContentStore,
    StoreError,
    create_store,
)

__all__ = [
    "FINGERPRINT_FIELDS",
    "ContentKind",
    "ContentRecord",
    "ContentStore",
    "JsonContentStore",
    "LinkMetadata",
    "SourceDocument",
    "StoreError",
    "create_store",
    "fingerprint",
]
