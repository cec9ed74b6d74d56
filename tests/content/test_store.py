"""Tests for the content stores (JSON and SQLite backends)."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from sitepress.content import store as store_module
from sitepress.content.models import ContentRecord
from sitepress.content.sqlite_store import SQLITE_FILENAME, SqliteContentStore
from sitepress.content.store import (
    STORE_FILENAME,
    ContentStore,
    JsonContentStore,
    StoreError,
    create_store,
)


def _make_record(
    slug: str = "post",
    source_id: str = "blog",
    version_hash: str = "h1",
    title: str = "Post",
    published_at: datetime | None = None,
    **kwargs: object,
) -> ContentRecord:
    return ContentRecord(
        source_id=source_id,
        slug=slug,
        version_hash=version_hash,
        title=title,
        body="Body",
        published_at=published_at or datetime(2024, 1, 1, tzinfo=UTC),
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.fixture(params=["json", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> ContentStore:
    return create_store(request.param, tmp_path)


class TestUpsert:
    def test_creates_record(self, store: ContentStore):
        store.upsert(_make_record())

        fetched = store.get("blog", "post")
        assert fetched is not None
        assert fetched.title == "Post"
        assert fetched.updated_at is None

    def test_replace_keeps_identity(self, store: ContentStore):
        first = store.upsert(_make_record(title="Version 1"))
        store.upsert(_make_record(title="Version 2", version_hash="h2", tags=["new"]))

        fetched = store.get("blog", "post")
        assert fetched is not None
        assert fetched.id == first.id
        assert fetched.created_at == first.created_at
        assert fetched.title == "Version 2"
        assert fetched.version_hash == "h2"
        assert fetched.tags == ["new"]
        assert fetched.updated_at is not None

    def test_one_record_per_natural_key(self, store: ContentStore):
        store.upsert(_make_record())
        store.upsert(_make_record(version_hash="h2"))
        assert len(store.list_by_source("blog")) == 1

    def test_same_slug_in_two_sources(self, store: ContentStore):
        store.upsert(_make_record(source_id="blog"))
        store.upsert(_make_record(source_id="docs"))
        assert store.source_ids() == ["blog", "docs"]


class TestReads:
    def test_slugs_and_hashes_scoped_to_source(self, store: ContentStore):
        store.upsert(_make_record(slug="a", version_hash="ha"))
        store.upsert(_make_record(slug="b", version_hash="hb"))
        store.upsert(_make_record(slug="c", source_id="docs", version_hash="hc"))

        assert store.list_slugs_and_hashes("blog") == {"a": "ha", "b": "hb"}
        assert store.list_slugs_and_hashes("missing") == {}

    def test_get_missing_returns_none(self, store: ContentStore):
        assert store.get("blog", "nope") is None

    def test_get_by_id(self, store: ContentStore):
        record = store.upsert(_make_record())
        fetched = store.get_by_id(record.id)
        assert fetched is not None
        assert fetched.slug == "post"
        assert store.get_by_id("cnt_missing") is None

    def test_list_by_source_newest_first(self, store: ContentStore):
        store.upsert(_make_record(slug="old", published_at=datetime(2023, 1, 1, tzinfo=UTC)))
        store.upsert(_make_record(slug="new", published_at=datetime(2024, 6, 1, tzinfo=UTC)))
        assert [r.slug for r in store.list_by_source("blog")] == ["new", "old"]

    def test_list_published_filters_future_and_deleted(self, store: ContentStore):
        store.upsert(_make_record(slug="live"))
        store.upsert(_make_record(slug="future", published_at=datetime(2030, 1, 1, tzinfo=UTC)))
        store.upsert(_make_record(slug="gone", deleted_at=datetime(2024, 2, 1, tzinfo=UTC)))

        now = datetime(2025, 1, 1, tzinfo=UTC)
        assert [r.slug for r in store.list_published("blog", now)] == ["live"]


class TestDelete:
    def test_deletes_only_given_slugs(self, store: ContentStore):
        store.upsert(_make_record(slug="a"))
        store.upsert(_make_record(slug="b"))
        store.upsert(_make_record(slug="a", source_id="docs"))

        removed = store.delete_by_slugs("blog", ["a", "missing"])

        assert removed == 1
        assert store.get("blog", "a") is None
        assert store.get("blog", "b") is not None
        assert store.get("docs", "a") is not None

    def test_empty_slug_list_is_noop(self, store: ContentStore):
        store.upsert(_make_record())
        assert store.delete_by_slugs("blog", []) == 0
        assert store.get("blog", "post") is not None


class TestJsonPersistence:
    def test_persists_to_disk(self, tmp_path: Path):
        store = JsonContentStore(tmp_path)
        store.upsert(_make_record())

        data = json.loads((tmp_path / STORE_FILENAME).read_text(encoding="utf-8"))
        assert len(data["records"]) == 1
        assert data["records"][0]["slug"] == "post"

    def test_reload_from_disk(self, tmp_path: Path):
        JsonContentStore(tmp_path).upsert(_make_record(title="Saved"))

        reloaded = JsonContentStore(tmp_path)
        fetched = reloaded.get("blog", "post")
        assert fetched is not None
        assert fetched.title == "Saved"

    def test_corrupt_file_starts_fresh(self, tmp_path: Path):
        (tmp_path / STORE_FILENAME).write_text("{not json", encoding="utf-8")
        store = JsonContentStore(tmp_path)
        assert store.source_ids() == []

    def test_write_failure_raises_and_rolls_back(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        store = JsonContentStore(tmp_path)
        store.upsert(_make_record(title="Original"))

        def _fail(path: Path, content: str) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(store_module, "_atomic_write", _fail)

        with pytest.raises(StoreError, match="disk full"):
            store.upsert(_make_record(title="Changed", version_hash="h2"))
        with pytest.raises(StoreError):
            store.delete_by_slugs("blog", ["post"])

        fetched = store.get("blog", "post")
        assert fetched is not None
        assert fetched.title == "Original"


class TestCreateStore:
    def test_json_backend(self, tmp_path: Path):
        assert isinstance(create_store("json", tmp_path), JsonContentStore)

    def test_sqlite_backend(self, tmp_path: Path):
        store = create_store("sqlite", tmp_path)
        assert isinstance(store, SqliteContentStore)
        assert (tmp_path / SQLITE_FILENAME).exists()

    def test_unknown_backend(self, tmp_path: Path):
        with pytest.raises(ValueError, match="Unknown store backend"):
            create_store("postgres", tmp_path)
