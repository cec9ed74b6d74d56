"""Tests for front matter parsing and filesystem source enumeration."""

from datetime import UTC, date, datetime
from pathlib import Path

import pytest

from sitepress.config import FileSystemSource
from sitepress.content.models import ContentKind
from sitepress.sources import (
    DocumentParseError,
    SourceEnumerationError,
    enumerate_source,
    parse_document,
)
from sitepress.sources.filesystem import parse_published_at, split_frontmatter


def _doc(slug: str, title: str = "Title", body: str = "Body text.", **meta: str) -> str:
    lines = ["---", f"slug: {slug}", f"title: {title}", "published_at: 2024-01-15T10:00:00Z"]
    lines.extend(f"{k}: {v}" for k, v in meta.items())
    lines.extend(["---", "", body, ""])
    return "\n".join(lines)


def _source(root: Path, **kwargs: object) -> FileSystemSource:
    return FileSystemSource(source_id="blog", path=str(root), **kwargs)  # type: ignore[arg-type]


class TestSplitFrontmatter:
    def test_splits_meta_and_body(self):
        meta, body = split_frontmatter("---\ntitle: Hi\n---\n\n# Heading\n")
        assert meta == {"title": "Hi"}
        assert body == "# Heading"

    def test_strips_bom(self):
        meta, _ = split_frontmatter("\ufeff---\ntitle: Hi\n---\nbody")
        assert meta["title"] == "Hi"

    def test_missing_frontmatter(self):
        with pytest.raises(DocumentParseError, match="Missing"):
            split_frontmatter("# Just markdown")

    def test_unclosed_frontmatter(self):
        with pytest.raises(DocumentParseError, match="Unclosed"):
            split_frontmatter("---\ntitle: Hi\nbody")

    def test_invalid_yaml(self):
        with pytest.raises(DocumentParseError, match="Invalid YAML"):
            split_frontmatter("---\ntitle: [unclosed\n---\nbody")

    def test_non_mapping(self):
        with pytest.raises(DocumentParseError, match="mapping"):
            split_frontmatter("---\n- a\n- b\n---\nbody")


class TestParsePublishedAt:
    def test_iso_string_with_offset(self):
        value = parse_published_at("2024-01-15T12:00:00+02:00")
        assert value == datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

    def test_plain_date(self):
        assert parse_published_at(date(2024, 1, 15)) == datetime(2024, 1, 15, tzinfo=UTC)

    def test_naive_datetime_is_utc(self):
        assert parse_published_at(datetime(2024, 1, 15, 8)).tzinfo == UTC

    def test_missing(self):
        with pytest.raises(DocumentParseError, match="published_at"):
            parse_published_at(None)

    def test_garbage(self):
        with pytest.raises(DocumentParseError, match="Invalid datetime"):
            parse_published_at("next tuesday")


class TestParseDocument:
    def test_full_document(self):
        text = (
            "---\n"
            "slug: getting-started\n"
            "title: Getting Started\n"
            "description: First steps\n"
            "author: Docs Team\n"
            "published_at: 2024-01-15\n"
            "kind: Guide\n"
            "keywords: [setup, install]\n"
            "tags: [intro]\n"
            "links:\n"
            "  - title: Home\n"
            "    url: /\n"
            "---\n"
            "Welcome.\n"
        )
        doc = parse_document(text, file_path="getting-started.md")

        assert doc.slug == "getting-started"
        assert doc.kind == ContentKind.GUIDE
        assert doc.keywords == "setup, install"
        assert doc.tags == ["intro"]
        assert doc.links[0].url == "/"
        assert doc.body == "Welcome."
        assert doc.file_path == "getting-started.md"

    def test_missing_slug(self):
        with pytest.raises(DocumentParseError, match="slug"):
            parse_document("---\ntitle: T\npublished_at: 2024-01-01\n---\nx")

    @pytest.mark.parametrize("slug", ["../../escaped", "a/b", "a\\b", "..", "."])
    def test_rejects_slug_that_is_not_one_path_segment(self, slug: str):
        with pytest.raises(DocumentParseError, match="Invalid slug"):
            parse_document(f"---\nslug: '{slug}'\ntitle: T\npublished_at: 2024-01-01\n---\nx")

    def test_missing_title(self):
        with pytest.raises(DocumentParseError, match="title"):
            parse_document("---\nslug: s\npublished_at: 2024-01-01\n---\nx")

    def test_invalid_field_type(self):
        with pytest.raises(DocumentParseError, match="Invalid frontmatter"):
            parse_document(_doc("s", links="not-a-list"))


class TestEnumerateSource:
    def test_reads_nested_markdown(self, tmp_path: Path):
        (tmp_path / "a.md").write_text(_doc("a"), encoding="utf-8")
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "b.md").write_text(_doc("b"), encoding="utf-8")
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

        result = enumerate_source(_source(tmp_path))

        assert [d.slug for d in result.documents] == ["a", "b"]
        assert result.documents[1].file_path == "nested/b.md"
        assert result.files_found == 2
        assert result.failures == []

    def test_parse_failures_are_collected(self, tmp_path: Path):
        (tmp_path / "good.md").write_text(_doc("good"), encoding="utf-8")
        (tmp_path / "bad.md").write_text("no frontmatter", encoding="utf-8")

        result = enumerate_source(_source(tmp_path))

        assert [d.slug for d in result.documents] == ["good"]
        assert len(result.failures) == 1
        assert result.failures[0].path == "bad.md"
        assert result.files_found == 2

    def test_disallowed_kind_is_skipped(self, tmp_path: Path):
        (tmp_path / "guide.md").write_text(_doc("g", kind="guide"), encoding="utf-8")
        (tmp_path / "post.md").write_text(_doc("p", kind="blog"), encoding="utf-8")

        result = enumerate_source(_source(tmp_path, allowed_kinds=["blog"]))

        assert [d.slug for d in result.documents] == ["p"]
        assert result.skipped == ["guide.md"]

    def test_missing_root_raises(self, tmp_path: Path):
        with pytest.raises(SourceEnumerationError, match="does not exist"):
            enumerate_source(_source(tmp_path / "missing"))

    def test_file_root_raises(self, tmp_path: Path):
        target = tmp_path / "file.md"
        target.write_text(_doc("x"), encoding="utf-8")
        with pytest.raises(SourceEnumerationError, match="not a directory"):
            enumerate_source(_source(target))

    def test_custom_extensions(self, tmp_path: Path):
        (tmp_path / "a.markdown").write_text(_doc("a"), encoding="utf-8")
        result = enumerate_source(_source(tmp_path), extensions=[".markdown"])
        assert [d.slug for d in result.documents] == ["a"]
