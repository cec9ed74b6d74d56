"""Tests for the sitemap, robots, llms.txt and feed generators."""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from sitepress.config import FileSystemSource, OutputConfig, SiteConfig, SitepressConfig
from sitepress.content.models import ContentRecord
from sitepress.content.store import JsonContentStore
from sitepress.pipeline.crawler_manifest import MANIFEST_FILENAME, build_manifest
from sitepress.pipeline.feed import FEED_FILENAME, build_feed, feed_items
from sitepress.pipeline.publish import create_pipeline
from sitepress.pipeline.robots import ROBOTS_FILENAME, build_robots
from sitepress.pipeline.sitemap import SITEMAP_FILENAME, build_sitemap

NOW = datetime(2025, 1, 1, tzinfo=UTC)


def _make_record(
    slug: str,
    source_id: str = "blog",
    title: str | None = None,
    published_at: datetime | None = None,
    **kwargs: object,
) -> ContentRecord:
    return ContentRecord(
        source_id=source_id,
        slug=slug,
        version_hash="h",
        title=title or slug.title(),
        body="Body",
        published_at=published_at or datetime(2024, 5, 1, tzinfo=UTC),
        **kwargs,  # type: ignore[arg-type]
    )


def _blog(tmp_path: Path, **kwargs: object) -> FileSystemSource:
    defaults: dict[str, object] = {
        "source_id": "blog",
        "path": str(tmp_path),
        "url_prefix": "/blog",
        "title": "Blog",
        "description": "Articles and updates.",
    }
    defaults.update(kwargs)
    return FileSystemSource(**defaults)  # type: ignore[arg-type]


@pytest.fixture
def site() -> SiteConfig:
    return SiteConfig(base_url="https://example.com/", name="Example", description="An example.")


class TestRobots:
    def test_default_policy(self, site: SiteConfig):
        assert build_robots(site) == (
            "User-agent: *\n"
            "Allow: /\n"
            "\n"
            "Disallow: /api/\n"
            "Disallow: /console/\n"
            "Disallow: /_/\n"
            "\n"
            "Sitemap: https://example.com/sitemap.xml\n"
        )

    def test_no_disallow_rules(self):
        text = build_robots(SiteConfig(base_url="https://x.dev", robots_disallow=[]))
        assert "Disallow" not in text
        assert text.endswith("Sitemap: https://x.dev/sitemap.xml\n")


class TestSitemap:
    def test_urls_sorted_with_home(self, site: SiteConfig, tmp_path: Path):
        source = _blog(tmp_path)
        records = [_make_record("zeta"), _make_record("alpha")]

        xml = build_sitemap(site, [(source, records)])

        locs = [line.strip()[5:-6] for line in xml.splitlines() if "<loc>" in line]
        assert locs == [
            "https://example.com/",
            "https://example.com/blog/alpha",
            "https://example.com/blog/zeta",
        ]
        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert "<lastmod>2024-05-01</lastmod>" in xml
        assert "<changefreq>weekly</changefreq>" in xml
        assert "<priority>0.8</priority>" in xml

    def test_lastmod_uses_updated_at(self, site: SiteConfig, tmp_path: Path):
        record = _make_record("a", updated_at=datetime(2024, 9, 9, tzinfo=UTC))
        xml = build_sitemap(site, [(_blog(tmp_path), [record])])
        assert "<lastmod>2024-09-09</lastmod>" in xml

    def test_escapes_loc(self, site: SiteConfig, tmp_path: Path):
        xml = build_sitemap(site, [(_blog(tmp_path), [_make_record("a&b")])])
        assert "https://example.com/blog/a&amp;b" in xml

    def test_deterministic(self, site: SiteConfig, tmp_path: Path):
        source = _blog(tmp_path)
        records = [_make_record("a"), _make_record("b")]
        assert build_sitemap(site, [(source, records)]) == build_sitemap(
            site, [(source, list(reversed(records)))]
        )


    def test_source_without_prefix_is_left_out(self, site: SiteConfig, tmp_path: Path):
        hidden = _blog(tmp_path, source_id="notes", url_prefix="")
        xml = build_sitemap(site, [(hidden, [_make_record("private", source_id="notes")])])
        assert "private" not in xml
        assert xml.count("<url>") == 1

    def test_duplicate_url_keeps_first_source(self, site: SiteConfig, tmp_path: Path):
        first = _blog(tmp_path, changefreq="daily")
        second = _blog(tmp_path, source_id="mirror", changefreq="monthly")
        xml = build_sitemap(
            site,
            [
                (first, [_make_record("post")]),
                (second, [_make_record("post", source_id="mirror")]),
            ],
        )
        assert xml.count("https://example.com/blog/post") == 1
        assert "<changefreq>monthly</changefreq>" not in xml


class TestManifest:
    def test_layout(self, site: SiteConfig, tmp_path: Path):
        site.quick_links = {"Blog": "/blog", "GitHub": "https://github.com/example"}
        records = [
            _make_record("b-post", title="Beta", description="Second"),
            _make_record("a-post", title="Alpha"),
        ]

        text = build_manifest(site, [(_blog(tmp_path), records)])

        assert text.splitlines()[:3] == ["# Example", "", "> An example."]
        assert "- Homepage: https://example.com" in text
        assert "- Blog: https://example.com/blog" in text
        assert "- GitHub: https://github.com/example" in text
        assert "## Blog\n\nArticles and updates.\n" in text
        alpha = text.index("- [Alpha](https://example.com/blog/a-post)")
        beta = text.index("- [Beta](https://example.com/blog/b-post): Second")
        assert alpha < beta
        assert text.endswith("## Resources\n\n- Sitemap: https://example.com/sitemap.xml\n")

    def test_limit_keeps_newest(self, site: SiteConfig, tmp_path: Path):
        records = [
            _make_record("new", published_at=datetime(2024, 6, 1, tzinfo=UTC)),
            _make_record("mid", published_at=datetime(2024, 5, 1, tzinfo=UTC)),
            _make_record("old", published_at=datetime(2024, 4, 1, tzinfo=UTC)),
        ]
        text = build_manifest(site, [(_blog(tmp_path, limit=2), records)])
        assert "/blog/new" in text
        assert "/blog/mid" in text
        assert "/blog/old" not in text


    def test_source_without_prefix_is_left_out(self, site: SiteConfig, tmp_path: Path):
        hidden = _blog(tmp_path, source_id="notes", title="Notes", url_prefix="")
        text = build_manifest(site, [(hidden, [_make_record("private", source_id="notes")])])
        assert "## Notes" not in text
        assert "private" not in text


class TestFeed:
    def test_channel_and_items(self, site: SiteConfig, tmp_path: Path):
        records = [
            _make_record("new", title="New & shiny", description="Fresh <post>"),
            _make_record("old", published_at=datetime(2024, 4, 1, tzinfo=UTC)),
        ]

        xml = build_feed(site, [(_blog(tmp_path), records)])

        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<rss version="2.0"')
        assert "<title>Example</title>" in xml
        assert "<link>https://example.com/</link>" in xml
        assert "<title>New &amp; shiny</title>" in xml
        assert "<description>Fresh &lt;post&gt;</description>" in xml
        assert '<guid isPermaLink="true">https://example.com/blog/new</guid>' in xml
        assert "<pubDate>Wed, 01 May 2024 00:00:00 GMT</pubDate>" in xml
        assert xml.index("/blog/new") < xml.index("/blog/old")

    def test_newest_items_across_sources(self, tmp_path: Path):
        blog = _blog(tmp_path)
        docs = _blog(tmp_path, source_id="docs", url_prefix="/docs")
        published = [
            (blog, [_make_record("b1", published_at=datetime(2024, 3, 1, tzinfo=UTC))]),
            (
                docs,
                [
                    _make_record("d2", "docs", published_at=datetime(2024, 6, 1, tzinfo=UTC)),
                    _make_record("d1", "docs", published_at=datetime(2024, 1, 1, tzinfo=UTC)),
                ],
            ),
        ]

        items = feed_items(published, limit=2)

        assert [record.slug for _, record in items] == ["d2", "b1"]

    def test_source_without_prefix_is_left_out(self, site: SiteConfig, tmp_path: Path):
        hidden = _blog(tmp_path, source_id="notes", url_prefix="")
        xml = build_feed(site, [(hidden, [_make_record("private", source_id="notes")])])
        assert "<item>" not in xml
        assert "lastBuildDate" not in xml


class TestGeneratorStages:
    def _pipeline(self, tmp_path: Path):
        config = SitepressConfig(
            output=OutputConfig(
                directory=str(tmp_path / "dist"), state_directory=str(tmp_path / "state")
            ),
            site=SiteConfig(base_url="https://example.com"),
            sources=[_blog(tmp_path / "content")],
        )
        store = JsonContentStore(tmp_path / "state")
        store.upsert(_make_record("live"))
        store.upsert(_make_record("future", published_at=datetime(2030, 1, 1, tzinfo=UTC)))
        store.upsert(_make_record("gone", deleted_at=datetime(2024, 6, 1, tzinfo=UTC)))
        return create_pipeline(config, store=store, now_fn=lambda: NOW)

    def test_sitemap_only_published(self, tmp_path: Path):
        pipeline = self._pipeline(tmp_path)
        result = pipeline.get("sitemap").run(pipeline.context)  # type: ignore[misc]

        xml = (tmp_path / "dist" / SITEMAP_FILENAME).read_text(encoding="utf-8")
        assert "/blog/live" in xml
        assert "/blog/future" not in xml
        assert "/blog/gone" not in xml
        assert result["urls"] == 2

    def test_manifest_only_published(self, tmp_path: Path):
        pipeline = self._pipeline(tmp_path)
        pipeline.get("crawler_manifest").run(pipeline.context)  # type: ignore[misc]

        text = (tmp_path / "dist" / MANIFEST_FILENAME).read_text(encoding="utf-8")
        assert "/blog/live" in text
        assert "/blog/future" not in text

    def test_robots_written(self, tmp_path: Path):
        pipeline = self._pipeline(tmp_path)
        pipeline.get("robots").run(pipeline.context)  # type: ignore[misc]
        assert (tmp_path / "dist" / ROBOTS_FILENAME).read_text(encoding="utf-8").startswith(
            "User-agent: *"
        )

    def test_failed_write_keeps_previous_artifact(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        pipeline = self._pipeline(tmp_path)
        target = tmp_path / "dist" / SITEMAP_FILENAME
        target.parent.mkdir(parents=True)
        target.write_text("previous", encoding="utf-8")

        def _boom(*args: object, **kwargs: object) -> str:
            raise RuntimeError("render failed")

        monkeypatch.setattr("sitepress.pipeline.sitemap.build_sitemap", _boom)
        with pytest.raises(RuntimeError):
            pipeline.get("sitemap").run(pipeline.context)  # type: ignore[misc]
        assert target.read_text(encoding="utf-8") == "previous"

    def test_feed_only_published(self, tmp_path: Path):
        pipeline = self._pipeline(tmp_path)
        result = pipeline.get("feed").run(pipeline.context)  # type: ignore[misc]

        xml = (tmp_path / "dist" / FEED_FILENAME).read_text(encoding="utf-8")
        assert "/blog/live" in xml
        assert "/blog/future" not in xml
        assert "/blog/gone" not in xml
        assert result["items"] == 1
