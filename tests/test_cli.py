"""Smoke tests for the CLI."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from sitepress.analytics.store import ANALYTICS_FILENAME
from sitepress.cli import app
from sitepress.content.store import JsonContentStore
from sitepress.pipeline.stages import LEDGER_FILENAME

POST = """---
slug: {slug}
title: {title}
published_at: 2024-01-15T10:00:00Z
---

Body of {slug}.
"""


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """A project directory with one blog source and a config file."""
    content = tmp_path / "content"
    content.mkdir()
    (content / "hello.md").write_text(POST.format(slug="hello", title="Hello"))
    (content / "second.md").write_text(POST.format(slug="second", title="Second"))
    (tmp_path / "sitepress.toml").write_text(
        '[output]\ndirectory = "dist"\nstate_directory = "state"\n\n'
        '[site]\nbase_url = "https://example.com"\nname = "Example"\n\n'
        '[[sources]]\nsource_id = "blog"\npath = "content"\nurl_prefix = "/blog"\n'
    )
    return tmp_path


def _invoke(runner: CliRunner, site_dir: Path, *args: str):
    return runner.invoke(
        app,
        [
            "--config",
            str(site_dir / "sitepress.toml"),
            "--output",
            str(site_dir / "dist"),
            "--state-dir",
            str(site_dir / "state"),
            *args,
        ],
    )


class TestCLI:
    """Tests for the CLI entry point."""

    def test_main_help(self, runner: CliRunner) -> None:
        """Test that --help lists the commands."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "ingest" in result.output
        assert "publish" in result.output

    def test_main_version(self, runner: CliRunner) -> None:
        """Test that --version works."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "sitepress" in result.output


class TestIngestCommand:
    def test_ingest_creates_records(self, runner: CliRunner, site_dir: Path) -> None:
        result = _invoke(runner, site_dir, "ingest")

        assert result.exit_code == 0, result.output
        store = JsonContentStore(site_dir / "state")
        assert sorted(store.list_slugs_and_hashes("blog")) == ["hello", "second"]

    def test_plan_writes_nothing(self, runner: CliRunner, site_dir: Path) -> None:
        result = _invoke(runner, site_dir, "plan")

        assert result.exit_code == 0, result.output
        assert JsonContentStore(site_dir / "state").list_slugs_and_hashes("blog") == {}

    def test_keep_orphans(self, runner: CliRunner, site_dir: Path) -> None:
        _invoke(runner, site_dir, "ingest")
        (site_dir / "content" / "second.md").unlink()

        result = _invoke(runner, site_dir, "ingest", "--keep-orphans")

        assert result.exit_code == 0, result.output
        assert "second" in JsonContentStore(site_dir / "state").list_slugs_and_hashes("blog")

    def test_orphans_deleted_by_default(self, runner: CliRunner, site_dir: Path) -> None:
        _invoke(runner, site_dir, "ingest")
        (site_dir / "content" / "second.md").unlink()

        result = _invoke(runner, site_dir, "ingest")

        assert result.exit_code == 0, result.output
        assert list(JsonContentStore(site_dir / "state").list_slugs_and_hashes("blog")) == [
            "hello"
        ]

    def test_parse_errors_exit_zero(self, runner: CliRunner, site_dir: Path) -> None:
        (site_dir / "content" / "broken.md").write_text("no front matter")
        result = _invoke(runner, site_dir, "ingest")
        assert result.exit_code == 0, result.output

    def test_invalid_config_exits_one(self, runner: CliRunner, site_dir: Path) -> None:
        (site_dir / "sitepress.toml").write_text(
            '[[sources]]\nsource_id = "blog"\npath = "missing"\n'
        )
        result = _invoke(runner, site_dir, "ingest")
        assert result.exit_code == 1
        assert "does not exist" in result.output


class TestStageCommands:
    def test_run_sitemap_skipped_before_ingestion(
        self, runner: CliRunner, site_dir: Path
    ) -> None:
        result = _invoke(runner, site_dir, "run", "sitemap")
        assert result.exit_code == 0, result.output
        assert not (site_dir / "dist" / "sitemap.xml").exists()

    def test_run_unknown_stage(self, runner: CliRunner, site_dir: Path) -> None:
        result = _invoke(runner, site_dir, "run", "nope")
        assert result.exit_code == 1
        assert "Unknown stage" in result.output

    def test_publish_generates_artifacts(self, runner: CliRunner, site_dir: Path) -> None:
        result = _invoke(runner, site_dir, "publish")

        assert result.exit_code == 0, result.output
        dist = site_dir / "dist"
        assert "https://example.com/blog/hello" in (dist / "sitemap.xml").read_text()
        assert (dist / "robots.txt").exists()
        assert "# Example" in (dist / "llms.txt").read_text()
        assert "https://example.com/blog/hello" in (dist / "feed.xml").read_text()
        assert (dist / "blog" / "second" / "index.html").exists()
        ledger = json.loads((site_dir / "state" / LEDGER_FILENAME).read_text())
        assert ledger["ingestion"]["status"] == "succeeded"

    def test_stages_lists_every_stage(self, runner: CliRunner, site_dir: Path) -> None:
        result = _invoke(runner, site_dir, "stages")
        assert result.exit_code == 0, result.output
        assert "ingestion" in result.output
        assert "robots" in result.output


class TestRecordView:
    def test_records_event(self, runner: CliRunner, site_dir: Path) -> None:
        result = _invoke(
            runner, site_dir, "record-view", "/blog/hello", "--session", "abc", "--time-ms", "1500"
        )

        assert result.exit_code == 0, result.output
        data = json.loads((site_dir / "state" / ANALYTICS_FILENAME).read_text())
        assert data["events"][0]["page_url"] == "/blog/hello"
        assert data["events"][0]["time_on_page_ms"] == 1500

    def test_session_required(self, runner: CliRunner, site_dir: Path) -> None:
        result = _invoke(runner, site_dir, "record-view", "/blog/hello")
        assert result.exit_code != 0
