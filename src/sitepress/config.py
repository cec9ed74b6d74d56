"""Unified configuration loaded from .sitepress.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".sitepress.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG_PATH = Path.home() / ".config" / "sitepress" / "config.toml"


class ConfigError(Exception):
    """Raised when configuration fails validation.

    Carries every problem found, not just the first.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid configuration:\n" + "\n".join(f"  - {e}" for e in errors))


class OutputConfig(BaseModel):
    """[output] section."""

    directory: str = "./dist"
    state_directory: str = "./.sitepress"


class SiteConfig(BaseModel):
    """[site] section: identity used by the generated artifacts."""

    base_url: str = "https://example.com"
    name: str = "Your Project Name"
    description: str = ""
    robots_disallow: list[str] = Field(default_factory=lambda: ["/api/", "/console/", "/_/"])
    quick_links: dict[str, str] = Field(default_factory=dict)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class StoreConfig(BaseModel):
    """[store] section."""

    backend: Literal["json", "sqlite"] = "json"


class IngestionConfig(BaseModel):
    """[ingestion] section."""

    delete_orphans: bool = True
    max_workers: int = Field(default=4, ge=1)
    extensions: list[str] = Field(default_factory=lambda: [".md"])


class FileSystemSource(BaseModel):
    """A ``[[sources]]`` entry backed by a directory of markdown files.

    ``kind`` tags the variant; filesystem directories are the only kind of
    content source today.
    """

    kind: Literal["filesystem"] = "filesystem"
    source_id: str
    category_id: str = ""
    path: str
    url_prefix: str = ""
    title: str = ""
    description: str = ""
    allowed_kinds: list[str] = Field(default_factory=list)
    enabled: bool = True
    changefreq: str = "weekly"
    priority: float = Field(default=0.8, ge=0.0, le=1.0)
    limit: int | None = Field(default=None, ge=1)

    @field_validator("url_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = value.strip().strip("/")
        return f"/{value}" if value else ""

    @property
    def root(self) -> Path:
        return Path(self.path)


SourceConfig = FileSystemSource


class AssetConfig(BaseModel):
    """An ``[[assets]]`` entry: a static file copied into the output tree."""

    source: str
    destination: str
    required: bool = False


class ScheduleEntryConfig(BaseModel):
    """A ``[schedule.<stage>]`` override."""

    cadence: str | None = None
    run_on_startup: bool | None = None
    enabled: bool = True


class RenderConfig(BaseModel):
    """[render] section."""

    template_dir: str = ""


class SitepressConfig(BaseModel):
    """Top-level configuration model for the publishing pipeline."""

    output: OutputConfig = Field(default_factory=OutputConfig)
    site: SiteConfig = Field(default_factory=SiteConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    sources: list[SourceConfig] = Field(default_factory=list)
    assets: list[AssetConfig] = Field(default_factory=list)
    schedule: dict[str, ScheduleEntryConfig] = Field(default_factory=dict)

    @property
    def output_dir(self) -> Path:
        return Path(self.output.directory)

    @property
    def state_dir(self) -> Path:
        return Path(self.output.state_directory)

    def enabled_sources(self) -> list[SourceConfig]:
        return [s for s in self.sources if s.enabled]

    def get_source(self, source_id: str) -> SourceConfig | None:
        for source in self.sources:
            if source.source_id == source_id:
                return source
        return None


def validate_config(config: SitepressConfig) -> list[str]:
    """Return every configuration problem found (empty when valid)."""
    errors: list[str] = []

    parsed = urlparse(config.site.base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        errors.append(
            f"site.base_url: must be an http(s) URL like https://example.com, "
            f"got {config.site.base_url!r}"
        )

    seen: set[str] = set()
    for i, source in enumerate(config.sources):
        prefix = f"sources[{i}]"
        if not source.source_id.strip():
            errors.append(f"{prefix}.source_id: cannot be empty")
            continue
        if source.source_id in seen:
            errors.append(f"{prefix}.source_id: duplicate source_id {source.source_id!r}")
        seen.add(source.source_id)
        if not source.enabled:
            continue
        if not source.root.exists():
            errors.append(
                f"{prefix}.path: content source {source.source_id!r} path does not exist "
                f"({source.root})"
            )
        elif not source.root.is_dir():
            errors.append(
                f"{prefix}.path: content source {source.source_id!r} path is not a directory "
                f"({source.root})"
            )

    return errors


def require_valid(config: SitepressConfig) -> SitepressConfig:
    """Validate ``config`` and raise ConfigError listing all problems."""
    errors = validate_config(config)
    if errors:
        raise ConfigError(errors)
    return config


def load_config(path: str | Path | None = None) -> SitepressConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .sitepress.toml in CWD
    3. ~/.config/sitepress/config.toml

    Relative source, asset and template paths are resolved against the
    directory of the file they came from.  Environment variables are
    applied on top.

    Args:
        path: Explicit path to a TOML file.

    Returns:
        Merged SitepressConfig.
    """
    data: dict[str, object] = {}
    base_dir = Path(".")

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
            base_dir = toml_path.parent
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                base_dir = candidate.parent
                logger.info("Loaded config from %s", candidate)
                break
        if not data and GLOBAL_CONFIG_PATH.exists():
            data = _load_toml(GLOBAL_CONFIG_PATH)
            base_dir = GLOBAL_CONFIG_PATH.parent
            logger.info("Loaded config from %s", GLOBAL_CONFIG_PATH)

    config = SitepressConfig.model_validate(data) if data else SitepressConfig()
    config = _resolve_paths(config, base_dir)

    return _apply_env_vars(config)


def merge_cli_overrides(config: SitepressConfig, **cli_kwargs: object) -> SitepressConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "output_directory": ("output", "directory"),
        "state_directory": ("output", "state_directory"),
        "base_url": ("site", "base_url"),
        "store_backend": ("store", "backend"),
        "delete_orphans": ("ingestion", "delete_orphans"),
        "max_workers": ("ingestion", "max_workers"),
    }

    for key, value in cli_kwargs.items():
        if value is None:
            continue
        if key in mapping:
            section, field = mapping[key]
            data[section][field] = value

    return SitepressConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _resolve(base_dir: Path, raw: str) -> str:
    if not raw:
        return raw
    candidate = Path(raw).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str((base_dir / candidate).resolve())


def _resolve_paths(config: SitepressConfig, base_dir: Path) -> SitepressConfig:
    data = config.model_dump()
    for source in data["sources"]:
        source["path"] = _resolve(base_dir, source["path"])
    for asset in data["assets"]:
        asset["source"] = _resolve(base_dir, asset["source"])
    data["render"]["template_dir"] = _resolve(base_dir, data["render"]["template_dir"])
    return SitepressConfig.model_validate(data)


def _apply_env_vars(config: SitepressConfig) -> SitepressConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "SITEPRESS_OUTPUT_DIR": ("output", "directory"),
        "SITEPRESS_STATE_DIR": ("output", "state_directory"),
        "SITEPRESS_BASE_URL": ("site", "base_url"),
        "SITEPRESS_STORE_BACKEND": ("store", "backend"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    orphans_raw = os.environ.get("SITEPRESS_DELETE_ORPHANS")
    if orphans_raw is not None:
        data["ingestion"]["delete_orphans"] = orphans_raw.lower() in ("true", "1", "yes")
    workers_raw = os.environ.get("SITEPRESS_MAX_WORKERS")
    if workers_raw is not None:
        data["ingestion"]["max_workers"] = int(workers_raw)

    return SitepressConfig.model_validate(data)
