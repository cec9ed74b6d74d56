"""Template boundary used by the prerender stage.

Rendering full pages is delegated to a TemplateRenderer.  The builtin
renderer produces minimal standalone HTML; DirectoryRenderer lets a site
ship its own ``<template_id>.html`` files with ``$placeholder`` fields.
"""

from __future__ import annotations

import html
import logging
import string
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class TemplateNotFoundError(Exception):
    """Raised when a renderer has no template for the requested id."""


class TemplateRenderer(ABC):
    """Renders a named template with a data mapping to an HTML string."""

    @abstractmethod
    def has_template(self, template_id: str) -> bool:
        """Return True if ``template_id`` can be rendered."""

    @abstractmethod
    def render(self, template_id: str, data: dict[str, Any]) -> str:
        """Render ``template_id``.

        Raises:
            TemplateNotFoundError: If the template does not exist.
        """


def _paragraphs(body: str) -> str:
    blocks = [b.strip() for b in body.split("\n\n") if b.strip()]
    return "\n".join(f"<p>{html.escape(b)}</p>" for b in blocks)


def _page_shell(title: str, description: str, main: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>{html.escape(title)}</title>\n"
        f'<meta name="description" content="{html.escape(description)}">\n'
        "</head>\n"
        "<body>\n"
        f"{main}\n"
        "</body>\n"
        "</html>\n"
    )


def _render_page(data: dict[str, Any]) -> str:
    title = str(data.get("title", ""))
    description = str(data.get("description", ""))
    parts = [f"<article>\n<h1>{html.escape(title)}</h1>"]
    if data.get("author"):
        parts.append(f'<p class="author">{html.escape(str(data["author"]))}</p>')
    if data.get("published_at"):
        parts.append(f"<time>{html.escape(str(data['published_at']))}</time>")
    parts.append(_paragraphs(str(data.get("body", ""))))
    tags = data.get("tags") or []
    if tags:
        items = "".join(f"<li>{html.escape(str(t))}</li>" for t in tags)
        parts.append(f'<ul class="tags">{items}</ul>')
    parts.append("</article>")
    return _page_shell(title, description, "\n".join(parts))


def _render_list(data: dict[str, Any]) -> str:
    title = str(data.get("title", ""))
    items = []
    for entry in data.get("items", []):
        link = html.escape(str(entry.get("url", "")))
        label = html.escape(str(entry.get("title", "")))
        items.append(f'<li><a href="{link}">{label}</a></li>')
    main = f"<h1>{html.escape(title)}</h1>\n<ul>\n" + "\n".join(items) + "\n</ul>"
    return _page_shell(title, str(data.get("description", "")), main)


class BuiltinRenderer(TemplateRenderer):
    """Minimal HTML for ``page`` and ``list``; every other id is unknown."""

    _TEMPLATES = {
        "page": _render_page,
        "list": _render_list,
    }

    def has_template(self, template_id: str) -> bool:
        return template_id in self._TEMPLATES

    def render(self, template_id: str, data: dict[str, Any]) -> str:
        renderer = self._TEMPLATES.get(template_id)
        if renderer is None:
            raise TemplateNotFoundError(f"No builtin template {template_id!r}")
        return renderer(data)


class DirectoryRenderer(TemplateRenderer):
    """Loads ``<template_id>.html`` from a directory.

    Placeholders use ``string.Template`` syntax (``$title``, ``${body}``);
    values are HTML-escaped except ``content``, which carries the rendered
    body.  Ids without a file fall through to the builtin renderer.
    """

    def __init__(self, template_dir: Path, fallback: TemplateRenderer | None = None) -> None:
        self._dir = template_dir
        self._fallback = fallback or BuiltinRenderer()
        self._cache: dict[str, string.Template] = {}

    def _template_path(self, template_id: str) -> Path:
        return self._dir / f"{template_id}.html"

    def _load(self, template_id: str) -> string.Template | None:
        if template_id in self._cache:
            return self._cache[template_id]
        path = self._template_path(template_id)
        if not path.is_file():
            return None
        template = string.Template(path.read_text(encoding="utf-8"))
        self._cache[template_id] = template
        return template

    def has_template(self, template_id: str) -> bool:
        return self._template_path(template_id).is_file() or self._fallback.has_template(
            template_id
        )

    def render(self, template_id: str, data: dict[str, Any]) -> str:
        template = self._load(template_id)
        if template is None:
            return self._fallback.render(template_id, data)

        values = {k: html.escape(str(v)) for k, v in data.items() if not isinstance(v, list)}
        values["content"] = _paragraphs(str(data.get("body", "")))
        if "items" in data:
            values["content"] = "\n".join(
                f'<li><a href="{html.escape(str(e.get("url", "")))}">'
                f"{html.escape(str(e.get('title', '')))}</a></li>"
                for e in data["items"]
            )
        return template.safe_substitute(values)


def create_renderer(template_dir: str = "") -> TemplateRenderer:
    """Builtin templates, or a template directory layered over them."""
    if template_dir:
        path = Path(template_dir)
        if path.is_dir():
            return DirectoryRenderer(path)
        logger.warning("Template directory not found: %s, using builtin templates", path)
    return BuiltinRenderer()
