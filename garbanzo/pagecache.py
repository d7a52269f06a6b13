"""Preloaded HTML templates: full pages on a base layout, and standalone fragments."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, Template, TemplateNotFound
from starlette.responses import HTMLResponse

PAGES_DIR = "pages"
FRAGMENTS_DIR = "fragments"
BASE_TEMPLATE = "base.html"


class TemplateNotFoundError(LookupError):
    """Raised when a template name is not in the cache."""


def first_letter(s: str) -> str:
    """Return the first character of ``s`` in upper case, or an empty string."""
    return s[:1].upper()


def _context(data: Any) -> dict[str, Any]:
    if isinstance(data, Mapping):
        return {**data, "data": data}
    return {"data": data}


class PageCache:
    """Templates loaded from ``root``: ``base.html``, ``pages/*.html`` and ``fragments/*.html``.

    Pages extend the base layout and may include fragments. The value handed to
    a render call is available as ``data``; a mapping's keys are also top-level names.
    """

    def __init__(self, root: str | Path = "templates") -> None:
        root = Path(root)
        self._env = Environment(loader=FileSystemLoader(str(root)), autoescape=True)
        self._env.globals["first_letter"] = first_letter
        self._env.filters["first_letter"] = first_letter

        self._pages: dict[str, Template] = {}
        page_files = sorted((root / PAGES_DIR).glob("*.html"))
        if page_files:
            self._load(BASE_TEMPLATE)
        for path in page_files:
            self._pages[path.name] = self._load(f"{PAGES_DIR}/{path.name}")

        fragments = {
            path.name: self._load(f"{FRAGMENTS_DIR}/{path.name}")
            for path in sorted((root / FRAGMENTS_DIR).glob("*.html"))
        }
        self._cache: dict[str, Template] = {**self._pages, **fragments}

    def _load(self, name: str) -> Template:
        try:
            return self._env.get_template(name)
        except TemplateNotFound as exc:
            raise TemplateNotFoundError(f"template not found: {exc.name}") from exc

    def _lookup(self, table: Mapping[str, Template], name: str) -> Template:
        try:
            return table[name]
        except KeyError:
            raise TemplateNotFoundError(f"template not found: {name}") from None

    def render(self, name: str, data: Any = None) -> HTMLResponse:
        """Render the page ``name`` inside the base layout."""
        template = self._lookup(self._pages, name)
        return HTMLResponse(template.render(_context(data)))

    def render_fragment(self, name: str, data: Any = None) -> HTMLResponse:
        """Render the template ``name`` on its own."""
        return HTMLResponse(self.fragment_string(name, data))

    def fragment_string(self, name: str, data: Any = None) -> str:
        """Render the template ``name`` on its own and return the text."""
        return self._lookup(self._cache, name).render(_context(data))