"""HTML views rendered with Jinja2. Rendering is a pure function of view name + data."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

_TEMPLATES_DIR = Path(__file__).parent / "templates"

VIEWS = ("home", "login", "register", "secrets", "submit")


class ViewRenderer:
    def __init__(self, templates_dir: Path = _TEMPLATES_DIR) -> None:
        self._env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, view_name: str, **data: Any) -> str:
        if view_name not in VIEWS:
            raise ValueError(f"Unknown view: {view_name}")
        return self._env.get_template(f"{view_name}.html").render(**data)
