"""JSON prompt catalogue used by query enhancement and AI contact extraction."""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any, Iterator

from contact_finder.services.logger import logger

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


def _flatten(node: dict[str, Any], prefix: str = "") -> Iterator[tuple[str, str]]:
    for name, value in node.items():
        key = f"{prefix}{name}"
        if isinstance(value, dict):
            yield from _flatten(value, key + ".")
        elif isinstance(value, list):
            yield key, "\n".join(str(line) for line in value)
        elif isinstance(value, str):
            yield key, value
        else:
            raise TypeError(f"Prompt '{key}' must be a string or a list of lines")


def _format_value(value: Any) -> str:
    if value is None:
        return "none"
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(v) for v in value) or "none"
    return str(value)


class PromptCatalog:
    """Dotted-key prompt lookup over a JSON file, reloaded when the file changes on disk."""

    def __init__(self, path: Path | str = PROMPTS_PATH):
        self.path = Path(path)
        self._templates: dict[str, Template] = {}
        self._mtime_ns: int | None = None

    def _refresh(self) -> None:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._mtime_ns == mtime_ns:
            return
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Prompt catalogue {self.path.name} must be a JSON object")
        self._templates = {key: Template(text) for key, text in _flatten(payload)}
        self._mtime_ns = mtime_ns
        logger.debug(f"Loaded {len(self._templates)} prompts from {self.path.name}")

    def keys(self) -> list[str]:
        self._refresh()
        return sorted(self._templates)

    def template(self, key: str) -> Template:
        self._refresh()
        template = self._templates.get(key)
        if template is None:
            raise KeyError(f"Prompt key not found: {key}")
        return template

    def placeholders(self, key: str) -> set[str]:
        return set(self.template(key).get_identifiers())

    def render(self, key: str, **values: Any) -> str:
        template = self.template(key)
        missing = set(template.get_identifiers()) - set(values)
        if missing:
            raise KeyError(f"Missing value(s) {', '.join(sorted(missing))} for prompt '{key}'")
        return template.substitute({name: _format_value(value) for name, value in values.items()})

    def clear(self) -> None:
        self._templates = {}
        self._mtime_ns = None


_catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    return _catalog.render(key, **values)


def clear_prompt_cache() -> None:
    _catalog.clear()
