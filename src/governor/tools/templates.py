"""Minimal candidate generators keyed by application type."""

from __future__ import annotations

import logging
import re
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List

__all__ = ["DEFAULT_TEMPLATE", "TemplateContext", "generate_candidate", "resolve_template_id"]

LOGGER = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "console"

_ALIASES = {
    "console": "console",
    "console-app": "console",
    "cli": "console",
    "script": "console",
    "library": "library",
    "lib": "library",
    "package": "library",
}


@dataclass(frozen=True, slots=True)
class TemplateContext:
    app_id: str
    item_id: int
    title: str


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _readme(context: TemplateContext) -> str:
    return f"# {context.app_id}\n\nGenerated for backlog item {context.item_id}: {context.title}\n"


def _console(target: Path, context: TemplateContext) -> List[Path]:
    main = textwrap.dedent(
        f'''\
        """Entry point for {context.app_id}."""


        def main() -> int:
            print("Hello from {context.app_id} (item {context.item_id}).")
            return 0


        if __name__ == "__main__":
            raise SystemExit(main())
        '''
    )
    return [_write(target / "main.py", main), _write(target / "README.md", _readme(context))]


def _package_name(app_id: str) -> str:
    name = re.sub(r"[^a-z0-9_]", "_", app_id.lower())
    return name if name[:1].isalpha() else f"app_{name}"


def _library(target: Path, context: TemplateContext) -> List[Path]:
    package = _package_name(context.app_id)
    init = textwrap.dedent(
        '''\
        """Library package generated by governor."""


        def greet(name: str) -> str:
            return f"Hello, {name}."
        '''
    )
    main = textwrap.dedent(
        f'''\
        """Smoke check for the {package} package."""

        from {package} import greet


        def main() -> int:
            message = greet("{context.app_id}")
            print(message)
            return 0 if message.endswith(".") else 1


        if __name__ == "__main__":
            raise SystemExit(main())
        '''
    )
    return [
        _write(target / package / "__init__.py", init),
        _write(target / "main.py", main),
        _write(target / "README.md", _readme(context)),
    ]


_TEMPLATES: Dict[str, Callable[[Path, TemplateContext], List[Path]]] = {
    "console": _console,
    "library": _library,
}


def resolve_template_id(app_type: str) -> str:
    key = app_type.strip().lower().replace("_", "-")
    template_id = _ALIASES.get(key)
    if template_id is None:
        LOGGER.warning("No template for application type '%s'; using '%s'.", app_type, DEFAULT_TEMPLATE)
        return DEFAULT_TEMPLATE
    return template_id


def generate_candidate(template_id: str, target: Path, context: TemplateContext) -> List[Path]:
    """Populate ``target`` with the files of ``template_id``."""
    try:
        generator = _TEMPLATES[template_id]
    except KeyError as error:
        raise ValueError(f"Unknown template: {template_id}") from error
    target.mkdir(parents=True, exist_ok=True)
    written = generator(target, context)
    LOGGER.info("Generated %d file(s) from template '%s' in %s", len(written), template_id, target)
    return written
