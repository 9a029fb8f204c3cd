"""Jinja2 rendering for file-based blueprint content.

A ``CREATE_FILE`` action may point at a template file instead of carrying
inline content.  Those files are Jinja2 templates stored next to the
module's manifest and rendered with a context dictionary built from the
run's ``ProjectContext``.  The rendered text is then handed to the
``TemplateProcessor`` like any inline content.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape
from jinja2 import TemplateError as JinjaTemplateError

from .context import ProjectContext
from .template import TemplateError


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders Jinja2 template files that live beside module manifests.

    One ``Environment`` is kept per template directory so ``{% include %}``
    and ``{% extends %}`` resolve relative to the module that owns the
    template.
    """

    def __init__(self) -> None:
        self._environments: dict[Path, Environment] = {}

    def environment(self, template_dir: str | Path) -> Environment:
        key = Path(template_dir).resolve()
        env = self._environments.get(key)
        if env is None:
            env = _make_environment(key)
            self._environments[key] = env
        return env

    # -- Rendering ---------------------------------------------------------

    def render(self, template_path: str, template_dir: str | Path, context: dict[str, Any]) -> str:
        """Render *template_path* (relative to *template_dir*).

        Raises:
            TemplateError: If the template is missing or fails to render.
        """
        try:
            template = self.environment(template_dir).get_template(template_path)
            return template.render(**context)
        except TemplateNotFound as exc:
            raise TemplateError(f"Template file not found: {template_path} (in {template_dir})") from exc
        except JinjaTemplateError as exc:
            raise TemplateError(f"Failed to render {template_path}: {exc}") from exc


def build_template_context(context: ProjectContext) -> dict[str, Any]:
    """Flatten *context* into the dictionary exposed to Jinja2 templates."""
    module = context.module
    return {
        "project": {
            **context.project.model_dump(mode="json"),
            "path": context.project.root.as_posix(),
        },
        "module": (
            {
                "id": module.id,
                "name": module.display_name,
                "category": module.category.value,
                "version": module.version,
            }
            if module is not None
            else {}
        ),
        "params": context.module_parameters(),
        "item": context.item if context.item_bound else None,
        "paths": context.paths.as_dict() if context.paths is not None else {},
        "env": dict(context.env),
        "framework": context.project.framework,
    }


# ---------------------------------------------------------------------------
# Environment factory
# ---------------------------------------------------------------------------

def _make_environment(template_dir: Path) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape([], default_for_string=False),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["slugify"] = slugify
    env.filters["pascal_case"] = pascal_case
    env.filters["snake_case"] = snake_case
    env.filters["camel_case"] = camel_case
    return env


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

def slugify(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower().strip())
    return slug.strip("-")


def pascal_case(value: str) -> str:
    """``some-thing`` or ``some_thing`` -> ``SomeThing``."""
    parts = re.split(r"[-_\s]+", value)
    return "".join(word[:1].upper() + word[1:] for word in parts if word)


def snake_case(value: str) -> str:
    """``SomeThing`` or ``some-thing`` -> ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", value)
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-\s]+", "_", s2).lower()


def camel_case(value: str) -> str:
    """``some-thing`` or ``some_thing`` -> ``someThing``."""
    pascal = pascal_case(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""
