"""Project context.

The mutable state of one scaffolding run: project metadata, the parameter
values resolved for each module, the module whose blueprint is currently
running and the element bound by a ``for_each`` iteration.  One context is
created per run and passed explicitly to everything that needs it.
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

from .paths import PathResolver

if TYPE_CHECKING:
    from stackforge.registry.models import ModuleDescriptor


# Fallbacks for the environment tokens every blueprint may use.
ENV_DEFAULTS: dict[str, str] = {"NODE_ENV": "development", "USER": "user"}

_PARAMETER_PREFIX = "module.parameters."


def process_env() -> dict[str, str]:
    """Return the ``ENV_DEFAULTS`` keys that are set in the process environment.

    Other variables are never read, so ``{{env.SECRET}}`` style references
    stay verbatim unless the caller passes the value in explicitly.
    """
    return {key: os.environ[key] for key in ENV_DEFAULTS if key in os.environ}


class ProjectMetadata(BaseModel):
    """Fixed facts about the project being scaffolded."""

    name: str = Field(..., min_length=1)
    root: Path = Field(default=Path("."))
    framework: str = Field(default="")
    description: str = Field(default="")
    author: str = Field(default="")
    version: str = Field(default="0.1.0")
    license: str = Field(default="MIT")

    def token(self, key: str) -> tuple[bool, Any]:
        """Look up a ``project.<key>`` token.  ``path`` is an alias of ``root``."""
        if key in ("root", "path"):
            return True, self.root.as_posix()
        if key in ("name", "framework", "description", "author", "version", "license"):
            return True, getattr(self, key)
        return False, None


@dataclass
class ProjectContext:
    """Run-scoped state shared by the installer, executor and templates."""

    project: ProjectMetadata
    parameters: dict[str, dict[str, Any]] = field(default_factory=dict)
    module: Optional[ModuleDescriptor] = None
    paths: Optional[PathResolver] = None
    env: Mapping[str, str] = field(default_factory=process_env)
    item: Any = None
    item_bound: bool = False

    @property
    def root(self) -> Path:
        return self.project.root

    # ------------------------------------------------------------------
    # Module scope
    # ------------------------------------------------------------------

    def enter_module(self, descriptor: ModuleDescriptor, values: Optional[Mapping[str, Any]] = None) -> None:
        """Make *descriptor* current and record its parameter values."""
        merged = dict(self.parameters.get(descriptor.id, {}))
        merged.update(values or {})
        self.parameters[descriptor.id] = merged
        self.module = descriptor

    def module_parameters(self) -> dict[str, Any]:
        """Current module's values laid over its declared defaults."""
        if self.module is None:
            return {}
        values = {
            k: v for k, v in self.parameters.get(self.module.id, {}).items() if v is not None
        }
        return {**self.module.parameter_defaults(), **values}

    @contextmanager
    def bind_item(self, item: Any) -> Iterator["ProjectContext"]:
        """Bind *item* for the duration of one ``for_each`` iteration."""
        previous, previous_bound = self.item, self.item_bound
        self.item, self.item_bound = item, True
        try:
            yield self
        finally:
            self.item, self.item_bound = previous, previous_bound

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, reference: str) -> tuple[bool, Any]:
        """Resolve a dotted reference.

        Returns ``(found, value)``.  Sources are consulted in this order:
        ``paths.*``, ``project.*``, ``module.parameters.*``, ``module.*``,
        ``framework``, ``env.*``, ``item`` / ``item.*``.
        """
        head, _, rest = reference.partition(".")

        if head == "paths" and rest:
            value = self.paths.get(rest) if self.paths is not None else None
            return (value is not None), value

        if head == "project" and rest:
            return self.project.token(rest)

        if reference.startswith(_PARAMETER_PREFIX):
            return self._parameter(reference[len(_PARAMETER_PREFIX):])

        if head == "module" and rest and self.module is not None:
            if rest == "category":
                return True, self.module.category.value
            if rest in ("id", "name", "version", "description"):
                return True, getattr(self.module, rest)
            return False, None

        if reference == "framework":
            return True, self.project.framework

        if head == "env" and rest:
            if rest in self.env:
                return True, self.env[rest]
            if rest in ENV_DEFAULTS:
                return True, ENV_DEFAULTS[rest]
            return False, None

        if head == "item" and self.item_bound:
            if not rest:
                return True, self.item
            return _dig(self.item, rest.split("."))

        return False, None

    def resolve(self, selector: str, default: Any = None) -> Any:
        """Resolve *selector* to its value, or *default* when unknown."""
        found, value = self.lookup(selector.strip())
        return value if found else default

    def _parameter(self, name: str) -> tuple[bool, Any]:
        if self.module is None:
            return False, None
        key, _, nested = name.partition(".")
        values = self.module_parameters()
        if key in values:
            if nested:
                return _dig(values[key], nested.split("."))
            return True, values[key]
        if self.module.parameter(key) is not None and not nested:
            # Declared without a value or default
            return True, None
        return False, None


def _dig(value: Any, parts: list[str]) -> tuple[bool, Any]:
    for part in parts:
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif not isinstance(value, Mapping) and hasattr(value, part):
            value = getattr(value, part)
        else:
            return False, None
    return True, value
