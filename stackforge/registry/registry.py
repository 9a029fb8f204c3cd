"""Module registry.

A lookup table from module identifier to ``ModuleDescriptor``.  The
registry is pure storage plus a handful of queries; discovery lives in
``stackforge.registry.loader`` and ordering in ``stackforge.resolver``.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator
from typing import Optional

from rich.markup import escape

from stackforge.utils import console

from .models import ModuleCategory, ModuleDescriptor


class RegistryError(Exception):
    """Raised when module manifests cannot be loaded or registered."""


class ModuleRegistry:
    """In-memory registry of module descriptors, keyed by id."""

    def __init__(self, modules: Iterable[ModuleDescriptor] = ()) -> None:
        self._modules: dict[str, ModuleDescriptor] = {}
        for module in modules:
            self.register(module)

    # -- Registration ------------------------------------------------------

    def register(self, module: ModuleDescriptor) -> None:
        """Add *module*, replacing (with a warning) any module with the same id."""
        if module.id in self._modules:
            console.print(
                f"[yellow]Module {escape(module.id)} is already registered, overwriting[/yellow]"
            )
        self._modules[module.id] = module

    def unregister(self, module_id: str) -> bool:
        """Remove a module.  Returns ``False`` if it was not registered."""
        return self._modules.pop(module_id, None) is not None

    # -- Lookup ------------------------------------------------------------

    def get(self, module_id: str) -> Optional[ModuleDescriptor]:
        return self._modules.get(module_id)

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def __iter__(self) -> Iterator[ModuleDescriptor]:
        return iter(self._modules.values())

    def ids(self) -> list[str]:
        """All registered ids, sorted."""
        return sorted(self._modules)

    def all(self) -> list[ModuleDescriptor]:
        return list(self._modules.values())

    # -- Queries -----------------------------------------------------------

    def by_category(self, category: ModuleCategory | str) -> list[ModuleDescriptor]:
        wanted = ModuleCategory(category)
        return [m for m in self._modules.values() if m.category is wanted]

    def categories(self) -> list[ModuleCategory]:
        """Distinct categories present in the registry, in first-seen order."""
        seen: dict[ModuleCategory, None] = {}
        for module in self._modules.values():
            seen.setdefault(module.category, None)
        return list(seen)

    def search(self, query: str) -> list[ModuleDescriptor]:
        """Case-insensitive match against id, name, description and tags."""
        needle = query.lower()
        return [
            m
            for m in self._modules.values()
            if needle in m.id.lower()
            or needle in m.name.lower()
            or needle in m.description.lower()
            or any(needle in tag.lower() for tag in m.tags)
        ]

    def statistics(self) -> dict[str, int]:
        """Module counts per category, plus a ``total`` entry."""
        counts = Counter(m.category.value for m in self._modules.values())
        return {"total": len(self._modules), **dict(counts)}
