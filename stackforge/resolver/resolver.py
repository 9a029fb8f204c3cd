"""Dependency resolver.

Turns a requested set of module ids into a dependency-first install order.
The resolver never raises for defects in the request: missing modules,
pairwise conflicts and dependency cycles are all collected into one
``ResolutionResult`` so the caller can report every problem at once.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum

from rich.markup import escape
from rich.table import Table

from stackforge.registry import ModuleRegistry
from stackforge.utils import console


class ConflictKind(str, Enum):
    DIRECT_CONFLICT = "direct-conflict"
    CIRCULAR_DEPENDENCY = "circular-dependency"


@dataclass(frozen=True)
class ConflictRecord:
    """Two module ids that cannot be installed together, and why.

    A dependency cycle is recorded with the same id on both sides.
    """

    first: str
    second: str
    reason: str
    kind: ConflictKind = ConflictKind.DIRECT_CONFLICT

    def __str__(self) -> str:
        if self.first == self.second:
            return f"{self.first}: {self.reason}"
        return f"{self.first} <-> {self.second}: {self.reason}"


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one ``resolve`` call."""

    order: tuple[str, ...] = ()
    conflicts: tuple[ConflictRecord, ...] = ()
    missing: tuple[str, ...] = ()
    requested: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        """True when the order can be used as is."""
        return not self.conflicts and not self.missing

    def summary(self) -> str:
        if self.ok:
            return "Install order: " + (" -> ".join(self.order) or "(empty)")
        lines = []
        for conflict in self.conflicts:
            lines.append(f"conflict: {conflict}")
        for module_id in self.missing:
            lines.append(f"missing: {module_id}")
        return "\n".join(lines)


# Traversal states
_IN_PROGRESS = 1
_SETTLED = 2


class DependencyResolver:
    """Orders modules so every dependency precedes its dependents."""

    def __init__(self, registry: ModuleRegistry) -> None:
        self.registry = registry

    def resolve(self, requested: Iterable[str]) -> ResolutionResult:
        """Resolve *requested* module ids into an install order.

        Dependencies are visited in the order each descriptor declares
        them, so the result is deterministic for a given registry and
        request.  If any conflict is found the returned order is empty.
        """
        requested_ids = tuple(dict.fromkeys(requested))

        missing: list[str] = []
        present: list[str] = []
        for module_id in requested_ids:
            if module_id in self.registry:
                present.append(module_id)
            else:
                missing.append(module_id)

        conflicts = self._pairwise_conflicts(present)

        order: list[str] = []
        state: dict[str, int] = {}
        for module_id in present:
            self._visit(module_id, state, order, conflicts, missing)

        if conflicts:
            order = []

        return ResolutionResult(
            order=tuple(order),
            conflicts=tuple(conflicts),
            missing=tuple(missing),
            requested=requested_ids,
        )

    # ------------------------------------------------------------------

    def _pairwise_conflicts(self, module_ids: list[str]) -> list[ConflictRecord]:
        records: list[ConflictRecord] = []
        for i, first_id in enumerate(module_ids):
            first = self.registry.get(first_id)
            for second_id in module_ids[i + 1:]:
                second = self.registry.get(second_id)
                if second_id in first.conflicts or first_id in second.conflicts:
                    records.append(
                        ConflictRecord(first_id, second_id, "Direct conflict between modules")
                    )
        return records

    def _visit(
        self,
        root_id: str,
        state: dict[str, int],
        order: list[str],
        conflicts: list[ConflictRecord],
        missing: list[str],
    ) -> None:
        # Iterative depth-first walk over (module id, remaining dependencies).
        if not self._enter(root_id, state, conflicts):
            return
        stack: list[tuple[str, Iterator[str]]] = [
            (root_id, iter(self.registry.get(root_id).dependencies))
        ]
        while stack:
            module_id, dependencies = stack[-1]
            dependency = next(dependencies, None)
            if dependency is None:
                stack.pop()
                state[module_id] = _SETTLED
                order.append(module_id)
                continue
            if dependency not in self.registry:
                if dependency not in missing:
                    missing.append(dependency)
                continue
            if self._enter(dependency, state, conflicts):
                stack.append((dependency, iter(self.registry.get(dependency).dependencies)))

    def _enter(self, module_id: str, state: dict[str, int], conflicts: list[ConflictRecord]) -> bool:
        """Mark *module_id* in progress; ``False`` if it needs no visit."""
        status = state.get(module_id)
        if status == _SETTLED:
            return False
        if status == _IN_PROGRESS:
            already = any(
                c.kind is ConflictKind.CIRCULAR_DEPENDENCY and c.first == module_id
                for c in conflicts
            )
            if not already:
                conflicts.append(
                    ConflictRecord(
                        module_id,
                        module_id,
                        "Circular dependency detected",
                        ConflictKind.CIRCULAR_DEPENDENCY,
                    )
                )
            return False
        state[module_id] = _IN_PROGRESS
        return True


def print_resolution_report(result: ResolutionResult) -> None:
    """Print every defect in *result* as a Rich table."""
    if result.ok:
        console.print(f"[green]Install order:[/green] {escape(' -> '.join(result.order))}")
        return

    table = Table(title="Resolution failed", show_header=True, header_style="bold red")
    table.add_column("Problem", style="red", no_wrap=True)
    table.add_column("Modules")
    table.add_column("Detail", style="dim")

    for conflict in result.conflicts:
        label = "cycle" if conflict.kind is ConflictKind.CIRCULAR_DEPENDENCY else "conflict"
        modules = (
            conflict.first
            if conflict.first == conflict.second
            else f"{conflict.first}, {conflict.second}"
        )
        table.add_row(label, escape(modules), escape(conflict.reason))
    for module_id in result.missing:
        table.add_row("missing", escape(module_id), "Not found in the registry")

    console.print(table)
