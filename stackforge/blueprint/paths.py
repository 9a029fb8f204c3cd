"""Semantic project paths.

Blueprints refer to locations by key (``{{paths.database_config}}``) rather
than by literal directory, so the same blueprint works for a single-app
project and for a monorepo.  ``PathResolver`` maps those keys to paths
relative to the project root for the detected layout.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Mapping, Optional


class ProjectStructure(str, Enum):
    SINGLE_APP = "single-app"
    MONOREPO = "monorepo"


_SINGLE_APP: dict[str, str] = {
    "root": ".",
    "src": "src",
    "source_root": "src",
    "app": "src/app",
    "api_routes": "src/app/api",
    "lib": "src/lib",
    "components": "src/components",
    "ui_components": "src/components/ui",
    "types": "src/types",
    "public": "public",
    "config": ".",
    "database_config": "src/lib/db",
    "auth_config": "src/lib/auth",
    "email_config": "src/lib/email",
    "payment_config": "src/lib/payment",
    "observability_config": "src/lib/observability",
    "tests": "src/__tests__",
    "packages": "src/lib",
    "apps": ".",
}

_MONOREPO: dict[str, str] = {
    "root": ".",
    "src": "apps/web/src",
    "source_root": "apps/web/src",
    "app": "apps/web/src/app",
    "api_routes": "apps/web/src/app/api",
    "lib": "apps/web/src/lib",
    "components": "apps/web/src/components",
    "ui_components": "packages/ui/components",
    "types": "apps/web/src/types",
    "public": "apps/web/public",
    "config": "apps/web",
    "database_config": "packages/db",
    "auth_config": "packages/auth",
    "email_config": "packages/email",
    "payment_config": "packages/payment",
    "observability_config": "packages/observability",
    "tests": "apps/web/src/__tests__",
    "packages": "packages",
    "apps": "apps",
}


def detect_structure(project_root: str | Path) -> ProjectStructure:
    """A project with both ``apps/`` and ``packages/`` is treated as a monorepo."""
    root = Path(project_root)
    if (root / "apps").is_dir() and (root / "packages").is_dir():
        return ProjectStructure.MONOREPO
    return ProjectStructure.SINGLE_APP


class PathResolver:
    """Resolves semantic path keys for one project layout.

    Values are POSIX-style paths relative to the project root.  *overrides*
    replace or add individual keys.
    """

    def __init__(
        self,
        structure: ProjectStructure = ProjectStructure.SINGLE_APP,
        overrides: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.structure = structure
        base = _MONOREPO if structure is ProjectStructure.MONOREPO else _SINGLE_APP
        self._paths: dict[str, str] = {**base, **(overrides or {})}

    @classmethod
    def for_project(
        cls, project_root: str | Path, overrides: Optional[Mapping[str, str]] = None
    ) -> "PathResolver":
        return cls(detect_structure(project_root), overrides)

    def get(self, key: str) -> Optional[str]:
        return self._paths.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._paths

    def keys(self) -> list[str]:
        return sorted(self._paths)

    def as_dict(self) -> dict[str, str]:
        return dict(self._paths)

    def join(self, key: str, *parts: str) -> str:
        """Join *parts* under the directory for *key*.

        Raises:
            KeyError: If *key* is not a known path key.
        """
        return str(PurePosixPath(self._paths[key], *parts))
