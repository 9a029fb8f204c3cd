"""stackforge configuration.

Centralised, typed configuration for an installation run. All settings use
Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

PackageManager = Literal["auto", "npm", "pnpm", "yarn", "bun"]

_TRUE_VALUES = {"1", "true", "yes", "on"}


class RunnerConfig(BaseModel):
    """Settings for the external process runner."""

    package_manager: PackageManager = Field(
        default="auto",
        description="Package manager used for INSTALL_PACKAGES ('auto' detects from lock files)",
    )
    command_timeout: int = Field(
        default=300, ge=1, description="Per-command timeout in seconds"
    )


class Config(BaseModel):
    """Global stackforge configuration.

    Instances are typically created once by the CLI entry point (or by
    ``Config.from_env``) and handed to the ``Installer``.
    """

    registry_dir: Path = Field(default=Path("./modules"))
    project_root: Path = Field(default=Path("."))
    skip_install: bool = Field(
        default=False, description="Record packages in package.json without running the package manager"
    )
    continue_on_failure: bool = Field(
        default=False, description="Keep installing later modules after one module fails"
    )
    verbose: bool = Field(default=False)
    state_dir: str = Field(default=".stackforge")
    runner: RunnerConfig = Field(default_factory=RunnerConfig)

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    @property
    def state_path(self) -> Path:
        """Path to the persisted install state inside the project."""
        return self.project_root / self.state_dir / "install-state.json"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file. Defaults to ``<project_root>/<state_dir>/config.json``.

        Returns:
            The path where the file was written.
        """
        target = path or (self.project_root / self.state_dir / "config.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            STACKFORGE_REGISTRY_DIR, STACKFORGE_PROJECT_ROOT,
            STACKFORGE_PACKAGE_MANAGER, STACKFORGE_COMMAND_TIMEOUT,
            STACKFORGE_SKIP_INSTALL, STACKFORGE_CONTINUE_ON_FAILURE,
            STACKFORGE_VERBOSE.
        """
        runner_kwargs: dict[str, Any] = {}
        if os.environ.get("STACKFORGE_PACKAGE_MANAGER"):
            runner_kwargs["package_manager"] = os.environ["STACKFORGE_PACKAGE_MANAGER"]
        if os.environ.get("STACKFORGE_COMMAND_TIMEOUT"):
            runner_kwargs["command_timeout"] = int(os.environ["STACKFORGE_COMMAND_TIMEOUT"])

        return cls(
            registry_dir=Path(os.environ.get("STACKFORGE_REGISTRY_DIR", "./modules")),
            project_root=Path(os.environ.get("STACKFORGE_PROJECT_ROOT", ".")),
            skip_install=_env_flag("STACKFORGE_SKIP_INSTALL"),
            continue_on_failure=_env_flag("STACKFORGE_CONTINUE_ON_FAILURE"),
            verbose=_env_flag("STACKFORGE_VERBOSE"),
            runner=RunnerConfig(**runner_kwargs),
        )


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES
