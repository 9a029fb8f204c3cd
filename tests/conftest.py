"""Shared pytest fixtures for the stackforge test suite.

Provides reusable fixtures for:
- Temporary project directories
- Module descriptors and a small sample registry
- A ready-to-use project context
- A mocked process runner and executor
- An on-disk registry directory with YAML manifests
- Mock subprocess helpers
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from stackforge.blueprint import (
    BlueprintExecutor,
    CommandResult,
    PathResolver,
    ProcessRunner,
    ProjectContext,
    ProjectMetadata,
)
from stackforge.registry import ModuleDescriptor, ModuleRegistry


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Temporary project root (auto-cleanup)."""
    project_dir = tmp_path / "demo-app"
    project_dir.mkdir()
    yield project_dir


# ---------------------------------------------------------------------------
# Module descriptors & registry
# ---------------------------------------------------------------------------

@pytest.fixture
def make_module() -> Callable[..., ModuleDescriptor]:
    """Factory for ``ModuleDescriptor`` instances.

    Usage:
        def test_x(make_module):
            db = make_module("db", blueprint=[{"type": "ADD_SCRIPT", ...}])
    """
    def factory(
        module_id: str,
        dependencies: list[str] | None = None,
        conflicts: list[str] | None = None,
        blueprint: list[dict[str, Any]] | None = None,
        parameters: list[dict[str, Any]] | None = None,
        **extra: Any,
    ) -> ModuleDescriptor:
        return ModuleDescriptor.model_validate(
            {
                "id": module_id,
                "dependencies": dependencies or [],
                "conflicts": conflicts or [],
                "blueprint": blueprint or [],
                "parameters": parameters or [],
                **extra,
            }
        )

    return factory


@pytest.fixture
def sample_registry(make_module) -> ModuleRegistry:
    """Registry with ``db``, ``auth`` (depends on db), ``ui`` and ``ui-alt`` (conflicting)."""
    return ModuleRegistry(
        [
            make_module("db", category="database", name="Drizzle ORM", tags=["orm", "sql"]),
            make_module("auth", dependencies=["db"], category="auth", name="Auth.js"),
            make_module("ui", conflicts=["ui-alt"], category="ui", name="shadcn/ui"),
            make_module("ui-alt", category="ui", name="Chakra UI"),
        ]
    )


# ---------------------------------------------------------------------------
# Project context
# ---------------------------------------------------------------------------

@pytest.fixture
def project_context(tmp_project_dir: Path) -> ProjectContext:
    """Context for a single-app Next.js project rooted in ``tmp_project_dir``."""
    return ProjectContext(
        project=ProjectMetadata(
            name="demo-app",
            root=tmp_project_dir,
            framework="nextjs",
            description="A demo application",
            author="Dev Team",
        ),
        paths=PathResolver(),
        env={"NODE_ENV": "test"},
    )


# ---------------------------------------------------------------------------
# Process runner / executor
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_runner() -> MagicMock:
    """A ``ProcessRunner`` stand-in whose commands always succeed."""
    runner = MagicMock(spec=ProcessRunner)
    runner.run = AsyncMock(
        side_effect=lambda tokens, cwd, check=False: CommandResult(
            command=list(tokens), success=True, exit_code=0, cwd=str(cwd)
        )
    )
    runner.install = AsyncMock(
        side_effect=lambda packages, cwd, dev=False, check=True: CommandResult(
            command=["npm", "install", *packages], success=True, exit_code=0, cwd=str(cwd)
        )
    )
    return runner


@pytest.fixture
def executor(fake_runner: MagicMock) -> BlueprintExecutor:
    """Executor wired to ``fake_runner``."""
    return BlueprintExecutor(runner=fake_runner)


# ---------------------------------------------------------------------------
# On-disk registry
# ---------------------------------------------------------------------------

@pytest.fixture
def registry_dir(tmp_path: Path) -> Path:
    """A registry directory with two YAML manifests and a Jinja2 template."""
    modules = tmp_path / "modules"
    (modules / "drizzle" / "templates").mkdir(parents=True)
    (modules / "authjs").mkdir(parents=True)

    (modules / "drizzle" / "module.yaml").write_text(
        textwrap.dedent(
            """\
            id: drizzle
            name: Drizzle ORM
            category: database
            tags: [orm, postgres]
            parameters:
              - name: databaseType
                default: postgresql
              - name: features
                default: [migrations, studio]
            blueprint:
              - type: INSTALL_PACKAGES
                packages: [drizzle-orm, postgres@3.4.0]
              - type: INSTALL_PACKAGES
                packages: [drizzle-kit]
                isDev: true
              - type: ADD_SCRIPT
                name: db:generate
                command: drizzle-kit generate
              - type: CREATE_FILE
                path: "{{paths.database_config}}/index.ts"
                template: templates/index.ts.j2
              - type: ADD_ENV_VAR
                key: DATABASE_URL
                value: postgresql://localhost:5432/{{project.name}}
                description: Database connection string
            """
        ),
        encoding="utf-8",
    )
    (modules / "drizzle" / "templates" / "index.ts.j2").write_text(
        textwrap.dedent(
            """\
            // {{ project.name | pascal_case }} database client
            import { drizzle } from 'drizzle-orm/{{ params.databaseType }}';
            {% if "studio" in params.features %}
            export const studio = true;
            {% endif %}
            export const features = {{'{{'}}module.parameters.features{{'}}'}};
            """
        ),
        encoding="utf-8",
    )
    (modules / "authjs" / "module.yml").write_text(
        textwrap.dedent(
            """\
            id: authjs
            name: Auth.js
            category: auth
            dependencies: [drizzle]
            parameters:
              - name: providers
                default: [github]
              - name: secret
                required: true
            blueprint:
              - type: CREATE_FILE
                path: "{{paths.auth_config}}/config.ts"
                content: |
                  export const providers = {{module.parameters.providers}};
              - type: ADD_ENV_VAR
                key: AUTH_SECRET
                value: "{{module.parameters.secret}}"
            """
        ),
        encoding="utf-8",
    )
    return modules


# ---------------------------------------------------------------------------
# Mock Subprocess (generic)
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", return_value=proc):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory
