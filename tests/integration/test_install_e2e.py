"""Integration tests for the load-resolve-install flow.

These tests load real YAML manifests from disk, resolve them and run every
blueprint against a temporary project directory, then check the generated
tree and that a second run converges instead of duplicating content.

No package manager or network access is required (installs are skipped).
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from stackforge.blueprint import PathResolver, ProjectContext, ProjectMetadata
from stackforge.config import Config
from stackforge.installer import Installer
from stackforge.registry import load_registry_dir


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _snapshot(root: Path) -> dict[str, bytes]:
    """Return ``{relative path: bytes}`` for every file outside the state dir."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file() and ".stackforge" not in p.parts
    }


def _context(root: Path) -> ProjectContext:
    return ProjectContext(
        project=ProjectMetadata(name="demo-app", root=root, framework="nextjs"),
        paths=PathResolver.for_project(root),
        env={},
    )


async def _install(registry_dir: Path, root: Path, modules: list[str]):
    config = Config(registry_dir=registry_dir, project_root=root, skip_install=True)
    installer = Installer(config, load_registry_dir(registry_dir))
    return await installer.install(modules, _context(root), {"authjs": {"secret": "change-me"}})


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

@pytest.mark.integration
class TestInstallEndToEnd:
    """Install the drizzle and authjs sample modules into a fresh project."""

    @pytest.mark.asyncio
    async def test_generated_tree(self, registry_dir: Path, tmp_project_dir: Path) -> None:
        report = await _install(registry_dir, tmp_project_dir, ["authjs"])

        assert report.success, report.errors
        assert report.installed == ["drizzle", "authjs"]

        manifest = json.loads((tmp_project_dir / "package.json").read_text(encoding="utf-8"))
        assert manifest == {
            "dependencies": {"drizzle-orm": "latest", "postgres": "3.4.0"},
            "devDependencies": {"drizzle-kit": "latest"},
            "scripts": {"db:generate": "drizzle-kit generate"},
        }

        client = (tmp_project_dir / "src" / "lib" / "db" / "index.ts").read_text(encoding="utf-8")
        assert client == (
            "// DemoApp database client\n"
            "import { drizzle } from 'drizzle-orm/postgresql';\n"
            "export const studio = true;\n"
            "export const features = ['migrations', 'studio'];\n"
        )

        auth = (tmp_project_dir / "src" / "lib" / "auth" / "config.ts").read_text(encoding="utf-8")
        assert auth == "export const providers = ['github'];\n"

        env_example = (tmp_project_dir / ".env.example").read_text(encoding="utf-8")
        assert env_example == (
            "# Database connection string\n"
            "DATABASE_URL=postgresql://localhost:5432/demo-app\n"
            "AUTH_SECRET=change-me\n"
        )

    @pytest.mark.asyncio
    async def test_second_run_converges(self, registry_dir: Path, tmp_project_dir: Path) -> None:
        first = await _install(registry_dir, tmp_project_dir, ["authjs"])
        before = _snapshot(tmp_project_dir)

        second = await _install(registry_dir, tmp_project_dir, ["authjs"])

        assert first.success and second.success
        assert _snapshot(tmp_project_dir) == before
        assert second.results["drizzle"].changed_files == []
        assert second.results["authjs"].changed_files == []

    @pytest.mark.asyncio
    async def test_monorepo_layout(self, registry_dir: Path, tmp_project_dir: Path) -> None:
        (tmp_project_dir / "apps").mkdir()
        (tmp_project_dir / "packages").mkdir()

        report = await _install(registry_dir, tmp_project_dir, ["drizzle"])

        assert report.success, report.errors
        assert (tmp_project_dir / "packages" / "db" / "index.ts").exists()
        assert report.results["drizzle"].files == (
            "package.json",
            "packages/db/index.ts",
            ".env.example",
        )
