"""Unit tests for ProjectContext and PathResolver.

Tests cover:
- ProjectMetadata tokens (path alias of root)
- Lookup precedence across paths, project, module, framework, env, item
- Parameter values over declared defaults
- bind_item scoping
- PathResolver layouts, overrides and structure detection
"""

from __future__ import annotations

from pathlib import Path

import pytest

from stackforge.blueprint import (
    PathResolver,
    ProjectContext,
    ProjectMetadata,
    ProjectStructure,
    detect_structure,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# ProjectMetadata
# ---------------------------------------------------------------------------


class TestProjectMetadata:
    def test_defaults(self):
        meta = ProjectMetadata(name="app")
        assert meta.root == Path(".")
        assert meta.version == "0.1.0"
        assert meta.license == "MIT"

    def test_path_is_alias_of_root(self):
        meta = ProjectMetadata(name="app", root=Path("/work/app"))
        assert meta.token("path") == (True, "/work/app")
        assert meta.token("root") == (True, "/work/app")

    def test_unknown_token(self):
        assert ProjectMetadata(name="app").token("colour") == (False, None)

    def test_name_required(self):
        with pytest.raises(ValueError):
            ProjectMetadata(name="")


# ---------------------------------------------------------------------------
# ProjectContext
# ---------------------------------------------------------------------------


class TestLookup:
    def test_without_module(self, project_context):
        assert project_context.lookup("module.parameters.x") == (False, None)
        assert project_context.lookup("module.id") == (False, None)
        assert project_context.module_parameters() == {}

    def test_module_fields(self, project_context, make_module):
        project_context.enter_module(
            make_module("db", name="Drizzle", category="database", version="2.0.0")
        )
        assert project_context.lookup("module.id") == (True, "db")
        assert project_context.lookup("module.name") == (True, "Drizzle")
        assert project_context.lookup("module.category") == (True, "database")
        assert project_context.lookup("module.version") == (True, "2.0.0")
        assert project_context.lookup("module.blueprint") == (False, None)

    def test_values_override_defaults(self, project_context, make_module):
        module = make_module(
            "db",
            parameters=[
                {"name": "driver", "default": "pg"},
                {"name": "pool", "default": 5},
            ],
        )
        project_context.enter_module(module, {"driver": "mysql", "pool": None})
        assert project_context.module_parameters() == {"driver": "mysql", "pool": 5}

    def test_enter_module_keeps_earlier_values(self, project_context, make_module):
        module = make_module("db", parameters=[{"name": "driver"}, {"name": "pool"}])
        project_context.parameters["db"] = {"driver": "pg"}
        project_context.enter_module(module, {"pool": 10})
        assert project_context.parameters["db"] == {"driver": "pg", "pool": 10}
        assert project_context.module is module

    def test_declared_parameter_without_value(self, project_context, make_module):
        project_context.enter_module(make_module("db", parameters=[{"name": "url"}]))
        assert project_context.lookup("module.parameters.url") == (True, None)
        assert project_context.lookup("module.parameters.other") == (False, None)

    def test_env_values_and_defaults(self, project_context):
        assert project_context.lookup("env.NODE_ENV") == (True, "test")
        assert project_context.lookup("env.USER") == (True, "user")
        assert project_context.lookup("env.HOME_DIR") == (False, None)

    def test_env_reads_only_known_process_variables(self, monkeypatch):
        monkeypatch.setenv("NODE_ENV", "production")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "s3cr3t")
        context = ProjectContext(project=ProjectMetadata(name="app"))
        assert context.lookup("env.NODE_ENV") == (True, "production")
        assert context.lookup("env.AWS_SECRET_ACCESS_KEY") == (False, None)
        assert "AWS_SECRET_ACCESS_KEY" not in context.env

    def test_explicit_env_values_are_used(self):
        context = ProjectContext(project=ProjectMetadata(name="app"), env={"API_URL": "http://x"})
        assert context.lookup("env.API_URL") == (True, "http://x")

    def test_paths_without_resolver(self):
        context = ProjectContext(project=ProjectMetadata(name="app"), env={})
        assert context.lookup("paths.lib") == (False, None)

    def test_resolve_default(self, project_context):
        assert project_context.resolve("project.name") == "demo-app"
        assert project_context.resolve(" framework ") == "nextjs"
        assert project_context.resolve("nothing.here", default=[]) == []


class TestBindItem:
    def test_item_only_visible_while_bound(self, project_context):
        assert project_context.lookup("item") == (False, None)
        with project_context.bind_item({"name": "users", "cols": 3}) as ctx:
            assert ctx.lookup("item") == (True, {"name": "users", "cols": 3})
            assert ctx.lookup("item.name") == (True, "users")
            assert ctx.lookup("item.missing") == (False, None)
        assert project_context.lookup("item") == (False, None)

    def test_nested_binding_restores_outer(self, project_context):
        with project_context.bind_item("outer"):
            with project_context.bind_item("inner"):
                assert project_context.resolve("item") == "inner"
            assert project_context.resolve("item") == "outer"

    def test_binding_restored_on_error(self, project_context):
        with pytest.raises(RuntimeError):
            with project_context.bind_item("x"):
                raise RuntimeError("boom")
        assert project_context.item_bound is False

    def test_falsy_item_is_still_bound(self, project_context):
        with project_context.bind_item(None):
            assert project_context.lookup("item") == (True, None)


# ---------------------------------------------------------------------------
# PathResolver
# ---------------------------------------------------------------------------


class TestPathResolver:
    def test_single_app_layout(self):
        paths = PathResolver()
        assert paths.structure is ProjectStructure.SINGLE_APP
        assert paths.get("database_config") == "src/lib/db"
        assert paths.get("ui_components") == "src/components/ui"
        assert paths.get("unknown") is None

    def test_monorepo_layout(self):
        paths = PathResolver(ProjectStructure.MONOREPO)
        assert paths.get("database_config") == "packages/db"
        assert paths.get("app") == "apps/web/src/app"

    def test_overrides(self):
        paths = PathResolver(overrides={"lib": "lib", "workers": "src/workers"})
        assert paths.get("lib") == "lib"
        assert "workers" in paths
        assert "workers" in paths.keys()
        assert paths.as_dict()["workers"] == "src/workers"

    def test_join(self):
        assert PathResolver().join("auth_config", "providers", "github.ts") == (
            "src/lib/auth/providers/github.ts"
        )
        with pytest.raises(KeyError):
            PathResolver().join("nope", "x")

    def test_detect_structure(self, tmp_path):
        assert detect_structure(tmp_path) is ProjectStructure.SINGLE_APP
        (tmp_path / "apps").mkdir()
        assert detect_structure(tmp_path) is ProjectStructure.SINGLE_APP
        (tmp_path / "packages").mkdir()
        assert detect_structure(tmp_path) is ProjectStructure.MONOREPO
        assert PathResolver.for_project(tmp_path).get("lib") == "apps/web/src/lib"

    def test_context_uses_resolver(self, project_context):
        assert project_context.lookup("paths.auth_config") == (True, "src/lib/auth")
        assert project_context.lookup("paths.nope") == (False, None)
