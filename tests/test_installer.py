"""Unit tests for the batch installer (stackforge.installer).

Tests cover:
- Successful installs in dependency order
- Resolution failures abort before any blueprint runs
- Required parameter validation
- Stop-on-failure vs continue_on_failure, dependents of failed modules
- Install state persistence
- parse_param_overrides
- main() CLI entry point
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from stackforge.config import Config
from stackforge.installer import Installer, main, parse_param_overrides
from stackforge.registry import ModuleRegistry


def create(path: str, content: str = "x\n") -> dict:
    return {"type": "CREATE_FILE", "path": path, "content": content}


@pytest.fixture
def config(tmp_project_dir) -> Config:
    return Config(project_root=tmp_project_dir, skip_install=True)


@pytest.fixture
def registry(make_module) -> ModuleRegistry:
    return ModuleRegistry(
        [
            make_module("db", category="database", version="1.2.0", blueprint=[create("src/lib/db/index.ts")]),
            make_module(
                "auth",
                category="auth",
                dependencies=["db"],
                parameters=[{"name": "secret", "required": True}],
                blueprint=[
                    create("src/lib/auth/index.ts"),
                    {"type": "ADD_ENV_VAR", "key": "AUTH_SECRET", "value": "{{module.parameters.secret}}"},
                ],
            ),
            make_module("broken", blueprint=[create("../escape.txt")]),
            make_module("after-broken", dependencies=["broken"], blueprint=[create("after.txt")]),
            make_module("docs", blueprint=[create("docs/README.md")]),
            make_module("ui", conflicts=["ui-alt"], blueprint=[create("ui.ts")]),
            make_module("ui-alt", blueprint=[create("ui-alt.ts")]),
        ]
    )


@pytest.fixture
def installer(config, registry, executor) -> Installer:
    return Installer(config, registry, executor=executor)


# ---------------------------------------------------------------------------
# Installer.install
# ---------------------------------------------------------------------------


class TestInstall:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_installs_in_dependency_order(self, installer, project_context):
        report = await installer.install(["auth"], project_context, {"auth": {"secret": "s3cret"}})

        assert report.success
        assert report.installed == ["db", "auth"]
        assert report.resolution.order == ("db", "auth")
        root = project_context.root
        assert (root / "src" / "lib" / "db" / "index.ts").exists()
        assert (root / ".env.example").read_text(encoding="utf-8") == "AUTH_SECRET=s3cret\n"
        assert report.results["auth"].files == ("src/lib/auth/index.ts", ".env.example")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_conflict_aborts_before_any_write(self, installer, config, project_context):
        report = await installer.install(["ui", "ui-alt"], project_context)

        assert report.aborted
        assert not report.success
        assert report.results == {}
        assert not (project_context.root / "ui.ts").exists()
        assert not config.state_path.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_module_aborts(self, installer, project_context):
        report = await installer.install(["db", "nope"], project_context)
        assert report.aborted
        assert report.resolution.missing == ("nope",)
        assert not (project_context.root / "src").exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_required_parameter(self, installer, project_context):
        report = await installer.install(["auth"], project_context)

        assert report.installed == ["db"]
        assert report.failed == ["auth"]
        assert report.validation_errors == {"auth": ["Missing required parameter 'secret'"]}
        assert report.errors == ["auth: Missing required parameter 'secret'"]
        assert not (project_context.root / "src" / "lib" / "auth").exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_on_first_failure(self, installer, project_context):
        report = await installer.install(["broken", "docs"], project_context)

        assert report.failed == ["broken"]
        assert report.skipped == ["docs"]
        assert not (project_context.root / "docs").exists()
        assert report.errors == [
            "broken: [0] CREATE_FILE: Path '../escape.txt' is outside the project root"
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_continue_on_failure(self, config, registry, executor, project_context):
        config = config.model_copy(update={"continue_on_failure": True})
        installer = Installer(config, registry, executor=executor)

        report = await installer.install(["broken", "after-broken", "docs"], project_context)

        assert report.failed == ["broken"]
        assert report.skipped == ["after-broken"]
        assert report.installed == ["docs"]
        assert not report.success
        assert not (project_context.root / "after.txt").exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_summary_printed(self, installer, project_context, capsys):
        await installer.install(["db"], project_context)
        out = capsys.readouterr().out
        assert "Resolving modules" in out
        assert "INSTALL SUCCEEDED" in out

    @pytest.mark.unit
    def test_default_executor_uses_config(self, config, registry):
        installer = Installer(config, registry)
        assert installer.executor.skip_install is True
        assert installer.executor.runner.config is config.runner


# ---------------------------------------------------------------------------
# State persistence
# ---------------------------------------------------------------------------


class TestState:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_state_written(self, installer, config, project_context):
        await installer.install(["auth"], project_context, {"auth": {"secret": "s3cret"}})

        state = json.loads(config.state_path.read_text(encoding="utf-8"))
        assert state["project"] == "demo-app"
        assert set(state["modules"]) == {"db", "auth"}
        assert state["modules"]["db"]["version"] == "1.2.0"
        assert state["modules"]["db"]["files"] == ["src/lib/db/index.ts"]
        assert state["modules"]["auth"]["parameters"] == {"secret": "s3cret"}
        assert state["history"][0]["order"] == ["db", "auth"]
        assert state["history"][0]["requested"] == ["auth"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_history_accumulates(self, installer, config, project_context):
        await installer.install(["db"], project_context)
        await installer.install(["docs"], project_context)

        state = installer.load_state()
        assert set(state["modules"]) == {"db", "docs"}
        assert len(state["history"]) == 2

    @pytest.mark.unit
    def test_load_state_missing(self, installer):
        assert installer.load_state() == {"modules": {}, "history": []}

    @pytest.mark.unit
    def test_load_state_corrupted(self, installer, config, capsys):
        config.state_path.parent.mkdir(parents=True)
        config.state_path.write_text("{not json", encoding="utf-8")
        assert installer.load_state() == {"modules": {}, "history": []}
        assert "Ignoring unreadable install state" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestParseParamOverrides:
    @pytest.mark.unit
    def test_values_are_typed(self):
        parsed = parse_param_overrides(
            [
                "auth.providers=[github, google]",
                "db.port=5432",
                "db.ssl=true",
                "db.name=my app",
                "db.empty=",
            ]
        )
        assert parsed == {
            "auth": {"providers": ["github", "google"]},
            "db": {"port": 5432, "ssl": True, "name": "my app", "empty": ""},
        }

    @pytest.mark.unit
    def test_value_may_contain_equals(self):
        assert parse_param_overrides(["db.url=a=b"]) == {"db": {"url": "a=b"}}

    @pytest.mark.unit
    @pytest.mark.parametrize("pair", ["nokey", "db=1", ".x=1", "db.=1"])
    def test_malformed(self, pair):
        with pytest.raises(ValueError, match="Expected module.key=value"):
            parse_param_overrides([pair])


class TestMain:
    @pytest.mark.unit
    def test_install_from_registry_dir(self, registry_dir, tmp_project_dir):
        with patch.dict("os.environ", {}, clear=True):
            main(
                [
                    "drizzle",
                    "--registry", str(registry_dir),
                    "--project", str(tmp_project_dir),
                    "--skip-install",
                ]
            )
        assert (tmp_project_dir / "src" / "lib" / "db" / "index.ts").exists()
        manifest = json.loads((tmp_project_dir / "package.json").read_text(encoding="utf-8"))
        assert manifest["scripts"] == {"db:generate": "drizzle-kit generate"}

    @pytest.mark.unit
    def test_failure_exits_nonzero(self, registry_dir, tmp_project_dir):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(SystemExit) as excinfo:
                main(["authjs", "--registry", str(registry_dir), "--project", str(tmp_project_dir), "--skip-install"])
        assert excinfo.value.code == 1

    @pytest.mark.unit
    def test_list_modules(self, registry_dir, capsys):
        main(["--list", "--registry", str(registry_dir)])
        out = capsys.readouterr().out
        assert "drizzle" in out
        assert "authjs" in out

    @pytest.mark.unit
    def test_missing_registry(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["db", "--registry", str(tmp_path / "none")])
        assert excinfo.value.code == 1
        assert "Registry directory not found" in capsys.readouterr().out

    @pytest.mark.unit
    def test_modules_required(self, registry_dir):
        with pytest.raises(SystemExit) as excinfo:
            main(["--registry", str(registry_dir)])
        assert excinfo.value.code == 2

    @pytest.mark.unit
    def test_bad_param(self, registry_dir, tmp_project_dir):
        with pytest.raises(SystemExit) as excinfo:
            main(["drizzle", "--registry", str(registry_dir), "--project", str(tmp_project_dir), "--param", "oops"])
        assert excinfo.value.code == 2
