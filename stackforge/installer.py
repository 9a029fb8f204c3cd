"""stackforge batch installer.

Drives a whole installation run:

1. RESOLVE  -- order the requested modules, abort on conflicts or missing ids.
2. VALIDATE -- check each module's required parameters before it runs.
3. EXECUTE  -- run each module's blueprint against the shared project context.
4. RECORD   -- persist install state and print a summary.

Usage::

    stackforge auth --registry ./modules --project ./my-app
    python -m stackforge.installer db auth --registry ./modules --param auth.providers=[github,google]
"""

from __future__ import annotations

import asyncio
import json
import sys
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from stackforge.blueprint import (
    BlueprintExecutor,
    ExecutionResult,
    PathResolver,
    ProcessRunner,
    ProjectContext,
    ProjectMetadata,
)
from stackforge.config import Config
from stackforge.registry import ModuleRegistry, RegistryError, fetch_registry, load_registry_dir
from stackforge.resolver import DependencyResolver, ResolutionResult, print_resolution_report
from stackforge.utils import (
    console,
    format_duration,
    load_json,
    print_error,
    print_section,
    print_success,
    print_summary_table,
    print_warning,
    save_json,
)

# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class InstallReport:
    """Outcome of one ``Installer.install`` call."""

    resolution: ResolutionResult
    results: dict[str, ExecutionResult] = field(default_factory=dict)
    installed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    validation_errors: dict[str, list[str]] = field(default_factory=dict)
    aborted: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.aborted and not self.failed and not self.skipped

    @property
    def errors(self) -> list[str]:
        """Every error of the run, prefixed with the module id."""
        messages: list[str] = []
        for module_id, problems in self.validation_errors.items():
            messages.extend(f"{module_id}: {p}" for p in problems)
        for module_id, result in self.results.items():
            messages.extend(f"{module_id}: {e}" for e in result.errors)
        return messages


# ---------------------------------------------------------------------------
# Installer
# ---------------------------------------------------------------------------


class Installer:
    """Resolves a module selection and applies each module's blueprint in order.

    Attributes:
        config: Run configuration.
        registry: Source of module descriptors.
        executor: Blueprint engine shared by every module in the run.
    """

    def __init__(
        self,
        config: Config,
        registry: ModuleRegistry,
        executor: Optional[BlueprintExecutor] = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.resolver = DependencyResolver(registry)
        self.executor = executor or BlueprintExecutor(
            runner=ProcessRunner(config.runner, verbose=config.verbose),
            skip_install=config.skip_install,
            verbose=config.verbose,
        )

    async def install(
        self,
        module_ids: Iterable[str],
        context: ProjectContext,
        parameters: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> InstallReport:
        """Install *module_ids* (plus their dependencies) into the project.

        Args:
            module_ids: Requested module ids.
            context: The run's project context; updated as modules are entered.
            parameters: Parameter values per module id.

        Returns:
            An ``InstallReport``.  Resolution failures abort the batch before
            any blueprint runs.
        """
        start = time.monotonic()
        parameters = parameters or {}

        print_section("Resolving modules")
        resolution = self.resolver.resolve(module_ids)
        print_resolution_report(resolution)
        report = InstallReport(resolution=resolution)

        if not resolution.ok:
            report.aborted = True
            print_error("Installation aborted: resolve the problems above and try again.")
            report.duration_seconds = time.monotonic() - start
            return report

        order = list(resolution.order)
        for position, module_id in enumerate(order):
            descriptor = self.registry.get(module_id)

            blocked_by = [d for d in descriptor.dependencies if d in report.failed or d in report.skipped]
            if blocked_by:
                print_warning(f"Skipping {module_id}: dependency {', '.join(blocked_by)} did not install")
                report.skipped.append(module_id)
                continue

            values = dict(parameters.get(module_id, {}))
            missing = descriptor.missing_required(values)
            if missing:
                report.validation_errors[module_id] = [
                    f"Missing required parameter '{name}'" for name in missing
                ]
                print_error(f"{module_id}: missing required parameter(s) {', '.join(missing)}")
                report.failed.append(module_id)
                if not self._continue(report, order, position):
                    break
                continue

            print_section(f"Installing {descriptor.display_name}")
            context.enter_module(descriptor, values)
            result = await self.executor.execute(descriptor.blueprint, context)
            report.results[module_id] = result

            if result.success:
                report.installed.append(module_id)
                print_success(f"{module_id}: {len(result.files)} file(s) touched")
            else:
                report.failed.append(module_id)
                print_error(f"{module_id}: {len(result.errors)} action(s) failed")
                for error in result.errors:
                    console.print(f"  [red]-[/red] {escape(error)}")
                if not self._continue(report, order, position):
                    break

        report.duration_seconds = time.monotonic() - start
        await self._save_state(report, context)
        self._print_summary(report)
        return report

    def _continue(self, report: InstallReport, order: list[str], position: int) -> bool:
        """Decide whether to keep going after a failed module."""
        if self.config.continue_on_failure:
            return True
        report.skipped.extend(order[position + 1:])
        return False

    # ------------------------------------------------------------------
    # State persistence
    # ------------------------------------------------------------------

    def load_state(self) -> dict[str, Any]:
        """Load the persisted install state, or an empty state."""
        path = self.config.state_path
        if not path.exists():
            return {"modules": {}, "history": []}
        try:
            state = load_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            print_warning(f"Ignoring unreadable install state {path}: {exc}")
            return {"modules": {}, "history": []}
        state.setdefault("modules", {})
        state.setdefault("history", [])
        return state

    async def _save_state(self, report: InstallReport, context: ProjectContext) -> None:
        """Persist the run to ``<project>/.stackforge/install-state.json``."""
        now = datetime.now(timezone.utc).isoformat()
        state = self.load_state()

        for module_id in report.installed:
            descriptor = self.registry.get(module_id)
            state["modules"][module_id] = {
                "version": descriptor.version if descriptor else "",
                "installed_at": now,
                "files": list(report.results[module_id].files),
                "parameters": context.parameters.get(module_id, {}),
            }

        state["history"].append(
            {
                "timestamp": now,
                "requested": list(report.resolution.requested),
                "order": list(report.resolution.order),
                "installed": report.installed,
                "failed": report.failed,
                "skipped": report.skipped,
                "errors": report.errors,
            }
        )
        state["project"] = context.project.name
        state["updated_at"] = now
        await save_json(state, self.config.state_path)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _print_summary(self, report: InstallReport) -> None:
        table = Table(title="Modules", show_header=True, header_style="bold cyan")
        table.add_column("Module", no_wrap=True)
        table.add_column("Status")
        table.add_column("Files", justify="right")
        table.add_column("Errors", justify="right")

        for module_id in report.resolution.order:
            result = report.results.get(module_id)
            if module_id in report.installed:
                status = "[green]installed[/green]"
            elif module_id in report.failed:
                status = "[red]failed[/red]"
            else:
                status = "[yellow]skipped[/yellow]"
            files = str(len(result.files)) if result else "-"
            errors = len(result.errors) if result else len(report.validation_errors.get(module_id, []))
            table.add_row(escape(module_id), status, files, str(errors))
        console.print(table)

        border_style = "bold green" if report.success else "bold red"
        status_text = (
            "[bold green]INSTALL SUCCEEDED[/bold green]"
            if report.success
            else "[bold red]INSTALL FAILED[/bold red]"
        )
        console.print(
            Panel(
                "\n".join(
                    [
                        status_text,
                        "",
                        f"Duration  : {format_duration(report.duration_seconds)}",
                        f"Installed : {', '.join(report.installed) or 'none'}",
                        f"State     : {self.config.state_path}",
                    ]
                ),
                border_style=border_style,
            )
        )


# ---------------------------------------------------------------------------
# CLI helpers
# ---------------------------------------------------------------------------


def parse_param_overrides(pairs: Iterable[str]) -> dict[str, dict[str, Any]]:
    """Parse ``module.key=value`` strings into ``{module: {key: value}}``.

    Values are read as YAML scalars/flow collections, so ``true``, ``3`` and
    ``[a, b]`` become a bool, an int and a list.

    Raises:
        ValueError: On a malformed pair.
    """
    parameters: dict[str, dict[str, Any]] = {}
    for pair in pairs:
        target, sep, raw = pair.partition("=")
        module_id, dot, key = target.partition(".")
        if not sep or not dot or not module_id or not key:
            raise ValueError(f"Expected module.key=value, got {pair!r}")
        try:
            value = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            value = raw
        parameters.setdefault(module_id, {})[key] = value
    return parameters


def _load_registry(source: str) -> ModuleRegistry:
    if source.startswith(("http://", "https://")):
        return asyncio.run(fetch_registry(source))
    return load_registry_dir(source)


def _print_registry(registry: ModuleRegistry) -> None:
    table = Table(title="Available modules", show_header=True, header_style="bold cyan")
    table.add_column("Id", no_wrap=True)
    table.add_column("Category", style="dim")
    table.add_column("Depends on")
    table.add_column("Conflicts with")
    for module in sorted(registry, key=lambda m: (m.category.value, m.id)):
        table.add_row(
            escape(module.id),
            module.category.value,
            escape(", ".join(module.dependencies)),
            escape(", ".join(module.conflicts)),
        )
    console.print(table)
    print_summary_table({k: str(v) for k, v in registry.statistics().items()}, title="Statistics")


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for ``stackforge`` / ``python -m stackforge.installer``."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="stackforge",
        description="stackforge -- install technology modules into a project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  stackforge db auth --registry ./modules --project ./my-app\n"
            "  stackforge auth --param auth.providers=[github,google] --skip-install\n"
            "  stackforge --list --registry https://example.com/modules.json\n"
        ),
    )
    parser.add_argument("modules", nargs="*", help="Module ids to install")
    parser.add_argument("--registry", default=None, help="Registry directory or index URL")
    parser.add_argument("--project", default=None, help="Project root (default: current directory)")
    parser.add_argument("--name", default=None, help="Project name (default: project directory name)")
    parser.add_argument("--framework", default="", help="Project framework, e.g. nextjs")
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="MODULE.KEY=VALUE",
        help="Parameter value for a module (repeatable)",
    )
    parser.add_argument("--skip-install", action="store_true", help="Do not run the package manager")
    parser.add_argument(
        "--continue-on-failure", action="store_true", help="Keep installing after a module fails"
    )
    parser.add_argument("--list", action="store_true", help="List available modules and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print every action")

    args = parser.parse_args(argv)

    config = Config.from_env()
    updates: dict[str, Any] = {}
    if args.registry:
        updates["registry_dir"] = Path(args.registry)
    if args.project:
        updates["project_root"] = Path(args.project)
    if args.skip_install:
        updates["skip_install"] = True
    if args.continue_on_failure:
        updates["continue_on_failure"] = True
    if args.verbose:
        updates["verbose"] = True
    config = config.model_copy(update=updates)

    registry_source = args.registry or str(config.registry_dir)
    try:
        registry = _load_registry(registry_source)
    except RegistryError as exc:
        print_error(f"Error: {exc}")
        sys.exit(1)

    if args.list:
        _print_registry(registry)
        return

    if not args.modules:
        parser.error("at least one module id is required")

    try:
        parameters = parse_param_overrides(args.param)
    except ValueError as exc:
        parser.error(str(exc))

    root = config.project_root
    root.mkdir(parents=True, exist_ok=True)
    context = ProjectContext(
        project=ProjectMetadata(
            name=args.name or root.resolve().name,
            root=root,
            framework=args.framework,
        ),
        paths=PathResolver.for_project(root),
    )

    report = asyncio.run(Installer(config, registry).install(args.modules, context, parameters))
    if not report.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
