"""Blueprint execution engine.

Interprets one module's blueprint against the project tree.  Actions run
strictly in declared order.  A failing action (or a failing iteration of a
``for_each`` action) is recorded in the ``ExecutionResult`` and execution
moves on to the next one; the caller decides what a partial application
means for the batch.

Every file write goes through a merge strategy from
``stackforge.blueprint.merge`` so that running the same blueprint twice
converges instead of duplicating content.
"""

from __future__ import annotations

import asyncio
import json
import shlex
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from rich.markup import escape

from stackforge.utils import console

from .actions import (
    Action,
    ActionType,
    AddEnvVarAction,
    AddScriptAction,
    AppendToFileAction,
    CreateFileAction,
    EnhanceFileAction,
    ExtendSchemaAction,
    InstallPackagesAction,
    MergeConfigAction,
    MergeJsonAction,
    PrependToFileAction,
    RunCommandAction,
)
from .context import ProjectContext
from .merge import MergeStrategy, apply_merge, is_env_file, merge_structured_data, strategy_for_path
from .modifiers import ModifierError, get_modifier, insert_import_lines
from .renderer import TemplateRenderer, build_template_context
from .runner import ProcessRunner
from .template import TemplateProcessor, evaluate_condition

# A handler returns the (relative path, changed) pairs it wrote, or None
# when it decided to skip.
Touched = Optional[list[tuple[str, bool]]]


class ActionError(Exception):
    """Raised by an action handler when the action cannot be applied."""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActionOutcome:
    """What happened to one action, or to one iteration of a ``for_each`` action."""

    index: int
    action_type: ActionType
    status: str  # applied | unchanged | skipped | failed
    paths: tuple[str, ...] = ()
    error: Optional[str] = None
    iteration: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status != "failed"


@dataclass(frozen=True)
class ExecutionResult:
    """Result of running one blueprint."""

    module_id: str = ""
    files: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    outcomes: tuple[ActionOutcome, ...] = ()
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def changed_files(self) -> list[str]:
        changed: dict[str, None] = {}
        for outcome in self.outcomes:
            if outcome.status == "applied":
                for path in outcome.paths:
                    changed.setdefault(path, None)
        return list(changed)

    def summary(self) -> str:
        """Return a human-readable summary of the result."""
        status = "[green]SUCCESS[/green]" if self.success else "[red]FAILED[/red]"
        skipped = sum(1 for o in self.outcomes if o.status == "skipped")
        lines = [
            f"Status: {status}",
            f"Duration: {self.duration_seconds:.1f}s",
            f"Files touched: {len(self.files)}",
            f"Actions skipped: {skipped}",
        ]
        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
            for err in self.errors[:5]:
                lines.append(f"  - {escape(err[:200])}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

_HANDLERS: dict[ActionType, str] = {
    ActionType.INSTALL_PACKAGES: "_install_packages",
    ActionType.ADD_SCRIPT: "_add_script",
    ActionType.ADD_ENV_VAR: "_add_env_var",
    ActionType.CREATE_FILE: "_create_file",
    ActionType.APPEND_TO_FILE: "_append_to_file",
    ActionType.PREPEND_TO_FILE: "_prepend_to_file",
    ActionType.RUN_COMMAND: "_run_command",
    ActionType.MERGE_JSON: "_merge_json",
    ActionType.MERGE_CONFIG: "_merge_config",
    ActionType.EXTEND_SCHEMA: "_extend_schema",
    ActionType.ENHANCE_FILE: "_enhance_file",
}

_unhandled = set(ActionType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No blueprint handler for: {sorted(t.value for t in _unhandled)}")


def split_package_spec(spec: str) -> tuple[str, str]:
    """Split ``name@version`` (scoped names included) into its parts.

    A missing version means ``latest``.
    """
    spec = spec.strip()
    if spec.startswith("@"):
        name, sep, version = spec[1:].partition("@")
        name = "@" + name
    else:
        name, sep, version = spec.partition("@")
    return name, (version if sep and version else "latest")


# ---------------------------------------------------------------------------
# BlueprintExecutor
# ---------------------------------------------------------------------------

class BlueprintExecutor:
    """Applies blueprint actions to the project tree rooted at ``context.root``."""

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        processor: Optional[TemplateProcessor] = None,
        renderer: Optional[TemplateRenderer] = None,
        skip_install: bool = False,
        verbose: bool = False,
    ) -> None:
        self.runner = runner or ProcessRunner(verbose=verbose)
        self.processor = processor or TemplateProcessor()
        self.renderer = renderer or TemplateRenderer()
        self.skip_install = skip_install
        self.verbose = verbose
        self._handlers: dict[ActionType, Callable[[Any, ProjectContext], Awaitable[Touched]]] = {
            kind: getattr(self, name) for kind, name in _HANDLERS.items()
        }

    async def execute(self, actions: Sequence[Action], context: ProjectContext) -> ExecutionResult:
        """Run *actions* in order against *context*.

        Never raises for a failing action: every failure is recorded in the
        returned result as ``"[<index>] <TYPE>: <message>"``.
        """
        start = time.monotonic()
        files: dict[str, None] = {}
        errors: list[str] = []
        outcomes: list[ActionOutcome] = []

        for index, action in enumerate(actions):
            kind = action.kind

            if action.condition is not None and not evaluate_condition(action.condition, context):
                outcomes.append(ActionOutcome(index, kind, "skipped"))
                self._log(index, kind, "skipped (condition is false)")
                continue

            if action.for_each is None:
                outcome = await self._apply(index, action, context)
                outcomes.append(outcome)
            else:
                try:
                    items = self._collection(action.for_each, context)
                except ActionError as exc:
                    outcomes.append(ActionOutcome(index, kind, "failed", error=str(exc)))
                    self._log(index, kind, f"[red]failed[/red] {escape(str(exc))}")
                    continue
                if not items:
                    outcomes.append(ActionOutcome(index, kind, "skipped"))
                    self._log(index, kind, "skipped (empty collection)")
                for n, item in enumerate(items):
                    with context.bind_item(item):
                        outcomes.append(await self._apply(index, action, context, n))

        for outcome in outcomes:
            if outcome.status == "failed":
                prefix = "" if outcome.iteration is None else f"item {outcome.iteration}: "
                errors.append(f"[{outcome.index}] {outcome.action_type.value}: {prefix}{outcome.error}")
            else:
                for path in outcome.paths:
                    files.setdefault(path, None)

        return ExecutionResult(
            module_id=context.module.id if context.module is not None else "",
            files=tuple(files),
            errors=tuple(errors),
            outcomes=tuple(outcomes),
            duration_seconds=time.monotonic() - start,
        )

    # ------------------------------------------------------------------
    # Per-application plumbing
    # ------------------------------------------------------------------

    async def _apply(
        self,
        index: int,
        action: Action,
        context: ProjectContext,
        iteration: Optional[int] = None,
    ) -> ActionOutcome:
        kind = action.kind
        try:
            touched = await self._handlers[kind](action, context)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._log(index, kind, f"[red]failed[/red] {escape(message)}", iteration)
            return ActionOutcome(index, kind, "failed", error=message, iteration=iteration)

        if touched is None:
            self._log(index, kind, "skipped", iteration)
            return ActionOutcome(index, kind, "skipped", iteration=iteration)

        paths = tuple(dict.fromkeys(path for path, _changed in touched))
        changed = any(c for _path, c in touched) or not touched
        status = "applied" if changed else "unchanged"
        self._log(index, kind, f"{status} {escape(', '.join(paths))}".rstrip(), iteration)
        return ActionOutcome(index, kind, status, paths=paths, iteration=iteration)

    def _collection(self, selector: str, context: ProjectContext) -> list[Any]:
        expr = selector.strip()
        if expr.startswith("{{") and expr.endswith("}}"):
            expr = expr[2:-2].strip()
        value = context.resolve(expr)
        if value is None:
            return []
        if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Sequence):
            raise ActionError(f"for_each selector '{selector}' does not name a list")
        return list(value)

    def _log(self, index: int, kind: ActionType, message: str, iteration: Optional[int] = None) -> None:
        if not self.verbose:
            return
        label = f"{index}" if iteration is None else f"{index}.{iteration}"
        console.print(f"  [dim][{label}][/dim] [cyan]{kind.value}[/cyan] {message}")

    def _render(self, text: str, context: ProjectContext, hint: str = "", kind: Optional[ActionType] = None) -> str:
        return self.processor.render(text, context, hint, kind)

    def _target(self, raw_path: str, context: ProjectContext, kind: ActionType) -> tuple[str, Path]:
        """Render *raw_path* and resolve it inside the project root."""
        rendered = self._render(raw_path, context, raw_path, kind).strip()
        if not rendered:
            raise ActionError(f"Path '{raw_path}' renders to an empty string")
        if "{{" in rendered:
            raise ActionError(f"Unresolved variable in path '{rendered}'")

        root = context.root.resolve()
        candidate = Path(rendered)
        absolute = (candidate if candidate.is_absolute() else root / candidate).resolve()
        try:
            relative = absolute.relative_to(root)
        except ValueError:
            raise ActionError(f"Path '{rendered}' is outside the project root") from None
        return relative.as_posix(), absolute

    async def _write(self, strategy: MergeStrategy, path: Path, content: str) -> bool:
        return await asyncio.to_thread(apply_merge, strategy, path, content)

    # ------------------------------------------------------------------
    # Handlers: package manifest
    # ------------------------------------------------------------------

    async def _install_packages(self, action: InstallPackagesAction, context: ProjectContext) -> Touched:
        specs = [self._render(p, context, "", action.kind) for p in action.packages]
        section = "devDependencies" if action.dev else "dependencies"
        versions = dict(split_package_spec(spec) for spec in specs)

        manifest = context.root / "package.json"
        changed = await asyncio.to_thread(merge_structured_data, manifest, {section: versions})

        if not self.skip_install:
            await self.runner.install(specs, context.root, dev=action.dev)
        return [("package.json", changed)]

    async def _add_script(self, action: AddScriptAction, context: ProjectContext) -> Touched:
        name = self._render(action.name, context)
        command = self._render(action.command, context, "", ActionType.RUN_COMMAND)
        manifest = context.root / "package.json"
        changed = await asyncio.to_thread(merge_structured_data, manifest, {"scripts": {name: command}})
        return [("package.json", changed)]

    async def _add_env_var(self, action: AddEnvVarAction, context: ProjectContext) -> Touched:
        key = self._render(action.key, context).strip()
        if not key or "=" in key:
            raise ActionError(f"Invalid environment variable name '{key}'")
        value = self._render(action.value, context)
        lines = []
        if action.description:
            lines.append(f"# {self._render(action.description, context)}")
        lines.append(f"{key}={value}")
        block = "\n".join(lines) + "\n"

        if action.path is not None:
            targets = [self._target(action.path, context, action.kind)]
        else:
            targets = [self._target(".env.example", context, action.kind)]
            if (context.root / ".env").is_file():
                targets.append(self._target(".env", context, action.kind))

        touched = []
        for relative, absolute in targets:
            changed = await self._write(MergeStrategy.LINE_APPEND_DEDUP, absolute, block)
            touched.append((relative, changed))
        return touched

    # ------------------------------------------------------------------
    # Handlers: files
    # ------------------------------------------------------------------

    async def _create_file(self, action: CreateFileAction, context: ProjectContext) -> Touched:
        relative, absolute = self._target(action.path, context, action.kind)

        if action.template is not None:
            template_dir = (
                context.module.source_dir
                if context.module is not None and context.module.source_dir is not None
                else context.root
            )
            raw = self.renderer.render(action.template, template_dir, build_template_context(context))
        else:
            raw = action.content or ""
        content = self._render(raw, context, relative, action.kind)

        strategy = action.merge or strategy_for_path(relative)
        if strategy is MergeStrategy.WRITE and not action.overwrite:
            strategy = MergeStrategy.CREATE_IF_ABSENT
        changed = await self._write(strategy, absolute, content)
        return [(relative, changed)]

    async def _append_to_file(self, action: AppendToFileAction, context: ProjectContext) -> Touched:
        relative, absolute = self._target(action.path, context, action.kind)
        content = self._render(action.content, context, relative, action.kind)
        strategy = MergeStrategy.LINE_APPEND_DEDUP if is_env_file(relative) else MergeStrategy.APPEND
        return [(relative, await self._write(strategy, absolute, content))]

    async def _prepend_to_file(self, action: PrependToFileAction, context: ProjectContext) -> Touched:
        relative, absolute = self._target(action.path, context, action.kind)
        content = self._render(action.content, context, relative, action.kind)
        return [(relative, await self._write(MergeStrategy.PREPEND, absolute, content))]

    async def _merge_json(self, action: MergeJsonAction, context: ProjectContext) -> Touched:
        relative, absolute = self._target(action.path, context, action.kind)
        if isinstance(action.content, str):
            rendered = self._render(action.content, context, relative, action.kind)
            try:
                data = json.loads(rendered)
            except json.JSONDecodeError as exc:
                raise ActionError(f"MERGE_JSON content is not valid JSON ({exc.msg})") from exc
            if not isinstance(data, dict):
                raise ActionError("MERGE_JSON content must be a JSON object")
        else:
            data = self.processor.render_data(action.content, context, relative, action.kind)
        changed = await asyncio.to_thread(merge_structured_data, absolute, data, "deep-merge")
        return [(relative, changed)]

    async def _merge_config(self, action: MergeConfigAction, context: ProjectContext) -> Touched:
        relative, absolute = self._target(action.path, context, action.kind)
        data = self.processor.render_data(action.config, context, relative, action.kind)
        changed = await asyncio.to_thread(merge_structured_data, absolute, data, action.strategy)
        return [(relative, changed)]

    async def _extend_schema(self, action: ExtendSchemaAction, context: ProjectContext) -> Touched:
        relative, absolute = self._target(action.path, context, action.kind)
        if not absolute.is_file():
            raise ActionError(f"Schema file '{relative}' does not exist")
        text = await asyncio.to_thread(absolute.read_text, "utf-8")

        existing_lines = {line.strip() for line in text.splitlines()}
        new_imports = []
        for raw in action.imports:
            line = self._render(raw, context, relative, action.kind).strip()
            if line and line not in existing_lines and line not in new_imports:
                new_imports.append(line)
        text = insert_import_lines(text, new_imports)

        for table in action.tables:
            definition = self._render(table.definition, context, relative, action.kind).strip("\n")
            if not definition.strip() or definition.strip() in text:
                continue
            if text and not text.endswith("\n"):
                text += "\n"
            text += ("\n" if text.strip() else "") + definition + "\n"

        changed = await self._write(MergeStrategy.REPLACE, absolute, text)
        return [(relative, changed)]

    async def _enhance_file(self, action: EnhanceFileAction, context: ProjectContext) -> Touched:
        relative, absolute = self._target(action.path, context, action.kind)

        try:
            modifier = get_modifier(action.modifier)
        except ModifierError:
            if action.fallback == "skip":
                return None
            raise

        if absolute.is_file():
            content = await asyncio.to_thread(absolute.read_text, "utf-8")
        elif action.fallback == "skip":
            return None
        elif action.fallback == "create":
            content = ""
        else:
            raise ActionError(f"File '{relative}' does not exist")

        params = self.processor.render_data(action.params, context, relative, action.kind)
        enhanced = modifier(content, params)
        return [(relative, await self._write(MergeStrategy.REPLACE, absolute, enhanced))]

    # ------------------------------------------------------------------
    # Handlers: commands
    # ------------------------------------------------------------------

    async def _run_command(self, action: RunCommandAction, context: ProjectContext) -> Touched:
        command = self._render(action.command, context, "", ActionType.RUN_COMMAND)
        try:
            tokens = shlex.split(command)
        except ValueError as exc:
            raise ActionError(f"Cannot tokenize command '{command}': {exc}") from exc
        if not tokens:
            raise ActionError("Command renders to an empty string")

        cwd = context.root
        if action.working_dir:
            _relative, cwd = self._target(action.working_dir, context, action.kind)
        await self.runner.run(tokens, cwd, check=True)
        return []
