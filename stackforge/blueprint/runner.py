"""External process runner.

Runs the commands blueprints ask for (``RUN_COMMAND`` actions and package
installs) and reports a structured ``CommandResult``.  Commands are passed
as token lists and executed without a shell; timeouts are enforced here,
not by the blueprint engine.
"""

from __future__ import annotations

import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.markup import escape

from stackforge.config import RunnerConfig
from stackforge.utils import console, detect_package_manager, install_command, run_command


@dataclass
class CommandResult:
    """Structured result of one external command."""

    command: list[str]
    success: bool
    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    cwd: str = ""

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)

    def summary(self) -> str:
        """Return a human-readable summary of the result."""
        status = "[green]OK[/green]" if self.success else f"[red]FAILED ({self.exit_code})[/red]"
        lines = [f"{status} {escape(self.command_line)} ({self.duration_seconds:.1f}s)"]
        if not self.success and self.stderr:
            for line in self.stderr.splitlines()[-5:]:
                lines.append(f"  {escape(line[:200])}")
        return "\n".join(lines)


class CommandError(Exception):
    """Raised when an external command fails and the caller asked to check it."""

    def __init__(self, message: str, result: CommandResult | None = None):
        self.result = result
        super().__init__(message)


class ProcessRunner:
    """Runs command token lists in the project tree."""

    def __init__(self, config: Optional[RunnerConfig] = None, verbose: bool = False) -> None:
        self.config = config or RunnerConfig()
        self.verbose = verbose
        self.history: list[CommandResult] = []

    async def run(self, tokens: list[str], cwd: str | Path, check: bool = False) -> CommandResult:
        """Run *tokens* in *cwd*.

        Args:
            tokens: Program followed by its arguments.
            cwd: Working directory.
            check: Raise ``CommandError`` when the command fails.
        """
        if not tokens:
            raise CommandError("Empty command")
        if not Path(cwd).is_dir():
            raise CommandError(f"Working directory does not exist: {cwd}")

        if self.verbose:
            console.print(f"  [dim]$ {escape(shlex.join(tokens))}[/dim]")

        start = time.monotonic()
        try:
            exit_code, stdout, stderr = await run_command(
                tokens, cwd=cwd, timeout=self.config.command_timeout
            )
        except (FileNotFoundError, PermissionError) as exc:
            exit_code, stdout, stderr = 127, "", f"{tokens[0]}: {exc.strerror or exc}"

        result = CommandResult(
            command=list(tokens),
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=time.monotonic() - start,
            cwd=str(cwd),
        )
        self.history.append(result)

        if check and not result.success:
            detail = (stderr or stdout).strip().splitlines()
            reason = detail[-1] if detail else f"exit code {exit_code}"
            raise CommandError(f"'{result.command_line}' failed: {reason}", result)
        return result

    def package_manager(self, project_root: str | Path) -> str:
        if self.config.package_manager != "auto":
            return self.config.package_manager
        return detect_package_manager(project_root)

    async def install(
        self,
        packages: list[str],
        cwd: str | Path,
        dev: bool = False,
        check: bool = True,
    ) -> CommandResult:
        """Install *packages* with the configured (or detected) package manager."""
        manager = self.package_manager(cwd)
        return await self.run(install_command(manager, packages, dev=dev), cwd, check=check)
