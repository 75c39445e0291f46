"""
Build toolchain runner.

Runs the adapter's install, type check and lint commands as subprocesses in an
assembly working directory. Public methods never raise for a failed, missing
or timed-out command; they return a ToolchainResult describing what happened.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from codeweave.config.models import ToolchainConfig
from codeweave.errors import ToolchainError
from codeweave.languages.base.plugin import LanguageAdapter

logger = logging.getLogger(__name__)


@dataclass
class ToolchainResult:
    """Outcome of one toolchain command."""

    command: list[str]
    returncode: int | None = None
    output: str = ""
    error: str | None = None

    @property
    def ran(self) -> bool:
        """True when the command started and exited on its own."""
        return self.returncode is not None

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class BuildToolchain:
    """Subprocess front end for a stack's package manager, type checker and linters."""

    def __init__(self, config: ToolchainConfig | None = None):
        self.config = config or ToolchainConfig()

    def run_command(self, command: list[str], cwd: Path, timeout: int) -> ToolchainResult:
        """
        Run ``command`` in ``cwd``, capturing stdout and stderr together.

        Raises:
            ToolchainError: If the executable is missing, the command times
                out or ``cwd`` does not exist
        """
        cwd = Path(cwd)
        if not cwd.is_dir():
            raise ToolchainError(f"Working directory does not exist: {cwd}")

        logger.debug(f"Running {' '.join(command)} in {cwd}")
        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ToolchainError(f"{command[0]} timed out after {timeout} seconds") from e
        except FileNotFoundError as e:
            raise ToolchainError(f"{command[0]} not found. Is it installed and on PATH?") from e

        output = (result.stdout or "") + (result.stderr or "")
        return ToolchainResult(command=command, returncode=result.returncode, output=output)

    def _run(self, command: list[str], cwd: Path, timeout: int) -> ToolchainResult:
        try:
            result = self.run_command(command, cwd, timeout)
        except ToolchainError as e:
            logger.warning(str(e))
            return ToolchainResult(command=command, error=str(e))

        if not result.ok:
            logger.debug(f"{' '.join(command)} exited with {result.returncode}")
        return result

    def install_dependencies(self, workdir: Path, adapter: LanguageAdapter) -> ToolchainResult:
        """Install the project's dependencies."""
        command = adapter.install_command()
        if command is None:
            return ToolchainResult(command=[], returncode=0)
        logger.info(f"Installing dependencies: {' '.join(command)}")
        return self._run(command, workdir, self.config.install_timeout)

    def type_check(self, workdir: Path, adapter: LanguageAdapter) -> ToolchainResult:
        """Run the type checker. Diagnostics are in ``result.output``."""
        command = adapter.type_check_command()
        if command is None:
            return ToolchainResult(command=[], error=f"{adapter.id} has no type checker")
        logger.info(f"Type checking: {' '.join(command)}")
        return self._run(command, workdir, self.config.type_check_timeout)

    def lint_and_format(self, workdir: Path, adapter: LanguageAdapter) -> list[ToolchainResult]:
        """Run every lint/format command in order; failures do not stop later commands."""
        return [
            self._run(command, workdir, self.config.lint_timeout)
            for command in adapter.lint_commands()
        ]
