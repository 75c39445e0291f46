"""
Compilation gate.

Writes the working set to disk, installs dependencies, runs the stack's type
checker and feeds its diagnostics back to the synthesizer for a bounded number
of repair attempts. Only entered once symbol validation is clean.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from codeweave.assembler.file_set import FileSet, normalize_path
from codeweave.config.models import ErrorKind, ValidationError
from codeweave.errors import SynthesisError
from codeweave.languages.base.plugin import LanguageAdapter

logger = logging.getLogger(__name__)

# src/app/page.tsx(12,5): error TS2307: Cannot find module 'x'
TSC_DIAGNOSTIC_RE = re.compile(r"^(.+?)\((\d+),\d+\):\s+error\s+(TS\d+):\s+(.+)$")
# app/main.py:3:1: error: Module "app.db" has no attribute "engine"  [attr-defined]
CHECKER_DIAGNOSTIC_RE = re.compile(
    r"^(.+?):(\d+)(?::\d+)?:\s+error:\s+(.+?)(?:\s+\[([\w-]+)\])?\s*$"
)


def _relative(path: str, workdir: Path | None) -> str:
    path = path.strip().replace("\\", "/")
    if workdir is not None:
        root = Path(workdir).as_posix().rstrip("/") + "/"
        if path.startswith(root):
            path = path[len(root):]
    return normalize_path(path)


def parse_diagnostics(output: str, workdir: Path | None = None) -> list[ValidationError]:
    """
    Parse type checker output into toolchain ValidationErrors.

    Recognizes tsc ``file(line,col): error TSxxxx: msg`` lines and
    mypy/pyright style ``file:line[:col]: error: msg [code]`` lines. Absolute
    paths under ``workdir`` are made relative to it.
    """
    errors: list[ValidationError] = []
    for line in output.splitlines():
        line = line.rstrip()
        match = TSC_DIAGNOSTIC_RE.match(line)
        if match:
            path, line_no, code, message = match.groups()
        else:
            match = CHECKER_DIAGNOSTIC_RE.match(line)
            if not match:
                continue
            path, line_no, message, code = match.groups()

        errors.append(ValidationError(
            file=_relative(path, workdir),
            line=int(line_no),
            message=message.strip(),
            fixable=True,
            kind=ErrorKind.TOOLCHAIN,
            code=code,
        ))
    return errors


@dataclass
class GateOutcome:
    errors: list[ValidationError] = field(default_factory=list)
    attempts: int = 0
    fixes_applied: int = 0
    skipped: bool = False


class CompilationGate:
    """Bounded type-check -> fix -> re-check cycle."""

    def __init__(
        self,
        toolchain: Any,
        synthesizer: Any,
        max_attempts: int = 2,
        max_errors_per_fix: int = 30,
        max_files_per_fix: int = 10,
    ):
        self.toolchain = toolchain
        self.synthesizer = synthesizer
        self.max_attempts = max_attempts
        self.max_errors_per_fix = max_errors_per_fix
        self.max_files_per_fix = max_files_per_fix

    def run(self, file_set: FileSet, adapter: LanguageAdapter, workdir: Path) -> GateOutcome:
        """
        Type check ``file_set`` in ``workdir`` and repair it.

        Returned fixes are written into both ``file_set`` and ``workdir``.

        Args:
            file_set: Working set, updated with every applied fix
            adapter: Language adapter for the target stack
            workdir: Directory the tree is materialized in

        Returns:
            GateOutcome with the residual diagnostics
        """
        outcome = GateOutcome()
        if not adapter.can_type_check(file_set.paths()):
            logger.info(f"Skipping type check: {adapter.id} tree has no type checker config")
            outcome.skipped = True
            return outcome

        workdir = Path(workdir)
        file_set.write_to(workdir)

        install = self.toolchain.install_dependencies(workdir, adapter)
        if not install.ok:
            logger.warning("Dependency install failed, type checking anyway")

        errors = self._check(workdir, adapter, outcome)

        while errors and outcome.attempts < self.max_attempts:
            outcome.attempts += 1
            logger.info(
                f"Toolchain fix attempt {outcome.attempts}/{self.max_attempts}: {len(errors)} errors"
            )

            affected: list[str] = []
            for error in errors:
                if error.file in file_set and error.file not in affected:
                    affected.append(error.file)
            file_contents = {path: file_set.get(path) for path in affected[: self.max_files_per_fix]}

            try:
                fix = self.synthesizer.generate_toolchain_fixes(
                    errors[: self.max_errors_per_fix],
                    file_contents,
                    file_set.get(adapter.dependency_file),
                    adapter,
                )
            except SynthesisError as e:
                logger.warning(f"Toolchain fix attempt {outcome.attempts} failed: {e}")
                continue

            changed = file_set.set_generated(fix.files, "toolchain fix")
            outcome.fixes_applied += len(changed)

            if fix.patches_manifest:
                manifest = file_set.get(adapter.dependency_file) or ""
                if fix.dependencies:
                    manifest = adapter.add_dependencies(manifest, fix.dependencies)
                if fix.dev_dependencies:
                    manifest = adapter.add_dependencies(manifest, fix.dev_dependencies, dev=True)
                changed.append(file_set.set(adapter.dependency_file, manifest))
                logger.info(
                    f"Added {len(fix.dependencies) + len(fix.dev_dependencies)} packages "
                    f"to {adapter.dependency_file}"
                )

            file_set.write_to(workdir, changed)
            if fix.patches_manifest:
                self.toolchain.install_dependencies(workdir, adapter)

            errors = self._check(workdir, adapter, outcome)

        outcome.errors = errors
        return outcome

    def _check(
        self, workdir: Path, adapter: LanguageAdapter, outcome: GateOutcome
    ) -> list[ValidationError]:
        result = self.toolchain.type_check(workdir, adapter)
        if not result.ran:
            logger.warning(f"Type checker did not run: {result.error}")
            outcome.skipped = True
            return []
        errors = parse_diagnostics(result.output, workdir)
        logger.info(f"Type check found {len(errors)} errors")
        return errors
