"""
Validation and repair loop.

Checks the working set for symbol-level defects (imports that resolve to no
file, named imports the target does not export, stack lint rules), applies
the deterministic export fix, and hands what is left to the synthesizer for a
bounded number of repair attempts.
"""

import logging
import posixpath
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

from codeweave.assembler.file_set import FileSet
from codeweave.assembler.symbol_graph import SymbolGraph, SymbolGraphBuilder
from codeweave.config.models import (
    ErrorKind,
    ImportingContext,
    Severity,
    ValidationError,
    count_errors,
)
from codeweave.errors import SynthesisError
from codeweave.languages.base.plugin import LanguageAdapter

logger = logging.getLogger(__name__)


# ============================================================================
# Detection
# ============================================================================


def validate_symbols(
    file_set: FileSet,
    adapter: LanguageAdapter,
    validate_imports: bool = True,
    validate_exports: bool = True,
    graph: SymbolGraph | None = None,
) -> list[ValidationError]:
    """
    Report unresolved local imports and named imports missing from their target.

    Args:
        file_set: The working set
        adapter: Language adapter for the target stack
        validate_imports: Report specifiers that resolve to no file
        validate_exports: Report named imports the resolved file does not export
        graph: Pre-built symbol graph for ``file_set``

    Returns:
        Errors ordered by importing file, then by source line
    """
    graph = graph or SymbolGraphBuilder(adapter).build(file_set)
    available = file_set.paths()
    errors: list[ValidationError] = []

    for path in sorted(graph.files):
        for imp in graph.files[path].imports:
            if imp.external:
                continue
            record = imp.record

            if imp.target is None:
                if validate_imports:
                    errors.append(ValidationError(
                        file=path,
                        line=record.source_line,
                        message=f"Unresolved import: {record.module_specifier}",
                        fixable=False,
                        specifier=record.module_specifier,
                    ))
                continue

            # Non-source targets (json, css) have no export list to check
            if not validate_exports or imp.target not in graph.files:
                continue

            exported = graph.exports_of(imp.target)
            for name in sorted(record.imported_symbols):
                if name == "default" or name in exported:
                    continue
                submodule = adapter.submodule_specifier(record.module_specifier, name)
                if submodule and adapter.resolve_import_path(submodule, path, available):
                    continue
                errors.append(ValidationError(
                    file=path,
                    line=record.source_line,
                    message=(
                        f"Named import '{name}' from '{record.module_specifier}' "
                        f"not found in exports of {imp.target}"
                    ),
                    fixable=True,
                    symbol=name,
                    specifier=record.module_specifier,
                    target=imp.target,
                ))

    return errors


def validate_file_rules(file_set: FileSet, adapter: LanguageAdapter) -> list[ValidationError]:
    """Run the adapter's per-file lint rules over every source file."""
    errors: list[ValidationError] = []
    for path, content in file_set.items():
        if adapter.is_source_file(path):
            errors.extend(adapter.validate_file(content, path))
    return errors


def _dedupe(errors: list[ValidationError]) -> list[ValidationError]:
    seen: set[tuple[str, int, str]] = set()
    unique = []
    for error in errors:
        if error.key() in seen:
            continue
        seen.add(error.key())
        unique.append(error)
    return unique


# ============================================================================
# Deterministic Fix
# ============================================================================


def apply_export_fixes(
    file_set: FileSet,
    adapter: LanguageAdapter,
    errors: list[ValidationError],
) -> int:
    """
    Add named exports for names a module defines but only exposes via its default export.

    Only targets with a catch-all export are touched, and only names they
    define locally are added, so the fix never introduces a new dangling
    reference.

    Returns:
        Number of files rewritten
    """
    missing_by_target: dict[str, set[str]] = defaultdict(set)
    for error in errors:
        if error.kind == ErrorKind.SYMBOL and error.target and error.symbol:
            missing_by_target[error.target].add(error.symbol)

    fixed = 0
    for target in sorted(missing_by_target):
        content = file_set.get(target)
        if content is None or not adapter.has_catch_all_export(content):
            continue
        names = sorted(n for n in missing_by_target[target] if adapter.defines_locally(content, n))
        if not names:
            continue
        export_line = adapter.render_named_exports(names)
        if export_line in content:
            continue
        file_set.set(target, content.rstrip("\n") + "\n\n" + export_line + "\n")
        fixed += 1
        logger.info(f"Added named exports to {target}: {', '.join(names)}")

    return fixed


# ============================================================================
# Repair Loop
# ============================================================================


@dataclass
class ValidationOutcome:
    errors: list[ValidationError] = field(default_factory=list)
    attempts: int = 0
    auto_fixed: int = 0
    ai_fixed: int = 0
    history: list[int] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return count_errors(self.errors)


class ValidationRepairLoop:
    """Bounded validate -> fix -> revalidate cycle for symbol-level errors."""

    def __init__(
        self,
        synthesizer: Any,
        max_attempts: int = 3,
        max_errors_per_fix: int = 20,
        max_files_per_fix: int = 10,
        max_sibling_dirs: int = 10,
        max_importing_context: int = 15,
        validate_imports: bool = True,
        validate_exports: bool = True,
        on_pass: Callable[[int, int], None] | None = None,
    ):
        self.synthesizer = synthesizer
        self.max_attempts = max_attempts
        self.max_errors_per_fix = max_errors_per_fix
        self.max_files_per_fix = max_files_per_fix
        self.max_sibling_dirs = max_sibling_dirs
        self.max_importing_context = max_importing_context
        self.validate_imports = validate_imports
        self.validate_exports = validate_exports
        self.on_pass = on_pass

    def validate(self, file_set: FileSet, adapter: LanguageAdapter) -> list[ValidationError]:
        errors = validate_symbols(
            file_set, adapter, self.validate_imports, self.validate_exports
        )
        errors.extend(validate_file_rules(file_set, adapter))
        return _dedupe(errors)

    def run(self, file_set: FileSet, adapter: LanguageAdapter) -> ValidationOutcome:
        """
        Validate ``file_set`` and repair it in place.

        Args:
            file_set: Working set, updated with every applied fix
            adapter: Language adapter for the target stack

        Returns:
            ValidationOutcome with the residual errors and attempt counters
        """
        outcome = ValidationOutcome()
        errors = self._validate_and_autofix(file_set, adapter, outcome)

        while count_errors(errors) > 0 and outcome.attempts < self.max_attempts:
            outcome.attempts += 1
            logger.info(
                f"Repair attempt {outcome.attempts}/{self.max_attempts}: "
                f"{count_errors(errors)} errors"
            )

            try:
                fixes = self._request_fixes(file_set, adapter, errors)
            except SynthesisError as e:
                logger.warning(f"Repair attempt {outcome.attempts} failed: {e}")
                continue

            outcome.ai_fixed += len(file_set.set_generated(fixes, "repair"))
            if not fixes:
                logger.warning(f"Repair attempt {outcome.attempts} returned no files")

            errors = self._validate_and_autofix(file_set, adapter, outcome)

        outcome.errors = errors
        if count_errors(errors):
            logger.warning(f"Validation finished with {count_errors(errors)} unresolved errors")
        return outcome

    def _validate_and_autofix(
        self, file_set: FileSet, adapter: LanguageAdapter, outcome: ValidationOutcome
    ) -> list[ValidationError]:
        # One deterministic fix per pass keeps the loop bounded
        errors = self.validate(file_set, adapter)
        before = file_set.snapshot()
        fixed = apply_export_fixes(file_set, adapter, errors)
        if fixed:
            fixed_errors = self.validate(file_set, adapter)
            if count_errors(fixed_errors) > count_errors(errors):
                logger.warning("Export fixes increased the error count, reverting them")
                file_set.restore(before)
            else:
                outcome.auto_fixed += fixed
                errors = fixed_errors

        outcome.history.append(count_errors(errors))
        if self.on_pass:
            self.on_pass(len(outcome.history), count_errors(errors))
        return errors

    def _request_fixes(
        self, file_set: FileSet, adapter: LanguageAdapter, errors: list[ValidationError]
    ) -> list:
        ordered = sorted(errors, key=lambda e: e.severity != Severity.ERROR)
        batch = ordered[: self.max_errors_per_fix]

        affected: list[str] = []
        for error in batch:
            for path in (error.file, error.target):
                if path and path in file_set and path not in affected:
                    affected.append(path)
        affected = affected[: self.max_files_per_fix]

        file_contents = {path: file_set.get(path) for path in affected}
        return self.synthesizer.generate_validation_fixes(
            batch,
            file_contents,
            self.sibling_listing(file_set, adapter, affected),
            self.importing_context(file_set, adapter, affected),
            adapter,
        )

    def sibling_listing(
        self, file_set: FileSet, adapter: LanguageAdapter, paths: list[str]
    ) -> dict[str, list[str]]:
        """Source files next to each affected file, keyed by directory."""
        listing: dict[str, list[str]] = {}
        for path in paths:
            directory = posixpath.dirname(path)
            if directory in listing:
                continue
            if len(listing) >= self.max_sibling_dirs:
                break
            listing[directory] = file_set.siblings(directory, adapter.source_extensions)
        return listing

    def importing_context(
        self, file_set: FileSet, adapter: LanguageAdapter, paths: list[str]
    ) -> list[ImportingContext]:
        """Which files import each affected path, and which names they expect from it."""
        wanted = set(paths)
        graph = SymbolGraphBuilder(adapter).build(file_set)
        context: list[ImportingContext] = []

        for path in sorted(graph.files):
            for imp in graph.files[path].imports:
                if imp.target not in wanted or not imp.record.imported_symbols:
                    continue
                context.append(ImportingContext(
                    file=path,
                    target=imp.target,
                    imports=sorted(imp.record.imported_symbols),
                ))
                if len(context) >= self.max_importing_context:
                    return context
        return context


def validate_and_repair(
    file_set: FileSet,
    adapter: LanguageAdapter,
    synthesizer: Any,
    max_attempts: int = 3,
) -> list[ValidationError]:
    """Run the repair loop and return the residual errors."""
    return ValidationRepairLoop(synthesizer, max_attempts=max_attempts).run(file_set, adapter).errors
