"""
Assembly Orchestrator - Main Assembly Pipeline.

Coordinates one assembly run:
1. Scaffolding: dependency extraction, adapter templates, AI scaffold
2. Merging: apply fragments in order, deduplicate, fix the manifest
3. Generating: close gaps in the module graph
4. Wiring: barrel and router files from module export lists
5. Validating: symbol validation and repair
6. Type check: compilation gate (only when symbol validation is clean)

Runs are durable (written under ``assembled_dir`` and recorded in the run
store) or previews (written to a scratch directory the caller later confirms
or cancels).
"""

import logging
import posixpath
import shutil
import time
from pathlib import Path
from typing import Any, Callable

import orjson
from rich.console import Console
from rich.panel import Panel

from codeweave.assembler.compile_gate import CompilationGate
from codeweave.assembler.deduplicator import Deduplicator
from codeweave.assembler.file_set import SKIP_DIRS, FileSet, normalize_path
from codeweave.assembler.gap_resolver import GapResolver
from codeweave.assembler.symbol_graph import SymbolGraphBuilder
from codeweave.assembler.validator import ValidationRepairLoop
from codeweave.config.models import (
    AssemblyConfig,
    AssemblyEvent,
    AssemblyRun,
    AssemblyStatus,
    CodeweaveConfig,
    EventType,
    FileFragment,
    FileSummary,
    ModuleSummary,
    PhaseResult,
    PhaseStatus,
    PreviewResult,
    RunMode,
    TERMINAL_STATUSES,
    ValidationError,
    WorkOrder,
    count_errors,
    flatten_work_orders,
)
from codeweave.errors import ScratchNotFoundError, SynthesisError
from codeweave.languages.base.plugin import LanguageAdapter
from codeweave.languages.registry import LanguageAdapterRegistry, create_default_registry
from codeweave.state.persistence import RunStore, create_run_store
from codeweave.toolchain.runner import BuildToolchain

logger = logging.getLogger(__name__)
console = Console()

SCRATCH_FILES_DIR = "files"
SCRATCH_RUN_FILE = "run.json"


class AssemblyOrchestrator:
    """Runs the assembly pipeline for durable and preview runs."""

    def __init__(
        self,
        config: CodeweaveConfig,
        registry: LanguageAdapterRegistry | None = None,
        synthesizer: Any = None,
        toolchain: Any = None,
        run_store: RunStore | None = None,
        event_handler: Callable[[AssemblyEvent], None] | None = None,
        verbose: bool = True,
    ):
        self.config = config
        self.registry = registry or create_default_registry()
        self.toolchain = toolchain or BuildToolchain(config.toolchain)
        self.event_handler = event_handler
        self.verbose = verbose
        self._synthesizer = synthesizer
        self._run_store = run_store
        # Final trees of dry runs not yet collected through get_files
        self._memory_files: dict[str, dict[str, str]] = {}

    # =========================================================================
    # Collaborators
    # =========================================================================

    @property
    def synthesizer(self) -> Any:
        if self._synthesizer is None:
            from codeweave.synthesizer.code_synthesizer import CodeSynthesizer
            from codeweave.synthesizer.llm_client import create_llm_client

            self._synthesizer = CodeSynthesizer(
                create_llm_client(self.config.llm),
                tech_stack=self.config.project.tech_stack,
                retry_delay=self.config.llm.retry_delay,
            )
        return self._synthesizer

    @property
    def run_store(self) -> RunStore:
        if self._run_store is None:
            self._run_store = create_run_store(self.config)
        return self._run_store

    def resolve_adapter(self, adapter: LanguageAdapter | str | None = None) -> LanguageAdapter:
        if isinstance(adapter, LanguageAdapter):
            return adapter
        return self.registry.get(adapter or self.config.project.stack)

    # =========================================================================
    # Public API
    # =========================================================================

    def run(
        self,
        fragments: list[FileFragment] | list[WorkOrder],
        adapter: LanguageAdapter | str | None = None,
        *,
        project_id: str | None = None,
        blueprint_id: str = "default",
    ) -> AssemblyRun:
        """Durable assembly: output under ``assembled_dir`` and a persisted run record."""
        return self.assemble(
            fragments,
            adapter,
            project_id=project_id,
            blueprint_id=blueprint_id,
            mode=RunMode.DURABLE,
        )

    def preview(
        self,
        fragments: list[FileFragment] | list[WorkOrder],
        adapter: LanguageAdapter | str | None = None,
        *,
        project_id: str | None = None,
        blueprint_id: str = "default",
    ) -> PreviewResult:
        """
        Assemble into a scratch directory without touching the run store.

        Returns:
            PreviewResult whose ``scratch_handle`` is passed to confirm/cancel
        """
        run, file_set = self._execute(
            fragments,
            self.resolve_adapter(adapter),
            self.config.assembly,
            project_id=project_id or self.config.project.name,
            blueprint_id=blueprint_id,
            mode=RunMode.PREVIEW,
        )
        scratch = self._scratch_dir(run)

        return PreviewResult(
            success=run.success,
            run_id=run.id,
            files=[
                FileSummary(path=path, action="create", size=len(content.encode("utf-8")))
                for path, content in file_set.items()
            ],
            total_files=len(file_set),
            validation_errors=run.validation_errors,
            fixes_applied=run.stats.auto_fixes + run.stats.ai_fixes + run.stats.toolchain_fixes,
            toolchain_error_count=run.toolchain_error_count,
            logs=[entry.message for entry in run.logs],
            scratch_handle=None if self.config.assembly.dry_run else str(scratch),
        )

    def confirm(self, scratch_handle: str) -> AssemblyRun:
        """
        Promote a preview to a durable run.

        Copies the scratch tree to ``<assembled_dir>/<project>/<blueprint>/<run_id>``,
        persists the run record and removes the scratch directory.

        Raises:
            ScratchNotFoundError: If the scratch directory does not exist
        """
        scratch = self._checked_scratch(scratch_handle)
        run_file = scratch / SCRATCH_RUN_FILE
        if not scratch.is_dir() or not run_file.exists():
            raise ScratchNotFoundError(
                f"Preview files not found at {scratch_handle}. Run preview again."
            )

        with open(run_file, "rb") as f:
            run = AssemblyRun.model_validate(orjson.loads(f.read()))

        output = self._durable_dir(run)
        if output.exists():
            shutil.rmtree(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(
            scratch / SCRATCH_FILES_DIR,
            output,
            ignore=shutil.ignore_patterns(*SKIP_DIRS),
        )

        run.mode = RunMode.DURABLE
        run.output_path = str(output)
        run.merged_files = sorted(FileSet.load_from(output).paths())
        run.log("Assembly confirmed from preview")
        self.run_store.save(run)

        shutil.rmtree(scratch)
        logger.info(f"Confirmed preview {run.id} into {output}")
        return run

    def cancel(self, scratch_handle: str) -> None:
        """Remove a preview's scratch directory. Cancelling twice is a no-op."""
        scratch = self._checked_scratch(scratch_handle)
        if scratch.exists():
            shutil.rmtree(scratch)
            logger.info(f"Cancelled preview at {scratch}")

    def get_files(self, run: AssemblyRun) -> list[dict[str, str]]:
        """
        ``{path, content}`` for every file of a finished run.

        A dry run's tree lives only in memory and is handed over once: the
        first call returns it and releases it.
        """
        if run.id in self._memory_files:
            files = self._memory_files.pop(run.id)
            return [{"path": path, "content": files[path]} for path in sorted(files)]
        if run.output_path is None:
            return []
        return [
            {"path": path, "content": content}
            for path, content in FileSet.load_from(Path(run.output_path)).items()
        ]

    def assemble(
        self,
        fragments: list[FileFragment] | list[WorkOrder],
        adapter: LanguageAdapter | str | None = None,
        options: AssemblyConfig | None = None,
        *,
        project_id: str | None = None,
        blueprint_id: str = "default",
        mode: RunMode = RunMode.DURABLE,
    ) -> AssemblyRun:
        """
        Run the full phase pipeline.

        Args:
            fragments: Fragments, or work orders flattened in order
            adapter: Adapter instance or registry id (None = configured stack)
            options: Assembly bounds and switches (defaults to config.assembly)
            project_id: Project the run belongs to (defaults to the project name)
            blueprint_id: Blueprint the run belongs to
            mode: Durable or preview

        Returns:
            The finished AssemblyRun (status completed, possibly with errors)

        Raises:
            Exception: Anything raised inside a phase, after the run is marked failed
        """
        run, _ = self._execute(
            fragments,
            self.resolve_adapter(adapter),
            options or self.config.assembly,
            project_id=project_id or self.config.project.name,
            blueprint_id=blueprint_id,
            mode=mode,
        )
        return run

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _execute(
        self,
        fragments: list[FileFragment] | list[WorkOrder],
        adapter: LanguageAdapter,
        options: AssemblyConfig,
        *,
        project_id: str,
        blueprint_id: str,
        mode: RunMode,
    ) -> tuple[AssemblyRun, FileSet]:
        start_time = time.time()
        fragment_list = _as_fragments(fragments)
        run = AssemblyRun(
            project_id=project_id,
            blueprint_id=blueprint_id,
            stack_id=adapter.id,
            mode=mode,
        )
        file_set = FileSet()

        workdir: Path | None = None
        if not options.dry_run:
            if mode == RunMode.DURABLE:
                workdir = self._durable_dir(run)
                run.output_path = str(workdir)
            else:
                workdir = self._scratch_dir(run) / SCRATCH_FILES_DIR
            workdir.mkdir(parents=True, exist_ok=True)

        self._log(run, f"Starting {mode.value} assembly of {len(fragment_list)} fragments ({adapter.id})")

        try:
            self._persist(run, options)
            self._scaffold(run, file_set, fragment_list, adapter, options)
            input_errors = self._merge(run, file_set, fragment_list, adapter, options)
            self._generate(run, file_set, adapter, options)
            self._wire(run, file_set, adapter, options)
            symbol_errors = self._validate(run, file_set, adapter, options, workdir)
            toolchain_errors = self._compile(run, file_set, adapter, options, workdir, symbol_errors)

            run.validation_errors = input_errors + symbol_errors + toolchain_errors
            self._finalize(run, file_set, options, workdir, start_time)
        except Exception as e:
            self._fail(run, e, options)
            if mode == RunMode.PREVIEW and not options.dry_run:
                shutil.rmtree(self._scratch_dir(run), ignore_errors=True)
            raise

        return run, file_set

    def _scaffold(
        self,
        run: AssemblyRun,
        file_set: FileSet,
        fragments: list[FileFragment],
        adapter: LanguageAdapter,
        options: AssemblyConfig,
    ) -> None:
        self._start_phase(run, AssemblyStatus.SCAFFOLDING, "Step 1/6: Scaffolding project...")
        phase = PhaseResult(phase="scaffolding")

        if options.extract_dependencies:
            dependencies: set[str] = set()
            for fragment in fragments:
                if fragment.content and adapter.is_source_file(fragment.path):
                    dependencies.update(adapter.parse_package_dependencies(fragment.content))
            # Packages that live in the tree are not installable dependencies
            tree = {normalize_path(f.path) for f in fragments if f.content is not None}
            dependencies = {d for d in dependencies if adapter.is_external(d, tree)}
            run.dependencies = sorted(dependencies)
            self._emit(EventType.DEPENDENCY_EXTRACTED, phase="scaffolding", count=len(dependencies))
            self._log(run, f"Detected {len(dependencies)} package dependencies")

        scaffold_paths = [file_set.set(path, content) for path, content in adapter.scaffold_templates().items()]

        if options.generate_scaffold:
            fragment_paths = [f.path for f in fragments if f.content is not None]
            try:
                generated = self.synthesizer.generate_scaffold(
                    self.config.project.name, run.dependencies, fragment_paths, adapter
                )
            except SynthesisError as e:
                phase.status = PhaseStatus.PARTIAL
                self._log(run, f"Scaffold generation failed: {e}")
                generated = []
            scaffold_paths.extend(file_set.set_generated(generated, "scaffold"))

        run.scaffold_files = sorted(set(scaffold_paths))
        phase.files_processed = len(run.scaffold_files)
        self._log(run, f"Generated {len(run.scaffold_files)} scaffold files")
        self._end_phase(run, phase)

    def _merge(
        self,
        run: AssemblyRun,
        file_set: FileSet,
        fragments: list[FileFragment],
        adapter: LanguageAdapter,
        options: AssemblyConfig,
    ) -> list[ValidationError]:
        self._start_phase(run, AssemblyStatus.MERGING, "Step 2/6: Merging fragments...")

        merge = file_set.apply_fragments(fragments)
        for path in merge.touched:
            self._emit(EventType.FILE_PROCESSED, phase="merging", path=path)
        run.stats.files_created = len(merge.created)
        run.stats.files_modified = len(merge.modified)
        run.stats.files_deleted = len(merge.deleted)
        for error in merge.phase.errors:
            self._log(run, f"Skipped fragment {error.file}: {error.message}")
        self._log(run, f"Merged {len(merge.created) + len(merge.modified)} files, deleted {len(merge.deleted)}")

        removed = Deduplicator(adapter.source_extensions).run(file_set)
        run.stats.duplicates_removed = len(removed)
        if removed:
            self._log(run, f"Removed {len(removed)} duplicate files")

        manifest = file_set.get(adapter.dependency_file)
        if manifest is not None:
            fixed = adapter.fix_dependency_file(manifest, sorted(file_set.paths()))
            declared = {name.lower() for name in adapter.parse_dependency_file(fixed)}
            undeclared = {d: "latest" for d in run.dependencies if d.lower() not in declared}
            if undeclared and adapter.import_names_are_packages:
                fixed = adapter.add_dependencies(fixed, undeclared)
            if fixed != manifest:
                file_set.set(adapter.dependency_file, fixed)
                self._log(run, f"Updated {adapter.dependency_file} with detected dependencies")

        self._end_phase(run, merge.phase)
        return list(merge.phase.errors)

    def _generate(
        self, run: AssemblyRun, file_set: FileSet, adapter: LanguageAdapter, options: AssemblyConfig
    ) -> None:
        self._start_phase(run, AssemblyStatus.GENERATING, "Step 3/6: Generating missing files...")
        phase = PhaseResult(phase="generating")

        if options.generate_missing_files:
            resolver = GapResolver(
                self.synthesizer,
                max_passes=options.max_validation_passes,
                max_specs_per_pass=options.max_missing_per_pass,
                batch_size=options.synthesis_batch_size,
                max_workers=options.max_workers,
                on_generated=lambda path, pass_number: self._emit(
                    EventType.MISSING_FILE_GENERATED,
                    phase="generating",
                    path=path,
                    pass_number=pass_number,
                ),
            )
            result = resolver.resolve(file_set, adapter)
            run.stats.missing_files_generated = len(result.generated)
            phase.files_processed = len(result.generated)
            if result.passes == 0:
                self._log(run, "No missing imports detected")
            else:
                self._log(run, f"Generated {len(result.generated)} missing files in {result.passes} passes")
            if not result.converged:
                phase.status = PhaseStatus.PARTIAL
                self._log(run, f"{len(result.remaining)} imported files are still missing")

        self._end_phase(run, phase)

    def _wire(
        self, run: AssemblyRun, file_set: FileSet, adapter: LanguageAdapter, options: AssemblyConfig
    ) -> None:
        self._start_phase(run, AssemblyStatus.WIRING, "Step 4/6: Generating wiring files...")
        phase = PhaseResult(phase="wiring")

        if options.generate_wiring:
            graph = SymbolGraphBuilder(adapter).build(file_set)
            modules = [
                ModuleSummary(
                    dir=posixpath.dirname(path) or ".",
                    file=posixpath.basename(path),
                    exports=sorted(graph.exports_of(path)),
                )
                for path in sorted(graph.files)
                if graph.exports_of(path)
            ]
            try:
                generated = self.synthesizer.generate_wiring(modules, sorted(file_set.paths()), adapter)
            except SynthesisError as e:
                phase.status = PhaseStatus.PARTIAL
                self._log(run, f"Wiring generation failed: {e}")
                generated = []
            written = file_set.set_generated(generated, "wiring")
            phase.files_processed = len(written)
            self._log(run, f"Generated {len(written)} wiring files")

        self._end_phase(run, phase)

    def _validate(
        self,
        run: AssemblyRun,
        file_set: FileSet,
        adapter: LanguageAdapter,
        options: AssemblyConfig,
        workdir: Path | None,
    ) -> list[ValidationError]:
        self._start_phase(run, AssemblyStatus.VALIDATING, "Step 5/6: Validating imports and exports...")

        if options.run_lint and workdir is not None:
            self._lint(run, file_set, adapter, workdir)

        max_attempts = (
            options.max_fix_attempts if run.mode == RunMode.DURABLE else options.preview_fix_attempts
        )
        loop = ValidationRepairLoop(
            self.synthesizer,
            max_attempts=max_attempts,
            validate_imports=options.validate_imports,
            validate_exports=options.validate_exports,
            on_pass=lambda pass_number, errors: self._emit(
                EventType.VALIDATION_PASS, phase="validating", pass_number=pass_number, count=errors
            ),
        )
        outcome = loop.run(file_set, adapter)

        run.fix_attempts = outcome.attempts
        run.stats.validation_passes = len(outcome.history)
        run.stats.auto_fixes = outcome.auto_fixed
        run.stats.ai_fixes = outcome.ai_fixed
        if outcome.auto_fixed:
            self._log(run, f"Auto-fixed {outcome.auto_fixed} export issues")
        if outcome.attempts:
            self._log(run, f"Applied {outcome.ai_fixed} AI fixes in {outcome.attempts} attempts")
        self._log(run, f"Validation finished with {outcome.error_count} errors")

        phase = PhaseResult(
            phase="validating",
            status=PhaseStatus.SUCCESS if outcome.error_count == 0 else PhaseStatus.PARTIAL,
            files_processed=len(file_set),
            errors=outcome.errors,
        )
        self._end_phase(run, phase)
        return outcome.errors

    def _lint(self, run: AssemblyRun, file_set: FileSet, adapter: LanguageAdapter, workdir: Path) -> None:
        file_set.write_to(workdir)
        results = self.toolchain.lint_and_format(workdir, adapter)
        for result in results:
            if not result.ok:
                self._log(run, f"Lint/format warning: {' '.join(result.command)} failed")

        # Formatters rewrite files in place; pick their output back up
        for path in file_set.paths():
            target = workdir / path
            if target.exists():
                file_set.set(path, target.read_text(encoding="utf-8"))
        self._log(run, "Linting and formatting complete")

    def _compile(
        self,
        run: AssemblyRun,
        file_set: FileSet,
        adapter: LanguageAdapter,
        options: AssemblyConfig,
        workdir: Path | None,
        symbol_errors: list[ValidationError],
    ) -> list[ValidationError]:
        if not options.run_toolchain or workdir is None:
            self._log(run, "Skipping type check (toolchain disabled)")
            return []
        if count_errors(symbol_errors) > 0:
            self._log(run, "Skipping type check: symbol validation has errors")
            return []

        self._start_phase(run, AssemblyStatus.TYPESCRIPT_VALIDATION, "Step 6/6: Type checking...")
        gate = CompilationGate(
            self.toolchain, self.synthesizer, max_attempts=options.toolchain_fix_attempts
        )
        outcome = gate.run(file_set, adapter, workdir)

        run.toolchain_fix_attempts = outcome.attempts
        run.toolchain_error_count = len(outcome.errors)
        run.stats.toolchain_fixes = outcome.fixes_applied
        if outcome.skipped:
            self._log(run, "Type check skipped")
        elif outcome.errors:
            self._log(run, f"Type check found {len(outcome.errors)} errors")
        else:
            self._log(run, "Type check passed")

        self._end_phase(run, PhaseResult(
            phase="typescript-validation",
            status=PhaseStatus.SUCCESS if not outcome.errors else PhaseStatus.PARTIAL,
            errors=outcome.errors,
        ))
        return outcome.errors

    def _finalize(
        self,
        run: AssemblyRun,
        file_set: FileSet,
        options: AssemblyConfig,
        workdir: Path | None,
        start_time: float,
    ) -> None:
        run.merged_files = sorted(file_set.paths())
        run.stats.total_files = len(file_set)
        run.stats.elapsed_seconds = time.time() - start_time

        if workdir is None:
            self._memory_files[run.id] = file_set.snapshot()
        else:
            file_set.write_to(workdir)

        errors = count_errors(run.validation_errors)
        self._log(run, f"Assembly complete: {len(file_set)} files, {errors} errors")
        run.transition(AssemblyStatus.COMPLETED)
        self._persist(run, options)

        if self.verbose:
            style = "green" if run.success else "yellow"
            console.print(
                Panel(
                    f"[bold {style}]Assembly {'Succeeded' if run.success else 'Completed With Errors'}"
                    f"[/bold {style}]\n\n"
                    f"Files: {run.stats.total_files}\n"
                    f"Missing files generated: {run.stats.missing_files_generated}\n"
                    f"Duplicates removed: {run.stats.duplicates_removed}\n"
                    f"Fixes applied: {run.stats.auto_fixes + run.stats.ai_fixes + run.stats.toolchain_fixes}\n"
                    f"Errors: {errors}\n"
                    f"Output: {workdir or 'memory'}\n"
                    f"Time: {run.stats.elapsed_seconds:.1f}s",
                    title=f"Assembly {run.id}",
                    border_style=style,
                )
            )

    def _fail(self, run: AssemblyRun, error: Exception, options: AssemblyConfig) -> None:
        # A completed run only fails when saving its completed record raised
        saving_completed = run.status == AssemblyStatus.COMPLETED
        failed_during = "persisting" if saving_completed else run.status.value

        run.error = str(error)
        self._log(run, f"Assembly failed: {error}")
        logger.error(f"Assembly {run.id} failed during {failed_during}: {error}")
        self._emit(EventType.ERROR, phase=failed_during, message=str(error))
        if saving_completed:
            run.force_failed()
        elif run.status not in TERMINAL_STATUSES:
            run.transition(AssemblyStatus.FAILED)

        try:
            self._persist(run, options)
        except Exception as persist_error:
            logger.error(f"Could not record failure of run {run.id}: {persist_error}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _durable_dir(self, run: AssemblyRun) -> Path:
        return Path(self.config.project.assembled_dir) / run.project_id / run.blueprint_id / run.id

    def _scratch_dir(self, run: AssemblyRun) -> Path:
        return Path(self.config.project.preview_dir) / run.project_id / run.blueprint_id / run.id

    def _checked_scratch(self, scratch_handle: str) -> Path:
        scratch = Path(scratch_handle).resolve()
        root = Path(self.config.project.preview_dir).resolve()
        if root not in scratch.parents:
            raise ScratchNotFoundError(f"{scratch_handle} is not a preview scratch directory")
        return scratch

    def _persist(self, run: AssemblyRun, options: AssemblyConfig) -> None:
        if options.dry_run:
            return
        if run.mode == RunMode.DURABLE:
            self.run_store.save(run)
            return
        scratch = self._scratch_dir(run)
        scratch.mkdir(parents=True, exist_ok=True)
        with open(scratch / SCRATCH_RUN_FILE, "wb") as f:
            f.write(orjson.dumps(run.model_dump(mode="json"), option=orjson.OPT_INDENT_2))

    def _log(self, run: AssemblyRun, message: str) -> None:
        run.log(message)
        logger.info(message)

    def _emit(self, event_type: EventType, **kwargs: Any) -> None:
        if self.event_handler:
            self.event_handler(AssemblyEvent(type=event_type, **kwargs))

    def _start_phase(self, run: AssemblyRun, status: AssemblyStatus, title: str) -> None:
        run.transition(status)
        if self.verbose:
            console.print(f"\n[bold cyan]{title}[/bold cyan]")
        self._emit(EventType.PHASE_START, phase=status.value, status="started")

    def _end_phase(self, run: AssemblyRun, phase: PhaseResult) -> None:
        run.phases.append(phase)
        if self.verbose:
            console.print(f"  {phase.phase}: {phase.status.value}")
        self._emit(EventType.PHASE_COMPLETE, phase=phase.phase, status=phase.status.value)


def _as_fragments(items: list[FileFragment] | list[WorkOrder]) -> list[FileFragment]:
    fragments: list[FileFragment] = []
    for item in items:
        if isinstance(item, WorkOrder):
            fragments.extend(flatten_work_orders([item]))
        else:
            fragments.append(item)
    return fragments
