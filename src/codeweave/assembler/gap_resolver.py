"""
Gap resolver.

Iterative fixpoint over the module graph: find local imports that resolve to
no file, ask the synthesizer for those files, merge them, and repeat until no
gaps remain or the pass limit is reached. Leftover gaps are not an error here;
they surface later as validation errors.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable

from codeweave.assembler.file_set import FileSet
from codeweave.assembler.symbol_graph import SymbolGraphBuilder
from codeweave.config.models import GeneratedFile, MissingFileSpec
from codeweave.errors import SynthesisError
from codeweave.languages.base.plugin import LanguageAdapter

logger = logging.getLogger(__name__)


@dataclass
class GapResolutionResult:
    passes: int = 0
    generated: list[str] = field(default_factory=list)
    remaining: list[MissingFileSpec] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return not self.remaining


def find_missing_files(file_set: FileSet, adapter: LanguageAdapter) -> list[MissingFileSpec]:
    """
    Collect one MissingFileSpec per expected path of an unresolved import.

    Required exports are the union of the named imports of every importer;
    default and namespace imports add no name constraint.

    Returns:
        Specs sorted by expected path
    """
    graph = SymbolGraphBuilder(adapter).build(file_set)
    specs: dict[str, MissingFileSpec] = {}

    for imp in graph.unresolved():
        record = imp.record
        expected = adapter.expected_path(record.module_specifier, record.importing_file)
        if expected is None:
            continue
        spec = specs.setdefault(expected, MissingFileSpec(expected_path=expected))
        spec.required_exports |= record.imported_symbols
        spec.imported_by.add(record.importing_file)
        spec.specifiers.add(record.module_specifier)

    return [specs[path] for path in sorted(specs)]


class GapResolver:
    """Bounded gap-closure loop."""

    def __init__(
        self,
        synthesizer: Any,
        max_passes: int = 3,
        max_specs_per_pass: int = 20,
        batch_size: int = 5,
        max_workers: int = 4,
        on_generated: Callable[[str, int], None] | None = None,
    ):
        self.synthesizer = synthesizer
        self.max_passes = max_passes
        self.max_specs_per_pass = max_specs_per_pass
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.on_generated = on_generated

    def resolve(self, file_set: FileSet, adapter: LanguageAdapter) -> GapResolutionResult:
        """
        Run gap closure on ``file_set`` in place.

        Args:
            file_set: Working set, updated with generated files
            adapter: Language adapter for the target stack

        Returns:
            GapResolutionResult with passes used, generated paths and leftovers
        """
        result = GapResolutionResult()

        for pass_number in range(1, self.max_passes + 1):
            missing = find_missing_files(file_set, adapter)
            if not missing:
                logger.info(f"Gap closure reached a fixpoint after {result.passes} passes")
                return result

            batch = missing[: self.max_specs_per_pass]
            result.passes = pass_number
            logger.info(
                f"Gap closure pass {pass_number}/{self.max_passes}: "
                f"{len(missing)} missing files, requesting {len(batch)}"
            )

            generated = self._synthesize(batch, file_set, adapter)
            if not generated:
                logger.warning("Synthesizer returned no files, stopping gap closure")
                break

            # Pass boundary: every result of this pass lands before the next scan
            for key in file_set.set_generated(generated, "generated"):
                result.generated.append(key)
                if self.on_generated:
                    self.on_generated(key, pass_number)

        result.remaining = find_missing_files(file_set, adapter)
        if result.remaining:
            logger.info(f"Gap closure stopped with {len(result.remaining)} missing files")
        return result

    def _synthesize(
        self,
        specs: list[MissingFileSpec],
        file_set: FileSet,
        adapter: LanguageAdapter,
    ) -> list[GeneratedFile]:
        """Request files for ``specs``, splitting into concurrent batches."""
        existing = sorted(file_set.paths())
        batches = [specs[i:i + self.batch_size] for i in range(0, len(specs), self.batch_size)]

        if len(batches) == 1:
            try:
                return self.synthesizer.generate_missing_files(batches[0], existing, adapter)
            except SynthesisError as e:
                logger.warning(f"Missing file generation failed: {e}")
                return []

        results: dict[int, list[GeneratedFile]] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batches))) as executor:
            future_to_index = {
                executor.submit(self.synthesizer.generate_missing_files, batch, existing, adapter): i
                for i, batch in enumerate(batches)
            }
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    results[index] = future.result()
                except SynthesisError as e:
                    logger.warning(f"Missing file batch {index + 1}/{len(batches)} failed: {e}")

        return [f for index in sorted(results) for f in results[index]]
