"""
Symbol graph builder.

Computes, for every source file in a FileSet, the imports it makes (with the
file each resolves to) and the names it exports, and keeps the file-level
import edges in a networkx DiGraph.
"""

import logging
from dataclasses import dataclass, field

import networkx as nx

from codeweave.assembler.file_set import FileSet
from codeweave.config.models import ExportRecord, ImportRecord
from codeweave.languages.base.plugin import LanguageAdapter

logger = logging.getLogger(__name__)


@dataclass
class ResolvedImport:
    record: ImportRecord
    target: str | None = None
    external: bool = False

    @property
    def unresolved(self) -> bool:
        return not self.external and self.target is None


@dataclass
class FileSymbols:
    path: str
    imports: list[ResolvedImport] = field(default_factory=list)
    exports: list[ExportRecord] = field(default_factory=list)

    @property
    def export_names(self) -> set[str]:
        return {e.symbol_name for e in self.exports}


class SymbolGraph:
    """Per-file imports/exports plus an importer -> target DiGraph."""

    def __init__(self, files: dict[str, FileSymbols], graph: nx.DiGraph):
        self.files = files
        self.graph = graph

    def exports_of(self, path: str) -> set[str]:
        symbols = self.files.get(path)
        return symbols.export_names if symbols else set()

    def importers_of(self, path: str) -> list[str]:
        if path not in self.graph:
            return []
        return sorted(self.graph.predecessors(path))

    def unresolved(self) -> list[ResolvedImport]:
        """Local imports that resolve to no file, in path order."""
        return [
            imp
            for path in sorted(self.files)
            for imp in self.files[path].imports
            if imp.unresolved
        ]

    def dependency_order(self) -> list[str]:
        """
        Source files ordered dependencies-first.

        Import cycles are collapsed into strongly connected components, so
        the order is still defined for cyclic trees.
        """
        condensed = nx.condensation(self.graph)
        order: list[str] = []
        for component in reversed(list(nx.topological_sort(condensed))):
            order.extend(sorted(condensed.nodes[component]["members"]))
        return order

    def cycles(self) -> list[list[str]]:
        return [sorted(c) for c in nx.strongly_connected_components(self.graph) if len(c) > 1]


class SymbolGraphBuilder:
    """Builds a SymbolGraph from a FileSet using a language adapter."""

    def __init__(self, adapter: LanguageAdapter):
        self.adapter = adapter

    def build(self, file_set: FileSet) -> SymbolGraph:
        """
        Parse every source file and resolve its local imports.

        Non-source files are ignored and external specifiers are never
        resolved.

        Args:
            file_set: The working set

        Returns:
            SymbolGraph over the current contents of ``file_set``
        """
        available = file_set.paths()
        files: dict[str, FileSymbols] = {}
        graph = nx.DiGraph()

        for path, content in file_set.items():
            if not self.adapter.is_source_file(path):
                continue
            graph.add_node(path)
            symbols = FileSymbols(path=path, exports=self.adapter.parse_exports(content, path))

            for record in self.adapter.parse_imports(content, path):
                if self.adapter.is_external(record.module_specifier, available):
                    symbols.imports.append(ResolvedImport(record=record, external=True))
                    continue
                target = self.adapter.resolve_import_path(record.module_specifier, path, available)
                symbols.imports.append(ResolvedImport(record=record, target=target))
                if target is not None and target != path:
                    graph.add_edge(path, target)

            files[path] = symbols

        logger.debug(
            f"Symbol graph: {len(files)} source files, {graph.number_of_edges()} import edges"
        )
        return SymbolGraph(files, graph)
