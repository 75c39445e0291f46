"""
Assembly and consistency engine.

Merges work order fragments into one working set, closes gaps in the module
graph, removes duplicate definitions and runs the symbol and toolchain repair
loops before committing the tree.
"""

from codeweave.assembler.compile_gate import CompilationGate, parse_diagnostics
from codeweave.assembler.file_set import FileSet
from codeweave.assembler.orchestrator import AssemblyOrchestrator
from codeweave.assembler.validator import ValidationRepairLoop, validate_and_repair

__all__ = [
    "AssemblyOrchestrator",
    "CompilationGate",
    "FileSet",
    "ValidationRepairLoop",
    "parse_diagnostics",
    "validate_and_repair",
]
