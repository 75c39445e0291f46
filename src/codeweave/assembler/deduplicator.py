"""
Singular/plural deduplication.

Generated trees often contain both ``task.ts`` and ``tasks.ts`` for one
entity. Within each directory, source files are grouped by base name with a
single trailing "s" stripped (never "ss"); when a group holds both the
singular and the plural file, the plural is removed.
"""

import logging
import posixpath
from collections import defaultdict

from codeweave.assembler.file_set import FileSet

logger = logging.getLogger(__name__)


def singular_key(base: str) -> str:
    if base.endswith("s") and not base.endswith("ss"):
        return base[:-1]
    return base


class Deduplicator:
    """Removes pluralized duplicates of a module within one directory."""

    def __init__(self, source_extensions: list[str]):
        self.source_extensions = sorted(source_extensions, key=len, reverse=True)

    def _split(self, filename: str) -> tuple[str, str] | None:
        for ext in self.source_extensions:
            if filename.endswith(ext) and len(filename) > len(ext):
                return filename[: -len(ext)], ext
        return None

    def find_duplicates(self, paths: set[str] | list[str]) -> list[tuple[str, str]]:
        """
        Return ``(kept, removed)`` pairs.

        The result depends only on the set of paths, not on their order.
        """
        groups: dict[tuple[str, str], list[tuple[str, str]]] = defaultdict(list)
        for path in sorted(paths):
            split = self._split(posixpath.basename(path))
            if split is None:
                continue
            base, _ = split
            groups[(posixpath.dirname(path), singular_key(base))].append((base, path))

        pairs: list[tuple[str, str]] = []
        for (_, key), variants in sorted(groups.items()):
            singulars = [path for base, path in variants if base == key]
            plurals = [path for base, path in variants if base == key + "s"]
            if singulars and plurals:
                for plural in plurals:
                    pairs.append((singulars[0], plural))
        return pairs

    def run(self, file_set: FileSet) -> list[str]:
        """Delete plural duplicates from ``file_set`` and return their paths."""
        removed = []
        for kept, plural in self.find_duplicates(file_set.paths()):
            file_set.delete(plural)
            removed.append(plural)
            logger.info(f"Removed duplicate {plural} (keeping {kept})")
        return removed
