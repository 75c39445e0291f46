"""
Working file set for one assembly run.

A FileSet maps normalized, forward-slash relative paths to full file text.
It is the single mutable working set of a run and is owned by one phase at a
time.
"""

from __future__ import annotations

import logging
import os
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from codeweave.config.models import (
    ErrorKind,
    FileAction,
    FileFragment,
    PhaseResult,
    PhaseStatus,
    Severity,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Directories never loaded back from a working directory
SKIP_DIRS = {
    "node_modules", ".git", ".next", "dist", "build", "__pycache__",
    ".venv", "venv", ".mypy_cache", ".ruff_cache", ".pytest_cache",
}


def normalize_path(path: str) -> str:
    """Normalize a repository-relative path to its canonical key form."""
    normalized = path.strip().replace("\\", "/")
    normalized = posixpath.normpath(normalized) if normalized else ""
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = normalized.lstrip("/")
    if normalized in (".", ""):
        return ""
    return normalized


def escapes_root(key: str) -> bool:
    """True when a normalized key points above the tree root."""
    return key == ".." or key.startswith("../")


@dataclass
class MergeResult:
    """Outcome of applying an ordered fragment list."""

    phase: PhaseResult
    created: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def touched(self) -> list[str]:
        return self.created + self.modified + self.deleted


class FileSet:
    """Ownership-exclusive mapping of path -> text for one run."""

    def __init__(self, files: dict[str, str] | None = None):
        self._files: dict[str, str] = {}
        for path, content in (files or {}).items():
            self.set(path, content)

    # =========================================================================
    # Mapping API
    # =========================================================================

    def set(self, path: str, content: str) -> str:
        """Store ``content`` under the normalized form of ``path`` and return the key."""
        key = normalize_path(path)
        if not key or escapes_root(key):
            raise ValueError(f"Invalid file path: {path!r}")
        self._files[key] = content
        return key

    def set_generated(self, files: list, source: str) -> list[str]:
        """
        Store synthesizer output, skipping files whose path leaves the tree.

        Args:
            files: Objects with ``path`` and ``content``
            source: Label used in the warning for skipped files

        Returns:
            Keys that were written, in order
        """
        keys = []
        for generated in files:
            try:
                keys.append(self.set(generated.path, generated.content))
            except ValueError:
                logger.warning(f"Skipping {source} file with invalid path {generated.path!r}")
        return keys

    def get(self, path: str, default: str | None = None) -> str | None:
        return self._files.get(normalize_path(path), default)

    def delete(self, path: str) -> bool:
        """Remove ``path``. Returns True if it existed."""
        return self._files.pop(normalize_path(path), None) is not None

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalize_path(path) in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._files))

    def items(self) -> list[tuple[str, str]]:
        return sorted(self._files.items())

    def paths(self) -> set[str]:
        """Path index used for import resolution."""
        return set(self._files)

    def snapshot(self) -> dict[str, str]:
        return dict(self._files)

    def restore(self, snapshot: dict[str, str]) -> None:
        self._files = dict(snapshot)

    def siblings(self, directory: str, extensions: list[str] | None = None) -> list[str]:
        """File names directly inside ``directory``."""
        directory = normalize_path(directory)
        names = []
        for path in self._files:
            if posixpath.dirname(path) != directory:
                continue
            if extensions and not any(path.endswith(ext) for ext in extensions):
                continue
            names.append(posixpath.basename(path))
        return sorted(names)

    def directories(self) -> list[str]:
        return sorted({posixpath.dirname(path) for path in self._files})

    # =========================================================================
    # Fragment Merge
    # =========================================================================

    def apply_fragments(self, fragments: list[FileFragment]) -> MergeResult:
        """
        Apply fragments in order.

        Later fragments for a path override earlier ones and ``delete`` removes
        any earlier entry. A create/modify without content is an input error:
        it is reported, skipped and marks the phase partial.

        Args:
            fragments: Ordered fragments from the work orders

        Returns:
            MergeResult with the phase outcome and touched paths
        """
        result = MergeResult(phase=PhaseResult(phase="merge"))
        errors = result.phase.errors

        for fragment in fragments:
            key = normalize_path(fragment.path)
            if not key:
                errors.append(self._input_error(fragment.path, "Fragment has an empty path"))
                continue
            if escapes_root(key):
                errors.append(self._input_error(fragment.path, "Fragment path is outside the project root"))
                continue

            if fragment.action == FileAction.DELETE:
                if self.delete(key):
                    result.deleted.append(key)
                    logger.debug(f"Deleted {key}")
                continue

            if fragment.content is None:
                errors.append(self._input_error(
                    key, f"Fragment action '{fragment.action.value}' has no content"
                ))
                continue

            existed = key in self._files
            self._files[key] = fragment.content
            (result.modified if existed else result.created).append(key)

        result.phase.files_processed = len(fragments)
        if errors:
            result.phase.status = PhaseStatus.PARTIAL
        return result

    @staticmethod
    def _input_error(path: str, message: str) -> ValidationError:
        return ValidationError(
            file=path or "<unknown>",
            line=0,
            message=message,
            severity=Severity.ERROR,
            fixable=False,
            kind=ErrorKind.INPUT,
        )

    # =========================================================================
    # Disk I/O
    # =========================================================================

    def write_to(self, directory: Path, paths: list[str] | None = None) -> int:
        """Write files (all, or just ``paths``) under ``directory``."""
        directory = Path(directory)
        written = 0
        for path in paths if paths is not None else list(self._files):
            key = normalize_path(path)
            if key not in self._files:
                continue
            target = directory / key
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(self._files[key], encoding="utf-8")
            written += 1
        return written

    @classmethod
    def load_from(cls, directory: Path, skip_dirs: set[str] | None = None) -> "FileSet":
        """Read every text file under ``directory`` into a new FileSet."""
        directory = Path(directory)
        skip = SKIP_DIRS if skip_dirs is None else skip_dirs
        file_set = cls()
        for root, dirs, files in os.walk(directory):
            dirs[:] = sorted(d for d in dirs if d not in skip)
            for name in sorted(files):
                full = Path(root) / name
                rel = full.relative_to(directory).as_posix()
                try:
                    file_set.set(rel, full.read_text(encoding="utf-8"))
                except UnicodeDecodeError:
                    logger.debug(f"Skipping binary file {rel}")
        return file_set
