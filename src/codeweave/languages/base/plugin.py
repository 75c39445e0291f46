"""
Base language adapter interface.

Every target stack (Next.js, Express, FastAPI, future stacks) implements this
interface. The assembly engine is polymorphic over it and never looks at
stack-specific syntax itself.

Import/export parsing in adapters is regex based: it is syntactic, not
semantic. Re-exports are followed at most one hop (``export { a } from './b'``
makes ``a`` an export of the barrel without checking ``b``), and wildcard
re-exports (``export * from './b'``) contribute no names at all.
"""

import posixpath
import re
from abc import ABC, abstractmethod

from pydantic import BaseModel

from codeweave.config.models import (
    ErrorKind,
    ExportRecord,
    ImportRecord,
    Severity,
    ValidationError,
)

PROMPT_SECTIONS = ("scaffold", "missing_files", "validation_fixes", "toolchain_fixes", "wiring")

# Line and block comments inside a braced or parenthesized name list
COMMENT_RE = re.compile(r"//[^\n]*|/\*.*?\*/|#[^\n]*", re.DOTALL)


class FileStructure(BaseModel):
    """Canonical subdirectory roles used to route synthesized files."""

    models: str
    services: str
    routes: str
    pages: str
    components: str
    utils: str


def find_line(content: str, search: str) -> int:
    """1-based line of the first occurrence of ``search`` (1 if absent)."""
    idx = content.find(search)
    if idx == -1:
        return 1
    return content.count("\n", 0, idx) + 1


def line_of_offset(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


class LanguageAdapter(ABC):
    """
    Abstract base class for language adapters.

    Each adapter provides:
    - Import/export extraction from file text
    - Module specifier resolution against the working set
    - Dependency manifest handling
    - Stack-specific lint rules
    - Toolchain commands and synthesis prompt sections
    """

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    @abstractmethod
    def id(self) -> str:
        """Registry key (e.g., 'nextjs-mongodb')."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable stack name."""
        pass

    @property
    @abstractmethod
    def language(self) -> str:
        """Implementation language ('typescript', 'python')."""
        pass

    @property
    @abstractmethod
    def framework(self) -> str:
        pass

    @property
    def description(self) -> str:
        return ""

    # =========================================================================
    # File Handling
    # =========================================================================

    @property
    @abstractmethod
    def source_extensions(self) -> list[str]:
        """Recognized source extensions. The first is used for new files."""
        pass

    @property
    @abstractmethod
    def index_file_names(self) -> list[str]:
        """File names that make a directory importable."""
        pass

    @property
    @abstractmethod
    def config_files(self) -> list[str]:
        pass

    @property
    @abstractmethod
    def dependency_file(self) -> str:
        """Dependency manifest path (e.g., 'package.json')."""
        pass

    @property
    @abstractmethod
    def file_structure(self) -> FileStructure:
        pass

    def is_source_file(self, path: str) -> bool:
        if path.endswith(".d.ts"):
            return False
        return any(path.endswith(ext) for ext in self.source_extensions)

    # =========================================================================
    # Parsing
    # =========================================================================

    @abstractmethod
    def parse_imports(self, content: str, path: str) -> list[ImportRecord]:
        """
        Extract import statements from a file.

        Args:
            content: File text
            path: Repository-relative path of the file

        Returns:
            One ImportRecord per import statement
        """
        pass

    @abstractmethod
    def parse_exports(self, content: str, path: str) -> list[ExportRecord]:
        """
        Extract exported symbol names from a file.

        Args:
            content: File text
            path: Repository-relative path of the file

        Returns:
            One ExportRecord per distinct exported name
        """
        pass

    @abstractmethod
    def parse_package_dependencies(self, content: str) -> list[str]:
        """Return third-party package names imported by ``content``."""
        pass

    # =========================================================================
    # Path Resolution
    # =========================================================================

    @abstractmethod
    def is_external(self, specifier: str, available_files: set[str] | None = None) -> bool:
        """True when ``specifier`` names a third-party package, not a project file."""
        pass

    @abstractmethod
    def module_base_path(self, specifier: str, from_file: str) -> str | None:
        """Map a local specifier to a path without extension, or None if external."""
        pass

    def resolve_import_path(
        self, specifier: str, from_file: str, available_files: set[str]
    ) -> str | None:
        """
        Resolve a module specifier to a file in ``available_files``.

        Tries the exact path, then each source extension appended, then each
        index file name under the path as a directory.

        Returns:
            The resolved path, or None when nothing matches or the specifier
            is external
        """
        base = self.module_base_path(specifier, from_file)
        if base is None:
            return None
        return self.try_resolve(base, available_files)

    def try_resolve(self, base: str, available_files: set[str]) -> str | None:
        if base in available_files:
            return base
        for ext in self.source_extensions:
            if base + ext in available_files:
                return base + ext
        for index_name in self.index_file_names:
            candidate = f"{base}/{index_name}" if base else index_name
            if candidate in available_files:
                return candidate
        return None

    def expected_path(self, specifier: str, from_file: str) -> str | None:
        """Path a missing module should be created at."""
        base = self.module_base_path(specifier, from_file)
        if base is None:
            return None
        # Specifiers that already carry an extension (./a.ts, ./styles.css) name the file itself
        if self.is_source_file(base) or posixpath.splitext(posixpath.basename(base))[1]:
            return base
        return base + self.source_extensions[0]

    def normalize_generated_path(self, path: str, content: str) -> str:
        """Adjust the path of a synthesized file to match its content."""
        return path

    def submodule_specifier(self, specifier: str, name: str) -> str | None:
        """Specifier for ``name`` as a submodule of ``specifier``, if the stack has them."""
        return None

    @staticmethod
    def join_relative(from_file: str, specifier: str) -> str:
        from_dir = posixpath.dirname(from_file)
        return posixpath.normpath(posixpath.join(from_dir, specifier)).lstrip("/")

    # =========================================================================
    # Dependency File Handling
    # =========================================================================

    @abstractmethod
    def parse_dependency_file(self, content: str) -> dict[str, str]:
        """Parse the dependency manifest into ``{package: version}``."""
        pass

    @abstractmethod
    def add_dependencies(self, manifest: str, deps: dict[str, str], dev: bool = False) -> str:
        """Return ``manifest`` with ``deps`` merged in."""
        pass

    def fix_dependency_file(self, content: str, file_paths: list[str]) -> str:
        """Hook to repair a synthesized manifest. Identity by default."""
        return content

    @property
    def import_names_are_packages(self) -> bool:
        """
        True when an imported package name is also its manifest entry.

        Only then may undeclared imports be added to the manifest as-is.
        """
        return True

    # =========================================================================
    # Validation
    # =========================================================================

    @abstractmethod
    def validate_file(self, content: str, path: str) -> list[ValidationError]:
        """Stack-specific anti-pattern checks for one file."""
        pass

    def has_catch_all_export(self, content: str) -> bool:
        """True when the file exposes its API through a single catch-all export."""
        return False

    def defines_locally(self, content: str, name: str) -> bool:
        return False

    def render_named_exports(self, names: list[str]) -> str:
        raise NotImplementedError(f"{self.id} has no named export syntax")

    def lint_error(
        self,
        path: str,
        line: int,
        message: str,
        severity: Severity = Severity.ERROR,
        fixable: bool = True,
    ) -> ValidationError:
        return ValidationError(
            file=path,
            line=line,
            message=message,
            severity=severity,
            fixable=fixable,
            kind=ErrorKind.SYMBOL,
        )

    # =========================================================================
    # Toolchain
    # =========================================================================

    def install_command(self) -> list[str] | None:
        return None

    def type_check_command(self) -> list[str] | None:
        return None

    def lint_commands(self) -> list[list[str]]:
        return []

    def can_type_check(self, available_files: set[str]) -> bool:
        """False when the tree lacks the config the type checker needs."""
        return self.type_check_command() is not None

    # =========================================================================
    # Synthesis
    # =========================================================================

    @abstractmethod
    def prompt_section(self, section: str) -> str:
        """Stack-specific instructions for one synthesis call."""
        pass

    def scaffold_templates(self) -> dict[str, str]:
        """Deterministic config files written before AI scaffolding."""
        return {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


def split_names(raw: str) -> list[str]:
    """Split a comma separated name list, dropping comments, blanks and brackets."""
    cleaned = COMMENT_RE.sub("", raw)
    cleaned = re.sub(r"[{}()]", "", cleaned)
    return [part.strip() for part in cleaned.split(",") if part.strip()]
