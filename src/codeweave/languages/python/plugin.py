"""
Python language adapter for the FastAPI + PostgreSQL stack.

Imports are read line by line (``from X import a, b`` including
parenthesised multi-line lists, and ``import X``). Exports are the top-level
classes, public functions and assignments of a module plus ``__all__``.
"""

import logging
import re
import sys

from codeweave.config.models import (
    ExportKind,
    ExportRecord,
    ImportRecord,
    Severity,
    ValidationError,
)
from codeweave.languages.base.plugin import FileStructure, LanguageAdapter, find_line, split_names

logger = logging.getLogger(__name__)

FROM_IMPORT_RE = re.compile(r"^from\s+(\.*[\w.]*)\s+import\s+(.+)$")
IMPORT_RE = re.compile(r"^import\s+(.+)$")
CLASS_RE = re.compile(r"^class\s+(\w+)")
FUNC_RE = re.compile(r"^(?:async\s+)?def\s+(\w+)")
ASSIGN_RE = re.compile(r"^(\w+)\s*(?::[^=]+)?=")
ALL_RE = re.compile(r"__all__\s*=\s*[\[(]([^\])]*)[\])]", re.DOTALL)
PACKAGE_RE = re.compile(r"^\s*(?:from|import)\s+([A-Za-z_]\w*)", re.MULTILINE)
REQUIREMENT_RE = re.compile(r"^([A-Za-z0-9_.-]+)(\[[^\]]+\])?(.*)$")

# Top-level names that are project packages in this stack, never PyPI packages
LOCAL_PACKAGES = {
    "app", "tests", "config", "models", "schemas", "services", "routers", "dependencies", "utils",
}

FASTAPI_PROMPTS: dict[str, str] = {
    "scaffold": """\
Stack: FastAPI with async SQLAlchemy 2.0, PostgreSQL (asyncpg), Pydantic v2 and Alembic.
- requirements.txt pins fastapi, uvicorn[standard], sqlalchemy[asyncio], asyncpg, pydantic-settings, alembic
- app/main.py creates the FastAPI app and includes every router
- Include alembic.ini, .env.example and a Dockerfile""",
    "missing_files": """\
Stack: FastAPI + async SQLAlchemy.
- Every package directory needs an __init__.py
- Models live in app/models and subclass the declarative Base from app/database.py
- Routers live in app/routers and define `router = APIRouter()`
- Database calls in async functions must be awaited""",
    "validation_fixes": """\
Stack: FastAPI + Pydantic v2.
- Use model_config = ConfigDict(from_attributes=True) instead of orm_mode
- Package __init__.py files re-export public names and list them in __all__""",
    "toolchain_fixes": """\
Stack: Python 3.11 type checked with mypy.
- Missing third-party stubs go into requirements (as types-* packages) via packageJsonFixes.dependencies
- Prefer precise annotations over Any""",
    "wiring": """\
Stack: FastAPI.
- app/routers/__init__.py imports every router module
- app/main.py includes each router with a singular prefix and tag
- app/models/__init__.py re-exports every model class and lists them in __all__""",
}


class FastAPIPostgresAdapter(LanguageAdapter):
    """FastAPI with async SQLAlchemy, PostgreSQL and Pydantic v2."""

    @property
    def id(self) -> str:
        return "fastapi-postgres"

    @property
    def name(self) -> str:
        return "FastAPI + PostgreSQL"

    @property
    def language(self) -> str:
        return "python"

    @property
    def framework(self) -> str:
        return "fastapi"

    @property
    def description(self) -> str:
        return "FastAPI with async SQLAlchemy, PostgreSQL, and Pydantic v2"

    @property
    def source_extensions(self) -> list[str]:
        return [".py"]

    @property
    def index_file_names(self) -> list[str]:
        return ["__init__.py"]

    @property
    def config_files(self) -> list[str]:
        return ["pyproject.toml", "requirements.txt", "setup.py", "setup.cfg"]

    @property
    def dependency_file(self) -> str:
        return "requirements.txt"

    @property
    def import_names_are_packages(self) -> bool:
        # `import yaml` is installed as PyYAML, `import jose` as python-jose
        return False

    @property
    def file_structure(self) -> FileStructure:
        return FileStructure(
            models="app/models",
            services="app/services",
            routes="app/routers",
            pages="templates",
            components="app/dependencies",
            utils="app/utils",
        )

    # =========================================================================
    # Parsing
    # =========================================================================

    @staticmethod
    def _gather_names(lines: list[str], i: int, names_str: str) -> str:
        """Join a parenthesised multi-line import list starting at line ``i``."""
        if "(" in names_str and ")" not in names_str:
            j = i + 1
            while j < len(lines) and ")" not in lines[j]:
                names_str += " " + lines[j].split("#")[0].strip()
                j += 1
            if j < len(lines):
                names_str += " " + lines[j].split("#")[0].strip()
        return names_str

    def parse_imports(self, content: str, path: str) -> list[ImportRecord]:
        imports: list[ImportRecord] = []
        lines = content.split("\n")

        for i, raw_line in enumerate(lines):
            line = raw_line.strip()

            from_match = FROM_IMPORT_RE.match(line)
            if from_match:
                names_str = self._gather_names(lines, i, from_match.group(2).split("#")[0])
                record = ImportRecord(
                    importing_file=path,
                    module_specifier=from_match.group(1),
                    source_line=i + 1,
                )
                for part in split_names(names_str):
                    if part == "*":
                        continue
                    record.imported_symbols.add(part.split()[0])
                imports.append(record)
                continue

            import_match = IMPORT_RE.match(line)
            if import_match:
                for part in split_names(import_match.group(1).split("#")[0]):
                    as_match = re.match(r"([\w.]+)\s+as\s+(\w+)", part)
                    module = as_match.group(1) if as_match else part.split()[0]
                    local = as_match.group(2) if as_match else module.split(".")[0]
                    imports.append(
                        ImportRecord(
                            importing_file=path,
                            module_specifier=module,
                            source_line=i + 1,
                            default_symbols={local},
                        )
                    )

        return imports

    def parse_exports(self, content: str, path: str) -> list[ExportRecord]:
        exports: list[ExportRecord] = []
        seen: set[str] = set()

        def add(name: str, line: int):
            if name not in seen:
                seen.add(name)
                exports.append(ExportRecord(file=path, symbol_name=name, kind=ExportKind.VALUE, line=line))

        lines = content.split("\n")
        for i, line in enumerate(lines):
            class_match = CLASS_RE.match(line)
            if class_match:
                add(class_match.group(1), i + 1)
                continue

            func_match = FUNC_RE.match(line)
            if func_match:
                if not func_match.group(1).startswith("_"):
                    add(func_match.group(1), i + 1)
                continue

            assign_match = ASSIGN_RE.match(line)
            if assign_match and not assign_match.group(1).startswith("_"):
                add(assign_match.group(1), i + 1)
                continue

            # Module-level imports are importable names too
            from_match = FROM_IMPORT_RE.match(line)
            if from_match:
                names_str = self._gather_names(lines, i, from_match.group(2).split("#")[0])
                for part in split_names(names_str):
                    local = part.split()[-1]
                    if local != "*" and not local.startswith("_"):
                        add(local, i + 1)

        all_match = ALL_RE.search(content)
        if all_match:
            line = find_line(content, "__all__")
            for name in split_names(all_match.group(1)):
                add(name.strip("'\""), line)

        return exports

    def parse_package_dependencies(self, content: str) -> list[str]:
        deps: set[str] = set()
        stdlib = set(sys.stdlib_module_names)
        for match in PACKAGE_RE.finditer(content):
            pkg = match.group(1)
            if pkg in LOCAL_PACKAGES or pkg in stdlib or pkg == "__future__":
                continue
            deps.add(pkg)
        return sorted(deps)

    # =========================================================================
    # Path Resolution
    # =========================================================================

    def is_external(self, specifier: str, available_files: set[str] | None = None) -> bool:
        if specifier.startswith("."):
            return False
        top = specifier.split(".")[0]
        if available_files is None:
            return top not in LOCAL_PACKAGES
        return not any(
            path == f"{top}.py" or path.startswith(f"{top}/") for path in available_files
        )

    def module_base_path(self, specifier: str, from_file: str) -> str | None:
        if specifier.startswith("."):
            dots = len(specifier) - len(specifier.lstrip("."))
            parts = from_file.split("/")[:-1]
            if dots > 1:
                parts = parts[: len(parts) - (dots - 1)]
            remainder = specifier[dots:]
            if remainder:
                parts.extend(remainder.split("."))
            return "/".join(parts)
        return specifier.replace(".", "/")

    def expected_path(self, specifier: str, from_file: str) -> str | None:
        base = self.module_base_path(specifier, from_file)
        if base is None:
            return None
        if specifier.strip(".") == "":
            # `from . import x` targets the package itself
            return f"{base}/__init__.py" if base else "__init__.py"
        return base + ".py"

    def submodule_specifier(self, specifier: str, name: str) -> str | None:
        if specifier.endswith("."):
            return specifier + name
        return f"{specifier}.{name}"

    # =========================================================================
    # Dependency File Handling
    # =========================================================================

    def parse_dependency_file(self, content: str) -> dict[str, str]:
        deps: dict[str, str] = {}
        for line in content.split("\n"):
            stripped = line.split("#")[0].strip()
            if not stripped or stripped.startswith("-"):
                continue
            match = REQUIREMENT_RE.match(stripped)
            if match:
                deps[match.group(1)] = match.group(3).strip() or "*"
        return deps

    def add_dependencies(self, manifest: str, deps: dict[str, str], dev: bool = False) -> str:
        lines: dict[str, str] = {}
        for line in manifest.split("\n"):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            match = REQUIREMENT_RE.match(stripped)
            key = match.group(1).lower() if match else stripped
            lines[key] = stripped
        for name, version in deps.items():
            if name.lower() not in lines:
                spec = "" if version in ("*", "", "latest") else version
                if spec and spec[0].isdigit():
                    spec = f">={spec}"
                lines[name.lower()] = f"{name}{spec}"
        return "\n".join(sorted(lines.values(), key=str.lower)) + "\n"

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_file(self, content: str, path: str) -> list[ValidationError]:
        errors: list[ValidationError] = []

        if ("services/" in path or "routers/" in path) and "async def" in content:
            if "db.execute" in content and "await db.execute" not in content:
                errors.append(self.lint_error(
                    path, find_line(content, "db.execute"),
                    "db.execute must be awaited in async function",
                ))
            if "db.commit" in content and "await db.commit" not in content:
                errors.append(self.lint_error(
                    path, find_line(content, "db.commit"),
                    "db.commit must be awaited in async function",
                ))

        if "class Config:" in content and "orm_mode = True" in content:
            errors.append(self.lint_error(
                path, find_line(content, "orm_mode"),
                'Use "from_attributes = True" instead of "orm_mode = True" (Pydantic v2)',
            ))

        if "routers/" in path and not path.endswith("__init__.py"):
            if "APIRouter" not in content:
                errors.append(self.lint_error(
                    path, 1, "Router file should use APIRouter from fastapi",
                    severity=Severity.WARNING, fixable=False,
                ))

        return errors

    # =========================================================================
    # Toolchain
    # =========================================================================

    def install_command(self) -> list[str] | None:
        return [sys.executable, "-m", "pip", "install", "-r", self.dependency_file]

    def type_check_command(self) -> list[str] | None:
        return ["mypy", "app", "--show-column-numbers", "--no-error-summary"]

    def lint_commands(self) -> list[list[str]]:
        return [["ruff", "check", "app", "--fix"], ["ruff", "format", "app"]]

    # =========================================================================
    # Synthesis
    # =========================================================================

    def prompt_section(self, section: str) -> str:
        return FASTAPI_PROMPTS.get(section, "")

    def scaffold_templates(self) -> dict[str, str]:
        return {"app/__init__.py": ""}
