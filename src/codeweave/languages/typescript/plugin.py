"""
TypeScript language adapters.

Provides the Next.js + MongoDB stack (the registry default) and the
Express + PostgreSQL stack. Both share ES module parsing, the ``@/`` path
alias and the npm/tsc toolchain.
"""

import json
import logging
import re

from codeweave.config.models import (
    ExportKind,
    ExportRecord,
    ImportRecord,
    Severity,
    ValidationError,
)
from codeweave.languages.base.plugin import (
    FileStructure,
    LanguageAdapter,
    find_line,
    line_of_offset,
    split_names,
)

logger = logging.getLogger(__name__)

IMPORT_RE = re.compile(
    r"""import\s+(?:(type)\s+)?"""
    r"""(?:(\{[^}]+\})|(\*\s+as\s+\w+)|(\w+))"""
    r"""(?:\s*,\s*(\{[^}]+\}|\*\s+as\s+\w+))?"""
    r"""\s+from\s+['"]([^'"]+)['"]"""
)
REQUIRE_RE = re.compile(
    r"""(?:const|let|var)\s+(\{[^}]+\}|\w+)\s*=\s*require\s*\(\s*['"]([^'"]+)['"]\s*\)"""
)
EXPORT_DECL_RE = re.compile(
    r"export\s+(?:declare\s+)?(?:(type)\s+)?(?:async\s+)?(?:abstract\s+)?"
    r"(const|let|var|function\*?|class|interface|type|enum)\s+(\w+)"
)
EXPORT_DEFAULT_RE = re.compile(r"export\s+default\s")
EXPORT_BRACED_RE = re.compile(
    r"""export\s+(type\s+)?\{([^}]*)\}(?:\s*from\s+['"]([^'"]+)['"])?"""
)
EXPORT_STAR_AS_RE = re.compile(r"""export\s+\*\s+as\s+(\w+)\s+from\s+['"]([^'"]+)['"]""")

PACKAGE_IMPORT_RE = re.compile(r"""(?:import|from)\s+['"]([^./'"@][^'"]*)['"]""")
SCOPED_IMPORT_RE = re.compile(r"""(?:import|from)\s+['"](@[^/'"]+/[^'"]+)['"]""")
PACKAGE_REQUIRE_RE = re.compile(r"""require\s*\(\s*['"]([^./'"@][^'"]*)['"]\s*\)""")
SCOPED_REQUIRE_RE = re.compile(r"""require\s*\(\s*['"](@[^/'"]+/[^'"]+)['"]\s*\)""")

NODE_BUILTINS = {
    "assert", "buffer", "child_process", "crypto", "events", "fs", "http", "https",
    "net", "os", "path", "process", "stream", "url", "util", "zlib",
}

JSX_PATTERNS = [
    re.compile(r"<[A-Z][a-zA-Z0-9]*[\s/>]"),
    re.compile(r"</[A-Za-z]"),
    re.compile(r"className="),
    re.compile(r"onClick="),
    re.compile(r"\breturn\s*\(\s*<"),
]

# Packages that do not exist on npm but are commonly hallucinated
INVALID_NPM_PACKAGES = {
    "@radix-ui/react-button",
    "@radix-ui/react-input",
    "@radix-ui/react-textarea",
    "@radix-ui/react-card",
    "@radix-ui/react-badge",
    "@radix-ui/react-form",
    "@radix-ui/react-table",
    "@radix-ui/react-spinner",
    "@radix-ui/react-loading",
    "@radix-ui/react-modal",
}

# If the key package is present, these pinned companions are required
REQUIRED_DEPS_BY_PATTERN: dict[str, dict[str, str]] = {
    "sonner": {"next-themes": "^0.3.0"},
    "calendar": {"react-day-picker": "^8.10.0", "date-fns": "^3.0.0"},
    "@trpc/client": {"superjson": "^2.2.1"},
    "@trpc/react-query": {"@tanstack/react-query": "^4.36.1"},
}

SHADCN_RADIX_DEPS: dict[str, str] = {
    "accordion": "@radix-ui/react-accordion",
    "alert-dialog": "@radix-ui/react-alert-dialog",
    "avatar": "@radix-ui/react-avatar",
    "checkbox": "@radix-ui/react-checkbox",
    "dialog": "@radix-ui/react-dialog",
    "dropdown-menu": "@radix-ui/react-dropdown-menu",
    "label": "@radix-ui/react-label",
    "popover": "@radix-ui/react-popover",
    "progress": "@radix-ui/react-progress",
    "select": "@radix-ui/react-select",
    "separator": "@radix-ui/react-separator",
    "sheet": "@radix-ui/react-dialog",
    "switch": "@radix-ui/react-switch",
    "tabs": "@radix-ui/react-tabs",
    "toast": "@radix-ui/react-toast",
    "tooltip": "@radix-ui/react-tooltip",
}

CLIENT_HOOKS = ["useState", "useEffect", "useContext", "useQuery", "useMutation"]


def contains_jsx(content: str) -> bool:
    return any(pattern.search(content) for pattern in JSX_PATTERNS)


def _root_package(specifier: str) -> str:
    parts = specifier.split("/")
    if specifier.startswith("@"):
        return "/".join(parts[:2])
    return parts[0]


class TypeScriptAdapter(LanguageAdapter):
    """Shared ES module parsing for TypeScript stacks."""

    ALIAS_PREFIX = "@/"
    ALIAS_TARGET = "src/"

    @property
    def language(self) -> str:
        return "typescript"

    @property
    def config_files(self) -> list[str]:
        return ["tsconfig.json", "package.json"]

    @property
    def dependency_file(self) -> str:
        return "package.json"

    # =========================================================================
    # Parsing: Imports
    # =========================================================================

    def parse_imports(self, content: str, path: str) -> list[ImportRecord]:
        imports: list[ImportRecord] = []

        for match in IMPORT_RE.finditer(content):
            is_type_only = bool(match.group(1))
            named = match.group(2) or (
                match.group(5) if match.group(5) and match.group(5).startswith("{") else None
            )
            namespace = match.group(3) or (
                match.group(5) if match.group(5) and match.group(5).startswith("*") else None
            )
            default_name = match.group(4)

            record = ImportRecord(
                importing_file=path,
                module_specifier=match.group(6),
                source_line=line_of_offset(content, match.start()),
                is_type_only=is_type_only,
            )
            if default_name:
                record.default_symbols.add(default_name)
            if namespace:
                record.default_symbols.add(namespace.split()[-1])
            if named:
                self._add_named(record, named)

            if record.imported_symbols or record.default_symbols:
                imports.append(record)

        for match in REQUIRE_RE.finditer(content):
            binding, specifier = match.group(1), match.group(2)
            record = ImportRecord(
                importing_file=path,
                module_specifier=specifier,
                source_line=line_of_offset(content, match.start()),
            )
            if binding.startswith("{"):
                for part in split_names(binding):
                    # { original: local }
                    record.imported_symbols.add(part.split(":")[0].strip())
            else:
                record.default_symbols.add(binding)
            imports.append(record)

        return imports

    @staticmethod
    def _add_named(record: ImportRecord, raw: str) -> None:
        for part in split_names(raw):
            part = re.sub(r"^type\s+", "", part)
            as_match = re.match(r"(\w+)\s+as\s+(\w+)", part)
            source_name = as_match.group(1) if as_match else part
            if source_name == "default":
                record.default_symbols.add(as_match.group(2) if as_match else part)
            else:
                record.imported_symbols.add(source_name)

    # =========================================================================
    # Parsing: Exports
    # =========================================================================

    def parse_exports(self, content: str, path: str) -> list[ExportRecord]:
        exports: list[ExportRecord] = []
        seen: set[str] = set()

        def add(name: str, kind: ExportKind, offset: int, reexport_from: str | None = None):
            if name in seen:
                return
            seen.add(name)
            exports.append(
                ExportRecord(
                    file=path,
                    symbol_name=name,
                    kind=kind,
                    line=line_of_offset(content, offset),
                    reexport_from=reexport_from,
                )
            )

        for match in EXPORT_DECL_RE.finditer(content):
            keyword = match.group(2)
            is_type = bool(match.group(1)) or keyword in ("interface", "type")
            add(match.group(3), ExportKind.TYPE if is_type else ExportKind.VALUE, match.start())

        for match in EXPORT_DEFAULT_RE.finditer(content):
            add("default", ExportKind.DEFAULT, match.start())

        for match in EXPORT_BRACED_RE.finditer(content):
            type_block = bool(match.group(1))
            source = match.group(3)
            for part in split_names(match.group(2)):
                is_type = type_block or part.startswith("type ")
                part = re.sub(r"^type\s+", "", part)
                as_match = re.match(r"(\w+)\s+as\s+(\w+)", part)
                name = as_match.group(2) if as_match else part
                if name == "default":
                    kind = ExportKind.DEFAULT
                else:
                    kind = ExportKind.TYPE if is_type else ExportKind.VALUE
                add(name, kind, match.start(), reexport_from=source)

        # `export * as ns from` binds one name; bare `export * from` binds none
        for match in EXPORT_STAR_AS_RE.finditer(content):
            add(match.group(1), ExportKind.VALUE, match.start(), reexport_from=match.group(2))

        return exports

    # =========================================================================
    # Parsing: Package Dependencies
    # =========================================================================

    def parse_package_dependencies(self, content: str) -> list[str]:
        deps: set[str] = set()
        for regex in (PACKAGE_IMPORT_RE, SCOPED_IMPORT_RE, PACKAGE_REQUIRE_RE, SCOPED_REQUIRE_RE):
            for match in regex.finditer(content):
                specifier = match.group(1)
                if specifier.startswith("node:"):
                    continue
                root = _root_package(specifier)
                if root not in NODE_BUILTINS:
                    deps.add(root)
        return sorted(deps)

    # =========================================================================
    # Path Resolution
    # =========================================================================

    def is_external(self, specifier: str, available_files: set[str] | None = None) -> bool:
        return not (specifier.startswith(".") or specifier.startswith(self.ALIAS_PREFIX))

    def normalize_generated_path(self, path: str, content: str) -> str:
        if path.endswith(".ts") and not path.endswith(".d.ts") and ".tsx" in self.source_extensions:
            if contains_jsx(content):
                logger.info(f"Renaming {path} to .tsx (contains JSX)")
                return path[:-3] + ".tsx"
        return path

    def module_base_path(self, specifier: str, from_file: str) -> str | None:
        if specifier.startswith(self.ALIAS_PREFIX):
            return self.ALIAS_TARGET + specifier[len(self.ALIAS_PREFIX):]
        if specifier.startswith("."):
            return self.join_relative(from_file, specifier)
        return None

    # =========================================================================
    # Dependency File Handling
    # =========================================================================

    def parse_dependency_file(self, content: str) -> dict[str, str]:
        try:
            pkg = json.loads(content)
        except json.JSONDecodeError:
            return {}
        deps: dict[str, str] = {}
        deps.update(pkg.get("dependencies") or {})
        deps.update(pkg.get("devDependencies") or {})
        return deps

    def add_dependencies(self, manifest: str, deps: dict[str, str], dev: bool = False) -> str:
        try:
            pkg = json.loads(manifest) if manifest.strip() else {}
        except json.JSONDecodeError:
            logger.warning("package.json is not valid JSON, rebuilding dependency section")
            pkg = {}
        key = "devDependencies" if dev else "dependencies"
        merged = dict(pkg.get(key) or {})
        merged.update(deps)
        pkg[key] = dict(sorted(merged.items()))
        return json.dumps(pkg, indent=2) + "\n"

    def fix_dependency_file(self, content: str, file_paths: list[str]) -> str:
        """Drop hallucinated packages and add companions the code needs."""
        try:
            pkg = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse package.json, keeping original content: {e}")
            return content

        dependencies = pkg.setdefault("dependencies", {})
        for dep in list(dependencies):
            if dep in INVALID_NPM_PACKAGES:
                logger.info(f"Removing non-existent package {dep}")
                del dependencies[dep]

        all_deps = {**dependencies, **(pkg.get("devDependencies") or {})}
        for pattern, required in REQUIRED_DEPS_BY_PATTERN.items():
            if pattern in all_deps:
                dependencies.update(required)

        for path in file_paths:
            match = re.search(r"components/ui/([^./]+)", path)
            if not match:
                continue
            radix_pkg = SHADCN_RADIX_DEPS.get(match.group(1))
            if radix_pkg and radix_pkg not in dependencies:
                dependencies[radix_pkg] = "^1.0.0"

        return json.dumps(pkg, indent=2) + "\n"

    # =========================================================================
    # Validation
    # =========================================================================

    def has_catch_all_export(self, content: str) -> bool:
        return EXPORT_DEFAULT_RE.search(content) is not None

    def defines_locally(self, content: str, name: str) -> bool:
        pattern = rf"(?:async\s+function|function|const|let|var|class)\s+{re.escape(name)}\b"
        return re.search(pattern, content) is not None

    def render_named_exports(self, names: list[str]) -> str:
        return f"export {{ {', '.join(names)} }}"

    # =========================================================================
    # Toolchain
    # =========================================================================

    def install_command(self) -> list[str] | None:
        return ["npm", "install", "--legacy-peer-deps"]

    def type_check_command(self) -> list[str] | None:
        return ["npx", "tsc", "--noEmit", "--pretty", "false"]

    def can_type_check(self, available_files: set[str]) -> bool:
        return "tsconfig.json" in available_files

    def lint_commands(self) -> list[list[str]]:
        return [
            ["npx", "eslint", "--fix", "."],
            ["npx", "prettier", "--write", "."],
        ]


# =============================================================================
# Next.js + MongoDB
# =============================================================================

NEXTJS_PROMPTS: dict[str, str] = {
    "scaffold": """\
Stack: Next.js 14 App Router, MongoDB via Mongoose, tRPC v10, Tailwind CSS, shadcn/ui.
- package.json scripts: dev, build, start, lint, type-check
- tsconfig.json must map "@/*" to "./src/*" and enable strict mode
- Include tailwind.config.ts, postcss.config.js and next.config.js""",
    "missing_files": """\
Stack: Next.js 14 App Router with tRPC and Mongoose.
- "@/..." imports resolve under src/
- Models live in src/lib/db/models and must guard with mongoose.models.X || mongoose.model(...)
- Services live in src/server/services and call connectDB() before queries
- tRPC procedures live in src/server/trpc/procedures
- Files using React hooks must start with 'use client'""",
    "validation_fixes": """\
Stack: Next.js 14 App Router with tRPC and Mongoose.
- Barrel files (index.ts) re-export sibling modules by name
- Type-only re-exports use: export type { IModel } from './model'
- Context providers belong in src/app/providers.tsx, never in layout.tsx""",
    "toolchain_fixes": """\
Stack: Next.js 14 + TypeScript strict mode.
- Missing modules (TS2307) are usually missing npm packages: add them to packageJsonFixes
- Add explicit parameter types instead of relying on implicit any""",
    "wiring": """\
Stack: Next.js 14 with tRPC.
- src/server/trpc/root.ts registers every procedure router under a singular key
- Export the AppRouter type from root.ts
- Generate index.ts barrels for src/lib/db/models and src/server/services""",
}

NEXTJS_TSCONFIG = """\
{
  "compilerOptions": {
    "target": "ES2017",
    "lib": ["dom", "dom.iterable", "esnext"],
    "allowJs": true,
    "skipLibCheck": true,
    "strict": true,
    "noEmit": true,
    "esModuleInterop": true,
    "module": "esnext",
    "moduleResolution": "bundler",
    "resolveJsonModule": true,
    "isolatedModules": true,
    "jsx": "preserve",
    "incremental": true,
    "plugins": [{ "name": "next" }],
    "paths": { "@/*": ["./src/*"] }
  },
  "include": ["next-env.d.ts", "**/*.ts", "**/*.tsx", ".next/types/**/*.ts"],
  "exclude": ["node_modules"]
}
"""

NEXTJS_CONFIG = """\
/** @type {import('next').NextConfig} */
const nextConfig = {}

module.exports = nextConfig
"""


class NextjsMongoAdapter(TypeScriptAdapter):
    """Next.js 14+ App Router with MongoDB/Mongoose, tRPC and shadcn/ui."""

    @property
    def id(self) -> str:
        return "nextjs-mongodb"

    @property
    def name(self) -> str:
        return "Next.js + MongoDB"

    @property
    def framework(self) -> str:
        return "nextjs"

    @property
    def description(self) -> str:
        return "Next.js 14+ App Router with MongoDB/Mongoose, tRPC, and shadcn/ui"

    @property
    def source_extensions(self) -> list[str]:
        return [".ts", ".tsx", ".js", ".jsx"]

    @property
    def index_file_names(self) -> list[str]:
        return ["index.ts", "index.tsx", "index.js"]

    @property
    def config_files(self) -> list[str]:
        return ["tsconfig.json", "package.json", "next.config.js", "next.config.mjs"]

    @property
    def file_structure(self) -> FileStructure:
        return FileStructure(
            models="src/lib/db/models",
            services="src/server/services",
            routes="src/server/trpc/procedures",
            pages="src/app",
            components="src/components",
            utils="src/lib",
        )

    def validate_file(self, content: str, path: str) -> list[ValidationError]:
        errors: list[ValidationError] = []
        is_client = "'use client'" in content or '"use client"' in content

        if "layout.tsx" in path and not is_client:
            if "QueryClientProvider" in content or "TRPCReactProvider" in content:
                errors.append(self.lint_error(
                    path, 1,
                    "Context providers must be in a client component. Move to providers.tsx.",
                ))

        if "client.ts" in path or "providers.tsx" in path:
            if re.search(r"httpBatchLink\s*\(\s*\{[^}]*transformer[^}]*\}", content, re.DOTALL):
                errors.append(self.lint_error(
                    path, find_line(content, "transformer"),
                    "transformer should be at createClient level, not inside httpBatchLink",
                ))

        if path.endswith(".tsx") and "/api/" not in path and not is_client:
            for hook in CLIENT_HOOKS:
                if hook in content:
                    errors.append(self.lint_error(
                        path, 1, f"Using {hook} requires 'use client' directive",
                        severity=Severity.WARNING,
                    ))
                    break

        if "models/" in path and "mongoose.model" in content and "mongoose.models." not in content:
            errors.append(self.lint_error(
                path, find_line(content, "mongoose.model"),
                "Model should check mongoose.models first for hot-reload safety",
                severity=Severity.WARNING,
            ))

        if "services/" in path and path.endswith(".ts"):
            if "await " in content and ".find(" in content:
                if "connectDB" not in content and "connectToDatabase" not in content:
                    errors.append(self.lint_error(
                        path, 1, "Service should call connectDB() before database operations",
                    ))

        return errors

    def prompt_section(self, section: str) -> str:
        return NEXTJS_PROMPTS.get(section, "")

    def scaffold_templates(self) -> dict[str, str]:
        return {
            "tsconfig.json": NEXTJS_TSCONFIG,
            "next.config.js": NEXTJS_CONFIG,
        }


# =============================================================================
# Express + PostgreSQL
# =============================================================================

EXPRESS_PROMPTS: dict[str, str] = {
    "scaffold": """\
Stack: Express.js with TypeScript, Sequelize ORM, PostgreSQL and JWT authentication.
- package.json scripts: dev (ts-node-dev), build (tsc), start (node dist/index.js)
- tsconfig.json compiles src/ to dist/ with "@/*" mapped to "src/*\"""",
    "missing_files": """\
Stack: Express.js + Sequelize.
- Models live in src/models and import DataTypes from sequelize
- Routes live in src/routes and export an express.Router()
- Services live in src/services and await every Sequelize call""",
    "validation_fixes": """\
Stack: Express.js + Sequelize.
- src/routes/index.ts mounts every router; src/models/index.ts re-exports models by name""",
    "toolchain_fixes": """\
Stack: Express.js + TypeScript.
- Add @types/* packages for untyped dependencies to devDependencies in packageJsonFixes""",
    "wiring": """\
Stack: Express.js.
- src/routes/index.ts imports each router and mounts it under a singular path
- src/models/index.ts initialises associations and re-exports every model""",
}

EXPRESS_TSCONFIG = """\
{
  "compilerOptions": {
    "target": "ES2020",
    "module": "commonjs",
    "rootDir": "src",
    "outDir": "dist",
    "strict": true,
    "esModuleInterop": true,
    "skipLibCheck": true,
    "baseUrl": ".",
    "paths": { "@/*": ["src/*"] }
  },
  "include": ["src"]
}
"""

HARDCODED_SECRET_RE = re.compile(
    r"""['"](?:password|secret|key)['"]\s*:\s*['"][^'"]{3,}['"]""", re.IGNORECASE
)
UNAWAITED_CREATE_RE = re.compile(r"(?<!await )\b\w+\.create\(")


class ExpressPostgresAdapter(TypeScriptAdapter):
    """Express.js with Sequelize ORM, PostgreSQL and JWT authentication."""

    @property
    def id(self) -> str:
        return "express-postgres"

    @property
    def name(self) -> str:
        return "Express + PostgreSQL"

    @property
    def framework(self) -> str:
        return "express"

    @property
    def description(self) -> str:
        return "Express.js with Sequelize ORM, PostgreSQL, and JWT authentication"

    @property
    def source_extensions(self) -> list[str]:
        return [".ts", ".js"]

    @property
    def index_file_names(self) -> list[str]:
        return ["index.ts", "index.js"]

    @property
    def file_structure(self) -> FileStructure:
        return FileStructure(
            models="src/models",
            services="src/services",
            routes="src/routes",
            pages="src/views",
            components="src/views/components",
            utils="src/utils",
        )

    def validate_file(self, content: str, path: str) -> list[ValidationError]:
        errors: list[ValidationError] = []

        if ("services/" in path or "routes/" in path) and "async " in content:
            if UNAWAITED_CREATE_RE.search(content):
                errors.append(self.lint_error(
                    path, find_line(content, ".create("),
                    "Sequelize .create() should be awaited in async function",
                    severity=Severity.WARNING,
                ))

        if "routes/" in path and not path.endswith("index.ts"):
            if "Router" not in content and "router" not in content:
                errors.append(self.lint_error(
                    path, 1, "Route file should use express.Router()",
                    severity=Severity.WARNING, fixable=False,
                ))

        if "routes/" in path and "router." in content:
            if "try" not in content and "catch" not in content and "asyncHandler" not in content:
                errors.append(self.lint_error(
                    path, 1,
                    "Route handlers should include error handling (try/catch or asyncHandler wrapper)",
                    severity=Severity.WARNING,
                ))

        if "models/" in path and not path.endswith("index.ts"):
            if "sequelize" in content and "DataType" not in content:
                errors.append(self.lint_error(
                    path, 1, "Model file should import DataTypes from sequelize",
                    severity=Severity.WARNING, fixable=False,
                ))

        if HARDCODED_SECRET_RE.search(content):
            errors.append(self.lint_error(
                path, find_line(content, "secret"),
                "Possible hardcoded secret detected; use environment variables",
                fixable=False,
            ))

        return errors

    def prompt_section(self, section: str) -> str:
        return EXPRESS_PROMPTS.get(section, "")

    def scaffold_templates(self) -> dict[str, str]:
        return {"tsconfig.json": EXPRESS_TSCONFIG}
