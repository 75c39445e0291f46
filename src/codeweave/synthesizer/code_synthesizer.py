"""
Code synthesizer.

Builds the prompts for the five synthesis calls the assembler makes
(scaffold, missing files, validation fixes, toolchain fixes, wiring), sends
them through an LLM client and turns the JSON answers into GeneratedFile
records. Stack-specific guidance comes from the language adapter.
"""

import logging
from typing import Any

from codeweave.config.models import (
    GeneratedFile,
    ImportingContext,
    MissingFileSpec,
    ModuleSummary,
    ToolchainFix,
    ValidationError,
)
from codeweave.languages.base.plugin import LanguageAdapter
from codeweave.synthesizer.json_repair import parse_ai_json

logger = logging.getLogger(__name__)


FILES_FORMAT = """\
Return your response as a JSON object with this exact structure:
{
  "%s": [
    { "path": "relative/path/to/file", "content": "complete file content" }
  ]
}"""

SCAFFOLD_SYSTEM = """\
You are an expert at scaffolding software projects. Generate the project configuration files.

{format}

{stack}

Rules:
- Generate ONLY config/setup files, never application source files
- The dependency manifest must include every detected dependency
- Only use packages that actually exist
- Include .env.example, Dockerfile, docker-compose.yml and README.md
- Escape all special characters in JSON strings
- Return ONLY the JSON object"""

MISSING_FILES_SYSTEM = """\
You are an expert at generating framework boilerplate. The assembled project imports \
files that do not exist yet. Generate these missing files.

{format}

{stack}

Rules:
- Generate ONLY the files listed as missing, at exactly the listed paths
- Each file must be complete and functional
- When "Required exports" are listed, the file MUST export ALL of those names
- Every function parameter must have an explicit type annotation
- Escape all special characters in JSON strings
- Return ONLY the JSON object"""

VALIDATION_FIXES_SYSTEM = """\
You are an expert at fixing import and export errors. Given validation errors and the \
affected file contents, fix ONLY the listed errors.

{format}

{stack}

Rules:
- Return complete file contents, not diffs
- Preserve the existing code structure
- When fixing barrel files, use "Sibling files" to know what to re-export
- When fixing export mismatches, use "Importing context" for the expected exports
- When a named export is missing, add a fully implemented definition
- Return ONLY the JSON object"""

TOOLCHAIN_FIXES_SYSTEM = """\
You are an expert developer fixing compiler and type checker errors. Fix ALL the listed errors.

Return your response as a JSON object:
{{
  "fixes": [
    {{ "path": "relative/path/to/file", "content": "the complete fixed file content" }}
  ],
  "packageJsonFixes": {{
    "dependencies": {{ "package-name": "version" }},
    "devDependencies": {{ "package-name": "version" }}
  }}
}}

{stack}

Rules:
- Fix ALL errors in a file and return complete file contents
- Errors about missing modules usually mean a missing package: add it to packageJsonFixes
- Prefer precise types over 'any'
- Return ONLY the JSON object"""

WIRING_SYSTEM = """\
You are an expert at wiring software projects. Generate barrel export files and router \
registration files.

{format}

{stack}

Rules:
- Generate barrel/index files for module directories
- Register routers under SINGULAR keys (board, not boards)
- Only export from singular files (clip.ts, not clips.ts)
- Return ONLY the JSON object"""


class CodeSynthesizer:
    """LLM-backed implementation of the five synthesis calls."""

    def __init__(
        self,
        llm_client: Any,
        tech_stack: list[str] | None = None,
        retry_delay: float = 2.0,
    ):
        self.llm_client = llm_client
        self.tech_stack = tech_stack or []
        self.retry_delay = retry_delay

    # =========================================================================
    # Synthesis Calls
    # =========================================================================

    def generate_scaffold(
        self,
        project_name: str,
        dependencies: list[str],
        existing_paths: list[str],
        adapter: LanguageAdapter,
    ) -> list[GeneratedFile]:
        """
        Generate config/setup files for the project.

        The dependency manifest in the answer is passed through the adapter's
        ``fix_dependency_file`` hook.

        Args:
            project_name: Project name shown to the model
            dependencies: Third-party packages imported by the fragments
            existing_paths: Paths already in the working set
            adapter: Language adapter for the target stack

        Returns:
            Generated files
        """
        system = SCAFFOLD_SYSTEM.format(
            format=FILES_FORMAT % "files", stack=adapter.prompt_section("scaffold")
        )
        existing = "\n".join(existing_paths[:50])
        prompt = f"""Generate scaffold files for this project:

**Project:** {project_name}
**Tech Stack:** {self._stack(adapter)}
**Detected dependencies:** {', '.join(dependencies) or 'none'}
**Existing source files:**
{existing}

Return only the JSON object."""

        result = self._request("generate_scaffold", prompt, system)
        files = self._files_from(result, "files", adapter)

        fixed = []
        for generated in files:
            if generated.path == adapter.dependency_file:
                generated = GeneratedFile(
                    path=generated.path,
                    content=adapter.fix_dependency_file(generated.content, existing_paths),
                )
            fixed.append(generated)
        return fixed

    def generate_missing_files(
        self,
        specs: list[MissingFileSpec],
        existing_paths: list[str],
        adapter: LanguageAdapter,
    ) -> list[GeneratedFile]:
        """
        Generate files that are imported but absent.

        Args:
            specs: Missing files with the names their importers need
            existing_paths: Paths already in the working set
            adapter: Language adapter for the target stack

        Returns:
            Generated files
        """
        system = MISSING_FILES_SYSTEM.format(
            format=FILES_FORMAT % "files", stack=adapter.prompt_section("missing_files")
        )

        missing_list = "\n".join(f"- {spec.expected_path}" for spec in specs)
        required = [
            f"- {spec.expected_path}: {', '.join(sorted(spec.required_exports))}"
            for spec in specs
            if spec.required_exports
        ]
        required_section = (
            "\n\n**Required exports (MUST be exported):**\n" + "\n".join(required)
            if required else ""
        )

        samples = []
        for spec in specs:
            for importer in sorted(spec.imported_by):
                names = ", ".join(sorted(spec.required_exports)) or "default"
                samples.append(
                    f"- {importer} imports {names} from {', '.join(sorted(spec.specifiers))}"
                )
        sample_section = "\n".join(samples[:10])

        prompt = f"""Generate these missing files:

**Tech Stack:** {self._stack(adapter)}

**Missing files ({len(specs)} total):**
{missing_list}{required_section}

**Sample imports showing how they are used:**
{sample_section}

**Existing files:**
{chr(10).join(existing_paths[:40])}

Generate all missing files. Return only the JSON object."""

        result = self._request("generate_missing_files", prompt, system)
        return self._files_from(result, "files", adapter)

    def generate_validation_fixes(
        self,
        errors: list[ValidationError],
        file_contents: dict[str, str],
        siblings: dict[str, list[str]],
        importing_context: list[ImportingContext],
        adapter: LanguageAdapter,
    ) -> list[GeneratedFile]:
        """Ask for complete replacement contents that fix symbol-level errors."""
        system = VALIDATION_FIXES_SYSTEM.format(
            format=FILES_FORMAT % "fixes", stack=adapter.prompt_section("validation_fixes")
        )

        error_list = "\n".join(f"- {e.describe()}" for e in errors[:20])
        contents = "\n\n".join(
            f"--- {path} ---\n{content}" for path, content in list(file_contents.items())[:10]
        )
        sibling_section = ""
        if siblings:
            sibling_section = "\n**Sibling files:**\n" + "\n".join(
                f"- {directory or '.'}/: {', '.join(names)}" for directory, names in siblings.items()
            )
        importing_section = ""
        if importing_context:
            importing_section = "\n**Importing context:**\n" + "\n".join(
                f"- {c.file} expects from {c.target}: {', '.join(c.imports)}"
                for c in importing_context[:10]
            )

        prompt = f"""Fix these validation errors:

**Tech Stack:** {self._stack(adapter)}

**Errors:**
{error_list}

**Affected files:**
{contents}
{sibling_section}{importing_section}

Return only the JSON object."""

        result = self._request("generate_validation_fixes", prompt, system)
        return self._files_from(result, "fixes", adapter)

    def generate_toolchain_fixes(
        self,
        errors: list[ValidationError],
        file_contents: dict[str, str],
        manifest: str | None,
        adapter: LanguageAdapter,
    ) -> ToolchainFix:
        """Ask for file fixes and manifest additions that clear compiler diagnostics."""
        system = TOOLCHAIN_FIXES_SYSTEM.format(stack=adapter.prompt_section("toolchain_fixes"))

        error_list = "\n".join(e.describe() for e in errors[:30])
        contents = "\n\n".join(
            f"--- {path} ---\n{content}" for path, content in list(file_contents.items())[:10]
        )
        manifest_section = (
            f"\n**Current {adapter.dependency_file}:**\n{manifest}" if manifest else ""
        )

        prompt = f"""Fix these compiler errors:

**Tech Stack:** {self._stack(adapter)}

**Errors ({len(errors)} total):**
{error_list}

**Affected files:**
{contents}
{manifest_section}

Fix all errors. Return only the JSON object."""

        result = self._request("generate_toolchain_fixes", prompt, system)
        manifest_fixes = result.get("packageJsonFixes") if isinstance(result, dict) else None
        manifest_fixes = manifest_fixes if isinstance(manifest_fixes, dict) else {}

        return ToolchainFix(
            files=self._files_from(result, "fixes", adapter),
            dependencies=_string_map(manifest_fixes.get("dependencies")),
            dev_dependencies=_string_map(manifest_fixes.get("devDependencies")),
        )

    def generate_wiring(
        self,
        modules: list[ModuleSummary],
        file_tree: list[str],
        adapter: LanguageAdapter,
    ) -> list[GeneratedFile]:
        """Generate barrel and router registration files from module export lists."""
        system = WIRING_SYSTEM.format(
            format=FILES_FORMAT % "files", stack=adapter.prompt_section("wiring")
        )
        module_list = "\n".join(
            f"- {m.dir}/{m.file}: [{', '.join(m.exports)}]" for m in modules[:50]
        )

        prompt = f"""Generate wiring files:

**Tech Stack:** {self._stack(adapter)}

**Modules:**
{module_list or 'None found'}

**File tree:**
{chr(10).join(file_tree[:60])}

Return only the JSON object."""

        result = self._request("generate_wiring", prompt, system)
        return self._files_from(result, "files", adapter)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _stack(self, adapter: LanguageAdapter) -> str:
        return ", ".join(self.tech_stack) if self.tech_stack else adapter.name

    def _request(self, label: str, prompt: str, system: str) -> Any:
        return parse_ai_json(
            lambda: self.llm_client.generate(prompt, system=system, metadata={"operation": label}),
            label,
            retry_delay=self.retry_delay,
        )

    def _files_from(self, result: Any, key: str, adapter: LanguageAdapter) -> list[GeneratedFile]:
        """Extract ``{path, content}`` entries, dropping malformed ones."""
        if isinstance(result, dict):
            entries = result.get(key) or []
        elif isinstance(result, list):
            entries = result
        else:
            entries = []

        files = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            path = entry.get("path")
            content = entry.get("content")
            if not isinstance(path, str) or not path.strip():
                logger.debug("Dropping generated file with an empty path")
                continue
            if not isinstance(content, str):
                logger.warning(f"Dropping generated file {path}: content is not a string")
                continue
            path = adapter.normalize_generated_path(path.strip(), content)
            files.append(GeneratedFile(path=path, content=content))
        return files


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}
