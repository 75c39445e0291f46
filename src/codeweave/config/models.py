"""
Core configuration and data models for codeweave.

Defines the configuration structures and every record that flows between
assembly phases, all using Pydantic for validation.
"""

import time
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from codeweave.errors import InvalidTransitionError


# ============================================================================
# Enumerations
# ============================================================================


class AssemblyStatus(str, Enum):
    """Checkpoint states of an assembly run, in pipeline order."""

    PENDING = "pending"
    SCAFFOLDING = "scaffolding"
    MERGING = "merging"
    GENERATING = "generating"
    WIRING = "wiring"
    VALIDATING = "validating"
    TYPESCRIPT_VALIDATION = "typescript-validation"
    COMPLETED = "completed"
    FAILED = "failed"


STATUS_ORDER: list[AssemblyStatus] = [
    AssemblyStatus.PENDING,
    AssemblyStatus.SCAFFOLDING,
    AssemblyStatus.MERGING,
    AssemblyStatus.GENERATING,
    AssemblyStatus.WIRING,
    AssemblyStatus.VALIDATING,
    AssemblyStatus.TYPESCRIPT_VALIDATION,
    AssemblyStatus.COMPLETED,
]

TERMINAL_STATUSES = {AssemblyStatus.COMPLETED, AssemblyStatus.FAILED}


class FileAction(str, Enum):
    """What a fragment does to its path."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ExportKind(str, Enum):
    VALUE = "value"
    TYPE = "type"
    DEFAULT = "default"


class ErrorKind(str, Enum):
    """Disjoint error families. Each family has its own repair loop."""

    SYMBOL = "symbol"  # Unresolved import / missing named export
    TOOLCHAIN = "toolchain"  # Compiler or type checker diagnostic
    INPUT = "input"  # Malformed fragment, never retried


class PhaseStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class RunMode(str, Enum):
    DURABLE = "durable"
    PREVIEW = "preview"


class EventType(str, Enum):
    """Progress events emitted by the orchestrator."""

    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    FILE_PROCESSED = "file_processed"
    VALIDATION_PASS = "validation_pass"
    DEPENDENCY_EXTRACTED = "dependency_extracted"
    MISSING_FILE_GENERATED = "missing_file_generated"
    ERROR = "error"


# ============================================================================
# LLM Configuration
# ============================================================================


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    OLLAMA = "ollama"
    OPENROUTER = "openrouter"
    OPENAI = "openai"


class LLMConfig(BaseModel):
    """Configuration for the LLM client."""

    provider: LLMProvider = Field(default=LLMProvider.OPENROUTER, description="LLM provider")
    host: str = Field(default="http://localhost:11434", description="Ollama server URL (for Ollama)")
    api_key: str | None = Field(default=None, description="API key (for OpenRouter/OpenAI)")
    model: str = Field(default="anthropic/claude-sonnet-4", description="Model used for synthesis")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=32768, description="Maximum tokens per response")
    timeout: int = Field(default=300, description="Request timeout in seconds")
    retry_delay: float = Field(
        default=2.0, description="Seconds to wait before retrying an unparseable response"
    )
    conversation_log_dir: Path | None = Field(
        default=None, description="Directory to save LLM conversations (disabled when unset)"
    )


# ============================================================================
# Assembly Configuration
# ============================================================================


class AssemblyConfig(BaseModel):
    """Bounds and switches for the assembly pipeline."""

    max_validation_passes: int = Field(
        default=3, ge=0, description="Maximum gap-closure passes"
    )
    max_fix_attempts: int = Field(
        default=3, ge=0, description="AI repair attempts for a durable run"
    )
    preview_fix_attempts: int = Field(
        default=2, ge=0, description="AI repair attempts for a preview run"
    )
    toolchain_fix_attempts: int = Field(
        default=2, ge=0, description="Repair attempts inside the compilation gate"
    )
    max_missing_per_pass: int = Field(
        default=20, ge=1, description="Missing files sent to the synthesizer per pass"
    )
    synthesis_batch_size: int = Field(
        default=5, ge=1, description="Missing files per concurrent synthesis request"
    )
    max_workers: int = Field(default=4, ge=1, description="Concurrent synthesis requests")
    validate_imports: bool = Field(default=True, description="Report unresolved imports")
    validate_exports: bool = Field(default=True, description="Report missing named exports")
    extract_dependencies: bool = Field(default=True, description="Collect package dependencies")
    generate_missing_files: bool = Field(default=True, description="Run gap closure")
    generate_scaffold: bool = Field(default=True, description="Ask the synthesizer for config files")
    generate_wiring: bool = Field(default=True, description="Generate barrel/router files")
    run_toolchain: bool = Field(default=True, description="Run the compilation gate")
    run_lint: bool = Field(default=False, description="Run lint/format after validation")
    dry_run: bool = Field(default=False, description="Keep everything in memory")


class ToolchainConfig(BaseModel):
    """Timeouts for build toolchain subprocesses."""

    install_timeout: int = Field(default=180, description="Dependency install timeout (seconds)")
    type_check_timeout: int = Field(default=120, description="Type check timeout (seconds)")
    lint_timeout: int = Field(default=60, description="Lint/format timeout (seconds)")


class StorageBackend(str, Enum):
    FILE = "file"
    MEMORY = "memory"


class StorageConfig(BaseModel):
    """Where assembly run records are persisted."""

    backend: StorageBackend = Field(default=StorageBackend.FILE, description="Run store backend")


# ============================================================================
# Project Configuration
# ============================================================================


class ProjectConfig(BaseModel):
    """Overall project configuration."""

    name: str = Field(default="codeweave_project", description="Project name")
    stack: str | None = Field(default=None, description="Language adapter id (None = registry default)")
    tech_stack: list[str] = Field(
        default_factory=list, description="Human readable stack description for prompts"
    )
    state_dir: Path = Field(default=Path(".codeweave"), description="Run records directory")
    assembled_dir: Path = Field(default=Path("./assembled"), description="Durable output root")
    preview_dir: Path = Field(
        default=Path("./.assembled-preview"), description="Scratch root for preview runs"
    )


# ============================================================================
# Main Configuration
# ============================================================================


class CodeweaveConfig(BaseModel):
    """Root configuration model for codeweave."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    assembly: AssemblyConfig = Field(default_factory=AssemblyConfig)
    toolchain: ToolchainConfig = Field(default_factory=ToolchainConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


# ============================================================================
# Fragment Models
# ============================================================================


class FileFragment(BaseModel):
    """A single path + action + content unit produced upstream."""

    path: str
    action: FileAction = FileAction.CREATE
    content: str | None = None
    description: str | None = None


class WorkOrder(BaseModel):
    """A batch of fragments. Work orders apply in list order."""

    id: str
    title: str = ""
    description: str = ""
    files: list[FileFragment] = Field(default_factory=list)


def flatten_work_orders(work_orders: list[WorkOrder]) -> list[FileFragment]:
    """Flatten work orders into one ordered fragment list."""
    return [fragment for order in work_orders for fragment in order.files]


# ============================================================================
# Symbol Models
# ============================================================================


class ImportRecord(BaseModel):
    """One import statement found in a file.

    ``imported_symbols`` holds the names the target module must export.
    Names bound by a default or namespace import go to ``default_symbols``
    and never count against the target's export list.
    """

    importing_file: str
    module_specifier: str
    source_line: int = 1
    imported_symbols: set[str] = Field(default_factory=set)
    default_symbols: set[str] = Field(default_factory=set)
    is_type_only: bool = False

    @property
    def is_default(self) -> bool:
        return bool(self.default_symbols)


class ExportRecord(BaseModel):
    """A name exported by a file. Identity is by name only."""

    file: str
    symbol_name: str
    kind: ExportKind = ExportKind.VALUE
    line: int = 1
    reexport_from: str | None = None


class MissingFileSpec(BaseModel):
    """A file that is imported but absent from the working set."""

    expected_path: str
    required_exports: set[str] = Field(default_factory=set)
    imported_by: set[str] = Field(default_factory=set)
    specifiers: set[str] = Field(default_factory=set)


class ValidationError(BaseModel):
    """A defect found in the working set."""

    file: str
    line: int = 1
    message: str
    severity: Severity = Severity.ERROR
    fixable: bool = False
    kind: ErrorKind = ErrorKind.SYMBOL
    code: str | None = None
    symbol: str | None = None
    specifier: str | None = None
    target: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def key(self) -> tuple[str, int, str]:
        return (self.file, self.line, self.message)

    def describe(self) -> str:
        """One-line rendering used in prompts and logs."""
        if self.code:
            return f"{self.file}:{self.line} {self.code}: {self.message}"
        return f"{self.file}:{self.line} - {self.message}"


def count_errors(errors: list[ValidationError]) -> int:
    """Number of error-severity entries (warnings excluded)."""
    return sum(1 for e in errors if e.is_error)


# ============================================================================
# Synthesis Models
# ============================================================================


class GeneratedFile(BaseModel):
    """A ``{path, content}`` pair returned by the code synthesizer."""

    path: str
    content: str


class ToolchainFix(BaseModel):
    """Synthesizer answer to compiler diagnostics."""

    files: list[GeneratedFile] = Field(default_factory=list)
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict)

    @property
    def patches_manifest(self) -> bool:
        return bool(self.dependencies or self.dev_dependencies)


class ModuleSummary(BaseModel):
    """Exports of one module, used to generate barrel and router files."""

    dir: str
    file: str
    exports: list[str] = Field(default_factory=list)


class ImportingContext(BaseModel):
    """Names ``file`` expects ``target`` to export."""

    file: str
    target: str
    imports: list[str] = Field(default_factory=list)


# ============================================================================
# Run Models
# ============================================================================


class PhaseResult(BaseModel):
    phase: str
    status: PhaseStatus = PhaseStatus.SUCCESS
    files_processed: int = 0
    errors: list[ValidationError] = Field(default_factory=list)


class AssemblyEvent(BaseModel):
    """Progress notification emitted while a run executes."""

    type: EventType
    phase: str | None = None
    status: str | None = None
    path: str | None = None
    pass_number: int | None = None
    count: int | None = None
    message: str | None = None


class AssemblyStats(BaseModel):
    total_files: int = 0
    files_created: int = 0
    files_modified: int = 0
    files_deleted: int = 0
    missing_files_generated: int = 0
    duplicates_removed: int = 0
    validation_passes: int = 0
    auto_fixes: int = 0
    ai_fixes: int = 0
    toolchain_fixes: int = 0
    elapsed_seconds: float = 0.0


class LogEntry(BaseModel):
    timestamp: float = Field(default_factory=time.time)
    message: str


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"run_{int(time.time())}_{uuid4().hex[:8]}"


class AssemblyRun(BaseModel):
    """
    Top-level record of one assembly run.

    Created at the start of a run and mutated by every phase. The status only
    moves forward through STATUS_ORDER (phases may be skipped); ``failed`` is
    reachable from any non-terminal state and terminal states are final.
    """

    id: str = Field(default_factory=generate_run_id)
    project_id: str = "default"
    blueprint_id: str = "default"
    stack_id: str
    mode: RunMode = RunMode.DURABLE
    status: AssemblyStatus = AssemblyStatus.PENDING
    output_path: str | None = None
    merged_files: list[str] = Field(default_factory=list)
    scaffold_files: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)
    validation_errors: list[ValidationError] = Field(default_factory=list)
    fix_attempts: int = 0
    toolchain_fix_attempts: int = 0
    toolchain_error_count: int = 0
    phases: list[PhaseResult] = Field(default_factory=list)
    stats: AssemblyStats = Field(default_factory=AssemblyStats)
    error: str | None = None
    started_at: float = Field(default_factory=time.time)
    completed_at: float | None = None

    @computed_field
    @property
    def success(self) -> bool:
        return self.status == AssemblyStatus.COMPLETED and count_errors(self.validation_errors) == 0

    def transition(self, status: AssemblyStatus) -> None:
        """Move to ``status``, refusing backwards moves."""
        if self.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Run {self.id} is already {self.status.value}; cannot move to {status.value}"
            )
        if status == AssemblyStatus.FAILED:
            self.status = status
            self.completed_at = time.time()
            return
        if STATUS_ORDER.index(status) <= STATUS_ORDER.index(self.status):
            raise InvalidTransitionError(
                f"Cannot move run {self.id} from {self.status.value} back to {status.value}"
            )
        self.status = status
        if status == AssemblyStatus.COMPLETED:
            self.completed_at = time.time()

    def force_failed(self) -> None:
        """Mark a run failed whose completed record could not be stored."""
        self.status = AssemblyStatus.FAILED
        self.completed_at = time.time()

    def log(self, message: str) -> None:
        self.logs.append(LogEntry(message=message))

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "success": self.success,
            "files": len(self.merged_files),
            "errors": count_errors(self.validation_errors),
            "warnings": len(self.validation_errors) - count_errors(self.validation_errors),
            "fix_attempts": self.fix_attempts,
            "toolchain_fix_attempts": self.toolchain_fix_attempts,
        }


class FileSummary(BaseModel):
    path: str
    action: str
    size: int


class PreviewResult(BaseModel):
    """What a preview run hands back before the caller confirms or cancels."""

    success: bool
    run_id: str
    files: list[FileSummary] = Field(default_factory=list)
    total_files: int = 0
    validation_errors: list[ValidationError] = Field(default_factory=list)
    fixes_applied: int = 0
    toolchain_error_count: int = 0
    logs: list[str] = Field(default_factory=list)
    scratch_handle: str | None = None
