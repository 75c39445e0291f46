"""
Shared fixtures: an in-memory synthesizer, a scripted toolchain and a config
whose directories live in a temp dir.
"""

import tempfile
from pathlib import Path

import pytest

from codeweave.config.models import (
    AssemblyConfig,
    CodeweaveConfig,
    GeneratedFile,
    ProjectConfig,
    StorageBackend,
    StorageConfig,
    ToolchainFix,
)
from codeweave.languages.python.plugin import FastAPIPostgresAdapter
from codeweave.languages.typescript.plugin import NextjsMongoAdapter
from codeweave.toolchain.runner import ToolchainResult


class StubSynthesizer:
    """Records every call and answers from preset responses."""

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []
        self.scaffold: list[GeneratedFile] = []
        self.wiring: list[GeneratedFile] = []
        # expected path -> content; paths not listed are not generated
        self.missing: dict[str, str] = {}
        # one list per repair attempt, consumed in order
        self.validation_fixes: list[list[GeneratedFile]] = []
        self.toolchain_fixes: list[ToolchainFix] = []
        self.fail_with: Exception | None = None

    def _record(self, name, *args):
        self.calls.append((name, args))
        if self.fail_with is not None:
            raise self.fail_with

    def calls_to(self, name: str) -> list[tuple]:
        return [args for call, args in self.calls if call == name]

    def generate_scaffold(self, project_name, dependencies, existing_paths, adapter):
        self._record("generate_scaffold", project_name, dependencies, existing_paths)
        return list(self.scaffold)

    def generate_missing_files(self, specs, existing_paths, adapter):
        self._record("generate_missing_files", specs, existing_paths)
        return [
            GeneratedFile(path=spec.expected_path, content=self.missing[spec.expected_path])
            for spec in specs
            if spec.expected_path in self.missing
        ]

    def generate_validation_fixes(self, errors, file_contents, siblings, importing_context, adapter):
        self._record("generate_validation_fixes", errors, file_contents, siblings, importing_context)
        return self.validation_fixes.pop(0) if self.validation_fixes else []

    def generate_toolchain_fixes(self, errors, file_contents, manifest, adapter):
        self._record("generate_toolchain_fixes", errors, file_contents, manifest)
        return self.toolchain_fixes.pop(0) if self.toolchain_fixes else ToolchainFix()

    def generate_wiring(self, modules, file_tree, adapter):
        self._record("generate_wiring", modules, file_tree)
        return list(self.wiring)


class FakeToolchain:
    """Returns scripted type check outputs, one per call."""

    def __init__(self, outputs: list[str] | None = None, installed: bool = True):
        self.outputs = list(outputs or [])
        self.installed = installed
        self.installs = 0
        self.checks = 0
        self.lint_runs = 0

    def install_dependencies(self, workdir, adapter):
        self.installs += 1
        return ToolchainResult(command=["install"], returncode=0 if self.installed else 1)

    def type_check(self, workdir, adapter):
        self.checks += 1
        output = self.outputs.pop(0) if self.outputs else ""
        return ToolchainResult(command=["check"], returncode=1 if output else 0, output=output)

    def lint_and_format(self, workdir, adapter):
        self.lint_runs += 1
        return [ToolchainResult(command=["lint"], returncode=0)]


@pytest.fixture
def tmp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def synthesizer():
    return StubSynthesizer()


@pytest.fixture
def toolchain():
    return FakeToolchain()


@pytest.fixture
def nextjs():
    return NextjsMongoAdapter()


@pytest.fixture
def fastapi():
    return FastAPIPostgresAdapter()


@pytest.fixture
def config(tmp_dir):
    """Config with every output directory under a temp dir and AI scaffolding off."""
    return CodeweaveConfig(
        project=ProjectConfig(
            name="shop",
            stack="nextjs-mongodb",
            state_dir=tmp_dir / "state",
            assembled_dir=tmp_dir / "assembled",
            preview_dir=tmp_dir / "preview",
        ),
        assembly=AssemblyConfig(
            generate_scaffold=False,
            generate_wiring=False,
        ),
        storage=StorageConfig(backend=StorageBackend.FILE),
    )
