"""
Unit tests for the compilation gate and the toolchain runner.
"""

import json
import subprocess
import sys
from unittest.mock import patch

import pytest

from codeweave.assembler.compile_gate import CompilationGate, parse_diagnostics
from codeweave.assembler.file_set import FileSet
from codeweave.config.models import ErrorKind, GeneratedFile, ToolchainConfig, ToolchainFix
from codeweave.errors import ToolchainError
from codeweave.toolchain.runner import BuildToolchain, ToolchainResult

TSC_OUTPUT = (
    "src/app/page.tsx(12,5): error TS2307: Cannot find module 'zod' or its corresponding type declarations.\n"
    "src/lib/db.ts(3,1): error TS7006: Parameter 'x' implicitly has an 'any' type.\n"
    "Found 2 errors.\n"
)


class TestParseDiagnostics:
    """Test type checker output parsing."""

    def test_tsc(self):
        errors = parse_diagnostics(TSC_OUTPUT)

        assert [(e.file, e.line, e.code) for e in errors] == [
            ("src/app/page.tsx", 12, "TS2307"),
            ("src/lib/db.ts", 3, "TS7006"),
        ]
        assert all(e.kind == ErrorKind.TOOLCHAIN and e.fixable for e in errors)

    def test_mypy_with_absolute_paths(self, tmp_dir):
        output = (
            f'{tmp_dir.as_posix()}/app/main.py:3:1: error: Module "app.db" has no attribute "engine"  [attr-defined]\n'
            "app/models.py:10: error: Name 'Base' is not defined\n"
            "app/models.py:11: note: See docs\n"
        )
        errors = parse_diagnostics(output, tmp_dir)

        assert [(e.file, e.line, e.code) for e in errors] == [
            ("app/main.py", 3, "attr-defined"),
            ("app/models.py", 10, None),
        ]

    def test_no_errors(self):
        assert parse_diagnostics("Found 0 errors.\n") == []


class TestCompilationGate:
    """Test the bounded type check -> fix cycle."""

    @pytest.fixture
    def tree(self):
        return FileSet({
            "tsconfig.json": "{}",
            "package.json": json.dumps({"dependencies": {}}),
            "src/app/page.tsx": "import { z } from 'zod'\n",
            "src/lib/db.ts": "export function f(x) {}\n",
        })

    def test_skipped_without_tsconfig(self, nextjs, synthesizer, toolchain, tmp_dir):
        file_set = FileSet({"src/a.ts": "export const a = 1\n"})

        outcome = CompilationGate(toolchain, synthesizer).run(file_set, nextjs, tmp_dir)

        assert outcome.skipped
        assert toolchain.checks == 0
        assert not (tmp_dir / "src" / "a.ts").exists()

    def test_clean_check(self, nextjs, synthesizer, toolchain, tree, tmp_dir):
        outcome = CompilationGate(toolchain, synthesizer).run(tree, nextjs, tmp_dir)

        assert outcome.errors == []
        assert outcome.attempts == 0
        assert toolchain.installs == 1
        assert (tmp_dir / "src" / "lib" / "db.ts").exists()

    def test_fix_patches_files_and_manifest(self, nextjs, synthesizer, toolchain, tree, tmp_dir):
        toolchain.outputs = [TSC_OUTPUT, ""]
        synthesizer.toolchain_fixes = [ToolchainFix(
            files=[GeneratedFile(path="src/lib/db.ts", content="export function f(x: number) {}\n")],
            dependencies={"zod": "^3.22.0"},
            dev_dependencies={"@types/node": "^20.0.0"},
        )]

        outcome = CompilationGate(toolchain, synthesizer).run(tree, nextjs, tmp_dir)

        assert outcome.errors == []
        assert outcome.attempts == 1
        assert outcome.fixes_applied == 1
        assert toolchain.installs == 2

        manifest = json.loads(tree.get("package.json"))
        assert manifest["dependencies"] == {"zod": "^3.22.0"}
        assert manifest["devDependencies"] == {"@types/node": "^20.0.0"}
        assert json.loads((tmp_dir / "package.json").read_text()) == manifest
        assert (tmp_dir / "src" / "lib" / "db.ts").read_text() == "export function f(x: number) {}\n"

        errors, file_contents, sent_manifest = synthesizer.calls_to("generate_toolchain_fixes")[0]
        assert len(errors) == 2
        assert set(file_contents) == {"src/app/page.tsx", "src/lib/db.ts"}
        assert sent_manifest == json.dumps({"dependencies": {}})

    def test_attempts_are_bounded(self, nextjs, synthesizer, toolchain, tree, tmp_dir):
        toolchain.outputs = [TSC_OUTPUT] * 5

        outcome = CompilationGate(toolchain, synthesizer, max_attempts=2).run(tree, nextjs, tmp_dir)

        assert outcome.attempts == 2
        assert len(outcome.errors) == 2
        assert toolchain.checks == 3


class TestBuildToolchain:
    """Test the subprocess runner."""

    def test_missing_executable(self, nextjs, tmp_dir):
        runner = BuildToolchain(ToolchainConfig())

        with patch("codeweave.toolchain.runner.subprocess.run", side_effect=FileNotFoundError("npx")):
            result = runner.type_check(tmp_dir, nextjs)

        assert not result.ran
        assert "not found" in result.error

    def test_timeout(self, nextjs, tmp_dir):
        runner = BuildToolchain()
        timeout = subprocess.TimeoutExpired(cmd="npx", timeout=1)

        with patch("codeweave.toolchain.runner.subprocess.run", side_effect=timeout):
            with pytest.raises(ToolchainError):
                runner.run_command(["npx", "tsc"], tmp_dir, timeout=1)

    def test_missing_workdir(self, tmp_dir):
        with pytest.raises(ToolchainError):
            BuildToolchain().run_command(["ls"], tmp_dir / "nope", timeout=5)

    def test_runs_command(self, tmp_dir):
        result = BuildToolchain().run_command(
            [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(2)"],
            tmp_dir,
            timeout=30,
        )

        assert result.ran
        assert not result.ok
        assert result.returncode == 2
        assert "out" in result.output and "err" in result.output

    def test_install_without_command(self, tmp_dir):
        class NoInstall:
            def install_command(self):
                return None

        assert BuildToolchain().install_dependencies(tmp_dir, NoInstall()).ok

    def test_result_flags(self):
        assert ToolchainResult(command=["x"], returncode=0).ok
        assert not ToolchainResult(command=["x"], error="missing").ran
