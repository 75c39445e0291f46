"""
Unit tests for symbol validation and the repair loop.
"""

from unittest.mock import patch

from codeweave.assembler.file_set import FileSet
from codeweave.assembler.validator import (
    ValidationRepairLoop,
    apply_export_fixes,
    validate_and_repair,
    validate_symbols,
)
from codeweave.config.models import GeneratedFile
from codeweave.errors import SynthesisError


class TestValidateSymbols:
    """Test unresolved import and missing export detection."""

    def test_missing_named_export_reported_once(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import { foo } from './b'\n",
            "src/b.ts": "export const bar = 1\n",
        })
        errors = validate_symbols(file_set, nextjs)

        assert len(errors) == 1
        error = errors[0]
        assert error.file == "src/a.ts"
        assert error.line == 1
        assert "foo" in error.message
        assert "./b" in error.message
        assert error.fixable
        assert error.target == "src/b.ts"

    def test_commented_multiline_import_is_clean(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import {\n  foo, // used below\n  bar,\n} from './b'\n",
            "src/b.ts": "export const foo = 1\nexport const bar = 2\n",
        })

        assert validate_symbols(file_set, nextjs) == []

    def test_unresolved_import(self, nextjs):
        file_set = FileSet({"src/a.ts": "export const a = 1\nimport { x } from './nope'\n"})
        errors = validate_symbols(file_set, nextjs)

        assert len(errors) == 1
        assert errors[0].message == "Unresolved import: ./nope"
        assert errors[0].line == 2
        assert not errors[0].fixable

    def test_default_and_namespace_never_missing(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import b from './b'\nimport * as all from './b'\n",
            "src/b.ts": "export const x = 1\n",
        })
        assert validate_symbols(file_set, nextjs) == []

    def test_reexported_name_counts(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import { thing } from './lib'\n",
            "src/lib/index.ts": "export { thing } from './thing'\n",
            "src/lib/thing.ts": "export const thing = 1\n",
        })
        assert validate_symbols(file_set, nextjs) == []

    def test_non_source_target_not_checked(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import { version } from '../package.json'\n",
            "package.json": "{}",
        })
        assert validate_symbols(file_set, nextjs) == []

    def test_toggles(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import { foo } from './b'\nimport { x } from './nope'\n",
            "src/b.ts": "export const bar = 1\n",
        })

        only_imports = validate_symbols(file_set, nextjs, validate_exports=False)
        only_exports = validate_symbols(file_set, nextjs, validate_imports=False)

        assert [e.specifier for e in only_imports] == ["./nope"]
        assert [e.symbol for e in only_exports] == ["foo"]

    def test_python_submodule_import(self, fastapi):
        file_set = FileSet({
            "app/main.py": "from app.routers import users\n",
            "app/routers/__init__.py": "",
            "app/routers/users.py": "router = None\n",
        })
        assert validate_symbols(file_set, fastapi) == []

    def test_python_missing_name(self, fastapi):
        file_set = FileSet({
            "app/main.py": "from app.database import engine\n",
            "app/database.py": "Base = object\n",
        })
        errors = validate_symbols(file_set, fastapi)

        assert [e.symbol for e in errors] == ["engine"]


class TestExportFix:
    """Test the deterministic named export fix."""

    def test_adds_named_export_for_local_definition(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import { helper } from './b'\n",
            "src/b.ts": "function helper() {}\nexport default helper\n",
        })
        errors = validate_symbols(file_set, nextjs)

        assert apply_export_fixes(file_set, nextjs, errors) == 1
        assert file_set.get("src/b.ts").endswith("export { helper }\n")
        assert validate_symbols(file_set, nextjs) == []

    def test_skips_names_not_defined_locally(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import { ghost } from './b'\n",
            "src/b.ts": "export default function main() {}\n",
        })
        errors = validate_symbols(file_set, nextjs)

        assert apply_export_fixes(file_set, nextjs, errors) == 0
        assert file_set.get("src/b.ts") == "export default function main() {}\n"

    def test_skips_files_without_catch_all(self, nextjs):
        file_set = FileSet({
            "src/a.ts": "import { helper } from './b'\n",
            "src/b.ts": "function helper() {}\nexport const other = 1\n",
        })
        errors = validate_symbols(file_set, nextjs)

        assert apply_export_fixes(file_set, nextjs, errors) == 0


class TestRepairLoop:
    """Test the bounded validate -> fix -> revalidate loop."""

    def test_clean_tree_makes_no_calls(self, nextjs, synthesizer):
        file_set = FileSet({"src/a.ts": "export const a = 1\n"})
        outcome = ValidationRepairLoop(synthesizer).run(file_set, nextjs)

        assert outcome.errors == []
        assert outcome.attempts == 0
        assert synthesizer.calls == []

    def test_ai_fix_resolves_error(self, nextjs, synthesizer):
        file_set = FileSet({
            "src/a.ts": "import { foo } from './b'\n",
            "src/b.ts": "export const bar = 1\n",
        })
        synthesizer.validation_fixes = [
            [GeneratedFile(path="src/b.ts", content="export const bar = 1\nexport const foo = 2\n")]
        ]
        passes = []

        outcome = ValidationRepairLoop(
            synthesizer, on_pass=lambda n, count: passes.append((n, count))
        ).run(file_set, nextjs)

        assert outcome.errors == []
        assert outcome.attempts == 1
        assert outcome.ai_fixed == 1
        assert outcome.history == [1, 0]
        assert passes == [(1, 1), (2, 0)]

        errors, file_contents, siblings, importing_context = synthesizer.calls_to(
            "generate_validation_fixes"
        )[0]
        assert set(file_contents) == {"src/a.ts", "src/b.ts"}
        assert siblings == {"src": ["a.ts", "b.ts"]}
        assert importing_context[0].file == "src/a.ts"
        assert importing_context[0].imports == ["foo"]

    def test_attempts_are_bounded(self, nextjs, synthesizer):
        file_set = FileSet({"src/a.ts": "import { x } from './nope'\n"})

        outcome = ValidationRepairLoop(synthesizer, max_attempts=2).run(file_set, nextjs)

        assert outcome.attempts == 2
        assert outcome.error_count == 1
        assert len(synthesizer.calls_to("generate_validation_fixes")) == 2

    def test_zero_attempts(self, nextjs, synthesizer):
        file_set = FileSet({"src/a.ts": "import { x } from './nope'\n"})

        outcome = ValidationRepairLoop(synthesizer, max_attempts=0).run(file_set, nextjs)

        assert outcome.error_count == 1
        assert synthesizer.calls == []

    def test_synthesis_failure_consumes_attempt(self, nextjs, synthesizer):
        file_set = FileSet({"src/a.ts": "import { x } from './nope'\n"})
        synthesizer.fail_with = SynthesisError("bad json")

        outcome = ValidationRepairLoop(synthesizer, max_attempts=3).run(file_set, nextjs)

        assert outcome.attempts == 3
        assert outcome.error_count == 1

    def test_auto_fix_does_not_add_errors(self, nextjs, synthesizer):
        file_set = FileSet({
            "src/a.ts": "import { helper, ghost } from './b'\n",
            "src/b.ts": "function helper() {}\nexport default helper\n",
        })

        outcome = ValidationRepairLoop(synthesizer, max_attempts=0).run(file_set, nextjs)

        assert outcome.auto_fixed == 1
        assert [e.symbol for e in outcome.errors] == ["ghost"]

    def test_auto_fix_that_adds_errors_is_reverted(self, nextjs, synthesizer):
        original = "function helper() {}\nexport default helper\n"
        file_set = FileSet({
            "src/a.ts": "import { helper } from './b'\n",
            "src/b.ts": original,
        })

        def broken_fix(fs, adapter, errors):
            fs.set("src/b.ts", "import { x } from './gone'\nimport { y } from './lost'\n")
            return 1

        with patch("codeweave.assembler.validator.apply_export_fixes", side_effect=broken_fix):
            outcome = ValidationRepairLoop(synthesizer, max_attempts=0).run(file_set, nextjs)

        assert file_set.get("src/b.ts") == original
        assert outcome.auto_fixed == 0
        assert outcome.error_count == 1

    def test_fix_outside_tree_is_skipped(self, nextjs, synthesizer):
        file_set = FileSet({"src/a.ts": "import { x } from './nope'\n"})
        synthesizer.validation_fixes = [[
            GeneratedFile(path="../../etc/nope.ts", content="export const x = 1\n"),
            GeneratedFile(path="src/nope.ts", content="export const x = 1\n"),
        ]]

        outcome = ValidationRepairLoop(synthesizer, max_attempts=1).run(file_set, nextjs)

        assert outcome.errors == []
        assert outcome.ai_fixed == 1
        assert sorted(file_set.paths()) == ["src/a.ts", "src/nope.ts"]

    def test_warnings_do_not_trigger_repair(self, nextjs, synthesizer):
        file_set = FileSet({
            "src/app/page.tsx": "export default function P() { const [a] = useState(0) }\n",
        })

        outcome = ValidationRepairLoop(synthesizer).run(file_set, nextjs)

        assert len(outcome.errors) == 1
        assert outcome.error_count == 0
        assert synthesizer.calls == []


def test_validate_and_repair(nextjs, synthesizer):
    file_set = FileSet({"src/a.ts": "import { x } from './nope'\n"})
    synthesizer.validation_fixes = [[GeneratedFile(path="src/nope.ts", content="export const x = 1\n")]]

    assert validate_and_repair(file_set, nextjs, synthesizer) == []
