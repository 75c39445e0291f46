"""
Integration test for the basic codeweave workflow.

Loads the example work orders, runs them through the full pipeline with a
stubbed synthesizer and toolchain, and drives the CLI end to end.
"""

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from codeweave.assembler.orchestrator import AssemblyOrchestrator
from codeweave.cli.main import app, load_work_orders
from codeweave.config.models import AssemblyStatus, StorageBackend
from codeweave.state.persistence import FileRunStore

EXAMPLES = Path(__file__).parent.parent.parent / "examples"

CONNECT = """\
import mongoose from 'mongoose'

export async function connectDB() {
  if (mongoose.connection.readyState === 0) {
    await mongoose.connect(process.env.MONGODB_URI as string)
  }
}
"""
FORMAT = "export function formatPrice(value: number): string {\n  return `$${value.toFixed(2)}`\n}\n"
SCHEMAS = "from pydantic import BaseModel\n\n\nclass PostOut(BaseModel):\n    id: int\n    title: str\n"

runner = CliRunner()


@pytest.fixture
def shop_orders():
    path = EXAMPLES / "nextjs_shop" / "work_orders.yaml"
    assert path.exists(), "Example work orders not found"
    return load_work_orders(path)


@pytest.fixture
def blog_orders():
    return load_work_orders(EXAMPLES / "fastapi_blog" / "work_orders.json")


def test_load_work_orders(shop_orders, blog_orders):
    assert [order.id for order in shop_orders] == ["wo-models", "wo-pages"]
    assert shop_orders[1].files[-1].action.value == "delete"
    assert blog_orders[0].files[0].path == "requirements.txt"


def test_nextjs_shop_assembles(config, synthesizer, toolchain, shop_orders):
    synthesizer.missing = {"src/lib/db/connect.ts": CONNECT, "src/lib/format.ts": FORMAT}
    orchestrator = AssemblyOrchestrator(
        config, synthesizer=synthesizer, toolchain=toolchain, verbose=False
    )

    run = orchestrator.run(shop_orders, project_id="shop", blueprint_id="catalog")

    assert run.status == AssemblyStatus.COMPLETED
    assert run.success, [e.describe() for e in run.validation_errors]
    assert run.dependencies == ["mongoose"]
    assert run.stats.missing_files_generated == 2
    assert "src/lib/db/models/products.ts" not in run.merged_files

    output = Path(run.output_path)
    assert (output / "src" / "lib" / "format.ts").read_text() == FORMAT
    assert (output / "tsconfig.json").exists()

    specs = synthesizer.calls_to("generate_missing_files")[0][0]
    assert {s.expected_path: s.required_exports for s in specs} == {
        "src/lib/db/connect.ts": {"connectDB"},
        "src/lib/format.ts": {"formatPrice"},
    }

    # The run record survives the orchestrator
    stored = FileRunStore(config.project.state_dir).load(run.id)
    assert stored.merged_files == run.merged_files


def test_fastapi_blog_assembles(config, synthesizer, toolchain, blog_orders):
    config.project.stack = "fastapi-postgres"
    synthesizer.missing = {"app/schemas.py": SCHEMAS}
    orchestrator = AssemblyOrchestrator(
        config, synthesizer=synthesizer, toolchain=toolchain, verbose=False
    )

    run = orchestrator.run(blog_orders, project_id="blog")

    assert run.stack_id == "fastapi-postgres"
    assert run.success, [e.describe() for e in run.validation_errors]
    assert run.dependencies == ["fastapi"]
    assert "app/schemas.py" in run.merged_files
    assert toolchain.checks == 1


def test_preview_then_confirm(config, synthesizer, toolchain, shop_orders):
    synthesizer.missing = {"src/lib/db/connect.ts": CONNECT, "src/lib/format.ts": FORMAT}
    orchestrator = AssemblyOrchestrator(
        config, synthesizer=synthesizer, toolchain=toolchain, verbose=False
    )

    preview = orchestrator.preview(shop_orders, project_id="shop")
    assert preview.success
    assert FileRunStore(config.project.state_dir).list_runs() == []

    run = orchestrator.confirm(preview.scratch_handle)
    assert FileRunStore(config.project.state_dir).latest().id == run.id
    assert (Path(run.output_path) / "src" / "app" / "page.tsx").exists()


# =============================================================================
# CLI
# =============================================================================


def test_cli_stacks():
    result = runner.invoke(app, ["stacks"])

    assert result.exit_code == 0
    assert "nextjs-mongodb" in result.stdout
    assert "fastapi-postgres" in result.stdout


def test_cli_init_config(tmp_dir):
    output = tmp_dir / "codeweave.yaml"
    result = runner.invoke(app, ["init-config", "--output", str(output)])

    assert result.exit_code == 0
    assert output.exists()


def test_cli_assemble_and_show(config, synthesizer, toolchain, tmp_dir):
    config.storage.backend = StorageBackend.FILE
    synthesizer.missing = {"src/lib/db/connect.ts": CONNECT, "src/lib/format.ts": FORMAT}
    orders = str(EXAMPLES / "nextjs_shop" / "work_orders.yaml")

    def fake_orchestrator(cfg, verbose):
        return AssemblyOrchestrator(config, synthesizer=synthesizer, toolchain=toolchain, verbose=False)

    with patch("codeweave.cli.main.create_orchestrator", side_effect=fake_orchestrator):
        result = runner.invoke(app, ["assemble", orders, "--project", "shop"])

    assert result.exit_code == 0, result.stdout
    assert "Assembly complete" in result.stdout

    with patch("codeweave.cli.main.load_config", return_value=config):
        result = runner.invoke(app, ["show"])

    assert result.exit_code == 0
    assert "shop" in result.stdout


def test_cli_unknown_stack():
    result = runner.invoke(app, ["assemble", str(EXAMPLES / "nextjs_shop" / "work_orders.yaml"), "--stack", "cobol-db2"])

    assert result.exit_code == 1
    assert "Unknown stack" in result.stdout


def test_cli_confirm_missing_scratch(config):
    with patch("codeweave.cli.main.load_config", return_value=config):
        result = runner.invoke(app, ["confirm", str(Path(config.project.preview_dir) / "shop" / "default" / "run_0")])

    assert result.exit_code == 1
    assert "Error" in result.stdout
