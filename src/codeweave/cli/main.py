"""
codeweave CLI - Main entry point.

Provides commands for assembling generated code fragments into a project,
previewing an assembly before committing it, and inspecting past runs.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import orjson
import typer
import yaml
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from codeweave.config.loader import (
    build_config,
    generate_default_config,
    load_config_from_yaml,
    validate_stack,
)
from codeweave.config.models import (
    AssemblyRun,
    CodeweaveConfig,
    PreviewResult,
    ValidationError,
    WorkOrder,
    count_errors,
)
from codeweave.errors import CodeweaveError
from codeweave.languages.registry import create_default_registry

app = typer.Typer(
    name="codeweave",
    help="Assemble AI-generated code fragments into a consistent, compilable project",
    no_args_is_help=True,
)

console = Console()

NOISY_LOGGERS = ("httpcore", "httpx", "openai._base_client", "urllib3")


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(name)s: %(message)s")
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def load_config(config: Optional[str], stack: Optional[str] = None) -> CodeweaveConfig:
    """Load the YAML config (or defaults) and apply command line overrides."""
    cfg = load_config_from_yaml(Path(config)) if config else build_config()
    if stack:
        cfg.project.stack = stack
    validate_stack(cfg, create_default_registry().list_stacks())
    return cfg


def load_work_orders(path: Path) -> list[WorkOrder]:
    """
    Read work orders from a YAML or JSON file.

    Accepts either a list of work orders or a mapping with a ``work_orders`` key.
    """
    if not path.exists():
        raise typer.BadParameter(f"Path does not exist: {path}")

    raw_bytes = path.read_bytes()
    try:
        data: Any = orjson.loads(raw_bytes) if path.suffix == ".json" else yaml.safe_load(raw_bytes)
    except (orjson.JSONDecodeError, yaml.YAMLError) as e:
        raise typer.BadParameter(f"Could not parse {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("work_orders", [])
    if not isinstance(data, list):
        raise typer.BadParameter(f"{path} must contain a list of work orders")

    try:
        return [WorkOrder.model_validate(order) for order in data]
    except PydanticValidationError as e:
        raise typer.BadParameter(f"Invalid work order in {path}:\n{e}") from e


def display_errors(errors: list[ValidationError], limit: int = 20) -> None:
    if not errors:
        return
    table = Table(title=f"Validation Errors ({count_errors(errors)} errors)")
    table.add_column("File", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Kind")
    table.add_column("Message")
    for error in errors[:limit]:
        color = "red" if error.is_error else "yellow"
        table.add_row(error.file, str(error.line), error.kind.value, f"[{color}]{error.message}[/{color}]")
    console.print(table)
    if len(errors) > limit:
        console.print(f"[dim]... and {len(errors) - limit} more[/dim]")


def display_run(run: AssemblyRun) -> None:
    style = "green" if run.success else ("red" if run.error else "yellow")
    info_text = f"""
[bold cyan]Run:[/bold cyan] {run.id}
[bold cyan]Project / Blueprint:[/bold cyan] {run.project_id} / {run.blueprint_id}
[bold cyan]Stack:[/bold cyan] {run.stack_id}
[bold cyan]Status:[/bold cyan] {run.status.value}
[bold cyan]Files:[/bold cyan] {len(run.merged_files)}
[bold cyan]Fix attempts:[/bold cyan] {run.fix_attempts} (toolchain: {run.toolchain_fix_attempts})
[bold cyan]Output:[/bold cyan] {run.output_path or '-'}
    """
    if run.error:
        info_text += f"\n[bold red]Error:[/bold red] {run.error}"
    console.print(Panel(info_text.strip(), title="Assembly Run", border_style=style))
    display_errors(run.validation_errors)


def display_preview(result: PreviewResult) -> None:
    table = Table(title=f"Preview ({result.total_files} files)")
    table.add_column("Path", style="cyan")
    table.add_column("Size", justify="right")
    for summary in result.files:
        table.add_row(summary.path, str(summary.size))
    console.print(table)
    display_errors(result.validation_errors)

    status = "[bold green]clean[/bold green]" if result.success else "[bold yellow]has errors[/bold yellow]"
    console.print(
        Panel(
            f"Status: {status}\n"
            f"Fixes applied: {result.fixes_applied}\n"
            f"Type check errors: {result.toolchain_error_count}\n"
            f"Scratch: {result.scratch_handle or 'memory (dry run)'}",
            title=f"Preview {result.run_id}",
            border_style="green" if result.success else "yellow",
        )
    )
    if result.scratch_handle:
        console.print(f"\nConfirm with: [bold]codeweave confirm {result.scratch_handle}[/bold]")
        console.print(f"Cancel with:  [bold]codeweave cancel {result.scratch_handle}[/bold]")


def create_orchestrator(cfg: CodeweaveConfig, verbose: bool):
    from codeweave.assembler.orchestrator import AssemblyOrchestrator

    return AssemblyOrchestrator(cfg, verbose=verbose)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def assemble(
    work_orders: str = typer.Argument(..., help="YAML/JSON file with work orders"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
    stack: Optional[str] = typer.Option(None, "--stack", "-s", help="Target stack id"),
    project_id: Optional[str] = typer.Option(None, "--project", "-p", help="Project id (defaults to project name)"),
    blueprint_id: str = typer.Option("default", "--blueprint", "-b", help="Blueprint id"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Keep everything in memory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Assemble work orders into a durable project tree.

    Examples:
        codeweave assemble work_orders.yaml -c codeweave.yaml
        codeweave assemble orders.json --stack express-postgres --blueprint api
    """
    setup_logging(verbose)

    try:
        cfg = load_config(config, stack)
        if dry_run:
            cfg.assembly.dry_run = True
        orders = load_work_orders(Path(work_orders))
        console.print(f"[cyan]Assembling {len(orders)} work orders...[/cyan]")

        orchestrator = create_orchestrator(cfg, verbose=True)
        run = orchestrator.run(orders, project_id=project_id, blueprint_id=blueprint_id)
        display_run(run)

        if run.success:
            console.print("\n[bold green]Assembly complete! The tree is consistent.[/bold green]")
        else:
            console.print("\n[bold yellow]Assembly complete with some issues.[/bold yellow]")

    except typer.BadParameter:
        raise
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(1)


@app.command()
def preview(
    work_orders: str = typer.Argument(..., help="YAML/JSON file with work orders"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
    stack: Optional[str] = typer.Option(None, "--stack", "-s", help="Target stack id"),
    project_id: Optional[str] = typer.Option(None, "--project", "-p", help="Project id (defaults to project name)"),
    blueprint_id: str = typer.Option("default", "--blueprint", "-b", help="Blueprint id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Assemble into a scratch directory for review.

    Nothing is recorded until the preview is confirmed.
    """
    setup_logging(verbose)

    try:
        cfg = load_config(config, stack)
        orders = load_work_orders(Path(work_orders))
        orchestrator = create_orchestrator(cfg, verbose=True)
        result = orchestrator.preview(orders, project_id=project_id, blueprint_id=blueprint_id)
        display_preview(result)

    except typer.BadParameter:
        raise
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(1)


@app.command()
def confirm(
    scratch: str = typer.Argument(..., help="Scratch handle printed by 'preview'"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Promote a preview to a durable assembly."""
    setup_logging(verbose)

    try:
        cfg = load_config(config)
        run = create_orchestrator(cfg, verbose=False).confirm(scratch)
        console.print(f"[green]✓[/green] Confirmed run {run.id} into {run.output_path}")
    except CodeweaveError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def cancel(
    scratch: str = typer.Argument(..., help="Scratch handle printed by 'preview'"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
):
    """Discard a preview's scratch directory."""
    try:
        cfg = load_config(config)
        create_orchestrator(cfg, verbose=False).cancel(scratch)
        console.print(f"[green]✓[/green] Cancelled preview {scratch}")
    except CodeweaveError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def stacks():
    """List the available target stacks."""
    registry = create_default_registry()

    table = Table(title="Available Stacks")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Language")
    table.add_column("Description")

    for adapter in registry.adapters():
        marker = " (default)" if adapter.id == registry.default_id else ""
        table.add_row(adapter.id + marker, adapter.name, adapter.language, adapter.description)

    console.print(table)


@app.command()
def show(
    run_id: Optional[str] = typer.Argument(None, help="Run id (defaults to the latest run)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
    logs: bool = typer.Option(False, "--logs", "-l", help="Print the run log"),
):
    """Show a recorded assembly run."""
    try:
        cfg = load_config(config)
        from codeweave.state.persistence import create_run_store

        store = create_run_store(cfg)
        run = store.load(run_id) if run_id else store.latest()
        if run is None:
            console.print("[yellow]No assembly runs recorded yet.[/yellow]")
            raise typer.Exit(1)

        display_run(run)
        if logs:
            console.print("\n[bold]Log:[/bold]")
            for entry in run.logs:
                console.print(f"  {entry.message}")
    except CodeweaveError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command(name="init-config")
def init_config(
    output: str = typer.Option("./codeweave.yaml", "--output", "-o", help="Output path for config file"),
):
    """
    Generate a default configuration file.

    Creates a codeweave.yaml with sensible defaults that you can customize.
    """
    output_path = Path(output)

    if output_path.exists():
        if not typer.confirm(f"{output} already exists. Overwrite?"):
            console.print("[yellow]Cancelled.[/yellow]")
            raise typer.Abort()

    generate_default_config(output_path)
    console.print(f"[green]✓[/green] Generated configuration file: {output}")


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
