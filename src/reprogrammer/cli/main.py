"""
Reprogrammer CLI - Main entry point.

Provides commands for translating a source tree, resuming an interrupted
run and checking the generation service.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from reprogrammer.config.loader import (
    ConfigurationError,
    apply_api_key_from_env,
    create_config_from_args,
    generate_default_config,
    load_config_from_yaml,
)
from reprogrammer.config.models import FileOutcome, LLMConfig, ProjectResult, ReprogrammerConfig
from reprogrammer.errors import CheckpointVersionMismatch, GenerationServiceError
from reprogrammer.pipeline import BackgroundWorker, EventKind, PipelineOrchestrator, iter_source_files
from reprogrammer.state.checkpoint import CheckpointStore
from reprogrammer.translator.llm_client import create_llm_client

app = typer.Typer(
    name="reprogrammer",
    help="Translate source trees between programming languages with an LLM",
    no_args_is_help=True,
)

console = Console()

_OUTCOME_STYLE = {
    FileOutcome.TRANSLATED_CLEAN: "green",
    FileOutcome.TRANSLATED_FLAGGED: "yellow",
    FileOutcome.FAILED: "red",
}


# =============================================================================
# Helper Functions
# =============================================================================


def configure_logging(verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(name)s: %(message)s")
    # Silence noisy HTTP libraries even in verbose mode
    for noisy in ("httpcore", "httpx", "openai._base_client", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def validate_path(path: str, must_exist: bool = True) -> Path:
    """Validate and return a Path object."""
    p = Path(path)
    if must_exist and not p.exists():
        raise typer.BadParameter(f"Path does not exist: {path}")
    return p


def display_config(cfg: ReprogrammerConfig, file_count: int) -> None:
    """Display the configuration of a run."""
    info_text = f"""
[bold cyan]Source:[/bold cyan] {cfg.project.source_root} ({file_count} {cfg.language.input_extension} files)
[bold cyan]Output:[/bold cyan] {cfg.project.output_dir}
[bold cyan]Target:[/bold cyan] {cfg.language.target_language} ({cfg.language.output_extension})
[bold cyan]Model:[/bold cyan] {cfg.llm.provider.value} / {cfg.llm.model}
[bold cyan]Meta context:[/bold cyan] {cfg.translation.include_meta_context}  [bold cyan]Generated names:[/bold cyan] {cfg.translation.generate_file_names}  [bold cyan]Merge small files:[/bold cyan] {cfg.translation.merge_small_files}
    """
    console.print(Panel(info_text.strip(), title="Reprogrammer", border_style="bold green"))


def display_result(result: ProjectResult) -> None:
    """Print the outcome summary of a run."""
    table = Table(title="Translation Summary")
    table.add_column("Outcome", style="cyan")
    table.add_column("Files", justify="right")
    table.add_row("[green]Clean[/green]", str(result.clean))
    table.add_row("[yellow]Flagged[/yellow]", str(result.flagged))
    table.add_row("[red]Failed[/red]", str(result.failed))
    console.print(table)

    if result.flagged_paths:
        console.print("\n[yellow]Flagged (written, but check them):[/yellow]")
        for translated in result.files:
            if translated.outcome == FileOutcome.TRANSLATED_FLAGGED:
                console.print(f"  {translated.output_path}: {translated.message or ''}")

    if result.failed_paths:
        console.print("\n[red]Failed:[/red]")
        for path in result.failed_paths:
            console.print(f"  {path}")

    if result.cancelled:
        console.print("\n[yellow]Run cancelled. Use 'reprogrammer resume' to continue.[/yellow]")
    elif not result.rewrite_converged:
        console.print(
            f"\n[yellow]Cross-file rewrite stopped after {result.rewrite_iterations} passes "
            f"without converging.[/yellow]"
        )


def run_worker(worker: BackgroundWorker, total: int) -> ProjectResult | None:
    """Drain worker events into a progress bar until the run finishes."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Starting...", total=max(total, 1))
        while True:
            try:
                event = worker.events.get(timeout=0.2)
            except KeyboardInterrupt:
                console.print("[yellow]Cancelling after the current request...[/yellow]")
                worker.cancel()
                continue

            if event is None:
                if not worker.is_alive():
                    break
                continue

            if event.kind in (EventKind.RUN_STARTED, EventKind.FILE_FINISHED, EventKind.CANCELLED):
                progress.update(task, completed=event.current, total=max(event.total, 1))
            if event.kind == EventKind.FILE_STARTED:
                progress.update(task, description=event.message)
            elif event.kind == EventKind.FILE_FINISHED:
                style = _OUTCOME_STYLE.get(event.outcome, "white")
                progress.console.print(f"[{style}]{event.outcome.value}[/{style}] {event.path}")
            elif event.kind == EventKind.REWRITE_FINISHED:
                progress.update(task, description=event.message)
            elif event.kind == EventKind.ERROR:
                progress.console.print(f"[red]{event.message}[/red]")

    return worker.join()


def _load_base_config(config: Optional[str]) -> ReprogrammerConfig | None:
    if not config:
        return None
    console.print(f"[cyan]Loading configuration from {config}...[/cyan]")
    return load_config_from_yaml(validate_path(config))


# =============================================================================
# Commands
# =============================================================================


@app.command()
def translate(
    source: str = typer.Argument(..., help="Source directory containing code to translate"),
    output: str = typer.Option("./output", "--output", "-o", help="Output directory"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to settings YAML file"),
    target_lang: Optional[str] = typer.Option(None, "--target-lang", "-t", help="Target language"),
    input_ext: Optional[str] = typer.Option(None, "--input-ext", help="Extension of files to translate"),
    output_ext: Optional[str] = typer.Option(None, "--output-ext", help="Extension of translated files"),
    prompt: Optional[str] = typer.Option(None, "--prompt", "-p", help="Translation instruction"),
    package_name: Optional[str] = typer.Option(None, "--package-name", help="Base package/namespace"),
    provider: Optional[str] = typer.Option(None, "--provider", help="openai/openrouter/ollama/claude/custom"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name"),
    meta: Optional[bool] = typer.Option(None, "--meta/--no-meta", help="Feed summaries of translated files into prompts"),
    generate_names: Optional[bool] = typer.Option(None, "--generate-names/--keep-names", help="Ask the model for new type names"),
    merge_small: Optional[bool] = typer.Option(None, "--merge-small/--no-merge-small", help="Translate small files together"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Translate a source tree to another language.

    Examples:
        reprogrammer translate ./src -o ./out -c settings.yaml
        reprogrammer translate ./src -o ./out -t python --input-ext .java --output-ext .py
    """
    configure_logging(verbose)

    try:
        base = _load_base_config(config)
        if base is None and not (target_lang and input_ext and output_ext):
            console.print(
                "[bold red]Error:[/bold red] --target-lang, --input-ext and --output-ext "
                "are required when not using --config"
            )
            raise typer.Exit(1)

        cfg = create_config_from_args(
            source_dir=validate_path(source),
            output_dir=Path(output),
            target_language=target_lang or base.language.target_language,
            input_extension=input_ext or base.language.input_extension,
            output_extension=output_ext or base.language.output_extension,
            prompt=prompt,
            project_name=base.project.name if base else None,
            base=base,
            package_name=package_name,
            provider=provider,
            model=model,
            include_meta_context=meta,
            generate_file_names=generate_names,
            merge_small_files=merge_small,
        )
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(1)

    files = list(iter_source_files(cfg.project.source_root, cfg.language.input_extension))
    if not files:
        console.print(f"[yellow]No {cfg.language.input_extension} files found in {source}[/yellow]")
        raise typer.Exit(0)

    display_config(cfg, len(files))
    if not yes and not typer.confirm("\nProceed with translation?"):
        console.print("[yellow]Translation cancelled.[/yellow]")
        raise typer.Abort()

    try:
        service = create_llm_client(cfg.llm)
        orchestrator = PipelineOrchestrator(cfg, service)
        result = run_worker(BackgroundWorker(orchestrator).start_project(files), len(files))
    except GenerationServiceError as e:
        console.print(f"[bold red]Generation service error:[/bold red] {e}")
        raise typer.Exit(1)

    display_result(result)
    console.print(f"\n[cyan]Output written to {cfg.project.output_dir}[/cyan]")
    if result.failed:
        raise typer.Exit(2)


@app.command()
def resume(
    config: str = typer.Option(..., "--config", "-c", help="Settings YAML used for the original run"),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", help="Directory containing latest.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Resume a translation from the last checkpoint.

    Files already translated are skipped; the rest are translated and the
    cross-file pass runs over the whole tree.
    """
    configure_logging(verbose)

    try:
        cfg = load_config_from_yaml(validate_path(config))
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(1)

    store = CheckpointStore(Path(state_dir) if state_dir else cfg.project.effective_state_dir)
    try:
        state = store.load_latest()
    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    except CheckpointVersionMismatch as e:
        console.print(f"[bold red]Cannot resume:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(
        f"[cyan]Resuming {state.session_id}: {state.files_processed_count}/{state.total_files} "
        f"files done ({state.last_progress_percent}%)[/cyan]"
    )

    try:
        service = create_llm_client(cfg.llm)
        orchestrator = PipelineOrchestrator(cfg, service, store=store)
        result = run_worker(BackgroundWorker(orchestrator).start_resume(state), state.total_files)
    except GenerationServiceError as e:
        console.print(f"[bold red]Generation service error:[/bold red] {e}")
        raise typer.Exit(1)

    display_result(result)
    if result.failed:
        raise typer.Exit(2)


@app.command()
def sessions(
    state_dir: str = typer.Argument("./output/.reprogrammer", help="Directory containing checkpoints"),
):
    """List saved checkpoints."""
    entries = CheckpointStore(Path(state_dir)).list_sessions()
    if not entries:
        console.print(f"[yellow]No checkpoints in {state_dir}[/yellow]")
        return

    table = Table(title="Checkpoints")
    table.add_column("Session", style="cyan")
    table.add_column("Version", justify="right")
    table.add_column("Files done", justify="right")
    table.add_column("Progress", justify="right")
    for entry in entries:
        table.add_row(
            str(entry["session_id"]),
            str(entry["version"]),
            str(entry["files_processed"]),
            f"{entry['progress']}%",
        )
    console.print(table)


@app.command()
def init(
    output: str = typer.Option("./settings.yaml", "--output", "-o", help="Output path for settings file"),
):
    """
    Generate a default settings file.

    Creates a settings.yaml with sensible defaults that you can customize.
    """
    output_path = Path(output)

    if output_path.exists():
        if not typer.confirm(f"{output} already exists. Overwrite?"):
            console.print("[yellow]Cancelled.[/yellow]")
            raise typer.Abort()

    generate_default_config(output_path)
    console.print(f"[green]✓[/green] Generated settings file: {output}")
    console.print("\nEdit this file to customize your translation settings.")


@app.command("check-connection")
def check_connection(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to settings YAML file"),
    provider: Optional[str] = typer.Option(None, "--provider", help="openai/openrouter/ollama/claude/custom"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Check that the generation service answers."""
    configure_logging(verbose)

    try:
        base = _load_base_config(config)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(1)

    llm_data = base.llm.model_dump() if base else {}
    if provider:
        llm_data["provider"] = provider
    if model:
        llm_data["model"] = model
    llm_cfg = apply_api_key_from_env(LLMConfig(**llm_data))

    try:
        ok = create_llm_client(llm_cfg).check_connection()
    except GenerationServiceError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1)

    if not ok:
        console.print(f"[bold red]✗[/bold red] {llm_cfg.provider.value} / {llm_cfg.model} is not reachable")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {llm_cfg.provider.value} / {llm_cfg.model} is reachable")


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
