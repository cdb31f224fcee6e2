from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from chatbridge.cli import core
from chatbridge.internal.config import ConfigError
from chatbridge.kernel.validation import validate_configuration

console = Console()


def validate(
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Path to the model file."),
    backend: Optional[str] = typer.Option(None, "--backend", help="cpu or gpu."),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Maximum tokens per answer."),
    temperature: Optional[float] = typer.Option(None, "--temperature", help="Sampling temperature (0-2)."),
    threads: Optional[int] = typer.Option(None, "--threads", help="Number of inference threads."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="JSON configuration file."),
):
    """
    Validate an engine configuration and report every problem found.
    """
    try:
        config = core.build_configuration(config_file, model, backend, max_tokens, temperature, threads)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    errors = validate_configuration(config)
    if not errors:
        console.print("[green]Configuration is valid.[/green]")
        console.print(f"[dim]model_path={config.model_path} backend={config.backend!r} "
                      f"max_tokens={config.max_tokens} temperature={config.temperature} "
                      f"thread_count={config.thread_count}[/dim]")
        return

    table = Table(title="Configuration errors")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Problem")
    table.add_column("Value", style="red")
    for error in errors:
        table.add_row(error.field, error.message, repr(error.value))
    console.print(table)
    raise typer.Exit(1)


if __name__ == "__main__":
    typer.run(validate)
