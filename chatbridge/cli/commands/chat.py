import asyncio
from pathlib import Path
from typing import Callable, Optional

import typer
from rich.console import Console

from chatbridge.cli import core
from chatbridge.internal.config import ConfigError
from chatbridge.internal.constants import LLAMA_SERVER_URL
from chatbridge.internal.logging import get_logger
from chatbridge.kernel.contracts import (
    ChatEngineError,
    DomainError,
    EngineConfiguration,
    ErrorCode,
    GenerationMetrics,
    StreamingResponse,
)
from chatbridge.kernel.engine import ChatEngine
from chatbridge.kernel.events import EventName

logger = get_logger(__name__)
console = Console()

EXIT_COMMANDS = {"/exit", "exit", "quit"}


class ChatSession:
    """
    Interactive loop over a ChatEngine. Prints streamed answers as deltas
    and waits for `generating=False` before reading the next prompt.
    """

    def __init__(self, engine: ChatEngine, read_line: Callable[[str], str] = input):
        self.engine = engine
        self._read_line = read_line
        self._printed = 0
        self._done: Optional[asyncio.Event] = None

    def _on_response(self, response: StreamingResponse) -> None:
        delta = response.accumulated_text[self._printed:]
        if delta:
            typer.echo(delta, nl=False)
        self._printed = max(self._printed, len(response.accumulated_text))

    def _on_generating(self, generating: bool) -> None:
        if not generating and self._done is not None:
            self._done.set()

    def _on_metrics(self, metrics: GenerationMetrics) -> None:
        console.print(f"\n[dim]{core.format_metrics(metrics)}[/dim]")

    def _on_error(self, error: DomainError) -> None:
        console.print(f"\n[red]{error.code.value}:[/red] {error.message}")

    async def run(self, config: EngineConfiguration) -> int:
        self._done = asyncio.Event()
        subscriptions = [
            self.engine.subscribe(EventName.RESPONSE, self._on_response),
            self.engine.subscribe(EventName.GENERATING, self._on_generating),
            self.engine.subscribe(EventName.METRICS, self._on_metrics),
            self.engine.subscribe(EventName.ERROR, self._on_error),
        ]
        try:
            async with self.engine:
                try:
                    await self.engine.initialize(config)
                except ChatEngineError as e:
                    if e.code is not ErrorCode.INITIALIZATION_FAILED:
                        console.print(f"[red]{e.message}[/red]")
                    return 1

                typer.echo("\nchatbridge chat started. Commands: /clear /info /debug /exit\n")
                await self._loop()
            return 0
        finally:
            for subscription in subscriptions:
                subscription.unsubscribe()

    async def _loop(self) -> None:
        while True:
            try:
                line = await asyncio.to_thread(self._read_line, "You: ")
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue
            if line.lower() in EXIT_COMMANDS:
                typer.echo("Goodbye.")
                break
            if line == "/clear":
                await self.engine.clear_history()
                console.print("[dim]History cleared.[/dim]")
                continue
            if line == "/info":
                try:
                    console.print(await self.engine.get_model_info())
                except ChatEngineError as e:
                    logger.debug("Model info unavailable", code=e.code.value)
                continue
            if line == "/debug":
                console.print(await self.engine.get_debug_history() or "[dim](empty)[/dim]")
                continue

            await self.ask(line)

    async def ask(self, text: str) -> None:
        self._printed = 0
        self._done.clear()
        typer.echo("Assistant: ", nl=False)
        try:
            await self.engine.generate_async(text)
        except ChatEngineError as e:
            # GENERATION_FAILED was already shown by the error subscriber
            if e.code is not ErrorCode.GENERATION_FAILED:
                console.print(f"\n[red]{e.message}[/red]")
            return

        try:
            await self._done.wait()
        except asyncio.CancelledError:
            await self.engine.stop_generation()
            raise
        typer.echo("")


def chat(
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Path to the model file."),
    backend: Optional[str] = typer.Option(None, "--backend", help="cpu or gpu."),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Maximum tokens per answer."),
    temperature: Optional[float] = typer.Option(None, "--temperature", help="Sampling temperature (0-2)."),
    threads: Optional[int] = typer.Option(None, "--threads", help="Number of inference threads."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="JSON configuration file."),
    server_url: str = typer.Option(LLAMA_SERVER_URL, "--server-url", help="llama-server base URL."),
    server_binary: Optional[Path] = typer.Option(None, "--server-binary", help="Spawn this llama-server binary."),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level for the log file."),
):
    """
    Start an interactive chat session.
    """
    core.init_logging(log_level)
    try:
        config = core.build_configuration(config_file, model, backend, max_tokens, temperature, threads)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    engine = core.build_engine(server_url, server_binary)

    exit_code = core.run_async(ChatSession(engine).run(config))
    if exit_code:
        raise typer.Exit(exit_code)


if __name__ == "__main__":
    typer.run(chat)
