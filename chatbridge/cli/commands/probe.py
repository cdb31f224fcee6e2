import typer

from chatbridge.cli import core
from chatbridge.internal.constants import LLAMA_SERVER_URL
from chatbridge.internal.logging import get_logger
from chatbridge.kernel.contracts import ChatEngineError
from chatbridge.kernel.engine import ChatEngine

logger = get_logger(__name__)


async def _probe(engine: ChatEngine):
    async with engine:
        return await engine.test_connectivity()


def probe(
    server_url: str = typer.Option(LLAMA_SERVER_URL, "--server-url", help="llama-server base URL."),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level for the log file."),
):
    """
    Check that the inference backend answers, without loading a model.
    """
    core.init_logging(log_level)
    engine = core.build_engine(server_url)

    typer.echo(f"- Probing {server_url}...", nl=False)
    try:
        result = core.run_async(_probe(engine))
    except ChatEngineError as e:
        typer.echo(f" {typer.style('FAILED', fg=typer.colors.RED)}")
        typer.echo(f"  Reason: {e.message}")
        raise typer.Exit(1)

    logger.info("Connectivity probe passed", server_url=server_url, result=result)
    typer.echo(f" {typer.style('PASSED', fg=typer.colors.GREEN)} (result: {result})")


if __name__ == "__main__":
    typer.run(probe)
