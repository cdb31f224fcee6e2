import importlib.metadata

import typer

from chatbridge.internal.logging import get_logger

logger = get_logger(__name__)


def version():
    """
    Show the chatbridge version.
    """
    try:
        # Only works once the package is installed
        package_version = importlib.metadata.version("chatbridge")
    except importlib.metadata.PackageNotFoundError:
        typer.echo("chatbridge is not installed or version metadata not found.")
        typer.echo("Please install the package first (e.g., pip install . or pip install -e .)")
        logger.warning("chatbridge package version not found.")
        raise typer.Exit(1)
    typer.echo(f"chatbridge version: {package_version}")


if __name__ == "__main__":
    typer.run(version)
