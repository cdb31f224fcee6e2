import typer

from chatbridge.cli.commands import (
    chat,
    probe,
    validate,
    version,
)

app = typer.Typer(
    name="chatbridge",
    help="Chat with a local model through the chatbridge engine facade.",
    no_args_is_help=True
)

app.command("chat")(chat.chat)
app.command("probe")(probe.probe)
app.command("validate")(validate.validate)
app.command("version")(version.version)

cli_app = app

if __name__ == "__main__":
    app()
