"""Main Typer application — imports and registers all CLI commands.

Entry point: ``dimgforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from dimgforge.cli.commands.build import build_cmd
from dimgforge.cli.commands.stages_cmd import stages_cmd
from dimgforge.cli.common import configure_logging
from dimgforge.config import config

app = typer.Typer(
    name="dimgforge",
    help="Dimgforge: signature-cached, stage-by-stage container image builds.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level. Defaults to DIMGFORGE_LOG_LEVEL.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Shortcut for --log-level DEBUG.",
    ),
) -> None:
    configure_logging("DEBUG" if verbose else (log_level or config.log_level))


# Register subcommands
app.command(name="build", help="Build dimgs, reusing cached stages.")(build_cmd)
app.command(name="stages", help="Show the planned stages of each dimg.")(stages_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
