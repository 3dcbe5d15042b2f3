"""Helpers shared by CLI commands: dappfile loading, config and errors."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from dimgforge.config import ProdConfig
from dimgforge.core.errors import ConfigurationError, DimgforgeError, InternalInvariantViolation
from dimgforge.models.dimg import Dappfile

# Exit code for implementation bugs, reported apart from user errors (EX_SOFTWARE).
EXIT_INTERNAL_ERROR = 70

console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route all log records through a single Rich handler on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def load_dappfile(path: Path) -> Dappfile:
    """Read a resolved dappfile from JSON or YAML.

    Raises ``ConfigurationError`` if the file is missing, unparseable or
    does not validate.
    """
    if not path.exists():
        raise ConfigurationError(f"dappfile not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot parse {path}: {exc}") from exc

    try:
        return Dappfile.model_validate(data or {})
    except ValidationError as exc:
        raise ConfigurationError(f"invalid dappfile {path}:\n{exc}") from exc


def build_config(build_dir: Path | None = None) -> ProdConfig:
    """Settings from the environment, with CLI overrides applied."""
    config = ProdConfig()
    if build_dir is not None:
        config = config.model_copy(update={"build_dir": build_dir})
    return config


@contextmanager
def reporting_errors() -> Iterator[None]:
    """Turn dimgforge errors into a red message and a non-zero exit."""
    try:
        yield
    except InternalInvariantViolation as exc:
        err_console.print(f"[bold red]Internal error:[/bold red] {exc}")
        err_console.print("[dim]This is a bug in dimgforge, please report it.[/dim]")
        raise typer.Exit(code=EXIT_INTERNAL_ERROR) from exc
    except DimgforgeError as exc:
        err_console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
