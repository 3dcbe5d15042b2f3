"""``dimgforge build`` — build dimgs stage by stage.

Loads the dappfile, computes every stage signature, reuses stored
layers and asks the container runtime for the missing ones.  With
``--dry-run`` layers are only recorded and nothing is persisted.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

import typer
from rich.table import Table

from dimgforge.cli.common import (
    build_config,
    console,
    load_dappfile,
    reporting_errors,
)
from dimgforge.core.conveyor import BuildResult, Conveyor
from dimgforge.core.runtime import RecordingRuntime, load_runtime
from dimgforge.core.stages_storage import StagesStorage

DEFAULT_RUNTIME = "dimgforge.core.runtime:RecordingRuntime"


def build_cmd(
    dimg_names: list[str] = typer.Argument(
        None,
        help="Dimgs to build. All dimgs when omitted.",
    ),
    dappfile: Path = typer.Option(
        Path("dappfile.yaml"),
        "--dappfile",
        "-f",
        help="Resolved dappfile (YAML or JSON).",
    ),
    project_dir: Path = typer.Option(
        Path("."),
        "--dir",
        "-d",
        help="Project root holding the own git repository.",
    ),
    project_name: str = typer.Option(
        "",
        "--name",
        "-n",
        help="Project name used in layer names. Defaults to the directory name.",
    ),
    build_dir: Path = typer.Option(
        None,
        "--build-dir",
        help="Build cache directory. Overrides DIMGFORGE_BUILD_DIR.",
    ),
    runtime_path: str = typer.Option(
        DEFAULT_RUNTIME,
        "--runtime",
        help="Container runtime as 'module:ClassName'.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Report hits and misses without building or persisting layers.",
    ),
) -> None:
    """Build dimgs, reusing every stage whose signature is already stored."""
    with reporting_errors():
        config = build_config(build_dir)
        dappfile_model = load_dappfile(dappfile)

        scratch_dir: Path | None = None
        try:
            if dry_run:
                scratch_dir = Path(tempfile.mkdtemp(prefix="dimgforge-dry-run-"))
                storage = StagesStorage(config.stages_db_path).copy_to(
                    scratch_dir / "stages.db"
                )
                runtime = RecordingRuntime()
            else:
                storage = StagesStorage(config.stages_db_path)
                runtime = load_runtime(runtime_path)

            conveyor = Conveyor(
                dappfile_model,
                project_dir,
                runtime,
                project_name=project_name,
                storage=storage,
                config=config,
                dimg_names=dimg_names or [],
            )
            result = conveyor.build()
        finally:
            if scratch_dir is not None:
                shutil.rmtree(scratch_dir, ignore_errors=True)

    _print_result(result, dry_run)


def _print_result(result: BuildResult, dry_run: bool) -> None:
    title = "Stages (dry run)" if dry_run else "Stages"
    table = Table(title=title)
    table.add_column("Dimg", style="cyan")
    table.add_column("Stage")
    table.add_column("Signature", style="dim")
    table.add_column("Status", justify="center")

    for stage in result.stages:
        if stage.cached:
            status = "[green]cached[/green]"
        elif dry_run:
            status = "[yellow]would build[/yellow]"
        else:
            status = "[yellow]built[/yellow]"
        table.add_row(stage.dimg_name or "-", stage.stage, stage.signature[:12], status)

    console.print(table)
    verb = "to build" if dry_run else "built"
    console.print(
        f"[bold]{result.built_count}[/bold] layer(s) {verb}, "
        f"[bold]{result.cached_count}[/bold] reused"
    )
