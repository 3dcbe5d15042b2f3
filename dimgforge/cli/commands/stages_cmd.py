"""``dimgforge stages`` — show the planned stage list of each dimg."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from dimgforge.cli.common import (
    build_config,
    console,
    load_dappfile,
    reporting_errors,
)
from dimgforge.core.conveyor import Conveyor
from dimgforge.core.initialization_phase import DimgPlan
from dimgforge.core.runtime import RecordingRuntime
from dimgforge.core.stages_storage import StagesStorage
from dimgforge.core.tmp_dir import RunTmpDir


def stages_cmd(
    dimg_names: list[str] = typer.Argument(
        None,
        help="Dimgs to show. All dimgs when omitted.",
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
    build_dir: Path = typer.Option(
        None,
        "--build-dir",
        help="Build cache directory. Overrides DIMGFORGE_BUILD_DIR.",
    ),
) -> None:
    """Print the stages each dimg would be built with, in build order."""
    with reporting_errors():
        config = build_config(build_dir)
        conveyor = Conveyor(
            load_dappfile(dappfile),
            project_dir,
            RecordingRuntime(),
            storage=StagesStorage(config.stages_db_path),
            config=config,
            dimg_names=dimg_names or [],
        )
        with RunTmpDir(config.tmp_dir) as tmp_dir:
            plans = conveyor.plan(tmp_dir)

    for plan in plans:
        _print_plan(plan)


def _print_plan(plan: DimgPlan) -> None:
    kind = "artifact" if plan.is_artifact else "dimg"
    table = Table(title=f"{kind} [cyan]{plan.name or '-'}[/cyan]")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stage")
    for index, name in enumerate(plan.stage_names, start=1):
        table.add_row(str(index), name.value)
    console.print(table)

    for ga in plan.git_artifacts:
        console.print(f"  git [bold]{ga}[/bold] -> {ga.to} @ {ga.latest_commit()[:12]}")
