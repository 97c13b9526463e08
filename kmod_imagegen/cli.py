"""Thin CLI wrapper for kmod_imagegen.

This module provides the command-line interface using Typer.
All business logic is delegated to kmod_imagegen.builds.service.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from kmod_imagegen import __version__
from kmod_imagegen.config import get_settings, print_settings_json
from kmod_imagegen.errors import ConfigurationError, KmodImagegenError
from kmod_imagegen.types import JobOutcome, MirrorAction, PublishAction, RepairAction

app = typer.Typer(
    name="kmod-imagegen",
    help="Kernel module image builder - build once per kernel, publish per OpenShift release",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"kmod-imagegen version {__version__}")
        raise typer.Exit()


def setup_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _emit_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


def _fail(e: KmodImagegenError, json_output: bool) -> NoReturn:
    """Report an error that stops the command and exit 1."""
    if json_output:
        _emit_json({"success": False, "code": e.code, "error": str(e)})
    else:
        label = "Configuration error" if isinstance(e, ConfigurationError) else "Error"
        console.print(f"[red]{label}: {escape(str(e))}[/red]")
    raise typer.Exit(code=1)


DriverArg = Annotated[str, typer.Argument(help="Driver version, e.g. 2.19.64.0")]
FilterArg = Annotated[
    str | None,
    typer.Argument(
        help="Optional OpenShift version filter: MAJOR.MINOR or MAJOR.MINOR.PATCH"
    ),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]
ForceOption = Annotated[
    bool,
    typer.Option(
        "--force", "-f", help="Rebuild even if the kernel image is already published"
    ),
]


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Kernel module image builder - build once per kernel, publish per OpenShift release."""
    try:
        level = "DEBUG" if verbose else get_settings().log_level
    except ConfigurationError as e:
        _fail(e, json_output=False)
    setup_logging(level)


@app.command()
def config(
    json_output: JsonOption = False,
) -> None:
    """Show effective configuration."""
    try:
        settings = get_settings()
    except ConfigurationError as e:
        _fail(e, json_output)
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    tmp_dir_display = str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Inputs:[/bold]")
    console.print(f"  Build matrix:        {settings.matrix_file}")
    console.print(f"  Catalog:             {settings.catalog_file}")
    console.print(f"  Containerfile:       {settings.containerfile}")
    console.print(f"  Build context:       {settings.build_context}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Log directory:       {settings.log_dir}")
    console.print(f"  Release notes:       {settings.release_notes_dir}")
    console.print(f"  Temp directory:      {tmp_dir_display}")
    console.print()
    console.print("[bold]Publishing:[/bold]")
    console.print(f"  Target mode:         {settings.target_mode.value}")
    console.print(f"  ECR repository:      {settings.ecr_repository or '(not set)'}")
    console.print(f"  AWS region:          {settings.aws_region or '(from aws config)'}")
    console.print(f"  Public image base:   {settings.public_image_base}")
    console.print(f"  DTK mirror:          {settings.dtk_ecr_repository}")
    console.print(f"  Force rebuild:       {settings.force_rebuild}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Container tool:      {settings.container_tool}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Command timeout:     {settings.command_timeout}")
    console.print(f"  HTTP timeout:        {settings.http_timeout}")


@app.command()
def run(
    driver_version: DriverArg,
    version_filter: FilterArg = None,
    force: ForceOption = False,
    json_output: JsonOption = False,
) -> None:
    """Build and publish kernel module images for a driver version.

    Builds once per distinct kernel across the selected OpenShift releases
    and skips kernels already published unless --force is given.
    """
    from kmod_imagegen.builds.service import build_driver

    try:
        result = build_driver(driver_version, version_filter, force=force)
    except KmodImagegenError as e:
        _fail(e, json_output)

    if json_output:
        _emit_json(result.to_dict())
    else:
        console.print()
        console.print(f"[bold]Driver {driver_version} Results:[/bold]")
        console.print(f"  [green]Built: {result.built}[/green]")
        console.print(f"  [blue]Skipped: {result.skipped}[/blue]")
        if result.failed > 0:
            console.print(f"  [red]Failed: {result.failed}[/red]")
        if result.dropped:
            console.print(f"  [yellow]Unresolved: {len(result.dropped)}[/yellow]")

        console.print()
        console.print("[bold]Per-Kernel Results:[/bold]")
        for r in result.results:
            platforms = ", ".join(r.platform_versions)
            if r.outcome is JobOutcome.BUILT:
                console.print(f"  [green]✓ {r.kernel_version}[/green] ({platforms})")
                for tag in r.tags:
                    console.print(f"      {tag}")
            elif r.outcome is JobOutcome.SKIPPED:
                console.print(f"  [blue]- {r.kernel_version}[/blue] ({platforms})")
                console.print(f"      {escape(r.reason or '')}")
            else:
                console.print(f"  [red]✗ {r.kernel_version}[/red] ({platforms})")
                console.print(f"      Error: {escape(r.error or '')}")
        for d in result.dropped:
            console.print(f"  [yellow]? {d.platform_version}[/yellow]")
            console.print(f"      {escape(d.error)}")

        if result.release_notes is not None:
            console.print()
            console.print(f"Release notes: {result.release_notes.value}")
        elif result.release_notes_error:
            console.print()
            console.print(
                f"[red]Release notes failed: {escape(result.release_notes_error)}[/red]"
            )

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def plan(
    driver_version: DriverArg,
    version_filter: FilterArg = None,
    force: ForceOption = False,
    json_output: JsonOption = False,
) -> None:
    """Show which kernel images would be built, without building."""
    from kmod_imagegen.builds.service import plan_driver

    try:
        run_plan = plan_driver(driver_version, version_filter, force=force)
    except KmodImagegenError as e:
        _fail(e, json_output)

    if json_output:
        _emit_json(run_plan.to_dict())
        return

    builds = sum(1 for d in run_plan.decisions if d.action is PublishAction.BUILD)
    console.print(
        f"[bold]Plan for driver {driver_version} "
        f"({run_plan.target.describe()}):[/bold]"
    )
    console.print(f"  Kernels: {len(run_plan.decisions)}, to build: {builds}")
    console.print()
    for d in run_plan.decisions:
        platforms = ", ".join(sorted(d.group.platform_versions))
        marker = (
            "[green]build[/green]"
            if d.action is PublishAction.BUILD
            else "[blue]skip[/blue]"
        )
        console.print(f"  {marker} {d.group.kernel_version} ({platforms})")
        console.print(f"      {escape(d.reason)}")
    for dropped in run_plan.dropped:
        console.print(f"  [yellow]? {dropped.platform_version}[/yellow]")
        console.print(f"      {escape(dropped.error)}")


@app.command("repair-tags")
def repair_tags(
    driver_version: DriverArg,
    version_filter: FilterArg = None,
    json_output: JsonOption = False,
) -> None:
    """Create missing kernel tags from existing OpenShift alias tags."""
    from kmod_imagegen.builds.service import repair_driver_tags

    try:
        results = repair_driver_tags(driver_version, version_filter)
    except KmodImagegenError as e:
        _fail(e, json_output)

    failed = [r for r in results if r.action is RepairAction.FAILED]
    if json_output:
        _emit_json([r.to_dict() for r in results])
    else:
        styles = {
            RepairAction.CREATED: "green",
            RepairAction.PRESENT: "blue",
            RepairAction.MISSING_ALIAS: "yellow",
            RepairAction.FAILED: "red",
        }
        console.print(f"[bold]Tag repair for driver {driver_version}:[/bold]")
        for r in results:
            style = styles[r.action]
            console.print(
                f"  [{style}]{r.action.value:<13}[/{style}] "
                f"{r.platform_version} -> {r.kernel_tag}"
            )
            if r.error:
                console.print(f"      Error: {escape(r.error)}")

    if failed:
        raise typer.Exit(code=1)


@app.command("export-csv")
def export_csv(
    driver_version: DriverArg,
    version_filter: FilterArg = None,
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="CSV file to write"),
    ] = Path("kmod_images.csv"),
) -> None:
    """Export published alias/kernel image pairs as CSV."""
    from kmod_imagegen.builds.service import export_driver_images

    try:
        count = export_driver_images(driver_version, output, version_filter)
    except KmodImagegenError as e:
        _fail(e, json_output=False)

    console.print(f"[green]Wrote {count} image pair(s) to {output}[/green]")


@app.command("sync-dtk")
def sync_dtk(
    version_filter: FilterArg = None,
    json_output: JsonOption = False,
) -> None:
    """Mirror driver-toolkit images of the catalog into private ECR."""
    from kmod_imagegen.builds.service import mirror_build_envs

    try:
        results = mirror_build_envs(version_filter)
    except KmodImagegenError as e:
        _fail(e, json_output)

    failed = [r for r in results if r.action is MirrorAction.FAILED]
    if json_output:
        _emit_json([r.to_dict() for r in results])
    else:
        styles = {
            MirrorAction.MIRRORED: "green",
            MirrorAction.PRESENT: "blue",
            MirrorAction.FAILED: "red",
        }
        console.print("[bold]Driver-toolkit mirror:[/bold]")
        for r in results:
            style = styles[r.action]
            console.print(
                f"  [{style}]{r.action.value:<9}[/{style}] "
                f"{r.platform_version} -> {r.target_ref}"
            )
            if r.error:
                console.print(f"      Error: {escape(r.error)}")

    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
