"""Thin CLI wrapper for bootimage.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import shlex
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from bootimage import __version__
from bootimage.builds.schema import BuildConfig
from bootimage.config import Settings, get_settings, print_settings_json
from bootimage.errors import BootImageError

app = typer.Typer(
    name="bootimg",
    help="Boot image builder - build kernel + initramfs images and boot them",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"bootimage version {__version__}")
        raise typer.Exit()


def setup_logging(level: str) -> None:
    """Route bootimage log records to stderr through rich."""
    pkg_logger = logging.getLogger("bootimage")
    pkg_logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in pkg_logger.handlers):
        pkg_logger.addHandler(
            RichHandler(console=err_console, show_path=False, markup=False)
        )


def _print_json(data: Any) -> None:
    console.print(
        json.dumps(data, indent=2), soft_wrap=True, markup=False, highlight=False
    )


def _error_dict(e: BootImageError) -> dict[str, Any]:
    return {
        "code": e.code,
        "stage": e.stage,
        "message": str(e),
        "path": e.path,
    }


def _report_error(e: BootImageError, json_output: bool = False) -> None:
    if json_output:
        _print_json({"error": _error_dict(e)})
        return
    where = f" during {e.stage}" if e.stage else ""
    code = escape(f"[{e.code}]")
    console.print(f"[red]Build failed{where} {code}:[/red] {escape(str(e))}")
    if e.path:
        console.print(f"  Path: {e.path}", markup=False)


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
    """Boot image builder - build kernel + initramfs images and boot them."""
    setup_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True, markup=False)
    else:
        cache_dir_display = (
            str(settings.cache_dir)
            if settings.cache_dir
            else f"{settings.effective_cache_dir} (default)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Build directory:     {settings.build_dir}")
        console.print(f"  Cache directory:     {cache_dir_display}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Offline mode:        {settings.offline}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Concurrency:[/bold]")
        console.print(f"  Max downloads:       {settings.max_concurrent_downloads}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Download timeout:    {settings.download_timeout}")
        console.print(f"  Compile timeout:     {settings.compile_timeout}")


def _load_config(
    config_path: Path | None,
    profile: str | None,
    overlay: Path | None,
) -> BuildConfig:
    from bootimage.builds.io import load_build_config
    from bootimage.types import BuildProfile

    build_config = (
        load_build_config(config_path) if config_path is not None else BuildConfig()
    )
    updates: dict[str, Any] = {}
    if profile is not None:
        try:
            updates["profile"] = BuildProfile(profile)
        except ValueError:
            console.print(
                f"[red]Invalid profile: {profile} (expected debug or release)[/red]"
            )
            raise typer.Exit(code=1) from None
    if overlay is not None:
        updates["overlay_dir"] = overlay
    return build_config.model_copy(update=updates) if updates else build_config


def _effective_settings(build_dir: Path | None, offline: bool | None) -> Settings:
    settings = get_settings()
    updates: dict[str, Any] = {}
    if build_dir is not None:
        updates["build_dir"] = build_dir
    if offline is not None:
        updates["offline"] = offline
    return settings.model_copy(update=updates) if updates else settings


ConfigArg = Annotated[
    Path | None,
    typer.Argument(help="Build config file (YAML or JSON); defaults built in"),
]
ProfileOpt = Annotated[
    str | None,
    typer.Option("--profile", "-p", help="Init compile profile (debug or release)"),
]
OverlayOpt = Annotated[
    Path | None,
    typer.Option("--overlay", "-o", help="Overlay directory copied over the tree"),
]
BuildDirOpt = Annotated[
    Path | None,
    typer.Option("--build-dir", "-b", help="Build directory"),
]
OfflineOpt = Annotated[
    bool | None,
    typer.Option("--offline/--online", help="Never fetch remote artifacts"),
]


@app.command()
def build(
    config_path: ConfigArg = None,
    profile: ProfileOpt = None,
    overlay: OverlayOpt = None,
    build_dir: BuildDirOpt = None,
    offline: OfflineOpt = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build a boot image (kernel + initramfs + command line)."""
    from bootimage.builds.service import BootImageBuilder

    settings = _effective_settings(build_dir, offline)
    try:
        build_config = _load_config(config_path, profile, overlay)
        manifest = BootImageBuilder(settings=settings).build_image(build_config)
    except BootImageError as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(
            {
                "state": "ready",
                "kernel_image_path": str(manifest.kernel_image_path),
                "initramfs_archive_path": str(manifest.initramfs_archive_path),
                "boot_command_line": manifest.boot_command_line,
            }
        )
    else:
        console.print("[green]Boot image ready[/green]")
        console.print(f"  Kernel:       {manifest.kernel_image_path}", markup=False)
        console.print(f"  Initramfs:    {manifest.initramfs_archive_path}", markup=False)
        console.print(f"  Command line: {manifest.boot_command_line}", markup=False)


@app.command()
def run(
    config_path: ConfigArg = None,
    profile: ProfileOpt = None,
    overlay: OverlayOpt = None,
    build_dir: BuildDirOpt = None,
    offline: OfflineOpt = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Print the emulator command instead of running it"),
    ] = False,
) -> None:
    """Build a boot image and boot it in the emulator."""
    from bootimage.builds.service import BootImageBuilder
    from bootimage.launch import compose_launch_command, launch

    settings = _effective_settings(build_dir, offline)
    try:
        build_config = _load_config(config_path, profile, overlay)
        manifest = BootImageBuilder(settings=settings).build_image(build_config)
        if dry_run:
            cmd = compose_launch_command(manifest, build_config.launch)
            console.print(shlex.join(cmd), soft_wrap=True, markup=False, highlight=False)
            return
        exit_code = launch(manifest, build_config.launch)
    except BootImageError as e:
        _report_error(e)
        raise typer.Exit(code=1) from None

    if exit_code != 0:
        raise typer.Exit(code=exit_code)


@app.command()
def inspect(
    archive: Annotated[Path, typer.Argument(help="Initramfs archive to list")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the entries of an initramfs archive."""
    from bootimage.archive.packer import read_archive

    if not archive.exists():
        console.print(f"[red]File not found: {archive}[/red]")
        raise typer.Exit(code=1)

    try:
        entries = read_archive(archive)
    except BootImageError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = []
        for entry in entries:
            item: dict[str, Any] = {
                "name": entry.name,
                "kind": entry.kind.value,
                "mode": f"{entry.permissions:04o}",
                "size": len(entry.data),
            }
            if entry.link_target is not None:
                item["target"] = entry.link_target
            if entry.device_type is not None:
                item["device"] = {
                    "type": entry.device_type.value,
                    "major": entry.rdevmajor,
                    "minor": entry.rdevminor,
                }
            output.append(item)
        _print_json(output)
        return

    table = Table(title=f"{archive} ({len(entries)} entries)")
    table.add_column("Mode")
    table.add_column("Kind")
    table.add_column("Size", justify="right")
    table.add_column("Name")
    for entry in entries:
        name = entry.name
        if entry.link_target is not None:
            name = f"{name} -> {entry.link_target}"
        elif entry.device_type is not None:
            name = f"{name} ({entry.device_type.value} {entry.rdevmajor},{entry.rdevminor})"
        table.add_row(
            f"{entry.permissions:04o}", entry.kind.value, str(len(entry.data)), name
        )
    console.print(table)


@app.command("init-config")
def init_config(
    path: Annotated[Path, typer.Argument(help="Output path (.yaml or .json)")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing file"),
    ] = False,
) -> None:
    """Write the default build configuration to a file."""
    from bootimage.builds.io import save_build_config

    if path.exists() and not force:
        console.print(f"[red]File exists: {path} (use --force to overwrite)[/red]")
        raise typer.Exit(code=1)

    save_build_config(BuildConfig(), path)
    console.print(f"[green]Wrote default config to {path}[/green]")


cache_app = typer.Typer(help="Manage the artifact cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("list")
def cache_list(
    build_dir: BuildDirOpt = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List cached artifacts."""
    from bootimage.artifacts.cache import list_cache

    settings = _effective_settings(build_dir, None)
    entries = list_cache(settings.effective_cache_dir)

    if json_output:
        _print_json(
            [
                {"name": e.name, "path": str(e.path), "size_bytes": e.size_bytes}
                for e in entries
            ]
        )
        return

    if not entries:
        console.print("[yellow]No cached artifacts[/yellow]")
        return

    console.print(f"[bold]Found {len(entries)} cached artifact(s):[/bold]")
    console.print()
    for e in entries:
        console.print(f"  [green]{e.name}[/green]")
        console.print(f"    Path: {e.path}", markup=False)
        console.print(f"    Size: {e.size_bytes} bytes")


@cache_app.command("prune")
def cache_prune(
    build_dir: BuildDirOpt = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """Remove every cached artifact."""
    from bootimage.artifacts.cache import prune_cache

    settings = _effective_settings(build_dir, None)
    cache_dir = settings.effective_cache_dir

    if not yes and not typer.confirm(f"Remove artifact cache at {cache_dir}?"):
        raise typer.Abort()

    if prune_cache(cache_dir):
        console.print(f"[green]Removed {cache_dir}[/green]")
    else:
        console.print("[yellow]Cache is already empty[/yellow]")


if __name__ == "__main__":
    app()
