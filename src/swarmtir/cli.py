"""Maintenance CLI for swarmtir workspaces and settings.

The runner itself is a library driven from test code; this CLI only
cleans up after crashed runs and shows resolved configuration.
"""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from swarmtir import __version__
from swarmtir.config.settings import TirSettings


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="swarmtir")
@click.option("-v", "--verbose", is_flag=True, help="Detailed output with debug info.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
) -> None:
    """swarmtir — swarm Test Integration Runner utilities."""
    # Unset flags must not shadow env vars or the TOML file.
    overrides = {k: True for k, v in (("verbose", verbose), ("log_json", log_json)) if v}
    settings = TirSettings.load(config_path=config_path, **overrides)

    from swarmtir.config.logging import configure_logging

    configure_logging(verbose=settings.verbose, log_json=settings.log_json)
    ctx.obj = settings
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--older-than",
    type=float,
    default=3600.0,
    show_default=True,
    help="Only remove workspaces untouched for this many seconds.",
)
@click.option("--dry-run", is_flag=True, help="List stale workspaces without removing them.")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.pass_obj
def sweep(settings: TirSettings, older_than: float, dry_run: bool, json_output: bool) -> None:
    """Remove workspaces left behind by runs that never tore down."""
    from swarmtir.infrastructure.workspace import sweep_stale_roots

    removed, warnings = sweep_stale_roots(
        settings.workspace.prefix,
        settings.workspace.base_dir,
        older_than=older_than,
        dry_run=dry_run,
    )

    if json_output:
        payload = {
            "ok": not warnings,
            "dry_run": dry_run,
            "removed": [str(p) for p in removed],
            "warnings": warnings,
        }
        click.echo(json.dumps(payload, indent=2))
    else:
        console = Console(highlight=False)
        verb = "Would remove" if dry_run else "Removed"
        if removed:
            table = Table(title=f"{verb} {len(removed)} workspace(s)")
            table.add_column("path", style="dim")
            for path in removed:
                table.add_row(str(path))
            console.print(table)
        else:
            console.print("No stale workspaces.")
        for warning in warnings:
            click.echo(f"WARNING: {warning}", err=True)

    if warnings:
        raise SystemExit(1)


@cli.command("config")
@click.pass_obj
def show_config(settings: TirSettings) -> None:
    """Print the resolved settings as JSON."""
    click.echo(settings.model_dump_json(indent=2))
