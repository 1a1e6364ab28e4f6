"""CLI entry point for Transcript Export.

Provides the ``transcript-export`` command with subcommands for running
an export locally, serving the HTTP export endpoint, and managing
configuration.

Typical usage::

    transcript-export export --project-id 64f0... --range "Last 7 days" --single-file
    transcript-export serve --port 3000
    transcript-export config show
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from transcript_export import __version__
from transcript_export.config import CONFIG_PATH, ExportConfig, load_config, secrets_from_env
from transcript_export.display import render_config_show, render_export_summary
from transcript_export.errors import ExportError
from transcript_export.orchestrator import VALID_RANGES, ExportRequest, run_export

console = Console(stderr=True)


def _configure_logging(*, verbose: bool, extra_logs: bool = False) -> None:
    """Route log records through Rich on stderr.

    Args:
        verbose: Log everything at DEBUG.
        extra_logs: Log per-session progress of this package at INFO.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    package_level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger("transcript_export").setLevel(
        package_level if (verbose or extra_logs) else logging.WARNING
    )


def _load_config_or_exit() -> ExportConfig:
    try:
        return load_config(CONFIG_PATH)
    except (OSError, ValueError) as exc:
        console.print(f"[red bold]Error:[/red bold] Invalid configuration: {exc}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="transcript-export")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Export recorded agent conversations as CSV archives.

    Lists a project's transcripts on the transcript service, flattens
    every dialogue turn into a fixed 16-column CSV row, and packages the
    result as a ZIP archive.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@main.command()
@click.option("--project-id", default=None, help="Project to export (default: PROJECT_ID).")
@click.option("--api-key", default=None, help="Project API key (default: VF_API_KEY).")
@click.option("--tag", default=None, help="Only export transcripts with this tag.")
@click.option(
    "--range",
    "range_",
    type=click.Choice(VALID_RANGES),
    default="Today",
    show_default=True,
    help="Named time range.",
)
@click.option("--start-date", default=None, help="ISO-8601 lower bound.")
@click.option("--end-date", default=None, help="ISO-8601 upper bound.")
@click.option("--single-file", is_flag=True, help="Write one consolidated CSV file.")
@click.option(
    "--redact/--no-redact",
    default=None,
    help="Redact user text (default: USE_REDACT).",
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory to write the archive to.",
)
@click.pass_context
def export(
    ctx: click.Context,
    project_id: str | None,
    api_key: str | None,
    tag: str | None,
    range_: str,
    start_date: str | None,
    end_date: str | None,
    single_file: bool,
    redact: bool | None,
    output_dir: Path,
) -> None:
    """Export a project's transcripts to a ZIP archive."""
    cfg = _load_config_or_exit()
    _configure_logging(verbose=ctx.obj["verbose"], extra_logs=cfg.extra_logs)

    request = ExportRequest(
        api_key=api_key or cfg.default_api_key,
        project_id=project_id or cfg.default_project_id,
        tag=tag,
        range=range_,
        start_date=start_date,
        end_date=end_date,
        single_file=single_file,
        redact=cfg.redaction_enabled if redact is None else redact,
    )

    try:
        archive, stats = asyncio.run(run_export(cfg, request, output_dir))
    except ExportError as exc:
        console.print(f"[red bold]Error:[/red bold] {exc}")
        sys.exit(1)

    render_export_summary(archive, stats)


@main.command()
@click.option("--port", type=int, default=None, help="Port to bind to (default: PORT or 3000).")
@click.option("--host", default=None, help="Host to bind to (default: 0.0.0.0).")
@click.pass_context
def serve(ctx: click.Context, port: int | None, host: str | None) -> None:
    """Start the HTTP export server."""
    from transcript_export.web.app import run_server

    cfg = _load_config_or_exit()
    _configure_logging(verbose=ctx.obj["verbose"], extra_logs=cfg.extra_logs)
    if not cfg.auth_token:
        console.print(
            "[yellow]Warning:[/yellow] AUTHORIZATION_TOKEN is not set; "
            "every export request will be rejected."
        )
    run_server(cfg, host=host or cfg.host, port=port or cfg.port)


@main.group()
def config() -> None:
    """Manage configuration."""


@config.command()
def path() -> None:
    """Print the configuration file path."""
    click.echo(CONFIG_PATH)


@config.command("show")
def config_show() -> None:
    """Display effective configuration."""
    cfg = _load_config_or_exit()
    render_config_show(cfg, env_secrets=secrets_from_env())


@config.command()
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
def init(force: bool) -> None:
    """Write a config file from the effective configuration."""
    from transcript_export.config import write_config

    if CONFIG_PATH.exists() and not force:
        console.print(
            f"[red bold]Error:[/red bold] {CONFIG_PATH} already exists. Use --force to overwrite."
        )
        sys.exit(1)
    target = write_config(_load_config_or_exit(), CONFIG_PATH, env_secrets=secrets_from_env())
    console.print(f"[dim]Config written to {target}[/dim]")


if __name__ == "__main__":
    main()
