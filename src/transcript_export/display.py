"""Terminal display -- Rich-based rendering for CLI output.

Typical usage::

    from transcript_export.display import render_export_summary

    render_export_summary(archive_path, stats)
"""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.table import Table

from transcript_export.config import ExportConfig
from transcript_export.orchestrator import JobStats

console = Console()


def mask_secret(value: str) -> str:
    """Mask all but the last four characters of a secret.

    Args:
        value: Secret string, possibly empty.

    Returns:
        Masked string, or an em dash if the value is empty.
    """
    if not value:
        return "—"
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * 8 + value[-4:]


def render_config_show(config: ExportConfig, *, env_secrets: set[str] | None = None) -> None:
    """Render the effective configuration as a Rich table.

    Secrets are masked. Values that came from environment variables are
    marked so the user knows editing the config file will not change them.

    Args:
        config: Effective configuration.
        env_secrets: Attribute names whose secret is set via environment.
    """
    from_env = env_secrets or set()

    table = Table(show_header=True, padding=(0, 1))
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    def _secret(attr: str) -> str:
        masked = mask_secret(getattr(config, attr))
        return f"{masked} [dim](env)[/dim]" if attr in from_env else masked

    rows = [
        ("API base URL", config.api_base_url or "—"),
        ("API key", _secret("default_api_key")),
        ("Project ID", config.default_project_id or "—"),
        ("Auth token", _secret("auth_token")),
        ("Rate limit", f"{config.max_requests} req / {config.rate_window:g}s"),
        ("Inter-call delay", f"{config.inter_call_delay * 1000:g}ms"),
        ("Job timeout", f"{config.job_timeout:g}s"),
        ("Redaction", "[green]on[/green]" if config.redaction_enabled else "[dim]off[/dim]"),
        ("Redaction URL", config.redaction_url or "—"),
        ("Export root", str(config.export_root)),
        ("Listen", f"{config.host}:{config.port}"),
    ]
    for name, value in rows:
        table.add_row(name, value)

    console.print()
    console.print(table)
    console.print()


def render_export_summary(archive: Path, stats: JobStats) -> None:
    """Render the outcome of a local export.

    Args:
        archive: Path of the copied archive.
        stats: Counters from the finished job.
    """
    table = Table(show_header=False, padding=(0, 1))
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Transcripts listed", f"{stats.sessions:,}")
    table.add_row("Exported", f"{stats.exported:,}")
    table.add_row("Skipped (no turns)", f"{stats.skipped:,}")
    table.add_row("Rows", f"{stats.rows:,}")
    table.add_row("CSV files", f"{stats.files:,}")

    console.print()
    console.print(table)
    console.print(f"[green]✓[/green] Archive written to [bold]{archive}[/bold]")
