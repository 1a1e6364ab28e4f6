"""Configuration management for Transcript Export.

Handles upstream credentials, the inbound auth token, rate limits,
pacing, the job timeout and redaction settings. Configuration is loaded
from a TOML file (~/.transcript-export/config.toml) with environment
variable overrides, and passed explicitly into the orchestrator and the
web app.

Typical usage::

    from transcript_export.config import load_config

    config = load_config()
    delay = config.inter_call_delay
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

APP_DIR = Path.home() / ".transcript-export"
CONFIG_PATH = APP_DIR / "config.toml"
DEFAULT_EXPORT_ROOT = Path("/tmp") / "exports"

DEFAULT_INTER_CALL_DELAY = 0.25  # seconds between dialog fetches
DEFAULT_JOB_TIMEOUT = 300.0  # seconds
DEFAULT_RATE_WINDOW = 60.0  # seconds
DEFAULT_MAX_REQUESTS = 10
DEFAULT_REQUEST_TIMEOUT = 60.0  # seconds, per upstream call
DEFAULT_PORT = 3000

# Env vars holding secrets; never written back to the config file.
SECRET_ENV_VARS: dict[str, str] = {
    "VF_API_KEY": "default_api_key",
    "AUTHORIZATION_TOKEN": "auth_token",
}

_DURATION_UNITS: dict[str, float] = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}
_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$", re.IGNORECASE)


@dataclass
class ExportConfig:
    """Application configuration.

    Attributes:
        api_base_url: Transcript service root URL.
        default_api_key: API key used when a request does not carry one.
        default_project_id: Project used when a request does not name one.
        auth_token: Token inbound requests must present in ``Authorization``.
        rate_window: Inbound rate-limit window, in seconds.
        max_requests: Inbound requests accepted per window.
        inter_call_delay: Pause before every dialog fetch, in seconds.
        job_timeout: Time budget of one export job, in seconds.
        redaction_enabled: Redact user text unless a request says otherwise.
        redaction_url: Redaction service endpoint.
        export_root: Directory holding job working directories and archives.
        extra_logs: Log per-session progress.
        host: Bind address for ``serve``.
        port: Bind port for ``serve``.
        request_timeout: Timeout of a single upstream HTTP call, in seconds.
    """

    api_base_url: str = ""
    default_api_key: str = field(default="", repr=False)
    default_project_id: str = ""
    auth_token: str = field(default="", repr=False)
    rate_window: float = DEFAULT_RATE_WINDOW
    max_requests: int = DEFAULT_MAX_REQUESTS
    inter_call_delay: float = DEFAULT_INTER_CALL_DELAY
    job_timeout: float = DEFAULT_JOB_TIMEOUT
    redaction_enabled: bool = False
    redaction_url: str = ""
    export_root: Path = DEFAULT_EXPORT_ROOT
    extra_logs: bool = False
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


def parse_duration(value: str) -> float:
    """Parse a duration such as ``"5m"``, ``"30s"`` or ``"250ms"``.

    A bare number is read as milliseconds.

    Args:
        value: Duration string.

    Returns:
        Duration in seconds.

    Raises:
        ValueError: If the string is not a recognized duration.
    """
    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid duration '{value}'. Use e.g. 300ms, 30s, 5m, 1h.")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[(unit or "ms").lower()]


def parse_bool(value: str) -> bool:
    """Interpret an env var flag; only ``"true"`` (any case) and ``"1"`` are true."""
    return value.strip().lower() in ("true", "1")


def _apply_toml(config: ExportConfig, data: dict[str, Any]) -> None:
    """Apply parsed TOML data onto a config.

    Args:
        config: Config instance to update.
        data: Parsed TOML dictionary.
    """
    upstream: dict[str, Any] = data.get("upstream", {})
    if "base_url" in upstream:
        config.api_base_url = str(upstream["base_url"])
    if "api_key" in upstream:
        config.default_api_key = str(upstream["api_key"])
    if "project_id" in upstream:
        config.default_project_id = str(upstream["project_id"])
    if "request_timeout" in upstream:
        config.request_timeout = float(upstream["request_timeout"])

    server: dict[str, Any] = data.get("server", {})
    if "auth_token" in server:
        config.auth_token = str(server["auth_token"])
    if "host" in server:
        config.host = str(server["host"])
    if "port" in server:
        config.port = int(server["port"])

    limits: dict[str, Any] = data.get("limits", {})
    if "rate_window" in limits:
        config.rate_window = float(limits["rate_window"])
    if "max_requests" in limits:
        config.max_requests = int(limits["max_requests"])
    if "inter_call_delay" in limits:
        config.inter_call_delay = float(limits["inter_call_delay"])
    if "job_timeout" in limits:
        # Either seconds or a duration string.
        raw = limits["job_timeout"]
        config.job_timeout = parse_duration(raw) if isinstance(raw, str) else float(raw)

    redaction: dict[str, Any] = data.get("redaction", {})
    if "enabled" in redaction:
        config.redaction_enabled = bool(redaction["enabled"])
    if "url" in redaction:
        config.redaction_url = str(redaction["url"])

    export: dict[str, Any] = data.get("export", {})
    if "root" in export:
        config.export_root = Path(export["root"]).expanduser()
    if "extra_logs" in export:
        config.extra_logs = bool(export["extra_logs"])


def _apply_env_overrides(config: ExportConfig, environ: dict[str, str]) -> None:
    """Apply environment variable overrides.

    Args:
        config: Config instance to update.
        environ: Environment mapping.
    """

    def _get(name: str) -> str:
        return environ.get(name, "").strip()

    if _get("API_BASE_URL"):
        config.api_base_url = _get("API_BASE_URL")
    if _get("PROJECT_ID"):
        config.default_project_id = _get("PROJECT_ID")
    for env_var, attr in SECRET_ENV_VARS.items():
        if _get(env_var):
            setattr(config, attr, _get(env_var))
    if _get("DELAY"):
        config.inter_call_delay = int(_get("DELAY")) / 1000
    if _get("TIMEOUT"):
        config.job_timeout = parse_duration(_get("TIMEOUT"))
    if _get("EXTRA_LOGS"):
        config.extra_logs = parse_bool(_get("EXTRA_LOGS"))
    if _get("REDACT_API_URL"):
        config.redaction_url = _get("REDACT_API_URL")
    if _get("USE_REDACT"):
        config.redaction_enabled = parse_bool(_get("USE_REDACT"))
    if _get("PORT"):
        config.port = int(_get("PORT"))
    if _get("RATE_LIMIT_WINDOW_MS"):
        config.rate_window = int(_get("RATE_LIMIT_WINDOW_MS")) / 1000
    if _get("RATE_LIMIT_MAX_REQUESTS"):
        config.max_requests = int(_get("RATE_LIMIT_MAX_REQUESTS"))
    if _get("EXPORT_DIR"):
        config.export_root = Path(_get("EXPORT_DIR"))


def load_config(path: Path | None = None, environ: dict[str, str] | None = None) -> ExportConfig:
    """Load configuration from file and environment.

    Resolution order, last wins:
        1. Built-in defaults
        2. The TOML config file, if it exists
        3. Environment variables

    Args:
        path: Config file to read. Defaults to CONFIG_PATH.
        environ: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Populated ExportConfig instance.

    Raises:
        ValueError: If a numeric or duration setting cannot be parsed.
    """
    config = ExportConfig()
    target = path or CONFIG_PATH

    if target.exists():
        with open(target, "rb") as f:
            _apply_toml(config, tomllib.load(f))

    _apply_env_overrides(config, dict(os.environ if environ is None else environ))

    return config


def secrets_from_env(environ: dict[str, str] | None = None) -> set[str]:
    """Names of config attributes whose secret value is set in the environment."""
    env = os.environ if environ is None else environ
    return {attr for env_var, attr in SECRET_ENV_VARS.items() if env.get(env_var, "").strip()}


def write_config(
    config: ExportConfig,
    path: Path | None = None,
    *,
    env_secrets: set[str] | None = None,
) -> Path:
    """Serialize a config to TOML and write it to disk.

    Secrets sourced from environment variables are excluded so that only
    values set explicitly end up in the file. The file is created with
    owner-only permissions because it can hold API keys.

    Args:
        config: Config to serialize.
        path: File path to write. Defaults to CONFIG_PATH.
        env_secrets: Attribute names (see ``SECRET_ENV_VARS``) to leave out.

    Returns:
        Path of the written file.
    """
    import tomlkit

    target = path or CONFIG_PATH
    skip = env_secrets or set()
    doc = tomlkit.document()

    upstream = tomlkit.table()
    upstream.add("base_url", config.api_base_url)
    if config.default_api_key and "default_api_key" not in skip:
        upstream.add("api_key", config.default_api_key)
    upstream.add("project_id", config.default_project_id)
    upstream.add("request_timeout", config.request_timeout)
    doc.add("upstream", upstream)

    server = tomlkit.table()
    if config.auth_token and "auth_token" not in skip:
        server.add("auth_token", config.auth_token)
    server.add("host", config.host)
    server.add("port", config.port)
    doc.add("server", server)

    limits = tomlkit.table()
    limits.add("rate_window", config.rate_window)
    limits.add("max_requests", config.max_requests)
    limits.add("inter_call_delay", config.inter_call_delay)
    limits.add("job_timeout", config.job_timeout)
    doc.add("limits", limits)

    redaction = tomlkit.table()
    redaction.add("enabled", config.redaction_enabled)
    redaction.add("url", config.redaction_url)
    doc.add("redaction", redaction)

    export = tomlkit.table()
    export.add("root", str(config.export_root))
    export.add("extra_logs", config.extra_logs)
    doc.add("export", export)

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(tomlkit.dumps(doc), encoding="utf-8")
    target.chmod(0o600)
    return target
