"""FastAPI application exposing the export pipeline over HTTP.

Defines the ``GET /export`` download endpoint and a health check. Started
via the ``transcript-export serve`` CLI command.

Request handling order for ``/export``: inbound rate limit, auth token,
parameter validation, then the export job. Auth is checked before any
parameter is looked at, so an unauthenticated request never reaches the
upstream service.
"""

from __future__ import annotations

import hmac
import logging
import math
from collections.abc import Callable

from fastapi import FastAPI, Header, Query
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from transcript_export import __version__
from transcript_export.config import ExportConfig, parse_bool
from transcript_export.errors import AuthError, ExportError
from transcript_export.orchestrator import ExportJob, ExportRequest
from transcript_export.ratelimit import RequestRateLimiter

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Too many requests, please try again later."
GENERIC_ERROR_MESSAGE = "An error occurred while processing your request."
DEFAULT_RANGE = "Today"

JobFactory = Callable[[ExportConfig, ExportRequest], ExportJob]


def token_matches(presented: str | None, expected: str) -> bool:
    """Constant-time comparison of the presented auth token.

    An empty configured token matches nothing, so a server without a
    token configured rejects every export request.
    """
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def create_app(config: ExportConfig, *, job_factory: JobFactory = ExportJob) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Effective configuration, shared by every request.
        job_factory: Builds the export job for a request.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(title="Transcript Export", version=__version__)
    limiter = RequestRateLimiter(config.max_requests, config.rate_window)
    app.state.config = config
    app.state.limiter = limiter

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/export")
    async def export(
        vf_api_key: str | None = Query(None, alias="vfApiKey"),
        project_id: str | None = Query(None, alias="projectId"),
        tag: str | None = Query(None),
        range_: str | None = Query(DEFAULT_RANGE, alias="range"),
        start_date: str | None = Query(None, alias="startDate"),
        end_date: str | None = Query(None, alias="endDate"),
        single_file: str | None = Query(None, alias="singleFile"),
        redact: str | None = Query(None),
        authorization: str | None = Header(None),
    ) -> Response:
        """Export a project's transcripts as a ZIP of CSV files."""
        if not limiter.try_acquire():
            retry_after = math.ceil(limiter.retry_after())
            return PlainTextResponse(
                RATE_LIMITED_MESSAGE, status_code=429, headers={"Retry-After": str(retry_after)}
            )

        if not token_matches(authorization, config.auth_token):
            return PlainTextResponse(AuthError.public_message, status_code=AuthError.status_code)

        request = ExportRequest(
            api_key=vf_api_key or config.default_api_key,
            project_id=project_id or config.default_project_id,
            tag=tag or None,
            range=range_ or None,
            start_date=start_date or None,
            end_date=end_date or None,
            single_file=single_file == "true",
            redact=parse_bool(redact) if redact is not None else config.redaction_enabled,
        )

        job = job_factory(config, request)
        try:
            archive = await job.run()
        except ExportError as exc:
            if exc.status_code >= 500:
                logger.error("Export %s failed: %s", job.job_name, exc)
            else:
                logger.warning("Export %s rejected: %s", job.job_name, exc)
            return PlainTextResponse(exc.public_message, status_code=exc.status_code)
        except Exception:
            logger.exception("Export %s failed unexpectedly", job.job_name)
            return PlainTextResponse(GENERIC_ERROR_MESSAGE, status_code=500)

        logger.info("Streaming %s (%d bytes)", job.archive_filename, archive.stat().st_size)
        return StreamingResponse(
            job.iter_archive(),
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{job.archive_filename}"'},
            background=BackgroundTask(job.cleanup),
        )

    return app


def run_server(config: ExportConfig, *, host: str, port: int) -> None:
    """Serve the app with uvicorn. Blocks until the server stops.

    Args:
        config: Effective configuration.
        host: Bind address.
        port: Bind port.
    """
    import uvicorn

    uvicorn.run(create_app(config), host=host, port=port, log_config=None)
