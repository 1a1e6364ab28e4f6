"""Export orchestrator -- the per-request export pipeline.

One ``ExportJob`` per request: validate the parameters, list the
project's transcripts, then for every transcript wait the configured
pacing delay, fetch its turns, transcode them and write CSV; finally zip
the working directory. The job owns its working directory and archive
and removes both on every exit path, including timeout and
cancellation.

State sequence::

    validating -> listing -> (fetching_session -> transcoding -> writing)*
        -> archiving -> streaming -> cleaning_up -> done | failed

Typical usage::

    import asyncio
    from transcript_export.config import load_config
    from transcript_export.orchestrator import ExportRequest, run_export

    config = load_config()
    request = ExportRequest(api_key="VF.DM.xxx", project_id="proj-1", single_file=True)
    archive, stats = asyncio.run(run_export(config, request, Path(".")))
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
import uuid
import zipfile
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from transcript_export.assembler import CSV_HEADER, TextRedactor, merge_csv, session_to_csv
from transcript_export.client import TranscriptClient
from transcript_export.config import ExportConfig
from transcript_export.errors import InternalError, JobTimeoutError, ValidationError
from transcript_export.redaction import RedactionClient

logger = logging.getLogger(__name__)

VALID_RANGES = ("Today", "Yesterday", "Last 7 days", "Last 30 days", "All time")
ARCHIVE_CHUNK_SIZE = 64 * 1024

ClientFactory = Callable[[ExportConfig, str], TranscriptClient]
RedactorFactory = Callable[[ExportConfig], RedactionClient]
Sleep = Callable[[float], Awaitable[None]]


class JobState(StrEnum):
    """Lifecycle states of an export job."""

    VALIDATING = "validating"
    LISTING = "listing"
    FETCHING_SESSION = "fetching_session"
    TRANSCODING = "transcoding"
    WRITING = "writing"
    ARCHIVING = "archiving"
    STREAMING = "streaming"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExportRequest:
    """Parameters of one export.

    Attributes:
        api_key: Upstream project API key.
        project_id: Project to export.
        tag: Optional tag filter.
        range: Optional named range, one of ``VALID_RANGES``.
        start_date: Optional ISO-8601 lower bound.
        end_date: Optional ISO-8601 upper bound.
        single_file: Write one consolidated CSV instead of one per session.
        redact: Pass user-authored text through the redaction service.
    """

    api_key: str = ""
    project_id: str = ""
    tag: str | None = None
    range: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    single_file: bool = False
    redact: bool = False


@dataclass
class JobStats:
    """Counters reported once a job has run."""

    sessions: int = 0
    exported: int = 0
    skipped: int = 0
    rows: int = 0
    files: int = 0


def is_iso8601(value: str) -> bool:
    """Whether ``value`` is an ISO-8601 date or date-time string."""
    for parse in (date.fromisoformat, datetime.fromisoformat):
        try:
            parse(value)
        except ValueError:
            continue
        return True
    return False


def validate_request(request: ExportRequest, config: ExportConfig) -> None:
    """Check an export request before any upstream call is made.

    Args:
        request: The request to check.
        config: Effective configuration (for the redaction URL).

    Raises:
        ValidationError: On the first problem found.
    """
    if not request.api_key or not request.project_id:
        raise ValidationError("VF API key and project ID are required.")
    if request.redact and not config.redaction_url:
        raise ValidationError("Redaction requested but REDACT_API_URL is not configured.")
    if request.range and request.range not in VALID_RANGES:
        raise ValidationError(f"Invalid range value. Must be one of: {', '.join(VALID_RANGES)}")
    if request.start_date and not is_iso8601(request.start_date):
        raise ValidationError("Invalid start date format.")
    if request.end_date and not is_iso8601(request.end_date):
        raise ValidationError("Invalid end date format.")


def _default_client(config: ExportConfig, api_key: str) -> TranscriptClient:
    return TranscriptClient(config.api_base_url, api_key, timeout=config.request_timeout)


def _default_redactor(config: ExportConfig) -> RedactionClient:
    return RedactionClient(config.redaction_url, timeout=config.request_timeout)


class ExportJob:
    """A single export, from validation to cleanup.

    The working directory and archive are named after the project, the
    request timestamp and a random suffix, so concurrent jobs never share
    filesystem state. Cleanup only removes paths the job created itself.
    Use as an async context manager to guarantee cleanup::

        async with ExportJob(config, request) as job:
            archive = await job.run()
            ...

    Args:
        config: Effective configuration.
        request: Export parameters.
        client_factory: Builds the transcript client for an API key.
        redactor_factory: Builds the redaction client.
        clock: Wall-clock source in seconds, used for the job timestamp.
        sleep: Awaitable used for the pacing delay.
    """

    def __init__(
        self,
        config: ExportConfig,
        request: ExportRequest,
        *,
        client_factory: ClientFactory = _default_client,
        redactor_factory: RedactorFactory = _default_redactor,
        clock: Callable[[], float] = time.time,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.request = request
        self.project_slug = Path(request.project_id).name
        self.timestamp = int(clock() * 1000)
        self.job_name = f"{self.project_slug}_{self.timestamp}_{uuid.uuid4().hex[:8]}"
        self.working_dir = config.export_root / self.job_name
        self.archive_path = config.export_root / f"{self.job_name}.zip"
        self.state = JobState.VALIDATING
        self.history: list[JobState] = [JobState.VALIDATING]
        self.stats = JobStats()
        self._client_factory = client_factory
        self._redactor_factory = redactor_factory
        self._sleep = sleep
        self._cleaned = False
        self._owns_dir = False

    @property
    def archive_filename(self) -> str:
        """Download name of the archive."""
        return self.archive_path.name

    async def __aenter__(self) -> ExportJob:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.cleanup(failed=exc is not None)

    def _transition(self, state: JobState) -> None:
        logger.debug("Job %s: %s -> %s", self.job_name, self.state, state)
        self.state = state
        self.history.append(state)

    async def run(self) -> Path:
        """Build the export archive.

        Returns:
            Path of the ZIP archive, ready to stream.

        Raises:
            ValidationError: On bad request parameters.
            AuthError: If the upstream service rejects the API key.
            UpstreamError: On a hard upstream failure.
            JobTimeoutError: If the job exceeds ``config.job_timeout``.
            InternalError: On filesystem or archive failures.
        """
        try:
            async with asyncio.timeout(self.config.job_timeout):
                await self._build()
        except TimeoutError as exc:
            self.cleanup(failed=True)
            raise JobTimeoutError(
                f"Export job {self.job_name} exceeded {self.config.job_timeout}s"
            ) from exc
        except BaseException:
            self.cleanup(failed=True)
            raise
        self._transition(JobState.STREAMING)
        return self.archive_path

    async def _build(self) -> None:
        request = self.request
        validate_request(request, self.config)

        self._transition(JobState.LISTING)
        async with AsyncExitStack() as stack:
            client = await stack.enter_async_context(
                self._client_factory(self.config, request.api_key)
            )
            redactor: TextRedactor | None = None
            if request.redact:
                redactor = await stack.enter_async_context(self._redactor_factory(self.config))

            sessions = await client.list_transcripts(
                self.project_slug,
                tag=request.tag,
                range_=request.range,
                start_date=request.start_date,
                end_date=request.end_date,
            )
            self.stats.sessions = len(sessions)
            logger.info("Job %s: %d transcript(s) to export", self.job_name, len(sessions))
            self._make_working_dir()

            blocks: list[str] = []
            for summary in sessions:
                self._transition(JobState.FETCHING_SESSION)
                if self.config.extra_logs:
                    logger.info(
                        "Processing%s dialog ID: %s",
                        " and redacting" if redactor else "",
                        summary.id,
                    )
                await self._sleep(self.config.inter_call_delay)
                turns = await client.fetch_dialog(self.project_slug, summary.id)
                if not turns:
                    self.stats.skipped += 1
                    continue

                self._transition(JobState.TRANSCODING)
                csv_text = await session_to_csv(
                    turns, summary.session_id, summary.id, redactor=redactor
                )
                self.stats.exported += 1
                self.stats.rows += len(turns)

                if request.single_file:
                    blocks.append(csv_text)
                else:
                    self._transition(JobState.WRITING)
                    self._write(f"{Path(summary.id).name}.csv", csv_text)

            if request.single_file:
                self._transition(JobState.WRITING)
                self._write(
                    f"{self.project_slug}_all_transcripts.csv", merge_csv(blocks) or CSV_HEADER
                )

        self._transition(JobState.ARCHIVING)
        await asyncio.to_thread(self._archive)
        logger.info("Zip file generated: %s", self.archive_filename)

    def _make_working_dir(self) -> None:
        try:
            self.working_dir.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise InternalError(f"Cannot create working directory {self.working_dir}: {exc}") from exc
        self._owns_dir = True

    def _write(self, filename: str, content: str) -> None:
        path = self.working_dir / filename
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise InternalError(f"Cannot write {path}: {exc}") from exc
        self.stats.files += 1
        if self.config.extra_logs:
            logger.info("CSV file created: %s", filename)

    def _archive(self) -> None:
        # Runs in a worker thread that a timeout cannot stop; cleanup may
        # already have run, or may run while the archive is being written.
        if self._cleaned:
            return
        try:
            with zipfile.ZipFile(
                self.archive_path, "w", zipfile.ZIP_DEFLATED, compresslevel=9
            ) as zf:
                for file_path in sorted(self.working_dir.iterdir()):
                    zf.write(file_path, file_path.name)
        except (OSError, zipfile.BadZipFile) as exc:
            raise InternalError(f"Cannot build archive {self.archive_path}: {exc}") from exc
        finally:
            if self._cleaned:
                self.archive_path.unlink(missing_ok=True)

    async def iter_archive(self, chunk_size: int = ARCHIVE_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the archive's bytes, then clean up.

        Cleanup runs when iteration finishes, fails, or is abandoned
        (e.g. the client disconnects and the generator is closed).

        Args:
            chunk_size: Bytes per chunk.

        Yields:
            Consecutive chunks of the archive file.
        """
        failed = True
        try:
            with open(self.archive_path, "rb") as f:
                while chunk := await asyncio.to_thread(f.read, chunk_size):
                    yield chunk
            failed = False
        finally:
            self.cleanup(failed=failed)

    def cleanup(self, *, failed: bool = False) -> None:
        """Remove the working directory and archive.

        Safe to call more than once; only the first call does any work.
        Paths are only removed if this job created the working directory,
        so a job that failed to start never touches another job's files.
        Removal errors are logged, never raised.

        Args:
            failed: End in ``failed`` rather than ``done``.
        """
        if self._cleaned:
            return
        self._cleaned = True
        self._transition(JobState.CLEANING_UP)

        if self._owns_dir:
            try:
                shutil.rmtree(self.working_dir)
            except FileNotFoundError:
                pass
            except OSError:
                logger.exception("Error removing working directory %s", self.working_dir)

            try:
                self.archive_path.unlink(missing_ok=True)
            except OSError:
                logger.exception("Error removing archive %s", self.archive_path)

        self._transition(JobState.FAILED if failed else JobState.DONE)
        logger.debug("Job %s: temporary files removed", self.job_name)


async def run_export(
    config: ExportConfig,
    request: ExportRequest,
    output_dir: Path,
    **job_kwargs: Any,
) -> tuple[Path, JobStats]:
    """Run one export and copy its archive into ``output_dir``.

    The job's own working state is removed afterwards either way.

    Args:
        config: Effective configuration.
        request: Export parameters.
        output_dir: Directory to copy the finished archive into.
        **job_kwargs: Passed through to ``ExportJob``.

    Returns:
        Tuple of (copied archive path, job statistics).

    Raises:
        ExportError: Any failure of the job or of the final copy.
    """
    async with ExportJob(config, request, **job_kwargs) as job:
        archive = await job.run()
        destination = output_dir / job.archive_filename
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(archive, destination)
        except OSError as exc:
            raise InternalError(f"Cannot copy archive to {destination}: {exc}") from exc
    return destination, job.stats
