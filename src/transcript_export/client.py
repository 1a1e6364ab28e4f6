"""Transcript service API client.

Async HTTP client for the two upstream calls of an export: listing the
transcripts of a project and fetching the turns of one transcript. The
two calls deliberately have different failure policies: a failed list
aborts the job, while a session whose turns cannot be read is logged and
exported as empty.

Typical usage::

    import asyncio
    from transcript_export.client import TranscriptClient

    async def main():
        async with TranscriptClient("https://api.example.com/v2", "VF.DM.xxx") as client:
            sessions = await client.list_transcripts("proj-1", range_="Today")
            turns = await client.fetch_dialog("proj-1", sessions[0].id)

    asyncio.run(main())
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from transcript_export.errors import AuthError, UpstreamError, ValidationError
from transcript_export.models import DialogTurn, SessionSummary

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0  # seconds
UNAUTHORIZED_MESSAGE = "Unauthorized"


class TranscriptClient:
    """Async client for the transcript service.

    The API key is sent verbatim in the ``Authorization`` header, which is
    what the transcript service expects for its project keys.

    Args:
        base_url: Service root, e.g. ``https://api.example.com/v2``.
        api_key: Project API key.
        timeout: Per-request timeout in seconds.

    Example::

        async with TranscriptClient(base_url, api_key) as client:
            sessions = await client.list_transcripts("proj-1")
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        if not base_url:
            raise ValueError("Transcript API base URL is required. Set API_BASE_URL.")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> TranscriptClient:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={
                "Authorization": self._api_key,
                "Content-Type": "application/json",
            },
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def list_transcripts(
        self,
        project_id: str,
        *,
        tag: str | None = None,
        range_: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[SessionSummary]:
        """List every transcript of a project under the given filters.

        Filters are forwarded as query parameters; nothing is filtered
        client-side. Only filters that are set are sent.

        Args:
            project_id: Project whose transcripts to list.
            tag: Optional tag filter.
            range_: Optional named range (e.g. "Last 7 days").
            start_date: Optional ISO-8601 lower bound.
            end_date: Optional ISO-8601 upper bound.

        Returns:
            All session summaries, in upstream order.

        Raises:
            ValidationError: If the API key or project ID is missing.
            AuthError: If the service rejects the API key.
            UpstreamError: On any other error response, network failure,
                or a body that is not a list of transcripts.
        """
        if not self._api_key or not project_id:
            raise ValidationError("VF API key and project ID are mandatory.")
        client = self._require_client()

        params = {
            key: value
            for key, value in (
                ("tag", tag),
                ("range", range_),
                ("startDate", start_date),
                ("endDate", end_date),
            )
            if value
        }
        url = f"{self._base_url}/transcripts/{project_id}"
        logger.debug("Listing transcripts: %s params=%s", url, params)

        try:
            resp = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Failed to fetch transcripts: {exc}") from exc

        if not resp.is_success:
            if _is_unauthorized(resp):
                raise AuthError("Unauthorized access. Please check your API key.")
            raise UpstreamError(
                f"Failed to fetch transcripts: HTTP {resp.status_code}: {_extract_error(resp)}",
                upstream_status=resp.status_code,
            )

        try:
            data = resp.json()
            if not isinstance(data, list):
                raise ValueError(f"expected a list, got {type(data).__name__}")
            return [SessionSummary.from_dict(entry) for entry in data]
        except (ValueError, TypeError, AttributeError) as exc:
            raise UpstreamError(f"Malformed transcript list: {exc}") from exc

    async def fetch_dialog(self, project_id: str, transcript_id: str) -> list[DialogTurn]:
        """Fetch the ordered turns of one transcript.

        A session that cannot be read because the key is rejected or the
        response cannot be parsed is a soft failure: it is logged and an
        empty list is returned so the export can continue.

        Args:
            project_id: Owning project.
            transcript_id: Transcript to fetch (``SessionSummary.id``).

        Returns:
            Turns in occurrence order, or an empty list on soft failure.

        Raises:
            UpstreamError: On network failure or an error response that is
                neither an auth rejection nor unparseable.
        """
        client = self._require_client()
        url = f"{self._base_url}/transcripts/{project_id}/{transcript_id}"

        try:
            resp = await client.get(url)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Failed to fetch dialogs for {transcript_id}: {exc}") from exc

        if not resp.is_success:
            try:
                body = resp.json()
            except ValueError:
                logger.error(
                    "Failed to parse JSON for dialog ID %s (HTTP %s). Response might not be JSON.",
                    transcript_id,
                    resp.status_code,
                )
                return []
            if resp.status_code == 401 or _body_message(body) == UNAUTHORIZED_MESSAGE:
                logger.error(
                    "Unauthorized access for dialog ID %s. Please check your API key.",
                    transcript_id,
                )
                return []
            raise UpstreamError(
                f"API request failed for dialog ID {transcript_id}: HTTP {resp.status_code}",
                upstream_status=resp.status_code,
            )

        try:
            data = resp.json()
            if not isinstance(data, list):
                raise ValueError(f"expected a list, got {type(data).__name__}")
            return [DialogTurn.from_dict(entry) for entry in data]
        except ValueError as exc:
            logger.error("Unexpected dialog response for %s: %s", transcript_id, exc)
            return []


def _body_message(body: Any) -> str | None:
    if isinstance(body, dict):
        message = body.get("message")
        return str(message) if message is not None else None
    return None


def _is_unauthorized(resp: httpx.Response) -> bool:
    """Whether an error response is an API-key rejection."""
    if resp.status_code == 401:
        return True
    try:
        return _body_message(resp.json()) == UNAUTHORIZED_MESSAGE
    except ValueError:
        return False


def _extract_error(resp: httpx.Response) -> str:
    """Extract error detail from a non-2xx response.

    Args:
        resp: The httpx response object.

    Returns:
        Human-readable error description.
    """
    try:
        body = resp.json()
    except ValueError:
        return str(resp.text[:500])
    message = _body_message(body)
    return message if message is not None else str(body)[:500]
