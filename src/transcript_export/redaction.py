"""Best-effort PII redaction through an external scrub service.

The service accepts ``POST {"text": ...}`` and answers with
``{"redacted_text": ...}``. Redaction must never fail or block an
export: any error is logged and the original text is returned.

Typical usage::

    from transcript_export.redaction import RedactionClient

    async with RedactionClient("https://redact.example.com/scrub") as redactor:
        clean = await redactor.process_text("Call me at 555-0100")
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0  # seconds


class RedactionClient:
    """Async client for the redaction service.

    Designed to be used as an async context manager so one connection pool
    serves every text field of a job.

    Args:
        url: Redaction endpoint URL.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        if not url:
            raise ValueError("Redaction URL is required. Set REDACT_API_URL.")
        self._url = url
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> RedactionClient:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={"Content-Type": "application/json"},
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def process_text(self, text: str) -> str:
        """Return the redacted form of ``text``, or ``text`` itself on failure.

        Args:
            text: Raw user-authored text.

        Returns:
            Redacted text. The input is returned unchanged when it is
            empty, when the service answers with a non-2xx status, when
            the body is not the expected shape, or on network errors.

        Raises:
            RuntimeError: If the client is used outside a context manager.
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        if not text:
            return text

        try:
            resp = await self._client.post(self._url, json={"text": text})
        except httpx.HTTPError as exc:
            logger.warning("Redaction request failed: %s", exc)
            return text

        if not resp.is_success:
            logger.warning("Redaction API error: HTTP %s", resp.status_code)
            return text

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Redaction API returned a non-JSON body")
            return text

        redacted = data.get("redacted_text") if isinstance(data, dict) else None
        if not isinstance(redacted, str) or not redacted:
            logger.warning("Redaction API response has no redacted_text")
            return text
        return redacted
