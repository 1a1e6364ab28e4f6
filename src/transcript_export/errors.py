"""Error taxonomy for the export pipeline.

Every failure that can abort an export job is an ``ExportError``
subclass carrying the HTTP status the web layer should answer with and a
generic public message. Upstream detail goes into the exception text and
the log, never into ``public_message``.
"""

from __future__ import annotations


class ExportError(Exception):
    """Base class for export failures.

    Attributes:
        status_code: HTTP status code for the inbound response.
        public_message: Message safe to show to the caller.
    """

    status_code = 500
    public_message = "An error occurred while processing your request."


class ValidationError(ExportError):
    """Missing or malformed request parameters.

    The message is caller-facing, so it is also used as the public message.
    """

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.public_message = message


class AuthError(ExportError):
    """Bad credentials, either the local auth token or the upstream API key."""

    status_code = 401
    public_message = "Unauthorized: Invalid authorization token."


class UpstreamError(ExportError):
    """Hard failure of an upstream transcript-service call.

    Attributes:
        upstream_status: HTTP status returned upstream, or None for
            network-level failures.
    """

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class JobTimeoutError(ExportError, TimeoutError):
    """The job exceeded its configured time budget."""

    status_code = 503
    public_message = "Response timeout"


class InternalError(ExportError):
    """Archive or filesystem failure while building the export."""
