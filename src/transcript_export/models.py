"""Data models for upstream transcripts and exported CSV rows.

Defines the session summaries returned by the transcript list call, the
dialogue turns returned per session, and the fixed-schema row every turn
is flattened into.

Typical usage::

    from transcript_export.models import DialogTurn, SessionSummary

    summary = SessionSummary.from_dict({"_id": "abc", "sessionID": "s-1"})
    turn = DialogTurn.from_dict({"turnID": "t1", "type": "end", "payload": {}})
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

# Column order of every exported CSV file.
CSV_COLUMNS: tuple[str, ...] = (
    "transcriptID",
    "sessionID",
    "startTime",
    "turnID",
    "type",
    "event",
    "content",
    "output",
    "ai",
    "intent_matched",
    "confidence_interval",
    "model",
    "token_multiplier",
    "token_consumption_total",
    "token_consumption_query",
    "token_consumption_answer",
)


@dataclass(frozen=True)
class SessionSummary:
    """One recorded conversation as listed by the transcript service.

    Attributes:
        id: Transcript identifier, used for the per-session fetch and the
            per-session file name.
        session_id: Conversation session identifier.
    """

    id: str
    session_id: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SessionSummary:
        """Build a summary from an upstream list entry.

        Args:
            data: Upstream JSON object with ``_id`` (or ``id``) and
                ``sessionID`` keys.

        Returns:
            SessionSummary instance.

        Raises:
            ValueError: If the entry has no transcript identifier.
        """
        transcript_id = data.get("_id") or data.get("id")
        if not transcript_id:
            raise ValueError(f"Transcript entry has no identifier: {data!r}")
        return cls(id=str(transcript_id), session_id=str(data.get("sessionID") or ""))


@dataclass(frozen=True)
class DialogTurn:
    """One recorded turn of a session.

    ``payload`` is kept exactly as received. Its shape depends on ``type``
    and nothing about it may be assumed.

    Attributes:
        turn_id: Upstream turn identifier.
        type: Turn type discriminant (e.g. "text", "debug", "end").
        start_time: Upstream start timestamp, passed through verbatim.
        format: Free-form format string (carries the launch event text).
        payload: Untyped turn payload.
    """

    turn_id: str = ""
    type: str = ""
    start_time: str = ""
    format: str = ""
    payload: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DialogTurn:
        """Build a turn from an upstream JSON object.

        Args:
            data: Upstream turn object.

        Returns:
            DialogTurn instance.

        Raises:
            ValueError: If ``data`` is not a mapping.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Dialog turn must be an object, got {type(data).__name__}")
        return cls(
            turn_id=_text(data.get("turnID")),
            type=_text(data.get("type")),
            start_time=_text(data.get("startTime")),
            format=_text(data.get("format")),
            payload=data.get("payload"),
        )

    @property
    def event(self) -> str:
        """The nested payload type, or empty string."""
        if isinstance(self.payload, Mapping):
            return _text(self.payload.get("type"))
        return ""

    @property
    def inner(self) -> Mapping[str, Any]:
        """The nested ``payload.payload`` mapping, or an empty dict."""
        if isinstance(self.payload, Mapping):
            nested = self.payload.get("payload")
            if isinstance(nested, Mapping):
                return nested
        return {}


@dataclass(frozen=True)
class TelemetryStats:
    """Model and token usage parsed from an internal debug message."""

    model: str = ""
    token_multiplier: float = 0
    total: int = 0
    query: int = 0
    answer: int = 0


@dataclass
class CsvRow:
    """A fully flattened turn, one field per CSV column.

    Values are raw; escaping happens when the row is formatted.
    """

    transcriptID: str = ""
    sessionID: str = ""
    startTime: str = ""
    turnID: str = ""
    type: str = ""
    event: str = ""
    content: str = ""
    output: str = ""
    ai: bool = False
    intent_matched: str = ""
    confidence_interval: str = ""
    model: str = ""
    token_multiplier: float = 0
    token_consumption_total: int = 0
    token_consumption_query: int = 0
    token_consumption_answer: int = 0

    def values(self) -> list[Any]:
        """Return the raw field values in column order."""
        return [getattr(self, column) for column in CSV_COLUMNS]


def _text(value: Any) -> str:
    """Coerce an optional upstream scalar to a string."""
    if value is None:
        return ""
    return str(value)
