"""Turn transcoder -- flatten heterogeneous dialogue turns into CSV rows.

Each upstream turn carries a payload whose shape depends on the turn
``type`` (and, for some types, on the nested ``payload.type``). This
module maps every turn onto the same three free-text cells (``content``,
``output``, ``ai``) through a dispatch table with one handler per turn
type, then fills the remaining scalar columns from the turn itself and
from the telemetry embedded in internal debug messages.

Adding a turn type is one decorated function::

    @register_turn_type("gallery")
    def _gallery(turn: DialogTurn) -> TurnFragment:
        return TurnFragment(output=_text(_outer(turn).get("title")))

Typical usage::

    from transcript_export.transcoder import build_row, transcode_turn

    fragment = transcode_turn(turn)
    row = build_row(turn, fragment, session_id="s-1", transcript_id="abc")
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from transcript_export.models import CsvRow, DialogTurn, TelemetryStats

# Prefix of the debug messages the runtime emits for AI response steps.
TELEMETRY_MARKER = "__AI "

_MODEL_PATTERN = re.compile(r"Model: `([^`]+)`")
_MULTIPLIER_PATTERN = re.compile(r"Token Multiplier: `(\d+(?:\.\d+)?)x`")
_CONSUMPTION_PATTERN = re.compile(
    r"Token Consumption: `\{total: (\d+), query: (\d+), answer: (\d+)\}`"
)


@dataclass(frozen=True)
class TurnFragment:
    """The type-dependent cells of a row, before escaping.

    Attributes:
        content: Payload trace for the turn. Empty means "use the fallback".
        output: Human-readable text or media reference produced by the turn.
        ai: Whether the nested payload is flagged as AI generated.
        redact_output: True when ``output`` holds user-authored text that
            must go through redaction when it is enabled.
    """

    content: str = ""
    output: str = ""
    ai: bool = False
    redact_output: bool = False


TurnHandler = Callable[[DialogTurn], TurnFragment]

TURN_HANDLERS: dict[str, TurnHandler] = {}


def register_turn_type(*turn_types: str) -> Callable[[TurnHandler], TurnHandler]:
    """Register a handler for one or more turn types.

    Args:
        *turn_types: Values of ``DialogTurn.type`` the handler applies to.

    Returns:
        Decorator that stores the handler in ``TURN_HANDLERS`` unchanged.
    """

    def decorator(handler: TurnHandler) -> TurnHandler:
        for turn_type in turn_types:
            TURN_HANDLERS[turn_type] = handler
        return handler

    return decorator


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def escape_text(text: str) -> str:
    """Quote a free-text value as a single-line CSV cell.

    Wraps the text in double quotes, doubles any internal double quote and
    replaces line breaks with single spaces, so every row stays on one
    physical line. Line breaks cannot be recovered by ``unescape_text``.

    Args:
        text: Raw cell value.

    Returns:
        Escaped cell, always quoted.
    """
    flattened = text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
    return '"' + flattened.replace('"', '""') + '"'


def unescape_text(cell: str) -> str:
    """Reverse ``escape_text`` for a single cell.

    Unquoted cells are returned unchanged.
    """
    if len(cell) >= 2 and cell.startswith('"') and cell.endswith('"'):
        return cell[1:-1].replace('""', '"')
    return cell


def serialize_payload(payload: Any) -> str:
    """Serialize a payload as compact JSON, or empty string for None."""
    if payload is None:
        return ""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _outer(turn: DialogTurn) -> Mapping[str, Any]:
    """The turn's top-level payload as a mapping, or an empty dict."""
    return turn.payload if isinstance(turn.payload, Mapping) else {}


# ---------------------------------------------------------------------------
# Per-type handlers
# ---------------------------------------------------------------------------


@register_turn_type("launch")
def _launch(turn: DialogTurn) -> TurnFragment:
    return TurnFragment(content=turn.format)


@register_turn_type("choice", "request")
def _intent_request(turn: DialogTurn) -> TurnFragment:
    # Button and free-form requests only carry user text when resolved to an intent.
    if turn.event != "intent":
        return TurnFragment()
    return TurnFragment(output=_text(turn.inner.get("query")), redact_output=True)


@register_turn_type("knowledgeBase")
def _knowledge_base(turn: DialogTurn) -> TurnFragment:
    query = turn.inner.get("query")
    if not isinstance(query, Mapping):
        return TurnFragment()
    return TurnFragment(output=_text(query.get("message")), redact_output=True)


@register_turn_type("cardV2", "block", "path", "flow", "text")
def _message(turn: DialogTurn) -> TurnFragment:
    return TurnFragment(output=_text(turn.inner.get("message")), redact_output=True)


@register_turn_type("speak")
def _speak(turn: DialogTurn) -> TurnFragment:
    outer = _outer(turn)
    if turn.event == "audio":
        return TurnFragment(output=_text(outer.get("src")))
    if turn.event == "message":
        return TurnFragment(output=_text(outer.get("message")), redact_output=True)
    return TurnFragment()


@register_turn_type("visual")
def _visual(turn: DialogTurn) -> TurnFragment:
    return TurnFragment(output=_text(_outer(turn).get("image")))


@register_turn_type("carousel", "debug", "no-reply")
def _nested_payload(turn: DialogTurn) -> TurnFragment:
    return TurnFragment(content=serialize_payload(_outer(turn).get("payload")))


@register_turn_type("end")
def _end(turn: DialogTurn) -> TurnFragment:
    return TurnFragment(content="end", output="end")


def _unrecognized(turn: DialogTurn) -> TurnFragment:
    return TurnFragment(content=serialize_payload(turn.payload))


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def transcode_turn(turn: DialogTurn) -> TurnFragment:
    """Map one turn onto its ``content``/``output``/``ai`` cells.

    Dispatches on ``turn.type`` through ``TURN_HANDLERS``; unknown types
    fall through to a handler that records the full payload. Whatever the
    handler returns, an empty ``content`` is replaced by the serialized
    full payload so no turn is exported without a trace of its data.

    Args:
        turn: The turn to transcode.

    Returns:
        TurnFragment with raw, unescaped values.
    """
    handler = TURN_HANDLERS.get(turn.type, _unrecognized)
    fragment = handler(turn)
    if not fragment.content:
        fragment = replace(fragment, content=serialize_payload(turn.payload))
    return replace(fragment, ai=bool(turn.inner.get("ai")))


def parse_telemetry(message: str) -> TelemetryStats:
    """Extract model and token usage from an internal AI debug message.

    Input contract: the runtime formats these messages as free text that
    starts with ``"__AI "`` and contains, in any order::

        Model: `<model id>`
        Token Multiplier: `<decimal>x`
        Token Consumption: `{total: <int>, query: <int>, answer: <int>}`

    This is not a public protocol. Messages without the marker yield an
    empty result, and each field missing from a marked message keeps its
    empty/zero default.

    Args:
        message: The debug message text.

    Returns:
        TelemetryStats with whatever fields matched.
    """
    if not message.startswith(TELEMETRY_MARKER):
        return TelemetryStats()

    model_match = _MODEL_PATTERN.search(message)
    multiplier_match = _MULTIPLIER_PATTERN.search(message)
    consumption_match = _CONSUMPTION_PATTERN.search(message)

    total = query = answer = 0
    if consumption_match:
        total, query, answer = (int(g) for g in consumption_match.groups())

    return TelemetryStats(
        model=model_match.group(1) if model_match else "",
        token_multiplier=float(multiplier_match.group(1)) if multiplier_match else 0,
        total=total,
        query=query,
        answer=answer,
    )


def _telemetry_for(turn: DialogTurn) -> TelemetryStats:
    if turn.type != "debug":
        return TelemetryStats()
    message = turn.inner.get("message")
    if not isinstance(message, str):
        return TelemetryStats()
    return parse_telemetry(message)


def build_row(
    turn: DialogTurn,
    fragment: TurnFragment,
    *,
    session_id: str,
    transcript_id: str,
) -> CsvRow:
    """Combine a transcoded fragment with the turn's scalar attributes.

    Args:
        turn: Source turn.
        fragment: Result of ``transcode_turn`` (possibly with a redacted
            ``output``).
        session_id: Session identifier of the owning transcript.
        transcript_id: Identifier of the owning transcript.

    Returns:
        CsvRow with all 16 fields populated or defaulted.
    """
    inner = turn.inner
    intent = inner.get("intent")
    intent_name = intent.get("name") if isinstance(intent, Mapping) else None
    # A zero or missing confidence is written as an empty cell.
    confidence = inner.get("confidence") or None
    stats = _telemetry_for(turn)

    return CsvRow(
        transcriptID=transcript_id,
        sessionID=session_id,
        startTime=turn.start_time,
        turnID=turn.turn_id,
        type=turn.type,
        event=turn.event,
        content=fragment.content,
        output=fragment.output,
        ai=fragment.ai,
        intent_matched=_text(intent_name),
        confidence_interval=_text(confidence),
        model=stats.model,
        token_multiplier=stats.token_multiplier,
        token_consumption_total=stats.total,
        token_consumption_query=stats.query,
        token_consumption_answer=stats.answer,
    )
