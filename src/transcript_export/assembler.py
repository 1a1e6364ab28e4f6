"""CSV assembly -- per-session CSV text and consolidated multi-session files.

Rows are written one physical line each: free-text cells are always
quoted through ``escape_text`` and scalar cells are quoted only when they
contain a delimiter. Lines are joined with ``\\n`` and carry no trailing
newline, so blocks can be concatenated directly.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Protocol

from transcript_export.models import CSV_COLUMNS, CsvRow, DialogTurn
from transcript_export.transcoder import build_row, escape_text, transcode_turn

CSV_HEADER = ",".join(CSV_COLUMNS)

# Columns holding free text; always quoted, empty cells stay empty.
_TEXT_COLUMNS = frozenset({"content", "output", "intent_matched", "confidence_interval"})


class TextRedactor(Protocol):
    """Anything with an async ``process_text`` (see ``RedactionClient``)."""

    async def process_text(self, text: str) -> str: ...


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _format_cell(column: str, value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return _format_number(value)
    text = str(value)
    if column in _TEXT_COLUMNS:
        return escape_text(text) if text else ""
    if any(ch in text for ch in ',"\r\n'):
        return escape_text(text)
    return text


def format_row(row: CsvRow) -> str:
    """Format a row as one CSV line with exactly 16 cells."""
    return ",".join(
        _format_cell(column, value) for column, value in zip(CSV_COLUMNS, row.values(), strict=True)
    )


async def session_to_csv(
    turns: Sequence[DialogTurn],
    session_id: str,
    transcript_id: str,
    *,
    redactor: TextRedactor | None = None,
) -> str:
    """Build the CSV text for one session.

    Args:
        turns: The session's turns, in occurrence order.
        session_id: Session identifier written into every row.
        transcript_id: Transcript identifier written into every row.
        redactor: When given, user-authored outputs are passed through
            ``redactor.process_text`` before escaping.

    Returns:
        Header line followed by one line per turn.
    """
    lines = [CSV_HEADER]
    for turn in turns:
        fragment = transcode_turn(turn)
        if redactor is not None and fragment.redact_output and fragment.output:
            fragment = replace(fragment, output=await redactor.process_text(fragment.output))
        row = build_row(turn, fragment, session_id=session_id, transcript_id=transcript_id)
        lines.append(format_row(row))
    return "\n".join(lines)


def merge_csv(blocks: Iterable[str]) -> str:
    """Concatenate session CSV blocks into one file with a single header.

    Args:
        blocks: Outputs of ``session_to_csv``, in session order.

    Returns:
        The first block as-is, followed by the data lines of every later
        block. Empty string when there are no blocks.
    """
    merged: list[str] = []
    for block in blocks:
        lines = block.split("\n")
        merged.extend(lines if not merged else lines[1:])
    return "\n".join(merged)
