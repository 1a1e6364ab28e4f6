"""Shared fixtures: a scripted transcript service and sample sessions."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

import pytest

from transcript_export.config import ExportConfig
from transcript_export.models import DialogTurn, SessionSummary


class FakeTranscriptClient:
    """Stands in for ``TranscriptClient`` with canned sessions and turns.

    Records every call, and the monotonic time of every dialog fetch, so
    tests can assert on call order and pacing.
    """

    def __init__(
        self,
        sessions: list[SessionSummary],
        dialogs: dict[str, list[DialogTurn]],
        *,
        list_error: Exception | None = None,
        fetch_errors: dict[str, Exception] | None = None,
    ) -> None:
        self.sessions = sessions
        self.dialogs = dialogs
        self.list_error = list_error
        self.fetch_errors = fetch_errors or {}
        self.list_calls: list[tuple[str, dict[str, Any]]] = []
        self.fetch_calls: list[str] = []
        self.fetch_times: list[float] = []
        self.entered = False
        self.exited = False

    async def __aenter__(self) -> FakeTranscriptClient:
        self.entered = True
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.exited = True

    async def list_transcripts(self, project_id: str, **filters: Any) -> list[SessionSummary]:
        self.list_calls.append((project_id, filters))
        if self.list_error is not None:
            raise self.list_error
        return list(self.sessions)

    async def fetch_dialog(self, project_id: str, transcript_id: str) -> list[DialogTurn]:
        self.fetch_calls.append(transcript_id)
        self.fetch_times.append(time.monotonic())
        if transcript_id in self.fetch_errors:
            raise self.fetch_errors[transcript_id]
        return list(self.dialogs.get(transcript_id, []))

    @property
    def call_count(self) -> int:
        return len(self.list_calls) + len(self.fetch_calls)


def make_turn(turn_type: str, payload: Any = None, **kwargs: Any) -> DialogTurn:
    """Build a DialogTurn with sensible defaults."""
    return DialogTurn(
        turn_id=kwargs.get("turn_id", f"turn-{turn_type}"),
        type=turn_type,
        start_time=kwargs.get("start_time", "2026-03-01T10:00:00.000Z"),
        format=kwargs.get("format", ""),
        payload=payload,
    )


@pytest.fixture
def two_sessions() -> tuple[list[SessionSummary], dict[str, list[DialogTurn]]]:
    """Session A with 3 turns and session B with 2 turns."""
    sessions = [
        SessionSummary(id="tr-a", session_id="sess-a"),
        SessionSummary(id="tr-b", session_id="sess-b"),
    ]
    dialogs = {
        "tr-a": [
            make_turn("launch", {"type": "launch"}, turn_id="a1", format="Session launched"),
            make_turn(
                "text",
                {"type": "text", "payload": {"message": "Hi, how can I help?"}},
                turn_id="a2",
            ),
            make_turn("end", {"type": "end"}, turn_id="a3"),
        ],
        "tr-b": [
            make_turn(
                "request",
                {
                    "type": "intent",
                    "payload": {
                        "query": "book a table",
                        "intent": {"name": "book_table"},
                        "confidence": 0.93,
                    },
                },
                turn_id="b1",
            ),
            make_turn("end", {"type": "end"}, turn_id="b2"),
        ],
    }
    return sessions, dialogs


@pytest.fixture
def fake_upstream(
    two_sessions: tuple[list[SessionSummary], dict[str, list[DialogTurn]]],
) -> FakeTranscriptClient:
    sessions, dialogs = two_sessions
    return FakeTranscriptClient(sessions, dialogs)


@pytest.fixture
def export_config(tmp_path: Path) -> ExportConfig:
    """Config pointing the export root into a temp dir, with no pacing."""
    return ExportConfig(
        api_base_url="https://transcripts.test/v2",
        default_api_key="VF.DM.test",
        default_project_id="proj-1",
        auth_token="secret-token",
        inter_call_delay=0,
        job_timeout=5,
        export_root=tmp_path / "exports",
    )
