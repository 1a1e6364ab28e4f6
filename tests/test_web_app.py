"""Tests for the HTTP layer: auth, rate limiting, parameter handling,
error mapping and the streamed ZIP download."""

from __future__ import annotations

import io
import zipfile
from typing import Any

import pytest
from fastapi.testclient import TestClient

from transcript_export.config import ExportConfig
from transcript_export.errors import AuthError, UpstreamError
from transcript_export.orchestrator import ExportJob, ExportRequest
from transcript_export.web.app import (
    GENERIC_ERROR_MESSAGE,
    RATE_LIMITED_MESSAGE,
    create_app,
    token_matches,
)

AUTH = {"Authorization": "secret-token"}


@pytest.fixture
def made_requests() -> list[ExportRequest]:
    return []


@pytest.fixture
def client(
    export_config: ExportConfig, fake_upstream: Any, made_requests: list[ExportRequest]
) -> TestClient:
    def _factory(cfg: ExportConfig, request: ExportRequest) -> ExportJob:
        made_requests.append(request)
        return ExportJob(cfg, request, client_factory=lambda c, k: fake_upstream)

    return TestClient(create_app(export_config, job_factory=_factory))


class TestTokenMatches:
    def test_exact_match(self) -> None:
        assert token_matches("abc", "abc")

    def test_mismatch(self) -> None:
        assert not token_matches("abd", "abc")

    def test_missing_token(self) -> None:
        assert not token_matches(None, "abc")

    def test_unconfigured_token_rejects_everything(self) -> None:
        assert not token_matches("", "")
        assert not token_matches("anything", "")


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestAuth:
    def test_missing_token_is_401(self, client: TestClient, fake_upstream: Any) -> None:
        resp = client.get("/export", params={"projectId": "proj-1"})
        assert resp.status_code == 401
        assert resp.text == AuthError.public_message
        assert fake_upstream.call_count == 0

    def test_wrong_token_is_401(self, client: TestClient, fake_upstream: Any) -> None:
        resp = client.get("/export", headers={"Authorization": "nope"})
        assert resp.status_code == 401
        assert fake_upstream.call_count == 0

    def test_auth_checked_before_parameters(
        self, client: TestClient, made_requests: list[ExportRequest]
    ) -> None:
        resp = client.get("/export", params={"range": "Last century"})
        assert resp.status_code == 401
        assert made_requests == []

    def test_upstream_auth_failure_is_401(self, client: TestClient, fake_upstream: Any) -> None:
        fake_upstream.list_error = AuthError("Unauthorized access.")
        resp = client.get("/export", headers=AUTH)
        assert resp.status_code == 401


class TestValidation:
    def test_invalid_range_is_400(self, client: TestClient, fake_upstream: Any) -> None:
        resp = client.get("/export", headers=AUTH, params={"range": "Last week"})
        assert resp.status_code == 400
        assert "Invalid range value" in resp.text
        assert fake_upstream.call_count == 0

    def test_invalid_date_is_400(self, client: TestClient) -> None:
        resp = client.get("/export", headers=AUTH, params={"startDate": "March 1st"})
        assert resp.status_code == 400
        assert "start date" in resp.text

    def test_missing_credentials_is_400(
        self, export_config: ExportConfig, fake_upstream: Any
    ) -> None:
        export_config.default_api_key = ""
        app = create_app(
            export_config,
            job_factory=lambda cfg, req: ExportJob(
                cfg, req, client_factory=lambda c, k: fake_upstream
            ),
        )
        resp = TestClient(app).get("/export", headers=AUTH)
        assert resp.status_code == 400
        assert "required" in resp.text
        assert fake_upstream.call_count == 0

    def test_redaction_without_url_is_400(self, client: TestClient) -> None:
        resp = client.get("/export", headers=AUTH, params={"redact": "true"})
        assert resp.status_code == 400
        assert "REDACT_API_URL" in resp.text


class TestRequestMapping:
    def test_defaults_from_config(
        self, client: TestClient, made_requests: list[ExportRequest], fake_upstream: Any
    ) -> None:
        client.get("/export", headers=AUTH)
        request = made_requests[0]
        assert request.api_key == "VF.DM.test"
        assert request.project_id == "proj-1"
        assert request.range == "Today"
        assert request.single_file is False
        assert request.redact is False
        assert fake_upstream.list_calls[0][0] == "proj-1"

    def test_query_parameters(
        self, client: TestClient, made_requests: list[ExportRequest]
    ) -> None:
        client.get(
            "/export",
            headers=AUTH,
            params={
                "vfApiKey": "VF.DM.other",
                "projectId": "proj-2",
                "tag": "vip",
                "range": "Last 30 days",
                "startDate": "2026-03-01",
                "endDate": "2026-03-31",
                "singleFile": "true",
            },
        )
        request = made_requests[0]
        assert request.api_key == "VF.DM.other"
        assert request.project_id == "proj-2"
        assert request.tag == "vip"
        assert request.range == "Last 30 days"
        assert request.start_date == "2026-03-01"
        assert request.end_date == "2026-03-31"
        assert request.single_file is True

    def test_single_file_only_for_literal_true(
        self, client: TestClient, made_requests: list[ExportRequest]
    ) -> None:
        client.get("/export", headers=AUTH, params={"singleFile": "yes"})
        assert made_requests[0].single_file is False

    def test_redact_param_overrides_config(
        self,
        export_config: ExportConfig,
        client: TestClient,
        made_requests: list[ExportRequest],
    ) -> None:
        export_config.redaction_enabled = True
        export_config.redaction_url = "https://redact.test/scrub"
        client.get("/export", headers=AUTH, params={"redact": "false", "range": "Bogus"})
        client.get("/export", headers=AUTH, params={"range": "Bogus"})
        assert made_requests[0].redact is False
        assert made_requests[1].redact is True


class TestDownload:
    def test_streams_zip_and_cleans_up(
        self, client: TestClient, export_config: ExportConfig
    ) -> None:
        resp = client.get("/export", headers=AUTH, params={"singleFile": "true"})

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/zip"
        disposition = resp.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="proj-1_')
        assert disposition.endswith('.zip"')
        with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
            assert zf.namelist() == ["proj-1_all_transcripts.csv"]
        assert list(export_config.export_root.iterdir()) == []

    def test_per_session_archive(self, client: TestClient) -> None:
        resp = client.get("/export", headers=AUTH)
        with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
            assert sorted(zf.namelist()) == ["tr-a.csv", "tr-b.csv"]


class TestErrorMapping:
    def test_upstream_failure_is_generic_500(
        self, client: TestClient, fake_upstream: Any, export_config: ExportConfig
    ) -> None:
        fake_upstream.fetch_errors["tr-a"] = UpstreamError(
            "API request failed for dialog ID tr-a: HTTP 500", upstream_status=500
        )
        resp = client.get("/export", headers=AUTH)
        assert resp.status_code == 500
        assert resp.text == GENERIC_ERROR_MESSAGE
        assert "tr-a" not in resp.text
        assert list(export_config.export_root.iterdir()) == []

    def test_unexpected_error_is_generic_500(self, client: TestClient, fake_upstream: Any) -> None:
        fake_upstream.list_error = KeyError("boom")
        resp = client.get("/export", headers=AUTH)
        assert resp.status_code == 500
        assert resp.text == GENERIC_ERROR_MESSAGE

    def test_timeout_is_503(self, export_config: ExportConfig, fake_upstream: Any) -> None:
        export_config.job_timeout = 0.05
        export_config.inter_call_delay = 5
        app = create_app(
            export_config,
            job_factory=lambda cfg, req: ExportJob(
                cfg, req, client_factory=lambda c, k: fake_upstream
            ),
        )
        resp = TestClient(app).get("/export", headers=AUTH)
        assert resp.status_code == 503
        assert resp.text == "Response timeout"
        assert list(export_config.export_root.iterdir()) == []


class TestRateLimit:
    def test_excess_requests_rejected(
        self, export_config: ExportConfig, fake_upstream: Any
    ) -> None:
        export_config.max_requests = 2
        app = create_app(
            export_config,
            job_factory=lambda cfg, req: ExportJob(
                cfg, req, client_factory=lambda c, k: fake_upstream
            ),
        )
        client = TestClient(app)

        assert client.get("/export", headers=AUTH).status_code == 200
        assert client.get("/export").status_code == 401
        resp = client.get("/export", headers=AUTH)

        assert resp.status_code == 429
        assert resp.text == RATE_LIMITED_MESSAGE
        assert int(resp.headers["retry-after"]) >= 1
        assert len(fake_upstream.list_calls) == 1
