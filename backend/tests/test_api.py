"""
Tests for the /reports routes with the pipeline dependency overridden.
"""
from datetime import datetime
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from pulse.api import routes_reports
from pulse.main import app
from pulse.models.report_job import JobStatus
from pulse.schemas.report import (
    ReportJobOut,
    ReportMetrics,
    ReportSummaryOut,
    SentimentBreakdown,
)
from pulse.services.errors import (
    ReportConflictError,
    ReportNotFoundError,
    ReportPersistenceError,
)
from pulse.services.orchestrator import ReportStart, get_pipeline

from tests.fixtures.report_fixtures import make_input


class StubStore:
    def __init__(self):
        self.failed = []

    def mark_job_failed(self, job_id, message):
        self.failed.append((job_id, message))


class StubPipeline:
    def __init__(self, error=None, report_id=None, insight_status="created", created=True):
        self.error = error
        self.report_id = report_id or uuid4()
        self.insight_status = insight_status
        self.created = created
        self.store = StubStore()
        self.calls = []

    def start(self, search_id, user_id):
        self.calls.append(("start", search_id, user_id))
        if self.error:
            raise self.error
        return ReportStart(
            data=make_input([], user_id=user_id),
            job_id=self.report_id,
            created=self.created,
        )

    def get_report_summary(self, job_id, user_id):
        if self.error:
            raise self.error
        return ReportSummaryOut(
            report=ReportJobOut(
                id=job_id,
                status=JobStatus.COMPLETED,
                started_at=datetime(2026, 3, 1),
                completed_at=datetime(2026, 3, 1, 0, 1),
                total_results=2,
            ),
            query="climate policy",
            sources=["x"],
            metrics=ReportMetrics(
                total_mentions=2,
                total_engagement=10,
                avg_engagement=5,
                sentiment_breakdown=SentimentBreakdown(positive=1, neutral=1, total=2),
                platform_breakdown={"x": 2},
            ),
            activity_over_time=[],
        )

    async def generate_insights(self, job_id, user_id):
        if self.error:
            raise self.error
        return self.insight_status


@pytest.fixture
def client_for():
    def _make(pipeline):
        app.dependency_overrides[routes_reports.get_pipeline] = lambda: pipeline
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def dispatched(monkeypatch):
    sent = []
    monkeypatch.setattr(routes_reports, "dispatch_report_job", sent.append)
    return sent


def _headers(user_id=None):
    return {"X-User-Id": str(user_id or uuid4())}


class TestStartReport:
    def test_new_job_is_queued(self, client_for, dispatched):
        pipeline = StubPipeline()
        user_id = uuid4()
        search_id = uuid4()

        resp = client_for(pipeline).post(
            "/api/reports", json={"search_id": str(search_id)}, headers=_headers(user_id)
        )

        assert resp.status_code == 200
        assert resp.json() == {"report_id": str(pipeline.report_id)}
        assert pipeline.calls == [("start", search_id, user_id)]
        assert [s.job_id for s in dispatched] == [pipeline.report_id]

    def test_existing_report_is_not_queued(self, client_for, dispatched):
        pipeline = StubPipeline(created=False)

        resp = client_for(pipeline).post(
            "/api/reports", json={"search_id": str(uuid4())}, headers=_headers()
        )

        assert resp.json() == {"report_id": str(pipeline.report_id)}
        assert dispatched == []

    def test_queue_failure_fails_the_job(self, client_for, monkeypatch):
        def broken_dispatch(started):
            raise ConnectionError("broker unreachable")

        monkeypatch.setattr(routes_reports, "dispatch_report_job", broken_dispatch)
        pipeline = StubPipeline()

        resp = client_for(pipeline).post(
            "/api/reports", json={"search_id": str(uuid4())}, headers=_headers()
        )

        assert resp.status_code == 503
        assert [job_id for job_id, _ in pipeline.store.failed] == [pipeline.report_id]

    @pytest.mark.parametrize(
        "error, status",
        [
            (ReportNotFoundError("missing"), 404),
            (ReportConflictError("already running"), 409),
            (ReportPersistenceError("db down"), 500),
        ],
    )
    def test_error_mapping(self, client_for, dispatched, error, status):
        resp = client_for(StubPipeline(error=error)).post(
            "/api/reports", json={"search_id": str(uuid4())}, headers=_headers()
        )

        assert resp.status_code == status
        assert dispatched == []

    def test_uses_the_orchestrator_pipeline_factory(self):
        assert routes_reports.get_pipeline is get_pipeline

    def test_invalid_user_header(self, client_for):
        resp = client_for(StubPipeline()).post(
            "/api/reports", json={"search_id": str(uuid4())}, headers={"X-User-Id": "nope"}
        )

        assert resp.status_code == 400

    def test_invalid_body(self, client_for):
        resp = client_for(StubPipeline()).post(
            "/api/reports", json={"search_id": "not-a-uuid"}, headers=_headers()
        )

        assert resp.status_code == 422


class TestReadRoutes:
    def test_summary(self, client_for):
        report_id = uuid4()

        resp = client_for(StubPipeline()).get(f"/api/reports/{report_id}", headers=_headers())

        assert resp.status_code == 200
        body = resp.json()
        assert body["report"]["id"] == str(report_id)
        assert body["report"]["status"] == "COMPLETED"
        assert body["metrics"]["sentiment_breakdown"]["positive"] == 1

    def test_summary_not_found(self, client_for):
        resp = client_for(StubPipeline(error=ReportNotFoundError("x"))).get(
            f"/api/reports/{uuid4()}", headers=_headers()
        )

        assert resp.status_code == 404

    def test_generate_insights(self, client_for):
        resp = client_for(StubPipeline(insight_status="exists")).post(
            f"/api/reports/{uuid4()}/insights", headers=_headers()
        )

        assert resp.status_code == 200
        assert resp.json() == {"status": "exists"}
