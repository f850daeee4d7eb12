"""
Tests for notifications.py - report-ready email over SendGrid.
"""
import json
from uuid import uuid4

import httpx
import pytest

from pulse.core.logging import mask_email
from pulse.services.notifications import (
    ReportNotifier,
    build_report_ready_email,
    build_report_url,
)


class TestEmailContent:
    def test_report_url_with_token(self):
        job_id = uuid4()

        assert build_report_url("https://app.example/", job_id, "tok") == f"https://app.example/report/{job_id}?token=tok"
        assert build_report_url("https://app.example", job_id) == f"https://app.example/report/{job_id}"

    def test_query_and_insight_are_escaped(self):
        subject, body = build_report_ready_email(
            "<b>ai</b>", 12, "https://app.example/report/1", "Mostly <script>positive</script>"
        )

        assert subject == 'Your report on "<b>ai</b>" is ready'
        assert "&lt;b&gt;ai&lt;/b&gt;" in body
        assert "<script>" not in body
        assert "12 posts" in body

    def test_mask_email(self):
        assert mask_email("jane@example.com") == "j***@example.com"
        assert mask_email(None) == "***"


class TestReportNotifier:
    @pytest.mark.asyncio
    async def test_sends_via_sendgrid(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers["Authorization"]
            captured["payload"] = json.loads(request.content)
            return httpx.Response(202)

        notifier = ReportNotifier(
            api_key="sg-key",
            from_email="reports@pulse.example",
            base_url="https://app.example",
            transport=httpx.MockTransport(handler),
        )
        job_id = uuid4()

        sent = await notifier.send_report_ready_email(
            "jane@example.com", job_id, "climate policy", 3, "People like it", share_token="tok"
        )

        assert sent is True
        assert captured["auth"] == "Bearer sg-key"
        payload = captured["payload"]
        assert payload["personalizations"][0]["to"][0]["email"] == "jane@example.com"
        assert f"/report/{job_id}?token=tok" in payload["content"][0]["value"]

    @pytest.mark.asyncio
    async def test_provider_error_returns_false(self):
        notifier = ReportNotifier(
            api_key="sg-key",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        assert await notifier.send_report_ready_email("jane@example.com", uuid4(), "q", 1, "i") is False

    @pytest.mark.asyncio
    async def test_disabled_without_key(self):
        notifier = ReportNotifier(api_key="")

        assert notifier.enabled is False
        assert await notifier.send_report_ready_email("jane@example.com", uuid4(), "q", 1, "i") is False
