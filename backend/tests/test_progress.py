"""
Tests for progress.py - ordered step events and callback isolation.
"""
from uuid import uuid4

import pytest

from pulse.services.progress import EventType, ProgressEmitter, ProgressStep


class TestProgressEmitter:
    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self):
        seen = []

        async def async_cb(event):
            seen.append(("async", event.step))

        emitter = ProgressEmitter(async_cb)
        await emitter.step(ProgressStep.SENTIMENT_ANALYSIS, "Analyzing")

        sync_emitter = ProgressEmitter(lambda e: seen.append(("sync", e.step)))
        await sync_emitter.step(ProgressStep.AI_ANALYSIS, "Synthesizing")

        assert seen == [
            ("async", ProgressStep.SENTIMENT_ANALYSIS),
            ("sync", ProgressStep.AI_ANALYSIS),
        ]

    @pytest.mark.asyncio
    async def test_failing_callback_is_isolated(self):
        def broken(event):
            raise RuntimeError("client went away")

        emitter = ProgressEmitter(broken)
        await emitter.step(ProgressStep.INITIALIZING, "Starting")
        await emitter.error("boom")

        assert [e.type for e in emitter.emitted] == [EventType.PROGRESS, EventType.ERROR]

    @pytest.mark.asyncio
    async def test_complete_event_carries_report_id(self):
        report_id = uuid4()
        emitter = ProgressEmitter()

        await emitter.complete(report_id)

        event = emitter.emitted[0]
        assert event.step is ProgressStep.COMPLETE
        assert event.as_dict() == {
            "type": "complete",
            "step": "complete",
            "message": "Report ready",
            "reportId": str(report_id),
        }
