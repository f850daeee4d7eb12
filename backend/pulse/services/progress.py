from __future__ import annotations

import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union
from uuid import UUID

logger = logging.getLogger(__name__)


class ProgressStep(str, enum.Enum):
    INITIALIZING = "initializing"
    FETCHING_DATA = "fetching_data"
    SENTIMENT_ANALYSIS = "sentiment_analysis"
    FETCHING_COMMENTS = "fetching_comments"
    CALCULATING_METRICS = "calculating_metrics"
    AI_ANALYSIS = "ai_analysis"
    COMPLETE = "complete"
    ERROR = "error"


class EventType(str, enum.Enum):
    CONNECTED = "connected"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    type: EventType
    step: ProgressStep
    message: str
    report_id: Optional[UUID] = None

    def as_dict(self) -> dict:
        data = {"type": self.type.value, "step": self.step.value, "message": self.message}
        if self.report_id is not None:
            data["reportId"] = str(self.report_id)
        return data


ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class ProgressEmitter:
    """
    Delivers pipeline step markers to an optional callback, in call order.

    Callbacks may be sync or async. A callback that raises is logged and
    otherwise ignored; reporting progress never breaks the pipeline.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback
        self.emitted: list[ProgressEvent] = []

    async def emit(self, event: ProgressEvent) -> None:
        self.emitted.append(event)
        if self._callback is None:
            return
        try:
            result = self._callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Progress callback failed for step %s", event.step.value,
                extra={"step": event.step.value},
            )

    async def connected(self, message: str = "Connected") -> None:
        await self.emit(ProgressEvent(EventType.CONNECTED, ProgressStep.INITIALIZING, message))

    async def step(self, step: ProgressStep, message: str) -> None:
        await self.emit(ProgressEvent(EventType.PROGRESS, step, message))

    async def complete(self, report_id: UUID, message: str = "Report ready") -> None:
        await self.emit(ProgressEvent(EventType.COMPLETE, ProgressStep.COMPLETE, message, report_id))

    async def error(self, message: str) -> None:
        await self.emit(ProgressEvent(EventType.ERROR, ProgressStep.ERROR, message))
