from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence
from uuid import UUID

from ..core.celery_app import celery_app
from ..core.config import Settings, get_settings
from ..models.search import Sentiment
from ..schemas.report import (
    CommentEnrichment,
    ReportJobOut,
    ReportMetrics,
    ReportSummaryOut,
)
from .analysis import AnalysisService, SynthesisOutcome, get_analysis_service
from .connectors import CommentEnricher, get_comment_enricher
from .errors import ReportError, ReportNotFoundError
from .metrics import activity_over_time, aggregate_metrics, top_by_engagement
from .notifications import ReportNotifier
from .progress import ProgressCallback, ProgressEmitter, ProgressStep
from .report_store import ReportInput, ReportStore, ReportWrite
from .sentiment import SentimentClassifier, get_sentiment_classifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportOutput:
    """Result of the processing phase; `comments` is None when enrichment did not run."""

    sentiments: Mapping[int, Sentiment]
    metrics: ReportMetrics
    synthesis: Optional[SynthesisOutcome] = None
    comments: Optional[tuple[CommentEnrichment, ...]] = None

    @property
    def top_insight(self) -> Optional[str]:
        return self.synthesis.analysis.interpretation if self.synthesis else None


@dataclass(frozen=True)
class ReportStart:
    """Outcome of Phase 1; `created` is False when the Search already had a report."""

    data: ReportInput
    job_id: UUID
    created: bool


class ReportPipeline:
    """
    Turns a saved Search into a completed report job.

    Read fast, process slow, write fast:

    1. read: load the Search and its posts into a `ReportInput`, release the
       session, create the RUNNING job (`start`);
    2. process: sentiment, comment enrichment, metrics and AI synthesis with
       no database session held, producing a `ReportOutput`;
    3. write: one bounded transaction via `ReportStore.commit_report`.

    Sentiment, enrichment and synthesis degrade to defaults on failure. Only
    ReportNotFoundError, ReportConflictError and ReportPersistenceError
    escape; once a job exists any escaping error marks it FAILED first.

    `run` does all of it in-process. The API calls `start` and hands the job
    to the Celery worker, which continues with `run_job`.
    """

    def __init__(
        self,
        store: Optional[ReportStore] = None,
        classifier: Optional[SentimentClassifier] = None,
        enricher: Optional[CommentEnricher] = None,
        analyst: Optional[AnalysisService] = None,
        notifier: Optional[ReportNotifier] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        if store is None:
            store = ReportStore(
                transaction_timeout_seconds=self.settings.REPORT_TRANSACTION_TIMEOUT_SECONDS,
                write_batch_size=self.settings.SENTIMENT_WRITE_BATCH_SIZE,
            )
        self.store = store
        self.classifier = classifier if classifier is not None else get_sentiment_classifier()
        self.enricher = enricher if enricher is not None else get_comment_enricher()
        self.analyst = analyst if analyst is not None else get_analysis_service()
        self.notifier = notifier if notifier is not None else ReportNotifier()

    # ------------------------------------------------------------------
    # Phase 1
    # ------------------------------------------------------------------

    def load_input(self, search_id: UUID, user_id: UUID) -> ReportInput:
        data = self.store.find_search(search_id, user_id)
        if data is None:
            raise ReportNotFoundError(f"search {search_id} not found or access denied")
        return data

    def start(self, search_id: UUID, user_id: UUID) -> ReportStart:
        """
        Phase 1: load the Search and create its RUNNING job.

        A Search that already has a report short-circuits with `created=False`.
        The duplicate-run check and the job insert happen together in
        `ReportStore.create_job`.
        """
        data = self.load_input(search_id, user_id)
        if data.report_id is not None:
            return ReportStart(data=data, job_id=data.report_id, created=False)
        job_id = self.store.create_job(data, self.settings.REPORT_DUPLICATE_WINDOW_MINUTES)
        return ReportStart(data=data, job_id=job_id, created=True)

    # ------------------------------------------------------------------
    # Phase 2
    # ------------------------------------------------------------------

    async def classify(self, data: ReportInput) -> dict[int, Sentiment]:
        """Classify the most engaging posts; every other post of the Search is neutral."""
        if not data.posts:
            return {}
        candidates = top_by_engagement(data.posts, self.settings.SENTIMENT_MAX_POSTS)
        classified = await self.classifier.classify_all(candidates)
        return {p.id: classified.get(p.id, Sentiment.NEUTRAL) for p in data.posts}

    async def fetch_comments(
        self, posts: Sequence, job_id: Optional[UUID] = None
    ) -> Optional[tuple[CommentEnrichment, ...]]:
        try:
            enrichments = await self.enricher.fetch_top_post_comments(
                posts,
                self.settings.REPORT_AI_MAX_COMMENT_POSTS,
                self.settings.REPORT_AI_MAX_COMMENTS_PER_POST,
            )
        except Exception:
            logger.exception(
                "Comment enrichment failed",
                extra={"job_id": str(job_id) if job_id else None, "step": "fetching_comments"},
            )
            return None
        return tuple(enrichments)

    async def process(
        self,
        data: ReportInput,
        progress: ProgressEmitter,
        job_id: Optional[UUID] = None,
    ) -> ReportOutput:
        await progress.step(
            ProgressStep.SENTIMENT_ANALYSIS, f"Analyzing sentiment of {len(data.posts)} posts"
        )
        sentiments = await self.classify(data)

        analysis_posts = top_by_engagement(data.posts, self.settings.REPORT_AI_MAX_POSTS)
        deferred = self.settings.REPORT_DEFER_INSIGHTS

        comments: Optional[tuple[CommentEnrichment, ...]] = None
        if deferred:
            await progress.step(ProgressStep.FETCHING_COMMENTS, "Comment enrichment deferred")
        else:
            await progress.step(ProgressStep.FETCHING_COMMENTS, "Fetching comments on top posts")
            comments = await self.fetch_comments(analysis_posts, job_id)

        await progress.step(ProgressStep.CALCULATING_METRICS, "Calculating metrics")
        metrics = aggregate_metrics(data.posts, [sentiments.get(p.id) for p in data.posts])

        synthesis: Optional[SynthesisOutcome] = None
        if deferred:
            await progress.step(ProgressStep.AI_ANALYSIS, "AI analysis deferred")
        else:
            await progress.step(ProgressStep.AI_ANALYSIS, "Generating AI analysis")
            synthesis = await self.analyst.generate_analysis(
                data.query, analysis_posts, data.filters, comments or ()
            )

        return ReportOutput(
            sentiments=sentiments,
            metrics=metrics,
            synthesis=synthesis,
            comments=comments,
        )

    # ------------------------------------------------------------------
    # Phase 3
    # ------------------------------------------------------------------

    def write(self, job_id: UUID, data: ReportInput, output: ReportOutput) -> None:
        insight_json = None
        insight_model = None
        if output.synthesis is not None and not output.synthesis.is_fallback:
            insight_json = output.synthesis.analysis.model_dump(mode="json", by_alias=True)
            insight_model = output.synthesis.model

        self.store.commit_report(
            ReportWrite(
                job_id=job_id,
                search_id=data.search_id,
                sentiments=output.sentiments,
                total_results=len(data.posts),
                insight_json=insight_json,
                insight_model=insight_model,
                top_post_comments=output.comments,
            )
        )

    async def notify(self, job_id: UUID, data: ReportInput, output: ReportOutput) -> bool:
        """Send the completion email at most once per job; returns whether this call sent it."""
        if not self.notifier.enabled:
            return False
        address = self.store.get_user_email(data.user_id)
        if not address:
            return False

        if self.store.claim_notification(job_id) != 1:
            logger.info(
                "Report email already claimed; skipping",
                extra={"job_id": str(job_id), "step": "notify"},
            )
            return False

        token = self.store.ensure_share_token(job_id, self.settings.SHARE_TOKEN_TTL_DAYS)
        return await self.notifier.send_report_ready_email(
            address,
            job_id,
            data.query,
            len(data.posts),
            output.top_insight or f"{len(data.posts)} posts analyzed.",
            share_token=token,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute(self, job_id: UUID, data: ReportInput, progress: ProgressEmitter) -> UUID:
        """Phases 2 and 3 for a job created by `start`, then the completion email."""
        log_extra = {
            "job_id": str(job_id),
            "search_id": str(data.search_id),
            "user_id": str(data.user_id),
        }
        logger.info("Report job started", extra={**log_extra, "step": "start"})
        await progress.step(ProgressStep.FETCHING_DATA, f"Loaded {len(data.posts)} posts")

        try:
            output = await self.process(data, progress, job_id)
            self.write(job_id, data, output)
        except Exception as e:
            logger.exception("Report job failed", extra={**log_extra, "step": "failed"})
            try:
                self.store.mark_job_failed(job_id, str(e) or type(e).__name__)
            except Exception:
                logger.exception("Could not mark report job failed", extra={**log_extra, "step": "failed"})
            await progress.error(str(e) or "Report generation failed")
            raise

        logger.info("Report job completed", extra={**log_extra, "step": "completed"})

        try:
            await self.notify(job_id, data, output)
        except Exception:
            logger.exception("Report notification failed", extra={**log_extra, "step": "notify"})

        await progress.complete(job_id)
        return job_id

    async def run(
        self,
        search_id: UUID,
        user_id: UUID,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UUID:
        progress = ProgressEmitter(on_progress)

        await progress.step(ProgressStep.INITIALIZING, "Starting report generation")
        try:
            started = self.start(search_id, user_id)
        except ReportError as e:
            await progress.error(str(e))
            raise

        if not started.created:
            logger.info(
                "Search already has report %s; returning it", started.job_id,
                extra={
                    "search_id": str(search_id),
                    "user_id": str(user_id),
                    "job_id": str(started.job_id),
                    "step": "fast_path",
                },
            )
            await progress.complete(started.job_id, "Report already exists")
            return started.job_id

        return await self.execute(started.job_id, started.data, progress)

    run_pipeline_with_progress = run

    async def run_job(
        self,
        job_id: UUID,
        search_id: UUID,
        user_id: UUID,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UUID:
        """Run a job created by `start` in another process (the Celery worker)."""
        progress = ProgressEmitter(on_progress)
        await progress.step(ProgressStep.INITIALIZING, "Starting report generation")
        try:
            data = self.load_input(search_id, user_id)
        except ReportNotFoundError as e:
            self.store.mark_job_failed(job_id, str(e))
            await progress.error(str(e))
            raise
        return await self.execute(job_id, data, progress)

    async def generate_insights(self, job_id: UUID, user_id: UUID) -> str:
        """
        Produce the insight of an existing report that has none yet.

        Returns "exists" when one is already stored, "created" after storing a
        new one and "unavailable" when synthesis fell back (nothing stored).
        """
        # Served from the API event loop; datastore calls go to a worker thread
        report = await asyncio.to_thread(self.store.load_report, job_id, user_id)
        if report is None:
            raise ReportNotFoundError(f"report {job_id} not found or access denied")
        if report.insight_json is not None:
            return "exists"

        posts = top_by_engagement(report.posts, self.settings.REPORT_AI_MAX_POSTS)
        comments = report.top_post_comments
        if not comments:
            comments = await self.fetch_comments(posts, job_id)
            if comments:
                await asyncio.to_thread(self.store.save_comment_cache, job_id, comments)

        outcome = await self.analyst.generate_analysis(
            report.query, posts, report.filters, comments or ()
        )
        if outcome.is_fallback:
            return "unavailable"

        await asyncio.to_thread(
            self.store.create_insight,
            job_id,
            outcome.analysis.model_dump(mode="json", by_alias=True),
            outcome.model or self.analyst.model,
        )
        logger.info("Insight created", extra={"job_id": str(job_id), "step": "insights"})
        return "created"

    def get_report_summary(self, job_id: UUID, user_id: UUID) -> ReportSummaryOut:
        report = self.store.load_report(job_id, user_id)
        if report is None:
            raise ReportNotFoundError(f"report {job_id} not found or access denied")

        return ReportSummaryOut(
            report=ReportJobOut(
                id=report.job_id,
                status=report.status,
                created_at=report.created_at,
                started_at=report.started_at,
                completed_at=report.completed_at,
                total_results=report.total_results,
            ),
            query=report.query,
            sources=list(report.sources),
            metrics=aggregate_metrics(report.posts, report.sentiments),
            activity_over_time=activity_over_time(report.posts),
            analysis=report.insight_json,
            top_post_comments=list(report.top_post_comments or ()),
        )


def get_pipeline() -> ReportPipeline:
    return ReportPipeline()


def dispatch_report_job(started: ReportStart) -> None:
    celery_app.send_task(
        "pulse.services.orchestrator.run_report_job",
        args=[str(started.job_id), str(started.data.search_id), str(started.data.user_id)],
        queue="reports",
    )


@celery_app.task(name="pulse.services.orchestrator.run_report_job", bind=True, queue="reports")
def run_report_job(self, job_id: str, search_id: str, user_id: str) -> str:
    # Celery workers are synchronous; each task gets its own event loop
    asyncio.run(get_pipeline().run_job(UUID(job_id), UUID(search_id), UUID(user_id)))
    return job_id
