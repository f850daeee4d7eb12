from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy import case, or_, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.db import SessionLocal
from ..models.insight import Insight
from ..models.report_job import JobStatus, ReportJob
from ..models.search import Search, SearchPost, Sentiment
from ..models.user import User
from ..schemas.report import CommentEnrichment, Engagement, FilterContext, PostRecord
from .errors import ReportConflictError, ReportNotFoundError, ReportPersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportInput:
    """Everything the pipeline needs from a Search, copied out of the session."""

    search_id: UUID
    user_id: UUID
    query: str
    sources: tuple[str, ...]
    filters: FilterContext
    posts: tuple[PostRecord, ...]
    report_id: Optional[UUID] = None

    @property
    def query_json(self) -> dict:
        return {
            "query": self.query,
            "sources": list(self.sources),
            "filters": {
                "time_filter": self.filters.time_range,
                "language": self.filters.language,
            },
        }


@dataclass(frozen=True)
class ReportWrite:
    """The single Phase-3 write: sentiments, optional insight, link and completion."""

    job_id: UUID
    search_id: UUID
    sentiments: Mapping[int, Sentiment]
    total_results: int
    insight_json: Optional[dict] = None
    insight_model: Optional[str] = None
    top_post_comments: Optional[Sequence[CommentEnrichment]] = None


@dataclass(frozen=True)
class ReportSnapshot:
    job_id: UUID
    user_id: UUID
    status: JobStatus
    created_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    total_results: int
    query: str
    sources: tuple[str, ...]
    filters: FilterContext
    posts: tuple[PostRecord, ...] = ()
    sentiments: tuple[Optional[Sentiment], ...] = ()
    insight_json: Optional[dict] = None
    insight_model: Optional[str] = None
    top_post_comments: Optional[tuple[CommentEnrichment, ...]] = None


def _post_record(row: SearchPost) -> PostRecord:
    return PostRecord(
        id=row.id,
        post_id=row.post_id,
        text=row.text or "",
        author=row.author or "",
        author_handle=row.author_handle or "",
        platform=row.platform,
        url=row.url,
        created_at=row.created_at,
        engagement=Engagement.model_validate(row.engagement or {}),
    )


def _filter_context(filters_json: Optional[dict], sources: Sequence[str]) -> FilterContext:
    filters = filters_json or {}
    return FilterContext(
        time_range=filters.get("time_filter") or filters.get("time_range"),
        language=filters.get("language"),
        sources=list(sources or []),
    )


def _comments_payload(enrichments: Sequence[CommentEnrichment]) -> list[dict]:
    return [e.model_dump(mode="json") for e in enrichments]


class ReportStore:
    """
    Datastore access for the report pipeline.

    Each method opens and closes its own session, so no connection is held
    between calls. `commit_report` is the only multi-statement write and runs
    in one transaction.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        transaction_timeout_seconds: int = 30,
        write_batch_size: int = 200,
    ) -> None:
        self._session_factory = session_factory
        self.transaction_timeout_seconds = transaction_timeout_seconds
        self.write_batch_size = max(1, write_batch_size)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_search(self, search_id: UUID, user_id: UUID) -> Optional[ReportInput]:
        with self._session_factory() as db:
            search = (
                db.query(Search)
                .options(selectinload(Search.posts))
                .filter(Search.id == search_id, Search.user_id == user_id)
                .first()
            )
            if search is None:
                return None

            sources = tuple(search.sources or ())
            return ReportInput(
                search_id=search.id,
                user_id=search.user_id,
                query=search.query_text,
                sources=sources,
                filters=_filter_context(search.filters_json, sources),
                posts=tuple(_post_record(p) for p in search.posts),
                report_id=search.report_id,
            )

    def _find_running_job(
        self,
        db: Session,
        user_id: UUID,
        query: str,
        cutoff: datetime,
    ) -> Optional[UUID]:
        jobs = (
            db.query(ReportJob)
            .filter(
                ReportJob.user_id == user_id,
                ReportJob.status == JobStatus.RUNNING,
                ReportJob.started_at >= cutoff,
            )
            .order_by(ReportJob.started_at.desc())
            .all()
        )
        for job in jobs:
            if (job.query_json or {}).get("query") == query:
                return job.id
        return None

    def get_user_email(self, user_id: UUID) -> Optional[str]:
        with self._session_factory() as db:
            user = db.get(User, user_id)
            return user.email if user else None

    def load_report(self, job_id: UUID, user_id: UUID) -> Optional[ReportSnapshot]:
        with self._session_factory() as db:
            job = (
                db.query(ReportJob)
                .filter(ReportJob.id == job_id, ReportJob.user_id == user_id)
                .first()
            )
            if job is None:
                return None

            search = (
                db.query(Search)
                .options(selectinload(Search.posts))
                .filter(Search.report_id == job.id)
                .first()
            )
            insight = (
                db.query(Insight)
                .filter(Insight.job_id == job.id)
                .order_by(Insight.created_at.desc(), Insight.id.desc())
                .first()
            )

            query_json = job.query_json or {}
            sources = tuple(query_json.get("sources") or ())
            rows = list(search.posts) if search else []
            comments = None
            if job.top_post_comments_json is not None:
                comments = tuple(
                    CommentEnrichment.model_validate(c) for c in job.top_post_comments_json
                )

            return ReportSnapshot(
                job_id=job.id,
                user_id=job.user_id,
                status=job.status,
                created_at=job.created_at,
                started_at=job.started_at,
                completed_at=job.completed_at,
                total_results=job.total_results or 0,
                query=query_json.get("query") or "",
                sources=sources,
                filters=_filter_context(query_json.get("filters"), sources),
                posts=tuple(_post_record(p) for p in rows),
                sentiments=tuple(p.sentiment for p in rows),
                insight_json=insight.output_json if insight else None,
                insight_model=insight.model if insight else None,
                top_post_comments=comments,
            )

    # ------------------------------------------------------------------
    # Job writes
    # ------------------------------------------------------------------

    def create_job(
        self,
        data: ReportInput,
        window_minutes: int,
        now: Optional[datetime] = None,
    ) -> UUID:
        """
        Create the RUNNING job for a Search unless a report is already in flight.

        The duplicate lookup and the insert run in one transaction that holds
        the Search row lock, plus a Postgres advisory lock on (user, query)
        so Searches sharing a query are serialised too. Raises
        ReportConflictError for a RUNNING job with the same user and query
        started within `window_minutes`, or when the Search got linked
        meanwhile; nothing is inserted in either case.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=window_minutes)
        try:
            with self._session_factory() as db, db.begin():
                if db.get_bind().dialect.name == "postgresql":
                    db.execute(
                        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                        {"key": f"pulse:report:{data.user_id}:{data.query}"},
                    )
                search = (
                    db.query(Search)
                    .filter(Search.id == data.search_id, Search.user_id == data.user_id)
                    .with_for_update()
                    .first()
                )
                if search is None:
                    raise ReportNotFoundError(f"search {data.search_id} not found or access denied")
                if search.report_id is not None:
                    raise ReportConflictError(
                        f"search {data.search_id} is already linked to report {search.report_id}"
                    )

                running = self._find_running_job(db, data.user_id, data.query, cutoff)
                if running is not None:
                    raise ReportConflictError(
                        f"report generation already in progress for this search (job {running})"
                    )

                job = ReportJob(
                    user_id=data.user_id,
                    query_json=data.query_json,
                    status=JobStatus.RUNNING,
                    started_at=now,
                    total_results=len(data.posts),
                )
                db.add(job)
                db.flush()
                job_id = job.id
        except SQLAlchemyError as e:
            raise ReportPersistenceError(f"failed to create report job: {e}") from e
        return job_id

    def mark_job_failed(self, job_id: UUID, message: str) -> None:
        """Terminal FAILED write; a job that already reached a terminal state is left alone."""
        with self._session_factory() as db:
            db.execute(
                update(ReportJob)
                .where(ReportJob.id == job_id, ReportJob.status == JobStatus.RUNNING)
                .values(
                    status=JobStatus.FAILED,
                    completed_at=datetime.utcnow(),
                    error_message=(message or "")[:500],
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()

    def _apply_statement_timeout(self, db: Session) -> None:
        if db.get_bind().dialect.name == "postgresql":
            ms = int(self.transaction_timeout_seconds * 1000)
            db.execute(text(f"SET LOCAL statement_timeout = {ms}"))

    def _write_sentiments(self, db: Session, sentiments: Mapping[int, Sentiment]) -> None:
        items = list(sentiments.items())
        for start in range(0, len(items), self.write_batch_size):
            chunk = items[start : start + self.write_batch_size]
            ids = [post_id for post_id, _ in chunk]
            db.execute(
                update(SearchPost)
                .where(SearchPost.id.in_(ids))
                .values(
                    sentiment=case(
                        {post_id: Sentiment(value).value for post_id, value in chunk},
                        value=SearchPost.id,
                        else_=SearchPost.sentiment,
                    )
                )
                .execution_options(synchronize_session=False)
            )

    def commit_report(self, write: ReportWrite) -> None:
        """
        Persist a finished report in one transaction.

        Raises ReportConflictError when the Search is already linked to a
        different job or the job is no longer RUNNING; any database error is
        raised as ReportPersistenceError. Either way nothing is committed.
        """
        now = datetime.utcnow()
        try:
            with self._session_factory() as db, db.begin():
                self._apply_statement_timeout(db)
                self._write_sentiments(db, write.sentiments)

                if write.insight_json is not None:
                    db.add(
                        Insight(
                            job_id=write.job_id,
                            output_json=write.insight_json,
                            model=write.insight_model or "unknown",
                            created_at=now,
                        )
                    )

                linked = db.execute(
                    update(Search)
                    .where(
                        Search.id == write.search_id,
                        or_(Search.report_id.is_(None), Search.report_id == write.job_id),
                    )
                    .values(report_id=write.job_id)
                    .execution_options(synchronize_session=False)
                )
                if linked.rowcount != 1:
                    raise ReportConflictError(
                        f"search {write.search_id} is already linked to another report"
                    )

                values: dict[str, Any] = {
                    "status": JobStatus.COMPLETED,
                    "completed_at": now,
                    "total_results": write.total_results,
                }
                if write.top_post_comments is not None:
                    values["top_post_comments_json"] = _comments_payload(write.top_post_comments)

                completed = db.execute(
                    update(ReportJob)
                    .where(ReportJob.id == write.job_id, ReportJob.status == JobStatus.RUNNING)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if completed.rowcount != 1:
                    raise ReportConflictError(f"report {write.job_id} is no longer running")
        except SQLAlchemyError as e:
            raise ReportPersistenceError(f"failed to persist report {write.job_id}: {e}") from e

        logger.info(
            "Report committed (%d sentiments, insight=%s)",
            len(write.sentiments),
            write.insight_json is not None,
            extra={"job_id": str(write.job_id), "search_id": str(write.search_id), "step": "write"},
        )

    # ------------------------------------------------------------------
    # Post-completion writes
    # ------------------------------------------------------------------

    def claim_notification(self, job_id: UUID) -> int:
        """
        Atomically claim the completion email for a job.

        Returns the affected row count: 1 for the single caller that should
        send, 0 for everyone else.
        """
        with self._session_factory() as db:
            result = db.execute(
                update(ReportJob)
                .where(ReportJob.id == job_id, ReportJob.email_sent_at.is_(None))
                .values(email_sent_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount

    def ensure_share_token(self, job_id: UUID, ttl_days: int = 30) -> Optional[str]:
        now = datetime.utcnow()
        with self._session_factory() as db:
            job = db.get(ReportJob, job_id)
            if job is None:
                return None
            if job.share_token and (
                job.share_token_expires_at is None or job.share_token_expires_at > now
            ):
                return job.share_token

            job.share_token = secrets.token_urlsafe(32)
            job.share_token_created_at = now
            job.share_token_expires_at = now + timedelta(days=ttl_days)
            db.commit()
            return job.share_token

    def save_comment_cache(self, job_id: UUID, enrichments: Sequence[CommentEnrichment]) -> None:
        with self._session_factory() as db:
            db.execute(
                update(ReportJob)
                .where(ReportJob.id == job_id)
                .values(top_post_comments_json=_comments_payload(enrichments))
                .execution_options(synchronize_session=False)
            )
            db.commit()

    def create_insight(self, job_id: UUID, output_json: dict, model: str) -> int:
        with self._session_factory() as db:
            insight = Insight(job_id=job_id, output_json=output_json, model=model)
            db.add(insight)
            db.commit()
            return insight.id
