"""
Shared test doubles for the report pipeline tests.

Contains post factories, a scripted generative-text client, an in-memory
report store and fakes for the enricher and notifier.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Union
from uuid import UUID, uuid4

from pulse.models.report_job import JobStatus
from pulse.models.search import Sentiment
from pulse.schemas.report import (
    CommentEnrichment,
    Engagement,
    FilterContext,
    PostRecord,
    SocialPost,
)
from pulse.services.errors import ReportConflictError, ReportNotFoundError
from pulse.services.llm import GenerationResult
from pulse.services.report_store import ReportInput, ReportSnapshot, ReportWrite


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

def make_post(
    id: int,
    text: str = "",
    platform: str = "x",
    likes: int = 0,
    comments: int = 0,
    shares: int = 0,
    views: Optional[int] = None,
    url: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> PostRecord:
    return PostRecord(
        id=id,
        post_id=f"{platform}-{id}",
        text=text or f"post {id}",
        author=f"Author {id}",
        author_handle=f"@author{id}",
        platform=platform,
        url=url or f"https://example.com/{platform}/{id}",
        created_at=created_at or datetime(2026, 3, 1, 12, 0, 0),
        engagement=Engagement(likes=likes, comments=comments, shares=shares, views=views),
    )


def make_comment(post_id: str, platform: str = "x", likes: int = 0, text: str = "") -> SocialPost:
    return SocialPost(
        post_id=post_id,
        text=text or f"comment {post_id}",
        author="Commenter",
        author_handle="@commenter",
        platform=platform,
        engagement=Engagement(likes=likes),
    )


def make_input(
    posts: Sequence[PostRecord],
    query: str = "climate policy",
    report_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
) -> ReportInput:
    return ReportInput(
        search_id=uuid4(),
        user_id=user_id or uuid4(),
        query=query,
        sources=("x", "youtube"),
        filters=FilterContext(time_range="7d", language="en", sources=["x", "youtube"]),
        posts=tuple(posts),
        report_id=report_id,
    )


# ---------------------------------------------------------------------------
# Generative text
# ---------------------------------------------------------------------------

Responder = Union[GenerationResult, Callable[[str], GenerationResult]]


class ScriptedTextClient:
    """Returns scripted GenerationResults in order; the last one repeats."""

    def __init__(self, *responses: Responder, delay: bool = False) -> None:
        self._responses = list(responses) or [GenerationResult(ok=False, error="no script")]
        self.prompts: List[str] = []
        self.active = 0
        self.max_active = 0
        self._delay = delay

    async def generate(self, prompt, model, *, max_tokens=2048, temperature=0.3):
        self.prompts.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self._delay:
                await asyncio.sleep(0)
            index = min(len(self.prompts) - 1, len(self._responses) - 1)
            response = self._responses[index]
            return response(prompt) if callable(response) else response
        finally:
            self.active -= 1


def ok(text: str, model: str = "test-model") -> GenerationResult:
    return GenerationResult(ok=True, text=text, model=model)


def failed(error: str = "HTTP 500: boom") -> GenerationResult:
    return GenerationResult(ok=False, error=error)


# ---------------------------------------------------------------------------
# Pipeline collaborators
# ---------------------------------------------------------------------------

@dataclass
class FakeJob:
    id: UUID
    user_id: UUID
    query_json: dict
    status: JobStatus = JobStatus.RUNNING
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    email_sent_at: Optional[datetime] = None
    share_token: Optional[str] = None
    total_results: int = 0
    top_post_comments: Optional[list] = None


class InMemoryReportStore:
    """Mirrors ReportStore semantics closely enough for pipeline tests."""

    def __init__(self, searches: Sequence[ReportInput] = (), emails: Optional[Dict[UUID, str]] = None):
        self.searches: Dict[UUID, ReportInput] = {s.search_id: s for s in searches}
        self.links: Dict[UUID, UUID] = {
            s.search_id: s.report_id for s in searches if s.report_id is not None
        }
        self.jobs: Dict[UUID, FakeJob] = {}
        self.emails = emails or {}
        self.sentiments: Dict[int, Sentiment] = {}
        self.insights: Dict[UUID, List[tuple]] = {}
        self.commits: List[ReportWrite] = []
        self.commit_error: Optional[Exception] = None

    def find_search(self, search_id, user_id):
        s = self.searches.get(search_id)
        if s is None or s.user_id != user_id:
            return None
        return ReportInput(
            search_id=s.search_id,
            user_id=s.user_id,
            query=s.query,
            sources=s.sources,
            filters=s.filters,
            posts=s.posts,
            report_id=self.links.get(search_id),
        )

    def add_job(self, user_id, query_json, total_results=0):
        """Insert a RUNNING job directly, bypassing the duplicate-run guard."""
        job = FakeJob(id=uuid4(), user_id=user_id, query_json=query_json, total_results=total_results)
        self.jobs[job.id] = job
        return job.id

    def create_job(self, data: ReportInput, window_minutes, now=None):
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=window_minutes)
        search = self.searches.get(data.search_id)
        if search is None or search.user_id != data.user_id:
            raise ReportNotFoundError("search not found")
        if data.search_id in self.links:
            raise ReportConflictError("search already linked")
        for job in self.jobs.values():
            if (
                job.user_id == data.user_id
                and job.status is JobStatus.RUNNING
                and job.started_at >= cutoff
                and job.query_json.get("query") == data.query
            ):
                raise ReportConflictError(f"report generation already in progress (job {job.id})")
        job_id = self.add_job(data.user_id, data.query_json, total_results=len(data.posts))
        self.jobs[job_id].started_at = now
        return job_id

    def commit_report(self, write: ReportWrite):
        if self.commit_error is not None:
            raise self.commit_error
        linked = self.links.get(write.search_id)
        if linked is not None and linked != write.job_id:
            raise ReportConflictError("search already linked")
        self.commits.append(write)
        self.sentiments.update(write.sentiments)
        if write.insight_json is not None:
            self.insights.setdefault(write.job_id, []).append((write.insight_json, write.insight_model))
        self.links[write.search_id] = write.job_id
        job = self.jobs[write.job_id]
        job.status = JobStatus.COMPLETED
        job.completed_at = datetime.utcnow()
        if write.top_post_comments is not None:
            job.top_post_comments = [c.model_dump(mode="json") for c in write.top_post_comments]

    def mark_job_failed(self, job_id, message):
        job = self.jobs[job_id]
        if job.status is JobStatus.RUNNING:
            job.status = JobStatus.FAILED
            job.completed_at = datetime.utcnow()
            job.error_message = message[:500]

    def claim_notification(self, job_id):
        job = self.jobs[job_id]
        if job.email_sent_at is not None:
            return 0
        job.email_sent_at = datetime.utcnow()
        return 1

    def get_user_email(self, user_id):
        return self.emails.get(user_id)

    def ensure_share_token(self, job_id, ttl_days=30):
        job = self.jobs[job_id]
        if job.share_token is None:
            job.share_token = f"token-{job_id.hex[:8]}"
        return job.share_token

    def save_comment_cache(self, job_id, enrichments):
        self.jobs[job_id].top_post_comments = [e.model_dump(mode="json") for e in enrichments]

    def create_insight(self, job_id, output_json, model):
        self.insights.setdefault(job_id, []).append((output_json, model))
        return len(self.insights[job_id])

    def load_report(self, job_id, user_id):
        job = self.jobs.get(job_id)
        if job is None or job.user_id != user_id:
            return None
        search = next(
            (self.searches[sid] for sid, jid in self.links.items() if jid == job_id), None
        )
        posts = search.posts if search else ()
        insights = self.insights.get(job_id) or []
        comments = None
        if job.top_post_comments is not None:
            comments = tuple(CommentEnrichment.model_validate(c) for c in job.top_post_comments)
        return ReportSnapshot(
            job_id=job.id,
            user_id=job.user_id,
            status=job.status,
            created_at=job.started_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            total_results=job.total_results,
            query=job.query_json.get("query", ""),
            sources=tuple(job.query_json.get("sources") or ()),
            filters=search.filters if search else FilterContext(),
            posts=tuple(posts),
            sentiments=tuple(self.sentiments.get(p.id) for p in posts),
            insight_json=insights[-1][0] if insights else None,
            insight_model=insights[-1][1] if insights else None,
            top_post_comments=comments,
        )


class FakeEnricher:
    def __init__(self, result: Sequence[CommentEnrichment] = (), error: Optional[Exception] = None):
        self.result = list(result)
        self.error = error
        self.calls: List[tuple] = []

    async def fetch_top_post_comments(self, posts, max_posts_per_platform=25, max_comments_per_post=30):
        self.calls.append((list(posts), max_posts_per_platform, max_comments_per_post))
        if self.error is not None:
            raise self.error
        return list(self.result)


class FakeNotifier:
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.sent: List[dict] = []

    async def send_report_ready_email(self, address, job_id, query, post_count, top_insight, share_token=None):
        self.sent.append(
            {
                "address": address,
                "job_id": job_id,
                "query": query,
                "post_count": post_count,
                "top_insight": top_insight,
                "share_token": share_token,
            }
        )
        return True
