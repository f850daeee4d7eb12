# backend/pulse/schemas/report.py
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..models.report_job import JobStatus
from ..models.search import Sentiment

INTENT_CATEGORIES = ("Inform", "Persuade", "Entertain", "Express")
OverallSentiment = Literal["positive", "negative", "neutral", "mixed"]


# ---------------------------------------------------------------------------
# In-memory pipeline values (immutable)
# ---------------------------------------------------------------------------

class Engagement(BaseModel):
    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("likes", "comments", "shares", mode="before")
    @classmethod
    def _none_to_zero(cls, v):
        return 0 if v is None else v


class SocialPost(BaseModel):
    """A post as it looks on its platform. Enrichment comments use this shape too."""

    post_id: str
    text: str = ""
    author: str = ""
    author_handle: str = ""
    platform: str
    url: str | None = None
    created_at: datetime | None = None
    engagement: Engagement = Field(default_factory=Engagement)

    model_config = ConfigDict(frozen=True)

    @field_validator("platform", mode="before")
    @classmethod
    def _lower_platform(cls, v):
        return v.lower() if isinstance(v, str) else v


class PostRecord(SocialPost):
    """A stored post of a Search; `id` is the internal row id used for sentiment writes."""

    id: int


class CommentEnrichment(BaseModel):
    parent_id: str
    platform: str
    comments: list[SocialPost] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class FilterContext(BaseModel):
    time_range: str | None = None
    language: str | None = None
    sources: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class SentimentBreakdown(BaseModel):
    positive: int = 0
    negative: int = 0
    neutral: int = 0
    total: int = 0


# ---------------------------------------------------------------------------
# Structured AI analysis (stored as Insight.output_json, camelCase keys)
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SentimentSummary(_CamelModel):
    overall: OverallSentiment
    summary: str = ""

    @field_validator("overall", mode="before")
    @classmethod
    def _normalise_overall(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class IntentionShare(_CamelModel):
    name: Literal["Inform", "Persuade", "Entertain", "Express"]
    percentage: float
    engagement_rate: float = 0.0

    @field_validator("name", mode="before")
    @classmethod
    def _normalise_name(cls, v):
        return v.strip().capitalize() if isinstance(v, str) else v


class TopicAnalysis(_CamelModel):
    topic: str
    posts_overview: str = ""
    comments_overview: str = ""
    post_ids: list[str] = Field(default_factory=list)


class SuggestedQuery(_CamelModel):
    label: str
    description: str = ""
    query: str


class AnalysisResult(_CamelModel):
    interpretation: str
    key_themes: list[str] = Field(default_factory=list)
    sentiment_breakdown: SentimentSummary
    intentions_breakdown: list[IntentionShare] = Field(default_factory=list)
    topic_analysis: list[TopicAnalysis] | None = None
    suggested_queries: list[SuggestedQuery] = Field(default_factory=list)
    follow_up_question: str


# ---------------------------------------------------------------------------
# API schemas
# ---------------------------------------------------------------------------

class ReportStartRequest(BaseModel):
    search_id: UUID


class ReportStartOut(BaseModel):
    report_id: UUID


class InsightsOut(BaseModel):
    status: Literal["created", "exists", "unavailable"]


class ReportMetrics(BaseModel):
    total_mentions: int
    total_engagement: int
    avg_engagement: int
    sentiment_breakdown: SentimentBreakdown
    platform_breakdown: dict[str, int]


class ActivityDataPoint(BaseModel):
    date: str
    count: int
    engagement: int


class ReportJobOut(BaseModel):
    id: UUID
    status: JobStatus
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_results: int = 0

    model_config = ConfigDict(from_attributes=True)


class ReportSummaryOut(BaseModel):
    report: ReportJobOut
    query: str
    sources: list[str]
    metrics: ReportMetrics
    activity_over_time: list[ActivityDataPoint]
    analysis: dict | None = None
    top_post_comments: list[CommentEnrichment] = Field(default_factory=list)


__all__ = [
    "INTENT_CATEGORIES",
    "Sentiment",
    "Engagement",
    "SocialPost",
    "PostRecord",
    "CommentEnrichment",
    "FilterContext",
    "SentimentBreakdown",
    "AnalysisResult",
    "ReportStartRequest",
    "ReportStartOut",
    "InsightsOut",
    "ReportMetrics",
    "ActivityDataPoint",
    "ReportJobOut",
    "ReportSummaryOut",
]
