from __future__ import annotations

from collections import Counter
from typing import Iterable, Mapping, Sequence, TypeVar

from ..models.search import Sentiment
from ..schemas.report import (
    ActivityDataPoint,
    ReportMetrics,
    SentimentBreakdown,
    SocialPost,
)

P = TypeVar("P", bound=SocialPost)


def engagement_score(post: SocialPost) -> int:
    e = post.engagement
    return e.likes + e.comments + e.shares + (e.views or 0)


def comment_priority(post: SocialPost) -> int:
    """Ranking used to pick posts worth fetching comments for."""
    return post.engagement.likes + 2 * post.engagement.comments


def top_by_engagement(posts: Sequence[P], limit: int) -> list[P]:
    """Top `limit` posts by total engagement; a non-positive limit keeps everything."""
    if limit <= 0 or len(posts) <= limit:
        return list(posts)
    return sorted(posts, key=engagement_score, reverse=True)[:limit]


def calculate_breakdown(sentiments: Mapping[object, Sentiment]) -> SentimentBreakdown:
    counts = Counter(sentiments.values())
    return SentimentBreakdown(
        positive=counts[Sentiment.POSITIVE],
        negative=counts[Sentiment.NEGATIVE],
        neutral=counts[Sentiment.NEUTRAL],
        total=len(sentiments),
    )


def platform_breakdown(posts: Iterable[SocialPost]) -> dict[str, int]:
    return dict(Counter(p.platform for p in posts))


def aggregate_metrics(
    posts: Sequence[SocialPost],
    sentiments: Sequence[Sentiment | None],
) -> ReportMetrics:
    """
    Report-level numbers. `sentiments` is aligned with `posts`; a missing
    sentiment counts as neutral.
    """
    total_engagement = sum(engagement_score(p) for p in posts)
    counts = Counter(s or Sentiment.NEUTRAL for s in sentiments)

    return ReportMetrics(
        total_mentions=len(posts),
        total_engagement=total_engagement,
        avg_engagement=round(total_engagement / len(posts)) if posts else 0,
        sentiment_breakdown=SentimentBreakdown(
            positive=counts[Sentiment.POSITIVE],
            negative=counts[Sentiment.NEGATIVE],
            neutral=counts[Sentiment.NEUTRAL],
            total=len(posts),
        ),
        platform_breakdown=platform_breakdown(posts),
    )


def activity_over_time(posts: Iterable[SocialPost]) -> list[ActivityDataPoint]:
    """Posts and engagement grouped per day (views excluded), oldest first."""
    per_day: dict[str, list[int]] = {}
    for post in posts:
        if post.created_at is None:
            continue
        day = post.created_at.date().isoformat()
        bucket = per_day.setdefault(day, [0, 0])
        bucket[0] += 1
        bucket[1] += post.engagement.likes + post.engagement.comments + post.engagement.shares

    return [
        ActivityDataPoint(date=day, count=count, engagement=engagement)
        for day, (count, engagement) in sorted(per_day.items())
    ]
