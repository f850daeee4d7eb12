"""
Tests for metrics.py - engagement ranking and report-level aggregates.
"""
from datetime import datetime

from pulse.models.search import Sentiment
from pulse.services.metrics import (
    activity_over_time,
    aggregate_metrics,
    comment_priority,
    engagement_score,
    top_by_engagement,
)

from tests.fixtures.report_fixtures import make_post


class TestRanking:
    def test_engagement_score_includes_views(self):
        post = make_post(1, likes=3, comments=2, shares=1, views=100)
        assert engagement_score(post) == 106

    def test_comment_priority_weights_comments(self):
        assert comment_priority(make_post(1, likes=3, comments=2, views=1000)) == 7

    def test_top_by_engagement(self):
        posts = [make_post(1, likes=1), make_post(2, likes=9), make_post(3, likes=5)]

        assert [p.id for p in top_by_engagement(posts, 2)] == [2, 3]
        assert [p.id for p in top_by_engagement(posts, 0)] == [1, 2, 3]
        assert [p.id for p in top_by_engagement(posts, 10)] == [1, 2, 3]


class TestAggregates:
    def test_aggregate_metrics(self):
        posts = [
            make_post(1, platform="x", likes=10, comments=2),
            make_post(2, platform="x", likes=1),
            make_post(3, platform="reddit", shares=4),
        ]

        metrics = aggregate_metrics(posts, [Sentiment.POSITIVE, None, Sentiment.NEGATIVE])

        assert metrics.total_mentions == 3
        assert metrics.total_engagement == 17
        assert metrics.avg_engagement == 6
        assert metrics.platform_breakdown == {"x": 2, "reddit": 1}
        breakdown = metrics.sentiment_breakdown
        assert (breakdown.positive, breakdown.negative, breakdown.neutral, breakdown.total) == (1, 1, 1, 3)

    def test_aggregate_metrics_empty(self):
        metrics = aggregate_metrics([], [])

        assert metrics.total_mentions == 0
        assert metrics.avg_engagement == 0

    def test_activity_over_time_groups_by_day(self):
        posts = [
            make_post(1, likes=2, views=500, created_at=datetime(2026, 3, 2, 9)),
            make_post(2, likes=3, created_at=datetime(2026, 3, 1, 23)),
            make_post(3, comments=1, created_at=datetime(2026, 3, 2, 18)),
        ]

        points = activity_over_time(posts)

        assert [(p.date, p.count, p.engagement) for p in points] == [
            ("2026-03-01", 1, 3),
            ("2026-03-02", 2, 3),
        ]
