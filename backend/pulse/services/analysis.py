from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from pydantic import ValidationError

from ..core.config import get_settings
from ..schemas.report import (
    AnalysisResult,
    CommentEnrichment,
    FilterContext,
    IntentionShare,
    SentimentSummary,
    SocialPost,
    SuggestedQuery,
    TopicAnalysis,
)
from .json_repair import Fallback, parse_json_object
from .llm import GenerativeTextClient, get_text_client
from .metrics import platform_breakdown, top_by_engagement

logger = logging.getLogger(__name__)

TIME_RANGE_LABELS = {
    "1d": "today",
    "7d": "the last week",
    "3m": "the last 3 months",
    "12m": "the last year",
    "today": "today",
    "last_week": "the last week",
    "last_3_months": "the last 3 months",
    "last_year": "the last year",
}

LANGUAGE_LABELS = {
    "all": "all languages",
    "en": "English",
    "es": "Spanish",
    "pt": "Portuguese",
    "fr": "French",
    "ar": "Arabic",
}

COMMENTS_PER_PARENT = 5


@dataclass(frozen=True)
class SynthesisOutcome:
    analysis: AnalysisResult
    model: Optional[str] = None
    fallback_reason: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None


def _source_label(source: str) -> str:
    return "X" if source.lower() == "x" else source[:1].upper() + source[1:]


def describe_filters(filters: Optional[FilterContext]) -> str:
    """Natural-language rendering such as "English-language from X and Reddit over the last week"."""
    if filters is None:
        return ""

    parts: list[str] = []
    if filters.language and filters.language != "all":
        parts.append(f"{LANGUAGE_LABELS.get(filters.language, filters.language)}-language")
    if filters.sources:
        parts.append("from " + " and ".join(_source_label(s) for s in filters.sources))
    if filters.time_range:
        parts.append(f"over {TIME_RANGE_LABELS.get(filters.time_range, filters.time_range)}")
    return " ".join(parts)


def _platform_lines(posts: Sequence[SocialPost]) -> str:
    counts = platform_breakdown(posts)
    return "\n".join(f"- {p}: {n} posts" for p, n in counts.items()) or "No posts"


def _engagement_lines(posts: Sequence[SocialPost]) -> str:
    if not posts:
        return "No engagement data"
    likes = sum(p.engagement.likes for p in posts)
    comments = sum(p.engagement.comments for p in posts)
    shares = sum(p.engagement.shares for p in posts)
    views = sum(p.engagement.views or 0 for p in posts)
    return (
        f"- Total likes: {likes:,}\n"
        f"- Total comments: {comments:,}\n"
        f"- Total shares: {shares:,}\n"
        f"- Total views: {views:,}"
    )


def _comments_context(
    enrichments: Sequence[CommentEnrichment],
    posts: Sequence[SocialPost],
    max_comments: int,
) -> str:
    if not enrichments or max_comments <= 0:
        return ""

    by_id = {p.post_id: p for p in posts}
    lines: list[str] = []
    budget = max_comments
    used = 0

    for enrichment in enrichments:
        if budget <= 0:
            break
        top = sorted(enrichment.comments, key=lambda c: c.engagement.likes, reverse=True)
        top = top[: min(COMMENTS_PER_PARENT, budget)]
        if not top:
            continue

        parent = by_id.get(enrichment.parent_id)
        label = (
            f'"{parent.text[:50]}..." by {parent.author_handle}'
            if parent
            else f"Post {enrichment.parent_id}"
        )
        lines.append(f"\n[{enrichment.platform.upper()} - {label}]")
        for c in top:
            lines.append(f'  - "{c.text[:100]}..." ({c.engagement.likes} likes)')

        budget -= len(top)
        used += len(top)

    if not used:
        return ""
    return "\n".join(["", f"**Top Comments/Replies ({used} shown):**", *lines])


def build_fallback_analysis(query: str, posts: Sequence[SocialPost]) -> AnalysisResult:
    """Deterministic local analysis used whenever model synthesis is unavailable."""
    count = len(posts)
    themes = [query.split()[0] if query.split() else query, "social media discourse", "public opinion"]
    if not count:
        themes = ["no results"]

    topic_analysis = None
    if count:
        topic_analysis = [
            TopicAnalysis(
                topic=theme,
                posts_overview=f"**{theme}** is being discussed across multiple platforms with varying perspectives.",
                comments_overview="**Audience engagement** shows mixed reactions with users sharing diverse opinions.",
                post_ids=[p.post_id for p in posts[:4]],
            )
            for theme in themes
        ]

    if count:
        interpretation = (
            f'Found {count} posts discussing "{query}". The conversation spans multiple '
            "platforms with varying perspectives and engagement levels."
        )
    else:
        interpretation = (
            f'No posts found for "{query}". Try broadening your search terms or '
            "selecting different platforms."
        )

    return AnalysisResult(
        interpretation=interpretation,
        key_themes=themes,
        sentiment_breakdown=SentimentSummary(
            overall="mixed" if count else "neutral",
            summary=(
                "The conversation shows a mix of perspectives from different users."
                if count
                else "Unable to determine sentiment without posts."
            ),
        ),
        intentions_breakdown=[
            IntentionShare(name="Inform", percentage=30, engagement_rate=2.5),
            IntentionShare(name="Persuade", percentage=25, engagement_rate=3.0),
            IntentionShare(name="Entertain", percentage=20, engagement_rate=4.0),
            IntentionShare(name="Express", percentage=25, engagement_rate=2.0),
        ],
        topic_analysis=topic_analysis,
        suggested_queries=[
            SuggestedQuery(
                label="Recent news",
                description="Find the latest news and updates",
                query=f"{query} AND (news OR update OR breaking)",
            ),
            SuggestedQuery(
                label="Public reactions",
                description="See how people are responding",
                query=f"{query} AND (reaction OR response OR opinion)",
            ),
            SuggestedQuery(
                label="Controversies",
                description="Explore debates and disagreements",
                query=f"{query} AND (controversy OR debate OR criticism)",
            ),
            SuggestedQuery(
                label="Impact & effects",
                description="Understand real-world consequences",
                query=f"{query} AND (impact OR effect OR consequence)",
            ),
        ],
        follow_up_question=(
            f"Would you like to explore a specific aspect of {query}, "
            "such as recent events or public reactions?"
        ),
    )


class AnalysisService:
    """
    One summarising model call per report.

    The result is advisory: provider errors, unparseable output and payloads
    that fail validation all resolve to `build_fallback_analysis`, flagged
    through `SynthesisOutcome.fallback_reason`. Retries are the gateway's
    business, so this layer makes exactly one call.
    """

    def __init__(
        self,
        text_client: Optional[GenerativeTextClient],
        model: str,
        max_posts: int = 100,
        max_comments: int = 100,
    ) -> None:
        self.text_client = text_client
        self.model = model
        self.max_posts = max_posts
        self.max_comments = max_comments

    def build_prompt(
        self,
        query: str,
        posts: Sequence[SocialPost],
        filters: Optional[FilterContext] = None,
        comments: Sequence[CommentEnrichment] = (),
    ) -> str:
        sample = top_by_engagement(posts, self.max_posts)
        posts_context = "\n".join(
            f'[{i}] (id: {p.post_id}) {p.author_handle} ({p.platform}): "{p.text[:150]}..." '
            f"- {p.engagement.likes} likes, {p.engagement.comments} comments"
            for i, p in enumerate(sample, start=1)
        )
        filter_text = describe_filters(filters)
        focus = f"{filter_text} posts" if filter_text else "posts from selected platforms"
        based_on = f"{filter_text} posts" if filter_text else "the selected sources"

        return f"""You are an expert social media analyst. Analyze the following social media posts about "{query}" and provide insights.

**Analysis Focus:** This analysis focuses on {focus}.

**Posts Found ({len(posts)} total):**
{posts_context or "No posts found"}

**Platform Breakdown:**
{_platform_lines(posts)}

**Engagement Stats:**
{_engagement_lines(posts)}
{_comments_context(comments, posts, self.max_comments)}
Important: When writing your interpretation, mention the filter context naturally (e.g., "Based on {based_on}..."). If comment data is available, incorporate insights from the comments/replies to understand how people are reacting to the posts.

For suggestedQueries, generate 4-5 refined Boolean search queries that help users explore specific facets of their topic. Use these patterns:
- Use AND to add required context: "{query} AND policy"
- Use OR with parentheses for alternatives: "{query} AND (support OR opposition)"

For intentionsBreakdown, estimate the distribution of post intentions over exactly these categories:
- Inform: Sharing news, facts, data, or educational content
- Persuade: Advocating positions, promoting products/ideas, calls to action
- Entertain: Humor, memes, creative content, storytelling
- Express: Personal opinions, emotional responses, questions, discussion

For topicAnalysis, provide for each keyTheme a postsOverview, a commentsOverview and up to 4 relevant postIds from the posts above.

Provide a JSON response with the following structure:
{{
  "interpretation": "A 2-3 sentence analysis of what people are saying about this topic",
  "keyThemes": ["theme1", "theme2", "theme3"],
  "sentimentBreakdown": {{"overall": "positive|negative|neutral|mixed", "summary": "Brief explanation"}},
  "intentionsBreakdown": [{{"name": "Inform", "percentage": 35, "engagementRate": 3.2}}],
  "topicAnalysis": [{{"topic": "theme1", "postsOverview": "...", "commentsOverview": "...", "postIds": ["id"]}}],
  "suggestedQueries": [{{"label": "Emotional reactions", "description": "...", "query": "{query} AND (hope OR fear)"}}],
  "followUpQuestion": "A question to help the user explore this topic further"
}}

Percentages in intentionsBreakdown must sum to 100. engagementRate is on a 0-10 scale.

Respond ONLY with valid JSON, no additional text."""

    async def generate_analysis(
        self,
        query: str,
        posts: Sequence[SocialPost],
        filters: Optional[FilterContext] = None,
        comments: Sequence[CommentEnrichment] = (),
    ) -> SynthesisOutcome:
        def _fallback(reason: str) -> SynthesisOutcome:
            logger.warning(
                "AI analysis fell back to local summary: %s", reason,
                extra={"step": "ai_analysis"},
            )
            return SynthesisOutcome(build_fallback_analysis(query, posts), fallback_reason=reason)

        if self.text_client is None:
            return _fallback("no LLM client configured")

        prompt = self.build_prompt(query, posts, filters, comments)
        try:
            result = await self.text_client.generate(
                prompt, self.model, max_tokens=2048, temperature=0.3
            )
        except Exception as e:
            return _fallback(f"generation raised: {e}")

        if not result.ok:
            return _fallback(result.error or "provider error")

        parsed = parse_json_object(result.text)
        if isinstance(parsed, Fallback):
            return _fallback(parsed.reason)

        try:
            analysis = AnalysisResult.model_validate(parsed.value)
        except ValidationError as e:
            return _fallback(f"invalid analysis payload: {e.error_count()} errors")

        return SynthesisOutcome(analysis, model=result.model or self.model)


def get_analysis_service() -> AnalysisService:
    settings = get_settings()
    return AnalysisService(
        get_text_client(),
        settings.ANALYSIS_MODEL,
        max_posts=settings.REPORT_AI_MAX_POSTS,
        max_comments=settings.ANALYSIS_MAX_COMMENTS,
    )
