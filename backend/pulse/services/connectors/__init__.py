from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from .base import BaseCommentClient
from .sociavault import RedditCommentsClient, TikTokCommentsClient
from .x import XRepliesClient
from .youtube import YouTubeCommentsClient
from ..fanout import gather_settled
from ..metrics import comment_priority
from ...core.config import get_settings
from ...schemas.report import CommentEnrichment, SocialPost

logger = logging.getLogger(__name__)


def build_comment_clients() -> Dict[str, BaseCommentClient]:
    """One client per platform whose provider key is configured."""
    settings = get_settings()
    clients: List[BaseCommentClient] = []
    if settings.X_RAPIDAPI_KEY:
        clients.append(XRepliesClient(settings.X_RAPIDAPI_KEY))
    if settings.YOUTUBE_API_KEY:
        clients.append(YouTubeCommentsClient(settings.YOUTUBE_API_KEY))
    if settings.SOCIAVAULT_API_KEY:
        clients.append(RedditCommentsClient(settings.SOCIAVAULT_API_KEY))
        clients.append(TikTokCommentsClient(settings.SOCIAVAULT_API_KEY))
    return {c.platform: c for c in clients}


class CommentEnricher:
    """
    Pulls comments for the most engaging posts of every configured platform.

    - Posts are grouped by platform; each platform ranks its posts by
      likes + 2 x comments and keeps the top `max_posts_per_platform`
      (tightened by the client's own caps).
    - Fetches within a platform run concurrently, and platforms run
      concurrently with each other. A failed fetch is logged and simply
      contributes nothing.
    - Only enrichments with at least one comment are returned.
    """

    def __init__(self, clients: Optional[Dict[str, BaseCommentClient]] = None) -> None:
        self._clients = build_comment_clients() if clients is None else clients

    @property
    def platforms(self) -> List[str]:
        return list(self._clients)

    async def _fetch_platform(
        self,
        client: BaseCommentClient,
        posts: Sequence[SocialPost],
        max_posts: int,
        max_comments: int,
    ) -> List[CommentEnrichment]:
        post_cap, comment_cap = client.caps(max_posts, max_comments)
        selected = sorted(posts, key=comment_priority, reverse=True)[: max(post_cap, 0)]
        if not selected:
            return []

        logger.info(
            "Fetching comments for %d top %s posts",
            len(selected),
            client.platform,
            extra={"platform": client.platform, "step": "fetching_comments"},
        )

        async def _one(post: SocialPost) -> CommentEnrichment:
            comments = await client.get_comments(post, comment_cap)
            return CommentEnrichment(
                parent_id=post.post_id,
                platform=client.platform,
                comments=comments,
            )

        settled = await gather_settled(_one, selected)
        for failure in settled.failed:
            logger.warning(
                "Failed to fetch %s comments for %s: %s",
                client.platform,
                failure.input.post_id,
                failure.error,
                extra={"platform": client.platform, "step": "fetching_comments"},
            )
        return [e for e in settled.succeeded if e.comments]

    async def fetch_top_post_comments(
        self,
        posts: Sequence[SocialPost],
        max_posts_per_platform: int = 25,
        max_comments_per_post: int = 30,
    ) -> List[CommentEnrichment]:
        by_platform: Dict[str, List[SocialPost]] = defaultdict(list)
        for post in posts:
            if post.platform in self._clients:
                by_platform[post.platform].append(post)

        async def _platform(platform: str) -> List[CommentEnrichment]:
            return await self._fetch_platform(
                self._clients[platform],
                by_platform[platform],
                max_posts_per_platform,
                max_comments_per_post,
            )

        settled = await gather_settled(_platform, list(by_platform))
        for failure in settled.failed:
            logger.warning(
                "Comment enrichment for %s failed: %s",
                failure.input,
                failure.error,
                extra={"platform": failure.input, "step": "fetching_comments"},
            )

        results = [e for group in settled.succeeded for e in group]
        logger.info(
            "Fetched %d comments across %d posts (%s)",
            sum(len(e.comments) for e in results),
            len(results),
            ", ".join(sorted({e.platform for e in results})) or "none",
            extra={"step": "fetching_comments"},
        )
        return results


def get_comment_enricher() -> CommentEnricher:
    return CommentEnricher()
