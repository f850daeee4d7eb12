from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .base import BaseCommentClient
from ...schemas.report import Engagement, SocialPost

logger = logging.getLogger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"


class YouTubeCommentsClient(BaseCommentClient):
    """Top-level comments of a video via the Data API v3 `commentThreads` endpoint."""

    platform = "youtube"

    async def _fetch_comments(self, target: str, limit: int) -> List[SocialPost]:
        resp = await self._get(
            f"{YOUTUBE_API_BASE}/commentThreads",
            params={
                "part": "snippet",
                "videoId": target,
                "maxResults": min(limit, 100),
                "order": "relevance",
                "textFormat": "plainText",
                "key": self.api_key,
            },
        )

        # Videos with comments turned off answer 403 commentsDisabled
        if resp.status_code == 403 and "commentsdisabled" in resp.text.lower():
            logger.info(
                "Comments disabled for video %s", target, extra={"platform": self.platform}
            )
            return []
        resp.raise_for_status()

        items = resp.json().get("items") or []
        return [self._normalize(item, target) for item in items]

    @staticmethod
    def _parse_date(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None

    def _normalize(self, thread: Dict[str, Any], video_id: str) -> SocialPost:
        thread_snippet = thread.get("snippet") or {}
        comment = thread_snippet.get("topLevelComment") or {}
        snippet = comment.get("snippet") or {}
        channel = (snippet.get("authorChannelId") or {}).get("value")

        return SocialPost(
            post_id=comment.get("id") or thread.get("id") or "",
            text=snippet.get("textDisplay") or snippet.get("textOriginal") or "",
            author=snippet.get("authorDisplayName") or "",
            author_handle=f"@{channel}" if channel else "@unknown",
            platform=self.platform,
            url=f"https://www.youtube.com/watch?v={video_id}&lc={comment.get('id', '')}",
            created_at=self._parse_date(snippet.get("publishedAt")),
            engagement=Engagement(
                likes=snippet.get("likeCount") or 0,
                comments=thread_snippet.get("totalReplyCount") or 0,
                shares=0,
                views=0,
            ),
        )
