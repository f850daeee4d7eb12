# backend/pulse/services/connectors/x.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from .base import BaseCommentClient
from ...core.config import get_settings
from ...schemas.report import Engagement, SocialPost

TWITTER_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


class XRepliesClient(BaseCommentClient):
    """
    Tweet replies through the RapidAPI "Old Bird" endpoint `/tweet/replies`.

    The provider's limits are stricter than the other platforms, so the
    enricher never asks for more than 10 posts or 20 replies per post.
    Replies come back in the same timeline structure as search results:

        data.search_by_raw_query.search_timeline.timeline.instructions[]
          .entries[].content.itemContent.tweet_results.result
    """

    platform = "x"
    max_posts = 10
    max_comments = 20

    def __init__(self, api_key: str, host: str | None = None, **kwargs: Any) -> None:
        super().__init__(api_key, **kwargs)
        self.host = host or get_settings().X_RAPIDAPI_HOST

    def _headers(self) -> Dict[str, str]:
        return {
            "X-RapidAPI-Key": self.api_key,
            "X-RapidAPI-Host": self.host,
        }

    async def _fetch_comments(self, target: str, limit: int) -> List[SocialPost]:
        resp = await self._get(
            f"https://{self.host}/tweet/replies",
            params={"tweet_id": target, "count": limit},
            headers=self._headers(),
        )
        resp.raise_for_status()
        return self._parse_timeline(resp.json())

    def _parse_timeline(self, data: Dict[str, Any]) -> List[SocialPost]:
        instructions = (
            ((((data or {}).get("data") or {}).get("search_by_raw_query") or {})
             .get("search_timeline") or {})
            .get("timeline", {})
            .get("instructions")
            or []
        )

        posts: List[SocialPost] = []
        for instruction in instructions:
            if instruction.get("type") != "TimelineAddEntries":
                continue
            for entry in instruction.get("entries") or []:
                content = entry.get("content") or {}
                if content.get("cursorType"):
                    continue
                tweet = ((content.get("itemContent") or {}).get("tweet_results") or {}).get("result")
                post = self._normalize_tweet(tweet) if tweet else None
                if post:
                    posts.append(post)
        return posts

    @staticmethod
    def _parse_date(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.strptime(value, TWITTER_DATE_FORMAT)
        except ValueError:
            return None

    def _normalize_tweet(self, tweet: Dict[str, Any]) -> Optional[SocialPost]:
        tweet_id = tweet.get("rest_id") or tweet.get("id")
        legacy = tweet.get("legacy")
        if not tweet_id or not legacy:
            return None

        user = ((tweet.get("core") or {}).get("user_results") or {}).get("result") or {}
        user_core = user.get("core") or {}
        user_legacy = user.get("legacy") or {}
        name = user_core.get("name") or user_legacy.get("name") or "Unknown"
        screen_name = user_core.get("screen_name") or user_legacy.get("screen_name") or "unknown"

        views_raw = (tweet.get("views") or {}).get("count") or (legacy.get("views") or {}).get("count")
        try:
            views = int(views_raw) if views_raw is not None else 0
        except (TypeError, ValueError):
            views = 0

        return SocialPost(
            post_id=str(tweet_id),
            text=legacy.get("full_text") or "",
            author=name,
            author_handle=f"@{screen_name}",
            platform=self.platform,
            url=f"https://twitter.com/{screen_name}/status/{tweet_id}",
            created_at=self._parse_date(legacy.get("created_at")),
            engagement=Engagement(
                likes=legacy.get("favorite_count") or 0,
                comments=legacy.get("reply_count") or 0,
                shares=(legacy.get("retweet_count") or 0) + (legacy.get("quote_count") or 0),
                views=views,
            ),
        )
