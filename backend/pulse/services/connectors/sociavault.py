from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base import BaseCommentClient, from_epoch
from ...schemas.report import Engagement, SocialPost

SOCIAVAULT_BASE = "https://api.sociavault.com/v1/scrape"


class _SociaVaultClient(BaseCommentClient):
    """SociaVault scrapers are addressed by the post URL rather than its id."""

    endpoint: str

    def target(self, post: SocialPost) -> Optional[str]:
        return post.url or None

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key, "Content-Type": "application/json"}

    async def _fetch_json(self, target: str) -> Dict[str, Any]:
        resp = await self._get(
            f"{SOCIAVAULT_BASE}{self.endpoint}",
            params={"url": target},
            headers=self._headers(),
        )
        resp.raise_for_status()
        return resp.json() or {}


class RedditCommentsClient(_SociaVaultClient):
    platform = "reddit"
    endpoint = "/reddit/post/comments"

    async def _fetch_comments(self, target: str, limit: int) -> List[SocialPost]:
        data = await self._fetch_json(target)
        raw = (data.get("data") or {}).get("comments")
        if not raw:
            return []
        # Provider returns either a list or an index-keyed object
        comments = raw if isinstance(raw, list) else list(raw.values())

        out: List[SocialPost] = []
        for c in comments[:limit]:
            author = c.get("author") or "[deleted]"
            permalink = c.get("permalink")
            out.append(
                SocialPost(
                    post_id=str(c.get("id") or ""),
                    text=c.get("body") or "",
                    author=author,
                    author_handle=f"u/{author}",
                    platform=self.platform,
                    url=f"https://www.reddit.com{permalink}" if permalink else target,
                    created_at=from_epoch(c.get("created") or c.get("created_utc")),
                    engagement=Engagement(likes=c.get("score") or 0),
                )
            )
        return out


class TikTokCommentsClient(_SociaVaultClient):
    platform = "tiktok"
    endpoint = "/tiktok/comments"

    async def _fetch_comments(self, target: str, limit: int) -> List[SocialPost]:
        data = await self._fetch_json(target)
        comments = data.get("comments") or []

        out: List[SocialPost] = []
        for c in comments[:limit]:
            user = c.get("user") or {}
            handle = user.get("unique_id") or user.get("uniqueId") or "unknown"
            out.append(
                SocialPost(
                    post_id=str(c.get("cid") or ""),
                    text=c.get("text") or "",
                    author=user.get("nickname") or handle,
                    author_handle=f"@{handle}",
                    platform=self.platform,
                    url=target,
                    created_at=from_epoch(c.get("create_time")),
                    engagement=Engagement(
                        likes=c.get("digg_count") or 0,
                        comments=c.get("reply_comment_total") or 0,
                    ),
                )
            )
        return out
