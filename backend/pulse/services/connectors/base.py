from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..caching import cached_get, comment_cache_key
from ...core.config import get_settings
from ...schemas.report import SocialPost

logger = logging.getLogger(__name__)


def from_epoch(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


class BaseCommentClient(ABC):
    """
    Fetches the comments/replies of one platform's posts.

    Subclasses implement `_fetch_comments(target, limit)`; this base handles
    the per-platform caps, Redis caching of results and HTTP plumbing.
    `platform` is the tag posts carry for this client.
    """

    platform: str
    # Provider-specific caps; None means the caller's caps apply unchanged
    max_posts: Optional[int] = None
    max_comments: Optional[int] = None

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        use_cache: bool = True,
        cache_ttl: int | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key
        self.timeout = timeout if timeout is not None else settings.PLATFORM_TIMEOUT_SECONDS
        self._transport = transport
        self.use_cache = use_cache
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.COMMENT_CACHE_TTL_SECONDS

    def caps(self, max_posts: int, max_comments: int) -> tuple[int, int]:
        posts = min(max_posts, self.max_posts) if self.max_posts is not None else max_posts
        comments = (
            min(max_comments, self.max_comments) if self.max_comments is not None else max_comments
        )
        return posts, comments

    def target(self, post: SocialPost) -> Optional[str]:
        """What the provider is queried with; the external post id by default."""
        return post.post_id or None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _get(
        self,
        url: str,
        params: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> httpx.Response:
        async with self._client() as client:
            return await client.get(url, params=params, headers=headers)

    @abstractmethod
    async def _fetch_comments(self, target: str, limit: int) -> List[SocialPost]:
        ...

    async def get_comments(self, post: SocialPost, limit: int) -> List[SocialPost]:
        target = self.target(post)
        if not target or limit <= 0:
            return []

        key = comment_cache_key(self.platform, target, limit)
        if self.use_cache:
            cached = await cached_get(key)
            if cached is not None:
                return [SocialPost.model_validate(c) for c in cached]

        comments = (await self._fetch_comments(target, limit))[:limit]

        if self.use_cache:
            await cached_get(
                key,
                set_value=[c.model_dump(mode="json") for c in comments],
                ttl=self.cache_ttl,
            )
        return comments
