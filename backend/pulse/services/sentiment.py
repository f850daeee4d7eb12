from __future__ import annotations

import asyncio
import logging
from typing import Hashable, Protocol, Sequence

from ..core.config import get_settings
from ..models.search import Sentiment
from .json_repair import Fallback, parse_json_array
from .llm import GenerativeTextClient, get_text_client
from .metrics import calculate_breakdown

logger = logging.getLogger(__name__)

_VALID = {s.value: s for s in Sentiment}

SLANG_GUIDANCE = """IMPORTANT - Understanding Informal Language & AAVE (African American Vernacular English):
Many social media posts use slang, AAVE, or informal expressions that may SEEM negative but are actually POSITIVE:
- "fire" / "that's fire" = excellent, amazing (POSITIVE)
- "slay" / "slaying" / "ate that" / "ate and left no crumbs" = did extremely well (POSITIVE)
- "goated" / "GOAT" = greatest of all time (POSITIVE)
- "no cap" / "deadass" / "fr fr" = genuine emphasis, "for real" (context-dependent)
- "bussin" = really good, delicious (POSITIVE)
- "hits different" = exceptionally good in a unique way (POSITIVE)
- "valid" / "that's valid" = legitimate, approved, good (POSITIVE)
- "lowkey" / "highkey" = somewhat / very much (modifiers, check context)
- "it's giving..." = it resembles/evokes something (check what follows)
- "periodt" / "period" = emphatic agreement (usually POSITIVE)
- "bet" = agreement, confirmation (POSITIVE/NEUTRAL)
- "mid" = mediocre, average (mildly NEGATIVE)
- "cap" / "that's cap" = lying, false (NEGATIVE about the claim)
- "L" / "took an L" = loss, failure (NEGATIVE)
- "W" / "that's a W" = win, success (POSITIVE)
- "ratio" = replies/likes exceed the original (context-dependent)
- "understood the assignment" = did something perfectly (POSITIVE)
- "rent free" = can't stop thinking about something (context-dependent)
- "vibe" / "vibing" = good feeling, enjoying (POSITIVE)
- "sus" = suspicious (mildly NEGATIVE)
- "snatched" / "iconic" / "legend" / "stan" = praise or support (POSITIVE)

When classifying, understand the ACTUAL intent behind slang rather than taking words literally."""


class Classifiable(Protocol):
    id: Hashable
    text: str


def validate_sentiment(value: object) -> Sentiment:
    if isinstance(value, str):
        return _VALID.get(value.strip().lower(), Sentiment.NEUTRAL)
    return Sentiment.NEUTRAL


def _all_neutral(posts: Sequence[Classifiable]) -> dict[Hashable, Sentiment]:
    return {p.id: Sentiment.NEUTRAL for p in posts}


class SentimentClassifier:
    """
    Batched sentiment classification over the generative-text client.

    `classify_all` splits posts into batches of `batch_size` and dispatches up
    to `max_concurrent` batches together; every batch is a single gateway
    call, so the gateway still decides when each one actually goes out.
    Results always contain one value per distinct post id. Any failure
    (provider error, unparseable output, missing entries) resolves to
    neutral; nothing here raises.
    """

    def __init__(
        self,
        text_client: GenerativeTextClient | None,
        model: str,
        batch_size: int = 30,
        max_concurrent: int = 3,
        text_chars: int = 300,
    ) -> None:
        self.text_client = text_client
        self.model = model
        self.batch_size = max(1, batch_size)
        self.max_concurrent = max(1, max_concurrent)
        self.text_chars = text_chars

    def build_prompt(self, posts: Sequence[Classifiable]) -> str:
        posts_text = "\n\n".join(
            f'[{i}] "{(p.text or "")[: self.text_chars]}"' for i, p in enumerate(posts, start=1)
        )
        return f"""Classify the sentiment of each social media post as "positive", "negative", or "neutral".

Guidelines:
- "positive": Expresses optimism, happiness, support, praise, enthusiasm
- "negative": Expresses criticism, anger, disappointment, concern, fear
- "neutral": Factual, informational, balanced, or ambiguous

{SLANG_GUIDANCE}

Posts to classify:
{posts_text}

Respond with ONLY a JSON array in this exact format (no other text):
[{{"id": "1", "sentiment": "positive"}}, {{"id": "2", "sentiment": "neutral"}}]

Use the number from the brackets as the id. Classify ALL {len(posts)} posts."""

    @staticmethod
    def _ordinal(entry: dict, count: int) -> int | None:
        try:
            ordinal = int(str(entry.get("id")).strip())
        except (TypeError, ValueError):
            return None
        return ordinal if 1 <= ordinal <= count else None

    def _map_entries(
        self, posts: Sequence[Classifiable], entries: list
    ) -> dict[Hashable, Sentiment]:
        result = _all_neutral(posts)
        for position, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            ordinal = self._ordinal(entry, len(posts))
            index = ordinal - 1 if ordinal is not None else position
            if index >= len(posts):
                continue
            result[posts[index].id] = validate_sentiment(entry.get("sentiment"))
        return result

    async def classify_batch(self, posts: Sequence[Classifiable]) -> dict[Hashable, Sentiment]:
        if not posts:
            return {}
        if self.text_client is None:
            return _all_neutral(posts)

        try:
            result = await self.text_client.generate(
                self.build_prompt(posts),
                self.model,
                max_tokens=4096,
                temperature=0.3,
            )
        except Exception as e:
            logger.warning(
                "Sentiment batch of %d failed: %s", len(posts), e,
                extra={"step": "sentiment_analysis"},
            )
            return _all_neutral(posts)

        if not result.ok:
            logger.warning(
                "Sentiment batch of %d got provider error: %s", len(posts), result.error,
                extra={"step": "sentiment_analysis"},
            )
            return _all_neutral(posts)

        parsed = parse_json_array(result.text)
        if isinstance(parsed, Fallback):
            logger.warning(
                "Sentiment batch of %d unparseable (%s); raw=%r",
                len(posts),
                parsed.reason,
                (result.text or "")[:300],
                extra={"step": "sentiment_analysis"},
            )
            return _all_neutral(posts)

        return self._map_entries(posts, parsed.value)

    async def classify_all(self, posts: Sequence[Classifiable]) -> dict[Hashable, Sentiment]:
        unique: dict[Hashable, Classifiable] = {}
        for p in posts:
            unique.setdefault(p.id, p)
        items = list(unique.values())
        if not items:
            return {}

        batches = [items[i : i + self.batch_size] for i in range(0, len(items), self.batch_size)]
        results: dict[Hashable, Sentiment] = {}

        for start in range(0, len(batches), self.max_concurrent):
            group = batches[start : start + self.max_concurrent]
            for batch_result in await asyncio.gather(*(self.classify_batch(b) for b in group)):
                results.update(batch_result)

        breakdown = calculate_breakdown(results)
        logger.info(
            "Classified %d posts in %d batches (pos=%d neg=%d neu=%d)",
            breakdown.total,
            len(batches),
            breakdown.positive,
            breakdown.negative,
            breakdown.neutral,
            extra={"step": "sentiment_analysis"},
        )
        return results


def get_sentiment_classifier() -> SentimentClassifier:
    settings = get_settings()
    return SentimentClassifier(
        get_text_client(),
        settings.SENTIMENT_MODEL,
        batch_size=settings.SENTIMENT_BATCH_SIZE,
        max_concurrent=settings.SENTIMENT_MAX_CONCURRENT,
        text_chars=settings.SENTIMENT_TEXT_CHARS,
    )


__all__ = [
    "SentimentClassifier",
    "calculate_breakdown",
    "get_sentiment_classifier",
    "validate_sentiment",
]
