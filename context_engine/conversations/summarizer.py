"""Tiered conversation history: recent verbatim, middle digest, older archived.

With K recent and M middle exchanges, the last 2K messages are kept verbatim,
the 2M before them are compressed into a key-point digest, and anything older
is archived (counted, never rendered).
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections import Counter

from context_engine.conversations.schemas import (
    ROLE_ASSISTANT,
    ROLE_USER,
    ConversationMessage,
    SummarizedHistory,
    SummarizedSegment,
)
from context_engine.llm.client import LLMClient
from context_engine.llm.optimizer import content_words, key_sentences, split_sentences, truncate_chars
from context_engine.llm.prompts import KEY_POINTS_PROMPT
from context_engine.llm.token_counter import TokenEstimator, tokens_to_chars

logger = logging.getLogger(__name__)

MESSAGES_PER_EXCHANGE = 2
MAX_TOPIC_CHARS = 100
MAX_INSIGHT_CHARS = 150
MAX_CONSTRAINT_CHARS = 120
HISTORY_HEADER = "CONVERSATION HISTORY:"

INSIGHT_PATTERNS = [
    re.compile(r"key insights?:?\s*(.+?)(?:[.!?](?:\s|$)|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\bimportant(?:ly)?[:,]?\s*(.+?)(?:[.!?](?:\s|$)|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\bnote that\s+(.+?)(?:[.!?](?:\s|$)|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\b(?:i|we) recommend\s+(.+?)(?:[.!?](?:\s|$)|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\bin summary,?\s*(.+?)(?:[.!?](?:\s|$)|$)", re.IGNORECASE | re.MULTILINE),
]

CONSTRAINT_RE = re.compile(
    r"\b(must|need to|needs to|have to|has to|only|budget|can't|cannot|without|"
    r"at most|at least|no more than|deadline|limited)\b",
    re.IGNORECASE,
)


def _exchanges(messages: list[ConversationMessage]):
    """Yield (user, assistant) pairs; either side may be None."""
    index = 0
    while index < len(messages):
        message = messages[index]
        if message.role == ROLE_USER:
            reply = messages[index + 1] if index + 1 < len(messages) else None
            if reply is not None and reply.role == ROLE_ASSISTANT:
                yield message, reply
                index += 2
                continue
            yield message, None
        else:
            yield None, message
        index += 1


def _first_sentence(text: str) -> str:
    sentences = split_sentences(text)
    return sentences[0] if sentences else ""


def _topic(content: str) -> str:
    first = _first_sentence(content).rstrip(".!?")
    if first and len(first) <= MAX_TOPIC_CHARS:
        return first
    return truncate_chars(" ".join(content.split()), MAX_TOPIC_CHARS)


def _insight(content: str) -> str:
    for pattern in INSIGHT_PATTERNS:
        match = pattern.search(content)
        if match and match.group(1).strip():
            return truncate_chars(match.group(1).strip(), MAX_INSIGHT_CHARS)
    salient = key_sentences(content, 1)
    return truncate_chars(salient[0].rstrip(".!?"), MAX_INSIGHT_CHARS) if salient else ""


class KeyPointExtractor(ABC):
    @abstractmethod
    async def extract(self, messages: list[ConversationMessage], max_points: int) -> list[str]:
        """Return up to ``max_points`` key points in chronological order."""
        ...


class HeuristicKeyPointExtractor(KeyPointExtractor):
    """Topic + insight per exchange plus stated constraints, ranked by keyword salience."""

    async def extract(self, messages: list[ConversationMessage], max_points: int) -> list[str]:
        return self.extract_points(messages, max_points)

    def extract_points(self, messages: list[ConversationMessage], max_points: int) -> list[str]:
        frequencies = Counter(w for m in messages for w in content_words(m.content))

        def salience(text: str) -> float:
            words = content_words(text)
            if not words:
                return 0.0
            return sum(frequencies[w] for w in words) / len(words) ** 0.5

        # (position, score, text)
        candidates: list[tuple[tuple[int, int], float, str]] = []
        for position, (user, assistant) in enumerate(_exchanges(messages)):
            topic = _topic(user.content) if user else ""
            insight = _insight(assistant.content) if assistant else ""
            point = f"{topic}: {insight}" if topic and insight else topic or insight
            if point:
                candidates.append(((position, 0), salience(point), point))

            if user is None:
                continue
            first = _first_sentence(user.content)
            for sentence in split_sentences(user.content):
                if sentence != first and CONSTRAINT_RE.search(sentence):
                    constraint = f"Constraint: {truncate_chars(sentence, MAX_CONSTRAINT_CHARS)}"
                    candidates.append(((position, 1), salience(sentence), constraint))
                    break

        chosen = sorted(candidates, key=lambda c: (-c[1], c[0]))[:max_points]
        return [text for _, _, text in sorted(chosen, key=lambda c: c[0])]


class LLMKeyPointExtractor(KeyPointExtractor):
    """Delegates extraction to an LLM; any failure falls back to the heuristic."""

    def __init__(
        self,
        client: LLMClient,
        model: str,
        min_points: int = 3,
        timeout: float = 10.0,
        fallback: KeyPointExtractor | None = None,
    ):
        self.client = client
        self.model = model
        self.min_points = min_points
        self.timeout = timeout
        self.fallback = fallback or HeuristicKeyPointExtractor()
        self._failure_logged = False

    @staticmethod
    def _transcript(messages: list[ConversationMessage]) -> str:
        return "\n".join(
            f"{'User' if m.role == ROLE_USER else 'Assistant'}: {truncate_chars(m.content, 500)}"
            for m in messages
        )

    @staticmethod
    def _parse(content: str) -> list[str]:
        points = []
        for line in content.splitlines():
            point = re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line).strip()
            if point:
                points.append(point)
        return points

    async def extract(self, messages: list[ConversationMessage], max_points: int) -> list[str]:
        prompt = KEY_POINTS_PROMPT.format(min_points=self.min_points, max_points=max_points)
        try:
            result = await asyncio.wait_for(
                self.client.generate(
                    [
                        {"role": "system", "content": prompt},
                        {"role": "user", "content": self._transcript(messages)},
                    ],
                    self.model,
                ),
                self.timeout,
            )
            points = self._parse(result["content"])
        except Exception as exc:
            if not self._failure_logged:
                self._failure_logged = True
                logger.warning("LLM key point extraction failed, using heuristic: %r", exc)
            points = []

        if not points:
            return await self.fallback.extract(messages, max_points)
        return [truncate_chars(p, MAX_INSIGHT_CHARS) for p in points[:max_points]]


class HistorySummarizer:
    def __init__(
        self,
        estimator: TokenEstimator,
        extractor: KeyPointExtractor | None = None,
        recent_exchanges: int = 5,
        middle_exchanges: int = 5,
        summary_max_tokens: int = 200,
        min_key_points: int = 3,
        max_key_points: int = 5,
    ):
        self.estimator = estimator
        self.extractor = extractor or HeuristicKeyPointExtractor()
        self.recent_exchanges = recent_exchanges
        self.middle_exchanges = middle_exchanges
        self.summary_max_tokens = summary_max_tokens
        self.min_key_points = min_key_points
        self.max_key_points = max_key_points

    def needs_summarization(self, message_count: int, recent_exchanges: int | None = None) -> bool:
        recent = recent_exchanges or self.recent_exchanges
        return message_count > recent * MESSAGES_PER_EXCHANGE

    async def summarize_history(
        self,
        messages: list[ConversationMessage],
        max_tokens: int | None = None,
        recent_exchanges: int | None = None,
        middle_exchanges: int | None = None,
    ) -> SummarizedHistory:
        recent = recent_exchanges or self.recent_exchanges
        middle = self.middle_exchanges if middle_exchanges is None else middle_exchanges
        total = len(messages)

        if not self.needs_summarization(total, recent):
            return SummarizedHistory(recent_messages=list(messages), total_messages=total)

        recent_start = total - recent * MESSAGES_PER_EXCHANGE
        middle_start = max(0, recent_start - middle * MESSAGES_PER_EXCHANGE)
        middle_messages = messages[middle_start:recent_start]

        middle_summary = None
        if middle_messages:
            ceiling = self.summary_max_tokens
            if max_tokens is not None:
                ceiling = min(ceiling, max_tokens)
            middle_summary = await self._summarize_segment(middle_messages, ceiling)

        return SummarizedHistory(
            recent_messages=list(messages[recent_start:]),
            middle_summary=middle_summary,
            archived_count=middle_start,
            total_messages=total,
        )

    async def _summarize_segment(
        self, messages: list[ConversationMessage], max_tokens: int
    ) -> SummarizedSegment:
        points = await self.extractor.extract(messages, self.max_key_points)
        summary = self._render_digest(len(messages), points)

        # Fit the digest under its ceiling: fewer points, then shorter points
        while self.estimator.estimate(summary) > max_tokens and len(points) > self.min_key_points:
            points = points[:-1]
            summary = self._render_digest(len(messages), points)

        if self.estimator.estimate(summary) > max_tokens and points:
            overhead = len(self._render_digest(len(messages), [""] * len(points)))
            per_point = (tokens_to_chars(max_tokens) - overhead) // len(points)
            points = [truncate_chars(p, max(per_point, 12)) for p in points]
            summary = self._render_digest(len(messages), points)

        if self.estimator.estimate(summary) > max_tokens:
            summary = truncate_chars(summary, tokens_to_chars(max_tokens))

        return SummarizedSegment(message_count=len(messages), summary=summary, key_points=points)

    @staticmethod
    def _render_digest(message_count: int, points: list[str]) -> str:
        lines = [f"[Earlier conversation - {message_count} messages summarized]"]
        if points:
            lines.append("Key points:")
            lines += [f"- {point}" for point in points]
        return "\n".join(lines)

    def format_for_context(self, summarized: SummarizedHistory) -> str:
        """Archive notice, middle digest, then recent messages, oldest first."""
        parts = []
        if summarized.archived_count > 0:
            parts.append(f"[{summarized.archived_count} earlier messages archived]")
        if summarized.middle_summary is not None:
            parts.append(summarized.middle_summary.summary)
        if summarized.recent_messages:
            recent = "\n\n".join(
                f"{'User' if m.role == ROLE_USER else 'Assistant'}: {m.content}"
                for m in summarized.recent_messages
            )
            parts.append(f"[Recent conversation]\n{recent}" if parts else recent)
        if not parts:
            return ""
        return f"{HISTORY_HEADER}\n\n" + "\n\n".join(parts)

    def get_stats(self, summarized: SummarizedHistory) -> dict:
        total = summarized.total_messages
        return {
            "total_messages": total,
            "recent_messages": summarized.recent_count,
            "summarized_messages": summarized.middle_count,
            "archived_messages": summarized.archived_count,
            "compression_ratio": summarized.recent_count / total if total else 1.0,
        }
