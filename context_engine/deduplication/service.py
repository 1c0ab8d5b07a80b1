"""Query deduplication: serve a prior answer when a new question is a near-duplicate.

Similarity is lexical: a weighted combination of Jaccard similarity over the
normalized token sets and cosine similarity over term-frequency vectors. The
score is symmetric and score(q, q) == 1.0.
"""

import logging
import math
import re
from collections import Counter, OrderedDict, deque

from context_engine.conversations.schemas import (
    ROLE_ASSISTANT,
    ROLE_USER,
    CachedQuery,
    ConversationMessage,
    DeduplicationStats,
    SimilarityMatch,
)

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def normalize(text: str) -> list[str]:
    """Lowercase, strip punctuation, drop single-character tokens."""
    return [w for w in _PUNCTUATION_RE.sub(" ", text.lower()).split() if len(w) > 1]


def jaccard_similarity(tokens_a: list[str], tokens_b: list[str]) -> float:
    set_a, set_b = set(tokens_a), set(tokens_b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def cosine_similarity(tokens_a: list[str], tokens_b: list[str]) -> float:
    freq_a, freq_b = Counter(tokens_a), Counter(tokens_b)
    # Sorted vocabulary keeps the float summation order independent of argument order
    vocabulary = sorted(set(freq_a) | set(freq_b))
    dot = sum(freq_a[w] * freq_b[w] for w in vocabulary)
    magnitude_a = math.sqrt(sum(c * c for c in freq_a.values()))
    magnitude_b = math.sqrt(sum(c * c for c in freq_b.values()))
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0
    return dot / (magnitude_a * magnitude_b)


def calculate_similarity(query_a: str, query_b: str, jaccard_weight: float = 0.5) -> float:
    tokens_a, tokens_b = normalize(query_a), normalize(query_b)
    if not tokens_a and not tokens_b:
        # Nothing lexical to compare: only identical non-blank text matches
        same = query_a.strip().lower() == query_b.strip().lower()
        return 1.0 if same and query_a.strip() else 0.0
    score = (
        jaccard_weight * jaccard_similarity(tokens_a, tokens_b)
        + (1 - jaccard_weight) * cosine_similarity(tokens_a, tokens_b)
    )
    return round(min(1.0, score), 6)


class QueryDeduplicationService:
    def __init__(
        self,
        threshold: float = 0.90,
        window_size: int = 10,
        jaccard_weight: float = 0.5,
        cost_per_query: float = 0.05,
        max_conversations: int = 10_000,
    ):
        if not 0 <= jaccard_weight <= 1:
            raise ValueError("jaccard_weight must be between 0 and 1")
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        if max_conversations < 1:
            raise ValueError("max_conversations must be at least 1")
        self.threshold = threshold
        self.window_size = window_size
        self.jaccard_weight = jaccard_weight
        self.cost_per_query = cost_per_query
        self.max_conversations = max_conversations
        # conversation_id -> recent query/response pairs (oldest first), in LRU order
        self._windows: OrderedDict[str, deque[CachedQuery]] = OrderedDict()
        self._stats = DeduplicationStats()
        self._error_logged = False

    def similarity(self, query_a: str, query_b: str) -> float:
        return calculate_similarity(query_a, query_b, self.jaccard_weight)

    def find_similar(
        self,
        new_query: str,
        recent_queries: list[CachedQuery],
        threshold: float | None = None,
    ) -> SimilarityMatch | None:
        """Best match among the last W queries scoring at least the threshold."""
        threshold = self.threshold if threshold is None else threshold
        if not new_query or not new_query.strip():
            return None

        self._stats.total_queries += 1
        best: SimilarityMatch | None = None
        try:
            for candidate in recent_queries[-self.window_size:]:
                score = self.similarity(new_query, candidate.query)
                if score >= threshold and (best is None or score > best.score):
                    best = SimilarityMatch(
                        score=score,
                        matched_message_id=candidate.message_id,
                        matched_query=candidate.query,
                        cached_response=candidate.response,
                    )
        except Exception as exc:
            if not self._error_logged:
                self._error_logged = True
                logger.warning("Similarity comparison failed, treating as no match: %r", exc)
            best = None

        if best is None:
            self._stats.cache_misses += 1
        else:
            self._stats.cache_hits += 1
            self._stats.cost_savings = round(self._stats.cost_savings + self.cost_per_query, 6)
            logger.info("Query deduplication hit (%.1f%% match)", best.score * 100)
        self._stats.hit_rate = self._stats.cache_hits / self._stats.total_queries
        return best

    def find_similar_in_history(
        self,
        new_query: str,
        history: list[ConversationMessage],
        threshold: float | None = None,
    ) -> SimilarityMatch | None:
        """Compare against the last W user messages that have an assistant reply."""
        user_indexes = [i for i, m in enumerate(history) if m.role == ROLE_USER][-self.window_size:]
        pairs = [
            CachedQuery(query=history[i].content, response=history[i + 1].content, message_id=history[i].id)
            for i in user_indexes
            if i + 1 < len(history) and history[i + 1].role == ROLE_ASSISTANT
        ]
        return self.find_similar(new_query, pairs, threshold)

    def check(self, conversation_id: str, new_query: str, threshold: float | None = None) -> SimilarityMatch | None:
        window = self._windows.get(conversation_id)
        if window is not None:
            self._windows.move_to_end(conversation_id)
        return self.find_similar(new_query, list(window) if window else [], threshold)

    def register(self, conversation_id: str, query: str, response: str, message_id: str | None = None) -> None:
        """Remember a generated answer for future comparisons in this conversation."""
        if not query.strip():
            return
        window = self._windows.get(conversation_id)
        if window is None:
            window = self._windows[conversation_id] = deque(maxlen=self.window_size)
            while len(self._windows) > self.max_conversations:
                evicted, _ = self._windows.popitem(last=False)
                logger.debug("Evicted deduplication window for conversation %s", evicted)
        else:
            self._windows.move_to_end(conversation_id)
        window.append(CachedQuery(query=query, response=response, message_id=message_id))

    def tracked_conversations(self) -> int:
        return len(self._windows)

    def recent_queries(self, conversation_id: str) -> list[CachedQuery]:
        return list(self._windows.get(conversation_id, ()))

    def clear(self, conversation_id: str | None = None) -> None:
        if conversation_id is None:
            self._windows.clear()
        else:
            self._windows.pop(conversation_id, None)

    def get_stats(self) -> DeduplicationStats:
        return self._stats.model_copy()

    def reset_stats(self) -> None:
        self._stats = DeduplicationStats()
