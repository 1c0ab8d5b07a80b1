"""Pydantic schemas for conversation messages, history tiers and deduplication."""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationMessage(BaseModel):
    id: str | None = None
    role: Literal["user", "assistant"]
    content: str
    created_at: datetime = Field(default_factory=_utcnow)
    token_count: int | None = Field(default=None, ge=0)
    confidence: float | None = Field(default=None, ge=0, le=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def edited(self, content: str) -> "ConversationMessage":
        """Return a copy with new content; the only sanctioned mutation."""
        return self.model_copy(
            update={
                "content": content,
                "token_count": None,
                "metadata": {**self.metadata, "edited": True},
            }
        )


# --- History tiers ---

class SummarizedSegment(BaseModel):
    message_count: int
    summary: str
    key_points: list[str]


class SummarizedHistory(BaseModel):
    recent_messages: list[ConversationMessage]
    middle_summary: SummarizedSegment | None = None
    archived_count: int = 0
    total_messages: int = 0

    @property
    def recent_count(self) -> int:
        return len(self.recent_messages)

    @property
    def middle_count(self) -> int:
        return self.middle_summary.message_count if self.middle_summary else 0


# --- Deduplication ---

class CachedQuery(BaseModel):
    query: str
    response: str
    message_id: str | None = None


class SimilarityMatch(BaseModel):
    score: float = Field(ge=0, le=1)
    matched_message_id: str | None = None
    matched_query: str
    cached_response: str


class DeduplicationStats(BaseModel):
    total_queries: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    hit_rate: float = 0.0
    cost_savings: float = 0.0
