"""Pydantic schemas for context engine requests and responses."""

from pydantic import BaseModel, Field

from context_engine.analysis.schemas import AnalysisSnapshot
from context_engine.conversations.schemas import ConversationMessage
from context_engine.llm.schemas import BuildOptions, ContextWindow


# --- Requests ---

class BuildContextRequest(BaseModel):
    analysis: AnalysisSnapshot
    history: list[ConversationMessage] = Field(default_factory=list)
    query: str = Field(min_length=1)
    max_tokens: int | None = None
    options: BuildOptions = Field(default_factory=BuildOptions)


class SimilarQueryRequest(BaseModel):
    conversation_id: str
    query: str = Field(min_length=1)
    history: list[ConversationMessage] | None = None
    threshold: float | None = Field(default=None, ge=0, le=1)


class RegisterQueryRequest(BaseModel):
    conversation_id: str
    query: str = Field(min_length=1)
    response: str
    message_id: str | None = None


# --- Responses ---

class BuildContextResponse(BaseModel):
    status: str = "success"
    data: ContextWindow
    breakdown: dict[str, int]
    messages: list[dict]
