"""Pydantic schemas for token budgets and assembled context windows."""

from pydantic import BaseModel, Field, model_validator

SECTION_SYSTEM_PROMPT = "system_prompt"
SECTION_ANALYSIS_CONTEXT = "analysis_context"
SECTION_HISTORY = "history"
SECTION_CURRENT_QUERY = "current_query"
SECTIONS = (SECTION_SYSTEM_PROMPT, SECTION_ANALYSIS_CONTEXT, SECTION_HISTORY, SECTION_CURRENT_QUERY)


class BudgetPartition(BaseModel):
    """Fractions of the total budget given to each section."""

    system_prompt: float = Field(default=0.025, ge=0, le=1)
    analysis_context: float = Field(default=0.25, ge=0, le=1)
    history: float = Field(default=0.1875, ge=0, le=1)
    current_query: float = Field(default=0.0625, ge=0, le=1)
    response_reserve: float = Field(default=0.375, ge=0, le=1)

    @model_validator(mode="after")
    def _check_sum(self) -> "BudgetPartition":
        total = (
            self.system_prompt + self.analysis_context + self.history
            + self.current_query + self.response_reserve
        )
        if total > 1.0 + 1e-9:
            raise ValueError(f"budget ratios sum to {total:.4f}, must not exceed 1.0")
        return self


class TokenBudget(BaseModel):
    total: int = Field(gt=0)
    system_prompt: int = Field(ge=0)
    analysis_context: int = Field(ge=0)
    history: int = Field(ge=0)
    current_query: int = Field(ge=0)
    response_reserve: int = Field(ge=0)

    @property
    def available(self) -> int:
        """Tokens the rendered sections may use together."""
        return self.total - self.response_reserve


class BuildOptions(BaseModel):
    use_cache: bool = True
    optimize: bool = True
    partition: BudgetPartition | None = None
    recent_exchanges: int | None = Field(default=None, ge=1)
    middle_exchanges: int | None = Field(default=None, ge=0)
    top_n: int | None = Field(default=None, ge=1)


class ContextWindow(BaseModel):
    system_prompt: str
    analysis_context: str
    history_text: str
    current_query: str
    total_tokens: int
    budget: TokenBudget
    section_tokens: dict[str, int] = Field(default_factory=dict)
    cache_hits: dict[str, bool] = Field(default_factory=dict)
    compression_steps: list[str] = Field(default_factory=list)
    history_stats: dict[str, float | bool] = Field(default_factory=dict)

    def to_messages(self) -> list[dict]:
        """Render as the chat message list an LLM client consumes."""
        system = "\n\n".join(
            part for part in (self.system_prompt, self.analysis_context, self.history_text) if part
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": self.current_query},
        ]


class OptimizationResult(BaseModel):
    original: str
    optimized: str
    original_tokens: int
    optimized_tokens: int
    compression_ratio: float
