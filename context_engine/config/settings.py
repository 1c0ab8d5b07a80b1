"""Context engine settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Token budget
    CONTEXT_MAX_TOKENS: int = 8000
    SYSTEM_PROMPT_RATIO: float = 0.025
    ANALYSIS_CONTEXT_RATIO: float = 0.25
    HISTORY_RATIO: float = 0.1875
    CURRENT_QUERY_RATIO: float = 0.0625
    RESPONSE_RESERVE_RATIO: float = 0.375

    # History tiers
    RECENT_EXCHANGES: int = 5
    MIDDLE_EXCHANGES: int = 5
    MIDDLE_SUMMARY_MAX_TOKENS: int = 200
    KEY_POINTS_MIN: int = 3
    KEY_POINTS_MAX: int = 5
    STRICT_HISTORY: bool = True
    KEY_POINT_EXTRACTOR: str = "heuristic"

    # Analysis reduction and truncation
    ANALYSIS_TOP_N: int = 5
    ANALYSIS_REDUCED_TOP_N: int = 3
    DESCRIPTION_MAX_CHARS: int = 80
    TRUNCATE_HEAD_FRACTION: float = 0.4
    TRUNCATE_TAIL_FRACTION: float = 0.4

    # Query deduplication
    SIMILARITY_THRESHOLD: float = 0.90
    SIMILARITY_JACCARD_WEIGHT: float = 0.5
    DEDUP_WINDOW_SIZE: int = 10
    DEDUP_COST_PER_QUERY: float = 0.05
    DEDUP_MAX_CONVERSATIONS: int = 10000

    # Cache
    ANALYSIS_CACHE_TTL_SECONDS: int = 3600
    CACHE_TIMEOUT_MS: int = 50
    REDIS_URL: str = ""

    # Tokenizer
    USE_TOKENIZER: bool = True
    TOKENIZER_ENCODING: str = "cl100k_base"
    TOKENIZER_INIT_TIMEOUT_SECONDS: float = 5.0

    # LLM (only used by the LLM-backed key point extractor)
    GROQ_API_KEY: str = ""
    GOOGLE_AI_API_KEY: str = ""
    DEFAULT_MODEL: str = "llama-3.1-8b-instant"
    FALLBACK_MODEL: str = "gemini-1.5-flash"

    LOG_LEVEL: str = "INFO"

    @property
    def cache_timeout_seconds(self) -> float:
        return self.CACHE_TIMEOUT_MS / 1000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache()
def get_settings() -> Settings:
    return Settings()
