"""Wiring of the context engine components from settings."""

from functools import lru_cache

from context_engine.cache.analysis_cache import AnalysisContextCache
from context_engine.cache.store import create_cache_store
from context_engine.config.settings import Settings, get_settings
from context_engine.conversations.summarizer import (
    HeuristicKeyPointExtractor,
    HistorySummarizer,
    KeyPointExtractor,
    LLMKeyPointExtractor,
)
from context_engine.deduplication.service import QueryDeduplicationService
from context_engine.llm.client import get_llm_client
from context_engine.llm.context import ContextWindowManager
from context_engine.llm.optimizer import ContextOptimizer
from context_engine.llm.schemas import BudgetPartition
from context_engine.llm.token_counter import TokenEstimator, get_token_estimator


def build_key_point_extractor(settings: Settings) -> KeyPointExtractor:
    if settings.KEY_POINT_EXTRACTOR == "llm":
        return LLMKeyPointExtractor(
            get_llm_client("fallback"),
            settings.DEFAULT_MODEL,
            min_points=settings.KEY_POINTS_MIN,
        )
    if settings.KEY_POINT_EXTRACTOR != "heuristic":
        raise ValueError(f"Unknown key point extractor: {settings.KEY_POINT_EXTRACTOR}")
    return HeuristicKeyPointExtractor()


def build_context_manager(
    settings: Settings,
    estimator: TokenEstimator,
    cache: AnalysisContextCache | None,
) -> ContextWindowManager:
    optimizer = ContextOptimizer(
        estimator,
        cache=cache,
        top_n=settings.ANALYSIS_TOP_N,
        description_max_chars=settings.DESCRIPTION_MAX_CHARS,
        head_fraction=settings.TRUNCATE_HEAD_FRACTION,
        tail_fraction=settings.TRUNCATE_TAIL_FRACTION,
    )
    summarizer = HistorySummarizer(
        estimator,
        extractor=build_key_point_extractor(settings),
        recent_exchanges=settings.RECENT_EXCHANGES,
        middle_exchanges=settings.MIDDLE_EXCHANGES,
        summary_max_tokens=settings.MIDDLE_SUMMARY_MAX_TOKENS,
        min_key_points=settings.KEY_POINTS_MIN,
        max_key_points=settings.KEY_POINTS_MAX,
    )
    partition = BudgetPartition(
        system_prompt=settings.SYSTEM_PROMPT_RATIO,
        analysis_context=settings.ANALYSIS_CONTEXT_RATIO,
        history=settings.HISTORY_RATIO,
        current_query=settings.CURRENT_QUERY_RATIO,
        response_reserve=settings.RESPONSE_RESERVE_RATIO,
    )
    return ContextWindowManager(
        estimator,
        optimizer,
        summarizer,
        partition=partition,
        default_max_tokens=settings.CONTEXT_MAX_TOKENS,
        reduced_top_n=settings.ANALYSIS_REDUCED_TOP_N,
        strict_history=settings.STRICT_HISTORY,
    )


# Singletons
@lru_cache()
def get_analysis_cache() -> AnalysisContextCache:
    settings = get_settings()
    return AnalysisContextCache(
        create_cache_store(settings.REDIS_URL),
        ttl=settings.ANALYSIS_CACHE_TTL_SECONDS,
        timeout=settings.cache_timeout_seconds,
    )


@lru_cache()
def get_context_manager() -> ContextWindowManager:
    return build_context_manager(get_settings(), get_token_estimator(), get_analysis_cache())


@lru_cache()
def get_deduplication_service() -> QueryDeduplicationService:
    settings = get_settings()
    return QueryDeduplicationService(
        threshold=settings.SIMILARITY_THRESHOLD,
        window_size=settings.DEDUP_WINDOW_SIZE,
        jaccard_weight=settings.SIMILARITY_JACCARD_WEIGHT,
        cost_per_query=settings.DEDUP_COST_PER_QUERY,
        max_conversations=settings.DEDUP_MAX_CONVERSATIONS,
    )
