"""Shared test fixtures."""

import os

# Deterministic heuristic token counts, no tokenizer download
os.environ["USE_TOKENIZER"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["KEY_POINT_EXTRACTOR"] = "heuristic"

import pytest
from fastapi.testclient import TestClient

from context_engine.analysis.schemas import ActionPlan, AnalysisSnapshot, Competitor, Gap, Phase
from context_engine.cache.analysis_cache import AnalysisContextCache
from context_engine.cache.store import InMemoryCacheStore
from context_engine.conversations.schemas import ConversationMessage
from context_engine.conversations.summarizer import HistorySummarizer
from context_engine.deduplication.service import QueryDeduplicationService
from context_engine.llm.context import ContextWindowManager
from context_engine.llm.optimizer import ContextOptimizer
from context_engine.llm.token_counter import TokenEstimator
from context_engine.main import app


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_history(exchanges: int, answer_padding: int = 0) -> list[ConversationMessage]:
    messages = []
    for i in range(1, exchanges + 1):
        messages.append(
            ConversationMessage(
                id=f"u{i}",
                role="user",
                content=f"Question {i}: what pricing works for customer segment {i}?",
            )
        )
        messages.append(
            ConversationMessage(
                id=f"a{i}",
                role="assistant",
                content=f"Answer {i}. I recommend focusing on segment {i} first." + " detail" * answer_padding,
            )
        )
    return messages


@pytest.fixture(name="make_history")
def make_history_fixture():
    return make_history


@pytest.fixture(scope="module")
def client():
    return TestClient(app)


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def estimator():
    return TokenEstimator(use_tokenizer=False)


@pytest.fixture
def cache_store(clock):
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def analysis_cache(cache_store):
    return AnalysisContextCache(cache_store, ttl=3600, timeout=1.0)


@pytest.fixture
def optimizer(estimator, analysis_cache):
    return ContextOptimizer(estimator, cache=analysis_cache)


@pytest.fixture
def summarizer(estimator):
    return HistorySummarizer(estimator)


@pytest.fixture
def manager(estimator, optimizer, summarizer):
    return ContextWindowManager(estimator, optimizer, summarizer)


@pytest.fixture
def dedup():
    return QueryDeduplicationService()


@pytest.fixture
def analysis():
    return AnalysisSnapshot(
        id="analysis-1",
        search_query="AI-powered meal planning for diabetics",
        innovation_score=78,
        feasibility_rating="high",
        gaps=[
            Gap(
                title=f"Gap {i}",
                description=f"Underserved need number {i} among newly diagnosed type 2 diabetics " * 2,
                score=float(i * 10),
            )
            for i in range(1, 8)
        ],
        competitors=[
            Competitor(name=f"Competitor {i}", description=f"Meal kit company {i} " * 10, score=float(i))
            for i in range(1, 8)
        ],
        action_plan=ActionPlan(
            summary="Validate demand with clinics, then build a nutritionist-reviewed MVP.",
            phases=[
                Phase(name="Research", description="Talk to users", steps=["Interview 20 patients"]),
                Phase(name="MVP", description="Build it", steps=["Recipe engine", "Glucose sync"]),
            ],
        ),
    )
