"""Tests for lexical query deduplication."""

import pytest

from context_engine.conversations.schemas import CachedQuery, ConversationMessage
from context_engine.deduplication.service import (
    QueryDeduplicationService,
    calculate_similarity,
    cosine_similarity,
    jaccard_similarity,
    normalize,
)

QUERIES = [
    "What is the market size for this opportunity?",
    "Who are the main competitors?",
    "WHAT IS THE MARKET SIZE?",
    "How much would an MVP cost, roughly??",
    "a",
    "What's the TAM for AI meal planning in 2025?",
]


def test_normalize():
    assert normalize("What's the TAM, in 2025?!") == ["what", "the", "tam", "in", "2025"]
    assert normalize("   ") == []


@pytest.mark.parametrize("query", QUERIES)
def test_score_is_reflexive(query):
    assert calculate_similarity(query, query) == 1.0


def test_score_is_symmetric():
    for a in QUERIES:
        for b in QUERIES:
            assert calculate_similarity(a, b) == calculate_similarity(b, a)


def test_blank_queries_never_match():
    assert calculate_similarity("", "") == 0.0
    assert calculate_similarity("?!", "what") == 0.0


def test_component_measures():
    a, b = normalize("market size market"), normalize("market size growth")
    assert jaccard_similarity(a, b) == pytest.approx(2 / 3)
    assert cosine_similarity(a, b) == pytest.approx(3 / (5 ** 0.5 * 3 ** 0.5))


def test_punctuation_and_word_order_are_ignored():
    assert calculate_similarity(
        "What is the market size for this opportunity?",
        "opportunity, this for size market the is: what",
    ) == 1.0


def test_different_queries_score_low():
    assert calculate_similarity("What is the market size?", "Who are the main competitors?") < 0.5


def test_weighting_is_tunable():
    a, b = "market size market", "market size growth"
    jaccard_only = calculate_similarity(a, b, jaccard_weight=1.0)
    cosine_only = calculate_similarity(a, b, jaccard_weight=0.0)
    assert jaccard_only == pytest.approx(2 / 3, abs=1e-6)
    assert cosine_only > jaccard_only


def test_near_duplicate_returns_cached_response(dedup):
    recent = [
        CachedQuery(query="Who are the main competitors?", response="Fitbit and others.", message_id="m1"),
        CachedQuery(query="What is the market size for this opportunity?", response="About $5B.", message_id="m3"),
    ]
    match = dedup.find_similar("opportunity this: what is the market size for?", recent)

    assert match is not None
    assert match.cached_response == "About $5B."
    assert match.matched_message_id == "m3"
    assert match.score >= 0.9


def test_below_threshold_is_no_match(dedup):
    recent = [CachedQuery(query="Who are the main competitors?", response="Fitbit.")]
    assert dedup.find_similar("What is the market size?", recent) is None
    assert dedup.find_similar("What is the market size?", recent, threshold=0.1) is not None


def test_empty_query_is_no_match(dedup):
    recent = [CachedQuery(query="anything", response="r")]
    assert dedup.find_similar("   ", recent) is None
    assert dedup.get_stats().total_queries == 0


def test_find_similar_in_history(dedup):
    history = [
        ConversationMessage(id="1", role="user", content="What is the market size?"),
        ConversationMessage(id="2", role="assistant", content="Roughly $5 billion."),
        ConversationMessage(id="3", role="user", content="Who are the competitors?"),
        ConversationMessage(id="4", role="assistant", content="Fitbit, MyFitnessPal."),
        ConversationMessage(id="5", role="user", content="Unanswered question about market size"),
    ]
    match = dedup.find_similar_in_history("what is the MARKET size", history)
    assert match.cached_response == "Roughly $5 billion."
    assert match.matched_message_id == "1"

    # A user message without a reply is never served
    assert dedup.find_similar_in_history("Unanswered question about market size", history) is None


def test_window_keeps_last_w_queries():
    dedup = QueryDeduplicationService(window_size=3)
    for name in ("alpha", "bravo", "charlie", "delta", "echo"):
        dedup.register("conv-1", f"question {name} about pricing tiers", f"answer {name}")

    assert [q.response for q in dedup.recent_queries("conv-1")] == ["answer charlie", "answer delta", "answer echo"]
    assert dedup.check("conv-1", "question alpha about pricing tiers") is None
    assert dedup.check("conv-1", "question echo about pricing tiers").cached_response == "answer echo"
    # Windows are per conversation
    assert dedup.check("conv-2", "question echo about pricing tiers") is None


def test_stats_track_hits_and_savings():
    dedup = QueryDeduplicationService(cost_per_query=0.05)
    dedup.register("c", "What is the market size?", "Big.")

    dedup.check("c", "what is the market size")
    dedup.check("c", "what is the market size?!")
    dedup.check("c", "Who are the competitors?")

    stats = dedup.get_stats()
    assert stats.total_queries == 3
    assert stats.cache_hits == 2
    assert stats.cache_misses == 1
    assert stats.hit_rate == pytest.approx(2 / 3)
    assert stats.cost_savings == pytest.approx(0.10)

    dedup.reset_stats()
    assert dedup.get_stats().total_queries == 0


def test_clear_windows(dedup):
    dedup.register("c", "What is the market size?", "Big.")
    dedup.clear("c")
    assert dedup.recent_queries("c") == []


def test_invalid_weight():
    with pytest.raises(ValueError):
        QueryDeduplicationService(jaccard_weight=1.5)


def test_least_recently_used_conversation_evicted():
    dedup = QueryDeduplicationService(max_conversations=3)
    for name in ("alpha", "bravo", "charlie"):
        dedup.register(f"conv-{name}", "What is the market size?", f"answer {name}")

    # Touching alpha makes bravo the oldest
    dedup.check("conv-alpha", "What is the market size?")
    dedup.register("conv-delta", "What is the market size?", "answer delta")

    assert dedup.tracked_conversations() == 3
    assert dedup.recent_queries("conv-bravo") == []
    assert dedup.check("conv-alpha", "what is the market size").cached_response == "answer alpha"


def test_conversation_count_stays_bounded():
    dedup = QueryDeduplicationService(window_size=10, max_conversations=100)
    for i in range(2000):
        dedup.register(f"conv-{i}", "How should I price it?", "Freemium.")
    assert dedup.tracked_conversations() == 100
    assert dedup.recent_queries("conv-0") == []
    assert len(dedup.recent_queries("conv-1999")) == 1


@pytest.mark.parametrize("kwargs", [{"window_size": 0}, {"window_size": -1}, {"max_conversations": 0}])
def test_invalid_window_limits(kwargs):
    with pytest.raises(ValueError):
        QueryDeduplicationService(**kwargs)
