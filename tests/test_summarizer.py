"""Tests for tiered history summarization and key point extraction."""

import pytest

from context_engine.conversations.schemas import ConversationMessage
from context_engine.conversations.summarizer import (
    HeuristicKeyPointExtractor,
    HistorySummarizer,
    LLMKeyPointExtractor,
)
from context_engine.llm.client import LLMClient


class ScriptedClient(LLMClient):
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def generate(self, messages, model):
        self.calls.append((messages, model))
        if self.error:
            raise self.error
        return {"content": self.content, "finish_reason": "stop", "input_tokens": 0, "output_tokens": 0}


def test_needs_summarization_threshold(summarizer):
    assert summarizer.needs_summarization(10) is False
    assert summarizer.needs_summarization(11) is True
    assert summarizer.needs_summarization(3, recent_exchanges=1) is True


@pytest.mark.asyncio
async def test_empty_history(summarizer, estimator):
    summarized = await summarizer.summarize_history([], 1500)
    text = summarizer.format_for_context(summarized)
    assert text == ""
    assert estimator.estimate(text) == 0
    assert summarized.middle_summary is None


@pytest.mark.asyncio
async def test_exactly_k_exchanges_is_verbatim(summarizer, make_history):
    history = make_history(5)
    summarized = await summarizer.summarize_history(history, 1500)

    assert summarized.recent_count == 10
    assert summarized.middle_summary is None
    assert summarized.archived_count == 0
    text = summarizer.format_for_context(summarized)
    assert "[Recent conversation]" not in text
    assert text.startswith("CONVERSATION HISTORY:")


@pytest.mark.asyncio
async def test_fifteen_exchanges_split_into_tiers(summarizer, estimator, make_history):
    history = make_history(15)
    summarized = await summarizer.summarize_history(history, 1500)

    assert summarized.recent_count == 10
    assert summarized.middle_count == 10
    assert summarized.archived_count == 10
    assert [m.id for m in summarized.recent_messages] == [m.id for m in history[20:]]

    text = summarizer.format_for_context(summarized)
    assert estimator.estimate(text) <= 1500
    assert text.index("[10 earlier messages archived]") < text.index("[Earlier conversation")
    assert text.index("[Earlier conversation") < text.index("[Recent conversation]")
    assert text.index("Question 11") < text.index("Question 15")
    # Archived exchanges are not rendered
    assert "Question 5:" not in text


@pytest.mark.asyncio
async def test_tier_accounting(summarizer, make_history):
    for exchanges in range(0, 21):
        history = make_history(exchanges)
        for extra in (history, history[:-1]):
            summarized = await summarizer.summarize_history(extra, 1500)
            counted = summarized.archived_count + summarized.recent_count + summarized.middle_count
            assert counted == len(extra)


@pytest.mark.asyncio
async def test_digest_has_three_to_five_points(summarizer, make_history):
    summarized = await summarizer.summarize_history(make_history(15), 1500)
    points = summarized.middle_summary.key_points
    assert 3 <= len(points) <= 5
    assert summarized.middle_summary.summary.count("\n- ") == len(points)


@pytest.mark.asyncio
async def test_digest_respects_token_ceiling(estimator, make_history):
    summarizer = HistorySummarizer(estimator, summary_max_tokens=40)
    summarized = await summarizer.summarize_history(make_history(15, answer_padding=40), 1500)
    assert estimator.estimate(summarized.middle_summary.summary) <= 40


@pytest.mark.asyncio
async def test_smaller_recent_tier(summarizer, make_history):
    summarized = await summarizer.summarize_history(make_history(5), 1500, recent_exchanges=2)
    assert summarized.recent_count == 4
    assert summarized.middle_count == 6
    assert summarized.archived_count == 0


def test_heuristic_extracts_insights_and_constraints():
    messages = [
        ConversationMessage(role="user", content="How should we price it? We must stay under $50 per month."),
        ConversationMessage(role="assistant", content="Pricing is tricky. I recommend a freemium tier for clinics."),
        ConversationMessage(role="user", content="What about distribution?"),
        ConversationMessage(role="assistant", content="Note that clinics prefer direct sales. Partners help too."),
    ]
    points = HeuristicKeyPointExtractor().extract_points(messages, 5)

    assert "How should we price it: a freemium tier for clinics" in points
    assert "What about distribution: clinics prefer direct sales" in points
    assert "Constraint: We must stay under $50 per month." in points
    # Chronological order
    assert points.index("Constraint: We must stay under $50 per month.") < points.index(
        "What about distribution: clinics prefer direct sales"
    )


def test_heuristic_limits_point_count(make_history):
    assert len(HeuristicKeyPointExtractor().extract_points(make_history(8), 3)) == 3


@pytest.mark.asyncio
async def test_llm_extractor_parses_bullets(make_history):
    client = ScriptedClient("- Pricing matters\n* Segment A first\n3. Budget is 10k\n\n")
    extractor = LLMKeyPointExtractor(client, "test-model")

    points = await extractor.extract(make_history(3), 5)

    assert points == ["Pricing matters", "Segment A first", "Budget is 10k"]
    messages, model = client.calls[0]
    assert model == "test-model"
    assert messages[0]["role"] == "system"
    assert "Question 1" in messages[1]["content"]


@pytest.mark.asyncio
async def test_llm_extractor_falls_back_to_heuristic(make_history):
    history = make_history(3)
    extractor = LLMKeyPointExtractor(ScriptedClient(error=RuntimeError("provider down")), "test-model")

    points = await extractor.extract(history, 5)

    assert points == HeuristicKeyPointExtractor().extract_points(history, 5)


@pytest.mark.asyncio
async def test_summarizer_with_llm_extractor(estimator, make_history):
    client = ScriptedClient("- Pricing by segment\n- Focus on segment 6 first\n- Clinics as channel")
    summarizer = HistorySummarizer(estimator, extractor=LLMKeyPointExtractor(client, "m"))
    summarized = await summarizer.summarize_history(make_history(15), 1500)
    assert summarized.middle_summary.key_points == [
        "Pricing by segment",
        "Focus on segment 6 first",
        "Clinics as channel",
    ]


@pytest.mark.asyncio
async def test_get_stats(summarizer, make_history):
    summarized = await summarizer.summarize_history(make_history(15), 1500)
    stats = summarizer.get_stats(summarized)
    assert stats == {
        "total_messages": 30,
        "recent_messages": 10,
        "summarized_messages": 10,
        "archived_messages": 10,
        "compression_ratio": pytest.approx(10 / 30),
    }


def test_message_edit_returns_new_message():
    message = ConversationMessage(id="m1", role="user", content="old", token_count=1)
    edited = message.edited("new text")

    assert edited.content == "new text"
    assert edited.metadata["edited"] is True
    assert edited.token_count is None
    assert edited.id == "m1"
    assert message.content == "old"
