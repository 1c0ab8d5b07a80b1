"""Context optimization: analysis reduction, whitespace cleanup, smart truncation.

Also owns the analysis-context cache. The cache is injected; without one every
call recomputes.
"""

import logging
import re
from collections import Counter

from pydantic import BaseModel

from context_engine.analysis.schemas import ActionPlan, AnalysisSnapshot, Phase
from context_engine.cache.analysis_cache import AnalysisContextCache
from context_engine.llm.schemas import OptimizationResult
from context_engine.llm.token_counter import TokenEstimator, tokens_to_chars

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[... content truncated ...]\n\n"
ELLIPSIS = "..."

# Re-estimation rounds allowed when the char/token ratio of the text is off
MAX_TRUNCATION_PASSES = 3

STOP_WORDS = frozenset(
    "a an and are as at be but by can do does for from has have how i if in into is it its "
    "me my of on or our so than that the their them then there these they this to was we "
    "what when where which who why will with would you your".split()
)

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9'-]*")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")


def truncate_chars(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    if max_chars <= len(ELLIPSIS):
        return text[:max_chars]
    return text[: max_chars - len(ELLIPSIS)].rstrip() + ELLIPSIS


def content_words(text: str) -> list[str]:
    return [w for w in _WORD_RE.findall(text.lower()) if len(w) > 2 and w not in STOP_WORDS]


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def key_sentences(text: str, max_sentences: int = 3) -> list[str]:
    """Most salient sentences by content-word frequency, in original order."""
    sentences = split_sentences(text)
    if len(sentences) <= max_sentences:
        return sentences

    frequencies = Counter(content_words(text))

    def salience(sentence: str) -> float:
        words = content_words(sentence)
        if not words:
            return 0.0
        return sum(frequencies[w] for w in words) / len(words) ** 0.5

    ranked = sorted(range(len(sentences)), key=lambda i: (-salience(sentences[i]), i))
    return [sentences[i] for i in sorted(ranked[:max_sentences])]


def _ranked(items: list, top_n: int) -> list:
    # Stable: unscored items keep their order after scored ones
    order = sorted(
        range(len(items)),
        key=lambda i: (items[i].score is None, -(items[i].score or 0.0), i),
    )
    return [items[i] for i in order[:top_n]]


class AnalysisContextResult(BaseModel):
    text: str
    token_count: int
    cache_hit: bool


class ContextOptimizer:
    def __init__(
        self,
        estimator: TokenEstimator,
        cache: AnalysisContextCache | None = None,
        top_n: int = 5,
        description_max_chars: int = 80,
        head_fraction: float = 0.4,
        tail_fraction: float = 0.4,
    ):
        if head_fraction < 0 or tail_fraction < 0 or head_fraction + tail_fraction > 1:
            raise ValueError("truncation fractions must be non-negative and sum to at most 1")
        self.estimator = estimator
        self.cache = cache
        self.top_n = top_n
        self.description_max_chars = description_max_chars
        self.head_fraction = head_fraction
        self.tail_fraction = tail_fraction

    # --- Analysis data reduction ---

    def optimize_analysis_data(self, analysis: AnalysisSnapshot, top_n: int | None = None) -> AnalysisSnapshot:
        """Top-N gaps and competitors by score, short descriptions, plan headings only."""
        top_n = top_n or self.top_n
        limit = self.description_max_chars
        gaps = [
            gap.model_copy(update={"description": truncate_chars(gap.description, limit)})
            for gap in _ranked(analysis.gaps, top_n)
        ]
        competitors = [
            c.model_copy(update={"description": truncate_chars(c.description, limit)})
            for c in _ranked(analysis.competitors, top_n)
        ]
        action_plan = None
        if analysis.action_plan is not None:
            action_plan = ActionPlan(
                summary=truncate_chars(analysis.action_plan.summary, limit),
                phases=[Phase(name=phase.name) for phase in analysis.action_plan.phases],
            )
        extras = [
            extra.model_copy(update={"value": truncate_chars(extra.value, limit)})
            for extra in analysis.extras
        ]
        return analysis.model_copy(
            update={
                "gaps": gaps,
                "competitors": competitors,
                "action_plan": action_plan,
                "extras": extras,
            }
        )

    def render_analysis_context(self, analysis: AnalysisSnapshot) -> str:
        lines = ["ANALYSIS CONTEXT:", "", f"Original Search: {analysis.search_query}"]
        if analysis.innovation_score is not None:
            lines.append(f"Innovation Score: {analysis.innovation_score:g}/100")
        if analysis.feasibility_rating:
            lines.append(f"Feasibility: {analysis.feasibility_rating}")

        if analysis.gaps:
            lines += ["", "TOP GAPS:"]
            for index, gap in enumerate(analysis.gaps, 1):
                score = f" (Score: {gap.score:g})" if gap.score is not None else ""
                lines.append(f"{index}. {gap.title}{score}")
                if gap.description:
                    lines.append(gap.description)

        if analysis.competitors:
            lines += ["", "KEY COMPETITORS:"]
            for index, competitor in enumerate(analysis.competitors, 1):
                description = f": {competitor.description}" if competitor.description else ""
                lines.append(f"{index}. {competitor.name}{description}")

        plan = analysis.action_plan
        if plan is not None and (plan.summary or plan.phases):
            lines += ["", "ACTION PLAN:"]
            if plan.summary:
                lines.append(plan.summary)
            for index, phase in enumerate(plan.phases, 1):
                lines.append(f"{index}. {phase.name}")

        if analysis.extras:
            lines += ["", "ADDITIONAL DETAILS:"]
            lines += [f"- {extra.key}: {extra.value}" for extra in analysis.extras]

        return self.optimize_whitespace("\n".join(lines))

    def _render_reduced(self, analysis: AnalysisSnapshot, top_n: int | None) -> tuple[str, int]:
        text = self.render_analysis_context(self.optimize_analysis_data(analysis, top_n))
        return text, self.estimator.estimate(text)

    async def get_analysis_context(
        self,
        analysis: AnalysisSnapshot,
        use_cache: bool = True,
        top_n: int | None = None,
    ) -> AnalysisContextResult:
        """Rendered analysis context; cached per analysis id for the default top-N only."""
        cacheable = use_cache and self.cache is not None and top_n in (None, self.top_n)
        if not cacheable:
            text, tokens = self._render_reduced(analysis, top_n)
            return AnalysisContextResult(text=text, token_count=tokens, cache_hit=False)

        entry, hit = await self.cache.get_or_compute(
            analysis.id, lambda: self._render_reduced(analysis, None)
        )
        return AnalysisContextResult(text=entry.value, token_count=entry.token_count, cache_hit=hit)

    async def invalidate_analysis(self, analysis_id: str) -> None:
        if self.cache is not None:
            await self.cache.invalidate(analysis_id)

    # --- Text-level optimization ---

    @staticmethod
    def optimize_whitespace(text: str) -> str:
        text = re.sub(r"[ \t]+", " ", text)
        text = re.sub(r" +\n", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()

    def smart_truncate(self, text: str, max_tokens: int) -> OptimizationResult:
        """Keep head and tail fractions of the ceiling (in chars), elide the middle."""
        original_tokens = self.estimator.estimate(text)
        if original_tokens <= max_tokens:
            return OptimizationResult(
                original=text,
                optimized=text,
                original_tokens=original_tokens,
                optimized_tokens=original_tokens,
                compression_ratio=1.0,
            )

        allowed_chars = tokens_to_chars(max_tokens)
        optimized, optimized_tokens = "", 0
        for _ in range(MAX_TRUNCATION_PASSES):
            head_chars = int(allowed_chars * self.head_fraction)
            tail_chars = int(allowed_chars * self.tail_fraction)
            if head_chars + tail_chars == 0:
                break
            tail = text[len(text) - tail_chars:] if tail_chars else ""
            optimized = f"{text[:head_chars]}{TRUNCATION_MARKER}{tail}"
            optimized_tokens = self.estimator.estimate(optimized)
            if optimized_tokens <= max_tokens:
                break
            # Scale the char budget by how far off the estimate was
            allowed_chars = int(allowed_chars * max_tokens / optimized_tokens * 0.95)
        else:
            optimized = ""

        if not optimized or optimized_tokens > max_tokens:
            # Ceiling too small for the marker: plain head cut, shrunk until it fits
            cut = min(len(text), tokens_to_chars(max_tokens))
            optimized = text[:cut]
            optimized_tokens = self.estimator.estimate(optimized)
            while optimized_tokens > max_tokens and cut > 0:
                cut = min(cut - 1, int(cut * max_tokens / optimized_tokens))
                optimized = text[:cut]
                optimized_tokens = self.estimator.estimate(optimized)

        return OptimizationResult(
            original=text,
            optimized=optimized,
            original_tokens=original_tokens,
            optimized_tokens=optimized_tokens,
            compression_ratio=optimized_tokens / original_tokens if original_tokens else 1.0,
        )

    def extract_key_sentences(self, text: str, max_sentences: int = 3) -> list[str]:
        return key_sentences(text, max_sentences)

    def compression_stats(self, original: str, optimized: str) -> dict:
        original_tokens = self.estimator.estimate(original)
        optimized_tokens = self.estimator.estimate(optimized)
        return {
            "original_length": len(original),
            "optimized_length": len(optimized),
            "original_tokens": original_tokens,
            "optimized_tokens": optimized_tokens,
            "char_compression_ratio": len(optimized) / len(original) if original else 1.0,
            "token_compression_ratio": optimized_tokens / original_tokens if original_tokens else 1.0,
            "chars_saved": len(original) - len(optimized),
            "tokens_saved": original_tokens - optimized_tokens,
        }

    def get_cache_stats(self) -> dict:
        if self.cache is None:
            return {"enabled": False}
        return {"enabled": True, **self.cache.get_stats()}
