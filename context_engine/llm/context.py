"""Context window assembly under a token budget.

The window is made of four rendered sections: system prompt, analysis context,
conversation history and the current query. Their estimated tokens must fit in
``budget.total - budget.response_reserve``. When they do not, a compression
cascade runs, re-measuring after each step and stopping as soon as the window
fits:

1. whitespace-normalize the analysis, history and query sections
2. shrink the verbatim history tier (K -> K // 2 ... -> 1), then truncate history
3. re-render the analysis with a smaller top-N
4. smart-truncate the current query into the remaining headroom

The system prompt is never altered. If the window still does not fit,
ContextTooLargeError is raised.
"""

import logging

from context_engine.analysis.schemas import AnalysisSnapshot
from context_engine.conversations.schemas import ROLE_ASSISTANT, ROLE_USER, ConversationMessage
from context_engine.conversations.summarizer import HistorySummarizer
from context_engine.llm.optimizer import ContextOptimizer
from context_engine.llm.prompts import build_system_prompt
from context_engine.llm.schemas import (
    SECTION_ANALYSIS_CONTEXT,
    SECTION_CURRENT_QUERY,
    SECTION_HISTORY,
    SECTION_SYSTEM_PROMPT,
    BudgetPartition,
    BuildOptions,
    ContextWindow,
    TokenBudget,
)
from context_engine.llm.token_counter import TokenEstimator
from context_engine.utils.errors import ContextTooLargeError, InvalidContextInputError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 8000


class ContextWindowManager:
    def __init__(
        self,
        estimator: TokenEstimator,
        optimizer: ContextOptimizer,
        summarizer: HistorySummarizer,
        partition: BudgetPartition | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        reduced_top_n: int = 3,
        strict_history: bool = True,
    ):
        self.estimator = estimator
        self.optimizer = optimizer
        self.summarizer = summarizer
        self.partition = partition or BudgetPartition()
        self.default_max_tokens = default_max_tokens
        self.reduced_top_n = reduced_top_n
        self.strict_history = strict_history

    def calculate_budget(self, max_tokens: int, partition: BudgetPartition | None = None) -> TokenBudget:
        if max_tokens <= 0:
            raise InvalidContextInputError(f"Token budget must be positive, got {max_tokens}")
        p = partition or self.partition
        return TokenBudget(
            total=max_tokens,
            system_prompt=int(max_tokens * p.system_prompt),
            analysis_context=int(max_tokens * p.analysis_context),
            history=int(max_tokens * p.history),
            current_query=int(max_tokens * p.current_query),
            response_reserve=int(max_tokens * p.response_reserve),
        )

    def get_token_budget(self, max_tokens: int | None = None) -> TokenBudget:
        return self.calculate_budget(max_tokens or self.default_max_tokens)

    def _validate_history(self, history: list[ConversationMessage]) -> None:
        if not self.strict_history:
            return
        for index, message in enumerate(history):
            if message.role == ROLE_ASSISTANT and (index == 0 or history[index - 1].role != ROLE_USER):
                raise InvalidContextInputError(
                    f"History message {index} is an assistant reply without a preceding user message"
                )

    def _measure(self, sections: dict[str, str]) -> dict[str, int]:
        return self.estimator.breakdown(sections)

    async def build(
        self,
        analysis: AnalysisSnapshot,
        history: list[ConversationMessage],
        current_query: str,
        max_tokens: int | None = None,
        options: BuildOptions | None = None,
    ) -> ContextWindow:
        """Assemble a bounded context window, compressing as needed.

        Raises:
            InvalidContextInputError: non-positive budget, blank query or malformed history.
            ContextTooLargeError: the window does not fit even after the full cascade.
        """
        options = options or BuildOptions()
        budget = self.calculate_budget(
            self.default_max_tokens if max_tokens is None else max_tokens, options.partition
        )
        if not current_query or not current_query.strip():
            raise InvalidContextInputError("Current query must not be blank")
        self._validate_history(history)

        recent_exchanges = options.recent_exchanges or self.summarizer.recent_exchanges
        middle_exchanges = options.middle_exchanges
        top_n = options.top_n or self.optimizer.top_n
        optimize = self.optimizer.optimize_whitespace if options.optimize else (lambda text: text)

        analysis_result = await self.optimizer.get_analysis_context(
            analysis, use_cache=options.use_cache, top_n=options.top_n
        )
        summarized = await self.summarizer.summarize_history(
            history, budget.history, recent_exchanges, middle_exchanges
        )
        sections = {
            SECTION_SYSTEM_PROMPT: build_system_prompt(analysis),
            SECTION_ANALYSIS_CONTEXT: self.optimizer.smart_truncate(
                analysis_result.text, budget.analysis_context
            ).optimized,
            SECTION_HISTORY: self.summarizer.format_for_context(summarized),
            SECTION_CURRENT_QUERY: self.optimizer.smart_truncate(
                current_query, budget.current_query
            ).optimized,
        }
        cache_hits = {SECTION_ANALYSIS_CONTEXT: analysis_result.cache_hit}
        counts = self._measure(sections)
        steps: list[str] = []

        def over() -> bool:
            return counts["total"] > budget.available

        if over() and options.optimize:
            # 1. whitespace
            for name in (SECTION_ANALYSIS_CONTEXT, SECTION_HISTORY, SECTION_CURRENT_QUERY):
                sections[name] = optimize(sections[name])
            counts = self._measure(sections)
            steps.append("whitespace")

            # 2. more aggressive history tiers
            while over() and history and recent_exchanges > 1:
                recent_exchanges = max(1, recent_exchanges // 2)
                summarized = await self.summarizer.summarize_history(
                    history, budget.history, recent_exchanges, middle_exchanges
                )
                sections[SECTION_HISTORY] = optimize(self.summarizer.format_for_context(summarized))
                counts = self._measure(sections)
                steps.append(f"history_recent_exchanges={recent_exchanges}")
            if over() and counts[SECTION_HISTORY] > budget.history:
                sections[SECTION_HISTORY] = self.optimizer.smart_truncate(
                    sections[SECTION_HISTORY], budget.history
                ).optimized
                counts = self._measure(sections)
                steps.append("history_truncated")

            # 3. smaller analysis top-N
            if over() and self.reduced_top_n < top_n:
                reduced = await self.optimizer.get_analysis_context(
                    analysis, use_cache=False, top_n=self.reduced_top_n
                )
                sections[SECTION_ANALYSIS_CONTEXT] = self.optimizer.smart_truncate(
                    optimize(reduced.text), budget.analysis_context
                ).optimized
                cache_hits[SECTION_ANALYSIS_CONTEXT] = False
                counts = self._measure(sections)
                steps.append(f"analysis_top_n={self.reduced_top_n}")

            # 4. current query into whatever headroom is left
            if over():
                headroom = budget.available - (counts["total"] - counts[SECTION_CURRENT_QUERY])
                if headroom > 0:
                    sections[SECTION_CURRENT_QUERY] = self.optimizer.smart_truncate(
                        sections[SECTION_CURRENT_QUERY], headroom
                    ).optimized
                    counts = self._measure(sections)
                    steps.append("query_truncated")

            logger.info("Compression cascade applied for analysis %s: %s", analysis.id, ", ".join(steps))

        if over():
            logger.warning(
                "Context too large for analysis %s: %d tokens, %d available",
                analysis.id, counts["total"], budget.available,
            )
            raise ContextTooLargeError(
                counts["total"], budget.available, {k: v for k, v in counts.items() if k != "total"}
            )

        return ContextWindow(
            system_prompt=sections[SECTION_SYSTEM_PROMPT],
            analysis_context=sections[SECTION_ANALYSIS_CONTEXT],
            history_text=sections[SECTION_HISTORY],
            current_query=sections[SECTION_CURRENT_QUERY],
            total_tokens=counts["total"],
            budget=budget,
            section_tokens={k: v for k, v in counts.items() if k != "total"},
            cache_hits=cache_hits,
            compression_steps=steps,
            # recent_messages counts the verbatim tier before any history truncation
            history_stats={
                **self.summarizer.get_stats(summarized),
                "history_truncated": "history_truncated" in steps,
            },
        )

    def get_token_breakdown(self, window: ContextWindow) -> dict[str, int]:
        breakdown = self._measure(
            {
                SECTION_SYSTEM_PROMPT: window.system_prompt,
                SECTION_ANALYSIS_CONTEXT: window.analysis_context,
                SECTION_HISTORY: window.history_text,
                SECTION_CURRENT_QUERY: window.current_query,
            }
        )
        breakdown["available"] = window.budget.available
        breakdown["response_reserve"] = window.budget.response_reserve
        return breakdown

    def validate_budget(self, window: ContextWindow) -> bool:
        return window.total_tokens <= window.budget.available

    def get_cache_stats(self) -> dict:
        return self.optimizer.get_cache_stats()
