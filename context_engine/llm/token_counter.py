"""Approximate token counting using tiktoken, with a character heuristic fallback."""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache

import tiktoken

from context_engine.config.settings import get_settings

logger = logging.getLogger(__name__)

# Fixed heuristic ratio used when the tokenizer is unavailable, and for
# converting token ceilings into character budgets.
CHARS_PER_TOKEN = 4

STRATEGY_TIKTOKEN = "tiktoken"
STRATEGY_HEURISTIC = "heuristic"


def heuristic_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def tokens_to_chars(tokens: int) -> int:
    return max(0, tokens) * CHARS_PER_TOKEN


def _load_encoding(encoding_name: str, timeout: float):
    # get_encoding may download the BPE file on first use
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        return executor.submit(tiktoken.get_encoding, encoding_name).result(timeout=timeout)
    finally:
        executor.shutdown(wait=False)


class TokenEstimator:
    """Counts tokens with tiktoken, falling back to ceil(len / 4).

    A tokenizer failure (at load or on any call) switches the estimator to the
    heuristic for the rest of its lifetime; it is logged once and never retried.
    """

    def __init__(
        self,
        encoding_name: str = "cl100k_base",
        use_tokenizer: bool = True,
        init_timeout: float = 5.0,
    ):
        self._encoding = None
        if use_tokenizer:
            try:
                self._encoding = _load_encoding(encoding_name, init_timeout)
                logger.info("Token estimator using tiktoken (%s)", encoding_name)
            except Exception as exc:
                self._disable(exc)
        else:
            logger.info("Token estimator using %d chars/token heuristic", CHARS_PER_TOKEN)

    @property
    def strategy(self) -> str:
        return STRATEGY_TIKTOKEN if self._encoding is not None else STRATEGY_HEURISTIC

    def _disable(self, exc: Exception) -> None:
        logger.warning("Tokenizer unavailable, falling back to heuristic estimation: %s", exc)
        self._encoding = None

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        if self._encoding is not None:
            try:
                return len(self._encoding.encode(text, disallowed_special=()))
            except Exception as exc:
                self._disable(exc)
        return heuristic_tokens(text)

    def estimate_segments(self, texts: list[str]) -> list[int]:
        return [self.estimate(text) for text in texts]

    def estimate_batch(self, texts: list[str]) -> int:
        return sum(self.estimate_segments(texts))

    def breakdown(self, sections: dict[str, str]) -> dict[str, int]:
        """Per-section token counts plus a ``total`` entry."""
        counts = {name: self.estimate(text) for name, text in sections.items()}
        counts["total"] = sum(counts.values())
        return counts


@lru_cache()
def get_token_estimator() -> TokenEstimator:
    settings = get_settings()
    return TokenEstimator(
        encoding_name=settings.TOKENIZER_ENCODING,
        use_tokenizer=settings.USE_TOKENIZER,
        init_timeout=settings.TOKENIZER_INIT_TIMEOUT_SECONDS,
    )


def count_tokens(text: str) -> int:
    return get_token_estimator().estimate(text)
