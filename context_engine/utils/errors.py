"""Exceptions raised to callers of the context engine."""


class ContextEngineError(Exception):
    pass


class InvalidContextInputError(ContextEngineError, ValueError):
    """Input contract violated: bad budget, malformed history, blank query."""


class ContextTooLargeError(ContextEngineError):
    """The compression cascade could not fit the window into the budget.

    The caller decides the remedy (e.g. start a fresh conversation); the
    engine never retries on its own.
    """

    def __init__(self, total_tokens: int, available_tokens: int, breakdown: dict[str, int]):
        self.total_tokens = total_tokens
        self.available_tokens = available_tokens
        self.breakdown = breakdown
        super().__init__(
            f"Context needs {total_tokens} tokens but only {available_tokens} are available "
            "after compression"
        )
