"""Cost estimation for billable model calls."""

from functools import cached_property

import tiktoken

from portfolio_chat.config import config
from portfolio_chat.models import Operation


class CostTracker:
    """Estimates token counts and USD costs locally."""

    # Pricing per 1M tokens (USD)
    PRICING = {
        "gpt-4o": {"input": 5.0, "output": 15.0},
        "gpt-4o-mini": {"input": 0.15, "output": 0.60},
        "gpt-4-turbo": {"input": 10.0, "output": 30.0},
        "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
        "text-embedding-3-small": {"input": 0.02, "output": 0.0},
        "text-embedding-3-large": {"input": 0.13, "output": 0.0},
        "text-embedding-ada-002": {"input": 0.10, "output": 0.0},
    }

    def __init__(self, llm_model: str | None = None, embedding_model: str | None = None):
        self.llm_model = llm_model or config.llm_model
        self.embedding_model = embedding_model or config.embedding_model

    @cached_property
    def encoding(self) -> tiktoken.Encoding:
        try:
            return tiktoken.encoding_for_model(self.llm_model)
        except KeyError:
            return tiktoken.get_encoding("cl100k_base")

    def estimate_cost(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
    ) -> float:
        """Calculate estimated cost in USD."""
        if model not in self.PRICING:
            # match unknown model names by family
            if "mini" in model:
                pricing = self.PRICING["gpt-4o-mini"]
            elif "gpt-4" in model:
                pricing = self.PRICING["gpt-4o"]
            elif "embedding" in model:
                pricing = self.PRICING["text-embedding-3-small"]
            else:
                return 0.0
        else:
            pricing = self.PRICING[model]

        input_cost = (prompt_tokens / 1_000_000) * pricing["input"]
        output_cost = (completion_tokens / 1_000_000) * pricing["output"]

        return input_cost + output_cost

    def estimate_operation_cost(
        self,
        operation: Operation,
        input_tokens: int,
        output_tokens: int = 0,
    ) -> float:
        """Cost of one operation using the configured models."""
        if operation is Operation.EMBEDDING:
            return self.estimate_cost(self.embedding_model, input_tokens, 0)
        if operation is Operation.CHAT_COMPLETION:
            return self.estimate_cost(self.llm_model, input_tokens, output_tokens)
        return 0.0

    def calculate_tokens(self, text: str) -> int:
        """Count tokens in text string."""
        return len(self.encoding.encode(text))
