"""Provider interface for tracing chat turns and ingestion runs."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generator


class SpanType(Enum):
    """Steps of a chat turn that get their own span."""

    TRACE = "trace"
    STEP = "step"
    RETRIEVAL = "retrieval"
    EMBEDDING = "embedding"
    GENERATION = "generation"


@dataclass
class SpanContext:
    """One provider's view of a span."""

    name: str
    span_type: SpanType
    trace_id: str | None = None
    span_id: str | None = None
    parent_span_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    inputs: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    # generation
    model: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None

    # retrieval
    hits: list[dict] | None = None
    scores: list[float] | None = None

    @property
    def duration_ms(self) -> float | None:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000


class ObservabilityProvider(ABC):
    """
    A tracing backend.

    Providers open spans as context managers. An exception raised inside a span
    is recorded on it and re-raised; the manager keeps provider failures of its
    own away from the chat path.
    """

    name: str = "base"

    @abstractmethod
    def initialize(self) -> bool:
        """Connect to the backend. False (with a logged reason) when unavailable."""

    @abstractmethod
    def shutdown(self) -> None:
        """Flush pending data."""

    @abstractmethod
    @contextmanager
    def trace(self, name: str, **kwargs) -> Generator[SpanContext, None, None]:
        """Open the root span of a chat turn or ingestion run."""

    @abstractmethod
    @contextmanager
    def span(
        self,
        name: str,
        span_type: SpanType,
        parent: SpanContext | None = None,
        **kwargs,
    ) -> Generator[SpanContext, None, None]:
        """Open a child span under `parent`."""

    @abstractmethod
    def log_llm_call(
        self,
        span: SpanContext,
        model: str,
        messages: list[dict],
        output: str,
        usage: dict[str, int] | None = None,
    ) -> None:
        """Attach a completion and its token usage (`input`/`output` keys) to a span."""

    @abstractmethod
    def log_retrieval(
        self,
        span: SpanContext,
        query: str,
        documents: list[dict],
        scores: list[float],
    ) -> None:
        """Attach retrieved chunk ids and similarity scores to a span."""

    @abstractmethod
    def log_error(self, span: SpanContext, error: Exception) -> None:
        """Mark a span failed without raising."""

    def get_trace_url(self, trace_id: str) -> str | None:
        return None
