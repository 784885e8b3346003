"""Observability provider that writes spans to the application log."""

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Generator

from portfolio_chat.logger import logger
from portfolio_chat.observability.base import ObservabilityProvider, SpanContext, SpanType


class LoggingProvider(ObservabilityProvider):
    """Always-available provider: one log line per span with timing and outcome."""

    name = "logging"

    def initialize(self) -> bool:
        return True

    def shutdown(self) -> None:
        pass

    def _finish(self, span: SpanContext) -> None:
        span.end_time = datetime.now()
        status = f"error={span.error}" if span.error else "ok"
        logger.info(
            f"[trace {span.trace_id[:8]}] {span.span_type.value}:{span.name} "
            f"{span.duration_ms:.1f}ms {status} outputs={span.outputs}"
        )

    @contextmanager
    def trace(self, name: str, **kwargs) -> Generator[SpanContext, None, None]:
        trace_id = uuid.uuid4().hex
        span = SpanContext(
            name=name,
            span_type=SpanType.TRACE,
            trace_id=trace_id,
            span_id=trace_id,
            start_time=datetime.now(),
            inputs=kwargs.get("inputs") or {},
            metadata=kwargs.get("metadata") or {},
        )
        try:
            yield span
        except Exception as e:
            span.error = str(e)
            raise
        finally:
            self._finish(span)

    @contextmanager
    def span(
        self,
        name: str,
        span_type: SpanType,
        parent: SpanContext | None = None,
        **kwargs,
    ) -> Generator[SpanContext, None, None]:
        span_id = uuid.uuid4().hex
        span = SpanContext(
            name=name,
            span_type=span_type,
            trace_id=parent.trace_id if parent else span_id,
            span_id=span_id,
            parent_span_id=parent.span_id if parent else None,
            start_time=datetime.now(),
            inputs=kwargs.get("inputs") or {},
            metadata=kwargs.get("metadata") or {},
        )
        try:
            yield span
        except Exception as e:
            span.error = str(e)
            raise
        finally:
            self._finish(span)

    def log_llm_call(self, span, model, messages, output, usage=None) -> None:
        span.model = model
        if usage:
            span.prompt_tokens = usage.get("input")
            span.completion_tokens = usage.get("output")
        span.outputs = {"model": model, "usage": usage, "chars": len(output or "")}

    def log_retrieval(self, span, query, documents, scores) -> None:
        span.hits = documents
        span.scores = scores
        span.outputs = {"hits": len(documents), "top_score": max(scores) if scores else None}

    def log_error(self, span, error) -> None:
        span.error = str(error)
        logger.error(f"[trace {(span.trace_id or '')[:8]}] {span.name} failed: {error}")
