"""Langfuse observability provider (SDK v3)."""

import os
import uuid
from contextlib import ExitStack, contextmanager
from datetime import datetime
from typing import Generator

from langfuse import get_client

from portfolio_chat.logger import logger
from portfolio_chat.observability.base import ObservabilityProvider, SpanContext, SpanType


class LangfuseProvider(ObservabilityProvider):
    """
    Langfuse integration using the SDK v3 API.

    Uses:
    - get_client() singleton
    - start_as_current_observation() context manager
    - flush() for ensuring data is sent
    """

    name = "langfuse"

    def __init__(self):
        self.client = None
        self.init_error: str | None = None

    def initialize(self) -> bool:
        if not os.getenv("LANGFUSE_PUBLIC_KEY") or not os.getenv("LANGFUSE_SECRET_KEY"):
            self.init_error = "Missing API keys (LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY)"
            logger.warning(f"[Langfuse] {self.init_error}")
            return False

        os.environ.setdefault("LANGFUSE_HOST", "https://cloud.langfuse.com")
        try:
            self.client = get_client()
            if hasattr(self.client, "auth_check"):
                self.client.auth_check()
        except Exception as e:
            self.init_error = str(e)
            logger.warning(f"[Langfuse] Failed to initialize: {e}")
            return False

        logger.info("[Langfuse] Initialized successfully")
        return True

    def shutdown(self) -> None:
        if self.client:
            try:
                self.client.flush()
            except Exception as e:
                logger.warning(f"[Langfuse] Error during flush: {e}")

    @contextmanager
    def _observe(self, span: SpanContext, as_type: str, **kwargs) -> Generator[SpanContext, None, None]:
        with ExitStack() as stack:
            observation = None
            try:
                observation = stack.enter_context(
                    self.client.start_as_current_observation(
                        as_type=as_type,
                        name=span.name,
                        input=kwargs.get("inputs"),
                        metadata=kwargs.get("metadata"),
                    )
                )
                span.metadata["langfuse_span"] = observation
            except Exception as e:
                logger.warning(f"[Langfuse] Error starting {span.name}: {e}")

            try:
                yield span
            except Exception as e:
                span.error = str(e)
                if observation is not None:
                    observation.update(output={"error": str(e)}, level="ERROR", status_message=str(e))
                raise
            if observation is not None:
                observation.update(output=span.outputs)

    @contextmanager
    def trace(self, name: str, **kwargs) -> Generator[SpanContext, None, None]:
        trace_id = str(uuid.uuid4())
        span = SpanContext(
            name=name,
            span_type=SpanType.TRACE,
            trace_id=trace_id,
            span_id=trace_id,
            start_time=datetime.now(),
        )
        with self._observe(span, "span", **kwargs) as s:
            yield s

    @contextmanager
    def span(
        self,
        name: str,
        span_type: SpanType,
        parent: SpanContext | None = None,
        **kwargs,
    ) -> Generator[SpanContext, None, None]:
        span_id = str(uuid.uuid4())
        span = SpanContext(
            name=name,
            span_type=span_type,
            trace_id=parent.trace_id if parent else span_id,
            span_id=span_id,
            parent_span_id=parent.span_id if parent else None,
            start_time=datetime.now(),
        )
        as_type = "generation" if span_type == SpanType.GENERATION else "span"
        with self._observe(span, as_type, **kwargs) as s:
            yield s

    def log_llm_call(self, span, model, messages, output, usage=None) -> None:
        span.model = model
        span.inputs = {"messages": messages}
        span.outputs = {"content": output}
        if usage:
            span.prompt_tokens = usage.get("input")
            span.completion_tokens = usage.get("output")

        observation = span.metadata.get("langfuse_span")
        if observation is None:
            return
        try:
            observation.update(model=model, input=messages, output=output, usage_details=usage)
        except Exception as e:
            logger.warning(f"[Langfuse] Error logging LLM call: {e}")

    def log_retrieval(self, span, query, documents, scores) -> None:
        span.inputs = {"query": query}
        span.outputs = {"documents": documents, "scores": scores}
        span.hits = documents
        span.scores = scores

        observation = span.metadata.get("langfuse_span")
        if observation is None:
            return
        try:
            observation.update(input={"query": query}, output={"documents": documents, "scores": scores})
        except Exception as e:
            logger.warning(f"[Langfuse] Error logging retrieval: {e}")

    def log_error(self, span, error) -> None:
        span.error = str(error)
        observation = span.metadata.get("langfuse_span")
        if observation is None:
            return
        try:
            observation.update(level="ERROR", status_message=str(error))
        except Exception as e:
            logger.warning(f"[Langfuse] Error logging error: {e}")

    def get_trace_url(self, trace_id: str) -> str | None:
        host = os.getenv("LANGFUSE_HOST", "https://cloud.langfuse.com")
        return f"{host}/trace/{trace_id}"
