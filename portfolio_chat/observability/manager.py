"""Observability Manager - fans traces out to every configured provider."""

import atexit
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generator

from portfolio_chat.config import config, ObservabilityProvider as ProviderName
from portfolio_chat.logger import logger

from .base import ObservabilityProvider, SpanContext, SpanType
from .providers import PROVIDER_CLASSES


@dataclass
class MultiProviderSpan:
    """Span that wraps multiple provider spans."""

    name: str
    span_type: SpanType
    provider_spans: dict[str, SpanContext] = field(default_factory=dict)
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def trace_ids(self) -> dict[str, str]:
        """Get trace IDs from all providers."""
        return {
            name: span.trace_id
            for name, span in self.provider_spans.items()
            if span.trace_id
        }

    def set_output(self, **outputs) -> None:
        """Attach outputs to every provider span."""
        for span in self.provider_spans.values():
            span.outputs.update(outputs)


class ObservabilityManager:
    """
    Manages multiple observability providers simultaneously.

    Provider failures are logged and never reach the chat path.
    """

    def __init__(
        self,
        providers: list[ProviderName] | None = None,
        instances: list[ObservabilityProvider] | None = None,
    ):
        self.active_providers: dict[str, ObservabilityProvider] = {}
        self.init_errors: dict[str, str] = {}
        self.provider_names = list(config.observability_providers if providers is None else providers)

        for provider in instances or []:
            self.active_providers[provider.name] = provider

        self._initialize_providers()
        atexit.register(self.shutdown)

    def _initialize_providers(self) -> None:
        """Initialize all configured providers."""
        if self.provider_names:
            logger.info(f"[Observability] Initializing providers: {self.provider_names}")

        for name in self.provider_names:
            if name in self.active_providers:
                continue
            if name not in PROVIDER_CLASSES:
                logger.warning(f"[Observability] Unknown provider: {name}")
                self.init_errors[name] = "Unknown provider type"
                continue

            try:
                provider = PROVIDER_CLASSES[name]()
                if provider.initialize():
                    self.active_providers[name] = provider
                    logger.info(f"[Observability] Initialized: {name}")
                else:
                    self.init_errors[name] = getattr(provider, "init_error", None) or "Initialization failed"
                    logger.warning(f"[Observability] Failed to initialize: {name}")
            except Exception as e:
                logger.error(f"[Observability] Error initializing {name}: {e}")
                self.init_errors[name] = str(e)

    def shutdown(self) -> None:
        """Shutdown all providers."""
        for name, provider in self.active_providers.items():
            try:
                provider.shutdown()
            except Exception as e:
                logger.warning(f"[Observability] Error shutting down {name}: {e}")

    @contextmanager
    def _fan_out(self, multi_span: MultiProviderSpan, open_span) -> Generator[MultiProviderSpan, None, None]:
        """Enter one context per provider, yield, then exit them all."""
        provider_context_managers = {}
        for pname, provider in self.active_providers.items():
            try:
                ctx_manager = open_span(pname, provider)
                multi_span.provider_spans[pname] = ctx_manager.__enter__()
                provider_context_managers[pname] = ctx_manager
            except Exception as e:
                logger.warning(f"[Observability] Error starting {multi_span.name} in {pname}: {e}")

        error: BaseException | None = None
        try:
            yield multi_span
        except BaseException as e:
            error = e
            raise
        finally:
            exc_info = (type(error), error, error.__traceback__) if error else (None, None, None)
            for pname, ctx_manager in provider_context_managers.items():
                try:
                    ctx_manager.__exit__(*exc_info)
                except BaseException as e:
                    if e is not error:
                        logger.warning(f"[Observability] Error ending {multi_span.name} in {pname}: {e}")

    @contextmanager
    def trace(self, name: str, **kwargs) -> Generator[MultiProviderSpan, None, None]:
        """
        Start a trace across all active providers.

        Usage:
            with manager.trace("chat") as trace:
                with manager.span("retrieve", SpanType.RETRIEVAL, trace) as span:
                    ...
        """
        multi_span = MultiProviderSpan(name=name, span_type=SpanType.TRACE)
        with self._fan_out(multi_span, lambda pname, p: p.trace(name, **kwargs)) as span:
            yield span

    @contextmanager
    def span(
        self,
        name: str,
        span_type: SpanType,
        parent: MultiProviderSpan | None = None,
        **kwargs,
    ) -> Generator[MultiProviderSpan, None, None]:
        """Create a span across all active providers."""
        multi_span = MultiProviderSpan(name=name, span_type=span_type)

        def open_span(pname: str, provider: ObservabilityProvider):
            parent_span = parent.provider_spans.get(pname) if parent else None
            return provider.span(name, span_type, parent_span, **kwargs)

        with self._fan_out(multi_span, open_span) as span:
            yield span

    def log_llm_call(
        self,
        span: MultiProviderSpan,
        model: str,
        messages: list[dict],
        output: str,
        usage: dict[str, int] | None = None,
    ) -> None:
        """Log a completion to all providers."""
        for pname, provider in self.active_providers.items():
            if pname in span.provider_spans:
                try:
                    provider.log_llm_call(span.provider_spans[pname], model, messages, output, usage)
                except Exception as e:
                    logger.warning(f"[Observability] Error logging LLM call in {pname}: {e}")

    def log_retrieval(
        self,
        span: MultiProviderSpan,
        query: str,
        documents: list[dict],
        scores: list[float],
    ) -> None:
        """Log retrieval to all providers."""
        for pname, provider in self.active_providers.items():
            if pname in span.provider_spans:
                try:
                    provider.log_retrieval(span.provider_spans[pname], query, documents, scores)
                except Exception as e:
                    logger.warning(f"[Observability] Error logging retrieval in {pname}: {e}")

    def log_error(self, span: MultiProviderSpan, error: Exception) -> None:
        """Log error to all providers."""
        for pname, provider in self.active_providers.items():
            if pname in span.provider_spans:
                try:
                    provider.log_error(span.provider_spans[pname], error)
                except Exception as e:
                    logger.warning(f"[Observability] Error logging error in {pname}: {e}")

    def get_trace_urls(self, trace: MultiProviderSpan) -> dict[str, str]:
        """Get URLs to view this trace in all providers' UIs."""
        urls = {}
        for pname, trace_id in trace.trace_ids.items():
            provider = self.active_providers.get(pname)
            if provider is None:
                continue
            try:
                url = provider.get_trace_url(trace_id)
            except Exception as e:
                logger.warning(f"[Observability] Error building trace URL in {pname}: {e}")
                continue
            if url:
                urls[pname] = url
        return urls

    def get_provider_status(self) -> dict[str, dict]:
        """Get status of configured providers."""
        status = {name: {"active": True} for name in self.active_providers}
        for name, error in self.init_errors.items():
            status[name] = {"active": False, "error": error}
        return status
