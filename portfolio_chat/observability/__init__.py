"""Tracing for chat requests, fanned out to configurable providers."""

from .base import ObservabilityProvider, SpanContext, SpanType
from .manager import MultiProviderSpan, ObservabilityManager
from .providers import LangfuseProvider, LoggingProvider

__all__ = [
    "ObservabilityProvider",
    "SpanContext",
    "SpanType",
    "MultiProviderSpan",
    "ObservabilityManager",
    "LangfuseProvider",
    "LoggingProvider",
]
