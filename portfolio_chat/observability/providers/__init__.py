"""Observability provider implementations."""

from .langfuse import LangfuseProvider
from .logging import LoggingProvider

# Registry of provider classes
PROVIDER_CLASSES = {
    "logging": LoggingProvider,
    "langfuse": LangfuseProvider,
}

__all__ = [
    "LangfuseProvider",
    "LoggingProvider",
    "PROVIDER_CLASSES",
]
