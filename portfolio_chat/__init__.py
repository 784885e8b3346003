"""Cost-routed retrieval chat assistant for a personal portfolio."""

__version__ = "0.1.0"
