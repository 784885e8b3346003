"""Configuration management for the portfolio chat assistant."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

load_dotenv()

ObservabilityProvider = Literal["logging", "langfuse"]


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Config:
    """Application configuration."""

    # Portfolio owner
    owner_name: str = field(default_factory=lambda: os.getenv("PORTFOLIO_OWNER_NAME", "Marvin Romero"))

    # OpenAI
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = field(default_factory=lambda: _env_int("EMBEDDING_DIMENSIONS", 768))
    llm_model: str = "gpt-4o-mini"
    max_embedding_chars: int = 8000

    # External call limits
    request_timeout: float = field(default_factory=lambda: _env_float("REQUEST_TIMEOUT", 10.0))
    max_retries: int = 2
    retry_backoff: float = 1.0

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("data"))
    chroma_dir: Path = field(default_factory=lambda: Path("data/chroma"))
    chroma_host: str = field(default_factory=lambda: os.getenv("CHROMA_HOST", ""))
    chroma_port: int = field(default_factory=lambda: int(os.getenv("CHROMA_PORT", "8000")))
    collection_name: str = "portfolio_chunks"
    ledger_path: Path = field(default_factory=lambda: Path(os.getenv("LEDGER_PATH", "data/usage_ledger.json")))

    # Chunking (token estimates)
    max_chunk_size: int = 300
    chunk_overlap: int = 50
    min_chunk_size: int = 50
    priority_sections: list[str] = field(default_factory=list)
    embedding_batch_size: int = 10

    # Routing
    strict_portfolio_mode: bool = field(default_factory=lambda: _env_bool("STRICT_PORTFOLIO_MODE", True))
    category_confidence_threshold: float = field(
        default_factory=lambda: _env_float("CATEGORY_CONFIDENCE_THRESHOLD", 0.6)
    )
    category_margin: float = field(default_factory=lambda: _env_float("CATEGORY_MARGIN", 0.3))
    keyword_confidence_ceiling: float = 0.4
    exact_similarity_threshold: float = 0.8
    exact_keyword_overlap: float = 0.6
    category_route_cost: float = 0.001
    full_route_cost: float = 0.002
    response_token_estimate: int = 300

    # Retrieval
    keyword_top_k: int = 3
    category_threshold: float = 0.5
    category_top_k: int = 5
    full_threshold: float = 0.4
    full_top_k: int = 8

    # Generation
    category_max_tokens: int = 300
    full_max_tokens: int = 400
    temperature: float = 0.7

    # Conversation
    history_window: int = 10
    history_context: int = 3
    max_message_length: int = 1000

    # Budget
    budget_enforcement: bool = True
    strict_budget_accounting: bool = field(default_factory=lambda: _env_bool("STRICT_BUDGET_ACCOUNTING", False))
    monthly_budget: float = field(default_factory=lambda: _env_float("MONTHLY_BUDGET", 0.60))
    daily_budget: float = field(default_factory=lambda: _env_float("DAILY_BUDGET", 0.025))
    max_tokens_per_request: int = field(default_factory=lambda: _env_int("MAX_TOKENS_PER_REQUEST", 1000))
    max_requests_per_day: int = field(default_factory=lambda: _env_int("MAX_REQUESTS_PER_DAY", 200))
    warning_threshold: float = 0.8
    # longest a turn can hold budget: two paid calls, each retried under request_timeout
    reservation_ttl_seconds: float = field(default_factory=lambda: _env_float("RESERVATION_TTL_SECONDS", 300.0))

    # Rate limiting
    rate_limit_requests: int = field(default_factory=lambda: _env_int("RATE_LIMIT_REQUESTS", 10))
    rate_limit_window_seconds: float = 60.0

    # Observability
    observability_providers: list[ObservabilityProvider] = field(default_factory=list)

    def __post_init__(self):
        """Parse list-valued settings from environment."""
        providers_str = os.getenv("OBSERVABILITY_PROVIDERS", "")
        if providers_str:
            self.observability_providers = [p.strip() for p in providers_str.split(",") if p.strip()]

        priority_str = os.getenv("PRIORITY_SECTIONS", "")
        if priority_str:
            self.priority_sections = [p.strip().upper() for p in priority_str.split(",") if p.strip()]

        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.chroma_dir.mkdir(parents=True, exist_ok=True)

    @property
    def owner_first_name(self) -> str:
        return self.owner_name.split()[0] if self.owner_name.strip() else "the owner"


# Global config instance
config = Config()
