"""Data models for the portfolio chat assistant."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Category(Enum):
    """Portfolio sections a chunk can belong to."""
    BIO = "BIO"
    CONTACT = "CONTACT"
    EDUCATION = "EDUCATION"
    EXPERIENCE = "EXPERIENCE"
    SKILLS = "SKILLS"
    PROJECTS = "PROJECTS"
    ACHIEVEMENTS = "ACHIEVEMENTS"
    LEADERSHIP = "LEADERSHIP"
    INTERESTS = "INTERESTS"

    @classmethod
    def parse(cls, value: "str | Category") -> "Category":
        """Coerce a string (any case) to a Category, raising ValueError if unknown."""
        if isinstance(value, Category):
            return value
        return cls(str(value).strip().upper())


class Route(Enum):
    """Retrieval strategies, in ascending cost order."""
    EXACT = "exact"
    KEYWORD = "keyword"
    CATEGORY = "category"
    FULL = "full"
    REJECT = "reject"


class QueryType(Enum):
    """Coarse query intent used for logging and response tone."""
    PERSONAL = "personal"
    TECHNICAL = "technical"
    CONTACT = "contact"
    EXPERIENCE = "experience"
    GENERAL = "general"


class Outcome(Enum):
    """How a chat turn ended."""
    ANSWERED = "answered"
    REJECTED = "rejected"
    BUDGET_EXCEEDED = "budget_exceeded"
    NO_RESULTS = "no_results"
    ERROR = "error"


class Operation(Enum):
    """Billable operation types recorded in the usage ledger."""
    EMBEDDING = "embedding"
    CHAT_COMPLETION = "chat_completion"
    KEYWORD_SEARCH = "keyword_search"


@dataclass(frozen=True)
class LabeledSection:
    """A `[LABEL] content` span of the raw corpus."""
    label: str
    content: str
    start_offset: int
    end_offset: int


@dataclass(frozen=True)
class Chunk:
    """A retrievable unit of portfolio content."""
    content: str
    category: Category
    subcategory: str | None = None
    keywords: list[str] = field(default_factory=list)
    embedding: list[float] | None = None
    importance_score: float = 1.0
    token_count: int = 0
    order: int = 0
    source_file: str = "portfolio_data"
    position: int = 0

    @property
    def id(self) -> str:
        """Stable per category; re-ingesting one category never touches another's ids."""
        return f"{self.source_file}_{self.category.value.lower()}_{self.position}"


@dataclass
class ProcessingResult:
    """Output of segmenting a labeled document."""
    chunks: list[Chunk]
    total_chunks: int
    total_tokens: int
    category_distribution: dict[str, int]
    processing_errors: list[str] = field(default_factory=list)


@dataclass
class SearchHit:
    """A ranked result from the chunk store."""
    content: str
    category: Category
    similarity: float
    subcategory: str | None = None
    importance_score: float = 1.0
    chunk_id: str | None = None

    @property
    def weighted_score(self) -> float:
        return self.similarity * self.importance_score


@dataclass
class CategoryMatch:
    """A category detected in a query."""
    category: Category
    confidence: float
    matched_terms: list[str] = field(default_factory=list)


@dataclass
class QueryAnalysis:
    """Result of query analysis."""
    original_query: str
    is_in_scope: bool
    detected_categories: list[CategoryMatch] = field(default_factory=list)
    extracted_keywords: list[str] = field(default_factory=list)
    confidence: float = 0.0
    query_type: QueryType = QueryType.GENERAL
    suggested_route: Route = Route.REJECT

    @property
    def top_category(self) -> Category | None:
        return self.detected_categories[0].category if self.detected_categories else None


@dataclass
class ExactMatch:
    """A canned question/answer pair served at zero cost."""
    question: str
    answer: str
    category: Category
    keywords: list[str]


@dataclass
class RoutingDecision:
    """Which retrieval strategy a query should start with."""
    route: Route
    reasoning: str
    estimated_cost: float = 0.0
    category: Category | None = None
    keywords: list[str] = field(default_factory=list)
    exact_match: ExactMatch | None = None


@dataclass
class ChatMessage:
    """One conversation turn."""
    role: str
    content: str
    timestamp: datetime | None = None


@dataclass
class BudgetLimits:
    """Spending ceilings enforced by the usage ledger."""
    monthly_budget: float = 0.60
    daily_budget: float = 0.025
    max_tokens_per_request: int = 1000
    max_requests_per_day: int = 200
    warning_threshold: float = 0.8

    def __post_init__(self):
        errors = []
        for name in ("monthly_budget", "daily_budget", "max_tokens_per_request", "max_requests_per_day"):
            if not getattr(self, name) > 0:
                errors.append(f"{name} must be positive")
        if not 0 < self.warning_threshold <= 1:
            errors.append("warning_threshold must be in (0, 1]")
        if self.daily_budget > self.monthly_budget:
            errors.append("daily_budget must not exceed monthly_budget")
        if errors:
            raise ValueError("; ".join(errors))


@dataclass
class DailyUsage:
    """Usage counters for one calendar day (UTC)."""
    date: str
    tokens: int = 0
    cost: float = 0.0
    requests: int = 0


@dataclass
class HeldReservation:
    """Budget held by an in-flight request, as persisted in the ledger."""
    id: str
    tokens: int
    cost: float
    created_at: str


@dataclass
class UsageLedger:
    """Usage totals for one billing period."""
    period: str
    last_reset: str
    total_tokens: int = 0
    total_cost: float = 0.0
    request_count: int = 0
    daily_usage: list[DailyUsage] = field(default_factory=list)
    reservations: list[HeldReservation] = field(default_factory=list)

    @property
    def reserved_cost(self) -> float:
        return sum(r.cost for r in self.reservations)

    @property
    def reserved_requests(self) -> int:
        return len(self.reservations)

    def reservations_on(self, date: str) -> list[HeldReservation]:
        """Reservations created on a UTC calendar day (ISO date)."""
        return [r for r in self.reservations if r.created_at[:10] == date]

    def drop_expired(self, cutoff: datetime) -> int:
        """Remove reservations created before `cutoff`. Returns how many were dropped."""
        live = [r for r in self.reservations if datetime.fromisoformat(r.created_at) >= cutoff]
        dropped = len(self.reservations) - len(live)
        self.reservations = live
        return dropped

    def day(self, date: str) -> DailyUsage | None:
        for bucket in self.daily_usage:
            if bucket.date == date:
                return bucket
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "last_reset": self.last_reset,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "request_count": self.request_count,
            "daily_usage": [vars(d).copy() for d in self.daily_usage],
            "reservations": [vars(r).copy() for r in self.reservations],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UsageLedger":
        return cls(
            period=data["period"],
            last_reset=data["last_reset"],
            total_tokens=data.get("total_tokens", 0),
            total_cost=data.get("total_cost", 0.0),
            request_count=data.get("request_count", 0),
            daily_usage=[DailyUsage(**d) for d in data.get("daily_usage", [])],
            reservations=[HeldReservation(**r) for r in data.get("reservations", [])],
        )


@dataclass
class TokenTransaction:
    """Audit record of one ledger write attempt."""
    timestamp: str
    tokens: int
    cost: float
    operation: str
    route: str
    success: bool


@dataclass
class UsageStats:
    """Derived view of the ledger for dashboards and budget messages."""
    current_usage: UsageLedger
    budget_limits: BudgetLimits
    remaining_budget: float
    remaining_daily_budget: float
    usage_percentage: float
    daily_usage_percentage: float
    is_near_limit: bool
    can_make_request: bool
    projected_monthly_usage: float


@dataclass
class ChatbotResponse:
    """The final reply for one chat turn, with routing metadata."""
    message: str
    route: Route
    outcome: Outcome
    confidence: float = 0.0
    tokens_used: int = 0
    cost: float = 0.0
    context: list[str] = field(default_factory=list)
    sources: list[Category] = field(default_factory=list)
    analysis: QueryAnalysis | None = None
    decision: RoutingDecision | None = None
    processing_time_ms: float = 0.0
    ledger_error: bool = False
    trace_urls: dict[str, str] = field(default_factory=dict)
