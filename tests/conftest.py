"""Shared fakes and fixtures for the portfolio chat tests."""

import hashlib
import math
import random
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from portfolio_chat.budget.cost import CostTracker
from portfolio_chat.budget.ledger import UsageLedgerService
from portfolio_chat.budget.store import InMemoryStore
from portfolio_chat.models import BudgetLimits, Category, Chunk, SearchHit
from portfolio_chat.observability import LoggingProvider, ObservabilityManager
from portfolio_chat.pipeline.embeddings import Embedder
from portfolio_chat.pipeline.generator import Generator
from portfolio_chat.pipeline.orchestrator import PortfolioChatbot
from portfolio_chat.pipeline.retriever import (
    PortfolioRetriever,
    VectorStats,
    VectorStore,
    rank_hits,
    rank_keyword_matches,
)

DIMENSIONS = 8

SAMPLE_DOCUMENT = """[BIO] Marvin Romero is a software engineer who enjoys building reliable web services.

[CONTACT] Email marv@example.com or find Marvin on LinkedIn and GitHub.

[SKILLS] Programming languages: Python, Go, TypeScript. Frameworks: FastAPI, React, Flask.

[PROJECTS] Built a budget-aware portfolio assistant with retrieval and routing.
"""


def hash_vector(text: str, dimensions: int = DIMENSIONS) -> list[float]:
    """Deterministic bag-of-words vector, unit length."""
    vector = [0.0] * dimensions
    for word in text.lower().split():
        digest = hashlib.md5(word.encode("utf-8")).digest()
        vector[digest[0] % dimensions] += 1.0
    if not any(vector):
        vector[0] = 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


class FakeEmbeddings:
    def __init__(self, tokens_per_text: int = 5):
        self.calls = 0
        self.tokens_per_text = tokens_per_text
        self.fail_with: Exception | None = None

    def create(self, model, input, dimensions):
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return SimpleNamespace(
            data=[SimpleNamespace(embedding=hash_vector(text, dimensions)) for text in input],
            usage=SimpleNamespace(
                total_tokens=self.tokens_per_text * len(input),
                prompt_tokens=self.tokens_per_text * len(input),
            ),
        )


def echo_context(messages: list[dict]) -> str:
    """Answer with the context block of the system prompt."""
    system = messages[0]["content"]
    context = system.split("PORTFOLIO CONTEXT:\n", 1)[-1].split("\n\nRemember:", 1)[0]
    return f"Here is what I know: {context}"


class FakeCompletions:
    def __init__(self, reply=echo_context):
        self.calls = 0
        self.last_messages: list[dict] | None = None
        self.last_max_tokens: int | None = None
        self.reply = reply
        self.fail_with: Exception | None = None

    def create(self, model, messages, max_tokens, temperature):
        self.calls += 1
        self.last_messages = messages
        self.last_max_tokens = max_tokens
        if self.fail_with is not None:
            raise self.fail_with
        content = self.reply(messages) if callable(self.reply) else self.reply
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40),
        )


class FakeOpenAI:
    """Just enough of the OpenAI client surface for embeddings and chat."""

    def __init__(self):
        self.embeddings = FakeEmbeddings()
        self.chat = SimpleNamespace(completions=FakeCompletions())


class FakeStore(VectorStore):
    """In-memory vector store; every stored chunk scores `similarity` against any query."""

    def __init__(self, similarity: float = 0.9):
        self.similarity = similarity
        self.chunks: dict[str, Chunk] = {}
        self.fail_with: Exception | None = None
        self.calls = 0

    def _hit(self, chunk: Chunk, similarity: float) -> SearchHit:
        return SearchHit(
            content=chunk.content,
            category=chunk.category,
            similarity=similarity,
            subcategory=chunk.subcategory,
            importance_score=chunk.importance_score,
            chunk_id=chunk.id,
        )

    def _check(self):
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with

    def add_chunks(self, chunks):
        ready = [c for c in chunks if c.embedding]
        for chunk in ready:
            self.chunks[chunk.id] = chunk
        return len(ready)

    def search_by_category(self, vector, category, threshold, limit):
        self._check()
        hits = [self._hit(c, self.similarity) for c in self.chunks.values() if c.category is category]
        return rank_hits(hits, threshold, limit)

    def search_global(self, vector, threshold, limit):
        self._check()
        hits = [self._hit(c, self.similarity) for c in self.chunks.values()]
        return rank_hits(hits, threshold, limit)

    def search_by_keywords(self, keywords, limit):
        self._check()
        chunks = list(self.chunks.values())
        ranked = rank_keyword_matches(keywords, [c.keywords for c in chunks], limit)
        return [self._hit(chunks[i], 1.0) for i, _, _ in ranked]

    def clear_category(self, category: Category) -> int:
        doomed = [cid for cid, c in self.chunks.items() if c.category is category]
        for cid in doomed:
            del self.chunks[cid]
        return len(doomed)

    def get_stats(self) -> VectorStats:
        counts: dict[str, int] = {}
        for chunk in self.chunks.values():
            counts[chunk.category.value] = counts.get(chunk.category.value, 0) + 1
        tokens = sum(c.token_count for c in self.chunks.values())
        return VectorStats(
            total_chunks=len(self.chunks),
            category_counts=counts,
            total_tokens=tokens,
            average_chunk_size=round(tokens / len(self.chunks)) if self.chunks else 0,
        )

    def ping(self) -> bool:
        return self.fail_with is None


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def kv_store():
    return InMemoryStore()


@pytest.fixture
def limits():
    return BudgetLimits(
        monthly_budget=0.60,
        daily_budget=0.025,
        max_tokens_per_request=1000,
        max_requests_per_day=200,
        warning_threshold=0.8,
    )


@pytest.fixture
def ledger(kv_store, limits, clock):
    return UsageLedgerService(kv_store, limits=limits, clock=clock)


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def cost_tracker():
    return CostTracker(llm_model="gpt-4o-mini", embedding_model="text-embedding-3-small")


@pytest.fixture
def embedder(fake_openai):
    return Embedder(openai_client=fake_openai, dimensions=DIMENSIONS, retries=0, backoff=0)


@pytest.fixture
def generator(fake_openai, cost_tracker):
    return Generator(
        openai_client=fake_openai,
        cost_tracker=cost_tracker,
        owner_name="Marvin Romero",
        retries=0,
        backoff=0,
        rng=random.Random(0),
    )


@pytest.fixture
def vector_store():
    return FakeStore()


@pytest.fixture
def retriever(vector_store, embedder, cost_tracker):
    return PortfolioRetriever(vector_store, embedder, cost_tracker, retries=0, backoff=0)


@pytest.fixture
def make_chatbot(vector_store, ledger, retriever, generator):
    """Factory so tests can override routing policy or accounting flags."""

    def factory(**kwargs):
        kwargs.setdefault("ledger", ledger)
        kwargs.setdefault("retriever", retriever)
        kwargs.setdefault("generator", generator)
        kwargs.setdefault(
            "observability", ObservabilityManager(providers=[], instances=[LoggingProvider()])
        )
        kwargs.setdefault("strict_mode", True)
        kwargs.setdefault("budget_enforcement", True)
        kwargs.setdefault("strict_budget_accounting", False)
        return PortfolioChatbot(vector_store, **kwargs)

    return factory


@pytest.fixture
def chatbot(make_chatbot):
    return make_chatbot()


@pytest.fixture
def loaded_chatbot(chatbot):
    chatbot.ingest_document(SAMPLE_DOCUMENT)
    return chatbot
