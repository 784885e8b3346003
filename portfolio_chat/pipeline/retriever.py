"""Chunk storage and the keyword / category / global retrieval backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings
from rank_bm25 import BM25Okapi

from portfolio_chat.budget.cost import CostTracker
from portfolio_chat.config import config
from portfolio_chat.errors import RetrievalFailure
from portfolio_chat.logger import logger
from portfolio_chat.models import Category, Chunk, Operation, Route, SearchHit
from portfolio_chat.utils.retry import call_with_retries

from .embeddings import Embedder


@dataclass
class VectorStats:
    """Summary of what the store holds."""
    total_chunks: int = 0
    category_counts: dict[str, int] = field(default_factory=dict)
    total_tokens: int = 0
    average_chunk_size: int = 0


class VectorStore(ABC):
    """Similarity-search store for portfolio chunks."""

    @abstractmethod
    def add_chunks(self, chunks: list[Chunk]) -> int:
        """Store embedded chunks, returning how many were written."""

    @abstractmethod
    def search_by_category(
        self, vector: list[float], category: Category, threshold: float, limit: int
    ) -> list[SearchHit]:
        """Vector search restricted to one category."""

    @abstractmethod
    def search_global(self, vector: list[float], threshold: float, limit: int) -> list[SearchHit]:
        """Vector search across all categories."""

    @abstractmethod
    def search_by_keywords(self, keywords: list[str], limit: int) -> list[SearchHit]:
        """Zero-cost match of query keywords against stored chunk keywords."""

    @abstractmethod
    def clear_category(self, category: Category) -> int:
        """Delete every chunk in a category, returning the count removed."""

    @abstractmethod
    def get_stats(self) -> VectorStats:
        """Chunk counts per category and token totals."""

    @abstractmethod
    def ping(self) -> bool:
        """True when the backing store is reachable."""


def rank_hits(hits: list[SearchHit], threshold: float, limit: int) -> list[SearchHit]:
    """Keep hits at or above `threshold` similarity, ordered by importance-weighted score."""
    kept = [h for h in hits if h.similarity >= threshold]
    kept.sort(key=lambda h: h.weighted_score, reverse=True)
    return kept[:limit]


def rank_keyword_matches(
    keywords: list[str],
    chunk_keywords: list[list[str]],
    limit: int,
) -> list[tuple[int, int, float]]:
    """
    Rank chunks by keyword overlap, breaking ties with BM25 over the keyword sets.

    Returns (index, overlap, bm25_score) for chunks sharing at least one keyword.
    """
    query = [k.strip().lower() for k in keywords if k and k.strip()]
    if not query or not chunk_keywords:
        return []

    query_set = set(query)
    bm25 = BM25Okapi([kws or [""] for kws in chunk_keywords])
    scores = bm25.get_scores(query)

    matches = []
    for i, kws in enumerate(chunk_keywords):
        overlap = len(query_set & set(kws))
        if overlap:
            matches.append((i, overlap, float(scores[i])))

    matches.sort(key=lambda m: (m[1], m[2]), reverse=True)
    return matches[:limit]


class ChromaPortfolioStore(VectorStore):
    """Handles vector storage and retrieval using ChromaDB."""

    def __init__(
        self,
        client: Any | None = None,
        persist_directory: Path | None = None,
        collection_name: str | None = None,
    ):
        self.persist_dir = persist_directory or config.chroma_dir

        if client is not None:
            self.chroma_client = client
        elif config.chroma_host:
            self.chroma_client = chromadb.HttpClient(
                host=config.chroma_host,
                port=config.chroma_port,
                settings=Settings(anonymized_telemetry=False),
            )
        else:
            self.chroma_client = chromadb.PersistentClient(
                path=str(self.persist_dir),
                settings=Settings(anonymized_telemetry=False),
            )
        # embeddings are always supplied by the caller
        self.collection = self.chroma_client.get_or_create_collection(
            name=collection_name or config.collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )

        self._keyword_index: tuple[list[str], list[list[str]], list[dict], list[str]] | None = None

    def add_chunks(self, chunks: list[Chunk]) -> int:
        """Add chunks with embeddings to the vector store."""
        ready = [c for c in chunks if c.embedding]
        if len(ready) < len(chunks):
            logger.warning(f"Skipping {len(chunks) - len(ready)} chunks without embeddings")
        if not ready:
            return 0

        self.collection.upsert(
            ids=[c.id for c in ready],
            embeddings=[c.embedding for c in ready],
            documents=[c.content for c in ready],
            metadatas=[
                {
                    "category": c.category.value,
                    "subcategory": c.subcategory or "",
                    "keywords": ",".join(c.keywords),
                    "importance_score": c.importance_score,
                    "token_count": c.token_count,
                    "chunk_order": c.order,
                    "category_position": c.position,
                    "source_file": c.source_file,
                }
                for c in ready
            ],
        )
        self._keyword_index = None
        return len(ready)

    def _to_hits(self, results: dict) -> list[SearchHit]:
        hits = []
        if results["ids"] and results["ids"][0]:
            for i, chunk_id in enumerate(results["ids"][0]):
                meta = results["metadatas"][0][i] or {}
                # cosine distance -> similarity
                distance = results["distances"][0][i] if results["distances"] else 0
                hits.append(
                    SearchHit(
                        content=results["documents"][0][i],
                        category=Category.parse(meta.get("category", "BIO")),
                        similarity=1 - distance,
                        subcategory=meta.get("subcategory") or None,
                        importance_score=float(meta.get("importance_score", 1.0)),
                        chunk_id=chunk_id,
                    )
                )
        return hits

    def _query(self, vector: list[float], limit: int, where: dict | None) -> list[SearchHit]:
        if self.collection.count() == 0:
            return []
        results = self.collection.query(
            query_embeddings=[vector],
            n_results=limit,
            where=where,
            include=["documents", "metadatas", "distances"],
        )
        return self._to_hits(results)

    def search_by_category(
        self, vector: list[float], category: Category, threshold: float, limit: int
    ) -> list[SearchHit]:
        # over-fetch so importance re-ranking can promote lower-similarity chunks
        hits = self._query(vector, limit * 2, {"category": category.value})
        return rank_hits(hits, threshold, limit)

    def search_global(self, vector: list[float], threshold: float, limit: int) -> list[SearchHit]:
        hits = self._query(vector, limit * 2, None)
        return rank_hits(hits, threshold, limit)

    def _load_keyword_index(self) -> tuple[list[str], list[list[str]], list[dict], list[str]]:
        """Cache ids, keyword lists, metadata and documents for keyword search."""
        if self._keyword_index is None:
            result = self.collection.get(include=["documents", "metadatas"])
            ids = list(result["ids"] or [])
            metas = [m or {} for m in (result["metadatas"] or [])]
            docs = list(result["documents"] or [])
            keyword_lists = [
                [k for k in m.get("keywords", "").split(",") if k] for m in metas
            ]
            self._keyword_index = (ids, keyword_lists, metas, docs)
        return self._keyword_index

    def search_by_keywords(self, keywords: list[str], limit: int) -> list[SearchHit]:
        ids, keyword_lists, metas, docs = self._load_keyword_index()
        hits = []
        for index, _overlap, _score in rank_keyword_matches(keywords, keyword_lists, limit):
            meta = metas[index]
            hits.append(
                SearchHit(
                    content=docs[index],
                    category=Category.parse(meta.get("category", "BIO")),
                    similarity=1.0,
                    subcategory=meta.get("subcategory") or None,
                    importance_score=float(meta.get("importance_score", 1.0)),
                    chunk_id=ids[index],
                )
            )
        return hits

    def clear_category(self, category: Category) -> int:
        existing = self.collection.get(where={"category": category.value})
        count = len(existing["ids"] or [])
        if count:
            self.collection.delete(where={"category": category.value})
            self._keyword_index = None
        logger.info(f"Cleared {count} chunks from category: {category.value}")
        return count

    def get_stats(self) -> VectorStats:
        result = self.collection.get(include=["metadatas"])
        counts: dict[str, int] = {}
        total_tokens = 0
        for meta in result["metadatas"] or []:
            meta = meta or {}
            category = meta.get("category", "UNKNOWN")
            counts[category] = counts.get(category, 0) + 1
            total_tokens += int(meta.get("token_count", 0))
        total = sum(counts.values())
        return VectorStats(
            total_chunks=total,
            category_counts=counts,
            total_tokens=total_tokens,
            average_chunk_size=round(total_tokens / total) if total else 0,
        )

    def ping(self) -> bool:
        try:
            self.chroma_client.heartbeat()
            return True
        except Exception as e:
            logger.warning(f"Vector store heartbeat failed: {e}")
            return False


@dataclass
class RetrievalResult:
    """Hits from one retrieval backend and what producing them cost."""
    route: Route
    hits: list[SearchHit]
    tokens_used: int = 0
    cost: float = 0.0

    def __bool__(self) -> bool:
        return bool(self.hits)


class PortfolioRetriever:
    """Runs keyword, category-filtered and global retrieval against a store."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder | None = None,
        cost_tracker: CostTracker | None = None,
        retries: int | None = None,
        backoff: float | None = None,
    ):
        self.store = store
        self.embedder = embedder or Embedder()
        self.cost_tracker = cost_tracker or CostTracker()
        self.retries = config.max_retries if retries is None else retries
        self.backoff = config.retry_backoff if backoff is None else backoff

    def _store_call(self, label: str, fn):
        try:
            return call_with_retries(fn, label=label, retries=self.retries, backoff=self.backoff)
        except Exception as e:
            raise RetrievalFailure(f"{label} failed: {e}") from e

    def keyword_search(self, keywords: list[str], limit: int | None = None) -> RetrievalResult:
        """Zero-cost search over stored keyword sets."""
        clean = [k.strip().lower() for k in keywords if k and k.strip()]
        if not clean:
            return RetrievalResult(route=Route.KEYWORD, hits=[])
        hits = self._store_call(
            "keyword_search",
            lambda: self.store.search_by_keywords(clean, limit or config.keyword_top_k),
        )
        return RetrievalResult(route=Route.KEYWORD, hits=hits)

    def _embed(self, query: str):
        embedding = self.embedder.embed(query)
        cost = self.cost_tracker.estimate_operation_cost(Operation.EMBEDDING, embedding.tokens_used)
        return embedding, cost

    def category_search(
        self,
        query: str,
        category: Category,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> RetrievalResult:
        """Vector search within one category."""
        embedding, cost = self._embed(query)
        hits = self._store_call(
            "category_search",
            lambda: self.store.search_by_category(
                embedding.vector,
                category,
                config.category_threshold if threshold is None else threshold,
                limit or config.category_top_k,
            ),
        )
        return RetrievalResult(
            route=Route.CATEGORY, hits=hits, tokens_used=embedding.tokens_used, cost=cost
        )

    def full_search(
        self,
        query: str,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> RetrievalResult:
        """Vector search across every category with a wider net."""
        embedding, cost = self._embed(query)
        hits = self._store_call(
            "full_search",
            lambda: self.store.search_global(
                embedding.vector,
                config.full_threshold if threshold is None else threshold,
                limit or config.full_top_k,
            ),
        )
        return RetrievalResult(
            route=Route.FULL, hits=hits, tokens_used=embedding.tokens_used, cost=cost
        )
