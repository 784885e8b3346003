"""Pipeline modules for the portfolio chat assistant."""

from .embeddings import Embedder
from .ingestion import PortfolioIngestor
from .query_analyzer import QueryAnalyzer
from .router import RoutingPolicy
from .retriever import ChromaPortfolioStore, PortfolioRetriever
from .generator import Generator
from .orchestrator import PortfolioChatbot

__all__ = [
    "Embedder",
    "PortfolioIngestor",
    "QueryAnalyzer",
    "RoutingPolicy",
    "ChromaPortfolioStore",
    "PortfolioRetriever",
    "Generator",
    "PortfolioChatbot",
]
