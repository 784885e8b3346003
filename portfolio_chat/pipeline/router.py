"""Routing policy - picks the cheapest retrieval strategy likely to answer a query."""

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from portfolio_chat.config import config
from portfolio_chat.data.canned_answers import EXACT_MATCHES
from portfolio_chat.errors import RetrievalFailure
from portfolio_chat.logger import logger
from portfolio_chat.models import Category, CategoryMatch, ExactMatch, QueryAnalysis, Route, RoutingDecision
from portfolio_chat.utils.text import normalize_for_matching, word_jaccard

from .query_analyzer import extract_query_keywords


class ExactMatchTable:
    """Canned question lookup: normalized equality, then fuzzy, then keyword overlap."""

    def __init__(
        self,
        entries: list[ExactMatch] | None = None,
        similarity_threshold: float | None = None,
        keyword_overlap: float | None = None,
    ):
        self.entries = list(EXACT_MATCHES if entries is None else entries)
        self.similarity_threshold = (
            config.exact_similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self.keyword_overlap = config.exact_keyword_overlap if keyword_overlap is None else keyword_overlap
        self._normalized = [normalize_for_matching(e.question) for e in self.entries]

    def find(self, query: str) -> ExactMatch | None:
        if not query or not query.strip():
            return None
        normalized = normalize_for_matching(query)

        for entry, question in zip(self.entries, self._normalized):
            if question == normalized:
                return entry

        for entry, question in zip(self.entries, self._normalized):
            if word_jaccard(normalized, question) > self.similarity_threshold:
                return entry

        query_keywords = set(extract_query_keywords(normalized))
        for entry in self.entries:
            overlap = sum(1 for k in entry.keywords if k in query_keywords)
            if overlap >= math.ceil(len(entry.keywords) * self.keyword_overlap):
                return entry

        return None


def should_use_category(
    matches: list[CategoryMatch],
    threshold: float | None = None,
    margin: float | None = None,
) -> bool:
    """True when the top category is confident and clearly ahead of the runner-up."""
    if not matches:
        return False
    threshold = config.category_confidence_threshold if threshold is None else threshold
    margin = config.category_margin if margin is None else margin

    top = matches[0]
    has_lead = len(matches) == 1 or (top.confidence - matches[1].confidence) > margin
    return top.confidence >= threshold and has_lead


class RoutingPolicy:
    """Linear cascade from free to paid strategies."""

    def __init__(
        self,
        exact_matches: ExactMatchTable | None = None,
        category_threshold: float | None = None,
        category_margin: float | None = None,
        keyword_ceiling: float | None = None,
    ):
        self.exact_matches = exact_matches or ExactMatchTable()
        self.category_threshold = (
            config.category_confidence_threshold if category_threshold is None else category_threshold
        )
        self.category_margin = config.category_margin if category_margin is None else category_margin
        self.keyword_ceiling = config.keyword_confidence_ceiling if keyword_ceiling is None else keyword_ceiling

    def decide(self, query: str, analysis: QueryAnalysis) -> RoutingDecision:
        if not analysis.is_in_scope:
            return RoutingDecision(route=Route.REJECT, reasoning="Query is not portfolio-related")

        match = self.exact_matches.find(query)
        if match is not None:
            return RoutingDecision(
                route=Route.EXACT,
                reasoning="Exact match found for common question",
                category=match.category,
                exact_match=match,
            )

        if analysis.extracted_keywords and analysis.confidence < self.keyword_ceiling:
            return RoutingDecision(
                route=Route.KEYWORD,
                reasoning="Low confidence query, trying keyword search first",
                keywords=list(analysis.extracted_keywords),
            )

        if should_use_category(analysis.detected_categories, self.category_threshold, self.category_margin):
            top = analysis.detected_categories[0]
            return RoutingDecision(
                route=Route.CATEGORY,
                reasoning=f"High confidence match for {top.category.value} category",
                estimated_cost=config.category_route_cost,
                category=top.category,
                keywords=list(analysis.extracted_keywords),
            )

        return RoutingDecision(
            route=Route.FULL,
            reasoning="Ambiguous query requires full database search",
            estimated_cost=config.full_route_cost,
            keywords=list(analysis.extracted_keywords),
        )


@dataclass(frozen=True)
class Strategy:
    """One retrieval step in a fallback chain."""
    route: Route
    category: Category | None = None
    estimated_cost: float = 0.0

    @property
    def is_paid(self) -> bool:
        return self.estimated_cost > 0


def build_cascade(decision: RoutingDecision, analysis: QueryAnalysis) -> list[Strategy]:
    """
    Ordered strategies for a decision.

    keyword -> category (only when a category was detected); category -> full;
    full and exact stand alone. Reject yields nothing.
    """
    category_cost = config.category_route_cost
    full_cost = config.full_route_cost

    if decision.route is Route.EXACT:
        return [Strategy(Route.EXACT, decision.category)]
    if decision.route is Route.KEYWORD:
        chain = [Strategy(Route.KEYWORD)]
        if analysis.top_category is not None:
            chain.append(Strategy(Route.CATEGORY, analysis.top_category, category_cost))
        return chain
    if decision.route is Route.CATEGORY:
        return [
            Strategy(Route.CATEGORY, decision.category, category_cost),
            Strategy(Route.FULL, None, full_cost),
        ]
    if decision.route is Route.FULL:
        return [Strategy(Route.FULL, None, full_cost)]
    return []


@dataclass
class CascadeOutcome:
    """Result of running a fallback chain."""
    strategy: Strategy | None = None
    result: Any = None
    attempted: list[Route] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.strategy is not None


def run_cascade(
    strategies: list[Strategy],
    execute: Callable[[Strategy], Any],
    before_paid: Callable[[Strategy], None] | None = None,
) -> CascadeOutcome:
    """
    Run strategies in order and stop at the first non-empty result.

    `before_paid` runs ahead of every paid strategy and may raise to abort the
    chain (budget gate). A strategy that raises RetrievalFailure is logged and
    skipped.
    """
    outcome = CascadeOutcome()
    for strategy in strategies:
        if strategy.is_paid and before_paid is not None:
            before_paid(strategy)
        outcome.attempted.append(strategy.route)
        try:
            result = execute(strategy)
        except RetrievalFailure as e:
            logger.warning(f"{strategy.route.value} retrieval failed, falling back: {e}")
            outcome.errors.append(str(e))
            continue
        if result:
            outcome.strategy = strategy
            outcome.result = result
            return outcome
        logger.info(f"{strategy.route.value} retrieval returned nothing")
    return outcome
