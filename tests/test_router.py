"""Tests for exact matching, the routing policy and the fallback cascade."""

import pytest

from portfolio_chat.errors import BudgetExceeded, RetrievalFailure
from portfolio_chat.models import Category, CategoryMatch, QueryAnalysis, Route, RoutingDecision
from portfolio_chat.pipeline.query_analyzer import QueryAnalyzer
from portfolio_chat.pipeline.router import (
    ExactMatchTable,
    RoutingPolicy,
    Strategy,
    build_cascade,
    run_cascade,
    should_use_category,
)


@pytest.fixture
def analyzer():
    return QueryAnalyzer(owner_name="Marvin Romero")


@pytest.fixture
def table():
    return ExactMatchTable(similarity_threshold=0.8, keyword_overlap=0.6)


def decide(policy, analyzer, query):
    return policy.decide(query, analyzer.analyze(query, strict_mode=True))


class TestExactMatchTable:
    """Canned question lookup."""

    @pytest.mark.parametrize(
        "query",
        [
            "How can I contact Marvin?",
            "how can i contact marvin",
            "HOW CAN I CONTACT MARVIN!!!",
            "  how can I   contact Marvin  ",
        ],
    )
    def test_normalized_variants(self, table, query):
        match = table.find(query)
        assert match is not None
        assert match.category is Category.CONTACT

    def test_fuzzy_match(self, table):
        match = table.find("how can i contact marvin please")
        assert match is not None
        assert match.question == "how can i contact marvin"

    def test_keyword_overlap_match(self, table):
        match = table.find("email linkedin github reach")
        assert match is not None
        assert match.category is Category.CONTACT

    def test_near_miss(self, table):
        assert table.find("how do i contact marvin") is None

    def test_empty(self, table):
        assert table.find("") is None
        assert table.find("   ") is None


class TestShouldUseCategory:
    """Category confidence and margin gate."""

    def test_single_confident_category(self):
        assert should_use_category([CategoryMatch(Category.SKILLS, 0.7)], threshold=0.6, margin=0.3)

    def test_below_threshold(self):
        assert not should_use_category([CategoryMatch(Category.SKILLS, 0.5)], threshold=0.6, margin=0.3)

    def test_runner_up_too_close(self):
        matches = [CategoryMatch(Category.SKILLS, 0.9), CategoryMatch(Category.PROJECTS, 0.7)]
        assert not should_use_category(matches, threshold=0.6, margin=0.3)

    def test_clear_lead(self):
        matches = [CategoryMatch(Category.SKILLS, 1.0), CategoryMatch(Category.PROJECTS, 0.3)]
        assert should_use_category(matches, threshold=0.6, margin=0.3)

    def test_no_matches(self):
        assert not should_use_category([])


class TestRoutingPolicy:
    """Route selection."""

    def test_out_of_scope_rejected(self, analyzer):
        decision = decide(RoutingPolicy(), analyzer, "What's the weather like?")
        assert decision.route is Route.REJECT
        assert decision.estimated_cost == 0

    def test_exact_match(self, analyzer):
        decision = decide(RoutingPolicy(), analyzer, "How can I contact Marvin?")
        assert decision.route is Route.EXACT
        assert decision.exact_match is not None
        assert decision.estimated_cost == 0

    def test_low_confidence_goes_to_keyword(self, analyzer):
        decision = decide(RoutingPolicy(), analyzer, "python flask")
        assert decision.route is Route.KEYWORD
        assert decision.keywords == ["python", "flask"]

    def test_default_threshold_uses_full(self, analyzer):
        decision = decide(RoutingPolicy(category_threshold=0.6), analyzer, "what are your skills")
        assert decision.route is Route.FULL
        assert decision.estimated_cost == pytest.approx(0.002)

    def test_lower_threshold_uses_category(self, analyzer):
        decision = decide(RoutingPolicy(category_threshold=0.3), analyzer, "what are your skills")
        assert decision.route is Route.CATEGORY
        assert decision.category is Category.SKILLS
        assert decision.estimated_cost == pytest.approx(0.001)

    def test_category_tie_falls_through_to_full(self, analyzer):
        decision = decide(
            RoutingPolicy(category_threshold=0.3, category_margin=0.3), analyzer, "skills and experience"
        )
        assert decision.route is Route.FULL


def analysis_with(*categories: Category) -> QueryAnalysis:
    return QueryAnalysis(
        original_query="q",
        is_in_scope=True,
        detected_categories=[CategoryMatch(c, 0.5) for c in categories],
        extracted_keywords=["q"],
    )


class TestBuildCascade:
    """Fallback chains per route."""

    def test_keyword_with_category(self):
        chain = build_cascade(RoutingDecision(Route.KEYWORD, "low"), analysis_with(Category.SKILLS))
        assert [s.route for s in chain] == [Route.KEYWORD, Route.CATEGORY]
        assert chain[1].category is Category.SKILLS
        assert not chain[0].is_paid
        assert chain[1].is_paid

    def test_keyword_without_category(self):
        chain = build_cascade(RoutingDecision(Route.KEYWORD, "low"), analysis_with())
        assert [s.route for s in chain] == [Route.KEYWORD]

    def test_category_falls_back_to_full(self):
        decision = RoutingDecision(Route.CATEGORY, "high", category=Category.PROJECTS)
        chain = build_cascade(decision, analysis_with(Category.PROJECTS))
        assert [s.route for s in chain] == [Route.CATEGORY, Route.FULL]
        assert chain[0].category is Category.PROJECTS

    def test_full_and_exact_stand_alone(self):
        assert [s.route for s in build_cascade(RoutingDecision(Route.FULL, "x"), analysis_with())] == [Route.FULL]
        assert [s.route for s in build_cascade(RoutingDecision(Route.EXACT, "x"), analysis_with())] == [Route.EXACT]

    def test_reject_is_empty(self):
        assert build_cascade(RoutingDecision(Route.REJECT, "x"), analysis_with()) == []


class TestRunCascade:
    """Sequential execution with budget gate."""

    CHAIN = [
        Strategy(Route.KEYWORD),
        Strategy(Route.CATEGORY, Category.SKILLS, 0.001),
        Strategy(Route.FULL, None, 0.002),
    ]

    def test_stops_at_first_hit(self):
        results = {Route.KEYWORD: [], Route.CATEGORY: ["hit"], Route.FULL: ["other"]}
        outcome = run_cascade(self.CHAIN, lambda s: results[s.route])

        assert outcome.found
        assert outcome.strategy.route is Route.CATEGORY
        assert outcome.result == ["hit"]
        assert outcome.attempted == [Route.KEYWORD, Route.CATEGORY]

    def test_nothing_found(self):
        outcome = run_cascade(self.CHAIN, lambda s: [])
        assert not outcome.found
        assert outcome.attempted == [Route.KEYWORD, Route.CATEGORY, Route.FULL]

    def test_gate_runs_only_before_paid_steps(self):
        gated = []
        run_cascade(self.CHAIN, lambda s: [], before_paid=lambda s: gated.append(s.route))
        assert gated == [Route.CATEGORY, Route.FULL]

    def test_gate_can_abort(self):
        executed = []

        def execute(strategy):
            executed.append(strategy.route)
            return []

        def gate(strategy):
            raise BudgetExceeded(reason="monthly_budget")

        with pytest.raises(BudgetExceeded):
            run_cascade(self.CHAIN, execute, before_paid=gate)
        assert executed == [Route.KEYWORD]

    def test_retrieval_failure_falls_back(self):
        def execute(strategy):
            if strategy.route is Route.CATEGORY:
                raise RetrievalFailure("store down")
            return ["full hit"] if strategy.route is Route.FULL else []

        outcome = run_cascade(self.CHAIN, execute)
        assert outcome.strategy.route is Route.FULL
        assert outcome.errors == ["store down"]
