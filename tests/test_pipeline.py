"""Tests for configuration and the shared data models."""

import pytest
from pathlib import Path

from portfolio_chat.config import Config
from portfolio_chat.models import (
    BudgetLimits,
    Category,
    Chunk,
    DailyUsage,
    QueryAnalysis,
    CategoryMatch,
    SearchHit,
    UsageLedger,
)


class TestConfig:
    """Test configuration loading."""

    def test_default_config(self, monkeypatch):
        for name in (
            "MONTHLY_BUDGET",
            "DAILY_BUDGET",
            "CATEGORY_CONFIDENCE_THRESHOLD",
            "STRICT_PORTFOLIO_MODE",
            "STRICT_BUDGET_ACCOUNTING",
        ):
            monkeypatch.delenv(name, raising=False)
        config = Config()
        assert config.monthly_budget == 0.60
        assert config.daily_budget == 0.025
        assert config.category_confidence_threshold == 0.6
        assert config.max_message_length == 1000
        assert config.strict_portfolio_mode is True
        assert config.strict_budget_accounting is False

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MONTHLY_BUDGET", "1.5")
        monkeypatch.setenv("STRICT_PORTFOLIO_MODE", "false")
        monkeypatch.setenv("OBSERVABILITY_PROVIDERS", "logging, langfuse")
        monkeypatch.setenv("PRIORITY_SECTIONS", "education,awards")
        config = Config()
        assert config.monthly_budget == 1.5
        assert config.strict_portfolio_mode is False
        assert config.observability_providers == ["logging", "langfuse"]
        assert config.priority_sections == ["EDUCATION", "AWARDS"]

    def test_paths_created(self, tmp_path):
        config = Config()
        config.data_dir = tmp_path / "data"
        config.chroma_dir = tmp_path / "chroma"
        config.__post_init__()
        assert config.data_dir.exists()
        assert config.chroma_dir.exists()

    def test_owner_first_name(self, monkeypatch):
        monkeypatch.setenv("PORTFOLIO_OWNER_NAME", "Ada Lovelace")
        assert Config().owner_first_name == "Ada"


class TestModels:
    """Test data models."""

    def test_category_parse(self):
        assert Category.parse("skills") is Category.SKILLS
        assert Category.parse(Category.BIO) is Category.BIO
        with pytest.raises(ValueError):
            Category.parse("hobbies")

    def test_chunk_id(self):
        chunk = Chunk(content="x", category=Category.BIO, order=3, source_file="resume", position=1)
        assert chunk.id == "resume_bio_1"

    def test_weighted_score(self):
        hit = SearchHit(content="x", category=Category.SKILLS, similarity=0.6, importance_score=1.5)
        assert hit.weighted_score == pytest.approx(0.9)

    def test_query_analysis_top_category(self):
        qa = QueryAnalysis(
            original_query="what are your skills",
            is_in_scope=True,
            detected_categories=[CategoryMatch(Category.SKILLS, 0.37, ["skills"])],
        )
        assert qa.top_category is Category.SKILLS
        assert QueryAnalysis(original_query="", is_in_scope=False).top_category is None

    def test_budget_limits_validation(self):
        with pytest.raises(ValueError, match="monthly_budget must be positive"):
            BudgetLimits(monthly_budget=0)
        with pytest.raises(ValueError, match="daily_budget must not exceed"):
            BudgetLimits(monthly_budget=0.1, daily_budget=0.2)
        with pytest.raises(ValueError, match="warning_threshold"):
            BudgetLimits(warning_threshold=1.5)

    def test_usage_ledger_from_dict_fills_defaults(self):
        ledger = UsageLedger.from_dict({"period": "2024-05", "last_reset": "2024-05-01T00:00:00"})
        assert ledger.total_cost == 0.0
        assert ledger.reserved_requests == 0
        assert ledger.daily_usage == []

    def test_usage_ledger_day_lookup(self):
        ledger = UsageLedger(
            period="2024-05",
            last_reset="2024-05-01T00:00:00",
            daily_usage=[DailyUsage(date="2024-05-14", cost=0.01)],
        )
        assert ledger.day("2024-05-14").cost == 0.01
        assert ledger.day("2024-05-15") is None
        assert UsageLedger.from_dict(ledger.to_dict()) == ledger


class TestPipelineIntegration:
    """Integration tests against the real OpenAI API."""

    @pytest.mark.skipif(
        not Path(".env").exists(),
        reason="No .env file - skipping integration tests"
    )
    def test_out_of_scope_query_without_documents(self, tmp_path):
        """Rejection needs no stored data and no paid call."""
        from portfolio_chat.budget.ledger import UsageLedgerService
        from portfolio_chat.pipeline.orchestrator import PortfolioChatbot
        from portfolio_chat.pipeline.retriever import ChromaPortfolioStore

        chatbot = PortfolioChatbot(
            ChromaPortfolioStore(persist_directory=tmp_path / "chroma"),
            ledger=UsageLedgerService(),
        )
        result = chatbot.chat("What's the weather like today?")

        assert result.cost == 0
        assert result.analysis is not None
        assert not result.analysis.is_in_scope
