"""Chat orchestrator - analysis, routing, retrieval cascade, synthesis and accounting."""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from portfolio_chat.budget.ledger import Reservation, UsageLedgerService
from portfolio_chat.budget.store import JsonFileStore
from portfolio_chat.config import config
from portfolio_chat.errors import (
    BudgetExceeded,
    GenerationFailure,
    LedgerWriteError,
    ScopeRejection,
    ValidationError,
)
from portfolio_chat.logger import logger
from portfolio_chat.models import (
    Category,
    ChatbotResponse,
    ChatMessage,
    Operation,
    Outcome,
    ProcessingResult,
    QueryAnalysis,
    Route,
    RoutingDecision,
    SearchHit,
)
from portfolio_chat.observability import MultiProviderSpan, ObservabilityManager, SpanType
from portfolio_chat.utils.text import estimate_token_count

from .generator import Completion, Generator, response_confidence
from .ingestion import PortfolioIngestor, ProcessingOptions
from .query_analyzer import QueryAnalyzer
from .retriever import ChromaPortfolioStore, PortfolioRetriever, RetrievalResult, VectorStore
from .router import CascadeOutcome, RoutingPolicy, Strategy, build_cascade, run_cascade


@dataclass
class TurnUsage:
    """Spend accumulated while answering one message."""
    tokens: int = 0
    cost: float = 0.0
    completion_used: bool = False
    reservations: list[Reservation] = field(default_factory=list)
    routes_run: list[Route] = field(default_factory=list)

    def add(self, tokens: int, cost: float) -> None:
        self.tokens += tokens
        self.cost += cost

    @property
    def operation(self) -> Operation:
        return Operation.CHAT_COMPLETION if self.completion_used else Operation.EMBEDDING


@dataclass
class ChatbotStats:
    total_interactions: int = 0
    successful_responses: int = 0
    average_response_time_ms: float = 0.0
    route_counts: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if not self.total_interactions:
            return 0.0
        return self.successful_responses / self.total_interactions * 100


class PortfolioChatbot:
    """
    Answers portfolio questions through progressively more expensive strategies.

    Every call to `chat` ends in a reply; only malformed input raises.
    """

    def __init__(
        self,
        store: VectorStore,
        ledger: UsageLedgerService | None = None,
        retriever: PortfolioRetriever | None = None,
        generator: Generator | None = None,
        analyzer: QueryAnalyzer | None = None,
        policy: RoutingPolicy | None = None,
        ingestor: PortfolioIngestor | None = None,
        observability: ObservabilityManager | None = None,
        strict_mode: bool | None = None,
        budget_enforcement: bool | None = None,
        strict_budget_accounting: bool | None = None,
    ):
        self.store = store
        self.ledger = ledger or UsageLedgerService()
        self.retriever = retriever or PortfolioRetriever(store)
        self.generator = generator or Generator()
        self.analyzer = analyzer or QueryAnalyzer()
        self.policy = policy or RoutingPolicy()
        self.ingestor = ingestor or PortfolioIngestor(self.retriever.embedder)
        self.obs = observability or ObservabilityManager()

        self.strict_mode = config.strict_portfolio_mode if strict_mode is None else strict_mode
        self.budget_enforcement = config.budget_enforcement if budget_enforcement is None else budget_enforcement
        self.strict_budget_accounting = (
            config.strict_budget_accounting if strict_budget_accounting is None else strict_budget_accounting
        )

        self.history: list[ChatMessage] = []
        self.stats = ChatbotStats()
        self._lock = threading.Lock()

    # ---- chat ----

    def validate_message(self, message: Any) -> str:
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")
        if len(message) > config.max_message_length:
            raise ValidationError(
                f"Message too long (max {config.max_message_length} characters)"
            )
        return message.strip()

    def chat(self, message: str, history: list[ChatMessage] | None = None) -> ChatbotResponse:
        """
        Answer one user message.

        Args:
            message: The user's question (1..max_message_length chars)
            history: Prior turns from the client; defaults to this bot's own history

        Returns:
            ChatbotResponse with reply text and routing metadata

        Raises:
            ValidationError: for empty or over-length messages
        """
        message = self.validate_message(message)
        start_time = time.time()
        if history is None:
            with self._lock:
                history = list(self.history)

        with self.obs.trace("portfolio_chat", inputs={"message": message}) as trace:
            try:
                response = self._respond(message, history, trace)
            except Exception as e:
                logger.exception(f"Chat processing error: {e}")
                self.obs.log_error(trace, e)
                response = self._reply(self.generator.error(), Route.REJECT, Outcome.ERROR)

            response.processing_time_ms = (time.time() - start_time) * 1000
            response.trace_urls = self.obs.get_trace_urls(trace)
            trace.set_output(
                route=response.route.value,
                outcome=response.outcome.value,
                tokens=response.tokens_used,
                cost=response.cost,
            )

        self._update_state(message, response)
        logger.info(
            f"Chat answered via {response.route.value} ({response.outcome.value}) "
            f"in {response.processing_time_ms:.0f}ms, cost ${response.cost:.6f}"
        )
        return response

    def _reply(
        self,
        message: str,
        route: Route,
        outcome: Outcome,
        analysis: QueryAnalysis | None = None,
        decision: RoutingDecision | None = None,
        **kwargs,
    ) -> ChatbotResponse:
        return ChatbotResponse(
            message=message,
            route=route,
            outcome=outcome,
            analysis=analysis,
            decision=decision,
            **kwargs,
        )

    def _classify(
        self, message: str, trace: MultiProviderSpan
    ) -> tuple[QueryAnalysis, RoutingDecision]:
        """
        Analyze and route a message.

        Raises:
            ScopeRejection: when the query is out of scope or the policy rejects it
        """
        with self.obs.span("analyze_query", SpanType.STEP, trace, inputs={"query": message}) as span:
            analysis = self.analyzer.analyze(message, strict_mode=self.strict_mode)
            span.set_output(in_scope=analysis.is_in_scope, confidence=analysis.confidence)

        if not analysis.is_in_scope and self.strict_mode:
            raise ScopeRejection("Query failed the strict scope gate", analysis=analysis)

        with self.obs.span("route", SpanType.STEP, trace) as span:
            decision = self.policy.decide(message, analysis)
            span.set_output(route=decision.route.value, reasoning=decision.reasoning)
        logger.info(f"Routing decision: {decision.route.value} - {decision.reasoning}")

        if decision.route is Route.REJECT:
            raise ScopeRejection(decision.reasoning, analysis=analysis, decision=decision)
        return analysis, decision

    def _respond(self, message: str, history: list[ChatMessage], trace: MultiProviderSpan) -> ChatbotResponse:
        try:
            analysis, decision = self._classify(message, trace)
        except ScopeRejection as e:
            logger.info(f"Rejected out-of-scope query: {e}")
            return self._reply(
                self.generator.rejection(), Route.REJECT, Outcome.REJECTED, e.analysis, e.decision, confidence=1.0
            )

        if decision.route is Route.EXACT and decision.exact_match is not None:
            match = decision.exact_match
            return self._reply(
                match.answer,
                Route.EXACT,
                Outcome.ANSWERED,
                analysis,
                decision,
                confidence=1.0,
                context=[match.answer],
                sources=[match.category],
            )

        usage = TurnUsage()
        try:
            return self._run_cascade(message, history, analysis, decision, usage, trace)
        finally:
            for reservation in usage.reservations:
                self.ledger.release(reservation)

    def _run_cascade(
        self,
        message: str,
        history: list[ChatMessage],
        analysis: QueryAnalysis,
        decision: RoutingDecision,
        usage: TurnUsage,
        trace: MultiProviderSpan,
    ) -> ChatbotResponse:
        estimated_tokens = estimate_token_count(message) + config.response_token_estimate

        def before_paid(strategy: Strategy) -> None:
            if self.budget_enforcement:
                usage.reservations.append(self.ledger.reserve(estimated_tokens, strategy.estimated_cost))

        def execute(strategy: Strategy) -> RetrievalResult:
            with self.obs.span(
                f"{strategy.route.value}_search", SpanType.RETRIEVAL, trace, inputs={"query": message}
            ) as span:
                usage.routes_run.append(strategy.route)
                result = self._retrieve(strategy, message, analysis)
                usage.add(result.tokens_used, result.cost)
                self.obs.log_retrieval(
                    span,
                    query=message,
                    documents=[{"id": h.chunk_id, "category": h.category.value} for h in result.hits],
                    scores=[h.similarity for h in result.hits],
                )
            return result

        try:
            outcome = run_cascade(build_cascade(decision, analysis), execute, before_paid)
        except BudgetExceeded as e:
            logger.warning(f"Budget gate blocked request: {e.reason}")
            # spend from earlier steps stays attributed to the strategy that incurred it
            route = usage.routes_run[-1] if usage.cost > 0 else Route.REJECT
            response = self._budget_reply(analysis, decision, route)
            return self._account(response, usage, decision)

        if not outcome.found:
            response = self._empty_reply(outcome, analysis, decision)
            return self._account(response, usage, decision)

        response = self._answer(message, history, outcome, analysis, decision, usage, trace)
        return self._account(response, usage, decision)

    def _retrieve(self, strategy: Strategy, message: str, analysis: QueryAnalysis) -> RetrievalResult:
        if strategy.route is Route.KEYWORD:
            keywords = analysis.extracted_keywords or [message.lower()]
            return self.retriever.keyword_search(keywords, config.keyword_top_k)
        if strategy.route is Route.CATEGORY:
            return self.retriever.category_search(
                message, strategy.category, config.category_threshold, config.category_top_k
            )
        return self.retriever.full_search(message, config.full_threshold, config.full_top_k)

    def _empty_reply(
        self, outcome: CascadeOutcome, analysis: QueryAnalysis, decision: RoutingDecision
    ) -> ChatbotResponse:
        route = outcome.attempted[-1] if outcome.attempted else decision.route
        if outcome.errors and len(outcome.errors) == len(outcome.attempted):
            return self._reply(self.generator.error(), route, Outcome.ERROR, analysis, decision)
        return self._reply(self.generator.no_results(), route, Outcome.NO_RESULTS, analysis, decision, confidence=0.3)

    def _budget_reply(
        self, analysis: QueryAnalysis, decision: RoutingDecision, route: Route = Route.REJECT
    ) -> ChatbotResponse:
        try:
            stats = self.ledger.usage_stats()
        except Exception as e:
            logger.error(f"Could not read usage stats: {e}")
            stats = None
        return self._reply(
            self.generator.budget_exceeded(stats), route, Outcome.BUDGET_EXCEEDED, analysis, decision, confidence=1.0
        )

    def _answer(
        self,
        message: str,
        history: list[ChatMessage],
        outcome: CascadeOutcome,
        analysis: QueryAnalysis,
        decision: RoutingDecision,
        usage: TurnUsage,
        trace: MultiProviderSpan,
    ) -> ChatbotResponse:
        strategy: Strategy = outcome.strategy
        hits: list[SearchHit] = outcome.result.hits
        context = [h.content for h in hits]
        sources = list(dict.fromkeys(h.category for h in hits))

        if strategy.route is Route.KEYWORD:
            return self._reply(
                self.generator.keyword_reply(hits),
                Route.KEYWORD,
                Outcome.ANSWERED,
                analysis,
                decision,
                confidence=0.8,
                context=context,
                sources=sources,
            )

        if strategy.route is Route.FULL:
            recent = history[-config.history_context:] if config.history_context else []
            max_tokens = config.full_max_tokens
        else:
            recent = []
            max_tokens = config.category_max_tokens

        messages = self.generator.build_messages(message, hits, recent)
        with self.obs.span("generate", SpanType.GENERATION, trace, inputs={"route": strategy.route.value}) as span:
            try:
                completion: Completion = self.generator.complete(messages, max_tokens)
            except GenerationFailure as e:
                logger.error(f"Generation failed on {strategy.route.value} route: {e}")
                self.obs.log_error(span, e)
                return self._reply(
                    self.generator.error(), strategy.route, Outcome.ERROR, analysis, decision, context=context, sources=sources
                )
            self.obs.log_llm_call(
                span,
                model=self.generator.cost_tracker.llm_model,
                messages=messages,
                output=completion.text,
                usage={"input": completion.prompt_tokens, "output": completion.completion_tokens},
            )

        usage.add(completion.total_tokens, completion.cost)
        usage.completion_used = True

        confidence = response_confidence("\n\n".join(context), completion.text)
        return self._reply(
            completion.text,
            strategy.route,
            Outcome.ANSWERED,
            analysis,
            decision,
            confidence=confidence,
            context=context,
            sources=sources,
        )

    def _account(self, response: ChatbotResponse, usage: TurnUsage, decision: RoutingDecision) -> ChatbotResponse:
        """Record what the turn actually spent, applying the ledger-failure policy."""
        response.tokens_used = usage.tokens
        response.cost = usage.cost
        if usage.tokens == 0 and usage.cost == 0:
            return response

        reservation = usage.reservations.pop(0) if usage.reservations else None
        try:
            self.ledger.record(usage.tokens, usage.cost, usage.operation, response.route, reservation=reservation)
        except LedgerWriteError as e:
            if reservation is not None:
                usage.reservations.append(reservation)
            if self.strict_budget_accounting:
                logger.error(f"Withholding answer, usage could not be recorded: {e}")
                return self._reply(
                    self.generator.error(),
                    response.route,
                    Outcome.ERROR,
                    response.analysis,
                    decision,
                    tokens_used=usage.tokens,
                    cost=usage.cost,
                    ledger_error=True,
                )
            logger.error(f"Usage not recorded, returning answer anyway: {e}")
            response.ledger_error = True
        return response

    def _update_state(self, message: str, response: ChatbotResponse) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            self.stats.total_interactions += 1
            route = response.route.value
            self.stats.route_counts[route] = self.stats.route_counts.get(route, 0) + 1
            if response.outcome is Outcome.ANSWERED:
                self.stats.successful_responses += 1
                n = self.stats.successful_responses
                self.stats.average_response_time_ms += (
                    response.processing_time_ms - self.stats.average_response_time_ms
                ) / n

            self.history.append(ChatMessage(role="user", content=message, timestamp=now))
            self.history.append(ChatMessage(role="assistant", content=response.message, timestamp=now))
            if len(self.history) > config.history_window:
                self.history = self.history[-config.history_window:]

    def reset_conversation(self) -> None:
        with self._lock:
            self.history = []

    # ---- ingestion & status ----

    def ingest_document(
        self,
        document: str,
        clear: bool = False,
        options: ProcessingOptions | None = None,
    ) -> ProcessingResult:
        """
        Validate, segment, embed and store a labeled document.

        With `clear`, every category present in the new document is emptied first.
        """
        with self.obs.trace("ingest_document", inputs={"chars": len(document), "clear": clear}) as trace:
            with self.obs.span("segment_and_embed", SpanType.EMBEDDING, trace) as span:
                result = self.ingestor.ingest(document, options)
                span.set_output(chunks=result.total_chunks, errors=len(result.processing_errors))

            with self.obs.span("store_chunks", SpanType.STEP, trace) as span:
                if clear:
                    for name in result.category_distribution:
                        self.store.clear_category(Category.parse(name))
                stored = self.store.add_chunks(result.chunks)
                span.set_output(stored=stored)

        logger.info(f"Stored {stored} chunks ({result.total_tokens} tokens)")
        return result

    def health(self) -> dict[str, Any]:
        return {"database": "connected" if self.store.ping() else "error"}

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            stats = {
                "total_interactions": self.stats.total_interactions,
                "successful_responses": self.stats.successful_responses,
                "success_rate": self.stats.success_rate,
                "average_response_time_ms": self.stats.average_response_time_ms,
                "route_counts": dict(self.stats.route_counts),
                "history_length": len(self.history),
            }
        stats["usage"] = self.ledger.usage_stats()
        return stats


def create_chatbot(observability_providers: list[str] | None = None) -> PortfolioChatbot:
    """Chatbot wired to the persistent chroma store and the JSON-file usage ledger."""
    store = ChromaPortfolioStore()
    ledger = UsageLedgerService(JsonFileStore(config.ledger_path))
    return PortfolioChatbot(
        store,
        ledger=ledger,
        observability=ObservabilityManager(observability_providers),
    )
