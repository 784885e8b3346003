"""
FastAPI application for the portfolio chat assistant.

Routes:
    POST /api/chat   answer a message
    GET  /api/chat   health check
    GET  /api/usage  budget snapshot
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from portfolio_chat.errors import ValidationError
from portfolio_chat.logger import logger
from portfolio_chat.models import ChatMessage
from portfolio_chat.pipeline.orchestrator import PortfolioChatbot, create_chatbot

from .rate_limiter import RateLimiter
from .schemas import (
    ChatMetadata,
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    HealthResponse,
    UsageResponse,
)


def client_id(request: Request) -> str:
    """Client identity for rate limiting: first forwarded address, else the peer host."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def create_app(
    chatbot: PortfolioChatbot | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Build the app; a default chatbot is created at startup when none is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.chatbot is None:
            logger.info("Initializing default chatbot")
            app.state.chatbot = create_chatbot()
        yield
        app.state.chatbot.obs.shutdown()

    app = FastAPI(title="Portfolio Chat API", version="0.1.0", lifespan=lifespan)
    app.state.chatbot = chatbot
    app.state.rate_limiter = rate_limiter or RateLimiter()

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return error_response(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        return error_response(400, "Message is required and must be a non-empty string")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Chat API error: {exc}")
        return error_response(500, "An unexpected error occurred")

    @app.post(
        "/api/chat",
        response_model=ChatResponse,
        responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    )
    def chat(body: ChatRequest, request: Request):
        if not request.app.state.rate_limiter.check(client_id(request)):
            return error_response(429, "Rate limit exceeded. Please try again later.")

        history = [ChatMessage(role=m.role, content=m.content) for m in body.conversation_history]
        result = request.app.state.chatbot.chat(body.message, history)

        return ChatResponse(
            message=result.message,
            metadata=ChatMetadata(
                relevant_chunks=len(result.context),
                sources=[c.value for c in result.sources],
                route=result.route.value,
                outcome=result.outcome.value,
                tokens_used=result.tokens_used,
                cost=result.cost,
                processing_time_ms=result.processing_time_ms,
                trace_urls=result.trace_urls,
            ),
        )

    @app.get("/api/chat", response_model=HealthResponse)
    def health(request: Request):
        status = request.app.state.chatbot.health()
        return HealthResponse(
            success=True,
            status="healthy",
            database=status["database"],
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    @app.get("/api/usage", response_model=UsageResponse)
    def usage(request: Request):
        stats = request.app.state.chatbot.ledger.usage_stats()
        return UsageResponse(
            period=stats.current_usage.period,
            total_cost=stats.current_usage.total_cost,
            total_tokens=stats.current_usage.total_tokens,
            request_count=stats.current_usage.request_count,
            monthly_budget=stats.budget_limits.monthly_budget,
            daily_budget=stats.budget_limits.daily_budget,
            remaining_budget=stats.remaining_budget,
            remaining_daily_budget=stats.remaining_daily_budget,
            usage_percentage=stats.usage_percentage,
            is_near_limit=stats.is_near_limit,
            can_make_request=stats.can_make_request,
            projected_monthly_usage=stats.projected_monthly_usage,
        )

    return app


if __name__ == "__main__":
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
