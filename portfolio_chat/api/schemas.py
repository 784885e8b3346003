"""Request and response models for the chat API."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    """Body of POST /api/chat. Message length is checked by the chatbot so errors map to 400."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation_history: list[HistoryMessage] = Field(default_factory=list, alias="conversationHistory")


class ChatMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    relevant_chunks: int = Field(alias="relevantChunks")
    sources: list[str]
    route: str
    outcome: str
    tokens_used: int = Field(alias="tokensUsed")
    cost: float
    processing_time_ms: float = Field(alias="processingTimeMs")
    trace_urls: dict[str, str] = Field(default_factory=dict, alias="traceUrls")


class ChatResponse(BaseModel):
    success: bool = True
    message: str
    metadata: ChatMetadata


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class HealthResponse(BaseModel):
    success: bool
    status: str
    database: Literal["connected", "error"]
    timestamp: str


class UsageResponse(BaseModel):
    success: bool = True
    period: str
    total_cost: float
    total_tokens: int
    request_count: int
    monthly_budget: float
    daily_budget: float
    remaining_budget: float
    remaining_daily_budget: float
    usage_percentage: float
    is_near_limit: bool
    can_make_request: bool
    projected_monthly_usage: float
