"""Response synthesis - model completions over retrieved context, plus templated replies."""

import random
import time
from dataclasses import dataclass

from openai import OpenAI

from portfolio_chat.budget.cost import CostTracker
from portfolio_chat.config import config
from portfolio_chat.errors import GenerationFailure
from portfolio_chat.logger import logger
from portfolio_chat.models import ChatMessage, Operation, SearchHit, UsageStats
from portfolio_chat.utils.retry import call_with_retries
from portfolio_chat.utils.text import strip_markup

SYSTEM_PROMPT = """You are {owner}'s portfolio assistant. You can ONLY answer questions about {first}'s background, skills, projects, experience, and contact information.

IMPORTANT RULES:
1. ONLY answer questions about {owner} and their portfolio
2. If asked about anything else (other people, general topics, current events, etc.), respond: "{scope_message}"
3. Be conversational but professional
4. Keep responses concise (under 150 words)
5. Use the provided context to give accurate, specific answers

PORTFOLIO CONTEXT:
{context}

Remember: You represent {first} professionally, so be helpful, accurate, and enthusiastic about their work."""

OFF_TOPIC_INDICATORS = (
    "i don't know about {first}",
    "i cannot provide information about",
    "as an ai",
    "current events",
    "weather",
    "news",
)

KEYWORD_PREVIEW_CHARS = 200


def response_confidence(context: str, response: str) -> float:
    """Share of response words found in the context, with a 0.3 floor."""
    if not context or not response:
        return 0.5
    context_words = context.lower().split()
    known = set(context_words)
    response_words = response.lower().split()
    overlap = sum(1 for w in response_words if len(w) > 3 and w in known)
    max_overlap = min(len(context_words), len(response_words))
    if max_overlap == 0:
        return 0.5
    return min(1.0, overlap / max_overlap + 0.3)


def scope_message(first: str) -> str:
    return (
        f"I'm {first}'s portfolio assistant and can only answer questions about their background, "
        f"skills, projects, and experience. Please ask me something about {first}!"
    )


def rejection_messages(owner: str, first: str) -> list[str]:
    return [
        scope_message(first),
        f"I'm here to help you learn about {owner}'s work and experience. "
        f"What would you like to know about their portfolio?",
        f"I can only discuss {first}'s professional background, projects, and skills. "
        f"How can I help you learn about their work?",
    ]


@dataclass
class Completion:
    """A model reply with the usage it incurred."""
    text: str
    prompt_tokens: int
    completion_tokens: int
    cost: float
    latency_ms: float
    replaced_off_topic: bool = False

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class Generator:
    """Generates responses using retrieved context."""

    def __init__(
        self,
        openai_client: OpenAI | None = None,
        cost_tracker: CostTracker | None = None,
        owner_name: str | None = None,
        retries: int | None = None,
        backoff: float | None = None,
        rng: random.Random | None = None,
    ):
        self.client = openai_client or OpenAI(
            api_key=config.openai_api_key,
            timeout=config.request_timeout,
            max_retries=0,
        )
        self.cost_tracker = cost_tracker or CostTracker()
        self.owner = owner_name or config.owner_name
        self.first = self.owner.split()[0] if self.owner.strip() else config.owner_first_name
        self.retries = config.max_retries if retries is None else retries
        self.backoff = config.retry_backoff if backoff is None else backoff
        self.rng = rng or random.Random()

    # ---- templates ----

    def rejection(self) -> str:
        return self.rng.choice(rejection_messages(self.owner, self.first))

    def budget_exceeded(self, stats: UsageStats | None) -> str:
        if stats is None:
            return (
                "I've reached my monthly usage limit to keep costs low. "
                "Please try again next month!"
            )
        return (
            "I've reached my monthly usage limit to keep costs low. "
            f"Current usage: ${stats.current_usage.total_cost:.3f} of "
            f"${stats.budget_limits.monthly_budget}. Please try again next month!"
        )

    def no_results(self) -> str:
        return (
            f"I don't have specific information about that in {self.first}'s portfolio. "
            "Could you try asking about their skills, projects, experience, or background "
            "in a different way?"
        )

    def error(self) -> str:
        return (
            "I'm having trouble processing your request right now. Please try asking about "
            f"{self.first}'s background, skills, or projects in a simpler way."
        )

    def keyword_reply(self, hits: list[SearchHit]) -> str:
        """Template answer from the top keyword hit, no model call."""
        if not hits:
            return self.no_results()
        top = hits[0]
        preview = top.content[:KEYWORD_PREVIEW_CHARS]
        if len(top.content) > KEYWORD_PREVIEW_CHARS:
            preview += "..."
        return f"Based on {self.first}'s {top.category.value.lower()}, here's what I found: {preview}"

    # ---- model calls ----

    def is_off_topic(self, text: str) -> bool:
        lowered = text.lower()
        return any(i.format(first=self.first.lower()) in lowered for i in OFF_TOPIC_INDICATORS)

    def build_messages(
        self,
        query: str,
        hits: list[SearchHit],
        history: list[ChatMessage] | None = None,
    ) -> list[dict]:
        context = "\n\n".join(h.content for h in hits)
        system = SYSTEM_PROMPT.format(
            owner=self.owner,
            first=self.first,
            scope_message=scope_message(self.first),
            context=context,
        )
        messages = [{"role": "system", "content": system}]
        for message in history or []:
            if message.role in ("user", "assistant") and message.content:
                messages.append({"role": message.role, "content": message.content})
        messages.append({"role": "user", "content": query})
        return messages

    def _request(self, messages: list[dict], max_tokens: int, temperature: float):
        response = self.client.chat.completions.create(
            model=self.cost_tracker.llm_model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if not response.choices or not response.choices[0].message.content:
            raise GenerationFailure("Empty completion returned by model")
        return response

    def complete(
        self,
        messages: list[dict],
        max_tokens: int,
        temperature: float | None = None,
    ) -> Completion:
        """
        Run a chat completion with bounded retries.

        Output is reduced to plain text and replaced with the scope message
        when it drifts off-topic.

        Raises:
            GenerationFailure: when every attempt fails
        """
        temperature = config.temperature if temperature is None else temperature
        start_time = time.time()
        try:
            response = call_with_retries(
                lambda: self._request(messages, max_tokens, temperature),
                label="chat_completion",
                retries=self.retries,
                backoff=self.backoff,
            )
        except Exception as e:
            raise GenerationFailure(
                f"Failed to generate chat completion after {self.retries + 1} attempts: {e}"
            ) from e
        latency_ms = (time.time() - start_time) * 1000

        text = strip_markup(response.choices[0].message.content)

        usage = getattr(response, "usage", None)
        if usage is not None and getattr(usage, "prompt_tokens", None) is not None:
            prompt_tokens = usage.prompt_tokens
            completion_tokens = usage.completion_tokens or 0
        else:
            prompt_tokens = sum(self.cost_tracker.calculate_tokens(m["content"]) for m in messages)
            completion_tokens = self.cost_tracker.calculate_tokens(text)

        replaced = self.is_off_topic(text)
        if replaced:
            logger.warning("Completion drifted off-topic, replacing with scope message")
            text = scope_message(self.first)

        cost = self.cost_tracker.estimate_operation_cost(
            Operation.CHAT_COMPLETION, prompt_tokens, completion_tokens
        )
        return Completion(
            text=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=cost,
            latency_ms=latency_ms,
            replaced_off_topic=replaced,
        )
