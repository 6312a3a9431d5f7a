"""Anthropic Messages API client for single-shot text completions.

The streaming, tool-calling conversation goes through LangChain (see
``app.services.llm``); this client covers one-off requests such as
turning pasted application material into a student profile.
"""

import asyncio
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, TypeVar

import tiktoken
from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic, RateLimitError
from anthropic.types import ContentBlock as AnthropicContentBlock
from limits import RateLimitItem, parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from app.models.llm import LLMUsage, TextBlock
from app.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class AnthropicMessage(BaseModel):
    """A plain-text turn sent to the Messages API."""

    role: Literal["user", "assistant"]
    content: str


@dataclass
class AnthropicResponse:
    """Text reply of a completion request."""

    content: list[TextBlock]
    stop_reason: str | None
    usage: LLMUsage
    model: str

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.content)


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = "claude-3-haiku-20240307"
    max_tokens: int = 1000
    temperature: float = 0.2
    max_retries: int = 3
    retry_delay: float = 1.0

    # Longest server-requested wait we are willing to sit through
    max_retry_after: float = 120.0

    # Raw application text can be long: forms, essays and activities pasted together
    max_message_tokens: int = 50_000


class AnthropicRateLimiter:
    """Client-side request and token budgets over a moving one-minute window."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        self.limiter = MovingWindowRateLimiter(MemoryStorage())
        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def acquire(self, estimated_tokens: int, key: str = "anthropic") -> None:
        """Wait until one request of ``estimated_tokens`` fits in both budgets."""
        await self._take(self.request_limit, key, 1, "Request")
        # A single request larger than the whole window would never fit
        cost = min(estimated_tokens, self.token_limit.amount)
        await self._take(self.token_limit, f"{key}:tokens", cost, "Token")

    async def _take(self, limit: RateLimitItem, key: str, cost: int, kind: str) -> None:
        while not self.limiter.hit(limit, key, cost=cost):
            stats = self.limiter.get_window_stats(limit, key)
            wait_time = max(stats.reset_time - time.time(), 0.05)
            logger.warning(f"{kind} budget exhausted, waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)


class AnthropicClient:
    """Low-level Anthropic API client for single-shot completions."""

    tokenizer: tiktoken.Encoding | None = None
    rate_limiter: AnthropicRateLimiter = AnthropicRateLimiter()

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        # Retries are handled here so rate-limit waits are logged
        self.client = AsyncAnthropic(api_key=anthropic_api_key, max_retries=0)
        self.config = config or AnthropicConfig()

        try:
            # Claude's tokenizer isn't public; cl100k is a close enough estimate
            self.tokenizer = tiktoken.get_encoding("cl100k_base")
        except Exception as e:
            logger.warning(f"Falling back to character-based token estimates: {e}")
            self.tokenizer = None

    async def create_message(
        self,
        messages: list[AnthropicMessage],
        system_prompt: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AnthropicResponse:
        """Send one completion request and return its text reply.

        Args:
            messages: Conversation turns, starting with a user turn
            system_prompt: System prompt for Claude
            model: Overrides the configured model
            max_tokens: Overrides the configured output limit
            temperature: Overrides the configured temperature
        """
        estimated_tokens = self._estimate_tokens(messages, system_prompt)
        await self.rate_limiter.acquire(estimated_tokens)

        request_params = {
            "model": model or self.config.model,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature if temperature is None else temperature,
            "system": system_prompt,
            "messages": [message.model_dump() for message in messages],
        }
        logger.debug(f"Requesting completion from {request_params['model']} (~{estimated_tokens} prompt tokens)")

        response = await self._request_with_retries(lambda: self.client.messages.create(**request_params))

        usage = LLMUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        logger.debug(f"Completion finished with stop reason {response.stop_reason}")

        return AnthropicResponse(
            content=self._text_blocks(response.content),
            stop_reason=response.stop_reason,
            usage=usage,
            model=response.model,
        )

    async def _request_with_retries(self, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await call()
            except (APIStatusError, APIConnectionError) as e:
                attempt += 1
                delay = self._retry_delay(e, attempt)
                if delay is None:
                    raise
                logger.warning(f"Anthropic request failed ({e.__class__.__name__}), retry {attempt} in {delay:.1f}s")
                await asyncio.sleep(delay)

    def _retry_delay(self, error: Exception, attempt: int) -> float | None:
        """Seconds to wait before retrying ``error``, or None to give up."""
        if attempt >= self.config.max_retries:
            return None

        backoff = self.config.retry_delay * (2 ** (attempt - 1))
        match error:
            case RateLimitError():
                retry_after = error.response.headers.get("retry-after")
                delay = float(retry_after) if retry_after else backoff
                return delay if delay <= self.config.max_retry_after else None
            case APIStatusError() if error.status_code >= 500:
                return backoff
            case APIConnectionError():
                return backoff
        return None

    def _text_blocks(self, content: list[AnthropicContentBlock]) -> list[TextBlock]:
        blocks = []
        for block in content:
            if block.type == "text":
                blocks.append(TextBlock(text=block.text))
            else:
                logger.warning(f"Ignoring {block.type} block in a text completion")
        return blocks

    def _estimate_tokens(self, messages: list[AnthropicMessage], system_prompt: str) -> int:
        """Estimate prompt tokens of a request for the rate limiter."""
        return self.estimate_message_tokens(system_prompt + "".join(message.content for message in messages))

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate the token count of ``message`` (about four characters per token without a tokenizer)."""
        if self.tokenizer is None:
            return len(message) // 4
        return len(self.tokenizer.encode(message))

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )


_anthropic_client: AnthropicClient | None = None


def get_anthropic_client() -> AnthropicClient:
    """Get or create Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AnthropicClient()
    return _anthropic_client
