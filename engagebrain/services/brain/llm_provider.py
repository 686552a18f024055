"""
Generation providers.

- OpenAIProvider: chat completions through the OpenAI SDK, retrying
  transient API errors with tenacity.
- MockProvider: deterministic JSON replies for development and tests.
  A prompt containing "trigger_llm_fail" raises, to exercise fallbacks.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ...core.config import Config

logger = logging.getLogger(__name__)


@dataclass
class CompletionRequest:
    prompt: str
    temperature: float = 0.7
    max_tokens: int = 150
    stop: Optional[List[str]] = None


@dataclass
class CompletionResponse:
    text: str
    usage: Dict[str, int] = field(default_factory=dict)
    raw: Any = None


class LLMProvider:
    """Interface every generation provider implements."""

    id: str = "base"

    async def generate_completion(self, request: CompletionRequest) -> CompletionResponse:
        raise NotImplementedError


class OpenAIProvider(LLMProvider):
    """OpenAI chat-completions provider."""

    SYSTEM_PROMPT = "You are a careful community manager. Return valid JSON only, no markdown formatting."

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        """
        Args:
            api_key: OpenAI API key (defaults to Config.OPENAI_API_KEY)
            model: Model name (defaults to Config.GENERATION_MODEL)
        """
        self.api_key = api_key or Config.OPENAI_API_KEY
        if not self.api_key:
            raise ValueError("OpenAI API key not configured")
        self.model = model or Config.GENERATION_MODEL
        self.id = f"openai-{self.model}"
        self.client = AsyncOpenAI(api_key=self.api_key)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type((APIConnectionError, APITimeoutError, RateLimitError)),
        reraise=True,
    )
    async def generate_completion(self, request: CompletionRequest) -> CompletionResponse:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": request.prompt},
            ],
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            stop=request.stop,
        )

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
            }
        return CompletionResponse(text=response.choices[0].message.content or "", usage=usage, raw=response)


class MockProvider(LLMProvider):
    """Offline provider that echoes the selected strategy back as JSON."""

    id = "mock-provider"
    FAIL_TRIGGER = "trigger_llm_fail"

    def __init__(self):
        self.calls = 0

    async def generate_completion(self, request: CompletionRequest) -> CompletionResponse:
        self.calls += 1
        if self.FAIL_TRIGGER in request.prompt:
            raise RuntimeError("Simulated LLM provider failure")

        match = re.search(r"Selected Strategy: (\w+)", request.prompt)
        strategy = match.group(1) if match else "ANSWER"

        body = {
            "strategy": strategy,
            "confidence": 0.95,
            "suggested_text": f"Thanks for reaching out! ({strategy.lower()} draft)",
            "explanation": "Mock provider draft",
        }
        return CompletionResponse(
            text=json.dumps(body),
            usage={"prompt_tokens": 10, "completion_tokens": 20},
            raw={"mock": True},
        )


def create_provider() -> LLMProvider:
    """Build the provider named by Config.LLM_PROVIDER."""
    if Config.LLM_PROVIDER == "openai":
        return OpenAIProvider()
    if Config.LLM_PROVIDER != "mock":
        logger.warning(f"Unknown LLM_PROVIDER '{Config.LLM_PROVIDER}', using mock provider")
    return MockProvider()
