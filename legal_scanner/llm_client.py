"""
Async LLM client with OpenAI/Anthropic/Gemini provider switch.

Uses the Factory pattern (LLMClient.create) to instantiate the right provider
for one API key.  Each provider implements BaseLLMClient so the Summarizer
doesn't need to know which LLM is behind the call.  Gemini is reached through
the OpenAI SDK pointed at Google's OpenAI-compatible endpoint.

Every SDK failure is re-raised as LLMClientError carrying the HTTP status code
(when there is one) so the retry policy can classify it.
"""

import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from .logger import get_module_logger
from .exceptions import LLMClientError

logger = get_module_logger("llm_client")

DEFAULT_TIMEOUT = 15.0
MAX_OUTPUT_TOKENS = 1000

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


class LLMProvider(Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


DEFAULT_MODELS = {
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.ANTHROPIC: "claude-3-5-haiku-latest",
    LLMProvider.GEMINI: "gemini-1.5-flash",
}

API_KEY_ENV_VARS = {
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProvider.GEMINI: "GEMINI_API_KEY",
}


def _wrap_sdk_error(error: Exception, provider: str) -> LLMClientError:
    """Translate an SDK exception into LLMClientError, keeping the status code."""
    status_code = getattr(error, "status_code", None)
    message = str(error)
    if status_code is not None:
        message = f"{status_code} - {message}"
    return LLMClientError(
        f"{provider} API call failed: {message}",
        provider=provider,
        status_code=status_code,
        details={"error": str(error), "type": type(error).__name__}
    )


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    provider: LLMProvider

    @abstractmethod
    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Send a prompt to the LLM and return the response text.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt

        Returns:
            The LLM's response text
        """
        pass


class OpenAIClient(BaseLLMClient):
    """OpenAI chat completions client (also used for OpenAI-compatible endpoints)."""

    provider = LLMProvider.OPENAI

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODELS[LLMProvider.OPENAI],
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        self.api_key = api_key or os.getenv(API_KEY_ENV_VARS[self.provider])
        if not self.api_key:
            raise LLMClientError(
                f"{self.provider.value} API key not provided",
                provider=self.provider.value,
                status_code=401
            )
        self.model = model

        # Lazy import: only require the openai SDK when this provider is used.
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise LLMClientError(
                "openai package not installed. Run: pip install openai",
                provider=self.provider.value
            )
        # Retries are handled by our own policy, not the SDK's.
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0
        )

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Send prompt to the chat completions endpoint and return response."""
        messages = []

        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                # Low temperature: we want the same JSON shape every time.
                temperature=0.1,
                max_tokens=MAX_OUTPUT_TOKENS
            )
        except Exception as e:
            logger.error(f"{self.provider.value} API error: {e}")
            raise _wrap_sdk_error(e, self.provider.value)

        if not response.choices or response.choices[0].message is None:
            raise LLMClientError(
                f"Invalid response from {self.provider.value} API",
                provider=self.provider.value
            )
        return response.choices[0].message.content or ""


class GeminiClient(OpenAIClient):
    """Google Gemini through its OpenAI-compatible endpoint."""

    provider = LLMProvider.GEMINI

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODELS[LLMProvider.GEMINI],
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        super().__init__(
            api_key=api_key,
            model=model,
            base_url=base_url or GEMINI_OPENAI_BASE_URL,
            timeout=timeout
        )


class AnthropicClient(BaseLLMClient):
    """Anthropic messages client."""

    provider = LLMProvider.ANTHROPIC

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODELS[LLMProvider.ANTHROPIC],
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        self.api_key = api_key or os.getenv(API_KEY_ENV_VARS[self.provider])
        if not self.api_key:
            raise LLMClientError(
                "anthropic API key not provided",
                provider="anthropic",
                status_code=401
            )
        self.model = model

        try:
            import anthropic
        except ImportError:
            raise LLMClientError(
                "anthropic package not installed. Run: pip install anthropic",
                provider="anthropic"
            )
        self.client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0
        )

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Send prompt to Anthropic and return response."""
        kwargs = {
            "model": self.model,
            "max_tokens": MAX_OUTPUT_TOKENS,
            "temperature": 0.1,
            "messages": [{"role": "user", "content": prompt}]
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = await self.client.messages.create(**kwargs)
        except Exception as e:
            logger.error(f"Anthropic API error: {e}")
            raise _wrap_sdk_error(e, "anthropic")

        texts = [block.text for block in response.content if getattr(block, "text", None)]
        if not texts:
            raise LLMClientError("Invalid response from anthropic API", provider="anthropic")
        return "".join(texts)


class LLMClient:
    """
    Factory class for creating LLM clients with provider switch.

    Usage:
        client = LLMClient.create(provider=LLMProvider.GEMINI, api_key=key)
        text = await client.complete(prompt, system_prompt)
    """

    @staticmethod
    def resolve_provider(value: Optional[str] = None) -> LLMProvider:
        """Resolve provider: explicit value > env var LLM_PROVIDER > gemini."""
        provider_str = (value or os.getenv("LLM_PROVIDER", "gemini")).lower()
        try:
            return LLMProvider(provider_str)
        except ValueError:
            logger.warning(f"Unknown LLM provider '{provider_str}', defaulting to gemini")
            return LLMProvider.GEMINI

    @staticmethod
    def create(
        provider: Optional[LLMProvider] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ) -> BaseLLMClient:
        """
        Create an LLM client for the specified provider.

        Args:
            provider: LLM provider (defaults to env var LLM_PROVIDER or 'gemini')
            api_key: API key (defaults to provider-specific env var)
            model: Model name (defaults to provider-specific default)
            base_url: Optional endpoint override
            timeout: Request timeout in seconds

        Returns:
            Configured LLM client
        """
        if provider is None:
            provider = LLMClient.resolve_provider()

        logger.debug(f"Creating LLM client for provider: {provider.value}")

        kwargs = {"api_key": api_key, "base_url": base_url, "timeout": timeout}
        if model:
            kwargs["model"] = model

        if provider == LLMProvider.OPENAI:
            return OpenAIClient(**kwargs)
        elif provider == LLMProvider.GEMINI:
            return GeminiClient(**kwargs)
        elif provider == LLMProvider.ANTHROPIC:
            return AnthropicClient(**kwargs)
        else:
            raise LLMClientError(
                f"Unsupported provider: {provider}",
                provider=str(provider)
            )
