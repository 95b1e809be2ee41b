"""
LLM Adapter - Pluggable reasoning service

Every adapter satisfies the same narrow contract nodes depend on:

    text = await llm.invoke(prompt_or_messages, **options)

Failures (network, quota, model errors) raise ``ServiceError``. Transient
failures are retried inside the adapter; the workflow executor itself
never retries.
"""

import asyncio
import logging
import os
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from integration.base import (
    BaseIntegration,
    IntegrationConfig,
    IntegrationError,
    ServiceError,
)

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]


@dataclass
class LLMConfig(IntegrationConfig):
    """Configuration specific to LLM integrations"""

    model: str = ""
    max_tokens: int = 4096
    temperature: float = 0.7
    top_p: float = 1.0
    stop_sequences: List[str] = field(default_factory=list)


@dataclass
class LLMResponse:
    """Structured response from LLM"""

    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: str = "stop"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def prompt_tokens(self) -> int:
        return self.usage.get("prompt_tokens", 0)

    @property
    def completion_tokens(self) -> int:
        return self.usage.get("completion_tokens", 0)

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, IntegrationError) and exc.retryable


class LLMAdapter(BaseIntegration):
    """
    Abstract base class for LLM adapters.

    Provides a unified interface for different LLM providers.
    Subclass this to create provider-specific adapters.
    """

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        self.llm_config = config

    async def invoke(
        self,
        prompt: Union[str, Messages],
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs,
    ) -> str:
        """
        Run one reasoning call and return the text content.

        Args:
            prompt: A prompt string, or a list of {'role', 'content'} messages
            system_prompt: Optional system prompt (string prompts only)
            temperature: Override temperature
            max_tokens: Override max tokens

        Raises:
            ServiceError: the provider failed after retries
        """
        if isinstance(prompt, str):
            response = await self.complete(
                prompt, system_prompt=system_prompt, temperature=temperature,
                max_tokens=max_tokens, **kwargs
            )
        else:
            response = await self.chat(
                list(prompt), temperature=temperature, max_tokens=max_tokens, **kwargs
            )
        return response.content

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs,
    ) -> LLMResponse:
        """Generate a completion for the given prompt."""
        return await self._call(
            "complete",
            {
                "prompt": prompt,
                "system_prompt": system_prompt,
                "temperature": self._pick(temperature, self.llm_config.temperature),
                "max_tokens": max_tokens or self.llm_config.max_tokens,
                **kwargs,
            },
        )

    async def chat(
        self,
        messages: Messages,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs,
    ) -> LLMResponse:
        """Generate a chat completion for the given messages."""
        return await self._call(
            "chat",
            {
                "messages": messages,
                "temperature": self._pick(temperature, self.llm_config.temperature),
                "max_tokens": max_tokens or self.llm_config.max_tokens,
                **kwargs,
            },
        )

    @staticmethod
    def _pick(value, fallback):
        return fallback if value is None else value

    async def _call(self, action: str, payload: Dict[str, Any]) -> LLMResponse:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.max_retries)),
            wait=wait_exponential(
                multiplier=self.config.retry_delay, exp_base=self.config.retry_multiplier
            ),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self.execute(action=action, payload=payload)
                if not result.success:
                    raise ServiceError(
                        result.error or f"{action} failed",
                        integration_name=self.name,
                        error_code=result.error_code,
                        retryable=True,
                    )
        return result.data

    @abstractmethod
    async def _do_execute(
        self, action: str, payload: Dict[str, Any], **kwargs
    ) -> LLMResponse:
        """Provider-specific execution"""


class OpenAIAdapter(LLMAdapter):
    """
    OpenAI (and OpenAI-compatible) chat completions adapter.
    """

    def __init__(self, config: LLMConfig = None, **kwargs):
        if config is None:
            config = LLMConfig(
                name="openai",
                endpoint=kwargs.get(
                    "endpoint",
                    os.getenv("OPENAI_API_ENDPOINT", "https://api.openai.com/v1"),
                ),
                api_key=kwargs.get("api_key", os.getenv("OPENAI_API_KEY")),
                model=kwargs.get("model", "gpt-4o-mini"),
                temperature=kwargs.get("temperature", 0.0),
                timeout=kwargs.get("timeout", 60),
            )
        super().__init__(config)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _do_initialize(self):
        """Initialize HTTP session"""
        self._session = aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            }
        )

    async def _do_shutdown(self):
        """Close HTTP session"""
        if self._session:
            await self._session.close()
            self._session = None

    async def _do_execute(
        self, action: str, payload: Dict[str, Any], **kwargs
    ) -> LLMResponse:
        """Execute OpenAI API call"""
        if action == "complete":
            messages = []
            if payload.get("system_prompt"):
                messages.append({"role": "system", "content": payload["system_prompt"]})
            messages.append({"role": "user", "content": payload["prompt"]})
        elif action == "chat":
            messages = payload["messages"]
        else:
            raise ServiceError(
                f"Unknown action: {action}", integration_name=self.name
            )

        body = {
            "model": self.llm_config.model,
            "messages": messages,
            "temperature": payload.get("temperature", self.llm_config.temperature),
            "max_tokens": payload.get("max_tokens", self.llm_config.max_tokens),
        }

        async with self._session.post(
            f"{self.config.endpoint}/chat/completions",
            json=body,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
        ) as resp:
            if resp.status != 200:
                error = await resp.text()
                raise ServiceError(
                    f"OpenAI API error: {error}",
                    integration_name=self.name,
                    error_code=str(resp.status),
                    retryable=resp.status >= 500 or resp.status == 429,
                )

            data = await resp.json()
            choice = data["choices"][0]

            return LLMResponse(
                content=choice["message"]["content"] or "",
                model=data.get("model", self.llm_config.model),
                usage=data.get("usage", {}),
                finish_reason=choice.get("finish_reason", "stop"),
            )


class AnthropicAdapter(LLMAdapter):
    """
    Anthropic Messages API adapter.
    """

    def __init__(self, config: LLMConfig = None, **kwargs):
        if config is None:
            config = LLMConfig(
                name="anthropic",
                endpoint=kwargs.get(
                    "endpoint",
                    os.getenv("ANTHROPIC_API_ENDPOINT", "https://api.anthropic.com/v1"),
                ),
                api_key=kwargs.get("api_key", os.getenv("ANTHROPIC_API_KEY")),
                model=kwargs.get("model", "claude-3-5-sonnet-latest"),
                temperature=kwargs.get("temperature", 0.0),
                timeout=kwargs.get("timeout", 60),
            )
        super().__init__(config)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _do_initialize(self):
        """Initialize HTTP session"""
        self._session = aiohttp.ClientSession(
            headers={
                "x-api-key": self.config.api_key or "",
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            }
        )

    async def _do_shutdown(self):
        """Close HTTP session"""
        if self._session:
            await self._session.close()
            self._session = None

    async def _do_execute(
        self, action: str, payload: Dict[str, Any], **kwargs
    ) -> LLMResponse:
        """Execute Anthropic API call"""
        if action not in ("complete", "chat"):
            raise ServiceError(
                f"Unknown action: {action}", integration_name=self.name
            )

        system_prompt = payload.get("system_prompt")
        if "messages" in payload:
            # The Messages API takes the system prompt out of band
            messages = [m for m in payload["messages"] if m.get("role") != "system"]
            system_parts = [m["content"] for m in payload["messages"] if m.get("role") == "system"]
            if system_parts:
                system_prompt = "\n\n".join(system_parts)
        else:
            messages = [{"role": "user", "content": payload["prompt"]}]

        body = {
            "model": self.llm_config.model,
            "messages": messages,
            "max_tokens": payload.get("max_tokens", self.llm_config.max_tokens),
            "temperature": payload.get("temperature", self.llm_config.temperature),
        }
        if system_prompt:
            body["system"] = system_prompt

        async with self._session.post(
            f"{self.config.endpoint}/messages",
            json=body,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
        ) as resp:
            if resp.status != 200:
                error = await resp.text()
                raise ServiceError(
                    f"Anthropic API error: {error}",
                    integration_name=self.name,
                    error_code=str(resp.status),
                    retryable=resp.status >= 500 or resp.status == 429,
                )

            data = await resp.json()
            usage = data.get("usage", {})

            return LLMResponse(
                content=data["content"][0]["text"],
                model=data.get("model", self.llm_config.model),
                usage={
                    "prompt_tokens": usage.get("input_tokens", 0),
                    "completion_tokens": usage.get("output_tokens", 0),
                    "total_tokens": usage.get("input_tokens", 0) + usage.get("output_tokens", 0),
                },
                finish_reason=data.get("stop_reason", "stop"),
            )


ScriptItem = Union[str, BaseException, Callable[[Dict[str, Any]], str]]


class ScriptedLLM(LLMAdapter):
    """
    Replays a fixed list of responses, in order.

    Used for offline runs and tests. An item may be a string, an exception
    instance (raised for that call) or a callable receiving the request
    payload. With ``cycle=True`` the script restarts when exhausted,
    otherwise an exhausted script raises ServiceError.
    """

    def __init__(
        self,
        responses: Sequence[ScriptItem],
        cycle: bool = False,
        delay_seconds: float = 0.0,
        name: str = "scripted",
    ):
        super().__init__(LLMConfig(name=name, model="scripted", max_retries=1))
        self.responses = list(responses)
        self.cycle = cycle
        self.delay_seconds = delay_seconds
        self.calls: List[Dict[str, Any]] = []
        self._position = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def _do_execute(
        self, action: str, payload: Dict[str, Any], **kwargs
    ) -> LLMResponse:
        self.calls.append(dict(payload, action=action))

        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self._position >= len(self.responses):
            if not self.cycle or not self.responses:
                raise ServiceError(
                    f"Script exhausted after {len(self.responses)} responses",
                    integration_name=self.name,
                )
            self._position = 0

        item = self.responses[self._position]
        self._position += 1

        if isinstance(item, BaseException):
            raise item
        content = item(payload) if callable(item) else item

        return LLMResponse(content=content, model="scripted")


def create_llm_adapter(provider: str, **kwargs) -> LLMAdapter:
    """
    Factory function to create LLM adapters.

    Args:
        provider: Provider name ("openai", "anthropic", "scripted")
        **kwargs: Provider-specific configuration

    Returns:
        Configured LLM adapter
    """
    adapters = {
        "openai": OpenAIAdapter,
        "anthropic": AnthropicAdapter,
        "scripted": ScriptedLLM,
    }

    if provider not in adapters:
        raise ValueError(f"Unknown LLM provider: {provider}")

    return adapters[provider](**kwargs)
