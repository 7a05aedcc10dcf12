"""LLM providers used by the extraction engine.

Providers only speak HTTP. Retry and error classification live in the
extraction engine, which sees the raw httpx errors raised here.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    role: str  # system | user | assistant
    content: str


@dataclass
class ChatResponse:
    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str


@dataclass
class ProviderRequest:
    """One outbound HTTP call, built by a provider from chat messages."""

    url: str
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


class AIProvider(ABC):
    """
    Base class for chat-completion providers.

    Subclasses describe the request and how to read the response; the HTTP
    round trip is shared. ``chat`` raises httpx.HTTPStatusError for non-2xx
    responses and httpx.RequestError (timeouts included) for transport
    failures.
    """

    default_model: str = ""
    timeout: float = 60.0

    @abstractmethod
    def build_request(
        self,
        messages: list[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> ProviderRequest:
        ...

    @abstractmethod
    def parse_response(self, data: dict, model: str) -> ChatResponse:
        ...

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> ChatResponse:
        model = model or self.default_model
        request = self.build_request(messages, model, temperature, max_tokens, json_mode)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                request.url,
                params=request.params or None,
                headers={"Content-Type": "application/json", **request.headers},
                json=request.body,
            )
            response.raise_for_status()
            data = response.json()

        logger.debug("%s call completed (model=%s)", type(self).__name__, model)
        return self.parse_response(data, model)


class OpenAIProvider(AIProvider):
    """OpenAI Chat Completions."""

    base_url = "https://api.openai.com/v1"

    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini", timeout: float = 60.0):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout

    def build_request(self, messages, model, temperature, max_tokens, json_mode) -> ProviderRequest:
        body: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        return ProviderRequest(
            url=f"{self.base_url}/chat/completions",
            body=body,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    def parse_response(self, data: dict, model: str) -> ChatResponse:
        usage = data.get("usage") or {}
        return ChatResponse(
            content=data["choices"][0]["message"]["content"] or "",
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model=model,
        )


class GeminiProvider(AIProvider):
    """Google Gemini generateContent."""

    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self, api_key: str, default_model: str = "gemini-2.0-flash", timeout: float = 60.0
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout

    def build_request(self, messages, model, temperature, max_tokens, json_mode) -> ProviderRequest:
        # System text moves to systemInstruction; assistant turns use the 'model' role
        system_parts = [{"text": m.content} for m in messages if m.role == "system"]
        turns = [
            {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
            for m in messages
            if m.role != "system"
        ]

        generation: dict[str, Any] = {"temperature": temperature, "maxOutputTokens": max_tokens}
        if json_mode:
            generation["responseMimeType"] = "application/json"

        body: dict[str, Any] = {"contents": turns, "generationConfig": generation}
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}
        return ProviderRequest(
            url=f"{self.base_url}/models/{model}:generateContent",
            body=body,
            params={"key": self.api_key},
        )

    def parse_response(self, data: dict, model: str) -> ChatResponse:
        parts = data["candidates"][0]["content"]["parts"]
        usage = data.get("usageMetadata") or {}
        prompt = usage.get("promptTokenCount", 0)
        completion = usage.get("candidatesTokenCount", 0)
        return ChatResponse(
            content="".join(p.get("text", "") for p in parts),
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
            model=model,
        )


PROVIDERS: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def get_provider(
    provider_name: str, api_key: str, model: str | None = None, timeout: float = 60.0
) -> AIProvider:
    """Instantiate the configured provider. Empty model means the provider default."""
    provider_cls = PROVIDERS.get(provider_name)
    if provider_cls is None:
        raise ValueError(f"Unknown provider: {provider_name}")
    if model:
        return provider_cls(api_key, default_model=model, timeout=timeout)
    return provider_cls(api_key, timeout=timeout)
