from __future__ import annotations

import logging
from typing import Any

import httpx

from app.config.settings import get_settings
from app.providers.base import ProviderError, ServiceProvider

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(ServiceProvider):
    """
    Chat client for any endpoint exposing an OpenAI-compatible
    /chat/completions API (OpenAI, DeepSeek, Kimi, Qwen, Ollama, ...).
    """

    provider_type = "openai"
    _default_base_url: str = "https://api.openai.com/v1"

    def validate_config(self) -> None:
        if not self.config.get("api_key"):
            raise ProviderError(f"{self.name}: api_key is required")

    def _api_key(self) -> str:
        key = self.config.get("api_key", "")
        if not key:
            raise ProviderError(f"{self.name}: api_key is required")
        return key

    def _base_url(self) -> str:
        return (self.config.get("api_base") or self._default_base_url).rstrip("/")

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key()}"}

    @staticmethod
    def _build_messages(prompt: str, system: str | None = None) -> list[dict]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    def chat(self, prompt: str, **kwargs: Any) -> dict[str, Any]:
        model = kwargs.get("model") or self.config.get("default_model", "gpt-4o")
        payload: dict[str, Any] = {
            "model": model,
            "messages": self._build_messages(prompt, kwargs.get("system")),
        }
        temperature = kwargs.get("temperature", self.config.get("temperature"))
        if temperature is not None:
            payload["temperature"] = temperature
        if kwargs.get("json_mode"):
            payload["response_format"] = {"type": "json_object"}

        headers = {"Content-Type": "application/json", **self._auth_headers()}
        try:
            with httpx.Client(timeout=self._timeout()) as client:
                response = client.post(f"{self._base_url()}/chat/completions", headers=headers, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise self.handle_error(exc) from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.provider_type} returned an unexpected payload") from exc
        usage = data.get("usage", {})
        return {
            "provider": self.name,
            "type": self.provider_type,
            "model": model,
            "content": content,
            "usage": {
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0),
            },
        }


def get_llm_provider() -> OpenAICompatibleProvider:
    settings = get_settings()
    return OpenAICompatibleProvider(
        "llm",
        {
            "api_key": settings.llm_api_key,
            "api_base": settings.llm_api_base,
            "default_model": settings.llm_model,
            "temperature": settings.llm_temperature,
            "timeout_seconds": settings.llm_timeout_seconds,
        },
    )
