"""
OpenAI-compatible chat-completion client shared by the AI analyzers.

Provider presets fill in base URL and models; the API key is read from the
environment variable named in config on every call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .config_loader import read_api_key
from .errors import ConfigurationError, ParseError, TransientNetworkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str          # already includes the version segment
    api_key_env: str       # env var name
    text_model: str
    vision_model: str


PROVIDERS: Dict[str, ProviderConfig] = {
    "zhipu": ProviderConfig(
        name="zhipu",
        base_url="https://open.bigmodel.cn/api/paas/v4",
        api_key_env="ZHIPU_API_KEY",
        text_model="glm-4-flash",
        vision_model="glm-4v-flash",
    ),
    "qwen": ProviderConfig(
        name="qwen",
        base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
        api_key_env="DASHSCOPE_API_KEY",
        text_model="qwen-turbo",
        vision_model="qwen-vl-plus",
    ),
    "kimi": ProviderConfig(
        name="kimi",
        base_url="https://api.moonshot.cn/v1",
        api_key_env="MOONSHOT_API_KEY",
        text_model="moonshot-v1-8k",
        vision_model="moonshot-v1-8k-vision-preview",
    ),
    "openai": ProviderConfig(
        name="openai",
        base_url="https://api.openai.com/v1",
        api_key_env="OPENAI_API_KEY",
        text_model="gpt-4o-mini",
        vision_model="gpt-4o-mini",
    ),
}


@dataclass
class EndpointSettings:
    """Resolved endpoint for one analyzer (provider preset + config overrides)."""

    provider: str
    base_url: str
    model: str
    api_key_env: str
    timeout: float
    temperature: float = 0.1
    max_tokens: int = 2000

    @classmethod
    def from_config(cls, config, section: str) -> "EndpointSettings":
        name = config.get_ai_provider(section)
        preset = PROVIDERS.get(name)
        if preset is None:
            logger.warning("Unknown AI provider '%s'; falling back to 'zhipu'", name)
            preset = PROVIDERS["zhipu"]
        default_model = preset.vision_model if section == "ai_vision" else preset.text_model
        return cls(
            provider=preset.name,
            base_url=config.get_ai_base_url(section) or preset.base_url,
            model=config.get_ai_model(section) or default_model,
            api_key_env=config.get_ai_api_key_env(section) or preset.api_key_env,
            timeout=config.get_ai_timeout(section),
            temperature=config.get_ai_temperature(section),
            max_tokens=config.get_ai_max_tokens(section),
        )


def message_text(payload: Dict[str, Any]) -> str:
    """Pull choices[0].message.content, tolerating list-of-parts content."""
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and part.get("type") in (None, "text"):
                parts.append(str(part.get("text") or ""))
            elif isinstance(part, str):
                parts.append(part)
        return "".join(parts)
    return ""


class OpenAICompatClient:
    """Minimal async client for OpenAI-compatible chat completions."""

    def __init__(self, settings: EndpointSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    @property
    def api_key(self) -> str:
        return read_api_key(self.settings.api_key_env)

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def chat(self, messages: List[Dict[str, Any]], timeout: Optional[float] = None) -> str:
        """Send a chat request and return the reply text.

        Raises ConfigurationError, TransientNetworkError or ParseError.
        """
        api_key = self.api_key
        if not api_key:
            raise ConfigurationError(f"Missing {self.settings.api_key_env}")

        url = f"{self.settings.base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {api_key}"}
        payload = {
            "model": self.settings.model,
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        try:
            async with httpx.AsyncClient(timeout=timeout or self.settings.timeout, transport=self.transport) as client:
                r = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Timeout calling {url}: {e}") from e
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"Transport error calling {url}: {e}") from e

        try:
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransientNetworkError(f"HTTP {r.status_code} from {url}: {r.text[:500]}") from e

        try:
            body = r.json()
        except ValueError as e:
            raise ParseError(f"Non-JSON body from {url}: {r.text[:200]}") from e
        if not isinstance(body, dict):
            raise ParseError(f"Unexpected response shape from {url}")
        return message_text(body)
