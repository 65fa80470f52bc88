"""
LLM client abstraction for playlist enrichment.

Supports:
- OpenAI (gpt-4o-mini by default)
- Anthropic (Claude)
- Ollama (local models, over its HTTP API)
- OpenRouter (OpenAI-compatible)

Clients are synchronous; the enrichment service runs them in a worker
thread under a deadline.

Environment Variables:
    LLM_PROVIDER: Force a provider (openai, anthropic, openrouter, ollama)
    OPENAI_API_KEY / OPENAI_MODEL
    ANTHROPIC_API_KEY / ANTHROPIC_MODEL
    OPENROUTER_API_KEY / OPENROUTER_MODEL
    OLLAMA_BASE_URL / OLLAMA_MODEL
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional

import httpx

logger = logging.getLogger(__name__)


ProviderName = Literal["openai", "anthropic", "ollama", "openrouter"]


@dataclass(frozen=True)
class ProviderDefaults:
    """Where a provider's key, model and endpoint come from."""
    key_env: Optional[str]
    model_env: str
    model: str
    base_url: Optional[str] = None
    base_url_env: Optional[str] = None


PROVIDERS: Dict[str, ProviderDefaults] = {
    "openai": ProviderDefaults("OPENAI_API_KEY", "OPENAI_MODEL", "gpt-4o-mini"),
    "anthropic": ProviderDefaults("ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "claude-3-haiku-20240307"),
    "openrouter": ProviderDefaults(
        "OPENROUTER_API_KEY", "OPENROUTER_MODEL", "openai/gpt-4o-mini",
        base_url="https://openrouter.ai/api/v1",
    ),
    "ollama": ProviderDefaults(
        None, "OLLAMA_MODEL", "llama3.2",
        base_url="http://localhost:11434", base_url_env="OLLAMA_BASE_URL",
    ),
}

# Auto-detection order when LLM_PROVIDER is unset
HOSTED_PROVIDERS = ("openai", "anthropic", "openrouter")

JSON_ONLY_SUFFIX = "\n\nRespond with valid JSON only, no markdown or explanation."


@dataclass
class LLMConfig:
    """Configuration for LLM client. Unset fields are filled from the environment."""

    provider: ProviderName = "openai"
    model: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 500
    timeout: float = 30.0

    def __post_init__(self):
        defaults = PROVIDERS.get(self.provider)
        if defaults is None:
            raise ValueError(f"Unknown provider: {self.provider}")

        if self.model is None:
            self.model = os.getenv(defaults.model_env, defaults.model)
        if self.api_key is None and defaults.key_env:
            self.api_key = os.getenv(defaults.key_env)
        if self.base_url is None:
            env_url = os.getenv(defaults.base_url_env) if defaults.base_url_env else None
            self.base_url = env_url or defaults.base_url

    @property
    def is_configured(self) -> bool:
        # Ollama runs locally without a key
        return PROVIDERS[self.provider].key_env is None or bool(self.api_key)


def detect_llm_config() -> Optional[LLMConfig]:
    """
    Pick a provider from the environment.

    ``LLM_PROVIDER`` wins when set; it is also how a local Ollama on the
    default port is selected. Otherwise the first hosted provider with an
    API key is used, then Ollama if ``OLLAMA_BASE_URL`` is set.

    Returns:
        LLMConfig, or None if nothing usable is configured.
    """
    forced = (os.getenv("LLM_PROVIDER") or "").strip().lower()
    if forced:
        if forced not in PROVIDERS:
            logger.warning(f"Ignoring unknown LLM_PROVIDER '{forced}'")
        else:
            config = LLMConfig(provider=forced)
            if config.is_configured:
                return config
            logger.warning(f"LLM_PROVIDER={forced} has no API key; enrichment disabled")
            return None

    for name in HOSTED_PROVIDERS:
        if os.getenv(PROVIDERS[name].key_env):
            return LLMConfig(provider=name)
    if os.getenv("OLLAMA_BASE_URL"):
        return LLMConfig(provider="ollama")
    return None


def extract_json(content: str) -> dict:
    """Parse a JSON object out of model text, tolerating code fences and chatter."""
    text = (content or "").strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
    if "{" in text and "}" in text:
        text = text[text.index("{"):text.rindex("}") + 1]
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("Model response is not a JSON object")
    return parsed


def _messages(prompt: str, system: Optional[str]) -> List[Dict[str, str]]:
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    def __init__(self, config: LLMConfig):
        self.config = config

    @property
    def provider(self) -> str:
        return self.config.provider

    @abstractmethod
    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """Generate a completion for the given prompt."""

    @abstractmethod
    def complete_json(self, prompt: str, system: Optional[str] = None) -> dict:
        """Generate a JSON object for the given prompt."""


class OpenAIClient(LLMClient):
    """OpenAI chat completions (also serves OpenRouter via ``base_url``)."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        try:
            from openai import OpenAI
        except ImportError:
            raise ImportError("openai package required: pip install pulsemix[llm]")
        self._client = OpenAI(api_key=config.api_key, base_url=config.base_url, timeout=config.timeout)

    def _create(self, prompt: str, system: Optional[str], **extra) -> Optional[str]:
        response = self._client.chat.completions.create(
            model=self.config.model,
            messages=_messages(prompt, system),
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            **extra,
        )
        return response.choices[0].message.content

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        return self._create(prompt, system) or ""

    def complete_json(self, prompt: str, system: Optional[str] = None) -> dict:
        content = self._create(prompt, system, response_format={"type": "json_object"})
        if not content:
            raise ValueError("No content in model response")
        return extract_json(content)


class AnthropicClient(LLMClient):
    """Anthropic messages API. There is no JSON mode, so the prompt asks for it."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        try:
            import anthropic
        except ImportError:
            raise ImportError("anthropic package required: pip install pulsemix[llm]")
        self._client = anthropic.Anthropic(api_key=config.api_key, timeout=config.timeout)

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        kwargs = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        response = self._client.messages.create(**kwargs)
        return "".join(getattr(block, "text", "") for block in response.content)

    def complete_json(self, prompt: str, system: Optional[str] = None) -> dict:
        return extract_json(self.complete(prompt + JSON_ONLY_SUFFIX, system))


class OllamaClient(LLMClient):
    """Local Ollama server through its ``/api/chat`` endpoint."""

    def __init__(self, config: LLMConfig, http_client: Optional[httpx.Client] = None):
        super().__init__(config)
        self._http = http_client or httpx.Client(timeout=config.timeout)

    def _chat(self, prompt: str, system: Optional[str], **extra) -> str:
        response = self._http.post(
            f"{self.config.base_url}/api/chat",
            json={
                "model": self.config.model,
                "messages": _messages(prompt, system),
                "stream": False,
                "options": {
                    "temperature": self.config.temperature,
                    "num_predict": self.config.max_tokens,
                },
                **extra,
            },
        )
        response.raise_for_status()
        message = response.json().get("message") or {}
        return message.get("content") or ""

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        return self._chat(prompt, system)

    def complete_json(self, prompt: str, system: Optional[str] = None) -> dict:
        return extract_json(self._chat(prompt + JSON_ONLY_SUFFIX, system, format="json"))


CLIENTS = {
    "openai": OpenAIClient,
    "openrouter": OpenAIClient,
    "anthropic": AnthropicClient,
    "ollama": OllamaClient,
}


def get_llm_client(config: LLMConfig) -> LLMClient:
    """Build a client for ``config.provider``."""
    client_class = CLIENTS.get(config.provider)
    if client_class is None:
        raise ValueError(f"Unknown provider: {config.provider}")

    logger.info(f"Using {config.provider} model {config.model} for enrichment")
    return client_class(config)
