from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

ProviderFamilyName = Literal[
    "openai_compatible",
    "anthropic",
    "google",
    "huggingface",
    "local",
]


class ConfigurationError(RuntimeError):
    pass


class ProviderNotFound(LookupError):
    def __init__(self, key: str) -> None:
        super().__init__(f"provider not found: {key}")
        self.key = key


@dataclass(frozen=True)
class Provider:
    key: str
    name: str
    base_url: str
    api_key: str
    models: tuple[str, ...]
    default_model: str
    requires_api_key: bool
    family: ProviderFamilyName = "openai_compatible"

    def to_public_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "name": self.name,
            "baseUrl": self.base_url,
            "models": list(self.models),
            "defaultModel": self.default_model,
            "requiresApiKey": bool(self.requires_api_key),
            "configured": not (
                self.requires_api_key and is_placeholder_key(self.api_key)
            ),
        }


@dataclass(frozen=True)
class _ProviderEntry:
    name: str
    base_url: str
    api_key_env: str | None
    default_api_key: str
    models: tuple[str, ...]
    default_model: str
    requires_api_key: bool
    family: ProviderFamilyName


# Insertion order is the discovery order served to the UI.
_STATIC_PROVIDERS: dict[str, _ProviderEntry] = {
    "openai": _ProviderEntry(
        name="OpenAI",
        base_url="https://api.openai.com/v1",
        api_key_env="OPENAI_API_KEY",
        default_api_key="",
        models=(
            "gpt-4o",
            "gpt-4o-mini",
            "gpt-4-turbo",
            "gpt-4",
            "gpt-3.5-turbo",
            "o1-preview",
            "o1-mini",
        ),
        default_model="gpt-4o",
        requires_api_key=True,
        family="openai_compatible",
    ),
    "anthropic": _ProviderEntry(
        name="Anthropic",
        base_url="https://api.anthropic.com/v1",
        api_key_env="ANTHROPIC_API_KEY",
        default_api_key="",
        models=(
            "claude-3-5-sonnet-20241022",
            "claude-3-5-haiku-20241022",
            "claude-3-opus-20240229",
            "claude-3-sonnet-20240229",
            "claude-3-haiku-20240307",
        ),
        default_model="claude-3-5-sonnet-20241022",
        requires_api_key=True,
        family="anthropic",
    ),
    "openrouter": _ProviderEntry(
        name="OpenRouter",
        base_url="https://openrouter.ai/api/v1",
        api_key_env="OPENROUTER_API_KEY",
        default_api_key="",
        models=(
            "anthropic/claude-3.5-sonnet",
            "anthropic/claude-3-opus",
            "openai/gpt-4o",
            "openai/gpt-4-turbo",
            "google/gemini-pro-1.5",
            "meta-llama/llama-3.1-405b-instruct",
            "mistralai/mistral-large",
            "deepseek/deepseek-coder",
        ),
        default_model="anthropic/claude-3.5-sonnet",
        requires_api_key=True,
        family="openai_compatible",
    ),
    "google": _ProviderEntry(
        name="Google AI",
        base_url="https://generativelanguage.googleapis.com/v1beta",
        api_key_env="GOOGLE_API_KEY",
        default_api_key="",
        models=(
            "gemini-1.5-pro",
            "gemini-1.5-flash",
            "gemini-1.0-pro",
            "gemini-1.0-pro-vision",
        ),
        default_model="gemini-1.5-pro",
        requires_api_key=True,
        family="google",
    ),
    "groq": _ProviderEntry(
        name="Groq",
        base_url="https://api.groq.com/openai/v1",
        api_key_env="GROQ_API_KEY",
        default_api_key="",
        models=(
            "llama-3.1-405b-reasoning",
            "llama-3.1-70b-versatile",
            "llama-3.1-8b-instant",
            "mixtral-8x7b-32768",
            "gemma2-9b-it",
        ),
        default_model="llama-3.1-70b-versatile",
        requires_api_key=True,
        family="openai_compatible",
    ),
    "together": _ProviderEntry(
        name="Together AI",
        base_url="https://api.together.xyz/v1",
        api_key_env="TOGETHER_API_KEY",
        default_api_key="",
        models=(
            "meta-llama/Meta-Llama-3.1-405B-Instruct-Turbo",
            "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo",
            "meta-llama/Meta-Llama-3.1-8B-Instruct-Turbo",
            "mistralai/Mixtral-8x7B-Instruct-v0.1",
            "NousResearch/Nous-Hermes-2-Mixtral-8x7B-DPO",
        ),
        default_model="meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo",
        requires_api_key=True,
        family="openai_compatible",
    ),
    "mistral": _ProviderEntry(
        name="Mistral AI",
        base_url="https://api.mistral.ai/v1",
        api_key_env="MISTRAL_API_KEY",
        default_api_key="",
        models=(
            "mistral-large-latest",
            "mistral-medium-latest",
            "mistral-small-latest",
            "codestral-latest",
            "mistral-embed",
        ),
        default_model="mistral-large-latest",
        requires_api_key=True,
        family="openai_compatible",
    ),
    "huggingface": _ProviderEntry(
        name="Hugging Face",
        base_url="https://api-inference.huggingface.co/v1",
        api_key_env="HUGGINGFACE_API_KEY",
        default_api_key="",
        models=(
            "meta-llama/Meta-Llama-3.1-70B-Instruct",
            "microsoft/DialoGPT-medium",
            "microsoft/CodeBERT-base",
            "codellama/CodeLlama-34b-Instruct-hf",
            "WizardLM/WizardCoder-Python-34B-V1.0",
        ),
        default_model="meta-llama/Meta-Llama-3.1-70B-Instruct",
        requires_api_key=True,
        family="huggingface",
    ),
    "deepseek": _ProviderEntry(
        name="DeepSeek AI",
        base_url="https://api.deepseek.com/v1",
        api_key_env="DEEPSEEK_API_KEY",
        default_api_key="",
        models=("deepseek-chat", "deepseek-coder", "deepseek-math"),
        default_model="deepseek-coder",
        requires_api_key=True,
        family="openai_compatible",
    ),
    "fireworks": _ProviderEntry(
        name="Fireworks AI",
        base_url="https://api.fireworks.ai/inference/v1",
        api_key_env="FIREWORKS_API_KEY",
        default_api_key="",
        models=(
            "accounts/fireworks/models/llama-v3p1-405b-instruct",
            "accounts/fireworks/models/llama-v3p1-70b-instruct",
            "accounts/fireworks/models/llama-v3p1-8b-instruct",
            "accounts/fireworks/models/mixtral-8x7b-instruct",
            "accounts/fireworks/models/yi-large",
        ),
        default_model="accounts/fireworks/models/llama-v3p1-70b-instruct",
        requires_api_key=True,
        family="openai_compatible",
    ),
    "ollama": _ProviderEntry(
        name="Ollama (Local)",
        base_url="http://localhost:11434/v1",
        api_key_env="OLLAMA_API_KEY",
        default_api_key="ollama",
        models=(
            "llama3.1:405b",
            "llama3.1:70b",
            "llama3.1:8b",
            "codellama:34b",
            "codellama:13b",
            "codellama:7b",
            "deepseek-coder:33b",
            "deepseek-coder:6.7b",
            "mistral:7b",
            "mixtral:8x7b",
        ),
        default_model="llama3.1:8b",
        requires_api_key=False,
        family="local",
    ),
}


def is_placeholder_key(value: str | None) -> bool:
    raw = (value or "").strip()
    return not raw or "..." in raw


def static_family(key: str) -> ProviderFamilyName | None:
    entry = _STATIC_PROVIDERS.get(str(key or "").strip())
    return entry.family if entry else None


def _base_url_override_env(key: str) -> str:
    return f"DECEMBER_{key.upper()}_BASE_URL"


def build_provider_table(
    environ: Mapping[str, str] | None = None,
) -> dict[str, Provider]:
    """Build the provider table from the static entries plus env overrides.

    API keys are read from each provider's key variable (e.g. OPENAI_API_KEY);
    base URLs may be overridden with DECEMBER_<KEY>_BASE_URL.
    """
    env = os.environ if environ is None else environ
    out: dict[str, Provider] = {}
    for key, entry in _STATIC_PROVIDERS.items():
        api_key = entry.default_api_key
        if entry.api_key_env:
            api_key = (env.get(entry.api_key_env) or "").strip() or api_key
        base_url = (env.get(_base_url_override_env(key)) or "").strip()
        out[key] = Provider(
            key=key,
            name=entry.name,
            base_url=(base_url or entry.base_url).rstrip("/"),
            api_key=api_key,
            models=entry.models,
            default_model=entry.default_model,
            requires_api_key=entry.requires_api_key,
            family=entry.family,
        )
    return out


def _table(providers: Mapping[str, Provider] | None) -> Mapping[str, Provider]:
    return build_provider_table() if providers is None else providers


def get_provider(
    key: str, providers: Mapping[str, Provider] | None = None
) -> Provider:
    k = str(key or "").strip()
    provider = _table(providers).get(k)
    if provider is None:
        raise ProviderNotFound(k)
    return provider


def list_providers(
    providers: Mapping[str, Provider] | None = None,
) -> list[tuple[str, Provider]]:
    return list(_table(providers).items())


def validate_provider(
    key: str, providers: Mapping[str, Provider] | None = None
) -> bool:
    try:
        provider = get_provider(key, providers)
    except ProviderNotFound:
        logger.error('Provider "%s" not found', key)
        return False

    if provider.requires_api_key and is_placeholder_key(provider.api_key):
        entry = _STATIC_PROVIDERS.get(provider.key)
        env_name = entry.api_key_env if entry else None
        logger.error(
            'API key required for provider "%s" but not configured (set %s)',
            provider.key,
            env_name or "the provider API key",
        )
        return False

    logger.info(
        'Provider "%s" (%s) configured successfully', provider.key, provider.name
    )
    return True
