from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from december.llm.providers import (
    ConfigurationError,
    Provider,
    build_provider_table,
    get_provider,
    validate_provider,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_KEY = "ollama"


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except Exception:
        return float(default)


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


@dataclass(frozen=True)
class ActiveProviderConfig:
    provider: Provider
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    request_timeout_s: float = 120.0

    @property
    def provider_key(self) -> str:
        return self.provider.key

    def to_public_dict(self) -> dict[str, object]:
        return {
            "provider": self.provider.key,
            "name": self.provider.name,
            "model": self.model,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "topP": self.top_p,
            "frequencyPenalty": self.frequency_penalty,
            "presencePenalty": self.presence_penalty,
        }


def load_active_provider_config(
    environ: Mapping[str, str] | None = None,
    providers: Mapping[str, Provider] | None = None,
) -> ActiveProviderConfig:
    """Resolve the active provider and sampling settings once at startup.

    Raises ConfigurationError when the selected provider is unknown or lacks a
    usable API key; the server must not start serving in that case.
    """
    env = os.environ if environ is None else environ
    table = build_provider_table(env) if providers is None else providers

    key = (env.get("DECEMBER_AI_PROVIDER") or DEFAULT_PROVIDER_KEY).strip()
    if not validate_provider(key, table):
        raise ConfigurationError(f"invalid configuration for provider: {key}")
    provider = get_provider(key, table)

    model = (env.get("DECEMBER_AI_MODEL") or "").strip() or provider.default_model
    if model not in provider.models:
        logger.warning(
            "Model %s is not in the known model list of provider %s",
            model,
            provider.key,
        )

    cfg = ActiveProviderConfig(
        provider=provider,
        model=model,
        temperature=_env_float(env, "DECEMBER_AI_TEMPERATURE", 0.7),
        max_tokens=max(1, _env_int(env, "DECEMBER_AI_MAX_TOKENS", 4096)),
        top_p=_env_float(env, "DECEMBER_AI_TOP_P", 1.0),
        frequency_penalty=_env_float(env, "DECEMBER_AI_FREQUENCY_PENALTY", 0.0),
        presence_penalty=_env_float(env, "DECEMBER_AI_PRESENCE_PENALTY", 0.0),
        request_timeout_s=max(
            1.0, _env_float(env, "DECEMBER_AI_REQUEST_TIMEOUT_S", 120.0)
        ),
    )
    logger.info("Using provider %s with model %s", provider.name, cfg.model)
    return cfg
