"""Provider-family request shaping.

Each upstream API uses different field names and nesting for the same
sampling knobs, and some reject message shapes the OpenAI-compatible
canonical form uses. Every family below implements the two operations
(`format_messages`, `build_request_params`); call sites only ever go through
the module-level dispatchers.
"""

from __future__ import annotations

import base64
import binascii
from typing import TYPE_CHECKING, Any

from december.llm.providers import static_family

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable

    from december.chat.types import Attachment
    from december.llm.config import ActiveProviderConfig
    from december.llm.providers import Provider


class ProviderFamily:
    """OpenAI-compatible wire shape; the default for unknown providers."""

    name = "openai_compatible"

    def format_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return messages

    def build_request_params(self, config: ActiveProviderConfig) -> dict[str, Any]:
        return {
            "model": config.model,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "top_p": config.top_p,
            "frequency_penalty": config.frequency_penalty,
            "presence_penalty": config.presence_penalty,
        }


class OpenAICompatible(ProviderFamily):
    name = "openai_compatible"


class Anthropic(ProviderFamily):
    name = "anthropic"

    def format_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        # No bare system role on this path; fold it into a user turn.
        out: list[dict[str, Any]] = []
        for msg in messages:
            if msg.get("role") == "system":
                out.append({"role": "user", "content": f"System: {msg.get('content')}"})
            else:
                out.append(msg)
        return out

    def build_request_params(self, config: ActiveProviderConfig) -> dict[str, Any]:
        return {
            "model": config.model,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "top_p": config.top_p,
        }


class Google(ProviderFamily):
    name = "google"

    def format_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "role": "model" if msg.get("role") == "assistant" else msg.get("role"),
                "parts": [{"text": msg.get("content")}],
            }
            for msg in messages
        ]

    def build_request_params(self, config: ActiveProviderConfig) -> dict[str, Any]:
        return {
            "model": config.model,
            "generationConfig": {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_tokens,
                "topP": config.top_p,
            },
        }


class HuggingFace(ProviderFamily):
    name = "huggingface"

    def format_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [{"role": msg.get("role"), "content": msg.get("content")} for msg in messages]


class Local(ProviderFamily):
    name = "local"

    def build_request_params(self, config: ActiveProviderConfig) -> dict[str, Any]:
        return {
            "model": config.model,
            "options": {
                "temperature": config.temperature,
                "num_predict": config.max_tokens,
                "top_p": config.top_p,
            },
        }


FAMILIES: dict[str, ProviderFamily] = {
    f.name: f
    for f in (OpenAICompatible(), Anthropic(), Google(), HuggingFace(), Local())
}


def family_for(provider: Provider | str) -> ProviderFamily:
    """Family of a `Provider`, or of a static provider key."""
    if isinstance(provider, str):
        name = static_family(provider) or ""
    else:
        name = provider.family
    return FAMILIES.get(name, FAMILIES["openai_compatible"])


def format_messages(
    messages: list[dict[str, Any]], provider: Provider | str
) -> list[dict[str, Any]]:
    return family_for(provider).format_messages(messages)


def build_request_params(config: ActiveProviderConfig) -> dict[str, Any]:
    return family_for(config.provider).build_request_params(config)


def _attachment_field(attachment: Any, name: str, alt: str | None = None) -> Any:
    # Attachments arrive either as dataclasses or as raw request dicts.
    if isinstance(attachment, dict):
        v = attachment.get(name)
        if v is None and alt:
            v = attachment.get(alt)
        return v
    return getattr(attachment, name, None)


def _decode_document(data: str) -> str:
    try:
        raw = base64.b64decode(data or "")
    except (binascii.Error, ValueError):
        raw = (data or "").encode("utf-8", errors="replace")
    return raw.decode("utf-8", errors="replace")


def build_message_content(
    text: str, attachments: Iterable[Attachment | dict[str, Any]] | None = None
) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = [{"type": "text", "text": text}]
    for attachment in attachments or []:
        kind = _attachment_field(attachment, "type")
        data = str(_attachment_field(attachment, "data") or "")
        if kind == "image":
            mime = _attachment_field(attachment, "mime_type", "mimeType")
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime};base64,{data}"},
                }
            )
        elif kind == "document":
            name = _attachment_field(attachment, "name")
            content.append(
                {
                    "type": "text",
                    "text": f'\n\nDocument "{name}" content:\n{_decode_document(data)}',
                }
            )
    return content
