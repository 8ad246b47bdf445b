from __future__ import annotations

import base64

from december.chat.types import Attachment
from december.llm.config import ActiveProviderConfig
from december.llm.formatting import (
    build_message_content,
    build_request_params,
    family_for,
    format_messages,
)
from december.llm.providers import Provider, build_provider_table

_MESSAGES = [
    {"role": "system", "content": "S"},
    {"role": "user", "content": "U"},
    {"role": "assistant", "content": "A"},
]


def _config(key: str, model: str = "m") -> ActiveProviderConfig:
    provider = build_provider_table({})[key]
    return ActiveProviderConfig(provider=provider, model=model)


def test_openai_compatible_is_passthrough() -> None:
    assert format_messages(_MESSAGES, "openai") == _MESSAGES
    assert format_messages(_MESSAGES, "groq") == _MESSAGES


def test_unknown_provider_falls_back_to_openai_shape() -> None:
    assert family_for("acme").name == "openai_compatible"
    assert format_messages(_MESSAGES, "acme") == _MESSAGES


def test_anthropic_folds_system_into_user() -> None:
    out = format_messages(_MESSAGES, "anthropic")
    assert out[0] == {"role": "user", "content": "System: S"}
    assert out[1:] == _MESSAGES[1:]


def test_google_uses_parts_and_model_role() -> None:
    out = format_messages(_MESSAGES, "google")
    assert out == [
        {"role": "system", "parts": [{"text": "S"}]},
        {"role": "user", "parts": [{"text": "U"}]},
        {"role": "model", "parts": [{"text": "A"}]},
    ]


def test_huggingface_drops_extra_fields() -> None:
    out = format_messages([{"role": "user", "content": "U", "name": "x"}], "huggingface")
    assert out == [{"role": "user", "content": "U"}]


def test_openai_params() -> None:
    params = build_request_params(_config("openai", "gpt-4o"))
    assert params == {
        "model": "gpt-4o",
        "temperature": 0.7,
        "max_tokens": 4096,
        "top_p": 1.0,
        "frequency_penalty": 0.0,
        "presence_penalty": 0.0,
    }


def test_anthropic_params_have_no_penalties() -> None:
    params = build_request_params(_config("anthropic"))
    assert "frequency_penalty" not in params
    assert "presence_penalty" not in params
    assert params["max_tokens"] == 4096


def test_google_params_use_generation_config() -> None:
    params = build_request_params(_config("google"))
    assert params["generationConfig"] == {
        "temperature": 0.7,
        "maxOutputTokens": 4096,
        "topP": 1.0,
    }


def test_local_params_use_options() -> None:
    params = build_request_params(_config("ollama"))
    assert params == {
        "model": "m",
        "options": {"temperature": 0.7, "num_predict": 4096, "top_p": 1.0},
    }


def test_message_content_with_image_and_document() -> None:
    doc = base64.b64encode(b"print(1)").decode("ascii")
    content = build_message_content(
        "look",
        [
            Attachment(type="image", data="iVBOR", name="s.png", mime_type="image/png", size=5),
            {"type": "document", "data": doc, "name": "a.py", "mimeType": "text/x-python"},
        ],
    )
    assert content[0] == {"type": "text", "text": "look"}
    assert content[1] == {
        "type": "image_url",
        "image_url": {"url": "data:image/png;base64,iVBOR"},
    }
    assert content[2]["type"] == "text"
    assert content[2]["text"] == '\n\nDocument "a.py" content:\nprint(1)'


def test_message_content_without_attachments() -> None:
    assert build_message_content("hi") == [{"type": "text", "text": "hi"}]


def test_custom_provider_dispatches_on_its_family() -> None:
    provider = Provider(
        key="claude-proxy",
        name="Claude Proxy",
        base_url="http://proxy.local/v1",
        api_key="k",
        models=("claude-x",),
        default_model="claude-x",
        requires_api_key=True,
        family="anthropic",
    )
    config = ActiveProviderConfig(provider=provider, model="claude-x")

    assert family_for(provider).name == "anthropic"
    assert format_messages(_MESSAGES, provider)[0] == {"role": "user", "content": "System: S"}
    assert "frequency_penalty" not in build_request_params(config)
