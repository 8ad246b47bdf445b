from december.prompting.system_prompt import (
    DEFAULT_PREAMBLE,
    build_system_prompt,
    context_max_chars,
    load_preamble,
    serialize_file_context,
)

__all__ = [
    "DEFAULT_PREAMBLE",
    "build_system_prompt",
    "context_max_chars",
    "load_preamble",
    "serialize_file_context",
]
