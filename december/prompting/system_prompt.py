from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_TRUNCATION_MARKER = "\n\n[...codebase context truncated...]"

DEFAULT_PREAMBLE = """You are December, an expert AI software engineer working inside a live Next.js development environment.

The project uses Next.js 15 (App Router), React 19, TypeScript and Tailwind CSS. Source files live under src/, pages and layouts under src/app/, reusable components under src/components/ and helpers under src/lib/.

When the user asks for a change:
1. Read the current codebase below before answering.
2. Make minimal, focused changes that satisfy the request.
3. Always return complete file contents for every file you create or modify, each in its own fenced code block preceded by its path relative to the project root.
4. Keep the app building: only import packages that are already listed in package.json, or say which npm packages must be installed.
5. Prefer server components; add "use client" only where hooks or browser APIs are needed.

Explain what you changed in a few short sentences after the code."""


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


def context_max_chars() -> int:
    return max(10_000, _env_int("DECEMBER_CONTEXT_MAX_CHARS", 400_000))


def _normalize_text(text: str) -> str:
    out = text.replace("\r\n", "\n").replace("\r", "\n")
    out = "\n".join(line.rstrip() for line in out.split("\n"))
    out = re.sub(r"\n{3,}", "\n\n", out)
    return out.strip()


def load_preamble() -> str:
    """Return the assistant preamble, honoring DECEMBER_SYSTEM_PROMPT_PATH."""
    path = (os.environ.get("DECEMBER_SYSTEM_PROMPT_PATH") or "").strip()
    if not path:
        return DEFAULT_PREAMBLE
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError:
        logger.warning("Could not read system prompt file %s; using default", path)
        return DEFAULT_PREAMBLE
    text = _normalize_text(text)
    return text or DEFAULT_PREAMBLE


def serialize_file_context(tree: Any, *, max_chars: int | None = None) -> str:
    limit = int(max_chars or context_max_chars())
    text = json.dumps(tree, indent=2, ensure_ascii=False)
    if len(text) > limit:
        logger.info("File context truncated from %s to %s chars", len(text), limit)
        text = text[:limit].rstrip() + _TRUNCATION_MARKER
    return text


def build_system_prompt(
    preamble: str, tree: Any, *, max_chars: int | None = None
) -> str:
    return (
        f"{preamble}\n\n"
        "Current codebase structure and content:\n"
        f"{serialize_file_context(tree, max_chars=max_chars)}"
    )
