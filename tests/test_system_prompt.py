from __future__ import annotations

import json

from december.prompting.system_prompt import (
    DEFAULT_PREAMBLE,
    build_system_prompt,
    context_max_chars,
    load_preamble,
    serialize_file_context,
)


def test_default_preamble_without_env() -> None:
    assert load_preamble() == DEFAULT_PREAMBLE


def test_preamble_from_file(monkeypatch, tmp_path) -> None:
    p = tmp_path / "prompt.md"
    p.write_text("Be brief.\r\n\r\n\r\n\r\nAlways.   \n", encoding="utf-8")
    monkeypatch.setenv("DECEMBER_SYSTEM_PROMPT_PATH", str(p))
    assert load_preamble() == "Be brief.\n\nAlways."


def test_missing_preamble_file_falls_back(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DECEMBER_SYSTEM_PROMPT_PATH", str(tmp_path / "nope.md"))
    assert load_preamble() == DEFAULT_PREAMBLE


def test_build_system_prompt_layout() -> None:
    tree = [{"name": "a.ts", "path": "/a.ts", "type": "file", "content": "x"}]
    out = build_system_prompt("P", tree)
    head, _, body = out.partition("Current codebase structure and content:\n")
    assert head == "P\n\n"
    assert json.loads(body) == tree


def test_context_is_truncated() -> None:
    tree = [{"name": "big", "content": "x" * 50_000}]
    out = serialize_file_context(tree, max_chars=20_000)
    assert len(out) < 20_100
    assert out.endswith("[...codebase context truncated...]")


def test_context_limit_has_a_floor(monkeypatch) -> None:
    monkeypatch.setenv("DECEMBER_CONTEXT_MAX_CHARS", "10")
    assert context_max_chars() == 10_000
    monkeypatch.setenv("DECEMBER_CONTEXT_MAX_CHARS", "junk")
    assert context_max_chars() == 400_000
