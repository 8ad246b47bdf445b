import sys
from pathlib import Path

import pytest

# Ensure the repo root is on sys.path so tests can import the local `december` package.
ROOT = str(Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture(autouse=True)
def _isolate_december_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep a developer's local provider/prompt settings out of unit tests.
    for name in (
        "DECEMBER_AI_PROVIDER",
        "DECEMBER_AI_MODEL",
        "DECEMBER_SYSTEM_PROMPT_PATH",
        "DECEMBER_CONTEXT_MAX_CHARS",
        "DECEMBER_SANDBOX_BACKEND",
    ):
        monkeypatch.delenv(name, raising=False)
