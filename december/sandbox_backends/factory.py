from __future__ import annotations

import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .base import SandboxBackend


def get_backend() -> SandboxBackend:
    kind = (os.environ.get("DECEMBER_SANDBOX_BACKEND") or "local").strip().lower()
    if kind == "local":
        from .local_backend import LocalSandboxBackend

        return LocalSandboxBackend()
    raise RuntimeError(f"Unsupported DECEMBER_SANDBOX_BACKEND: {kind}")
