from __future__ import annotations

import posixpath
from dataclasses import dataclass, field

DENY_WRITE_PREFIXES = ("/node_modules/", "/.git/", "/.next/")


@dataclass(frozen=True)
class Policy:
    deny_write_prefixes: tuple[str, ...]
    deny_write_paths: frozenset[str] = field(default_factory=frozenset)


DEFAULT_POLICY = Policy(deny_write_prefixes=DENY_WRITE_PREFIXES)


def normalize_public_path(path: str) -> str:
    """Normalize a project-rooted POSIX path such as '/src/app/page.tsx'."""
    raw = (path or "").strip()
    if not raw:
        raise ValueError("empty path")
    if "\x00" in raw:
        raise ValueError("invalid path")

    raw = raw.replace("\\", "/")
    if not raw.startswith("/"):
        raw = "/" + raw

    # normpath would silently collapse "..", so check the raw segments.
    if ".." in raw.split("/"):
        raise ValueError("path traversal not allowed")

    norm = posixpath.normpath(raw)
    if norm.startswith("//"):
        norm = "/" + norm.lstrip("/")
    return norm


def is_denied_path(path: str, *, policy: Policy = DEFAULT_POLICY) -> bool:
    if path in policy.deny_write_paths:
        return True
    normalized = path.rstrip("/") + "/" if path != "/" else "/"
    return any(normalized.startswith(p) for p in policy.deny_write_prefixes)


def require_mutation_allowed(path: str, *, policy: Policy = DEFAULT_POLICY) -> str:
    p = normalize_public_path(path)
    if p == "/":
        raise ValueError("refusing to modify root")
    if is_denied_path(p, policy=policy):
        raise PermissionError(f"writes not allowed for '{p}'")
    return p


def require_read_allowed(path: str, *, policy: Policy = DEFAULT_POLICY) -> str:
    _ = policy
    return normalize_public_path(path)
