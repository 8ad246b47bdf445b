from __future__ import annotations

import hashlib
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from december.sandbox_files.policy import (
    DEFAULT_POLICY,
    Policy,
    require_mutation_allowed,
    require_read_allowed,
)

_MAX_TEXT_BYTES = 500_000

EXCLUDED_DIRS = frozenset(
    {"node_modules", ".next", ".git", "dist", "build", "out", ".turbo", ".cache"}
)
LOCKFILES = frozenset(
    {"package-lock.json", "yarn.lock", "pnpm-lock.yaml", "bun.lockb", "bun.lock"}
)


@dataclass(frozen=True)
class ReadResult:
    path: str
    content: str | None
    sha256: str
    is_binary: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "sha256": self.sha256,
            "isBinary": self.is_binary,
        }


def _sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _looks_binary(data: bytes) -> bool:
    if b"\x00" in data:
        return True
    try:
        data.decode("utf-8")
        return False
    except Exception:
        return True


def _join_public(parent: str, name: str) -> str:
    return f"{parent.rstrip('/')}/{name}"


class SandboxFs:
    """File operations on one environment's project directory.

    Paths are project-rooted ("/" is the project directory) and are resolved
    against the real directory; anything resolving outside it is rejected.
    """

    def __init__(self, root: str | Path, *, policy: Policy = DEFAULT_POLICY) -> None:
        self._root = Path(root).resolve()
        self._policy = policy

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, public_path: str) -> Path:
        target = (self._root / public_path.lstrip("/")).resolve()
        if target != self._root and not target.is_relative_to(self._root):
            raise PermissionError(f"path escapes project root: '{public_path}'")
        return target

    def _resolve_entry(self, public_path: str) -> Path:
        # Resolves the parent only; a symlink as the last component is the entry itself.
        rel = public_path.lstrip("/")
        if not rel:
            return self._root
        raw = self._root / rel
        target = raw.parent.resolve() / raw.name
        if not target.is_relative_to(self._root):
            raise PermissionError(f"path escapes project root: '{public_path}'")
        return target

    def _readable(self, path: str) -> tuple[str, Path]:
        p = require_read_allowed(path, policy=self._policy)
        return p, self._resolve(p)

    def _mutable(self, path: str) -> tuple[str, Path]:
        p = require_mutation_allowed(path, policy=self._policy)
        return p, self._resolve(p)

    def _mutable_entry(self, path: str) -> tuple[str, Path]:
        p = require_mutation_allowed(path, policy=self._policy)
        return p, self._resolve_entry(p)

    def ls(self, path: str = "/") -> list[dict[str, Any]]:
        p, target = self._readable(path)
        if not target.exists():
            raise FileNotFoundError("file_not_found")
        if not target.is_dir():
            raise NotADirectoryError(p)
        out: list[dict[str, Any]] = []
        for child in sorted(target.iterdir(), key=lambda c: (not c.is_dir(), c.name)):
            out.append(
                {"path": _join_public(p, child.name), "name": child.name, "is_dir": child.is_dir()}
            )
        return out

    def list_files(self, path: str = "/") -> list[dict[str, Any]]:
        """Flat directory listing in the `ls -l`-like shape the UI renders."""
        p, target = self._readable(path)
        if not target.is_dir():
            raise FileNotFoundError("file_not_found")
        out: list[dict[str, Any]] = []
        for entry in self.ls(p):
            child = target / entry["name"]
            st = child.lstat()
            is_dir = entry["is_dir"]
            out.append(
                {
                    "name": entry["name"],
                    "type": "directory" if is_dir else "file",
                    "permissions": "drwxr-xr-x" if is_dir else "-rw-r--r--",
                    "size": 0 if is_dir else int(st.st_size),
                    "modified": datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
                    .date()
                    .isoformat(),
                }
            )
        return out

    def read(self, path: str) -> ReadResult:
        p, target = self._readable(path)
        if not target.is_file():
            raise FileNotFoundError("file_not_found")
        payload = target.read_bytes()
        sha = _sha256_bytes(payload)
        if len(payload) > _MAX_TEXT_BYTES or _looks_binary(payload):
            return ReadResult(path=p, content=None, sha256=sha, is_binary=True)
        return ReadResult(path=p, content=payload.decode("utf-8"), sha256=sha, is_binary=False)

    def write(
        self,
        *,
        path: str,
        content: str,
        expected_sha256: str | None = None,
    ) -> str:
        p, target = self._mutable(path)

        if expected_sha256:
            try:
                cur = self.read(p)
            except FileNotFoundError:
                cur = None
            if cur is None:
                raise FileNotFoundError("file_not_found")
            if cur.sha256 != expected_sha256:
                raise RuntimeError("conflict")

        if target.is_dir():
            raise IsADirectoryError(p)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = (content or "").encode("utf-8")
        target.write_bytes(payload)
        return _sha256_bytes(payload)

    def mkdir(self, path: str) -> None:
        _p, target = self._mutable(path)
        target.mkdir(parents=True, exist_ok=True)

    def create_file(self, *, path: str, content: str = "") -> str:
        p, target = self._mutable(path)
        if target.exists():
            raise FileExistsError(p)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = (content or "").encode("utf-8")
        target.write_bytes(payload)
        return _sha256_bytes(payload)

    def rename(self, *, src: str, dst: str) -> None:
        _s, source = self._mutable_entry(src)
        d, dest = self._mutable_entry(dst)
        if not source.exists() and not source.is_symlink():
            raise FileNotFoundError("file_not_found")
        if dest.exists() or dest.is_symlink():
            raise FileExistsError(d)
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, dest)

    def rm(self, *, path: str, recursive: bool = False) -> None:
        _p, target = self._mutable_entry(path)
        if target == self._root:
            raise ValueError("refusing to delete root")
        if not target.exists() and not target.is_symlink():
            raise FileNotFoundError("file_not_found")
        if target.is_dir() and not target.is_symlink():
            if recursive:
                shutil.rmtree(target)
            else:
                target.rmdir()
            return
        target.unlink()

    def _content_for(self, file_path: Path) -> str | None:
        if file_path.name in LOCKFILES:
            return None
        try:
            if file_path.stat().st_size > _MAX_TEXT_BYTES:
                return None
            data = file_path.read_bytes()
        except OSError:
            return None
        if _looks_binary(data):
            return None
        return data.decode("utf-8")

    def _walk(self, directory: Path, public: str, *, with_content: bool) -> list[dict[str, Any]]:
        dirs: list[dict[str, Any]] = []
        files: list[dict[str, Any]] = []
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError:
            return []
        for entry in entries:
            if entry.is_symlink():
                continue
            child_public = _join_public(public, entry.name)
            if entry.is_dir():
                if entry.name in EXCLUDED_DIRS:
                    continue
                dirs.append(
                    {
                        "name": entry.name,
                        "path": child_public,
                        "type": "directory",
                        "children": self._walk(
                            Path(entry.path), child_public, with_content=with_content
                        ),
                    }
                )
            elif entry.is_file():
                node: dict[str, Any] = {"name": entry.name, "path": child_public, "type": "file"}
                if with_content:
                    content = self._content_for(Path(entry.path))
                    if content is not None:
                        node["content"] = content
                files.append(node)
        return dirs + files

    def file_tree(self) -> list[dict[str, Any]]:
        return self._walk(self._root, "/", with_content=False)

    def file_content_tree(self) -> list[dict[str, Any]]:
        return self._walk(self._root, "/", with_content=True)

    def iter_export_files(self):
        """Yield (archive name, absolute path) for every exportable file."""
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
            for name in sorted(filenames):
                abs_path = Path(dirpath) / name
                if abs_path.is_symlink():
                    continue
                yield abs_path.relative_to(self._root).as_posix(), abs_path
