from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Any, Literal

from december.chat.types import now_iso

EnvironmentStatus = Literal["running", "stopped"]

DEFAULT_PORT = 3001


class EnvironmentNotFound(LookupError):
    def __init__(self, environment_id: str) -> None:
        super().__init__(f"environment not found: {environment_id}")
        self.environment_id = environment_id


@dataclass(frozen=True)
class Environment:
    id: str
    sandbox_id: str
    url: str
    port: int
    status: EnvironmentStatus = "running"
    created_at: str = ""
    type: str = "Next.js App"

    @property
    def name(self) -> str:
        return f"december-nextjs-{self.id[:8]}"

    def to_container_dict(self) -> dict[str, Any]:
        """Listing shape used by the container dashboard."""
        port = self.port or DEFAULT_PORT
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "image": "december/nextjs",
            "created": self.created_at,
            "assignedPort": port,
            "url": self.url,
            "ports": [{"private": port, "public": port, "type": "tcp"}],
            "labels": {"project": "december", "type": "nextjs-app"},
        }

    def to_created_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "containerId": self.sandbox_id,
            "status": self.status,
            "port": self.port,
            "url": self.url,
            "createdAt": self.created_at,
            "type": self.type,
        }


class EnvironmentRegistry:
    """Lock-guarded map of environment id -> Environment (process lifetime)."""

    def __init__(self) -> None:
        self._items: dict[str, Environment] = {}
        self._lock = threading.Lock()

    def put(self, env: Environment) -> Environment:
        if not env.created_at:
            env = replace(env, created_at=now_iso())
        with self._lock:
            self._items[env.id] = env
        return env

    def get(self, environment_id: str) -> Environment:
        with self._lock:
            env = self._items.get(environment_id)
        if env is None:
            raise EnvironmentNotFound(environment_id)
        return env

    def update(self, environment_id: str, **changes: Any) -> Environment:
        with self._lock:
            env = self._items.get(environment_id)
            if env is None:
                raise EnvironmentNotFound(environment_id)
            env = replace(env, **changes)
            self._items[environment_id] = env
        return env

    def remove(self, environment_id: str) -> Environment:
        with self._lock:
            env = self._items.pop(environment_id, None)
        if env is None:
            raise EnvironmentNotFound(environment_id)
        return env

    def list(self) -> list[Environment]:
        with self._lock:
            return sorted(self._items.values(), key=lambda e: e.created_at)
