from __future__ import annotations

import asyncio
import io
import logging
import re
import shlex
import uuid
import zipfile
from typing import TYPE_CHECKING, Any

from december.environments.registry import Environment, EnvironmentRegistry
from december.sandbox_files.sandbox_fs import SandboxFs

if TYPE_CHECKING:  # pragma: no cover
    from december.sandbox_backends.base import SandboxBackend
    from december.sandbox_backends.process import CommandResult

logger = logging.getLogger(__name__)

# npm package spec: optional @scope/, a name, optional @version-range.
_PACKAGE_SPEC_RE = re.compile(
    r"^(@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*(@[A-Za-z0-9.^~<>=*+_|-]+)?$"
)


def is_valid_package_spec(spec: str) -> bool:
    return bool(_PACKAGE_SPEC_RE.match((spec or "").strip()))


def export_filename(environment_id: str) -> str:
    return f"december-project-{environment_id[:8]}.zip"


class EnvironmentManager:
    """Environment lifecycle on top of a sandbox backend.

    Methods block on disk and subprocess work; async callers run them in a
    worker thread. `get_file_content_tree` is the exception and is the file
    context source used by the chat orchestrator.
    """

    def __init__(
        self, backend: SandboxBackend, *, registry: EnvironmentRegistry | None = None
    ) -> None:
        self._backend = backend
        self._registry = registry or EnvironmentRegistry()

    @property
    def backend(self) -> SandboxBackend:
        return self._backend

    def list(self) -> list[Environment]:
        return self._registry.list()

    def get(self, environment_id: str) -> Environment:
        return self._registry.get(environment_id)

    def create(self) -> Environment:
        created = self._backend.create_app_environment()
        env = self._registry.put(
            Environment(
                id=str(uuid.uuid4()),
                sandbox_id=str(created["sandbox_id"]),
                url=str(created["url"]),
                port=int(created["port"]),
            )
        )
        logger.info(
            "Created environment %s (sandbox %s) at %s", env.id, env.sandbox_id, env.url
        )
        return env

    def start(self, environment_id: str) -> Environment:
        env = self._registry.get(environment_id)
        if not self._backend.dev_server_running(env.sandbox_id):
            started = self._backend.start_dev_server(env.sandbox_id, env.port)
            return self._registry.update(
                environment_id,
                status="running",
                port=int(started["port"]),
                url=str(started["url"]),
            )
        return self._registry.update(environment_id, status="running")

    def stop(self, environment_id: str) -> Environment:
        env = self._registry.get(environment_id)
        self._backend.stop_dev_server(env.sandbox_id)
        return self._registry.update(environment_id, status="stopped")

    def delete(self, environment_id: str) -> Environment:
        env = self._registry.get(environment_id)
        try:
            self._backend.delete_app_environment(env.sandbox_id)
        except Exception:
            logger.exception("Failed to delete sandbox %s", env.sandbox_id)
        self._registry.remove(environment_id)
        logger.info("Deleted environment %s", environment_id)
        return env

    def fs(self, environment_id: str) -> SandboxFs:
        env = self._registry.get(environment_id)
        return SandboxFs(self._backend.project_dir(env.sandbox_id))

    def execute(self, environment_id: str, command: str) -> CommandResult:
        env = self._registry.get(environment_id)
        return self._backend.execute(env.sandbox_id, command)

    def add_dependency(
        self, environment_id: str, package: str, *, dev: bool = False
    ) -> CommandResult:
        spec = (package or "").strip()
        if not is_valid_package_spec(spec):
            raise ValueError(f"invalid package name: {package!r}")
        command = f"npm install {shlex.quote(spec)}"
        if dev:
            command += " --save-dev"
        return self.execute(environment_id, command)

    def export_zip(self, environment_id: str) -> bytes:
        fs = self.fs(environment_id)
        buf = io.BytesIO()
        with zipfile.ZipFile(
            buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as zf:
            for arcname, abs_path in fs.iter_export_files():
                zf.write(abs_path, arcname)
        return buf.getvalue()

    async def get_file_content_tree(self, environment_id: str) -> list[dict[str, Any]]:
        fs = self.fs(environment_id)
        return await asyncio.to_thread(fs.file_content_tree)
