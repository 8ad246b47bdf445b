from __future__ import annotations

from typing import Protocol

from december.sandbox_backends.process import CommandResult


class SandboxBackend(Protocol):
    """Abstract sandbox backend.

    A backend owns disposable Next.js project directories and the dev server
    process serving each one.

    `create_app_environment` returns a dict that must include:
      - sandbox_id: opaque identifier used for subsequent calls
      - url: preview URL suitable for an iframe
      - port: dev server port
    """

    def create_app_environment(self) -> dict: ...

    def project_dir(self, sandbox_id: str) -> str: ...

    def start_dev_server(self, sandbox_id: str, port: int) -> dict: ...

    def stop_dev_server(self, sandbox_id: str) -> bool: ...

    def dev_server_running(self, sandbox_id: str) -> bool: ...

    def execute(
        self, sandbox_id: str, command: str, *, timeout_s: float | None = None
    ) -> CommandResult: ...

    def delete_app_environment(self, sandbox_id: str) -> bool: ...

    def list_sandbox_ids(self) -> list[str]: ...
