from __future__ import annotations

import contextlib
import logging
import os
import re
import secrets
import shutil
import socket
import string
import subprocess
import threading
import time
from pathlib import Path

from december.sandbox_backends.nextjs_template import write_nextjs_project
from december.sandbox_backends.process import (
    CommandResult,
    kill_process_tree,
    run_command_limited,
)

logger = logging.getLogger(__name__)

_SANDBOX_ID_RE = re.compile(r"^dec-\d+-[a-z0-9]{9}$")
_ID_ALPHABET = string.ascii_lowercase + string.digits
_LOGS_DIRNAME = ".logs"


class DevServerError(RuntimeError):
    pass


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def new_sandbox_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"dec-{time.time_ns() // 1_000_000}-{suffix}"


def is_valid_sandbox_id(sandbox_id: str) -> bool:
    return bool(_SANDBOX_ID_RE.match(sandbox_id or ""))


def port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("", int(port)))
        except OSError:
            return False
    return True


def port_accepts_connections(port: int, *, host: str = "127.0.0.1") -> bool:
    try:
        with socket.create_connection((host, int(port)), timeout=0.5):
            return True
    except OSError:
        return False


def find_available_port(
    start_port: int, *, reserved: set[int] | None = None, max_tries: int = 1000
) -> int:
    taken = reserved or set()
    for port in range(int(start_port), min(int(start_port) + max_tries, 65536)):
        if port in taken:
            continue
        if port_is_free(port):
            return port
    raise DevServerError(f"no free port found from {start_port}")


class LocalSandboxBackend:
    """Sandboxes as Next.js project directories on the local disk.

    Each sandbox gets its own dev server process, started in a new process
    group so stop/delete can kill npm and everything it spawned.
    """

    def __init__(
        self,
        *,
        sandboxes_dir: str | Path | None = None,
        start_port: int | None = None,
        install_cmd: str | None = None,
        dev_cmd: str | None = None,
        ready_timeout_s: int | None = None,
        install_timeout_s: int | None = None,
        exec_timeout_s: int | None = None,
        start_dev_server: bool | None = None,
        host: str | None = None,
    ) -> None:
        self.sandboxes_dir = Path(
            sandboxes_dir or os.environ.get("DECEMBER_SANDBOXES_DIR") or "./sandboxes"
        ).resolve()
        self.start_port = (
            start_port
            if start_port is not None
            else _env_int("DECEMBER_SANDBOX_START_PORT", 3001)
        )
        self.install_cmd = (
            install_cmd
            or os.environ.get("DECEMBER_SANDBOX_INSTALL_CMD")
            or "npm install"
        )
        self.dev_cmd = dev_cmd or os.environ.get("DECEMBER_SANDBOX_DEV_CMD") or "npm run dev"
        self.ready_timeout_s = (
            ready_timeout_s
            if ready_timeout_s is not None
            else _env_int("DECEMBER_SANDBOX_READY_TIMEOUT_S", 60)
        )
        self.install_timeout_s = (
            install_timeout_s
            if install_timeout_s is not None
            else _env_int("DECEMBER_SANDBOX_INSTALL_TIMEOUT_S", 600)
        )
        self.exec_timeout_s = (
            exec_timeout_s
            if exec_timeout_s is not None
            else _env_int("DECEMBER_SANDBOX_EXEC_TIMEOUT_S", 30)
        )
        self.start_dev_server_enabled = (
            start_dev_server
            if start_dev_server is not None
            else _env_bool("DECEMBER_SANDBOX_START_DEV_SERVER", True)
        )
        self.host = (host or os.environ.get("DECEMBER_SANDBOX_HOST") or "localhost").strip()

        self._lock = threading.Lock()
        self._procs: dict[str, subprocess.Popen] = {}
        self._ports: dict[str, int] = {}

    def _url(self, port: int) -> str:
        return f"http://{self.host}:{port}"

    def _logs_dir(self) -> Path:
        p = self.sandboxes_dir / _LOGS_DIRNAME
        p.mkdir(parents=True, exist_ok=True)
        return p

    def project_dir(self, sandbox_id: str) -> str:
        if not is_valid_sandbox_id(sandbox_id):
            raise ValueError(f"invalid sandbox id: {sandbox_id!r}")
        return str(self.sandboxes_dir / sandbox_id)

    def _require_project(self, sandbox_id: str) -> Path:
        p = Path(self.project_dir(sandbox_id))
        if not p.is_dir():
            raise FileNotFoundError(f"sandbox not found: {sandbox_id}")
        return p

    def _reserve_port(self, sandbox_id: str, preferred: int) -> int:
        with self._lock:
            reserved = {p for sid, p in self._ports.items() if sid != sandbox_id}
            port = find_available_port(preferred, reserved=reserved)
            self._ports[sandbox_id] = port
        return port

    def create_app_environment(self) -> dict:
        self.sandboxes_dir.mkdir(parents=True, exist_ok=True)
        sandbox_id = new_sandbox_id()
        while (self.sandboxes_dir / sandbox_id).exists():
            sandbox_id = new_sandbox_id()
        project = Path(self.project_dir(sandbox_id))
        project.mkdir(parents=True)

        logger.info("Creating Next.js project for sandbox %s in %s", sandbox_id, project)
        try:
            write_nextjs_project(project)
            started = self.start_dev_server(sandbox_id, self.start_port)
        except Exception:
            logger.exception("Failed to create sandbox %s; cleaning up", sandbox_id)
            self.delete_app_environment(sandbox_id)
            raise

        return {"sandbox_id": sandbox_id, **started}

    def _run_install(self, sandbox_id: str, project: Path, log_path: Path) -> None:
        logger.info("Installing dependencies for sandbox %s", sandbox_id)
        with open(log_path, "ab") as log:
            try:
                res = subprocess.run(
                    ["sh", "-c", self.install_cmd],
                    cwd=str(project),
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    timeout=self.install_timeout_s,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                raise DevServerError(
                    f"dependency install timed out after {self.install_timeout_s}s"
                ) from exc
        if res.returncode != 0:
            raise DevServerError(
                f"dependency install failed with exit code {res.returncode} (see {log_path})"
            )
        logger.info("Dependencies installed for sandbox %s", sandbox_id)

    def _wait_until_ready(self, sandbox_id: str, proc: subprocess.Popen, port: int) -> None:
        deadline = time.monotonic() + float(self.ready_timeout_s)
        while time.monotonic() < deadline:
            if proc.poll() is not None:
                raise DevServerError(
                    f"dev server for {sandbox_id} exited with code {proc.returncode}"
                )
            if port_accepts_connections(port):
                logger.info("Dev server for sandbox %s ready on port %s", sandbox_id, port)
                return
            time.sleep(0.5)
        logger.warning(
            "Dev server for sandbox %s not ready after %ss; continuing",
            sandbox_id,
            self.ready_timeout_s,
        )

    def start_dev_server(self, sandbox_id: str, port: int) -> dict:
        project = self._require_project(sandbox_id)
        port = self._reserve_port(sandbox_id, port)
        if not self.start_dev_server_enabled:
            return {"port": port, "url": self._url(port)}

        self.stop_dev_server(sandbox_id)
        log_path = self._logs_dir() / f"{sandbox_id}.log"
        self._run_install(sandbox_id, project, log_path)

        logger.info("Starting dev server for sandbox %s on port %s", sandbox_id, port)
        env = {**os.environ, "PORT": str(port)}
        with open(log_path, "ab") as log:
            proc = subprocess.Popen(
                ["sh", "-c", self.dev_cmd],
                cwd=str(project),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        with self._lock:
            self._procs[sandbox_id] = proc

        try:
            self._wait_until_ready(sandbox_id, proc, port)
        except DevServerError:
            self.stop_dev_server(sandbox_id)
            raise
        return {"port": port, "url": self._url(port)}

    def dev_server_running(self, sandbox_id: str) -> bool:
        with self._lock:
            proc = self._procs.get(sandbox_id)
        return proc is not None and proc.poll() is None

    def stop_dev_server(self, sandbox_id: str) -> bool:
        with self._lock:
            proc = self._procs.pop(sandbox_id, None)
        if proc is None:
            return False
        if proc.poll() is None:
            logger.info("Stopping dev server for sandbox %s", sandbox_id)
            kill_process_tree(proc)
        return True

    def execute(
        self, sandbox_id: str, command: str, *, timeout_s: float | None = None
    ) -> CommandResult:
        project = self._require_project(sandbox_id)
        logger.info("Executing command in %s: %s", sandbox_id, command)
        return run_command_limited(
            command,
            cwd=str(project),
            timeout_s=timeout_s if timeout_s is not None else self.exec_timeout_s,
        )

    def delete_app_environment(self, sandbox_id: str) -> bool:
        project = Path(self.project_dir(sandbox_id))
        self.stop_dev_server(sandbox_id)
        with self._lock:
            self._ports.pop(sandbox_id, None)
        existed = project.exists()
        if existed:
            shutil.rmtree(project)
        with contextlib.suppress(OSError):
            (self.sandboxes_dir / _LOGS_DIRNAME / f"{sandbox_id}.log").unlink()
        logger.info("Deleted sandbox %s (existed=%s)", sandbox_id, existed)
        return existed

    def list_sandbox_ids(self) -> list[str]:
        if not self.sandboxes_dir.is_dir():
            return []
        return sorted(
            p.name
            for p in self.sandboxes_dir.iterdir()
            if p.is_dir() and is_valid_sandbox_id(p.name)
        )
