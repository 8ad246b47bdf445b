from __future__ import annotations

import asyncio
import io
import zipfile

import pytest

from december.environments.manager import (
    EnvironmentManager,
    export_filename,
    is_valid_package_spec,
)
from december.environments.registry import EnvironmentNotFound
from december.sandbox_backends.local_backend import LocalSandboxBackend
from december.sandbox_backends.process import CommandResult


class _FakeBackend:
    def __init__(self, tmp_path, *, fail_delete: bool = False) -> None:
        self.tmp_path = tmp_path
        self.fail_delete = fail_delete
        self.running: set[str] = set()
        self.commands: list[tuple[str, str]] = []
        self.starts = 0

    def create_app_environment(self) -> dict:
        (self.tmp_path / "dec-1-aaaaaaaaa").mkdir(exist_ok=True)
        self.running.add("dec-1-aaaaaaaaa")
        return {"sandbox_id": "dec-1-aaaaaaaaa", "url": "http://localhost:3001", "port": 3001}

    def project_dir(self, sandbox_id: str) -> str:
        return str(self.tmp_path / sandbox_id)

    def start_dev_server(self, sandbox_id: str, port: int) -> dict:
        self.starts += 1
        self.running.add(sandbox_id)
        return {"port": port + 1, "url": f"http://localhost:{port + 1}"}

    def stop_dev_server(self, sandbox_id: str) -> bool:
        self.running.discard(sandbox_id)
        return True

    def dev_server_running(self, sandbox_id: str) -> bool:
        return sandbox_id in self.running

    def execute(self, sandbox_id: str, command: str, *, timeout_s=None) -> CommandResult:
        self.commands.append((sandbox_id, command))
        return CommandResult(output="ok", error=None, exit_code=0)

    def delete_app_environment(self, sandbox_id: str) -> bool:
        if self.fail_delete:
            raise RuntimeError("backend down")
        return True

    def list_sandbox_ids(self) -> list[str]:
        return []


def test_create_and_list(tmp_path) -> None:
    mgr = EnvironmentManager(_FakeBackend(tmp_path))
    env = mgr.create()
    assert env.status == "running"
    assert env.created_at.endswith("Z")
    assert mgr.get(env.id) == env

    listed = [e.to_container_dict() for e in mgr.list()]
    assert listed[0]["id"] == env.id
    assert listed[0]["name"] == f"december-nextjs-{env.id[:8]}"
    assert listed[0]["assignedPort"] == 3001
    assert listed[0]["ports"] == [{"private": 3001, "public": 3001, "type": "tcp"}]
    assert env.to_created_dict()["containerId"] == "dec-1-aaaaaaaaa"


def test_unknown_environment(tmp_path) -> None:
    mgr = EnvironmentManager(_FakeBackend(tmp_path))
    with pytest.raises(EnvironmentNotFound):
        mgr.get("missing")
    with pytest.raises(EnvironmentNotFound):
        mgr.execute("missing", "ls")


def test_stop_then_start_restarts_dev_server(tmp_path) -> None:
    backend = _FakeBackend(tmp_path)
    mgr = EnvironmentManager(backend)
    env = mgr.create()

    assert mgr.start(env.id).status == "running"
    assert backend.starts == 0

    assert mgr.stop(env.id).status == "stopped"
    restarted = mgr.start(env.id)
    assert backend.starts == 1
    assert restarted.status == "running"
    assert restarted.port == 3002
    assert restarted.url == "http://localhost:3002"


def test_delete_survives_backend_failure(tmp_path, caplog) -> None:
    mgr = EnvironmentManager(_FakeBackend(tmp_path, fail_delete=True))
    env = mgr.create()
    with caplog.at_level("ERROR"):
        mgr.delete(env.id)
    assert "backend down" in caplog.text
    with pytest.raises(EnvironmentNotFound):
        mgr.get(env.id)


def test_add_dependency_builds_npm_command(tmp_path) -> None:
    backend = _FakeBackend(tmp_path)
    mgr = EnvironmentManager(backend)
    env = mgr.create()

    mgr.add_dependency(env.id, "zod")
    mgr.add_dependency(env.id, "@types/lodash", dev=True)

    assert backend.commands == [
        ("dec-1-aaaaaaaaa", "npm install zod"),
        ("dec-1-aaaaaaaaa", "npm install @types/lodash --save-dev"),
    ]


def test_add_dependency_rejects_shell_injection(tmp_path) -> None:
    backend = _FakeBackend(tmp_path)
    mgr = EnvironmentManager(backend)
    env = mgr.create()
    with pytest.raises(ValueError):
        mgr.add_dependency(env.id, "zod; rm -rf /")
    assert backend.commands == []


@pytest.mark.parametrize("spec", ["react", "react-dom@^19.0.0", "@scope/pkg@1.2.3", "lodash.merge"])
def test_valid_package_specs(spec: str) -> None:
    assert is_valid_package_spec(spec)


@pytest.mark.parametrize("spec", ["", "Bad Name", "$(whoami)", "a && b", "../x"])
def test_invalid_package_specs(spec: str) -> None:
    assert not is_valid_package_spec(spec)


def test_export_zip_and_content_tree(tmp_path) -> None:
    backend = LocalSandboxBackend(sandboxes_dir=tmp_path, start_dev_server=False)
    mgr = EnvironmentManager(backend)
    env = mgr.create()
    (tmp_path / env.sandbox_id / "node_modules" / "x").mkdir(parents=True)
    (tmp_path / env.sandbox_id / "node_modules" / "x" / "i.js").write_text("x")

    data = mgr.export_zip(env.id)
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        names = set(zf.namelist())
        assert "package.json" in names
        assert "src/app/page.tsx" in names
        assert not any(n.startswith("node_modules/") for n in names)
        assert all(i.compress_type == zipfile.ZIP_DEFLATED for i in zf.infolist())

    tree = asyncio.run(mgr.get_file_content_tree(env.id))
    by_name = {n["name"]: n for n in tree}
    assert "node_modules" not in by_name
    assert '"december-nextjs-app"' in by_name["package.json"]["content"]

    assert export_filename(env.id) == f"december-project-{env.id[:8]}.zip"
