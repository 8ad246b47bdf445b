from __future__ import annotations

import io
import json
import zipfile

import pytest

pytest.importorskip("dotenv")
pytest.importorskip("fastapi")

from december.chat.orchestrator import ChatOrchestrator
from december.chat.sessions import ChatSessionStore
from december.environments.manager import EnvironmentManager
from december.environments.registry import EnvironmentNotFound
from december.llm.client import UpstreamRequestError
from december.llm.config import ActiveProviderConfig
from december.llm.providers import build_provider_table
from december.sandbox_backends.local_backend import LocalSandboxBackend


class _FakeModelClient:
    def __init__(self, *, chunks=None, error: Exception | None = None) -> None:
        self.chunks = chunks or ["Hi", " there"]
        self.error = error

    async def complete(self, provider, payload):
        if self.error is not None:
            raise self.error
        return {"choices": [{"message": {"content": "".join(self.chunks)}}]}

    async def stream(self, provider, payload):
        for c in self.chunks:
            yield {"choices": [{"delta": {"content": c}}]}
        if self.error is not None:
            raise self.error


@pytest.fixture()
def api(monkeypatch, tmp_path):
    from fastapi.testclient import TestClient

    import december.runtimes.api_server as api_server

    provider = build_provider_table({})["ollama"]
    config = ActiveProviderConfig(provider=provider, model=provider.default_model)
    manager = EnvironmentManager(
        LocalSandboxBackend(sandboxes_dir=tmp_path, start_dev_server=False)
    )
    state = {"client": _FakeModelClient()}
    sessions = ChatSessionStore()

    def _orchestrator() -> ChatOrchestrator:
        return ChatOrchestrator(
            config=config,
            context_source=manager,
            client=state["client"],
            sessions=sessions,
            preamble="Test preamble.",
        )

    monkeypatch.setattr(api_server, "_get_config", lambda: config)
    monkeypatch.setattr(api_server, "_get_manager", lambda: manager)
    monkeypatch.setattr(api_server, "_get_orchestrator", _orchestrator)
    return TestClient(api_server.app), state


def _create(client) -> str:
    r = client.post("/api/containers/create")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["container"]["status"] == "running"
    return body["containerId"]


def _sse_events(text: str) -> list[dict]:
    return [
        json.loads(line[len("data: ") :])
        for line in text.splitlines()
        if line.startswith("data: ")
    ]


def test_health_and_index(api) -> None:
    client, _ = api
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/").json()["status"] == "running"


def test_providers_listing(api) -> None:
    client, _ = api
    body = client.get("/api/providers").json()
    assert body["active"]["provider"] == "ollama"
    assert len(body["providers"]) == 11
    assert all("apiKey" not in p for p in body["providers"])


def test_container_lifecycle(api) -> None:
    client, _ = api
    cid = _create(client)

    listed = client.get("/api/containers").json()["containers"]
    assert [c["id"] for c in listed] == [cid]

    r = client.post(f"/api/containers/{cid}/stop")
    assert r.json()["status"] == "stopped"
    r = client.post(f"/api/containers/{cid}/start")
    assert r.json()["status"] == "running"
    assert r.json()["message"] == "Development environment started successfully"

    r = client.delete(f"/api/containers/{cid}")
    assert r.status_code == 200
    assert client.get("/api/containers").json()["containers"] == []


def test_unknown_container_is_404(api) -> None:
    client, _ = api
    for r in (
        client.post("/api/containers/nope/start"),
        client.get("/api/containers/nope/file-tree"),
        client.post("/api/containers/nope/terminal", json={"command": "ls"}),
        client.delete("/api/containers/nope"),
    ):
        assert r.status_code == 404
        assert r.json() == {"success": False, "error": "Development environment not found"}


def test_file_operations(api) -> None:
    client, _ = api
    cid = _create(client)

    r = client.put(
        f"/api/containers/{cid}/files",
        json={"path": "/src/lib/util.ts", "content": "export const x = 1;\n"},
    )
    assert r.status_code == 200
    sha = r.json()["sha256"]

    r = client.get(f"/api/containers/{cid}/file", params={"path": "/src/lib/util.ts"})
    assert r.json()["content"] == "export const x = 1;\n"
    assert r.json()["sha256"] == sha

    r = client.put(
        f"/api/containers/{cid}/files",
        json={"path": "/src/lib/util.ts", "content": "y", "expectedSha256": "stale"},
    )
    assert r.status_code == 409

    r = client.put(
        f"/api/containers/{cid}/files/rename",
        json={"oldPath": "/src/lib/util.ts", "newPath": "/src/lib/helpers.ts"},
    )
    assert r.status_code == 200

    files = client.get(f"/api/containers/{cid}/files", params={"path": "/src/lib"}).json()
    assert [f["name"] for f in files["files"]] == ["helpers.ts"]

    r = client.request("DELETE", f"/api/containers/{cid}/files", json={"path": "/src/lib/helpers.ts"})
    assert r.json()["message"] == "File removed successfully"

    r = client.get(f"/api/containers/{cid}/file", params={"path": "/src/lib/helpers.ts"})
    assert r.status_code == 404


def test_file_requires_path(api) -> None:
    client, _ = api
    cid = _create(client)
    r = client.get(f"/api/containers/{cid}/file")
    assert r.status_code == 400
    assert r.json()["error"] == "File path is required"


def test_path_policy_status_codes(api) -> None:
    client, _ = api
    cid = _create(client)
    r = client.put(f"/api/containers/{cid}/files", json={"path": "/node_modules/x.js", "content": ""})
    assert r.status_code == 403
    r = client.put(f"/api/containers/{cid}/files", json={"path": "../escape.txt", "content": ""})
    assert r.status_code == 400


def test_trees_terminal_and_export(api) -> None:
    client, _ = api
    cid = _create(client)

    tree = client.get(f"/api/containers/{cid}/file-tree").json()["fileTree"]
    assert {"src", "public", "package.json"} <= {n["name"] for n in tree}

    content_tree = client.get(f"/api/containers/{cid}/file-content-tree").json()
    pkg = next(n for n in content_tree["fileContentTree"] if n["name"] == "package.json")
    assert "next dev" in pkg["content"]

    r = client.post(f"/api/containers/{cid}/terminal", json={"command": "ls src"})
    assert r.json()["output"] == "app\ncomponents\nlib\n"
    assert r.json()["exitCode"] == 0

    r = client.post(f"/api/containers/{cid}/dependencies", json={"packageName": "bad name"})
    assert r.status_code == 400

    r = client.get(f"/api/containers/{cid}/export")
    assert r.headers["content-type"] == "application/zip"
    assert f'december-project-{cid[:8]}.zip' in r.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(r.content)) as zf:
        assert "src/app/page.tsx" in zf.namelist()


def test_chat_message(api) -> None:
    client, _ = api
    cid = _create(client)

    r = client.post(f"/api/chat/{cid}/messages", json={"message": "Hello"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["userMessage"]["content"] == "Hello"
    assert body["assistantMessage"]["content"] == "Hi there"

    session = client.get(f"/api/chat/{cid}/session").json()["session"]
    assert len(session["messages"]) == 2
    again = client.get(f"/api/chat/sessions/{session['id']}").json()["session"]
    assert again["id"] == session["id"]

    assert client.get("/api/chat/sessions/missing").status_code == 404


def test_chat_message_upstream_error_is_502(api) -> None:
    client, state = api
    cid = _create(client)
    state["client"] = _FakeModelClient(error=UpstreamRequestError("provider down", status_code=503))
    r = client.post(f"/api/chat/{cid}/messages", json={"message": "Hello"})
    assert r.status_code == 502
    assert "provider down" in r.json()["error"]


def test_chat_unknown_environment(api) -> None:
    client, _ = api
    assert client.post("/api/chat/nope/messages", json={"message": "x"}).status_code == 404
    assert client.post("/api/chat/nope/messages/stream", json={"message": "x"}).status_code == 404


def test_chat_environment_deleted_during_turn_is_404(api, monkeypatch) -> None:
    import december.runtimes.api_server as api_server

    client, _ = api
    cid = _create(client)
    manager = api_server._get_manager()

    async def _gone(environment_id):
        raise EnvironmentNotFound(environment_id)

    monkeypatch.setattr(manager, "get_file_content_tree", _gone)
    r = client.post(f"/api/chat/{cid}/messages", json={"message": "Hello"})
    assert r.status_code == 404
    assert r.json()["error"] == "Development environment not found"


def test_chat_stream(api) -> None:
    client, _ = api
    cid = _create(client)

    r = client.post(f"/api/chat/{cid}/messages/stream", json={"message": "Hello"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")

    events = _sse_events(r.text)
    assert [e["type"] for e in events] == ["user", "assistant", "assistant", "done"]
    assert events[-1]["data"]["content"] == "Hi there"


def test_chat_stream_error_frame(api) -> None:
    client, state = api
    cid = _create(client)
    state["client"] = _FakeModelClient(chunks=["Hi"], error=UpstreamRequestError("cut off"))

    r = client.post(f"/api/chat/{cid}/messages/stream", json={"message": "Hello"})
    events = _sse_events(r.text)
    assert [e["type"] for e in events] == ["user", "assistant", "error"]
    assert events[-1]["data"] == {"error": "cut off"}


def test_chat_attachment_validation(api) -> None:
    client, _ = api
    cid = _create(client)
    r = client.post(
        f"/api/chat/{cid}/messages",
        json={
            "message": "see",
            "attachments": [{"type": "video", "data": "x", "name": "v", "mimeType": "video/mp4"}],
        },
    )
    assert r.status_code == 422


def test_startup_refuses_invalid_provider(monkeypatch) -> None:
    import asyncio

    import december.runtimes.api_server as api_server
    from december.llm.providers import ConfigurationError

    monkeypatch.setenv("DECEMBER_AI_PROVIDER", "anthropic")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setattr(api_server, "_config", None)
    with pytest.raises(ConfigurationError):
        asyncio.run(api_server._startup())
