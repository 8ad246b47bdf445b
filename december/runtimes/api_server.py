from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import TYPE_CHECKING, Any, Literal

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from december.chat.orchestrator import ChatOrchestrator, ContextFetchError
from december.chat.types import Attachment
from december.environments.manager import EnvironmentManager, export_filename
from december.environments.registry import EnvironmentNotFound
from december.llm.client import UpstreamRequestError
from december.llm.config import ActiveProviderConfig, load_active_provider_config
from december.llm.providers import list_providers
from december.sandbox_backends.factory import get_backend

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator

    from december.chat.types import ChatEvent

# Local .env overrides for DECEMBER_* settings.
load_dotenv()

app = FastAPI(title="December")
logger = logging.getLogger(__name__)

_config: ActiveProviderConfig | None = None
_manager: EnvironmentManager | None = None
_orchestrator: ChatOrchestrator | None = None

_ENV_NOT_FOUND = "Development environment not found"


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


def _csv_env(name: str) -> list[str]:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


_cors_origins = _csv_env("DECEMBER_CORS_ALLOW_ORIGINS")
if _cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _get_config() -> ActiveProviderConfig:
    global _config
    if _config is None:
        _config = load_active_provider_config()
    return _config


def _get_manager() -> EnvironmentManager:
    global _manager
    if _manager is None:
        _manager = EnvironmentManager(get_backend())
    return _manager


def _get_orchestrator() -> ChatOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator(
            config=_get_config(), context_source=_get_manager()
        )
    return _orchestrator


class WriteFileRequest(BaseModel):
    path: str
    content: str = ""
    expectedSha256: str | None = None


class RenameFileRequest(BaseModel):
    oldPath: str
    newPath: str


class DeleteFileRequest(BaseModel):
    path: str
    recursive: bool = False


class DependencyRequest(BaseModel):
    packageName: str
    isDev: bool = False


class TerminalRequest(BaseModel):
    command: str


class AttachmentBody(BaseModel):
    type: Literal["image", "document"]
    data: str
    name: str
    mimeType: str
    size: int = 0

    def to_attachment(self) -> Attachment:
        return Attachment(
            type=self.type,
            data=self.data,
            name=self.name,
            mime_type=self.mimeType,
            size=self.size,
        )


class ChatMessageRequest(BaseModel):
    message: str
    attachments: list[AttachmentBody] | None = None

    def attachment_list(self) -> list[Attachment]:
        return [a.to_attachment() for a in self.attachments or []]


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, ContextFetchError) and isinstance(exc.__cause__, EnvironmentNotFound):
        return _error(_ENV_NOT_FOUND, 404)
    if isinstance(exc, EnvironmentNotFound):
        return _error(_ENV_NOT_FOUND, 404)
    if isinstance(exc, FileNotFoundError):
        return _error("File not found", 404)
    if isinstance(exc, PermissionError):
        return _error(str(exc) or "forbidden", 403)
    if isinstance(exc, FileExistsError):
        return _error(f"File already exists: {exc}", 409)
    if isinstance(exc, (IsADirectoryError, NotADirectoryError, ValueError)):
        return _error(str(exc) or "invalid request", 400)
    if isinstance(exc, UpstreamRequestError):
        logger.warning("Upstream model request failed: %s", exc)
        return _error(str(exc), 502)
    if isinstance(exc, RuntimeError) and str(exc) == "conflict":
        return _error("conflict", 409)
    logger.exception("Request failed")
    return _error(str(exc) or "Unknown error", 500)


@app.on_event("startup")
async def _startup() -> None:
    # A ConfigurationError here aborts startup.
    cfg = _get_config()
    logger.info(
        "December API ready (provider=%s, model=%s)", cfg.provider.key, cfg.model
    )


@app.get("/")
async def index() -> JSONResponse:
    return JSONResponse(
        {"message": "December API", "status": "running"}, status_code=200
    )


@app.get("/healthz")
async def healthz() -> JSONResponse:
    return JSONResponse({"status": "ok"}, status_code=200)


@app.get("/api/providers")
async def api_providers() -> JSONResponse:
    cfg = _get_config()
    return JSONResponse(
        {
            "success": True,
            "active": cfg.to_public_dict(),
            "providers": [p.to_public_dict() for _key, p in list_providers()],
        },
        status_code=200,
    )


@app.get("/api/containers")
async def api_list_containers() -> JSONResponse:
    envs = _get_manager().list()
    return JSONResponse(
        {"success": True, "containers": [e.to_container_dict() for e in envs]},
        status_code=200,
    )


@app.post("/api/containers/create")
async def api_create_container() -> JSONResponse:
    try:
        env = await asyncio.to_thread(_get_manager().create)
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {"success": True, "containerId": env.id, "container": env.to_created_dict()},
        status_code=200,
    )


@app.post("/api/containers/{environment_id}/start")
async def api_start_container(environment_id: str) -> JSONResponse:
    try:
        env = await asyncio.to_thread(_get_manager().start, environment_id)
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {
            "success": True,
            "containerId": env.id,
            "port": env.port,
            "url": env.url,
            "status": env.status,
            "message": "Development environment started successfully",
        },
        status_code=200,
    )


@app.post("/api/containers/{environment_id}/stop")
async def api_stop_container(environment_id: str) -> JSONResponse:
    try:
        env = await asyncio.to_thread(_get_manager().stop, environment_id)
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {
            "success": True,
            "containerId": env.id,
            "status": env.status,
            "message": "Development environment stopped successfully",
        },
        status_code=200,
    )


@app.delete("/api/containers/{environment_id}")
async def api_delete_container(environment_id: str) -> JSONResponse:
    try:
        await asyncio.to_thread(_get_manager().delete, environment_id)
    except Exception as e:
        return _error_response(e)
    removed = _get_orchestrator().sessions.clear_environment(environment_id)
    if removed:
        logger.info(
            "Dropped %s chat session(s) of environment %s", removed, environment_id
        )
    return JSONResponse(
        {
            "success": True,
            "containerId": environment_id,
            "message": "Development environment deleted successfully",
        },
        status_code=200,
    )


@app.get("/api/containers/{environment_id}/files")
async def api_list_files(environment_id: str, path: str = "/") -> JSONResponse:
    try:
        fs = _get_manager().fs(environment_id)
        files = await asyncio.to_thread(fs.list_files, path)
    except Exception as e:
        return _error_response(e)
    return JSONResponse({"success": True, "path": path, "files": files}, status_code=200)


@app.get("/api/containers/{environment_id}/file-tree")
async def api_file_tree(environment_id: str) -> JSONResponse:
    try:
        fs = _get_manager().fs(environment_id)
        tree = await asyncio.to_thread(fs.file_tree)
    except Exception as e:
        return _error_response(e)
    return JSONResponse({"success": True, "fileTree": tree}, status_code=200)


@app.get("/api/containers/{environment_id}/file-content-tree")
async def api_file_content_tree(environment_id: str) -> JSONResponse:
    try:
        tree = await _get_manager().get_file_content_tree(environment_id)
    except Exception as e:
        return _error_response(e)
    return JSONResponse({"success": True, "fileContentTree": tree}, status_code=200)


@app.get("/api/containers/{environment_id}/file")
async def api_read_file(environment_id: str, path: str = "") -> JSONResponse:
    if not path.strip():
        return _error("File path is required", 400)
    try:
        fs = _get_manager().fs(environment_id)
        r = await asyncio.to_thread(fs.read, path)
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {
            "success": True,
            "path": r.path,
            "content": r.content,
            "sha256": r.sha256,
            "isBinary": bool(r.is_binary),
        },
        status_code=200,
    )


@app.put("/api/containers/{environment_id}/files")
async def api_write_file(environment_id: str, body: WriteFileRequest) -> JSONResponse:
    try:
        fs = _get_manager().fs(environment_id)
        sha = await asyncio.to_thread(
            lambda: fs.write(
                path=body.path,
                content=body.content,
                expected_sha256=body.expectedSha256,
            )
        )
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {"success": True, "message": "File updated successfully", "sha256": sha},
        status_code=200,
    )


@app.put("/api/containers/{environment_id}/files/rename")
async def api_rename_file(environment_id: str, body: RenameFileRequest) -> JSONResponse:
    try:
        fs = _get_manager().fs(environment_id)
        await asyncio.to_thread(lambda: fs.rename(src=body.oldPath, dst=body.newPath))
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {"success": True, "message": "File renamed successfully"}, status_code=200
    )


@app.delete("/api/containers/{environment_id}/files")
async def api_delete_file(environment_id: str, body: DeleteFileRequest) -> JSONResponse:
    try:
        fs = _get_manager().fs(environment_id)
        await asyncio.to_thread(lambda: fs.rm(path=body.path, recursive=body.recursive))
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {"success": True, "message": "File removed successfully"}, status_code=200
    )


@app.post("/api/containers/{environment_id}/dependencies")
async def api_add_dependency(environment_id: str, body: DependencyRequest) -> JSONResponse:
    try:
        res = await asyncio.to_thread(
            lambda: _get_manager().add_dependency(
                environment_id, body.packageName, dev=body.isDev
            )
        )
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {
            "success": True,
            "message": "Dependency added successfully",
            "output": res.output,
            "error": res.error,
            "exitCode": res.exit_code,
        },
        status_code=200,
    )


@app.post("/api/containers/{environment_id}/terminal")
async def api_terminal(environment_id: str, body: TerminalRequest) -> JSONResponse:
    if not body.command.strip():
        return _error("Command is required", 400)
    try:
        res = await asyncio.to_thread(
            _get_manager().execute, environment_id, body.command
        )
    except Exception as e:
        return _error_response(e)
    return JSONResponse(
        {
            "success": True,
            "output": res.output,
            "error": res.error,
            "exitCode": res.exit_code,
        },
        status_code=200,
    )


@app.get("/api/containers/{environment_id}/export")
async def api_export(environment_id: str) -> Response:
    try:
        data = await asyncio.to_thread(_get_manager().export_zip, environment_id)
    except Exception as e:
        return _error_response(e)
    return Response(
        content=data,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename(environment_id)}"'
        },
    )


@app.get("/api/chat/sessions/{session_id}")
async def api_get_chat_session(session_id: str) -> JSONResponse:
    session = _get_orchestrator().get_chat_session(session_id)
    if session is None:
        return _error("Session not found", 404)
    return JSONResponse({"success": True, "session": session.to_dict()}, status_code=200)


@app.get("/api/chat/{environment_id}/session")
async def api_chat_session(environment_id: str) -> JSONResponse:
    session = _get_orchestrator().get_or_create_chat_session(environment_id)
    return JSONResponse({"success": True, "session": session.to_dict()}, status_code=200)


@app.post("/api/chat/{environment_id}/messages")
async def api_send_message(environment_id: str, body: ChatMessageRequest) -> JSONResponse:
    try:
        _get_manager().get(environment_id)
        exchange = await _get_orchestrator().send_message(
            environment_id, body.message, body.attachment_list()
        )
    except Exception as e:
        return _error_response(e)
    return JSONResponse({"success": True, **exchange.to_dict()}, status_code=200)


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def _sse_frames(events: AsyncIterator[ChatEvent]) -> AsyncIterator[str]:
    try:
        async for event in events:
            yield _sse(event.to_dict())
    except Exception as e:
        if isinstance(e, UpstreamRequestError):
            logger.warning("Chat stream failed upstream: %s", e)
        else:
            logger.exception("Chat stream failed")
        yield _sse({"type": "error", "data": {"error": str(e) or "Unknown error"}})
    finally:
        await events.aclose()  # type: ignore[attr-defined]


@app.post("/api/chat/{environment_id}/messages/stream")
async def api_send_message_stream(environment_id: str, body: ChatMessageRequest):
    try:
        _get_manager().get(environment_id)
    except EnvironmentNotFound as e:
        return _error_response(e)
    events = _get_orchestrator().send_message_stream(
        environment_id, body.message, body.attachment_list()
    )
    return StreamingResponse(
        _sse_frames(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=(os.environ.get("DECEMBER_LOG_LEVEL") or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        app,
        host=(os.environ.get("DECEMBER_HOST") or "0.0.0.0").strip(),
        port=_env_int("DECEMBER_PORT", 4000),
    )


if __name__ == "__main__":
    main()
