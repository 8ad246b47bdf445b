from __future__ import annotations

import contextlib
import os
import selectors
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Any

_TRUNCATED = "\n<output truncated>"


@dataclass(frozen=True)
class CommandResult:
    output: str
    error: str | None
    exit_code: int
    timed_out: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"output": self.output, "exitCode": self.exit_code}
        if self.error:
            out["error"] = self.error
        return out


def _decode_output(b: bytes) -> str:
    return b.decode("utf-8", errors="replace")


class _BoundedBuffer:
    def __init__(self, max_bytes: int) -> None:
        self._max_bytes = max_bytes
        self.data = bytearray()
        self.truncated = False

    def feed(self, chunk: bytes) -> None:
        room = self._max_bytes - len(self.data)
        if room <= 0:
            self.truncated = True
            return
        self.data.extend(chunk[:room])
        if len(chunk) > room:
            self.truncated = True

    def text(self, max_chars: int) -> str:
        out = _decode_output(bytes(self.data))
        if self.truncated:
            out = out[:max_chars] + _TRUNCATED
        return out


def kill_process_tree(proc: subprocess.Popen, *, grace_s: float = 1.0) -> None:
    # start_new_session=True makes proc.pid the process group id.
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        with contextlib.suppress(OSError):
            proc.terminate()
    try:
        proc.wait(timeout=grace_s)
        return
    except subprocess.TimeoutExpired:
        pass
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        with contextlib.suppress(OSError):
            proc.kill()
    with contextlib.suppress(subprocess.TimeoutExpired):
        proc.wait(timeout=grace_s)


def _drain_ready(
    sel: selectors.BaseSelector,
    buffers: dict[str, _BoundedBuffer],
    timeout: float,
) -> None:
    for key, _ in sel.select(timeout=timeout):
        stream = key.fileobj
        try:
            chunk = stream.read1(8192)  # type: ignore[union-attr]
        except OSError:
            chunk = b""
        if not chunk:
            with contextlib.suppress(Exception):
                sel.unregister(stream)
            with contextlib.suppress(OSError):
                stream.close()  # type: ignore[union-attr]
            continue
        buffers[key.data].feed(chunk)


def run_command_limited(
    command: str,
    *,
    cwd: str,
    timeout_s: float = 30.0,
    max_output_chars: int = 100_000,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run `sh -c command` in cwd with bounded output and a hard timeout.

    On timeout the whole process group is killed and whatever was captured is
    discarded in favour of a fixed timeout message.
    """
    max_bytes = max_output_chars * 4
    proc = subprocess.Popen(
        ["sh", "-c", command],
        cwd=cwd,
        env=env if env is not None else os.environ.copy(),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    )
    assert proc.stdout is not None
    assert proc.stderr is not None

    buffers = {"stdout": _BoundedBuffer(max_bytes), "stderr": _BoundedBuffer(max_bytes)}
    sel = selectors.DefaultSelector()
    sel.register(proc.stdout, selectors.EVENT_READ, data="stdout")
    sel.register(proc.stderr, selectors.EVENT_READ, data="stderr")

    deadline = time.monotonic() + float(timeout_s)
    try:
        while sel.get_map() or proc.poll() is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                kill_process_tree(proc)
                shown = int(timeout_s) if float(timeout_s).is_integer() else timeout_s
                return CommandResult(
                    output=f"Command timed out after {shown} seconds",
                    error="Timeout",
                    exit_code=124,
                    timed_out=True,
                )
            if sel.get_map():
                _drain_ready(sel, buffers, min(0.2, remaining))
            else:
                time.sleep(min(0.05, remaining))
    finally:
        sel.close()
        for stream in (proc.stdout, proc.stderr):
            with contextlib.suppress(OSError):
                stream.close()

    rc = int(proc.returncode or 0)
    stdout = buffers["stdout"].text(max_output_chars)
    stderr = buffers["stderr"].text(max_output_chars)
    return CommandResult(
        output=stdout or f"Command executed with exit code: {rc}",
        error=stderr or None,
        exit_code=rc,
    )
