from december.sandbox_backends.base import SandboxBackend
from december.sandbox_backends.factory import get_backend
from december.sandbox_backends.process import CommandResult, run_command_limited

__all__ = ["CommandResult", "SandboxBackend", "get_backend", "run_command_limited"]
