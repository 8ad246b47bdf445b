from december.environments.manager import EnvironmentManager, export_filename
from december.environments.registry import (
    Environment,
    EnvironmentNotFound,
    EnvironmentRegistry,
)

__all__ = [
    "Environment",
    "EnvironmentManager",
    "EnvironmentNotFound",
    "EnvironmentRegistry",
    "export_filename",
]
