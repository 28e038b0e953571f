"""Container runtime backends."""

from ephemera.runtime.docker import DockerRuntime
from ephemera.runtime.provider import ExecResult, SandboxRuntime


__all__ = [
    "DockerRuntime",
    "ExecResult",
    "SandboxRuntime",
]
