"""SandboxRuntime protocol: the container runtime consumed by the provisioner."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable


if TYPE_CHECKING:
    from ephemera.spec import LaunchSpec


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a command run inside a container.

    Attributes:
        exit_code: Process exit status.
        output: Combined stdout and stderr, decoded as UTF-8.
    """

    exit_code: int
    output: str


@runtime_checkable
class SandboxRuntime(Protocol):
    """Creates, starts, describes and removes containers.

    Transport-agnostic interface; DockerRuntime drives the docker CLI, and
    tests use an in-memory implementation. Failures raise
    RuntimeAcquisitionError.
    """

    async def create(self, spec: LaunchSpec) -> str:
        """Create (but do not start) a container for a spec.

        Attaches networks and copies file mounts. Cleans up after itself if
        any of those steps fail.

        Returns:
            Reference (container id) of the created container.
        """
        ...

    async def start(self, ref: str) -> None:
        """Start a created container."""
        ...

    async def terminate(self, ref: str) -> None:
        """Stop and remove a container and its anonymous volumes."""
        ...

    async def host(self, ref: str) -> str:
        """Externally reachable host for the container's published ports."""
        ...

    async def mapped_port(self, ref: str, port: int) -> int:
        """Host port published for an internal TCP port."""
        ...

    async def logs(self, ref: str) -> bytes:
        """Combined stdout and stderr of the container so far."""
        ...

    async def exec(self, ref: str, command: Sequence[str]) -> ExecResult:
        """Run a command inside the running container."""
        ...

    async def is_running(self, ref: str) -> bool:
        """Check if the container is running. Never raises."""
        ...

    async def copy_file(self, ref: str, content: bytes, path: str, mode: int = 0o644) -> None:
        """Write content to an absolute path inside the container."""
        ...
