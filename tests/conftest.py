"""Shared fixtures and helpers for all tests.

The FakeRuntime implements SandboxRuntime in memory so that the provisioner
and the service launchers can be exercised without docker.
"""
import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

import pytest

from ephemera.config import Settings
from ephemera.exceptions import RuntimeAcquisitionError
from ephemera.readiness import LogPattern
from ephemera.runtime.provider import ExecResult
from ephemera.spec import Customization, LaunchSpec, with_readiness


READY_LINE = "ready to accept connections"


class FakeRuntime:
    """In-memory SandboxRuntime.

    Attributes:
        calls: (method, ref) pairs in call order.
        specs: Every spec passed to create().
        copied: (ref, path, content, mode) for every copy_file() call.
        failures: Method name -> exception raised when that method is called.
        ports: Internal -> mapped port overrides; others map to port + 10000.
        unmapped: Internal ports whose lookup fails.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        logs: bytes = f"{READY_LINE}\n".encode(),
        exec_result: ExecResult | None = None,
        running: bool = True,
    ) -> None:
        self.host_name = host
        self.log_output = logs
        self.exec_result = exec_result or ExecResult(exit_code=0, output="")
        self.running = running
        self.calls: list[tuple[str, str]] = []
        self.specs: list[LaunchSpec] = []
        self.copied: list[tuple[str, str, bytes, int]] = []
        self.exec_commands: list[list[str]] = []
        self.failures: dict[str, BaseException] = {}
        self.ports: dict[int, int] = {}
        self.unmapped: set[int] = set()
        self._next_ref = 0

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    @property
    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    async def create(self, spec: LaunchSpec) -> str:
        self.specs.append(spec)
        self._next_ref += 1
        ref = f"{self._next_ref:064x}"
        self.calls.append(("create", ref))
        self._maybe_fail("create")
        return ref

    async def start(self, ref: str) -> None:
        self.calls.append(("start", ref))
        self._maybe_fail("start")

    async def terminate(self, ref: str) -> None:
        self.calls.append(("terminate", ref))
        self._maybe_fail("terminate")

    async def host(self, ref: str) -> str:
        self._maybe_fail("host")
        return self.host_name

    async def mapped_port(self, ref: str, port: int) -> int:
        self._maybe_fail("mapped_port")
        if port in self.unmapped:
            raise RuntimeAcquisitionError(f"Port {port}/tcp is not published", phase="port")
        return self.ports.get(port, port + 10000)

    async def logs(self, ref: str) -> bytes:
        self._maybe_fail("logs")
        return self.log_output

    async def exec(self, ref: str, command: Sequence[str]) -> ExecResult:
        self.exec_commands.append(list(command))
        self._maybe_fail("exec")
        return self.exec_result

    async def is_running(self, ref: str) -> bool:
        return self.running

    async def copy_file(self, ref: str, content: bytes, path: str, mode: int = 0o644) -> None:
        self._maybe_fail("copy_file")
        self.copied.append((ref, path, content, mode))


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    """Fresh in-memory runtime."""
    return FakeRuntime()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(_env_file=None, docker_proxy=None, host_override=None)


@pytest.fixture
def quick_ready() -> Customization:
    """Readiness override satisfied by FakeRuntime's default logs."""
    return with_readiness(LogPattern(READY_LINE, timeout=1.0, poll_interval=0.01))


@pytest.fixture
async def tcp_server() -> AsyncIterator[Callable[..., Any]]:
    """Factory for local TCP servers; returns the bound port.

    Each server answers every connection with ``response`` and closes it.
    """
    servers: list[asyncio.Server] = []

    async def _start(response: bytes = b"") -> int:
        async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            if response:
                await reader.readuntil(b"\r\n\r\n")
                writer.write(response)
                await writer.drain()
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        servers.append(server)
        return server.sockets[0].getsockname()[1]

    yield _start

    for server in servers:
        server.close()
        await server.wait_closed()
