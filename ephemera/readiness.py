"""Readiness strategies and the policy that selects one per launch.

Readiness is always an externally observable signal polled until a
deadline: a listening port, an HTTP status, a log line, a SQL round-trip
or the output of a command run inside the container. Never a fixed sleep.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import asyncpg
import httpx
from loguru import logger

from ephemera.coordinates import join_host_port
from ephemera.exceptions import (
    ConfigurationError,
    InstanceExitedError,
    ReadinessTimeoutError,
    RuntimeAcquisitionError,
)


if TYPE_CHECKING:
    from ephemera.capabilities import Capabilities
    from ephemera.provisioner import SandboxInstance
    from ephemera.spec import LaunchSpec


DEFAULT_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 0.5

# Exit codes docker exec reports when /bin/sh is missing or not executable.
# The check script itself exits 0 or 1 only.
_SHELL_UNAVAILABLE = (126, 127)

_INTERNAL_PORT_CHECK = (
    "true && ("
    "cat /proc/net/tcp* | awk '{{print $2}}' | grep -i :{hex_port:04x} || "
    "nc -vz -w 1 localhost {port} || "
    "/bin/bash -c '</dev/tcp/localhost/{port}'"
    ") || exit 1"
)


class ReadinessStrategy(ABC):
    """Condition awaited between container start and coordinate resolution.

    Subclasses implement check(); wait() polls it until it succeeds, the
    instance stops running, or the timeout elapses.
    """

    timeout: float
    poll_interval: float

    @abstractmethod
    async def check(self, instance: SandboxInstance) -> bool:
        """Return True once the condition holds. Must not raise for 'not yet'."""
        ...

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable description used in logs and errors."""
        ...

    def ports(self) -> tuple[int, ...]:
        """Internal ports the strategy probes; must all be exposed."""
        return ()

    async def wait(self, instance: SandboxInstance) -> None:
        """Block until the condition holds.

        Raises:
            ReadinessTimeoutError: If the condition is not observed before the timeout.
            InstanceExitedError: If the instance stops running while waiting.
        """
        deadline = time.monotonic() + self.timeout
        logger.debug("Awaiting readiness", container=instance.name, strategy=self.describe())
        while True:
            # A single hung probe must not outlive the strategy deadline.
            try:
                async with asyncio.timeout(max(deadline - time.monotonic(), 0.0)):
                    ready = await self.check(instance)
            except TimeoutError:
                logger.trace("Readiness probe timed out", container=instance.name)
                ready = False
            except RuntimeAcquisitionError as e:
                logger.trace("Readiness probe failed", container=instance.name, error=str(e))
                ready = False
            if ready:
                logger.debug("Instance ready", container=instance.name, strategy=self.describe())
                return
            if not await instance.is_running():
                raise InstanceExitedError(
                    f"Container {instance.name} exited while waiting for {self.describe()}"
                )
            if time.monotonic() >= deadline:
                raise ReadinessTimeoutError(
                    f"Container {instance.name} not ready after {self.timeout}s "
                    f"waiting for {self.describe()}"
                )
            await asyncio.sleep(self.poll_interval)


@dataclass(frozen=True)
class ListeningPort(ReadinessStrategy):
    """Port accepts TCP connections from outside and is bound inside the container."""

    port: int
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    connect_timeout: float = 1.0

    def describe(self) -> str:
        return f"listening port {self.port}/tcp"

    def ports(self) -> tuple[int, ...]:
        return (self.port,)

    async def check(self, instance: SandboxInstance) -> bool:
        host = await instance.host()
        mapped = await instance.mapped_port(self.port)
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, mapped), timeout=self.connect_timeout
            )
        except (OSError, TimeoutError):
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()

        # The docker userland proxy accepts connections before the service
        # binds, so the port must also be listening inside the container.
        script = _INTERNAL_PORT_CHECK.format(hex_port=self.port, port=self.port)
        result = await instance.exec(["/bin/sh", "-c", script])
        if result.exit_code in _SHELL_UNAVAILABLE:
            logger.debug("Internal port check unavailable", container=instance.name)
            return True
        return result.exit_code == 0


def _status_ok(status: int) -> bool:
    return status == 200


@dataclass(frozen=True)
class HttpStatus(ReadinessStrategy):
    """HTTP GET on the mapped port returns an accepted status."""

    port: int
    path: str = "/"
    status_predicate: Callable[[int], bool] = _status_ok
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    request_timeout: float = 5.0

    def describe(self) -> str:
        return f"HTTP {self.path} on {self.port}/tcp"

    def ports(self) -> tuple[int, ...]:
        return (self.port,)

    async def check(self, instance: SandboxInstance) -> bool:
        host = await instance.host()
        mapped = await instance.mapped_port(self.port)
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        url = f"http://{join_host_port(host, mapped)}{path}"
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.request_timeout)) as client:
            try:
                response = await client.get(url)
            except httpx.HTTPError:
                return False
        return self.status_predicate(response.status_code)


@dataclass(frozen=True)
class LogPattern(ReadinessStrategy):
    """Container logs contain a substring at least ``occurrences`` times."""

    pattern: str
    occurrences: int = 1
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def describe(self) -> str:
        return f"log {self.pattern!r}"

    async def check(self, instance: SandboxInstance) -> bool:
        logs = await instance.logs()
        return logs.count(self.pattern.encode()) >= self.occurrences


SqlConnect = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class SqlProbe(ReadinessStrategy):
    """A SQL connection to the mapped port succeeds and answers a query.

    Args:
        dsn_builder: Builds the DSN from the external host and mapped port.
        connect: Async connect function; the returned connection must
            provide ``execute`` and ``close`` coroutines.
    """

    port: int
    dsn_builder: Callable[[str, int], str]
    connect: SqlConnect = asyncpg.connect
    query: str = "SELECT 1"
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def describe(self) -> str:
        return f"SQL on {self.port}/tcp"

    def ports(self) -> tuple[int, ...]:
        return (self.port,)

    async def check(self, instance: SandboxInstance) -> bool:
        host = await instance.host()
        mapped = await instance.mapped_port(self.port)
        dsn = self.dsn_builder(host, mapped)
        try:
            conn = await self.connect(dsn)
        except Exception as e:  # any driver error means "not accepting queries yet"
            logger.trace("SQL probe connect failed", container=instance.name, error=str(e))
            return False
        try:
            await conn.execute(self.query)
        except Exception as e:
            logger.trace("SQL probe query failed", container=instance.name, error=str(e))
            return False
        finally:
            await conn.close()
        return True


def _always(_: str) -> bool:
    return True


@dataclass(frozen=True)
class ExecProbe(ReadinessStrategy):
    """A command run inside the container exits 0 with accepted output."""

    command: Sequence[str]
    output_predicate: Callable[[str], bool] = _always
    poll_interval: float = 1.0
    timeout: float = DEFAULT_TIMEOUT

    def describe(self) -> str:
        return f"exec {' '.join(self.command)!r}"

    async def check(self, instance: SandboxInstance) -> bool:
        result = await instance.exec(list(self.command))
        return result.exit_code == 0 and self.output_predicate(result.output)


def _has_tun_interface(output: str) -> bool:
    return "tun" in output


def tunnel_interface_probe() -> ExecProbe:
    """Poll ``ip addr show`` until a tun interface appears."""
    return ExecProbe(
        command=("ip", "addr", "show"),
        output_predicate=_has_tun_interface,
        poll_interval=1.0,
        timeout=60.0,
    )


def select_readiness(
    spec: LaunchSpec,
    capabilities: Capabilities | None = None,
    preferred: ReadinessStrategy | None = None,
) -> LaunchSpec:
    """Pick the readiness strategy for a finished spec.

    Order: the caller's strategy, the service's preferred strategy, a
    listening-port probe on the first exposed port, a tunnel-interface exec
    probe when a tunnel was detected.

    Args:
        spec: Spec after all customizations and defaults.
        capabilities: Proxy capabilities, when the ports were derived from a config.
        preferred: Service-declared default strategy.

    Returns:
        The spec with exactly one readiness strategy set.

    Raises:
        ConfigurationError: If no strategy can be chosen, or the chosen one
            probes a port that is not exposed.
    """
    strategy = spec.readiness or preferred
    if strategy is None and spec.exposed_ports:
        strategy = ListeningPort(spec.exposed_ports[0])
    if strategy is None and capabilities is not None and capabilities.tunnel:
        strategy = tunnel_interface_probe()
    if strategy is None:
        raise ConfigurationError(
            "Cannot determine readiness strategy: no exposed ports or tunnel interface"
        )

    missing = [p for p in strategy.ports() if p not in spec.exposed_ports]
    if missing:
        raise ConfigurationError(
            f"Readiness strategy {strategy.describe()} probes unexposed port(s) {missing}"
        )
    return spec.model_copy(update={"readiness": strategy})
