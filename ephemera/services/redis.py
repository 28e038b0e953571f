"""Redis instances."""

from __future__ import annotations

from dataclasses import dataclass

from ephemera.config import Settings
from ephemera.readiness import ListeningPort, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults


DEFAULT_IMAGE = "redis:7.2.2-alpine"
PORT = 6379


@dataclass
class RedisHandle(ServiceHandle):
    """Running Redis instance.

    Attributes:
        address: ``host:port`` for clients.
        port: Mapped host port for 6379.
    """

    address: str = ""
    port: int = 0


DEFAULTS = ServiceDefaults(
    image=DEFAULT_IMAGE,
    base=LaunchSpec(exposed_ports=(PORT,)),
    readiness=ListeningPort(PORT, timeout=30.0),
)


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> RedisHandle:
    """Start Redis and wait for its port."""
    settings = settings or Settings()
    spec = build_spec(DEFAULTS, customizations, settings)
    spec = select_readiness(spec, preferred=DEFAULTS.readiness)
    instance, coordinates = await launch(spec, runtime, settings)

    return RedisHandle(
        instance=instance,
        host_ip=coordinates.host,
        address=coordinates.address(PORT),
        port=coordinates.port(PORT),
    )
