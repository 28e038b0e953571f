"""Shared launch path and handle base for service launchers."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ephemera.config import Settings
from ephemera.coordinates import Coordinates
from ephemera.provisioner import Provisioner, SandboxInstance
from ephemera.runtime.docker import DockerRuntime
from ephemera.runtime.provider import SandboxRuntime
from ephemera.spec import Customization, LaunchSpec, LaunchSpecBuilder, ServiceDefaults


def build_spec(
    defaults: ServiceDefaults,
    customizations: Iterable[Customization],
    settings: Settings,
) -> LaunchSpec:
    """Build a spec from a service's defaults and the caller's customizations."""
    return LaunchSpecBuilder(defaults, mirror=settings.docker_proxy).build(customizations)


async def launch(
    spec: LaunchSpec,
    runtime: SandboxRuntime | None,
    settings: Settings,
) -> tuple[SandboxInstance, Coordinates]:
    """Provision a finished spec on the given runtime (docker by default)."""
    return await Provisioner(runtime or DockerRuntime(settings)).launch(spec)


@dataclass
class ServiceHandle:
    """Base for typed handles; embeds the generic instance by reference.

    Satisfies InstanceHandle, so callers can treat every typed handle the
    same way.

    Attributes:
        instance: The running container. Callers must terminate() it.
        host_ip: Externally reachable host, as resolved at launch.
    """

    instance: SandboxInstance
    host_ip: str

    async def host(self) -> str:
        return self.host_ip

    async def mapped_port(self, port: int) -> int:
        return await self.instance.mapped_port(port)

    async def terminate(self) -> None:
        await self.instance.terminate()
