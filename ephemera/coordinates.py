"""Resolution of externally reachable coordinates for a ready instance."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from loguru import logger

from ephemera.exceptions import EphemeraError, RuntimeAcquisitionError


if TYPE_CHECKING:
    from ephemera.provisioner import InstanceHandle


def join_host_port(host: str, port: int | str) -> str:
    """Join host and port, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass(frozen=True)
class Coordinates:
    """Host plus the mapping from internal port to externally mapped port.

    Attributes:
        host: Externally reachable host of the instance.
        ports: Internal port -> mapped host port, for every exposed port.
    """

    host: str
    ports: Mapping[int, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "ports", MappingProxyType(dict(self.ports)))

    def port(self, internal: int) -> int:
        """Mapped port for an internal port.

        Raises:
            KeyError: If the port was not exposed.
        """
        return self.ports[internal]

    def address(self, internal: int) -> str:
        """``host:port`` for an internal port."""
        return join_host_port(self.host, self.ports[internal])

    def url(self, internal: int, scheme: str = "http") -> str:
        """``scheme://host:port`` for an internal port."""
        return f"{scheme}://{self.address(internal)}"


async def resolve_coordinates(instance: InstanceHandle, ports: Iterable[int]) -> Coordinates:
    """Query the runtime for the host and every mapped port.

    Only called after readiness. Each port is resolved independently, but a
    single failure fails the whole resolution: a handle is either fully
    populated or not produced.

    Args:
        instance: A ready instance.
        ports: Internal ports declared as exposed.

    Returns:
        Fully populated coordinates.

    Raises:
        RuntimeAcquisitionError: If the host or any mapped port cannot be resolved.
    """
    try:
        host = await instance.host()
    except EphemeraError as e:
        raise RuntimeAcquisitionError(f"Failed to get host: {e}", phase="resolve") from e

    mapped: dict[int, int] = {}
    for internal in ports:
        try:
            mapped[internal] = await instance.mapped_port(internal)
        except EphemeraError as e:
            raise RuntimeAcquisitionError(
                f"Failed to get mapped port for {internal}/tcp: {e}",
                phase="resolve",
            ) from e

    logger.debug("Coordinates resolved", host=host, ports=mapped)
    return Coordinates(host=host, ports=mapped)
