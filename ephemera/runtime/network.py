"""Docker networks for instances that must share a link.

Tunnel-based proxies often run behind links with an MTU below 1500, so the
bridge MTU is configurable. Networks carry the same labels as containers.
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import AsyncIterator

from loguru import logger

from ephemera.exceptions import RuntimeAcquisitionError
from ephemera.runtime.docker import DockerRuntime


MTU_OPTION = "com.docker.network.driver.mtu"


def network_name(prefix: str, mtu: int | None = None) -> str:
    """Generate a unique network name, e.g. ``ephemera-mtu1400-1700000000``."""
    suffix = f"{time.time_ns() // 1000}"
    if mtu is not None:
        return f"{prefix}-mtu{mtu}-{suffix}"
    return f"{prefix}-{suffix}"


@contextlib.asynccontextmanager
async def bridge_network(
    runtime: DockerRuntime | None = None,
    mtu: int | None = None,
    prefix: str = "ephemera",
) -> AsyncIterator[str]:
    """Create a bridge network for the duration of the block.

    Usage:
        async with bridge_network(mtu=1400) as net:
            proxy = await singbox.run(with_config_file(path), with_networks(net))

    Args:
        runtime: Docker runtime to use; a default one is created if omitted.
        mtu: Bridge MTU; docker's default when None.
        prefix: Network name prefix.

    Yields:
        The network name, usable with with_networks().
    """
    if mtu is not None and not 68 <= mtu <= 65535:
        raise ValueError(f"Invalid MTU {mtu}")

    runtime = runtime or DockerRuntime()
    name = network_name(prefix, mtu)
    options = {MTU_OPTION: str(mtu)} if mtu is not None else {}
    await runtime.create_network(name, options=options)
    logger.info("Network created", network=name, mtu=mtu)
    try:
        yield name
    finally:
        try:
            await runtime.remove_network(name)
        except RuntimeAcquisitionError as e:
            logger.warning("Failed to remove network", network=name, error=str(e))
        else:
            logger.info("Network removed", network=name)
