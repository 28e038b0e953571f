"""Bulk teardown of leaked instances.

Containers and networks left behind by an aborted test session still carry
the ephemera labels, so one label filter finds all of them. Containers go
first because docker refuses to remove a network that is still in use.
Failures are logged and never raised.
"""

from __future__ import annotations

from loguru import logger

from ephemera.config import Settings
from ephemera.exceptions import RuntimeAcquisitionError
from ephemera.runtime.docker import MANAGED_LABEL, SESSION_LABEL, DockerRuntime


async def teardown_all_instances(
    session_id: str | None = None,
    settings: Settings | None = None,
) -> int:
    """Remove every labelled container, then every labelled network.

    Args:
        session_id: Only remove resources from this session when given.
        settings: Runtime settings (docker binary, command timeout).

    Returns:
        Number of containers removed.
    """
    runtime = DockerRuntime(settings)
    label = f"{SESSION_LABEL}={session_id}" if session_id else f"{MANAGED_LABEL}=true"

    try:
        container_ids = await runtime.list_labelled(label)
    except RuntimeAcquisitionError as e:
        logger.warning("Could not list leaked containers", label=label, error=str(e))
        return 0

    removed = 0
    if container_ids:
        logger.info("Tearing down leaked containers", count=len(container_ids), label=label)
    for ref in container_ids:
        try:
            await runtime.terminate(ref)
        except RuntimeAcquisitionError as e:
            logger.warning("Failed to remove leaked container", container=ref[:12], error=str(e))
        else:
            removed += 1

    try:
        network_ids = await runtime.list_labelled(label, networks=True)
    except RuntimeAcquisitionError as e:
        logger.warning("Could not list leaked networks", label=label, error=str(e))
        return removed
    for network in network_ids:
        try:
            await runtime.remove_network(network)
        except RuntimeAcquisitionError as e:
            logger.warning("Failed to remove leaked network", network=network, error=str(e))

    logger.debug("Teardown finished", removed=removed, networks=len(network_ids), label=label)
    return removed
