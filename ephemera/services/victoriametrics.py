"""VictoriaMetrics single-node instances."""

from __future__ import annotations

from dataclasses import dataclass

from ephemera.config import Settings
from ephemera.readiness import LogPattern, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults


DEFAULT_IMAGE = "victoriametrics/victoria-metrics:v1.103.0"
PORT = 8428


@dataclass
class VictoriaMetricsHandle(ServiceHandle):
    """Running VictoriaMetrics instance.

    Attributes:
        address: Base URL of the HTTP API.
    """

    address: str = ""


DEFAULTS = ServiceDefaults(
    image=DEFAULT_IMAGE,
    base=LaunchSpec(
        exposed_ports=(PORT,),
        command=(
            "-retentionPeriod=12",
            # Serve freshly ingested samples immediately
            "-search.cacheTimestampOffset=43200h",
            "-search.latencyOffset=1s",
        ),
    ),
    readiness=LogPattern("starting server at"),
)


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> VictoriaMetricsHandle:
    """Start VictoriaMetrics and wait for its startup log line."""
    settings = settings or Settings()
    spec = build_spec(DEFAULTS, customizations, settings)
    spec = select_readiness(spec, preferred=DEFAULTS.readiness)
    instance, coordinates = await launch(spec, runtime, settings)

    return VictoriaMetricsHandle(
        instance=instance,
        host_ip=coordinates.host,
        address=coordinates.url(PORT),
    )
