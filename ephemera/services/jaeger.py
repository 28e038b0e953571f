"""Jaeger all-in-one tracing collector instances."""

from __future__ import annotations

from dataclasses import dataclass

from ephemera.config import Settings
from ephemera.readiness import ListeningPort, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults


DEFAULT_IMAGE = "jaegertracing/all-in-one:1.51"

UI_PORT = 16686
OTLP_GRPC_PORT = 4317
OTLP_HTTP_PORT = 4318

EXPOSED_PORTS = (
    14250,  # model.proto gRPC
    14268,  # jaeger.thrift HTTP
    14269,  # admin / health
    UI_PORT,
    OTLP_GRPC_PORT,
    OTLP_HTTP_PORT,
    5778,  # sampling config
    9411,  # zipkin
)


@dataclass
class JaegerHandle(ServiceHandle):
    """Running Jaeger instance.

    Attributes:
        address: URL of the UI.
        grpc_collector_address: ``host:port`` of the OTLP gRPC collector.
        http_collector_address: ``host:port`` of the OTLP HTTP collector.
    """

    address: str = ""
    grpc_collector_address: str = ""
    http_collector_address: str = ""


DEFAULTS = ServiceDefaults(
    image=DEFAULT_IMAGE,
    base=LaunchSpec(exposed_ports=EXPOSED_PORTS),
    readiness=ListeningPort(OTLP_GRPC_PORT),
)


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> JaegerHandle:
    """Start Jaeger and wait for the OTLP gRPC collector port."""
    settings = settings or Settings()
    spec = build_spec(DEFAULTS, customizations, settings)
    spec = select_readiness(spec, preferred=DEFAULTS.readiness)
    instance, coordinates = await launch(spec, runtime, settings)

    return JaegerHandle(
        instance=instance,
        host_ip=coordinates.host,
        address=coordinates.url(UI_PORT),
        grpc_collector_address=coordinates.address(OTLP_GRPC_PORT),
        http_collector_address=coordinates.address(OTLP_HTTP_PORT),
    )
