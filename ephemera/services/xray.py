"""Xray proxy instances. The caller supplies the config file."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ephemera.config import Settings
from ephemera.exceptions import ConfigurationError
from ephemera.readiness import ListeningPort, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults, with_file


DEFAULT_IMAGE = "teddysun/xray"
PORT = 443
CONFIG_PATH = "/etc/xray/config.json"


@dataclass
class XrayHandle(ServiceHandle):
    """Running Xray instance.

    Attributes:
        endpoint_url: ``host:port`` of the inbound on 443.
    """

    endpoint_url: str = ""


def with_config_file(path: str | Path) -> Customization:
    """Mount the Xray config from the host."""
    return with_file(path, CONFIG_PATH)


DEFAULTS = ServiceDefaults(
    image=DEFAULT_IMAGE,
    base=LaunchSpec(exposed_ports=(PORT,)),
    readiness=ListeningPort(PORT),
)


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> XrayHandle:
    """Start Xray with the caller's config and wait for port 443.

    Raises:
        ConfigurationError: If no config file was supplied via with_config_file().
    """
    settings = settings or Settings()
    spec = build_spec(DEFAULTS, customizations, settings)
    if spec.file_for(CONFIG_PATH) is None:
        raise ConfigurationError("Xray requires a config file; use with_config_file()")

    spec = select_readiness(spec, preferred=DEFAULTS.readiness)
    instance, coordinates = await launch(spec, runtime, settings)

    return XrayHandle(
        instance=instance,
        host_ip=coordinates.host,
        endpoint_url=coordinates.address(PORT),
    )
