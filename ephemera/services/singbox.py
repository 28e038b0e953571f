"""sing-box proxy instances.

Unlike the other services, sing-box has no fixed ports. They are read from
the inbounds of the caller's config before anything is launched: SOCKS and
HTTP inbounds are exposed, and a TUN inbound makes the container privileged
and switches readiness to polling for the tunnel interface.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from ephemera.capabilities import apply_capabilities, detect_capabilities, load_proxy_config
from ephemera.config import Settings
from ephemera.coordinates import join_host_port
from ephemera.exceptions import ConfigurationError
from ephemera.readiness import ListeningPort, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults, with_file


CONFIG_PATH = "/etc/sing-box/config.json"


@dataclass
class SingBoxHandle(ServiceHandle):
    """Running sing-box instance.

    Fields for a capability the config does not declare are left empty.

    Attributes:
        socks5_url: ``socks5://host:port`` of the SOCKS inbound.
        http_url: ``http://host:port`` of the HTTP inbound.
        socks5_port: Mapped port of the SOCKS inbound.
        http_port: Mapped port of the HTTP inbound.
        tunnel: Whether a TUN interface is up inside the container.
    """

    socks5_url: str = ""
    http_url: str = ""
    socks5_port: int | None = None
    http_port: int | None = None
    tunnel: bool = False


def with_config_file(path: str | Path) -> Customization:
    """Mount the sing-box config (JSON or YAML) from the host."""
    return with_file(path, CONFIG_PATH)


def defaults(settings: Settings) -> ServiceDefaults:
    """Defaults for sing-box; the image is configurable via SINGBOX_IMAGE."""
    return ServiceDefaults(
        image=settings.singbox_image,
        base=LaunchSpec(
            command=("run", "-c", CONFIG_PATH),
            env={"ENABLE_DEPRECATED_SPECIAL_OUTBOUNDS": "true"},
        ),
    )


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> SingBoxHandle:
    """Start sing-box with the caller's config.

    Raises:
        ConfigurationError: If no config file was supplied, it cannot be
            parsed, or it declares no usable inbound.
    """
    settings = settings or Settings()
    spec = build_spec(defaults(settings), customizations, settings)

    mount = spec.file_for(CONFIG_PATH)
    if mount is None:
        raise ConfigurationError("sing-box requires a config file; use with_config_file()")

    capabilities = detect_capabilities(load_proxy_config(mount.host_path))
    spec = apply_capabilities(spec, capabilities)

    preferred = ListeningPort(capabilities.ports[0]) if capabilities.ports else None
    spec = select_readiness(spec, capabilities, preferred=preferred)
    logger.info(
        "Launching sing-box",
        image=spec.image,
        ports=spec.exposed_ports,
        tunnel=capabilities.tunnel,
    )
    instance, coordinates = await launch(spec, runtime, settings)

    handle = SingBoxHandle(instance=instance, host_ip=coordinates.host, tunnel=capabilities.tunnel)
    if capabilities.socks_port is not None:
        handle.socks5_port = coordinates.port(capabilities.socks_port)
        handle.socks5_url = f"socks5://{join_host_port(coordinates.host, handle.socks5_port)}"
    if capabilities.http_port is not None:
        handle.http_port = coordinates.port(capabilities.http_port)
        handle.http_url = f"http://{join_host_port(coordinates.host, handle.http_port)}"
    return handle
