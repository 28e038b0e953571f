"""Capability detection for proxy daemon configurations.

Proxy daemons such as sing-box do not listen on fixed ports; the ports come
from the ``inbounds`` section of the caller's config. Detection scans the
inbounds once and classifies them into SOCKS, HTTP and TUN capabilities,
which then decide the exposed ports, the readiness strategy and whether the
container needs elevated privileges.
"""

from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ephemera.exceptions import ConfigurationError, NoUsableCapabilityError
from ephemera.spec import LaunchSpec


class CapabilityKind(StrEnum):
    """Inbound types that contribute a capability.

    Attributes:
        SOCKS: SOCKS5 proxy inbound.
        HTTP: HTTP proxy inbound.
        MIXED: Inbound serving both SOCKS5 and HTTP on one port.
        TUN: Transparent tunnel interface; needs a privileged container.
    """
    SOCKS = "socks"
    HTTP = "http"
    MIXED = "mixed"
    TUN = "tun"


class InboundConfig(BaseModel):
    """One entry of the config's ``inbounds`` list; unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    type: str | None = None
    listen: str | None = None
    listen_port: int | None = Field(default=None, ge=0, le=65535)


class ProxyConfig(BaseModel):
    """The part of a proxy daemon config that detection reads."""

    model_config = ConfigDict(extra="allow")

    inbounds: list[InboundConfig] = Field(default_factory=list)

    @field_validator("inbounds", mode="before")
    @classmethod
    def _null_inbounds(cls, value: Any) -> Any:
        return [] if value is None else value


class InboundEntry(BaseModel):
    """A recognized inbound, tagged with its capability kind.

    Attributes:
        kind: Capability kind.
        port: Listening port for port-bearing kinds, None otherwise.
    """

    model_config = ConfigDict(frozen=True)

    kind: CapabilityKind
    port: int | None = None


class Capabilities(BaseModel):
    """Derived, read-only classification of a proxy config.

    Attributes:
        entries: Recognized inbounds in declaration order.
        socks_port: Port of the first SOCKS-capable inbound, if any.
        http_port: Port of the first HTTP-capable inbound, if any.
        tunnel: Whether a TUN inbound is declared.
    """

    model_config = ConfigDict(frozen=True)

    entries: tuple[InboundEntry, ...] = ()
    socks_port: int | None = None
    http_port: int | None = None
    tunnel: bool = False

    @property
    def ports(self) -> tuple[int, ...]:
        """SOCKS port then HTTP port, without duplicates."""
        found = [p for p in (self.socks_port, self.http_port) if p is not None]
        return tuple(dict.fromkeys(found))

    @property
    def requires_privileged(self) -> bool:
        return self.tunnel


def load_proxy_config(path: str | Path) -> ProxyConfig:
    """Read and validate a proxy config document.

    JSON documents are read through the YAML parser, so both formats work.

    Args:
        path: Host path of the config file.

    Returns:
        The validated config.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigurationError(f"Proxy config file not found at {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to parse proxy config {config_path}: {e}") from e

    return parse_proxy_config(data, source=str(config_path))


def parse_proxy_config(data: Any, source: str = "<document>") -> ProxyConfig:
    """Validate an already-decoded proxy config document.

    Raises:
        ConfigurationError: If the document is not a mapping or fails validation.
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"Proxy config {source} must be a mapping, got {type(data).__name__}"
        )
    try:
        return ProxyConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid proxy config {source}: {e}") from e


def detect_capabilities(config: ProxyConfig | Mapping[str, Any]) -> Capabilities:
    """Classify the inbounds of a proxy config in a single pass.

    The first inbound of a kind wins. A mixed inbound fills whichever of the
    SOCKS and HTTP ports is still unset. Port-bearing inbounds without a
    positive ``listen_port`` contribute no port. Unknown types are ignored.

    Args:
        config: Validated config or raw decoded document.

    Returns:
        The detected capabilities.

    Raises:
        NoUsableCapabilityError: If no port and no tunnel was found.
        ConfigurationError: If a raw document fails validation.
    """
    if not isinstance(config, ProxyConfig):
        config = parse_proxy_config(config)

    entries: list[InboundEntry] = []
    socks_port: int | None = None
    http_port: int | None = None
    tunnel = False

    logger.debug("Scanning proxy inbounds", count=len(config.inbounds))
    for inbound in config.inbounds:
        try:
            kind = CapabilityKind(inbound.type)
        except ValueError:
            logger.debug("Ignoring inbound", type=inbound.type)
            continue

        port = inbound.listen_port or None
        match kind:
            case CapabilityKind.SOCKS:
                if socks_port is None:
                    socks_port = port
            case CapabilityKind.HTTP:
                if http_port is None:
                    http_port = port
            case CapabilityKind.MIXED:
                if socks_port is None:
                    socks_port = port
                if http_port is None:
                    http_port = port
            case CapabilityKind.TUN:
                tunnel = True
                port = None

        entries.append(InboundEntry(kind=kind, port=port))

    if socks_port is None and http_port is None and not tunnel:
        raise NoUsableCapabilityError(
            "No SOCKS5, HTTP, or TUN inbound found in proxy config"
        )

    capabilities = Capabilities(
        entries=tuple(entries),
        socks_port=socks_port,
        http_port=http_port,
        tunnel=tunnel,
    )
    logger.debug(
        "Detected proxy capabilities",
        socks_port=socks_port,
        http_port=http_port,
        tunnel=tunnel,
    )
    return capabilities


def apply_capabilities(spec: LaunchSpec, capabilities: Capabilities) -> LaunchSpec:
    """Expose the detected ports and request privileges for a tunnel.

    Ports are appended after any the caller already exposed; TUN forces a
    privileged container.
    """
    ports = tuple(dict.fromkeys((*spec.exposed_ports, *capabilities.ports)))
    update: dict[str, Any] = {"exposed_ports": ports}
    if capabilities.requires_privileged:
        update["privileged"] = True
        logger.debug("Enabling privileged mode for TUN support")
    return spec.model_copy(update=update)
