"""LocalStack instances, used as an S3 endpoint."""

from __future__ import annotations

from dataclasses import dataclass

from ephemera.config import Settings
from ephemera.readiness import HttpStatus, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults


DEFAULT_IMAGE = "localstack/localstack:1.4.0"
PORT = 4566
REGION = "us-east-1"

# LocalStack accepts any credentials; these are what clients should send.
ACCESS_KEY_ID = "access_key_id"
SECRET_ACCESS_KEY = "secret_access_key"  # noqa: S105
TOKEN = "token"  # noqa: S105


@dataclass
class LocalStackHandle(ServiceHandle):
    """Running LocalStack edge service.

    Attributes:
        endpoint_url: ``host:port`` of the edge port, without scheme.
        access_key_id: Access key to configure clients with.
        secret_access_key: Secret key to configure clients with.
        token: Session token to configure clients with.
        region: Region to configure clients with.
    """

    endpoint_url: str = ""
    access_key_id: str = ACCESS_KEY_ID
    secret_access_key: str = SECRET_ACCESS_KEY
    token: str = TOKEN
    region: str = REGION


DEFAULTS = ServiceDefaults(
    image=DEFAULT_IMAGE,
    base=LaunchSpec(exposed_ports=(PORT,), env={"SERVICES": "s3"}),
    readiness=HttpStatus(PORT, "/_localstack/health", timeout=120.0),
)


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> LocalStackHandle:
    """Start LocalStack and wait for its health endpoint."""
    settings = settings or Settings()
    spec = build_spec(DEFAULTS, customizations, settings)
    spec = select_readiness(spec, preferred=DEFAULTS.readiness)
    instance, coordinates = await launch(spec, runtime, settings)

    return LocalStackHandle(
        instance=instance,
        host_ip=coordinates.host,
        endpoint_url=coordinates.address(PORT),
        region=spec.env.get("DEFAULT_REGION", REGION),
    )
