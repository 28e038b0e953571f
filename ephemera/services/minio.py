"""MinIO object storage instances."""

from __future__ import annotations

from dataclasses import dataclass

from ephemera.config import Settings
from ephemera.readiness import ListeningPort, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults


DEFAULT_IMAGE = "minio/minio"
PORT = 9000
ACCESS_KEY = "minioadmin"
SECRET_KEY = "minioadmin"  # noqa: S105 - well-known MinIO default
REGION = "us-east-1"

ACCESS_KEY_ENV = "MINIO_ACCESS_KEY"
SECRET_KEY_ENV = "MINIO_SECRET_KEY"  # noqa: S105 - variable name, not a credential


@dataclass
class MinioHandle(ServiceHandle):
    """Running MinIO server.

    Attributes:
        endpoint_url: ``host:port`` of the S3 API, without scheme.
        access_key_id: Access key.
        secret_access_key: Secret key.
        region: Region to configure clients with.
        token: Session token (always empty).
    """

    endpoint_url: str = ""
    access_key_id: str = ACCESS_KEY
    secret_access_key: str = SECRET_KEY
    region: str = REGION
    token: str = ""


DEFAULTS = ServiceDefaults(
    image=DEFAULT_IMAGE,
    base=LaunchSpec(
        command=("server", "/data"),
        exposed_ports=(PORT,),
        env={ACCESS_KEY_ENV: ACCESS_KEY, SECRET_KEY_ENV: SECRET_KEY},
    ),
    readiness=ListeningPort(PORT),
)


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> MinioHandle:
    """Start MinIO and wait for the S3 API port."""
    settings = settings or Settings()
    spec = build_spec(DEFAULTS, customizations, settings)
    spec = select_readiness(spec, preferred=DEFAULTS.readiness)
    instance, coordinates = await launch(spec, runtime, settings)

    return MinioHandle(
        instance=instance,
        host_ip=coordinates.host,
        endpoint_url=coordinates.address(PORT),
        access_key_id=spec.env.get(ACCESS_KEY_ENV, ACCESS_KEY),
        secret_access_key=spec.env.get(SECRET_KEY_ENV, SECRET_KEY),
    )
