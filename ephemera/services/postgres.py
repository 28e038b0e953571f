"""PostgreSQL instances."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import asyncpg
from loguru import logger

from ephemera.config import Settings
from ephemera.coordinates import join_host_port
from ephemera.readiness import SqlProbe, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults, with_env


DEFAULT_IMAGE = "postgres:15.3-alpine3.18"
PORT = 5432
START_TIMEOUT = 60.0

DEFAULT_USER = "app"
DEFAULT_PASSWORD = "app"
DEFAULT_DATABASE = "app"

USER_ENV = "POSTGRES_USER"
PASSWORD_ENV = "POSTGRES_PASSWORD"  # noqa: S105 - variable name, not a credential
DATABASE_ENV = "POSTGRES_DB"


def dsn(user: str, password: str, host_port: str, database: str) -> str:
    """Build a postgresql:// URI with sslmode disabled."""
    return (
        f"postgresql://{quote(user, safe='')}:{quote(password, safe='')}"
        f"@{host_port}/{quote(database, safe='')}?sslmode=disable"
    )


@dataclass
class PostgresHandle(ServiceHandle):
    """Running PostgreSQL instance.

    Attributes:
        uri: Connection URI with credentials, sslmode disabled.
        db_name: Database created at startup.
        user: Superuser name.
        password: Superuser password.
        port: Mapped host port for 5432.
    """

    uri: str = ""
    db_name: str = DEFAULT_DATABASE
    user: str = DEFAULT_USER
    password: str = DEFAULT_PASSWORD
    port: int = 0

    _conn: Any = field(default=None, init=False, repr=False)
    _conn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def sql(self) -> asyncpg.Connection:
        """Return the cached connection, creating it on first call.

        A single connection is shared by every caller for the handle's
        lifetime; concurrent first calls create it exactly once.
        """
        async with self._conn_lock:
            if self._conn is None:
                self._conn = await asyncpg.connect(self.uri)
                logger.debug("Opened cached SQL connection", container=self.instance.name)
            return self._conn

    async def terminate(self) -> None:
        """Close the cached connection, then remove the container."""
        async with self._conn_lock:
            conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await conn.close()
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                logger.debug("Closing cached SQL connection failed", error=str(e))
        await self.instance.terminate()


def with_username(user: str) -> Customization:
    return with_env({USER_ENV: user})


def with_password(password: str) -> Customization:
    return with_env({PASSWORD_ENV: password})


def with_database(database: str) -> Customization:
    return with_env({DATABASE_ENV: database})


DEFAULTS = ServiceDefaults(
    image=DEFAULT_IMAGE,
    base=LaunchSpec(exposed_ports=(PORT,), command=("postgres", "-c", "fsync=off")),
    fallback_env={
        USER_ENV: DEFAULT_USER,
        PASSWORD_ENV: DEFAULT_PASSWORD,
        DATABASE_ENV: DEFAULT_DATABASE,
    },
)


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> PostgresHandle:
    """Start PostgreSQL and wait until it answers queries.

    Credentials set by the caller (POSTGRES_USER, POSTGRES_PASSWORD,
    POSTGRES_DB) win over the defaults and are reported on the handle.
    """
    settings = settings or Settings()
    spec = build_spec(DEFAULTS, customizations, settings)

    user = spec.env[USER_ENV]
    password = spec.env[PASSWORD_ENV]
    database = spec.env[DATABASE_ENV]

    def probe_dsn(host: str, port: int) -> str:
        return dsn(user, password, join_host_port(host, port), database)

    spec = select_readiness(
        spec, preferred=SqlProbe(PORT, probe_dsn, timeout=START_TIMEOUT),
    )
    instance, coordinates = await launch(spec, runtime, settings)

    return PostgresHandle(
        instance=instance,
        host_ip=coordinates.host,
        uri=dsn(user, password, coordinates.address(PORT), database),
        db_name=database,
        user=user,
        password=password,
        port=coordinates.port(PORT),
    )
