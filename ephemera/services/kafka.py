"""Kafka instances (single-node KRaft, confluent-local image).

The broker must advertise the host's mapped port, which is only known
after the container starts. The container therefore waits for a starter
script that a post-start hook writes once the port is published.
"""

from __future__ import annotations

from dataclasses import dataclass

from ephemera.config import Settings
from ephemera.coordinates import join_host_port
from ephemera.provisioner import SandboxInstance
from ephemera.readiness import LogPattern, select_readiness
from ephemera.runtime.provider import SandboxRuntime
from ephemera.services.base import ServiceHandle, build_spec, launch
from ephemera.spec import Customization, LaunchSpec, ServiceDefaults


DEFAULT_IMAGE = "confluentinc/confluent-local:7.6.0"
PUBLIC_PORT = 9093
BROKER_PORT = 9092
CONTROLLER_PORT = 9094

STARTER_SCRIPT = "/usr/sbin/ephemera_start.sh"

_STARTER_TEMPLATE = """#!/bin/bash
source /etc/confluent/docker/bash-config
export KAFKA_ADVERTISED_LISTENERS={advertised},BROKER://$(hostname):{broker_port}
echo Starting Kafka KRaft mode
sed -i '/KAFKA_ZOOKEEPER_CONNECT/d' /etc/confluent/docker/configure
echo 'kafka-storage format --ignore-formatted -t "$(kafka-storage random-uuid)" -c /etc/kafka/kafka.properties' >> /etc/confluent/docker/configure
echo '' > /etc/confluent/docker/ensure
/etc/confluent/docker/configure
/etc/confluent/docker/launch
"""

_LISTENERS = (
    f"PLAINTEXT://0.0.0.0:{PUBLIC_PORT},"
    f"BROKER://0.0.0.0:{BROKER_PORT},"
    f"CONTROLLER://0.0.0.0:{CONTROLLER_PORT}"
)

KAFKA_ENV = {
    "KAFKA_LISTENERS": _LISTENERS,
    "KAFKA_REST_BOOTSTRAP_SERVERS": _LISTENERS,
    "KAFKA_LISTENER_SECURITY_PROTOCOL_MAP": "BROKER:PLAINTEXT,PLAINTEXT:PLAINTEXT,CONTROLLER:PLAINTEXT",
    "KAFKA_INTER_BROKER_LISTENER_NAME": "BROKER",
    "KAFKA_BROKER_ID": "1",
    "KAFKA_NODE_ID": "1",
    "KAFKA_PROCESS_ROLES": "broker,controller",
    "KAFKA_CONTROLLER_QUORUM_VOTERS": f"1@localhost:{CONTROLLER_PORT}",
    "KAFKA_CONTROLLER_LISTENER_NAMES": "CONTROLLER",
    "KAFKA_OFFSETS_TOPIC_REPLICATION_FACTOR": "1",
    "KAFKA_OFFSETS_TOPIC_NUM_PARTITIONS": "1",
    "KAFKA_TRANSACTION_STATE_LOG_MIN_ISR": "1",
    "KAFKA_TRANSACTION_STATE_LOG_REPLICATION_FACTOR": "1",
    "KAFKA_LOG_FLUSH_INTERVAL_MESSAGES": "9223372036854775807",
    "KAFKA_GROUP_INITIAL_REBALANCE_DELAY_MS": "0",
}


@dataclass
class KafkaHandle(ServiceHandle):
    """Running Kafka broker.

    Attributes:
        brokers: Comma-separated bootstrap servers.
        brokers_host: Host of the first broker.
        brokers_port: Mapped port of the first broker.
    """

    brokers: str = ""
    brokers_host: str = ""
    brokers_port: int = 0


def starter_script(advertised_host: str, advertised_port: int) -> str:
    """Render the starter script advertising host:port on the PLAINTEXT listener."""
    return _STARTER_TEMPLATE.format(
        advertised=f"PLAINTEXT://{join_host_port(advertised_host, advertised_port)}",
        broker_port=BROKER_PORT,
    )


async def write_starter_script(instance: SandboxInstance) -> None:
    host = await instance.host()
    port = await instance.mapped_port(PUBLIC_PORT)
    await instance.copy_file(starter_script(host, port).encode(), STARTER_SCRIPT, mode=0o755)


DEFAULTS = ServiceDefaults(
    image=DEFAULT_IMAGE,
    base=LaunchSpec(
        env=dict(KAFKA_ENV),
        exposed_ports=(PUBLIC_PORT,),
        entrypoint=("sh",),
        command=(
            "-c",
            f"while [ ! -f {STARTER_SCRIPT} ]; do sleep 0.1; done; bash {STARTER_SCRIPT}",
        ),
        post_start=(write_starter_script,),
    ),
    readiness=LogPattern("Kafka Server started"),
)


async def run(
    *customizations: Customization,
    runtime: SandboxRuntime | None = None,
    settings: Settings | None = None,
) -> KafkaHandle:
    """Start a single-node Kafka broker and wait for its startup log line."""
    settings = settings or Settings()
    spec = build_spec(DEFAULTS, customizations, settings)
    spec = select_readiness(spec, preferred=DEFAULTS.readiness)
    instance, coordinates = await launch(spec, runtime, settings)

    brokers = [coordinates.address(PUBLIC_PORT)]
    return KafkaHandle(
        instance=instance,
        host_ip=coordinates.host,
        brokers=",".join(brokers),
        brokers_host=coordinates.host,
        brokers_port=coordinates.port(PUBLIC_PORT),
    )
