# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Compiles declarative service definitions into engine container specs.

Compilation is a pure function of the ServiceDefinition: no I/O, no hidden
state, and the same input always yields an equal ContainerSpec. It runs for
every service when the configuration is loaded so malformed declarations are
rejected before the daemon serves a single request.
"""
from typing import Dict, List, Optional

from ..errors import ServiceCompileError
from ..MODELS.container_spec import (
    ContainerSpec,
    DeviceMapping,
    EndpointConfig,
    HealthConfig,
    HostConfig,
    HostMount,
    LogConfig,
    NetworkingConfig,
    PortBinding,
    ProcessConfig,
    RestartPolicySpec,
    UlimitSpec,
)
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import ServiceDefinition
from ..UTILS.units import to_nanoseconds

# Compose swarm-style conditions expressed as engine restart policy names
RESTART_CONDITIONS = {
    "none": "no",
    "any": "always",
    "on-failure": "on-failure",
}

MAX_RETRY_COUNT = 2 ** 31 - 1


def compile_service(service: ServiceDefinition) -> ContainerSpec:
    """
    Translates a service definition into the container spec the engine is asked to create.

    :param service: The declared service.
    :return: The fully resolved container spec.
    :raises ServiceCompileError: If an item of the declaration is malformed.
    """
    limits = service.deploy.resources.limits
    reservations = service.deploy.resources.reservations
    memory = limits.memory if limits is not None and limits.memory is not None else 0
    memory_reservation = (
        reservations.memory if reservations is not None and reservations.memory is not None else 0
    )

    port_specs, port_bindings = _compile_ports(service)

    config = ProcessConfig(
        image=service.image,
        cmd=list(service.command),
        entrypoint=list(service.entrypoint),
        env=_compile_environment(service.environment),
        working_dir=service.working_dir or "",
        hostname=service.hostname or "",
        domainname=service.domainname or "",
        user=service.user or "",
        stop_signal=service.stop_signal or "",
        stop_timeout=int(service.stop_grace_period) if service.stop_grace_period is not None else None,
        mac_address=service.mac_address or "",
        labels=dict(service.labels),
        exposed_ports=_compile_expose(service.expose),
        port_specs=port_specs,
        healthcheck=_compile_healthcheck(service),
        memory=memory,
        memory_reservation=memory_reservation,
        attach_stdin=False,
        attach_stdout=True,
        attach_stderr=True,
        tty=service.tty,
        open_stdin=service.stdin_open,
        network_disabled=service.network_mode == "none",
    )

    host_config = HostConfig(
        port_bindings=port_bindings,
        publish_all_ports=True,
        mounts=_compile_mounts(service),
        tmpfs={path: "" for path in service.tmpfs},
        devices=_compile_devices(service),
        ulimits=[
            UlimitSpec(name=name, soft=limit.soft, hard=limit.hard)
            for name, limit in service.ulimits.items()
        ],
        log_config=(
            LogConfig(type=service.logging.driver or "", config=dict(service.logging.options))
            if service.logging is not None else None
        ),
        cap_add=list(service.cap_add),
        cap_drop=list(service.cap_drop),
        links=list(service.links),
        dns=list(service.dns),
        dns_search=list(service.dns_search),
        extra_hosts=list(service.extra_hosts),
        network_mode=service.network_mode or "",
        ipc_mode=service.ipc or "",
        pid_mode=service.pid or "",
        security_opt=list(service.security_opt),
        cgroup_parent=service.cgroup_parent or "",
        privileged=service.privileged,
        readonly_rootfs=service.read_only,
        restart_policy=_compile_restart_policy(service),
        memory=memory,
        memory_reservation=memory_reservation,
    )

    return ContainerSpec(
        name=service.name,
        config=config,
        host_config=host_config,
        networking_config=_compile_networks(service),
    )


def compile_all(config: OrchestrationConfig) -> Dict[str, ContainerSpec]:
    """
    Compiles every service of a configuration, failing on the first bad one.

    :param config: The loaded configuration.
    :return: Container specs keyed by service name, in declaration order.
    :raises ServiceCompileError: If any service cannot be compiled.
    """
    return {service.name: compile_service(service) for service in config.services}


def _compile_environment(environment: Dict[str, Optional[str]]) -> List[str]:
    # KEY= for a key declared without a value; the engine still sees the key
    return [f"{key}={value if value is not None else ''}" for key, value in environment.items()]


def _compile_ports(service: ServiceDefinition):
    port_specs: List[str] = []
    port_bindings: Dict[str, List[PortBinding]] = {}
    for port in service.ports:
        outside = str(port.published) if port.published is not None else ""
        inside = f"{port.target}/{port.protocol}"
        port_specs.append(f"{outside}:{inside}" if outside else inside)
        port_bindings.setdefault(inside, []).append(PortBinding(host_port=outside))
    return port_specs, port_bindings


def _compile_expose(expose: List[str]) -> List[str]:
    exposed = []
    for spec in expose:
        if "/" not in spec:
            spec += "/tcp"
        if spec not in exposed:
            exposed.append(spec)
    return exposed


def _compile_mounts(service: ServiceDefinition) -> List[HostMount]:
    mounts = []
    for vol in service.volumes:
        mounts.append(HostMount(
            source=vol.source,
            target=vol.target,
            read_only=vol.read_only,
            type=vol.type,
            bind_propagation=vol.bind.propagation if vol.bind is not None else None,
            tmpfs_size=vol.tmpfs.size if vol.tmpfs is not None else None,
            volume_no_copy=vol.volume.nocopy if vol.volume is not None else None,
        ))
    return mounts


def _compile_devices(service: ServiceDefinition) -> List[DeviceMapping]:
    devices = []
    for device in service.devices:
        paths = device.split(":")
        if len(paths) != 2:
            raise ServiceCompileError(service.name, f"invalid device path: {device!r}")
        devices.append(DeviceMapping(path_on_host=paths[0], path_in_container=paths[1]))
    return devices


def _compile_restart_policy(service: ServiceDefinition) -> RestartPolicySpec:
    """
    The deploy-level policy wins outright; the legacy ``restart`` string is
    only consulted when no deploy policy is declared.
    """
    policy = service.deploy.restart_policy
    if policy is not None:
        name = RESTART_CONDITIONS.get(policy.condition, policy.condition)
        retries = 0
        if policy.max_attempts is not None:
            retries = max(0, min(policy.max_attempts, MAX_RETRY_COUNT))
        return RestartPolicySpec(name=name, maximum_retry_count=retries)

    return RestartPolicySpec(name=service.restart or "")


def _compile_healthcheck(service: ServiceDefinition) -> Optional[HealthConfig]:
    hc = service.healthcheck
    if hc is None or hc.disable:
        return None
    return HealthConfig(
        test=list(hc.test),
        interval=to_nanoseconds(hc.interval) if hc.interval is not None else None,
        timeout=to_nanoseconds(hc.timeout) if hc.timeout is not None else None,
        retries=hc.retries,
        start_period=to_nanoseconds(hc.start_period) if hc.start_period is not None else None,
    )


def _compile_networks(service: ServiceDefinition) -> Optional[NetworkingConfig]:
    if not service.networks:
        return None
    endpoints = {}
    for name, network in service.networks.items():
        if network is None:
            endpoints[name] = EndpointConfig()
        else:
            endpoints[name] = EndpointConfig(
                aliases=list(network.aliases),
                ipv4_address=network.ipv4_address or "",
                ipv6_address=network.ipv6_address or "",
            )
    return NetworkingConfig(endpoints=endpoints)
