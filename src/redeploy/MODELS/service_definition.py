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
Declarative models for compose services: restart policies, health checks,
mounts, port mappings and deploy-level overrides.

Everything here describes what the service file *says*. Fields that were not
declared stay ``None`` so the compiler can tell "absent" from "zero".
"""
from typing import List, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class Declaration(BaseModel):
    """
    Base for all declarative models. Instances are immutable once loaded.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")


class PortMapping(Declaration):
    """
    A published port: ``published:target/protocol``.
    """
    target: int
    published: Optional[int] = None
    protocol: str = "tcp"


class BindOptions(Declaration):
    propagation: Optional[str] = None


class VolumeOptions(Declaration):
    nocopy: bool = False


class TmpfsOptions(Declaration):
    size: Optional[int] = None


class VolumeMount(Declaration):
    """
    Defines a mount of a host path, named volume or tmpfs into the container.
    """
    type: str = "volume"
    source: Optional[str] = None
    target: str
    read_only: bool = False
    bind: Optional[BindOptions] = None
    volume: Optional[VolumeOptions] = None
    tmpfs: Optional[TmpfsOptions] = None


class HealthCheck(Declaration):
    """
    Defines a command to run to check the health of a service.
    Durations are in seconds; unset fields keep the engine defaults.
    """
    test: List[str] = []
    interval: Optional[float] = None
    timeout: Optional[float] = None
    retries: Optional[int] = None
    start_period: Optional[float] = None
    disable: bool = False


class RestartPolicy(Declaration):
    """
    Deploy-level restart policy. Takes precedence over the legacy ``restart``.
    """
    condition: str = "any"
    max_attempts: Optional[int] = None


class ResourceSpec(Declaration):
    memory: Optional[int] = None


class Resources(Declaration):
    limits: Optional[ResourceSpec] = None
    reservations: Optional[ResourceSpec] = None


class DeployConfig(Declaration):
    restart_policy: Optional[RestartPolicy] = None
    resources: Resources = Field(default_factory=Resources)


class ServiceNetwork(Declaration):
    aliases: List[str] = []
    ipv4_address: Optional[str] = None
    ipv6_address: Optional[str] = None


class Ulimit(Declaration):
    soft: int
    hard: int


class LoggingConfig(Declaration):
    driver: Optional[str] = None
    options: Dict[str, str] = {}


class ServiceDefinition(Declaration):
    """
    The full declaration of a single service, as read from the service file.
    """
    name: str
    image: str

    # Execution
    command: List[str] = []
    entrypoint: List[str] = []
    working_dir: Optional[str] = None
    user: Optional[str] = None
    stop_signal: Optional[str] = None
    stop_grace_period: Optional[float] = None
    tty: bool = False
    stdin_open: bool = False

    # Environment; a None value is a key declared without a value
    environment: Dict[str, Optional[str]] = {}
    labels: Dict[str, str] = {}

    # Networking
    hostname: Optional[str] = None
    domainname: Optional[str] = None
    mac_address: Optional[str] = None
    ports: List[PortMapping] = []
    expose: List[str] = []
    networks: Dict[str, Optional[ServiceNetwork]] = {}
    network_mode: Optional[str] = None
    dns: List[str] = []
    dns_search: List[str] = []
    extra_hosts: List[str] = []
    links: List[str] = []

    # Storage
    volumes: List[VolumeMount] = []
    tmpfs: List[str] = []
    devices: List[str] = []

    # Security and isolation
    cap_add: List[str] = []
    cap_drop: List[str] = []
    security_opt: List[str] = []
    privileged: bool = False
    read_only: bool = False
    ipc: Optional[str] = None
    pid: Optional[str] = None
    cgroup_parent: Optional[str] = None
    ulimits: Dict[str, Ulimit] = {}

    # Lifecycle
    restart: Optional[str] = None
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    healthcheck: Optional[HealthCheck] = None
    logging: Optional[LoggingConfig] = None
