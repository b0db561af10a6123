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
Parsers for compose-style service files.
"""
import os
import shlex
from typing import Dict, Any, List, Optional

import structlog
import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..errors import ConfigurationError
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import (
    BindOptions,
    DeployConfig,
    HealthCheck,
    LoggingConfig,
    PortMapping,
    ResourceSpec,
    Resources,
    RestartPolicy,
    ServiceDefinition,
    ServiceNetwork,
    TmpfsOptions,
    Ulimit,
    VolumeMount,
    VolumeOptions,
)
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..UTILS.units import parse_byte_size, parse_duration

logger = structlog.get_logger(__name__)

BIND_PROPAGATIONS = {"shared", "slave", "private", "rshared", "rslave", "rprivate"}

SUPPORTED_KEYS = {
    "image", "command", "entrypoint", "working_dir", "user", "stop_signal",
    "stop_grace_period", "tty", "stdin_open", "environment", "labels",
    "hostname", "domainname", "mac_address", "ports", "expose", "networks",
    "network_mode", "dns", "dns_search", "extra_hosts", "links", "volumes",
    "tmpfs", "devices", "cap_add", "cap_drop", "security_opt", "privileged",
    "read_only", "ipc", "pid", "cgroup_parent", "ulimits", "restart",
    "deploy", "healthcheck", "logging",
}


class ComposeParser:
    """
    Parser for compose v3 service files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None, working_dir: Optional[str] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
            Defaults to the process environment.
        :param working_dir: Directory that relative bind mount sources resolve
            against. Defaults to the current directory.
        """
        self.context = context if context is not None else dict(os.environ)
        self.working_dir = working_dir or os.getcwd()

    @classmethod
    def for_file(cls, compose_path: str) -> "ComposeParser":
        """
        Builds a parser for a file on disk.

        The interpolation context is the ``.env`` file next to the service file,
        overridden by the process environment.

        :param compose_path: Path to the service file.
        :return: A parser rooted at the file's directory.
        """
        working_dir = os.path.dirname(os.path.abspath(compose_path))
        context = {
            key: value
            for key, value in dotenv_values(os.path.join(working_dir, ".env")).items()
            if value is not None
        }
        context.update(os.environ)
        return cls(context=context, working_dir=working_dir)

    def parse(self, compose_path: str) -> OrchestrationConfig:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Parsed and validated configuration.
        :raises ConfigurationError: If the file is unreadable or invalid.
        """
        try:
            with open(compose_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ConfigurationError(f"cannot read {compose_path}: {e}") from e
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> OrchestrationConfig:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: Parsed and validated configuration.
        :raises ConfigurationError: If the content is invalid.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML: {e}") from e
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError("top level of the service file must be a mapping")
        # values only, so comments and keys are never interpolated
        data = EnvironmentInterpolator.interpolate_values(data, self.context)

        service_specs = data.get('services') or {}
        if not isinstance(service_specs, dict):
            raise ConfigurationError("services must be a mapping of service names to definitions")

        services = []
        for name, spec in service_specs.items():
            services.append(self._parse_service(str(name), spec or {}))

        config = OrchestrationConfig(
            version=str(data['version']) if data.get('version') is not None else None,
            services=services,
            networks=self._top_level_names(data.get('networks'), 'networks'),
            volumes=self._top_level_names(data.get('volumes'), 'volumes'),
        )
        config.validate_services()
        return config

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceDefinition:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceDefinition instance.
        """
        if not isinstance(spec, dict):
            raise ConfigurationError(f"{name}: service definition must be a mapping")

        for key in spec:
            if key not in SUPPORTED_KEYS:
                logger.warning("unsupported_service_key", service=name, key=key)

        try:
            return ServiceDefinition(
                name=name,
                image=spec.get('image') or '',
                command=self._to_command(spec.get('command')),
                entrypoint=self._to_command(spec.get('entrypoint')),
                working_dir=spec.get('working_dir'),
                user=self._optional_str(spec.get('user')),
                stop_signal=spec.get('stop_signal'),
                stop_grace_period=self._optional_duration(spec.get('stop_grace_period')),
                tty=self._flag(spec.get('tty')),
                stdin_open=self._flag(spec.get('stdin_open')),
                environment=self._parse_environment(spec.get('environment')),
                labels=self._parse_labels(spec.get('labels')),
                hostname=spec.get('hostname'),
                domainname=spec.get('domainname'),
                mac_address=spec.get('mac_address'),
                ports=self._parse_ports(self._sequence(spec.get('ports'), 'ports')),
                expose=[str(e) for e in self._sequence(spec.get('expose'), 'expose')],
                networks=self._parse_networks(spec.get('networks')),
                network_mode=spec.get('network_mode'),
                dns=self._to_list(spec.get('dns')),
                dns_search=self._to_list(spec.get('dns_search')),
                extra_hosts=self._parse_extra_hosts(spec.get('extra_hosts')),
                links=self._to_list(spec.get('links')),
                volumes=[self._parse_volume(v) for v in self._sequence(spec.get('volumes'), 'volumes')],
                tmpfs=self._to_list(spec.get('tmpfs')),
                devices=self._to_list(spec.get('devices')),
                cap_add=self._to_list(spec.get('cap_add')),
                cap_drop=self._to_list(spec.get('cap_drop')),
                security_opt=self._to_list(spec.get('security_opt')),
                privileged=self._flag(spec.get('privileged')),
                read_only=self._flag(spec.get('read_only')),
                ipc=spec.get('ipc'),
                pid=spec.get('pid'),
                cgroup_parent=spec.get('cgroup_parent'),
                ulimits=self._parse_ulimits(spec.get('ulimits')),
                restart=self._parse_restart(spec.get('restart')),
                deploy=self._parse_deploy(spec.get('deploy')),
                healthcheck=self._parse_healthcheck(spec.get('healthcheck')),
                logging=self._parse_logging(spec.get('logging')),
            )
        except (ValidationError, ValueError, TypeError, KeyError, AttributeError) as e:
            raise ConfigurationError(f"{name}: {e}") from e

    def _parse_environment(self, env_spec: Any) -> Dict[str, Optional[str]]:
        """
        Environment as an ordered mapping. ``KEY`` with no ``=`` (or a null
        mapping value) is kept with a None value, distinct from ``KEY=``.
        """
        environment: Dict[str, Optional[str]] = {}
        if isinstance(env_spec, list):
            for e in env_spec:
                e = self._scalar(e)
                if '=' in e:
                    k, v = e.split('=', 1)
                    environment[k] = v
                else:
                    environment[e] = None
        elif isinstance(env_spec, dict):
            for k, v in env_spec.items():
                environment[str(k)] = None if v is None else self._scalar(v)
        elif env_spec is not None:
            raise ValueError("environment must be a list or a mapping")
        return environment

    def _parse_labels(self, label_spec: Any) -> Dict[str, str]:
        labels = {}
        if isinstance(label_spec, list):
            for label in label_spec:
                k, _, v = self._scalar(label).partition('=')
                labels[k] = v
        elif isinstance(label_spec, dict):
            for k, v in label_spec.items():
                labels[str(k)] = '' if v is None else self._scalar(v)
        elif label_spec is not None:
            raise ValueError("labels must be a list or a mapping")
        return labels

    def _parse_ports(self, port_specs: List[Any]) -> List[PortMapping]:
        """
        Parses short (``[ip:][published:]target[/protocol]``) and long port syntax.
        Port ranges are expanded into one mapping per port.
        """
        ports = []
        for p in port_specs:
            if isinstance(p, dict):
                ports.append(PortMapping(
                    target=int(p['target']),
                    published=int(p['published']) if p.get('published') is not None else None,
                    protocol=p.get('protocol') or 'tcp',
                ))
                continue

            text = str(p)
            protocol = 'tcp'
            if '/' in text:
                text, protocol = text.rsplit('/', 1)

            parts = text.split(':')
            if len(parts) == 1:
                published, target = None, parts[0]
            elif len(parts) == 2:
                published, target = parts
            elif len(parts) == 3:
                # host ip is dropped: the engine publishes on all interfaces
                published, target = parts[1], parts[2]
            else:
                raise ValueError(f"invalid port specification: {p!r}")

            targets = self._port_range(target)
            publisheds = self._port_range(published) if published else [None] * len(targets)
            if len(publisheds) != len(targets):
                raise ValueError(f"port ranges do not match: {p!r}")
            for pub, tgt in zip(publisheds, targets):
                ports.append(PortMapping(target=tgt, published=pub, protocol=protocol))
        return ports

    def _port_range(self, text: str) -> List[int]:
        if '-' in text:
            start, end = text.split('-', 1)
            return list(range(int(start), int(end) + 1))
        return [int(text)]

    def _parse_volume(self, v: Any) -> VolumeMount:
        """
        Parses short (``source:target[:mode]``) and long volume syntax.
        """
        if isinstance(v, dict):
            vol_type = v.get('type', 'volume')
            source = v.get('source')
            if vol_type == 'bind' and source:
                source = self._resolve_path(source)
            bind = self._mapping(v.get('bind'), 'volume bind options')
            volume = self._mapping(v.get('volume'), 'volume options')
            tmpfs = self._mapping(v.get('tmpfs'), 'volume tmpfs options')
            return VolumeMount(
                type=vol_type,
                source=source,
                target=v['target'],
                read_only=bool(v.get('read_only', False)),
                bind=BindOptions(propagation=bind.get('propagation')) if bind is not None else None,
                volume=VolumeOptions(nocopy=bool(volume.get('nocopy', False))) if volume is not None else None,
                tmpfs=TmpfsOptions(
                    size=parse_byte_size(tmpfs['size']) if tmpfs.get('size') is not None else None
                ) if tmpfs is not None else None,
            )

        parts = str(v).split(':')
        if len(parts) == 1:
            return VolumeMount(type='volume', target=parts[0])
        if len(parts) > 3:
            raise ValueError(f"invalid volume specification: {v!r}")

        source, target = parts[0], parts[1]
        modes = parts[2].split(',') if len(parts) == 3 else []
        is_bind = source.startswith(('/', '.', '~'))
        propagation = next((m for m in modes if m in BIND_PROPAGATIONS), None)
        return VolumeMount(
            type='bind' if is_bind else 'volume',
            source=self._resolve_path(source) if is_bind else source,
            target=target,
            read_only='ro' in modes,
            bind=BindOptions(propagation=propagation) if is_bind and propagation else None,
            volume=VolumeOptions(nocopy=True) if not is_bind and 'nocopy' in modes else None,
        )

    def _resolve_path(self, path: str) -> str:
        path = os.path.expanduser(path)
        if not os.path.isabs(path):
            path = os.path.normpath(os.path.join(self.working_dir, path))
        return path

    def _parse_networks(self, net_spec: Any) -> Dict[str, Optional[ServiceNetwork]]:
        if isinstance(net_spec, list):
            return {str(n): None for n in net_spec}
        networks: Dict[str, Optional[ServiceNetwork]] = {}
        for name, net in (self._mapping(net_spec, 'networks') or {}).items():
            net = self._mapping(net, f"network {name}")
            if net is None:
                networks[str(name)] = None
            else:
                networks[str(name)] = ServiceNetwork(
                    aliases=self._to_list(net.get('aliases')),
                    ipv4_address=net.get('ipv4_address'),
                    ipv6_address=net.get('ipv6_address'),
                )
        return networks

    def _parse_extra_hosts(self, hosts: Any) -> List[str]:
        if isinstance(hosts, dict):
            return [f"{host}:{ip}" for host, ip in hosts.items()]
        return self._to_list(hosts)

    def _parse_ulimits(self, ulimit_spec: Any) -> Dict[str, Ulimit]:
        ulimits = {}
        for name, value in (self._mapping(ulimit_spec, 'ulimits') or {}).items():
            if isinstance(value, dict):
                ulimits[name] = Ulimit(soft=int(value['soft']), hard=int(value['hard']))
            else:
                ulimits[name] = Ulimit(soft=int(value), hard=int(value))
        return ulimits

    def _parse_restart(self, val: Any) -> Optional[str]:
        # an unquoted `restart: no` arrives as False
        if val is False:
            return "no"
        return self._optional_str(val)

    def _parse_deploy(self, deploy_spec: Any) -> DeployConfig:
        deploy_spec = self._mapping(deploy_spec, 'deploy')
        if not deploy_spec:
            return DeployConfig()

        restart_policy = None
        rp = self._mapping(deploy_spec.get('restart_policy'), 'deploy.restart_policy')
        if rp is not None:
            restart_policy = RestartPolicy(
                condition=rp.get('condition', 'any'),
                max_attempts=int(rp['max_attempts']) if rp.get('max_attempts') is not None else None,
            )

        resources = self._mapping(deploy_spec.get('resources'), 'deploy.resources') or {}
        return DeployConfig(
            restart_policy=restart_policy,
            resources=Resources(
                limits=self._parse_resource_spec(resources.get('limits')),
                reservations=self._parse_resource_spec(resources.get('reservations')),
            ),
        )

    def _parse_resource_spec(self, spec: Any) -> Optional[ResourceSpec]:
        spec = self._mapping(spec, 'resource spec')
        if spec is None:
            return None
        return ResourceSpec(
            memory=parse_byte_size(spec['memory']) if spec.get('memory') is not None else None,
        )

    def _parse_healthcheck(self, hc: Any) -> Optional[HealthCheck]:
        """
        A string ``test`` is run through the shell; ``["NONE"]`` disables the check.
        """
        hc = self._mapping(hc, 'healthcheck')
        if hc is None:
            return None

        test = hc.get('test')
        if isinstance(test, str):
            test = ['CMD-SHELL', test]
        test = list(test or [])
        disable = self._flag(hc.get('disable')) or test[:1] == ['NONE']

        return HealthCheck(
            test=test,
            interval=self._optional_duration(hc.get('interval')),
            timeout=self._optional_duration(hc.get('timeout')),
            retries=int(hc['retries']) if hc.get('retries') is not None else None,
            start_period=self._optional_duration(hc.get('start_period')),
            disable=disable,
        )

    def _parse_logging(self, log_spec: Any) -> Optional[LoggingConfig]:
        log_spec = self._mapping(log_spec, 'logging')
        if log_spec is None:
            return None
        options = self._mapping(log_spec.get('options'), 'logging.options') or {}
        return LoggingConfig(
            driver=log_spec.get('driver'),
            options={str(k): self._scalar(v) for k, v in options.items()},
        )

    def _top_level_names(self, val: Any, what: str) -> List[str]:
        try:
            return [str(name) for name in self._mapping(val, what) or {}]
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    def _mapping(self, val: Any, what: str) -> Optional[Dict[str, Any]]:
        if val is None or isinstance(val, dict):
            return val
        raise ValueError(f"{what} must be a mapping, got {val!r}")

    def _sequence(self, val: Any, what: str) -> List[Any]:
        if val is None:
            return []
        if isinstance(val, list):
            return val
        raise ValueError(f"{what} must be a list, got {val!r}")

    def _flag(self, val: Any) -> bool:
        # interpolated values arrive as strings
        if isinstance(val, str):
            return val.strip().lower() in ('true', 'yes', 'on', '1')
        return bool(val)

    def _optional_duration(self, val: Any) -> Optional[float]:
        if val is None:
            return None
        return parse_duration(val)

    def _optional_str(self, val: Any) -> Optional[str]:
        if val is None:
            return None
        return self._scalar(val)

    def _scalar(self, val: Any) -> str:
        # YAML turns unquoted yes/no into booleans
        if isinstance(val, bool):
            return 'true' if val else 'false'
        return str(val)

    def _to_command(self, val: Any) -> List[str]:
        """
        Helper for command and entrypoint: strings are split shell-style.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return shlex.split(val)
        return [str(v) for v in val]

    def _to_list(self, val: Any) -> List[str]:
        """
        Helper to ensure a value is a list of strings.

        :param val: The value to convert.
        :return: A list of strings.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return [val]
        return [str(v) for v in val]
