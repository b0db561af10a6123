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
Container engine access.

The redeploy core only depends on the EngineClient contract; DockerEngineClient
implements it on top of the Docker SDK's low-level API client.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

import docker
import requests
import structlog
from docker.errors import DockerException
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import EngineError
from ..MODELS.container_spec import ContainerSpec

logger = structlog.get_logger(__name__)

ENGINE_ERRORS = (DockerException, requests.exceptions.RequestException)


@dataclass(frozen=True)
class RunningContainer:
    """A container as reported by the engine."""
    id: str
    names: Tuple[str, ...] = ()

    def has_name(self, name: str) -> bool:
        return name in self.names


class EngineClient(ABC):
    """
    The capabilities the redeploy core needs from a container engine.
    Every method blocks until the engine answers and raises EngineError on failure.
    """

    @abstractmethod
    def ping(self) -> None:
        """Checks the engine is reachable."""

    @abstractmethod
    def pull_image(self, repository: str, tag: str) -> None:
        """Pulls ``repository:tag``."""

    @abstractmethod
    def list_containers(self, all: bool = True) -> List[RunningContainer]:
        """Lists containers; stopped ones too unless ``all`` is False."""

    @abstractmethod
    def stop_container(self, container_id: str, grace_seconds: int) -> None:
        """Stops a container, killing it after ``grace_seconds``."""

    @abstractmethod
    def remove_container(self, container_id: str) -> None:
        """Removes a stopped container."""

    @abstractmethod
    def create_container(self, spec: ContainerSpec) -> str:
        """Creates a container and returns its id."""

    @abstractmethod
    def start_container(self, container_id: str) -> None:
        """Starts a created container."""


def _log_retry(retry_state) -> None:
    logger.warning(
        "engine_unreachable",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()),
    )


class DockerEngineClient(EngineClient):
    """
    EngineClient backed by a Docker daemon.
    """

    def __init__(self, api: docker.APIClient):
        """
        Args:
            api: A connected low-level Docker API client.
        """
        self.api = api

    @classmethod
    def from_env(cls, timeout: Optional[int] = None) -> "DockerEngineClient":
        """
        Connects using DOCKER_HOST, DOCKER_TLS_VERIFY and DOCKER_CERT_PATH.

        Args:
            timeout: Per request timeout in seconds, None for the SDK default.

        Returns:
            A client that has successfully pinged the engine.
        """
        kwargs = {"timeout": timeout} if timeout is not None else {}
        try:
            client = cls(docker.from_env(**kwargs).api)
        except ENGINE_ERRORS as e:
            raise EngineError("connect", str(e)) from e
        client.wait_until_ready()
        return client

    @retry(
        retry=retry_if_exception_type(EngineError),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.5, max=8),
        before_sleep=_log_retry,
        reraise=True,
    )
    def wait_until_ready(self) -> None:
        """Pings the engine, retrying with backoff while it is unreachable."""
        self.ping()

    def ping(self) -> None:
        try:
            self.api.ping()
        except ENGINE_ERRORS as e:
            raise EngineError("ping", str(e)) from e

    def pull_image(self, repository: str, tag: str) -> None:
        try:
            for progress in self.api.pull(repository, tag=tag, stream=True, decode=True):
                if "error" in progress:
                    raise EngineError("pull", progress["error"])
                logger.debug("pull_progress", image=f"{repository}:{tag}",
                             status=progress.get("status"), layer=progress.get("id"))
        except ENGINE_ERRORS as e:
            raise EngineError("pull", str(e)) from e

    def list_containers(self, all: bool = True) -> List[RunningContainer]:
        try:
            containers = self.api.containers(all=all)
        except ENGINE_ERRORS as e:
            raise EngineError("list containers", str(e)) from e
        return [
            RunningContainer(id=c["Id"], names=tuple(c.get("Names") or ()))
            for c in containers
        ]

    def stop_container(self, container_id: str, grace_seconds: int) -> None:
        try:
            self.api.stop(container_id, timeout=grace_seconds)
        except ENGINE_ERRORS as e:
            raise EngineError("stop", str(e)) from e

    def remove_container(self, container_id: str) -> None:
        try:
            self.api.remove_container(container_id)
        except ENGINE_ERRORS as e:
            raise EngineError("remove", str(e)) from e

    def create_container(self, spec: ContainerSpec) -> str:
        try:
            created = self.api.create_container_from_config(spec.to_engine_payload(), name=spec.name)
        except ENGINE_ERRORS as e:
            raise EngineError("create", str(e)) from e
        for warning in created.get("Warnings") or []:
            logger.warning("create_warning", name=spec.name, warning=warning)
        return created["Id"]

    def start_container(self, container_id: str) -> None:
        try:
            self.api.start(container_id)
        except ENGINE_ERRORS as e:
            raise EngineError("start", str(e)) from e
