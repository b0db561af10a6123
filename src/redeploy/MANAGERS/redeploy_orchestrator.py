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
Redeploys services when a new version of their image is pushed.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from ..COMPILER.service_compiler import compile_all
from ..ENGINE.engine_client import EngineClient, RunningContainer
from ..errors import DeployError, EngineError, PullError
from ..MODELS.container_spec import ContainerSpec
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import ServiceDefinition
from ..MODELS.webhook_event import WebhookEvent
from ..REGISTRY.image_index import ImageIndex
from ..REGISTRY.image_reference import ImageReference
from .service_locks import ServiceLocks

logger = structlog.get_logger(__name__)

STOP_GRACE_SECONDS = 10


@dataclass
class RedeployResult:
    """
    Outcome of a handled event.

    ``matched`` is False for pushes of images no service declares; those are
    successful no-ops.
    """
    image: str
    matched: bool
    deployed: List[str] = field(default_factory=list)


class RedeployOrchestrator:
    """
    Replaces the containers of every service declaring a pushed image.

    For each event the image is pulled once, then each matching service is
    reconciled in declaration order: find the old container, stop and remove
    it, create and start the new one.
    """
    def __init__(self,
                 config: OrchestrationConfig,
                 engine: EngineClient,
                 stop_grace: int = STOP_GRACE_SECONDS,
                 locks: Optional[ServiceLocks] = None):
        """
        Initializes the orchestrator and compiles every service up front.

        :param config: Configuration for all services.
        :param engine: Client for the container engine.
        :param stop_grace: Seconds an old container gets to exit before being killed.
        :param locks: Per-service locks, shared if several orchestrators
            drive the same engine.
        :raises ServiceCompileError: If any service declaration is malformed.
        """
        self.config = config
        self.engine = engine
        self.stop_grace = stop_grace
        self.locks = locks or ServiceLocks()
        self.specs: Dict[str, ContainerSpec] = compile_all(config)
        self.index = ImageIndex.build(config.services)

    def handle(self, event: WebhookEvent) -> RedeployResult:
        """
        Runs the resolve, pull and per-service reconcile stages for one event.

        :param event: The parsed webhook event.
        :return: What was deployed.
        :raises PullError: If the image could not be pulled; nothing was touched.
        :raises DeployError: If a replacement container could not be created
            or started. Services handled before it keep their new container,
            later ones keep their old one.
        """
        reference = ImageReference(repository=event.repository.repo_name, tag=event.push_data.tag)
        image = str(reference)
        log = logger.bind(image=image)

        services = self.index.match(reference)
        if not services:
            log.warning("image_not_configured",
                        hint="Got deploy request for image not in config. Have you added it to your config?")
            return RedeployResult(image=image, matched=False)

        log.debug("pulling_image")
        try:
            self.engine.pull_image(reference.repository, reference.effective_tag)
        except EngineError as e:
            log.error("pull_failed", error=str(e))
            raise PullError(image, e) from e
        log.info("image_pulled", services=[s.name for s in services])

        result = RedeployResult(image=image, matched=True)
        for service in services:
            with self.locks.hold(service.name):
                self._reconcile(service, result)
            result.deployed.append(service.name)

        log.info("redeploy_complete", services=result.deployed)
        return result

    def _reconcile(self, service: ServiceDefinition, result: RedeployResult):
        """
        Swaps the service's container for a new one from its compiled spec.
        Must be called with the service's lock held.
        """
        log = logger.bind(service=service.name)

        existing = self._find_existing(service)
        if existing is not None:
            log.debug("found_existing_container", container_id=existing.id)
            self._teardown(existing, service)

        try:
            container_id = self.engine.create_container(self.specs[service.name])
        except EngineError as e:
            log.error("create_failed", error=str(e))
            raise DeployError(service.name, "create", e, completed=list(result.deployed)) from e
        log.debug("created_container", container_id=container_id)

        try:
            self.engine.start_container(container_id)
        except EngineError as e:
            log.error("start_failed", container_id=container_id, error=str(e))
            raise DeployError(service.name, "start", e, completed=list(result.deployed)) from e
        log.info("started_container", container_id=container_id)

    def _find_existing(self, service: ServiceDefinition) -> Optional[RunningContainer]:
        """
        Looks up the container named after the service, live from the engine.
        A failed listing is treated as "no existing container".
        """
        try:
            containers = self.engine.list_containers(all=True)
        except EngineError as e:
            logger.error("list_containers_failed", service=service.name, error=str(e))
            return None

        name = "/" + service.name
        for container in containers:
            if container.has_name(name):
                return container
        return None

    def _teardown(self, container: RunningContainer, service: ServiceDefinition):
        """
        Best-effort stop and removal of the old container.

        Failures are logged and swallowed: the replacement is created anyway.
        If removal failed the create will usually hit a name conflict.
        """
        log = logger.bind(service=service.name, container_id=container.id)
        try:
            self.engine.stop_container(container.id, self.stop_grace)
            log.debug("stopped_existing_container")
        except EngineError as e:
            log.error("stop_failed", error=str(e))

        try:
            self.engine.remove_container(container.id)
            log.debug("removed_existing_container")
        except EngineError as e:
            log.error("remove_failed", error=str(e))
