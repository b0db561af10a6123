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
Models for the overall service file.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from .service_definition import ServiceDefinition
from ..errors import ConfigurationError
from ..REGISTRY.image_reference import ImageReference


class OrchestrationConfig(BaseModel):
    """
    Complete configuration for the redeploy daemon.
    Equivalent to a parsed compose file; services keep their file order.
    """
    model_config = ConfigDict(frozen=True)

    version: Optional[str] = None
    services: List[ServiceDefinition] = []
    networks: List[str] = []
    volumes: List[str] = []

    def validate_services(self) -> None:
        """
        Checks all required parameters are defined.

        :raises ConfigurationError: If a service has no image, an image ends in
            an empty tag, or a name is repeated.
        """
        seen = set()
        for service in self.services:
            if not service.image:
                raise ConfigurationError(f"{service.name}: image is required")
            if ImageReference.parse(service.image).tag == "":
                raise ConfigurationError(f"{service.name}: image {service.image!r} has an empty tag")
            if service.name in seen:
                raise ConfigurationError(f"{service.name}: duplicate service name")
            seen.add(service.name)

    def get_service(self, name: str) -> Optional[ServiceDefinition]:
        for service in self.services:
            if service.name == name:
                return service
        return None
