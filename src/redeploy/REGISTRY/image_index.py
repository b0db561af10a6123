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
In-memory index from image references to the services that run them.
"""

from typing import Dict, Iterable, List, Tuple

from ..MODELS.service_definition import ServiceDefinition
from .image_reference import ImageReference


class ImageIndex:
    """
    Groups services by the exact image string they declare.

    Built once from the loaded configuration and never mutated afterwards,
    so concurrent readers need no locking. Several services may share one
    image; they are kept in declaration order.
    """

    def __init__(self, services: Iterable[ServiceDefinition]):
        grouped: Dict[str, List[ServiceDefinition]] = {}
        for service in services:
            grouped.setdefault(service.image, []).append(service)
        self._services: Dict[str, Tuple[ServiceDefinition, ...]] = {
            image: tuple(group) for image, group in grouped.items()
        }

    @classmethod
    def build(cls, services: Iterable[ServiceDefinition]) -> "ImageIndex":
        return cls(services)

    def resolve(self, image: str) -> Tuple[ServiceDefinition, ...]:
        """
        Services declaring exactly this image string.

        Args:
            image: Image reference as written in the service file.

        Returns:
            The matching services in declaration order, empty if none.
        """
        return self._services.get(image, ())

    def match(self, reference: ImageReference) -> Tuple[ServiceDefinition, ...]:
        """
        Services to redeploy for a pushed reference.

        Tries ``repo:tag`` first and, for the latest tag only, falls back to
        the bare repository.
        """
        for key in reference.lookup_keys():
            services = self.resolve(key)
            if services:
                return services
        return ()

    def images(self) -> List[str]:
        """Indexed image references in first-seen order."""
        return list(self._services)

    def __len__(self) -> int:
        return len(self._services)

    def __contains__(self, image: str) -> bool:
        return image in self._services
