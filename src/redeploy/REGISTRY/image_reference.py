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
Image reference handling for matching pushed images against services.

References are compared as plain strings, exactly as written in the service
file: ``acme/app`` and ``docker.io/acme/app`` are different keys.
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ImageReference:
    """
    A repository plus an optional tag.

    Examples:
        - acme/app -> repository acme/app, no tag
        - acme/app:v1 -> repository acme/app, tag v1
        - localhost:5000/app -> repository localhost:5000/app, no tag
    """

    repository: str
    tag: Optional[str] = None

    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'acme/app', 'acme/app:v1')

        Returns:
            Parsed ImageReference object.
        """
        if not reference:
            raise ValueError("Empty image reference")

        last_colon = reference.rfind(":")
        if last_colon != -1:
            after_colon = reference[last_colon + 1 :]
            # A slash after the colon means it was a registry port
            if "/" not in after_colon:
                return cls(repository=reference[:last_colon], tag=after_colon)

        return cls(repository=reference)

    @property
    def effective_tag(self) -> str:
        """The tag the engine pulls; untagged references track latest."""
        return self.DEFAULT_TAG if self.tag is None else self.tag

    def lookup_keys(self) -> List[str]:
        """
        Keys to try, in order, when matching this reference against services.

        A push of ``repo:latest`` also matches services declaring the bare
        ``repo``, since untagged services implicitly track latest.
        """
        keys = [str(self)]
        if self.tag == self.DEFAULT_TAG:
            keys.append(self.repository)
        return keys

    def __str__(self) -> str:
        # an empty tag is kept, so "repo:" never matches an untagged service
        if self.tag is not None:
            return f"{self.repository}:{self.tag}"
        return self.repository
