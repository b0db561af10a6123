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
Per-service mutual exclusion for concurrent redeploys.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class ServiceLocks:
    """
    A lazily populated mapping from service name to lock.

    Two webhooks naming the same service would otherwise both snapshot the
    same "existing container" and race on stop/remove/create.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, name: str) -> threading.Lock:
        """
        Returns the lock for a service, creating it on first use.

        :param name: The service name.
        :return: The same lock object for every call with this name.
        """
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        """
        Holds the service's lock for the duration of the block.
        """
        with self.get(name):
            yield
