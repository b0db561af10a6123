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
Exception hierarchy shared by the configuration, engine and redeploy layers.
"""
from typing import Optional


class RedeployError(Exception):
    """Base class for all errors raised by redeploy."""


class ConfigurationError(RedeployError):
    """
    The service file could not be read, parsed or validated.

    Raised at load time only; a process that hits one never starts serving.
    """


class ServiceCompileError(ConfigurationError):
    """A single service declaration cannot be turned into a container spec."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class EngineError(RedeployError):
    """A call to the container engine failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class PullError(RedeployError):
    """Pulling the pushed image failed; no service was touched."""

    def __init__(self, image: str, cause: Exception):
        super().__init__(f"failed to pull {image}: {cause}")
        self.image = image
        self.cause = cause


class DeployError(RedeployError):
    """Creating or starting the replacement container of a service failed."""

    def __init__(self, service: str, stage: str, cause: Exception, completed: Optional[list] = None):
        super().__init__(f"{service}: {stage} failed: {cause}")
        self.service = service
        self.stage = stage
        self.cause = cause
        self.completed = completed or []
