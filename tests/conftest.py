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
Shared fixtures: an in-memory engine that records every call.
"""
from typing import Dict, List, Optional

import pytest

from redeploy.ENGINE.engine_client import EngineClient, RunningContainer
from redeploy.errors import EngineError
from redeploy.MODELS.container_spec import ContainerSpec
from redeploy.MODELS.orchestration_config import OrchestrationConfig
from redeploy.MODELS.service_definition import ServiceDefinition
from redeploy.MODELS.webhook_event import WebhookEvent


class RecordingEngine(EngineClient):
    """
    EngineClient fake. ``fail`` maps an operation name to the error message
    it should raise; ``containers`` is what list_containers reports.
    """

    MUTATIONS = ("stop", "remove", "create", "start")

    def __init__(self, containers: Optional[List[RunningContainer]] = None):
        self.containers = containers or []
        self.fail: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.created: List[ContainerSpec] = []

    def _record(self, op, *args):
        self.calls.append((op,) + args)
        if op in self.fail:
            raise EngineError(op, self.fail[op])

    @property
    def operations(self) -> List[str]:
        return [call[0] for call in self.calls]

    def ping(self):
        self._record("ping")

    def pull_image(self, repository, tag):
        self._record("pull", repository, tag)

    def list_containers(self, all=True):
        self._record("list", all)
        return list(self.containers)

    def stop_container(self, container_id, grace_seconds):
        self._record("stop", container_id, grace_seconds)

    def remove_container(self, container_id):
        self._record("remove", container_id)

    def create_container(self, spec):
        self._record("create", spec.name)
        self.created.append(spec)
        return f"new-{spec.name}"

    def start_container(self, container_id):
        self._record("start", container_id)


def make_event(repo_name: str, tag: str = "latest", callback_url: str = "http://cb/done") -> WebhookEvent:
    return WebhookEvent.model_validate(make_payload(repo_name, tag, callback_url))


def make_payload(repo_name: str, tag: str = "latest", callback_url: str = "http://cb/done") -> dict:
    return {
        "callback_url": callback_url,
        "push_data": {
            "images": [],
            "pushed_at": 1417566161,
            "pusher": "trustedbuilder",
            "tag": tag,
        },
        "repository": {
            "comment_count": 0,
            "date_created": 1417494799,
            "description": "",
            "is_official": False,
            "is_private": True,
            "is_trusted": True,
            "name": repo_name.split("/")[-1],
            "namespace": repo_name.split("/")[0],
            "owner": repo_name.split("/")[0],
            "repo_name": repo_name,
            "repo_url": f"https://registry.hub.docker.com/u/{repo_name}/",
            "star_count": 0,
            "status": "Active",
        },
    }


@pytest.fixture
def engine():
    return RecordingEngine()


@pytest.fixture
def web_config():
    return OrchestrationConfig(services=[ServiceDefinition(name="web", image="acme/app")])
