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
End-to-end tests of the webhook endpoint against a recording engine.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import RecordingEngine, make_payload
from redeploy.ENGINE.engine_client import RunningContainer
from redeploy.MANAGERS.callback_notifier import CallbackNotifier
from redeploy.MANAGERS.redeploy_orchestrator import RedeployOrchestrator
from redeploy.SERVER.webhook_app import create_app


class RecordingNotifier(CallbackNotifier):
    """Appends callbacks to the engine's call log so ordering is visible."""

    def __init__(self, engine):
        self.engine = engine

    def notify(self, callback_url):
        self.engine.calls.append(("callback", callback_url))
        return True

    def close(self):
        pass


def make_client(config, engine, path=""):
    app = create_app(RedeployOrchestrator(config, engine), RecordingNotifier(engine), path=path)
    return TestClient(app)


def test_redeploys_existing_container(web_config):
    engine = RecordingEngine([RunningContainer(id="1234", names=("/web",))])
    client = make_client(web_config, engine)

    response = client.post("/", json=make_payload("acme/app", "latest", "http://cb/done"))

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok", "image": "acme/app:latest", "matched": True, "deployed": ["web"],
    }
    assert engine.calls == [
        ("pull", "acme/app", "latest"),
        ("list", True),
        ("stop", "1234", 10),
        ("remove", "1234"),
        ("create", "web"),
        ("start", "new-web"),
        ("callback", "http://cb/done"),
    ]


def test_no_existing_container(web_config, engine):
    response = make_client(web_config, engine).post("/", json=make_payload("acme/app"))
    assert response.status_code == 200
    assert engine.operations == ["pull", "list", "create", "start", "callback"]


def test_unknown_image_is_acknowledged(web_config, engine):
    response = make_client(web_config, engine).post("/", json=make_payload("acme/unknown"))
    assert response.status_code == 200
    assert response.json()["matched"] is False
    assert engine.calls == [("callback", "http://cb/done")]
    assert not set(engine.operations) & set(RecordingEngine.MUTATIONS)


def test_pull_failure_is_500_without_callback(web_config, engine):
    engine.fail["pull"] = "not found"
    response = make_client(web_config, engine).post("/", json=make_payload("acme/app"))
    assert response.status_code == 500
    assert engine.operations == ["pull"]


def test_create_failure_is_500_without_callback(web_config, engine):
    engine.fail["create"] = "conflict"
    response = make_client(web_config, engine).post("/", json=make_payload("acme/app"))
    assert response.status_code == 500
    assert "callback" not in engine.operations


def test_start_failure_is_500_without_callback(web_config, engine):
    engine.fail["start"] = "port in use"
    response = make_client(web_config, engine).post("/", json=make_payload("acme/app"))
    assert response.status_code == 500
    assert "callback" not in engine.operations


def test_stop_failure_still_succeeds(web_config):
    engine = RecordingEngine([RunningContainer(id="1234", names=("/web",))])
    engine.fail["stop"] = "timeout"
    response = make_client(web_config, engine).post("/", json=make_payload("acme/app"))
    assert response.status_code == 200
    assert engine.operations == ["pull", "list", "stop", "remove", "create", "start", "callback"]


@pytest.mark.parametrize("body", [
    b"not json",
    b"[]",
    b'{"callback_url": "http://cb/done"}',
    b'{"callback_url": "http://cb/done", "push_data": {"tag": "latest"}, "repository": {}}',
])
def test_malformed_body_is_400(web_config, engine, body):
    response = make_client(web_config, engine).post(
        "/", content=body, headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert engine.calls == []


def test_custom_path(web_config, engine):
    client = make_client(web_config, engine, path="hooks/docker")
    assert client.post("/", json=make_payload("acme/app")).status_code in (404, 405)
    assert client.post("/hooks/docker", json=make_payload("acme/app")).status_code == 200


def test_healthz(web_config, engine):
    with make_client(web_config, engine) as client:
        response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert engine.calls == []
