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
HTTP surface: receives Docker Hub webhooks and drives the orchestrator.
"""
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..errors import DeployError, PullError
from ..MANAGERS.callback_notifier import CallbackNotifier
from ..MANAGERS.redeploy_orchestrator import RedeployOrchestrator
from ..MODELS.webhook_event import WebhookEvent

logger = structlog.get_logger(__name__)


class WebhookResponse(BaseModel):
    status: str = "ok"
    image: str
    matched: bool
    deployed: List[str] = []


class HealthResponse(BaseModel):
    status: str
    version: str


def create_app(orchestrator: RedeployOrchestrator,
               notifier: Optional[CallbackNotifier] = None,
               path: str = "") -> FastAPI:
    """
    Builds the webhook application.

    :param orchestrator: Orchestrator handling accepted events.
    :param notifier: Sender of completion callbacks.
    :param path: Path to serve webhooks on, without the leading slash.
    :return: The FastAPI application.
    """
    notifier = notifier or CallbackNotifier()
    hook_path = "/" + path.strip("/")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("webhook_server_started", path=hook_path, images=orchestrator.index.images())
        yield
        notifier.close()
        logger.info("webhook_server_stopped")

    app = FastAPI(title="redeploy", version=__version__, lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        logger.error("invalid_request", errors=exc.errors())
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "invalid request"})

    @app.get("/healthz", response_model=HealthResponse)
    def healthz() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @app.post(hook_path, response_model=WebhookResponse)
    def receive_webhook(event: WebhookEvent, background_tasks: BackgroundTasks) -> WebhookResponse:
        """
        Redeploys the services using the pushed image.

        Runs on a worker thread; the callback is delivered only after the
        response has been sent, and only when the event was fully handled.
        """
        logger.debug("request_received", repo=event.repository.repo_url or event.repository.repo_name)
        try:
            result = orchestrator.handle(event)
        except (PullError, DeployError) as e:
            logger.error("redeploy_failed", image=event.image, error=str(e))
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error")

        background_tasks.add_task(notifier.notify, event.callback_url)
        return WebhookResponse(image=result.image, matched=result.matched, deployed=result.deployed)

    return app
