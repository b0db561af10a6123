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
The Docker Hub webhook payload.

See https://docs.docker.com/docker-hub/webhooks/ for the upstream format.
Only ``callback_url``, ``push_data.tag`` and ``repository.repo_name`` drive
the redeploy; the rest is informational.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class PushData(BaseModel):
    """Information about this specific push."""
    model_config = ConfigDict(extra="ignore")

    tag: str
    images: List[str] = []
    pushed_at: Optional[float] = None
    pusher: Optional[str] = None


class Repository(BaseModel):
    """Metadata about the pushed repository."""
    model_config = ConfigDict(extra="ignore")

    repo_name: str
    repo_url: Optional[str] = None
    name: Optional[str] = None
    namespace: Optional[str] = None
    owner: Optional[str] = None
    description: Optional[str] = None
    full_description: Optional[str] = None
    dockerfile: Optional[str] = None
    status: Optional[str] = None
    comment_count: int = 0
    star_count: int = 0
    date_created: Optional[float] = None
    is_official: bool = False
    is_private: bool = False
    is_trusted: bool = False


class WebhookEvent(BaseModel):
    """An inbound "image pushed" notification."""
    model_config = ConfigDict(extra="ignore")

    callback_url: str = Field(min_length=1)
    push_data: PushData
    repository: Repository

    @property
    def image(self) -> str:
        return f"{self.repository.repo_name}:{self.push_data.tag}"
