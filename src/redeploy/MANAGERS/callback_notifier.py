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
Delivery of the completion callback to the webhook sender.
"""
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class CallbackNotifier:
    """
    Sends the plain GET that tells the webhook sender a push was handled.

    No timeout is applied: delivery happens after the webhook response has
    been written, so a slow endpoint never delays it.
    """

    def __init__(self, client: Optional[httpx.Client] = None):
        """
        :param client: HTTP client to send with; one without timeouts is
            created when omitted.
        """
        self.client = client or httpx.Client(timeout=None, follow_redirects=True)

    def notify(self, callback_url: str) -> bool:
        """
        Sends the callback. Failures are logged, never raised.

        :param callback_url: URL supplied in the webhook event.
        :return: True if the request completed.
        """
        try:
            response = self.client.get(callback_url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("callback_failed", url=callback_url, error=str(e))
            return False

        if response.is_error:
            logger.warning("callback_rejected", url=callback_url, status=response.status_code)
        else:
            logger.debug("callback_sent", url=callback_url, status=response.status_code)
        return True

    def close(self) -> None:
        self.client.close()
