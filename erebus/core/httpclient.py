# This file is part of erebus.
#
# erebus is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# erebus is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with erebus.  If not, see <http://www.gnu.org/licenses/>.

"""
The Discord HTTP interface.

Only the handful of endpoints the gateway needs live here.

.. currentmodule:: erebus.core.httpclient
"""
import logging
import typing

import asks
import trio
from asks.errors import AsksException

import erebus
from erebus.exc import Forbidden, HTTPException, NotFound, Unauthorized

logger = logging.getLogger("erebus.http")


# more of a namespace
class Endpoints:
    BASE = "https://discord.com"
    API_BASE = "/api/v9"

    USER_ME = "/users/@me"

    GATEWAY = "/gateway"


class HTTPClient(object):
    """
    The HTTP client object used to make requests to Discord's servers.

    :param token: The token to use for all HTTP requests.
    :param user_agent: Extra text to append to the library's user agent.
    :param max_connections: The max connections for this HTTP client.
    """

    #: The number of attempts made before a request is given up on.
    MAX_TRIES = 5

    def __init__(self, token: str, *,
                 user_agent: str = None,
                 max_connections: int = 10):
        #: The token used for all requests.
        self.token = token

        agent = erebus.USER_AGENT
        if user_agent:
            agent = "{} {}".format(agent, user_agent)

        # Calculated headers
        self.headers = {
            "User-Agent": agent,
            "Authorization": "Bot {}".format(self.token),
        }

        self.session = asks.Session(base_location=Endpoints.BASE, endpoint=Endpoints.API_BASE,
                                    connections=max_connections)

    @staticmethod
    def get_response_data(response) -> typing.Union[str, dict]:
        """
        Return either the text of a request or the JSON.

        :param response: The response to use.
        """
        if response.headers.get("Content-Type", None) == "application/json":
            return response.json()

        return response.content

    async def request(self, method: str, path: str, **kwargs):
        """
        Makes a request, retrying on server errors.

        :param method: The HTTP method to use.
        :param path: The path, relative to the API base.
        """
        headers = self.headers.copy()
        headers.update(kwargs.pop("headers", {}))

        for tries in range(0, self.MAX_TRIES):
            logger.debug(f"{method} {path} => (pending) (try {tries + 1})")

            try:
                response = await self.session.request(method, path=path, headers=headers,
                                                      timeout=5, **kwargs)
            except (OSError, AsksException):
                # discord forcefully disconnected or similar
                logger.debug(f"{method} {path} => connection failed (try {tries + 1})")
                await trio.sleep(1 + (tries * 2))
                continue

            logger.debug(f"{method} {path} => {response.status_code} (try {tries + 1})")

            if 500 <= response.status_code < 600:
                # Perform exponential backoff to prevent spamming discord.
                await trio.sleep(1 + (tries * 2))
                continue

            result = self.get_response_data(response)

            if 200 <= response.status_code < 300:
                return result

            if response.status_code == 401:
                raise Unauthorized(response, result)

            if response.status_code == 403:
                raise Forbidden(response, result)

            if response.status_code == 404:
                raise NotFound(response, result)

            raise HTTPException(response, result)
        else:
            raise RuntimeError("Failed to get response after {} tries.".format(self.MAX_TRIES))

    async def get(self, path: str, **kwargs):
        """
        Makes a GET request.

        :param path: The path to request.
        """
        return await self.request("GET", path, **kwargs)

    async def get_gateway_url(self) -> str:
        """
        :return: The websocket gateway URL to connect to.
        """
        data = await self.get(Endpoints.GATEWAY)
        return data["url"]

    async def get_this_user(self) -> dict:
        """
        Gets the current user.
        """
        return await self.get(Endpoints.USER_ME)
