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
The main client class.

This contains a definition for :class:`.Client` which is used to interface primarily with Discord.

.. currentmodule:: erebus.core.client
"""
import logging
import os
import typing

import trio

from erebus.core.event import EventDispatcher, EventManager, event as ev_dec
from erebus.core.gateway import DEFAULT_INTENTS, GatewayHandler, GatewayInfo
from erebus.core.httpclient import HTTPClient
from erebus.core.state import ConnectionPhase, SessionState
from erebus.dataclasses.guild import Guild
from erebus.dataclasses.user import BotUser

logger = logging.getLogger("erebus.client")

#: The environment variable the token is read from when none is passed.
TOKEN_ENV_VAR = "DISCORD_CLIENT_TOKEN"


class Client(object):
    """
    The main client class. This is used to interact with Discord.

    To start, you can create an instance of the client by passing it the token you want to use:

    .. code-block:: python3

        cl = Client("my.token.string")

    Registering events can be done with the :meth:`.Client.event` decorator.

    .. code-block:: python3

        @cl.event("ready")
        async def loaded(ctx: EventContext):
            print("Bot logged in.")

    """

    def __init__(self, token: str = None, *,
                 intents: int = None,
                 large_threshold: int = 50,
                 user_agent: str = None,
                 invalid_session_delay: float = 5.0,
                 max_reconnects: typing.Optional[int] = 5,
                 connector=None):
        """
        :param token: The current token for this bot. Read from ``DISCORD_CLIENT_TOKEN`` if None.
        :param intents: The intents bitfield to identify with.
        :param large_threshold: The member count above which a guild counts as large.
        :param user_agent: Extra text to add to the user agent of HTTP requests.
        :param invalid_session_delay: How long to wait before re-identifying after a failed resume.
        :param max_reconnects: How many reconnects to allow in a row. None for no limit.
        :param connector: A websocket connector to use instead of trio-websocket's.
        """
        if token is None:
            token = os.environ.get(TOKEN_ENV_VAR)

        if not token:
            raise ValueError("A token must be passed, or set in ${}".format(TOKEN_ENV_VAR))

        #: The token for the bot.
        self._token = token

        #: The :class:`.HTTPClient` used for this bot.
        self.http = HTTPClient(self._token, user_agent=user_agent)

        #: The current connection state for the bot.
        self.state = SessionState(self)

        #: The current :class:`.EventManager` for this bot.
        self.events = EventManager(self)

        info = GatewayInfo(
            token=self._token,
            intents=DEFAULT_INTENTS if intents is None else intents,
            large_threshold=large_threshold,
            invalid_session_delay=invalid_session_delay,
            max_reconnects=max_reconnects,
        )

        #: The :class:`.GatewayHandler` for this bot.
        self.gateway = GatewayHandler(
            info, self.state, EventDispatcher(self.state, self.events),
            url_resolver=self.http.get_gateway_url, connector=connector,
        )

    @property
    def user(self) -> typing.Optional[BotUser]:
        """
        :return: The :class:`.User` that this client is logged in as.
        """
        return self.state.user

    @property
    def guilds(self) -> typing.Mapping[str, Guild]:
        """
        :return: A mapping of str -> :class:`.Guild` that this client can see.
        """
        return self.state.guilds

    @property
    def phase(self) -> ConnectionPhase:
        """
        :return: The current :class:`.ConnectionPhase` of the gateway.
        """
        return self.state.phase

    def event(self, name: str):
        """
        A convenience decorator to mark a function as an event.

        .. code-block:: python3

            @bot.event("ready")
            async def something(ctx):
                pass

        :param name: The name of the event.
        """

        def _inner(func):
            f = ev_dec(name)(func)
            self.events.add_event(func=f, name=name)
            return func

        return _inner

    async def fire_event(self, event_name: str, *args, **kwargs):
        """
        Fires an event.

        This actually passes the arguments to :meth:`.EventManager.fire_event`.
        """
        return await self.events.fire_event(event_name, *args, **kwargs)

    async def run_async(self, *, task_status=trio.TASK_STATUS_IGNORED):
        """
        Runs the client asynchronously, until it is killed.
        """
        logger.info("Starting the gateway")
        await self.gateway.run(task_status=task_status)

    async def connect(self):
        """
        Connects the gateway. The client must already be running.
        """
        await self.gateway.connect()

    async def kill(self) -> None:
        """
        Kills the bot by closing the gateway.
        """
        await self.gateway.kill()

    def run(self, **kwargs):
        """
        Convenience method to run the bot with trio.
        """
        trio.run(self.run_async, **kwargs)
