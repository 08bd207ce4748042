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
Wraps a single websocket connection to the gateway.

.. currentmodule:: erebus.core.transport
"""
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import trio
from trio_websocket import ConnectionClosed, HandshakeError, connect_websocket_url

from erebus.exc import TransportClosed

logger = logging.getLogger("erebus.transport")


class GatewayEventType(enum.Enum):
    """
    The kinds of event that end up on the gateway's event channel.
    """

    #: The websocket finished its handshake.
    OPENED = "opened"

    #: A raw frame arrived.
    MESSAGE = "message"

    #: The websocket is gone.
    CLOSED = "closed"

    #: Something running alongside the websocket found it to be dead.
    FAILED = "failed"

    #: A delayed re-IDENTIFY is due.
    REIDENTIFY = "reidentify"


@dataclass
class GatewayEvent:
    """
    A single item on the gateway's event channel.
    """

    #: The kind of event.
    type: GatewayEventType

    #: The transport that produced this event.
    transport: "TransportSession"

    #: The raw frame, for MESSAGE events.
    data: Any = None

    #: The close code, for CLOSED events.
    code: Optional[int] = None

    #: The close reason, for CLOSED events.
    reason: Optional[str] = None

    #: The error, for FAILED events.
    error: Optional[BaseException] = None


class TransportSession(object):
    """
    Owns exactly one websocket connection.

    Everything that happens on the socket is pushed, in order, onto the event channel passed
    in. Any task started with :meth:`start_soon` lives exactly as long as the socket.
    """

    #: How long to wait for the websocket to open.
    CONNECT_TIMEOUT = 30

    #: How long to wait for a clean close before giving up on it.
    CLOSE_TIMEOUT = 5

    def __init__(self, url: str, events: trio.MemorySendChannel, *, connector=None):
        """
        :param url: The fully qualified gateway URL.
        :param events: The channel to push :class:`.GatewayEvent` onto.
        :param connector: An async callable of ``(nursery, url)`` returning a websocket.
        """
        self.url = url

        self._events = events
        self._connector = connector or connect_websocket_url

        self._websocket = None
        # the websocket's own background tasks
        self._nursery = None  # type: Optional[trio.Nursery]
        # tasks that live alongside the socket, e.g. the heartbeat loop
        self._tasks = None  # type: Optional[trio.Nursery]
        self._send_lock = trio.Lock()

        #: If this transport has been closed.
        self.closed = False

        #: The code this transport was closed with.
        self.close_code = None  # type: Optional[int]

        #: The reason this transport was closed with.
        self.close_reason = None  # type: Optional[str]

    def __repr__(self) -> str:
        return "<TransportSession url={!r} closed={}>".format(self.url, self.closed)

    def _emit(self, type_: GatewayEventType, **kwargs) -> None:
        try:
            self._events.send_nowait(GatewayEvent(type_, self, **kwargs))
        except (trio.BrokenResourceError, trio.ClosedResourceError):
            # the gateway has already stopped listening
            logger.debug("Dropping %s event, the gateway has shut down", type_.name)

    def start_soon(self, fn, *args) -> None:
        """
        Starts a task that is cancelled as soon as this transport closes.
        """
        if self._tasks is None or self.closed:
            raise TransportClosed("Transport is not running")

        self._tasks.start_soon(fn, *args)

    async def run(self, *, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """
        Opens the websocket and reads frames off it until it closes.

        Exactly one CLOSED event is emitted, however this exits.
        """
        try:
            async with trio.open_nursery() as nursery:
                self._nursery = nursery
                task_status.started()

                if self.closed:
                    # closed before it ever got going
                    return

                logger.debug("Opening websocket to %s", self.url)
                try:
                    with trio.fail_after(self.CONNECT_TIMEOUT):
                        websocket = await self._connector(nursery, self.url)
                except (OSError, HandshakeError, trio.TooSlowError) as e:
                    logger.warning("Failed to open websocket to %s: %s", self.url, e)
                    self.close_code, self.close_reason = 1006, str(e)
                    return

                self._websocket = websocket

                async with trio.open_nursery() as tasks:
                    self._tasks = tasks
                    self._emit(GatewayEventType.OPENED)

                    while True:
                        try:
                            message = await websocket.get_message()
                        except ConnectionClosed as e:
                            if self.close_code is None:
                                self.close_code = e.reason.code
                                self.close_reason = e.reason.reason
                            break

                        self._emit(GatewayEventType.MESSAGE, data=message)

                    tasks.cancel_scope.cancel()
        finally:
            self.closed = True
            logger.debug("Websocket closed with %s (%s)", self.close_code, self.close_reason)
            self._emit(GatewayEventType.CLOSED, code=self.close_code, reason=self.close_reason)

    async def send(self, data: dict) -> None:
        """
        Sends data down the websocket.

        Writes are serialised, so a heartbeat can never interleave with an IDENTIFY.
        """
        if self.closed or self._websocket is None:
            raise TransportClosed("Cannot send on a closed transport")

        dumped = json.dumps(data)
        async with self._send_lock:
            websocket = self._websocket
            if websocket is None:
                raise TransportClosed("Cannot send on a closed transport")

            try:
                await websocket.send_message(dumped)
            except ConnectionClosed as e:
                raise TransportClosed("Websocket closed while sending") from e

    async def close(self, code: int = 1000, reason: str = "Websocket closing") -> None:
        """
        Closes the websocket.

        Every task started through :meth:`start_soon` is cancelled before the socket goes.
        """
        if self.close_code is None:
            self.close_code, self.close_reason = code, reason

        self.closed = True
        if self._tasks is not None:
            self._tasks.cancel_scope.cancel()

        websocket, self._websocket = self._websocket, None
        try:
            if websocket is not None:
                with trio.fail_after(self.CLOSE_TIMEOUT):
                    await websocket.aclose(code=code, reason=reason)
        except trio.TooSlowError:
            logger.warning("Websocket did not close in time, abandoning it")
        finally:
            if self._nursery is not None:
                self._nursery.cancel_scope.cancel()
