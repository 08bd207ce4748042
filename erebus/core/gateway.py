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
Code that wraps the Discord gateway connection.

.. currentmodule:: erebus.core.gateway
"""
import enum
import json
import logging
import math
import sys
from dataclasses import dataclass
from typing import Callable, Optional

import trio

from erebus.core.event import EventDispatcher
from erebus.core.state import ConnectionPhase, SessionState
from erebus.core.transport import GatewayEvent, GatewayEventType, TransportSession
from erebus.exc import AlreadyConnected, FatalTransportError, GatewayClosed, HeartbeatTimeout, \
    ProtocolViolation, ReconnectLimitExceeded, ResumeUnavailable, TransportClosed

logger = logging.getLogger("erebus.gateway")

#: The close code used when we close the websocket to reconnect on purpose.
RECONNECT_CLOSE_CODE = 5000

#: The close code used when the websocket has zombied.
#: Closing with a 1006 keeps the session resumable.
ZOMBIE_CLOSE_CODE = 1006

#: Close codes that mean reconnecting would be pointless.
FATAL_CLOSE_CODES = frozenset({
    4004,  # authentication failed
    4010,  # invalid shard
    4011,  # sharding required
    4012,  # invalid API version
    4013,  # invalid intents
    4014,  # disallowed intents
})


class GatewayOp(enum.IntEnum):
    """
    A mapping of possible gateway operation codes.
    """

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    PRESENCE = 3
    VOICE_STATE = 4
    RESUME = 6
    RECONNECT = 7
    REQUEST_MEMBERS = 8
    INVALIDATE_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class GatewayIntent(enum.IntEnum):
    """
    Enumeration of possible gateway intents.
    """

    GUILDS = 1
    GUILD_MEMBERS = 1 << 1
    GUILD_BANS = 1 << 2
    GUILD_EMOJIS = 1 << 3
    GUILD_INTEGRATIONS = 1 << 4
    GUILD_WEBHOOKS = 1 << 5
    GUILD_INVITES = 1 << 6
    GUILD_VOICE_STATES = 1 << 7
    GUILD_PRESENCES = 1 << 8
    GUILD_MESSAGES = 1 << 9
    GUILD_MESSAGE_REACTIONS = 1 << 10
    GUILD_MESSAGE_TYPING = 1 << 11
    DIRECT_MESSAGES = 1 << 12
    DIRECT_MESSAGE_REACTIONS = 1 << 13
    DIRECT_MESSAGE_TYPING = 1 << 14


DEFAULT_INTENTS = (
    GatewayIntent.GUILDS
    | GatewayIntent.GUILD_MEMBERS
    | GatewayIntent.GUILD_BANS
    | GatewayIntent.GUILD_EMOJIS
    | GatewayIntent.GUILD_INVITES
    | GatewayIntent.GUILD_PRESENCES
    | GatewayIntent.GUILD_MESSAGES
    | GatewayIntent.GUILD_MESSAGE_REACTIONS
    | GatewayIntent.DIRECT_MESSAGES
    | GatewayIntent.DIRECT_MESSAGE_REACTIONS
)


@dataclass
class GatewayInfo:
    """
    Wraps the configuration for the current gateway.
    """

    #: The current token.
    token: str

    #: The intents that should be used.
    intents: int = DEFAULT_INTENTS

    #: The member count above which a guild counts as large.
    large_threshold: int = 50

    #: The current gateway URL, as returned by the API.
    gateway_url: Optional[str] = None

    #: The number of seconds to wait before re-identifying after a failed resume.
    invalid_session_delay: float = 5.0

    #: The number of reconnects allowed without a READY or RESUMED in between.
    #: None means there is no limit.
    max_reconnects: Optional[int] = 5


@dataclass
class HeartbeatInfo:
    """
    Represents the heartbeat state for a single websocket.
    """

    #: The heartbeat interval, as sent in HELLO.
    interval_millis: Optional[int] = None

    #: If no HEARTBEAT_ACK has been received yet.
    awaiting_first_ack: bool = True

    #: If the most recent heartbeat has been acknowledged.
    acknowledged: bool = False

    #: The number of heartbeats sent.
    heartbeats: int = 0

    #: The number of heartbeat acks received.
    heartbeat_acks: int = 0

    #: Internal time when the last heartbeat was sent.
    last_heartbeat_time: float = 0

    #: Internal time when the last heartbeat_ack was received.
    last_ack_time: float = 0

    @property
    def latency(self) -> float:
        """
        :return: The time between the most recent heartbeat and heartbeat_ack.
        """
        return self.last_ack_time - self.last_heartbeat_time


class HeartbeatMonitor(object):
    """
    Sends heartbeats down one websocket.

    The recurring timer is a task started on the transport, so it can never outlive the socket.
    """

    def __init__(self, transport: TransportSession, sequence: Callable[[], int],
                 failures: trio.MemorySendChannel):
        """
        :param transport: The :class:`.TransportSession` to heartbeat on.
        :param sequence: A callable returning the current sequence.
        :param failures: The channel to report a zombied connection on.
        """
        self.transport = transport
        self.info = HeartbeatInfo()

        self._sequence = sequence
        self._failures = failures
        self._cancel_scope = None  # type: Optional[trio.CancelScope]

    @property
    def armed(self) -> bool:
        """
        :return: If a HELLO has set up this monitor.
        """
        return self.info.interval_millis is not None

    @property
    def running(self) -> bool:
        """
        :return: If a timer is currently live.
        """
        return self._cancel_scope is not None and not self._cancel_scope.cancel_called

    @property
    def interval(self) -> float:
        """
        :return: The heartbeat interval, in seconds.
        """
        return self.info.interval_millis / 1000.0

    def arm(self, interval_millis: int) -> None:
        """
        Starts heartbeating, replacing any existing timer.

        :param interval_millis: The interval between heartbeats.
        """
        self.cancel()
        self.info.interval_millis = interval_millis
        self._schedule(0)

    async def restart(self) -> None:
        """
        Sends a heartbeat right now, then starts the timer again from this point.
        """
        await self.send_tick()
        self.cancel()
        self._schedule(self.interval)

    def cancel(self) -> None:
        """
        Cancels the current timer, if there is one.
        """
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()
            self._cancel_scope = None

    def _schedule(self, first_delay: float) -> None:
        # the scope exists before the task starts, so a cancel can never miss it
        scope = trio.CancelScope()
        self._cancel_scope = scope
        self.transport.start_soon(self._heartbeat_loop, scope, first_delay)

    def on_ack_received(self) -> None:
        self.info.acknowledged = True
        self.info.awaiting_first_ack = False
        self.info.heartbeat_acks += 1
        self.info.last_ack_time = trio.current_time()
        logger.debug("Received heartbeat ack #%d (latency %.3fs)", self.info.heartbeat_acks,
                     self.info.latency)

    async def send_tick(self) -> None:
        """
        Sends a single heartbeat.
        """
        if self.info.heartbeats and not self.info.acknowledged:
            raise HeartbeatTimeout("Heartbeat #{} was never acknowledged"
                                   .format(self.info.heartbeats))

        self.info.acknowledged = False
        sequence = self._sequence() or None
        logger.debug("Sending heartbeat #%d with sequence %s", self.info.heartbeats, sequence)
        await self.transport.send({"op": GatewayOp.HEARTBEAT, "d": sequence})
        self.info.heartbeats += 1
        self.info.last_heartbeat_time = trio.current_time()

    async def _heartbeat_loop(self, scope: trio.CancelScope, first_delay: float) -> None:
        """
        Loops sending heartbeats.
        """
        with scope:
            delay = first_delay
            while True:
                await trio.sleep(delay)

                try:
                    await self.send_tick()
                except HeartbeatTimeout as e:
                    logger.warning("Connection has zombied, reconnecting.")
                    self._failures.send_nowait(
                        GatewayEvent(GatewayEventType.FAILED, self.transport, error=e)
                    )
                    return
                except TransportClosed:
                    logger.debug("Websocket closed, stopping heartbeats.")
                    return

                delay = self.interval


class GatewayHandler(object):
    """
    Primary class that handles connecting to the Discord gateway.

    All frames, for every websocket, are handled one at a time by the task running
    :meth:`run`. That task is the only thing that changes the connection phase.
    """

    GATEWAY_VERSION = 9

    def __init__(self, info: GatewayInfo, state: SessionState, dispatcher: EventDispatcher, *,
                 url_resolver=None, connector=None):
        """
        :param info: The :class:`.GatewayInfo` to connect with.
        :param state: The :class:`.SessionState` to keep up to date.
        :param dispatcher: The :class:`.EventDispatcher` to hand dispatches to.
        :param url_resolver: An async callable returning the gateway URL.
        :param connector: Passed through to :class:`.TransportSession`.
        """
        self.info = info
        self.state = state
        self.dispatcher = dispatcher

        self.logger = logger

        self._url_resolver = url_resolver
        self._connector = connector

        self._transport = None  # type: Optional[TransportSession]
        self._monitor = None  # type: Optional[HeartbeatMonitor]

        # the controller nursery and the channel every event is funnelled through
        self._nursery = None  # type: Optional[trio.Nursery]
        self._events = None  # type: Optional[trio.MemorySendChannel]

        # used in the event loop. does not reflect the actual state of the websocket.
        self._is_open = False

        # what to send once the next websocket opens
        self._handshake = GatewayOp.IDENTIFY

        self._reconnects = 0

    @property
    def gateway_url(self) -> str:
        """
        :return: The fully qualified URL to open websockets to.
        """
        return "{}?v={}&encoding=json".format(self.info.gateway_url, self.GATEWAY_VERSION)

    @property
    def transport(self) -> Optional[TransportSession]:
        return self._transport

    @property
    def monitor(self) -> Optional[HeartbeatMonitor]:
        return self._monitor

    @property
    def heartbeat(self) -> Optional[HeartbeatInfo]:
        """
        :return: The :class:`.HeartbeatInfo` for the current websocket.
        """
        if self._monitor is None:
            return None

        return self._monitor.info

    # Lifecycle.
    async def run(self, *, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """
        Connects, then handles events until the gateway is killed.
        """
        send, receive = trio.open_memory_channel(math.inf)
        self._events = send
        error = None

        async with receive:
            async with trio.open_nursery() as nursery:
                self._nursery = nursery
                self._is_open = True
                task_status.started()

                try:
                    await self.connect()

                    async for event in receive:
                        await self._handle_event(event)
                        if not self._is_open:
                            break
                except (GatewayClosed, ReconnectLimitExceeded) as e:
                    # raised outside the nursery so callers see it unwrapped
                    error = e
                finally:
                    self._is_open = False
                    self._nursery = None
                    nursery.cancel_scope.cancel()

        if error is not None:
            raise error

    async def connect(self) -> None:
        """
        Opens a new websocket.

        A disconnected gateway fetches the gateway URL and IDENTIFYs once the websocket opens. A
        gateway that is resuming or reconnecting RESUMEs instead.
        """
        if self._nursery is None:
            raise RuntimeError("connect() can only be called while the gateway is running")

        phase = self.state.phase
        if phase in (ConnectionPhase.CONNECTED, ConnectionPhase.CONNECTING,
                     ConnectionPhase.IDENTIFYING):
            raise AlreadyConnected("Gateway is already {}".format(phase.value))

        if phase is ConnectionPhase.DISCONNECTED:
            await self._resolve_gateway_url()
            self.state.transition(ConnectionPhase.CONNECTING)
            self._handshake = GatewayOp.IDENTIFY
        else:
            self._count_reconnect()
            if phase is not ConnectionPhase.RECONNECTING:
                self.state.transition(ConnectionPhase.RECONNECTING)

            if self.info.gateway_url is None:
                await self._resolve_gateway_url()

            # the old websocket and its heartbeats go before the new one opens
            await self._close_transport(RECONNECT_CLOSE_CODE, "Reconnecting")
            self._handshake = GatewayOp.RESUME

        self._open_transport()

    async def kill(self, code: int = 1000, reason: str = "Client closing") -> None:
        """
        Kills the gateway gracefully.
        """
        self._is_open = False
        self.logger.warning("Killing the gateway connection.")

        if self.state.phase is not ConnectionPhase.DISCONNECTED:
            self.state.transition(ConnectionPhase.DISCONNECTED)

        await self._close_transport(code, reason)

        if self._nursery is not None:
            self._nursery.cancel_scope.cancel()

    async def _resolve_gateway_url(self) -> None:
        if self._url_resolver is None:
            raise RuntimeError("No way to look up the gateway URL")

        self.info.gateway_url = await self._url_resolver()
        self.logger.debug("Resolved gateway URL %s", self.info.gateway_url)

    def _count_reconnect(self) -> None:
        self._reconnects += 1
        limit = self.info.max_reconnects
        if limit is not None and self._reconnects > limit:
            raise ReconnectLimitExceeded("Gave up after {} reconnect attempts".format(limit))

    def _open_transport(self) -> None:
        """
        Opens a websocket. This ONLY connects the actual socket.
        """
        transport = TransportSession(self.gateway_url, self._events, connector=self._connector)
        self._transport = transport
        self._monitor = HeartbeatMonitor(transport, lambda: self.state.sequence, self._events)

        self.logger.info("Opening connection to %s", self.gateway_url)
        self._nursery.start_soon(transport.run)

    async def _close_transport(self, code: int, reason: str) -> None:
        if self._monitor is not None:
            self._monitor.cancel()

        if self._transport is not None and not self._transport.closed:
            await self._transport.close(code=code, reason=reason)

    async def _reconnect(self, code: int, reason: str) -> None:
        """
        Tears down the current websocket and opens a fresh one, which will try to RESUME.
        """
        self.state.transition(ConnectionPhase.RECONNECTING)
        await self._close_transport(code, reason)
        await self.connect()

    # Sending.
    async def send(self, data: dict) -> None:
        """
        Sends data down the current websocket.
        """
        if self._transport is None:
            raise TransportClosed("No websocket is open")

        await self._transport.send(data)

    async def send_identify(self) -> None:
        """
        Sends an IDENTIFY to Discord.
        """
        payload = {
            "op": GatewayOp.IDENTIFY,
            "d": {
                "token": self.info.token,
                "properties": {
                    "os": sys.platform,
                    "browser": "erebus",
                    "device": "erebus",
                },
                "large_threshold": self.info.large_threshold,
                "intents": self.info.intents,
            },
        }

        self.logger.info("Sending IDENTIFY...")
        await self.send(payload)

    async def send_resume(self) -> None:
        """
        Sends the RESUME packet.
        """
        if not self.info.token or not self.state.session_id:
            raise ResumeUnavailable("Cannot resume without a token and session ID")

        payload = {
            "op": GatewayOp.RESUME,
            "d": {
                "token": self.info.token,
                "session_id": self.state.session_id,
                "seq": self.state.sequence,
            },
        }

        self.state.transition(ConnectionPhase.RESUMING)
        self.logger.info("Sending RESUME for session %s at sequence %d",
                         self.state.session_id, self.state.sequence)
        await self.send(payload)

    async def _identify_fresh(self) -> None:
        self.state.reset()
        self.state.transition(ConnectionPhase.IDENTIFYING)
        await self.send_identify()

    def _schedule_identify(self) -> None:
        """
        Schedules an IDENTIFY on the current websocket after the invalid session delay.
        """
        self._count_reconnect()
        delay = self.info.invalid_session_delay
        self.logger.info("Re-identifying in %s seconds", delay)
        self._transport.start_soon(self._identify_later, self._transport, delay)

    async def _identify_later(self, transport: TransportSession, delay: float) -> None:
        await trio.sleep(delay)
        self._events.send_nowait(GatewayEvent(GatewayEventType.REIDENTIFY, transport))

    # Receiving.
    def _decode(self, data) -> Optional[dict]:
        try:
            if isinstance(data, (bytes, bytearray)):
                data = data.decode("utf-8")

            decoded = json.loads(data)
        except (TypeError, ValueError):
            self.logger.warning("Dropping undecodable frame %s", repr(data)[:100])
            return None

        if not isinstance(decoded, dict):
            self.logger.warning("Dropping frame that isn't an object: %r", decoded)
            return None

        return decoded

    async def _handle_event(self, event: GatewayEvent) -> None:
        """
        Handles a single event off the event channel.
        """
        if event.transport is not self._transport:
            self.logger.debug("Ignoring %s from a stale websocket", event.type.name)
            return

        try:
            if event.type is GatewayEventType.OPENED:
                await self._on_open()

            elif event.type is GatewayEventType.MESSAGE:
                frame = self._decode(event.data)
                if frame is not None:
                    await self.handle_frame(frame)

            elif event.type is GatewayEventType.REIDENTIFY:
                if self.state.phase is ConnectionPhase.RECONNECTING:
                    await self._identify_fresh()

            elif event.type is GatewayEventType.FAILED:
                await self._recover(event.error)

            elif event.type is GatewayEventType.CLOSED:
                await self._on_close(event.code, event.reason)

        except FatalTransportError as e:
            await self._recover(e)
        except TransportClosed:
            self.logger.debug("Websocket closed mid-handling, waiting for it to finish closing")

    async def _on_open(self) -> None:
        if self._handshake is GatewayOp.RESUME:
            try:
                await self.send_resume()
                return
            except ResumeUnavailable as e:
                self.logger.info("%s, identifying instead", e)

        await self._identify_fresh()

    async def _on_close(self, code: int, reason: str) -> None:
        if self._monitor is not None and self._monitor.running:
            self._monitor.cancel()

        if not self._is_open or self.state.phase is ConnectionPhase.DISCONNECTED:
            return

        if code in FATAL_CLOSE_CODES:
            self.logger.error("Gateway closed with %s (%s), not reconnecting", code, reason)
            self.state.transition(ConnectionPhase.DISCONNECTED)
            raise GatewayClosed(code, reason)

        self.logger.warning("Websocket closed with %s (%s), reconnecting", code, reason)
        self.state.transition(ConnectionPhase.RECONNECTING)

        # back off if the last reconnect didn't get anywhere
        if self._reconnects:
            await trio.sleep(min(2 ** self._reconnects, 60))

        await self.connect()

    async def _recover(self, error: BaseException) -> None:
        """
        Throws away the current websocket after a fatal error, and opens a new one.
        """
        if not self._is_open:
            return

        self.logger.error("Websocket is unusable: %s", error)
        await self.dispatcher.events.fire_event("gateway_error", error)
        await self._reconnect(ZOMBIE_CLOSE_CODE, "Zombied connection")

    async def handle_frame(self, frame: dict) -> None:
        """
        Handles a single decoded frame.
        """
        opcode = frame.get("op")
        event_data = frame.get("d")

        # the grand old opcode switch
        if opcode == GatewayOp.DISPATCH:
            self.state.update_sequence(frame.get("s"))

            event = frame.get("t")
            if not event:
                return

            if event in ("READY", "RESUMED"):
                self._reconnects = 0

            if self.state.phase in (ConnectionPhase.IDENTIFYING, ConnectionPhase.RESUMING):
                self.state.transition(ConnectionPhase.CONNECTED)

            try:
                await self.dispatcher.handle(event, event_data)
            except (AttributeError, KeyError, TypeError, ValueError):
                self.logger.exception("Error decoding event %s with data %r", event, event_data)

        elif opcode == GatewayOp.HEARTBEAT:
            await self._handle_heartbeat_request()

        elif opcode == GatewayOp.RECONNECT:
            self.logger.info("Gateway asked us to reconnect")
            await self._reconnect(RECONNECT_CLOSE_CODE, "Reconnecting")

        elif opcode == GatewayOp.INVALIDATE_SESSION:
            await self._handle_invalid_session(event_data is True)

        elif opcode == GatewayOp.HELLO:
            try:
                interval = int(event_data["heartbeat_interval"])
            except (KeyError, TypeError, ValueError):
                raise ProtocolViolation("HELLO without a heartbeat interval: {!r}"
                                        .format(event_data))

            self.logger.debug("Heartbeating every %s milliseconds.", interval)
            self._monitor.arm(interval)

        elif opcode == GatewayOp.HEARTBEAT_ACK:
            if self._monitor is not None:
                self._monitor.on_ack_received()

        else:
            self.logger.warning("Unhandled opcode %r", opcode)

    async def _handle_heartbeat_request(self) -> None:
        monitor = self._monitor
        if monitor is None or not monitor.armed:
            raise ProtocolViolation("Received a heartbeat request before HELLO")

        # nothing can be checked until the first ack, so early requests are always answered
        if monitor.info.awaiting_first_ack:
            monitor.info.acknowledged = True
            await monitor.send_tick()
        elif not monitor.info.acknowledged:
            raise HeartbeatTimeout("Received a heartbeat request before the last heartbeat "
                                   "was acknowledged")
        else:
            await monitor.restart()

    async def _handle_invalid_session(self, resumable: bool) -> None:
        self.logger.warning("Received INVALIDATE_SESSION (resumable: %s)", resumable)
        was_resuming = self.state.phase is ConnectionPhase.RESUMING

        if not resumable:
            self.state.session_id = None

        self.state.transition(ConnectionPhase.RECONNECTING)

        if was_resuming:
            # a resume has already failed, don't hammer the gateway
            self._schedule_identify()
            return

        try:
            await self.send_resume()
        except ResumeUnavailable as e:
            self.logger.info("%s, identifying after a delay", e)
            self._schedule_identify()
