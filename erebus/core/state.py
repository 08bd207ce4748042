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
Defines :class:`.SessionState`.

.. currentmodule:: erebus.core.state
"""

import collections.abc
import enum
import logging
import typing
from types import MappingProxyType

from erebus.dataclasses.guild import Guild
from erebus.dataclasses.user import BotUser
from erebus.exc import InvalidTransition

logger = logging.getLogger("erebus.state")


class ConnectionPhase(enum.Enum):
    """
    The phase of the gateway connection.
    """

    #: No websocket, and no attempt to open one.
    DISCONNECTED = "disconnected"

    #: A websocket is being opened for a brand new session.
    CONNECTING = "connecting"

    #: An IDENTIFY has been sent, and the session has not been confirmed yet.
    IDENTIFYING = "identifying"

    #: The session is live.
    CONNECTED = "connected"

    #: A RESUME has been sent, and the session has not been confirmed yet.
    RESUMING = "resuming"

    #: The previous websocket was lost, and a new one is on the way.
    RECONNECTING = "reconnecting"


#: The edges that a phase change is allowed to take.
TRANSITIONS = {
    ConnectionPhase.DISCONNECTED: frozenset({ConnectionPhase.CONNECTING}),
    ConnectionPhase.CONNECTING: frozenset({
        ConnectionPhase.IDENTIFYING, ConnectionPhase.RECONNECTING, ConnectionPhase.DISCONNECTED,
    }),
    ConnectionPhase.IDENTIFYING: frozenset({
        ConnectionPhase.CONNECTED, ConnectionPhase.RECONNECTING, ConnectionPhase.DISCONNECTED,
    }),
    ConnectionPhase.CONNECTED: frozenset({
        ConnectionPhase.RECONNECTING, ConnectionPhase.DISCONNECTED,
    }),
    ConnectionPhase.RESUMING: frozenset({
        ConnectionPhase.CONNECTED, ConnectionPhase.RECONNECTING, ConnectionPhase.DISCONNECTED,
    }),
    ConnectionPhase.RECONNECTING: frozenset({
        ConnectionPhase.RESUMING, ConnectionPhase.IDENTIFYING, ConnectionPhase.RECONNECTING,
        ConnectionPhase.DISCONNECTED,
    }),
}


class GuildStore(collections.abc.MutableMapping):
    """
    A store for guilds in the state.
    """

    def __init__(self):
        #: The internal actual guilds.
        self.guilds = {}

        #: The order of the guilds, as specified by the READY packet.
        self.order = []

    def view(self) -> typing.Mapping[str, Guild]:
        """
        :return: A :class:`mappingproxy` of the internal guilds.
        """
        return MappingProxyType(self.guilds)

    @property
    def available(self) -> typing.List[Guild]:
        """
        :return: A list of guilds that are currently available.
        """
        return [guild for guild in self.guilds.values() if not guild.unavailable]

    # abc methods
    def __setitem__(self, key, value) -> None:
        return self.guilds.__setitem__(key, value)

    def __getitem__(self, key) -> Guild:
        return self.guilds.__getitem__(key)

    def __delitem__(self, key) -> None:
        return self.guilds.__delitem__(key)

    def __iter__(self) -> typing.Iterator[str]:
        return self.guilds.__iter__()

    def __len__(self) -> int:
        return self.guilds.__len__()


class SessionState(object):
    """
    This represents the state of one logical gateway session.

    It outlives individual websockets; a resume picks up where the last websocket left off.
    Every mutation happens on the gateway's event task, so nothing here needs a lock.

    The ``handle_*`` methods parse dispatches from the gateway and return the name of the
    event to fire, followed by its arguments.
    """

    def __init__(self, client=None):
        #: The client associated with this state, passed to created dataclasses.
        self.client = client

        #: The current phase of the connection.
        self.phase = ConnectionPhase.DISCONNECTED

        #: The last sequence number received.
        self.sequence = 0

        #: The current session ID.
        self.session_id = None  # type: typing.Optional[str]

        #: The current user of this bot.
        #: This is automatically set after READY.
        self.user = None  # type: typing.Optional[BotUser]

        #: The guilds the bot can see.
        self._guilds = GuildStore()

    @property
    def guilds(self) -> typing.Mapping[str, Guild]:
        """
        :return: A mapping of guild ID -> :class:`.Guild` that this session can see.
        """
        return self._guilds.view()

    def can_transition(self, target: ConnectionPhase) -> bool:
        return target in TRANSITIONS[self.phase]

    def transition(self, target: ConnectionPhase) -> ConnectionPhase:
        """
        Moves the connection into a new phase.

        :param target: The :class:`.ConnectionPhase` to move to.
        :return: The previous phase.
        """
        previous = self.phase
        if not self.can_transition(target):
            raise InvalidTransition(previous, target)

        logger.debug("Connection phase %s -> %s", previous.name, target.name)
        self.phase = target
        return previous

    def update_sequence(self, sequence) -> bool:
        """
        Updates the sequence from an inbound frame.

        Sequences only ever go forwards; anything that isn't a newer integer is ignored.

        :param sequence: The ``s`` field of the frame.
        :return: If the sequence was updated.
        """
        if sequence is None:
            return False

        if not isinstance(sequence, int) or isinstance(sequence, bool):
            logger.warning("Ignoring non-integer sequence %r", sequence)
            return False

        if sequence < self.sequence:
            logger.warning("Ignoring sequence %d, already at %d", sequence, self.sequence)
            return False

        self.sequence = sequence
        return True

    def reset(self) -> None:
        """
        Resets the session, ready for a fresh IDENTIFY.
        """
        self.session_id = None
        self.sequence = 0

    # Event handlers.
    def handle_ready(self, event_data: dict):
        """
        Called when READY is dispatched.
        """
        self.session_id = event_data.get("session_id")

        # Create our bot user.
        self.user = BotUser(self.client, **event_data.get("user", {}))

        logger.info("We have been issued session %s, parsing ready for `%s` (%s)",
                    self.session_id, self.user, self.user.id)

        # Create all of the guilds.
        self._guilds.clear()
        self._guilds.order = []
        for guild in event_data.get("guilds", []):
            new_guild = Guild(self.client, **guild)
            self._guilds[new_guild.id] = new_guild
            self._guilds.order.append(new_guild.id)

        logger.info("Ready processed with %d guild(s), %d available.", len(self._guilds),
                    len(self._guilds.available))
        return "ready",

    def handle_resumed(self, event_data: dict):
        """
        Called when the gateway connection is resumed.
        """
        logger.info("Resumed session %s at sequence %d", self.session_id, self.sequence)
        return "resumed",

    def handle_guild_create(self, event_data: dict):
        """
        Called when GUILD_CREATE is dispatched.
        """
        guild_id = str(event_data.get("id"))
        guild = self._guilds.get(guild_id)

        if guild is not None:
            was_unavailable = guild.unavailable
            guild.from_guild_create(**event_data)
            if was_unavailable:
                return "guild_available", guild

            return "guild_update", guild

        guild = Guild(self.client, **event_data).from_guild_create(**event_data)
        self._guilds[guild.id] = guild
        self._guilds.order.append(guild.id)
        return "guild_join", guild

    def handle_guild_delete(self, event_data: dict):
        """
        Called when GUILD_DELETE is dispatched.
        """
        guild_id = str(event_data.get("id"))
        guild = self._guilds.get(guild_id)
        if guild is None:
            return None

        if event_data.get("unavailable", False):
            guild.unavailable = True
            return "guild_unavailable", guild

        del self._guilds[guild_id]
        try:
            self._guilds.order.remove(guild_id)
        except ValueError:
            pass

        return "guild_leave", guild
