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
Erebus - An async Python 3 library for the Discord gateway.

.. currentmodule:: erebus

.. autosummary::
    :toctree:

    core
    dataclasses

    exc
    util
"""
import sys
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("erebus")
except PackageNotFoundError:
    __version__ = "0.0.0"

_fmt = "DiscordBot (https://github.com/erebus-discord/erebus {0}) Python/{1[0]}.{1[1]}"
USER_AGENT = _fmt.format(__version__, sys.version_info)
del _fmt


from erebus.core.client import Client
from erebus.core.event import EventContext, EventDispatcher, EventManager, event
from erebus.core.gateway import GatewayHandler, GatewayInfo, GatewayIntent, GatewayOp, \
    HeartbeatInfo, HeartbeatMonitor
from erebus.core.state import ConnectionPhase, GuildStore, SessionState
from erebus.core.transport import GatewayEvent, GatewayEventType, TransportSession
from erebus.dataclasses.bases import Dataclass, IDObject
from erebus.dataclasses.guild import Guild
from erebus.dataclasses.user import BotUser, User
