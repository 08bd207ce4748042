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
The common base for everything with a snowflake ID.

.. currentmodule:: erebus.dataclasses.bases
"""
import datetime

DISCORD_EPOCH = 1420070400000


class IDObject(object):
    """
    Anything identified by a snowflake. Two objects with the same ID compare equal and hash
    the same.
    """

    __slots__ = "id",

    def __init__(self, id: str):
        """
        :param id: The snowflake ID. Integers are converted to strings.
        """
        if isinstance(id, int):
            id = str(id)

        #: The ID of this object.
        #: Snowflakes are kept as strings, as they are on the wire.
        self.id = id

    def __repr__(self) -> str:
        return "<{} id={!r}>".format(self.__class__.__name__, self.id)

    __str__ = __repr__

    @property
    def snowflake_timestamp(self) -> datetime.datetime:
        """
        :return: When this snowflake was generated, in UTC.
        """
        return datetime.datetime.fromtimestamp(((int(self.id) >> 22) + DISCORD_EPOCH) / 1000,
                                               tz=datetime.timezone.utc)

    def __eq__(self, other) -> bool:
        if not hasattr(other, "id"):
            return NotImplemented

        return other.id == self.id

    def __hash__(self) -> int:
        return hash(self.id)


class Dataclass(IDObject):
    """
    An :class:`.IDObject` that also knows the client it was created by, as ``_bot``.
    """

    __slots__ = "_bot", "__weakref__"

    def __init__(self, id: str, cl):
        super().__init__(id)

        self._bot = cl
