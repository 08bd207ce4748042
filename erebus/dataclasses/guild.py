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
Wrappers for Guild objects.

.. currentmodule:: erebus.dataclasses.guild
"""
from erebus.dataclasses.bases import Dataclass


class Guild(Dataclass):
    """
    Represents a guild object on Discord.

    Guilds in the READY packet only carry their ID; the rest of the data is filled in by a
    later GUILD_CREATE, at which point the guild becomes available.
    """

    __slots__ = ("unavailable", "name", "owner_id", "member_count")

    def __init__(self, client, **kwargs) -> None:
        super().__init__(kwargs.get("id"), client)

        #: If this guild is unavailable or not.
        self.unavailable = kwargs.get("unavailable", False)

        #: The name of this guild.
        self.name = kwargs.get("name", None)

        #: The owner ID of this guild.
        self.owner_id = kwargs.get("owner_id", None)

        #: The number of members in this guild.
        self.member_count = kwargs.get("member_count", None)

    def __repr__(self) -> str:
        return "<Guild id={!r} name={!r} unavailable={}>".format(self.id, self.name,
                                                                  self.unavailable)

    __str__ = __repr__

    def from_guild_create(self, **data: dict) -> 'Guild':
        """
        Populates the fields from a GUILD_CREATE event.

        :param data: The GUILD_CREATE data to use.
        """
        self.unavailable = data.get("unavailable", False)
        self.name = data.get("name", self.name)
        self.owner_id = data.get("owner_id", self.owner_id)
        self.member_count = data.get("member_count", self.member_count)

        return self
