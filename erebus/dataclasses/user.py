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
Users, as sent in the READY payload.

.. currentmodule:: erebus.dataclasses.user
"""
from erebus.dataclasses.bases import Dataclass


class User(Dataclass):
    """
    A Discord user.

    :ivar id: The snowflake ID of this user.
    """

    __slots__ = ("username", "discriminator", "avatar_hash", "verified", "mfa_enabled",
                 "bot")

    def __init__(self, client, **kwargs):
        super().__init__(kwargs.get("id"), client)

        #: The account name, without the discriminator.
        self.username = kwargs.get("username")

        #: The four digit discriminator. A string, as on the wire.
        self.discriminator = kwargs.get("discriminator")

        #: The avatar hash, or None for the default avatar.
        self.avatar_hash = kwargs.get("avatar")

        #: If the email on this account is verified.
        self.verified = kwargs.get("verified")

        #: If two factor auth is enabled.
        self.mfa_enabled = kwargs.get("mfa_enabled")

        #: If this is a bot account.
        self.bot = bool(kwargs.get("bot", False))

    @property
    def name(self) -> str:
        return self.username

    def __str__(self) -> str:
        if self.discriminator is None:
            return str(self.username)

        return "{}#{}".format(self.username, self.discriminator)

    def __repr__(self) -> str:
        return "<{} id={!r} name={!r}>".format(type(self).__name__, self.id, self.username)


class BotUser(User):
    """
    The user this client is logged in as.
    """

    __slots__ = ()
