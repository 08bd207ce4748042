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
The core of erebus.

This package contains the network interface with Discord: the gateway connection, the state it
keeps, and delegating events to client code.

.. currentmodule:: erebus.core

.. autosummary::
    :toctree: core

    client
    event
    gateway
    httpclient
    state
    transport
"""
