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
Every exception erebus raises.

.. currentmodule:: erebus.exc
"""
import enum
import warnings


class ErebusError(Exception):
    """
    The base class for all erebus exceptions.
    """


# HTTP based exceptions.
class ErrorCode(enum.IntEnum):
    UNKNOWN_ACCOUNT = 10001
    UNKNOWN_APPLICATION = 10002
    UNKNOWN_CHANNEL = 10003
    UNKNOWN_GUILD = 10004
    UNKNOWN_TOKEN = 10012
    UNKNOWN_USER = 10013

    NO_BOTS = 20001
    ONLY_BOTS = 20002

    UNAUTHORIZED = 40001
    MISSING_ACCESS = 50001
    INVALID_ACCOUNT = 50002
    MISSING_PERMISSIONS = 50013
    INVALID_AUTH_TOKEN = 50014
    INVALID_FORM_BODY = 50035

    UNKNOWN = 0


class HTTPException(ErebusError, ConnectionError):
    """
    Raised when Discord answers a REST request with an error status.
    """

    def __init__(self, response, error: dict):
        self.response = response

        if not isinstance(error, dict):
            error = {"message": error}

        error_code = error.get("code", 0)
        try:
            #: The error code for this response.
            self.error_code = ErrorCode(error_code)
        except ValueError:
            warnings.warn("Received unknown error code {}".format(error_code))
            self.error_code = ErrorCode.UNKNOWN
        self.error_message = error.get("message")

        self.error = error

    def __str__(self) -> str:
        if self.error_code == ErrorCode.UNKNOWN:
            return repr(self.error)

        return "{} ({}): {}".format(self.error_code, self.error_code.name, self.error_message)

    __repr__ = __str__


class Unauthorized(HTTPException):
    """
    Raised on a 401, which means the token is wrong.
    """


class Forbidden(HTTPException):
    """
    Raised on a 403.
    """


class NotFound(HTTPException):
    """
    Raised on a 404.
    """


class InvalidTransition(ErebusError):
    """
    Raised when the connection phase is moved along an edge that doesn't exist.
    """

    def __init__(self, current, target):
        self.current = current
        self.target = target

    def __str__(self) -> str:
        return "Cannot move from {} to {}".format(self.current.name, self.target.name)

    __repr__ = __str__


# Gateway based exceptions.
class GatewayError(ErebusError):
    """
    The base class for errors raised by the gateway connection.
    """


class AlreadyConnected(GatewayError):
    """
    Raised when ``connect()`` is called on a gateway that is already connected, or is in the
    middle of connecting.
    """


class ResumeUnavailable(GatewayError):
    """
    Raised when a RESUME is attempted without a token or a session ID to resume with.
    """


class TransportClosed(GatewayError):
    """
    Raised when something tries to write to a websocket that has already been torn down.
    """


class FatalTransportError(GatewayError):
    """
    Raised when the current websocket can no longer be trusted.

    The gateway will close the websocket and open a fresh one when this happens.
    """


class HeartbeatTimeout(FatalTransportError):
    """
    Raised when a heartbeat is due but the previous one was never acknowledged.
    """


class ProtocolViolation(FatalTransportError):
    """
    Raised when the remote end sends something that the protocol does not allow.
    """


class GatewayClosed(GatewayError):
    """
    Raised when Discord closes the gateway with a close code that can't be recovered from.

    :ivar code: The close code.
    :ivar reason: The close reason.
    """

    def __init__(self, code: int, reason: str = None):
        self.code = code
        self.reason = reason

    def __str__(self) -> str:
        return "Gateway closed with code {}: {}".format(self.code, self.reason)

    __repr__ = __str__


class ReconnectLimitExceeded(GatewayError):
    """
    Raised when the gateway has tried to reconnect too many times in a row.
    """
