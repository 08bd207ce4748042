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
Listener registration, and turning dispatches into events.

.. currentmodule:: erebus.core.event
"""
import inspect
import logging
import typing

from multidict import MultiDict

from erebus.core.state import SessionState
from erebus.util import remove_from_multidict

logger = logging.getLogger("erebus.events")


class EventManager(object):
    """
    Keeps track of the listeners for each event name.

    Listeners are awaited one after another, in the order they were registered, so events are
    always seen in the same order their frames arrived in.
    """

    def __init__(self, client=None):
        #: The client passed to each :class:`.EventContext`.
        self.client = client

        #: Event name -> listeners, in registration order.
        self.listeners = MultiDict()

    def add_event(self, func, name: str = None):
        """
        Registers a listener.

        :param func: The coroutine function to call.
        :param name: The event to listen to. Defaults to the names set by :func:`event`.
        """
        if not inspect.iscoroutinefunction(func):
            raise TypeError("Listener {!r} is not an async function".format(func))

        names = func.events if name is None else (name,)
        for event_name in names:
            logger.debug("Registered listener %s for %s", func.__name__, event_name)
            self.listeners.add(event_name, func)

    def remove_event(self, name: str, func):
        """
        Unregisters a listener.

        :param name: The event the listener was registered for.
        :param func: The listener to remove.
        """
        self.listeners = remove_from_multidict(self.listeners, key=name, item=func)

    async def _call_listener(self, func, ctx, *args, **kwargs):
        # a broken listener must never take the gateway down with it
        try:
            await func(ctx, *args, **kwargs)
        except Exception:
            logger.exception("Unhandled exception in %s while handling %s", func.__name__,
                             ctx.event_name)

    async def fire_event(self, event_name: str, *args, **kwargs):
        """
        Calls every listener for an event, one after another.

        :param event_name: The name of the event to fire.
        """
        ctx = EventContext(self.client, event_name)

        for listener in self.listeners.getall(event_name, []):
            await self._call_listener(listener, ctx, *args, **kwargs)


def event(name):
    """
    Marks a coroutine function as a listener for an event. Can be stacked.

    :param name: The name of the event.
    """

    def _inner(f):
        f.events = getattr(f, "events", set()) | {name}
        f.is_event = True
        return f

    return _inner


class EventContext(object):
    """
    Passed as the first argument to every listener.
    """

    def __init__(self, cl, event_name: str):
        """
        :param cl: The :class:`.Client` the event came from.
        :param event_name: The name of the event being fired.
        """
        #: The :class:`.Client` instance that this event was fired under.
        self.bot = cl

        #: The name of the event being fired.
        self.event_name = event_name


class EventDispatcher(object):
    """
    Turns DISPATCH frames into events.

    Parsing is delegated to the ``handle_<event>`` methods of the :class:`.SessionState`, and
    whatever they return is fired on the :class:`.EventManager`.
    """

    def __init__(self, state: SessionState, events: EventManager):
        self.state = state
        self.events = events

    async def handle(self, name: str, payload: typing.Any) -> typing.Optional[tuple]:
        """
        Handles a single dispatch.

        :param name: The event name, e.g. ``READY``.
        :param payload: The ``d`` field of the frame.
        :return: The event that was fired, or None.
        """
        handler = getattr(self.state, "handle_{}".format(name.lower()), None)
        if handler is None:
            logger.debug("Ignoring unknown dispatch %s", name)
            return None

        logger.debug("Processing event %s", name)
        result = handler(payload if payload is not None else {})
        if result is None:
            return None

        await self.events.fire_event(result[0], *result[1:])
        return result
