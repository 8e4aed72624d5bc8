#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Typed outcome events emitted by Switcher clients and listeners, and the dispatcher that
delivers them.

Consumers can either register async handlers, which are awaited in order for every
event, or open a subscriber, which is an async iterator over a bounded queue of events:

    async with switcher.events.subscribe() as subscriber:
        async for event in subscriber:
            if isinstance(event, StatusEvent):
                print(event.status)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from .internal_types import *
from .pkg_logging import logger
from .models import DeviceDescriptor, DeviceStatus, SwitchState

MAX_QUEUE_SIZE = 1000

class SwitcherEvent:
    """Base class for all events."""
    pass

@dataclass(frozen=True)
class ReadyEvent(SwitcherEvent):
    """A device matching a discovery request was found."""
    device: DeviceDescriptor

@dataclass(frozen=True)
class ErrorEvent(SwitcherEvent):
    """An operation or a listener failed."""
    error: BaseException

@dataclass(frozen=True)
class StatusEvent(SwitcherEvent):
    """A status broadcast was received."""
    status: DeviceStatus

@dataclass(frozen=True)
class StateChangedEvent(SwitcherEvent):
    """A device acknowledged a power on/off command."""
    state: SwitchState

@dataclass(frozen=True)
class DurationChangedEvent(SwitcherEvent):
    """A device acknowledged a new default auto-shutdown duration."""
    seconds: int

SwitcherEventHandler = Callable[[SwitcherEvent], Awaitable[None]]
"""A callback for emitted events."""


class SwitcherEventSubscriber(
        AsyncContextManager['SwitcherEventSubscriber'],
        AsyncIterable[SwitcherEvent]
      ):
    dispatcher: SwitcherEventDispatcher
    queue: asyncio.Queue[Optional[SwitcherEvent]]
    eos: bool = False

    def __init__(self, dispatcher: SwitcherEventDispatcher, max_queue_size: int=MAX_QUEUE_SIZE):
        self.dispatcher = dispatcher
        self.queue = asyncio.Queue(max_queue_size)

    async def __aenter__(self) -> SwitcherEventSubscriber:
        self.dispatcher.add_subscriber(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.dispatcher.remove_subscriber(self)
        self.on_end_of_stream()
        return False

    async def receive(self) -> Optional[SwitcherEvent]:
        """Returns the next event, or None once the stream has ended and the queue is drained."""
        if self.eos and self.queue.empty():
            return None
        result = await self.queue.get()
        self.queue.task_done()
        return result

    async def iter_events(self) -> AsyncIterator[SwitcherEvent]:
        while True:
            result = await self.receive()
            if result is None:
                break
            yield result

    def __aiter__(self) -> AsyncIterator[SwitcherEvent]:
        return self.iter_events()

    def on_event(self, event: SwitcherEvent) -> None:
        if not self.eos:
            try:
                self.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event queue full, dropping event: {event}")

    def on_end_of_stream(self) -> None:
        if not self.eos:
            self.eos = True
            try:
                # wake up any waiting tasks
                self.queue.put_nowait(None)
            except asyncio.QueueFull:
                # queue is full so waiters will wake up soon
                pass


class SwitcherEventDispatcher:
    """Delivers events to registered handlers and subscribers."""

    handlers: Dict[int, SwitcherEventHandler]
    """Handlers that will be called for every emitted event, indexed by ID number."""

    subscribers: Set[SwitcherEventSubscriber]

    i_next_handler: int = 0
    """The next handler ID to assign."""

    def __init__(self) -> None:
        self.handlers = {}
        self.subscribers = set()

    def add_handler(self, handler: SwitcherEventHandler) -> int:
        """Adds a handler to be called for every emitted event. Returns an ID that can be passed to remove_handler()."""
        i = self.i_next_handler
        self.i_next_handler += 1
        self.handlers[i] = handler
        return i

    def remove_handler(self, i: int) -> None:
        """Removes a previously added handler."""
        del self.handlers[i]

    def add_subscriber(self, subscriber: SwitcherEventSubscriber) -> None:
        self.subscribers.add(subscriber)

    def remove_subscriber(self, subscriber: SwitcherEventSubscriber) -> None:
        self.subscribers.discard(subscriber)

    def subscribe(self, max_queue_size: int=MAX_QUEUE_SIZE) -> SwitcherEventSubscriber:
        """Returns an async context manager/iterable that receives every event emitted while it is open."""
        return SwitcherEventSubscriber(self, max_queue_size=max_queue_size)

    async def emit(self, event: SwitcherEvent) -> None:
        logger.debug(f"Emitting {event}")
        for subscriber in list(self.subscribers):
            subscriber.on_event(event)
        for handler in list(self.handlers.values()):
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Event handler raised exception processing {event}: {e}")

    def close(self) -> None:
        """Ends the event stream of all open subscribers."""
        for subscriber in list(self.subscribers):
            subscriber.on_end_of_stream()
