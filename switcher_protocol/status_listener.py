#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SwitcherStatusListener -- A long-lived listener that:

  1. Binds to the Switcher broadcast port (20002) on all interfaces
  2. Decodes every valid status broadcast and emits it as a StatusEvent
  3. Emits receive errors as ErrorEvents wrapping SwitcherListenerError, and keeps listening
"""

from __future__ import annotations

import asyncio

from .internal_types import *
from .pkg_logging import logger
from .constants import SWITCHER_UDP_BIND_ADDRESS, SWITCHER_UDP_PORT
from .exceptions import SwitcherListenerError
from .events import SwitcherEventDispatcher, StatusEvent, ErrorEvent
from .switcher_socket import SwitcherBroadcastSocket, SwitcherBroadcastSubscriber

def _wrap_listener_error(e: BaseException) -> SwitcherListenerError:
    error = SwitcherListenerError(f"status report failed. error: {e}")
    error.__cause__ = e
    return error

class SwitcherStatusListener(AsyncContextManager['SwitcherStatusListener']):
    dispatcher: SwitcherEventDispatcher
    """The dispatcher that status and error events are emitted to."""

    bind_address: str
    port: int

    switcher_socket: Optional[SwitcherBroadcastSocket] = None
    subscriber: Optional[SwitcherBroadcastSubscriber] = None

    collector_task: Optional[asyncio.Task[None]] = None
    """The task that decodes broadcasts and emits events. None if the listener is not running."""

    def __init__(
            self,
            dispatcher: Optional[SwitcherEventDispatcher]=None,
            bind_address: str=SWITCHER_UDP_BIND_ADDRESS,
            port: int=SWITCHER_UDP_PORT,
          ) -> None:
        self.dispatcher = SwitcherEventDispatcher() if dispatcher is None else dispatcher
        self.bind_address = bind_address
        self.port = port

    def __str__(self) -> str:
        return f"SwitcherStatusListener({self.bind_address}:{self.port})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def is_running(self) -> bool:
        return self.collector_task is not None and not self.collector_task.done()

    async def start(self) -> None:
        """Binds the listener and starts emitting events. Raises SwitcherListenerError (after emitting it)
           if the port cannot be bound."""
        if self.switcher_socket is not None:
            return
        switcher_socket = SwitcherBroadcastSocket(bind_address=self.bind_address, port=self.port)
        try:
            await switcher_socket.start()
        except SwitcherListenerError as e:
            await self.dispatcher.emit(ErrorEvent(_wrap_listener_error(e)))
            raise
        self.switcher_socket = switcher_socket
        subscriber = switcher_socket.subscribe()
        await subscriber.__aenter__()
        self.subscriber = subscriber
        self.collector_task = asyncio.create_task(self._run_collector_task())
        logger.debug(f"{self} started")

    async def stop(self) -> None:
        """Stops the listener and releases the socket. Safe to call more than once."""
        collector_task = self.collector_task
        self.collector_task = None
        if collector_task is not None:
            collector_task.cancel()
            try:
                await collector_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Exception while cancelling collector task: {e}")
        if self.subscriber is not None:
            await self.subscriber.__aexit__(None, None, None)
            self.subscriber = None
        if self.switcher_socket is not None:
            logger.debug(f"Closing status listener socket {self.switcher_socket}")
            await self.switcher_socket.stop()
            self.switcher_socket = None

    async def _run_collector_task(self) -> None:
        logger.debug("Status collector task starting")
        assert self.subscriber is not None and self.switcher_socket is not None
        subscriber = self.subscriber
        switcher_socket = self.switcher_socket
        try:
            while True:
                try:
                    info = await subscriber.receive()
                except SwitcherListenerError as e:
                    await self.dispatcher.emit(ErrorEvent(_wrap_listener_error(e)))
                    if switcher_socket.is_done:
                        break
                    continue
                if info is None:
                    break
                await self.dispatcher.emit(StatusEvent(info.status))
        except asyncio.CancelledError:
            logger.debug("Status collector task cancelled; exiting")
            raise
        logger.debug("Status collector task exiting")

    async def __aenter__(self) -> SwitcherStatusListener:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.stop()
        return False
