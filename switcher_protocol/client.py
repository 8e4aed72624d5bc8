#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Switcher -- A high-level client for one Switcher device.

A Switcher owns:

  1. A SwitcherSession, the authenticated TCP command channel to the device
  2. A SwitcherStatusListener, which emits a StatusEvent for every status broadcast heard on the LAN
  3. A SwitcherEventDispatcher ("events"), to which every outcome is emitted

Usage:

    async with await Switcher.discover("Boiler", timeout=10.0) as switcher:
        async with switcher.events.subscribe() as subscriber:
            await switcher.turn_on(duration_minutes=30)
            ...
"""

from __future__ import annotations

import inspect

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    SWITCHER_TCP_PORT,
    SWITCHER_UDP_PORT,
    SWITCHER_UDP_BIND_ADDRESS,
    DEFAULT_PHONE_ID,
    DEFAULT_DEVICE_PASSWORD,
    DEFAULT_COMMAND_TIMEOUT,
    MIN_DEFAULT_SHUTDOWN_SECONDS,
  )
from .exceptions import SwitcherConfigError
from .models import SwitchState, DeviceStatus, DeviceDescriptor
from .events import SwitcherEventDispatcher, SwitcherEventHandler
from .session import SwitcherSession, SessionState
from .status_listener import SwitcherStatusListener
from .discovery import discover
from .config import SwitcherConfig

StatusCallback = Callable[[DeviceStatus], Any]
"""A callback for query_status(). May be a plain function or a coroutine function."""

class Switcher(AsyncContextManager['Switcher']):
    device_id: str
    address: str
    name: str

    events: SwitcherEventDispatcher
    """Every ReadyEvent, ErrorEvent, StatusEvent, StateChangedEvent and DurationChangedEvent
       for this device is emitted here."""

    session: SwitcherSession
    status_listener: SwitcherStatusListener

    listen_for_status: bool
    """If True, start() binds the status listener. If False, only the command session is used."""

    closed: bool = False

    def __init__(
            self,
            device_id: str,
            address: str,
            name: str="",
            port: int=SWITCHER_TCP_PORT,
            phone_id: bytes=DEFAULT_PHONE_ID,
            device_password: bytes=DEFAULT_DEVICE_PASSWORD,
            command_timeout: Optional[float]=DEFAULT_COMMAND_TIMEOUT,
            invalidate_token_on_disconnect: bool=False,
            listen_for_status: bool=True,
            bind_address: str=SWITCHER_UDP_BIND_ADDRESS,
            udp_port: int=SWITCHER_UDP_PORT,
            events: Optional[SwitcherEventDispatcher]=None,
          ):
        self.device_id = device_id.lower()
        self.address = address
        self.name = name
        self.listen_for_status = listen_for_status
        self.events = SwitcherEventDispatcher() if events is None else events
        self.session = SwitcherSession(
            device_id,
            address,
            port=port,
            phone_id=phone_id,
            device_password=device_password,
            command_timeout=command_timeout,
            invalidate_token_on_disconnect=invalidate_token_on_disconnect,
            dispatcher=self.events,
          )
        self.status_listener = SwitcherStatusListener(
            dispatcher=self.events,
            bind_address=bind_address,
            port=udp_port,
          )

    @classmethod
    def from_descriptor(cls, device: DeviceDescriptor, **kwargs: Any) -> Switcher:
        return cls(device.device_id, device.address, name=device.name, **kwargs)

    @classmethod
    def from_config(cls, config: SwitcherConfig, **kwargs: Any) -> Switcher:
        """Creates a client from a configuration. Raises SwitcherConfigError if the device id or address is missing."""
        if config.device_id is None:
            raise SwitcherConfigError("No device id specified. Use --device-id or set env var SWITCHER_DEVICE_ID")
        if config.address is None:
            raise SwitcherConfigError("No device address specified. Use --address or set env var SWITCHER_ADDRESS")
        return cls(
            config.device_id,
            config.address,
            port=config.port,
            phone_id=config.phone_id,
            device_password=config.device_password,
            command_timeout=config.command_timeout,
            invalidate_token_on_disconnect=config.invalidate_token_on_disconnect,
            bind_address=config.bind_address,
            udp_port=config.udp_port,
            **kwargs
          )

    @classmethod
    async def discover(
            cls,
            identifier: Optional[str]=None,
            timeout: Optional[float]=None,
            bind_address: str=SWITCHER_UDP_BIND_ADDRESS,
            udp_port: int=SWITCHER_UDP_PORT,
            **kwargs: Any
          ) -> Optional[Switcher]:
        """Discovers the first device matching identifier (a device id, name, or IP address) and returns
           a client for it, or None if timeout elapses first.

           The ReadyEvent for the device is emitted to the new client's dispatcher, so handlers added
           to a dispatcher passed as events= will see it.
        """
        events: SwitcherEventDispatcher = kwargs.pop('events', None) or SwitcherEventDispatcher()
        device = await discover(
            identifier=identifier,
            timeout=timeout,
            on_event=events.emit,
            bind_address=bind_address,
            port=udp_port,
          )
        if device is None:
            logger.debug(f"No switcher matching {identifier!r} found within {timeout} seconds")
            return None
        return cls.from_descriptor(device, bind_address=bind_address, udp_port=udp_port, events=events, **kwargs)

    def __str__(self) -> str:
        return f"Switcher(device_id={self.device_id}, address={self.address}, name={self.name!r})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def state(self) -> SessionState:
        return self.session.state

    def add_handler(self, handler: SwitcherEventHandler) -> int:
        return self.events.add_handler(handler)

    def remove_handler(self, i: int) -> None:
        self.events.remove_handler(i)

    async def start(self) -> None:
        """Starts the status listener, if enabled. Commands do not require start() to be called."""
        if self.listen_for_status:
            await self.status_listener.start()

    async def turn_on(self, duration_minutes: int=0) -> SwitchState:
        return await self.session.turn_on(duration_minutes)

    async def turn_off(self) -> SwitchState:
        return await self.session.turn_off()

    async def set_default_shutdown(self, seconds: int=MIN_DEFAULT_SHUTDOWN_SECONDS) -> int:
        return await self.session.set_default_shutdown(seconds)

    async def query_status(self, callback: Optional[StatusCallback]=None) -> DeviceStatus:
        """Queries the device's status. If callback is provided, it is called (and awaited, if it
           returns an awaitable) with the status before it is returned."""
        status = await self.session.query_status()
        if callback is not None:
            result = callback(status)
            if inspect.isawaitable(result):
                await result
        return status

    async def close(self) -> None:
        """Closes the command connection and the status listener, and ends all event subscriptions.
           Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        logger.debug(f"Closing {self}")
        try:
            await self.session.close()
        finally:
            await self.status_listener.stop()
            self.events.close()

    async def __aenter__(self) -> Switcher:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.close()
        return False
