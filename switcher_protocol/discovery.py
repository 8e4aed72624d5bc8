#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Discovery of Switcher devices by listening for their periodic status broadcasts.

Devices do not answer search requests; each one broadcasts its identity and status
to UDP port 20002 every few seconds. Discovery therefore binds a listener to that
port, waits for broadcasts, and optionally filters them by an identifier that may be
a device id, a device name, or a device IP address.
"""

from __future__ import annotations

import asyncio
import time

from .internal_types import *
from .pkg_logging import logger
from .constants import SWITCHER_UDP_BIND_ADDRESS, SWITCHER_UDP_PORT
from .exceptions import SwitcherListenerError
from .models import DeviceDescriptor
from .events import ReadyEvent, ErrorEvent, SwitcherEventHandler
from .switcher_socket import SwitcherBroadcastSocket, SwitcherBroadcastSubscriber, SwitcherBroadcastInfo

def broadcast_matches(identifier: Optional[str], info: SwitcherBroadcastInfo) -> bool:
    """Returns True if identifier is None, or equals the device id, the device name, or the
       address the broadcast was sent from."""
    if identifier is None or identifier == '':
        return True
    return identifier in (info.status.device_id, info.status.name, info.src_addr[0])

class SwitcherDiscovery(
        AsyncContextManager['SwitcherDiscovery'],
        AsyncIterable[DeviceDescriptor]
      ):
    """An object that owns a broadcast listener for the duration of one discovery, and returns
       the matching devices within an AsyncContextManager/AsyncIterable interface.

       Each distinct device is returned at most once."""

    identifier: Optional[str]
    timeout: Optional[float]
    max_devices: int
    bind_address: str
    port: int

    switcher_socket: Optional[SwitcherBroadcastSocket] = None
    subscriber: Optional[SwitcherBroadcastSubscriber] = None
    end_time: Optional[float] = None
    seen_device_ids: Set[str]
    n_found: int = 0

    def __init__(
            self,
            identifier: Optional[str]=None,
            timeout: Optional[float]=None,
            max_devices: int=0,
            bind_address: str=SWITCHER_UDP_BIND_ADDRESS,
            port: int=SWITCHER_UDP_PORT,
          ):
        """Create an async context manager/iterable that listens for device broadcasts and returns
        matching devices as they are seen.

        Parameters:
            identifier:    If not None, only devices whose id, name, or IP address equals this value
                             are returned.
            timeout:       The number of seconds to listen for. If None, listens until max_devices have
                             been found, or forever.
            max_devices:   The maximum number of devices to return. If 0 (the default), there is no limit.
            bind_address:  The local address to listen on. Defaults to all interfaces.
            port:          The UDP port to listen on. Defaults to 20002.

        Usage:
            async with SwitcherDiscovery(timeout=5.0) as discovery:
                async for device in discovery:
                    print(device)
        """
        self.identifier = identifier
        self.timeout = timeout
        self.max_devices = max_devices
        self.bind_address = bind_address
        self.port = port
        self.seen_device_ids = set()

    async def __aenter__(self) -> SwitcherDiscovery:
        switcher_socket = SwitcherBroadcastSocket(bind_address=self.bind_address, port=self.port)
        await switcher_socket.start()
        self.switcher_socket = switcher_socket
        try:
            subscriber = switcher_socket.subscribe()
            await subscriber.__aenter__()
            self.subscriber = subscriber
        except BaseException:
            # __aexit__ is not called when __aenter__ raises
            await self.close()
            raise
        if self.timeout is not None:
            self.end_time = time.monotonic() + self.timeout
        logger.debug(f"Discovery started on {switcher_socket}, identifier={self.identifier!r}, timeout={self.timeout}")
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.close()
        return False

    async def close(self) -> None:
        """Releases the broadcast listener. Safe to call more than once."""
        if self.subscriber is not None:
            await self.subscriber.__aexit__(None, None, None)
            self.subscriber = None
        if self.switcher_socket is not None:
            logger.debug("Stopping discovery, closing broadcast listener")
            await self.switcher_socket.stop()
            self.switcher_socket = None

    async def next_device(self) -> Optional[DeviceDescriptor]:
        """Waits for the next matching device. Returns None if the timeout elapses or the listener is closed.

        Raises SwitcherListenerError if the listener fails.
        """
        if self.subscriber is None:
            return None
        while True:
            if self.max_devices > 0 and self.n_found >= self.max_devices:
                return None
            remaining_time: Optional[float] = None
            if self.end_time is not None:
                remaining_time = self.end_time - time.monotonic()
                if remaining_time <= 0.0:
                    return None
            try:
                info = await asyncio.wait_for(self.subscriber.receive(), remaining_time)
            except asyncio.TimeoutError:
                return None
            if info is None:
                return None
            status = info.status
            if not broadcast_matches(self.identifier, info):
                logger.debug(f"Found {status.name} ({info.src_addr[0]}) - not the device we're looking for")
                continue
            if status.device_id in self.seen_device_ids:
                continue
            self.seen_device_ids.add(status.device_id)
            self.n_found += 1
            logger.debug(f"Found {status.name} ({info.src_addr[0]}), device_id={status.device_id}")
            return DeviceDescriptor(device_id=status.device_id, address=info.src_addr[0], name=status.name)

    async def iter_devices(self) -> AsyncIterator[DeviceDescriptor]:
        while True:
            device = await self.next_device()
            if device is None:
                break
            yield device

    def __aiter__(self) -> AsyncIterator[DeviceDescriptor]:
        return self.iter_devices()

async def discover(
        identifier: Optional[str]=None,
        timeout: Optional[float]=None,
        on_event: Optional[SwitcherEventHandler]=None,
        bind_address: str=SWITCHER_UDP_BIND_ADDRESS,
        port: int=SWITCHER_UDP_PORT,
      ) -> Optional[DeviceDescriptor]:
    """Listens for the first device matching identifier (a device id, name, or IP address; None matches
       any device).

       Returns the device, or None if timeout seconds elapse first. The listener is released before
       returning in either case.

       If on_event is provided, it is awaited with a ReadyEvent when a device is found, and with an
       ErrorEvent before a SwitcherListenerError is raised.
    """
    try:
        async with SwitcherDiscovery(
                identifier=identifier,
                timeout=timeout,
                max_devices=1,
                bind_address=bind_address,
                port=port,
              ) as discovery:
            device = await discovery.next_device()
    except SwitcherListenerError as e:
        if on_event is not None:
            await on_event(ErrorEvent(e))
        raise
    if device is not None and on_event is not None:
        await on_event(ReadyEvent(device))
    return device

async def discover_all(
        timeout: float,
        bind_address: str=SWITCHER_UDP_BIND_ADDRESS,
        port: int=SWITCHER_UDP_PORT,
      ) -> List[DeviceDescriptor]:
    """Listens for timeout seconds and returns every distinct device seen."""
    results: List[DeviceDescriptor] = []
    async with SwitcherDiscovery(timeout=timeout, bind_address=bind_address, port=port) as discovery:
        async for device in discovery:
            results.append(device)
    return results
