#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SwitcherBroadcastSocket -- A UDP socket that:

  1. Binds to the Switcher broadcast port (20002) on all interfaces
  2. Receives status broadcasts, silently discarding any datagram that is not a valid broadcast
  3. Decodes valid broadcasts and delivers them to any number of async subscribers

  The subscriber interface is a simple async iterator that returns a sequence of SwitcherBroadcastInfo
  until the socket is closed. Receive errors reported by the transport are raised out of
  SwitcherBroadcastSubscriber.receive() as SwitcherListenerError, after which the subscriber can keep
  receiving.

  The socket is a scoped resource: it is bound by start() (or __aenter__) and the underlying
  transport is closed exactly once, by stop(), __aexit__, or a fatal transport error.
"""

from __future__ import annotations

import asyncio
import datetime
import socket
import sys
import time

from .internal_types import *
from .pkg_logging import logger
from .exceptions import SwitcherListenerError
from .constants import SWITCHER_UDP_BIND_ADDRESS, SWITCHER_UDP_PORT
from .models import DeviceStatus
from .switcher_frame import SwitcherBroadcast, is_broadcast

MAX_QUEUE_SIZE = 1000

class SwitcherBroadcastInfo:
    src_addr: HostAndPort
    """The source address of the datagram"""

    frame: SwitcherBroadcast
    """The raw broadcast frame"""

    status: DeviceStatus
    """The decoded device status"""

    monotonic_time: float
    """The local time (in seconds) since an arbitrary point in the past at which
       the broadcast was received, as returned by time.monotonic()."""

    utc_time: datetime.datetime
    """The UTC time at which the broadcast was received."""

    def __init__(self, src_addr: HostAndPort, frame: SwitcherBroadcast, status: DeviceStatus) -> None:
        self.src_addr = src_addr
        self.frame = frame
        self.status = status
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    def __str__(self) -> str:
        return f"SwitcherBroadcastInfo(from={self.src_addr[0]}:{self.src_addr[1]}, status={self.status})"

    def __repr__(self) -> str:
        return str(self)

SubscriberItem = Union[SwitcherBroadcastInfo, SwitcherListenerError]

class _SwitcherSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and SwitcherBroadcastSocket."""
    switcher_socket: SwitcherBroadcastSocket

    def __init__(self, switcher_socket: SwitcherBroadcastSocket):
        self.switcher_socket = switcher_socket

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.switcher_socket.connection_made(transport) # type: ignore[arg-type]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.switcher_socket.datagram_received(addr, data)

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        self.switcher_socket.error_received(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.switcher_socket.connection_lost(exc)


class SwitcherBroadcastSubscriber(
        AsyncContextManager['SwitcherBroadcastSubscriber'],
        AsyncIterable[SwitcherBroadcastInfo]
      ):
    switcher_socket: SwitcherBroadcastSocket
    queue: asyncio.Queue[Optional[SubscriberItem]]
    eos: bool = False
    eos_exc: Optional[BaseException] = None

    def __init__(self, switcher_socket: SwitcherBroadcastSocket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.switcher_socket = switcher_socket
        self.queue = asyncio.Queue(max_queue_size)

    async def __aenter__(self) -> SwitcherBroadcastSubscriber:
        self.switcher_socket.add_subscriber(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.switcher_socket.remove_subscriber(self)
        self.on_end_of_stream()
        return False

    async def receive(self) -> Optional[SwitcherBroadcastInfo]:
        """Returns the next decoded broadcast, or None at end of stream.

        Raises SwitcherListenerError for each receive error reported by the transport, and
        at end of stream if the socket was closed because of an error.
        """
        if self.eos and self.queue.empty():
            if self.eos_exc is not None:
                raise SwitcherListenerError(f"Broadcast listener closed with error: {self.eos_exc}") from self.eos_exc
            return None
        result = await self.queue.get()
        self.queue.task_done()
        if isinstance(result, SwitcherListenerError):
            raise result
        if result is None and self.eos_exc is not None:
            raise SwitcherListenerError(f"Broadcast listener closed with error: {self.eos_exc}") from self.eos_exc
        return result

    async def iter_broadcasts(self) -> AsyncIterator[SwitcherBroadcastInfo]:
        while True:
            result = await self.receive()
            if result is None:
                break
            yield result

    def __aiter__(self) -> AsyncIterator[SwitcherBroadcastInfo]:
        return self.iter_broadcasts()

    def _put(self, item: Optional[SubscriberItem]) -> None:
        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning(f"Queue full, dropping {item}")

    def on_broadcast(self, info: SwitcherBroadcastInfo) -> None:
        if not self.eos:
            self._put(info)

    def on_error(self, exc: Exception) -> None:
        if not self.eos:
            error = SwitcherListenerError(f"Broadcast listener receive error: {exc}")
            error.__cause__ = exc
            self._put(error)

    def on_end_of_stream(self, exc: Optional[BaseException]=None) -> None:
        if not self.eos:
            self.eos = True
            self.eos_exc = exc
            try:
                # wake up any waiting tasks
                self.queue.put_nowait(None)
            except asyncio.QueueFull:
                # queue is full so waiters will wake up soon
                pass


class SwitcherBroadcastSocket(AsyncContextManager['SwitcherBroadcastSocket']):
    """
    A UDP listener for Switcher status broadcasts.
    """

    bind_address: str
    """The local address to bind to. By default, all interfaces."""

    port: int
    """The local UDP port to bind to. By default, 20002. Use 0 to bind an ephemeral port."""

    sock: Optional[socket.socket] = None
    transport: Optional[asyncio.DatagramTransport] = None

    final_exception: Optional[BaseException] = None
    """The error that closed the socket, if it was closed because of an error."""

    _done: asyncio.Event
    """Set when the socket is stopped."""

    subscribers: Set[SwitcherBroadcastSubscriber]
    """Subscribers that wish to receive decoded broadcasts."""

    def __init__(self, bind_address: str=SWITCHER_UDP_BIND_ADDRESS, port: int=SWITCHER_UDP_PORT) -> None:
        self.bind_address = bind_address
        self.port = port
        self.subscribers = set()
        self._done = asyncio.Event()

    def __str__(self) -> str:
        return f"SwitcherBroadcastSocket({self.bind_address}:{self.port})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def bound_port(self) -> int:
        """The local port actually bound, which differs from self.port if self.port was 0."""
        if self.sock is None:
            return self.port
        result: int = self.sock.getsockname()[1]
        return result

    def add_subscriber(self, subscriber: SwitcherBroadcastSubscriber) -> None:
        if self.is_done:
            subscriber.on_end_of_stream(self.final_exception)
            return
        self.subscribers.add(subscriber)

    def remove_subscriber(self, subscriber: SwitcherBroadcastSubscriber) -> None:
        self.subscribers.discard(subscriber)

    def subscribe(self, max_queue_size: int=MAX_QUEUE_SIZE) -> SwitcherBroadcastSubscriber:
        return SwitcherBroadcastSubscriber(self, max_queue_size=max_queue_size)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            # Discovery and status listeners in the same process share the port
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if sys.platform not in ( 'win32', 'cygwin' ):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self.bind_address, self.port))
        except BaseException:
            sock.close()
            raise
        return sock

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self.sock = self._create_socket()
        except OSError as e:
            error = SwitcherListenerError(f"Unable to bind broadcast listener to {self.bind_address}:{self.port}: {e}")
            self.set_final_exception(error)
            raise error from e
        logger.debug(f"Bound broadcast listener to {self.bind_address}:{self.bound_port}")
        try:
            untyped_transport, protocol = await loop.create_datagram_endpoint(
                lambda: _SwitcherSocketProtocol(self),
                sock=self.sock
              )
        except BaseException as e:
            self.set_final_exception(e)
            raise
        # asyncio datagram transports do not inherit from asyncio.DatagramTransport
        self.transport = untyped_transport # type: ignore[assignment]

    async def stop(self) -> None:
        """Stops the socket. Safe to call more than once."""
        self.set_final_result()

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        logger.debug(f"Connection made: {self}")
        self.transport = transport

    def datagram_received(self, addr: HostAndPort, data: bytes) -> None:
        if not is_broadcast(data):
            return
        try:
            frame = SwitcherBroadcast(data)
            info = SwitcherBroadcastInfo(addr, frame, frame.to_device_status())
        except Exception as e:
            logger.debug(f"Discarding undecodable broadcast from {addr}, raw=[{data.hex()}]: {e}")
            return
        logger.debug(f"Received broadcast from {addr}: {info.status}")
        for subscriber in list(self.subscribers):
            subscriber.on_broadcast(info)

    def error_received(self, exc: Exception) -> None:
        logger.info(f"Error received from transport {self}: {exc}")
        for subscriber in list(self.subscribers):
            subscriber.on_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        logger.debug(f"Connection to transport lost on {self}, exc={exc}")
        self.transport = None
        if exc is None:
            self.set_final_result()
        else:
            self.set_final_exception(exc)

    def _close_transport(self) -> None:
        transport = self.transport
        self.transport = None
        if transport is not None:
            logger.debug(f"Closing {self}")
            transport.close()
        elif self.sock is not None:
            self.sock.close()
        self.sock = None

    def _end_subscribers(self, exc: Optional[BaseException]) -> None:
        for subscriber in list(self.subscribers):
            subscriber.on_end_of_stream(exc)

    def set_final_exception(self, exc: BaseException) -> None:
        assert not exc is None
        if not self._done.is_set():
            logger.debug(f"{self}: Setting final exception: {exc}")
            self.final_exception = exc
            self._done.set()
            self._close_transport()
            self._end_subscribers(exc)

    def set_final_result(self) -> None:
        if not self._done.is_set():
            logger.debug(f"{self}: Setting final result to success")
            self._done.set()
            self._close_transport()
            self._end_subscribers(None)

    async def __aenter__(self) -> Self:
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
