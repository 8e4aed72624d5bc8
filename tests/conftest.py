"""Pytest configuration and fixtures for switcher_protocol tests."""

from __future__ import annotations

import asyncio
import socket
import struct
from typing import AsyncIterator, Callable, List, Optional

import pytest
import pytest_asyncio

from switcher_protocol.switcher_frame import OPCODE_LOGIN, OPCODE_QUERY_STATUS

# The device name field starts on the last device id byte, so the id below ends
# with 0x42 ('B') to keep both fields consistent in one frame.
DEVICE_ID = "a1b242"
DEVICE_NAME = "Boiler"
SESSION_TOKEN = b"\xde\xad\xbe\xef"


def build_broadcast(
    *,
    device_id: Optional[str] = DEVICE_ID,
    name: Optional[str] = DEVICE_NAME,
    address: Optional[str] = None,
    state: Optional[int] = None,
    power: Optional[int] = None,
    remaining: Optional[int] = None,
    default_shutdown: Optional[int] = None,
) -> bytes:
    """Build a synthetic 165-byte status broadcast with the given field values."""
    data = bytearray(165)
    data[0:2] = b"\xfe\xf0"
    if name is not None:
        encoded = name.encode("utf-8")
        data[20 : 20 + len(encoded)] = encoded
    if device_id is not None:
        data[18:21] = bytes.fromhex(device_id)
    if address is not None:
        data[76:80] = socket.inet_aton(address)
    if state is not None:
        data[133:135] = struct.pack("<H", state)
    if power is not None:
        data[135:137] = struct.pack("<H", power)
    if remaining is not None:
        data[147:151] = struct.pack("<I", remaining)
    if default_shutdown is not None:
        data[155:159] = struct.pack("<I", default_shutdown)
    return bytes(data)


def build_status_reply(
    *,
    name: str = DEVICE_NAME,
    state: int = 1,
    power: int = 1850,
    remaining: int = 1800,
    default_shutdown: int = 7200,
) -> bytes:
    """Build a synthetic reply to a status query."""
    data = bytearray(101)
    data[0:2] = b"\xfe\xf0"
    encoded = name.encode("utf-8")
    data[20 : 20 + len(encoded)] = encoded
    data[75:77] = struct.pack("<H", state)
    data[77:79] = struct.pack("<H", power)
    data[89:93] = struct.pack("<I", remaining)
    data[97:101] = struct.pack("<I", default_shutdown)
    return bytes(data)


def build_login_reply(token: bytes = SESSION_TOKEN) -> bytes:
    return b"\xfe\xf0" + bytes(6) + token + bytes(4)


def send_datagram(data: bytes, port: int) -> None:
    """Send one UDP datagram to a listener on the loopback interface."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.sendto(data, ("127.0.0.1", port))
    finally:
        sock.close()


class FakeSwitcher:
    """A TCP server on the loopback interface that answers like a device.

    Every frame received is recorded. Login requests get a login reply, status
    queries get status_reply, and every other command gets an acknowledgement.
    """

    def __init__(self) -> None:
        self.frames: List[bytes] = []
        self.connections = 0
        self.respond = True
        self.reply_delay = 0.0
        self.status_reply = build_status_reply()
        self.server: Optional[asyncio.AbstractServer] = None
        self.writers: List[asyncio.StreamWriter] = []
        self.port = 0

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def close(self) -> None:
        for writer in self.writers:
            writer.close()
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()

    @property
    def opcodes(self) -> List[bytes]:
        return [frame[6:8] for frame in self.frames]

    def reply_for(self, frame: bytes) -> bytes:
        opcode = frame[6:8]
        if opcode == OPCODE_LOGIN:
            return build_login_reply()
        if opcode == OPCODE_QUERY_STATUS:
            return self.status_reply
        return b"\xfe\xf0" + bytes(6) + SESSION_TOKEN + bytes(4)

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.connections += 1
        self.writers.append(writer)
        try:
            while True:
                data = await reader.read(1024)
                if not data:
                    break
                self.frames.append(data)
                if self.reply_delay:
                    await asyncio.sleep(self.reply_delay)
                if self.respond:
                    writer.write(self.reply_for(data))
                    await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()


@pytest_asyncio.fixture
async def fake_switcher() -> AsyncIterator[FakeSwitcher]:
    """Fixture providing a running fake device."""
    device = FakeSwitcher()
    await device.start()
    try:
        yield device
    finally:
        await device.close()


@pytest.fixture
def make_broadcast() -> Callable[..., bytes]:
    """Fixture providing the broadcast builder."""
    return build_broadcast


@pytest.fixture
def unused_tcp_port_number() -> int:
    """Fixture providing a loopback TCP port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port: int = sock.getsockname()[1]
    sock.close()
    return port
